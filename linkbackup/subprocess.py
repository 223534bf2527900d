import logging
import os
import re
import shlex
import subprocess

import psutil

from .exceptions import CommandNotFoundError
from .outcome import CHILD_INTERRUPTED, RSYNC_SUCCESS

DEBUG_SHELL = 5
"""custom logging level for subprocess output"""

VANISHING_PATTERN = re.compile(r'^(file has vanished: |rsync warning: some files vanished before they could be '
                               r'transferred)')
"""rsync diagnostics which are expected while backing up a live system"""

logging.addLevelName(DEBUG_SHELL, 'DEBUG_SHELL')
logger = logging.getLogger(__name__)

_niceness = 15


def _lower_priority(pid):
    """lower cpu and io priority of process `pid`, like `nice -n15 ionice -c3`.

    :param int pid:
    :return: None
    """
    try:
        process = psutil.Process(pid)
        process.nice(_niceness)
        if hasattr(psutil, 'IOPRIO_CLASS_IDLE'):
            process.ionice(psutil.IOPRIO_CLASS_IDLE)
    except psutil.Error as e:
        logger.debug(f'could not lower priority of `{pid}`: {e}')


def run(*args, show_output=False, suppress=None, low_priority=False):
    """wrapper around python's `subprocess`: executes given command in a consistent way in this project.

    :param args: command arguments, `None` is dropped
    :type args: tuple of str
    :param bool show_output: if `True` shell output will be shown on `stdout`
    :param re.Pattern suppress: output lines matching this pattern are dropped
    :param bool low_priority: run command with lowered cpu and io priority
    :raise CommandNotFoundError: if command cannot be found
    :raise subprocess.CalledProcessError: if process exits with a non-zero exit code
    :return: None

    >>> from linkbackup.subprocess import run
    >>> run('true')
    >>> run('echo', 'test')
    >>> run('echo', 'test', show_output=True)
    test
    >>> run('echo', None, 'test', show_output=True)
    test
    >>> run('false')
    Traceback (most recent call last):
    subprocess.CalledProcessError: ...
    >>> run('not-a-command-whae5roo')
    Traceback (most recent call last):
    linkbackup.exceptions.CommandNotFoundError: ...
    """
    args = tuple(_a for _a in args if _a is not None)
    logger.log(DEBUG_SHELL, f'run {args}, show_output={show_output}')
    try:
        with subprocess.Popen(args, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, encoding='utf-8',
                              errors='replace') as process:
            if low_priority:
                _lower_priority(process.pid)
            for line in process.stdout:
                line = line.rstrip()
                if not line or (suppress and suppress.search(line)):
                    continue
                logger.log(DEBUG_SHELL, f'subprocess: {line}')
                if show_output:
                    print(line)
    except FileNotFoundError as e:
        logger.debug(f'raise `CommandNotFoundError` after catching `{e}`')
        raise CommandNotFoundError(e.filename) from e
    if process.returncode != 0:
        raise subprocess.CalledProcessError(process.returncode, args)


def ssh_command(account=None, port=None, identity=None):
    """remote shell command handed to rsync.

    :param str account: ssh login name
    :param int port: ssh port on the remote system
    :param str identity: path to a ssh key file
    :return str:

    >>> from linkbackup.subprocess import ssh_command
    >>> ssh_command()
    'ssh -x -oBatchMode=yes -oStrictHostKeyChecking=no -oCompression=yes'
    >>> ssh_command('backup', 2222, '/root/my key')
    "ssh -x ... -p 2222 -l backup -i '/root/my key' -o IdentitiesOnly=yes"
    """
    args = ['ssh', '-x', '-oBatchMode=yes', '-oStrictHostKeyChecking=no', '-oCompression=yes']
    if port:
        args.extend(['-p', str(port)])
    if account:
        args.extend(['-l', shlex.quote(account)])
    if identity:
        args.extend(['-i', shlex.quote(identity), '-o', 'IdentitiesOnly=yes'])
    return ' '.join(args)


def is_remote(path):
    """rsync treats `host:path` as a remote location.

    >>> from linkbackup.subprocess import is_remote
    >>> is_remote('user@host:/home'), is_remote('/home')
    (True, False)
    """
    return ':' in path


def rsync(sources, target, link_dests=(), backup_dir=None, exclude_file=None, exclude=(), checksum=False,
          one_file_system=False, ssh_account=None, ssh_port=None, ssh_identity=None, binary='rsync', progress=False,
          dry_run=False):
    """run `rsync` once for given `sources` and `target`, return its exit status.

    without `backup_dir` a full mirror is made (`-aH`). with `backup_dir` files changed or deleted in `target` are
    moved there instead of being discarded (reverse incremental mode).

    :param sources: paths to read from, local or `host:path`
    :type sources: tuple of str
    :param str target: path to write to
    :param link_dests: absolute paths to hard link unchanged files from, highest priority first
    :type link_dests: tuple of str
    :param str backup_dir: backup dir for changed and deleted files, relative to `target`
    :param str exclude_file: rsync exclude file
    :param exclude: exclude patterns
    :type exclude: tuple of str
    :param bool checksum: detect changes by checksum
    :param bool one_file_system: do not cross filesystem boundaries
    :param str ssh_account:
    :param int ssh_port:
    :param str ssh_identity:
    :param str binary: rsync executable
    :param bool progress: show progress information
    :param bool dry_run: pass `--dry-run`, no changes are made on disk
    :raise CommandNotFoundError: when `binary` cannot be found
    :return int: rsync exit status, signals are mapped to `128 + signal`
    """
    logger.debug(f'sync `{sources}` to `{target}`, link_dests={link_dests}, backup_dir={backup_dir}')
    args = [binary]
    args.extend(['-v', '--progress'] if progress or dry_run else ['-q'])
    args.append(f'--rsh={ssh_command(ssh_account, ssh_port, ssh_identity)}')
    if exclude_file:
        args.append(f'--exclude-from={exclude_file}')
    args.extend([f'--exclude={pattern}' for pattern in exclude])
    args.append('--partial')
    if checksum:
        args.append('--checksum')
    if one_file_system:
        args.append('--one-file-system')
    if ssh_account or ssh_identity or any(is_remote(source) for source in sources):
        args.extend(['--compress', '--compress-level=7'])
    if backup_dir:
        args.extend(['-a', '--backup', f'--backup-dir={backup_dir}', '--delete', '--ignore-errors'])
    else:
        args.append('-aH')
    args.extend([f'--link-dest={path}' for path in link_dests])
    if dry_run:
        args.append('--dry-run')
        print('dry run, no changes will be made on disk, this is what rsync would do:')
    args.extend(sources)
    args.append(target)
    try:
        run(*args, show_output=progress or dry_run, suppress=VANISHING_PATTERN, low_priority=True)
    except subprocess.CalledProcessError as e:
        logger.debug(f'rsync exit status `{e.returncode}`')
        return e.returncode if e.returncode >= 0 else 128 - e.returncode
    except KeyboardInterrupt:
        logger.warning('rsync interrupted')
        return CHILD_INTERRUPTED
    finally:
        if dry_run:
            print('dry run, no changes were made on disk')
    return RSYNC_SUCCESS


def copy_hardlinks(source, target):
    """clone directory tree `source` to `target`, files are hard linked instead of copied.

    :param str source:
    :param str target: must not exist
    :raise subprocess.CalledProcessError: when tree could not be cloned (completely)
    :return: None
    """
    logger.debug(f'hard link clone `{source}` to `{target}`')
    run('cp', '-al', source, target)


def sync_filesystem():
    """flush filesystem buffers to disk."""
    logger.debug('sync filesystems')
    os.sync()
