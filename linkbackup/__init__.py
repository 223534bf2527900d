import argparse
import configparser
import importlib
import logging
import os
import signal
import sys
from abc import ABC, abstractmethod
from importlib.metadata import PackageNotFoundError, version

import psutil

from .config import parse_config
from .exceptions import BackupDirNotFoundError, CommandNotFoundError, ConfigFileNotFound, Error, \
    SyncRetryableError, TimestampParseError
from .subprocess import DEBUG_SHELL
from .timestamps import get_human_readable_timedelta, get_timestamp
from .worker import Worker

try:
    __version__ = version(__name__)
except PackageNotFoundError:
    __version__ = 'unknown'
logger = logging.getLogger(__name__)

_log_levels = (logging.WARNING, logging.INFO, logging.DEBUG, DEBUG_SHELL)
"""thresholds selected by repeating `-d`"""


argument_parser = argparse.ArgumentParser(description='full or reverse incremental backups with `rsync` and hard '
                                                      'links')
argument_parser.add_argument('command', choices=['setup', 's', 'backup', 'b', 'list', 'l', 'clean'],
                             help='create backup dir, make a snapshot, list snapshots or delete staging dirs left '
                                  'behind by interrupted runs')
argument_parser.add_argument('name', help='job name, a section in the config file')
argument_parser.add_argument('-c', '--config', metavar='CONFIGFILE', default=None,
                             help='read this config file instead of `linkbackup.ini` from xdg config dirs or /etc')
argument_parser.add_argument('-d', '--debug', action='count', default=0,
                             help='more log output, repeat up to three times to see rsync output')
argument_parser.add_argument('-p', '--progress', action='store_true', help='show rsync progress on stdout')
argument_parser.add_argument('-s', '--silent', action='store_true',
                             help='log to journald instead of stdout (needs `pip install linkbackup[journald]`)')
argument_parser.add_argument('--checksum', action='store_true',
                             help='compare file contents instead of size and mtime (`rsync --checksum`), slow')
argument_parser.add_argument('--dry-run', action='store_true',
                             help='show what rsync would transfer, nothing is written to the backup dir')
argument_parser.add_argument('--inc', action='store_true',
                             help='reverse incremental mode, overrides `incremental` of the job')
argument_parser.add_argument('--source', action='append',
                             help='back up this path instead of the configured `source`, may be repeated')
argument_parser.add_argument('--yes', action='store_true', help='do not ask before deleting staging dirs')
argument_parser.add_argument('-v', '--version', action='version', version=f'%(prog)s {__version__}')


def _yes_no_prompt(message):
    """ask on stdin, only "y" or "yes" count as consent.

    :param str message:
    :return bool:
    """
    answer = input(f'{message} [y/N] ')
    return answer.strip().lower() in ('y', 'yes')


def _yes_prompt(message):
    """non-interactive consent for `--yes`.

    >>> from linkbackup import _yes_prompt
    >>> _yes_prompt('delete /backups/linkbackup_tmpabcd')
    delete /backups/linkbackup_tmpabcd
    True
    """
    print(message)
    return True


def list_backups(worker):
    """print one line per snapshot (name, kind, pointer marker, age), then retained staging dirs.

    :param Worker worker:
    :return: None
    """
    logger.info(f'listing {worker}')
    now = get_timestamp()
    for snapshot in worker.get_snapshots():
        marker = 'current' if snapshot.is_current else ' ' * len('current')
        age = get_human_readable_timedelta(now - snapshot.datetime)
        print(f'{snapshot.name}\t{snapshot.kind.value}\t{marker}\t{age} ago')
    for path in worker.get_staging_dirs():
        print(f'{os.path.basename(path)}\tretained staging dir')


def main():
    """console script `linkbackup`.

    installs handlers for SIGTERM and SIGHUP, runs :class:`linkbackup.CliApp` and makes sure nothing escapes
    without being logged. a signal ends the app with exit code `128 + signal number`, like a shell reports it.

    :return: None
    """
    app = CliApp()
    for _signal, _name in ((signal.SIGTERM, 'Terminated'), (signal.SIGHUP, 'Hangup')):
        signal.signal(_signal, lambda signum, frame, name=_name: app.abort(name, 128 + signum))
    try:
        app()
    except KeyboardInterrupt:
        app.abort('KeyboardInterrupt', 128 + signal.SIGINT)
    except Exception as e:
        logger.exception(e)
        app.abort('unexpected error')


class BaseApp(ABC):
    """logging and config handling shared by frontends, subclasses decide how to :func:`abort`."""

    name: str = __name__
    """used as journald identifier"""

    def __init__(self, name=__name__):
        """

        :param str name:
        """
        self.name = name
        super().__init__()

    def _get_journald_handler(self):
        """
        :raise ModuleNotFoundError: `systemd-python` is not installed
        :return logging.Handler:
        """
        journal = importlib.import_module('systemd.journal')
        return journal.JournalHandler(SYSLOG_IDENTIFIER=self.name)

    def _configure_logger(self, level, journald):
        """set up the root logger.

        :param int level: index into :data:`_log_levels`
        :param bool journald: log to journald instead of stderr
        :return: None
        :exit: calls :func:`abort` on unusable arguments
        """
        if level >= len(_log_levels):
            self.abort(f'at most {len(_log_levels) - 1} `-d` are supported')
            return
        try:
            handlers = [self._get_journald_handler()] if journald else None
        except ModuleNotFoundError as e:
            self.abort(f'journald logging needs module `{e.name}`, install `linkbackup[journald]`')
            return
        logging.basicConfig(handlers=handlers, level=_log_levels[level])

    def _get_config(self, filepath, section):
        """read job `section`, a broken configuration aborts the app.

        :param str filepath: config file, `None` to search the default locations
        :param str section: job name
        :return Config:
        """
        try:
            return parse_config(filepath, section)
        except ConfigFileNotFound as e:
            self.abort(f'no config file found, tried `{e.path}`')
        except configparser.NoSectionError as e:
            self.abort(f'job `{e.section}` is not configured')
        except configparser.NoOptionError as e:
            self.abort(f'job `{e.section}` lacks `{e.option}`')
        except (TimestampParseError, ValueError) as e:
            self.abort(f'invalid configuration: {e}')

    @abstractmethod
    def abort(self, error_message, exit_code=1):
        """end the app with an error.

        :param str error_message:
        :param int exit_code:
        """
        pass


class CliApp(BaseApp):
    """command line frontend, one job per invocation."""

    backup_name: str = None
    """job name as given on the command line"""

    config = None
    """:class:`linkbackup.config.Config` of the job"""

    delete_prompt: callable
    """asks before a staging dir is deleted"""

    def __call__(self, args=None):
        """parse `args` (default `sys.argv[1:]`), load the job and run the command.

        errors of this package are mapped to their exit codes via :func:`abort`.

        :param list args:
        :return: None
        """
        args = argument_parser.parse_args(args=args)
        self._configure_logger(args.debug, args.silent)
        self.backup_name = args.name
        self.config = self._get_config(args.config, args.name)
        if args.source:
            self.config = self.config._replace(sources=tuple(args.source))
        if args.inc:
            self.config = self.config._replace(incremental=True)
        self.delete_prompt = _yes_prompt if args.yes else _yes_no_prompt
        try:
            self._main(args.command, args.checksum, args.dry_run, args.progress)
        except BackupDirNotFoundError as e:
            self.abort(f'backup dir `{e.path}` does not exist, run `setup` or mount it', e.exit_code)
        except CommandNotFoundError as e:
            self.abort(f'`{e.command}` not found, is it installed?', e.exit_code)
        except SyncRetryableError as e:
            self.abort(f'backup incomplete (rsync error {e.errno}, {e.error_message}), try again later, '
                       f'temporaries kept in `{e.target}`', e.exit_code)
        except Error as e:
            self.abort(e, e.exit_code)

    def abort(self, error_message, exit_code=1):
        """terminate child processes, log `error_message` and exit with `exit_code`.

        >>> from linkbackup import CliApp
        >>> app = CliApp()
        >>> app.backup_name = 'home'
        >>> try:
        ...     app.abort('disk full', 7)
        ... except SystemExit as e:
        ...     assert e.code == 7

        :param str error_message:
        :param int exit_code: tells "retry later" from "inspect manually", see README
        :exit: `exit_code`
        """
        # a SIGTERM to us does not reach rsync
        for child in psutil.Process().children(recursive=True):
            logger.debug(f'terminating {child.pid}')
            child.terminate()
        logger.error(f'job `{self.backup_name}` failed: {error_message}')
        sys.exit(exit_code)

    def _main(self, command, checksum, dry_run, progress):
        """run `command` for the loaded job.

        :param str command: see :data:`argument_parser`
        :param bool checksum:
        :param bool dry_run:
        :param bool progress:
        :return: None
        """
        logger.info(f'job `{self.backup_name}`, command `{command}`, pid {os.getpid()}')
        worker = Worker(self.config)
        if command in ('s', 'setup'):
            worker.setup()
        elif command in ('b', 'backup'):
            name = worker.make_backup(checksum=checksum, dry_run=dry_run, progress=progress)
            if name:
                logger.info(f'job `{self.backup_name}` created `{name}`')
        elif command in ('l', 'list'):
            list_backups(worker)
        elif command == 'clean':
            worker.clean_staging(self.delete_staging_prompt)
        else:
            raise NotImplementedError(f'unknown command `{command}`')
        logger.info(f'job `{self.backup_name}` done')

    def delete_staging_prompt(self, path):
        return self.delete_prompt(f'delete {path}')
