import os
import pytest
import subprocess
from unittest.mock import patch

import linkbackup.subprocess
from linkbackup.exceptions import CommandNotFoundError
from linkbackup.subprocess import VANISHING_PATTERN


def test_run_true():
    assert linkbackup.subprocess.run('true') is None


def test_run_false():
    with pytest.raises(subprocess.CalledProcessError):
        linkbackup.subprocess.run('false')


def test_run_not_found():
    with pytest.raises(CommandNotFoundError) as excinfo:
        linkbackup.subprocess.run('not-a-command-ahngoh7u')
    assert excinfo.value.command == 'not-a-command-ahngoh7u'


def test_run_silent(capsys):
    linkbackup.subprocess.run('echo', 'test')
    out, _ = capsys.readouterr()
    assert out == ''


def test_run_not_silent(capsys):
    linkbackup.subprocess.run('echo', 'test', show_output=True)
    out, _ = capsys.readouterr()
    assert out == 'test\n'


def test_run_suppress(capsys):
    linkbackup.subprocess.run('sh', '-c', 'echo "file has vanished: /src/tmp"; echo kept', show_output=True,
                              suppress=VANISHING_PATTERN)
    out, _ = capsys.readouterr()
    assert out == 'kept\n'


def test_run_stderr(capsys):
    linkbackup.subprocess.run('sh', '-c', 'echo error >&2', show_output=True)
    out, _ = capsys.readouterr()
    assert out == 'error\n'


@patch('linkbackup.subprocess.psutil.Process')
def test_run_low_priority(mocked_process):
    linkbackup.subprocess.run('true', low_priority=True)
    mocked_process.assert_called_once()
    mocked_process().nice.assert_called_once_with(15)


@patch('linkbackup.subprocess.run')
def test_rsync_success(mocked_run):
    assert linkbackup.subprocess.rsync(('source',), 'target') == 0
    mocked_run.assert_called_once()
    args, kwargs = mocked_run.call_args
    assert args[0] == 'rsync'
    assert args[-2:] == ('source', 'target')
    assert '-aH' in args
    assert '--partial' in args
    assert '--backup' not in args
    assert kwargs.get('low_priority') is True
    assert kwargs.get('suppress') is VANISHING_PATTERN


@patch('linkbackup.subprocess.run')
def test_rsync_incremental(mocked_run):
    linkbackup.subprocess.rsync(('source',), 'target', backup_dir='../incremental')
    args, _ = mocked_run.call_args
    assert '-aH' not in args
    for arg in ('-a', '--backup', '--backup-dir=../incremental', '--delete', '--ignore-errors'):
        assert arg in args


@patch('linkbackup.subprocess.run')
def test_rsync_link_dests(mocked_run):
    linkbackup.subprocess.rsync(('source',), 'target', link_dests=('/backups/tmp/lasttransfer', '/mnt/old'))
    args, _ = mocked_run.call_args
    link_args = [_a for _a in args if _a.startswith('--link-dest=')]
    assert link_args == ['--link-dest=/backups/tmp/lasttransfer', '--link-dest=/mnt/old']


@patch('linkbackup.subprocess.run')
def test_rsync_excludes(mocked_run):
    linkbackup.subprocess.rsync(('source',), 'target', exclude_file='/etc/excludes', exclude=('.cache', 'tmp'))
    args, _ = mocked_run.call_args
    assert '--exclude-from=/etc/excludes' in args
    assert '--exclude=.cache' in args
    assert '--exclude=tmp' in args


@patch('linkbackup.subprocess.run')
def test_rsync_checksum(mocked_run):
    linkbackup.subprocess.rsync(('source',), 'target', checksum=True, one_file_system=True)
    args, _ = mocked_run.call_args
    assert '--checksum' in args
    assert '--one-file-system' in args


@patch('linkbackup.subprocess.run')
def test_rsync_dry_run(mocked_run, capsys):
    linkbackup.subprocess.rsync(('source',), 'target', dry_run=True)
    args, kwargs = mocked_run.call_args
    assert '--dry-run' in args
    assert kwargs.get('show_output') is True
    out, _ = capsys.readouterr()
    assert 'no changes were made' in out


@patch('linkbackup.subprocess.run')
def test_rsync_remote(mocked_run):
    linkbackup.subprocess.rsync(('user@host:/home',), 'target', ssh_port=2222)
    args, _ = mocked_run.call_args
    assert '--compress' in args
    rsh = [_a for _a in args if _a.startswith('--rsh=')]
    assert len(rsh) == 1 and '-p 2222' in rsh[0]


@patch('linkbackup.subprocess.run')
def test_rsync_local_no_compression(mocked_run):
    linkbackup.subprocess.rsync(('/home',), 'target')
    args, _ = mocked_run.call_args
    assert '--compress' not in args


@patch('linkbackup.subprocess.run')
def test_rsync_binary(mocked_run):
    linkbackup.subprocess.rsync(('source',), 'target', binary='/opt/rsync/bin/rsync')
    args, _ = mocked_run.call_args
    assert args[0] == '/opt/rsync/bin/rsync'


@patch('linkbackup.subprocess.run', side_effect=subprocess.CalledProcessError(23, 'rsync'))
def test_rsync_exit_status(mocked_run):
    assert linkbackup.subprocess.rsync(('source',), 'target') == 23
    mocked_run.assert_called_once()


@patch('linkbackup.subprocess.run', side_effect=subprocess.CalledProcessError(-2, 'rsync'))
def test_rsync_killed_by_signal(_):
    assert linkbackup.subprocess.rsync(('source',), 'target') == 130


@patch('linkbackup.subprocess.run', side_effect=KeyboardInterrupt())
def test_rsync_keyboard_interrupt(_):
    assert linkbackup.subprocess.rsync(('source',), 'target') == 130


@patch('linkbackup.subprocess.run', side_effect=CommandNotFoundError('rsync'))
def test_rsync_not_found(_):
    with pytest.raises(CommandNotFoundError):
        linkbackup.subprocess.rsync(('source',), 'target')


def test_copy_hardlinks(tmpdir):
    source = os.path.join(tmpdir, 'source')
    os.makedirs(os.path.join(source, 'dir'))
    with open(os.path.join(source, 'dir', 'file'), 'w') as f:
        f.write('content')
    target = os.path.join(tmpdir, 'target')
    linkbackup.subprocess.copy_hardlinks(source, target)
    assert os.stat(os.path.join(target, 'dir', 'file')).st_ino == os.stat(os.path.join(source, 'dir', 'file')).st_ino


@patch('os.sync')
def test_sync_filesystem(mocked_sync):
    linkbackup.subprocess.sync_filesystem()
    mocked_sync.assert_called_once()
