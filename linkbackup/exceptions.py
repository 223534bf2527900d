class Error(Exception):
    """Base class for `linkbackup` exceptions."""

    exit_code: int = 1
    """process exit code reported by the cli for this kind of error"""

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def __str__(self):
        return self.message


class ConfigFileNotFound(Error):
    """no configuration file found.

    >>> from linkbackup.exceptions import ConfigFileNotFound
    >>> raise ConfigFileNotFound('/path/to/linkbackup.ini')
    Traceback (most recent call last):
    linkbackup.exceptions.ConfigFileNotFound: ...
    """
    path: str

    def __init__(self, path):
        super().__init__(f'config file not found `{path}`')
        self.path = path


class TimestampParseError(Error):
    """a snapshot timestamp or `clean_after` could not be parsed.

    >>> from linkbackup.exceptions import TimestampParseError
    >>> raise TimestampParseError('could not parse `someday`')
    Traceback (most recent call last):
    linkbackup.exceptions.TimestampParseError: ...
    """
    error: Exception

    def __init__(self, message, error=None):
        """

        :param str message:
        :param Exception error: underlying parser error, if any
        """
        super().__init__(message)
        self.error = error


class BackupDirError(Error):
    """the backup dir cannot be used, see message.

    >>> from linkbackup.exceptions import BackupDirError
    >>> raise BackupDirError('refusing to backup in /', '/')
    Traceback (most recent call last):
    linkbackup.exceptions.BackupDirError: ...
    """
    exit_code = 2
    path: str

    def __init__(self, message, path):
        super().__init__(message)
        self.path = path


class BackupDirNotFoundError(BackupDirError):
    """backup dir does not exist.

    >>> from linkbackup.exceptions import BackupDirNotFoundError
    >>> raise BackupDirNotFoundError('/mnt/usb/backups')
    Traceback (most recent call last):
    linkbackup.exceptions.BackupDirNotFoundError: ...
    """
    def __init__(self, path):
        super().__init__(f'backup dir not found: {path}', path)


class PreconditionError(Error):
    """a check before the transfer failed, nothing on disk has been changed."""
    exit_code = 3


class TargetExistsError(PreconditionError):
    """target snapshot dir exists already.

    >>> from linkbackup.exceptions import TargetExistsError
    >>> raise TargetExistsError('/backups/bak-1989-11-09-00:00:00-snap')
    Traceback (most recent call last):
    linkbackup.exceptions.TargetExistsError: ...
    """
    path: str

    def __init__(self, path):
        super().__init__(f'target backup dir exists already `{path}`')
        self.path = path


class ClockSkewError(PreconditionError):
    """new snapshot would not sort after the latest existing one."""
    name: str
    latest: str

    def __init__(self, name, latest):
        super().__init__(f'new snapshot `{name}` does not sort after existing `{latest}`, check system clock')
        self.name = name
        self.latest = latest


class ExcludeFileNotFoundError(PreconditionError):
    """configured exclude file is missing."""
    path: str

    def __init__(self, path):
        super().__init__(f'missing exclude file `{path}`')
        self.path = path


class AmbiguousSnapshotError(PreconditionError):
    """no valid current pointer and more than one full snapshot to choose from.

    >>> from linkbackup.exceptions import AmbiguousSnapshotError
    >>> e = AmbiguousSnapshotError(['bak-a-snap', 'bak-b-snap'])
    >>> e.candidates
    ('bak-a-snap', 'bak-b-snap')
    """
    candidates: tuple

    def __init__(self, candidates):
        self.candidates = tuple(candidates)
        super().__init__(f'cannot decide on last snapshot, candidates: {", ".join(self.candidates)}')


class CommandNotFoundError(Error):
    """an external command (`rsync`, `cp`) is not installed.

    >>> from linkbackup.exceptions import CommandNotFoundError
    >>> raise CommandNotFoundError('rsync')
    Traceback (most recent call last):
    linkbackup.exceptions.CommandNotFoundError: ...
    """
    exit_code = 4
    command: str

    def __init__(self, command):
        super().__init__(f'command not found: {command}')
        self.command = command


class StagingError(Error):
    """staging directory could not be created."""
    exit_code = 5
    path: str

    def __init__(self, path, error=None):
        super().__init__(f'failed to create staging dir in `{path}`: {error}')
        self.path = path
        self.error = error


class SyncFailedError(Error):
    """sync failed, staging dir has been purged.

    >>> from linkbackup.exceptions import SyncFailedError
    >>> e = SyncFailedError('/backups/linkbackup_tmpabcd/full', 12)
    >>> e.error_message
    'Error in rsync protocol data stream'
    >>> e.exit_code
    6
    >>> raise SyncFailedError('/backups/linkbackup_tmpabcd/full', 42)
    Traceback (most recent call last):
    linkbackup.exceptions.SyncFailedError: ...
    """
    exit_code = 6
    target: str
    errno: int
    rsync_errors = {
        1: 'Syntax or usage error',
        2: 'Protocol incompatibility',
        3: 'Errors selecting input/output files, dirs',
        4: 'Requested action not supported: an attempt was made to manipulate 64-bit files on a platform that cannot '
           'support them; or an option was specified that is supported by the client and not by the server.',
        5: 'Error starting client-server protocol',
        6: 'Daemon unable to append to log-file',
        10: 'Error in socket I/O',
        11: 'Error in file I/O, maybe disk full',
        12: 'Error in rsync protocol data stream',
        13: 'Errors with program diagnostics',
        14: 'Error in IPC code',
        20: 'Received SIGUSR1 or SIGINT',
        21: 'Some error returned by waitpid()',
        22: 'Error allocating core memory buffers',
        23: 'Partial transfer due to error',
        24: 'Partial transfer due to vanished source files',
        25: 'The --max-delete limit stopped deletions',
        30: 'Timeout in data send/receive',
        35: 'Timeout waiting for daemon connection',
        130: 'Interrupted',
    }

    def __init__(self, target, errno):
        self.target = target
        self.errno = errno
        self.error_message = self.rsync_errors.get(errno)
        super().__init__(self._describe())

    def _describe(self):
        return f'Sync failed: `{self.target}`, rsync error {self.errno}, {self.error_message}, purged temporaries'


class SyncRetryableError(SyncFailedError):
    """sync interrupted or incomplete, staging dir has been retained for inspection.

    >>> from linkbackup.exceptions import SyncRetryableError
    >>> e = SyncRetryableError('/backups/linkbackup_tmpabc', 23)
    >>> e.exit_code
    7
    >>> str(e)
    'Incomplete backup (rsync error 23, Partial transfer due to error), retaining temporaries: /backups/linkbackup_tmpabc'
    """
    exit_code = 7

    def _describe(self):
        return f'Incomplete backup (rsync error {self.errno}, {self.error_message}), retaining temporaries: ' \
               f'{self.target}'


class PromotionError(Error):
    """rename of a staged dir or of the current pointer into its permanent name failed, on-disk state needs manual
    inspection."""
    exit_code = 8
    source: str
    target: str

    def __init__(self, source, target, error=None):
        super().__init__(f'failed to move `{source}` -> `{target}` ({error})')
        self.source = source
        self.target = target
        self.error = error
