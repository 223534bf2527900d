import os
import re
from datetime import datetime
from enum import Enum

from .timestamps import format_timestamp, get_human_readable_timedelta, get_timestamp, parse_timestamp, \
    timestamp_pattern


class SnapshotKind(Enum):
    """representation of a backup generation on disk."""

    FULL = 'full'
    """complete file tree, sharing unchanged files with other generations via hard links"""

    REVERSE_INCREMENTAL = 'rinc'
    """only the files which differ between this generation and the next full snapshot"""


class Naming(object):
    """computes and recognizes snapshot directory names.

    names are `<prefix><timestamp><suffix>`, the timestamp is sortable so string order equals chronological order.

    >>> from datetime import datetime
    >>> from linkbackup.snapshots import Naming
    >>> naming = Naming('bak-')
    >>> naming.current
    'bak-current'
    >>> naming.snapshot_name(datetime(2024, 1, 1))
    'bak-2024-01-01-00:00:00-snap'
    >>> naming.incremental_name('bak-2024-01-01-00:00:00-snap')
    'bak-2024-01-01-00:00:00-rinc'
    >>> naming.kind('bak-2024-01-01-00:00:00-rinc')
    <SnapshotKind.REVERSE_INCREMENTAL: 'rinc'>
    >>> naming.kind('bak-current') is None
    True
    """

    prefix: str
    """prefix of full snapshot names"""

    suffix: str
    """suffix of full snapshot names"""

    incremental_prefix: str
    """prefix of reverse incremental snapshot names"""

    incremental_suffix: str
    """suffix of reverse incremental snapshot names"""

    def __init__(self, prefix='bak-', suffix='-snap', incremental_prefix=None, incremental_suffix='-rinc'):
        """

        :param str prefix:
        :param str suffix:
        :param str incremental_prefix: defaults to `prefix`
        :param str incremental_suffix:
        :raise ValueError: when full and reverse incremental names cannot be told apart
        """
        self.prefix = prefix
        self.suffix = suffix
        self.incremental_prefix = prefix if incremental_prefix is None else incremental_prefix
        self.incremental_suffix = incremental_suffix
        if (self.prefix, self.suffix) == (self.incremental_prefix, self.incremental_suffix):
            raise ValueError(f'full and incremental snapshots share prefix `{prefix}` and suffix `{suffix}`')
        self._patterns = {
            SnapshotKind.FULL: self._compile(self.prefix, self.suffix),
            SnapshotKind.REVERSE_INCREMENTAL: self._compile(self.incremental_prefix, self.incremental_suffix),
        }

    def __repr__(self):
        return f'Naming(prefix={self.prefix}, suffix={self.suffix}, incremental_prefix={self.incremental_prefix}, ' \
               f'incremental_suffix={self.incremental_suffix})'

    @staticmethod
    def _compile(prefix, suffix):
        return re.compile(f'^{re.escape(prefix)}(?P<timestamp>{timestamp_pattern}){re.escape(suffix)}$')

    @property
    def current(self):
        """name of the symlink pointing to the latest full snapshot."""
        return f'{self.prefix}current'

    def snapshot_name(self, timestamp):
        """name of a full snapshot made at `timestamp`.

        :param datetime.datetime timestamp:
        :return str:
        """
        return f'{self.prefix}{format_timestamp(timestamp)}{self.suffix}'

    def incremental_name(self, name):
        """name of the reverse incremental snapshot replacing the full snapshot `name`.

        :param str name: name of a full snapshot
        :return str:
        :raise ValueError: when `name` is no full snapshot name
        """
        match = self._patterns[SnapshotKind.FULL].match(name)
        if not match:
            raise ValueError(f'not a full snapshot name `{name}`')
        return f'{self.incremental_prefix}{match.group("timestamp")}{self.incremental_suffix}'

    def kind(self, name):
        """

        :param str name:
        :return SnapshotKind: or `None` if `name` is no snapshot name
        """
        for kind, pattern in self._patterns.items():
            if pattern.match(name):
                return kind
        return None

    def timestamp(self, name):
        """extract the embedded timestamp string from a snapshot name.

        :param str name:
        :return str: or `None` if `name` is no snapshot name
        """
        for pattern in self._patterns.values():
            match = pattern.match(name)
            if match:
                return match.group('timestamp')
        return None


class Snapshot(object):
    """a finished backup generation in a backup dir.

    >>> from linkbackup.snapshots import Naming, Snapshot, SnapshotKind
    >>> snapshot = Snapshot('bak-1989-11-09-18:53:00-snap', '/backups', Naming())
    >>> snapshot.kind
    <SnapshotKind.FULL: 'full'>
    >>> snapshot.path
    '/backups/bak-1989-11-09-18:53:00-snap'
    >>> snapshot.datetime.year
    1989
    """

    name: str
    """directory name, contains the creation timestamp"""

    path: str
    """full path to this snapshot"""

    kind: SnapshotKind
    """full or reverse incremental"""

    timestamp: str
    """timestamp string embedded in `name`"""

    datetime: datetime
    """when this snapshot was made"""

    is_current: bool
    """if the current pointer resolves to this snapshot"""

    def __init__(self, name, base_path, naming, is_current=False):
        """

        :param str name:
        :param str base_path: backup dir this snapshot lives in
        :param Naming naming:
        :param bool is_current:
        :raise ValueError: when `name` is no snapshot name
        """
        self.kind = naming.kind(name)
        if self.kind is None:
            raise ValueError(f'not a snapshot name `{name}`')
        self.name = name
        self.path = os.path.join(base_path, name)
        self.timestamp = naming.timestamp(name)
        self.datetime = parse_timestamp(self.timestamp)
        self.is_current = is_current

    def __repr__(self):
        return f'Snapshot(name={self.name}, kind={self.kind.value}, is_current={self.is_current})'

    def __str__(self):
        """human readable string representation for this snapshot.

        >>> from linkbackup.snapshots import Naming, Snapshot
        >>> str(Snapshot('bak-1989-11-09-18:53:00-rinc', '/backups', Naming()))
        'bak-1989-11-09-18:53:00-rinc (rinc, ... ago)'
        """
        ago = get_human_readable_timedelta(get_timestamp() - self.datetime)
        return f'{self.name} ({self.kind.value}, {ago} ago)'


def build_link_plan(previous=None, references=()):
    """ordered hard link sources for rsync's `--link-dest`, highest priority first.

    the previous snapshot comes first, operator supplied reference trees are appended. all paths are made absolute
    since rsync resolves relative `--link-dest` paths against the destination dir.

    :param str previous: path to (a link to) the previous full snapshot or `None`
    :param references: further directories to hard link unchanged files from
    :type references: tuple of str
    :return tuple:

    >>> from linkbackup.snapshots import build_link_plan
    >>> build_link_plan()
    ()
    >>> build_link_plan('/backups/tmp/lasttransfer', ('/mnt/old', '/mnt/older', '/mnt/old'))
    ('/backups/tmp/lasttransfer', '/mnt/old', '/mnt/older')
    >>> build_link_plan(None, ('/mnt/old',))
    ('/mnt/old',)
    """
    plan = []
    for path in (previous, *references):
        if not path:
            continue
        path = os.path.abspath(path)
        if path not in plan:
            plan.append(path)
    return tuple(plan)
