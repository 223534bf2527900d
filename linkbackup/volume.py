import logging
import os
import shutil
import subprocess
import tempfile

from .exceptions import AmbiguousSnapshotError, BackupDirError, BackupDirNotFoundError, CommandNotFoundError, \
    PromotionError, StagingError, TimestampParseError
from .snapshots import Snapshot, SnapshotKind
from .subprocess import copy_hardlinks

logger = logging.getLogger(__name__)

_staging_prefix = 'linkbackup_tmp'
_full_dir = 'full'
_incremental_dir = 'incremental'
_last_link = 'lasttransfer'
_illegal_character = ':'

backup_dir = os.path.join(os.pardir, _incremental_dir)
"""rsync `--backup-dir` relative to the staged full dir"""


class BackupVolume(object):
    """a backup volume is the destination root, it contains all snapshots, the current pointer and staging dirs.
    snapshots share unchanged files via hard links, so the filesystem must support multiple hard links per inode.
    """

    path: str
    """absolute path to this volume"""

    naming = None
    """:class:`linkbackup.snapshots.Naming` of snapshots in this volume"""

    def __init__(self, path, naming):
        """

        :param str path:
        :param Naming naming:
        """
        self.path = os.path.abspath(path)
        self.naming = naming

    def __repr__(self):
        return f'BackupVolume(path={self.path}, naming={self.naming})'

    def _path_join(self, path):
        """resolve `path` against this volume, the result must stay inside it.

        :param str path: entry name or absolute path
        :raise RuntimeError: when `path` escapes this volume
        :return str: absolute path

        >>> from linkbackup.snapshots import Naming
        >>> from linkbackup.volume import BackupVolume
        >>> vol = BackupVolume('/backups/home', Naming())
        >>> vol._path_join('bak-current')
        '/backups/home/bak-current'
        >>> vol._path_join('/backups/home/linkbackup_tmpabcd/full')
        '/backups/home/linkbackup_tmpabcd/full'
        >>> vol._path_join('/backups/work')
        Traceback (most recent call last):
        RuntimeError: ...
        >>> vol._path_join('../work')
        Traceback (most recent call last):
        RuntimeError: ...
        """
        resolved = os.path.normpath(os.path.join(self.path, path))
        if os.path.commonpath((self.path, resolved)) != self.path:
            raise RuntimeError(f'`{path}` is outside of backup dir {self.path}')
        return resolved

    def join(self, name):
        """absolute path of entry `name` in this volume."""
        return self._path_join(name)

    def exists(self, name):
        """check if entry `name` exists in this volume, dangling symlinks included.

        :param str name:
        :return bool:
        """
        return os.path.lexists(self._path_join(name))

    def assure_path(self):
        """the backup dir must exist and be a directory.

        :raise BackupDirNotFoundError: missing, f.e. not mounted
        :raise BackupDirError: exists but is no directory
        :return: None
        """
        if not os.path.exists(self.path):
            raise BackupDirNotFoundError(self.path)
        if not os.path.isdir(self.path):
            raise BackupDirError(f'backup dir is not a directory: {self.path}', self.path)

    def assure_writable(self):
        """like :func:`assure_path`, additionally the backup dir must be writable.

        :raise BackupDirError: no write permission
        :return: None
        """
        self.assure_path()
        if not os.access(self.path, os.W_OK):
            raise BackupDirError(f'backup dir is not writable: {self.path}', self.path)

    def assure_legal(self):
        """refuse destinations which hint at a misconfiguration or confuse rsync.

        :raise BackupDirError: when this volume is the filesystem root or its path contains `:`
        :return: None

        >>> from linkbackup.snapshots import Naming
        >>> from linkbackup.volume import BackupVolume
        >>> BackupVolume('/', Naming()).assure_legal()
        Traceback (most recent call last):
        linkbackup.exceptions.BackupDirError: refusing to backup in /...
        >>> BackupVolume('/mnt/host:backups', Naming()).assure_legal()
        Traceback (most recent call last):
        linkbackup.exceptions.BackupDirError: ... contains invalid special (rsync) character `:`
        """
        if os.path.realpath(self.path) == os.path.realpath(os.sep):
            raise BackupDirError(f'refusing to backup in {os.sep}, is `backups` configured?', self.path)
        if _illegal_character in self.path:
            raise BackupDirError(f'{self.path} contains invalid special (rsync) character `{_illegal_character}`',
                                 self.path)

    def setup(self):
        """`mkdir -p` the backup dir.

        :return: None
        """
        os.makedirs(self.path, exist_ok=True)

    def get_snapshots(self):
        """list all full and reverse incremental snapshots in this volume, sorted by name.

        :return: snapshots in this volume
        :rtype: [linkbackup.snapshots.Snapshot]
        """
        self.assure_path()
        current = self.get_current()
        dirs = []
        for _root, _dirs, _files in os.walk(self.path):
            dirs = [_dir for _dir in _dirs
                    if self.naming.kind(_dir) and not os.path.islink(self._path_join(_dir))]
            break
        snapshots = []
        for _dir in sorted(dirs):
            try:
                snapshots.append(Snapshot(_dir, self.path, self.naming,
                                          is_current=current is not None and current.name == _dir))
            except TimestampParseError as e:
                logger.warning(f'ignore `{_dir}`, invalid timestamp: {e}')
        return snapshots

    def get_current(self):
        """resolve the current pointer.

        :return Snapshot: full snapshot the pointer refers to, `None` if missing or not pointing to a full snapshot
        """
        link = self._path_join(self.naming.current)
        if not os.path.islink(link):
            return None
        target = os.path.normpath(os.path.join(self.path, os.readlink(link)))
        name = os.path.basename(target)
        if os.path.dirname(target) != self.path or self.naming.kind(name) != SnapshotKind.FULL \
                or not os.path.isdir(target):
            logger.warning(f'ignore invalid pointer `{link}` -> `{os.readlink(link)}`')
            return None
        try:
            return Snapshot(name, self.path, self.naming, is_current=True)
        except TimestampParseError as e:
            logger.warning(f'ignore pointer `{link}` to `{name}`, invalid timestamp: {e}')
            return None

    def find_last_snapshot(self, strict=False):
        """find the latest full snapshot: ask the current pointer first, scan this volume if that fails.

        :param bool strict: if `True` the scan must not find more than one full snapshot
        :raise AmbiguousSnapshotError: `strict` and several full snapshots w/o a valid pointer
        :return Snapshot: or `None` for the very first backup
        """
        current = self.get_current()
        if current:
            logger.debug(f'last snapshot `{current.name}` from pointer')
            return current
        candidates = [_s for _s in self.get_snapshots() if _s.kind == SnapshotKind.FULL]
        if not candidates:
            return None
        if len(candidates) > 1:
            names = [_s.name for _s in candidates]
            if strict:
                raise AmbiguousSnapshotError(names)
            logger.warning(f'no valid `{self.naming.current}`, choosing `{names[-1]}` from {names}')
        return candidates[-1]

    def update_current(self, name):
        """point the current pointer to `name`. an entry which is not a symlink is never replaced.

        :param str name: snapshot name
        :raise PromotionError: when the pointer could not be replaced
        :return bool: if the pointer has been updated
        """
        link = self._path_join(self.naming.current)
        if os.path.lexists(link) and not os.path.islink(link):
            logger.warning(f'refusing to replace `{link}`, not a symlink')
            return False
        tmp_link = f'{link}.new'
        try:
            if os.path.isdir(tmp_link) and not os.path.islink(tmp_link):
                shutil.rmtree(tmp_link)
            elif os.path.lexists(tmp_link):
                os.remove(tmp_link)
            os.symlink(name, tmp_link)
            os.replace(tmp_link, link)
        except OSError as e:
            raise PromotionError(tmp_link, link, e) from e
        logger.info(f'`{self.naming.current}` -> `{name}`')
        return True

    def rename(self, source, name):
        """move `source` to `name` in this volume.

        :param str source: absolute path
        :param str name:
        :raise PromotionError: when target exists or rename fails
        :return: None
        """
        target = self._path_join(name)
        if os.path.lexists(target):
            raise PromotionError(source, target, 'target exists')
        try:
            os.rename(source, target)
        except OSError as e:
            raise PromotionError(source, target, e) from e
        logger.info(f'renamed `{source}` -> `{target}`')

    def delete(self, name):
        """delete directory tree `name` in this volume.

        :param str name:
        :raise OSError: when tree could not be removed
        :return: None
        """
        path = self._path_join(name)
        if path == self.path:
            raise RuntimeError(f'refusing to delete volume {self.path}')
        logger.info(f'delete `{path}`')
        shutil.rmtree(path)

    def get_staging_dirs(self):
        """list staging dirs in this volume, f.e. retained after an interrupted backup.

        :return: absolute paths
        :rtype: [str]
        """
        self.assure_path()
        return sorted(_entry.path for _entry in os.scandir(self.path)
                      if _entry.name.startswith(_staging_prefix) and _entry.is_dir(follow_symlinks=False))

    def staging(self):
        """create a staging dir.

        :return object: a :class:`linkbackup.volume.StagingArea` context
        """
        return StagingArea(self.path)


class StagingArea(object):
    """uniquely named temporary dir in a backup volume as context manager.

    rsync writes to `full` inside staging, in reverse incremental mode changed or deleted files go to
    `incremental`. leaving the context removes the staging dir unless it was claimed by :func:`retain`,
    :func:`purge` or :func:`finish`, this includes leaving by exception or `SystemExit`.

    :raise StagingError: when the staging dir cannot be created

    >>> import os, tempfile
    >>> from linkbackup.volume import StagingArea
    >>> with tempfile.TemporaryDirectory() as path:
    ...     with StagingArea(path) as staging:
    ...         os.path.isdir(staging.path)
    ...     os.path.exists(staging.path)
    True
    False
    >>> with tempfile.TemporaryDirectory() as path:
    ...     with StagingArea(path) as staging:
    ...         staging.retain()
    ...     os.path.exists(staging.path)
    True
    >>> with tempfile.TemporaryDirectory() as path:
    ...     with StagingArea(os.path.join(path, 'nope')):
    ...         pass
    Traceback (most recent call last):
    linkbackup.exceptions.StagingError: ...
    """

    path: str = None
    """absolute path to the staging dir"""

    full_path: str = None
    """working copy, rsync's destination"""

    incremental_path: str = None
    """changed and deleted files in reverse incremental mode"""

    link_path: str = None
    """symlink to the previous snapshot"""

    claimed: bool = False
    """if a terminal decision took over the staging dir"""

    def __init__(self, base_path):
        """

        :param str base_path: where to create the staging dir, must be on the volume's filesystem
        """
        self._base_path = base_path

    def __enter__(self):
        try:
            self.path = tempfile.mkdtemp(prefix=_staging_prefix, dir=self._base_path)
        except OSError as e:
            raise StagingError(self._base_path, e) from e
        self.full_path = os.path.join(self.path, _full_dir)
        self.incremental_path = os.path.join(self.path, _incremental_dir)
        self.link_path = os.path.join(self.path, _last_link)
        logger.debug(f'created staging dir `{self.path}`')
        return self

    def __exit__(self, exc_type, exc_value, exc_traceback):
        if not self.claimed:
            logger.debug(f'release staging dir `{self.path}` after `{exc_type}`')
            self._remove()

    def _remove(self):
        self.claimed = True
        try:
            shutil.rmtree(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f'failed to remove staging dir `{self.path}`: {e}')

    def link_previous(self, snapshot):
        """symlink `snapshot` into staging, its path is free of `:` unlike snapshot names.

        :param Snapshot snapshot:
        :return str: absolute path of the symlink
        """
        os.symlink(os.path.join(os.pardir, snapshot.name), self.link_path)
        return self.link_path

    def clone(self, snapshot):
        """hard link clone of `snapshot` as working copy. failure is not fatal, rsync transfers what is missing.

        :param Snapshot snapshot:
        :return bool: if the clone is complete
        """
        try:
            copy_hardlinks(snapshot.path, self.full_path)
            return True
        except (subprocess.CalledProcessError, CommandNotFoundError) as e:
            logger.warning(f'failed to fully clone backup dir: `{snapshot.path}` -> `{self.full_path}` ({e})')
            return False

    def retain(self):
        """keep staging dir for inspection by the operator."""
        self.claimed = True
        logger.warning(f'retaining temporaries: {self.path}')

    def purge(self):
        """delete staging dir with all its contents."""
        logger.info(f'purging temporaries: {self.path}')
        self._remove()

    def finish(self):
        """remove the emptied staging dir after promotion, no-op when already claimed.

        :raise OSError: when staging dir is not empty
        """
        if self.claimed:
            return
        self.claimed = True
        if os.path.islink(self.link_path):
            os.remove(self.link_path)
        os.rmdir(self.path)
