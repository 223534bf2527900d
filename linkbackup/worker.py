import logging
import os

from .exceptions import ClockSkewError, ExcludeFileNotFoundError, PromotionError, SyncFailedError, \
    SyncRetryableError, TargetExistsError
from .outcome import RunOutcome, classify
from .snapshots import SnapshotKind, build_link_plan
from .subprocess import rsync, sync_filesystem
from .timestamps import from_mtime, get_timestamp
from .volume import BackupVolume, backup_dir

logger = logging.getLogger(__name__)


class Worker(object):
    """a worker provides the basic functionality regarding backups (make, list, clean).
    the worker delegates low-level file system interaction to :class:`linkbackup.volume.BackupVolume`.

    a backup run goes through these states: name the new snapshot and find the last one, build the link plan,
    stage, run rsync once, classify its exit status, then either promote the staged dir (and degrade the previous
    full snapshot in reverse incremental mode) or retain/purge the staging dir.
    """

    config = None
    """:class:`linkbackup.config.Config` of this job"""

    volume: BackupVolume
    """instance of :class:`linkbackup.volume.BackupVolume`"""

    def __init__(self, config):
        """

        :param Config config:
        """
        self.config = config
        self.volume = BackupVolume(config.backups, config.naming)

    def __repr__(self):
        return f'Worker(path={self.volume.path}, incremental={self.config.incremental})'

    def setup(self):
        """

        :return: None
        """
        self.volume.setup()

    def get_snapshots(self):
        """

        :return: snapshots in this volume, sorted by name
        :rtype: [linkbackup.snapshots.Snapshot]
        """
        return self.volume.get_snapshots()

    def get_staging_dirs(self):
        return self.volume.get_staging_dirs()

    def _new_snapshot_name(self):
        """name of the new snapshot, must sort after all existing snapshots.

        :raise TargetExistsError: when new name exists already
        :raise ClockSkewError: when an existing snapshot is not older than the new one
        :return str:
        """
        naming = self.config.naming
        name = naming.snapshot_name(get_timestamp())
        if self.volume.exists(name):
            raise TargetExistsError(self.volume.join(name))
        snapshots = self.volume.get_snapshots()
        if snapshots:
            latest = max(snapshots, key=lambda _s: _s.timestamp)
            if latest.timestamp >= naming.timestamp(name):
                raise ClockSkewError(name, latest.name)
        return name

    def _check_preconditions(self, dry_run=False):
        """all checks which must pass before anything on disk is changed.

        :param bool dry_run: a dry run writes nothing, the backup dir only has to exist
        :return tuple: new snapshot name, last full snapshot, name of the reverse incremental snapshot
        """
        config = self.config
        self.volume.assure_legal()
        if dry_run:
            self.volume.assure_path()
        else:
            self.volume.assure_writable()
        if config.exclude_file and not os.path.isfile(config.exclude_file):
            raise ExcludeFileNotFoundError(config.exclude_file)
        last = self.volume.find_last_snapshot(strict=config.incremental)
        name = self._new_snapshot_name()
        incremental_name = None
        if config.incremental and last:
            incremental_name = config.naming.incremental_name(last.name)
            if self.volume.exists(incremental_name):
                raise TargetExistsError(self.volume.join(incremental_name))
        return name, last, incremental_name

    def _rsync(self, target, link_plan, checksum, dry_run, progress):
        config = self.config
        return rsync(config.sources, target, link_dests=link_plan,
                     backup_dir=backup_dir if config.incremental else None, exclude_file=config.exclude_file,
                     exclude=config.ignore, checksum=checksum or config.checksum,
                     one_file_system=config.one_file_system, ssh_account=config.ssh_account,
                     ssh_port=config.ssh_port, ssh_identity=config.ssh_identity, binary=config.rsync,
                     progress=progress, dry_run=dry_run)

    def make_backup(self, checksum=False, dry_run=False, progress=False):
        """make a backup of the configured sources.

        :param bool checksum:
        :param bool dry_run: run rsync with `--dry-run`, nothing on disk is changed
        :param bool progress:
        :raise PreconditionError: see :func:`_check_preconditions`
        :raise SyncRetryableError: when rsync was interrupted or transfer is incomplete, staging dir is retained
        :raise SyncFailedError: when rsync failed, staging dir is purged
        :raise PromotionError: when the staged dir could not be renamed to its final name
        :return str: name of the new snapshot, `None` on dry run
        """
        logger.info(f'make backup, sources={self.config.sources}, checksum={checksum}, dry_run={dry_run}, '
                    f'progress={progress}, {self}')
        name, last, incremental_name = self._check_preconditions(dry_run)
        logger.info(f'new snapshot `{name}`, last snapshot `{last.name if last else None}`')

        if dry_run:
            link_plan = build_link_plan(last.path if last else None, self.config.link_dests)
            status = self._rsync(self.volume.join(name), link_plan, checksum, True, progress)
            logger.info(f'dry run finished, rsync exit status {status} ({classify(status).value})')
            return None

        with self.volume.staging() as staging:
            previous = None
            complete = True
            if last:
                previous = staging.link_previous(last)
                if self.config.incremental:
                    complete = staging.clone(last)
            link_plan = build_link_plan(previous, self.config.link_dests)
            status = self._rsync(staging.full_path, link_plan, checksum, False, progress)
            outcome = classify(status)
            logger.info(f'rsync exit status {status} ({outcome.value})')
            if outcome == RunOutcome.RETRYABLE:
                staging.retain()
                raise SyncRetryableError(staging.path, status)
            if outcome == RunOutcome.FATAL:
                staging.purge()
                raise SyncFailedError(staging.full_path, status)
            if outcome == RunOutcome.BENIGN_PARTIAL:
                logger.warning(f'rsync finished with tolerable error {status}, '
                               f'{SyncFailedError.rsync_errors.get(status)}')
            self._promote(staging, name, last if self.config.incremental else None, incremental_name, complete)
        return name

    def _promote(self, staging, name, previous, incremental_name, complete=True):
        """make the staged dir the new snapshot.

        :param StagingArea staging:
        :param str name: new snapshot name
        :param Snapshot previous: full snapshot to degrade, `None` if not in reverse incremental mode
        :param str incremental_name: name of the reverse incremental snapshot replacing `previous`
        :param bool complete: if the working copy started as a complete clone of `previous`
        :raise PromotionError: when staged dir cannot be renamed or the current pointer cannot be updated, staging dir
            is retained
        :return: None
        """
        sync_filesystem()
        try:
            self.volume.rename(staging.full_path, name)
            self.volume.update_current(name)
        except PromotionError:
            staging.retain()
            raise
        if previous:
            self._degrade(staging, previous, incremental_name, complete)
        try:
            staging.finish()
        except OSError as e:
            logger.warning(f'failed to remove staging dir `{staging.path}`: {e}')
        sync_filesystem()

    def _degrade(self, staging, previous, incremental_name, complete=True):
        """replace the previous full snapshot by the differences captured during this run.

        :param StagingArea staging:
        :param Snapshot previous:
        :param str incremental_name:
        :param bool complete: without a complete clone rsync cannot capture all differences, `previous` is kept
        :return bool: if the previous full snapshot has been removed
        """
        if not complete:
            logger.warning(f'working copy was not a complete clone, `{incremental_name}` would miss files, keeping '
                           f'`{previous.path}`')
            staging.purge()
            return False
        if os.path.isdir(staging.incremental_path):
            try:
                self.volume.rename(staging.incremental_path, incremental_name)
            except PromotionError as e:
                logger.warning(f'{e}, keeping `{previous.path}`')
                staging.retain()
                return False
        obsolete = [_s for _s in self.volume.get_snapshots()
                    if _s.kind == SnapshotKind.REVERSE_INCREMENTAL and _s.timestamp < previous.timestamp]
        if not os.access(previous.path, os.W_OK):
            logger.warning(f'cannot purge left over dir `{previous.path}`, not writable')
            return False
        for snapshot in [previous, *obsolete]:
            try:
                self.volume.delete(snapshot.name)
            except OSError as e:
                logger.warning(f'failed to purge left over dir `{snapshot.path}`: {e}')
        return True

    def clean_staging(self, prompt):
        """delete staging dirs retained by earlier runs which are older than the `clean_after` threshold.

        :param callable prompt: will be called for each deletion, must return `True` to authenticate.
        :return: None
        """
        logger.info(f'clean staging dirs before {self.config.clean_before}, {self}')
        self.volume.assure_writable()
        for path in self.volume.get_staging_dirs():
            if self.config.clean_before and from_mtime(os.stat(path).st_mtime) >= self.config.clean_before:
                logger.debug(f'keep recent staging dir `{path}`')
                continue
            if prompt(path):
                self.volume.delete(os.path.basename(path))
