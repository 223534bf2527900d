from enum import Enum


class RunOutcome(Enum):
    """classification of one rsync run."""

    SUCCESS = 'success'
    BENIGN_PARTIAL = 'benign partial'
    RETRYABLE = 'retryable'
    FATAL = 'fatal'

    @property
    def promote(self):
        """if the staged transfer may become a snapshot."""
        return self in (RunOutcome.SUCCESS, RunOutcome.BENIGN_PARTIAL)


RSYNC_SUCCESS = 0
RSYNC_INTERRUPTED = 20
RSYNC_PARTIAL = 23
RSYNC_VANISHED = 24
RSYNC_MAX_DELETE = 25
CHILD_INTERRUPTED = 130

_outcomes = {
    RSYNC_SUCCESS: RunOutcome.SUCCESS,
    RSYNC_VANISHED: RunOutcome.BENIGN_PARTIAL,
    RSYNC_MAX_DELETE: RunOutcome.BENIGN_PARTIAL,
    RSYNC_PARTIAL: RunOutcome.RETRYABLE,     # also ENOSPC
    RSYNC_INTERRUPTED: RunOutcome.RETRYABLE,
    CHILD_INTERRUPTED: RunOutcome.RETRYABLE,
}


def classify(exit_status):
    """map rsync's exit status to a :class:`RunOutcome`. only this decides what is safe to promote.

    :param int exit_status:
    :return RunOutcome:

    >>> from linkbackup.outcome import classify
    >>> classify(0)
    <RunOutcome.SUCCESS: 'success'>
    >>> classify(24), classify(25)
    (<RunOutcome.BENIGN_PARTIAL: 'benign partial'>, <RunOutcome.BENIGN_PARTIAL: 'benign partial'>)
    >>> classify(23), classify(20), classify(130)
    (<RunOutcome.RETRYABLE: 'retryable'>, <RunOutcome.RETRYABLE: 'retryable'>, <RunOutcome.RETRYABLE: 'retryable'>)
    >>> classify(12)
    <RunOutcome.FATAL: 'fatal'>
    >>> classify(-9)
    <RunOutcome.FATAL: 'fatal'>
    """
    return _outcomes.get(exit_status, RunOutcome.FATAL)
