import dateparser
import humanfriendly
from datetime import datetime
from dateutil import tz

from .exceptions import TimestampParseError


timestamp_format = '%Y-%m-%d-%H:%M:%S'
"""format of the UTC timestamp embedded in snapshot names, string order equals chronological order"""

timestamp_pattern = r'\d{4}-\d{2}-\d{2}-\d{2}:\d{2}:\d{2}'
"""regular expression matching :data:`timestamp_format`"""


def get_timestamp():
    """returns a timezone aware `datetime` object for `now` in UTC, without microseconds.

    names are made in UTC, local wall clock time repeats an hour when daylight saving time ends.

    :return datetime:

    >>> from linkbackup.timestamps import get_timestamp
    >>> get_timestamp()
    datetime.datetime(...)
    >>> get_timestamp().microsecond, get_timestamp().utcoffset()
    (0, datetime.timedelta(0))
    """
    return datetime.now(tz.UTC).replace(microsecond=0)


def format_timestamp(timestamp):
    """aware timestamps are converted to UTC, naive ones are taken as they are.

    >>> from datetime import datetime
    >>> from linkbackup.timestamps import format_timestamp
    >>> format_timestamp(datetime(1989, 11, 9, 18, 53))
    '1989-11-09-18:53:00'
    >>> format_timestamp(datetime(1989, 11, 9, 19, 53, tzinfo=tz.gettz('Europe/Berlin')))
    '1989-11-09-18:53:00'
    """
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(tz.UTC)
    return timestamp.strftime(timestamp_format)


def parse_timestamp(string):
    """parse a snapshot timestamp string, return corresponding UTC `datetime` object.

    :param str string: timestamp as formatted by :func:`format_timestamp`
    :return datetime datetime:
    :raise TimestampParseError:

    >>> from linkbackup.timestamps import parse_timestamp
    >>> parse_timestamp('1989-11-09-18:53:00').replace(tzinfo=None)
    datetime.datetime(1989, 11, 9, 18, 53)
    >>> parse_timestamp('some random string')
    Traceback (most recent call last):
    ...
    linkbackup.exceptions.TimestampParseError: ...
    """
    try:
        return datetime.strptime(string, timestamp_format).replace(tzinfo=tz.UTC)
    except ValueError as e:
        raise TimestampParseError(str(e), error=e) from e


def parse_human_readable_relative_dates(string: str) -> datetime:
    """parse human readable relative dates.

    :param str string:
    :return datetime datetime:
    :raise TimestampParseError:

    >>> from linkbackup.timestamps import parse_human_readable_relative_dates
    >>> parse_human_readable_relative_dates('1 day ago')
    datetime.datetime(...)
    >>> parse_human_readable_relative_dates('anytime')
    Traceback (most recent call last):
    ...
    linkbackup.exceptions.TimestampParseError: ...
    """
    date = dateparser.parse(string, settings={'RETURN_AS_TIMEZONE_AWARE': True})
    if date:
        return date
    raise TimestampParseError(f'could not parse `{string}`')


def from_mtime(mtime):
    """timezone aware `datetime` for a `st_mtime` value."""
    return datetime.fromtimestamp(mtime, tz.UTC)


def get_human_readable_timedelta(delta):
    """

    >>> from datetime import timedelta
    >>> from linkbackup.timestamps import get_human_readable_timedelta
    >>> get_human_readable_timedelta(timedelta(days=1, hours=2, minutes=3))
    '1 day and 2 hours'
    """
    return humanfriendly.format_timespan(delta.total_seconds(), max_units=2)
