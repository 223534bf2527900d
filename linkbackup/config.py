import configparser
import csv
import os
from datetime import datetime
from pathlib import Path
from typing import NamedTuple, Optional, Tuple

from xdg_base_dirs import xdg_config_dirs, xdg_config_home

from .exceptions import ConfigFileNotFound
from .snapshots import Naming
from .timestamps import parse_human_readable_relative_dates


_config_filename = 'linkbackup.ini'
_config_basepaths = (xdg_config_home(), *xdg_config_dirs(), Path('/etc'))
_defaults = {
    'prefix': 'bak',
    'snapshot_suffix': '-snap',
    'incremental_suffix': '-rinc',
    'incremental': '',
    'exclude_file': '',
    'ignore': '',
    'link_dest': '',
    'ssh_account': '',
    'ssh_port': '',
    'ssh_identity': '',
    'checksum': '',
    'one_file_system': '',
    'rsync': '',
    'clean_after': '1 week ago',
}


class Config(NamedTuple):
    """immutable configuration of one backup job."""

    sources: Tuple[str, ...]
    backups: str
    naming: Naming
    incremental: bool = False
    exclude_file: Optional[str] = None
    ignore: Tuple[str, ...] = ()
    link_dests: Tuple[str, ...] = ()
    ssh_account: Optional[str] = None
    ssh_port: Optional[int] = None
    ssh_identity: Optional[str] = None
    checksum: bool = False
    one_file_system: bool = False
    rsync: str = 'rsync'
    clean_before: Optional[datetime] = None


def _get_config_file(filepath=None):
    """check if config file exists in fs. if `filepath` is not given search xdg config paths and `/etc` for a file
    named :data:`_config_filename`.

    :param filepath:
    :return Path: path to config file
    :raise linkbackup.exceptions.ConfigFileNotFound: when config file cannot be found
    """
    if filepath:
        if os.path.isfile(filepath):
            return filepath
        raise ConfigFileNotFound(filepath)

    _config_files = [_path / _config_filename for _path in _config_basepaths]
    for _filepath in _config_files:
        if os.path.isfile(_filepath):
            return _filepath
    raise ConfigFileNotFound(', '.join(str(_f) for _f in _config_files))


def _parse_bool(line):
    """parse a string input to boolean.

    :param str line:
    :return bool:

    >>> from linkbackup.config import _parse_bool
    >>> _parse_bool('true') and _parse_bool('True') and _parse_bool('1')
    True
    >>> _parse_bool('') or _parse_bool('0') or _parse_bool('foo')
    False
    """
    return line in ('true', 'True', '1')


def _parse_list(line):
    """get a line of comma seperated values and return items.

    :param str line:
    :return tuple:

    >>> from linkbackup.config import _parse_list
    >>> _parse_list('')
    ()
    >>> _parse_list('item1, item2')
    ('item1', 'item2')
    >>> _parse_list('"double quoted string with , comma"')
    ('double quoted string with , comma',)
    """
    # mimic multiple lines w/ list
    parser = csv.reader([line])
    return tuple(item.strip() for row in parser for item in row if item.strip())


def _parse_path(line):
    """absolute path, relative paths are resolved against the working directory. empty becomes `None`.

    >>> import os
    >>> from linkbackup.config import _parse_path
    >>> _parse_path('') is None
    True
    >>> _parse_path('/etc/excludes')
    '/etc/excludes'
    >>> _parse_path('excludes') == os.path.join(os.getcwd(), 'excludes')
    True
    """
    return os.path.abspath(line) if line else None


def _parse_port(line):
    """

    >>> from linkbackup.config import _parse_port
    >>> _parse_port('2222'), _parse_port('')
    (2222, None)
    """
    return int(line) if line else None


def _get_rsync_binary(line):
    """configured binary, else environment variable `RSYNC_BINARY`, else `rsync`."""
    return line or os.environ.get('RSYNC_BINARY') or 'rsync'


def parse_config(filepath, section):
    """parse ini file and return configuration for given section

    :param str filepath: path to config file, `None` to search default locations
    :param str section: section in ini file to use
    :return Config:
    :raise configparser.NoSectionError: when given `section` is not found
    :raise configparser.NoOptionError: when `source` or `backups` is missing
    :raise ValueError: when `prefix` and suffixes do not distinguish full from reverse incremental snapshots or
        `ssh_port` is not a number
    :raise linkbackup.exceptions.ConfigFileNotFound: when config file cannot be found
    :raise linkbackup.exceptions.TimestampParseError: when `clean_after` cannot be parsed
    """
    config = configparser.ConfigParser(defaults=_defaults, interpolation=None)
    config.read(_get_config_file(filepath))
    if not config.has_section(section):
        raise configparser.NoSectionError(section)
    _section = config[section]
    prefix = f'{_section["prefix"]}-'
    incremental_prefix = f'{_section["incremental_prefix"]}-' if _section.get('incremental_prefix') else prefix
    naming = Naming(prefix=prefix, suffix=_section['snapshot_suffix'], incremental_prefix=incremental_prefix,
                    incremental_suffix=_section['incremental_suffix'])
    return Config(
        sources=_parse_list(config.get(section, 'source')),
        backups=config.get(section, 'backups'),
        naming=naming,
        incremental=_parse_bool(_section['incremental']),
        exclude_file=_parse_path(_section['exclude_file']),
        ignore=_parse_list(_section['ignore']),
        link_dests=tuple(_parse_path(_p) for _p in _parse_list(_section['link_dest'])),
        ssh_account=_section['ssh_account'] or None,
        ssh_port=_parse_port(_section['ssh_port']),
        ssh_identity=_parse_path(_section['ssh_identity']),
        checksum=_parse_bool(_section['checksum']),
        one_file_system=_parse_bool(_section['one_file_system']),
        rsync=_get_rsync_binary(_section['rsync']),
        clean_before=parse_human_readable_relative_dates(_section['clean_after']),
    )
