import configparser
import os

import pytest
from pathlib import Path

from linkbackup.config import _config_basepaths, _config_filename, _get_config_file, parse_config
from linkbackup.exceptions import ConfigFileNotFound, TimestampParseError
from linkbackup.snapshots import SnapshotKind


@pytest.fixture
def patched_basepaths(monkeypatch, tmpdir):
    basepaths = (tmpdir / 'path/1', tmpdir / 'path/2')
    monkeypatch.setattr('linkbackup.config._config_basepaths', basepaths)
    return basepaths


@pytest.fixture
def configfile(tmpdir):
    def _configfile(content):
        path = os.path.join(tmpdir, _config_filename)
        with open(path, 'w') as f:
            f.write(content)
        return path
    return _configfile


def test_basepaths():
    for _p in _config_basepaths:
        assert isinstance(_p, Path)


def test_config_given(tmpdir):
    configfile = tmpdir / _config_filename
    with pytest.raises(ConfigFileNotFound):
        _get_config_file(configfile)
    open(configfile, 'w').close()
    assert _get_config_file(configfile) == configfile


def test_config(patched_basepaths):
    configfile0 = patched_basepaths[0] / _config_filename
    configfile1 = patched_basepaths[1] / _config_filename
    with pytest.raises(ConfigFileNotFound):
        _get_config_file()
    os.makedirs(patched_basepaths[1], exist_ok=True)
    open(configfile1, 'w').close()
    assert _get_config_file() == configfile1
    os.makedirs(patched_basepaths[0], exist_ok=True)
    open(configfile0, 'w').close()
    assert _get_config_file() == configfile0


def test_parse_config_defaults(configfile, monkeypatch):
    monkeypatch.delenv('RSYNC_BINARY', raising=False)
    path = configfile('[home]\nsource = /home\nbackups = /mnt/backups\n')
    config = parse_config(path, 'home')
    assert config.sources == ('/home',)
    assert config.backups == '/mnt/backups'
    assert config.incremental is False
    assert config.exclude_file is None
    assert config.ignore == ()
    assert config.link_dests == ()
    assert config.ssh_port is None
    assert config.rsync == 'rsync'
    assert config.clean_before is not None
    assert config.naming.current == 'bak-current'
    assert config.naming.kind('bak-2024-01-01-00:00:00-snap') == SnapshotKind.FULL
    assert config.naming.kind('bak-2024-01-01-00:00:00-rinc') == SnapshotKind.REVERSE_INCREMENTAL


def test_parse_config(configfile):
    path = configfile('[home]\n'
                      'source = /home, /etc\n'
                      'backups = /mnt/backups\n'
                      'prefix = home\n'
                      'incremental_prefix = old\n'
                      'incremental = true\n'
                      'exclude_file = /etc/linkbackup/excludes\n'
                      'ignore = .cache, Downloads\n'
                      'link_dest = /mnt/old\n'
                      'ssh_account = backup\n'
                      'ssh_port = 2222\n'
                      'checksum = 1\n'
                      'one_file_system = True\n'
                      'rsync = /opt/bin/rsync\n')
    config = parse_config(path, 'home')
    assert config.sources == ('/home', '/etc')
    assert config.incremental is True
    assert config.exclude_file == '/etc/linkbackup/excludes'
    assert config.ignore == ('.cache', 'Downloads')
    assert config.link_dests == ('/mnt/old',)
    assert config.ssh_account == 'backup'
    assert config.ssh_port == 2222
    assert config.checksum is True
    assert config.one_file_system is True
    assert config.rsync == '/opt/bin/rsync'
    assert config.naming.current == 'home-current'
    assert config.naming.incremental_name('home-2024-01-01-00:00:00-snap') == 'old-2024-01-01-00:00:00-rinc'


def test_parse_config_rsync_env(configfile, monkeypatch):
    monkeypatch.setenv('RSYNC_BINARY', '/usr/local/bin/rsync')
    path = configfile('[home]\nsource = /home\nbackups = /mnt/backups\n')
    assert parse_config(path, 'home').rsync == '/usr/local/bin/rsync'


def test_parse_config_defaults_section(configfile):
    path = configfile('[DEFAULT]\nbackups = /mnt/backups\n\n[home]\nsource = /home\n')
    assert parse_config(path, 'home').backups == '/mnt/backups'


def test_parse_config_no_section(configfile):
    path = configfile('[home]\nsource = /home\nbackups = /mnt/backups\n')
    with pytest.raises(configparser.NoSectionError):
        parse_config(path, 'work')


def test_parse_config_no_option(configfile):
    path = configfile('[home]\nsource = /home\n')
    with pytest.raises(configparser.NoOptionError) as excinfo:
        parse_config(path, 'home')
    assert excinfo.value.option == 'backups'


def test_parse_config_indistinguishable_names(configfile):
    path = configfile('[home]\nsource = /home\nbackups = /mnt/backups\nincremental_suffix = -snap\n')
    with pytest.raises(ValueError):
        parse_config(path, 'home')


def test_parse_config_invalid_clean_after(configfile):
    path = configfile('[home]\nsource = /home\nbackups = /mnt/backups\nclean_after = anytime\n')
    with pytest.raises(TimestampParseError):
        parse_config(path, 'home')
