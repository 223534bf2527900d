import os

import pytest

from linkbackup.config import Config
from linkbackup.snapshots import Naming


def read_tree(path):
    """map of relative file path to content for all files below `path`."""
    tree = {}
    for root, _, files in os.walk(path):
        for name in files:
            filepath = os.path.join(root, name)
            with open(filepath) as f:
                tree[os.path.relpath(filepath, path)] = f.read()
    return tree


def _read(path):
    with open(path) as f:
        return f.read()


def _write(path, content):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w') as f:
        f.write(content)


def fake_rsync(tree, status=0):
    """side effect for a patched `rsync`, brings `target` to the state `tree` like rsync would.

    unchanged files are hard linked from the first `link_dests` entry that has them, with `backup_dir` changed and
    deleted files are moved there.

    :param dict tree: relative file path to content
    :param int status: exit status to return
    """
    def _rsync(sources, target, link_dests=(), backup_dir=None, dry_run=False, **kwargs):
        if dry_run:
            return status
        os.makedirs(target, exist_ok=True)
        if backup_dir:
            backup_path = os.path.normpath(os.path.join(target, backup_dir))
            for relpath, content in read_tree(target).items():
                if tree.get(relpath) != content:
                    os.makedirs(os.path.dirname(os.path.join(backup_path, relpath)), exist_ok=True)
                    os.rename(os.path.join(target, relpath), os.path.join(backup_path, relpath))
        existing = read_tree(target)
        for relpath, content in tree.items():
            if existing.get(relpath) == content:
                continue
            path = os.path.join(target, relpath)
            for link_dest in link_dests:
                candidate = os.path.join(link_dest, relpath)
                if os.path.isfile(candidate) and _read(candidate) == content:
                    os.makedirs(os.path.dirname(path), exist_ok=True)
                    os.link(candidate, path)
                    break
            else:
                _write(path, content)
        return status
    return _rsync


@pytest.fixture
def make_config(tmpdir):
    """factory for a :class:`linkbackup.config.Config` with backups in `tmpdir`."""
    def _make_config(**kwargs):
        kwargs.setdefault('sources', ('/source/',))
        kwargs.setdefault('backups', str(tmpdir))
        kwargs.setdefault('naming', Naming())
        return Config(**kwargs)
    return _make_config
