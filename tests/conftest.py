import json
import os
import time

import pytest
import yaml

from commands import AppContext, Commands
from config import ConfigManager
from database import CatalogDB
from logger import LogStore


def write_file(path, data=b"weights", mtime=None):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


def write_manifest(models_dir, name, entries):
    models_dir.mkdir(parents=True, exist_ok=True)
    path = models_dir / name
    path.write_text(json.dumps(entries), encoding="utf-8")
    return path


@pytest.fixture
def catalog(tmp_path):
    """Migrated catalog on a temp file"""
    with CatalogDB(tmp_path / "data" / "ckptstash.db") as db:
        yield db


@pytest.fixture
def quiet_log():
    return LogStore(retention=100, echo=False)


@pytest.fixture
def host_dir(tmp_path):
    path = tmp_path / "host"
    (path / "Models").mkdir(parents=True)
    return path


@pytest.fixture
def stash_dir(tmp_path):
    return tmp_path / "stash"


@pytest.fixture
def config_manager(tmp_path):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.dump({
        'app': {'data_dir': str(tmp_path / "data")},
        'paths': {'models_subdir': 'Models'},
        'registry': {'enabled': False, 'urls': {}},
        'transfer': {'space_margin': 1.1, 'verify_checksums': True},
        'logging': {'retention': 100},
    }))
    return ConfigManager(str(config_path))


@pytest.fixture
def app(config_manager, quiet_log):
    with AppContext(config_manager, log=quiet_log) as ctx:
        yield ctx


@pytest.fixture
def commands(app):
    return Commands(app)


@pytest.fixture
def old_mtime():
    """A modification time safely in the past"""
    return time.time() - 3600
