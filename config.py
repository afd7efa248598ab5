#!/usr/bin/env python3
"""
Configuration management for ckptstash
Handles YAML config loading and default creation
"""

import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field

from errors import ConfigError
from file_ops import DEFAULT_MODEL_EXTENSIONS, normalize_extensions
from logger import DEFAULT_RETENTION
from manifest import DEFAULT_MANIFEST_FILES
from transfer import DEFAULT_SPACE_MARGIN

DB_FILENAME = "ckptstash.db"


@dataclass
class Config:
    """Configuration data structure"""
    data_dir: str
    host_dir: Optional[str]
    stash_dir: Optional[str]
    models_subdir: str
    file_extensions: List[str]
    manifest_files: List[str]
    registry_urls: Dict[str, str] = field(default_factory=dict)
    registry_enabled: bool = True
    registry_timeout: int = 10
    space_margin: float = DEFAULT_SPACE_MARGIN
    verify_checksums: bool = True
    compute_checksums: bool = False
    log_retention: int = DEFAULT_RETENTION


class ConfigManager:
    """Manages configuration loading and creation"""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = Path(config_path)
        self.config = None
        self.raw_config = None

    def load_config(self) -> Config:
        """Load configuration from file, create default if missing"""
        if not self.config_path.exists():
            self.create_default_config()

        try:
            with open(self.config_path, 'r') as f:
                config_data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Error loading config {self.config_path}: {e}") from e

        if not isinstance(config_data, dict):
            raise ConfigError(f"Error loading config {self.config_path}: expected a mapping")

        app = config_data.get('app') or {}
        paths = config_data.get('paths') or {}
        registry = config_data.get('registry') or {}
        transfer = config_data.get('transfer') or {}
        scan = config_data.get('scan') or {}
        logging_cfg = config_data.get('logging') or {}

        try:
            self.config = Config(
                data_dir=app.get('data_dir', '~/.ckptstash'),
                host_dir=paths.get('host_dir'),
                stash_dir=paths.get('stash_dir'),
                models_subdir=paths.get('models_subdir', 'Models'),
                file_extensions=normalize_extensions(
                    config_data.get('file_extensions') or DEFAULT_MODEL_EXTENSIONS),
                manifest_files=list(config_data.get('manifest_files') or DEFAULT_MANIFEST_FILES),
                registry_urls=dict(registry.get('urls') or {}),
                registry_enabled=bool(registry.get('enabled', True)),
                registry_timeout=int(registry.get('timeout', 10)),
                space_margin=float(transfer.get('space_margin', DEFAULT_SPACE_MARGIN)),
                verify_checksums=bool(transfer.get('verify_checksums', True)),
                compute_checksums=bool(scan.get('compute_checksums', False)),
                log_retention=int(logging_cfg.get('retention', DEFAULT_RETENTION)),
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise ConfigError(f"Invalid value in config {self.config_path}: {e}") from e

        # Store raw config data for callers that need extra keys
        self.raw_config = config_data

        return self.config

    def get_config(self) -> Config:
        if not self.config:
            self.load_config()
        return self.config

    def get_raw_config(self) -> Dict[str, Any]:
        """Get raw config dictionary"""
        if self.raw_config is None:
            self.load_config()
        return self.raw_config

    def create_default_config(self):
        """Create default configuration file"""
        default_config = {
            'app': {
                'data_dir': '~/.ckptstash'
            },
            'paths': {
                'host_dir': None,
                'stash_dir': None,
                'models_subdir': 'Models'
            },
            'file_extensions': list(DEFAULT_MODEL_EXTENSIONS),
            'manifest_files': list(DEFAULT_MANIFEST_FILES),
            'registry': {
                'enabled': True,
                'timeout': 10,
                'urls': {
                    'models': None,
                    'loras': None,
                    'controlnets': None,
                    'embeddings': None
                }
            },
            'transfer': {
                'space_margin': DEFAULT_SPACE_MARGIN,
                'verify_checksums': True
            },
            'scan': {
                'compute_checksums': False
            },
            'logging': {
                'retention': DEFAULT_RETENTION
            }
        }

        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w') as f:
                yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)
            print(f"Created default config file: {self.config_path}")
        except OSError as e:
            raise ConfigError(f"Error creating default config {self.config_path}: {e}") from e

    def get_data_dir(self) -> Path:
        """Get the data directory as a Path object"""
        return Path(self.get_config().data_dir).expanduser().resolve()

    def get_db_path(self) -> Path:
        """Get the database path"""
        return self.get_data_dir() / DB_FILENAME

    def get_registry_cache_dir(self) -> Path:
        return self.get_data_dir() / "registry"
