#
# Copyright (c) 2021, Mitch Haile.
#
# MIT License
#

import os
import logging
import tomllib
from dataclasses import dataclass

from dhist.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_DIR = os.path.expanduser("~/.config/dhist")
CONFIG_FILE = os.path.join(CONFIG_DIR, "dhist.toml")
DEFAULT_DB_PATH = "~/.dhist.db"
DEFAULT_LOG_FILE = "~/.dhist.log"

DEFAULT_CONFIG_TEXT = """\
# Path to the SQLite history database
database_path = "~/.dhist.db"

# Commands from the current directory shown first by `dhist history`
current_directory_history_limit = 5

# Skip commands already recorded with the same command, directory, host and user
dedup = true
"""


@dataclass
class Config:
    database_path: str = os.path.expanduser(DEFAULT_DB_PATH)
    current_directory_history_limit: int = 5
    log_file: str = os.path.expanduser(DEFAULT_LOG_FILE)
    dedup: bool = True


def load_config(path=None):
    """Load configuration from a TOML file, falling back to defaults.

    A missing file is not an error. The DHIST_DB environment variable
    overrides the database path from the file.
    """
    config_path = path or CONFIG_FILE
    raw = {}

    if os.path.exists(config_path):
        try:
            with open(config_path, 'rb') as f:
                raw = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            logger.error(f"Could not read config file {config_path}: {e}")
            raise ConfigError(f"could not read config file {config_path}: {e}") from e
    elif path:
        logger.warning(f"Config file {config_path} not found, using defaults")

    config = Config()
    try:
        if 'database_path' in raw:
            config.database_path = str(raw['database_path'])
        if 'current_directory_history_limit' in raw:
            config.current_directory_history_limit = int(raw['current_directory_history_limit'])
        if 'log_file' in raw:
            config.log_file = str(raw['log_file'])
        if 'dedup' in raw:
            config.dedup = bool(raw['dedup'])
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value in {config_path}: {e}") from e

    env_db = os.environ.get('DHIST_DB')
    if env_db:
        config.database_path = env_db

    config.database_path = os.path.expanduser(config.database_path)
    config.log_file = os.path.expanduser(config.log_file)
    return config


def setup_logging(log_file, debug=False):
    """Send log records to a file; stdout stays reserved for command output"""
    logging.basicConfig(
        level=logging.WARNING,
        format='%(asctime)s - %(levelname)s - %(message)s',
        filename=log_file,
        filemode='a'
    )
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)
