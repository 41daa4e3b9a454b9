"""Application settings, command-line parsing and logging setup."""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from typing import Any

NANOPB_CONTENT_FORMAT = 30001

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(filename)s:%(lineno)d %(message)s"
LOG_DATE_FORMAT = "%d.%m.%y %H:%M:%S"

_log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Setting:
    """A configuration key together with its default value."""

    key: str
    default: Any


LOG_LEVEL = Setting("log/level", 4)  # 1:fatal, 2:critical, 3:warning, 4:info, 5:debug
CFG_FILE = Setting("files/config", "config.ini")
SAVE_FILE_DIR = Setting("files/data_dir", "data")
SEARCH_INT = Setting("search/interval", 1)
UPDATE_INT = Setting("update/interval", 100)

_SETTINGS = {
    s.key: s for s in (LOG_LEVEL, CFG_FILE, SAVE_FILE_DIR, SEARCH_INT, UPDATE_INT)
}

_LEVELS = {
    1: logging.CRITICAL,
    2: logging.ERROR,
    3: logging.WARNING,
    4: logging.INFO,
}


def get_conf(config: dict[str, Any], key: Setting | str) -> Any:
    """Return the configured value for a setting, or its default."""
    setting = key if isinstance(key, Setting) else _SETTINGS[key]
    return config.get(setting.key, setting.default)


def parse_args(argv: list[str] | None = None) -> dict[str, Any]:
    """Parse command-line options into a configuration mapping.

    Only options given on the command line are put into the mapping.
    """
    parser = argparse.ArgumentParser(prog="zero-controller")
    parser.add_argument(
        "-c", "--config", metavar="config-file", help="Configuration file"
    )
    parser.add_argument(
        "-l",
        "--log-level",
        type=int,
        metavar="log-level",
        help="Log level: 1:fatal, 2:critical, 3:warning, 4:info, 5:debug",
    )
    parser.add_argument(
        "-s",
        "--search-interval",
        type=int,
        metavar="search-interval",
        help="Search interval for scanning the network for Zeros (in sec, default 1)",
    )
    parser.add_argument(
        "-u",
        "--update-interval",
        type=int,
        metavar="update-interval",
        help="Time period for updates coming from the Zeros (in msec, default 100)",
    )
    args = parser.parse_args(argv)

    _log.info("Starting Application")
    config: dict[str, Any] = {}
    given = (
        (CFG_FILE, args.config),
        (LOG_LEVEL, args.log_level),
        (SEARCH_INT, args.search_interval),
        (UPDATE_INT, args.update_interval),
    )
    for setting, value in given:
        if value is not None:
            config[setting.key] = value
    return config


def configure_logging(config: dict[str, Any]) -> int:
    """Set the root logger level from the configuration and return it."""
    level_setting = int(get_conf(config, LOG_LEVEL))
    if level_setting >= 5:
        level = logging.DEBUG
    elif level_setting <= 0:
        level = logging.CRITICAL + 1
    else:
        level = _LEVELS[level_setting]

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
        root.addHandler(handler)
    root.setLevel(level)
    return level