"""Configuration read from the environment (and a `.env` file, see `exporter.main`)."""

import logging
import math
import os
from dataclasses import dataclass

from gitlab_tokens_exporter.errors import ConfigError

logger = logging.getLogger(__name__)

DATA_REFRESH_HOURS_DEFAULT = 6
MAX_CONCURRENT_REQUESTS_DEFAULT = 10
LISTEN_PORT_DEFAULT = 3000
REQUEST_TIMEOUT_DEFAULT = 30


@dataclass(frozen=True)
class Config:
    hostname: str
    token: str
    data_refresh_hours: int = DATA_REFRESH_HOURS_DEFAULT
    max_concurrent_requests: int = MAX_CONCURRENT_REQUESTS_DEFAULT
    skip_users_tokens: bool = False
    skip_non_expiring_tokens: bool = False
    owned_entities_only: bool = False
    accept_invalid_certs: bool = False
    listen_port: int = LISTEN_PORT_DEFAULT
    request_timeout: float = REQUEST_TIMEOUT_DEFAULT
    log_level: str = "INFO"


def _required(environ, name):
    value = environ.get(name, "").strip()
    if not value:
        raise ConfigError(f"env variable {name} is not defined")
    return value


def _flag(environ, name):
    """Flags are off when unset; `yes` is their only accepted value."""
    value = environ.get(name)
    if value is None:
        return False
    if value == "yes":
        return True
    raise ConfigError(
        f"The environment variable '{name}' is set, but not to its only possible value : 'yes'"
    )


def _bounded_int(environ, name, default, low, high=None):
    raw = environ.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer, using %s", name, raw, default)
        return default
    if value < low or (high is not None and value > high):
        logger.warning("%s=%s is out of range, using %s", name, value, default)
        return default
    return value


def _request_timeout(environ):
    raw = environ.get("REQUEST_TIMEOUT")
    if raw is None:
        return REQUEST_TIMEOUT_DEFAULT
    try:
        value = float(raw)
    except ValueError:
        logger.warning("REQUEST_TIMEOUT=%r is not a number, using %s", raw, REQUEST_TIMEOUT_DEFAULT)
        return REQUEST_TIMEOUT_DEFAULT
    # urllib3 rejects a zero or negative timeout on every request
    if not (value > 0 and math.isfinite(value)):
        logger.warning(
            "REQUEST_TIMEOUT=%s must be a positive number of seconds, using %s", raw, REQUEST_TIMEOUT_DEFAULT
        )
        return REQUEST_TIMEOUT_DEFAULT
    return value


def _log_level(environ):
    level = environ.get("LOG_LEVEL", "INFO").upper()
    if not isinstance(logging.getLevelName(level), int):
        logger.warning("LOG_LEVEL=%r is not a logging level, using INFO", level)
        return "INFO"
    return level


def load_config(environ=None):
    environ = os.environ if environ is None else environ

    hostname = _required(environ, "GITLAB_HOSTNAME")
    # Accept a full URL as well as a bare hostname
    for prefix in ("https://", "http://"):
        if hostname.startswith(prefix):
            hostname = hostname[len(prefix):]
    hostname = hostname.rstrip("/")

    return Config(
        hostname=hostname,
        token=_required(environ, "GITLAB_TOKEN"),
        data_refresh_hours=_bounded_int(
            environ, "DATA_REFRESH_HOURS", DATA_REFRESH_HOURS_DEFAULT, 1, 24
        ),
        max_concurrent_requests=_bounded_int(
            environ, "MAX_CONCURRENT_REQUESTS", MAX_CONCURRENT_REQUESTS_DEFAULT, 1
        ),
        skip_users_tokens=_flag(environ, "SKIP_USERS_TOKENS"),
        skip_non_expiring_tokens=_flag(environ, "SKIP_NON_EXPIRING_TOKENS"),
        owned_entities_only=_flag(environ, "OWNED_ENTITIES_ONLY"),
        accept_invalid_certs=_flag(environ, "ACCEPT_INVALID_CERTS"),
        listen_port=_bounded_int(environ, "LISTEN_PORT", LISTEN_PORT_DEFAULT, 1, 65535),
        request_timeout=_request_timeout(environ),
        log_level=_log_level(environ),
    )
