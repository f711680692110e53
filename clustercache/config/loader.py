"""
clustercache — Configuration Loader

Loads and validates configuration from environment variables and .env files.
Returns a new validated configuration object on every call; there is no
process-wide configuration singleton.
"""

import logging
import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from pydantic import ValidationError

from ..errors import ConfigurationError
from .schemas import ClusterCacheConfig

logger = logging.getLogger(__name__)

ENV_PREFIX = "CLUSTERCACHE_"


def _env(name: str, default: str | None = None) -> str | None:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _split_servers(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [s.strip() for s in raw.replace(" ", ",").split(",") if s.strip()]


def _set_if_present(section: dict[str, Any], key: str, raw: str | None, cast: type) -> None:
    if raw is not None and raw != "":
        section[key] = cast(raw)


def build_config_dict() -> dict[str, Any]:
    """
    Build a raw configuration dictionary from environment variables.

    Only variables that are present are included, so the pydantic defaults
    apply to everything else.
    """
    discovery: dict[str, Any] = {
        "endpoint": _env("ENDPOINT") or None,
        "servers": _split_servers(_env("SERVERS")),
    }
    _set_if_present(discovery, "refresh_interval", _env("REFRESH_INTERVAL"), float)
    _set_if_present(discovery, "removal_grace_refreshes", _env("REMOVAL_GRACE_REFRESHES"), int)
    _set_if_present(discovery, "discovery_timeout", _env("DISCOVERY_TIMEOUT"), float)

    pool: dict[str, Any] = {}
    _set_if_present(pool, "min_pool_size", _env("MIN_POOL_SIZE"), int)
    _set_if_present(pool, "max_pool_size", _env("MAX_POOL_SIZE"), int)
    _set_if_present(pool, "connect_timeout", _env("CONNECT_TIMEOUT"), float)
    _set_if_present(pool, "idle_timeout", _env("IDLE_TIMEOUT"), float)
    _set_if_present(pool, "maintain_interval", _env("MAINTAIN_INTERVAL"), float)

    router: dict[str, Any] = {}
    _set_if_present(router, "virtual_nodes", _env("VIRTUAL_NODES"), int)

    breaker: dict[str, Any] = {}
    _set_if_present(breaker, "fail_max", _env("BREAKER_FAIL_MAX"), int)
    _set_if_present(breaker, "reset_timeout", _env("BREAKER_RESET_TIMEOUT"), float)
    _set_if_present(breaker, "health_check_interval", _env("BREAKER_HEALTH_CHECK_INTERVAL"), float)

    client: dict[str, Any] = {}
    _set_if_present(client, "request_timeout", _env("REQUEST_TIMEOUT"), float)
    _set_if_present(client, "retry_budget", _env("RETRY_BUDGET"), int)
    _set_if_present(client, "default_ttl", _env("DEFAULT_TTL"), int)
    _set_if_present(client, "max_value_size", _env("MAX_VALUE_SIZE"), int)
    client["namespace"] = _env("NAMESPACE") or None

    observability: dict[str, Any] = {
        "enable_metrics": os.getenv("ENABLE_METRICS", "true").lower() == "true",
        "log_level": os.getenv("LOG_LEVEL", "INFO").upper(),
        "pretty_logs": os.getenv("PRETTY_LOGS", "false").lower() == "true",
        "statsd_address": _env("STATSD_ADDRESS") or None,
    }
    _set_if_present(observability, "statsd_prefix", _env("STATSD_PREFIX"), str)

    return {
        "discovery": discovery,
        "pool": pool,
        "router": router,
        "breaker": breaker,
        "client": client,
        "observability": observability,
    }


def load_config(env_file: str | None = None, **overrides: Any) -> ClusterCacheConfig:
    """
    Load configuration from environment variables and an optional .env file.

    Args:
        env_file: Path to .env file (default: .env in the working directory)
        **overrides: Top-level sections replacing the environment-derived ones

    Returns:
        Validated ClusterCacheConfig instance

    Raises:
        ConfigurationError: If configuration is invalid
    """
    env_path = Path(env_file) if env_file else Path.cwd() / ".env"

    if env_path.exists():
        logger.info(f"Loading environment from {env_path}")
        try:
            load_dotenv(env_path, override=True)
        except OSError as e:
            logger.error(
                f"Failed to load .env file from {env_path}: {e}",
                extra={"path": str(env_path), "error": str(e)},
                exc_info=True,
            )
            raise ConfigurationError(
                f"Failed to load environment file: {e}",
                details={"path": str(env_path), "error": str(e)},
            ) from e
    else:
        logger.debug("No .env file found, using environment variables only")

    try:
        config_dict = build_config_dict()
    except ValueError as e:
        raise ConfigurationError(
            f"Malformed numeric environment variable: {e}",
            details={"error": str(e)},
        ) from e

    config_dict.update(overrides)

    try:
        config = ClusterCacheConfig(**config_dict)
    except ValidationError as e:
        logger.error(
            f"Configuration validation failed: {e}",
            extra={"validation_errors": e.errors(include_url=False), "config_sections": list(config_dict.keys())},
        )
        raise ConfigurationError(
            "Configuration validation failed. Check your environment variables and configuration.",
            details={"validation_errors": e.errors(include_url=False)},
        ) from e

    logger.info(
        "Configuration loaded",
        extra={
            "endpoint": config.discovery.endpoint,
            "servers": config.discovery.servers,
            "max_pool_size": config.pool.max_pool_size,
        },
    )
    return config
