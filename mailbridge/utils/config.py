"""Configuration models and environment loading."""

import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from .errors import InvalidConfigError, MissingConfigError
from .logging import get_logger

logger = get_logger(__name__)

ENV_PREFIX = "MAILBRIDGE_"
TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off", ""}


class SMTPConfig(BaseModel):
    """Pydantic model for the outbound transport."""

    host: str = "smtp.protonmail.ch"
    port: int = 587
    secure: bool = False
    username: str = ""
    password: str = ""


class IMAPConfig(BaseModel):
    """Pydantic model for the mailbox server (a local bridge by default)."""

    host: str = "localhost"
    port: int = 1143
    secure: bool = False
    username: str = ""
    password: str = ""


class FeaturesConfig(BaseModel):
    """Pydantic model for feature toggles."""

    cache_enabled: bool = True
    analytics_enabled: bool = True
    auto_sync: bool = False
    sync_interval: int = 5  # in minutes

    @field_validator("sync_interval")
    @classmethod
    def _positive_interval(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("sync_interval must be a positive number of minutes")
        return value


class LoggingConfig(BaseModel):
    """Pydantic model for logging settings."""

    debug: bool = False
    buffer_size: int = 1000
    log_file: Optional[str] = None


class AppConfig(BaseModel):
    """Pydantic model for overall application configuration."""

    smtp: SMTPConfig = Field(default_factory=SMTPConfig)
    imap: IMAPConfig = Field(default_factory=IMAPConfig)
    features: FeaturesConfig = Field(default_factory=FeaturesConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def _get(env: Mapping[str, str], key: str, default: Optional[str] = None) -> Optional[str]:
    value = env.get(ENV_PREFIX + key)
    if value is None:
        return default
    return value.strip()


def _parse_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = _get(env, key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise InvalidConfigError(
            f"{ENV_PREFIX}{key} must be a valid integer", details={"value": raw}
        ) from e


def _parse_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = _get(env, key)
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise InvalidConfigError(
        f"{ENV_PREFIX}{key} must be a boolean (true/false)", details={"value": raw}
    )


def load_config(environ: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Build the application configuration from ``MAILBRIDGE_*`` variables.

    Args:
        environ: Mapping to read from. Defaults to ``os.environ`` after a
            ``.env`` file (if any) has been loaded into it.

    Returns:
        Validated AppConfig

    Raises:
        MissingConfigError: If the username or password is absent
        InvalidConfigError: If a value cannot be parsed or fails validation
    """
    from pydantic import ValidationError

    if environ is None:
        load_dotenv()
        environ = os.environ

    username = _get(environ, "USERNAME", "")
    password = _get(environ, "PASSWORD", "")
    missing = [
        ENV_PREFIX + name
        for name, value in (("USERNAME", username), ("PASSWORD", password))
        if not value
    ]
    if missing:
        raise MissingConfigError(
            f"Missing required configuration: {', '.join(missing)}",
            details={"missing": missing},
        )

    smtp_port = _parse_int(environ, "SMTP_PORT", 587)

    try:
        config = AppConfig(
            smtp=SMTPConfig(
                host=_get(environ, "SMTP_HOST") or SMTPConfig().host,
                port=smtp_port,
                secure=smtp_port == 465,
                username=username,
                password=password,
            ),
            imap=IMAPConfig(
                host=_get(environ, "IMAP_HOST") or IMAPConfig().host,
                port=_parse_int(environ, "IMAP_PORT", 1143),
                secure=_parse_bool(environ, "IMAP_SECURE", False),
                username=username,
                password=password,
            ),
            features=FeaturesConfig(
                cache_enabled=_parse_bool(environ, "CACHE_ENABLED", True),
                analytics_enabled=_parse_bool(environ, "ANALYTICS_ENABLED", True),
                auto_sync=_parse_bool(environ, "AUTO_SYNC", False),
                sync_interval=_parse_int(environ, "SYNC_INTERVAL", 5),
            ),
            logging=LoggingConfig(
                debug=_parse_bool(environ, "DEBUG", False),
                buffer_size=_parse_int(environ, "LOG_BUFFER_SIZE", 1000),
                log_file=_get(environ, "LOG_FILE") or None,
            ),
        )
    except ValidationError as e:
        raise InvalidConfigError(
            f"Configuration data does not match expected schema: {e}"
        ) from e

    logger.debug(
        "Configuration loaded",
        extra={
            "data": {
                "smtp": f"{config.smtp.host}:{config.smtp.port}",
                "imap": f"{config.imap.host}:{config.imap.port}",
                "auto_sync": config.features.auto_sync,
            }
        },
    )
    return config
