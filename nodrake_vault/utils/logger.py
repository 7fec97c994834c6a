"""
Logging for the token vault.

ContextAwareLogger renders ``extra`` attributes into the message as
pipe-delimited ``key=value`` pairs so they survive any handler formatter.
Extras whose keys name token or key material are masked before they are
rendered or attached to the record.
"""

import logging
import sys
from typing import Any, Dict, Optional, Union

from ..config import get_config
from ..constants import SENSITIVE_LOG_KEYS

REDACTED = "***"

_vault_logger: Optional["ContextAwareLogger"] = None


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    if lowered in SENSITIVE_LOG_KEYS:
        return True
    return lowered.endswith(("_token", "_secret", "_ciphertext"))


def redact_extra(extra: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``extra`` with sensitive values masked, recursing into dicts."""
    redacted: Dict[str, Any] = {}
    for key, value in extra.items():
        if _is_sensitive(key) and value is not None:
            redacted[key] = REDACTED
        elif isinstance(value, dict):
            redacted[key] = redact_extra(value)
        else:
            redacted[key] = value
    return redacted


class ContextAwareLogger:
    """
    Wraps a ``logging.Logger`` so ``extra`` shows up in the rendered message.

    The extras are also attached to the record unchanged (after redaction) so
    structured handlers and ``caplog`` can read them as attributes.
    """

    def __init__(self, logger: logging.Logger, redact: bool = True):
        self.logger = logger
        self.redact = redact

    def _emit(self, method: str, msg: str, **kwargs: Any) -> None:
        extra = kwargs.pop("extra", None) or {}
        if self.redact:
            extra = redact_extra(extra)

        if extra:
            msg = " | ".join([msg] + [f"{k}={v}" for k, v in extra.items()])

        getattr(self.logger, method)(msg, extra=extra, **kwargs)

    def set_level(self, level: Union[int, str]) -> None:
        self.logger.setLevel(level)

    def debug(self, msg, **kwargs):
        self._emit("debug", msg, **kwargs)

    def info(self, msg, **kwargs):
        self._emit("info", msg, **kwargs)

    def warning(self, msg, **kwargs):
        self._emit("warning", msg, **kwargs)

    def error(self, msg, **kwargs):
        self._emit("error", msg, **kwargs)

    def critical(self, msg, **kwargs):
        self._emit("critical", msg, **kwargs)

    def exception(self, msg, **kwargs):
        """ERROR with the active exception's traceback."""
        self._emit("exception", msg, **kwargs)


class SecretRedactionFilter(logging.Filter):
    """
    Logging filter that masks sensitive attributes on records.

    Covers records emitted by code that logs through a plain ``logging.Logger``
    with ``extra=`` instead of going through ContextAwareLogger.
    """

    def filter(self, record):
        for key in list(record.__dict__.keys()):
            if _is_sensitive(key) and getattr(record, key) is not None:
                setattr(record, key, REDACTED)
        return True


def configure_logging(
    component_name: str,
    log_level: Optional[Union[int, str]] = None,
    redact_secrets: Optional[bool] = None,
) -> ContextAwareLogger:
    """
    Configure console logging for a vault component.

    Args:
        component_name: Name used for the logger (``nodrake_vault.<name>``)
        log_level: Logging level (default: from config)
        redact_secrets: Mask sensitive extras (default: from config)

    Returns:
        The configured logger wrapped with ContextAwareLogger
    """
    global _vault_logger

    app_config = get_config()

    if log_level is None:
        log_level = app_config.logging.level
    if redact_secrets is None:
        redact_secrets = app_config.logging.redact_secrets

    if isinstance(log_level, str):
        log_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(f"nodrake_vault.{component_name}")
    logger.setLevel(log_level)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(app_config.logging.format))
    if redact_secrets:
        console_handler.addFilter(SecretRedactionFilter())

    logger.addHandler(console_handler)

    wrapped_logger = ContextAwareLogger(logger, redact=redact_secrets)
    wrapped_logger.info(
        "Vault logger configured",
        extra={"component_name": component_name, "log_level": logging.getLevelName(log_level)},
    )
    _vault_logger = wrapped_logger
    return wrapped_logger


def get_logger(log_level: Optional[Union[int, str]] = None) -> ContextAwareLogger:
    """
    Get the vault logger.

    Returns the logger set up by ``configure_logging`` when there is one,
    otherwise a wrapper around the ``nodrake_vault`` package logger.
    """
    if _vault_logger is not None:
        return _vault_logger

    logger = logging.getLogger("nodrake_vault")

    # A level set earlier (or by a test harness) stands unless one is passed
    if log_level is None and logger.level == logging.NOTSET:
        log_level = get_config().logging.level

    if log_level is not None:
        if isinstance(log_level, str):
            log_level = getattr(logging, log_level.upper(), logging.INFO)
        logger.setLevel(log_level)

    return ContextAwareLogger(logger)


def reset_logging() -> None:
    """Forget the configured logger so ``get_logger`` falls back to the package logger."""
    global _vault_logger
    _vault_logger = None
