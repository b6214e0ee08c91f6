"""Built-in action sub-executors."""

from typing import Optional

from ..config import AppConfig
from ..core.actions import ActionRegistry
from ..core.logging import get_logger
from .files import file_operation
from .http import HttpRequestAction, HttpRequestError
from .notify import NotificationAction
from .script import custom_script
from .transform import data_transform

logger = get_logger(__name__)


def register_default_actions(registry: ActionRegistry, config: Optional[AppConfig] = None,
                             replace: bool = False) -> None:
    """
    Register the built-in action types on ``registry``.

    Args:
        registry: Registry to populate
        config: Source of HTTP timeout and retry defaults
        replace: Override existing registrations of the same names
    """
    timeout_ms = config.http_timeout_ms if config else 30000
    retry_count = config.http_retry_count if config else 0

    defaults = [
        ("http_request", HttpRequestAction(timeout_ms=timeout_ms, retry_count=retry_count),
         "Perform an HTTP request"),
        ("file_operation", file_operation, "Read, write, delete, copy or move a file"),
        ("data_transform", data_transform, "Convert data between JSON, CSV and objects"),
        ("notification", NotificationAction(timeout_ms=timeout_ms), "Send a console or webhook notification"),
        ("custom_script", custom_script, "Evaluate a Python expression"),
    ]

    for name, function, description in defaults:
        registry.register_action(name, function, description=description, replace=replace)

    logger.info(f"Registered {len(defaults)} built-in actions")


__all__ = [
    "register_default_actions",
    "HttpRequestAction",
    "HttpRequestError",
    "NotificationAction",
    "file_operation",
    "data_transform",
    "custom_script",
]
