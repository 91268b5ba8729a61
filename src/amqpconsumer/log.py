"""Logging helpers shared by the consumers."""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any


def get_logger(name_or_logger: logging.Logger | str | None, default: str) -> logging.Logger:
    """Resolve a configured logger.

    Consumers accept either a ready logger or a logger name; None falls back
    to ``default`` (normally the consumer module's ``__name__``).
    """
    if isinstance(name_or_logger, logging.Logger):
        return name_or_logger
    return logging.getLogger(name_or_logger or default)


def redact_content(
    content: Any,
    error_message: str,
    rules: Mapping[str, Sequence[str]],
) -> Any:
    """Apply the logger rule registered for ``error_message``.

    When a rule exists, only the listed top-level fields of a dict payload
    are kept. Without a rule the content is returned unchanged. Rules are a
    logging concern only; they never influence acknowledgment.
    """
    allowed = rules.get(error_message)
    if allowed is None:
        return content
    if not isinstance(content, Mapping):
        return {}
    return {key: content[key] for key in allowed if key in content}


__all__ = ["get_logger", "redact_content"]
