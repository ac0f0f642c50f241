"""Logger factory that carries bound context fields."""

from __future__ import annotations

import logging
from typing import Any, Dict


class ContextLogger(logging.LoggerAdapter):
    """LoggerAdapter that merges bound context with per-call ``extra``.

    The bound fields are also appended to the message so they survive
    formatters that ignore custom record attributes.
    """

    def process(self, msg: str, kwargs: Dict[str, Any]):
        extra = kwargs.pop("extra", {})
        merged = {**self.extra, **extra}
        if merged:
            kwargs["extra"] = merged
            context = " ".join(f"{key}={value}" for key, value in self.extra.items())
            if context:
                msg = f"{msg} [{context}]"
        return msg, kwargs

    def bind(self, **context: Any) -> "ContextLogger":
        return ContextLogger(self.logger, {**self.extra, **context})


def get_logger(name: str, **context: Any) -> ContextLogger:
    """Return a LoggerAdapter bound to ``context``."""

    logger = logging.getLogger(name)
    return ContextLogger(logger, context or {})


__all__ = ["ContextLogger", "get_logger"]
