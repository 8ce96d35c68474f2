"""
Logging setup for the compliance tester.

Log lines carry a short message followed by `key=value` context pairs.
"""
import logging
import sys
from typing import Any, Optional


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


class ContextLogger:
    """
    Logger wrapper that renders keyword context as `key=value` pairs.

    Example:
        logger.info("Received alerts", num_alerts=3)
        -> "Received alerts | num_alerts=3"
    """

    def __init__(self, name: str):
        self._logger = logging.getLogger(name)

    @staticmethod
    def _format_context(context: dict[str, Any]) -> str:
        return " | ".join(f"{key}={value}" for key, value in context.items())

    def _render(self, message: str, context: dict[str, Any]) -> str:
        ctx = self._format_context(context)
        return f"{message} | {ctx}" if ctx else message

    def info(self, message: str, **context: Any) -> None:
        self._logger.info(self._render(message, context))

    def warning(self, message: str, **context: Any) -> None:
        self._logger.warning(self._render(message, context))

    def error(
        self,
        message: str,
        error_code: Optional[str] = None,
        **context: Any
    ) -> None:
        """Log an error, with its error code first when given."""
        if error_code:
            context = {"error_code": error_code, **context}
        self._logger.error(self._render(message, context))

    def debug(self, message: str, **context: Any) -> None:
        self._logger.debug(self._render(message, context))


def get_logger(name: str) -> ContextLogger:
    """Get a context logger instance."""
    return ContextLogger(name)
