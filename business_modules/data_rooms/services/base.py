"""
Base service class for data room operations.

Provides the persistence handle, logging and clock shared by every data
room service. Services are constructed once per process and take their
table backend by injection so they can run against any store.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from ..entities import utcnow
from ..persistence import BaseTableBackend, get_table_backend


def mask_secret(value: Optional[str], visible: int = 8) -> str:
    """Shorten a token or id for log output."""
    if not value:
        return '-'
    return f"{value[:visible]}..."


class DataRoomService:
    """
    Base service class providing common functionality.

    - Table backend injection (defaults to the configured backend)
    - Logging infrastructure
    - An overridable clock
    """

    def __init__(self, backend: Optional[BaseTableBackend] = None, context: Optional[Dict[str, Any]] = None):
        """
        Initialize service.

        Args:
            backend: Table backend to read and write records through
            context: Additional context for log lines (e.g. request id)
        """
        self.backend = backend or get_table_backend()
        self.context = context or {}
        self.logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    def now(self) -> datetime:
        return utcnow()

    def _log_operation(
        self,
        operation: str,
        details: Optional[Dict[str, Any]] = None,
        actor: Optional[str] = None,
        level: str = 'info'
    ):
        """
        Log service operation.

        Args:
            operation: Name of the operation
            details: Additional details to log
            actor: Email or name of whoever triggered the operation
            level: Logging level (debug, info, warning, error)
        """
        user_info = f"user={actor or 'anonymous'}"
        context_str = ", ".join(f"{k}={v}" for k, v in self.context.items()) or "no context"
        details_str = f" details={details}" if details else ""

        log_method = getattr(self.logger, level, self.logger.info)
        log_method(f"{operation} - {user_info}, {context_str}{details_str}")
