"""Shared bookkeeping for the dashboard state objects."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from ..errors import ClientError

logger = logging.getLogger(__name__)


class DashboardState:
    """Holds ``is_loading`` and the last error for one screen's data.

    Client errors are recorded rather than raised. ``last_error`` keeps the
    exception so the HTTP layer can render it with the right status.
    """

    name = "state"

    def __init__(self, bsp: Any) -> None:
        self.bsp = bsp
        self.is_loading = False
        self.error: dict[str, Any] | None = None
        self.last_error: ClientError | None = None
        self._lock = threading.RLock()

    def clear_error(self) -> None:
        self.error = None
        self.last_error = None

    def _record(self, error: ClientError) -> None:
        self.error = error.to_dict()
        self.last_error = error

    def _call(self, action: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> tuple[bool, Any]:
        """Run a backend call, recording any client error.

        Returns:
            Tuple of (succeeded, result)
        """
        self.is_loading = True
        self.clear_error()
        try:
            result = fn(*args, **kwargs)
        except ClientError as e:
            logger.warning(f"{self.name}.{action} failed: {e.code}")
            self._record(e)
            return False, None
        finally:
            self.is_loading = False
        return True, result
