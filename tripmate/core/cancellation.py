"""
Cancellation token shared by retrieval, orchestration and transport for one request.

One token per outstanding request. Layers check it at each suspension point;
cancelling is idempotent and runs registered callbacks once.
"""

import logging
from collections.abc import Callable

from tripmate.core.errors import OperationCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning("[cancellation] callback failed: %s", e)

    def add_callback(self, callback: Callable[[], None]) -> None:
        """Run callback on cancel; runs immediately if already cancelled."""
        if self._cancelled:
            callback()
            return
        self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelled()
