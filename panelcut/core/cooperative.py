"""
Cooperative yield points: deadline, cancellation and progress callbacks.

Long-running stages call ``Checkpoint.check`` at natural boundaries (every few
clustering iterations, between stages, per smoothing pass). The callback is
advisory only; it must not change algorithm state.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Type

from .errors import Cancelled, PanelCutError

_LOGGER = logging.getLogger(__name__)

YieldCallback = Callable[[str], None]


class CancellationToken:
    """Thread-safe flag a caller sets to abort an in-flight call."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class Checkpoint:
    """
    Yield point shared by the stages of one ``segment`` / ``flatten`` call.

    Args:
        timeout_seconds: wall-clock budget; None disables the deadline
        timeout_error: exception type raised once the deadline passes
        cancel_token: optional caller token
        on_yield: optional callback receiving the stage name
    """

    def __init__(
        self,
        *,
        timeout_seconds: Optional[float] = None,
        timeout_error: Type[PanelCutError] = PanelCutError,
        cancel_token: Optional[CancellationToken] = None,
        on_yield: Optional[YieldCallback] = None,
    ):
        self.started = time.monotonic()
        self.deadline = None if timeout_seconds is None else self.started + float(timeout_seconds)
        self.timeout_seconds = timeout_seconds
        self.timeout_error = timeout_error
        self.cancel_token = cancel_token
        self.on_yield = on_yield
        self.yields = 0

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started

    def check(self, stage: str = "") -> None:
        self.yields += 1
        if self.on_yield is not None:
            self.on_yield(stage)

        if self.cancel_token is not None and self.cancel_token.cancelled:
            _LOGGER.info("Cancelled during %s after %.3fs", stage or "work", self.elapsed)
            raise Cancelled(f"cancelled during {stage or 'work'}")

        if self.deadline is not None and time.monotonic() > self.deadline:
            _LOGGER.warning(
                "Timeout during %s (budget %.3fs, elapsed %.3fs)",
                stage or "work",
                float(self.timeout_seconds or 0.0),
                self.elapsed,
            )
            raise self.timeout_error(
                f"{stage or 'work'} exceeded {float(self.timeout_seconds or 0.0):.3f}s"
            )