"""Verification-code entry with guarded auto-submit."""

import logging
import threading
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def sanitize_code(value: str, length: int = 6) -> str:
    """Keep digits only, truncated to length."""
    return "".join(ch for ch in value if ch.isdigit())[:length]


class CodeEntry(Generic[T]):
    """
    Digit buffer that submits itself when full.

    Auto-submit fires once per distinct value reaching full length and never
    while a submission is in flight, so rapid keystrokes racing an explicit
    submit cannot verify the same code twice. A different full code typed
    while a call is in flight is held and submitted as soon as that call
    returns; its outcome supersedes the earlier one.
    """

    def __init__(self, submit: Callable[[str], T], length: int = 6):
        self._submit = submit
        self._length = length
        self._value = ""
        self._last_auto_submitted: str | None = None
        self._queued: str | None = None
        self._pending = False
        self._lock = threading.Lock()

    @property
    def value(self) -> str:
        return self._value

    @property
    def pending(self) -> bool:
        """True while a verification call is in flight."""
        return self._pending

    @property
    def complete(self) -> bool:
        return len(self._value) == self._length

    def input(self, raw: str) -> T | None:
        """
        Replace the buffer with raw (non-digits dropped).

        Returns the submit result when this input triggered a submission,
        otherwise None.
        """
        self._value = sanitize_code(raw, self._length)

        if not self.complete:
            with self._lock:
                self._last_auto_submitted = None
                self._queued = None
            return None
        if self._value == self._last_auto_submitted:
            return None
        return self._fire(self._value, auto=True)

    def submit(self) -> T | None:
        """Explicit submit; ignored while incomplete or already pending."""
        if not self.complete:
            return None
        return self._fire(self._value, auto=False)

    def clear(self) -> None:
        self._value = ""
        with self._lock:
            self._last_auto_submitted = None
            self._queued = None

    def _fire(self, code: str, auto: bool) -> T | None:
        with self._lock:
            if self._pending:
                if auto:
                    self._queued = code
                    logger.debug("Code submission in flight; holding the new code")
                else:
                    logger.debug("Code submission already in flight; ignoring")
                return None
            self._pending = True
            if auto:
                self._last_auto_submitted = code

        while True:
            error: Exception | None = None
            result = None
            try:
                result = self._submit(code)
            except Exception as e:
                error = e

            follow_up = self._release(code)
            if follow_up is None:
                if error is not None:
                    raise error
                return result
            if error is not None:
                logger.info(f"Earlier code failed ({error}); submitting the code entered since")
            code = follow_up

    def _release(self, submitted: str) -> str | None:
        """Hand the slot to a held code still in the buffer, or free it."""
        with self._lock:
            queued, self._queued = self._queued, None
            if queued is not None and queued != submitted and queued == self._value:
                self._last_auto_submitted = queued
                return queued
            self._pending = False
            return None
