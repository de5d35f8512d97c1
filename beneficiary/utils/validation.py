"""Validation for the phone verification and login forms."""

from __future__ import annotations

import math
import re
import threading
import time
from typing import Callable

from ..errors import VerificationError

DEFAULT_COUNTRY_CODE = "+20"
NATIONAL_NUMBER_LENGTH = 10
NATIONAL_ID_LENGTH = 14
OTP_LENGTH = 6
RESEND_COOLDOWN_SECONDS = 60

_SEPARATORS = re.compile(r"[\s\-().]")


def normalize_phone(raw: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """Return the E.164 form of a local or international phone number.

    Accepts ``01012345678``, ``1012345678``, ``+201012345678`` and
    ``00201012345678`` (spaces and dashes allowed).

    Raises:
        VerificationError: If the number does not have 10 national digits
    """
    digits = _SEPARATORS.sub("", raw or "")
    prefix = country_code.lstrip("+")

    if digits.startswith("+"):
        digits = digits[1:]
        if not digits.startswith(prefix):
            raise VerificationError("Unsupported country code", code="INVALID_PHONE")
        digits = digits[len(prefix):]
    elif digits.startswith("00" + prefix):
        digits = digits[len(prefix) + 2:]

    if digits.startswith("0"):
        digits = digits[1:]

    if not digits.isdigit() or len(digits) != NATIONAL_NUMBER_LENGTH:
        raise VerificationError("Invalid phone number", code="INVALID_PHONE")
    return f"+{prefix}{digits}"


def validate_otp(code: str, length: int = OTP_LENGTH) -> str:
    code = (code or "").strip()
    if len(code) != length or not code.isdigit():
        raise VerificationError(f"Code must be {length} digits", code="INVALID_OTP")
    return code


def validate_national_id(value: str) -> str:
    value = (value or "").strip()
    if len(value) != NATIONAL_ID_LENGTH or not value.isdigit():
        raise VerificationError(
            f"National ID must be {NATIONAL_ID_LENGTH} digits", code="INVALID_NATIONAL_ID"
        )
    return value


class ResendCooldown:
    """Countdown between OTP requests."""

    def __init__(
        self,
        seconds: int = RESEND_COOLDOWN_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.seconds = seconds
        self._clock = clock
        self._started: dict[str, float] = {}
        self._lock = threading.Lock()

    def start(self, key: str = "default") -> None:
        with self._lock:
            now = self._clock()
            # Finished countdowns for other numbers are dropped here
            for done in [k for k, t in self._started.items() if now - t >= self.seconds]:
                del self._started[done]
            self._started[key] = now

    def remaining(self, key: str = "default") -> int:
        """Whole seconds left before another code may be sent."""
        with self._lock:
            started = self._started.get(key)
            if started is None:
                return 0
            left = self.seconds - (self._clock() - started)
            if left <= 0:
                del self._started[key]
                return 0
        return math.ceil(left)

    def can_resend(self, key: str = "default") -> bool:
        return self.remaining(key) == 0

    def tracked(self) -> int:
        """Numbers with a countdown still on record."""
        return len(self._started)
