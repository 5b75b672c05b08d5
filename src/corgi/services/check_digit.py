"""
Check Digit Validator
Recomputes VIN position 9 (modulo-11 checksum over the other 16 characters).
"""
import logging
from dataclasses import dataclass
from typing import Optional

from ..core.schemas import CheckDigitInfo, DecodeError

logger = logging.getLogger(__name__)

# Letter values; I, O and Q are absent by construction
TRANSLITERATION = {
    'A': 1, 'B': 2, 'C': 3, 'D': 4, 'E': 5, 'F': 6, 'G': 7, 'H': 8,
    'J': 1, 'K': 2, 'L': 3, 'M': 4, 'N': 5, 'P': 7, 'R': 9,
    'S': 2, 'T': 3, 'U': 4, 'V': 5, 'W': 6, 'X': 7, 'Y': 8, 'Z': 9,
}

# Position weights 1-17; position 9 (the check digit itself) weighs 0
WEIGHTS = (8, 7, 6, 5, 4, 3, 2, 10, 0, 9, 8, 7, 6, 5, 4, 3, 2)

CHECK_DIGIT_INDEX = 8


@dataclass
class CheckDigitResult:
    """Outcome of a check digit comparison."""
    actual: str
    expected: Optional[str]

    @property
    def is_valid(self) -> bool:
        return self.expected is not None and self.actual == self.expected

    def to_component(self) -> Optional[CheckDigitInfo]:
        if self.expected is None:
            return None
        return CheckDigitInfo(actual=self.actual, expected=self.expected, is_valid=self.is_valid)

    def to_error(self) -> Optional[DecodeError]:
        if self.is_valid or self.expected is None:
            return None
        return DecodeError(
            code="INVALID_CHECK_DIGIT",
            category="semantic",
            severity="warning",
            message=f"Check digit is '{self.actual}' but should be '{self.expected}'",
            expected=self.expected,
            actual=self.actual,
        )


def transliterate(ch: str) -> Optional[int]:
    if ch.isdigit():
        return int(ch)
    return TRANSLITERATION.get(ch)


def calculate_check_digit(vin: str) -> Optional[str]:
    """
    Compute the expected check digit for a 17-character VIN.

    Returns None when the VIN is not 17 characters or holds a character
    outside the transliteration table.
    """
    vin = (vin or "").strip().upper()
    if len(vin) != len(WEIGHTS):
        return None

    total = 0
    for position, (ch, weight) in enumerate(zip(vin, WEIGHTS)):
        if position == CHECK_DIGIT_INDEX:
            continue
        value = transliterate(ch)
        if value is None:
            return None
        total += value * weight

    remainder = total % 11
    return "X" if remainder == 10 else str(remainder)


def validate_check_digit(vin: str) -> CheckDigitResult:
    """Compare position 9 against the computed value. Never raises."""
    vin = (vin or "").strip().upper()
    actual = vin[CHECK_DIGIT_INDEX] if len(vin) > CHECK_DIGIT_INDEX else ""
    result = CheckDigitResult(actual=actual, expected=calculate_check_digit(vin))
    if not result.is_valid:
        logger.debug(f"Check digit mismatch for {vin}: expected {result.expected}, got {actual}")
    return result
