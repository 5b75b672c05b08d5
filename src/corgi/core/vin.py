"""
VIN Segment Decomposer
Normalizes a raw VIN, validates its structure and slices it into WMI/VDS/check digit/VIS.
"""
import re
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from .schemas import DecodeError

logger = logging.getLogger(__name__)

VIN_LENGTH = 17

# Letters I, O and Q are never used in a VIN
INVALID_CHARACTER = re.compile(r'[^0-9A-HJ-NPR-Z]')


@dataclass(frozen=True)
class VinSegments:
    """Positional views into a normalized 17-character VIN."""
    vin: str

    @property
    def wmi(self) -> str:
        return self.vin[:3]

    @property
    def vds(self) -> str:
        return self.vin[3:8]

    @property
    def check_digit(self) -> str:
        return self.vin[8]

    @property
    def vis(self) -> str:
        return self.vin[9:]

    @property
    def model_year_char(self) -> str:
        return self.vin[9]

    @property
    def plant_code(self) -> str:
        return self.vin[10]

    @property
    def serial(self) -> str:
        return self.vin[11:]

    @property
    def lookup_key(self) -> str:
        """Dataset pattern key: positions 4-8, a separator, then positions 10-17."""
        return f"{self.vds}|{self.vis}"


@dataclass
class DecompositionResult:
    """Outcome of decomposing a raw VIN."""
    normalized: str
    segments: Optional[VinSegments] = None
    errors: List[DecodeError] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.segments is not None


def normalize_vin(vin: str) -> str:
    """Uppercase and trim."""
    return (vin or "").strip().upper()


def decompose(vin: str) -> DecompositionResult:
    """
    Validate and split a VIN.

    Length and character problems are reported together; either one
    withholds segments so no dataset query is made for this VIN.
    """
    normalized = normalize_vin(vin)
    errors: List[DecodeError] = []

    if len(normalized) != VIN_LENGTH:
        errors.append(DecodeError(
            code="INVALID_LENGTH",
            category="structural",
            message=f"VIN must be {VIN_LENGTH} characters, got {len(normalized)}",
            expected=str(VIN_LENGTH),
            actual=str(len(normalized)),
        ))

    bad_positions = [m.start() + 1 for m in INVALID_CHARACTER.finditer(normalized)]
    if bad_positions:
        bad_chars = "".join(sorted({normalized[p - 1] for p in bad_positions}))
        errors.append(DecodeError(
            code="INVALID_CHARACTERS",
            category="structural",
            message=f"VIN contains invalid characters '{bad_chars}' (I, O, Q and symbols are not allowed)",
            actual=bad_chars,
            positions=bad_positions,
        ))

    if errors:
        logger.debug(f"Rejected VIN {normalized!r}: {[e.code for e in errors]}")
        return DecompositionResult(normalized=normalized, errors=errors)

    return DecompositionResult(normalized=normalized, segments=VinSegments(normalized))


# ISO 3780 regions keyed by the first WMI character
REGIONS = (
    ("ABCDEFGH", "Africa"),
    ("JKLMNPR", "Asia"),
    ("STUVWXYZ", "Europe"),
    ("12345", "North America"),
    ("67", "Oceania"),
    ("890", "South America"),
)


def wmi_region(wmi: str) -> Optional[str]:
    if not wmi:
        return None
    first = wmi[0].upper()
    for letters, region in REGIONS:
        if first in letters:
            return region
    return None
