"""
Model Year Resolver
Maps VIN position 10 onto calendar years and picks one era.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, List, Optional, Tuple

from ..core.schemas import ModelYearInfo, YearSource

logger = logging.getLogger(__name__)

# 30-symbol cycle (no I, O, Q, U, Z or 0), first era starting 1980
YEAR_ALPHABET = "ABCDEFGHJKLMNPRSTVWXY123456789"
BASE_YEAR = 1980
CYCLE_LENGTH = len(YEAR_ALPHABET)

OVERRIDE_CONFIDENCE = 1.0
PATTERN_CONFIDENCE = 0.9
HEURISTIC_CONFIDENCE = 0.75
SINGLE_ERA_CONFIDENCE = 0.85

YearWindow = Tuple[int, Optional[int]]


@dataclass
class ModelYearResult:
    """Resolved year with its provenance."""
    year: int
    source: YearSource
    confidence: float
    candidates: List[int] = field(default_factory=list)

    def to_component(self) -> ModelYearInfo:
        return ModelYearInfo(
            year=self.year,
            source=self.source,
            confidence=self.confidence,
            candidates=self.candidates,
        )


def candidate_years(year_char: str, latest_year: Optional[int] = None) -> List[int]:
    """
    All calendar years a position-10 character can stand for, oldest first.
    Years past `latest_year` (default: next calendar year) are dropped.
    """
    index = YEAR_ALPHABET.find(year_char.upper()) if year_char else -1
    if index < 0:
        return []
    if latest_year is None:
        latest_year = date.today().year + 1
    years = []
    year = BASE_YEAR + index
    while year <= latest_year:
        years.append(year)
        year += CYCLE_LENGTH
    return years


def _in_windows(year: int, windows: Iterable[YearWindow]) -> bool:
    for start, end in windows:
        if start <= year and (end is None or year <= end):
            return True
    return False


class ModelYearResolver:
    """Resolves position 10 using an override, dataset windows or the position 7 heuristic."""

    def __init__(self, latest_year: Optional[int] = None):
        self.latest_year = latest_year

    def candidates(self, vin: str) -> List[int]:
        return candidate_years(vin[9], self.latest_year)

    def resolve(
        self,
        vin: str,
        override: Optional[int] = None,
        schema_windows: Optional[Iterable[YearWindow]] = None,
    ) -> Optional[ModelYearResult]:
        """
        Args:
            vin: normalized 17-character VIN
            override: explicit model year, always wins
            schema_windows: (year_from, year_to) windows the dataset has for this WMI

        Returns:
            ModelYearResult, or None when position 10 is not a year code and no override is given
        """
        candidates = self.candidates(vin)

        if override is not None:
            return ModelYearResult(override, "override", OVERRIDE_CONFIDENCE, candidates)

        if not candidates:
            logger.debug(f"Position 10 '{vin[9]}' is not a model year code")
            return None

        if schema_windows:
            windows = list(schema_windows)
            covered = [year for year in candidates if _in_windows(year, windows)]
            if len(covered) == 1:
                return ModelYearResult(covered[0], "pattern-derived", PATTERN_CONFIDENCE, candidates)

        if len(candidates) == 1:
            return ModelYearResult(candidates[0], "heuristic", SINGLE_ERA_CONFIDENCE, candidates)

        # Digit at position 7 favors the older era, a letter the newer one
        if vin[6].isdigit():
            year = candidates[-2]
        else:
            year = candidates[-1]
        return ModelYearResult(year, "heuristic", HEURISTIC_CONFIDENCE, candidates)
