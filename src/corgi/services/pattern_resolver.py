"""
Pattern Resolver
Fetches candidate rules from the dataset store and ranks them per element.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from ..core.rules import PatternRule, RankedCandidates, RankedRules
from ..core.vin import VinSegments
from ..storage.base import DatasetStore

logger = logging.getLogger(__name__)

# Elements a decode must produce; absence is reported as an error
MANDATORY_ELEMENTS = ("make", "model", "year")


@dataclass
class Resolution:
    """Ranked candidates for every element that matched."""
    rules: RankedRules
    year_filtered: bool

    def get(self, element: str) -> Optional[RankedCandidates]:
        return self.rules.candidates(element)

    def winner(self, element: str) -> Optional[PatternRule]:
        ranked = self.get(element)
        return ranked.winner if ranked else None

    def winners(self) -> Dict[str, PatternRule]:
        return {element: self.rules.candidates(element).winner for element in self.rules.elements()}

    def all_candidates(self) -> List[RankedCandidates]:
        return [self.rules.candidates(element) for element in self.rules.elements()]

    def __contains__(self, element: str) -> bool:
        return element in self.rules


class PatternResolver:
    """Resolves one winning rule per element; runner-ups are kept for diagnostics."""

    def __init__(self, store: DatasetStore):
        self.store = store

    async def resolve(
        self,
        segments: VinSegments,
        elements: Optional[Iterable[str]] = None,
        model_year: Optional[int] = None,
        wmi_code: Optional[str] = None,
    ) -> Resolution:
        """
        Args:
            segments: decomposed VIN
            elements: element codes to resolve (all when None)
            model_year: restrict to schemas valid for this year; if none are, retry unrestricted
            wmi_code: WMI key (extended WMIs use 6 characters)
        """
        element_list = list(elements) if elements is not None else None
        candidates = await self.store.match_patterns(segments, element_list, model_year, wmi_code)
        year_filtered = model_year is not None

        if not candidates and model_year is not None:
            logger.debug(f"No schema for {segments.wmi} covers {model_year}; retrying without year filter")
            candidates = await self.store.match_patterns(segments, element_list, None, wmi_code)
            year_filtered = False

        rules = RankedRules(candidates)
        logger.debug(f"Resolved {len(rules)} candidate rules across {len(rules.elements())} elements for {segments.vin}")
        return Resolution(rules=rules, year_filtered=year_filtered)
