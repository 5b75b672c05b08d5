"""
Confidence Scoring Service
Combines per-field evidence into field confidences and one overall score.
The formula is pluggable: pass a different `formula` callable or weights.
"""
import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from dataclasses import dataclass

from ..core.rules import PatternRule, RankedCandidates, WMIRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoringWeights:
    """Weights for the default field formula. Should sum to 1."""
    pattern: float = 0.6
    check_digit: float = 0.2
    wmi: float = 0.2

    # Multiplier applied when an equally ranked runner-up disagrees
    contested_penalty: float = 0.85
    # Check digit factor when position 9 does not verify
    invalid_check_digit_factor: float = 0.5
    # Specificity treated as full confidence (the five VDS positions)
    reference_specificity: int = 5


@dataclass(frozen=True)
class FieldEvidence:
    """Evidence gathered for one decoded field."""
    specificity_ratio: float
    check_digit_valid: bool
    wmi_strength: float
    contested: bool = False


Formula = Callable[[FieldEvidence, ScoringWeights], float]


def weighted_formula(evidence: FieldEvidence, weights: ScoringWeights) -> float:
    check = 1.0 if evidence.check_digit_valid else weights.invalid_check_digit_factor
    score = (
        weights.pattern * evidence.specificity_ratio +
        weights.check_digit * check +
        weights.wmi * evidence.wmi_strength
    )
    if evidence.contested:
        score *= weights.contested_penalty
    return score


def _clamp(value: float) -> float:
    return round(max(0.0, min(1.0, value)), 3)


class ConfidenceScorer:
    """
    Scores decoded fields.
    Field scores feed threshold filtering; the overall score is their mean.
    """

    def __init__(self, weights: Optional[ScoringWeights] = None, formula: Optional[Formula] = None):
        self.weights = weights or ScoringWeights()
        self.formula = formula or weighted_formula

    def wmi_strength(self, wmi: Optional[WMIRecord]) -> float:
        if wmi is None:
            return 0.0
        return 1.0 if wmi.extended else 0.9

    def check_factor(self, check_digit_valid: bool) -> float:
        return 1.0 if check_digit_valid else self.weights.invalid_check_digit_factor

    def specificity_ratio(self, rule: PatternRule) -> float:
        return min(1.0, rule.specificity / max(self.weights.reference_specificity, 1))

    def score_rule(
        self,
        rule: PatternRule,
        check_digit_valid: bool,
        wmi: Optional[WMIRecord],
        contested: bool = False,
    ) -> float:
        evidence = FieldEvidence(
            specificity_ratio=self.specificity_ratio(rule),
            check_digit_valid=check_digit_valid,
            wmi_strength=self.wmi_strength(wmi),
            contested=contested,
        )
        return _clamp(self.formula(evidence, self.weights))

    def score_candidates(
        self,
        ranked: RankedCandidates,
        check_digit_valid: bool,
        wmi: Optional[WMIRecord],
    ) -> List[Tuple[PatternRule, float]]:
        """Score winner and runner-ups. Runner-ups are scaled by their specificity relative to the winner."""
        contested = ranked.is_contested
        winner_score = self.score_rule(ranked.winner, check_digit_valid, wmi, contested)
        scored = [(ranked.winner, winner_score)]
        top = max(ranked.winner.specificity, 1)
        for rule in ranked.runner_ups:
            base = self.score_rule(rule, check_digit_valid, wmi, contested)
            scored.append((rule, _clamp(base * min(1.0, rule.specificity / top) * self.weights.contested_penalty)))
        return scored

    def score_wmi_field(self, wmi: Optional[WMIRecord], check_digit_valid: bool) -> float:
        return _clamp(self.wmi_strength(wmi) * self.check_factor(check_digit_valid))

    def score_year(self, year_confidence: float, check_digit_valid: bool) -> float:
        return _clamp(year_confidence * self.check_factor(check_digit_valid))

    def overall(self, field_scores: Iterable[float]) -> float:
        scores = list(field_scores)
        if not scores:
            return 0.0
        return _clamp(sum(scores) / len(scores))

    def filter_fields(
        self,
        field_scores: Dict[str, float],
        threshold: float,
    ) -> Tuple[List[str], List[str]]:
        """Split field names into (kept, withheld) by the confidence threshold."""
        kept, withheld = [], []
        for name, score in field_scores.items():
            (kept if score >= threshold else withheld).append(name)
        if withheld:
            logger.debug(f"Withheld below threshold {threshold}: {withheld}")
        return kept, withheld


# Singleton
_scorer: Optional[ConfidenceScorer] = None


def get_confidence_scorer() -> ConfidenceScorer:
    global _scorer
    if _scorer is None:
        _scorer = ConfidenceScorer()
    return _scorer
