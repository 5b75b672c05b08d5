"""
Dataset rule types and the ranked-candidate arena.

Pattern keys are written against the VIN lookup key (positions 4-8, '|',
positions 10-17). A key token is one of:
    *        any single character
    [A-CX]   character class (ranges allowed, leading ^ negates)
    X        literal character
A pattern shorter than the key constrains only the leading positions.
"""
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

WILDCARD = "*"
SEPARATOR = "|"

# Open-ended applicability windows sort as the most recent
OPEN_WINDOW_END = 9999

Token = Union[None, str, Tuple[bool, FrozenSet[str]]]


@dataclass(frozen=True)
class WMIRecord:
    """Manufacturer identity for a WMI code."""
    code: str
    manufacturer: Optional[str] = None
    make: Optional[str] = None
    country: Optional[str] = None
    region: Optional[str] = None
    vehicle_type: Optional[str] = None
    extended: bool = False


@lru_cache(maxsize=4096)
def tokenize_pattern(pattern: str) -> Tuple[Token, ...]:
    """Split a pattern key into tokens. Wildcards become None."""
    tokens: List[Token] = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == WILDCARD:
            tokens.append(None)
            i += 1
        elif ch == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                raise ValueError(f"Unterminated character class in pattern {pattern!r}")
            body = pattern[i + 1:end]
            negated = body.startswith("^")
            if negated:
                body = body[1:]
            chars = set()
            j = 0
            while j < len(body):
                if j + 2 < len(body) and body[j + 1] == "-":
                    chars.update(chr(c) for c in range(ord(body[j]), ord(body[j + 2]) + 1))
                    j += 3
                else:
                    chars.add(body[j])
                    j += 1
            tokens.append((negated, frozenset(chars)))
            i = end + 1
        else:
            tokens.append(ch)
            i += 1
    return tuple(tokens)


def pattern_specificity(pattern: str) -> int:
    """Number of positions a pattern constrains (separator excluded)."""
    return sum(
        1 for token in tokenize_pattern(pattern)
        if token is not None and token != SEPARATOR
    )


def pattern_matches(pattern: str, key: str) -> bool:
    """True when every token of `pattern` accepts the aligned character of `key`."""
    tokens = tokenize_pattern(pattern)
    if len(tokens) > len(key):
        return False
    for token, ch in zip(tokens, key):
        if token is None:
            continue
        if isinstance(token, tuple):
            negated, chars = token
            if (ch in chars) == negated:
                return False
        elif token != ch:
            return False
    return True


@dataclass(frozen=True)
class PatternRule:
    """One dataset rule assigning a value to an element when its pattern matches."""
    element: str
    pattern: str
    value: str
    attribute_id: Optional[str] = None
    priority: int = 0
    year_from: Optional[int] = None
    year_to: Optional[int] = None
    schema_id: Optional[int] = None
    order: int = 0
    specificity: int = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "specificity", pattern_specificity(self.pattern))

    def matches(self, key: str) -> bool:
        return pattern_matches(self.pattern, key)

    @property
    def rank_key(self) -> Tuple[int, int, int, int, int]:
        """Ascending sort key: specificity, priority, newest window, then insertion order."""
        window_end = self.year_to if self.year_to is not None else OPEN_WINDOW_END
        window_start = self.year_from if self.year_from is not None else 0
        return (-self.specificity, -self.priority, -window_end, -window_start, self.order)


def rank_rules(rules: Iterable[PatternRule]) -> List[PatternRule]:
    return sorted(rules, key=lambda rule: rule.rank_key)


@dataclass(frozen=True)
class RankedCandidates:
    """Winner plus runner-ups for a single element, best first."""
    element: str
    candidates: Tuple[PatternRule, ...]

    @property
    def winner(self) -> PatternRule:
        return self.candidates[0]

    @property
    def runner_ups(self) -> Tuple[PatternRule, ...]:
        return self.candidates[1:]

    @property
    def is_contested(self) -> bool:
        """A runner-up ties the winner on specificity and priority but disagrees on value."""
        top = self.winner
        return any(
            rule.specificity == top.specificity
            and rule.priority == top.priority
            and rule.value != top.value
            for rule in self.runner_ups
        )


class RankedRules:
    """
    Arena of rules keyed by element, each list kept in rank order.
    All tie-break logic lives in PatternRule.rank_key.
    """

    def __init__(self, rules: Iterable[PatternRule] = ()):
        self._by_element: Dict[str, List[PatternRule]] = {}
        for rule in rules:
            self.add(rule)

    def add(self, rule: PatternRule) -> None:
        bucket = self._by_element.setdefault(rule.element, [])
        bucket.append(rule)
        bucket.sort(key=lambda r: r.rank_key)

    def elements(self) -> List[str]:
        return list(self._by_element)

    def candidates(self, element: str) -> Optional[RankedCandidates]:
        bucket = self._by_element.get(element)
        if not bucket:
            return None
        return RankedCandidates(element=element, candidates=tuple(bucket))

    def __len__(self) -> int:
        return sum(len(bucket) for bucket in self._by_element.values())

    def __contains__(self, element: str) -> bool:
        return element in self._by_element
