"""
Enumerated Value Normalizer
Maps raw dataset free text (body class, drive type, fuel type) onto a closed vocabulary.
"""
import re
import logging
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Order matters: first matching pattern wins
BODY_STYLE_PATTERNS: List[Tuple[str, str]] = [
    (r'sport utility|\bsuv\b|multi-?purpose', "SUV"),
    (r'crossover|\bcuv\b', "Crossover"),
    (r'minivan', "Minivan"),
    (r'pickup', "Pickup"),
    (r'sedan|saloon', "Sedan"),
    (r'hatchback|liftback|notchback', "Hatchback"),
    (r'convertible|cabriolet|roadster', "Convertible"),
    (r'coupe', "Coupe"),
    (r'wagon', "Wagon"),
    (r'\bvan\b', "Van"),
    (r'\bbus\b', "Bus"),
    (r'motorcycle|scooter', "Motorcycle"),
    (r'truck|tractor|chassis cab|cab chassis', "Truck"),
]

DRIVE_TYPE_PATTERNS: List[Tuple[str, str]] = [
    (r'\b2wd\s*/\s*4wd\b|\b4wd\s*/\s*2wd\b', "2WD/4WD"),
    (r'\bawd\b|all[- ]wheel', "AWD"),
    (r'\b4wd\b|\b4x4\b|four[- ]wheel|4-wheel', "4WD"),
    (r'\bfwd\b|front[- ]wheel', "FWD"),
    (r'\brwd\b|rear[- ]wheel', "RWD"),
    (r'\b4x2\b|\b2wd\b|two[- ]wheel', "2WD"),
]

FUEL_TYPE_PATTERNS: List[Tuple[str, str]] = [
    (r'plug-?in', "Plug-in Hybrid"),
    (r'hybrid', "Hybrid"),
    (r'flexible|\bffv\b|e85', "Flexible Fuel"),
    (r'electric|\bbev\b', "Electric"),
    (r'diesel', "Diesel"),
    (r'compressed natural gas|\bcng\b', "CNG"),
    (r'hydrogen|fuel cell', "Hydrogen"),
    (r'liquefied petroleum|\blpg\b|propane', "LPG"),
    (r'gasoline|\bpetrol\b', "Gasoline"),
]

# Element name -> vocabulary
VOCABULARIES: Dict[str, List[Tuple[str, str]]] = {
    "body_class": BODY_STYLE_PATTERNS,
    "drive_type": DRIVE_TYPE_PATTERNS,
    "fuel_type": FUEL_TYPE_PATTERNS,
    "engine.fuel": FUEL_TYPE_PATTERNS,
}


class ValueNormalizer:
    """Canonicalizes enumerated dataset values. Unknown values pass through unchanged."""

    def __init__(self, vocabularies: Dict[str, List[Tuple[str, str]]] = None):
        self.vocabularies = vocabularies or VOCABULARIES
        self._compile_patterns()

    def _compile_patterns(self):
        """Pre-compile regex patterns for efficiency."""
        self.compiled = {
            element: [(re.compile(p, re.IGNORECASE), canonical) for p, canonical in patterns]
            for element, patterns in self.vocabularies.items()
        }

    def handles(self, element: str) -> bool:
        return element in self.compiled

    def normalize(self, element: str, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        for pattern, canonical in self.compiled.get(element, ()):
            if pattern.search(value):
                if canonical != value:
                    logger.debug(f"Normalized {element}: {value!r} -> {canonical!r}")
                return canonical
        return value

    def body_style(self, value: Optional[str]) -> Optional[str]:
        return self.normalize("body_class", value)

    def drive_type(self, value: Optional[str]) -> Optional[str]:
        return self.normalize("drive_type", value)

    def fuel_type(self, value: Optional[str]) -> Optional[str]:
        return self.normalize("fuel_type", value)


# Singleton
_normalizer = None

def get_normalizer() -> ValueNormalizer:
    global _normalizer
    if _normalizer is None:
        _normalizer = ValueNormalizer()
    return _normalizer
