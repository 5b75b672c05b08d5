from typing import Any, Dict, List, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

# --- Enums (defined as Literals/Constants for Pydantic) ---

ErrorCode = Literal[
    "INVALID_LENGTH",
    "INVALID_CHARACTERS",
    "INVALID_CHECK_DIGIT",
    "WMI_NOT_FOUND",
    "PATTERN_NOT_FOUND",
]
ErrorCategory = Literal["structural", "semantic", "infrastructure"]
ErrorSeverity = Literal["error", "warning"]
YearSource = Literal["override", "heuristic", "pattern-derived"]
RuntimeType = Literal["node", "browser", "edge"]

SCHEMA_VERSION = "1.0"


class CamelModel(BaseModel):
    """Frozen model that serializes with camelCase keys."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        protected_namespaces=(),
    )


# --- Options / Config ---

class DecodeOptions(CamelModel):
    model_year: Optional[int] = Field(default=None, ge=1980, le=2100)
    include_pattern_details: bool = False
    include_raw_data: bool = False
    confidence_threshold: float = Field(default=0.0, ge=0.0, le=1.0)
    include_diagnostics: bool = False

    def merged(self, overrides: Optional["DecodeOptions"]) -> "DecodeOptions":
        """Overlay explicitly-set fields of `overrides` on top of these defaults."""
        if overrides is None:
            return self
        return self.model_copy(update=overrides.model_dump(exclude_unset=True))


class DecoderConfig(CamelModel):
    database_path: Optional[str] = Field(
        default=None, description="Explicit file path, snapshot URL or backend token ('d1')"
    )
    force_fresh: bool = False
    runtime: RuntimeType = "node"
    default_options: DecodeOptions = Field(default_factory=DecodeOptions)


# --- Errors ---

class DecodeError(CamelModel):
    code: ErrorCode
    category: ErrorCategory
    message: str
    severity: ErrorSeverity = "error"
    expected: Optional[str] = None
    actual: Optional[str] = None
    positions: Optional[List[int]] = None


# --- Components ---

class VehicleInfo(CamelModel):
    make: Optional[str] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    series: Optional[str] = None
    trim: Optional[str] = None
    body_style: Optional[str] = None
    drive_type: Optional[str] = None
    fuel_type: Optional[str] = None
    doors: Optional[str] = None
    vehicle_type: Optional[str] = None
    transmission: Optional[str] = None
    gvwr: Optional[str] = None
    cab: Optional[str] = None
    bed_length: Optional[str] = None
    wheelbase: Optional[str] = None


class WMIInfo(CamelModel):
    code: str
    manufacturer: Optional[str] = None
    make: Optional[str] = None
    country: Optional[str] = None
    region: Optional[str] = None
    vehicle_type: Optional[str] = None


class PlantInfo(CamelModel):
    code: str
    country: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    company: Optional[str] = None


class EngineInfo(CamelModel):
    model: Optional[str] = None
    cylinders: Optional[str] = None
    displacement: Optional[str] = None
    configuration: Optional[str] = None
    fuel: Optional[str] = None
    horsepower: Optional[str] = None


class ModelYearInfo(CamelModel):
    year: int
    source: YearSource
    confidence: float = Field(..., ge=0.0, le=1.0)
    candidates: List[int] = Field(default_factory=list)


class CheckDigitInfo(CamelModel):
    position: int = 9
    actual: str
    expected: str
    is_valid: bool


class Components(CamelModel):
    vehicle: Optional[VehicleInfo] = None
    wmi: Optional[WMIInfo] = None
    plant: Optional[PlantInfo] = None
    engine: Optional[EngineInfo] = None
    model_year: Optional[ModelYearInfo] = None
    check_digit: Optional[CheckDigitInfo] = None


# --- Patterns / Metadata ---

class PatternMatch(CamelModel):
    element: str
    value: str
    pattern: str
    specificity: int
    priority: int = 0
    confidence: float = Field(..., ge=0.0, le=1.0)
    is_winner: bool
    attribute_id: Optional[str] = None
    schema_id: Optional[int] = None


class DecodeMetadata(CamelModel):
    confidence: float = Field(..., ge=0.0, le=1.0)
    processing_time_ms: float
    schema_version: str = SCHEMA_VERSION
    diagnostics: Optional[Dict[str, Any]] = None
    raw_data: Optional[Dict[str, str]] = None


class DecodeResult(CamelModel):
    vin: str
    valid: bool
    components: Components = Field(default_factory=Components)
    errors: List[DecodeError] = Field(default_factory=list)
    metadata: Optional[DecodeMetadata] = None
    patterns: Optional[List[PatternMatch]] = None

    @field_validator("errors")
    @classmethod
    def errors_are_recoverable(cls, errors: List[DecodeError]) -> List[DecodeError]:
        """Infrastructure failures are raised, never embedded in a result."""
        for error in errors:
            if error.category == "infrastructure":
                raise ValueError(f"Infrastructure error {error.code} cannot be part of a DecodeResult")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
