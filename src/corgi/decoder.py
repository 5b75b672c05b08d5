"""
VIN Decode Orchestrator
Composes decomposition, check digit, WMI lookup, year resolution, pattern
resolution and scoring into a single decode call.
"""
from typing import Any, Dict, List, Optional, Tuple
import asyncio
import logging

import httpx

from .config import Config
from .core.rules import RankedRules, WMIRecord
from .core.schemas import (
    Components,
    DecodeError,
    DecodeMetadata,
    DecodeOptions,
    DecodeResult,
    DecoderConfig,
    EngineInfo,
    PatternMatch,
    PlantInfo,
    VehicleInfo,
    WMIInfo,
)
from .core.vin import VinSegments, decompose, normalize_vin
from .observability import DecodeTimer
from .services.check_digit import CheckDigitResult, validate_check_digit
from .services.model_year import ModelYearResolver, ModelYearResult
from .services.normalizer import ValueNormalizer, get_normalizer
from .services.pattern_resolver import PatternResolver, Resolution
from .services.scoring import ConfidenceScorer, get_confidence_scorer
from .storage.base import DatasetStore
from .storage.cache_manager import DatabaseCacheManager, get_cache_manager
from .storage.registry import create_store, needs_local_file

logger = logging.getLogger(__name__)

# Dataset element code -> (component, field)
ELEMENT_FIELDS: Dict[str, Tuple[str, str]] = {
    "make": ("vehicle", "make"),
    "manufacturer": ("vehicle", "manufacturer"),
    "model": ("vehicle", "model"),
    "series": ("vehicle", "series"),
    "trim": ("vehicle", "trim"),
    "body_class": ("vehicle", "body_style"),
    "drive_type": ("vehicle", "drive_type"),
    "fuel_type": ("vehicle", "fuel_type"),
    "doors": ("vehicle", "doors"),
    "vehicle_type": ("vehicle", "vehicle_type"),
    "transmission": ("vehicle", "transmission"),
    "gvwr": ("vehicle", "gvwr"),
    "cab": ("vehicle", "cab"),
    "bed_length": ("vehicle", "bed_length"),
    "wheelbase": ("vehicle", "wheelbase"),
    "engine.model": ("engine", "model"),
    "engine.cylinders": ("engine", "cylinders"),
    "engine.displacement": ("engine", "displacement"),
    "engine.configuration": ("engine", "configuration"),
    "engine.fuel": ("engine", "fuel"),
    "engine.horsepower": ("engine", "horsepower"),
    "plant.country": ("plant", "country"),
    "plant.city": ("plant", "city"),
    "plant.state": ("plant", "state"),
    "plant.company": ("plant", "company"),
}


class _FieldCollector:
    """Accumulates field values with their confidence before threshold filtering."""

    def __init__(self):
        self.values: Dict[str, Any] = {}
        self.scores: Dict[str, float] = {}
        self.raw: Dict[str, str] = {}

    def put(self, key: str, value: Any, score: float, raw: Optional[str] = None) -> None:
        if value is None:
            return
        self.values[key] = value
        self.scores[key] = score
        if raw is not None:
            self.raw[key] = raw

    def section(self, component: str, kept: List[str]) -> Dict[str, Any]:
        prefix = f"{component}."
        return {
            key[len(prefix):]: value
            for key, value in self.values.items()
            if key.startswith(prefix) and key in kept
        }


class VINDecoder:
    """
    Decodes VINs against an opened dataset store.

    The store is opened once and reused; decode calls are independent and
    may run concurrently.
    """

    def __init__(
        self,
        store: DatasetStore,
        default_options: Optional[DecodeOptions] = None,
        scorer: Optional[ConfidenceScorer] = None,
        normalizer: Optional[ValueNormalizer] = None,
        year_resolver: Optional[ModelYearResolver] = None,
    ):
        self.store = store
        self.default_options = default_options or DecodeOptions()
        self.scorer = scorer or get_confidence_scorer()
        self.normalizer = normalizer or get_normalizer()
        self.year_resolver = year_resolver or ModelYearResolver()
        self.resolver = PatternResolver(store)

    async def decode(self, vin: str, options: Optional[DecodeOptions] = None) -> DecodeResult:
        """
        Decode a VIN.

        Structural and semantic problems are returned in `errors`.

        Raises:
            InfrastructureError: the dataset store failed
        """
        opts = self.default_options.merged(options)
        normalized = normalize_vin(vin)

        with DecodeTimer(normalized) as timer:
            decomposition = decompose(vin)
            if not decomposition.is_valid:
                result = DecodeResult(
                    vin=normalized,
                    valid=False,
                    errors=decomposition.errors,
                    metadata=DecodeMetadata(confidence=0.0, processing_time_ms=timer.stop()),
                )
                timer.record(False, 0.0, [e.code for e in result.errors])
                return result

            result = await self._decode_segments(decomposition.segments, opts, timer)

        timer.record(result.valid, result.metadata.confidence, [e.code for e in result.errors])
        return result

    async def _decode_segments(
        self,
        segments: VinSegments,
        opts: DecodeOptions,
        timer: DecodeTimer,
    ) -> DecodeResult:
        errors: List[DecodeError] = []

        check = validate_check_digit(segments.vin)
        check_error = check.to_error()
        if check_error:
            errors.append(check_error)

        wmi = await self.store.lookup_wmi(segments.wmi, segments.vin)
        if wmi is None:
            errors.append(DecodeError(
                code="WMI_NOT_FOUND",
                category="semantic",
                message=f"Manufacturer code {segments.wmi} is not in the dataset",
                actual=segments.wmi,
            ))
            windows = []
            resolution = Resolution(rules=RankedRules(), year_filtered=False)
        else:
            windows = await self.store.schema_years(wmi.code)

        year = self.year_resolver.resolve(segments.vin, opts.model_year, windows)
        if year is None:
            errors.append(DecodeError(
                code="PATTERN_NOT_FOUND",
                category="semantic",
                message=f"Position 10 '{segments.model_year_char}' does not encode a model year",
                actual=segments.model_year_char,
            ))

        if wmi is not None:
            resolution = await self.resolver.resolve(
                segments, model_year=year.year if year else None, wmi_code=wmi.code
            )

        if wmi is not None and wmi.make is None and "make" not in resolution:
            errors.append(DecodeError(
                code="PATTERN_NOT_FOUND",
                category="semantic",
                message=f"No make recorded for {wmi.code} and no pattern matched element 'make'",
            ))

        if "model" not in resolution:
            errors.append(DecodeError(
                code="PATTERN_NOT_FOUND",
                category="semantic",
                message=f"No pattern matched element 'model' for {segments.wmi}{segments.vds}",
            ))

        fields = self._collect_fields(wmi, year, resolution, check)
        kept, withheld = self.scorer.filter_fields(fields.scores, opts.confidence_threshold)
        overall = self.scorer.overall(fields.scores.values())

        components = self._build_components(segments, fields, kept, wmi, year, check)
        patterns = self._pattern_details(resolution, check, wmi) if opts.include_pattern_details else None

        diagnostics = None
        if opts.include_diagnostics or withheld:
            diagnostics = {"filteredFields": withheld}
            if opts.include_diagnostics:
                diagnostics.update({
                    "fieldConfidence": dict(fields.scores),
                    "candidateCounts": {
                        ranked.element: len(ranked.candidates) for ranked in resolution.all_candidates()
                    },
                    "lookupKey": segments.lookup_key,
                    "wmiCode": wmi.code if wmi else None,
                    "yearFiltered": resolution.year_filtered,
                })

        metadata = DecodeMetadata(
            confidence=overall,
            processing_time_ms=timer.stop(),
            diagnostics=diagnostics,
            raw_data=dict(fields.raw) if opts.include_raw_data else None,
        )

        return DecodeResult(
            vin=segments.vin,
            valid=not any(e.severity == "error" for e in errors),
            components=components,
            errors=errors,
            metadata=metadata,
            patterns=patterns,
        )

    def _collect_fields(
        self,
        wmi: Optional[WMIRecord],
        year: Optional[ModelYearResult],
        resolution: Resolution,
        check: CheckDigitResult,
    ) -> _FieldCollector:
        fields = _FieldCollector()
        check_ok = check.is_valid

        if wmi is not None:
            wmi_score = self.scorer.score_wmi_field(wmi, check_ok)
            fields.put("wmi.code", wmi.code, wmi_score)
            fields.put("vehicle.make", wmi.make, wmi_score, raw=wmi.make)
            fields.put("vehicle.manufacturer", wmi.manufacturer, wmi_score, raw=wmi.manufacturer)
            fields.put("vehicle.vehicle_type", wmi.vehicle_type, wmi_score, raw=wmi.vehicle_type)

        if year is not None:
            year_score = self.scorer.score_year(year.confidence, check_ok)
            fields.put("vehicle.year", year.year, year_score)
            fields.put("model_year.year", year.year, year_score)

        for ranked in resolution.all_candidates():
            target = ELEMENT_FIELDS.get(ranked.element)
            winner = ranked.winner
            if target is None:
                fields.raw[ranked.element] = winner.value
                continue
            score = self.scorer.score_rule(winner, check_ok, wmi, ranked.is_contested)
            value = self.normalizer.normalize(ranked.element, winner.value)
            fields.put(".".join(target), value, score, raw=winner.value)

        return fields

    def _build_components(
        self,
        segments: VinSegments,
        fields: _FieldCollector,
        kept: List[str],
        wmi: Optional[WMIRecord],
        year: Optional[ModelYearResult],
        check: CheckDigitResult,
    ) -> Components:
        vehicle = fields.section("vehicle", kept)
        engine = fields.section("engine", kept)
        plant = fields.section("plant", kept)

        wmi_info = None
        if wmi is not None and "wmi.code" in kept:
            wmi_info = WMIInfo(
                code=wmi.code,
                manufacturer=wmi.manufacturer,
                make=wmi.make,
                country=wmi.country,
                region=wmi.region,
                vehicle_type=wmi.vehicle_type,
            )

        return Components(
            vehicle=VehicleInfo(**vehicle) if vehicle else None,
            wmi=wmi_info,
            plant=PlantInfo(code=segments.plant_code, **plant) if plant else None,
            engine=EngineInfo(**engine) if engine else None,
            model_year=year.to_component() if year is not None and "model_year.year" in kept else None,
            check_digit=check.to_component(),
        )

    def _pattern_details(
        self,
        resolution: Resolution,
        check: CheckDigitResult,
        wmi: Optional[WMIRecord],
    ) -> List[PatternMatch]:
        details = []
        for ranked in resolution.all_candidates():
            for index, (rule, score) in enumerate(self.scorer.score_candidates(ranked, check.is_valid, wmi)):
                details.append(PatternMatch(
                    element=rule.element,
                    value=rule.value,
                    pattern=rule.pattern,
                    specificity=rule.specificity,
                    priority=rule.priority,
                    confidence=score,
                    is_winner=index == 0,
                    attribute_id=rule.attribute_id,
                    schema_id=rule.schema_id,
                ))
        return details

    async def close(self) -> None:
        await self.store.close()

    async def __aenter__(self) -> "VINDecoder":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


async def create_decoder(
    config: Optional[DecoderConfig] = None,
    cache_manager: Optional[DatabaseCacheManager] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> VINDecoder:
    """
    Prepare the dataset (if needed), open the store and return a decoder.

    Raises:
        InfrastructureError: dataset unavailable, download failed or backend unreachable
    """
    config = config or DecoderConfig()
    manager = cache_manager or (get_cache_manager() if needs_local_file(config.runtime, config.database_path) else None)
    app_config = manager.config if manager else Config.from_env()

    path = config.database_path
    if needs_local_file(config.runtime, path):
        path = await manager.ensure_database(path, config.force_fresh)

    store = create_store(path, config.runtime, app_config, transport=transport)
    await store.open()

    default_options = config.default_options
    if "confidence_threshold" not in default_options.model_fields_set and app_config.CONFIDENCE_THRESHOLD:
        default_options = default_options.model_copy(
            update={"confidence_threshold": app_config.CONFIDENCE_THRESHOLD}
        )

    logger.info(f"Decoder ready (runtime={config.runtime}, database={path})")
    return VINDecoder(store, default_options)


class DecoderHolder:
    """
    Lazily creates one shared decoder. Concurrent first callers share a single
    creation task; reset() closes and forgets the decoder.
    """

    def __init__(self, config: Optional[DecoderConfig] = None, factory=create_decoder):
        self.config = config
        self._factory = factory
        self._decoder: Optional[VINDecoder] = None
        self._pending: Optional[asyncio.Task] = None

    async def get(self) -> VINDecoder:
        if self._decoder is not None:
            return self._decoder
        loop = asyncio.get_running_loop()
        if self._pending is None or self._pending.get_loop() is not loop:
            self._pending = loop.create_task(self._create())
        return await asyncio.shield(self._pending)

    async def _create(self) -> VINDecoder:
        try:
            self._decoder = await self._factory(self.config)
            return self._decoder
        finally:
            self._pending = None

    async def reset(self) -> None:
        decoder, self._decoder = self._decoder, None
        if decoder is not None:
            await decoder.close()


_default_holder = DecoderHolder()


async def quick_decode(vin: str, options: Optional[DecodeOptions] = None) -> DecodeResult:
    """Decode with the shared default decoder, creating it on first use."""
    decoder = await _default_holder.get()
    return await decoder.decode(vin, options)


async def reset_default_decoder(config: Optional[DecoderConfig] = None) -> None:
    """Close the shared decoder; the next quick_decode uses `config`."""
    await _default_holder.reset()
    _default_holder.config = config
