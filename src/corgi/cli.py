"""
Corgi command line interface.

Usage:
    corgi decode <vin> [--patterns] [--year N] [--format json|text] [--database path]

Exit codes: 0 when a decode completed (even if the VIN is invalid),
1 on infrastructure failure, 2 on usage errors.
"""
import argparse
import asyncio
import json
import logging
import sys
from typing import List, Optional

from pydantic import ValidationError

from .config import config
from .core.errors import InfrastructureError
from .core.schemas import DecodeOptions, DecodeResult, DecoderConfig
from .decoder import create_decoder

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INFRASTRUCTURE = 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="corgi",
        description="Decode Vehicle Identification Numbers offline",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    decode = subparsers.add_parser("decode", help="Decode a single VIN")
    decode.add_argument("vin", help="17-character VIN")
    decode.add_argument("--patterns", action="store_true", help="Include matched pattern details")
    decode.add_argument("--year", type=int, default=None, help="Model year override")
    decode.add_argument("--format", choices=["json", "text"], default="json", help="Output format")
    decode.add_argument("--database", default=None, help="Path to a vPIC-lite database file")
    decode.add_argument("--force-fresh", action="store_true", help="Rebuild the cached dataset")
    decode.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def format_text(result: DecodeResult) -> str:
    """Human-readable summary of a decode result."""
    lines = [f"VIN:   {result.vin}", f"Valid: {'yes' if result.valid else 'no'}"]
    components = result.components

    if components.vehicle:
        v = components.vehicle
        summary = " ".join(str(part) for part in (v.year, v.make, v.model, v.trim) if part)
        lines.append(f"Vehicle: {summary}")
        for label, value in (
            ("Body", v.body_style), ("Drive", v.drive_type), ("Fuel", v.fuel_type),
            ("Series", v.series), ("Cab", v.cab), ("Bed length", v.bed_length), ("Wheelbase", v.wheelbase),
        ):
            if value:
                lines.append(f"  {label}: {value}")
    if components.engine:
        e = components.engine
        engine = ", ".join(
            f"{label} {value}" for label, value in (
                ("model", e.model), ("cylinders", e.cylinders), ("displacement", e.displacement),
                ("fuel", e.fuel), ("hp", e.horsepower),
            ) if value
        )
        lines.append(f"Engine: {engine}")
    if components.wmi:
        w = components.wmi
        lines.append(f"Manufacturer: {w.manufacturer or '-'} ({w.country or w.region or 'unknown origin'})")
    if components.plant:
        p = components.plant
        location = ", ".join(part for part in (p.city, p.state, p.country) if part)
        lines.append(f"Plant {p.code}: {location}")
    if components.model_year:
        y = components.model_year
        lines.append(f"Model year: {y.year} ({y.source}, confidence {y.confidence:.2f})")
    if components.check_digit:
        c = components.check_digit
        status = "ok" if c.is_valid else f"expected {c.expected}"
        lines.append(f"Check digit: {c.actual} ({status})")
    if result.metadata:
        lines.append(f"Confidence: {result.metadata.confidence:.2f}")

    for error in result.errors:
        lines.append(f"[{error.severity.upper()}] {error.code}: {error.message}")

    if result.patterns:
        lines.append("Patterns:")
        for match in result.patterns:
            marker = "*" if match.is_winner else " "
            lines.append(
                f" {marker} {match.element:<22} {match.pattern:<16} -> {match.value} "
                f"(specificity {match.specificity}, confidence {match.confidence:.2f})"
            )
    return "\n".join(lines)


async def run_decode(args: argparse.Namespace, options: DecodeOptions) -> DecodeResult:
    decoder = await create_decoder(DecoderConfig(database_path=args.database, force_fresh=args.force_fresh))
    try:
        return await decoder.decode(args.vin, options)
    finally:
        await decoder.close()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        options = DecodeOptions(include_pattern_details=args.patterns, model_year=args.year)
    except ValidationError as e:
        parser.error("; ".join(f"--year: {err['msg']}" for err in e.errors()))

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        result = asyncio.run(run_decode(args, options))
    except InfrastructureError as e:
        logger.error(f"Decode failed: {e}")
        print(f"error: {e}", file=sys.stderr)
        return EXIT_INFRASTRUCTURE

    if args.format == "json":
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(format_text(result))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
