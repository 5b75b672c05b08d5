"""
Dataset Store Interface

Read-only access to WMI records and pattern rules. Every backend shares the
SQL in SqlDatasetStore, so results and ordering are identical; only the way a
query is executed (`_query`) differs.
"""
import re
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from ..core.rules import PatternRule, WMIRecord, pattern_matches, rank_rules
from ..core.vin import VinSegments, wmi_region

logger = logging.getLogger(__name__)

Row = Dict[str, Any]
YearWindow = Tuple[int, Optional[int]]

# Lookup table names come from the dataset; only plain identifiers are interpolated
_IDENTIFIER = re.compile(r'^[A-Za-z_][A-Za-z0-9_]*$')

WMI_SQL = (
    "SELECT w.Id, w.Wmi, mfr.Name AS Manufacturer, m.Name AS Make, "
    "c.Name AS Country, vt.Name AS VehicleType "
    "FROM Wmi w "
    "LEFT JOIN Manufacturer mfr ON w.ManufacturerId = mfr.Id "
    "LEFT JOIN Make m ON w.MakeId = m.Id "
    "LEFT JOIN Country c ON w.CountryId = c.Id "
    "LEFT JOIN VehicleType vt ON w.VehicleTypeId = vt.Id "
    "WHERE w.Wmi = ?"
)

SCHEMA_YEARS_SQL = (
    "SELECT wvs.YearFrom, wvs.YearTo "
    "FROM Wmi_VinSchema wvs "
    "JOIN Wmi w ON w.Id = wvs.WmiId "
    "WHERE w.Wmi = ? "
    "ORDER BY wvs.Id"
)

PATTERN_SQL = (
    "SELECT p.Id, p.Keys, p.AttributeId, COALESCE(p.Priority, 0) AS Priority, "
    "e.Code AS Element, e.LookupTable, "
    "wvs.VinSchemaId, wvs.YearFrom, wvs.YearTo "
    "FROM Pattern p "
    "JOIN Element e ON e.Id = p.ElementId "
    "JOIN Wmi_VinSchema wvs ON wvs.VinSchemaId = p.VinSchemaId "
    "JOIN Wmi w ON w.Id = wvs.WmiId "
    "WHERE w.Wmi = ?"
)


class DatasetStore(ABC):
    """Abstract read interface over the reference dataset."""

    async def open(self) -> "DatasetStore":
        """Prepare the backend. Called once before the first query."""
        return self

    @abstractmethod
    async def lookup_wmi(self, code: str, vin: Optional[str] = None) -> Optional[WMIRecord]:
        """
        Find the manufacturer record for a WMI.

        Args:
            code: 3-character WMI
            vin: full VIN, enables extended lookup (WMI + positions 12-14) for codes ending in 9
        """
        pass

    @abstractmethod
    async def match_patterns(
        self,
        segments: VinSegments,
        elements: Optional[Iterable[str]] = None,
        model_year: Optional[int] = None,
        wmi_code: Optional[str] = None,
    ) -> List[PatternRule]:
        """
        All rules whose pattern matches the VIN, best first.

        Args:
            segments: decomposed VIN
            elements: restrict to these element codes (all when None)
            model_year: keep only schemas whose window contains this year
            wmi_code: WMI key to use (defaults to the 3-character WMI)
        """
        pass

    @abstractmethod
    async def schema_years(self, code: str) -> List[YearWindow]:
        """Applicability windows (year_from, year_to) of the schemas attached to a WMI."""
        pass

    @abstractmethod
    async def close(self) -> None:
        pass


class SqlDatasetStore(DatasetStore):
    """Shared SQL implementation; subclasses only execute queries."""

    @abstractmethod
    async def _query(self, sql: str, params: Sequence[Any] = ()) -> List[Row]:
        """Run a read-only query and return rows as dictionaries."""
        pass

    async def lookup_wmi(self, code: str, vin: Optional[str] = None) -> Optional[WMIRecord]:
        code = code.upper()
        keys = []
        if vin and len(code) == 3 and code.endswith("9") and len(vin) >= 14:
            keys.append((code + vin[11:14].upper(), True))
        keys.append((code, False))

        for key, extended in keys:
            rows = await self._query(WMI_SQL, (key,))
            if rows:
                row = rows[0]
                return WMIRecord(
                    code=row["Wmi"],
                    manufacturer=row.get("Manufacturer"),
                    make=row.get("Make"),
                    country=row.get("Country"),
                    region=wmi_region(code),
                    vehicle_type=row.get("VehicleType"),
                    extended=extended,
                )
        logger.debug(f"WMI {code} not found")
        return None

    async def schema_years(self, code: str) -> List[YearWindow]:
        rows = await self._query(SCHEMA_YEARS_SQL, (code.upper(),))
        return [(row["YearFrom"], row["YearTo"]) for row in rows if row["YearFrom"] is not None]

    async def match_patterns(
        self,
        segments: VinSegments,
        elements: Optional[Iterable[str]] = None,
        model_year: Optional[int] = None,
        wmi_code: Optional[str] = None,
    ) -> List[PatternRule]:
        sql = PATTERN_SQL
        params: List[Any] = [(wmi_code or segments.wmi).upper()]
        if model_year is not None:
            sql += " AND wvs.YearFrom <= ? AND (wvs.YearTo IS NULL OR wvs.YearTo >= ?)"
            params.extend([model_year, model_year])
        element_list = list(elements) if elements is not None else None
        if element_list is not None:
            if not element_list:
                return []
            sql += f" AND e.Code IN ({','.join('?' * len(element_list))})"
            params.extend(element_list)
        sql += " ORDER BY p.Id"

        key = segments.lookup_key
        matched = [row for row in await self._query(sql, params) if _safe_match(row["Keys"], key)]
        values = await self._resolve_values(matched)

        rules = [
            PatternRule(
                element=row["Element"],
                pattern=row["Keys"],
                value=values[index],
                attribute_id=str(row["AttributeId"]).strip() if row["AttributeId"] is not None else None,
                priority=int(row["Priority"] or 0),
                year_from=row["YearFrom"],
                year_to=row["YearTo"],
                schema_id=row["VinSchemaId"],
                order=index,
            )
            for index, row in enumerate(matched)
        ]
        return rank_rules(rule for rule in rules if rule.value)

    async def _resolve_values(self, rows: List[Row]) -> List[Optional[str]]:
        """Resolve AttributeId through the element's lookup table, else use it literally."""
        pending: Dict[str, set] = {}
        for row in rows:
            table = row.get("LookupTable")
            attr = _as_int(row["AttributeId"])
            if table and attr is not None:
                if not _IDENTIFIER.match(table):
                    logger.warning(f"Skipping lookup table with unsafe name {table!r}")
                    continue
                pending.setdefault(table, set()).add(attr)

        names: Dict[Tuple[str, int], str] = {}
        for table, ids in pending.items():
            ordered = sorted(ids)
            lookup_rows = await self._query(
                f'SELECT Id, Name FROM "{table}" WHERE Id IN ({",".join("?" * len(ordered))})',
                ordered,
            )
            for lookup in lookup_rows:
                names[(table, lookup["Id"])] = lookup["Name"]

        values: List[Optional[str]] = []
        for row in rows:
            table = row.get("LookupTable")
            attr = row["AttributeId"]
            if table:
                values.append(names.get((table, _as_int(attr))))
            else:
                values.append(str(attr).strip() if attr is not None else None)
        return values


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _safe_match(pattern: Optional[str], key: str) -> bool:
    if not pattern:
        return False
    try:
        return pattern_matches(pattern, key)
    except ValueError:
        logger.warning(f"Ignoring malformed pattern {pattern!r}")
        return False
