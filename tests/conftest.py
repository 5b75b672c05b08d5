"""
Shared test fixtures and configuration.
Builds a miniature vPIC-lite dataset covering Honda, Hyundai and one extended-WMI maker.
"""
import asyncio
import gzip
import os
import sqlite3
import sys
import tempfile
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Never touch the real cache or the network from tests
os.environ["CORGI_ENV"] = "testing"
os.environ["CORGI_DISABLE_DB_DOWNLOAD"] = "1"
os.environ["CORGI_CACHE_DIR"] = tempfile.mkdtemp(prefix="corgi-test-cache-")

from corgi.services.check_digit import calculate_check_digit  # noqa: E402


HONDA_VIN = "1HGCM82633A123456"
KONA_VIN = "KM8K2CAB4PU001140"

SCHEMA = """
CREATE TABLE Make (Id INTEGER PRIMARY KEY, Name TEXT);
CREATE TABLE Manufacturer (Id INTEGER PRIMARY KEY, Name TEXT);
CREATE TABLE Country (Id INTEGER PRIMARY KEY, Name TEXT);
CREATE TABLE VehicleType (Id INTEGER PRIMARY KEY, Name TEXT);
CREATE TABLE Wmi (
    Id INTEGER PRIMARY KEY, Wmi TEXT, ManufacturerId INTEGER, MakeId INTEGER,
    CountryId INTEGER, VehicleTypeId INTEGER
);
CREATE TABLE VinSchema (Id INTEGER PRIMARY KEY, Name TEXT);
CREATE TABLE Wmi_VinSchema (
    Id INTEGER PRIMARY KEY, WmiId INTEGER, VinSchemaId INTEGER, YearFrom INTEGER, YearTo INTEGER
);
CREATE TABLE Element (Id INTEGER PRIMARY KEY, Code TEXT, Name TEXT, LookupTable TEXT);
CREATE TABLE Pattern (
    Id INTEGER PRIMARY KEY, VinSchemaId INTEGER, Keys TEXT, ElementId INTEGER,
    AttributeId TEXT, Priority INTEGER
);
CREATE TABLE Model (Id INTEGER PRIMARY KEY, Name TEXT);
CREATE TABLE BodyStyle (Id INTEGER PRIMARY KEY, Name TEXT);
CREATE TABLE DriveType (Id INTEGER PRIMARY KEY, Name TEXT);
CREATE TABLE FuelType (Id INTEGER PRIMARY KEY, Name TEXT);
"""

ROWS = {
    "Make": [(1, "Honda"), (2, "Hyundai"), (3, "Smallco")],
    "Manufacturer": [
        (1, "HONDA OF AMERICA MFG., INC."),
        (2, "HYUNDAI MOTOR CO"),
        (3, "SMALLCO COACHWORKS"),
    ],
    "Country": [(1, "UNITED STATES (USA)"), (2, "SOUTH KOREA")],
    "VehicleType": [(1, "Passenger Car"), (2, "Multipurpose Passenger Vehicle (MPV)")],
    "Wmi": [
        (1, "1HG", 1, 1, 1, 1),
        (2, "KM8", 2, 2, 2, 2),
        (3, "1A9123", 3, 3, 1, 1),
    ],
    "VinSchema": [(1, "Honda Accord 2003-2007"), (2, "Hyundai Kona 2018-2023"), (3, "Smallco")],
    "Wmi_VinSchema": [
        (1, 1, 1, 2003, 2007),
        (2, 2, 2, 2018, 2023),
        (3, 3, 3, 2015, None),
    ],
    "Element": [
        (1, "model", "Model", "Model"),
        (2, "body_class", "Body Class", "BodyStyle"),
        (3, "drive_type", "Drive Type", "DriveType"),
        (4, "engine.cylinders", "Engine Number of Cylinders", None),
        (5, "engine.displacement", "Displacement (L)", None),
        (6, "plant.city", "Plant City", None),
        (7, "plant.country", "Plant Country", None),
        (8, "wheelbase", "Wheel Base (inches)", None),
        (9, "fuel_type", "Fuel Type - Primary", "FuelType"),
        (10, "trim", "Trim", None),
        (11, "abs", "Anti-lock Braking System (ABS)", None),
    ],
    "Model": [(1, "Accord"), (2, "Kona"), (3, "Kona Electric"), (4, "Coach")],
    "BodyStyle": [
        (1, "Sedan/Saloon"),
        (2, "Sport Utility Vehicle (SUV)/Multi-Purpose Vehicle (MPV)"),
        (3, "Limousine"),
    ],
    "DriveType": [(1, "FWD/Front-Wheel Drive"), (2, "AWD/All-Wheel Drive")],
    "FuelType": [(1, "Gasoline"), (2, "Electric")],
    "Pattern": [
        # Honda Accord: key CM826|3A123456
        (1, 1, "CM8", 1, "1", None),
        (2, 1, "CM82", 2, "1", None),
        (3, 1, "C****", 4, "6", None),
        (4, 1, "CM**6", 4, "4", None),
        (5, 1, "CM826", 5, "2.4", None),
        (6, 1, "*****|*A", 6, "MARYSVILLE", None),
        (7, 1, "*****|*A", 7, "UNITED STATES (USA)", None),
        (8, 1, "C", 3, "1", None),
        # Hyundai Kona: key K2CAB|PU001140
        (20, 2, "K2C", 1, "2", None),
        (21, 2, "K2CE", 1, "3", None),
        (22, 2, "K2CA", 2, "2", None),
        (23, 2, "K2*A", 3, "1", None),
        (24, 2, "***AB", 4, "4", None),
        (25, 2, "K2C**", 9, "1", None),
        (26, 2, "*****|*U", 6, "ULSAN", None),
        (27, 2, "*****|*U", 7, "SOUTH KOREA", None),
        (28, 2, "K2", 8, "102.4", None),
        (29, 2, "K[0-9]C", 10, "SEL", None),
        (30, 2, "K2C", 10, "Limited", 1),
        (31, 2, "K", 11, "Standard", None),
        # Smallco (extended WMI 1A9 + 123)
        (40, 3, "CS", 1, "4", None),
        (41, 3, "CS1", 2, "3", None),
    ],
}


def build_dataset(path: Path) -> Path:
    """Write the miniature dataset to `path`."""
    conn = sqlite3.connect(str(path))
    try:
        conn.executescript(SCHEMA)
        for table, rows in ROWS.items():
            placeholders = ",".join("?" * len(rows[0]))
            conn.executemany(f"INSERT INTO {table} VALUES ({placeholders})", rows)
        conn.commit()
    finally:
        conn.close()
    return path


def make_vin(first8: str, last8: str) -> str:
    """Assemble a VIN with a correct check digit."""
    draft = f"{first8}0{last8}"
    return f"{first8}{calculate_check_digit(draft)}{last8}"


SMALLCO_VIN = make_vin("1A9CS123", "FA123456")
UNKNOWN_WMI_VIN = make_vin("ZZZAB123", "5A123456")


class FakeD1Statement:
    def __init__(self, conn: sqlite3.Connection, sql: str):
        self.conn = conn
        self.sql = sql
        self.params = ()

    def bind(self, *params):
        self.params = params
        return self

    async def all(self):
        rows = self.conn.execute(self.sql, self.params).fetchall()
        return {"results": [dict(row) for row in rows], "success": True}


class FakeD1Binding:
    """Mimics an edge database binding on top of sqlite3."""

    def __init__(self, path: Path):
        self.conn = sqlite3.connect(str(path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row

    def prepare(self, sql: str) -> FakeD1Statement:
        return FakeD1Statement(self.conn, sql)

    def close(self):
        self.conn.close()


@pytest.fixture(scope="session")
def dataset_path(tmp_path_factory) -> Path:
    return build_dataset(tmp_path_factory.mktemp("dataset") / "vpic.lite.db")


@pytest.fixture(scope="session")
def dataset_gz(dataset_path) -> bytes:
    return gzip.compress(dataset_path.read_bytes())


@pytest.fixture
def decoder(dataset_path):
    """Decoder over the miniature dataset."""
    from corgi.core.schemas import DecoderConfig
    from corgi.decoder import create_decoder

    instance = asyncio.run(create_decoder(DecoderConfig(database_path=str(dataset_path))))
    yield instance
    asyncio.run(instance.close())


@pytest.fixture
def d1_binding(dataset_path):
    binding = FakeD1Binding(dataset_path)
    yield binding
    binding.close()


@pytest.fixture(autouse=True)
def reset_state():
    """Reset process-wide singletons between tests."""
    from corgi.observability import metrics
    from corgi.storage.cache_manager import reset_cache_manager
    from corgi.storage.registry import clear_d1_adapter

    reset_cache_manager()
    clear_d1_adapter()
    metrics.reset()
    yield
    reset_cache_manager()
    clear_d1_adapter()
