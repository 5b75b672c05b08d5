"""
Tests for dataset stores and backend selection.
"""
import asyncio

import httpx
import pytest

from conftest import HONDA_VIN, KONA_VIN, SMALLCO_VIN


def run(coro):
    return asyncio.run(coro)


async def _with_store(store, action):
    await store.open()
    try:
        return await action(store)
    finally:
        await store.close()


# =============================================================================
# SQLITE STORE TESTS
# =============================================================================

class TestSQLiteStore:
    """Tests for the local file backend."""

    def test_lookup_wmi(self, dataset_path):
        """Test WMI resolution joins manufacturer, make, country and type."""
        from corgi.storage.sqlite_store import SQLiteStore

        wmi = run(_with_store(SQLiteStore(str(dataset_path)), lambda s: s.lookup_wmi("KM8")))

        assert wmi.code == "KM8"
        assert wmi.make == "Hyundai"
        assert wmi.manufacturer == "HYUNDAI MOTOR CO"
        assert wmi.country == "SOUTH KOREA"
        assert wmi.region == "Asia"
        assert not wmi.extended

    def test_lookup_unknown_wmi(self, dataset_path):
        """Test unknown codes return None rather than raising."""
        from corgi.storage.sqlite_store import SQLiteStore

        assert run(_with_store(SQLiteStore(str(dataset_path)), lambda s: s.lookup_wmi("ZZZ"))) is None

    def test_extended_wmi(self, dataset_path):
        """Test codes ending in 9 use positions 12-14 when the dataset has them."""
        from corgi.storage.sqlite_store import SQLiteStore

        wmi = run(_with_store(SQLiteStore(str(dataset_path)), lambda s: s.lookup_wmi("1A9", SMALLCO_VIN)))

        assert wmi.code == "1A9123"
        assert wmi.make == "Smallco"
        assert wmi.extended

    def test_schema_years(self, dataset_path):
        """Test applicability windows for a WMI."""
        from corgi.storage.sqlite_store import SQLiteStore

        async def action(store):
            return await store.schema_years("KM8"), await store.schema_years("1A9123")

        kona, smallco = run(_with_store(SQLiteStore(str(dataset_path)), action))

        assert kona == [(2018, 2023)]
        assert smallco == [(2015, None)]

    def test_match_patterns_resolves_lookups(self, dataset_path):
        """Test lookup-table attributes become names and literals stay literal."""
        from corgi.core.vin import decompose
        from corgi.storage.sqlite_store import SQLiteStore

        segments = decompose(HONDA_VIN).segments
        rules = run(_with_store(SQLiteStore(str(dataset_path)), lambda s: s.match_patterns(segments)))

        values = {(r.element, r.value) for r in rules}
        assert ("model", "Accord") in values
        assert ("body_class", "Sedan/Saloon") in values
        assert ("engine.displacement", "2.4") in values
        assert ("plant.city", "MARYSVILLE") in values
        assert all(r.schema_id == 1 for r in rules)

    def test_match_patterns_year_filter(self, dataset_path):
        """Test schemas outside the year window are excluded."""
        from corgi.core.vin import decompose
        from corgi.storage.sqlite_store import SQLiteStore

        segments = decompose(KONA_VIN).segments

        async def action(store):
            inside = await store.match_patterns(segments, model_year=2020)
            outside = await store.match_patterns(segments, model_year=2010)
            return inside, outside

        inside, outside = run(_with_store(SQLiteStore(str(dataset_path)), action))

        assert inside
        assert outside == []

    def test_missing_file(self, tmp_path):
        """Test opening a missing file is an infrastructure failure."""
        from corgi.core.errors import BackendError
        from corgi.storage.sqlite_store import SQLiteStore

        with pytest.raises(BackendError):
            run(SQLiteStore(str(tmp_path / "missing.db")).open())


# =============================================================================
# D1 STORE TESTS
# =============================================================================

class TestD1Store:
    """Tests for the edge binding backend."""

    def test_same_results_as_sqlite(self, dataset_path, d1_binding):
        """Test both backends produce identical rules in identical order."""
        from corgi.core.vin import decompose
        from corgi.storage.d1_store import D1Store
        from corgi.storage.sqlite_store import SQLiteStore

        segments = decompose(KONA_VIN).segments

        async def action(store):
            return await store.match_patterns(segments, model_year=2023, wmi_code="KM8")

        local = run(_with_store(SQLiteStore(str(dataset_path)), action))
        edge = run(_with_store(D1Store(d1_binding), action))

        assert local == edge
        assert len(edge) > 0

    def test_wmi_lookup(self, d1_binding):
        """Test WMI resolution over the binding."""
        from corgi.storage.d1_store import D1Store

        wmi = run(_with_store(D1Store(d1_binding), lambda s: s.lookup_wmi("1HG")))

        assert wmi.make == "Honda"

    def test_binding_failure(self):
        """Test binding errors surface as BackendError."""
        from corgi.core.errors import BackendError
        from corgi.storage.d1_store import D1Store

        class BrokenBinding:
            def prepare(self, sql):
                raise RuntimeError("binding gone")

        with pytest.raises(BackendError):
            run(D1Store(BrokenBinding()).lookup_wmi("1HG"))


# =============================================================================
# REMOTE SNAPSHOT TESTS
# =============================================================================

class TestRemoteSnapshotStore:
    """Tests for the URL-backed store."""

    def test_fetch_and_query(self, dataset_gz):
        """Test the snapshot is downloaded once and queried locally."""
        from corgi.storage.remote_store import RemoteSnapshotStore

        requests = []

        def handler(request):
            requests.append(request.url.path)
            return httpx.Response(200, content=dataset_gz)

        store = RemoteSnapshotStore("https://example.test/vpic.lite.db.gz", transport=httpx.MockTransport(handler))

        async def action(s):
            await s.open()
            return await s.lookup_wmi("KM8")

        wmi = run(_with_store(store, action))

        assert wmi.make == "Hyundai"
        assert requests == ["/vpic.lite.db.gz"]
        assert store._workdir is None

    def test_http_failure(self):
        """Test a failed fetch raises DownloadError."""
        from corgi.core.errors import DownloadError
        from corgi.storage.remote_store import RemoteSnapshotStore

        store = RemoteSnapshotStore(
            "https://example.test/missing.gz",
            transport=httpx.MockTransport(lambda request: httpx.Response(404)),
        )

        with pytest.raises(DownloadError):
            run(store.open())


# =============================================================================
# REGISTRY TESTS
# =============================================================================

class TestRegistry:
    """Tests for backend selection."""

    def test_local_path(self, dataset_path):
        """Test a plain path selects SQLite."""
        from corgi.storage.registry import create_store
        from corgi.storage.sqlite_store import SQLiteStore

        assert isinstance(create_store(str(dataset_path)), SQLiteStore)

    def test_url_selects_remote(self):
        """Test http(s) locations select the remote snapshot store."""
        from corgi.storage.registry import create_store, needs_local_file
        from corgi.storage.remote_store import RemoteSnapshotStore

        store = create_store("https://example.test/vpic.lite.db.gz")

        assert isinstance(store, RemoteSnapshotStore)
        assert not needs_local_file("node", "https://example.test/vpic.lite.db.gz")

    def test_edge_requires_binding(self):
        """Test the edge runtime fails until a binding is registered."""
        from corgi.core.errors import BackendError
        from corgi.storage.registry import create_store

        with pytest.raises(BackendError):
            create_store(None, runtime="edge")

    def test_edge_with_binding(self, d1_binding):
        """Test the registered binding is used for edge and the d1 token."""
        from corgi.storage.d1_store import D1Store
        from corgi.storage.registry import create_store, init_d1_adapter, needs_local_file

        init_d1_adapter(d1_binding)

        assert isinstance(create_store(None, runtime="edge"), D1Store)
        assert isinstance(create_store("d1"), D1Store)
        assert not needs_local_file("edge", None)
        assert not needs_local_file("node", "d1")

    def test_node_requires_path(self):
        """Test the node runtime needs a local file."""
        from corgi.core.errors import BackendError
        from corgi.storage.registry import create_store

        with pytest.raises(BackendError):
            create_store(None, runtime="node")
