"""
Unit tests for build_components wiring.

The database pool is replaced by a stand-in that records open and close.
"""

import pytest

from ldt_pipeline.core.errors import ConfigurationError
from ldt_pipeline.ingest.factory import build_components
from ldt_pipeline.warehouse import connection

pytestmark = pytest.mark.unit


class RecordingPool:
    """Stand-in for DatabaseConnectionPool that never connects"""

    instances = []

    def __init__(self):
        self.opened = False
        self.closed = False
        RecordingPool.instances.append(self)

    @classmethod
    def from_settings(cls, settings, timeout=30.0):
        return cls()

    def open(self):
        self.opened = True

    def close(self):
        self.closed = True


@pytest.fixture
def recording_pool(monkeypatch):
    RecordingPool.instances = []
    monkeypatch.setattr(connection, "DatabaseConnectionPool", RecordingPool)
    return RecordingPool


class TestBuildComponents:
    """Tests for build_components"""

    def test_in_memory_setup_opens_no_pool(self, settings, memory_store, owner_directory, recording_pool):
        components = build_components(settings, store=memory_store, directory=owner_directory)

        assert components.pool is None
        assert recording_pool.instances == []

    def test_database_setup_keeps_the_pool(self, settings, recording_pool):
        components = build_components(settings.model_copy(update={"owner_directory_file": None}))

        [pool] = recording_pool.instances
        assert components.pool is pool
        assert pool.opened and not pool.closed

        components.close()
        assert pool.closed

    def test_pool_closed_when_mappings_are_invalid(self, settings, tmp_path, recording_pool):
        """Test a configuration error after the pool opened does not leak it"""
        mapping_file = tmp_path / "mappings.yaml"
        mapping_file.write_text("mappings: [unclosed\n")

        with pytest.raises(ConfigurationError):
            build_components(settings.model_copy(update={"record_mapping_file": str(mapping_file)}))

        [pool] = recording_pool.instances
        assert pool.opened
        assert pool.closed

    def test_pool_closed_when_owner_file_is_invalid(self, settings, tmp_path, recording_pool):
        owners_file = tmp_path / "owners.yaml"
        owners_file.write_text("owners: [unclosed\n")

        with pytest.raises(ConfigurationError):
            build_components(settings.model_copy(update={"owner_directory_file": str(owners_file)}))

        [pool] = recording_pool.instances
        assert pool.closed
