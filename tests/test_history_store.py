import os
import tempfile

import pytest

from diagnosis_core.domain.errors import ExternalUnavailable
from diagnosis_core.domain.models import RecordSource
from diagnosis_core.infrastructure.history.json_store import JsonHistoryStore


@pytest.fixture
def temp_storage():
    """Create a temporary storage file for testing."""
    with tempfile.TemporaryDirectory() as tmp:
        yield os.path.join(tmp, "nested", "history.json")


class TestJsonHistoryStore:
    """Test the append-only JSON history store."""

    def test_creates_storage_file(self, temp_storage):
        JsonHistoryStore(temp_storage)
        assert os.path.exists(temp_storage)

    def test_append_and_read(self, temp_storage):
        store = JsonHistoryStore(temp_storage)
        assert store.append(RecordSource.PRESCRIPTION_V2, {"id": "p1", "diagnosis": "Sinusitis"})
        assert store.read(RecordSource.PRESCRIPTION_V2) == [{"id": "p1", "diagnosis": "Sinusitis"}]
        assert store.read(RecordSource.ASSESSMENT) == []

    def test_duplicate_id_is_ignored(self, temp_storage):
        store = JsonHistoryStore(temp_storage)
        assert store.append(RecordSource.ASSESSMENT, {"id": "a1", "risk_level": "low"})
        assert not store.append(RecordSource.ASSESSMENT, {"id": "a1", "risk_level": "high"})
        assert store.read(RecordSource.ASSESSMENT) == [{"id": "a1", "risk_level": "low"}]

    def test_same_id_in_other_source(self, temp_storage):
        store = JsonHistoryStore(temp_storage)
        assert store.append(RecordSource.ASSESSMENT, {"id": "x"})
        assert store.append(RecordSource.PRESCRIPTION_LEGACY, {"id": "x"})

    def test_record_needs_id(self, temp_storage):
        store = JsonHistoryStore(temp_storage)
        with pytest.raises(ValueError):
            store.append(RecordSource.ASSESSMENT, {"risk_level": "low"})

    def test_persists_across_instances(self, temp_storage):
        JsonHistoryStore(temp_storage).append("prescriptionLegacy", {"id": "w1"})
        assert JsonHistoryStore(temp_storage).read(RecordSource.PRESCRIPTION_LEGACY) == [{"id": "w1"}]

    def test_corrupt_file(self, temp_storage):
        store = JsonHistoryStore(temp_storage)
        with open(temp_storage, "w", encoding="utf-8") as f:
            f.write("{broken")
        with pytest.raises(ExternalUnavailable):
            store.read(RecordSource.ASSESSMENT)
