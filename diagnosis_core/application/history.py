"""
Merges assessment records and both prescription record schemas into one timeline.

Every source is tagged with a ``RecordSource`` and read through the adapter for
that tag, so a schema change in one source only touches its adapter.
"""
import logging
import threading
import time
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeout
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import TypeAdapter

from diagnosis_core.domain.errors import PartialSourceFailure
from diagnosis_core.domain.models import (
    AggregatedHistory,
    HistoryEntry,
    HistoryMedication,
    HistoryPayload,
    RecordSource,
    SourceFailure,
)


logger = logging.getLogger(__name__)

DEFAULT_SOURCE_TIMEOUT_SECONDS = 2.0

Record = Dict[str, Any]
Adapter = Callable[[Record], HistoryEntry]


class HistorySource:
    def __init__(self, name: str, source_type: RecordSource, fetch: Callable[[], Iterable[Record]]):
        self.name = name
        self.source_type = RecordSource(source_type)
        self.fetch = fetch

    def __repr__(self) -> str:
        return f"HistorySource(name={self.name!r}, source_type={self.source_type.value!r})"


_DATETIME = TypeAdapter(datetime)


def parse_timestamp(value: Any) -> datetime:
    if isinstance(value, str):
        value = value.strip()
    if value in (None, ""):
        raise ValueError(f"missing or invalid timestamp: {value!r}")
    ts = _DATETIME.validate_python(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def _first(record: Record, *keys: str) -> Any:
    for key in keys:
        value = record.get(key)
        if value not in (None, ""):
            return value
    return None


def _as_list(value: Any) -> List[Any]:
    if isinstance(value, list):
        return value
    if value in (None, ""):
        return []
    return [value]


def _record_id(record: Record) -> str:
    value = record.get("id")
    if value in (None, ""):
        raise ValueError("record has no id")
    return str(value)


def _condition_names(items: Any) -> List[str]:
    names = []
    for item in _as_list(items):
        if isinstance(item, dict):
            name = _first(item, "condition_name", "condition", "name", "condition_id")
        else:
            name = item
        if name:
            names.append(str(name))
    return names


def _medication(item: Any) -> Optional[HistoryMedication]:
    if isinstance(item, str):
        return HistoryMedication(name=item) if item.strip() else None
    if not isinstance(item, dict):
        return None
    name = _first(item, "name", "drug", "drug_name")
    if not name:
        return None
    dosage = _first(item, "dosage", "usage")
    frequency = item.get("frequency")
    return HistoryMedication(
        name=str(name),
        dosage=str(dosage) if dosage is not None else None,
        frequency=str(frequency) if frequency is not None else None,
    )


def _medications(items: Any) -> List[HistoryMedication]:
    return [m for m in (_medication(i) for i in _as_list(items)) if m is not None]


def adapt_assessment(record: Record) -> HistoryEntry:
    conditions = _condition_names(_first(record, "results", "bayesian_results"))
    risk = record.get("risk_level")
    return HistoryEntry(
        id=_record_id(record),
        source_type=RecordSource.ASSESSMENT,
        timestamp=parse_timestamp(_first(record, "saved_at", "created_at", "timestamp")),
        payload=HistoryPayload(
            title=conditions[0] if conditions else "Symptom assessment",
            conditions=conditions,
            symptoms=[str(s) for s in _as_list(_first(record, "symptoms", "symptoms_reported"))],
            medications=_medications(_first(record, "recommendations", "drug_recommendations")),
            status=record.get("status") or "completed",
            notes=f"Risk level: {risk}" if risk else None,
        ),
    )


def adapt_legacy_prescription(record: Record) -> HistoryEntry:
    conditions = _condition_names(record.get("calculated_probabilities"))
    details = []
    if record.get("age") is not None:
        details.append(f"Age {record['age']}")
    if record.get("gender"):
        details.append(str(record["gender"]))
    if record.get("duration"):
        details.append(f"duration {record['duration']}")
    return HistoryEntry(
        id=_record_id(record),
        source_type=RecordSource.PRESCRIPTION_LEGACY,
        timestamp=parse_timestamp(record.get("created_at")),
        payload=HistoryPayload(
            title=conditions[0] if conditions else "Wellness check",
            conditions=conditions,
            symptoms=[str(s) for s in _as_list(record.get("entered_symptoms"))],
            medications=_medications(record.get("suggested_drugs")),
            status="saved",
            notes=", ".join(details) or None,
        ),
    )


def adapt_v2_prescription(record: Record) -> HistoryEntry:
    diagnosis = record.get("diagnosis")
    return HistoryEntry(
        id=_record_id(record),
        source_type=RecordSource.PRESCRIPTION_V2,
        timestamp=parse_timestamp(_first(record, "issued_at", "created_at")),
        payload=HistoryPayload(
            title=diagnosis or "Prescription",
            conditions=[diagnosis] if diagnosis else [],
            medications=_medications(record.get("medications")),
            status=record.get("status"),
            notes=record.get("instructions"),
        ),
    )


ADAPTERS: Dict[RecordSource, Adapter] = {
    RecordSource.ASSESSMENT: adapt_assessment,
    RecordSource.PRESCRIPTION_LEGACY: adapt_legacy_prescription,
    RecordSource.PRESCRIPTION_V2: adapt_v2_prescription,
}


def read_source(source: HistorySource) -> List[HistoryEntry]:
    adapter = ADAPTERS[source.source_type]
    entries: List[HistoryEntry] = []
    for record in source.fetch():
        try:
            entries.append(adapter(record))
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning("Skipping malformed %s record from %s: %s", source.source_type.value, source.name, e)
    return entries


def start_read(source: HistorySource) -> "Future[List[HistoryEntry]]":
    """
    Reads one source on a daemon thread.

    A source that never answers leaves only an abandoned daemon thread behind,
    so it cannot keep the process alive after the caller has given up on it.
    """
    future: "Future[List[HistoryEntry]]" = Future()

    def run() -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(read_source(source))
        except Exception as e:
            future.set_exception(e)

    threading.Thread(target=run, name=f"history-source-{source.name}", daemon=True).start()
    return future


def aggregate(
    sources: Sequence[HistorySource],
    timeout_seconds: float = DEFAULT_SOURCE_TIMEOUT_SECONDS,
) -> AggregatedHistory:
    """
    Reads every source concurrently and merges them, newest first.

    Each source gets the same deadline measured from the start of the call.
    A source that raises or runs past the deadline is dropped and reported in
    ``failures``; the others still make it into the result.
    """
    if not sources:
        return AggregatedHistory()

    results: List[Tuple[HistorySource, List[HistoryEntry]]] = []
    failures: List[SourceFailure] = []

    started = time.monotonic()
    futures = [(source, start_read(source)) for source in sources]
    for source, future in futures:
        remaining = max(0.0, timeout_seconds - (time.monotonic() - started))
        try:
            results.append((source, future.result(timeout=remaining)))
        except FutureTimeout:
            failures.append(_record_failure(source, TimeoutError(f"no response within {timeout_seconds}s")))
        except Exception as e:
            failures.append(_record_failure(source, e))

    return AggregatedHistory(entries=merge_entries(results), failures=failures)


def merge_entries(results: Iterable[Tuple[HistorySource, List[HistoryEntry]]]) -> List[HistoryEntry]:
    seen = set()
    merged: List[HistoryEntry] = []
    for _, entries in results:
        for entry in entries:
            key = (entry.source_type, entry.id)
            if key in seen:
                continue
            seen.add(key)
            merged.append(entry)
    merged.sort(key=lambda e: (e.source_type.value, e.id))
    merged.sort(key=lambda e: e.timestamp, reverse=True)
    return merged


def _record_failure(source: HistorySource, cause: BaseException) -> SourceFailure:
    failure = PartialSourceFailure(source.name, source.source_type.value, cause)
    logger.warning("%s", failure.message)
    return SourceFailure(
        source_name=source.name,
        source_type=source.source_type,
        error_kind=failure.kind.value,
        message=failure.message,
    )
