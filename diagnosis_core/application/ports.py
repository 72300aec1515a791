from typing import Any, Dict, Iterable, List, Optional, Protocol

from diagnosis_core.domain.models import Condition, DrugRecommendation, PatientContext, RecordSource, Symptom, SymptomMatch


class ReferenceDataPort(Protocol):
    def get_conditions(self) -> List[Condition]:
        ...

    def get_symptoms(self) -> List[Symptom]:
        ...

    def get_aliases(self) -> Dict[str, List[str]]:
        """Maps symptom id to extra alias strings not carried on the Symptom itself."""
        ...


class SessionStorePort(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


class ClinicianWorkflowPort(Protocol):
    def submit(self, recommendation: DrugRecommendation, context: Optional[PatientContext] = None) -> None:
        """
        Fire-and-forget hand-off of an approval-gated recommendation.
        Implementations must not raise on delivery failure.
        """
        ...


class HistoryStorePort(Protocol):
    def append(self, source_type: RecordSource, record: Dict[str, Any]) -> bool:
        ...

    def read(self, source_type: RecordSource) -> Iterable[Dict[str, Any]]:
        ...


class SymptomMatcher(Protocol):
    def match(self, text: str) -> List[SymptomMatch]:
        ...
