from typing import List, Optional, Tuple

from diagnosis_core.application.ports import ClinicianWorkflowPort
from diagnosis_core.domain.models import DrugRecommendation, PatientContext


class InMemoryClinicianQueue(ClinicianWorkflowPort):
    def __init__(self):
        self.submitted: List[Tuple[DrugRecommendation, Optional[PatientContext]]] = []

    def submit(self, recommendation: DrugRecommendation, context: Optional[PatientContext] = None) -> None:
        self.submitted.append((recommendation, context))
