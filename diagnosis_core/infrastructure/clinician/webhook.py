import logging
from typing import Optional

import requests

from diagnosis_core.application.ports import ClinicianWorkflowPort
from diagnosis_core.domain.models import DrugRecommendation, PatientContext


logger = logging.getLogger(__name__)


class WebhookClinicianWorkflowAdapter(ClinicianWorkflowPort):
    """Posts approval-gated recommendations to the clinician review queue."""

    def __init__(self, url: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def submit(self, recommendation: DrugRecommendation, context: Optional[PatientContext] = None) -> None:
        body = {
            "recommendation": recommendation.model_dump(mode="json"),
            "context": context.model_dump(mode="json") if context is not None else None,
        }
        try:
            resp = self.session.post(self.url, json=body, timeout=self.timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            # Delivery is best effort; the patient-facing result is unaffected.
            logger.warning("Clinician submission for %s failed: %s", recommendation.condition_id, e)
            return
        logger.info("Submitted %s for clinician approval", recommendation.drug_name)
