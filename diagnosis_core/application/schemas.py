from typing import List, Optional

from pydantic import BaseModel

from diagnosis_core.domain.models import AssessmentSnapshot, DiagnosisResult, DrugRecommendation, FollowUpQuestion


DISCLAIMER = (
    "This is NOT a medical diagnosis. Results are probabilistic suggestions for discussion "
    "with a licensed clinician. Seek emergency care for severe or worsening symptoms."
)


class AssessmentResponse(BaseModel):
    session_id: str
    results: List[DiagnosisResult]
    recommendations: List[DrugRecommendation]
    risk_level: str  # "low" | "medium" | "high" | "critical"
    red_flags: List[str]
    red_flag_advice: List[str] = []
    emergency: bool = False
    needs_more_information: bool
    next_question: Optional[FollowUpQuestion] = None
    disclaimer: str = DISCLAIMER

    @classmethod
    def from_snapshot(cls, session_id: str, snapshot: AssessmentSnapshot) -> "AssessmentResponse":
        return cls(
            session_id=session_id,
            results=list(snapshot.results),
            recommendations=list(snapshot.recommendations),
            risk_level=snapshot.risk_level,
            red_flags=list(snapshot.red_flags),
            red_flag_advice=list(snapshot.red_flag_advice),
            emergency=snapshot.emergency,
            needs_more_information=snapshot.needs_more_information,
            next_question=snapshot.next_question,
        )
