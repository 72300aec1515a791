from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Symptom(BaseModel):
    id: str
    name: str
    aliases: List[str] = []

    @field_validator("aliases")
    @classmethod
    def strip_aliases(cls, v: List[str]):
        return [a.strip() for a in v if a and a.strip()]


class LikelihoodPair(BaseModel):
    p_present_given_condition: float = Field(..., ge=0.0, le=1.0)
    p_present_given_not_condition: float = Field(..., ge=0.0, le=1.0)


class PriorModifier(BaseModel):
    """Soft prior multiplier applied when the patient falls in an age band and/or gender."""

    min_age: Optional[int] = Field(None, ge=0)
    max_age: Optional[int] = Field(None, ge=0)
    gender: Optional[str] = None
    multiplier: float = Field(1.0, gt=0.0)


class Applicability(BaseModel):
    min_age: Optional[int] = Field(None, ge=0)
    max_age: Optional[int] = Field(None, ge=0)
    genders: List[str] = []
    modifiers: List[PriorModifier] = []

    @field_validator("genders")
    @classmethod
    def lower_genders(cls, v: List[str]):
        return [g.strip().lower() for g in v if g and g.strip()]


class DrugOption(BaseModel):
    name: str
    dosage: Optional[str] = None
    instructions: Optional[str] = None
    precautions: List[str] = []
    adult_only: bool = False
    min_age: Optional[int] = Field(None, ge=0)


class Condition(BaseModel):
    id: str
    name: str
    description: str = ""
    code: Optional[str] = None
    base_rate: Optional[float] = None
    likelihoods: Dict[str, LikelihoodPair] = {}
    applicability: Optional[Applicability] = None
    drugs: List[DrugOption] = []
    otc_eligible: bool = False
    serious: bool = False
    high_risk: bool = False

    @field_validator("base_rate")
    @classmethod
    def validate_base_rate(cls, v: Optional[float]):
        # A prior of exactly 0 or 1 cannot be expressed in log-odds; treat it as unknown.
        if v is None or not 0.0 < v < 1.0:
            return None
        return v


class PatientContext(BaseModel):
    age: Optional[int] = Field(None, ge=0, le=130)
    gender: Optional[str] = None
    severity_score: Optional[int] = Field(None, ge=1, le=10)
    duration_days: Optional[int] = Field(None, ge=0)

    @field_validator("gender")
    @classmethod
    def normalize_gender(cls, v: Optional[str]):
        if v is not None:
            v = v.strip().lower()
            if len(v) == 0:
                return None
        return v


class InputMode(str, Enum):
    FREE_TEXT = "free_text"
    PICKER = "picker"
    GUIDED = "guided"


class SymptomInput(BaseModel):
    mode: InputMode
    text: Optional[str] = None
    selected_symptoms: List[str] = []
    context: Optional[PatientContext] = None


class SymptomMatch(BaseModel):
    symptom_id: str
    score: float = Field(..., gt=0.0, le=1.0)
    position: int = 0


class NormalizedQuery(BaseModel):
    symptoms: Dict[str, float]
    context: Optional[PatientContext] = None

    @field_validator("symptoms")
    @classmethod
    def validate_weights(cls, v: Dict[str, float]):
        for symptom_id, weight in v.items():
            if not 0.0 < weight <= 1.0:
                raise ValueError(f"weight for {symptom_id} must be in (0, 1], got {weight}")
        return v


class RedFlagsResult(BaseModel):
    triggered: List[str] = []
    emergency: bool = False
    advice: List[str] = []


class Explanation(BaseModel):
    positive_symptoms: List[str] = []
    negative_symptoms: List[str] = []


class Priority(str, Enum):
    ROUTINE = "routine"
    URGENT = "urgent"


class DiagnosisResult(BaseModel):
    condition_id: str
    condition_name: str = ""
    posterior_probability: float = Field(..., ge=0.0, le=1.0)
    is_rare: bool = False
    priority: Priority = Priority.ROUTINE
    explanation: Explanation = Explanation()


class DrugRecommendation(BaseModel):
    condition_id: str
    drug_name: str
    dosage: str
    instructions: str
    precautions: List[str] = []
    requires_clinician_approval: bool = True
    is_fallback: bool = False


class FollowUpQuestion(BaseModel):
    symptom_id: str
    text: str


class AssessmentSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    results: List[DiagnosisResult]
    symptoms: List[str] = []
    recommendations: List[DrugRecommendation] = []
    risk_level: str = "low"
    red_flags: List[str] = []
    red_flag_advice: List[str] = []
    emergency: bool = False
    needs_more_information: bool = False
    next_question: Optional[FollowUpQuestion] = None


class SessionState(str, Enum):
    CREATED = "created"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    EXPIRED = "expired"


class AssessmentSession(BaseModel):
    id: str
    user_id: Optional[str] = None
    path: str = InputMode.FREE_TEXT.value
    state: SessionState = SessionState.CREATED
    step: Optional[str] = None
    answers: Dict[str, Any] = {}
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    snapshot: Optional[AssessmentSnapshot] = None


class ResumedSession(BaseModel):
    session_id: str
    state: SessionState
    step: Optional[str] = None
    answers: Dict[str, Any] = {}
    snapshot: Optional[AssessmentSnapshot] = None


class RecordSource(str, Enum):
    ASSESSMENT = "assessment"
    PRESCRIPTION_LEGACY = "prescriptionLegacy"
    PRESCRIPTION_V2 = "prescriptionV2"


class HistoryMedication(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    dosage: Optional[str] = None
    frequency: Optional[str] = None


class HistoryPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    conditions: List[str] = []
    symptoms: List[str] = []
    medications: List[HistoryMedication] = []
    status: Optional[str] = None
    notes: Optional[str] = None


class HistoryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    source_type: RecordSource
    timestamp: datetime
    payload: HistoryPayload


class SourceFailure(BaseModel):
    source_name: str
    source_type: RecordSource
    error_kind: str
    message: str


class AggregatedHistory(BaseModel):
    entries: List[HistoryEntry] = []
    failures: List[SourceFailure] = []

    @property
    def is_partial(self) -> bool:
        return len(self.failures) > 0
