import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from diagnosis_core.application.engine import EngineConfig, diagnose, most_informative_symptom
from diagnosis_core.application.history import DEFAULT_SOURCE_TIMEOUT_SECONDS, HistorySource, aggregate
from diagnosis_core.application.normalizer import DEFAULT_MAX_MATCHES, SymptomNormalizer
from diagnosis_core.application.ports import ClinicianWorkflowPort, HistoryStorePort, ReferenceDataPort
from diagnosis_core.application.recommender import DEFAULT_APPROVAL_THRESHOLD, recommend_for_results
from diagnosis_core.application.schemas import AssessmentResponse
from diagnosis_core.application.sessions import SessionManager, utc_now
from diagnosis_core.domain.errors import InputError
from diagnosis_core.domain.models import (
    AggregatedHistory,
    AssessmentSnapshot,
    FollowUpQuestion,
    InputMode,
    PatientContext,
    RecordSource,
    SessionState,
    SymptomInput,
)
from diagnosis_core.domain.rules import assess_risk_level, evaluate_red_flags, needs_more_information


logger = logging.getLogger(__name__)

CONTEXT_FIELDS = ("age", "gender", "severity_score", "duration_days")


def context_from_answers(answers: Dict[str, Any]) -> Optional[PatientContext]:
    if not any(answers.get(f) is not None for f in CONTEXT_FIELDS):
        return None
    try:
        return PatientContext(**{f: answers.get(f) for f in CONTEXT_FIELDS})
    except ValidationError as e:
        raise InputError(_describe_invalid(e)) from e


def _describe_invalid(error: ValidationError) -> str:
    problems = []
    for item in error.errors():
        field = ".".join(str(part) for part in item["loc"]) or "input"
        problems.append(f"{field} ({item['msg']})")
    return "Invalid answer for " + ", ".join(problems) + ". Correct the value and try again."


def build_inputs(path: str, answers: Dict[str, Any]) -> List[SymptomInput]:
    """Turns the merged wizard answers into normalizer inputs; explicit selections come last so they win."""
    context = context_from_answers(answers)

    inputs: List[SymptomInput] = []
    text = answers.get("text")
    selected = answers.get("selected_symptoms") or []
    try:
        if text or path == InputMode.FREE_TEXT.value:
            inputs.append(SymptomInput(mode=InputMode.FREE_TEXT, text=text or "", context=context))
        if selected or not inputs:
            mode = InputMode.GUIDED if path == InputMode.GUIDED.value else InputMode.PICKER
            inputs.append(SymptomInput(mode=mode, selected_symptoms=list(selected), context=context))
    except ValidationError as e:
        raise InputError(_describe_invalid(e)) from e
    except TypeError as e:
        raise InputError("selected_symptoms must be a list of symptom names. Correct the value and try again.") from e
    return inputs


class AssessmentUseCase:
    def __init__(
        self,
        reference_data: ReferenceDataPort,
        sessions: SessionManager,
        clinician: Optional[ClinicianWorkflowPort] = None,
        history_store: Optional[HistoryStorePort] = None,
        engine_config: Optional[EngineConfig] = None,
        approval_threshold: float = DEFAULT_APPROVAL_THRESHOLD,
        max_matches: int = DEFAULT_MAX_MATCHES,
        recommendation_limit: int = 3,
        history_timeout_seconds: float = DEFAULT_SOURCE_TIMEOUT_SECONDS,
    ):
        self.reference_data = reference_data
        self.sessions = sessions
        self.clinician = clinician
        self.history_store = history_store
        self.engine_config = engine_config or EngineConfig()
        self.approval_threshold = approval_threshold
        self.max_matches = max_matches
        self.recommendation_limit = recommendation_limit
        self.history_timeout_seconds = history_timeout_seconds

    def start(self, user_id: Optional[str] = None, mode: InputMode = InputMode.FREE_TEXT) -> str:
        return self.sessions.create_session(user_id=user_id, path=InputMode(mode).value)

    def submit_step(self, session_id: str, step: str, payload: Dict[str, Any]) -> None:
        # Bad patient details are rejected before the step is stored.
        context_from_answers(payload or {})
        self.sessions.save_step(session_id, step, payload)

    def assess(self, session_id: str) -> AssessmentResponse:
        session = self.sessions.get_session(session_id)
        if session.state == SessionState.COMPLETED and session.snapshot is not None:
            return AssessmentResponse.from_snapshot(session_id, session.snapshot)

        snapshot = self.evaluate(build_inputs(session.path, session.answers))
        self.sessions.finalize(session_id, snapshot)
        self._submit_for_approval(snapshot, context_from_answers(session.answers))
        return AssessmentResponse.from_snapshot(session_id, snapshot)

    def evaluate(self, inputs: Sequence[SymptomInput]) -> AssessmentSnapshot:
        """Normalizer -> engine -> recommender, without touching any session."""
        conditions = self.reference_data.get_conditions()
        normalizer = SymptomNormalizer(
            self.reference_data.get_symptoms(),
            self.reference_data.get_aliases(),
            max_matches=self.max_matches,
        )
        query = normalizer.normalize(list(inputs))
        results = diagnose(query, conditions, self.engine_config)

        by_id = {c.id: c for c in conditions}
        recommendations = recommend_for_results(
            results,
            by_id,
            query.context,
            limit=self.recommendation_limit,
            approval_threshold=self.approval_threshold,
        )
        top = by_id.get(results[0].condition_id)
        red_flags = evaluate_red_flags(query)
        follow_up = needs_more_information(results, query)
        return AssessmentSnapshot(
            results=results,
            symptoms=list(query.symptoms),
            recommendations=recommendations,
            risk_level=assess_risk_level(query, top_condition_high_risk=bool(top and top.high_risk)),
            red_flags=red_flags.triggered,
            red_flag_advice=red_flags.advice,
            emergency=red_flags.emergency,
            needs_more_information=follow_up,
            next_question=self._next_question(query, results, conditions) if follow_up else None,
        )

    def _next_question(self, query, results, conditions) -> Optional[FollowUpQuestion]:
        symptom_id = most_informative_symptom(query, results, conditions)
        if symptom_id is None:
            return None
        names = {s.id: s.name for s in self.reference_data.get_symptoms()}
        name = names.get(symptom_id, symptom_id.replace("_", " "))
        return FollowUpQuestion(symptom_id=symptom_id, text=f"Do you also have {name.lower()}?")

    def save_to_history(self, session_id: str) -> bool:
        if self.history_store is None:
            raise RuntimeError("History store not configured")
        session = self.sessions.get_session(session_id)
        if session.state != SessionState.COMPLETED or session.snapshot is None:
            raise InputError(f"Session {session_id} has no results yet. Finish the assessment before saving it.")

        snapshot = session.snapshot
        record = {
            "id": session.id,
            "user_id": session.user_id,
            "saved_at": utc_now().isoformat(),
            "symptoms": list(snapshot.symptoms),
            "results": [
                {
                    "condition_id": r.condition_id,
                    "condition_name": r.condition_name,
                    "probability": r.posterior_probability,
                }
                for r in snapshot.results
            ],
            "recommendations": [
                {"drug_name": r.drug_name, "dosage": r.dosage}
                for r in snapshot.recommendations
                if not r.is_fallback
            ],
            "risk_level": snapshot.risk_level,
        }
        return self.history_store.append(RecordSource.ASSESSMENT, record)

    def history(self, extra_sources: Sequence[HistorySource] = ()) -> AggregatedHistory:
        sources: List[HistorySource] = []
        if self.history_store is not None:
            store = self.history_store
            for source_type in RecordSource:
                sources.append(
                    HistorySource(
                        name=f"store:{source_type.value}",
                        source_type=source_type,
                        fetch=lambda st=source_type: store.read(st),
                    )
                )
        sources.extend(extra_sources)
        return aggregate(sources, timeout_seconds=self.history_timeout_seconds)

    def _submit_for_approval(self, snapshot: AssessmentSnapshot, context: Optional[PatientContext]) -> None:
        if self.clinician is None:
            return
        for recommendation in snapshot.recommendations:
            if recommendation.requires_clinician_approval and not recommendation.is_fallback:
                logger.info("Queueing %s for %s for clinician approval", recommendation.drug_name, recommendation.condition_id)
                self.clinician.submit(recommendation, context)
