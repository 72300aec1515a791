import os
import tempfile

import pytest

from diagnosis_core.application.history import HistorySource
from diagnosis_core.application.schemas import DISCLAIMER, AssessmentResponse
from diagnosis_core.application.sessions import SessionManager
from diagnosis_core.application.use_cases import AssessmentUseCase, build_inputs
from diagnosis_core.domain.errors import ErrorKind, InputError, NoSymptomsFound
from diagnosis_core.domain.models import (
    Condition,
    DrugOption,
    InputMode,
    LikelihoodPair,
    RecordSource,
    SessionState,
    Symptom,
)
from diagnosis_core.domain.rules import RED_FLAG_SYMPTOMS
from diagnosis_core.infrastructure.clinician.memory_queue import InMemoryClinicianQueue
from diagnosis_core.infrastructure.history.json_store import JsonHistoryStore
from diagnosis_core.infrastructure.sessions.memory_store import InMemorySessionStore


def lk(p_c, p_not_c):
    return LikelihoodPair(p_present_given_condition=p_c, p_present_given_not_condition=p_not_c)


class DummyReferenceData:
    def get_conditions(self):
        return [
            Condition(
                id="influenza",
                name="Influenza",
                base_rate=0.05,
                otc_eligible=True,
                likelihoods={"fever": lk(0.9, 0.2), "cough": lk(0.8, 0.3)},
                drugs=[DrugOption(name="Paracetamol", dosage="500 mg every 6 hours")],
            ),
            Condition(
                id="common_cold",
                name="Common cold",
                base_rate=0.2,
                likelihoods={"runny_nose": lk(0.9, 0.15), "cough": lk(0.7, 0.3)},
            ),
        ]

    def get_symptoms(self):
        return [
            Symptom(id="fever", name="Fever"),
            Symptom(id="cough", name="Cough"),
            Symptom(id="runny_nose", name="Runny nose", aliases=["sniffles"]),
            Symptom(id="chest_pain", name="Chest pain"),
        ]

    def get_aliases(self):
        return {}


@pytest.fixture
def history_path():
    with tempfile.TemporaryDirectory() as tmp:
        yield os.path.join(tmp, "history.json")


@pytest.fixture
def clinician():
    return InMemoryClinicianQueue()


@pytest.fixture
def usecase(clinician, history_path):
    return AssessmentUseCase(
        reference_data=DummyReferenceData(),
        sessions=SessionManager(InMemorySessionStore()),
        clinician=clinician,
        history_store=JsonHistoryStore(history_path),
    )


def run_picker(usecase, symptoms, user_id=None):
    session_id = usecase.start(user_id=user_id, mode=InputMode.PICKER)
    usecase.submit_step(session_id, "symptoms", {"selected_symptoms": symptoms})
    return session_id, usecase.assess(session_id)


def test_picker_assessment_ranks_influenza(usecase):
    _, response = run_picker(usecase, ["fever", "cough"])
    assert isinstance(response, AssessmentResponse)
    assert response.results[0].condition_id == "influenza"
    assert response.results[0].posterior_probability == pytest.approx(12 / 31)
    assert response.disclaimer == DISCLAIMER
    assert response.needs_more_information
    assert response.risk_level == "low"


def test_low_confidence_recommendation_goes_to_clinician(usecase, clinician):
    _, response = run_picker(usecase, ["fever", "cough"])
    flu = next(r for r in response.recommendations if r.condition_id == "influenza")
    assert flu.drug_name == "Paracetamol"
    assert flu.requires_clinician_approval

    # The cold has no drug data, so only the influenza recommendation is queued.
    assert [rec.drug_name for rec, _ in clinician.submitted] == ["Paracetamol"]


def test_assess_twice_returns_stored_result(usecase, clinician):
    session_id, first = run_picker(usecase, ["fever", "cough"])
    second = usecase.assess(session_id)
    assert second.results == first.results
    assert len(clinician.submitted) == 1


def test_completed_session_rejects_more_steps(usecase):
    session_id, _ = run_picker(usecase, ["fever"])
    with pytest.raises(InputError):
        usecase.submit_step(session_id, "symptoms", {"selected_symptoms": ["cough"]})
    assert usecase.sessions.resume_session(session_id).state == SessionState.COMPLETED


def test_empty_free_text_suggests_guided_path(usecase):
    session_id = usecase.start(mode=InputMode.FREE_TEXT)
    usecase.submit_step(session_id, "symptoms", {"text": "   "})
    with pytest.raises(NoSymptomsFound):
        usecase.assess(session_id)


def test_guided_answers_carry_context(usecase):
    session_id = usecase.start(mode=InputMode.GUIDED)
    usecase.submit_step(session_id, "symptoms", {"selected_symptoms": ["fever", "cough"]})
    usecase.submit_step(session_id, "context", {"age": 30, "severity_score": 8})
    response = usecase.assess(session_id)
    assert response.risk_level == "high"


def test_save_and_read_history(usecase):
    session_id, _ = run_picker(usecase, ["fever", "cough"], user_id="u1")
    assert usecase.save_to_history(session_id)
    assert not usecase.save_to_history(session_id)

    legacy = {
        "id": "w1",
        "entered_symptoms": ["sniffles"],
        "suggested_drugs": {"drug": "Saline spray"},
        "created_at": "2020-01-01T00:00:00Z",
    }
    usecase.history_store.append(RecordSource.PRESCRIPTION_LEGACY, legacy)

    history = usecase.history()
    assert [e.id for e in history.entries] == [session_id, "w1"]
    assert history.entries[0].payload.title == "Influenza"
    assert not history.is_partial


def test_history_reports_failing_extra_source(usecase):
    def broken():
        raise OSError("timeout talking to the prescriptions service")

    history = usecase.history(extra_sources=[HistorySource("remote", RecordSource.PRESCRIPTION_V2, broken)])
    assert history.entries == []
    assert history.is_partial


def test_save_requires_completed_session(usecase):
    session_id = usecase.start(mode=InputMode.PICKER)
    with pytest.raises(InputError):
        usecase.save_to_history(session_id)


def test_build_inputs_puts_selection_last():
    inputs = build_inputs("free_text", {"text": "cough", "selected_symptoms": ["fever"], "age": 40})
    assert [i.mode for i in inputs] == [InputMode.FREE_TEXT, InputMode.PICKER]
    assert inputs[0].context.age == 40


def test_out_of_range_answer_is_rejected_when_saved(usecase):
    session_id = usecase.start(mode=InputMode.GUIDED)
    usecase.submit_step(session_id, "symptoms", {"selected_symptoms": ["fever"]})
    with pytest.raises(InputError) as exc:
        usecase.submit_step(session_id, "context", {"severity_score": 11})
    assert exc.value.kind == ErrorKind.INPUT
    assert "severity_score" in exc.value.message
    assert "severity_score" not in usecase.sessions.resume_session(session_id).answers


def test_malformed_stored_answer_is_input_error_at_assess(usecase):
    session_id = usecase.start(mode=InputMode.GUIDED)
    usecase.sessions.save_step(session_id, "context", {"selected_symptoms": ["fever"], "age": "forty"})
    with pytest.raises(InputError) as exc:
        usecase.assess(session_id)
    assert "age" in exc.value.message


def test_next_question_separates_leading_conditions(usecase):
    _, response = run_picker(usecase, ["fever", "cough"])
    assert response.needs_more_information
    assert response.next_question.symptom_id == "runny_nose"
    assert response.next_question.text == "Do you also have runny nose?"


def test_emergency_and_red_flag_advice_reach_response(usecase):
    session_id = usecase.start(mode=InputMode.GUIDED)
    usecase.submit_step(session_id, "symptoms", {"selected_symptoms": ["fever", "chest_pain"]})
    usecase.submit_step(session_id, "context", {"age": 70})
    response = usecase.assess(session_id)

    assert response.emergency
    assert response.red_flags == ["chest_pain"]
    assert response.red_flag_advice == [RED_FLAG_SYMPTOMS["chest_pain"]]
    assert response.risk_level == "critical"
