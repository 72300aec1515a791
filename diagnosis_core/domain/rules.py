from typing import List, Optional

from .models import DiagnosisResult, NormalizedQuery, RedFlagsResult


RED_FLAG_SYMPTOMS = {
    "chest_pain": "Seek emergency care immediately - possible cardiac event",
    "difficulty_breathing": "Seek emergency care immediately",
    "severe_headache": "Consult a doctor urgently - rule out serious conditions",
    "coughing_blood": "Seek emergency care immediately",
    "confusion": "Seek emergency care immediately",
    "loss_of_consciousness": "Call emergency services",
    "seizure": "Call emergency services, protect from injury",
    "severe_bleeding": "Apply pressure and seek emergency care",
    "sudden_vision_loss": "Seek emergency care immediately",
    "suicidal_thoughts": "Call a crisis helpline or seek immediate help",
}

RISK_LOW = "low"
RISK_MEDIUM = "medium"
RISK_HIGH = "high"
RISK_CRITICAL = "critical"

CONFIDENT_POSTERIOR = 0.7
MIN_SYMPTOMS_FOR_CONFIDENCE = 5
CLOSE_CALL_MARGIN = 0.1


def evaluate_red_flags(query: NormalizedQuery) -> RedFlagsResult:
    triggered: List[str] = sorted(s for s in query.symptoms if s in RED_FLAG_SYMPTOMS)

    # Adjust sensitivity for vulnerable populations
    ctx = query.context
    severe = ctx is not None and ctx.severity_score is not None and ctx.severity_score >= 9
    emergency = bool(triggered) and (severe or len(triggered) >= 2 or _is_vulnerable(query))
    if "suicidal_thoughts" in triggered or "loss_of_consciousness" in triggered or "seizure" in triggered:
        emergency = True

    return RedFlagsResult(
        triggered=triggered,
        emergency=emergency,
        advice=[RED_FLAG_SYMPTOMS[s] for s in triggered],
    )


def _is_vulnerable(query: NormalizedQuery) -> bool:
    ctx = query.context
    if ctx is None or ctx.age is None:
        return False
    return ctx.age < 5 or ctx.age >= 65


def assess_risk_level(query: NormalizedQuery, top_condition_high_risk: bool = False) -> str:
    red_flags = evaluate_red_flags(query)
    if red_flags.triggered or top_condition_high_risk:
        return RISK_CRITICAL

    ctx = query.context
    severity = ctx.severity_score if ctx is not None else None
    count = len(query.symptoms)
    if (severity is not None and severity >= 8) or count > 5:
        return RISK_HIGH
    if (severity is not None and severity >= 5) or count > 2:
        return RISK_MEDIUM
    return RISK_LOW


def needs_more_information(results: List[DiagnosisResult], query: NormalizedQuery) -> bool:
    """Whether a follow-up question would still meaningfully change the ranking."""
    top: Optional[DiagnosisResult] = results[0] if results else None
    if top is None:
        return True
    if top.posterior_probability < CONFIDENT_POSTERIOR:
        return True
    if len(query.symptoms) < MIN_SYMPTOMS_FOR_CONFIDENCE:
        return True
    if len(results) > 1 and top.posterior_probability - results[1].posterior_probability < CLOSE_CALL_MARGIN:
        return True
    return False
