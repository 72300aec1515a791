import logging
from typing import Dict, List, Optional, Sequence

from diagnosis_core.domain.errors import ConditionNotFound, InputError
from diagnosis_core.domain.models import (
    Condition,
    DiagnosisResult,
    DrugOption,
    DrugRecommendation,
    PatientContext,
)


logger = logging.getLogger(__name__)

DEFAULT_APPROVAL_THRESHOLD = 0.6
ADULT_AGE = 18

DEFAULT_DOSAGE = "As directed by physician"
DEFAULT_INSTRUCTIONS = "Follow the package leaflet or your clinician's directions."
STANDING_PRECAUTION = "Always consult with a healthcare provider before taking any medication."


def recommend(
    result: DiagnosisResult,
    condition: Condition,
    context: Optional[PatientContext] = None,
    approval_threshold: float = DEFAULT_APPROVAL_THRESHOLD,
) -> DrugRecommendation:
    if result.condition_id != condition.id:
        raise InputError(f"Result for {result.condition_id} cannot be matched with condition {condition.id}")

    options = eligible_drugs(condition.drugs, context)
    if not options:
        logger.info("No drug data usable for condition %s; returning clinician fallback", condition.id)
        return fallback_recommendation(condition.id)

    drug = options[0]
    over_the_counter = condition.otc_eligible and result.posterior_probability >= approval_threshold
    precautions = list(drug.precautions)
    if STANDING_PRECAUTION not in precautions:
        precautions.append(STANDING_PRECAUTION)

    return DrugRecommendation(
        condition_id=condition.id,
        drug_name=drug.name,
        dosage=drug.dosage or DEFAULT_DOSAGE,
        instructions=drug.instructions or DEFAULT_INSTRUCTIONS,
        precautions=precautions,
        requires_clinician_approval=not over_the_counter,
    )


def eligible_drugs(drugs: Sequence[DrugOption], context: Optional[PatientContext]) -> List[DrugOption]:
    """Drops options contraindicated by the patient's age, keeping first-line order."""
    age = context.age if context is not None else None
    if age is None:
        return list(drugs)
    eligible = []
    for drug in drugs:
        if age < ADULT_AGE and drug.adult_only:
            continue
        if drug.min_age is not None and age < drug.min_age:
            continue
        eligible.append(drug)
    return eligible


def fallback_recommendation(condition_id: str) -> DrugRecommendation:
    return DrugRecommendation(
        condition_id=condition_id,
        drug_name="Consult a clinician",
        dosage="Not applicable",
        instructions="No medication guidance is available for this condition. Please consult a healthcare provider.",
        precautions=[STANDING_PRECAUTION],
        requires_clinician_approval=True,
        is_fallback=True,
    )


def recommend_for_results(
    results: Sequence[DiagnosisResult],
    conditions: Dict[str, Condition],
    context: Optional[PatientContext] = None,
    limit: int = 3,
    approval_threshold: float = DEFAULT_APPROVAL_THRESHOLD,
) -> List[DrugRecommendation]:
    recommendations: List[DrugRecommendation] = []
    for result in results[:limit]:
        condition = conditions.get(result.condition_id)
        if condition is None:
            raise ConditionNotFound(result.condition_id)
        recommendations.append(recommend(result, condition, context, approval_threshold))
    return recommendations
