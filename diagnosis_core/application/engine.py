"""
Naive-Bayes scoring of candidate conditions.

Each condition is scored independently in log-odds space:

    log_odds = log(prior / (1 - prior)) + sum(log(likelihood ratio))

where a reported symptom contributes ``(P(s|C) / P(s|not C)) ** weight`` and a
symptom the condition has data for but the patient did not report contributes
``(1 - P(s|C)) / (1 - P(s|not C))``. Conditions are not mutually exclusive, so
posteriors are not normalised against each other.
"""
import logging
import math
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from diagnosis_core.domain.errors import NoDiagnosisFound
from diagnosis_core.domain.models import (
    Condition,
    DiagnosisResult,
    Explanation,
    NormalizedQuery,
    PatientContext,
    Priority,
)


logger = logging.getLogger(__name__)

# Keeps likelihoods of exactly 0 or 1 from producing infinite log ratios.
LIKELIHOOD_EPSILON = 1e-4
PRIOR_EPSILON = 1e-9
INAPPLICABLE_PRIOR_FACTOR = 1e-6


class EngineConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    probability_floor: float = Field(0.05, ge=0.0, le=1.0)
    max_results: int = Field(10, ge=1)
    rarity_threshold: float = Field(0.01, ge=0.0, le=1.0)
    escalation_severity: int = Field(7, ge=1, le=10)
    escalation_duration_days: int = Field(14, ge=0)


def diagnose(
    query: NormalizedQuery,
    conditions: Sequence[Condition],
    config: Optional[EngineConfig] = None,
) -> List[DiagnosisResult]:
    config = config or EngineConfig()
    if not conditions:
        raise NoDiagnosisFound("No conditions are available to score against.")

    uniform_prior = 1.0 / len(conditions)
    escalate = _should_escalate(query.context, config)

    scored: List[Tuple[DiagnosisResult, float, Condition]] = []
    for condition in conditions:
        if not any(s in condition.likelihoods for s in query.symptoms):
            continue
        base_rate = condition.base_rate if condition.base_rate is not None else uniform_prior
        posterior, explanation = score_condition(query, condition, uniform_prior)
        result = DiagnosisResult(
            condition_id=condition.id,
            condition_name=condition.name,
            posterior_probability=posterior,
            is_rare=condition.base_rate is not None and condition.base_rate < config.rarity_threshold,
            priority=Priority.URGENT if escalate and condition.serious else Priority.ROUTINE,
            explanation=explanation,
        )
        logger.debug("Scored %s: posterior=%.6f", condition.id, posterior)
        scored.append((result, base_rate, condition))

    if not scored:
        raise NoDiagnosisFound()

    # Descending posterior, then higher base rate, then lowest id
    scored.sort(key=lambda item: (-item[0].posterior_probability, -item[1], item[0].condition_id))

    kept = [
        result
        for result, _, condition in scored
        if result.posterior_probability >= config.probability_floor or (escalate and condition.serious)
    ]
    if not kept:
        kept = [scored[0][0]]
    return kept[: config.max_results]


def score_condition(
    query: NormalizedQuery,
    condition: Condition,
    uniform_prior: float,
) -> Tuple[float, Explanation]:
    prior = effective_prior(condition, query.context, uniform_prior)
    log_odds = math.log(prior / (1.0 - prior))

    positive: List[str] = []
    negative: List[str] = []
    for symptom_id in sorted(condition.likelihoods):
        pair = condition.likelihoods[symptom_id]
        p_c = _clamp(pair.p_present_given_condition, LIKELIHOOD_EPSILON)
        p_not_c = _clamp(pair.p_present_given_not_condition, LIKELIHOOD_EPSILON)
        weight = query.symptoms.get(symptom_id)
        if weight is not None:
            log_odds += weight * math.log(p_c / p_not_c)
            if p_c > p_not_c:
                positive.append(symptom_id)
            elif p_c < p_not_c:
                negative.append(symptom_id)
        else:
            ratio = (1.0 - p_c) / (1.0 - p_not_c)
            log_odds += math.log(ratio)
            if ratio < 1.0:
                negative.append(symptom_id)

    return _sigmoid(log_odds), Explanation(positive_symptoms=positive, negative_symptoms=negative)


def most_informative_symptom(
    query: NormalizedQuery,
    results: Sequence[DiagnosisResult],
    conditions: Sequence[Condition],
) -> Optional[str]:
    """
    Picks the unreported symptom that best separates the two leading conditions.

    The separation of a symptom is the gap between its log likelihood ratios
    under the top two conditions; a condition with no data for the symptom
    counts as a ratio of 1. With a single result the symptom with the largest
    absolute log likelihood ratio for it wins. Ties go to the lowest id.
    """
    by_id = {c.id: c for c in conditions}
    leaders = [by_id[r.condition_id] for r in results[:2] if r.condition_id in by_id]
    if not leaders:
        return None

    candidates = set()
    for condition in leaders:
        candidates.update(s for s in condition.likelihoods if s not in query.symptoms)

    best: Optional[Tuple[float, str]] = None
    for symptom_id in sorted(candidates):
        ratios = [_log_likelihood_ratio(c, symptom_id) for c in leaders]
        separation = abs(ratios[0] - ratios[1]) if len(ratios) == 2 else abs(ratios[0])
        if best is None or separation > best[0]:
            best = (separation, symptom_id)
    if best is None or best[0] == 0.0:
        return None
    return best[1]


def _log_likelihood_ratio(condition: Condition, symptom_id: str) -> float:
    pair = condition.likelihoods.get(symptom_id)
    if pair is None:
        return 0.0
    p_c = _clamp(pair.p_present_given_condition, LIKELIHOOD_EPSILON)
    p_not_c = _clamp(pair.p_present_given_not_condition, LIKELIHOOD_EPSILON)
    return math.log(p_c / p_not_c)


def effective_prior(condition: Condition, context: Optional[PatientContext], uniform_prior: float) -> float:
    prior = condition.base_rate if condition.base_rate is not None else uniform_prior
    rules = condition.applicability
    if rules is not None and context is not None:
        if not is_applicable(condition, context):
            prior *= INAPPLICABLE_PRIOR_FACTOR
        for modifier in rules.modifiers:
            if _in_band(context.age, modifier.min_age, modifier.max_age) and (
                modifier.gender is None or modifier.gender.lower() == context.gender
            ):
                prior *= modifier.multiplier
    return _clamp(prior, PRIOR_EPSILON)


def is_applicable(condition: Condition, context: PatientContext) -> bool:
    rules = condition.applicability
    if rules is None:
        return True
    if context.age is not None:
        if rules.min_age is not None and context.age < rules.min_age:
            return False
        if rules.max_age is not None and context.age > rules.max_age:
            return False
    if context.gender is not None and rules.genders and context.gender not in rules.genders:
        return False
    return True


def _in_band(age: Optional[int], min_age: Optional[int], max_age: Optional[int]) -> bool:
    if min_age is None and max_age is None:
        return True
    if age is None:
        return False
    if min_age is not None and age < min_age:
        return False
    if max_age is not None and age > max_age:
        return False
    return True


def _should_escalate(context: Optional[PatientContext], config: EngineConfig) -> bool:
    if context is None:
        return False
    if context.severity_score is not None and context.severity_score >= config.escalation_severity:
        return True
    return context.duration_days is not None and context.duration_days >= config.escalation_duration_days


def _clamp(p: float, eps: float) -> float:
    return min(max(p, eps), 1.0 - eps)


def _sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    z = math.exp(x)
    return z / (1.0 + z)
