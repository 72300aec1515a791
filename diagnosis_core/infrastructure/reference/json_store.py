"""Read-only reference data (symptoms, aliases, conditions) backed by a JSON file."""
import json
import logging
import os
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from diagnosis_core.application.ports import ReferenceDataPort
from diagnosis_core.domain.errors import ExternalUnavailable
from diagnosis_core.domain.models import Condition, LikelihoodPair, Symptom


logger = logging.getLogger(__name__)

# Older exports used camelCase keys.
_CONDITION_KEYS = {
    "baseRate": "base_rate",
    "otcEligible": "otc_eligible",
    "highRisk": "high_risk",
    "classificationCode": "code",
    "icd10": "code",
    "short_description": "description",
    "drug_recommendations": "drugs",
}
_DRUG_KEYS = {"drug": "name", "usage": "dosage", "adultOnly": "adult_only", "minAge": "min_age"}
_PAIR_KEYS = {
    "pPresentGivenCondition": "p_present_given_condition",
    "pPresentGivenNotCondition": "p_present_given_not_condition",
}


def _rename(raw: Dict[str, Any], mapping: Dict[str, str]) -> Dict[str, Any]:
    out = {}
    for key, value in raw.items():
        target = mapping.get(key, key)
        if target not in out or out[target] is None:
            out[target] = value
    return out


def _likelihoods(raw: Any, condition_id: str) -> Dict[str, LikelihoodPair]:
    pairs: Dict[str, LikelihoodPair] = {}
    if not isinstance(raw, dict):
        return pairs
    for symptom_id, value in raw.items():
        if not isinstance(value, dict):
            continue
        try:
            pairs[symptom_id] = LikelihoodPair(**_rename(value, _PAIR_KEYS))
        except ValidationError:
            logger.warning("Ignoring invalid likelihood for %s/%s", condition_id, symptom_id)
    return pairs


def parse_condition(raw: Dict[str, Any]) -> Optional[Condition]:
    data = _rename(raw, _CONDITION_KEYS)
    condition_id = data.get("id")
    if condition_id in (None, ""):
        logger.warning("Skipping condition without id: %r", raw.get("name"))
        return None
    data["id"] = str(condition_id)
    data["likelihoods"] = _likelihoods(data.get("likelihoods"), data["id"])
    drugs = data.get("drugs") or []
    data["drugs"] = [_rename(d, _DRUG_KEYS) if isinstance(d, dict) else {"name": str(d)} for d in drugs]
    if data.get("description") is None:
        data["description"] = ""
    try:
        return Condition(**data)
    except ValidationError as e:
        logger.warning("Skipping invalid condition %s: %s", data["id"], e)
        return None


def parse_symptom(raw: Dict[str, Any]) -> Optional[Symptom]:
    symptom_id = raw.get("id")
    if symptom_id in (None, ""):
        return None
    try:
        return Symptom(id=str(symptom_id), name=raw.get("name") or str(symptom_id), aliases=raw.get("aliases") or [])
    except ValidationError as e:
        logger.warning("Skipping invalid symptom %s: %s", symptom_id, e)
        return None


class JsonReferenceDataStore(ReferenceDataPort):
    def __init__(self, path: str):
        self.path = path
        self._cache: Optional[Dict[str, Any]] = None
        self._mtime: Optional[float] = None

    def _load(self) -> Dict[str, Any]:
        try:
            mtime = os.path.getmtime(self.path)
            if self._cache is not None and mtime == self._mtime:
                return self._cache
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ExternalUnavailable("Reference data store", str(e)) from e
        if not isinstance(raw, dict):
            raise ExternalUnavailable("Reference data store", "expected a JSON object at the top level")

        symptoms = [s for s in (parse_symptom(r) for r in raw.get("symptoms") or [] if isinstance(r, dict)) if s]
        conditions = [
            c for c in (parse_condition(r) for r in raw.get("conditions") or [] if isinstance(r, dict)) if c
        ]
        aliases = {
            str(k): [str(a) for a in v if a]
            for k, v in (raw.get("aliases") or {}).items()
            if isinstance(v, list)
        }
        self._cache = {"symptoms": symptoms, "conditions": conditions, "aliases": aliases}
        self._mtime = mtime
        logger.info("Loaded reference data: %d symptoms, %d conditions", len(symptoms), len(conditions))
        return self._cache

    def get_conditions(self) -> List[Condition]:
        return list(self._load()["conditions"])

    def get_symptoms(self) -> List[Symptom]:
        return list(self._load()["symptoms"])

    def get_aliases(self) -> Dict[str, List[str]]:
        return dict(self._load()["aliases"])
