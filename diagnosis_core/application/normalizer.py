"""Turns free text, a symptom checklist or a guided questionnaire into a weighted symptom set."""
import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from rapidfuzz import fuzz

from diagnosis_core.application.ports import SymptomMatcher
from diagnosis_core.domain.errors import NoSymptomsFound, UnknownSymptom
from diagnosis_core.domain.models import (
    InputMode,
    NormalizedQuery,
    PatientContext,
    Symptom,
    SymptomInput,
    SymptomMatch,
)


logger = logging.getLogger(__name__)

DEFAULT_MAX_MATCHES = 10
WEIGHT_DECAY = 0.85

EXACT_SCORE = 1.0
ALIAS_SCORE = 0.9
FUZZY_SCALE = 0.8

_TOKEN_RE = re.compile(r"[a-z0-9']+")


def tokenize(text: str) -> List[str]:
    text = (text or "").lower().replace("’", "'").replace("‘", "'")
    return _TOKEN_RE.findall(text)


def build_term_index(symptoms: Iterable[Symptom], aliases: Optional[Dict[str, List[str]]] = None) -> Dict[str, str]:
    """Lower-cased canonical names, ids and aliases mapped to their symptom id."""
    aliases = aliases or {}
    index: Dict[str, str] = {}
    for symptom in symptoms:
        for term in [symptom.id, symptom.id.replace("_", " "), symptom.name]:
            index.setdefault(" ".join(tokenize(term)), symptom.id)
    for symptom in symptoms:
        for term in list(symptom.aliases) + list(aliases.get(symptom.id, [])):
            key = " ".join(tokenize(term))
            if key:
                index.setdefault(key, symptom.id)
    index.pop("", None)
    return index


class PhraseMatcher:
    """Whole-word phrase lookup of a fixed set of terms."""

    def __init__(self, terms: Dict[str, str], score: float):
        self.score = score
        self._terms: List[Tuple[List[str], str]] = [
            (tokenize(term), symptom_id) for term, symptom_id in sorted(terms.items())
        ]

    def match(self, text: str) -> List[SymptomMatch]:
        tokens = tokenize(text)
        matches: List[SymptomMatch] = []
        for term_tokens, symptom_id in self._terms:
            if not term_tokens:
                continue
            position = _find_phrase(tokens, term_tokens)
            if position is not None:
                matches.append(SymptomMatch(symptom_id=symptom_id, score=self.score, position=position))
        return matches


def _find_phrase(tokens: List[str], phrase: List[str]) -> Optional[int]:
    n = len(phrase)
    for i in range(len(tokens) - n + 1):
        if tokens[i:i + n] == phrase:
            return i
    return None


class ExactMatcher(PhraseMatcher):
    def __init__(self, symptoms: Iterable[Symptom]):
        terms: Dict[str, str] = {}
        for symptom in symptoms:
            terms[symptom.name.lower()] = symptom.id
            terms.setdefault(symptom.id.replace("_", " ").lower(), symptom.id)
        super().__init__(terms, EXACT_SCORE)


class AliasMatcher(PhraseMatcher):
    def __init__(self, symptoms: Iterable[Symptom], aliases: Optional[Dict[str, List[str]]] = None):
        aliases = aliases or {}
        terms: Dict[str, str] = {}
        for symptom in symptoms:
            for alias in list(symptom.aliases) + list(aliases.get(symptom.id, [])):
                terms.setdefault(alias.lower(), symptom.id)
        super().__init__(terms, ALIAS_SCORE)


class FuzzyMatcher:
    """Typo-tolerant matching of names and aliases against word n-grams of the text."""

    def __init__(
        self,
        symptoms: Iterable[Symptom],
        aliases: Optional[Dict[str, List[str]]] = None,
        min_score: float = 88.0,
        min_length: int = 4,
    ):
        self.min_score = min_score
        self._terms = [
            (term, symptom_id)
            for term, symptom_id in sorted(build_term_index(symptoms, aliases).items())
            if len(term) >= min_length
        ]

    def match(self, text: str) -> List[SymptomMatch]:
        tokens = tokenize(text)
        best: Dict[str, SymptomMatch] = {}
        for term, symptom_id in self._terms:
            n = len(term.split(" "))
            for i in range(len(tokens) - n + 1):
                window = " ".join(tokens[i:i + n])
                ratio = fuzz.ratio(window, term)
                if ratio < self.min_score:
                    continue
                score = FUZZY_SCALE * ratio / 100.0
                current = best.get(symptom_id)
                if current is None or score > current.score:
                    best[symptom_id] = SymptomMatch(symptom_id=symptom_id, score=score, position=i)
        return list(best.values())


class SymptomNormalizer:
    def __init__(
        self,
        symptoms: Sequence[Symptom],
        aliases: Optional[Dict[str, List[str]]] = None,
        matchers: Optional[List[SymptomMatcher]] = None,
        max_matches: int = DEFAULT_MAX_MATCHES,
    ):
        self.symptoms = {s.id: s for s in symptoms}
        self.max_matches = max_matches
        self._terms = build_term_index(symptoms, aliases)
        if matchers is None:
            matchers = [
                ExactMatcher(symptoms),
                AliasMatcher(symptoms, aliases),
                FuzzyMatcher(symptoms, aliases),
            ]
        self.matchers = matchers

    def normalize(self, inputs: Union[SymptomInput, Sequence[SymptomInput]]) -> NormalizedQuery:
        if isinstance(inputs, SymptomInput):
            inputs = [inputs]

        weights: Dict[str, float] = {}
        context: Optional[PatientContext] = None
        for item in inputs:
            if item.mode == InputMode.FREE_TEXT:
                found = self.match_free_text(item.text or "")
            else:
                found = self.resolve_selection(item.selected_symptoms)
            # Last value wins per symptom id
            for symptom_id, weight in found.items():
                weights.pop(symptom_id, None)
                weights[symptom_id] = weight
            if item.context is not None:
                context = _merge_context(context, item.context)

        if not weights:
            raise NoSymptomsFound()

        logger.debug("Normalized %d input(s) into %d symptom(s)", len(inputs), len(weights))
        return NormalizedQuery(symptoms=weights, context=context)

    def match_free_text(self, text: str) -> Dict[str, float]:
        if not text.strip():
            return {}

        best: Dict[str, SymptomMatch] = {}
        for matcher in self.matchers:
            for m in matcher.match(text):
                if m.symptom_id not in self.symptoms:
                    continue
                current = best.get(m.symptom_id)
                if current is None or (m.score, -m.position) > (current.score, -current.position):
                    best[m.symptom_id] = m

        ranked = sorted(best.values(), key=lambda m: (-m.score, m.position, m.symptom_id))
        ranked = ranked[: self.max_matches]
        return {m.symptom_id: WEIGHT_DECAY ** rank for rank, m in enumerate(ranked)}

    def resolve_selection(self, selected: Iterable[str]) -> Dict[str, float]:
        weights: Dict[str, float] = {}
        unknown: List[str] = []
        for raw in selected:
            symptom_id = self.resolve(raw)
            if symptom_id is None:
                unknown.append(raw)
                continue
            weights.pop(symptom_id, None)
            weights[symptom_id] = 1.0
        if unknown:
            raise UnknownSymptom(unknown)
        return weights

    def resolve(self, raw: str) -> Optional[str]:
        if raw in self.symptoms:
            return raw
        return self._terms.get(" ".join(tokenize(raw)))


def _merge_context(current: Optional[PatientContext], update: PatientContext) -> PatientContext:
    if current is None:
        return update
    merged = current.model_dump()
    for key, value in update.model_dump().items():
        if value is not None:
            merged[key] = value
    return PatientContext(**merged)
