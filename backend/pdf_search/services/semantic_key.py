"""Semantic cache keys: collapse paraphrased queries onto one cache entry.

A query is normalized, reduced to the bag of entities, nouns, verbs, question
type and negation it expresses, and hashed. Two phrasings that reduce to the
same bag share a key, so the query cache answers both.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Callable, Iterable, Mapping
from functools import lru_cache
from typing import Any

import spacy
from pydantic import BaseModel
from spacy.language import Language

from pdf_search.config import settings

logger = logging.getLogger(__name__)

QUESTION_WORDS = ("who", "what", "where", "when", "why", "how")

MAX_ENTITIES = 3
MAX_NOUNS = 5
MAX_VERBS = 3

# Named-entity labels that describe people, places and organizations
_ENTITY_LABELS = frozenset({"PERSON", "NORP", "FAC", "ORG", "GPE", "LOC"})
_WH_TAGS = frozenset({"WDT", "WP", "WP$", "WRB"})
_NEGATION_WORDS = frozenset(
    {"no", "not", "n't", "never", "none", "nobody", "nothing", "neither", "nor", "nowhere"}
)


class QueryFeatures(BaseModel):
    """Linguistic features that define what a query is asking."""

    entities: list[str] = []
    nouns: list[str] = []
    verbs: list[str] = []
    question_type: str = "none"
    is_negative: bool = False


class QueryContext(BaseModel):
    """Request context that changes which results are valid for a query."""

    user_id: str = ""
    language: str = "en"
    domain: str = "general"
    filters: dict[str, Any] | str = {}
    time_window: int = 0  # hours


Analyzer = Callable[[str], QueryFeatures]


# --- Linguistic analysis ---


@lru_cache(maxsize=4)
def load_pipeline(model: str) -> Language:
    """Load a spaCy pipeline once per process."""
    logger.info("Loading spaCy pipeline %r", model)
    return spacy.load(model)


def _unique(values: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(v for v in values if v.strip()))


def spacy_analyzer(text: str) -> QueryFeatures:
    """Extract query features with the configured spaCy pipeline."""
    doc = load_pipeline(settings.spacy_model)(text)

    words = {token.lower_ for token in doc}
    is_question = text.rstrip().endswith("?") or any(
        token.tag_ in _WH_TAGS for token in doc
    )
    question_type = "none"
    if is_question:
        question_type = next((w for w in QUESTION_WORDS if w in words), "none")

    return QueryFeatures(
        entities=_unique(ent.text for ent in doc.ents if ent.label_ in _ENTITY_LABELS),
        nouns=_unique(t.lemma_.lower() for t in doc if t.pos_ in ("NOUN", "PROPN")),
        verbs=_unique(t.lemma_.lower() for t in doc if t.pos_ == "VERB"),
        question_type=question_type,
        is_negative=any(
            token.dep_ == "neg" or token.lower_ in _NEGATION_WORDS for token in doc
        ),
    )


# --- Key derivation ---


def normalize_query(query: str) -> str:
    """Trim, lowercase and collapse runs of whitespace."""
    return " ".join(query.split()).lower()


def _compact_json(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def _digest(algorithm: str, payload: str, length: int) -> str:
    return hashlib.new(algorithm, payload.encode("utf-8")).hexdigest()[:length]


def _semantic_signature(features: QueryFeatures, version: int) -> str:
    # Truncate first, then sort: element order in the query never matters.
    semantic_object = {
        "entities": sorted(features.entities[:MAX_ENTITIES]),
        "nouns": sorted(features.nouns[:MAX_NOUNS]),
        "verbs": sorted(features.verbs[:MAX_VERBS]),
        "questionType": features.question_type,
        "isNegative": features.is_negative,
        "version": version,
    }
    return _digest("sha256", _compact_json(semantic_object), 16)


def _context_signature(context: QueryContext) -> str:
    filters = context.filters
    if isinstance(filters, Mapping):
        filters = _compact_json(sorted(filters.items()))
    context_object = {
        "userId": context.user_id,
        "language": context.language,
        "domain": context.domain,
        "filters": filters,
        "timeWindow": context.time_window // 24,
    }
    return _digest("md5", _compact_json(context_object), 8)


def derive_key(
    query: str,
    *,
    context: QueryContext | Mapping[str, Any] | None = None,
    use_semantic_key: bool = True,
    version: int | None = None,
    analyzer: Analyzer | None = None,
) -> str:
    """Build the cache key for a query.

    Format is ``sem_<16 hex>`` (or ``txt_`` when semantic analysis is off),
    with ``_ctx<8 hex>`` appended when a non-empty context is supplied.
    The function performs no I/O and always returns the same key for the
    same inputs.
    """
    normalized = normalize_query(query)
    if version is None:
        version = settings.semantic_key_version

    if use_semantic_key:
        features = (analyzer or spacy_analyzer)(normalized)
        signature = _semantic_signature(features, version)
    else:
        signature = _digest("sha256", normalized, 16)

    prefix = "sem" if use_semantic_key else "txt"
    if isinstance(context, Mapping):
        context = QueryContext.model_validate(context)
    if context is not None and context.model_fields_set:
        return f"{prefix}_{signature}_ctx{_context_signature(context)}"
    return f"{prefix}_{signature}"
