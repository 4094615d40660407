# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Importance scoring.

Estimates how worth remembering a candidate is, in [0, 1]:

1. Start from a per-type base weight.
2. Add bonuses for named entities, temporal references, emotional
   language and numeric quantities found in the content.
3. Multiply by a capped specificity factor (longer, concrete statements).
4. Multiply by boosts for explicit source, user emphasis and repeated
   observation (bounded number of repetition steps).
5. Clamp to [0, 1].

The detectors are lightweight regex heuristics (English and Norwegian);
real entity extraction happens upstream in the extractor.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from tiered_memory.config import ImportanceThresholds, ImportanceWeights
from tiered_memory.schemas import MemorySource, MemoryType, StructuredData, clamp_score

ENTITY_PATTERNS = [
    re.compile(r"\b[A-Z][a-z]+(?:\s+[A-Z][a-z]+)+\b"),  # Capitalized names
    re.compile(r"\b(?:Mr|Mrs|Ms|Dr|Prof)\.?\s+[A-Z][a-z]+\b"),  # Titles
    re.compile(r"\b[A-Z]{2,}\b"),  # Acronyms / organizations
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),  # ISO dates
    re.compile(r"\b\d+(?:\.\d+)?%"),  # Percentages
    re.compile(r"\b(?:kr|NOK|USD|EUR)\s*[\d,.]+", re.IGNORECASE),  # Currency
]

TEMPORAL_PATTERNS = [
    re.compile(
        r"\b(?:yesterday|today|tomorrow|tonight|last|next|this)\s+"
        r"(?:week|month|year|weekend|monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b(?:yesterday|today|tomorrow|tonight)\b", re.IGNORECASE),
    re.compile(
        r"\b(?:january|february|march|april|may|june|july|august|september|october|"
        r"november|december|januar|februar|mars|mai|juni|juli|oktober|desember)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b\d{1,2}[./-]\d{1,2}[./-]\d{2,4}\b"),
    re.compile(r"(?:\bi går\b|\bi dag\b|\bi morgen\b|\bneste\b|\bforrige\b)", re.IGNORECASE),
    re.compile(r"\b(?:kl\.|klokken|at)\s*\d{1,2}(?::\d{2})\b", re.IGNORECASE),
]

EMOTIONAL_PATTERNS = [
    re.compile(
        r"\b(?:love|hate|happy|sad|angry|excited|worried|afraid|glad|upset)\b", re.IGNORECASE
    ),
    re.compile(r"\b(?:elsker|hater|lei|sint|spent|bekymret|redd)\b", re.IGNORECASE),
    re.compile(r"!{2,}"),
    re.compile(
        r"\b(?:amazing|terrible|fantastic|horrible|wonderful|awful)\b", re.IGNORECASE
    ),
]

NUMERICAL_PATTERNS = [
    re.compile(r"\b\d+(?:[,.\s]\d+)*\s*(?:kr|NOK|USD|EUR|%)", re.IGNORECASE),
    re.compile(r"\b(?:antall|number|quantity|amount|pris|price|cost):?\s*\d+", re.IGNORECASE),
    re.compile(r"\b\d{1,3}(?:[,.\s]\d{3})+\b"),  # Large numbers with separators
    re.compile(r"\b\d+(?:\.\d+)?\s*(?:kg|km|years?|months?|weeks?|days?|hours?|år)\b",
               re.IGNORECASE),
]

EMPHASIS_PATTERNS = [
    re.compile(r"\b(?:remember|important|crucial|vital|critical|essential)\b", re.IGNORECASE),
    re.compile(r"\b(?:husk|viktig|avgjørende|kritisk|essensielt)\b", re.IGNORECASE),
    re.compile(r"\b(?:always|never|must|definitely)\b", re.IGNORECASE),
    re.compile(r"\b(?:alltid|aldri|må|definitivt)\b", re.IGNORECASE),
    re.compile(r"!!+"),
]

DETAIL_WORDS = (
    "specifically",
    "exactly",
    "precisely",
    "in particular",
    "spesielt",
    "nøyaktig",
    "presist",
)

_PROPER_NOUN_RE = re.compile(r"\b[A-Z][a-z]+\b")
_NUMBER_RE = re.compile(r"\b\d+\b")
_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")


def _matches_any(patterns: list[re.Pattern[str]], content: str) -> bool:
    return any(p.search(content) for p in patterns)


@dataclass(frozen=True)
class ContentSignals:
    """Features detected in memory content."""

    has_entities: bool
    has_temporal: bool
    has_emotional: bool
    has_numerical: bool
    user_emphasis: bool
    specificity: float


@dataclass
class ImportanceResult:
    """Importance score with its derivation.

    Attributes:
        score: Final score, clamped to [0, 1].
        raw_score: Score before clamping.
        base: Per-type base weight.
        bonuses: Additive bonuses applied, by name.
        multipliers: Multiplicative factors applied, by name.
        signals: Content features that drove the bonuses.
    """

    score: float
    raw_score: float
    base: float
    signals: ContentSignals
    bonuses: dict[str, float] = field(default_factory=dict)
    multipliers: dict[str, float] = field(default_factory=dict)


class ImportanceScorer:
    """Heuristic importance scorer.

    Example:
        >>> scorer = ImportanceScorer()
        >>> result = scorer.score("User works at DNB", MemoryType.FACT,
        ...                       MemorySource.EXPLICIT_STATEMENT)
        >>> result.score >= 0.7
        True
    """

    def __init__(
        self,
        weights: Optional[ImportanceWeights] = None,
        thresholds: Optional[ImportanceThresholds] = None,
    ):
        self.weights = weights or ImportanceWeights()
        self.thresholds = thresholds or ImportanceThresholds()

    # ------------------------------------------------------------------ #
    # Detectors
    # ------------------------------------------------------------------ #

    def detect_entities(self, content: str) -> bool:
        return _matches_any(ENTITY_PATTERNS, content)

    def detect_temporal(self, content: str) -> bool:
        return _matches_any(TEMPORAL_PATTERNS, content)

    def detect_emotional(self, content: str) -> bool:
        return _matches_any(EMOTIONAL_PATTERNS, content)

    def detect_numerical(self, content: str) -> bool:
        return _matches_any(NUMERICAL_PATTERNS, content)

    def detect_emphasis(self, content: str) -> bool:
        return _matches_any(EMPHASIS_PATTERNS, content)

    def calculate_specificity(
        self, content: str, structured_data: Optional[StructuredData] = None
    ) -> float:
        """Specificity in [0, 1]: proper nouns, numbers, detail words, sentence length."""
        words = len(content.split())
        sentences = len([s for s in _SENTENCE_SPLIT_RE.split(content) if s.strip()])
        avg_words_per_sentence = words / max(1, sentences)

        specificity = 0.0
        specificity += min(0.2, len(_PROPER_NOUN_RE.findall(content)) * 0.02)
        specificity += min(0.15, len(_NUMBER_RE.findall(content)) * 0.03)

        lowered = content.lower()
        if any(w in lowered for w in DETAIL_WORDS):
            specificity += 0.1

        if avg_words_per_sentence > 10:
            specificity += 0.1
        if avg_words_per_sentence > 15:
            specificity += 0.1

        if structured_data is not None:
            specificity += 0.1
            if structured_data.temporal is not None:
                specificity += 0.05

        return min(1.0, specificity)

    def extract_signals(
        self, content: str, structured_data: Optional[StructuredData] = None
    ) -> ContentSignals:
        return ContentSignals(
            has_entities=self.detect_entities(content),
            has_temporal=self.detect_temporal(content)
            or (structured_data is not None and structured_data.temporal is not None),
            has_emotional=self.detect_emotional(content),
            has_numerical=self.detect_numerical(content),
            user_emphasis=self.detect_emphasis(content),
            specificity=self.calculate_specificity(content, structured_data),
        )

    # ------------------------------------------------------------------ #
    # Scoring
    # ------------------------------------------------------------------ #

    def score(
        self,
        content: str,
        memory_type: MemoryType,
        source: MemorySource,
        reinforcements: int = 1,
        structured_data: Optional[StructuredData] = None,
    ) -> ImportanceResult:
        """Score a candidate memory.

        Args:
            content: Human-readable memory text.
            memory_type: Memory classification (selects the base weight).
            source: Acquisition method; explicit statements are boosted.
            reinforcements: Times the fact has been observed (>= 1).
            structured_data: Optional subject/predicate/object form.

        Returns:
            ImportanceResult with the clamped score and its derivation.
        """
        w = self.weights
        signals = self.extract_signals(content, structured_data)
        base = w.type_weights[MemoryType(memory_type)]

        bonuses: dict[str, float] = {}
        if signals.has_entities:
            bonuses["entity"] = w.entity_bonus
        if signals.has_temporal:
            bonuses["temporal"] = w.temporal_bonus
        if signals.has_emotional:
            bonuses["emotional"] = w.emotional_bonus
        if signals.has_numerical:
            bonuses["numerical"] = w.numerical_bonus

        multipliers: dict[str, float] = {
            "specificity": 1.0 + signals.specificity * w.specificity_multiplier,
        }
        if MemorySource(source) == MemorySource.EXPLICIT_STATEMENT:
            multipliers["explicit_source"] = w.explicit_source_multiplier
        if signals.user_emphasis:
            multipliers["user_emphasis"] = w.user_emphasis_multiplier
        repetition_steps = min(max(reinforcements - 1, 0), w.max_repetition_steps)
        if repetition_steps:
            multipliers["repetition"] = w.repetition_multiplier ** repetition_steps

        raw = base + sum(bonuses.values())
        for factor in multipliers.values():
            raw *= factor

        return ImportanceResult(
            score=clamp_score(raw),
            raw_score=raw,
            base=base,
            signals=signals,
            bonuses=bonuses,
            multipliers=multipliers,
        )

    # ------------------------------------------------------------------ #
    # Threshold helpers
    # ------------------------------------------------------------------ #

    def should_store(self, score: float) -> bool:
        return score >= self.thresholds.minimum_store

    def is_promotion_eligible(self, score: float) -> bool:
        return score >= self.thresholds.long_term_promotion

    def needs_accelerated_decay(self, score: float) -> bool:
        return score < self.thresholds.accelerated_decay

    def is_decay_protected(self, score: float) -> bool:
        return score >= self.thresholds.decay_protection

    def reinforce(self, current: float, observed: float) -> float:
        """Importance after the same fact is observed again."""
        return clamp_score((current + observed) / 2 + 0.1)
