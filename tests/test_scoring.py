# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Tests for importance and confidence scoring.
"""

import pytest

from tiered_memory.config import ImportanceThresholds
from tiered_memory.schemas import (
    ConfidenceBasis,
    MemorySource,
    MemoryType,
    StructuredData,
)
from tiered_memory.scoring import (
    ImportanceScorer,
    initial_confidence,
    reinforced_confidence,
)


@pytest.fixture
def scorer():
    return ImportanceScorer()


class TestDetectors:
    """Tests for content signal detection."""

    def test_detects_acronym_as_entity(self, scorer):
        assert scorer.detect_entities("User works at DNB")

    def test_detects_capitalized_name(self, scorer):
        assert scorer.detect_entities("My sister Anna Larsen lives in Oslo")

    def test_plain_text_has_no_entity(self, scorer):
        assert not scorer.detect_entities("likes long walks")

    def test_detects_temporal_reference(self, scorer):
        assert scorer.detect_temporal("dentist appointment tomorrow")
        assert scorer.detect_temporal("we met last week")
        assert not scorer.detect_temporal("likes coffee")

    def test_detects_norwegian_temporal_reference(self, scorer):
        assert scorer.detect_temporal("møte i morgen")

    def test_detects_emotional_language(self, scorer):
        assert scorer.detect_emotional("I love sushi")
        assert not scorer.detect_emotional("eats sushi")

    def test_detects_numeric_quantity(self, scorer):
        assert scorer.detect_numerical("Rent is 12,500 kr")
        assert scorer.detect_numerical("ran 10 km")
        assert not scorer.detect_numerical("ran far")

    def test_detects_emphasis(self, scorer):
        assert scorer.detect_emphasis("Remember that I am vegetarian")
        assert scorer.detect_emphasis("Husk at jeg er vegetarianer")
        assert not scorer.detect_emphasis("I am vegetarian")


class TestSpecificity:
    """Tests for specificity calculation."""

    def test_short_vague_text_is_not_specific(self, scorer):
        assert scorer.calculate_specificity("ok thanks") == 0.0

    def test_numbers_and_names_raise_specificity(self, scorer):
        vague = scorer.calculate_specificity("likes running")
        concrete = scorer.calculate_specificity("Runs 10 km with Erik every 2 days")
        assert concrete > vague

    def test_structured_data_raises_specificity(self, scorer):
        sd = StructuredData(subject="user", predicate="works_at", object="DNB")
        assert scorer.calculate_specificity("works at a bank", sd) > scorer.calculate_specificity(
            "works at a bank"
        )

    def test_specificity_is_capped(self, scorer):
        text = " ".join(f"Name{i} Person {i} specifically" for i in range(50))
        assert scorer.calculate_specificity(text) <= 1.0


class TestImportanceScorer:
    """Tests for importance scoring."""

    @pytest.mark.critical
    def test_explicit_fact_with_organization(self, scorer):
        """An explicit fact naming an organization scores at least base plus entity bonus."""
        result = scorer.score("User works at DNB", MemoryType.FACT, MemorySource.EXPLICIT_STATEMENT)

        assert result.base == 0.6
        assert result.bonuses["entity"] == pytest.approx(0.10)
        assert result.score >= 0.7
        assert 0.0 <= result.score <= 1.0

    def test_plain_content_scores_base_weight(self, scorer):
        result = scorer.score("ok thanks", MemoryType.CONTEXT, MemorySource.INFERENCE)
        assert result.score == pytest.approx(0.4)
        assert result.bonuses == {}

    def test_type_weights_order_scores(self, scorer):
        goal = scorer.score("ok thanks", MemoryType.GOAL, MemorySource.INFERENCE)
        context = scorer.score("ok thanks", MemoryType.CONTEXT, MemorySource.INFERENCE)
        assert goal.score > context.score

    def test_explicit_source_boost(self, scorer):
        inferred = scorer.score("likes tea", MemoryType.PREFERENCE, MemorySource.INFERENCE)
        explicit = scorer.score("likes tea", MemoryType.PREFERENCE, MemorySource.EXPLICIT_STATEMENT)
        assert explicit.score == pytest.approx(min(1.0, inferred.score * 1.3))
        assert explicit.multipliers["explicit_source"] == 1.3

    def test_score_is_clamped(self, scorer):
        result = scorer.score(
            "Remember: I must visit New York next week!! It costs 5000 USD",
            MemoryType.GOAL,
            MemorySource.EXPLICIT_STATEMENT,
        )
        assert result.raw_score > 1.0
        assert result.score == 1.0

    def test_repetition_boost_is_capped(self, scorer):
        once = scorer.score("likes tea", MemoryType.EVENT, MemorySource.INFERENCE, reinforcements=1)
        thrice = scorer.score("likes tea", MemoryType.EVENT, MemorySource.INFERENCE, reinforcements=3)
        many = scorer.score("likes tea", MemoryType.EVENT, MemorySource.INFERENCE, reinforcements=10)

        assert "repetition" not in once.multipliers
        assert thrice.multipliers["repetition"] == pytest.approx(1.2**2)
        assert many.multipliers["repetition"] == pytest.approx(1.2**3)

    def test_all_scores_within_unit_interval(self, scorer):
        texts = ["", "a", "I LOVE NYC!!! 100% amazing 2025-01-01", "x " * 500]
        for text in texts:
            for memory_type in MemoryType:
                for source in MemorySource:
                    score = scorer.score(text, memory_type, source).score
                    assert 0.0 <= score <= 1.0


class TestThresholdHelpers:
    """Tests for threshold checks and reinforcement."""

    def test_threshold_checks(self):
        scorer = ImportanceScorer(thresholds=ImportanceThresholds())
        assert not scorer.should_store(0.05)
        assert scorer.should_store(0.1)
        assert scorer.is_promotion_eligible(0.6)
        assert scorer.needs_accelerated_decay(0.29)
        assert scorer.is_decay_protected(0.9)
        assert not scorer.is_decay_protected(0.89)

    def test_reinforce_averages_and_boosts(self, scorer):
        assert scorer.reinforce(0.5, 0.7) == pytest.approx(0.7)
        assert scorer.reinforce(0.95, 1.0) == 1.0


class TestConfidence:
    """Tests for initial and reinforced confidence."""

    @pytest.mark.parametrize(
        "source,expected,basis",
        [
            (MemorySource.EXPLICIT_STATEMENT, 0.95, ConfidenceBasis.EXPLICIT),
            (MemorySource.CORRECTION, 0.9, ConfidenceBasis.CORRECTED),
            (MemorySource.EXTERNAL_IMPORT, 0.85, ConfidenceBasis.INFERRED),
            (MemorySource.OBSERVATION, 0.7, ConfidenceBasis.INFERRED),
            (MemorySource.INFERENCE, 0.6, ConfidenceBasis.INFERRED),
        ],
    )
    def test_initial_confidence_by_source(self, source, expected, basis):
        confidence = initial_confidence(source)
        assert confidence.score == expected
        assert confidence.basis == basis
        assert confidence.reinforcements == 1

    def test_reinforcement_raises_confidence(self):
        confidence = reinforced_confidence(initial_confidence(MemorySource.OBSERVATION))
        assert confidence.score == pytest.approx(0.75)
        assert confidence.basis == ConfidenceBasis.REPEATED
        assert confidence.reinforcements == 2

    def test_reinforcement_is_clamped(self):
        confidence = reinforced_confidence(initial_confidence(MemorySource.EXPLICIT_STATEMENT))
        confidence = reinforced_confidence(confidence)
        assert confidence.score == 1.0

    def test_corrected_basis_survives_reinforcement(self):
        confidence = reinforced_confidence(initial_confidence(MemorySource.CORRECTION))
        assert confidence.basis == ConfidenceBasis.CORRECTED
