# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Tests for engine configuration and YAML loading.
"""

from pathlib import Path

import pytest

from tiered_memory.config import (
    DEFAULT_TIER_CONFIGS,
    DecayConfig,
    ImportanceThresholds,
    ImportanceWeights,
    MemoryEngineConfig,
    RetrievalConfig,
    config_from_dict,
    load_config,
)
from tiered_memory.exceptions import ValidationError
from tiered_memory.schemas import MemoryTier, MemoryType

EXAMPLE_CONFIG = Path(__file__).resolve().parents[1] / "config" / "memory.example.yaml"


class TestDefaults:
    """Tests for built-in defaults."""

    def test_tier_defaults(self):
        config = MemoryEngineConfig()
        assert config.tier(MemoryTier.WORKING).max_memories == 50
        assert config.tier(MemoryTier.SHORT_TERM).ttl_seconds == 72 * 3600
        assert config.tier(MemoryTier.LONG_TERM).max_memories == 1000
        assert config.tier(MemoryTier.EPISODIC).max_memories is None

    def test_threshold_defaults(self):
        thresholds = MemoryEngineConfig().thresholds
        assert thresholds.minimum_store == 0.1
        assert thresholds.long_term_promotion == 0.6
        assert thresholds.accelerated_decay == 0.3
        assert thresholds.decay_protection == 0.9

    def test_lookup_tables_are_read_only(self):
        with pytest.raises(TypeError):
            DEFAULT_TIER_CONFIGS[MemoryTier.WORKING] = None
        with pytest.raises(TypeError):
            ImportanceWeights().type_weights[MemoryType.FACT] = 0.1


class TestValidation:
    """Tests for config validation."""

    def test_thresholds_must_be_ordered(self):
        with pytest.raises(ValidationError):
            ImportanceThresholds(minimum_store=0.5, accelerated_decay=0.3)

    def test_thresholds_must_be_in_unit_interval(self):
        with pytest.raises(ValidationError):
            ImportanceThresholds(decay_protection=1.5)

    def test_type_weights_must_cover_every_type(self):
        with pytest.raises(ValidationError):
            ImportanceWeights(type_weights={MemoryType.FACT: 0.6})

    def test_decay_rate_must_be_positive(self):
        with pytest.raises(ValidationError):
            DecayConfig(default_rate_per_day=0)

    def test_archive_floor_below_demotion_floor(self):
        with pytest.raises(ValidationError):
            DecayConfig(archive_floor=0.5, long_term_demotion_floor=0.3)

    def test_retrieval_tiers_coerced(self):
        config = RetrievalConfig(tiers=("working", "episodic"))
        assert config.tiers == (MemoryTier.WORKING, MemoryTier.EPISODIC)


class TestLoadConfig:
    """Tests for YAML loading."""

    def test_missing_file_yields_defaults(self, tmp_path):
        assert load_config(tmp_path / "absent.yaml") == MemoryEngineConfig()

    def test_overrides_merge_with_defaults(self, tmp_path):
        path = tmp_path / "memory.yaml"
        path.write_text(
            "memory:\n"
            "  tiers:\n"
            "    short-term:\n"
            "      ttl_hours: 24\n"
            "  weights:\n"
            "    type_weights:\n"
            "      context: 0.2\n"
            "  decay:\n"
            "    default_rate_per_day: 0.05\n"
            "  retrieval:\n"
            "    tiers: [long-term]\n"
        )

        config = load_config(path)

        assert config.tier(MemoryTier.SHORT_TERM).ttl_seconds == 24 * 3600
        assert config.tier(MemoryTier.SHORT_TERM).max_memories == 200
        assert config.weights.type_weights[MemoryType.CONTEXT] == 0.2
        assert config.weights.type_weights[MemoryType.FACT] == 0.6
        assert config.decay.default_rate_per_day == 0.05
        assert config.retrieval.tiers == (MemoryTier.LONG_TERM,)

    def test_example_config_loads(self):
        config = load_config(EXAMPLE_CONFIG)
        assert config.retrieval.limit == 20
        assert config.service.dedup_threshold == 0.92

    def test_empty_file_yields_defaults(self, tmp_path):
        path = tmp_path / "memory.yaml"
        path.write_text("")
        assert load_config(path) == MemoryEngineConfig()

    @pytest.mark.parametrize(
        "body",
        [
            "memory:\n  decay:\n    bogus: 1\n",
            "memory:\n  tiers:\n    attic:\n      max_memories: 1\n",
            "memory:\n  weights:\n    type_weights:\n      gossip: 0.5\n",
            "memory:\n  thresholds:\n    minimum_store: 2\n",
            "memory:\n  retrieval:\n    tiers: [basement]\n",
            "memory: [1, 2]\n",
            "- not a mapping\n",
            "memory: {unclosed\n",
        ],
    )
    def test_invalid_files_raise(self, tmp_path, body):
        path = tmp_path / "memory.yaml"
        path.write_text(body)
        with pytest.raises(ValidationError):
            load_config(path)

    def test_config_from_dict(self):
        config = config_from_dict({"service": {"auto_consolidate": False}})
        assert not config.service.auto_consolidate
