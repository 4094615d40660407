# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Engine configuration.

This module provides:
- Frozen dataclasses for tier, scoring, decay, consolidation, retrieval
  and service settings
- Enum-keyed lookup tables exposed as read-only mappings
- load_config() to parse a YAML file into a validated MemoryEngineConfig

All values are validated when a config object is built, so a bad file
fails at startup rather than midway through a sweep.
"""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

import yaml

from tiered_memory.exceptions import ValidationError
from tiered_memory.schemas.memory_types import MemoryTier, MemoryType

HOUR_SECONDS = 60 * 60


def _check_unit(name: str, value: float) -> None:
    if not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
        raise ValidationError(f"{name} must be within [0, 1], got {value!r}")


def _check_positive(name: str, value: float) -> None:
    if not isinstance(value, (int, float)) or value <= 0:
        raise ValidationError(f"{name} must be > 0, got {value!r}")


@dataclass(frozen=True)
class TierConfig:
    """Configuration for one tier of the hierarchy.

    Attributes:
        tier: Tier identifier.
        ttl_seconds: Time-to-live, None for session-scoped or permanent tiers.
        max_memories: Per-user capacity, None for unbounded.
        storage: Backing store class ("cache", "database" or "archive").
        vector_indexed: Whether the tier participates in vector search.
        consolidation_threshold: Score above which memories are promoted.
    """

    tier: MemoryTier
    ttl_seconds: Optional[int]
    max_memories: Optional[int]
    storage: str
    vector_indexed: bool
    consolidation_threshold: float

    def __post_init__(self) -> None:
        if self.ttl_seconds is not None:
            _check_positive(f"{self.tier}.ttl_seconds", self.ttl_seconds)
        if self.max_memories is not None:
            _check_positive(f"{self.tier}.max_memories", self.max_memories)
        if self.storage not in ("cache", "database", "archive"):
            raise ValidationError(f"{self.tier}.storage must be cache, database or archive")
        _check_unit(f"{self.tier}.consolidation_threshold", self.consolidation_threshold)


DEFAULT_TIER_CONFIGS: Mapping[MemoryTier, TierConfig] = MappingProxyType(
    {
        MemoryTier.WORKING: TierConfig(
            tier=MemoryTier.WORKING,
            ttl_seconds=None,  # session lifetime only
            max_memories=50,
            storage="cache",
            vector_indexed=False,
            consolidation_threshold=0.3,
        ),
        MemoryTier.SHORT_TERM: TierConfig(
            tier=MemoryTier.SHORT_TERM,
            ttl_seconds=72 * HOUR_SECONDS,
            max_memories=200,
            storage="cache",
            vector_indexed=True,
            consolidation_threshold=0.5,
        ),
        MemoryTier.LONG_TERM: TierConfig(
            tier=MemoryTier.LONG_TERM,
            ttl_seconds=None,
            max_memories=1000,
            storage="database",
            vector_indexed=True,
            consolidation_threshold=0.8,
        ),
        MemoryTier.EPISODIC: TierConfig(
            tier=MemoryTier.EPISODIC,
            ttl_seconds=None,
            max_memories=None,
            storage="archive",
            vector_indexed=True,
            consolidation_threshold=1.0,
        ),
    }
)

DEFAULT_TYPE_WEIGHTS: Mapping[MemoryType, float] = MappingProxyType(
    {
        MemoryType.GOAL: 0.8,
        MemoryType.PREFERENCE: 0.7,
        MemoryType.RELATIONSHIP: 0.65,
        MemoryType.FACT: 0.6,
        MemoryType.SKILL: 0.55,
        MemoryType.EVENT: 0.5,
        MemoryType.FEEDBACK: 0.45,
        MemoryType.CONTEXT: 0.4,
    }
)


@dataclass(frozen=True)
class ImportanceWeights:
    """Weights for importance scoring."""

    type_weights: Mapping[MemoryType, float] = field(default_factory=lambda: DEFAULT_TYPE_WEIGHTS)
    entity_bonus: float = 0.10
    temporal_bonus: float = 0.08
    emotional_bonus: float = 0.05
    numerical_bonus: float = 0.06
    specificity_multiplier: float = 0.15
    explicit_source_multiplier: float = 1.3
    user_emphasis_multiplier: float = 1.5
    repetition_multiplier: float = 1.2
    max_repetition_steps: int = 3

    def __post_init__(self) -> None:
        missing = [t.value for t in MemoryType if t not in self.type_weights]
        if missing:
            raise ValidationError(f"type_weights missing entries for: {', '.join(missing)}")
        for memory_type, weight in self.type_weights.items():
            _check_unit(f"type_weights.{memory_type}", weight)
        # Freeze whatever mapping we were handed
        object.__setattr__(self, "type_weights", MappingProxyType(dict(self.type_weights)))
        for name in ("entity_bonus", "temporal_bonus", "emotional_bonus", "numerical_bonus",
                     "specificity_multiplier"):
            _check_unit(name, getattr(self, name))
        for name in ("explicit_source_multiplier", "user_emphasis_multiplier",
                     "repetition_multiplier"):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or value < 1.0:
                raise ValidationError(f"{name} must be >= 1.0, got {value!r}")
        if not isinstance(self.max_repetition_steps, int) or self.max_repetition_steps < 0:
            raise ValidationError("max_repetition_steps must be a non-negative integer")


@dataclass(frozen=True)
class ImportanceThresholds:
    """Importance cut-offs driving storage, promotion and decay."""

    minimum_store: float = 0.1
    long_term_promotion: float = 0.6
    accelerated_decay: float = 0.3
    decay_protection: float = 0.9

    def __post_init__(self) -> None:
        for f in fields(self):
            _check_unit(f.name, getattr(self, f.name))
        ordered = (
            self.minimum_store
            <= self.accelerated_decay
            <= self.long_term_promotion
            <= self.decay_protection
        )
        if not ordered:
            raise ValidationError(
                "thresholds must satisfy minimum_store <= accelerated_decay "
                "<= long_term_promotion <= decay_protection"
            )


@dataclass(frozen=True)
class DecayConfig:
    """Decay rates and the floors that trigger tier actions.

    Attributes:
        default_rate_per_day: Rate assigned to new memories.
        accelerated_multiplier: Rate multiplier below the accelerated_decay
            importance threshold.
        short_term_floor: Short-term memories decayed below this are archived.
        long_term_demotion_floor: Long-term memories decayed below this with
            low importance are demoted to short-term.
        archive_floor: Long-term memories decayed below this are archived.
    """

    default_rate_per_day: float = 0.1
    accelerated_multiplier: float = 2.0
    short_term_floor: float = 0.3
    long_term_demotion_floor: float = 0.3
    archive_floor: float = 0.1

    def __post_init__(self) -> None:
        _check_positive("default_rate_per_day", self.default_rate_per_day)
        if self.accelerated_multiplier < 1.0:
            raise ValidationError("accelerated_multiplier must be >= 1.0")
        _check_unit("short_term_floor", self.short_term_floor)
        _check_unit("long_term_demotion_floor", self.long_term_demotion_floor)
        _check_unit("archive_floor", self.archive_floor)
        if self.archive_floor > self.long_term_demotion_floor:
            raise ValidationError("archive_floor must not exceed long_term_demotion_floor")


@dataclass(frozen=True)
class ConsolidationConfig:
    """Defaults for consolidation sweeps."""

    min_age_hours: float = 24.0
    batch_size: int = 100
    merge_threshold: float = 0.95
    min_access_for_promotion: int = 3
    min_reinforcements_for_promotion: int = 2

    def __post_init__(self) -> None:
        if self.min_age_hours < 0:
            raise ValidationError("min_age_hours must be >= 0")
        _check_positive("batch_size", self.batch_size)
        _check_unit("merge_threshold", self.merge_threshold)


@dataclass(frozen=True)
class RetrievalConfig:
    """Defaults for retrieval ranking."""

    limit: int = 20
    similarity_threshold: float = 0.5
    tiers: tuple[MemoryTier, ...] = (
        MemoryTier.WORKING,
        MemoryTier.SHORT_TERM,
        MemoryTier.LONG_TERM,
    )
    max_age_days: Optional[float] = 365
    recency_boost: float = 0.3
    importance_boost: float = 0.4
    diversity_sampling: bool = True
    diversity_threshold: float = 0.8
    recency_half_life_days: float = 30.0
    candidate_multiplier: int = 3

    def __post_init__(self) -> None:
        _check_positive("limit", self.limit)
        _check_unit("similarity_threshold", self.similarity_threshold)
        _check_unit("diversity_threshold", self.diversity_threshold)
        _check_positive("recency_half_life_days", self.recency_half_life_days)
        _check_positive("candidate_multiplier", self.candidate_multiplier)
        object.__setattr__(self, "tiers", tuple(MemoryTier(t) for t in self.tiers))


@dataclass(frozen=True)
class ServiceConfig:
    """Settings for the MemoryService facade."""

    dedup_threshold: float = 0.92
    max_memories_per_user: int = 1000
    auto_consolidate: bool = True

    def __post_init__(self) -> None:
        _check_unit("dedup_threshold", self.dedup_threshold)
        _check_positive("max_memories_per_user", self.max_memories_per_user)


@dataclass(frozen=True)
class MemoryEngineConfig:
    """Complete, validated engine configuration."""

    tiers: Mapping[MemoryTier, TierConfig] = field(default_factory=lambda: DEFAULT_TIER_CONFIGS)
    weights: ImportanceWeights = field(default_factory=ImportanceWeights)
    thresholds: ImportanceThresholds = field(default_factory=ImportanceThresholds)
    decay: DecayConfig = field(default_factory=DecayConfig)
    consolidation: ConsolidationConfig = field(default_factory=ConsolidationConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    service: ServiceConfig = field(default_factory=ServiceConfig)

    def __post_init__(self) -> None:
        missing = [t.value for t in MemoryTier if t not in self.tiers]
        if missing:
            raise ValidationError(f"tier config missing for: {', '.join(missing)}")
        for tier, tier_config in self.tiers.items():
            if tier_config.tier != tier:
                raise ValidationError(f"tier config keyed {tier} describes {tier_config.tier}")
        object.__setattr__(self, "tiers", MappingProxyType(dict(self.tiers)))

    def tier(self, tier: MemoryTier) -> TierConfig:
        return self.tiers[tier]


def _build(cls: type, data: Any, section: str) -> Any:
    """Instantiate a config dataclass from a YAML mapping."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValidationError(f"{section} must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValidationError(f"unknown keys in {section}: {', '.join(sorted(unknown))}")
    try:
        return cls(**data)
    except TypeError as e:
        raise ValidationError(f"invalid {section}: {e}") from e


def _parse_tiers(data: Any) -> Mapping[MemoryTier, TierConfig]:
    if data is None:
        return DEFAULT_TIER_CONFIGS
    if not isinstance(data, dict):
        raise ValidationError("tiers must be a mapping")
    tiers = dict(DEFAULT_TIER_CONFIGS)
    for key, overrides in data.items():
        try:
            tier = MemoryTier(key)
        except ValueError as e:
            raise ValidationError(f"unknown tier: {key!r}") from e
        if not isinstance(overrides, dict):
            raise ValidationError(f"tiers.{key} must be a mapping")
        overrides = dict(overrides)
        if "ttl_hours" in overrides:
            hours = overrides.pop("ttl_hours")
            overrides["ttl_seconds"] = None if hours is None else int(hours * HOUR_SECONDS)
        try:
            tiers[tier] = replace(tiers[tier], **overrides)
        except TypeError as e:
            raise ValidationError(f"invalid tiers.{key}: {e}") from e
    return tiers


def _parse_weights(data: Any) -> ImportanceWeights:
    if data is None:
        return ImportanceWeights()
    if not isinstance(data, dict):
        raise ValidationError("weights must be a mapping")
    data = dict(data)
    raw_type_weights = data.pop("type_weights", None)
    if raw_type_weights is not None:
        if not isinstance(raw_type_weights, dict):
            raise ValidationError("weights.type_weights must be a mapping")
        type_weights = dict(DEFAULT_TYPE_WEIGHTS)
        for key, value in raw_type_weights.items():
            try:
                type_weights[MemoryType(key)] = value
            except ValueError as e:
                raise ValidationError(f"unknown memory type: {key!r}") from e
        data["type_weights"] = type_weights
    return _build(ImportanceWeights, data, "weights")


def config_from_dict(data: dict[str, Any]) -> MemoryEngineConfig:
    """Build a validated config from a plain mapping (the ``memory:`` section)."""
    if not isinstance(data, dict):
        raise ValidationError("memory config must be a mapping")
    retrieval = data.get("retrieval")
    if isinstance(retrieval, dict) and "tiers" in retrieval:
        retrieval = dict(retrieval)
        try:
            retrieval["tiers"] = tuple(MemoryTier(t) for t in retrieval["tiers"])
        except (TypeError, ValueError) as e:
            raise ValidationError(f"invalid retrieval.tiers: {e}") from e
    return MemoryEngineConfig(
        tiers=_parse_tiers(data.get("tiers")),
        weights=_parse_weights(data.get("weights")),
        thresholds=_build(ImportanceThresholds, data.get("thresholds"), "thresholds"),
        decay=_build(DecayConfig, data.get("decay"), "decay"),
        consolidation=_build(ConsolidationConfig, data.get("consolidation"), "consolidation"),
        retrieval=_build(RetrievalConfig, retrieval, "retrieval"),
        service=_build(ServiceConfig, data.get("service"), "service"),
    )


def load_config(path: Union[str, Path]) -> MemoryEngineConfig:
    """Load engine configuration from a YAML file.

    The file holds a top-level ``memory:`` mapping. A missing file yields
    the defaults; an unreadable or invalid file raises ValidationError.

    Args:
        path: Path to the YAML file.

    Returns:
        Validated MemoryEngineConfig.
    """
    config_path = Path(path)
    if not config_path.exists():
        return MemoryEngineConfig()

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (yaml.YAMLError, IOError) as e:
        raise ValidationError(f"cannot read config {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ValidationError(f"config {config_path} must contain a mapping")
    return config_from_dict(data.get("memory") or {})
