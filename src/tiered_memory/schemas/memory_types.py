# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Memory record schemas.

Defines the Pydantic models for a personalization memory: its tier and
type classification, content, scoring state (importance, confidence,
decay), provenance metadata, embedding and soft relations.

Scores are validated to [0, 1] on construction and on assignment; code
that computes a score clamps it with ``clamp_score`` before storing it.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def clamp_score(value: float) -> float:
    """Clamp a score to the closed unit interval."""
    return max(0.0, min(1.0, value))


class MemoryTier(str, Enum):
    """Tiers of the memory hierarchy.

    - WORKING: session-scoped cache, capacity-bounded
    - SHORT_TERM: cache-backed, 72h TTL, vector-indexed
    - LONG_TERM: database-backed, permanent subject to decay
    - EPISODIC: terminal archive, never promotes further
    """

    WORKING = "working"
    SHORT_TERM = "short-term"
    LONG_TERM = "long-term"
    EPISODIC = "episodic"

    def __str__(self) -> str:
        return self.value


class MemoryType(str, Enum):
    """Kinds of personalization memory."""

    FACT = "fact"
    PREFERENCE = "preference"
    EVENT = "event"
    RELATIONSHIP = "relationship"
    SKILL = "skill"
    GOAL = "goal"
    CONTEXT = "context"
    FEEDBACK = "feedback"

    def __str__(self) -> str:
        return self.value


class MemorySource(str, Enum):
    """How a memory was acquired."""

    EXPLICIT_STATEMENT = "explicit_statement"
    INFERENCE = "inference"
    CORRECTION = "correction"
    OBSERVATION = "observation"
    EXTERNAL_IMPORT = "external_import"

    def __str__(self) -> str:
        return self.value


class ConfidenceBasis(str, Enum):
    """Why we believe a memory."""

    EXPLICIT = "explicit"
    INFERRED = "inferred"
    REPEATED = "repeated"
    CORRECTED = "corrected"

    def __str__(self) -> str:
        return self.value


class TemporalInfo(BaseModel):
    """Validity window attached to structured data."""

    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_recurring: bool = False

    @model_validator(mode="after")
    def check_window(self) -> "TemporalInfo":
        if self.valid_from and self.valid_until:
            if ensure_utc(self.valid_until) < ensure_utc(self.valid_from):
                raise ValueError("valid_until must not precede valid_from")
        return self


class StructuredData(BaseModel):
    """Subject/predicate/object form of a memory."""

    subject: str = Field(..., min_length=1)
    predicate: str = Field(..., min_length=1)
    object: str = Field(..., min_length=1)
    qualifiers: dict[str, Any] = Field(default_factory=dict)
    temporal: Optional[TemporalInfo] = None


class Confidence(BaseModel):
    """Belief in a memory and how it was earned."""

    model_config = ConfigDict(validate_assignment=True)

    score: float = Field(..., ge=0.0, le=1.0)
    basis: ConfidenceBasis = ConfidenceBasis.INFERRED
    reinforcements: int = Field(default=1, ge=0)
    last_updated: datetime = Field(default_factory=utcnow)


class DecayState(BaseModel):
    """Time-based forgetting state.

    ``score`` is the value as of ``last_calculated``; the effective value at
    any later time is derived lazily, never by a running timer.
    """

    model_config = ConfigDict(validate_assignment=True)

    score: float = Field(default=1.0, ge=0.0, le=1.0)
    rate_per_day: float = Field(..., gt=0.0)
    last_calculated: datetime = Field(default_factory=utcnow)
    protected: bool = False


class MemoryMetadata(BaseModel):
    """Provenance and lifecycle bookkeeping."""

    model_config = ConfigDict(validate_assignment=True)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_accessed_at: Optional[datetime] = None
    access_count: int = Field(default=0, ge=0)
    source: MemorySource
    source_conversation_id: Optional[str] = None
    source_message_ids: list[str] = Field(default_factory=list)
    custom: dict[str, Any] = Field(default_factory=dict)
    tier_changed_at: Optional[datetime] = None

    @property
    def last_activity_at(self) -> datetime:
        """Last access, or creation when never accessed."""
        return ensure_utc(self.last_accessed_at or self.created_at)

    @property
    def tier_entered_at(self) -> datetime:
        """When the memory entered its current tier."""
        return ensure_utc(self.tier_changed_at or self.created_at)


class Embedding(BaseModel):
    """Vector representation used for similarity search."""

    vector: list[float]
    model: str
    dimension: int = Field(..., gt=0)
    generated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def check_dimension(self) -> "Embedding":
        if len(self.vector) != self.dimension:
            raise ValueError(
                f"embedding has {len(self.vector)} values, expected {self.dimension}"
            )
        return self


class Memory(BaseModel):
    """The fundamental unit of personalization memory.

    ``tier`` only changes through TierManager transitions. ``contradicts``
    and ``superseded_by`` are soft links, never enforced as foreign keys.
    ``version`` is owned by the store and bumped on every mutating write.
    """

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(..., min_length=1)
    tenant_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    chatbot_id: Optional[str] = None
    tier: MemoryTier = MemoryTier.WORKING
    memory_type: MemoryType
    content: str = Field(..., min_length=1)
    structured_data: Optional[StructuredData] = None
    importance_score: float = Field(..., ge=0.0, le=1.0)
    confidence: Confidence
    decay: DecayState
    metadata: MemoryMetadata
    embedding: Optional[Embedding] = None
    contradicts: list[str] = Field(default_factory=list)
    superseded_by: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    is_deleted: bool = False
    expires_at: Optional[datetime] = None
    version: int = Field(default=1, ge=1)

    @property
    def is_superseded(self) -> bool:
        return bool(self.superseded_by)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True when ``expires_at`` has passed."""
        if self.expires_at is None:
            return False
        now = now or utcnow()
        return ensure_utc(self.expires_at) <= ensure_utc(now)

    def in_scope(self, tenant_id: str, user_id: Optional[str] = None) -> bool:
        if self.tenant_id != tenant_id:
            return False
        return user_id is None or self.user_id == user_id


class CreateMemoryInput(BaseModel):
    """Structured candidate produced by an extractor."""

    user_id: str = Field(..., min_length=1)
    tenant_id: str = Field(..., min_length=1)
    chatbot_id: Optional[str] = None
    memory_type: MemoryType
    content: str = Field(..., min_length=1)
    structured_data: Optional[StructuredData] = None
    source: MemorySource
    source_conversation_id: Optional[str] = None
    source_message_ids: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    custom_metadata: dict[str, Any] = Field(default_factory=dict)
    expires_at: Optional[datetime] = None

    @field_validator("content")
    @classmethod
    def strip_content(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("content must not be blank")
        return v

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "user_id": "user-123",
                    "tenant_id": "tenant-1",
                    "memory_type": "fact",
                    "content": "User works at DNB",
                    "source": "explicit_statement",
                }
            ]
        }
    }


class UpdateMemoryInput(BaseModel):
    """Partial update of caller-editable fields."""

    content: Optional[str] = Field(default=None, min_length=1)
    structured_data: Optional[StructuredData] = None
    tags: Optional[list[str]] = None
    importance_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    custom_metadata: Optional[dict[str, Any]] = None
