"""Core domain models.

All pipeline stages, the trait engine and the repository operate on these
types. Pydantic is used for validation and serialisation at every data
boundary. Field names are snake_case in Python; generator payloads and
dumps use camelCase aliases (`model_dump(by_alias=True)`).
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

TraitType = Literal["attack", "defense", "special", "passive"]
Rarity = Literal["common", "rare", "legendary"]
Source = Literal["generated", "fallback"]

TRAIT_TYPES: tuple[str, ...] = ("attack", "defense", "special", "passive")
RARITIES: tuple[str, ...] = ("common", "rare", "legendary")

STAT_NAMES: tuple[str, ...] = (
    "happiness",
    "energy",
    "trust",
    "curiosity",
    "bond",
    "experience",
    "hp",
    "attack",
    "defense",
    "speed",
)

DEFAULT_STATS: dict[str, int] = {
    "happiness": 70,
    "energy": 80,
    "trust": 60,
    "curiosity": 75,
    "bond": 10,
    "experience": 0,
    "hp": 50,
    "attack": 20,
    "defense": 20,
    "speed": 20,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def round_half_up(value: float) -> int:
    """Round halves up: 2.5 → 3, -2.5 → -2."""
    return math.floor(value + 0.5)


def _to_int(value: Any) -> int:
    """Round numeric generator output to int; anything non-numeric becomes 0.

    Infinite and NaN values raise ValueError so validation rejects the payload.
    """
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError:
            return 0
    if not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value):
        raise ValueError("non-finite number")
    return round_half_up(value)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


# ---------------------------------------------------------------------------
# Pet entity
# ---------------------------------------------------------------------------

class MemoryEntry(CamelModel):
    event: str
    timestamp: datetime = Field(default_factory=utc_now)
    emotional_impact: int = 0


class CoreTraits(CamelModel):
    dominant_trait: str = "explorer"
    secondary_traits: list[str] = Field(default_factory=lambda: ["friendly", "cautious"])
    adaptability_level: int = Field(default=60, ge=0, le=100)
    trait_modifications: list[str] = Field(default_factory=list)
    emerging_trait: str | None = None


class Trait(CamelModel):
    """A solidified trait, persisted on the pet and in the trait history."""

    id: str
    pet_id: str
    name: str
    type: TraitType
    effect_value: int = Field(ge=1, le=50)
    effect_description: str = ""
    special_mechanism: str | None = None
    is_negative: bool = False
    rarity: Rarity = "common"
    acquisition_time: datetime = Field(default_factory=utc_now)
    is_active: bool = True


class TraitCandidate(CamelModel):
    """An untrusted trait proposal (from the generator or a template).

    Everything is optional here; the trait engine decides what survives.
    """

    name: str | None = None
    type: str | None = None
    effect_value: Any = None
    effect_description: str = ""
    special_mechanism: str | None = None
    is_negative: bool = False
    rarity: str | None = None


class PetState(CamelModel):
    """Mutable pet entity. Owned by the orchestrator for the length of a run."""

    id: str
    name: str = ""
    base_personality: str = "curious and friendly"
    profile: str = "explorer"
    rarity: str = "N"
    stats: dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_STATS))
    core_traits: CoreTraits = Field(default_factory=CoreTraits)
    memory: list[MemoryEntry] = Field(default_factory=list)
    traits: list[Trait] = Field(default_factory=list)
    base_prompt: str = ""
    relationships: dict[str, Any] = Field(default_factory=dict)
    last_update: datetime = Field(default_factory=utc_now)

    @classmethod
    def default(cls, pet_id: str) -> PetState:
        return cls(
            id=pet_id,
            name=f"Pet {pet_id}",
            base_prompt="A curious and friendly spirit pet.",
        )

    def active_traits(self, trait_type: str | None = None) -> list[Trait]:
        return [
            t for t in self.traits
            if t.is_active and (trait_type is None or t.type == trait_type)
        ]


class BehaviorRecord(FrozenModel):
    """A single player action. Append-only; never mutated."""

    id: str
    pet_id: str
    action_type: str
    action_target: str
    keywords_added: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)


# ---------------------------------------------------------------------------
# Generator payloads: the shapes the generator is asked to return
# ---------------------------------------------------------------------------

class PerceptionPayload(CamelModel):
    situation_type: str
    emotion_factor: float = Field(allow_inf_nan=False)
    adaptability: float = Field(allow_inf_nan=False)
    key_elements: list[str]
    analysis_reason: str = ""
    source: Source = "generated"

    @field_validator("emotion_factor")
    @classmethod
    def _clamp_emotion(cls, v: float) -> float:
        return max(-3.0, min(3.0, v))

    @field_validator("adaptability")
    @classmethod
    def _clamp_adaptability(cls, v: float) -> float:
        return max(0.0, min(100.0, v))


class EmotionAdjustment(FrozenModel):
    happiness: int = 0
    energy: int = 0
    trust: int = 0
    curiosity: int = 0

    @field_validator("*", mode="before")
    @classmethod
    def _round(cls, v: Any) -> int:
        return _to_int(v)


class BehaviorTendency(FrozenModel):
    aggression: int = 30
    caution: int = 50
    sociability: int = 60
    independence: int = 40

    @field_validator("*", mode="before")
    @classmethod
    def _bound(cls, v: Any) -> int:
        return max(0, min(100, _to_int(v)))


class LayerInstructions(FrozenModel):
    focus_area: str = ""
    response_style: str = ""
    decision_bias: str = ""
    special_instructions: str = ""


class CorePayload(CamelModel):
    emotion_adjustment: EmotionAdjustment = Field(default_factory=EmotionAdjustment)
    behavior_tendency: BehaviorTendency
    layer_instructions: LayerInstructions = Field(default_factory=LayerInstructions)
    core_expression: str = ""
    source: Source = "generated"


class StatChanges(FrozenModel):
    hp: int = 0
    attack: int = 0
    defense: int = 0
    speed: int = 0
    bond: int = 0
    experience: int = 0

    @field_validator("*", mode="before")
    @classmethod
    def _round(cls, v: Any) -> int:
        return _to_int(v)


class ExecutionPayload(CamelModel):
    behavior_description: str
    dialogue: str | None = None
    stat_changes: StatChanges = Field(default_factory=StatChanges)
    special_effects: list[str] = Field(default_factory=list)
    mood_display: str = ""
    next_state_hint: str = ""
    source: Source = "generated"


class EvolutionTemplate(CamelModel):
    """Candidate evolution: new traits plus proposed attribute deltas."""

    evolution_description: str = ""
    new_keywords: list[str] = Field(default_factory=list)
    new_traits: list[dict[str, Any]] = Field(default_factory=list)
    attribute_changes: dict[str, int] = Field(default_factory=dict)
    source: Source = "generated"

    @field_validator("attribute_changes", mode="before")
    @classmethod
    def _round_changes(cls, v: Any) -> dict[str, int]:
        if not isinstance(v, dict):
            return {}
        return {str(k): _to_int(val) for k, val in v.items()}


class NumericalPayload(CamelModel):
    traits: list[dict[str, Any]] = Field(default_factory=list)
    attribute_changes: dict[str, Any] = Field(default_factory=dict)
    source: Source = "generated"


# ---------------------------------------------------------------------------
# Stage results: immutable, one per stage per run
# ---------------------------------------------------------------------------

class PerceptionResult(FrozenModel):
    situation_type: str
    emotion_factor: float
    adaptability: float
    key_elements: list[str]
    analysis_reason: str = ""
    emotional_weight: float
    adaptability_score: int
    memory_influence: list[str]
    prompt_modifications: dict[str, str] = Field(default_factory=dict)
    source: Source = "generated"


class TraitEvolution(FrozenModel):
    dominant_trait_shift: float = 0.0
    secondary_trait_changes: list[str] = Field(default_factory=list)
    new_trait_emergence: str | None = None


class DecisionFramework(FrozenModel):
    risk_tolerance: str
    social_preference: str
    conflict_style: str


class EmotionalResponse(FrozenModel):
    intensity: str
    stability: str
    expression: str


class CoreInstructions(FrozenModel):
    primary_focus: str
    behavior_guidelines: list[str]
    decision_framework: DecisionFramework
    emotional_response: EmotionalResponse


class CoreResult(FrozenModel):
    emotion_adjustment: EmotionAdjustment
    behavior_tendency: BehaviorTendency
    layer_instructions: LayerInstructions
    core_expression: str = ""
    trait_evolution: TraitEvolution
    core_instructions: CoreInstructions
    trait_stability: int = Field(ge=0, le=100)
    core_trait_updates: dict[str, Any] = Field(default_factory=dict)
    source: Source = "generated"


class ExecutionResult(FrozenModel):
    behavior_description: str
    dialogue: str | None = None
    stat_changes: StatChanges = Field(default_factory=StatChanges)
    special_effects: list[str] = Field(default_factory=list)
    mood_display: str = ""
    next_state_hint: str = ""
    emotional_impact: int = 0
    memory_to_add: str = ""
    core_trait_updates: dict[str, Any] = Field(default_factory=dict)
    trait_stability: int = 100
    decision_confidence: int = 0
    source: Source = "generated"


class LayerResults(FrozenModel):
    perception: PerceptionResult
    core: CoreResult
    execution: ExecutionResult


class ReactionOutcome(CamelModel):
    """Return value of ReactionPipeline.process_reaction.

    `reaction` is always populated; on failure it is the canned fallback
    reaction, which is also exposed as `fallback`.
    """

    success: bool
    pet_id: str
    reaction: ExecutionResult
    layer_results: LayerResults | None = None
    algorithm_results: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    fallback: ExecutionResult | None = None
