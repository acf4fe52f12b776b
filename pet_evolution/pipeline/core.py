"""Core mutation stage — personality and behavior tendency.

The perception result rewrites the core prompt before it is sent. Whatever
comes back (or the canned default), the trait-evolution analysis, core
instructions and trait stability are computed locally, so the execution
stage always has them.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pet_evolution import fallbacks
from pet_evolution.gateway import GeneratorGateway
from pet_evolution.models import (
    BehaviorTendency,
    CoreInstructions,
    CorePayload,
    CoreResult,
    DecisionFramework,
    EmotionalResponse,
    PerceptionResult,
    PetState,
    TraitEvolution,
    round_half_up,
)
from pet_evolution.parsing import ParseOk, parse_payload
from pet_evolution.prompts import (
    DEFAULT_PROMPTS,
    PersonalityProfile,
    PromptError,
    PromptSet,
    get_profile,
    render_prompt,
)

logger = logging.getLogger(__name__)

# Enumeration order doubles as the tie-break for the dominant tendency.
TENDENCY_KEYS: tuple[str, ...] = ("aggression", "caution", "sociability", "independence")

FOCUS_LABELS: dict[str, str] = {
    "aggression": "proactive strike",
    "caution": "careful observation",
    "sociability": "social interaction",
    "independence": "independent action",
}

INCREASE_AGGRESSION = "increase aggression"
INCREASE_CAUTION = "increase caution"
INCREASE_SOCIABILITY = "increase sociability"


# ---------------------------------------------------------------------------
# Prompt extension
# ---------------------------------------------------------------------------

def extend_core_prompt(prompt: str, perception: PerceptionResult) -> str:
    """Append the intensity, adaptation and memory clauses."""
    clauses: list[str] = []
    weight = perception.emotional_weight
    if weight > 0.7:
        clauses.append("Intensity: emotions are running high right now; express them strongly.")
    elif weight < 0.3:
        clauses.append("Intensity: emotions are calm right now; keep the reaction steady.")
    else:
        clauses.append("Intensity: emotions are moderate; react in proportion.")

    score = perception.adaptability_score
    if score > 80:
        clauses.append("Adaptation: you feel at home here and can act confident and proactive.")
    elif score < 40:
        clauses.append("Adaptation: you feel out of place here; be careful and conservative.")
    else:
        clauses.append("Adaptation: you are adjusting to this place; stay attentive.")

    if perception.memory_influence:
        clauses.append("Memory: keep these past experiences in mind: "
                       + ", ".join(perception.memory_influence))

    return prompt + "\n" + "\n".join(clauses)


def build_core_prompt(
    pet: PetState,
    perception: PerceptionResult,
    prompts: PromptSet = DEFAULT_PROMPTS,
    profile: PersonalityProfile | None = None,
) -> str:
    profile = profile or get_profile(pet.profile)
    base = render_prompt(prompts.core, {
        "pet": {
            "name": pet.name,
            "base_personality": pet.base_personality,
            "dominant_trait": pet.core_traits.dominant_trait,
        },
        "profile": profile.context(),
        "state": json.dumps(pet.stats),
        "perception": perception.model_dump_json(
            by_alias=True, include={"situation_type", "emotion_factor", "adaptability",
                                    "key_elements", "analysis_reason"},
        ),
    })
    return extend_core_prompt(base, perception)


# ---------------------------------------------------------------------------
# Deterministic trait analysis
# ---------------------------------------------------------------------------

def analyze_trait_evolution(tendency: BehaviorTendency) -> TraitEvolution:
    changes: list[str] = []
    if tendency.aggression > 70:
        changes.append(INCREASE_AGGRESSION)
    if tendency.caution > 80:
        changes.append(INCREASE_CAUTION)
    if tendency.sociability > 75:
        changes.append(INCREASE_SOCIABILITY)
    return TraitEvolution(secondary_trait_changes=changes)


def determine_primary_focus(tendency: BehaviorTendency) -> str:
    values = {key: getattr(tendency, key) for key in TENDENCY_KEYS}
    top = max(values.values())
    dominant = next(key for key in TENDENCY_KEYS if values[key] == top)
    return FOCUS_LABELS[dominant]


def decision_framework(tendency: BehaviorTendency) -> DecisionFramework:
    return DecisionFramework(
        risk_tolerance="high" if tendency.caution < 50 else "low",
        social_preference="group" if tendency.sociability > 60 else "solo",
        conflict_style="direct" if tendency.aggression > 60 else "avoidant",
    )


def behavior_guidelines(evolution: TraitEvolution) -> list[str]:
    return ["keep core traits"] + [
        f"adjust: {change}" for change in evolution.secondary_trait_changes
    ]


def emotional_response(evolution: TraitEvolution) -> EmotionalResponse:
    return EmotionalResponse(
        intensity="strong" if evolution.dominant_trait_shift > 0.5 else "mild",
        stability="stable" if len(evolution.secondary_trait_changes) < 2 else "fluctuating",
        expression="follow the current traits",
    )


def core_instructions(
    evolution: TraitEvolution, tendency: BehaviorTendency
) -> CoreInstructions:
    return CoreInstructions(
        primary_focus=determine_primary_focus(tendency),
        behavior_guidelines=behavior_guidelines(evolution),
        decision_framework=decision_framework(tendency),
        emotional_response=emotional_response(evolution),
    )


def trait_stability(evolution: TraitEvolution) -> int:
    change_count = len(evolution.secondary_trait_changes)
    shift = abs(evolution.dominant_trait_shift)
    return max(0, min(100, round_half_up(100 - (change_count * 20 + shift * 30))))


def trait_updates(evolution: TraitEvolution) -> dict[str, Any]:
    updates: dict[str, Any] = {}
    if evolution.new_trait_emergence:
        updates["emerging_trait"] = evolution.new_trait_emergence
    if evolution.secondary_trait_changes:
        updates["trait_modifications"] = list(evolution.secondary_trait_changes)
    return updates


def default_payload(pet: PetState) -> CorePayload:
    payload = CorePayload.model_validate({**fallbacks.CORE, "source": "fallback"})
    return payload.model_copy(update={"core_expression": pet.core_traits.dominant_trait})


def compute_core(payload: CorePayload) -> CoreResult:
    evolution = analyze_trait_evolution(payload.behavior_tendency)
    return CoreResult(
        emotion_adjustment=payload.emotion_adjustment,
        behavior_tendency=payload.behavior_tendency,
        layer_instructions=payload.layer_instructions,
        core_expression=payload.core_expression,
        trait_evolution=evolution,
        core_instructions=core_instructions(evolution, payload.behavior_tendency),
        trait_stability=trait_stability(evolution),
        core_trait_updates=trait_updates(evolution),
        source=payload.source,
    )


async def run_core(
    gateway: GeneratorGateway,
    pet: PetState,
    perception: PerceptionResult,
    prompts: PromptSet = DEFAULT_PROMPTS,
    profile: PersonalityProfile | None = None,
) -> CoreResult:
    try:
        prompt = build_core_prompt(pet, perception, prompts, profile)
    except PromptError as e:
        logger.warning("Core prompt failed to render: %s", e)
        return compute_core(default_payload(pet))

    text = await gateway.generate(prompt, gateway.options("core"))
    parsed = parse_payload(text, CorePayload)
    if isinstance(parsed, ParseOk) and parsed.source != "fallback":
        payload = parsed.value
    else:
        if not isinstance(parsed, ParseOk):
            logger.warning("Core reply unusable (%s) — using default core result", parsed.reason)
        payload = default_payload(pet)
    return compute_core(payload)
