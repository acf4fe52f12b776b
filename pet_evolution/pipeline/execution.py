"""Execution stage — concrete behavior and stat changes.

Core output is folded into the execution prompt, the generator proposes a
behavior, and the proposal is then bounded locally: stat changes are
scaled by trait stability and hard-clamped, special effects and the memory
entry are derived from the core instructions.
"""

from __future__ import annotations

import json
import logging

from pet_evolution import fallbacks
from pet_evolution.config import Settings
from pet_evolution.gateway import GeneratorGateway
from pet_evolution.models import (
    CoreResult,
    ExecutionPayload,
    ExecutionResult,
    PetState,
    StatChanges,
    TraitEvolution,
    round_half_up,
)
from pet_evolution.parsing import ParseOk, parse_payload
from pet_evolution.pipeline.core import FOCUS_LABELS
from pet_evolution.prompts import (
    DEFAULT_PROMPTS,
    PersonalityProfile,
    PromptError,
    PromptSet,
    get_profile,
    render_prompt,
)

logger = logging.getLogger(__name__)

FOCUS_EFFECTS: dict[str, str] = {
    FOCUS_LABELS["aggression"]: "attack boost",
    FOCUS_LABELS["caution"]: "perception boost",
    FOCUS_LABELS["sociability"]: "bond boost",
    FOCUS_LABELS["independence"]: "speed boost",
}


def extend_execution_prompt(prompt: str, core: CoreResult) -> str:
    """Append the non-empty layer instructions and the core expression."""
    li = core.layer_instructions
    labeled = [
        ("Focus", li.focus_area),
        ("Response style", li.response_style),
        ("Decision bias", li.decision_bias),
        ("Special instructions", li.special_instructions),
        ("Core expression", core.core_expression),
    ]
    clauses = [f"{label}: {value}" for label, value in labeled if value]
    if not clauses:
        return prompt
    return prompt + "\n" + "\n".join(clauses)


def build_execution_prompt(
    pet: PetState,
    core: CoreResult,
    prompts: PromptSet = DEFAULT_PROMPTS,
    profile: PersonalityProfile | None = None,
) -> str:
    profile = profile or get_profile(pet.profile)
    base = render_prompt(prompts.execution, {
        "pet": {"name": pet.name},
        "profile": profile.context(),
        "state": json.dumps(pet.stats),
        "core_instructions": core.core_instructions.model_dump_json(by_alias=True),
        "layer_instructions": core.layer_instructions.model_dump_json(by_alias=True),
    })
    return extend_execution_prompt(base, core)


def adjust_stat_changes(
    changes: StatChanges, stability: int, settings: Settings
) -> StatChanges:
    """Scale large deltas by stability/100, then clamp to ±stat_change_limit."""
    factor = stability / 100
    limit = settings.stat_change_limit
    adjusted: dict[str, int] = {}
    for stat, value in changes.model_dump().items():
        if abs(value) > settings.stability_threshold:
            value = round_half_up(value * factor)
        adjusted[stat] = max(-limit, min(limit, value))
    return StatChanges(**adjusted)


def special_effects(effects: list[str], primary_focus: str) -> list[str]:
    result = list(effects)
    extra = FOCUS_EFFECTS.get(primary_focus)
    if extra:
        result.append(extra)
    return result


def emotional_impact(changes: StatChanges) -> int:
    total = sum(changes.model_dump().values())
    return max(-5, min(5, round_half_up(total / 5)))


def memory_entry(description: str, evolution: TraitEvolution) -> str:
    if evolution.secondary_trait_changes:
        return f"{description} (trait changes: {', '.join(evolution.secondary_trait_changes)})"
    return description


def decision_confidence(stability: int, guideline_count: int) -> int:
    return round_half_up((stability + guideline_count * 10) / 2)


def default_payload(pet: PetState) -> ExecutionPayload:
    payload = ExecutionPayload.model_validate({**fallbacks.EXECUTION, "source": "fallback"})
    return payload.model_copy(update={
        "behavior_description": fallbacks.with_name(pet.name, payload.behavior_description),
    })


def compute_execution(
    payload: ExecutionPayload, core: CoreResult, settings: Settings
) -> ExecutionResult:
    stats = adjust_stat_changes(payload.stat_changes, core.trait_stability, settings)
    return ExecutionResult(
        behavior_description=payload.behavior_description,
        dialogue=payload.dialogue,
        stat_changes=stats,
        special_effects=special_effects(
            payload.special_effects, core.core_instructions.primary_focus
        ),
        mood_display=payload.mood_display or fallbacks.DEFAULT_MOOD,
        next_state_hint=payload.next_state_hint,
        emotional_impact=emotional_impact(stats),
        memory_to_add=memory_entry(payload.behavior_description, core.trait_evolution),
        core_trait_updates=dict(core.core_trait_updates),
        trait_stability=core.trait_stability,
        decision_confidence=decision_confidence(
            core.trait_stability, len(core.core_instructions.behavior_guidelines)
        ),
        source=payload.source,
    )


async def run_execution(
    gateway: GeneratorGateway,
    pet: PetState,
    core: CoreResult,
    settings: Settings,
    prompts: PromptSet = DEFAULT_PROMPTS,
    profile: PersonalityProfile | None = None,
) -> ExecutionResult:
    try:
        prompt = build_execution_prompt(pet, core, prompts, profile)
    except PromptError as e:
        logger.warning("Execution prompt failed to render: %s", e)
        return compute_execution(default_payload(pet), core, settings)

    text = await gateway.generate(prompt, gateway.options("execution"))
    parsed = parse_payload(text, ExecutionPayload)
    if isinstance(parsed, ParseOk) and parsed.source != "fallback":
        payload = parsed.value
    else:
        if not isinstance(parsed, ParseOk):
            logger.warning("Execution reply unusable (%s) — using default behavior", parsed.reason)
        payload = default_payload(pet)
    return compute_execution(payload, core, settings)
