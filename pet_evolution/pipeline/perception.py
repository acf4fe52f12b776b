"""Perception stage — scores a situation against the pet's current state.

One generator call (channel "perception") reads the situation; the
numeric scores are computed locally from that read and the pet state.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from pet_evolution import fallbacks
from pet_evolution.config import Settings
from pet_evolution.gateway import GeneratorGateway
from pet_evolution.models import (
    MemoryEntry,
    PerceptionPayload,
    PerceptionResult,
    PetState,
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
    situation_focus,
)

logger = logging.getLogger(__name__)


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


def emotional_weight(emotion_factor: float, stats: dict[str, int]) -> float:
    """0.7 × emotion factor mapped from [-3, 3] onto [0, 1], plus 0.3 × mood."""
    base = (emotion_factor + 3) / 6
    state = (stats.get("happiness", 0) + stats.get("energy", 0)) / 200
    return clamp01(base * 0.7 + state * 0.3)


def adaptability_score(adaptability: float, adaptability_level: int) -> int:
    return round_half_up(adaptability * 0.6 + adaptability_level * 0.4)


def memory_influence(
    key_elements: list[str], memory: list[MemoryEntry], window: int = 5
) -> list[str]:
    recent = memory[-window:] if window > 0 else []
    influences: list[str] = []
    for element in key_elements:
        if element and any(element in entry.event for entry in recent):
            influences.append(f"remembers {element}")
    return influences


def prompt_modifications(
    weight: float, adaptability: int, influences: list[str]
) -> dict[str, str]:
    return {
        "emotional_intensity": "high" if weight > 0.7 else "low" if weight < 0.3 else "mid",
        "adaptability_level": "strong" if adaptability > 80 else "weak" if adaptability < 40 else "mid",
        "memory_context": "related memories" if influences else "no related memories",
    }


def build_perception_prompt(
    pet: PetState,
    situation: str,
    player_choice: str,
    environment: dict[str, Any],
    prompts: PromptSet = DEFAULT_PROMPTS,
    profile: PersonalityProfile | None = None,
) -> str:
    profile = profile or get_profile(pet.profile)
    return render_prompt(prompts.perception, {
        "pet": {"name": pet.name, "base_personality": pet.base_personality},
        "profile": profile.context(),
        "focus": situation_focus(situation),
        "situation": situation,
        "player_choice": player_choice,
        "environment": json.dumps(environment, ensure_ascii=False, default=str),
    })


def default_payload() -> PerceptionPayload:
    return PerceptionPayload.model_validate({**fallbacks.PERCEPTION, "source": "fallback"})


def compute_perception(
    payload: PerceptionPayload, pet: PetState, settings: Settings
) -> PerceptionResult:
    """Fold a (generated or fallback) read into the deterministic scores."""
    key_elements = [str(e) for e in payload.key_elements] or ["unknown"]
    weight = emotional_weight(payload.emotion_factor, pet.stats)
    score = adaptability_score(payload.adaptability, pet.core_traits.adaptability_level)
    influences = memory_influence(key_elements, pet.memory, settings.memory_scan_window)
    return PerceptionResult(
        situation_type=payload.situation_type,
        emotion_factor=payload.emotion_factor,
        adaptability=payload.adaptability,
        key_elements=key_elements,
        analysis_reason=payload.analysis_reason,
        emotional_weight=weight,
        adaptability_score=score,
        memory_influence=influences,
        prompt_modifications=prompt_modifications(weight, score, influences),
        source=payload.source,
    )


async def run_perception(
    gateway: GeneratorGateway,
    pet: PetState,
    situation: str,
    player_choice: str,
    environment: dict[str, Any],
    settings: Settings,
    prompts: PromptSet = DEFAULT_PROMPTS,
    profile: PersonalityProfile | None = None,
) -> PerceptionResult:
    try:
        prompt = build_perception_prompt(
            pet, situation, player_choice, environment, prompts, profile
        )
    except PromptError as e:
        logger.warning("Perception prompt failed to render: %s", e)
        return compute_perception(default_payload(), pet, settings)

    text = await gateway.generate(prompt, gateway.options("perception"))
    parsed = parse_payload(text, PerceptionPayload)
    if isinstance(parsed, ParseOk):
        payload = parsed.value
    else:
        logger.warning("Perception reply unusable (%s) — using default perception", parsed.reason)
        payload = default_payload()
    return compute_perception(payload, pet, settings)
