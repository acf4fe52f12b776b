"""Tests for the execution stage."""

import pytest

from pet_evolution.config import Settings
from pet_evolution.gateway import GeneratorGateway
from pet_evolution.models import CorePayload, PetState, StatChanges, TraitEvolution
from pet_evolution.pipeline.core import compute_core
from pet_evolution.pipeline.execution import (
    adjust_stat_changes,
    decision_confidence,
    emotional_impact,
    extend_execution_prompt,
    memory_entry,
    run_execution,
    special_effects,
)

from tests.helpers import FailingLLM, StubLLM, as_json

CAUTIOUS_CORE = compute_core(CorePayload.model_validate({
    "behaviorTendency": {"aggression": 10, "caution": 90, "sociability": 20, "independence": 30},
    "layerInstructions": {"focusArea": "the shadows", "responseStyle": "hushed"},
    "coreExpression": "ears pressed flat",
}))


def test_low_stability_scales_large_changes(settings: Settings) -> None:
    adjusted = adjust_stat_changes(StatChanges(attack=18), 20, settings)
    assert adjusted.attack == 4


def test_small_changes_not_scaled(settings: Settings) -> None:
    adjusted = adjust_stat_changes(StatChanges(attack=8, bond=-10), 20, settings)
    assert (adjusted.attack, adjusted.bond) == (8, -10)


def test_scaled_halves_round_up(settings: Settings) -> None:
    adjusted = adjust_stat_changes(StatChanges(hp=25, attack=-25), 50, settings)
    assert (adjusted.hp, adjusted.attack) == (13, -12)


@pytest.mark.parametrize("value, stability, expected", [
    (40, 100, 20),
    (-90, 100, -20),
    (-30, 50, -15),
    (25, 0, 0),
])
def test_stat_changes_clamped(settings: Settings, value: int, stability: int, expected: int) -> None:
    assert adjust_stat_changes(StatChanges(hp=value), stability, settings).hp == expected


def test_special_effects_from_focus() -> None:
    assert special_effects(["sparkle"], "careful observation") == ["sparkle", "perception boost"]
    assert special_effects([], "proactive strike") == ["attack boost"]
    assert special_effects([], "wandering") == []


def test_emotional_impact_bounded() -> None:
    assert emotional_impact(StatChanges(bond=10, experience=5)) == 3
    assert emotional_impact(StatChanges(hp=20, attack=20, defense=20)) == 5
    assert emotional_impact(StatChanges(hp=-20, speed=-20)) == -5


def test_memory_entry() -> None:
    evolution = TraitEvolution(secondary_trait_changes=["increase caution"])
    assert memory_entry("hid behind a rock", evolution) == "hid behind a rock (trait changes: increase caution)"
    assert memory_entry("napped", TraitEvolution()) == "napped"


def test_decision_confidence() -> None:
    assert decision_confidence(80, 2) == 50


def test_extend_execution_prompt() -> None:
    prompt = extend_execution_prompt("BASE", CAUTIOUS_CORE)
    assert "Focus: the shadows" in prompt
    assert "Response style: hushed" in prompt
    assert "Decision bias" not in prompt
    assert prompt.endswith("Core expression: ears pressed flat")


async def test_run_execution_generated(settings: Settings) -> None:
    reply = {
        "behaviorDescription": "slinks along the wall",
        "dialogue": "...",
        "statChanges": {"speed": 12, "bond": 2},
        "specialEffects": [],
        "moodDisplay": "wary",
        "nextStateHint": "watching",
    }
    llm = StubLLM({"execution": [as_json(reply)]})
    result = await run_execution(GeneratorGateway(llm), PetState.default("p1"), CAUTIOUS_CORE, settings)
    assert result.source == "generated"
    assert result.mood_display == "wary"
    assert result.stat_changes.speed == 10  # stability 80 scales |12| > 10
    assert result.special_effects == ["perception boost"]
    assert result.memory_to_add == "slinks along the wall (trait changes: increase caution)"
    assert result.trait_stability == 80
    assert "Focus: the shadows" in llm.prompt("execution")


async def test_run_execution_generator_down(settings: Settings) -> None:
    result = await run_execution(
        GeneratorGateway(FailingLLM()), PetState.default("p1"), CAUTIOUS_CORE, settings
    )
    assert result.source == "fallback"
    assert result.behavior_description.startswith("Pet p1 stays calm")
    assert result.mood_display == "calm"
    assert result.stat_changes == StatChanges(bond=1, experience=1)
