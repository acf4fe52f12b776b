"""Tests for Handlebars prompt rendering and personality profiles."""

import pytest

from pet_evolution.prompts import (
    DEFAULT_PROMPTS,
    PROFILES,
    PromptError,
    get_profile,
    render_prompt,
    situation_focus,
    trait_level,
)


def test_render_simple() -> None:
    assert render_prompt("Hello {{name}}", {"name": "Ember"}) == "Hello Ember"


def test_triple_stash_not_escaped() -> None:
    assert render_prompt("{{{x}}}", {"x": '{"a": 1}'}) == '{"a": 1}'


def test_last_helper() -> None:
    out = render_prompt("{{#last items 2}}{{this}},{{/last}}", {"items": [1, 2, 3]})
    assert out == "2,3,"


def test_level_helper() -> None:
    assert render_prompt("{{level v}}", {"v": 85}) == "very high"


@pytest.mark.parametrize("value, label", [(90, "very high"), (70, "high"), (50, "moderate"), (10, "low")])
def test_trait_level(value: int, label: str) -> None:
    assert trait_level(value) == label


def test_broken_template_raises_prompt_error() -> None:
    with pytest.raises(PromptError):
        render_prompt("{{#if x}}unclosed", {"x": True})


def test_perception_template_includes_profile_and_focus() -> None:
    profile = get_profile("guardian")
    out = render_prompt(DEFAULT_PROMPTS.perception, {
        "pet": {"name": "Ember"},
        "profile": profile.context(),
        "focus": situation_focus("an enemy approaches"),
        "situation": "an enemy approaches",
        "player_choice": "stand firm",
        "environment": "{}",
    })
    assert "perception system of Ember" in out
    assert "threat" in out
    assert profile.perception in out


def test_core_template_lists_profile_traits() -> None:
    out = render_prompt(DEFAULT_PROMPTS.core, {
        "pet": {"name": "Ember", "base_personality": "brave", "dominant_trait": "explorer"},
        "profile": PROFILES["sage"].context(),
        "state": "{}",
        "perception": "{}",
    })
    assert "- wisdom: very high" in out
    assert "- patience: high" in out


def test_profiles_present() -> None:
    assert set(PROFILES) == {"explorer", "guardian", "social", "sage"}


def test_unknown_profile_defaults_to_explorer() -> None:
    assert get_profile("dragon").name == "explorer"
    assert get_profile(None).name == "explorer"


def test_situation_focus() -> None:
    assert "recovery" in situation_focus("Time to sleep by the fire")
    assert "terrain" in situation_focus("explore a cave")
    assert situation_focus("nothing in particular") == ""
