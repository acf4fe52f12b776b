"""Handlebars prompt rendering for the generator channels.

Prompt templates and personality profiles are configuration: a single
pipeline renders whichever `PromptSet` and `PersonalityProfile` it was
built with. Stages render the base template here and then append their
deterministic clauses to the rendered text.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pybars
from pydantic import BaseModel, Field


_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_last(this, options, items, count):
    """{{#last array N}}...{{/last}} — iterate over the last N items."""
    result = []
    for item in list(items)[-int(count):]:
        result.extend(options["fn"](item))
    return result


def _helper_level(this, value):
    """{{level 85}} → "very high" — coarse label for a 0–100 trait value."""
    return trait_level(int(value))


_HELPERS: dict[str, Callable] = {
    "last": _helper_last,
    "level": _helper_level,
}


def trait_level(value: int) -> str:
    if value > 80:
        return "very high"
    if value > 60:
        return "high"
    if value > 40:
        return "moderate"
    return "low"


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Templates ────────────────────────────────────────────

PERCEPTION_TEMPLATE = """\
You are the perception system of {{{pet.name}}}.
{{#if profile.perception}}Perception focus: {{{profile.perception}}}
{{/if}}{{#if focus}}Situation focus: {{{focus}}}
{{/if}}
Current situation: {{{situation}}}
Player choice: {{{player_choice}}}
Environment: {{{environment}}}

Analyse the situation and answer with a JSON object:
{
  "situationType": "exploration | battle | rest | social",
  "emotionFactor": <number from -3 to +3>,
  "adaptability": <number from 0 to 100>,
  "keyElements": ["<element>", "<element>"],
  "analysisReason": "<one sentence>"
}
Return only the JSON object."""

CORE_TEMPLATE = """\
You are the core personality of {{{pet.name}}}.
Base personality: {{{pet.base_personality}}}
Dominant trait: {{{pet.dominant_trait}}}
{{#if profile.core}}Core drive: {{{profile.core}}}
{{/if}}{{#each profile.traits}}- {{{name}}}: {{level value}}
{{/each}}
Current state: {{{state}}}
Perception: {{{perception}}}

Adjust your reaction to the perception and write instructions for the
behavior layer. Answer with a JSON object:
{
  "emotionAdjustment": {"happiness": <delta>, "energy": <delta>, "trust": <delta>, "curiosity": <delta>},
  "behaviorTendency": {"aggression": <0-100>, "caution": <0-100>, "sociability": <0-100>, "independence": <0-100>},
  "layerInstructions": {
    "focusArea": "<focus>",
    "responseStyle": "<style>",
    "decisionBias": "<bias>",
    "specialInstructions": "<instructions>"
  },
  "coreExpression": "<how the core trait shows right now>"
}
Return only the JSON object."""

EXECUTION_TEMPLATE = """\
You are the behavior system of {{{pet.name}}}.
{{#if profile.execution}}Behavior leaning: {{{profile.execution}}}
{{/if}}
Core instructions: {{{core_instructions}}}
Behavior layer instructions: {{{layer_instructions}}}
Current state: {{{state}}}

Produce the concrete behavior and the stat changes it causes. Answer with a JSON object:
{
  "behaviorDescription": "<what the pet does>",
  "dialogue": "<what the pet says, or ...>",
  "statChanges": {"hp": <delta>, "attack": <delta>, "defense": <delta>, "speed": <delta>, "bond": <delta>, "experience": <delta>},
  "specialEffects": ["<effect>"],
  "moodDisplay": "<mood>",
  "nextStateHint": "<hint>"
}
Return only the JSON object."""

EVOLUTION_TEMPLATE = """\
You are an evolution designer. Design a balanced evolution for this pet.

Current description: {{{pet.base_prompt}}}
Rarity: {{{pet.rarity}}}
Stats: {{#each stats}}{{{name}}}={{{value}}} {{/each}}
Recent behavior: {{#last behaviors 10}}{{{action_type}}}({{{action_target}}}) {{/last}}

Answer with a JSON object:
{
  "evolutionDescription": "<vivid description>",
  "newKeywords": ["<keyword>"],
  "newTraits": [
    {"name": "<name>", "type": "attack | defense | special | passive",
     "effectDescription": "<effect>", "specialMechanism": "<mechanism or null>",
     "isNegative": <true | false>}
  ],
  "attributeChanges": {"hp": <delta>, "attack": <delta>, "defense": <delta>, "speed": <delta>}
}
Extreme behavior may produce negative traits, but they need positive compensation.
Special mechanisms include magic_immunity, vampire, thorns, berserk.
Keep every attribute change within +/-20."""

NUMERICAL_TEMPLATE = """\
You convert evolution descriptions into exact game values.

Evolution template: {{{template}}}
Pet level: {{{level}}}
Current trait count: {{{trait_count}}}

Answer with a JSON object and no other text:
{
  "traits": [
    {"name": "<name>", "type": "attack | defense | special | passive",
     "effectValue": <integer 5-30>, "specialMechanism": "<mechanism or null>",
     "isNegative": <true | false>, "rarity": "common | rare | legendary"}
  ],
  "attributeChanges": {"hp": <int>, "attack": <int>, "defense": <int>, "speed": <int>}
}
Negative traits may carry higher values but must be compensated.
Rarity scales values: common 0.8x, rare 1.0x, legendary 1.5x."""


class PromptSet(BaseModel):
    perception: str = PERCEPTION_TEMPLATE
    core: str = CORE_TEMPLATE
    execution: str = EXECUTION_TEMPLATE
    evolution: str = EVOLUTION_TEMPLATE
    numerical: str = NUMERICAL_TEMPLATE


DEFAULT_PROMPTS = PromptSet()


# ── Personality profiles ─────────────────────────────────

class PersonalityProfile(BaseModel):
    name: str
    base_traits: dict[str, int] = Field(default_factory=dict)
    perception: str = ""
    core: str = ""
    execution: str = ""

    def context(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "perception": self.perception,
            "core": self.core,
            "execution": self.execution,
            "traits": [{"name": k, "value": v} for k, v in self.base_traits.items()],
        }


PROFILES: dict[str, PersonalityProfile] = {
    "explorer": PersonalityProfile(
        name="explorer",
        base_traits={"curiosity": 85, "caution": 40, "sociability": 60, "independence": 75},
        perception="pays special attention to novel things and unknown places",
        core="driven by exploration and discovery",
        execution="leans toward adventurous, exploratory actions",
    ),
    "guardian": PersonalityProfile(
        name="guardian",
        base_traits={"loyalty": 90, "protectiveness": 85, "caution": 70, "aggression": 60},
        perception="stays alert to threats and danger nearby",
        core="protecting its owner and keeping everyone safe comes first",
        execution="prefers defensive and protective actions",
    ),
    "social": PersonalityProfile(
        name="social",
        base_traits={"sociability": 90, "empathy": 80, "playfulness": 75, "cooperation": 85},
        perception="picks up on the feelings and social signals of others",
        core="building and keeping relationships is the core goal",
        execution="leans toward interactive and cooperative actions",
    ),
    "sage": PersonalityProfile(
        name="sage",
        base_traits={"intelligence": 95, "patience": 80, "observation": 85, "wisdom": 90},
        perception="looks for the essence and hidden meaning of a situation",
        core="guided by understanding and wisdom",
        execution="prefers deliberate, reasoned actions",
    ),
}


def get_profile(name: str | None) -> PersonalityProfile:
    return PROFILES.get(name or "", PROFILES["explorer"])


# ── Situation focus ──────────────────────────────────────

SITUATION_FOCUS: dict[str, tuple[tuple[str, ...], str]] = {
    "battle": (
        ("fight", "battle", "attack", "enemy", "duel"),
        "threat level, will to fight, fear and tactics",
    ),
    "rest": (
        ("rest", "sleep", "nap", "relax"),
        "recovery from fatigue, sense of safety and comfort",
    ),
    "social": (
        ("play", "talk", "friend", "pat", "hug", "chat"),
        "emotional connection, trust and closeness",
    ),
    "exploration": (
        ("explore", "cave", "forest", "search", "ruin", "path"),
        "terrain, danger, opportunity and curiosity",
    ),
}


def situation_focus(situation: str) -> str:
    """Pick a focus hint by keyword; empty when nothing matches."""
    lowered = situation.lower()
    for keywords, hint in SITUATION_FOCUS.values():
        if any(k in lowered for k in keywords):
            return hint
    return ""
