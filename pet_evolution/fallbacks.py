"""Canned payloads used whenever generation fails.

The gateway serves `fallback_payload(channel)` when the backend errors,
times out or the request budget is spent. Each payload has the same shape
as a successful reply for its channel and carries `"source": "fallback"`.
Stages build their default results from the same values, so a stage that
gets a fallback payload and a stage whose reply fails to parse end up with
identical results.
"""

from __future__ import annotations

import json
from typing import Any

DEFAULT_MOOD = "calm"
CONFUSED_MOOD = "confused"

PERCEPTION: dict[str, Any] = {
    "situationType": "exploration",
    "emotionFactor": 0,
    "adaptability": 50,
    "keyElements": ["unknown"],
    "analysisReason": "analysis unavailable, using the default reading",
}

CORE: dict[str, Any] = {
    "emotionAdjustment": {"happiness": 0, "energy": 0, "trust": 0, "curiosity": 0},
    "behaviorTendency": {"aggression": 30, "caution": 50, "sociability": 60, "independence": 40},
    "layerInstructions": {
        "focusArea": "stay balanced",
        "responseStyle": "friendly and careful",
        "decisionBias": "safety first",
        "specialInstructions": "keep baseline reaction",
    },
    "coreExpression": "",
}

EXECUTION: dict[str, Any] = {
    "behaviorDescription": "stays calm and quietly watches its surroundings.",
    "dialogue": "...",
    "statChanges": {"hp": 0, "attack": 0, "defense": 0, "speed": 0, "bond": 1, "experience": 1},
    "specialEffects": [],
    "moodDisplay": DEFAULT_MOOD,
    "nextStateHint": "waiting for the next interaction",
}

CONFUSED: dict[str, Any] = {
    "behaviorDescription": "seems to be thinking about something and looks a little confused.",
    "dialogue": "Hm?",
    "statChanges": {"bond": 1},
    "specialEffects": [],
    "moodDisplay": CONFUSED_MOOD,
    "nextStateHint": "",
}

EVOLUTION: dict[str, Any] = {
    "evolutionDescription": "Guided by a mysterious force, the pet changed in subtle ways.",
    "newKeywords": ["growth"],
    "newTraits": [
        {
            "name": "Basic Reinforcement",
            "type": "passive",
            "effectDescription": "Base attributes improved slightly.",
            "isNegative": False,
        }
    ],
    "attributeChanges": {"hp": 5, "attack": 3, "defense": 3, "speed": 2},
}

# An empty trait list with the fallback marker tells the trait engine to
# take its algorithmic path.
NUMERICAL: dict[str, Any] = {
    "traits": [],
    "attributeChanges": {},
}

_BY_CHANNEL: dict[str, dict[str, Any]] = {
    "perception": PERCEPTION,
    "core": CORE,
    "execution": EXECUTION,
    "evolution": EVOLUTION,
    "numerical": NUMERICAL,
}


def fallback_payload(channel: str) -> str:
    """JSON text of the canned payload for `channel`, tagged as fallback."""
    payload = _BY_CHANNEL.get(channel, {})
    return json.dumps({**payload, "source": "fallback"})


def with_name(name: str, description: str) -> str:
    return f"{name} {description}" if name else description
