"""Behavior recording and trait evolution.

Three layers, outermost first:

  record_action      every player action becomes an append-only
                     BehaviorRecord; its keywords are appended to the pet's
                     base prompt (compacted when it grows past the limit).
  judge_behaviors    weighs the behaviors since the last evolution and
                     decides whether the pet should evolve now.
  evolve             asks the generator (channel "evolution") for an
                     evolution template, solidifies it into traits through
                     the TraitEngine, persists them and applies the
                     template's attribute deltas.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from typing import Any

from pydantic import BaseModel, Field

from pet_evolution import fallbacks
from pet_evolution.config import Settings
from pet_evolution.gateway import GeneratorGateway
from pet_evolution.models import (
    DEFAULT_STATS,
    STAT_NAMES,
    BehaviorRecord,
    EvolutionTemplate,
    PetState,
    Trait,
    utc_now,
)
from pet_evolution.parsing import ParseOk, parse_payload
from pet_evolution.prompts import DEFAULT_PROMPTS, PromptError, PromptSet, render_prompt
from pet_evolution.storage import PetRepository
from pet_evolution.traits import TraitEngine

logger = logging.getLogger(__name__)

UNKNOWN_KEYWORDS: tuple[str, ...] = ("unknown",)

KEYWORD_MAP: dict[str, dict[str, tuple[str, ...]]] = {
    "feed": {
        "lava fruit": ("fire", "scorching", "heat"),
        "ice crystal flower": ("frost", "cold", "purity"),
        "ancient mushroom": ("mystery", "ancient", "nature"),
        "star dew": ("light", "holy", "starry sky"),
    },
    "explore": {
        "volcano crater": ("fire", "danger", "courage"),
        "ancient ruins": ("ancient", "mystery", "history"),
        "dark forest": ("shadow", "nature", "stealth"),
        "crystal cave": ("crystal", "light", "purity"),
    },
    "train": {
        "strength training": ("strength", "toughness", "muscle"),
        "agility training": ("agility", "speed", "nimbleness"),
        "magic practice": ("magic", "wisdom", "arcana"),
        "defense training": ("defense", "sturdiness", "protection"),
    },
}

# (base, multiplier) per action type; anything else weighs 1.
BEHAVIOR_WEIGHTS: dict[str, tuple[float, float]] = {
    "feed": (1, 1.2),
    "explore": (2, 1.5),
    "battle": (3, 2.0),
    "chat": (0.5, 1.0),
}
PET_RARITY_MULTIPLIERS: dict[str, float] = {"N": 1.0, "R": 1.2, "SR": 1.5, "SSR": 2.0, "SSS": 3.0}
MIN_ACCUMULATED_WEIGHT = 15
MIN_UNIQUE_ACTIONS = 3
PROMPT_BEHAVIOR_WINDOW = 10


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def extract_keywords(action_type: str, action_target: str) -> list[str]:
    targets = KEYWORD_MAP.get(action_type.strip().lower(), {})
    return list(targets.get(action_target.strip().lower(), UNKNOWN_KEYWORDS))


def _append_line(prompt: str, line: str, max_length: int) -> str:
    updated = f"{prompt}\n{line}" if prompt else line
    if len(updated) <= max_length:
        return updated
    lines = updated.split("\n")
    # Keep the original description and the three most recent additions.
    updated = "\n".join([lines[0], *lines[1:][-3:]])
    if len(updated) > max_length:
        updated = updated[: max(0, max_length - 3)] + "..."
    return updated


def update_base_prompt(prompt: str, keywords: list[str], max_length: int = 220) -> str:
    return _append_line(prompt, "New traits: " + ", ".join(keywords), max_length)


def append_evolution(prompt: str, description: str, max_length: int = 220) -> str:
    return _append_line(prompt, f"Evolution: {description}", max_length)


class BehaviorJudgment(BaseModel):
    accumulated_weight: float
    action_counts: dict[str, int] = Field(default_factory=dict)
    rarity_multiplier: float = 1.0
    should_evolve: bool = False


def judge_behaviors(records: list[BehaviorRecord], rarity: str = "N") -> BehaviorJudgment:
    counts = Counter(r.action_type for r in records)
    weight = 0.0
    for record in records:
        base, multiplier = BEHAVIOR_WEIGHTS.get(record.action_type, (1, 1))
        weight += base * multiplier
    rarity_multiplier = PET_RARITY_MULTIPLIERS.get(rarity, 1.0)
    weight *= rarity_multiplier
    return BehaviorJudgment(
        accumulated_weight=weight,
        action_counts=dict(counts),
        rarity_multiplier=rarity_multiplier,
        should_evolve=weight >= MIN_ACCUMULATED_WEIGHT and len(counts) >= MIN_UNIQUE_ACTIONS,
    )


def fallback_template() -> EvolutionTemplate:
    return EvolutionTemplate.model_validate({**fallbacks.EVOLUTION, "source": "fallback"})


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class EvolutionService:
    def __init__(
        self,
        repository: PetRepository,
        gateway: GeneratorGateway,
        trait_engine: TraitEngine | None = None,
        settings: Settings | None = None,
        prompts: PromptSet = DEFAULT_PROMPTS,
    ) -> None:
        self._repository = repository
        self._gateway = gateway
        self._settings = settings or Settings()
        self._engine = trait_engine or TraitEngine(gateway, self._settings, prompts)
        self._prompts = prompts

    def record_action(self, pet_id: str, action_type: str, action_target: str) -> BehaviorRecord:
        keywords = extract_keywords(action_type, action_target)
        record = BehaviorRecord(
            id=str(uuid.uuid4()),
            pet_id=pet_id,
            action_type=action_type,
            action_target=action_target,
            keywords_added=keywords,
        )
        pet = self._repository.get_pet(pet_id)
        prompt = update_base_prompt(pet.base_prompt, keywords, self._settings.base_prompt_max_length)
        self._repository.append_behavior(record)
        self._repository.save_pet(pet.model_copy(update={"base_prompt": prompt, "last_update": utc_now()}))
        logger.info("pet=%s recorded %s(%s) → %s", pet_id, action_type, action_target, keywords)
        return record

    def behaviors_since_evolution(self, pet: PetState) -> list[BehaviorRecord]:
        records = self._repository.get_behaviors(pet.id)
        if not pet.traits:
            return records
        last = max(t.acquisition_time for t in pet.traits)
        return [r for r in records if r.timestamp > last]

    def judge(self, pet_id: str) -> BehaviorJudgment:
        pet = self._repository.get_pet(pet_id)
        return judge_behaviors(self.behaviors_since_evolution(pet), pet.rarity)

    async def generate_template(
        self, pet: PetState, behaviors: list[BehaviorRecord]
    ) -> EvolutionTemplate:
        try:
            prompt = render_prompt(self._prompts.evolution, {
                "pet": {"base_prompt": pet.base_prompt, "rarity": pet.rarity},
                "stats": [{"name": k, "value": v} for k, v in pet.stats.items()],
                "behaviors": [
                    {"action_type": b.action_type, "action_target": b.action_target}
                    for b in behaviors
                ],
            })
        except PromptError as e:
            logger.warning("Evolution prompt failed to render: %s", e)
            return fallback_template()

        text = await self._gateway.generate(prompt, self._gateway.options("evolution"))
        parsed = parse_payload(text, EvolutionTemplate)
        if isinstance(parsed, ParseOk):
            return parsed.value
        logger.warning("Evolution reply unusable (%s) — using fallback template", parsed.reason)
        return fallback_template()

    async def evolve(self, pet_id: str) -> list[Trait]:
        """Generate a template, solidify it and persist the new traits."""
        pet = self._repository.get_pet(pet_id)
        behaviors = self.behaviors_since_evolution(pet)[-PROMPT_BEHAVIOR_WINDOW:]
        template = await self.generate_template(pet, behaviors)
        traits = await self._engine.solidify(template, pet)

        for trait in traits:
            self._repository.append_trait(trait)

        updated = pet.model_copy(update={
            "traits": [*pet.traits, *traits],
            "stats": self.apply_attribute_changes(pet.stats, template.attribute_changes),
            "base_prompt": (
                append_evolution(
                    pet.base_prompt, template.evolution_description,
                    self._settings.base_prompt_max_length,
                )
                if template.evolution_description else pet.base_prompt
            ),
            "last_update": utc_now(),
        }, deep=True)
        self._repository.save_pet(updated)
        logger.info(
            "pet=%s evolved (%s template): %d new trait(s)",
            pet_id, template.source, len(traits),
        )
        return traits

    async def maybe_evolve(self, pet_id: str) -> list[Trait]:
        judgment = self.judge(pet_id)
        if not judgment.should_evolve:
            logger.debug(
                "pet=%s not ready to evolve (weight=%.1f, actions=%d)",
                pet_id, judgment.accumulated_weight, len(judgment.action_counts),
            )
            return []
        return await self.evolve(pet_id)

    def apply_attribute_changes(
        self, stats: dict[str, int], changes: dict[str, Any]
    ) -> dict[str, int]:
        s = self._settings
        limit = s.stat_change_limit
        updated = dict(stats)
        for stat, delta in changes.items():
            if stat not in STAT_NAMES:
                logger.debug("Ignoring attribute change for unknown stat %r", stat)
                continue
            delta = max(-limit, min(limit, delta))
            current = updated.get(stat, DEFAULT_STATS[stat])
            updated[stat] = s.clamp_stat(current + delta)
        return updated
