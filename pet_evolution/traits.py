"""Trait solidification and balance engine.

Turns an evolution template into persisted-ready `Trait` records:

  1. Live path — ask the generator (channel "numerical") for exact trait
     values. A fallback-tagged or unusable reply switches to step 2.
  2. Algorithmic path — derive candidates from the template's own
     `new_traits`, no generation.
  3. Validate → normalize → per-type cap check → balance check.

Rejected candidates are dropped, never raised. A batch whose weighted
negative value exceeds `balance_ratio` × the positive value gets
compensation traits appended until it no longer does; when the passive cap
leaves no room for compensation, the heaviest negative traits are dropped
instead.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections import Counter
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError

from pet_evolution.config import Settings
from pet_evolution.gateway import GeneratorGateway
from pet_evolution.models import (
    RARITIES,
    TRAIT_TYPES,
    EvolutionTemplate,
    NumericalPayload,
    PetState,
    Trait,
    TraitCandidate,
    round_half_up,
    utc_now,
)
from pet_evolution.parsing import ParseOk, parse_payload
from pet_evolution.prompts import DEFAULT_PROMPTS, PromptError, PromptSet, render_prompt

logger = logging.getLogger(__name__)

COMPENSATION_NAME = "Fate's Compensation"
COMPENSATION_DESCRIPTION = "The balance of fate granted an unexpected reward."
DEFAULT_CANDIDATE_NAME = "Mystic Boost"
DEFAULT_CANDIDATE_DESCRIPTION = "Gained a mysterious power."

RARITY_MULTIPLIERS: dict[str, float] = {"common": 1.0, "rare": 1.5, "legendary": 2.0}


def pet_level(pet: PetState) -> int:
    s = pet.stats
    return (s.get("hp", 0) + s.get("attack", 0) + s.get("defense", 0) + s.get("speed", 0)) // 40


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


class TraitEngine:
    def __init__(
        self,
        gateway: GeneratorGateway,
        settings: Settings | None = None,
        prompts: PromptSet = DEFAULT_PROMPTS,
    ) -> None:
        self._gateway = gateway
        self._settings = settings or Settings()
        self._prompts = prompts

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    async def solidify(self, template: EvolutionTemplate, pet: PetState) -> list[Trait]:
        try:
            prompt = self.numerical_prompt(template, pet)
        except PromptError as e:
            logger.warning("Numerical prompt failed to render: %s", e)
        else:
            text = await self._gateway.generate(prompt, self._gateway.options("numerical"))
            parsed = parse_payload(text, NumericalPayload)
            if isinstance(parsed, ParseOk) and parsed.source != "fallback":
                traits = self.solidify_candidates(parsed.value.traits, pet)
                logger.info("Solidified %d trait(s) for pet %s from generator", len(traits), pet.id)
                return traits

        logger.warning("Numerical generation unavailable — algorithmic traits for pet %s", pet.id)
        traits = self.solidify_candidates(self.algorithmic_candidates(template), pet)
        logger.info("Solidified %d trait(s) for pet %s algorithmically", len(traits), pet.id)
        return traits

    def numerical_prompt(self, template: EvolutionTemplate, pet: PetState) -> str:
        return render_prompt(self._prompts.numerical, {
            "template": template.model_dump_json(by_alias=True, exclude={"source"}),
            "level": pet_level(pet),
            "trait_count": len(pet.traits),
        })

    # ------------------------------------------------------------------
    # Algorithmic fallback
    # ------------------------------------------------------------------

    def algorithmic_candidates(self, template: EvolutionTemplate) -> list[TraitCandidate]:
        candidates: list[TraitCandidate] = []
        for raw in template.new_traits:
            try:
                proposal = TraitCandidate.model_validate(raw)
            except ValidationError:
                logger.warning("Skipping malformed template trait %r", raw)
                continue
            rarity = proposal.rarity if proposal.rarity in RARITIES else determine_rarity(proposal)
            candidates.append(TraitCandidate(
                name=proposal.name or DEFAULT_CANDIDATE_NAME,
                type=proposal.type or "passive",
                effect_value=trait_value(proposal.is_negative, rarity),
                effect_description=proposal.effect_description or DEFAULT_CANDIDATE_DESCRIPTION,
                special_mechanism=proposal.special_mechanism or None,
                is_negative=proposal.is_negative,
                rarity=rarity,
            ))
        return candidates

    # ------------------------------------------------------------------
    # Validate / normalize / cap / balance
    # ------------------------------------------------------------------

    def solidify_candidates(
        self, candidates: Iterable[TraitCandidate | dict[str, Any]], pet: PetState
    ) -> list[Trait]:
        counts: Counter[str] = Counter(t.type for t in pet.active_traits())
        accepted: list[Trait] = []
        for raw in candidates:
            candidate = self._coerce(raw)
            if candidate is None:
                continue
            trait = self.normalize(candidate, pet)
            if trait is None:
                continue
            cap = self._settings.trait_caps.get(trait.type, 0)
            if counts[trait.type] >= cap:
                logger.warning(
                    "Rejecting trait %r: pet %s already has %d active %s trait(s)",
                    trait.name, pet.id, counts[trait.type], trait.type,
                )
                continue
            counts[trait.type] += 1
            accepted.append(trait)
        return self.apply_balance(accepted, pet, counts)

    def _coerce(self, raw: TraitCandidate | dict[str, Any]) -> TraitCandidate | None:
        if isinstance(raw, TraitCandidate):
            return raw
        if not isinstance(raw, dict):
            logger.warning("Rejecting trait candidate of type %s", type(raw).__name__)
            return None
        try:
            return TraitCandidate.model_validate(raw)
        except ValidationError:
            logger.warning("Rejecting malformed trait candidate %r", raw)
            return None

    def validation_error(self, candidate: TraitCandidate) -> str | None:
        if not candidate.name or not candidate.name.strip():
            return "missing name"
        if not candidate.type:
            return "missing type"
        if candidate.type not in TRAIT_TYPES:
            return f"unknown type {candidate.type!r}"
        if not _is_number(candidate.effect_value):
            return "non-numeric effect value"
        return None

    def normalize(self, candidate: TraitCandidate, pet: PetState) -> Trait | None:
        reason = self.validation_error(candidate)
        if reason is not None:
            logger.warning("Rejecting trait candidate %r: %s", candidate.name, reason)
            return None
        effect = max(
            self._settings.effect_min,
            min(self._settings.effect_max, math.floor(candidate.effect_value)),
        )
        return Trait(
            id=str(uuid.uuid4()),
            pet_id=pet.id,
            name=candidate.name.strip(),
            type=candidate.type,
            effect_value=effect,
            effect_description=candidate.effect_description or f"Effect of {candidate.name.strip()}",
            special_mechanism=candidate.special_mechanism or None,
            is_negative=candidate.is_negative,
            rarity=candidate.rarity if candidate.rarity in RARITIES else "common",
            acquisition_time=utc_now(),
            is_active=True,
        )

    def weighted_value(self, trait: Trait) -> float:
        factor = self._settings.mechanism_factor if trait.special_mechanism else 1.0
        return trait.effect_value * factor

    def balance_sums(self, traits: list[Trait]) -> tuple[float, float]:
        """Return (negative, positive) weighted sums for a batch."""
        negative = sum(self.weighted_value(t) for t in traits if t.is_negative)
        positive = sum(self.weighted_value(t) for t in traits if not t.is_negative)
        return negative, positive

    def compensation_trait(self, negative: float, positive: float, pet: PetState) -> Trait:
        value = round_half_up(self._settings.compensation_factor * (negative - positive))
        value = max(self._settings.effect_min, min(self._settings.effect_max, value))
        return Trait(
            id=str(uuid.uuid4()),
            pet_id=pet.id,
            name=COMPENSATION_NAME,
            type="passive",
            effect_value=value,
            effect_description=COMPENSATION_DESCRIPTION,
            special_mechanism=None,
            is_negative=False,
            rarity="common",
        )

    def apply_balance(
        self, traits: list[Trait], pet: PetState, counts: Counter[str] | None = None
    ) -> list[Trait]:
        counts = counts if counts is not None else Counter(t.type for t in pet.active_traits())
        balanced = list(traits)
        ratio = self._settings.balance_ratio
        passive_cap = self._settings.trait_caps.get("passive", 0)
        negative, positive = self.balance_sums(balanced)
        while negative > positive * ratio:
            if counts["passive"] < passive_cap:
                trait = self.compensation_trait(negative, positive, pet)
                logger.warning(
                    "Negative traits outweigh positive (%.1f > %.1f × %.1f) — adding %s (%d)",
                    negative, positive, ratio, trait.name, trait.effect_value,
                )
                balanced.append(trait)
                counts["passive"] += 1
                positive += self.weighted_value(trait)
            else:
                heaviest = max(
                    (t for t in balanced if t.is_negative), key=self.weighted_value
                )
                logger.warning(
                    "No room for compensation on pet %s — dropping negative trait %r",
                    pet.id, heaviest.name,
                )
                balanced.remove(heaviest)
                counts[heaviest.type] -= 1
                negative -= self.weighted_value(heaviest)
        return balanced


def determine_rarity(candidate: TraitCandidate) -> str:
    if candidate.special_mechanism:
        return "legendary"
    if candidate.is_negative:
        return "rare"
    return "common"


def trait_value(is_negative: bool, rarity: str) -> int:
    value = 10 * RARITY_MULTIPLIERS.get(rarity, 1.0)
    if is_negative:
        value *= 1.5
    return math.floor(value)
