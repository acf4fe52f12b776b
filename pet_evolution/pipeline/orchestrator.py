"""Reaction pipeline — runs one player action end-to-end for one pet.

Run flow:
  IDLE
  → RUNNING_PERCEPTION   load the pet, perception generate
  → RUNNING_CORE         core generate (prompt rewritten by perception)
  → RUNNING_EXECUTION    execution generate (prompt rewritten by core)
  → MERGING              fold stat/emotion deltas, trait updates and the new
                         memory into the pet, then one save_pet
  → DONE

An exception in any RUNNING_* state moves the run to FAILED, the canned
confused reaction is returned, nothing is merged, and the run still ends
in DONE. Every transition is recorded on a RunTrace that is returned in
`algorithm_results["trace"]`.

Runs for the same pet id are serialized with a per-pet asyncio.Lock so the
read-modify-write of the pet state never interleaves. A pet's lock is
discarded once no run holds or awaits it. Runs for different
pets are independent.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pet_evolution import fallbacks
from pet_evolution.config import Settings
from pet_evolution.gateway import GeneratorGateway
from pet_evolution.models import (
    DEFAULT_STATS,
    CoreResult,
    CoreTraits,
    ExecutionResult,
    LayerResults,
    MemoryEntry,
    PerceptionResult,
    PetState,
    ReactionOutcome,
    utc_now,
)
from pet_evolution.pipeline.core import run_core
from pet_evolution.pipeline.execution import run_execution
from pet_evolution.pipeline.perception import run_perception
from pet_evolution.prompts import DEFAULT_PROMPTS, PersonalityProfile, PromptSet, get_profile
from pet_evolution.storage import PetRepository

logger = logging.getLogger(__name__)

STAGES: tuple[str, ...] = ("perception", "core", "execution")


class PipelineState(str, Enum):
    IDLE = "idle"
    RUNNING_PERCEPTION = "running_perception"
    RUNNING_CORE = "running_core"
    RUNNING_EXECUTION = "running_execution"
    MERGING = "merging"
    FAILED = "failed"
    DONE = "done"


@dataclass
class RunTrace:
    pet_id: str
    states: list[PipelineState] = field(default_factory=lambda: [PipelineState.IDLE])

    @property
    def current(self) -> PipelineState:
        return self.states[-1]

    def enter(self, state: PipelineState) -> None:
        logger.debug("pet=%s %s → %s", self.pet_id, self.current.value, state.value)
        self.states.append(state)

    def to_list(self) -> list[str]:
        return [s.value for s in self.states]


def fallback_reaction(pet_name: str) -> ExecutionResult:
    """The always-available reaction used when a run fails."""
    data = fallbacks.CONFUSED
    return ExecutionResult.model_validate({
        **data,
        "behaviorDescription": fallbacks.with_name(pet_name, data["behaviorDescription"]),
        "source": "fallback",
    })


class ReactionPipeline:
    def __init__(
        self,
        repository: PetRepository,
        gateway: GeneratorGateway,
        settings: Settings | None = None,
        prompts: PromptSet = DEFAULT_PROMPTS,
        profile: PersonalityProfile | None = None,
    ) -> None:
        self._repository = repository
        self._gateway = gateway
        self._settings = settings or Settings()
        self._prompts = prompts
        self._profile = profile
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: Counter[str] = Counter()

    @asynccontextmanager
    async def _pet_lock(self, pet_id: str) -> AsyncIterator[None]:
        """Hold the pet's lock; the entry is dropped once no run holds or awaits it."""
        lock = self._locks.get(pet_id)
        if lock is None:
            lock = self._locks[pet_id] = asyncio.Lock()
        self._lock_users[pet_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[pet_id] -= 1
            if self._lock_users[pet_id] <= 0:
                del self._lock_users[pet_id]
                del self._locks[pet_id]

    # ------------------------------------------------------------------
    # Reaction run
    # ------------------------------------------------------------------

    async def process_reaction(
        self,
        pet_id: str,
        situation: str,
        player_choice: str,
        environment: dict[str, Any] | None = None,
    ) -> ReactionOutcome:
        """Run perception → core → execution → merge for one player action.

        Never raises. On failure the outcome has success=False, the error
        text and the canned fallback reaction (also set as `reaction`).
        """
        async with self._pet_lock(pet_id):
            return await self._run(pet_id, situation, player_choice, dict(environment or {}))

    async def _run(
        self,
        pet_id: str,
        situation: str,
        player_choice: str,
        environment: dict[str, Any],
    ) -> ReactionOutcome:
        trace = RunTrace(pet_id)
        pet_name = PetState.default(pet_id).name
        try:
            trace.enter(PipelineState.RUNNING_PERCEPTION)
            pet = self._repository.get_pet(pet_id)
            pet_name = pet.name
            profile = self._profile or get_profile(pet.profile)

            perception = await run_perception(
                self._gateway, pet, situation, player_choice, environment,
                self._settings, self._prompts, profile,
            )
            trace.enter(PipelineState.RUNNING_CORE)
            core = await run_core(self._gateway, pet, perception, self._prompts, profile)

            trace.enter(PipelineState.RUNNING_EXECUTION)
            execution = await run_execution(
                self._gateway, pet, core, self._settings, self._prompts, profile
            )
        except Exception as e:
            logger.exception("Reaction failed for pet %s in state %s", pet_id, trace.current.value)
            trace.enter(PipelineState.FAILED)
            reaction = fallback_reaction(pet_name)
            trace.enter(PipelineState.DONE)
            return ReactionOutcome(
                success=False,
                pet_id=pet_id,
                reaction=reaction,
                fallback=reaction,
                error=str(e) or type(e).__name__,
                algorithm_results={"trace": trace.to_list()},
            )

        trace.enter(PipelineState.MERGING)
        merged = self.merge(pet, core, execution)
        results = algorithm_results(perception, core, execution)
        layers = LayerResults(perception=perception, core=core, execution=execution)
        try:
            self._repository.save_pet(merged)
        except Exception as e:
            logger.exception("Could not persist pet %s after reaction", pet_id)
            trace.enter(PipelineState.DONE)
            results["trace"] = trace.to_list()
            return ReactionOutcome(
                success=False,
                pet_id=pet_id,
                reaction=execution,
                layer_results=layers,
                algorithm_results=results,
                error=f"persistence failed: {e}",
                fallback=fallback_reaction(pet_name),
            )

        trace.enter(PipelineState.DONE)
        results["trace"] = trace.to_list()
        logger.info(
            "pet=%s reacted (mood=%s, stability=%d, sources=%s/%s/%s)",
            pet_id, execution.mood_display, core.trait_stability,
            perception.source, core.source, execution.source,
        )
        return ReactionOutcome(
            success=True,
            pet_id=pet_id,
            reaction=execution,
            layer_results=layers,
            algorithm_results=results,
        )

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def merge(self, pet: PetState, core: CoreResult, execution: ExecutionResult) -> PetState:
        """Return a new PetState with the run's results applied."""
        s = self._settings
        limit = s.stat_change_limit
        stats = dict(pet.stats)
        deltas = [execution.stat_changes.model_dump(), core.emotion_adjustment.model_dump()]
        for changes in deltas:
            for stat, delta in changes.items():
                delta = max(-limit, min(limit, delta))
                current = stats.get(stat, DEFAULT_STATS.get(stat, s.stat_min))
                stats[stat] = s.clamp_stat(current + delta)

        traits = merge_core_traits(pet.core_traits, execution.core_trait_updates)

        memory = list(pet.memory)
        if execution.memory_to_add:
            memory.append(MemoryEntry(
                event=execution.memory_to_add,
                emotional_impact=execution.emotional_impact,
            ))
        if len(memory) > s.memory_capacity:
            memory = memory[-s.memory_capacity:] if s.memory_capacity > 0 else []

        return pet.model_copy(update={
            "stats": stats,
            "core_traits": traits,
            "memory": memory,
            "last_update": utc_now(),
        }, deep=True)

    # ------------------------------------------------------------------
    # Status / maintenance
    # ------------------------------------------------------------------

    def get_pet_status(self, pet_id: str) -> dict[str, Any]:
        pet = self._repository.get_pet(pet_id)
        return {
            "basic_info": {
                "id": pet.id,
                "name": pet.name,
                "base_personality": pet.base_personality,
                "profile": pet.profile,
                "rarity": pet.rarity,
                "last_update": pet.last_update.isoformat(),
            },
            "stats": dict(pet.stats),
            "core_traits": pet.core_traits.model_dump(mode="json"),
            "recent_memories": [m.model_dump(mode="json") for m in pet.memory[-5:]],
            "active_traits": [t.model_dump(mode="json") for t in pet.active_traits()],
        }

    async def reset_pet(self, pet_id: str) -> PetState:
        """Clear all derived state; only id and name survive."""
        async with self._pet_lock(pet_id):
            name = self._repository.get_pet(pet_id).name
            fresh = PetState.default(pet_id).model_copy(update={"name": name})
            self._repository.save_pet(fresh)
            logger.info("Reset pet %s", pet_id)
            return fresh

    def system_status(self) -> dict[str, Any]:
        return {
            "pets": self._repository.pet_ids(),
            "stages": list(STAGES),
            "running": sorted(pid for pid, lock in self._locks.items() if lock.locked()),
            "profile": self._profile.name if self._profile else None,
            "gateway": self._gateway.status(),
        }


def merge_core_traits(traits: CoreTraits, updates: dict[str, Any]) -> CoreTraits:
    known = {k: v for k, v in updates.items() if k in CoreTraits.model_fields}
    if len(known) != len(updates):
        logger.debug("Ignoring unknown core trait updates: %s", sorted(set(updates) - set(known)))
    return traits.model_copy(update=known)


def algorithm_results(
    perception: PerceptionResult, core: CoreResult, execution: ExecutionResult
) -> dict[str, Any]:
    return {
        "emotional_weight": perception.emotional_weight,
        "adaptability_score": perception.adaptability_score,
        "memory_influence": list(perception.memory_influence),
        "primary_focus": core.core_instructions.primary_focus,
        "trait_stability": core.trait_stability,
        "decision_confidence": execution.decision_confidence,
        "emotional_impact": execution.emotional_impact,
    }
