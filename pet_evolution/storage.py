"""Pet repository.

The engine needs four operations (get/save pet, append behavior,
append trait); `PetRepository` is that protocol plus three read helpers.

Two implementations are provided:

    InMemoryRepository — dicts in process memory; tests and the launcher.
    JsonRepository     — flat JSON files under a base directory.

JsonRepository layout:

    {base}/
      pets/
        {pet_id}.json         ← PetState
        {pet_id}/
          behaviors.json      ← append-only BehaviorRecord history
          traits.json         ← append-only Trait history
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol

from pet_evolution.models import BehaviorRecord, PetState, Trait


class PetRepository(Protocol):
    def get_pet(self, pet_id: str) -> PetState: ...
    def save_pet(self, state: PetState) -> None: ...
    def append_behavior(self, record: BehaviorRecord) -> None: ...
    def append_trait(self, trait: Trait) -> None: ...
    def get_behaviors(self, pet_id: str) -> list[BehaviorRecord]: ...
    def get_traits(self, pet_id: str) -> list[Trait]: ...
    def pet_ids(self) -> list[str]: ...


class InMemoryRepository:
    def __init__(self) -> None:
        self._pets: dict[str, PetState] = {}
        self._behaviors: dict[str, list[BehaviorRecord]] = {}
        self._traits: dict[str, list[Trait]] = {}
        self.save_count = 0

    def get_pet(self, pet_id: str) -> PetState:
        """Return a copy of the stored pet, or a fresh default one."""
        pet = self._pets.get(pet_id)
        if pet is None:
            return PetState.default(pet_id)
        return pet.model_copy(deep=True)

    def save_pet(self, state: PetState) -> None:
        self._pets[state.id] = state.model_copy(deep=True)
        self.save_count += 1

    def append_behavior(self, record: BehaviorRecord) -> None:
        self._behaviors.setdefault(record.pet_id, []).append(record)

    def append_trait(self, trait: Trait) -> None:
        self._traits.setdefault(trait.pet_id, []).append(trait)

    def get_behaviors(self, pet_id: str) -> list[BehaviorRecord]:
        return list(self._behaviors.get(pet_id, []))

    def get_traits(self, pet_id: str) -> list[Trait]:
        return list(self._traits.get(pet_id, []))

    def pet_ids(self) -> list[str]:
        return list(self._pets)


class JsonRepository:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._pets_root = base_path / "pets"
        self._pets_root.mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _pet_file(self, pet_id: str) -> Path:
        return self._pets_root / f"{pet_id}.json"

    def _pet_dir(self, pet_id: str) -> Path:
        path = self._pets_root / pet_id
        path.mkdir(exist_ok=True)
        return path

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2))

    def _append(self, path: Path, item: dict[str, Any]) -> None:
        existing = self._read_json(path) if path.exists() else []
        existing.append(item)
        self._write_json(path, existing)

    # ------------------------------------------------------------------
    # Pets
    # ------------------------------------------------------------------

    def get_pet(self, pet_id: str) -> PetState:
        path = self._pet_file(pet_id)
        if not path.exists():
            return PetState.default(pet_id)
        return PetState.model_validate_json(path.read_text())

    def save_pet(self, state: PetState) -> None:
        self._pet_file(state.id).write_text(state.model_dump_json(indent=2))

    def pet_ids(self) -> list[str]:
        return sorted(p.stem for p in self._pets_root.glob("*.json"))

    # ------------------------------------------------------------------
    # Append-only history
    # ------------------------------------------------------------------

    def append_behavior(self, record: BehaviorRecord) -> None:
        self._append(
            self._pet_dir(record.pet_id) / "behaviors.json",
            record.model_dump(mode="json"),
        )

    def append_trait(self, trait: Trait) -> None:
        self._append(
            self._pet_dir(trait.pet_id) / "traits.json",
            trait.model_dump(mode="json"),
        )

    def get_behaviors(self, pet_id: str) -> list[BehaviorRecord]:
        path = self._pets_root / pet_id / "behaviors.json"
        if not path.exists():
            return []
        return [BehaviorRecord.model_validate(b) for b in self._read_json(path)]

    def get_traits(self, pet_id: str) -> list[Trait]:
        path = self._pets_root / pet_id / "traits.json"
        if not path.exists():
            return []
        return [Trait.model_validate(t) for t in self._read_json(path)]
