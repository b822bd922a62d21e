"""Pet state persistence under <root>/pet-state.json and the graveyard."""

from __future__ import annotations

import json
import logging
import re
import shutil
import tempfile
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any

from ccpet.config import PetConfig
from ccpet.errors import GraveyardError
from ccpet.identity import IdentityPicker
from ccpet.pet import MAX_ENERGY, MIN_ENERGY, PetState, utcnow
from ccpet.states import AnimalType, expression_for_energy, parse_animal_type
from ccpet.transcript import parse_timestamp

log = logging.getLogger(__name__)

STATE_FILE = "pet-state.json"
GRAVEYARD_DIR = "graveyard"
SCHEMA_VERSION = 2
MAX_NAME_LENGTH = 100

_DATE_FIELDS = ("birth_time", "last_feed_time", "last_decay_time")
_COUNTER_FIELDS = (
    "session_total_input_tokens",
    "session_total_output_tokens",
    "session_total_cached_tokens",
    "context_length",
    "context_percentage",
    "context_percentage_usable",
    "session_total_cost_usd",
)

# Version 1 documents used camelCase keys
_LEGACY_KEYS = {
    "energy": "energy",
    "expression": "expression",
    "animalType": "animal_type",
    "birthTime": "birth_time",
    "lastFeedTime": "last_feed_time",
    "lastDecayTime": "last_decay_time",
    "totalTokensConsumed": "total_tokens_consumed",
    "accumulatedTokens": "accumulated_tokens",
    "totalLifetimeTokens": "total_lifetime_tokens",
    "petName": "pet_name",
    "sessionTotalInputTokens": "session_total_input_tokens",
    "sessionTotalOutputTokens": "session_total_output_tokens",
    "sessionTotalCachedTokens": "session_total_cached_tokens",
    "contextLength": "context_length",
    "contextPercentage": "context_percentage",
    "contextPercentageUsable": "context_percentage_usable",
    "sessionTotalCostUsd": "session_total_cost_usd",
}


def _default_animal(config: PetConfig) -> AnimalType:
    return parse_animal_type(config.default_animal) or AnimalType.CAT


def _number(value: Any, default: float = 0) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return value


def migrate_state(
    raw: dict[str, Any], config: PetConfig, identity_picker: IdentityPicker
) -> dict[str, Any]:
    """Bring a stored document up to the current schema.

    Fills missing fields and coerces invalid ones.  Dates stay ISO strings;
    :func:`state_from_dict` parses them.
    """
    version = raw.get("schema_version", 1)
    data = dict(raw)

    if version < 2:
        for old, new in _LEGACY_KEYS.items():
            if old in data:
                data.setdefault(new, data.pop(old))

    animal = parse_animal_type(data.get("animal_type"))
    if animal is None:
        if "animal_type" in data:
            log.warning("Invalid animal type %r, using default", data["animal_type"])
        else:
            log.info("Migrating pet to default animal type")
        animal = _default_animal(config)
    data["animal_type"] = animal.value

    if parse_timestamp(data.get("last_feed_time")) is None:
        data["last_feed_time"] = utcnow().isoformat()
    if parse_timestamp(data.get("birth_time")) is None:
        data["birth_time"] = data["last_feed_time"]
    if parse_timestamp(data.get("last_decay_time")) is None:
        data["last_decay_time"] = data["last_feed_time"]

    if not isinstance(data.get("pet_name"), str) or not data["pet_name"].strip():
        data["pet_name"] = identity_picker.pick_name()
        log.info("Named unnamed pet %s", data["pet_name"])

    data["total_tokens_consumed"] = _number(data.get("total_tokens_consumed"))
    if "total_lifetime_tokens" not in data:
        data["total_lifetime_tokens"] = data["total_tokens_consumed"]
    data["total_lifetime_tokens"] = _number(data.get("total_lifetime_tokens"))
    data["accumulated_tokens"] = _number(data.get("accumulated_tokens"))
    for name in ("total_tokens_consumed", "total_lifetime_tokens", "accumulated_tokens"):
        if data[name] < 0:
            log.warning("Negative %s %r in pet state, resetting to 0", name, data[name])
            data[name] = 0
    # A remainder of a whole energy point or more was never converted
    data["accumulated_tokens"] %= config.tokens_per_energy

    data["schema_version"] = SCHEMA_VERSION
    return data


def state_from_dict(data: dict[str, Any], config: PetConfig) -> PetState:
    """Build a PetState from a migrated document.

    Raises ValueError if energy is missing or not a number.
    """
    energy = data.get("energy")
    if isinstance(energy, bool) or not isinstance(energy, (int, float)):
        raise ValueError(f"Invalid energy in pet state: {energy!r}")
    energy = min(MAX_ENERGY, max(MIN_ENERGY, float(energy)))

    fields = {k: v for k, v in data.items() if k in PetState.__dataclass_fields__}
    for name in _COUNTER_FIELDS:
        if name in fields:
            fields[name] = _number(fields[name])
    for name in _DATE_FIELDS:
        fields[name] = parse_timestamp(fields.get(name))
    fields["energy"] = energy
    fields["expression"] = expression_for_energy(energy, config)
    fields["animal_type"] = AnimalType(fields["animal_type"])
    return PetState(**fields)


def state_to_dict(state: PetState) -> dict[str, Any]:
    data = asdict(state)
    for name in _DATE_FIELDS:
        if isinstance(data[name], datetime):
            data[name] = data[name].isoformat()
    data["animal_type"] = state.animal_type.value
    data["schema_version"] = SCHEMA_VERSION
    return data


def sanitize_pet_name(name: str, max_length: int = MAX_NAME_LENGTH) -> str:
    """Turn a pet name into a safe single directory segment."""
    cleaned = name.replace("..", "")
    cleaned = re.sub(r"[^\w-]+", "-", cleaned).strip("-_")
    cleaned = cleaned[:max_length].rstrip("-")
    return cleaned or "pet"


def _write_json(path: Path, data: dict) -> None:
    """Atomically write JSON (tmp + rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with open(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        Path(tmp).replace(path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class PetStorage:
    """Loads, saves and archives the pet document under *root*."""

    def __init__(
        self,
        root: str | Path,
        config: PetConfig | None = None,
        identity_picker: IdentityPicker | None = None,
    ) -> None:
        self.root = Path(root)
        self.config = config or PetConfig()
        self.identity_picker = identity_picker or IdentityPicker()

    @property
    def state_path(self) -> Path:
        return self.root / STATE_FILE

    @property
    def graveyard_path(self) -> Path:
        return self.root / GRAVEYARD_DIR

    def _load_document(self, path: Path) -> PetState | None:
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                raw = json.load(f)
            if not isinstance(raw, dict):
                raise ValueError("pet state is not a JSON object")
            data = migrate_state(raw, self.config, self.identity_picker)
            return state_from_dict(data, self.config)
        except (OSError, ValueError, TypeError) as e:
            log.warning("Failed to load pet state %s: %s", path, e)
            return None

    def load_state(self) -> PetState | None:
        """Load the live pet, or None if there is none (or it is unreadable)."""
        return self._load_document(self.state_path)

    def save_state(self, state: PetState) -> None:
        """Best-effort save; failures are logged, not raised."""
        try:
            _write_json(self.state_path, state_to_dict(state))
        except (OSError, TypeError, ValueError) as e:
            log.warning("Failed to save pet state: %s", e)

    def _unique_graveyard_dir(self, pet_name: str) -> Path:
        base = sanitize_pet_name(pet_name)
        candidate = self.graveyard_path / base
        suffix = 2
        while candidate.exists():
            tail = f"-{suffix}"
            candidate = self.graveyard_path / f"{base[:MAX_NAME_LENGTH - len(tail)]}{tail}"
            suffix += 1
        return candidate

    def move_to_graveyard(self, dead_state: PetState) -> Path:
        """Archive *dead_state* and remove the live state file.

        Returns the graveyard directory.  Raises GraveyardError if the
        archive cannot be written or verified; any backup of the live state
        file is then left in place.
        """
        backup: Path | None = None
        if self.state_path.exists():
            stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
            backup = self.root / f"pet-state.backup-{stamp}.json"
            try:
                shutil.copy2(self.state_path, backup)
            except OSError as e:
                raise GraveyardError(f"Graveyard operation failed: cannot back up state: {e}") from e

        target = self._unique_graveyard_dir(dead_state.pet_name)
        archive = target / STATE_FILE
        created = False
        try:
            document = state_to_dict(dead_state)
            target.mkdir(parents=True, exist_ok=False)
            created = True
            _write_json(archive, document)
        except (OSError, TypeError, ValueError) as e:
            if created:
                # An empty directory would claim the name for later archives
                try:
                    target.rmdir()
                except OSError as cleanup_error:
                    log.warning("Could not remove %s: %s", target, cleanup_error)
            raise GraveyardError(
                f"Graveyard operation failed: cannot write {archive}: {e}", backup_path=backup
            ) from e

        if not archive.is_file() or self._load_document(archive) is None:
            raise GraveyardError(
                f"Graveyard operation failed: archive {archive} could not be verified",
                backup_path=backup,
            )

        self.state_path.unlink(missing_ok=True)
        if backup is not None:
            backup.unlink(missing_ok=True)
        log.info("Archived %s to %s", dead_state.pet_name, target)
        return target

    def list_graveyard(self) -> list[tuple[str, PetState]]:
        """List archived pets sorted by directory name."""
        results: list[tuple[str, PetState]] = []
        if not self.graveyard_path.exists():
            return results
        for child in self.graveyard_path.iterdir():
            if not child.is_dir():
                continue
            state = self._load_document(child / STATE_FILE)
            if state is not None:
                results.append((child.name, state))
        results.sort(key=lambda item: item[0])
        return results

    def load_graveyard_entry(self, name: str) -> PetState | None:
        if sanitize_pet_name(name) != name:
            return None
        return self._load_document(self.graveyard_path / name / STATE_FILE)
