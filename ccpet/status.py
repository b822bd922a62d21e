"""Status line driver: one load/decay/feed/save pass per invocation."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from ccpet.config import PetConfig
from ccpet.identity import IdentityPicker
from ccpet.pet import Pet, PetState, utcnow
from ccpet.storage import PetStorage
from ccpet.transcript import TokenAccountant

log = logging.getLogger(__name__)

FALLBACK_DISPLAY = "(?) ERROR"
FILLED_BAR_CHAR = "●"
EMPTY_BAR_CHAR = "○"


class StatusLine:
    """Wires storage, the token accountant and the pet together.

    The pet is loaded (or born) on construction.  Nothing is written to disk
    until :meth:`save` or :meth:`adopt_new_pet` is called.
    """

    def __init__(
        self,
        root: str | Path,
        config: PetConfig | None = None,
        rng: Any = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.root = Path(root)
        self.config = config or PetConfig()
        picker = IdentityPicker(rng)
        self.storage = PetStorage(self.root, self.config, picker)
        self.accountant = TokenAccountant(self.root)

        saved = self.storage.load_state()
        if saved is None:
            self.pet = Pet.new(self.config, identity_picker=picker, clock=clock)
            log.info("No saved pet, %s is born", self.pet.get_state().pet_name)
        else:
            self.pet = Pet(saved, self.config, identity_picker=picker, clock=clock)

    def process(self, hook_input: dict[str, Any]) -> str:
        """Decay, feed from the hook's transcript and return the status line."""
        try:
            self.pet.apply_time_decay()
            transcript_path = hook_input.get("transcript_path")
            if isinstance(transcript_path, str) and transcript_path:
                metrics = self.accountant.collect(transcript_path)
                if metrics.total_tokens > 0:
                    self.pet.feed(metrics.total_tokens)
                self.pet.update_session_metrics(metrics, cost_usd=_cost_of(hook_input))
            return self.render(self.pet.get_state())
        except Exception:
            log.exception("Status line processing failed")
            return FALLBACK_DISPLAY

    def status(self) -> str:
        """Status line without reading any transcript."""
        try:
            self.pet.apply_time_decay()
            return self.render(self.pet.get_state())
        except Exception:
            log.exception("Status line rendering failed")
            return FALLBACK_DISPLAY

    def save(self) -> None:
        self.storage.save_state(self.pet.get_state())

    def adopt_new_pet(self) -> Path | None:
        """Archive a dead pet to the graveyard and replace it with a newborn.

        Returns the graveyard directory, or None if the pet was alive or the
        archive failed (the failure is logged and the backup kept).
        """
        if not self.pet.is_dead():
            return None

        archived: list[Path] = []

        def bury(dead: PetState) -> None:
            archived.append(self.storage.move_to_graveyard(dead))

        self.pet.reset_to_initial_state(on_dying=bury)
        self.save()
        return archived[0] if archived else None

    def render(self, state: PetState) -> str:
        length = self.config.energy_bar_length
        filled = min(length, max(0, round(state.energy / 100 * length)))
        bar = FILLED_BAR_CHAR * filled + EMPTY_BAR_CHAR * (length - filled)
        return f"{state.expression} {bar} {state.energy:.2f} ({state.pet_name})"


def _cost_of(hook_input: dict[str, Any]) -> float | None:
    cost = hook_input.get("cost")
    if not isinstance(cost, dict):
        return None
    value = cost.get("total_cost_usd")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)
