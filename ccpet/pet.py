"""Pet lifecycle: energy, feeding, time decay, death and rebirth."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Callable

from ccpet.config import PetConfig
from ccpet.errors import InvalidArgumentError
from ccpet.identity import Identity, IdentityPicker
from ccpet.states import AnimalType, Mood, expression_for_energy, mood_for_energy

log = logging.getLogger(__name__)

MAX_ENERGY = 100.0
MIN_ENERGY = 0.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PetState:
    energy: float
    expression: str
    animal_type: AnimalType
    birth_time: datetime
    last_feed_time: datetime
    last_decay_time: datetime | None = None
    total_tokens_consumed: int = 0
    accumulated_tokens: int = 0
    total_lifetime_tokens: int = 0
    pet_name: str = ""
    # Per-session display counters, refreshed from the transcript each run
    session_total_input_tokens: int = 0
    session_total_output_tokens: int = 0
    session_total_cached_tokens: int = 0
    context_length: int = 0
    context_percentage: float = 0.0
    context_percentage_usable: float = 0.0
    session_total_cost_usd: float = 0.0

    def copy(self) -> PetState:
        return replace(self)


PetObserver = Callable[[PetState], None]


def _validate_amount(amount: Any, what: str) -> None:
    if (
        isinstance(amount, bool)
        or not isinstance(amount, (int, float))
        or not math.isfinite(amount)
        or amount < 0
    ):
        raise InvalidArgumentError(
            f"Invalid {what}: {amount!r}. Must be a finite non-negative number."
        )


class Pet:
    """Holds a PetState and applies every energy mutation to it.

    ``add_energy`` and ``decrease_energy`` are the only places energy
    changes; ``feed`` and ``apply_time_decay`` go through them.  Observers
    registered with :meth:`subscribe` receive a copy of the state after each
    mutation.
    """

    def __init__(
        self,
        state: PetState,
        config: PetConfig | None = None,
        identity_picker: IdentityPicker | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.config = config or PetConfig()
        self.identity_picker = identity_picker or IdentityPicker()
        self.clock = clock
        self._state = state.copy()
        self._state.energy = min(MAX_ENERGY, max(MIN_ENERGY, self._state.energy))
        self._update_expression()
        self._observers: list[PetObserver] = []

    @classmethod
    def new(
        cls,
        config: PetConfig | None = None,
        identity_picker: IdentityPicker | None = None,
        clock: Callable[[], datetime] = utcnow,
        identity: Identity | None = None,
    ) -> Pet:
        """Create a freshly born pet at full energy."""
        config = config or PetConfig()
        identity_picker = identity_picker or IdentityPicker()
        identity = identity or identity_picker.new_identity()
        now = clock()
        state = PetState(
            energy=config.initial_energy,
            expression=expression_for_energy(config.initial_energy, config),
            animal_type=identity.animal_type,
            birth_time=now,
            last_feed_time=now,
            last_decay_time=now,
            pet_name=identity.pet_name,
        )
        return cls(state, config=config, identity_picker=identity_picker, clock=clock)

    # -- Queries --

    def get_state(self) -> PetState:
        return self._state.copy()

    @property
    def energy(self) -> float:
        return self._state.energy

    @property
    def mood(self) -> Mood:
        return mood_for_energy(self._state.energy, self.config)

    def is_dead(self) -> bool:
        return self._state.energy == 0

    # -- Observers --

    def subscribe(self, observer: PetObserver) -> Callable[[], None]:
        """Register *observer*; returns a function that unregisters it."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    # -- Mutators --

    def add_energy(self, amount: float) -> None:
        _validate_amount(amount, "energy amount")
        self._state.energy = min(MAX_ENERGY, self._state.energy + amount)
        self._update_expression()
        self._notify()

    def decrease_energy(self, amount: float) -> None:
        _validate_amount(amount, "energy amount")
        self._state.energy = max(MIN_ENERGY, self._state.energy - amount)
        self._update_expression()
        self._notify()

    def feed(self, tokens: float) -> None:
        """Convert *tokens* into energy, one point per ``tokens_per_energy``.

        The remainder stays in ``accumulated_tokens`` for the next feed.
        """
        _validate_amount(tokens, "token count")
        per_energy = self.config.tokens_per_energy
        accumulated = self._state.accumulated_tokens + tokens
        energy_to_add = math.floor(accumulated / per_energy)

        self._state.accumulated_tokens = accumulated % per_energy
        self._state.total_tokens_consumed += tokens
        self._state.total_lifetime_tokens += tokens
        self._state.last_feed_time = self.clock()

        log.debug("Fed %s tokens (+%d energy, %s accumulated)",
                  tokens, energy_to_add, self._state.accumulated_tokens)
        if energy_to_add > 0:
            self.add_energy(energy_to_add)
        else:
            self._update_expression()
            self._notify()

    def apply_time_decay(self) -> None:
        """Drain energy for the minutes elapsed since the last decay or feed."""
        now = self.clock()
        reference = self._state.last_feed_time
        if self._state.last_decay_time is not None and self._state.last_decay_time > reference:
            reference = self._state.last_decay_time

        elapsed_minutes = (now - reference).total_seconds() / 60
        if elapsed_minutes < 0:
            log.warning("Clock skew detected (%.1f minutes), skipping decay", elapsed_minutes)
            return
        if elapsed_minutes < self.config.min_decay_interval_minutes:
            return

        decay = elapsed_minutes * self.config.decay_rate_per_minute
        # last_feed_time is left alone so "time since fed" stays meaningful
        self._state.last_decay_time = now
        log.debug("Decaying %.4f energy over %.1f minutes", decay, elapsed_minutes)
        self.decrease_energy(decay)

    def reset_to_initial_state(self, on_dying: PetObserver | None = None) -> None:
        """Replace a dead pet with a newborn one.

        *on_dying* receives a copy of the dead pet's final state before it is
        overwritten.  Errors it raises are logged and the reset continues.
        """
        previous_name = self._state.pet_name
        if self.is_dead() and on_dying is not None:
            try:
                on_dying(self.get_state())
            except Exception as e:
                log.warning("on_dying callback failed, resetting anyway: %s", e)

        identity = self.identity_picker.new_identity(previous_name=previous_name)
        now = self.clock()
        self._state = PetState(
            energy=self.config.initial_energy,
            expression=expression_for_energy(self.config.initial_energy, self.config),
            animal_type=identity.animal_type,
            birth_time=now,
            last_feed_time=now,
            last_decay_time=now,
            pet_name=identity.pet_name,
        )
        log.info("New pet born: %s the %s", identity.pet_name, identity.animal_type.value)
        self._notify()

    def update_session_metrics(self, metrics: Any, cost_usd: float | None = None) -> None:
        """Copy per-session display counters from a TokenMetrics onto the state."""
        state = self._state
        state.session_total_input_tokens = metrics.session_total_input_tokens
        state.session_total_output_tokens = metrics.session_total_output_tokens
        state.session_total_cached_tokens = metrics.session_total_cached_tokens
        state.context_length = metrics.context_length

        window = self.config.context_window_tokens
        usable = self.config.usable_context_tokens
        state.context_percentage = (metrics.context_length / window * 100) if window > 0 else 0.0
        state.context_percentage_usable = (metrics.context_length / usable * 100) if usable > 0 else 0.0
        if cost_usd is not None:
            state.session_total_cost_usd = float(cost_usd)

    # -- Helpers --

    def _update_expression(self) -> None:
        self._state.expression = expression_for_energy(self._state.energy, self.config)

    def _notify(self) -> None:
        for observer in list(self._observers):
            try:
                observer(self.get_state())
            except Exception as e:
                log.warning("Pet observer failed: %s", e)
