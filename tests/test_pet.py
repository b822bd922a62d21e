"""Tests for the pet lifecycle: feeding, decay, death and rebirth."""

from __future__ import annotations

import math
import random
from datetime import timedelta

import pytest

from ccpet.config import PetConfig
from ccpet.errors import InvalidArgumentError
from ccpet.identity import IdentityPicker
from ccpet.pet import Pet, PetState
from ccpet.states import AnimalType, Mood
from ccpet.transcript import TokenMetrics


def _state(clock, energy: float = 50, **overrides) -> PetState:
    fields = dict(
        energy=energy,
        expression="",
        animal_type=AnimalType.CAT,
        birth_time=clock.now - timedelta(days=1),
        last_feed_time=clock.now,
        last_decay_time=clock.now,
        pet_name="Fluffy",
    )
    fields.update(overrides)
    return PetState(**fields)


def _pet(clock, energy: float = 50, config: PetConfig | None = None, **overrides) -> Pet:
    return Pet(
        _state(clock, energy, **overrides),
        config=config or PetConfig(),
        identity_picker=IdentityPicker(random.Random(7)),
        clock=clock,
    )


class TestFeed:
    def test_one_million_tokens_is_one_energy(self, clock):
        pet = _pet(clock, energy=50)
        pet.feed(1_000_000)

        state = pet.get_state()
        assert state.energy == 51
        assert state.accumulated_tokens == 0
        assert state.total_tokens_consumed == 1_000_000
        assert state.total_lifetime_tokens == 1_000_000

    def test_remainder_is_accumulated(self, clock):
        pet = _pet(clock, energy=50, accumulated_tokens=400_000)
        pet.feed(1_700_000)

        state = pet.get_state()
        assert state.energy == 52
        assert state.accumulated_tokens == 100_000

    def test_small_feeds_add_up(self, clock):
        pet = _pet(clock, energy=50)
        for _ in range(4):
            pet.feed(250_000)
        assert pet.energy == 51
        assert pet.get_state().accumulated_tokens == 0

    def test_energy_caps_at_100(self, clock):
        pet = _pet(clock, energy=99.5)
        pet.feed(5_000_000)
        assert pet.energy == 100
        assert pet.get_state().total_tokens_consumed == 5_000_000

    def test_updates_last_feed_time_only(self, clock):
        pet = _pet(clock)
        decay_before = pet.get_state().last_decay_time
        clock.advance(minutes=5)
        pet.feed(10)
        state = pet.get_state()
        assert state.last_feed_time == clock.now
        assert state.last_decay_time == decay_before

    def test_zero_tokens_is_allowed(self, clock):
        pet = _pet(clock, energy=50)
        pet.feed(0)
        assert pet.energy == 50

    @pytest.mark.parametrize("bad", [-1, math.nan, math.inf, "1000", None, True])
    def test_invalid_tokens_raise(self, clock, bad):
        pet = _pet(clock)
        with pytest.raises(InvalidArgumentError):
            pet.feed(bad)
        assert pet.get_state().total_tokens_consumed == 0

    def test_invalid_argument_is_value_error(self, clock):
        with pytest.raises(ValueError):
            _pet(clock).feed(-5)


class TestTimeDecay:
    def test_sixty_one_minutes(self, clock):
        pet = _pet(clock, energy=50)
        feed_time = pet.get_state().last_feed_time
        clock.advance(minutes=61)

        pet.apply_time_decay()

        state = pet.get_state()
        assert state.energy == pytest.approx(50 - 61 * 0.0231, abs=0.01)
        assert state.last_decay_time == clock.now
        assert state.last_feed_time == feed_time

    def test_below_minimum_interval_is_noop(self, clock):
        pet = _pet(clock, energy=50)
        clock.advance(seconds=30)
        pet.apply_time_decay()
        assert pet.energy == 50
        assert pet.get_state().last_decay_time != clock.now

    def test_clock_skew_is_noop(self, clock):
        pet = _pet(clock, energy=50, last_feed_time=clock.now + timedelta(hours=1))
        pet.apply_time_decay()
        assert pet.energy == 50

    def test_measures_from_latest_of_feed_and_decay(self, clock):
        pet = _pet(
            clock,
            energy=50,
            last_feed_time=clock.now - timedelta(minutes=10),
            last_decay_time=clock.now - timedelta(minutes=100),
        )
        pet.apply_time_decay()
        assert pet.energy == pytest.approx(50 - 10 * 0.0231)

    def test_missing_decay_time_uses_feed_time(self, clock):
        pet = _pet(clock, energy=50, last_feed_time=clock.now - timedelta(minutes=20), last_decay_time=None)
        pet.apply_time_decay()
        assert pet.energy == pytest.approx(50 - 20 * 0.0231)

    def test_decays_to_zero_and_dies(self, clock):
        pet = _pet(clock, energy=100)
        clock.advance(days=10)
        pet.apply_time_decay()
        assert pet.energy == 0
        assert pet.is_dead()
        assert pet.mood == Mood.DEAD

    def test_custom_rate(self, clock):
        pet = _pet(clock, energy=50, config=PetConfig(decay_rate_per_minute=1.0))
        clock.advance(minutes=5)
        pet.apply_time_decay()
        assert pet.energy == pytest.approx(45)


class TestEnergyMutators:
    def test_add_and_decrease_clamp(self, clock):
        pet = _pet(clock, energy=50)
        pet.add_energy(80)
        assert pet.energy == 100
        pet.decrease_energy(250)
        assert pet.energy == 0

    @pytest.mark.parametrize("bad", [-0.1, math.nan, "5", None])
    def test_invalid_amounts(self, clock, bad):
        pet = _pet(clock, energy=50)
        with pytest.raises(InvalidArgumentError):
            pet.add_energy(bad)
        with pytest.raises(InvalidArgumentError):
            pet.decrease_energy(bad)
        assert pet.energy == 50

    @pytest.mark.parametrize(
        "energy, face",
        [(100, "(^_^)"), (80, "(^_^)"), (79.5, "(o_o)"), (40, "(o_o)"),
         (39.5, "(u_u)"), (10, "(u_u)"), (9.5, "(x_x)"), (0, "(x_x)")],
    )
    def test_expression_tracks_energy(self, clock, energy, face):
        pet = _pet(clock, energy=100)
        pet.decrease_energy(100 - energy)
        assert pet.get_state().expression == face

    def test_dead_only_at_exactly_zero(self, clock):
        pet = _pet(clock, energy=5)
        assert pet.get_state().expression == "(x_x)"
        assert not pet.is_dead()
        pet.decrease_energy(5)
        assert pet.is_dead()

    def test_constructor_normalizes_state(self, clock):
        pet = _pet(clock, energy=150, expression="bogus")
        assert pet.energy == 100
        assert pet.get_state().expression == "(^_^)"

    def test_energy_stays_bounded(self, clock):
        rng = random.Random(0)
        pet = _pet(clock, energy=50)
        for _ in range(500):
            op = rng.randrange(4)
            if op == 0:
                pet.feed(rng.randrange(0, 20_000_000))
            elif op == 1:
                clock.advance(minutes=rng.randrange(0, 5000))
                pet.apply_time_decay()
            elif op == 2:
                pet.add_energy(rng.uniform(0, 60))
            else:
                pet.decrease_energy(rng.uniform(0, 60))
            assert 0 <= pet.energy <= 100
            assert 0 <= pet.get_state().accumulated_tokens < 1_000_000


class TestReset:
    def test_dead_pet_is_reborn(self, clock):
        pet = _pet(clock, energy=0, total_tokens_consumed=123, accumulated_tokens=45,
                   total_lifetime_tokens=678, session_total_input_tokens=9, context_length=10)
        seen: list[PetState] = []
        clock.advance(minutes=1)

        pet.reset_to_initial_state(seen.append)

        assert len(seen) == 1
        assert seen[0].energy == 0
        assert seen[0].pet_name == "Fluffy"

        state = pet.get_state()
        assert not pet.is_dead()
        assert state.energy == 100
        assert state.expression == "(^_^)"
        assert state.pet_name != "Fluffy"
        assert state.birth_time == state.last_feed_time == state.last_decay_time == clock.now
        assert state.total_tokens_consumed == 0
        assert state.accumulated_tokens == 0
        assert state.total_lifetime_tokens == 0
        assert state.session_total_input_tokens == 0
        assert state.context_length == 0

    def test_callback_error_does_not_block_reset(self, clock):
        pet = _pet(clock, energy=0)

        def boom(_state):
            raise RuntimeError("disk full")

        pet.reset_to_initial_state(boom)
        assert pet.energy == 100

    def test_callback_skipped_for_living_pet(self, clock):
        pet = _pet(clock, energy=30)
        seen: list[PetState] = []
        pet.reset_to_initial_state(seen.append)
        assert seen == []
        assert pet.energy == 100

    def test_snapshot_is_a_copy(self, clock):
        pet = _pet(clock, energy=0)
        seen: list[PetState] = []
        pet.reset_to_initial_state(seen.append)
        seen[0].energy = 42
        assert pet.energy == 100

    def test_new_identity_uses_injected_rng(self, clock):
        class FirstChoice:
            def choice(self, seq):
                return seq[0]

        pet = Pet(_state(clock, energy=0), identity_picker=IdentityPicker(FirstChoice()), clock=clock)
        pet.reset_to_initial_state()
        state = pet.get_state()
        assert state.pet_name == "Whiskers"
        assert state.animal_type == AnimalType.CAT


class TestObservers:
    def test_notified_once_per_mutation(self, clock):
        pet = _pet(clock)
        seen: list[float] = []
        pet.subscribe(lambda s: seen.append(s.energy))

        pet.feed(1_000_000)
        pet.decrease_energy(1)
        clock.advance(minutes=10)
        pet.apply_time_decay()

        assert len(seen) == 3
        assert seen[0] == 51

    def test_failing_observer_does_not_block_others(self, clock):
        pet = _pet(clock)
        seen: list[float] = []

        def boom(_state):
            raise RuntimeError("observer broke")

        pet.subscribe(boom)
        pet.subscribe(lambda s: seen.append(s.energy))
        pet.add_energy(5)
        assert seen == [55]

    def test_unsubscribe(self, clock):
        pet = _pet(clock)
        seen: list[float] = []
        unsubscribe = pet.subscribe(lambda s: seen.append(s.energy))
        unsubscribe()
        unsubscribe()
        pet.add_energy(5)
        assert seen == []

    def test_reset_notifies_with_new_state(self, clock):
        pet = _pet(clock, energy=0)
        seen: list[PetState] = []
        pet.subscribe(seen.append)
        pet.reset_to_initial_state()
        assert seen[-1].energy == 100


def test_new_pet_starts_full(clock):
    pet = Pet.new(identity_picker=IdentityPicker(random.Random(1)), clock=clock)
    state = pet.get_state()
    assert state.energy == 100
    assert state.birth_time == clock.now
    assert state.pet_name
    assert isinstance(state.animal_type, AnimalType)


def test_update_session_metrics(clock):
    pet = _pet(clock, energy=50)
    metrics = TokenMetrics(
        session_total_input_tokens=10,
        session_total_output_tokens=20,
        session_total_cached_tokens=30,
        context_length=100_000,
    )
    pet.update_session_metrics(metrics, cost_usd=1.25)

    state = pet.get_state()
    assert state.session_total_input_tokens == 10
    assert state.session_total_output_tokens == 20
    assert state.session_total_cached_tokens == 30
    assert state.context_length == 100_000
    assert state.context_percentage == pytest.approx(50.0)
    assert state.context_percentage_usable == pytest.approx(62.5)
    assert state.session_total_cost_usd == 1.25
    assert state.energy == 50
