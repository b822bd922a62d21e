"""Pet moods, animal types and the energy → mood mapping."""

from __future__ import annotations

from enum import Enum, auto

from ccpet.config import PetConfig


class Mood(Enum):
    HAPPY = auto()
    HUNGRY = auto()
    SICK = auto()
    DEAD = auto()


class AnimalType(str, Enum):
    CAT = "cat"
    DOG = "dog"
    RABBIT = "rabbit"
    PANDA = "panda"
    FOX = "fox"


def mood_for_energy(energy: float, config: PetConfig) -> Mood:
    """Return the mood for a given energy level.

    Thresholds are inclusive on the lower bound: energy at exactly the
    happy threshold is HAPPY, anything below the sick threshold is DEAD.
    """
    if energy >= config.happy_threshold:
        return Mood.HAPPY
    if energy >= config.hungry_threshold:
        return Mood.HUNGRY
    if energy >= config.sick_threshold:
        return Mood.SICK
    return Mood.DEAD


def expression_for_energy(energy: float, config: PetConfig) -> str:
    return config.expression_for(mood_for_energy(energy, config).name)


def parse_animal_type(value: object) -> AnimalType | None:
    """Return the matching AnimalType, or None if *value* is not a known animal."""
    if isinstance(value, AnimalType):
        return value
    if not isinstance(value, str):
        return None
    try:
        return AnimalType(value.strip().lower())
    except ValueError:
        return None
