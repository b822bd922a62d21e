"""Random pet identity: name and animal type."""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any, Sequence

from ccpet.states import AnimalType

PET_NAMES: tuple[str, ...] = (
    "Fluffy", "Whiskers", "Mochi", "Biscuit", "Pepper", "Noodle", "Pickles",
    "Sprout", "Tofu", "Waffles", "Peanut", "Clover", "Dumpling", "Maple",
    "Nugget", "Pixel", "Bean", "Ziggy", "Muffin", "Sesame",
)


@dataclass(frozen=True)
class Identity:
    pet_name: str
    animal_type: AnimalType


class IdentityPicker:
    """Choose names and animals through an injectable RNG.

    *rng* only needs a ``choice(seq)`` method, so tests can pass a stub
    returning a fixed sequence.
    """

    def __init__(self, rng: Any = None, names: Sequence[str] = PET_NAMES) -> None:
        self.rng = rng if rng is not None else random.Random()
        self.names = tuple(names)

    def pick_name(self, exclude: str | None = None) -> str:
        candidates = [n for n in self.names if n != exclude] or list(self.names)
        return self.rng.choice(candidates)

    def pick_animal(self) -> AnimalType:
        return self.rng.choice(list(AnimalType))

    def new_identity(self, previous_name: str | None = None) -> Identity:
        return Identity(pet_name=self.pick_name(exclude=previous_name), animal_type=self.pick_animal())
