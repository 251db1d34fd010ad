from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Mapping

HUMOR_RANGE = (0, 3)
ENERGY_RANGE = (1, 3)
BREVITY_RANGE = (1, 3)
OPTIMISM_RANGE = (1, 3)


def _clamp(value: int, bounds: tuple[int, int]) -> int:
    low, high = bounds
    return max(low, min(high, int(value)))


@dataclass(frozen=True, slots=True)
class PersonaFlags:
    bad_news: bool = False
    celebration: bool = False
    quick: bool = False
    deep_dive: bool = False
    want_structure: bool = False
    demo_punchy: bool = False

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> "PersonaFlags":
        data = dict(raw or {})
        return cls(
            bad_news=bool(data.get("bad_news") or data.get("badNews")),
            celebration=bool(data.get("celebration")),
            quick=bool(data.get("quick")),
            deep_dive=bool(data.get("deep_dive") or data.get("deepDive")),
            want_structure=bool(data.get("want_structure") or data.get("wantStructure")),
            demo_punchy=bool(data.get("demo_punchy") or data.get("demoPunchy")),
        )


@dataclass(frozen=True, slots=True)
class PersonaDials:
    humor: int = 1
    energy: int = 2
    brevity: int = 2
    optimism: int = 2

    def clamped(self) -> "PersonaDials":
        return PersonaDials(
            humor=_clamp(self.humor, HUMOR_RANGE),
            energy=_clamp(self.energy, ENERGY_RANGE),
            brevity=_clamp(self.brevity, BREVITY_RANGE),
            optimism=_clamp(self.optimism, OPTIMISM_RANGE),
        )

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def derive_dials(flags: PersonaFlags) -> PersonaDials:
    """Applies situational flags over the default dials.

    Bad news is applied after celebration so it always has the last word on humor and optimism.
    """
    humor, energy, brevity, optimism = 1, 2, 2, 2

    if flags.celebration:
        energy = 3
        optimism = 3
        humor = 2

    if flags.bad_news:
        humor = 0
        brevity = 3
        optimism = 1

    if flags.quick:
        brevity = 3
    if flags.deep_dive:
        brevity = 1

    return PersonaDials(humor=humor, energy=energy, brevity=brevity, optimism=optimism).clamped()
