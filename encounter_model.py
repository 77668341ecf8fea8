"""Encounter-model speed tables and relative closure speed estimates.

Each model maps altitude layers to a distribution of intruder airspeed. The
expected relative speed assumes the relative heading between own aircraft
and intruder is uniformly distributed. The correlated model describes
discrete-code (cooperative) traffic and the uncorrelated model 1200-code and
noncooperative traffic.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

import numpy as np

from density_errors import ConfigurationError
from density_table import CATEGORIES, CATEGORY_1200, CATEGORY_DISCRETE

SECTION_ALTITUDE = "altitude_boundaries_ft"
SECTION_SPEED = "speed_boundaries_kts"
SECTION_COUNTS = "speed_counts"
SECTIONS = (SECTION_ALTITUDE, SECTION_SPEED, SECTION_COUNTS)

HEADING_SAMPLES = 360
_HEADINGS_RAD = (np.arange(HEADING_SAMPLES) + 0.5) * (2.0 * math.pi / HEADING_SAMPLES)


def _edges(name: str, label: str, values: Sequence[float]) -> np.ndarray:
    arr = np.array(values, dtype=float).reshape(-1)
    if arr.size < 2:
        raise ConfigurationError(f"{name} model {label} needs at least two boundaries")
    if not np.all(np.isfinite(arr)) or np.any(np.diff(arr) <= 0):
        raise ConfigurationError(f"{name} model {label} must be finite and strictly increasing")
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class EncounterModel:
    """Intruder airspeed distribution per altitude layer."""

    name: str
    altitude_edges_ft: np.ndarray
    speed_edges_kts: np.ndarray
    speed_counts: np.ndarray

    def __post_init__(self) -> None:
        altitude = _edges(self.name, "altitude boundaries", self.altitude_edges_ft)
        speed = _edges(self.name, "speed boundaries", self.speed_edges_kts)
        if speed[0] < 0:
            raise ConfigurationError(f"{self.name} model speed boundaries must be non-negative")

        counts = np.asarray(self.speed_counts, dtype=float)
        expected = (altitude.size - 1, speed.size - 1)
        if counts.shape != expected:
            raise ConfigurationError(
                f"{self.name} model speed counts must have shape {expected}, got {counts.shape}"
            )
        if not np.all(np.isfinite(counts)) or np.any(counts < 0):
            raise ConfigurationError(f"{self.name} model speed counts must be non-negative")
        totals = counts.sum(axis=1)
        if np.any(totals <= 0):
            raise ConfigurationError(f"{self.name} model has an altitude layer without observations")

        probabilities = counts / totals[:, None]
        probabilities.setflags(write=False)
        object.__setattr__(self, "altitude_edges_ft", altitude)
        object.__setattr__(self, "speed_edges_kts", speed)
        object.__setattr__(self, "speed_counts", counts)
        object.__setattr__(self, "_probabilities", probabilities)

    @classmethod
    def from_text(cls, text: str, name: str = "encounter") -> "EncounterModel":
        """Parse ``# section`` headers followed by whitespace-separated rows."""

        sections: Dict[str, List[List[float]]] = {}
        current = None
        for lineno, raw in enumerate(text.splitlines(), start=1):
            line = raw.strip()
            if not line:
                continue
            if line.startswith("#"):
                header = line.lstrip("#").strip().lower()
                current = header if header in SECTIONS else None
                if current is not None:
                    sections[current] = []
                continue
            if current is None:
                raise ConfigurationError(f"{name} model line {lineno} is outside a known section: {raw!r}")
            try:
                row = [float(v) for v in line.replace(",", " ").split()]
            except ValueError as exc:
                raise ConfigurationError(f"{name} model line {lineno} is not numeric: {raw!r}") from exc
            sections[current].append(row)

        missing = [s for s in SECTIONS if not sections.get(s)]
        if missing:
            raise ConfigurationError(f"{name} model is missing sections: {', '.join(missing)}")

        rows = sections[SECTION_COUNTS]
        if len({len(r) for r in rows}) != 1:
            raise ConfigurationError(f"{name} model speed count rows have different lengths")

        return cls(
            name=name,
            altitude_edges_ft=[v for r in sections[SECTION_ALTITUDE] for v in r],
            speed_edges_kts=[v for r in sections[SECTION_SPEED] for v in r],
            speed_counts=np.asarray(rows, dtype=float),
        )

    @property
    def speed_midpoints_kts(self) -> np.ndarray:
        edges = self.speed_edges_kts
        return 0.5 * (edges[:-1] + edges[1:])

    def layer_for_altitude(self, altitude_ft: float) -> int:
        """Layer index, clamped to the first/last layer outside the model range."""

        idx = int(np.searchsorted(self.altitude_edges_ft, altitude_ft, side="right")) - 1
        return int(np.clip(idx, 0, self.altitude_edges_ft.size - 2))

    def speed_distribution(self, altitude_ft: float) -> Tuple[np.ndarray, np.ndarray]:
        layer = self.layer_for_altitude(altitude_ft)
        return self.speed_midpoints_kts, self._probabilities[layer]

    def average_speed(self, altitude_ft: float) -> float:
        speeds, probs = self.speed_distribution(altitude_ft)
        return float(probs @ speeds)

    def relative_speed(self, own_speed_kts: float, altitude_ft: float) -> float:
        """Expected |v_own - v_intruder| over intruder speed and relative heading."""

        speeds, probs = self.speed_distribution(altitude_ft)
        v1 = float(own_speed_kts)
        v2 = speeds[:, None]
        closure = np.sqrt(np.maximum(v1**2 + v2**2 - 2.0 * v1 * v2 * np.cos(_HEADINGS_RAD), 0.0))
        return float(probs @ closure.mean(axis=1))


@dataclass(frozen=True, eq=False)
class EncounterModels:
    """Correlated (discrete-code) and uncorrelated (1200-code) models."""

    correlated: EncounterModel
    uncorrelated: EncounterModel

    def model_for_category(self, category: int) -> EncounterModel:
        if category == CATEGORY_DISCRETE:
            return self.correlated
        if category == CATEGORY_1200:
            return self.uncorrelated
        raise ConfigurationError(f"Unknown aircraft category {category!r}")

    def relative_speed(self, own_speed_kts: float, altitude_ft: float, category: int) -> float:
        return self.model_for_category(category).relative_speed(own_speed_kts, altitude_ft)

    def _normalised(self, weights: Sequence[float]) -> np.ndarray:
        w = np.asarray(weights, dtype=float)
        if w.shape != (len(CATEGORIES),) or np.any(w < 0):
            raise ConfigurationError("Category weights must be one non-negative value per category")
        total = w.sum()
        if total <= 0:
            return np.full(len(CATEGORIES), 1.0 / len(CATEGORIES))
        return w / total

    def blended_relative_speed(self, own_speed_kts: float, altitude_ft: float, weights: Sequence[float]) -> float:
        """Relative speed blended over categories, e.g. weighted by observed counts."""

        w = self._normalised(weights)
        return float(
            sum(
                w[c] * self.relative_speed(own_speed_kts, altitude_ft, c)
                for c in CATEGORIES
                if w[c] > 0
            )
        )

    def blended_average_speed(self, altitude_ft: float, weights: Sequence[float]) -> float:
        w = self._normalised(weights)
        return float(
            sum(w[c] * self.model_for_category(c).average_speed(altitude_ft) for c in CATEGORIES if w[c] > 0)
        )
