"""
Observation containers for SEU test data.

An observation is one tested LET value with the number of upsets counted
and the particle fluence delivered. Observation sets are read-only once
built; every downstream component receives views, never copies it can
mutate.
"""

from dataclasses import dataclass
from typing import Iterable, Sequence, Union

import numpy as np
import pandas as pd

from seufit.exceptions import ConfigurationError


@dataclass(frozen=True)
class Observation:
    """A single (LET, count, fluence) measurement."""

    let: float
    count: int
    fluence: float

    def __post_init__(self):
        let = float(self.let)
        fluence = float(self.fluence)
        count_f = float(self.count)

        if not np.isfinite(let) or let <= 0:
            raise ConfigurationError(f"LET must be a positive finite number, got {self.let!r}")
        if not np.isfinite(fluence) or fluence <= 0:
            raise ConfigurationError(
                f"Fluence must be a positive finite number, got {self.fluence!r}"
            )
        if not np.isfinite(count_f) or count_f < 0 or count_f != int(count_f):
            raise ConfigurationError(
                f"Count must be a non-negative integer, got {self.count!r}"
            )

        object.__setattr__(self, "let", let)
        object.__setattr__(self, "fluence", fluence)
        object.__setattr__(self, "count", int(count_f))

    @property
    def cross_section(self) -> float:
        """Observed cross-section count/fluence."""
        return self.count / self.fluence

    @property
    def is_censored(self) -> bool:
        return self.count == 0


def _readonly(values: np.ndarray) -> np.ndarray:
    values.setflags(write=False)
    return values


@dataclass(frozen=True)
class ObservationSet:
    """Ordered, immutable collection of observations."""

    observations: tuple[Observation, ...]

    def __post_init__(self):
        observations = tuple(self.observations)
        object.__setattr__(self, "observations", observations)

    @classmethod
    def from_arrays(
        cls,
        let: Sequence[float],
        counts: Sequence[int],
        fluence: Union[float, Sequence[float]],
    ) -> "ObservationSet":
        """
        Build an observation set from parallel arrays.

        Args:
            let: LET values
            counts: Upset counts
            fluence: Fluence per observation, or a single value for all

        Returns:
            ObservationSet in the given order
        """
        let_arr = np.atleast_1d(np.asarray(let, dtype=float))
        counts_arr = np.atleast_1d(np.asarray(counts, dtype=float))
        fluence_arr = np.broadcast_to(
            np.asarray(fluence, dtype=float), let_arr.shape
        ) if np.ndim(fluence) == 0 else np.atleast_1d(np.asarray(fluence, dtype=float))

        if not (len(let_arr) == len(counts_arr) == len(fluence_arr)):
            raise ConfigurationError(
                f"Length mismatch: {len(let_arr)} LET values, {len(counts_arr)} counts, "
                f"{len(fluence_arr)} fluences"
            )

        return cls(tuple(
            Observation(let=l, count=c, fluence=f)
            for l, c, f in zip(let_arr, counts_arr, fluence_arr)
        ))

    @classmethod
    def from_records(cls, records: Iterable[tuple[float, int, float]]) -> "ObservationSet":
        """Build from an iterable of (LET, count, fluence) triples."""
        return cls(tuple(Observation(let=l, count=c, fluence=f) for l, c, f in records))

    @classmethod
    def from_dataframe(
        cls,
        df: pd.DataFrame,
        let_col: str = "let",
        count_col: str = "count",
        fluence_col: str = "fluence",
    ) -> "ObservationSet":
        """Build from a DataFrame with LET, count and fluence columns."""
        missing = [c for c in (let_col, count_col, fluence_col) if c not in df.columns]
        if missing:
            raise ConfigurationError(f"Missing columns: {missing}")
        return cls.from_arrays(
            df[let_col].to_numpy(), df[count_col].to_numpy(), df[fluence_col].to_numpy()
        )

    def to_dataframe(self) -> pd.DataFrame:
        """Tabular view including the observed cross-section."""
        return pd.DataFrame({
            "let": self.let,
            "count": self.counts,
            "fluence": self.fluence,
            "cross_section": self.observed_cross_section,
        })

    def __len__(self) -> int:
        return len(self.observations)

    def __iter__(self):
        return iter(self.observations)

    def __getitem__(self, idx: int) -> Observation:
        return self.observations[idx]

    @property
    def let(self) -> np.ndarray:
        return _readonly(np.array([o.let for o in self.observations], dtype=float))

    @property
    def counts(self) -> np.ndarray:
        return _readonly(np.array([o.count for o in self.observations], dtype=np.int64))

    @property
    def fluence(self) -> np.ndarray:
        return _readonly(np.array([o.fluence for o in self.observations], dtype=float))

    @property
    def observed_cross_section(self) -> np.ndarray:
        return _readonly(self.counts / self.fluence)

    @property
    def total_events(self) -> int:
        return int(sum(o.count for o in self.observations))

    @property
    def has_censored(self) -> bool:
        return any(o.is_censored for o in self.observations)

    def subset(self, mask: Sequence[bool]) -> "ObservationSet":
        """Observations where ``mask`` is true, in original order."""
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != (len(self),):
            raise ValueError("Mask length must match the number of observations")
        return ObservationSet(tuple(o for o, keep in zip(self.observations, mask) if keep))

    def informative(self) -> "ObservationSet":
        """Observations with at least one upset."""
        return self.subset(self.counts > 0)

    def censored(self) -> "ObservationSet":
        """Zero-event observations."""
        return self.subset(self.counts == 0)

    def without(self, index: int) -> "ObservationSet":
        """All observations except the one at ``index``."""
        return ObservationSet(
            tuple(o for i, o in enumerate(self.observations) if i != index)
        )

    def with_counts(self, counts: Sequence[int]) -> "ObservationSet":
        """Same LET/fluence design with replacement counts."""
        counts = np.asarray(counts)
        if counts.shape != (len(self),):
            raise ValueError("Counts length must match the number of observations")
        return ObservationSet(tuple(
            Observation(let=o.let, count=int(c), fluence=o.fluence)
            for o, c in zip(self.observations, counts)
        ))
