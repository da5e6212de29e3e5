"""Pearson correlation between funding categories and health outcomes.

The coefficient follows the product-moment formula

    r = (n*Sxy - Sx*Sy) / sqrt((n*Sxx - Sx**2) * (n*Syy - Sy**2))

evaluated on mean-centred vectors, which gives the same value with less
cancellation on large amounts. When either input has zero variance the
coefficient is reported as 0.0 rather than NaN.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from cpa_health.data import TownRecord
from cpa_health.definitions import FUNDING_KEYS, HEALTH_KEYS, get_metric, per_capita_key
from cpa_health.errors import DimensionMismatchError, EmptyDatasetError
from cpa_health.filters import BASES, StrengthBands

Pair = Tuple[str, str]


def correlation(x: Sequence[float], y: Sequence[float]) -> float:
    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    if xs.shape != ys.shape:
        raise DimensionMismatchError(f"Cannot correlate vectors of length {len(xs)} and {len(ys)}")
    if xs.size == 0:
        raise EmptyDatasetError("Cannot correlate empty vectors")

    # Mean-centring a constant vector is not exact in floating point.
    if np.all(xs == xs[0]) or np.all(ys == ys[0]):
        return 0.0

    dx = xs - xs.mean()
    dy = ys - ys.mean()
    denominator = np.sqrt(np.dot(dx, dx) * np.dot(dy, dy))
    if denominator == 0:
        return 0.0
    return float(np.clip(np.dot(dx, dy) / denominator, -1.0, 1.0))


def strength_band(r: float, bands: Optional[StrengthBands] = None) -> str:
    bands = bands or StrengthBands()
    magnitude = abs(r)
    if magnitude > bands.strong:
        return "strong"
    if magnitude > bands.moderate:
        return "moderate"
    return "weak"


def direction(r: float) -> str:
    if r > 0:
        return "positive"
    if r < 0:
        return "negative"
    return "none"


def paired_values(
    records: Iterable[TownRecord], x_key: str, y_key: str, *, drop_missing: bool = False
) -> Tuple[List[float], List[float]]:
    """Aligned values of two fields in record order.

    With ``drop_missing`` a record is skipped when either value is NaN.
    """
    xs: List[float] = []
    ys: List[float] = []
    for r in records:
        x, y = r.numeric(x_key), r.numeric(y_key)
        if drop_missing and (np.isnan(x) or np.isnan(y)):
            continue
        xs.append(x)
        ys.append(y)
    return xs, ys


@dataclass(frozen=True)
class CorrelationMatrix:
    values: Mapping[Pair, float]
    basis: str = "raw"
    health_keys: Tuple[str, ...] = tuple(HEALTH_KEYS)
    funding_keys: Tuple[str, ...] = tuple(FUNDING_KEYS)
    sample_sizes: Mapping[Pair, int] = field(default_factory=dict)

    def get(self, health_key: str, funding_key: str) -> float:
        return self.values[(health_key, funding_key)]

    def by_label(self) -> Dict[Pair, float]:
        return {
            (get_metric(h).label, get_metric(f).label): r
            for (h, f), r in self.values.items()
        }

    def rows(self) -> List[Dict[str, object]]:
        """One row per health metric, funding labels as columns."""
        out: List[Dict[str, object]] = []
        for h in self.health_keys:
            row: Dict[str, object] = {"metric": get_metric(h).label}
            for f in self.funding_keys:
                row[get_metric(f).label] = self.get(h, f)
            out.append(row)
        return out

    def nested(self) -> Dict[str, Dict[str, float]]:
        """{health label: {funding label: r}}"""
        out: Dict[str, Dict[str, float]] = {}
        for (h, f), r in self.by_label().items():
            out.setdefault(h, {})[f] = r
        return out

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(self.rows()).set_index("metric")

    def cells(self, bands: Optional[StrengthBands] = None) -> List[Dict[str, object]]:
        out: List[Dict[str, object]] = []
        for h in self.health_keys:
            for f in self.funding_keys:
                r = self.get(h, f)
                n = self.sample_sizes.get((h, f))
                scored = n != 0
                out.append(
                    {
                        "health_key": h,
                        "health_label": get_metric(h).label,
                        "funding_key": f,
                        "funding_label": get_metric(f).label,
                        "r": r,
                        "strength": strength_band(r, bands) if scored else None,
                        "direction": direction(r) if scored else None,
                        "n": n,
                    }
                )
        return out


def correlation_matrix(
    records: Iterable[TownRecord],
    basis: str = "raw",
    *,
    health_keys: Optional[Sequence[str]] = None,
    funding_keys: Optional[Sequence[str]] = None,
) -> CorrelationMatrix:
    if basis not in BASES:
        raise ValueError(f"Unknown correlation basis {basis!r}; expected one of {BASES}")
    records = tuple(records)
    if not records:
        raise EmptyDatasetError("Cannot build a correlation matrix over zero records")
    health_keys = tuple(health_keys or HEALTH_KEYS)
    funding_keys = tuple(funding_keys or FUNDING_KEYS)
    per_capita = basis == "per_capita"

    values: Dict[Pair, float] = {}
    sizes: Dict[Pair, int] = {}
    for h in health_keys:
        for f in funding_keys:
            x_key = per_capita_key(f) if per_capita else f
            xs, ys = paired_values(records, x_key, h, drop_missing=True)
            # no complete pair left: zero by the degenerate-input convention, n=0
            values[(h, f)] = correlation(xs, ys) if xs else 0.0
            sizes[(h, f)] = len(xs)
    return CorrelationMatrix(
        values=values,
        basis=basis,
        health_keys=health_keys,
        funding_keys=funding_keys,
        sample_sizes=sizes,
    )
