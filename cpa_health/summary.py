from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, Optional, Sequence

import numpy as np

from cpa_health.data import TownRecord
from cpa_health.definitions import FUNDING_KEYS, HEALTH_KEYS, per_capita_key
from cpa_health.errors import EmptyDatasetError


@dataclass(frozen=True)
class Extreme:
    value: float
    town: str


@dataclass(frozen=True)
class MetricSummary:
    key: str
    mean: float
    min: Extreme
    max: Extreme
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def summarize_metric(records: Iterable[TownRecord], key: str) -> MetricSummary:
    """Mean plus min/max holders for one metric.

    NaN values are left out. On ties the earliest record in input order holds
    the extreme.
    """
    records = tuple(records)
    if not records:
        raise EmptyDatasetError(f"Cannot summarize {key} over zero records")

    values = np.array([r.numeric(key) for r in records], dtype=float)
    valid = ~np.isnan(values)
    if not valid.any():
        raise EmptyDatasetError(f"No numeric values for {key} in {len(records)} records")

    lo: Optional[int] = None
    hi: Optional[int] = None
    for i in np.flatnonzero(valid):
        # strict comparisons keep the first holder of a tied extreme
        if lo is None or values[i] < values[lo]:
            lo = i
        if hi is None or values[i] > values[hi]:
            hi = i

    return MetricSummary(
        key=key,
        mean=float(values[valid].mean()),
        min=Extreme(value=float(values[lo]), town=records[lo].town),
        max=Extreme(value=float(values[hi]), town=records[hi].town),
        count=int(valid.sum()),
    )


def _reported(records: Sequence[TownRecord], key: str) -> Optional[MetricSummary]:
    """None when records exist but none of them carries a value for ``key``."""
    if records and all(np.isnan(r.numeric(key)) for r in records):
        return None
    return summarize_metric(records, key)


def summarize_health(
    records: Iterable[TownRecord], keys: Optional[Sequence[str]] = None
) -> Dict[str, Optional[MetricSummary]]:
    records = tuple(records)
    return {k: _reported(records, k) for k in (keys or HEALTH_KEYS)}


def summarize_funding(
    records: Iterable[TownRecord], keys: Optional[Sequence[str]] = None, *, per_capita: bool = True
) -> Dict[str, Optional[MetricSummary]]:
    records = tuple(records)
    out: Dict[str, Optional[MetricSummary]] = {}
    for k in keys or FUNDING_KEYS:
        field_key = per_capita_key(k) if per_capita else k
        out[field_key] = _reported(records, field_key)
    return out
