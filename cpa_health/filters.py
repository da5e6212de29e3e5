from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from cpa_health.definitions import FUNDING_KEYS, HEALTH_KEYS

BASES = ("raw", "per_capita")


@dataclass(frozen=True)
class IngestLimits:
    max_bytes: int = 5_000_000
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class StrengthBands:
    strong: float = 0.5
    moderate: float = 0.3


@dataclass(frozen=True)
class DashboardFilters:
    selected_towns: List[str] = field(default_factory=list)
    health_metrics: List[str] = field(default_factory=lambda: list(HEALTH_KEYS))
    funding_metrics: List[str] = field(default_factory=lambda: list(FUNDING_KEYS))
    basis: str = "raw"
    bands: StrengthBands = field(default_factory=StrengthBands)


def _float_or(value: object, default: float) -> float:
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default


def _known_keys(values: Optional[Iterable[object]], allowed: List[str]) -> List[str]:
    if not values:
        return list(allowed)
    wanted = {str(v) for v in values if v is not None}
    # Keep the canonical metric order regardless of the order requested.
    picked = [k for k in allowed if k in wanted]
    return picked or list(allowed)


def normalize_filters(raw: dict) -> DashboardFilters:
    selected_towns = [str(x).strip() for x in (raw.get("selected_towns") or []) if x is not None and str(x).strip()]

    health_metrics = _known_keys(raw.get("health_metrics"), HEALTH_KEYS)
    funding_metrics = _known_keys(raw.get("funding_metrics"), FUNDING_KEYS)

    basis = str(raw.get("basis") or "raw").strip().lower()
    if basis not in BASES:
        basis = "raw"

    b = raw.get("bands") or {}
    bands = StrengthBands(
        strong=_float_or(b.get("strong", 0.5), 0.5),
        moderate=_float_or(b.get("moderate", 0.3), 0.3),
    )
    if bands.moderate > bands.strong:
        bands = StrengthBands()

    return DashboardFilters(
        selected_towns=selected_towns,
        health_metrics=health_metrics,
        funding_metrics=funding_metrics,
        basis=basis,
        bands=bands,
    )
