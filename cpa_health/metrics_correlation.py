from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List

from cpa_health.correlation import CorrelationMatrix, correlation_matrix, direction, strength_band
from cpa_health.data import Snapshot, finite_or_none
from cpa_health.definitions import get_metric, per_capita_key, town_color
from cpa_health.filters import DashboardFilters


def _scatter_series(snapshot: Snapshot, matrix: CorrelationMatrix, filters: DashboardFilters) -> List[Dict[str, Any]]:
    per_capita = matrix.basis == "per_capita"
    out: List[Dict[str, Any]] = []
    for h in matrix.health_keys:
        for f in matrix.funding_keys:
            funding = get_metric(f)
            x_key = per_capita_key(f) if per_capita else f
            points = [
                {
                    "town": r.town,
                    "x": finite_or_none(r.numeric(x_key)),
                    "y": finite_or_none(r.numeric(h)),
                    "color": town_color(r.town, funding.color),
                }
                for r in snapshot
            ]
            value = matrix.get(h, f)
            n = matrix.sample_sizes.get((h, f))
            out.append(
                {
                    "health_key": h,
                    "funding_key": f,
                    "x_key": x_key,
                    "title": f"{get_metric(h).label} vs {funding.label}",
                    "r": finite_or_none(value),
                    "strength": strength_band(value, filters.bands) if n != 0 else None,
                    "direction": direction(value) if n != 0 else None,
                    "n": n,
                    "points": points,
                }
            )
    return out


def compute_correlation(filters: DashboardFilters, ctx: Dict[str, Any]) -> Dict[str, Any]:
    snapshot: Snapshot = ctx["selected"]
    if not len(snapshot):
        return {"filters": asdict(filters), "basis": filters.basis, "matrix": [], "cells": [], "scatter": []}

    matrix = correlation_matrix(
        snapshot.records,
        filters.basis,
        health_keys=filters.health_metrics,
        funding_keys=filters.funding_metrics,
    )
    return {
        "filters": asdict(filters),
        "basis": matrix.basis,
        "matrix": matrix.rows(),
        "cells": matrix.cells(filters.bands),
        "scatter": _scatter_series(snapshot, matrix, filters),
    }
