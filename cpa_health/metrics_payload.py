"""The three data products handed to the presentation layer.

``compute_payload`` builds them from an already prepared context;
``recompute`` reloads the source first. Nothing here recomputes implicitly:
callers decide when a refresh happens.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, Optional

from cpa_health.correlation import correlation_matrix
from cpa_health.data import Snapshot, SnapshotStore, finite_or_none, prepare_context
from cpa_health.filters import DashboardFilters
from cpa_health.summary import summarize_health


def _json_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (v if isinstance(v, str) or v is None else finite_or_none(v)) for k, v in row.items()}


def compute_payload(filters: DashboardFilters, ctx: Dict[str, Any]) -> Dict[str, Any]:
    snapshot: Snapshot = ctx["selected"]
    records = [_json_row(r.to_dict()) for r in snapshot]
    if not records:
        return {"filters": asdict(filters), "records": [], "correlation_matrix": {}, "summaries": {}}

    matrix = correlation_matrix(
        snapshot.records,
        filters.basis,
        health_keys=filters.health_metrics,
        funding_keys=filters.funding_metrics,
    )
    summaries = summarize_health(snapshot, filters.health_metrics)
    return {
        "filters": asdict(filters),
        "records": records,
        "correlation_matrix": {
            h: {f: finite_or_none(r) for f, r in row.items()} for h, row in matrix.nested().items()
        },
        "summaries": {k: s.to_dict() if s else None for k, s in summaries.items()},
    }


def recompute(store: SnapshotStore, raw_filters: Optional[dict] = None) -> Dict[str, Any]:
    snapshot = store.refresh()
    ctx = prepare_context(raw_filters or {}, snapshot)
    return compute_payload(ctx["filters"], ctx)
