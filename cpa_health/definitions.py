from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class MetricDefinition:
    key: str
    label: str
    description: str
    color: str
    unit: str = ""
    full_label: Optional[str] = None
    icon: str = ""

    @property
    def per_capita_key(self) -> str:
        return per_capita_key(self.key)


PER_CAPITA_SUFFIX = "_PC"

HEALTH_METRICS: List[MetricDefinition] = [
    MetricDefinition(
        key="MHLTH_CrudePrev",
        label="Mental Health Issues",
        full_label="Poor Mental Health ≥14 Days",
        description="Percentage of adults reporting their mental health was not good for 14 or more days in the past month",
        unit="%",
        color="#8b5cf6",
        icon="🧠",
    ),
    MetricDefinition(
        key="LPA_CrudePrev",
        label="Physical Inactivity",
        full_label="No Leisure Physical Activity",
        description="Percentage of adults who report doing no physical activity or exercise (other than their job) in the past month",
        unit="%",
        color="#ec4899",
        icon="🏃",
    ),
    MetricDefinition(
        key="PHLTH_CrudePrev",
        label="Poor Physical Health",
        full_label="Poor Physical Health ≥14 Days",
        description="Percentage of adults reporting their physical health was not good for 14 or more days in the past month",
        unit="%",
        color="#f59e0b",
        icon="💪",
    ),
]

FUNDING_METRICS: List[MetricDefinition] = [
    MetricDefinition(
        key="CPA_HOUS",
        label="Housing",
        description="Community Preservation Act funding allocated to affordable housing projects and initiatives",
        unit="$",
        color="#8b5cf6",
        icon="🏠",
    ),
    MetricDefinition(
        key="CPA_OS",
        label="Open Space",
        description="Funding for parks, conservation land, and outdoor recreational spaces",
        unit="$",
        color="#10b981",
        icon="🌳",
    ),
    MetricDefinition(
        key="CPA_REC",
        label="Recreation",
        description="Investment in recreational facilities, playgrounds, sports fields, and community centers",
        unit="$",
        color="#3b82f6",
        icon="⚽",
    ),
    MetricDefinition(
        key="CPA_HIST",
        label="Historical",
        description="Preservation and restoration of historic buildings, sites, and cultural landmarks",
        unit="$",
        color="#f59e0b",
        icon="🏛️",
    ),
]

# Derived per capita like the categories, but kept out of the correlation matrix.
TOTAL_FUNDING = MetricDefinition(
    key="CPA_TOT",
    label="Total",
    description="Total Community Preservation Act spending across all categories",
    unit="$",
    color="#64748b",
    icon="💰",
)

HEALTH_KEYS: List[str] = [m.key for m in HEALTH_METRICS]
FUNDING_KEYS: List[str] = [m.key for m in FUNDING_METRICS]
DERIVED_FUNDING_KEYS: List[str] = FUNDING_KEYS + [TOTAL_FUNDING.key]

TOWN_COLORS: Dict[str, str] = {
    "Cambridge": "#8b5cf6",
    "Fall River": "#ec4899",
    "Newton": "#f59e0b",
    "Quincy": "#10b981",
    "Somerville": "#3b82f6",
}

_BY_KEY: Dict[str, MetricDefinition] = {m.key: m for m in HEALTH_METRICS + FUNDING_METRICS + [TOTAL_FUNDING]}


def per_capita_key(key: str) -> str:
    return f"{key}{PER_CAPITA_SUFFIX}"


def get_metric(key: str) -> MetricDefinition:
    """Look up a metric by raw or per-capita key."""
    base = key[: -len(PER_CAPITA_SUFFIX)] if key.endswith(PER_CAPITA_SUFFIX) else key
    if base not in _BY_KEY:
        raise KeyError(f"Unknown metric: {key}")
    return _BY_KEY[base]


def town_color(town: str, fallback: str) -> str:
    return TOWN_COLORS.get(town, fallback)
