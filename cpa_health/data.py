from __future__ import annotations

import csv
import hashlib
import io
import logging
import math
import time
from dataclasses import dataclass, field, replace
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd
import requests

from cpa_health.definitions import DERIVED_FUNDING_KEYS, HEALTH_KEYS, per_capita_key
from cpa_health.errors import (
    CpaHealthError,
    IngestionError,
    MalformedInputError,
    MissingFieldError,
)
from cpa_health.filters import DashboardFilters, IngestLimits, normalize_filters

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parents[1] / "data"
DEFAULT_SOURCE = DATA_DIR / "combined_data.csv"

TOWN_COLUMN = "TOWN"
POPULATION_COLUMN = "population_count"
REQUIRED_COLUMNS = [TOWN_COLUMN, POPULATION_COLUMN] + DERIVED_FUNDING_KEYS

COLUMN_ALIASES = {
    "Town": TOWN_COLUMN,
    "town": TOWN_COLUMN,
    "Population": POPULATION_COLUMN,
    "population": POPULATION_COLUMN,
}

Source = Union[str, Path]


def _frozen(mapping: Mapping[str, object]) -> Mapping[str, object]:
    return MappingProxyType(dict(mapping))


def finite_or_none(value: object) -> Optional[float]:
    """Float for JSON payloads; None for NaN, inf, text and missing values."""
    out = _as_float(value)
    if math.isnan(out) or math.isinf(out):
        return None
    return out


def _as_float(value: object) -> float:
    if value is None or isinstance(value, str):
        return math.nan
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return math.nan


@dataclass(frozen=True)
class TownRecord:
    town: str
    population_count: float
    funding: Mapping[str, float]
    health: Mapping[str, float]
    per_capita: Mapping[str, float] = field(default_factory=dict)
    extra: Mapping[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in ("funding", "health", "per_capita", "extra"):
            object.__setattr__(self, name, _frozen(getattr(self, name)))

    def value(self, key: str) -> object:
        if key in (TOWN_COLUMN, "town"):
            return self.town
        if key == POPULATION_COLUMN:
            return self.population_count
        for mapping in (self.funding, self.per_capita, self.health, self.extra):
            if key in mapping:
                return mapping[key]
        raise MissingFieldError(f"{self.town!r} has no field {key!r}")

    def numeric(self, key: str) -> float:
        """Value of ``key`` as float; NaN for missing or text values."""
        return _as_float(self.value(key))

    def to_dict(self) -> Dict[str, object]:
        row: Dict[str, object] = {TOWN_COLUMN: self.town, POPULATION_COLUMN: self.population_count}
        row.update(self.funding)
        row.update(self.per_capita)
        row.update(self.health)
        for k, v in self.extra.items():
            row.setdefault(k, v)
        return row


@dataclass(frozen=True)
class Snapshot:
    records: Tuple[TownRecord, ...]
    source: str = ""
    signature: str = ""

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[TownRecord]:
        return iter(self.records)

    @property
    def towns(self) -> List[str]:
        return [r.town for r in self.records]

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([r.to_dict() for r in self.records])

    def select_towns(self, towns: Iterable[str]) -> "Snapshot":
        """Subset of this snapshot in input record order; empty selection keeps all."""
        wanted = {t.lower() for t in towns}
        if not wanted:
            return self
        kept = tuple(r for r in self.records if r.town.lower() in wanted)
        return replace(self, records=kept)


# ---------------- Source fetch ----------------
def is_url(source: Source) -> bool:
    return str(source).lower().startswith(("http://", "https://"))


def _read_file(path: Path, limits: IngestLimits) -> bytes:
    try:
        size = path.stat().st_size
        if size > limits.max_bytes:
            raise IngestionError(f"{path} is {size} bytes, limit is {limits.max_bytes}")
        return path.read_bytes()
    except OSError as exc:
        raise IngestionError(f"Could not read {path}: {exc}") from exc


def _fetch_url(url: str, limits: IngestLimits) -> bytes:
    deadline = time.monotonic() + limits.timeout_seconds
    chunks: List[bytes] = []
    total = 0
    try:
        with requests.get(url, timeout=limits.timeout_seconds, stream=True) as r:
            r.raise_for_status()
            for chunk in r.iter_content(chunk_size=64 * 1024):
                total += len(chunk)
                if total > limits.max_bytes:
                    raise IngestionError(f"{url} exceeds the {limits.max_bytes} byte limit")
                if time.monotonic() > deadline:
                    raise IngestionError(f"{url} took longer than {limits.timeout_seconds}s")
                chunks.append(chunk)
    except requests.RequestException as exc:
        raise IngestionError(f"Could not fetch {url}: {exc}") from exc
    return b"".join(chunks)


def fetch_source(source: Source, limits: Optional[IngestLimits] = None) -> str:
    limits = limits or IngestLimits()
    raw = _fetch_url(str(source), limits) if is_url(source) else _read_file(Path(source), limits)
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise IngestionError(f"{source} is not UTF-8 text") from exc


# ---------------- Record loader ----------------
def read_table(text: str) -> Tuple[List[str], pd.DataFrame]:
    """Split CSV text into (header, body) with every cell kept as stripped text.

    Field counts are checked per record, with quoting respected, before any
    cell is typed.
    """
    rows = [row for row in csv.reader(io.StringIO(text)) if any(cell.strip() for cell in row)]
    if not rows:
        raise MalformedInputError("Input has no header row")

    header = [COLUMN_ALIASES.get(h.strip(), h.strip()) for h in rows[0]]
    for row_no, row in enumerate(rows[1:], start=1):
        if len(row) != len(header):
            side = "fewer" if len(row) < len(header) else "more"
            raise MalformedInputError(
                f"Data row {row_no} has {side} fields ({len(row)}) than the header ({len(header)})"
            )

    body = pd.DataFrame(rows[1:], columns=range(len(header)), dtype=str)
    if not body.empty:
        body = body.apply(lambda col: col.str.strip())
    return header, body


def numericize(body: pd.DataFrame) -> pd.DataFrame:
    return body.apply(pd.to_numeric, errors="coerce")


def _typed_cell(text: str, number: float) -> object:
    if text == "":
        return None
    if pd.notna(number):
        return float(number)
    return text


def _required_number(row: Dict[str, object], col: str, row_no: int) -> float:
    value = row.get(col)
    if value is None:
        raise MissingFieldError(f"Data row {row_no} ({row.get(TOWN_COLUMN)!r}) has no value for {col}")
    if isinstance(value, str):
        raise MalformedInputError(f"Data row {row_no}: {col}={value!r} is not numeric")
    return float(value)


def load_records(text: str) -> Tuple[TownRecord, ...]:
    header, body = read_table(text)
    missing = [c for c in REQUIRED_COLUMNS if c not in header]
    if missing:
        raise MissingFieldError(f"Input is missing required columns: {', '.join(missing)}")

    # First occurrence wins on duplicated header names.
    positions: Dict[str, int] = {}
    for i, name in enumerate(header):
        positions.setdefault(name, i)

    numbers = numericize(body)
    records: List[TownRecord] = []
    for idx in range(len(body)):
        texts = body.iloc[idx]
        nums = numbers.iloc[idx]
        row = {name: _typed_cell(texts[i], nums[i]) for name, i in positions.items()}
        row_no = idx + 1

        town = texts[positions[TOWN_COLUMN]]
        if not town:
            raise MissingFieldError(f"Data row {row_no} has no value for {TOWN_COLUMN}")
        population = _required_number(row, POPULATION_COLUMN, row_no)
        funding = {k: _required_number(row, k, row_no) for k in DERIVED_FUNDING_KEYS}

        health: Dict[str, float] = {}
        for k in HEALTH_KEYS:
            value = row.get(k)
            if isinstance(value, str):
                logger.warning("Row %d (%s): %s=%r is not numeric, treating as missing", row_no, town, k, value)
            health[k] = _as_float(value)

        known = set(REQUIRED_COLUMNS) | set(HEALTH_KEYS)
        extra = {k: v for k, v in row.items() if k not in known}
        records.append(
            TownRecord(town=town, population_count=population, funding=funding, health=health, extra=extra)
        )
    return tuple(records)


# ---------------- Derivation ----------------
def per_capita_value(amount: float, population: float) -> float:
    if population == 0 or np.isnan(population) or np.isnan(amount):
        return np.nan
    return amount / population


def derive_per_capita(records: Iterable[TownRecord]) -> Tuple[TownRecord, ...]:
    derived: List[TownRecord] = []
    zero_pop: List[str] = []
    for r in records:
        if r.population_count == 0:
            zero_pop.append(r.town)
        pc = dict(r.per_capita)
        for k in DERIVED_FUNDING_KEYS:
            pc[per_capita_key(k)] = per_capita_value(r.funding[k], r.population_count)
        derived.append(replace(r, per_capita=pc))
    if zero_pop:
        logger.warning("Zero population, per-capita values are NaN for: %s", ", ".join(zero_pop))
    return tuple(derived)


def build_snapshot(text: str, *, source: str = "") -> Snapshot:
    records = derive_per_capita(load_records(text))
    signature = hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]
    logger.info("Loaded %d towns from %s (signature %s)", len(records), source or "<text>", signature)
    return Snapshot(records=records, source=source, signature=signature)


# ---------------- Public API ----------------
def file_signature(path: Path) -> Tuple[str, float, int]:
    try:
        st = path.stat()
    except OSError as exc:
        raise IngestionError(f"Could not read {path}: {exc}") from exc
    return str(path), st.st_mtime, st.st_size


@lru_cache(maxsize=4)
def _load_snapshot_cached(file_sig: Tuple[str, float, int], limits: IngestLimits) -> Snapshot:
    path = file_sig[0]
    return build_snapshot(fetch_source(path, limits), source=path)


def load_snapshot(source: Optional[Source] = None, limits: Optional[IngestLimits] = None) -> Snapshot:
    src = source if source is not None else DEFAULT_SOURCE
    limits = limits or IngestLimits()
    try:
        if is_url(src):
            return build_snapshot(fetch_source(src, limits), source=str(src))
        return _load_snapshot_cached(file_signature(Path(src)), limits)
    except CpaHealthError:
        logger.exception("Loading %s failed", src)
        raise


class SnapshotStore:
    """Holds the current snapshot; ``refresh`` swaps in a new one or keeps the old on failure."""

    def __init__(self, source: Optional[Source] = None, limits: Optional[IngestLimits] = None) -> None:
        self.source = source if source is not None else DEFAULT_SOURCE
        self.limits = limits or IngestLimits()
        self._snapshot: Optional[Snapshot] = None

    @property
    def snapshot(self) -> Snapshot:
        if self._snapshot is None:
            self._snapshot = load_snapshot(self.source, self.limits)
        return self._snapshot

    def refresh(self) -> Snapshot:
        _load_snapshot_cached.cache_clear()
        snapshot = load_snapshot(self.source, self.limits)
        self._snapshot = snapshot
        return snapshot


def prepare_context(filters: dict | DashboardFilters, snapshot: Snapshot) -> Dict[str, object]:
    filt = filters if isinstance(filters, DashboardFilters) else normalize_filters(filters)
    selected = snapshot.select_towns(filt.selected_towns)
    known = {t.lower() for t in snapshot.towns}
    unknown_towns = [t for t in filt.selected_towns if t.lower() not in known]
    if unknown_towns:
        logger.warning("Ignoring unknown towns in filters: %s", ", ".join(unknown_towns))
    return {
        "filters": filt,
        "snapshot": snapshot,
        "selected": selected,
        "unknown_towns": unknown_towns,
    }
