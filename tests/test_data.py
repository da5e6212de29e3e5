"""Tests for loading, derivation and snapshots."""

import dataclasses
import math

import pytest
import requests

from cpa_health import data
from cpa_health.data import (
    SnapshotStore,
    build_snapshot,
    derive_per_capita,
    fetch_source,
    load_records,
    load_snapshot,
    prepare_context,
)
from cpa_health.errors import IngestionError, MalformedInputError, MissingFieldError
from cpa_health.filters import DashboardFilters, IngestLimits

from tests.conftest import HEADER


class TestLoadRecords:
    def test_parses_typed_fields(self, sample_csv):
        records = load_records(sample_csv)

        assert [r.town for r in records] == ["Cambridge", "Fall River", "Newton", "Quincy", "Somerville"]
        first = records[0]
        assert first.population_count == 118403.0
        assert first.funding["CPA_HOUS"] == 14250000.0
        assert first.health["MHLTH_CrudePrev"] == pytest.approx(15.1)
        assert first.extra["COUNTY"] == "Middlesex"
        assert first.per_capita == {}

    def test_skips_blank_lines(self, two_town_csv):
        text = two_town_csv.replace("\n", "\n\n   \n") + "\n\n"
        records = load_records(text)
        assert [r.town for r in records] == ["A", "B"]

    def test_header_only_gives_no_records(self):
        assert load_records(HEADER + "\n") == ()

    def test_empty_text_is_malformed(self):
        with pytest.raises(MalformedInputError, match="header"):
            load_records("  \n\n")

    def test_short_row_is_malformed(self):
        text = HEADER + "\nA,100,1000,0,0,0,1000,10,20"
        with pytest.raises(MalformedInputError, match="fewer fields"):
            load_records(text)

    def test_row_short_by_trailing_health_field(self):
        text = "\n".join([HEADER, "A,100,1000,0,0,0,1000,10,20,30", "B,200,4000,0,0,0,4000,20,25"])
        with pytest.raises(MalformedInputError, match="Data row 2 has fewer fields"):
            load_records(text)

    def test_row_short_by_funding_field(self):
        text = HEADER + "\nA,100,1000,0,0,1000,10,20,30"
        with pytest.raises(MalformedInputError, match="fewer fields"):
            load_records(text)

    def test_quoted_commas_are_one_field(self):
        text = HEADER + ",COUNTY\n\"Manchester, by the Sea\",100,1000,0,0,0,1000,10,20,30,\"Essex, MA\""
        (record,) = load_records(text)
        assert record.town == "Manchester, by the Sea"
        assert record.extra["COUNTY"] == "Essex, MA"

    def test_long_row_is_malformed(self):
        text = HEADER + "\nA,100,1000,0,0,0,1000,10,20,30,extra"
        with pytest.raises(MalformedInputError, match="more fields"):
            load_records(text)

    def test_missing_required_column(self):
        header = HEADER.replace(",CPA_TOT", "")
        text = header + "\nA,100,1000,0,0,0,10,20,30"
        with pytest.raises(MissingFieldError, match="CPA_TOT"):
            load_records(text)

    def test_empty_required_value(self):
        text = HEADER + "\nA,,1000,0,0,0,1000,10,20,30"
        with pytest.raises(MissingFieldError, match="population_count"):
            load_records(text)

    def test_non_numeric_required_value(self):
        text = HEADER + "\nA,lots,1000,0,0,0,1000,10,20,30"
        with pytest.raises(MalformedInputError, match="population_count"):
            load_records(text)

    def test_missing_health_value_is_nan(self):
        text = HEADER + "\nA,100,1000,0,0,0,1000,,20,30"
        (record,) = load_records(text)
        assert math.isnan(record.health["MHLTH_CrudePrev"])

    def test_whitespace_and_numeric_extras(self):
        text = "TOWN, population_count ,CPA_HOUS,CPA_OS,CPA_REC,CPA_HIST,CPA_TOT,median_income\n A , 100 ,1e3,0,0,0,1000,55000"
        (record,) = load_records(text)
        assert record.town == "A"
        assert record.population_count == 100.0
        assert record.funding["CPA_HOUS"] == 1000.0
        assert record.extra["median_income"] == 55000.0

    def test_value_lookup(self, sample_records):
        r = sample_records[0]
        assert r.value("TOWN") == "Cambridge"
        assert r.value("CPA_OS_PC") == pytest.approx(3120000 / 118403)
        with pytest.raises(MissingFieldError):
            r.value("NOPE")


class TestDerivation:
    def test_per_capita_fields(self, two_town_csv):
        records = derive_per_capita(load_records(two_town_csv))
        assert [r.per_capita["CPA_HOUS_PC"] for r in records] == [10.0, 20.0]
        assert set(records[0].per_capita) == {"CPA_HOUS_PC", "CPA_OS_PC", "CPA_REC_PC", "CPA_HIST_PC", "CPA_TOT_PC"}

    def test_zero_population_is_nan(self, zero_population_csv):
        ghost = derive_per_capita(load_records(zero_population_csv))[0]
        assert all(math.isnan(v) for v in ghost.per_capita.values())

    def test_idempotent(self, sample_records):
        again = derive_per_capita(sample_records)
        assert [dict(r.per_capita) for r in again] == [dict(r.per_capita) for r in sample_records]

    def test_independent_of_order(self, sample_csv):
        records = load_records(sample_csv)
        forward = derive_per_capita(records)
        backward = derive_per_capita(reversed(records))
        assert list(reversed(backward)) == list(forward)

    def test_does_not_mutate_input(self, sample_csv):
        records = load_records(sample_csv)
        derive_per_capita(records)
        assert all(r.per_capita == {} for r in records)

    def test_records_are_frozen(self, sample_records):
        r = sample_records[0]
        with pytest.raises(dataclasses.FrozenInstanceError):
            r.town = "Elsewhere"
        with pytest.raises(TypeError):
            r.funding["CPA_HOUS"] = 0.0


class TestSnapshot:
    def test_build_snapshot(self, sample_snapshot):
        assert len(sample_snapshot) == 5
        assert sample_snapshot.source == "sample.csv"
        assert len(sample_snapshot.signature) == 16
        frame = sample_snapshot.to_frame()
        assert list(frame["TOWN"]) == sample_snapshot.towns
        assert "CPA_TOT_PC" in frame.columns

    def test_select_towns_keeps_order(self, sample_snapshot):
        picked = sample_snapshot.select_towns(["somerville", "Cambridge"])
        assert picked.towns == ["Cambridge", "Somerville"]
        assert sample_snapshot.select_towns([]) is sample_snapshot

    def test_prepare_context(self, sample_snapshot):
        ctx = prepare_context({"selected_towns": ["Newton", "Atlantis"]}, sample_snapshot)
        assert isinstance(ctx["filters"], DashboardFilters)
        assert ctx["selected"].towns == ["Newton"]
        assert ctx["unknown_towns"] == ["Atlantis"]


class _FakeResponse:
    def __init__(self, chunks, status=200):
        self.chunks = chunks
        self.status = status

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def iter_content(self, chunk_size=1):
        yield from self.chunks


class TestFetchSource:
    def test_reads_file_and_strips_bom(self, tmp_path, two_town_csv):
        path = tmp_path / "combined_data.csv"
        path.write_bytes(("\ufeff" + two_town_csv).encode("utf-8"))
        assert fetch_source(path) == two_town_csv

    def test_missing_file(self, tmp_path):
        with pytest.raises(IngestionError, match="Could not read"):
            fetch_source(tmp_path / "nope.csv")

    def test_oversize_file(self, tmp_path, two_town_csv):
        path = tmp_path / "big.csv"
        path.write_text(two_town_csv)
        with pytest.raises(IngestionError, match="limit"):
            fetch_source(path, IngestLimits(max_bytes=10))

    def test_not_utf8(self, tmp_path):
        path = tmp_path / "latin.csv"
        path.write_bytes(b"TOWN\n\xff\xfe\xfa")
        with pytest.raises(IngestionError, match="UTF-8"):
            fetch_source(path)

    def test_fetches_url(self, monkeypatch, two_town_csv):
        calls = {}

        def fake_get(url, timeout, stream):
            calls.update(url=url, timeout=timeout, stream=stream)
            return _FakeResponse([two_town_csv.encode("utf-8")])

        monkeypatch.setattr(data.requests, "get", fake_get)
        text = fetch_source("https://example.org/combined_data.csv", IngestLimits(timeout_seconds=3.0))
        assert text == two_town_csv
        assert calls == {"url": "https://example.org/combined_data.csv", "timeout": 3.0, "stream": True}

    def test_url_http_error(self, monkeypatch):
        monkeypatch.setattr(data.requests, "get", lambda url, timeout, stream: _FakeResponse([], status=404))
        with pytest.raises(IngestionError, match="404"):
            fetch_source("http://example.org/missing.csv")

    def test_url_timeout(self, monkeypatch):
        def fake_get(url, timeout, stream):
            raise requests.Timeout("read timed out")

        monkeypatch.setattr(data.requests, "get", fake_get)
        with pytest.raises(IngestionError, match="timed out") as exc_info:
            fetch_source("http://example.org/slow.csv")
        assert isinstance(exc_info.value.__cause__, requests.Timeout)

    def test_url_oversize(self, monkeypatch):
        monkeypatch.setattr(data.requests, "get", lambda url, timeout, stream: _FakeResponse([b"x" * 8, b"y" * 8]))
        with pytest.raises(IngestionError, match="limit"):
            fetch_source("http://example.org/big.csv", IngestLimits(max_bytes=10))


class TestLoadSnapshot:
    def test_cached_by_file_signature(self, tmp_path, sample_csv):
        path = tmp_path / "combined_data.csv"
        path.write_text(sample_csv)
        first = load_snapshot(path)
        assert load_snapshot(path) is first
        assert first.towns[0] == "Cambridge"

    def test_load_errors_propagate(self, tmp_path):
        with pytest.raises(IngestionError):
            load_snapshot(tmp_path / "missing.csv")

    def test_store_refresh_replaces_snapshot(self, tmp_path, sample_csv, two_town_csv):
        path = tmp_path / "combined_data.csv"
        path.write_text(sample_csv)
        store = SnapshotStore(path)
        old = store.snapshot
        assert len(old) == 5

        path.write_text(two_town_csv)
        new = store.refresh()
        assert store.snapshot is new
        assert new.towns == ["A", "B"]
        assert old.towns[0] == "Cambridge"

    def test_failed_refresh_keeps_old_snapshot(self, tmp_path, sample_csv):
        path = tmp_path / "combined_data.csv"
        path.write_text(sample_csv)
        store = SnapshotStore(path)
        old = store.snapshot

        path.write_text(HEADER + "\nA,100,1000")
        with pytest.raises(MalformedInputError):
            store.refresh()
        assert store.snapshot is old

    def test_build_snapshot_signature_tracks_content(self, sample_csv, two_town_csv):
        assert build_snapshot(sample_csv).signature != build_snapshot(two_town_csv).signature
        assert build_snapshot(sample_csv).signature == build_snapshot(sample_csv).signature
