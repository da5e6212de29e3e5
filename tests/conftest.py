"""Pytest configuration and fixtures."""

import pytest

from cpa_health.data import build_snapshot, derive_per_capita, load_records

HEADER = "TOWN,population_count,CPA_HOUS,CPA_OS,CPA_REC,CPA_HIST,CPA_TOT,MHLTH_CrudePrev,LPA_CrudePrev,PHLTH_CrudePrev"


@pytest.fixture
def two_town_csv():
    """Two towns whose housing spend per capita tracks mental health exactly."""
    return "\n".join(
        [
            HEADER,
            "A,100,1000,0,0,0,1000,10,20,30",
            "B,200,4000,0,0,0,4000,20,25,35",
        ]
    )


@pytest.fixture
def sample_csv():
    return "\n".join(
        [
            HEADER + ",COUNTY",
            "Cambridge,118403,14250000,3120000,4875000,6210000,28455000,15.1,17.2,9.4,Middlesex",
            "Fall River,94000,610000,455000,890000,1320000,3275000,20.3,30.8,15.9,Bristol",
            "Newton,88923,5430000,2980000,3650000,4120000,16180000,12.6,13.9,8.1,Middlesex",
            "Quincy,101636,3870000,1240000,2210000,2760000,10080000,16.8,22.5,11.7,Norfolk",
            "Somerville,81045,9120000,2540000,3310000,2890000,17860000,15.9,19.4,10.2,Middlesex",
        ]
    )


@pytest.fixture
def constant_open_space_csv():
    return "\n".join(
        [
            HEADER,
            "X,1000,100,500,10,10,620,12,20,9",
            "Y,2000,300,500,20,40,860,15,18,11",
            "Z,1500,250,500,30,20,800,19,25,14",
        ]
    )


@pytest.fixture
def zero_population_csv():
    return "\n".join(
        [
            HEADER,
            "Ghost,0,1000,100,100,100,1300,10,20,30",
            "Real,500,5000,500,500,500,6500,12,22,31",
            "Other,1000,4000,800,200,300,5300,14,21,33",
        ]
    )


@pytest.fixture
def sample_records(sample_csv):
    return derive_per_capita(load_records(sample_csv))


@pytest.fixture
def sample_snapshot(sample_csv):
    return build_snapshot(sample_csv, source="sample.csv")
