"""Shared pytest fixtures for the test suite."""

import numpy as np
import pandas as pd
import pytest
from scipy.special import expit

from src import config
from src.utils.cleaning import clean_gss
from src.utils.design import build_survey_design
from src.utils.glm import fit_models

RAW_YEARS = [1998, 2000, 2002, 2004, 2006, 2008, 2010, 2012, 2014, 2016, 2018]


def make_raw_gss(n: int = 1500, seed: int = 42) -> pd.DataFrame:
    """
    Synthetic GSS extract with raw variable names and codes.

    Includes out-of-range years, sentinel codes and missing ages so that
    cleaning has something to drop. Retirement follows
    logit(p) = -12 + 1.76 * age_decades.
    """
    rng = np.random.default_rng(seed)

    age = rng.integers(18, 90, n).astype(float)
    age[rng.random(n) < 0.01] = np.nan

    p_retired = expit(-12 + 1.76 * np.nan_to_num(age, nan=40.0) / 10)
    retired = rng.random(n) < p_retired
    wrkstat = np.where(retired, 5, rng.choice([1, 2, 3, 4, 6, 7, 8], n))
    wrkstat[rng.random(n) < 0.02] = 9

    return pd.DataFrame(
        {
            "year": rng.choice(RAW_YEARS, n),
            "id": np.arange(1, n + 1),
            "age": age,
            "race": rng.choice([1, 2, 3], n, p=[0.75, 0.15, 0.10]),
            "sex": rng.choice([1, 2], n),
            "wrkstat": wrkstat,
            "degree": rng.choice([0, 1, 2, 3, 4], n),
            "marital": rng.choice([1, 2, 3, 4, 5], n),
            "born": rng.choice([1, 2, 8], n, p=[0.85, 0.13, 0.02]),
            "wrkgovt": rng.choice([1, 2, 0, 9], n, p=[0.2, 0.72, 0.05, 0.03]),
            "vpsu": rng.choice([1, 2], n),
            "vstrat": rng.choice([1, 2, 3, 4], n),
            "oversamp": np.ones(n),
            "formwt": np.ones(n),
            "wtssall": rng.uniform(0.4, 3.0, n),
            "sampcode": rng.integers(1, 100, n),
            "sample": rng.choice([9, 10], n),
        }
    )


def make_design_frame(
    n_strata: int = 10,
    psu_per_stratum: int = 2,
    n_per_psu: int = 50,
    seed: int = 42,
) -> pd.DataFrame:
    """Cleaned-shaped table with a balanced stratified cluster structure."""
    rng = np.random.default_rng(seed)
    n = n_strata * psu_per_stratum * n_per_psu

    age_decades = rng.uniform(1.8, 9.0, n)
    is_retired = (rng.random(n) < expit(-12 + 1.76 * age_decades)).astype(int)

    return pd.DataFrame(
        {
            "year": 2004,
            "stratum_id": np.repeat(np.arange(1, n_strata + 1), psu_per_stratum * n_per_psu),
            "primary_sampling_unit_id": np.tile(
                np.repeat(np.arange(1, psu_per_stratum + 1), n_per_psu), n_strata
            ),
            "analysis_weight": rng.uniform(0.5, 2.0, n),
            "age_in_decades": age_decades,
            "age": age_decades * 10,
            "sex": rng.choice(config.category_levels("sex"), n),
            "is_retired": is_retired,
        }
    )


@pytest.fixture
def raw_gss():
    """Raw synthetic GSS extract."""
    return make_raw_gss()


@pytest.fixture
def cleaned_gss(raw_gss):
    """Cleaned synthetic GSS table."""
    return clean_gss(raw_gss)


@pytest.fixture
def survey_design(cleaned_gss):
    """Linearization design over the cleaned synthetic table."""
    return build_survey_design(cleaned_gss)


@pytest.fixture(scope="session")
def fitted_models():
    """All three models fitted on the synthetic GSS design."""
    design = build_survey_design(clean_gss(make_raw_gss()))
    models, failures = fit_models(design)
    assert not failures
    return models


@pytest.fixture
def design_frame():
    """Balanced 10-stratum, 2-PSU frame with 1000 records."""
    return make_design_frame()


@pytest.fixture
def sample_weights():
    """Create sample weight arrays for testing."""
    np.random.seed(42)
    return np.random.randint(1, 1000, 100).astype(float)

