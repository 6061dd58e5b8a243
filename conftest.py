"""
Shared fixtures: a small synthetic lake survey shaped like bnla_final.csv.
"""

import numpy as np
import pandas as pd
import pytest

from nutrient_limitation.data_loading import prepare_observations

SURVEY_SITE_PREFIXES = ['NLA06608-', 'NLA12_WI-', 'NLA17_MN-']


def make_survey(n_lakes=12, visits_per_lake=3, critical=10.0, seed=0):
    """
    Synthetic survey generated from the limiting-nutrient model.

    Each lake is visited once per survey year (up to three visits).
    """
    rng = np.random.default_rng(seed)
    lake = np.repeat(np.arange(n_lakes), visits_per_lake)
    visit = np.tile(np.arange(visits_per_lake), n_lakes)
    n = lake.size

    depth = np.exp(rng.normal(1.5, 0.6, n_lakes))[lake]
    tp = rng.lognormal(np.log(0.03), 0.8, n)
    tn = tp * rng.lognormal(np.log(12.0), 0.6, n)
    temp = rng.normal(20.0, 3.0, n)
    lake_offset = rng.normal(0.0, 0.2, n_lakes)[lake]

    x_ln = np.minimum(tp, tn / critical)
    log_chl = 4.0 + 0.9 * np.log(x_ln) + lake_offset + rng.normal(0.0, 0.25, n)
    log_eutro = np.log(tp) + rng.normal(0.0, 0.1, n)

    df = pd.DataFrame({
        'chl': np.exp(log_chl),
        'tp': tp,
        'tn': tn,
        'avg_temp': temp,
        'INDEX_SITE_DEPTH': depth,
        'log_eutro': log_eutro,
        'specific_lake_bin': [f"lake_{i:03d}" for i in lake],
        'eutro_bin': pd.qcut(log_eutro, 3, labels=False),
        'depth_bin': pd.qcut(depth, 2, labels=False, duplicates='drop'),
        'temp_bin': pd.qcut(temp, 2, labels=False),
        'SITE_ID': [f"{SURVEY_SITE_PREFIXES[v % 3]}{i:04d}" for i, v in zip(lake, visit)],
    })
    return df


@pytest.fixture
def raw_survey():
    return make_survey()


@pytest.fixture
def survey(raw_survey):
    return prepare_observations(raw_survey, verbose=False)
