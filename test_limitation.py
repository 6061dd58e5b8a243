"""
Tests for the per-lake probability of phosphorus limitation.
"""

import arviz as az
import numpy as np
import pandas as pd
import pytest

from nutrient_limitation.data_loading import lake_table
from nutrient_limitation.model_specification import get_variant
from nutrient_limitation.limitation import (
    sample_critical_ratio_draws, sample_np_ratio_draws, limitation_probability,
    classify_limitation, export_limitation_csv
)

LAKES = ['lake_a', 'lake_b', 'lake_c']


def draws(values, n=200, lakes=LAKES):
    return pd.DataFrame(np.tile(values, (n, 1)), columns=lakes)


def test_probability_bounds():
    rng = np.random.default_rng(0)
    critical = pd.DataFrame(rng.uniform(5, 20, (500, 3)), columns=LAKES)
    np_ratio = pd.DataFrame(rng.lognormal(np.log(12), 0.5, (500, 3)), columns=LAKES)
    prob = limitation_probability(critical, np_ratio)['prob_p_limited']
    assert ((prob >= 0) & (prob <= 1)).all()


def test_deterministic_ratios():
    # N:P well above the critical ratio means P limitation with certainty
    result = limitation_probability(draws([10.0, 10.0, 30.0]), draws([40.0, 5.0, 10.0]))
    assert result['prob_p_limited'].tolist() == [1.0, 0.0, 0.0]
    assert result.index.name == 'specific_lake_bin'
    assert result.loc['lake_a', 'mean_np_ratio'] == pytest.approx(40.0)


def test_lakes_paired_by_key_not_position():
    critical = draws([10.0, 10.0, 30.0])
    np_ratio = draws([40.0, 5.0, 10.0])[['lake_c', 'lake_a', 'lake_b']]
    result = limitation_probability(critical, np_ratio)
    assert result.loc['lake_a', 'prob_p_limited'] == 1.0
    assert result.loc['lake_c', 'prob_p_limited'] == 0.0


def test_mismatched_draw_counts_raise():
    with pytest.raises(ValueError, match="Draw counts"):
        limitation_probability(draws([1.0, 1.0, 1.0], n=10), draws([2.0, 2.0, 2.0], n=11))


def test_mismatched_lake_sets_raise():
    other = draws([2.0, 2.0, 2.0], lakes=['lake_a', 'lake_b', 'lake_z'])
    with pytest.raises(ValueError, match="Lake keys do not match"):
        limitation_probability(draws([1.0, 1.0, 1.0]), other)


def test_duplicate_lake_keys_raise():
    dup = draws([2.0, 2.0, 2.0], lakes=['lake_a', 'lake_a', 'lake_b'])
    with pytest.raises(ValueError, match="Duplicate"):
        limitation_probability(dup, dup)


def test_classify_limitation():
    prob = pd.Series([0.02, 0.5, 0.95, 0.1, 0.9])
    labels = classify_limitation(prob, lower=0.1, upper=0.9)
    assert labels.tolist() == ['N', 'co-limited', 'P', 'co-limited', 'co-limited']
    with pytest.raises(ValueError):
        classify_limitation(prob, lower=0.8, upper=0.2)


def test_critical_ratio_draws_use_lake_depth(survey):
    lakes = lake_table(survey)
    n_lakes = len(lakes)
    idata = az.from_dict(posterior={
        'cr0': np.full((2, 50), 5.0),
        'cr_log_depth': np.full((2, 50), 2.0),
    })
    out = sample_critical_ratio_draws(idata, get_variant('mav'), lakes, n_draws=30,
                                      rng=np.random.default_rng(1))
    assert out.shape == (30, n_lakes)
    assert list(out.columns) == list(lakes.index)
    expected = np.maximum(1.0, 5.0 + 2.0 * lakes['log_depth'].to_numpy())
    np.testing.assert_allclose(out.iloc[0].to_numpy(), expected)


def test_critical_ratio_draws_need_global_cr0(survey):
    lakes = lake_table(survey)
    idata = az.from_dict(posterior={'cr0': np.ones((2, 10))})
    with pytest.raises(ValueError):
        sample_critical_ratio_draws(idata, get_variant('tp'), lakes)
    with pytest.raises(ValueError, match="global cr0"):
        sample_critical_ratio_draws(idata, get_variant('limiting_depth_bin'), lakes)


def test_np_ratio_draws_exponentiate_lake_means():
    mu = np.log(np.array([5.0, 12.0, 30.0]))
    idata = az.from_dict(posterior={'mu_lake': np.broadcast_to(mu, (2, 40, 3)).copy()})
    out = sample_np_ratio_draws(idata, pd.Index(LAKES), n_draws=25,
                                rng=np.random.default_rng(2))
    assert out.shape == (25, 3)
    np.testing.assert_allclose(out.mean().to_numpy(), [5.0, 12.0, 30.0])

    with pytest.raises(ValueError):
        sample_np_ratio_draws(idata, pd.Index(LAKES[:2]))


def test_export_joins_every_observation(tmp_path, survey):
    lakes = lake_table(survey)
    summary = pd.DataFrame({'prob_p_limited': np.linspace(0, 1, len(lakes))},
                           index=lakes.index)
    summary['limitation_class'] = classify_limitation(summary['prob_p_limited'])

    path = tmp_path / "out" / "limitation.csv"
    joined = export_limitation_csv(survey, summary, path=str(path), verbose=False)

    assert path.exists()
    assert len(joined) == len(survey)
    written = pd.read_csv(path)
    assert {'prob_p_limited', 'limitation_class', 'SITE_ID'} <= set(written.columns)
    first = survey['specific_lake_bin'].iloc[0]
    assert joined['prob_p_limited'].iloc[0] == summary.loc[first, 'prob_p_limited']
