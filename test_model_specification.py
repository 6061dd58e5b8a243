"""
Tests for model variants, the design builder and the deterministic link.
"""

import numpy as np
import pandas as pd
import pytest

from nutrient_limitation.model_specification import (
    ModelSpec, MODEL_VARIANTS, get_variant, build_design, build_model,
    build_np_ratio_model, initial_values, limiting_nutrient, critical_ratio,
    linear_predictor, NP_RATIO_SPEC
)


def test_limiting_nutrient_example():
    tp = np.array([0.05, 0.10])
    tn = np.array([1.0, 0.5])
    np.testing.assert_allclose(limiting_nutrient(tp, tn, 10.0), [0.05, 0.05])


def test_limiting_nutrient_is_minimum():
    rng = np.random.default_rng(1)
    tp = rng.lognormal(-3, 1, 200)
    tn = rng.lognormal(-1, 1, 200)
    ratio = rng.uniform(1, 30, 200)
    x_ln = limiting_nutrient(tp, tn, ratio)
    assert np.all(x_ln <= tp)
    assert np.all(x_ln <= tn / ratio)
    assert np.all((x_ln == tp) | (x_ln == tn / ratio))


def test_critical_ratio_floored_at_one(survey):
    spec = get_variant('mav')
    design = build_design(survey, spec)
    params = {'cr0': -50.0, 'cr_log_depth': 0.0}
    np.testing.assert_array_equal(critical_ratio(spec, params, design), 1.0)

    params = {'cr0': 5.0, 'cr_log_depth': 2.0}
    expected = np.maximum(1.0, 5.0 + 2.0 * survey['log_depth'].to_numpy())
    np.testing.assert_allclose(critical_ratio(spec, params, design), expected)


def test_spec_validation():
    with pytest.raises(ValueError):
        ModelSpec('bad', nutrient='chl')
    with pytest.raises(ValueError):
        ModelSpec('bad', binned=('b0',))
    with pytest.raises(ValueError):
        ModelSpec('bad', nutrient='tp', critical_ratio_terms=('log_depth',))
    with pytest.raises(ValueError):
        get_variant('no_such_variant')


def test_coefficient_names_follow_terms():
    spec = ModelSpec('x', nutrient='limiting', covariates=('avg_temp',),
                     critical_ratio_terms=('log_depth',))
    assert spec.coefficient_names() == ['b0', 'b_nut', 'beta_avg_temp', 'cr0',
                                        'cr_log_depth', 'sigma', 'sigma_lake']
    assert ModelSpec('tp', nutrient='tp', random_intercept=False).coefficient_names() == \
        ['b0', 'b_nut', 'sigma']
    assert spec.with_covariates([]).covariates == ()


def test_design_resolves_keys_against_given_levels(survey):
    spec = get_variant('limiting_eutro_bin')
    train = survey[survey['specific_lake_bin'] != 'lake_000']
    train_design = build_design(train, spec)
    test_design = build_design(survey, spec, lake_levels=train_design.lake_levels,
                               bin_levels=train_design.bin_levels)

    unseen = (survey['specific_lake_bin'] == 'lake_000').to_numpy()
    assert (test_design.lake_idx[unseen] == -1).all()
    assert (test_design.lake_idx[~unseen] >= 0).all()
    assert test_design.n_lakes == train_design.n_lakes == 11


def test_design_rejects_missing_covariate(survey):
    df = survey.copy()
    df.loc[3, 'avg_temp'] = np.nan
    with pytest.raises(ValueError, match="avg_temp"):
        build_design(df, get_variant('mav_temp'))
    # Variants that do not use the column are unaffected
    assert build_design(df, get_variant('mav')).n == len(df)


def test_design_rejects_non_finite_response(survey):
    df = survey.copy()
    df.loc[0, 'log_chl'] = np.inf
    with pytest.raises(ValueError, match="log_chl"):
        build_design(df, get_variant('tp'))


def test_linear_predictor_numpy(survey):
    spec = get_variant('tp')
    design = build_design(survey, spec)
    u = np.linspace(-0.5, 0.5, design.n_lakes)
    params = {'b0': 1.0, 'b_nut': 0.5, 'u_lake': u}
    mu = linear_predictor(spec, params, design)
    expected = 1.0 + 0.5 * survey['log_tp'].to_numpy() + u[design.lake_idx]
    np.testing.assert_allclose(mu, expected)


def test_unseen_lake_and_bin_fallbacks(survey):
    spec = ModelSpec('binned', nutrient='tn', bin_column='temp_bin', binned=('b0',))
    design = build_design(survey, spec, lake_levels=pd.Index(['lake_001']),
                          bin_levels=pd.Index([0]))
    params = {'b0': np.array([2.0]), 'b_nut': 0.0, 'u_lake': np.array([1.0])}
    mu = linear_predictor(spec, params, design)

    in_bin = (survey['temp_bin'] == 0).to_numpy()
    known_lake = (survey['specific_lake_bin'] == 'lake_001').to_numpy()
    # Unknown bins fall back to the mean of the per-bin coefficients (here 2.0)
    np.testing.assert_allclose(mu, 2.0 + np.where(known_lake, 1.0, 0.0))
    assert in_bin.any() and (~in_bin).any()


def test_build_model_declares_variables(survey):
    spec = get_variant('mav_temp')
    design = build_design(survey, spec)
    model = build_model(spec, design)
    names = set(model.named_vars)
    for name in spec.coefficient_names() + ['u_lake', 'z_lake', 'y_obs']:
        assert name in names


def test_build_model_binned_shapes(survey):
    spec = get_variant('limiting_eutro_bin')
    design = build_design(survey, spec)
    model = build_model(spec, design)
    point = model.initial_point()
    assert point['b0'].shape == (design.n_bins,)
    assert point['b_nut'].shape == (design.n_bins,)

    inits = initial_values(spec, design)
    np.testing.assert_array_equal(inits['b0'], np.ones(design.n_bins))
    assert inits['sigma'] == 1.0


def test_build_model_rejects_unresolved_keys(survey):
    spec = get_variant('tp')
    design = build_design(survey, spec, lake_levels=pd.Index(['lake_001']))
    with pytest.raises(ValueError, match="unresolved"):
        build_model(spec, design)


def test_np_ratio_model(survey):
    design = build_design(survey, NP_RATIO_SPEC)
    model = build_np_ratio_model(design)
    assert {'mu_np', 'tau_np', 'sigma_np', 'mu_lake', 'log_np_obs'} <= set(model.named_vars)
    np.testing.assert_allclose(design.y, survey['log_np'])


def test_variants_registry_names_match():
    for name, spec in MODEL_VARIANTS.items():
        assert spec.name == name
