"""
Tests for goodness of fit, cross-validation and backward selection.

Fitting is replaced by a fixed-parameter stand-in so these tests exercise
the bookkeeping without running MCMC.
"""

import numpy as np
import pandas as pd
import pytest

from nutrient_limitation.experiments import ExperimentResult
from nutrient_limitation.model_specification import get_variant, build_design
from nutrient_limitation.model_validation import (
    r_squared, rmse, evaluate_predictions, predict, fraction_p_limited,
    cross_validate, backward_variable_selection
)

TRUE_PARAMS = {'b0': 4.0, 'b_nut': 0.9, 'cr0': 10.0, 'sigma': 0.25, 'sigma_lake': 0.2}


def fixed_run(spec, df, sampler_config=None, priors=None, verbose=True, **kwargs):
    design = build_design(df, spec)
    params = {name: TRUE_PARAMS.get(name, 0.0) for name in spec.coefficient_names()}
    params['u_lake'] = np.zeros(design.n_lakes)
    metrics = evaluate_predictions(design.y, predict(spec, params, design))
    metrics['frac_p_limited'] = fraction_p_limited(spec, params, design)
    return ExperimentResult(name=spec.name, spec=spec, design=design,
                            summary=pd.DataFrame(), rhat=pd.Series(dtype=float),
                            converged=True, params=params, metrics=metrics)


# =============================================================================
# GOODNESS OF FIT
# =============================================================================

def test_perfect_fit():
    y = np.array([1.0, 2.0, 3.5])
    assert r_squared(y, y) == 1.0
    assert rmse(y, y) == 0.0


def test_r2_bounds_and_rmse_positive():
    rng = np.random.default_rng(0)
    y = rng.normal(size=100)
    pred = y + rng.normal(scale=0.5, size=100)
    assert r_squared(y, pred) < 1.0
    assert rmse(y, pred) > 0.0
    # Worse than predicting the mean
    assert r_squared(y, -y) < 0.0


def test_r2_rmse_values():
    y = np.array([1.0, 2.0, 3.0])
    pred = np.array([1.0, 2.0, 4.0])
    assert r_squared(y, pred) == pytest.approx(1 - 1.0 / 2.0)
    assert rmse(y, pred) == pytest.approx(np.sqrt(1.0 / 3.0))


def test_constant_observations_have_undefined_r2():
    assert np.isnan(r_squared([2.0, 2.0], [1.0, 3.0]))


def test_length_mismatch_raises():
    with pytest.raises(ValueError):
        rmse([1.0, 2.0], [1.0])


def test_evaluate_skips_non_finite():
    metrics = evaluate_predictions([1.0, np.nan, 3.0, 4.0], [1.0, 2.0, 3.0, 4.0])
    assert metrics == {'n': 3, 'r2': 1.0, 'rmse': 0.0}


def test_fraction_p_limited(survey):
    spec = get_variant('limiting')
    design = build_design(survey, spec)
    frac = fraction_p_limited(spec, {'cr0': 10.0}, design)
    expected = np.mean(survey['tp'] <= survey['tn'] / 10.0)
    assert frac == pytest.approx(expected)
    assert fraction_p_limited(spec, {'cr0': 1e6}, design) == 0.0
    assert np.isnan(fraction_p_limited(get_variant('tp'), {}, design))


# =============================================================================
# CROSS-VALIDATION
# =============================================================================

def test_cross_validation_folds_and_pooling(survey):
    spec = get_variant('limiting')
    cv = cross_validate(spec, survey, run_fn=fixed_run, verbose=False)

    folds = cv['folds']
    assert list(folds['fold']) == [2007, 2012, 2017]
    assert folds['n_test'].sum() == len(survey)
    assert (folds['n_train'] + folds['n_test'] == len(survey)).all()
    assert (folds['frac_unseen_lakes'] == 0).all()

    preds = cv['predictions']
    assert cv['pooled'] == evaluate_predictions(preds['observed'], preds['predicted'])

    # Fixed parameters: pooled held-out predictions equal one full-data evaluation
    full = fixed_run(spec, survey)
    assert cv['pooled']['r2'] == pytest.approx(full.metrics['r2'])
    assert cv['pooled']['rmse'] == pytest.approx(full.metrics['rmse'])


def test_cross_validation_per_fold_metrics(survey):
    cv = cross_validate(get_variant('tp'), survey, run_fn=fixed_run, verbose=False)
    preds = cv['predictions']
    for _, row in cv['folds'].iterrows():
        fold = preds[preds['fold'] == row['fold']]
        assert row['test_r2'] == pytest.approx(r_squared(fold['observed'], fold['predicted']))
        assert row['test_rmse'] == pytest.approx(rmse(fold['observed'], fold['predicted']))


def test_cross_validation_needs_two_folds(survey):
    one_year = survey.assign(survey_year=2012)
    with pytest.raises(ValueError, match="at least 2 folds"):
        cross_validate(get_variant('tp'), one_year, run_fn=fixed_run, verbose=False)


# =============================================================================
# BACKWARD SELECTION
# =============================================================================

EFFECTS = {
    'avg_temp': (0.20, 0.05),     # clearly non-zero
    'log_depth': (0.01, 0.10),    # weakest
    'log_eutro': (0.05, 0.10),    # spans zero
}


def summary_run(spec, df, sampler_config=None, priors=None, verbose=True, **kwargs):
    result = fixed_run(spec, df)
    rows = {}
    for col in spec.covariates:
        mean, sd = EFFECTS[col]
        rows[f'beta_{col}'] = {'mean': mean, 'sd': sd,
                               'ci_low': mean - 1.96 * sd, 'ci_high': mean + 1.96 * sd}
    result.summary = pd.DataFrame.from_dict(rows, orient='index',
                                            columns=['mean', 'sd', 'ci_low', 'ci_high'])
    return result


def test_backward_selection_drops_weakest_first(survey):
    final, history = backward_variable_selection(
        get_variant('mav'), survey, candidates=['avg_temp', 'log_depth', 'log_eutro'],
        run_fn=summary_run, verbose=False)

    assert list(history['dropped']) == ['log_depth', 'log_eutro', None]
    assert final.spec.covariates == ('avg_temp',)
    assert history['covariates'].iloc[0] == ('avg_temp', 'log_depth', 'log_eutro')


def test_backward_selection_can_remove_everything(survey):
    final, history = backward_variable_selection(
        get_variant('tp'), survey, candidates=['log_eutro'],
        run_fn=summary_run, verbose=False)
    assert final.spec.covariates == ()
    assert list(history['dropped']) == ['log_eutro', None]
