"""
Model Validation and Selection Module

Plug-in prediction, goodness of fit, survey-year cross-validation and
backward variable selection for the chlorophyll-nutrient models.

**Scientific Problem:**
R² computed on the data a model was fitted to overstates predictive
skill, and a model carrying covariates whose effects are indistinguishable
from zero is harder to interpret without predicting any better.

**Solution:**
1. Evaluate plug-in predictions (posterior means through the
   deterministic link) with R² and RMSE
2. Hold out one survey year at a time, fit on the remaining years and
   score the held-out year separately from the training fit
3. Drop covariates whose credible interval contains zero, one at a time,
   refitting after every removal
"""

from dataclasses import replace
from typing import Dict, List, Optional, Any

import numpy as np
import pandas as pd

try:
    from .config import FOLD_COLUMN, CI_PROB
    from .model_specification import (
        build_design, linear_predictor, critical_ratio, SELECTION_CANDIDATES
    )
except ImportError:
    from config import FOLD_COLUMN, CI_PROB
    from model_specification import (
        build_design, linear_predictor, critical_ratio, SELECTION_CANDIDATES
    )


# =============================================================================
# GOODNESS OF FIT
# =============================================================================

def _paired(observed, predicted):
    obs = np.asarray(observed, dtype=float).ravel()
    pred = np.asarray(predicted, dtype=float).ravel()
    if obs.shape != pred.shape:
        raise ValueError(f"observed and predicted differ in length: "
                         f"{obs.size} vs {pred.size}")
    keep = np.isfinite(obs) & np.isfinite(pred)
    return obs[keep], pred[keep]


def r_squared(observed, predicted) -> float:
    """
    Coefficient of determination, 1 - SSR / SST.

    At most 1 (perfect fit); negative when predictions are worse than the
    observed mean. NaN when the observations have no variance.
    """
    obs, pred = _paired(observed, predicted)
    ss_res = np.sum((obs - pred) ** 2)
    ss_tot = np.sum((obs - obs.mean()) ** 2) if obs.size else 0.0
    if ss_tot == 0:
        return np.nan
    return float(1 - ss_res / ss_tot)


def rmse(observed, predicted) -> float:
    """Root-mean-squared residual."""
    obs, pred = _paired(observed, predicted)
    if obs.size == 0:
        return np.nan
    return float(np.sqrt(np.mean((obs - pred) ** 2)))


def evaluate_predictions(observed, predicted) -> Dict[str, float]:
    """R², RMSE and the number of finite pairs they were computed on."""
    obs, pred = _paired(observed, predicted)
    return {
        'n': int(obs.size),
        'r2': r_squared(obs, pred),
        'rmse': rmse(obs, pred),
    }


# =============================================================================
# PLUG-IN PREDICTION
# =============================================================================

def predict(spec, params, design) -> np.ndarray:
    """
    Point predictions on the log scale from posterior-mean parameters.

    Lakes or bins absent from the training data contribute no random
    intercept and the mean per-bin coefficient respectively.
    """
    return np.asarray(linear_predictor(spec, params, design, xp=np), dtype=float)


def fraction_p_limited(spec, params, design) -> float:
    """
    Share of observations where phosphorus is the binding minimum.

    TP is binding when TP <= TN / critical_ratio. NaN for models without
    a limiting-nutrient term.
    """
    if not spec.uses_critical_ratio:
        return np.nan
    ratio = critical_ratio(spec, params, design, xp=np)
    p_binding = design.columns['tp'] <= design.columns['tn'] / ratio
    return float(np.mean(p_binding))


# =============================================================================
# CROSS-VALIDATION
# =============================================================================

def _default_run_fn():
    try:
        from .experiments import run_experiment
    except ImportError:
        from experiments import run_experiment
    return run_experiment


def cross_validate(spec, df, fold_column=FOLD_COLUMN, sampler_config=None,
                   priors=None, run_fn=None, verbose=True) -> Dict[str, Any]:
    """
    Leave-one-fold-out validation (folds = survey years by default).

    Each fold is predicted from a model fitted to every other fold. Lake
    and bin keys of the held-out rows are resolved against the training
    design, so positional alignment between fits never matters.

    Parameters
    ----------
    spec : ModelSpec
    df : DataFrame
        Prepared observations
    fold_column : str
        Column whose distinct values define folds. Rows with a missing
        fold value are left out.
    sampler_config : SamplerConfig, optional
    priors : dict, optional
    run_fn : callable, optional
        ``run_fn(spec, df, sampler_config=..., priors=..., verbose=...)``
        returning an ExperimentResult. Defaults to
        experiments.run_experiment.
    verbose : bool

    Returns
    -------
    dict
        'folds': DataFrame with training and held-out metrics per fold
        'pooled': metrics over all held-out residuals concatenated
        'predictions': DataFrame of held-out observed/predicted values
    """
    run_fn = run_fn or _default_run_fn()

    usable = df[df[fold_column].notna()]
    folds = sorted(usable[fold_column].unique())
    if len(folds) < 2:
        raise ValueError(f"Cross-validation needs at least 2 folds in '{fold_column}', "
                         f"found {len(folds)}")

    if verbose:
        print("\n" + "=" * 70)
        print(f"CROSS-VALIDATION: {spec.name} ({len(folds)} folds on '{fold_column}')")
        print("=" * 70)
        n_skipped = len(df) - len(usable)
        if n_skipped:
            print(f"  {n_skipped:,} rows without a fold value left out")

    rows = []
    held_out = []
    for fold in folds:
        test_mask = usable[fold_column] == fold
        train, test = usable[~test_mask], usable[test_mask]

        if verbose:
            print(f"\n  Fold {fold}: train n={len(train):,}, held-out n={len(test):,}")

        fold_spec = replace(spec, name=f"{spec.name}_cv_{fold}")
        result = run_fn(fold_spec, train, sampler_config=sampler_config,
                        priors=priors, verbose=verbose)

        test_design = build_design(test, spec,
                                   lake_levels=result.design.lake_levels,
                                   bin_levels=result.design.bin_levels)
        pred = predict(spec, result.params, test_design)
        test_metrics = evaluate_predictions(test_design.y, pred)

        rows.append({
            'fold': fold,
            'n_train': len(train),
            'n_test': len(test),
            'train_r2': result.metrics['r2'],
            'train_rmse': result.metrics['rmse'],
            'test_r2': test_metrics['r2'],
            'test_rmse': test_metrics['rmse'],
            'frac_unseen_lakes': float(np.mean(test_design.lake_idx < 0)),
        })
        held_out.append(pd.DataFrame({
            'fold': fold,
            'observed': test_design.y,
            'predicted': pred,
        }, index=test.index))

        if verbose:
            print(f"  → train R²={result.metrics['r2']:.3f}, "
                  f"held-out R²={test_metrics['r2']:.3f}, RMSE={test_metrics['rmse']:.3f}")

    predictions = pd.concat(held_out)
    pooled = evaluate_predictions(predictions['observed'], predictions['predicted'])

    if verbose:
        print(f"\n  Pooled held-out: R²={pooled['r2']:.3f}, RMSE={pooled['rmse']:.3f} "
              f"(n={pooled['n']:,})")

    return {
        'folds': pd.DataFrame(rows),
        'pooled': pooled,
        'predictions': predictions,
    }


# =============================================================================
# BACKWARD VARIABLE SELECTION
# =============================================================================

def backward_variable_selection(spec, df, candidates=SELECTION_CANDIDATES,
                                ci_prob=CI_PROB, sampler_config=None, priors=None,
                                run_fn=None, verbose=True):
    """
    Iteratively drop covariates whose credible interval contains zero.

    At each step the model is refitted with the remaining covariates.
    Among coefficients whose interval spans zero, the one with the
    smallest |mean| / sd is removed. Selection stops when every remaining
    coefficient excludes zero or no covariates remain.

    Parameters
    ----------
    spec : ModelSpec
        Base model; its own covariates are replaced by ``candidates``
    df : DataFrame
    candidates : sequence of str
        Starting covariate columns
    ci_prob : float
        Credible interval mass
    sampler_config, priors, run_fn, verbose
        As for cross_validate()

    Returns
    -------
    (ExperimentResult, DataFrame)
        Final fit and one history row per step
    """
    run_fn = run_fn or _default_run_fn()
    current: List[str] = list(candidates)
    history = []
    step = 0

    if verbose:
        print("\n" + "=" * 70)
        print(f"BACKWARD VARIABLE SELECTION: {spec.name}")
        print("=" * 70)
        print(f"  Candidates: {current}")

    while True:
        step += 1
        trial = spec.with_covariates(current, name=f"{spec.name}_select_{step}")
        result = run_fn(trial, df, sampler_config=sampler_config, priors=priors,
                        verbose=verbose, ci_prob=ci_prob)

        record = {
            'step': step,
            'covariates': tuple(current),
            'r2': result.metrics['r2'],
            'rmse': result.metrics['rmse'],
            'dropped': None,
        }

        if not current:
            history.append(record)
            break

        coefs = result.summary.loc[[f'beta_{c}' for c in current]]
        spans_zero = (coefs['ci_low'] <= 0) & (coefs['ci_high'] >= 0)
        if not spans_zero.any():
            history.append(record)
            break

        strength = coefs['mean'].abs() / coefs['sd']
        weakest = strength[spans_zero].idxmin()
        dropped = weakest[len('beta_'):]
        record['dropped'] = dropped
        history.append(record)
        current.remove(dropped)

        if verbose:
            print(f"  Step {step}: dropped '{dropped}' "
                  f"(|mean|/sd = {strength[weakest]:.2f}, interval spans 0)")

    if verbose:
        print(f"  Selected covariates: {current if current else 'none'}")

    return result, pd.DataFrame(history)
