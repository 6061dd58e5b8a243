"""
Experiment Runner Module

One reusable fit → summarize → predict → evaluate routine shared by every
model variant, and a registry holding each experiment's results under its
own name.
"""

from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Any

import numpy as np
import pandas as pd
import arviz as az

try:
    from .config import CI_PROB, RHAT_THRESHOLD
    from .model_specification import (
        ModelSpec, ModelDesign, build_design, build_model, initial_values,
        build_np_ratio_model, np_ratio_initial_values, NP_RATIO_SPEC, get_variant
    )
    from .sampling import SamplerConfig, sample_posterior, posterior_means
    from .diagnostics import summarize_posterior, check_convergence
    from .model_validation import predict, evaluate_predictions, fraction_p_limited
except ImportError:
    from config import CI_PROB, RHAT_THRESHOLD
    from model_specification import (
        ModelSpec, ModelDesign, build_design, build_model, initial_values,
        build_np_ratio_model, np_ratio_initial_values, NP_RATIO_SPEC, get_variant
    )
    from sampling import SamplerConfig, sample_posterior, posterior_means
    from diagnostics import summarize_posterior, check_convergence
    from model_validation import predict, evaluate_predictions, fraction_p_limited


@dataclass
class ExperimentResult:
    """Everything one fitted variant produced."""
    name: str
    spec: ModelSpec
    design: ModelDesign
    summary: pd.DataFrame
    rhat: pd.Series
    converged: bool
    params: Dict[str, Any]
    metrics: Dict[str, float]
    idata: Optional[az.InferenceData] = None

    def row(self) -> Dict[str, Any]:
        """One-line record for comparison tables."""
        return {
            'experiment': self.name,
            'nutrient': self.spec.nutrient,
            'n_obs': self.metrics.get('n'),
            'r2': self.metrics.get('r2'),
            'rmse': self.metrics.get('rmse'),
            'frac_p_limited': self.metrics.get('frac_p_limited'),
            'max_rhat': float(self.rhat.max()) if len(self.rhat) else np.nan,
            'converged': self.converged,
        }


def run_experiment(spec, df, sampler_config=None, priors=None, ci_prob=CI_PROB,
                   keep_idata=True, verbose=True) -> ExperimentResult:
    """
    Fit one model variant and evaluate its plug-in predictions.

    Parameters
    ----------
    spec : ModelSpec
    df : DataFrame
        Prepared observations (training data)
    sampler_config : SamplerConfig, optional
    priors : dict, optional
        Overrides of config.PRIORS
    ci_prob : float
        Credible interval mass for the summary
    keep_idata : bool
        Keep the full posterior on the result
    verbose : bool

    Returns
    -------
    ExperimentResult
        Training-data R² (not cross-validated), RMSE and the fraction of
        P-limited observations are in ``metrics``
    """
    sampler_config = sampler_config or SamplerConfig()

    if verbose:
        print("\n" + "-" * 70)
        print(f"EXPERIMENT: {spec.name}")
        print("-" * 70)
        print(f"  n={len(df):,} observations, nutrient={spec.nutrient}, "
              f"covariates={list(spec.covariates) or 'none'}")

    design = build_design(df, spec)
    model = build_model(spec, design, priors=priors)
    idata = sample_posterior(model, sampler_config,
                             initvals=initial_values(spec, design), verbose=verbose)

    monitored = spec.coefficient_names()
    summary = summarize_posterior(idata, monitored, ci_prob=ci_prob)
    rhat = summary['gr_rhat']
    converged, _ = check_convergence(rhat, RHAT_THRESHOLD, label=spec.name, verbose=verbose)

    param_names = monitored + (['u_lake'] if spec.random_intercept else [])
    params = posterior_means(idata, param_names)

    pred = predict(spec, params, design)
    metrics = evaluate_predictions(design.y, pred)
    metrics['frac_p_limited'] = fraction_p_limited(spec, params, design)

    if verbose:
        print(f"  → R² (training) = {metrics['r2']:.3f}, RMSE = {metrics['rmse']:.3f}")
        if spec.uses_critical_ratio:
            print(f"  → P binding in {100 * metrics['frac_p_limited']:.1f}% of observations")

    return ExperimentResult(
        name=spec.name, spec=spec, design=design, summary=summary, rhat=rhat,
        converged=converged, params=params, metrics=metrics,
        idata=idata if keep_idata else None,
    )


def fit_np_ratio(df, sampler_config=None, priors=None, verbose=True) -> ExperimentResult:
    """
    Fit the grouped-intercept model of observed log(TN:TP).

    The result's ``params['mu_lake']`` holds each lake's posterior mean
    log N:P ratio; the draws stay on ``idata`` for the limitation analysis.
    """
    sampler_config = sampler_config or SamplerConfig()

    if verbose:
        print("\n" + "-" * 70)
        print("EXPERIMENT: np_ratio (grouped intercepts on log TN:TP)")
        print("-" * 70)

    design = build_design(df, NP_RATIO_SPEC)
    model = build_np_ratio_model(design, priors=priors)
    idata = sample_posterior(model, sampler_config, initvals=np_ratio_initial_values(),
                             verbose=verbose)

    monitored = ['mu_np', 'tau_np', 'sigma_np']
    summary = summarize_posterior(idata, monitored)
    rhat = summary['gr_rhat']
    converged, _ = check_convergence(rhat, RHAT_THRESHOLD, label='np_ratio', verbose=verbose)

    params = posterior_means(idata, monitored + ['mu_lake'])
    pred = np.asarray(params['mu_lake'])[design.lake_idx]
    metrics = evaluate_predictions(design.y, pred)
    metrics['frac_p_limited'] = np.nan

    return ExperimentResult(
        name='np_ratio', spec=NP_RATIO_SPEC, design=design, summary=summary,
        rhat=rhat, converged=converged, params=params, metrics=metrics, idata=idata,
    )


class ExperimentRegistry:
    """
    Named experiment results.

    Each variant's samples, constants and summaries live on its own
    ExperimentResult, so sequential runs cannot overwrite one another.

    Usage:
        registry = ExperimentRegistry(df, SamplerConfig(n_iter=2000, n_burnin=500))
        registry.run('mav')
        registry.run('tp')
        registry.comparison_table()
    """

    def __init__(self, df, sampler_config=None, priors=None, verbose=True):
        self.df = df
        self.sampler_config = sampler_config or SamplerConfig()
        self.priors = priors
        self.verbose = verbose
        self._results: Dict[str, ExperimentResult] = {}

    def run(self, spec, df=None, name=None, **kwargs) -> ExperimentResult:
        """Run a variant (ModelSpec or name from MODEL_VARIANTS) and store it."""
        if isinstance(spec, str):
            spec = get_variant(spec)
        if name is not None:
            spec = replace(spec, name=name)
        if spec.name in self._results:
            raise ValueError(f"Experiment '{spec.name}' already exists; pass a new name")

        result = run_experiment(
            spec, self.df if df is None else df,
            sampler_config=kwargs.pop('sampler_config', self.sampler_config),
            priors=kwargs.pop('priors', self.priors),
            verbose=kwargs.pop('verbose', self.verbose),
            **kwargs,
        )
        self._results[spec.name] = result
        return result

    def add(self, result):
        """Store an externally produced result under its own name."""
        if result.name in self._results:
            raise ValueError(f"Experiment '{result.name}' already exists")
        self._results[result.name] = result
        return result

    def __getitem__(self, name) -> ExperimentResult:
        return self._results[name]

    def __contains__(self, name):
        return name in self._results

    def __len__(self):
        return len(self._results)

    def names(self) -> List[str]:
        return list(self._results)

    def comparison_table(self) -> pd.DataFrame:
        """One row per experiment: fit statistics and convergence."""
        rows = [r.row() for r in self._results.values()]
        columns = ['experiment', 'nutrient', 'n_obs', 'r2', 'rmse',
                   'frac_p_limited', 'max_rhat', 'converged']
        return pd.DataFrame(rows, columns=columns)
