"""
MCMC Sampling Module

Draws posterior samples for a declared model with PyMC. Every run uses
several independent chains started from the same initial values; the
first ``n_burnin`` iterations of each chain are spent on tuning and
discarded.

Non-convergence is never raised here. Use diagnostics.check_convergence()
on the returned InferenceData and re-run with more iterations if needed.
"""

from dataclasses import dataclass, asdict
from typing import Dict, Optional, Any

import numpy as np
import pymc as pm
import arviz as az

try:
    from .config import SAMPLER_DEFAULTS, RANDOM_SEED
except ImportError:
    from config import SAMPLER_DEFAULTS, RANDOM_SEED


STEP_METHODS = ('nuts', 'metropolis')


@dataclass(frozen=True)
class SamplerConfig:
    """
    MCMC run settings.

    ``n_iter`` counts every iteration of a chain, burn-in included, so each
    chain keeps ``n_iter - n_burnin`` draws.
    """
    n_iter: int = SAMPLER_DEFAULTS['n_iter']
    n_burnin: int = SAMPLER_DEFAULTS['n_burnin']
    n_chains: int = SAMPLER_DEFAULTS['n_chains']
    step: str = SAMPLER_DEFAULTS['step']
    target_accept: float = SAMPLER_DEFAULTS['target_accept']
    cores: int = SAMPLER_DEFAULTS['cores']
    random_seed: Optional[int] = RANDOM_SEED

    def __post_init__(self):
        if self.n_chains < 1:
            raise ValueError(f"n_chains must be >= 1, got {self.n_chains}")
        if self.n_burnin < 0:
            raise ValueError(f"n_burnin must be >= 0, got {self.n_burnin}")
        if self.n_burnin >= self.n_iter:
            raise ValueError(f"n_burnin ({self.n_burnin}) must be smaller than "
                             f"n_iter ({self.n_iter})")
        if self.step not in STEP_METHODS:
            raise ValueError(f"step must be one of {STEP_METHODS}, got {self.step!r}")

    @property
    def n_draws(self):
        return self.n_iter - self.n_burnin

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def sample_posterior(model, config=None, initvals=None, verbose=True) -> az.InferenceData:
    """
    Run MCMC for a declared model.

    Parameters
    ----------
    model : pymc.Model
        From model_specification.build_model() or build_np_ratio_model()
    config : SamplerConfig, optional
    initvals : dict, optional
        Starting values shared by every chain
    verbose : bool
        Print progress messages

    Returns
    -------
    arviz.InferenceData
        Posterior group shaped (chain, draw, ...), burn-in excluded
    """
    config = config or SamplerConfig()

    if verbose:
        print(f"  Sampling: {config.n_chains} chains × {config.n_iter} iterations "
              f"({config.n_burnin} burn-in, step={config.step})")

    kwargs = dict(
        draws=config.n_draws,
        tune=config.n_burnin,
        chains=config.n_chains,
        cores=config.cores,
        random_seed=config.random_seed,
        progressbar=False,
        return_inferencedata=True,
        compute_convergence_checks=False,
    )

    with model:
        if config.step == 'metropolis':
            kwargs['step'] = pm.Metropolis()
        else:
            kwargs['target_accept'] = config.target_accept
            # No jitter so every chain starts from the shared initial values
            kwargs['init'] = 'adapt_diag'

        if initvals:
            kwargs['initvals'] = initvals

        idata = pm.sample(**kwargs)

    return idata


def posterior_means(idata, var_names=None) -> Dict[str, Any]:
    """
    Posterior mean of each variable over chains and draws.

    Returns
    -------
    dict
        name -> float (scalars) or ndarray (vector parameters)
    """
    posterior = idata.posterior
    var_names = list(posterior.data_vars) if var_names is None else var_names
    means = {}
    for name in var_names:
        value = posterior[name].mean(dim=('chain', 'draw')).values
        means[name] = float(value) if np.ndim(value) == 0 else np.asarray(value, dtype=float)
    return means


def stacked_draws(idata, var_name) -> np.ndarray:
    """All post-burn-in draws of one variable, shape (chain * draw, ...)."""
    values = np.asarray(idata.posterior[var_name].values, dtype=float)
    return values.reshape((-1,) + values.shape[2:])
