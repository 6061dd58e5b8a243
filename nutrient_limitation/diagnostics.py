"""
Convergence Diagnostics Module

Potential scale reduction (Gelman-Rubin R-hat) and posterior summaries.

**Scientific Problem:**
MCMC draws only approximate the posterior once chains have mixed. Chains
started from the same point can agree with each other long before they
have explored the distribution, so the check compares between-chain and
within-chain variance across several chains.

**Method:**
For m chains of n draws, with chain means x̄_j and chain variances s²_j:

    W = mean(s²_j)
    B = n * var(x̄_j)
    V = (n - 1) / n * W + B / n
    R = sqrt(V / W)

Values near 1.0 indicate acceptable mixing. The check is advisory: poor
values are reported, never raised.
"""

import warnings
from typing import List, Tuple, Any

import numpy as np
import pandas as pd
import arviz as az

try:
    from .config import RHAT_THRESHOLD, CI_PROB
except ImportError:
    from config import RHAT_THRESHOLD, CI_PROB


def gelman_rubin(chains) -> Any:
    """
    Potential scale reduction factor.

    Parameters
    ----------
    chains : array-like, shape (n_chains, n_draws, ...)
        Post-burn-in draws; trailing dimensions are treated elementwise

    Returns
    -------
    float or ndarray
        R-hat per element. Exactly 1.0 when the between-chain variance is
        zero (e.g. identical chains); inf when chains are internally
        constant but disagree with each other.
    """
    x = np.asarray(chains, dtype=float)
    if x.ndim < 2:
        raise ValueError("chains must have shape (n_chains, n_draws, ...)")
    m, n = x.shape[:2]
    if m < 2:
        raise ValueError(f"Gelman-Rubin needs at least 2 chains, got {m}")
    if n < 2:
        raise ValueError(f"Gelman-Rubin needs at least 2 draws per chain, got {n}")

    chain_means = x.mean(axis=1)
    within = x.var(axis=1, ddof=1).mean(axis=0)
    between = n * chain_means.var(axis=0, ddof=1)
    var_hat = (n - 1) / n * within + between / n

    with np.errstate(divide='ignore', invalid='ignore'):
        rhat = np.sqrt(var_hat / within)
    rhat = np.where(between == 0, 1.0, rhat)
    rhat = np.where((within == 0) & (between > 0), np.inf, rhat)

    return float(rhat) if rhat.ndim == 0 else rhat


def _element_labels(name, shape):
    if not shape:
        return [name]
    return [f"{name}[{', '.join(str(i) for i in idx)}]" for idx in np.ndindex(*shape)]


def gelman_rubin_table(idata, var_names) -> pd.Series:
    """
    R-hat for every scalar element of the named variables.

    Labels follow arviz conventions (``b_nut[0]``) so the result lines up
    with arviz.summary() rows.
    """
    values = {}
    for name in var_names:
        draws = np.asarray(idata.posterior[name].values, dtype=float)
        rhat = np.ravel(gelman_rubin(draws))
        for label, value in zip(_element_labels(name, draws.shape[2:]), rhat):
            values[label] = float(value)
    return pd.Series(values, name='gr_rhat')


def check_convergence(rhat, threshold=RHAT_THRESHOLD, label=None,
                      verbose=True) -> Tuple[bool, List[str]]:
    """
    Flag parameters whose R-hat exceeds ``threshold``.

    Parameters
    ----------
    rhat : Series
        From gelman_rubin_table()
    threshold : float
    label : str, optional
        Experiment name used in messages
    verbose : bool

    Returns
    -------
    (bool, list of str)
        Whether every parameter passed, and the labels that did not
    """
    rhat = pd.Series(rhat)
    offenders = [str(k) for k, v in rhat.items() if not (v <= threshold)]
    ok = not offenders
    prefix = f"{label}: " if label else ""

    if not ok:
        warnings.warn(f"{prefix}R-hat above {threshold} for {offenders}; "
                      f"chains may not have converged")

    if verbose:
        max_rhat = rhat.max() if len(rhat) else np.nan
        print(f"  → {prefix}Convergence (max R-hat): {max_rhat:.3f} {'✓' if ok else '⚠'}")
        for name in offenders:
            print(f"      {name}: {rhat[name]:.3f}")

    return ok, offenders


def summarize_posterior(idata, var_names, ci_prob=CI_PROB) -> pd.DataFrame:
    """
    Posterior mean, SD and highest-density interval per parameter.

    Wraps arviz.summary() and appends the classic Gelman-Rubin statistic.

    Returns
    -------
    DataFrame
        Index: parameter labels. Columns include mean, sd, ci_low, ci_high,
        ess_bulk, r_hat (arviz rank-normalized) and gr_rhat.
    """
    summ = az.summary(idata, var_names=list(var_names), hdi_prob=ci_prob,
                      round_to=None)
    hdi_cols = [c for c in summ.columns if c.startswith('hdi_')]
    summ = summ.rename(columns={hdi_cols[0]: 'ci_low', hdi_cols[1]: 'ci_high'})

    if idata.posterior.sizes.get('chain', 1) >= 2 and idata.posterior.sizes.get('draw', 1) >= 2:
        summ = summ.join(gelman_rubin_table(idata, var_names), how='left')
    else:
        summ['gr_rhat'] = np.nan
    return summ
