"""
Nutrient Limitation Module
==========================

Estimates, for every lake, the probability that phosphorus rather than
nitrogen limits algal growth.

Two independently fitted posteriors are combined:

1. The depth-dependent critical-ratio model ('mav' variant) gives a
   posterior for each lake's critical TN:TP ratio, evaluated at the
   lake's mean depth.
2. The grouped-intercept N:P model gives a posterior for each lake's true
   mean TN:TP ratio.

A fixed number of draws is resampled from each posterior and the draws
are paired. The probability of P limitation is the share of pairs in
which the lake's N:P ratio exceeds its critical ratio:

    Pr(P-limited) ≈ mean_s [ np_ratio_s > critical_ratio_s ]

Pairs are matched by lake key, never by position. Mismatched lake sets or
draw counts raise ValueError.
"""

from pathlib import Path

import numpy as np
import pandas as pd

try:
    from .config import (
        COLS, CRITICAL_RATIO_FLOOR, LIMITATION_DEFAULTS, LIMITATION_CSV, RANDOM_SEED
    )
    from .data_loading import lake_table
    from .sampling import stacked_draws
except ImportError:
    from config import (
        COLS, CRITICAL_RATIO_FLOOR, LIMITATION_DEFAULTS, LIMITATION_CSV, RANDOM_SEED
    )
    from data_loading import lake_table
    from sampling import stacked_draws


# =============================================================================
# POSTERIOR DRAWS PER LAKE
# =============================================================================

def sample_critical_ratio_draws(idata, spec, lakes, n_draws=LIMITATION_DEFAULTS['n_draws'],
                                rng=None):
    """
    Resample critical-ratio draws for each lake.

    Parameters
    ----------
    idata : InferenceData
        Posterior of a limiting-nutrient variant
    spec : ModelSpec
        The variant that produced ``idata``; cr0 must be global
    lakes : DataFrame
        Lake-level covariates indexed by lake key (data_loading.lake_table)
    n_draws : int
        Draws to resample (with replacement)
    rng : numpy.random.Generator, optional

    Returns
    -------
    DataFrame
        Shape (n_draws, n_lakes); columns are lake keys
    """
    if not spec.uses_critical_ratio:
        raise ValueError(f"Model '{spec.name}' has no critical ratio")
    if 'cr0' in spec.binned:
        raise ValueError(f"Model '{spec.name}' estimates cr0 per bin; a lake-level "
                         f"critical ratio needs a global cr0")
    rng = rng if rng is not None else np.random.default_rng(RANDOM_SEED)

    cr0 = stacked_draws(idata, 'cr0')
    pick = rng.integers(0, cr0.shape[0], size=n_draws)

    ratio = np.repeat(cr0[pick][:, None], len(lakes), axis=1)
    for term in spec.critical_ratio_terms:
        slope = stacked_draws(idata, f'cr_{term}')[pick]
        ratio = ratio + slope[:, None] * lakes[term].to_numpy(dtype=float)[None, :]

    ratio = np.maximum(CRITICAL_RATIO_FLOOR, ratio)
    return pd.DataFrame(ratio, columns=lakes.index)


def sample_np_ratio_draws(idata, lake_levels, n_draws=LIMITATION_DEFAULTS['n_draws'],
                          rng=None):
    """
    Resample each lake's true mean TN:TP ratio from the N:P model.

    Returns
    -------
    DataFrame
        Shape (n_draws, n_lakes) of exp(mu_lake); columns are lake keys
    """
    rng = rng if rng is not None else np.random.default_rng(RANDOM_SEED)
    mu_lake = stacked_draws(idata, 'mu_lake')
    if mu_lake.shape[1] != len(lake_levels):
        raise ValueError(f"mu_lake has {mu_lake.shape[1]} lakes but "
                         f"{len(lake_levels)} lake keys were given")
    pick = rng.integers(0, mu_lake.shape[0], size=n_draws)
    return pd.DataFrame(np.exp(mu_lake[pick]), columns=pd.Index(lake_levels))


# =============================================================================
# PROBABILITY OF P LIMITATION
# =============================================================================

def limitation_probability(critical, np_ratio):
    """
    Monte Carlo probability that each lake is phosphorus limited.

    Parameters
    ----------
    critical : DataFrame
        Critical-ratio draws (draws × lakes)
    np_ratio : DataFrame
        N:P ratio draws (draws × lakes)

    Returns
    -------
    DataFrame
        Indexed by lake key: prob_p_limited, mean_critical_ratio,
        mean_np_ratio

    Raises
    ------
    ValueError
        If draw counts differ, lake keys repeat, or the two lake sets differ
    """
    if len(critical) != len(np_ratio):
        raise ValueError(f"Draw counts differ: {len(critical)} critical-ratio draws "
                         f"vs {len(np_ratio)} N:P draws")
    for label, frame in (('critical-ratio', critical), ('N:P', np_ratio)):
        if frame.columns.has_duplicates:
            raise ValueError(f"Duplicate lake keys in {label} draws")

    only_critical = critical.columns.difference(np_ratio.columns)
    only_np = np_ratio.columns.difference(critical.columns)
    if len(only_critical) or len(only_np):
        raise ValueError(f"Lake keys do not match: {len(only_critical)} only in "
                         f"critical-ratio draws, {len(only_np)} only in N:P draws")

    np_aligned = np_ratio[critical.columns]
    exceeds = np_aligned.to_numpy() > critical.to_numpy()

    summary = pd.DataFrame({
        'prob_p_limited': exceeds.mean(axis=0),
        'mean_critical_ratio': critical.mean(axis=0).to_numpy(),
        'mean_np_ratio': np_aligned.mean(axis=0).to_numpy(),
    }, index=critical.columns)
    summary.index.name = COLS['lake']
    return summary


def classify_limitation(prob, lower=LIMITATION_DEFAULTS['lower'],
                        upper=LIMITATION_DEFAULTS['upper']):
    """
    Label lakes from their P-limitation probability.

    'N' below ``lower``, 'P' above ``upper``, 'co-limited' in between.
    """
    if not 0 <= lower <= upper <= 1:
        raise ValueError(f"Need 0 <= lower <= upper <= 1, got {lower}, {upper}")
    prob = pd.Series(prob)
    labels = np.select([prob < lower, prob > upper], ['N', 'P'], default='co-limited')
    return pd.Series(labels, index=prob.index, name='limitation_class')


def run_limitation_analysis(df, mav_result, np_result,
                            n_draws=LIMITATION_DEFAULTS['n_draws'], seed=RANDOM_SEED,
                            lower=LIMITATION_DEFAULTS['lower'],
                            upper=LIMITATION_DEFAULTS['upper'], verbose=True):
    """
    Per-lake probability of P limitation from two fitted experiments.

    Parameters
    ----------
    df : DataFrame
        Prepared observations both models were fitted to
    mav_result : ExperimentResult
        Fit of a limiting-nutrient variant with a global cr0 (e.g. 'mav')
    np_result : ExperimentResult
        From experiments.fit_np_ratio()
    n_draws : int
        Paired draws per lake
    seed : int
    lower, upper : float
        Classification thresholds
    verbose : bool

    Returns
    -------
    DataFrame
        One row per lake with prob_p_limited, mean_critical_ratio,
        mean_np_ratio, lake_depth, lake_log_eutro and limitation_class
    """
    if mav_result.idata is None or np_result.idata is None:
        raise ValueError("Both experiments must keep their posterior (keep_idata=True)")

    if verbose:
        print("\n" + "=" * 70)
        print("NUTRIENT LIMITATION PROBABILITY")
        print("=" * 70)
        print(f"  Critical ratio from '{mav_result.name}', N:P from '{np_result.name}'")
        print(f"  Pairing {n_draws:,} resampled draws per lake")

    rng = np.random.default_rng(seed)
    lakes = lake_table(df)
    critical = sample_critical_ratio_draws(mav_result.idata, mav_result.spec, lakes,
                                           n_draws=n_draws, rng=rng)
    np_draws = sample_np_ratio_draws(np_result.idata, np_result.design.lake_levels,
                                     n_draws=n_draws, rng=rng)

    summary = limitation_probability(critical, np_draws)
    summary['lake_depth'] = lakes['depth']
    summary['lake_log_eutro'] = lakes[COLS['eutro']]
    summary['limitation_class'] = classify_limitation(summary['prob_p_limited'],
                                                      lower=lower, upper=upper)

    if verbose:
        counts = summary['limitation_class'].value_counts()
        for label in ['P', 'co-limited', 'N']:
            n = int(counts.get(label, 0))
            pct = 100 * n / len(summary) if len(summary) else 0
            print(f"    {label:12s}: {n:6,} lakes ({pct:5.1f}%)")

    return summary


def export_limitation_csv(df, lake_summary, path=None, verbose=True):
    """
    Join per-lake limitation results onto every observation and write CSV.

    Parameters
    ----------
    df : DataFrame
        Observations (all original columns are kept)
    lake_summary : DataFrame
        From run_limitation_analysis(), indexed by lake key
    path : str, optional
        Defaults to config.LIMITATION_CSV

    Returns
    -------
    DataFrame
        The joined table that was written
    """
    path = Path(path or LIMITATION_CSV)
    path.parent.mkdir(parents=True, exist_ok=True)

    joined = df.merge(lake_summary, left_on=COLS['lake'], right_index=True,
                      how='left', validate='many_to_one')
    joined.to_csv(path, index=False)

    if verbose:
        print(f"  Wrote {len(joined):,} rows to {path}")
    return joined
