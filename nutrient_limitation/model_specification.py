"""
Model Specification Module

Declares the hierarchical chlorophyll-nutrient regressions fitted by the
analysis. Every variant shares one deterministic link:

    log(chl) = b0[bin] + b_nut[bin] * log(x) + sum(beta_k * z_k) + u_lake

where x is TP, TN, or the limiting nutrient

    x_ln = min(TP, TN / max(1, cr0[bin] + sum(cr_k * w_k)))

(Liebig's law of the minimum, with the critical TN:TP ratio floored at 1).

The link is written once against a math namespace (``xp``): numpy for
plug-in predictions, ``pymc.math`` when building the sampled model.

Variants differ only in which terms are included and which coefficients
are estimated per bin of a categorical covariate (see MODEL_VARIANTS).
"""

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple, Any

import numpy as np
import pandas as pd
import pymc as pm

try:
    from .config import COLS, PRIORS, CRITICAL_RATIO_FLOOR, INITIAL_VALUE
except ImportError:
    from config import COLS, PRIORS, CRITICAL_RATIO_FLOOR, INITIAL_VALUE


NUTRIENTS = ('tp', 'tn', 'limiting')
BINNABLE = ('b0', 'b_nut', 'cr0')


# =============================================================================
# SPECIFICATION AND DESIGN
# =============================================================================

@dataclass(frozen=True)
class ModelSpec:
    """
    Declarative description of one model variant.

    Attributes
    ----------
    name : str
        Experiment label
    nutrient : str
        'tp', 'tn' or 'limiting'
    covariates : tuple of str
        Columns entering the mean linearly (coefficient ``beta_<col>``)
    critical_ratio_terms : tuple of str
        Columns entering the critical ratio linearly (``cr_<col>``);
        only used when nutrient == 'limiting'
    bin_column : str, optional
        Categorical column defining bins for per-bin coefficients
    binned : tuple of str
        Subset of ('b0', 'b_nut', 'cr0') estimated per bin
    random_intercept : bool
        Include a per-lake random intercept
    response : str
        Response column (log scale)
    """
    name: str
    nutrient: str = 'limiting'
    covariates: Tuple[str, ...] = ()
    critical_ratio_terms: Tuple[str, ...] = ()
    bin_column: Optional[str] = None
    binned: Tuple[str, ...] = ()
    random_intercept: bool = True
    response: str = 'log_chl'

    def __post_init__(self):
        if self.nutrient not in NUTRIENTS:
            raise ValueError(f"nutrient must be one of {NUTRIENTS}, got {self.nutrient!r}")
        unknown = [b for b in self.binned if b not in BINNABLE]
        if unknown:
            raise ValueError(f"Cannot bin {unknown}; binnable coefficients are {BINNABLE}")
        if self.binned and self.bin_column is None:
            raise ValueError("binned coefficients require a bin_column")
        if not self.uses_critical_ratio and (self.critical_ratio_terms or 'cr0' in self.binned):
            raise ValueError("critical ratio terms require nutrient='limiting'")

    @property
    def uses_critical_ratio(self):
        return self.nutrient == 'limiting'

    def coefficient_names(self) -> List[str]:
        """Names of the monitored parameters, in reporting order."""
        names = ['b0', 'b_nut'] + [f'beta_{c}' for c in self.covariates]
        if self.uses_critical_ratio:
            names += ['cr0'] + [f'cr_{t}' for t in self.critical_ratio_terms]
        names.append('sigma')
        if self.random_intercept:
            names.append('sigma_lake')
        return names

    def with_covariates(self, covariates, name=None) -> 'ModelSpec':
        """Copy of this spec with a different covariate set."""
        return replace(self, covariates=tuple(covariates), name=name or self.name)


@dataclass
class ModelDesign:
    """
    Covariate arrays and group indices for one dataset.

    Lake and bin indices are resolved against explicit key levels; rows
    whose key is absent from the levels get index -1.
    """
    columns: Dict[str, np.ndarray]
    lake_idx: np.ndarray
    lake_levels: pd.Index
    bin_idx: Optional[np.ndarray] = None
    bin_levels: Optional[pd.Index] = None
    y: Optional[np.ndarray] = None
    keys: Dict[str, np.ndarray] = field(default_factory=dict)

    @property
    def n(self):
        return len(self.lake_idx)

    @property
    def n_lakes(self):
        return len(self.lake_levels)

    @property
    def n_bins(self):
        return 0 if self.bin_levels is None else len(self.bin_levels)


def _levels(values) -> pd.Index:
    return pd.Index(pd.unique(pd.Series(values).dropna())).sort_values()


def build_design(df, spec, lake_levels=None, bin_levels=None):
    """
    Assemble the arrays a model variant needs from a prepared DataFrame.

    Parameters
    ----------
    df : DataFrame
        Output of data_loading.prepare_observations()
    spec : ModelSpec
    lake_levels, bin_levels : Index, optional
        Keys to resolve group indices against. Pass the training design's
        levels when building a design for held-out data.

    Returns
    -------
    ModelDesign
    """
    lake_keys = df[COLS['lake']].to_numpy()
    lake_levels = _levels(lake_keys) if lake_levels is None else pd.Index(lake_levels)
    lake_idx = lake_levels.get_indexer(lake_keys)

    bin_idx = None
    bin_keys = None
    if spec.bin_column is not None:
        bin_keys = df[spec.bin_column].to_numpy()
        bin_levels = _levels(bin_keys) if bin_levels is None else pd.Index(bin_levels)
        bin_idx = bin_levels.get_indexer(bin_keys)
    else:
        bin_levels = None

    needed = {COLS['tp'], COLS['tn']} | set(spec.covariates) | set(spec.critical_ratio_terms)
    missing = [c for c in needed if c not in df.columns]
    if missing:
        raise KeyError(f"Columns required by model '{spec.name}' are missing: {missing}")

    columns = {
        'tp': df[COLS['tp']].to_numpy(dtype=float),
        'tn': df[COLS['tn']].to_numpy(dtype=float),
    }
    for col in set(spec.covariates) | set(spec.critical_ratio_terms):
        columns[col] = df[col].to_numpy(dtype=float)

    y = df[spec.response].to_numpy(dtype=float) if spec.response in df.columns else None

    # Every column entering the likelihood must be finite
    checked = dict(columns)
    if y is not None:
        checked[spec.response] = y
    bad = {name: int((~np.isfinite(values)).sum()) for name, values in checked.items()}
    bad = {name: n for name, n in sorted(bad.items()) if n}
    if bad:
        raise ValueError(f"Model '{spec.name}' has non-finite values in {bad} "
                         f"(column: rows); drop or impute them before fitting")

    keys = {'lake': lake_keys}
    if bin_keys is not None:
        keys['bin'] = bin_keys

    return ModelDesign(columns=columns, lake_idx=lake_idx, lake_levels=lake_levels,
                       bin_idx=bin_idx, bin_levels=bin_levels, y=y, keys=keys)


# =============================================================================
# DETERMINISTIC LINK
# =============================================================================

def _per_row(value, idx, fill, xp):
    """Expand a per-group vector to rows; unknown groups (-1) get ``fill``."""
    if xp is np:
        value = np.asarray(value, dtype=float)
        return np.where(idx >= 0, value[np.clip(idx, 0, None)], fill)
    return value[idx]


def _coefficient(name, spec, params, design, xp):
    value = params[name]
    if name in spec.binned:
        fill = float(np.mean(value)) if xp is np else 0.0
        return _per_row(value, design.bin_idx, fill, xp)
    return value


def limiting_nutrient(tp, tn, critical_ratio, xp=np):
    """
    Liebig limiting-nutrient value: min(TP, TN / critical_ratio).

    Examples
    --------
    >>> limiting_nutrient(np.array([0.05, 0.10]), np.array([1.0, 0.5]), 10.0)
    array([0.05, 0.05])
    """
    return xp.minimum(tp, tn / critical_ratio)


def critical_ratio(spec, params, design, xp=np):
    """Critical TN:TP ratio per row, floored at CRITICAL_RATIO_FLOOR."""
    ratio = _coefficient('cr0', spec, params, design, xp)
    for term in spec.critical_ratio_terms:
        ratio = ratio + params[f'cr_{term}'] * design.columns[term]
    return xp.maximum(CRITICAL_RATIO_FLOOR, ratio)


def nutrient_value(spec, params, design, xp=np):
    """Nutrient concentration entering the log-linear term."""
    if spec.nutrient == 'tp':
        return design.columns['tp']
    if spec.nutrient == 'tn':
        return design.columns['tn']
    ratio = critical_ratio(spec, params, design, xp=xp)
    return limiting_nutrient(design.columns['tp'], design.columns['tn'], ratio, xp=xp)


def linear_predictor(spec, params, design, xp=np):
    """
    Mean of the log-chlorophyll likelihood.

    Parameters
    ----------
    spec : ModelSpec
    params : dict
        Parameter name -> value (scalar, per-bin vector, or pymc variable).
        'u_lake' holds per-lake intercepts when spec.random_intercept.
    design : ModelDesign
    xp : module
        numpy or pymc.math

    Returns
    -------
    array or tensor of length design.n
    """
    mu = _coefficient('b0', spec, params, design, xp)
    slope = _coefficient('b_nut', spec, params, design, xp)
    mu = mu + slope * xp.log(nutrient_value(spec, params, design, xp=xp))

    for col in spec.covariates:
        mu = mu + params[f'beta_{col}'] * design.columns[col]

    if spec.random_intercept:
        mu = mu + _per_row(params['u_lake'], design.lake_idx, 0.0, xp)

    return mu


# =============================================================================
# PYMC MODELS
# =============================================================================

def _prior(name, prior, shape=None):
    kind, a, b = prior
    kwargs = {} if shape is None else {'shape': shape}
    if kind == 'normal':
        return pm.Normal(name, mu=a, sigma=b, **kwargs)
    if kind == 'uniform':
        return pm.Uniform(name, lower=a, upper=b, **kwargs)
    raise ValueError(f"Unknown prior kind {kind!r} for {name}")


def build_model(spec, design, priors=None) -> pm.Model:
    """
    Declare the joint probability model for a variant.

    No sampling happens here; pass the returned model to
    sampling.sample_posterior().

    Parameters
    ----------
    spec : ModelSpec
    design : ModelDesign
        Training design (must carry a response vector)
    priors : dict, optional
        Overrides config.PRIORS

    Returns
    -------
    pymc.Model
    """
    priors = PRIORS if priors is None else {**PRIORS, **priors}
    if design.y is None:
        raise ValueError(f"Design has no '{spec.response}' response to condition on")
    if (design.lake_idx < 0).any() or (design.bin_idx is not None and (design.bin_idx < 0).any()):
        raise ValueError("Training design contains rows with unresolved lake or bin keys")

    def shape_of(name):
        return design.n_bins if name in spec.binned else None

    with pm.Model() as model:
        params: Dict[str, Any] = {
            'b0': _prior('b0', priors['b0'], shape_of('b0')),
            'b_nut': _prior('b_nut', priors['b_nut'], shape_of('b_nut')),
        }
        for col in spec.covariates:
            params[f'beta_{col}'] = _prior(f'beta_{col}', priors['beta'])

        if spec.uses_critical_ratio:
            params['cr0'] = _prior('cr0', priors['cr0'], shape_of('cr0'))
            for term in spec.critical_ratio_terms:
                params[f'cr_{term}'] = _prior(f'cr_{term}', priors['cr_slope'])

        if spec.random_intercept:
            sigma_lake = _prior('sigma_lake', priors['sigma_lake'])
            z_lake = pm.Normal('z_lake', mu=0.0, sigma=1.0, shape=design.n_lakes)
            params['u_lake'] = pm.Deterministic('u_lake', z_lake * sigma_lake)

        sigma = _prior('sigma', priors['sigma'])
        mu = linear_predictor(spec, params, design, xp=pm.math)
        pm.Normal('y_obs', mu=mu, sigma=sigma, observed=design.y)

    return model


def initial_values(spec, design, value=INITIAL_VALUE):
    """Shared starting point: every coefficient and scale set to ``value``."""
    inits = {}
    for name in spec.coefficient_names():
        if name in spec.binned:
            inits[name] = np.full(design.n_bins, value, dtype=float)
        else:
            inits[name] = float(value)
    return inits


NP_RATIO_SPEC = ModelSpec(name='np_ratio', nutrient='tp', response='log_np')


def build_np_ratio_model(design, priors=None) -> pm.Model:
    """
    Grouped-intercept model of observed log(TN:TP).

        log_np ~ Normal(mu_lake[lake], sigma_np)
        mu_lake ~ Normal(mu_np, tau_np)

    ``mu_lake`` is each lake's true mean log N:P ratio, used by the
    limitation classifier.
    """
    priors = PRIORS if priors is None else {**PRIORS, **priors}
    if design.y is None:
        raise ValueError("Design has no 'log_np' response to condition on")

    with pm.Model() as model:
        mu_np = _prior('mu_np', priors['mu_np'])
        tau_np = _prior('tau_np', priors['tau_np'])
        z_np = pm.Normal('z_np', mu=0.0, sigma=1.0, shape=design.n_lakes)
        mu_lake = pm.Deterministic('mu_lake', mu_np + tau_np * z_np)
        sigma_np = _prior('sigma_np', priors['sigma_np'])
        pm.Normal('log_np_obs', mu=mu_lake[design.lake_idx], sigma=sigma_np,
                  observed=design.y)
    return model


def np_ratio_initial_values(value=INITIAL_VALUE):
    return {'mu_np': float(value), 'tau_np': float(value), 'sigma_np': float(value)}


# =============================================================================
# VARIANTS
# =============================================================================

MODEL_VARIANTS = {
    'tp': ModelSpec('tp', nutrient='tp'),
    'tn': ModelSpec('tn', nutrient='tn'),
    'limiting': ModelSpec('limiting', nutrient='limiting'),
    'limiting_eutro_bin': ModelSpec('limiting_eutro_bin', nutrient='limiting',
                                    bin_column=COLS['eutro_bin'], binned=('b0', 'b_nut')),
    'limiting_depth_bin': ModelSpec('limiting_depth_bin', nutrient='limiting',
                                    bin_column=COLS['depth_bin'], binned=('cr0',)),
    'limiting_temp_bin': ModelSpec('limiting_temp_bin', nutrient='limiting',
                                   bin_column=COLS['temp_bin'], binned=('cr0',)),
    # Critical ratio varying with depth (used by the limitation analysis)
    'mav': ModelSpec('mav', nutrient='limiting', critical_ratio_terms=('log_depth',)),
    'mav_temp': ModelSpec('mav_temp', nutrient='limiting',
                          critical_ratio_terms=('log_depth', COLS['temp'])),
    'mav_full': ModelSpec('mav_full', nutrient='limiting',
                          critical_ratio_terms=('log_depth',),
                          covariates=(COLS['temp'], 'log_depth', COLS['eutro'])),
}

# Covariates considered by backward variable selection
SELECTION_CANDIDATES = (COLS['temp'], 'log_depth', COLS['eutro'])


def get_variant(name) -> ModelSpec:
    """Look up a named variant."""
    if name not in MODEL_VARIANTS:
        raise ValueError(f"Unknown model variant {name!r}. Available: {list(MODEL_VARIANTS)}")
    return MODEL_VARIANTS[name]
