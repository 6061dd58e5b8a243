"""
Data Loading Module for the Chlorophyll-Nutrient Analysis
==========================================================

This module handles loading and preparing the lake survey dataset:
- Reading bnla_final.csv and checking its column set
- Deriving log-scale response and covariates
- Assigning each visit to its survey year (cross-validation folds)
- Collapsing visits to one row per lake

Dependencies:
- pandas
- numpy
"""

import warnings
import numpy as np
import pandas as pd

# Handle imports for both package and direct execution
try:
    from .config import (
        DATA_PATH, COLS, REQUIRED_COLUMNS, YEAR_COLUMNS, SURVEY_PREFIXES
    )
except ImportError:
    from config import (
        DATA_PATH, COLS, REQUIRED_COLUMNS, YEAR_COLUMNS, SURVEY_PREFIXES
    )


# ============================================================================
# LOADING
# ============================================================================

def check_required_columns(df, required=None):
    """
    Raise KeyError if any required column is missing.

    Parameters
    ----------
    df : DataFrame
    required : list of str, optional
        Defaults to every column in config.COLS
    """
    required = REQUIRED_COLUMNS if required is None else required
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise KeyError(f"Dataset is missing required columns: {missing}")


def load_bnla_data(path=DATA_PATH, prepare=True, verbose=True):
    """
    Load the prepared lake survey dataset.

    Parameters
    ----------
    path : str
        Path to bnla_final.csv
    prepare : bool
        If True, add derived columns via prepare_observations()
    verbose : bool
        Print progress messages

    Returns
    -------
    DataFrame
        One row per lake visit
    """
    if verbose:
        print(f"Loading survey data...")
        print(f"  Path: {path}")

    df = pd.read_csv(path)
    check_required_columns(df)

    if verbose:
        print(f"  Loaded {len(df):,} observations")

    if prepare:
        df = prepare_observations(df, verbose=verbose)
    return df


# ============================================================================
# DERIVED COLUMNS
# ============================================================================

def survey_year_from_site_id(site_ids, prefixes=None):
    """
    Map SITE_ID values to survey years using their prefix.

    Parameters
    ----------
    site_ids : array-like of str
    prefixes : dict, optional
        Prefix -> year mapping. Defaults to config.SURVEY_PREFIXES

    Returns
    -------
    Series
        Survey year (float; NaN where no prefix matches)
    """
    prefixes = SURVEY_PREFIXES if prefixes is None else prefixes
    ids = pd.Series(site_ids).astype(str)
    years = pd.Series(np.nan, index=ids.index)

    # Longest prefix wins when prefixes overlap
    for prefix in sorted(prefixes, key=len, reverse=True):
        match = ids.str.startswith(prefix) & years.isna()
        years[match] = prefixes[prefix]
    return years


def prepare_observations(df, verbose=True):
    """
    Add log-scale columns and survey years, dropping unusable rows.

    Adds: log_chl, log_tp, log_tn, log_np, log_depth, survey_year.
    Rows with missing or non-positive chlorophyll, nutrients or depth
    cannot be log transformed and are dropped.

    Parameters
    ----------
    df : DataFrame
        Raw survey rows (must contain the config.COLS columns)
    verbose : bool
        Print progress messages

    Returns
    -------
    DataFrame
        New frame with derived columns and a fresh RangeIndex
    """
    check_required_columns(df)
    df = df.copy()

    positive_cols = [COLS['chl'], COLS['tp'], COLS['tn'], COLS['depth']]
    values = df[positive_cols].apply(pd.to_numeric, errors='coerce')
    valid = (values > 0).all(axis=1)

    n_dropped = int((~valid).sum())
    if n_dropped:
        warnings.warn(f"Dropped {n_dropped} rows with missing or non-positive "
                      f"values in {positive_cols}")
        if verbose:
            print(f"  Dropped {n_dropped:,} rows with non-positive chl/tp/tn/depth")

    df = df[valid].reset_index(drop=True)

    df['log_chl'] = np.log(df[COLS['chl']].astype(float))
    df['log_tp'] = np.log(df[COLS['tp']].astype(float))
    df['log_tn'] = np.log(df[COLS['tn']].astype(float))
    df['log_np'] = df['log_tn'] - df['log_tp']
    df['log_depth'] = np.log(df[COLS['depth']].astype(float))

    year_col = next((c for c in YEAR_COLUMNS if c in df.columns), None)
    if year_col is not None:
        df['survey_year'] = pd.to_numeric(df[year_col], errors='coerce')
    else:
        df['survey_year'] = survey_year_from_site_id(df[COLS['site']]).values

    if verbose:
        n_unknown = int(df['survey_year'].isna().sum())
        if n_unknown:
            print(f"  {n_unknown:,} rows have no recognisable survey year")

    return df


# ============================================================================
# LAKE-LEVEL TABLE
# ============================================================================

def lake_table(df):
    """
    Collapse visits to one row per lake.

    Parameters
    ----------
    df : DataFrame
        Output of prepare_observations()

    Returns
    -------
    DataFrame
        Indexed by lake key with n_obs and lake means of log_depth,
        depth, avg_temp, log_eutro and log_np
    """
    lake_col = COLS['lake']
    grouped = df.groupby(lake_col, sort=True)
    lakes = pd.DataFrame({
        'n_obs': grouped.size(),
        'log_depth': grouped['log_depth'].mean(),
        'depth': grouped[COLS['depth']].mean(),
        COLS['temp']: grouped[COLS['temp']].mean(),
        COLS['eutro']: grouped[COLS['eutro']].mean(),
        'log_np': grouped['log_np'].mean(),
    })
    lakes.index.name = lake_col
    return lakes


def summarize_observations(df, verbose=True):
    """
    Summarize the prepared dataset.

    Returns
    -------
    dict
        n_obs, n_lakes, observations per survey year and nutrient ranges
    """
    summary = {
        'n_obs': len(df),
        'n_lakes': int(df[COLS['lake']].nunique()),
        'by_survey': df['survey_year'].value_counts(dropna=False).sort_index().to_dict(),
        'tp_range': (float(df[COLS['tp']].min()), float(df[COLS['tp']].max())),
        'tn_range': (float(df[COLS['tn']].min()), float(df[COLS['tn']].max())),
        'chl_range': (float(df[COLS['chl']].min()), float(df[COLS['chl']].max())),
    }

    if verbose:
        print("\n" + "=" * 70)
        print("DATA SUMMARY")
        print("=" * 70)
        print(f"  Observations: {summary['n_obs']:,}")
        print(f"  Lakes:        {summary['n_lakes']:,}")
        for year, n in summary['by_survey'].items():
            print(f"    survey {year}: {n:,}")
        print(f"  TP range:  {summary['tp_range'][0]:.4g} – {summary['tp_range'][1]:.4g}")
        print(f"  TN range:  {summary['tn_range'][0]:.4g} – {summary['tn_range'][1]:.4g}")
        print(f"  Chl range: {summary['chl_range'][0]:.4g} – {summary['chl_range'][1]:.4g}")

    return summary
