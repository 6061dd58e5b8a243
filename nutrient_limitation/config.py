"""
Configuration settings for the Chlorophyll-Nutrient Analysis
=============================================================

This module contains all paths, priors, sampler settings and constants for
the analysis. Users should modify the PATHS section for their specific
system (or set the BNLA_DATA_PATH / BNLA_OUTPUT_DIR environment variables).

Project: Bayesian Nutrient Limitation of Lakes (BNLA)
"""

import os
from pathlib import Path

# ============================================================================
# PATHS - USER MODIFIES THESE FOR THEIR SYSTEM
# ============================================================================

# Prepared survey dataset (one row per lake visit)
DATA_PATH = os.environ.get("BNLA_DATA_PATH", os.path.join("data", "bnla_final.csv"))

# Output directory (will be created if it doesn't exist)
OUTPUT_DIR = os.environ.get("BNLA_OUTPUT_DIR", "outputs")

# Per-observation limitation table written by the limitation analysis
LIMITATION_CSV_NAME = "n_p_limitation.csv"
LIMITATION_CSV = os.path.join(OUTPUT_DIR, LIMITATION_CSV_NAME)

# ============================================================================
# COLUMN NAME MAPPING
# ============================================================================
# Column names in bnla_final.csv (case-sensitive!)

COLS = {
    'chl': 'chl',                       # Chlorophyll a (ug/L)
    'tp': 'tp',                         # Total phosphorus
    'tn': 'tn',                         # Total nitrogen
    'temp': 'avg_temp',                 # Average of bottom/surface temperature (C)
    'depth': 'INDEX_SITE_DEPTH',        # Site depth (m)
    'eutro': 'log_eutro',               # Nutrient enrichment index (log)
    'lake': 'specific_lake_bin',        # Lake identifier (random intercept group)
    'eutro_bin': 'eutro_bin',
    'depth_bin': 'depth_bin',
    'temp_bin': 'temp_bin',
    'site': 'SITE_ID',
}

REQUIRED_COLUMNS = list(COLS.values())

# Optional explicit survey-year columns, checked in order
YEAR_COLUMNS = ['year', 'YEAR']

# SITE_ID prefixes of the National Lakes Assessment surveys
SURVEY_PREFIXES = {
    'NLA06': 2007,
    'NLA12': 2012,
    'NLA17': 2017,
}

# ============================================================================
# PRIORS
# ============================================================================
# Weakly informative priors. Normal entries are (mean, sd), uniform entries
# are (lower, upper). Values are on the log-chlorophyll scale except the
# critical ratio terms, which are on the TN:TP mass-ratio scale.

PRIORS = {
    'b0': ('normal', 0.0, 10.0),          # Intercept
    'b_nut': ('normal', 0.0, 10.0),       # Slope on log nutrient
    'beta': ('normal', 0.0, 10.0),        # Slopes on extra covariates
    'cr0': ('normal', 15.0, 10.0),        # Critical TN:TP ratio intercept
    'cr_slope': ('normal', 0.0, 10.0),    # Critical ratio modifiers
    'sigma': ('uniform', 0.0, 10.0),      # Residual SD
    'sigma_lake': ('uniform', 0.0, 10.0), # Random-intercept SD
    # Grouped-intercept model of observed log(TN:TP)
    'mu_np': ('normal', 0.0, 10.0),
    'tau_np': ('uniform', 0.0, 10.0),
    'sigma_np': ('uniform', 0.0, 10.0),
}

# Floor applied to the critical ratio so TN / ratio stays plausible
CRITICAL_RATIO_FLOOR = 1.0

# ============================================================================
# SAMPLER PARAMETERS
# ============================================================================

SAMPLER_DEFAULTS = {
    'n_iter': 3000,         # Total iterations per chain (burn-in included)
    'n_burnin': 1000,       # Discarded prefix of each chain
    'n_chains': 3,
    'step': 'nuts',         # 'nuts' or 'metropolis'
    'target_accept': 0.9,
    'cores': 1,
}

# Starting value shared by every chain for scalar and per-bin parameters
INITIAL_VALUE = 1.0

# Potential scale reduction above this is flagged (advisory only)
RHAT_THRESHOLD = 1.1

# Credible interval mass used in summaries and variable selection
CI_PROB = 0.95

# ============================================================================
# LIMITATION ANALYSIS PARAMETERS
# ============================================================================

LIMITATION_DEFAULTS = {
    'n_draws': 3000,        # Paired posterior draws per lake
    'lower': 0.1,           # prob_p_limited below this -> N-limited
    'upper': 0.9,           # prob_p_limited above this -> P-limited
    'mav_variant': 'mav',
}

# Column holding survey year folds for cross-validation
FOLD_COLUMN = 'survey_year'

# ============================================================================
# PROCESSING PARAMETERS
# ============================================================================

# Random seed for reproducibility
RANDOM_SEED = 42


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def ensure_output_dir(output_dir=None):
    """Create output directory if it doesn't exist."""
    output_dir = output_dir or OUTPUT_DIR
    Path(output_dir).mkdir(parents=True, exist_ok=True)
    return output_dir


def print_config_summary():
    """Print summary of current configuration."""
    print("=" * 60)
    print("BNLA CHLOROPHYLL-NUTRIENT ANALYSIS - Configuration Summary")
    print("=" * 60)
    exists = "✓" if os.path.exists(DATA_PATH) else "✗"
    print(f"\nDataset:")
    print(f"  [{exists}] {DATA_PATH}")
    print(f"\nSampler:")
    for key, val in SAMPLER_DEFAULTS.items():
        print(f"  {key:14s}: {val}")
    print(f"\nPriors:")
    for name, (kind, a, b) in PRIORS.items():
        print(f"  {name:12s}: {kind}({a}, {b})")
    print(f"\nR-hat threshold: {RHAT_THRESHOLD}")
    print(f"Output Directory: {OUTPUT_DIR}")
    print("=" * 60)


if __name__ == "__main__":
    print_config_summary()
