"""
Example: Phosphorus vs Nitrogen Limitation Across Surveyed Lakes
================================================================

This script demonstrates how to fit the depth-dependent critical-ratio
model, check its convergence, validate it on held-out survey years and
estimate each lake's probability of phosphorus limitation.

Scientific Question:
    Which lakes are P limited, and does the TN:TP ratio at which limitation
    switches from N to P depend on lake depth?

This analysis:
1. Loads and prepares the survey dataset
2. Fits the TP-only, TN-only and depth-dependent critical-ratio models
3. Compares training fit and Gelman-Rubin convergence
4. Cross-validates the critical-ratio model by survey year
5. Combines the critical-ratio and N:P posteriors into per-lake
   limitation probabilities and writes the CSV

Requirements:
    - Survey CSV at config.DATA_PATH (or set BNLA_DATA_PATH)
    - PyMC and ArviZ: pip install pymc arviz

Author: Lake Nutrient Analysis Project
"""

import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from nutrient_limitation import (
    load_bnla_data,
    summarize_observations,
    SamplerConfig,
    ExperimentRegistry,
    fit_np_ratio,
    cross_validate,
    get_variant,
    run_limitation_analysis,
    export_limitation_csv,
    DATA_PATH,
    LIMITATION_CSV,
    ensure_output_dir,
)


def main():
    print("=" * 70)
    print("EXAMPLE: NUTRIENT LIMITATION ANALYSIS")
    print("=" * 70)

    # Step 1: data
    df = load_bnla_data(DATA_PATH)
    summarize_observations(df)

    # Short chains keep the example quick; use the defaults for real runs
    config = SamplerConfig(n_iter=1500, n_burnin=500, n_chains=3)

    # Step 2-3: candidate models
    registry = ExperimentRegistry(df, config)
    for name in ['tp', 'tn', 'mav']:
        registry.run(name)
    print("\n" + registry.comparison_table().to_string(index=False))

    mav = registry['mav']
    print("\nCritical-ratio coefficients:")
    print(mav.summary.loc[['cr0', 'cr_log_depth'], ['mean', 'sd', 'ci_low', 'ci_high', 'gr_rhat']])

    # Step 4: held-out survey years
    cv = cross_validate(get_variant('mav'), df, sampler_config=config)
    print("\n" + cv['folds'].to_string(index=False))

    # Step 5: limitation probabilities
    np_result = registry.add(fit_np_ratio(df, config))
    lakes = run_limitation_analysis(df, mav, np_result)
    ensure_output_dir()
    export_limitation_csv(df, lakes, LIMITATION_CSV)

    most_p = lakes.sort_values('prob_p_limited', ascending=False).head(10)
    print("\nMost likely P-limited lakes:")
    print(most_p[['prob_p_limited', 'mean_np_ratio', 'mean_critical_ratio', 'lake_depth']])


if __name__ == "__main__":
    main()
