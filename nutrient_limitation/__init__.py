"""
Bayesian Nutrient Limitation Analysis Package
==============================================

A Python package for fitting Bayesian hierarchical regressions of lake
chlorophyll on nutrient (TN/TP), temperature and depth covariates, and
deriving per-lake probabilities of phosphorus vs nitrogen limitation.

Core Idea: chlorophyll responds to the limiting nutrient,
min(TP, TN / critical_ratio), where the critical TN:TP ratio may itself
vary with lake depth and temperature.

Modules:
    config              - Paths, priors and sampler settings
    data_loading        - Load and prepare bnla_final.csv
    model_specification - Model variants and the deterministic link
    sampling            - MCMC with PyMC
    diagnostics         - Gelman-Rubin R-hat and posterior summaries
    model_validation    - R²/RMSE, cross-validation, variable selection
    experiments         - Fit/summarize/evaluate runner and registry
    limitation          - Probability of P limitation per lake
    main                - Orchestration and command line

Quick Start:
    >>> from nutrient_limitation import load_bnla_data, ExperimentRegistry
    >>> df = load_bnla_data()
    >>> registry = ExperimentRegistry(df)
    >>> result = registry.run('mav')
"""

__version__ = '0.1.0'

# Import key functions for convenient access
from .config import (
    DATA_PATH, OUTPUT_DIR, LIMITATION_CSV, COLS, PRIORS, SAMPLER_DEFAULTS, LIMITATION_DEFAULTS,
    ensure_output_dir, print_config_summary
)

from .data_loading import (
    load_bnla_data,
    prepare_observations,
    lake_table,
    summarize_observations
)

from .model_specification import (
    ModelSpec,
    MODEL_VARIANTS,
    get_variant,
    build_design,
    build_model,
    build_np_ratio_model,
    limiting_nutrient,
    critical_ratio,
    linear_predictor
)

from .sampling import (
    SamplerConfig,
    sample_posterior,
    posterior_means
)

from .diagnostics import (
    gelman_rubin,
    gelman_rubin_table,
    check_convergence,
    summarize_posterior
)

from .model_validation import (
    r_squared,
    rmse,
    evaluate_predictions,
    predict,
    fraction_p_limited,
    cross_validate,
    backward_variable_selection
)

from .experiments import (
    ExperimentResult,
    ExperimentRegistry,
    run_experiment,
    fit_np_ratio
)

from .limitation import (
    limitation_probability,
    classify_limitation,
    run_limitation_analysis,
    export_limitation_csv
)
