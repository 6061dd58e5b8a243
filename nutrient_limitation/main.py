"""
Chlorophyll-Nutrient Analysis - Main Orchestration Script
==========================================================

This script provides the main entry point for running the analysis. It can
be run directly or individual functions can be called interactively in
Spyder/IPython/Jupyter.

Usage:
    # Check configuration and data
    python -m nutrient_limitation.main --check

    # Fit one model variant
    python -m nutrient_limitation.main --variant mav

    # Survey-year cross-validation of a variant
    python -m nutrient_limitation.main --cv mav

    # Full pipeline (variants, selection, cross-validation, limitation CSV)
    python -m nutrient_limitation.main --full

    # Or import and run specific analyses:
    from nutrient_limitation.main import *
    df = load_data()
    registry = analyze_variants(df, ['tp', 'tn', 'mav'])

Project Questions:
    Q1: Does the limiting nutrient predict chlorophyll better than TP or TN alone?
    Q2: Does the critical TN:TP ratio vary with depth and temperature?
    Q3: Do the fitted relationships hold for survey years left out of the fit?
    Q4: Which lakes are phosphorus limited, and with what probability?
"""

import sys
import time
from pathlib import Path
from contextlib import contextmanager
from datetime import timedelta

# Add module directory to path if running directly
if __name__ == "__main__" and __package__ in (None, ""):
    sys.path.insert(0, str(Path(__file__).parent))

import pandas as pd


# ============================================================================
# RUNTIME TRACKING
# ============================================================================

def format_duration(seconds):
    """12.3s, 1.5min, or h:mm:ss for long runs."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    if seconds < 3600:
        return f"{seconds / 60:.1f}min"
    return str(timedelta(seconds=int(seconds)))


class AnalysisTimer:
    """
    Wall-clock time per pipeline step, together with the MCMC work done.

    A step that samples is opened with its SamplerConfig; the caller sets
    ``record['fits']`` to the number of models it fitted. The summary then
    reports iterations per second (fits × chains × n_iter / duration),
    which is what to compare when tuning chain length.

    Usage:
        timer = AnalysisTimer()
        with timed_step(timer, "Model variants", config) as record:
            registry = analyze_variants(df, sampler_config=config)
            record['fits'] = len(registry)
        timer.summary()
    """

    def __init__(self):
        self.steps = []
        self._open = None
        self._first_start = None

    def start(self, step_name, sampler_config=None):
        """Open a step record; returns it so callers can fill in 'fits'."""
        now = time.perf_counter()
        if self._first_start is None:
            self._first_start = now
        self._open = {
            'step': step_name,
            'sampler': sampler_config,
            'fits': 0,
            'started': now,
        }
        return self._open

    def stop(self):
        """Close the open step. Returns its duration, or None if none was open."""
        record, self._open = self._open, None
        if record is None:
            return None

        record['duration'] = time.perf_counter() - record.pop('started')
        config = record['sampler']
        record['iterations'] = (record['fits'] * config.n_chains * config.n_iter
                                if config is not None else 0)
        self.steps.append(record)
        return record['duration']

    def summary(self):
        """Print the per-step table; returns steps, total and overall seconds."""
        if not self.steps:
            print("\nNo timing data recorded.")
            return None

        total = sum(s['duration'] for s in self.steps)
        overall = time.perf_counter() - self._first_start

        print("\n" + "=" * 70)
        print("RUNTIME SUMMARY")
        print("=" * 70)
        print(f"{'Step':<28} {'Duration':>10} {'Fits':>6} {'Sampler':>14} {'iter/s':>8}")
        print("-" * 70)
        for s in self.steps:
            config = s['sampler']
            sampler = f"{config.n_chains}x{config.n_iter} {config.step}" if config else "-"
            rate = "-"
            if s['iterations'] and s['duration'] > 0:
                rate = f"{s['iterations'] / s['duration']:,.0f}"
            print(f"{s['step']:<28} {format_duration(s['duration']):>10} {s['fits']:>6} "
                  f"{sampler:>14} {rate:>8}")
        print("-" * 70)
        print(f"{'Total (all steps)':<28} {format_duration(total):>10}")
        print(f"{'Overall runtime':<28} {format_duration(overall):>10}")
        print("=" * 70)

        return {
            'steps': [dict(s) for s in self.steps],
            'total': total,
            'overall': overall,
        }


@contextmanager
def timed_step(timer, step_name, sampler_config=None):
    """Time a block; yields the step record."""
    record = timer.start(step_name, sampler_config)
    try:
        yield record
    finally:
        elapsed = timer.stop()
        if elapsed is not None:
            print(f"  [DONE] {step_name} completed in {format_duration(elapsed)}")


def print_step_header(step_num, total_steps, title):
    """Print a formatted step header with progress."""
    bar_width = 30
    pct = step_num / total_steps
    filled = int(bar_width * pct)
    bar = "█" * filled + "░" * (bar_width - filled)

    print(f"\n[{bar}] Step {step_num}/{total_steps}")
    print("-" * 60)
    print(f"  {title}")
    print("-" * 60)


# Import project modules - handle both package and direct execution
try:
    from .config import (
        DATA_PATH, LIMITATION_CSV, FOLD_COLUMN, LIMITATION_DEFAULTS, SAMPLER_DEFAULTS,
        ensure_output_dir, print_config_summary
    )
    from .data_loading import load_bnla_data, summarize_observations
    from .model_specification import MODEL_VARIANTS, SELECTION_CANDIDATES, get_variant
    from .sampling import SamplerConfig
    from .experiments import ExperimentRegistry, fit_np_ratio
    from .model_validation import cross_validate, backward_variable_selection
    from .limitation import run_limitation_analysis, export_limitation_csv
except ImportError:
    from config import (
        DATA_PATH, LIMITATION_CSV, FOLD_COLUMN, LIMITATION_DEFAULTS, SAMPLER_DEFAULTS,
        ensure_output_dir, print_config_summary
    )
    from data_loading import load_bnla_data, summarize_observations
    from model_specification import MODEL_VARIANTS, SELECTION_CANDIDATES, get_variant
    from sampling import SamplerConfig
    from experiments import ExperimentRegistry, fit_np_ratio
    from model_validation import cross_validate, backward_variable_selection
    from limitation import run_limitation_analysis, export_limitation_csv


# ============================================================================
# ANALYSES
# ============================================================================

def load_data(path=None, verbose=True):
    """Load and prepare the survey dataset, printing a summary."""
    df = load_bnla_data(path or DATA_PATH, verbose=verbose)
    summarize_observations(df, verbose=verbose)
    return df


def analyze_variants(df, variants=None, sampler_config=None, verbose=True):
    """
    Q1/Q2: fit model variants and compare their training fit.

    Parameters
    ----------
    df : DataFrame
    variants : list of str, optional
        Names from MODEL_VARIANTS (default: all)
    sampler_config : SamplerConfig, optional

    Returns
    -------
    ExperimentRegistry
    """
    variants = list(MODEL_VARIANTS) if variants is None else list(variants)
    registry = ExperimentRegistry(df, sampler_config=sampler_config, verbose=verbose)
    for name in variants:
        registry.run(name)

    if verbose:
        print("\n" + "=" * 70)
        print("MODEL COMPARISON (training data)")
        print("=" * 70)
        with pd.option_context('display.width', 120, 'display.precision', 3):
            print(registry.comparison_table().to_string(index=False))
    return registry


def analyze_cross_validation(df, variant='mav', sampler_config=None, verbose=True):
    """Q3: leave-one-survey-year-out validation of a variant."""
    return cross_validate(get_variant(variant), df, fold_column=FOLD_COLUMN,
                          sampler_config=sampler_config, verbose=verbose)


def analyze_selection(df, variant='mav', candidates=SELECTION_CANDIDATES,
                      sampler_config=None, verbose=True):
    """Backward selection of mean covariates on top of a variant."""
    return backward_variable_selection(get_variant(variant), df, candidates=candidates,
                                       sampler_config=sampler_config, verbose=verbose)


def analyze_limitation(df, registry=None, sampler_config=None, output_path=None,
                       verbose=True):
    """
    Q4: per-lake probability of P limitation, written to CSV.

    Reuses the registry's fit of the critical-ratio variant when present.
    """
    mav_name = LIMITATION_DEFAULTS['mav_variant']
    if registry is None:
        registry = ExperimentRegistry(df, sampler_config=sampler_config, verbose=verbose)
    mav_result = registry[mav_name] if mav_name in registry else registry.run(mav_name)

    if 'np_ratio' in registry:
        np_result = registry['np_ratio']
    else:
        np_result = registry.add(fit_np_ratio(df, sampler_config=registry.sampler_config,
                                              verbose=verbose))

    lake_summary = run_limitation_analysis(df, mav_result, np_result, verbose=verbose)
    ensure_output_dir()
    joined = export_limitation_csv(df, lake_summary, path=output_path or LIMITATION_CSV,
                                   verbose=verbose)
    return {'lakes': lake_summary, 'observations': joined, 'registry': registry}


def run_full_analysis(data_path=None, sampler_config=None):
    """Run every analysis in sequence with runtime tracking."""
    config = sampler_config or SamplerConfig()
    timer = AnalysisTimer()
    total_steps = 5
    results = {}

    print_step_header(1, total_steps, "Loading data")
    with timed_step(timer, "Loading data"):
        df = load_data(data_path)

    print_step_header(2, total_steps, "Fitting model variants")
    with timed_step(timer, "Model variants", config) as step:
        registry = analyze_variants(df, sampler_config=config)
        results['comparison'] = registry.comparison_table()
        step['fits'] = len(registry)

    print_step_header(3, total_steps, "Backward variable selection")
    with timed_step(timer, "Variable selection", config) as step:
        results['selection'] = analyze_selection(df, sampler_config=config)
        step['fits'] = len(results['selection'][1])

    print_step_header(4, total_steps, "Survey-year cross-validation")
    with timed_step(timer, "Cross-validation", config) as step:
        results['cross_validation'] = analyze_cross_validation(df, sampler_config=config)
        step['fits'] = len(results['cross_validation']['folds'])

    print_step_header(5, total_steps, "Nutrient limitation")
    with timed_step(timer, "Nutrient limitation", config) as step:
        n_before = len(registry)
        results['limitation'] = analyze_limitation(df, registry=registry)
        step['fits'] = len(registry) - n_before

    results['registry'] = registry
    results['timing'] = timer.summary()
    return results


def quick_start():
    """Print configuration and usage hints."""
    print_config_summary()
    print("\nQuick start:")
    print("  df = load_data()")
    print("  registry = analyze_variants(df, ['tp', 'tn', 'mav'])")
    print("  cv = analyze_cross_validation(df, 'mav')")
    print("  limitation = analyze_limitation(df, registry)")
    print(f"\nVariants: {', '.join(MODEL_VARIANTS)}")


# ============================================================================
# MAIN EXECUTION
# ============================================================================

def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(description='Bayesian chlorophyll-nutrient analysis')
    parser.add_argument('--check', action='store_true',
                        help='Print configuration and data summary only')
    parser.add_argument('--data', default=None,
                        help=f'Path to the survey CSV (default: {DATA_PATH})')
    parser.add_argument('--variant', choices=list(MODEL_VARIANTS),
                        help='Fit a single model variant')
    parser.add_argument('--cv', choices=list(MODEL_VARIANTS),
                        help='Survey-year cross-validation of a variant')
    parser.add_argument('--select', action='store_true',
                        help='Backward variable selection on the mav variant')
    parser.add_argument('--limitation', action='store_true',
                        help='Nutrient-limitation probabilities and CSV export')
    parser.add_argument('--full', action='store_true',
                        help='Run full analysis pipeline')
    parser.add_argument('--iter', type=int, default=SAMPLER_DEFAULTS['n_iter'],
                        help='Iterations per chain, burn-in included')
    parser.add_argument('--burnin', type=int, default=SAMPLER_DEFAULTS['n_burnin'],
                        help='Burn-in iterations discarded per chain')
    parser.add_argument('--step', choices=['nuts', 'metropolis'],
                        default=SAMPLER_DEFAULTS['step'])

    args = parser.parse_args(argv)
    sampler_config = SamplerConfig(n_iter=args.iter, n_burnin=args.burnin, step=args.step)

    if args.check:
        print_config_summary()
        load_data(args.data)
    elif args.full:
        run_full_analysis(data_path=args.data, sampler_config=sampler_config)
    elif args.variant:
        analyze_variants(load_data(args.data), [args.variant], sampler_config=sampler_config)
    elif args.cv:
        analyze_cross_validation(load_data(args.data), args.cv, sampler_config=sampler_config)
    elif args.select:
        analyze_selection(load_data(args.data), sampler_config=sampler_config)
    elif args.limitation:
        analyze_limitation(load_data(args.data), sampler_config=sampler_config)
    else:
        quick_start()


if __name__ == "__main__":
    main()
