#!/usr/bin/env python3
"""
Random Intercept Model for Parent Wellbeing
Estimates group-specific wellbeing trajectories between ages 23 and 26,
with a random intercept per participant for the repeated measures.
"""

import pandas as pd
import numpy as np
import pickle
import json
import logging
import argparse
from pathlib import Path
from statsmodels.formula.api import mixedlm
import warnings
warnings.filterwarnings('ignore')

from wellbeing_tools.scripts.simulate_panel import (
    AGE_LABELS, DATA_DIR, N_PARTICIPANTS, PANEL_FILE,
    load_panel, simulate_wellbeing_panel, summarize_panel, save_panel,
)

logger = logging.getLogger(__name__)

# Group-specific intercepts and group-specific slopes on age, no common slope
MODEL_FORMULA = "wellbeing ~ parent_grp + parent_grp:age"
GROUP_COLUMN = 'pid'
GROUP_VARIABLE = 'parent_grp'

RESULTS_FILE = 'random_effects_results.json'
COEFFICIENTS_FILE = 'random_effects_coefficients.csv'
PREDICTIONS_FILE = 'random_effects_predictions.csv'
FITTED_FILE = 'random_effects_fitted.csv'
MODEL_FILE = 'random_effects_model.pkl'


def setup_directories(output_dir=DATA_DIR):
    """Create necessary directories if they don't exist."""
    Path(output_dir).mkdir(parents=True, exist_ok=True)


def fit_random_intercept_model(df, formula=MODEL_FORMULA, reml=True):
    """Fit the linear mixed model with a random intercept per participant."""
    model = mixedlm(formula, df, groups=df[GROUP_COLUMN])
    return model.fit(reml=reml)


def _group_levels(fitted):
    """Parent groups in treatment-coding order; the first is the reference."""
    levels = []
    for name in fitted.fe_params.index:
        if name.startswith(f'{GROUP_VARIABLE}[') and name.endswith(':age'):
            levels.append(name[len(GROUP_VARIABLE) + 1:-len(']:age')])
    return levels


def _reference_group(fitted):
    levels = _group_levels(fitted)
    return levels[0] if levels else None


def describe_term(term, reference):
    """Plain-language reading of a fixed effect."""
    if term == 'Intercept':
        return f"Average wellbeing at {AGE_LABELS[0]} for the reference group ({reference})"
    if term.endswith(':age'):
        group = term[len(GROUP_VARIABLE) + 1:-len(']:age')]
        return (f"Average change in wellbeing from {AGE_LABELS[0]} to {AGE_LABELS[1]} "
                f"for group {group}, relative to their own wellbeing at {AGE_LABELS[0]}")
    if term.startswith(f'{GROUP_VARIABLE}[T.'):
        group = term[len(GROUP_VARIABLE) + 3:-1]
        return (f"Difference in average wellbeing at {AGE_LABELS[0]} for group {group}, "
                f"compared to the reference group ({reference})")
    return term


def extract_model_results(fitted):
    """Collect the serialisable parts of a fitted model."""
    fe_names = fitted.fe_params.index
    conf_int = fitted.conf_int().loc[fe_names]

    random_var = float(fitted.cov_re.iloc[0, 0])
    residual_var = float(fitted.scale)
    total_var = random_var + residual_var

    return {
        'formula': fitted.model.formula,
        'method': fitted.method,
        'summary': str(fitted.summary()),
        'fixed_effects': fitted.fe_params.to_dict(),
        'fixed_effects_se': fitted.bse.loc[fe_names].to_dict(),
        'fixed_effects_pvalues': fitted.pvalues.loc[fe_names].to_dict(),
        'fixed_effects_ci': {
            name: [float(conf_int.loc[name, 0]), float(conf_int.loc[name, 1])]
            for name in fe_names
        },
        'random_effects_var': random_var,
        'residual_var': residual_var,
        'icc': random_var / total_var if total_var > 0 else float('nan'),
        'log_likelihood': float(fitted.llf),
        'aic': float(fitted.aic),
        'bic': float(fitted.bic),
        'converged': bool(fitted.converged),
        'n_observations': int(fitted.model.n_totobs),
        'n_groups': int(fitted.model.n_groups),
        'reference_group': _reference_group(fitted),
    }


def coefficient_table(fitted):
    """Tidy coefficient table, one row per fixed effect."""
    fe_names = fitted.fe_params.index
    conf_int = fitted.conf_int().loc[fe_names]
    reference = _reference_group(fitted)

    table = pd.DataFrame({
        'term': fe_names,
        'estimate': fitted.fe_params.values,
        'std_error': fitted.bse.loc[fe_names].values,
        'z_value': fitted.tvalues.loc[fe_names].values,
        'p_value': fitted.pvalues.loc[fe_names].values,
        'ci_lower': conf_int[0].values,
        'ci_upper': conf_int[1].values,
    })
    table['interpretation'] = [describe_term(t, reference) for t in table['term']]
    return table


def prediction_grid(df):
    """Every combination of observed age and parent group."""
    ages = sorted(df['age'].unique())
    groups = sorted(df[GROUP_VARIABLE].unique())
    grid = pd.MultiIndex.from_product([ages, groups], names=['age', GROUP_VARIABLE])
    return grid.to_frame(index=False)


def predict_trajectories(fitted, grid):
    """Population-level predictions (random effects set to zero)."""
    predictions = grid.copy()
    predictions['prediction'] = np.asarray(fitted.predict(grid))
    predictions['age_years'] = predictions['age'].map(AGE_LABELS)
    return predictions


def group_trajectories(results):
    """Implied mean wellbeing at 23 and 26 per group from the fixed effects."""
    fixed_effects = results['fixed_effects']
    intercept = fixed_effects['Intercept']

    trajectories = {}
    for term, slope in fixed_effects.items():
        if not term.endswith(':age'):
            continue
        group = term[len(GROUP_VARIABLE) + 1:-len(']:age')]
        start = intercept + fixed_effects.get(f'{GROUP_VARIABLE}[T.{group}]', 0.0)
        trajectories[group] = {
            f'wellbeing_{AGE_LABELS[0]}': start,
            f'wellbeing_{AGE_LABELS[1]}': start + slope,
            'change': slope,
        }
    return trajectories


def fitted_and_residuals(fitted, df):
    """Conditional fitted values (including each participant's intercept) and residuals."""
    out = df.copy()
    out['fitted'] = np.asarray(fitted.fittedvalues)
    out['residual'] = np.asarray(fitted.resid)

    random_intercepts = {pid: float(effects.iloc[0])
                         for pid, effects in fitted.random_effects.items()}
    out['random_intercept'] = out[GROUP_COLUMN].map(random_intercepts)
    return out


def run_model(df):
    """Fit the model and collect everything the visualisation step needs."""
    print("Fitting random intercept model...")
    print(f"  {MODEL_FORMULA} + (1 | {GROUP_COLUMN})")

    try:
        fitted = fit_random_intercept_model(df)
    except Exception as e:
        logger.error(f"Error fitting random intercept model: {e}")
        return None, {'error': str(e)}, {}

    if not fitted.converged:
        logger.warning("Random intercept model did not converge")

    results = extract_model_results(fitted)
    results['group_trajectories'] = group_trajectories(results)

    tables = {
        'coefficients': coefficient_table(fitted),
        'predictions': predict_trajectories(fitted, prediction_grid(df)),
        'fitted': fitted_and_residuals(fitted, df),
    }
    return fitted, results, tables


def json_safe(obj):
    """Replace non-finite floats with None so the results file is strict JSON."""
    if isinstance(obj, dict):
        return {key: json_safe(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [json_safe(value) for value in obj]
    if isinstance(obj, float) and not np.isfinite(obj):
        return None
    return obj


def save_results(fitted, results, tables, panel_summary, output_dir=DATA_DIR):
    """Save all model results."""
    output_dir = Path(output_dir)
    setup_directories(output_dir)

    full_results = {
        'model_results': results,
        'data_summary': panel_summary,
    }

    with open(output_dir / RESULTS_FILE, 'w') as f:
        json.dump(json_safe(full_results), f, indent=2, default=str, allow_nan=False)

    if tables:
        tables['coefficients'].to_csv(output_dir / COEFFICIENTS_FILE, index=False)
        tables['predictions'].to_csv(output_dir / PREDICTIONS_FILE, index=False)
        tables['fitted'].to_csv(output_dir / FITTED_FILE, index=False)

    # Save model object separately
    if fitted is not None:
        try:
            with open(output_dir / MODEL_FILE, 'wb') as f:
                pickle.dump(fitted, f)
        except Exception as e:
            logger.warning(f"Could not pickle fitted model: {e}")
            (output_dir / MODEL_FILE).unlink(missing_ok=True)

    print(f"Results saved to {output_dir}/")
    return full_results


def print_results(results):
    if 'error' in results:
        print(f"\nModel failed: {results['error']}")
        return

    print(f"\nRandom Intercept Model Summary:")
    print(f"Observations: {results['n_observations']}, participants: {results['n_groups']}")
    print(f"Converged: {results['converged']}")
    print(f"REML log-likelihood: {results['log_likelihood']:.2f}")
    print("\nFixed effects:")
    for term, estimate in results['fixed_effects'].items():
        print(f"  {term:<28} {estimate:9.3f}")
    print(f"\nRandom intercept variance: {results['random_effects_var']:.3f}")
    print(f"Residual variance: {results['residual_var']:.3f}")
    print(f"Intraclass correlation (participant): {results['icc']:.3f}")
    print("\nGroup trajectories:")
    for group, traj in results['group_trajectories'].items():
        start = traj[f"wellbeing_{AGE_LABELS[0]}"]
        end = traj[f"wellbeing_{AGE_LABELS[1]}"]
        print(f"  {group}: {start:.1f} -> {end:.1f} ({traj['change']:+.1f})")


def load_or_simulate(input_path, n_participants=N_PARTICIPANTS, seed=None):
    """Load the saved panel, simulating a fresh one if it is missing."""
    input_path = Path(input_path)
    if input_path.exists():
        logger.info(f"Loading panel from {input_path}")
        return load_panel(input_path), False

    logger.info(f"{input_path} not found, simulating a new panel")
    return simulate_wellbeing_panel(n_participants=n_participants, seed=seed), True


def main():
    """Main execution function."""
    parser = argparse.ArgumentParser(description='Fit the random intercept wellbeing model')
    parser.add_argument('-i', '--input', default=str(DATA_DIR / PANEL_FILE), help='Panel CSV to model')
    parser.add_argument('-n', '--n', type=int, default=N_PARTICIPANTS,
                        help='Participants to simulate when the input is missing')
    parser.add_argument('-s', '--seed', type=int, default=None, help='Random seed for simulation')
    parser.add_argument('-o', '--output-dir', default=str(DATA_DIR), help='Output directory')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')

    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    print("Starting Random Intercept Analysis...")

    df, simulated = load_or_simulate(args.input, args.n, args.seed)
    panel_summary = summarize_panel(df)
    if simulated:
        save_panel(df, panel_summary, args.output_dir)

    fitted, results, tables = run_model(df)
    save_results(fitted, results, tables, panel_summary, args.output_dir)
    print_results(results)

    print("Random intercept analysis complete!")


if __name__ == "__main__":
    main()
