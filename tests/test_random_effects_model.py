"""
Tests for the random intercept wellbeing model.
"""

import json

import numpy as np
import pandas as pd
import pytest

from wellbeing_tools.scripts.random_effects_model import (
    COEFFICIENTS_FILE,
    FITTED_FILE,
    PREDICTIONS_FILE,
    RESULTS_FILE,
    describe_term,
    extract_model_results,
    fit_random_intercept_model,
    json_safe,
    load_or_simulate,
    prediction_grid,
    print_results,
    run_model,
    save_results,
)
from wellbeing_tools.scripts.simulate_panel import summarize_panel

EXPECTED_TERMS = [
    'Intercept',
    'parent_grp[T.never]',
    'parent_grp[T.new]',
    'parent_grp[existing]:age',
    'parent_grp[never]:age',
    'parent_grp[new]:age',
]


@pytest.fixture(scope="module")
def results(model_run):
    return model_run[1]


@pytest.fixture(scope="module")
def tables(model_run):
    return model_run[2]


# ─── Fixed effects ───────────────────────────────────────────────────────────

def test_fixed_effect_terms(results):
    assert list(results['fixed_effects']) == EXPECTED_TERMS
    assert results['reference_group'] == 'existing'


@pytest.mark.parametrize("term, truth, tolerance", [
    ('Intercept', 50, 3.0),
    ('parent_grp[T.never]', 25, 4.0),
    ('parent_grp[T.new]', -20, 4.0),
    ('parent_grp[existing]:age', -10, 1.0),
    ('parent_grp[never]:age', 15, 1.0),
    ('parent_grp[new]:age', 10, 1.0),
])
def test_recovers_simulated_effects(results, term, truth, tolerance):
    assert results['fixed_effects'][term] == pytest.approx(truth, abs=tolerance)


def test_confidence_intervals_bracket_estimates(results):
    for term, (lower, upper) in results['fixed_effects_ci'].items():
        assert lower < results['fixed_effects'][term] < upper


def test_fit_metadata(results):
    assert results['method'] == 'REML'
    assert results['converged']
    assert results['n_observations'] == 1800
    assert results['n_groups'] == 900


# ─── Variance components ─────────────────────────────────────────────────────

def test_participant_intercept_dominates_variance(results):
    # Scores at 26 carry the baseline noise forward, so nearly all of the
    # within-group variance sits between participants
    assert results['random_effects_var'] > results['residual_var']
    assert 0.9 < results['icc'] < 1.0
    assert results['icc'] == pytest.approx(
        results['random_effects_var'] / (results['random_effects_var'] + results['residual_var']))


# ─── Trajectories and predictions ────────────────────────────────────────────

def test_group_trajectories_follow_coefficients(results):
    fe = results['fixed_effects']
    traj = results['group_trajectories']
    assert set(traj) == {'existing', 'never', 'new'}
    assert traj['existing']['wellbeing_23'] == pytest.approx(fe['Intercept'])
    assert traj['never']['wellbeing_23'] == pytest.approx(fe['Intercept'] + fe['parent_grp[T.never]'])
    assert traj['new']['wellbeing_26'] == pytest.approx(
        fe['Intercept'] + fe['parent_grp[T.new]'] + fe['parent_grp[new]:age'])


def test_prediction_grid_covers_every_combination(panel):
    grid = prediction_grid(panel)
    assert len(grid) == 6
    assert set(zip(grid['age'], grid['parent_grp'])) == {
        (age, group) for age in (0, 1) for group in ('existing', 'never', 'new')
    }


def test_predictions_ignore_random_effects(results, tables):
    predictions = tables['predictions']
    for _, row in predictions.iterrows():
        traj = results['group_trajectories'][row['parent_grp']]
        expected = traj['wellbeing_23'] if row['age'] == 0 else traj['wellbeing_26']
        assert row['prediction'] == pytest.approx(expected)
    assert set(predictions['age_years']) == {23, 26}


def test_fitted_values_include_participant_intercepts(panel, tables):
    fitted = tables['fitted']
    assert len(fitted) == len(panel)
    np.testing.assert_allclose(fitted['fitted'] + fitted['residual'], panel['wellbeing'])
    assert fitted['random_intercept'].notna().all()
    # A participant's intercept is shared across both ages
    assert fitted.groupby('pid')['random_intercept'].nunique().eq(1).all()


# ─── Coefficient table ───────────────────────────────────────────────────────

def test_coefficient_table(tables):
    table = tables['coefficients']
    assert table['term'].tolist() == EXPECTED_TERMS
    assert (table['ci_lower'] < table['estimate']).all()
    assert (table['estimate'] < table['ci_upper']).all()
    assert table['interpretation'].str.len().gt(0).all()


def test_describe_term():
    assert 'reference group (existing)' in describe_term('Intercept', 'existing')
    assert 'group never' in describe_term('parent_grp[T.never]', 'existing')
    assert 'change' in describe_term('parent_grp[new]:age', 'existing')


# ─── Failure handling ────────────────────────────────────────────────────────

def test_failed_fit_is_recorded_not_raised(panel):
    broken = panel.drop(columns=['wellbeing'])
    fitted, results, tables = run_model(broken)
    assert fitted is None
    assert 'error' in results
    assert tables == {}


# ─── Outputs ─────────────────────────────────────────────────────────────────

def test_save_results_writes_all_artefacts(tmp_path, panel, model_run):
    fitted, results, tables = model_run
    save_results(fitted, results, tables, summarize_panel(panel), tmp_path)

    for name in (RESULTS_FILE, COEFFICIENTS_FILE, PREDICTIONS_FILE, FITTED_FILE):
        assert (tmp_path / name).exists()

    with open(tmp_path / RESULTS_FILE) as f:
        saved = json.load(f)
    assert list(saved['model_results']['fixed_effects']) == EXPECTED_TERMS
    assert saved['data_summary']['n_participants'] == 900

    coefficients = pd.read_csv(tmp_path / COEFFICIENTS_FILE)
    assert len(coefficients) == 6


def test_save_results_after_failed_fit(tmp_path):
    save_results(None, {'error': 'boom'}, {}, {}, tmp_path)
    with open(tmp_path / RESULTS_FILE) as f:
        assert json.load(f)['model_results'] == {'error': 'boom'}
    assert not (tmp_path / COEFFICIENTS_FILE).exists()


def test_load_or_simulate_falls_back_to_simulation(tmp_path):
    df, simulated = load_or_simulate(tmp_path / 'missing.csv', n_participants=30, seed=1)
    assert simulated
    assert len(df) == 60


def test_results_file_is_strict_json(tmp_path, panel, model_run):
    fitted, results, tables = model_run
    save_results(fitted, results, tables, summarize_panel(panel), tmp_path)

    def reject(token):
        raise ValueError(f"non-standard JSON token {token}")

    with open(tmp_path / RESULTS_FILE) as f:
        saved = json.load(f, parse_constant=reject)
    # Information criteria are undefined under REML
    assert saved['model_results']['aic'] is None
    assert saved['model_results']['bic'] is None


def test_json_safe_replaces_non_finite_values():
    cleaned = json_safe({'a': float('nan'), 'b': [1.0, float('inf')], 'c': {'d': np.float64('-inf')}, 'e': 'text'})
    assert cleaned == {'a': None, 'b': [1.0, None], 'c': {'d': None}, 'e': 'text'}


# ─── Reporting ───────────────────────────────────────────────────────────────

def test_results_record_the_fitted_formula(panel):
    formula = "wellbeing ~ 0 + parent_grp + parent_grp:age"
    fitted = fit_random_intercept_model(panel, formula=formula)
    results = extract_model_results(fitted)
    assert results['formula'] == formula
    assert 'Intercept' not in results['fixed_effects']


def test_printed_trajectories_use_named_values(capsys):
    results = {
        'n_observations': 2, 'n_groups': 1, 'converged': True, 'log_likelihood': -1.0,
        'fixed_effects': {}, 'random_effects_var': 1.0, 'residual_var': 1.0, 'icc': 0.5,
        'group_trajectories': {
            'existing': {'change': -10.0, 'wellbeing_26': 40.0, 'wellbeing_23': 50.0},
        },
    }
    print_results(results)
    assert 'existing: 50.0 -> 40.0 (-10.0)' in capsys.readouterr().out
