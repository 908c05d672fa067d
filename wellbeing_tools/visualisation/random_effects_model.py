#!/usr/bin/env python3
"""
Random Intercept Model Visualization
Creates the wellbeing distribution plots, model diagnostics and the
predicted group trajectories for the parent wellbeing analysis.
"""

import pandas as pd
import numpy as np
import matplotlib.pyplot as plt
from matplotlib.patches import Patch
import seaborn as sns
import json
import argparse
from pathlib import Path
from scipy import stats
import warnings
warnings.filterwarnings('ignore')

from wellbeing_tools.scripts.simulate_panel import AGE_LABELS, DATA_DIR, PANEL_FILE, load_panel, to_wide
from wellbeing_tools.scripts.random_effects_model import (
    COEFFICIENTS_FILE, FITTED_FILE, PREDICTIONS_FILE, RESULTS_FILE,
)

# Set style
plt.style.use('seaborn-v0_8-whitegrid')
sns.set_palette("husl")

FIGURES_DIR = Path('figures')
TECHNIQUE_NAME = 'random_effects'
HIST_BINS = 30
FIGURE_DPI = 300


def ensure_output_dir(technique_name=TECHNIQUE_NAME, figures_dir=FIGURES_DIR):
    """Create output directory for figures if it doesn't exist."""
    output_dir = Path(figures_dir) / technique_name
    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


def _read_optional_csv(path, **kwargs):
    path = Path(path)
    return pd.read_csv(path, **kwargs) if path.exists() else None


def load_results(results_dir=DATA_DIR):
    """Load the panel, model results and derived tables."""
    results_dir = Path(results_dir)

    df = load_panel(results_dir / PANEL_FILE)

    with open(results_dir / RESULTS_FILE, 'r') as f:
        results = json.load(f)

    tables = {
        'coefficients': _read_optional_csv(results_dir / COEFFICIENTS_FILE),
        'predictions': _read_optional_csv(results_dir / PREDICTIONS_FILE, dtype={'parent_grp': str}),
        'fitted': _read_optional_csv(results_dir / FITTED_FILE, dtype={'parent_grp': str}),
    }
    return df, results, tables


def group_colors(groups):
    """Fixed colour per parent group so every figure agrees."""
    groups = sorted(groups)
    return dict(zip(groups, sns.color_palette("husl", len(groups))))


def _overlaid_histogram(ax, data, value_col, colors, title, xlabel):
    edges = np.histogram_bin_edges(data[value_col].dropna(), bins=HIST_BINS)
    for group, color in colors.items():
        values = data.loc[data['parent_grp'] == group, value_col].dropna()
        if len(values) == 0:
            continue
        ax.hist(values, bins=edges, alpha=0.5, color=color, label=group)
    ax.set_xlabel(xlabel)
    ax.set_ylabel('Count')
    ax.set_title(title, fontweight='bold')
    ax.legend(title='Parent Group')
    ax.grid(True, alpha=0.3)


def _not_available(ax, message):
    ax.text(0.5, 0.5, message, ha='center', va='center', transform=ax.transAxes)


def _is_finite(value):
    return value is not None and np.isfinite(value)


def _fmt(value, spec):
    """Format a number, or 'n/a' when the fit left it missing or non-finite."""
    return format(value, spec) if _is_finite(value) else 'n/a'


def plot_wellbeing_distributions(df, output_dir):
    """Overlaid group histograms of wellbeing at 23, at 26 and of the change."""
    fig, (ax1, ax2, ax3) = plt.subplots(1, 3, figsize=(20, 6))
    colors = group_colors(df['parent_grp'].unique())

    _overlaid_histogram(ax1, df[df['age'] == 0], 'wellbeing', colors,
                        f'Wellbeing at {AGE_LABELS[0]}', 'Wellbeing')
    _overlaid_histogram(ax2, df[df['age'] == 1], 'wellbeing', colors,
                        f'Wellbeing at {AGE_LABELS[1]}', 'Wellbeing')
    _overlaid_histogram(ax3, to_wide(df), 'diff', colors,
                        'Wellbeing Difference', 'Wellbeing Difference')

    plt.tight_layout()
    plt.savefig(output_dir / 'wellbeing_distributions.png', dpi=FIGURE_DPI, bbox_inches='tight')
    plt.close()


def plot_group_histograms(df, output_dir):
    """One panel per group: wellbeing at 23 (top) and the change to 26 (bottom)."""
    wide = to_wide(df)
    colors = group_colors(wide['parent_grp'].unique())

    fig, axes = plt.subplots(2, len(colors), figsize=(6 * len(colors), 10), squeeze=False)

    for col, (group, color) in enumerate(colors.items()):
        group_data = wide[wide['parent_grp'] == group]

        ax = axes[0, col]
        ax.hist(group_data['wellbeing_23'], bins=HIST_BINS, color=color, alpha=0.7, edgecolor='black')
        ax.set_xlabel(f'Wellbeing at {AGE_LABELS[0]}')
        ax.set_ylabel('Frequency')
        ax.set_title(f'{group.title()} (n={len(group_data)})', fontweight='bold')
        ax.grid(True, alpha=0.3)

        ax = axes[1, col]
        ax.hist(group_data['diff'], bins=HIST_BINS, color=color, alpha=0.7, edgecolor='black')
        ax.axvline(x=group_data['diff'].mean(), color='black', linestyle='--',
                   label=f"Mean = {group_data['diff'].mean():+.1f}")
        ax.set_xlabel(f'Wellbeing at {AGE_LABELS[1]} - Wellbeing at {AGE_LABELS[0]}')
        ax.set_ylabel('Frequency')
        ax.legend()
        ax.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig(output_dir / 'group_histograms.png', dpi=FIGURE_DPI, bbox_inches='tight')
    plt.close()


def _jitter(values, width=0.1, seed=0):
    rng = np.random.default_rng(seed)
    return values + rng.uniform(-width, width, len(values))


def plot_wellbeing_by_age(df, output_dir):
    """Jittered scatter of wellbeing by age, coloured by group."""
    fig, ax = plt.subplots(figsize=(10, 8))
    colors = group_colors(df['parent_grp'].unique())

    for group, color in colors.items():
        group_data = df[df['parent_grp'] == group]
        ax.scatter(_jitter(group_data['age'].values), group_data['wellbeing'],
                   color=color, alpha=0.6, s=15, label=group)

    ax.set_xticks(list(AGE_LABELS))
    ax.set_xticklabels([f'{k} ({v})' for k, v in AGE_LABELS.items()])
    ax.set_xlabel('Age')
    ax.set_ylabel('Wellbeing')
    ax.set_title('Wellbeing by Age', fontweight='bold')
    ax.legend(title='Parent Group')
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig(output_dir / 'wellbeing_by_age.png', dpi=FIGURE_DPI, bbox_inches='tight')
    plt.close()


def plot_fixed_effects(results, output_dir):
    """Fixed effect estimates with 95% confidence intervals."""
    fig, ax = plt.subplots(figsize=(12, 7))
    model_results = results['model_results']

    effects, coeffs, ci = [], np.empty(0), np.empty((0, 2))
    if 'fixed_effects' in model_results:
        all_effects = list(model_results['fixed_effects'].keys())
        all_coeffs = np.array([model_results['fixed_effects'][e] for e in all_effects], dtype=float)
        all_ci = np.array([model_results['fixed_effects_ci'][e] for e in all_effects], dtype=float)

        # Degenerate fits leave some estimates missing
        finite = np.isfinite(all_coeffs) & np.isfinite(all_ci).all(axis=1)
        effects = [e for e, keep in zip(all_effects, finite) if keep]
        coeffs, ci = all_coeffs[finite], all_ci[finite]

    if not effects:
        _not_available(ax, 'Fixed effects not available')
    else:
        p_values = model_results.get('fixed_effects_pvalues', {})

        y_pos = np.arange(len(effects))[::-1]
        colors = ['red' if _is_finite(p_values.get(e)) and p_values[e] < 0.05 else 'gray'
                  for e in effects]

        for y, coeff, (lower, upper), color in zip(y_pos, coeffs, ci, colors):
            ax.errorbar(coeff, y, xerr=[[coeff - lower], [upper - coeff]],
                        fmt='o', color=color, capsize=5, capthick=2)
            ax.text(coeff, y + 0.2, f'{coeff:.2f}', ha='center', va='bottom', fontsize=9)

        ax.set_yticks(y_pos)
        ax.set_yticklabels(effects, fontsize=10)
        ax.axvline(x=0, color='black', linestyle='--', alpha=0.5)
        ax.set_xlabel('Estimate (95% CI)')
        ax.set_title('Fixed Effects: Random Intercept Model', fontweight='bold')
        ax.grid(True, alpha=0.3)

        legend_elements = [Patch(facecolor='red', label='p < 0.05'),
                           Patch(facecolor='gray', label='p ≥ 0.05')]
        ax.legend(handles=legend_elements, loc='lower right')

    plt.tight_layout()
    plt.savefig(output_dir / 'fixed_effects.png', dpi=FIGURE_DPI, bbox_inches='tight')
    plt.close()


def plot_residual_diagnostics(fitted_df, output_dir):
    """Residuals vs fitted, residual distribution and normal Q-Q plot."""
    fig, (ax1, ax2, ax3) = plt.subplots(1, 3, figsize=(20, 6))

    usable = None
    if fitted_df is not None:
        usable = fitted_df[np.isfinite(fitted_df['fitted']) & np.isfinite(fitted_df['residual'])]

    # A Q-Q fit needs at least three residuals
    if usable is None or len(usable) < 3:
        for ax in (ax1, ax2, ax3):
            _not_available(ax, 'Residuals not available')
    else:
        fitted_df = usable
        residuals = fitted_df['residual']

        ax1.scatter(fitted_df['fitted'], residuals, alpha=0.3, s=10)
        ax1.axhline(y=0, color='red', linestyle='--')
        ax1.set_xlabel('Fitted Values')
        ax1.set_ylabel('Residuals')
        ax1.set_title('Residuals vs Fitted', fontweight='bold')
        ax1.grid(True, alpha=0.3)

        ax2.hist(residuals, bins=50, alpha=0.7, density=True, color='skyblue')
        mu, sigma = residuals.mean(), residuals.std()
        x = np.linspace(residuals.min(), residuals.max(), 100)
        ax2.plot(x, stats.norm.pdf(x, mu, sigma), 'r-', linewidth=2, label='Normal Distribution')
        ax2.set_xlabel('Residual')
        ax2.set_ylabel('Density')
        ax2.set_title('Residual Distribution', fontweight='bold')
        ax2.legend()
        ax2.grid(True, alpha=0.3)

        stats.probplot(residuals, dist="norm", plot=ax3)
        ax3.set_title('Normal Q-Q Plot of Residuals', fontweight='bold')
        ax3.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig(output_dir / 'residual_diagnostics.png', dpi=FIGURE_DPI, bbox_inches='tight')
    plt.close()


def plot_predicted_trajectories(df, predictions, output_dir):
    """Raw data with the population-level predicted line per group."""
    fig, ax = plt.subplots(figsize=(10, 8))
    colors = group_colors(df['parent_grp'].unique())

    for group, color in colors.items():
        group_data = df[df['parent_grp'] == group]
        ax.scatter(_jitter(group_data['age'].values), group_data['wellbeing'],
                   color=color, alpha=0.2, s=10)

        if predictions is not None:
            line = predictions[predictions['parent_grp'] == group].sort_values('age')
            ax.plot(line['age'], line['prediction'], color=color, linewidth=3,
                    marker='o', label=group)

    if predictions is None:
        _not_available(ax, 'Predictions not available')

    ax.set_xticks(list(AGE_LABELS))
    ax.set_xticklabels([f'{k} ({v})' for k, v in AGE_LABELS.items()])
    ax.set_xlabel('Age')
    ax.set_ylabel('Wellbeing')
    ax.set_title('Wellbeing by Age: Predicted Group Trajectories', fontweight='bold')
    ax.legend(title='Parent Group')
    ax.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig(output_dir / 'predicted_trajectories.png', dpi=FIGURE_DPI, bbox_inches='tight')
    plt.close()


def plot_random_effects_dashboard(df, results, tables, output_dir):
    """One-page overview of the data and the model."""
    fig = plt.figure(figsize=(20, 12))
    gs = fig.add_gridspec(3, 4, hspace=0.3, wspace=0.3)
    colors = group_colors(df['parent_grp'].unique())
    model_results = results['model_results']

    ax1 = fig.add_subplot(gs[0, :2])
    _overlaid_histogram(ax1, df[df['age'] == 0], 'wellbeing', colors,
                        f'Wellbeing at {AGE_LABELS[0]}', 'Wellbeing')

    ax2 = fig.add_subplot(gs[0, 2:])
    _overlaid_histogram(ax2, to_wide(df), 'diff', colors,
                        'Wellbeing Difference', 'Wellbeing Difference')

    # Group sizes
    ax3 = fig.add_subplot(gs[1, 0])
    counts = df[df['age'] == 0]['parent_grp'].value_counts().sort_index()
    ax3.pie(counts.values, labels=counts.index, autopct='%1.1f%%',
            colors=[colors[g] for g in counts.index])
    ax3.set_title('Parent Groups', fontweight='bold')

    # Variance decomposition
    ax4 = fig.add_subplot(gs[1, 1])
    random_var = model_results.get('random_effects_var')
    residual_var = model_results.get('residual_var')
    if _is_finite(random_var) and _is_finite(residual_var) and random_var + residual_var > 0:
        total_var = random_var + residual_var
        ax4.bar([0], [random_var / total_var * 100], label='Participant', alpha=0.7)
        ax4.bar([0], [residual_var / total_var * 100], bottom=[random_var / total_var * 100],
                label='Residual', alpha=0.7)
        ax4.set_xticks([])
        ax4.set_ylabel('Variance (%)')
        ax4.legend()
    else:
        _not_available(ax4, 'Variance data not available')
    ax4.set_title('Variance Decomposition', fontweight='bold')

    # Predicted trajectories
    ax5 = fig.add_subplot(gs[1, 2:])
    predictions = tables.get('predictions')
    if predictions is not None:
        for group, color in colors.items():
            line = predictions[predictions['parent_grp'] == group].sort_values('age')
            ax5.plot(line['age'], line['prediction'], color=color, linewidth=3, marker='o', label=group)
        ax5.set_xticks(list(AGE_LABELS))
        ax5.set_xticklabels([str(v) for v in AGE_LABELS.values()])
        ax5.set_xlabel('Age')
        ax5.set_ylabel('Predicted Wellbeing')
        ax5.legend(title='Parent Group')
        ax5.grid(True, alpha=0.3)
    else:
        _not_available(ax5, 'Predictions not available')
    ax5.set_title('Predicted Group Trajectories', fontweight='bold')

    # Key statistics
    ax6 = fig.add_subplot(gs[2, :])
    ax6.axis('off')

    stats_text = f"""
    RANDOM INTERCEPT MODEL ANALYSIS SUMMARY

    Dataset Overview:
    • Participants: {df['pid'].nunique():,}
    • Observations: {len(df):,}
    • Groups: {', '.join(f'{g} ({n})' for g, n in counts.items())}

    Model:
    """
    if 'error' in model_results:
        stats_text += f"• Model failed: {model_results['error']}\n"
    else:
        stats_text += f"• {model_results['formula']} + (1 | pid), {model_results['method']}\n"
        stats_text += f"• Intraclass Correlation (Participant): {_fmt(model_results['icc'], '.3f')}\n"
        if not model_results['converged']:
            stats_text += "• Warning: the model did not converge\n"
        for group, traj in model_results['group_trajectories'].items():
            start = _fmt(traj[f'wellbeing_{AGE_LABELS[0]}'], '.1f')
            end = _fmt(traj[f'wellbeing_{AGE_LABELS[1]}'], '.1f')
            stats_text += f"• {group}: {start} -> {end} ({_fmt(traj['change'], '+.1f')})\n"

    ax6.text(0.05, 0.95, stats_text, transform=ax6.transAxes,
             fontsize=11, verticalalignment='top', fontfamily='monospace',
             bbox=dict(boxstyle="round,pad=0.5", facecolor="lightgray", alpha=0.8))

    plt.suptitle('Parent Wellbeing Random Intercept Dashboard', fontsize=20, fontweight='bold', y=0.98)
    plt.savefig(output_dir / 'random_effects_dashboard.png', dpi=FIGURE_DPI, bbox_inches='tight')
    plt.close()


def _significance(p_val):
    if p_val is None or pd.isna(p_val):
        return ""
    return " ***" if p_val < 0.001 else " **" if p_val < 0.01 else " *" if p_val < 0.05 else ""


def generate_model_report(df, results, tables, output_dir):
    """Generate a comprehensive text report."""
    model_results = results['model_results']
    wide = to_wide(df)

    report = []
    report.append("RANDOM INTERCEPT MODEL ANALYSIS REPORT")
    report.append("=" * 50)
    report.append(f"Analysis Date: {pd.Timestamp.now().strftime('%Y-%m-%d %H:%M:%S')}")
    report.append(f"Dataset: {wide['pid'].nunique()} participants, {len(df)} observations\n")

    # Data summary
    report.append("DATA SUMMARY")
    report.append("-" * 20)
    for group, data in wide.groupby('parent_grp'):
        report.append(f"{group}: n={len(data)}, "
                      f"{AGE_LABELS[0]} = {data['wellbeing_23'].mean():.1f} ± {data['wellbeing_23'].std():.1f}, "
                      f"{AGE_LABELS[1]} = {data['wellbeing_26'].mean():.1f} ± {data['wellbeing_26'].std():.1f}, "
                      f"change = {data['diff'].mean():+.2f}")

    anova = results.get('data_summary', {}).get('anova')
    if anova:
        report.append(f"One-way ANOVA at {AGE_LABELS[0]}: F = {_fmt(anova['wellbeing_23']['F'], '.2f')} "
                      f"(p={_fmt(anova['wellbeing_23']['p_value'], '.3g')})")
        report.append(f"One-way ANOVA on change: F = {_fmt(anova['diff']['F'], '.2f')} "
                      f"(p={_fmt(anova['diff']['p_value'], '.3g')})")
    report.append("")

    if 'error' in model_results:
        report.append("MODEL")
        report.append("-" * 20)
        report.append(f"Model failed to fit: {model_results['error']}")
    else:
        report.append("MODEL")
        report.append("-" * 20)
        report.append(f"Formula: {model_results['formula']} + (1 | pid)")
        report.append(f"Method: {model_results['method']}")
        report.append(f"Converged: {model_results['converged']}")
        report.append(f"Log-Likelihood: {_fmt(model_results['log_likelihood'], '.2f')}")
        if not model_results['converged']:
            report.append("Warning: the model did not converge; estimates may be missing")
        report.append(f"Reference group: {model_results['reference_group']}")
        report.append("")

        # Fixed effects
        report.append("FIXED EFFECTS")
        report.append("-" * 25)
        coefficients = tables.get('coefficients')
        if coefficients is not None:
            for _, row in coefficients.iterrows():
                report.append(f"  {row['term']}: {row['estimate']:.4f} "
                              f"[{row['ci_lower']:.3f}, {row['ci_upper']:.3f}] "
                              f"(p={row['p_value']:.3g}){_significance(row['p_value'])}")
                report.append(f"      {row['interpretation']}")
        else:
            p_values = model_results.get('fixed_effects_pvalues', {})
            for effect, coeff in model_results['fixed_effects'].items():
                p_val = p_values.get(effect)
                report.append(f"  {effect}: {_fmt(coeff, '.4f')} (p={_fmt(p_val, '.3g')}){_significance(p_val)}")
        report.append("")

        # Variance components
        report.append("VARIANCE COMPONENTS")
        report.append("-" * 25)
        report.append(f"Participant intercept variance: {_fmt(model_results['random_effects_var'], '.3f')}")
        report.append(f"Residual variance: {_fmt(model_results['residual_var'], '.3f')}")
        report.append(f"ICC: {_fmt(model_results['icc'], '.3f')}")
        report.append("")

        report.append("GROUP TRAJECTORIES")
        report.append("-" * 25)
        for group, traj in model_results['group_trajectories'].items():
            start = _fmt(traj[f'wellbeing_{AGE_LABELS[0]}'], '.2f')
            end = _fmt(traj[f'wellbeing_{AGE_LABELS[1]}'], '.2f')
            report.append(f"  {group}: {start} at {AGE_LABELS[0]} -> "
                          f"{end} at {AGE_LABELS[1]} ({_fmt(traj['change'], '+.2f')})")
        report.append("")

    # Notes
    report.append("INTERPRETATION NOTES")
    report.append("-" * 25)
    report.append("• The age terms are each group's own change from 23 to 26, "
                  "not differences from the reference group's change")
    report.append("• Comparing changes between groups needs contrast coding; "
                  "interpret such contrasts with care")

    with open(output_dir / 'random_effects_report.txt', 'w') as f:
        f.write('\n'.join(report))


def create_visualisations(results_dir=DATA_DIR, figures_dir=FIGURES_DIR):
    print("Creating random intercept model visualizations...")

    # Setup output directory
    output_dir = ensure_output_dir(TECHNIQUE_NAME, figures_dir)

    # Load results
    df, results, tables = load_results(results_dir)

    print("Plotting wellbeing distributions...")
    plot_wellbeing_distributions(df, output_dir)
    plot_group_histograms(df, output_dir)
    plot_wellbeing_by_age(df, output_dir)

    print("Plotting model results...")
    plot_fixed_effects(results, output_dir)
    plot_residual_diagnostics(tables['fitted'], output_dir)
    plot_predicted_trajectories(df, tables['predictions'], output_dir)

    print("Creating summary dashboard...")
    plot_random_effects_dashboard(df, results, tables, output_dir)

    print("Generating analysis report...")
    generate_model_report(df, results, tables, output_dir)

    print(f"All visualizations saved to {output_dir}/")
    print("Generated files:")
    for file in sorted(output_dir.iterdir()):
        print(f"  - {file.name}")
    return output_dir


def main():
    """Main visualization function."""
    parser = argparse.ArgumentParser(description='Plot the random intercept wellbeing analysis')
    parser.add_argument('-r', '--results-dir', default=str(DATA_DIR), help='Directory with model results')
    parser.add_argument('-o', '--output-dir', default=str(FIGURES_DIR), help='Figures directory')
    args = parser.parse_args()

    create_visualisations(args.results_dir, args.output_dir)


if __name__ == "__main__":
    main()
