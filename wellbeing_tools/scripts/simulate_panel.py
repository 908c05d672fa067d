#!/usr/bin/env python3
"""
Synthetic Parent Wellbeing Panel
Simulates wellbeing scores at ages 23 and 26 for three parenting-history groups.
"""

import pandas as pd
import numpy as np
import json
import logging
import argparse
from pathlib import Path
from typing import Dict, Optional
from scipy import stats
import warnings
warnings.filterwarnings('ignore')

logger = logging.getLogger(__name__)

# Sample
N_PARTICIPANTS = 3000

# Average wellbeing score at 23 for each parent group
GROUP_MEANS = {
    'existing': 50,
    'never': 75,
    'new': 30,
}

# Average change in wellbeing between 23 and 26
GROUP_SLOPES = {
    'existing': -10,
    'never': 15,
    'new': 10,
}

BASELINE_SD = 10         # Spread in wellbeing scores at 23
BASELINE_NOISE_SD = 5    # Measurement noise at 23
FOLLOWUP_NOISE_SD = 2    # Noise on the change to 26

# Age coding used by the model (0 represents 23, 1 represents 26)
AGE_LABELS = {0: 23, 1: 26}

DATA_DIR = Path('data/processed')
PANEL_FILE = 'wellbeing_panel.csv'
SUMMARY_FILE = 'wellbeing_panel_summary.json'


def setup_directories(output_dir=DATA_DIR):
    """Create necessary directories if they don't exist."""
    Path(output_dir).mkdir(parents=True, exist_ok=True)


def simulate_wellbeing_panel(n_participants: int = N_PARTICIPANTS,
                             group_means: Optional[Dict[str, float]] = None,
                             group_slopes: Optional[Dict[str, float]] = None,
                             baseline_sd: float = BASELINE_SD,
                             baseline_noise_sd: float = BASELINE_NOISE_SD,
                             followup_noise_sd: float = FOLLOWUP_NOISE_SD,
                             seed: Optional[int] = None) -> pd.DataFrame:
    """
    Generate the long-format wellbeing panel.

    Args:
        n_participants: Number of simulated parents
        group_means: Mean wellbeing at 23 per parent group
        group_slopes: Mean change from 23 to 26 per parent group
        baseline_sd: Spread of wellbeing at 23 around the group mean
        baseline_noise_sd: Extra noise added to every score at 23
        followup_noise_sd: Noise added to each participant's change
        seed: Seed for the random generator

    Returns:
        DataFrame with columns pid, age, parent_grp, wellbeing. All age 0
        rows come first, followed by the age 1 rows in the same pid order.
    """
    group_means = dict(GROUP_MEANS if group_means is None else group_means)
    group_slopes = dict(GROUP_SLOPES if group_slopes is None else group_slopes)

    if n_participants < 1:
        raise ValueError(f"n_participants must be at least 1, got {n_participants}")
    if set(group_means) != set(group_slopes):
        raise ValueError(
            f"group_means and group_slopes must name the same groups: "
            f"{sorted(group_means)} vs {sorted(group_slopes)}"
        )
    for name, sd in [('baseline_sd', baseline_sd),
                     ('baseline_noise_sd', baseline_noise_sd),
                     ('followup_noise_sd', followup_noise_sd)]:
        if sd < 0:
            raise ValueError(f"{name} must be non-negative, got {sd}")

    rng = np.random.default_rng(seed)
    groups = sorted(group_means)

    # One parent group per participant, kept at both ages
    parent_grp = rng.choice(groups, size=n_participants, replace=True)
    means = np.array([group_means[g] for g in parent_grp], dtype=float)
    slopes = np.array([group_slopes[g] for g in parent_grp], dtype=float)

    well_being_23 = rng.normal(means, baseline_sd)
    well_being_23 = well_being_23 + rng.normal(0, baseline_noise_sd, n_participants)

    well_being_26 = well_being_23 + slopes
    well_being_26 = well_being_26 + rng.normal(0, followup_noise_sd, n_participants)

    pid = np.arange(1, n_participants + 1)
    df = pd.DataFrame({
        'pid': np.tile(pid, 2),
        'age': np.repeat([0, 1], n_participants),
        'parent_grp': np.tile(parent_grp, 2),
        'wellbeing': np.concatenate([well_being_23, well_being_26]),
    })

    logger.debug(f"Simulated {n_participants} participants: "
                 f"{df.loc[df['age'] == 0, 'parent_grp'].value_counts().to_dict()}")
    return df


def to_wide(df: pd.DataFrame) -> pd.DataFrame:
    """One row per participant with wellbeing at both ages and the change."""
    wide = df.pivot_table(index=['pid', 'parent_grp'], columns='age',
                          values='wellbeing').reset_index()
    wide.columns.name = None
    wide = wide.rename(columns={age: f'wellbeing_{label}' for age, label in AGE_LABELS.items()})
    wide['diff'] = wide['wellbeing_26'] - wide['wellbeing_23']
    return wide


def summarize_panel(df: pd.DataFrame) -> dict:
    """Descriptive statistics per group and one-way ANOVAs across groups."""
    wide = to_wide(df)

    group_stats = wide.groupby('parent_grp').agg({
        'pid': 'count',
        'wellbeing_23': ['mean', 'std'],
        'wellbeing_26': ['mean', 'std'],
        'diff': ['mean', 'std'],
    }).round(3)
    group_stats.columns = ['count', 'mean_23', 'std_23', 'mean_26', 'std_26',
                           'mean_diff', 'std_diff']

    summary = {
        'n_participants': int(wide['pid'].nunique()),
        'n_observations': int(len(df)),
        'group_counts': wide['parent_grp'].value_counts().sort_index().to_dict(),
        'group_statistics': group_stats.to_dict(orient='index'),
    }

    # Group differences need at least two groups with two members each
    samples_23 = [g['wellbeing_23'].values for _, g in wide.groupby('parent_grp') if len(g) > 1]
    samples_diff = [g['diff'].values for _, g in wide.groupby('parent_grp') if len(g) > 1]

    if len(samples_23) > 1:
        f_23, p_23 = stats.f_oneway(*samples_23)
        f_diff, p_diff = stats.f_oneway(*samples_diff)
        summary['anova'] = {
            'wellbeing_23': {'F': float(f_23), 'p_value': float(p_23)},
            'diff': {'F': float(f_diff), 'p_value': float(p_diff)},
        }
    else:
        summary['anova'] = None

    return summary


def save_panel(df, summary, output_dir=DATA_DIR):
    """Save the simulated panel and its summary."""
    output_dir = Path(output_dir)
    setup_directories(output_dir)

    df.to_csv(output_dir / PANEL_FILE, index=False)

    with open(output_dir / SUMMARY_FILE, 'w') as f:
        json.dump(summary, f, indent=2, default=str)

    logger.info(f"Panel saved to {output_dir / PANEL_FILE}")


def load_panel(path=DATA_DIR / PANEL_FILE) -> pd.DataFrame:
    """Load a saved panel, keeping parent_grp as a string column."""
    return pd.read_csv(path, dtype={'parent_grp': str})


def print_summary(summary):
    print(f"\nSimulated Panel Summary:")
    print(f"Participants: {summary['n_participants']}")
    print(f"Observations: {summary['n_observations']}")
    for group, row in summary['group_statistics'].items():
        print(f"  {group}: n={row['count']}, "
              f"23 = {row['mean_23']:.1f} ± {row['std_23']:.1f}, "
              f"26 = {row['mean_26']:.1f} ± {row['std_26']:.1f}, "
              f"change = {row['mean_diff']:+.1f}")
    if summary['anova']:
        print(f"ANOVA at 23: F = {summary['anova']['wellbeing_23']['F']:.1f}, "
              f"p = {summary['anova']['wellbeing_23']['p_value']:.3g}")


def main():
    """Main execution function."""
    parser = argparse.ArgumentParser(description='Simulate the parent wellbeing panel')
    parser.add_argument('-n', '--n', type=int, default=N_PARTICIPANTS, help='Number of participants')
    parser.add_argument('-s', '--seed', type=int, default=None, help='Random seed')
    parser.add_argument('-o', '--output-dir', default=str(DATA_DIR), help='Output directory')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')

    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    print("Simulating wellbeing panel...")
    df = simulate_wellbeing_panel(n_participants=args.n, seed=args.seed)
    summary = summarize_panel(df)
    save_panel(df, summary, args.output_dir)
    print_summary(summary)


if __name__ == "__main__":
    main()
