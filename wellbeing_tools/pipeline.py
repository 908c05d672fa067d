#!/usr/bin/env python3
"""
Parent Wellbeing Analysis Pipeline
Simulates the panel, fits the random intercept model and draws the figures.
"""

import logging
import argparse
from pathlib import Path

from wellbeing_tools.scripts.simulate_panel import (
    DATA_DIR, N_PARTICIPANTS, print_summary, save_panel,
    simulate_wellbeing_panel, summarize_panel,
)
from wellbeing_tools.scripts.random_effects_model import print_results, run_model, save_results
from wellbeing_tools.visualisation.random_effects_model import FIGURES_DIR, create_visualisations

logger = logging.getLogger(__name__)


def run_pipeline(n_participants=N_PARTICIPANTS, seed=None, data_dir=DATA_DIR,
                 figures_dir=FIGURES_DIR, make_figures=True):
    """Run simulation, model fit and visualisation in order."""
    data_dir = Path(data_dir)

    print("Simulating wellbeing panel...")
    df = simulate_wellbeing_panel(n_participants=n_participants, seed=seed)
    panel_summary = summarize_panel(df)
    save_panel(df, panel_summary, data_dir)
    print_summary(panel_summary)

    fitted, results, tables = run_model(df)
    full_results = save_results(fitted, results, tables, panel_summary, data_dir)
    print_results(results)

    if make_figures:
        create_visualisations(data_dir, figures_dir)
    else:
        logger.info("Skipping figures")

    return full_results


def main():
    """Main execution function."""
    parser = argparse.ArgumentParser(description='Parent wellbeing random intercept analysis')
    parser.add_argument('-n', '--n', type=int, default=N_PARTICIPANTS, help='Number of participants')
    parser.add_argument('-s', '--seed', type=int, default=None, help='Random seed')
    parser.add_argument('-d', '--data-dir', default=str(DATA_DIR), help='Directory for data and results')
    parser.add_argument('-f', '--figures-dir', default=str(FIGURES_DIR), help='Directory for figures')
    parser.add_argument('--no-figures', action='store_true', help='Skip the visualisation step')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose logging')

    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    run_pipeline(n_participants=args.n, seed=args.seed, data_dir=args.data_dir,
                 figures_dir=args.figures_dir, make_figures=not args.no_figures)
    print("Parent wellbeing analysis complete!")


if __name__ == "__main__":
    main()
