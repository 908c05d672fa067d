import pytest

from wellbeing_tools.scripts.simulate_panel import simulate_wellbeing_panel
from wellbeing_tools.scripts.random_effects_model import run_model


@pytest.fixture(scope="session")
def panel():
    """Simulated panel shared by the model and plotting tests."""
    return simulate_wellbeing_panel(n_participants=900, seed=2024)


@pytest.fixture(scope="session")
def model_run(panel):
    """(fitted, results, tables) for the shared panel."""
    return run_model(panel)
