import numpy as np
import pytest

from prodline_data_loader import load_week8_case


@pytest.fixture
def week8():
    data, _ = load_week8_case()
    return data


@pytest.fixture
def utilities(week8):
    return np.array(week8.utilities)


@pytest.fixture
def margins(week8):
    return np.array(week8.margins)


@pytest.fixture
def separable_market():
    """Every customer's favourite candidate is also their most profitable acceptable one."""
    utilities = np.array([
        [0.0, 2.0, 1.0, -1.0],
        [0.0, -1.0, 1.0, 2.0],
        [0.0, 1.0, -1.0, -1.0],
        [0.0, -1.0, 2.0, -1.0],
    ])
    margins = np.array([5.0, 3.0, 4.0])
    return utilities, margins
