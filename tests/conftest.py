"""
PyTest configuration and fixtures
"""
import pytest
import numpy as np

from pysplitflame.core.gas import CanteraGas
from pysplitflame.core.grid import OneDimGrid, GridConfig


@pytest.fixture
def h2o2_gas():
    """Return a property evaluator for the hydrogen/oxygen mechanism."""
    return CanteraGas('h2o2.yaml')


@pytest.fixture
def uniform_grid():
    """Return a five point planar grid on [-1, 1]."""
    grid = OneDimGrid(GridConfig())
    grid.setPoints(np.linspace(-1.0, 1.0, 5))
    return grid


@pytest.fixture
def fine_grid():
    """Return a 21 point planar grid on [0, 1]."""
    grid = OneDimGrid(GridConfig(gridMax=1.0))
    grid.setPoints(np.linspace(0.0, 1.0, 21))
    return grid


class FakeGas:
    """Stand-in exposing only what the convection coordinator reads"""
    def __init__(self, molecular_weights, pressure=101325.0):
        self.molecular_weights = np.asarray(molecular_weights, dtype=float)
        self.n_spec = len(self.molecular_weights)
        self.pressure = pressure


@pytest.fixture
def two_species_gas():
    """Return a two species stand-in with H2 and O2 molecular weights."""
    return FakeGas([2.016, 31.998])


@pytest.fixture
def equal_weight_gas():
    """Return a two species stand-in whose species share one molecular weight."""
    return FakeGas([28.0, 28.0])
