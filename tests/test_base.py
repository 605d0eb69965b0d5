"""
Tests for base components
"""
import pytest
from pysplitflame.core.base import (
    FlameComponent, TransportComponent, ChemistryComponent, OperatorKind
)


def test_flame_component_requires_implementation():
    """Test that FlameComponent cannot be instantiated without implementation."""
    with pytest.raises(TypeError):
        FlameComponent()


def test_flame_component_configuration():
    """Test component configuration handling."""
    class TestComponent(FlameComponent):
        def initialize(self):
            super().initialize()

    config = {'test': 'value'}
    component = TestComponent(config)
    assert component._config == config
    assert not component.is_initialized()

    component.initialize()
    assert component.is_initialized()


def test_default_configuration_is_empty():
    class TestComponent(FlameComponent):
        def initialize(self):
            pass

    assert TestComponent()._config == {}


def test_transport_component_requires_split_reset():
    """Transport operators must be able to zero their split constants."""
    class Incomplete(TransportComponent):
        kind = OperatorKind.DiffusionSpecies

        def initialize(self):
            pass

    with pytest.raises(TypeError):
        Incomplete()


def test_chemistry_component_kind():
    class Rates(ChemistryComponent):
        def initialize(self):
            pass

        def compute_rates(self, T, Y):
            return Y

    assert Rates().kind == OperatorKind.Reaction
