"""
Tests for convection transport system
"""
import pytest
import numpy as np
import cantera as ct
from pysplitflame.core.config import StrainConfig
from pysplitflame.core.errors import (
    BoundaryConditionError, DimensionMismatchError, IntegrationError
)
from pysplitflame.core.grid import OneDimGrid, GridConfig, BoundaryCondition
from pysplitflame.core.quasi2d import BilinearInterpolator
from pysplitflame.solvers.split_manager import SplitConstants
from pysplitflame.solvers.strain import StrainFunction
from pysplitflame.transport.convection import (
    ConvectionSystemUTW, ConvectionSystemY, ConvectionSystemSplit,
    ContinuityBoundaryCondition
)

W_N2 = 28.0134
STRAIN = 100.0


def constant_strain(a=STRAIN):
    return StrainFunction(StrainConfig(initial=a, final=a))


def two_species_split(gas, Y, n_threads=1):
    """Split convection of a two species mixture on [-1, 1] fed from the left"""
    n_points = Y.shape[1]
    grid = OneDimGrid(GridConfig())
    grid.setPoints(np.linspace(-1.0, 1.0, n_points))

    system = ConvectionSystemSplit(n_threads=n_threads)
    system.set_gas(gas)
    system.set_grid(grid)
    system.resize(n_points, n_points, 2)
    system.set_strain_function(constant_strain())
    system.set_boundary_conditions(
        BoundaryCondition.FixedValue, BoundaryCondition.FixedValue,
        ContinuityBoundaryCondition.Left, 0)
    system.set_rvzero(0.5)
    system.set_state(np.full(n_points, STRAIN), np.full(n_points, 300.0), Y, 0.0)
    system.set_density_derivative(np.zeros(n_points))
    system.set_split_constants(SplitConstants.zeros(2, n_points))
    return system


class TestUTWSystem:
    """Tests for the UTW (Velocity-Temperature-Weight) system"""

    @pytest.fixture
    def utw_system(self, uniform_grid):
        """Create basic UTW system on five points with uniform nitrogen"""
        system = ConvectionSystemUTW()
        system.set_grid(uniform_grid)
        system.resize(uniform_grid.nPoints)
        system.set_boundary_conditions(
            left_bc=BoundaryCondition.FixedValue,
            right_bc=BoundaryCondition.FixedValue,
            continuity_bc=ContinuityBoundaryCondition.Left,
            j_cont_bc=0
        )
        system.strain_function = constant_strain()
        system.T = np.full(5, 300.0)
        system.U = np.full(5, STRAIN)
        system.Wmx = np.full(5, W_N2)
        system.rho = system.P * system.Wmx / (ct.gas_constant * system.T)
        return system

    def test_initialization(self, uniform_grid):
        """Test basic initialization"""
        system = ConvectionSystemUTW()
        system.set_grid(uniform_grid)
        system.resize(5)
        assert system.T.shape == (5,)
        assert system.rV.shape == (5,)
        assert np.all(system.split_const_T == 0)
        assert np.all(system.split_const_U == 0)
        assert np.all(system.split_const_W == 0)

    def test_left_continuity(self, utw_system):
        utw_system.r_vzero = 0.1
        utw_system._calculate_V()
        assert utw_system.rV[0] == 0.1
        # Outflow term rho*U is positive, so the mass flux decreases to the right
        assert np.all(np.diff(utw_system.rV) < 0)

    def test_right_continuity(self, utw_system):
        utw_system.continuity_bc = ContinuityBoundaryCondition.Right
        utw_system.r_vzero = -0.2
        utw_system._calculate_V()
        assert utw_system.rV[-1] == -0.2
        assert np.all(np.diff(utw_system.rV) < 0)

    def test_zero_continuity(self, utw_system):
        """Stagnation point at x = 0 gives an antisymmetric inflow"""
        utw_system.set_boundary_conditions(
            BoundaryCondition.FixedValue, BoundaryCondition.FixedValue,
            ContinuityBoundaryCondition.Zero, 2, x_vzero=0.0)
        utw_system._calculate_V()

        rV = utw_system.rV
        rho_a = utw_system.rho[0] * STRAIN
        assert rV[2] == 0.0
        assert rV[1] > 0 and rV[3] < 0
        np.testing.assert_allclose(rV, [rho_a, 0.5 * rho_a, 0.0, -0.5 * rho_a, -rho_a])

    def test_zero_continuity_requires_location(self, utw_system):
        utw_system.continuity_bc = ContinuityBoundaryCondition.Zero
        utw_system.x_vzero = None
        with pytest.raises(BoundaryConditionError):
            utw_system._calculate_V()

    def test_uniform_state_is_steady(self, utw_system):
        """Potential flow with U = a balances the imposed strain"""
        ydot = utw_system.f(0.0, utw_system.roll_y())
        assert len(ydot) == 15
        np.testing.assert_allclose(ydot, 0.0, atol=1e-8)

        extra = utw_system.side_effects()
        np.testing.assert_array_equal(extra['rV'], utw_system.rV)
        assert set(extra) == {'V', 'rV', 'rho'}

    def test_split_constants_pass_through(self, utw_system):
        split = np.arange(5.0)
        utw_system.set_split_constants(split, 2 * split, np.zeros(5))
        ydot = utw_system.f(0.0, utw_system.roll_y())
        np.testing.assert_allclose(ydot[:5], split, atol=1e-8)
        np.testing.assert_allclose(ydot[5:10], 2 * split, atol=1e-8)

    def test_state_size_checked(self, utw_system):
        with pytest.raises(DimensionMismatchError):
            utw_system.f(0.0, np.ones(12))
        with pytest.raises(DimensionMismatchError):
            utw_system.set_split_constants(np.zeros(4), np.zeros(5), np.zeros(5))

    def test_rV_to_V_conversion(self):
        """Test conversion between rV and V"""
        grid = OneDimGrid(GridConfig(cylindricalFlame=True))
        grid.setPoints(np.linspace(0, 1, 5))
        system = ConvectionSystemUTW()
        system.set_grid(grid)
        system.resize(5)

        system.rV = np.array([1.0, 2.0, 3.0, 4.0, 5.0])
        system.rV2V()
        # V = rV/r, except on the axis
        np.testing.assert_allclose(system.V, [1.0, 8.0, 6.0, 16.0 / 3.0, 5.0])

        V = system.V.copy()
        system.V2rV()
        system.rV2V()
        np.testing.assert_allclose(system.V, V)

    def test_nearest_index(self, uniform_grid):
        system = ConvectionSystemUTW()
        system.set_grid(uniform_grid)
        system.resize(5)
        # x = [-1, -0.5, 0, 0.5, 1]
        assert system.nearest_index(0.1) == 2
        assert system.nearest_index(-0.75) == 0  # tie takes the lower index
        assert system.nearest_index(5.0) == 4

    def test_zero_crossing_update(self, utw_system):
        mass_flux = np.array([1.0, 0.5, -0.5, -1.0, -2.0])
        utw_system.x_vzero = None
        utw_system.update_continuity_boundary_condition(
            mass_flux, ContinuityBoundaryCondition.Zero)
        assert utw_system.continuity_bc == ContinuityBoundaryCondition.Zero
        np.testing.assert_allclose(utw_system.x_vzero, -0.25)
        assert utw_system.j_cont_bc == 1

    def test_zero_crossing_nearest_previous(self, utw_system):
        mass_flux = np.array([1.0, -1.0, -1.0, 1.0, 1.0])
        utw_system.x_vzero = 0.5
        utw_system.update_continuity_boundary_condition(
            mass_flux, ContinuityBoundaryCondition.Zero)
        np.testing.assert_allclose(utw_system.x_vzero, 0.25)

    def test_no_crossing_keeps_previous(self, utw_system):
        with pytest.raises(BoundaryConditionError):
            utw_system.update_continuity_boundary_condition(
                np.ones(5), ContinuityBoundaryCondition.Zero)
        assert utw_system.continuity_bc == ContinuityBoundaryCondition.Left

    def test_temperature_anchor(self, utw_system):
        utw_system.T = np.array([300.0, 400.0, 1000.0, 1800.0, 2000.0])
        utw_system.update_continuity_boundary_condition(
            np.zeros(5), ContinuityBoundaryCondition.Temp)
        # First interval crossing the mid temperature is [2, 3]
        assert utw_system.j_cont_bc == 3

    def test_qdot_anchor(self, utw_system):
        with pytest.raises(BoundaryConditionError):
            utw_system.update_continuity_boundary_condition(
                np.zeros(5), ContinuityBoundaryCondition.Qdot)
        utw_system.update_continuity_boundary_condition(
            np.zeros(5), ContinuityBoundaryCondition.Qdot, np.array([0, 1, 5, 2, 0.0]))
        assert utw_system.j_cont_bc == 2
        assert utw_system.x_vzero == 0.0

    def test_anchor_size_checked(self, utw_system):
        """Profiles of the wrong length leave the current anchor in place"""
        utw_system.set_boundary_conditions(
            BoundaryCondition.FixedValue, BoundaryCondition.FixedValue,
            ContinuityBoundaryCondition.Zero, 2, x_vzero=0.0)

        for qdot in (np.array([0, 0, 0, 0, 0, 0, 9.0]), np.array([0, 9.0, 0])):
            with pytest.raises(DimensionMismatchError):
                utw_system.update_continuity_boundary_condition(
                    np.zeros(5), ContinuityBoundaryCondition.Qdot, qdot)
        with pytest.raises(DimensionMismatchError):
            utw_system.update_continuity_boundary_condition(
                np.array([1.0, -1.0, -1.0, -1.0]), ContinuityBoundaryCondition.Zero)

        assert utw_system.continuity_bc == ContinuityBoundaryCondition.Zero
        assert utw_system.j_cont_bc == 2
        assert utw_system.x_vzero == 0.0
        ydot = utw_system.f(0.0, utw_system.roll_y())
        np.testing.assert_allclose(ydot, 0.0, atol=1e-8)


class TestSpeciesSystem:
    """Tests for the species transport system"""

    @pytest.fixture
    def species_system(self, fine_grid):
        """Species system on [5, 10] of a 21 point grid"""
        system = ConvectionSystemY(k=1)
        system.set_grid(fine_grid)
        system.set_domain(5, 10)
        return system

    def test_initialization(self, species_system):
        """Test basic initialization"""
        assert species_system.n_points == 6
        assert len(species_system.v) == 6
        assert np.all(species_system.split_const == 0)

    def test_velocity_interpolation(self, species_system):
        """Test velocity field interpolation"""
        species_system.v_interp = {
            0.0: np.ones(21),
            1.0: np.full(21, 2.0)
        }

        species_system.update_v(0.5)
        np.testing.assert_array_almost_equal(species_system.v, np.full(6, 1.5))

        # Clamped outside the recorded times
        species_system.update_v(2.0)
        np.testing.assert_array_equal(species_system.v, np.full(6, 2.0))
        species_system.update_v(-1.0)
        np.testing.assert_array_equal(species_system.v, np.ones(6))

    def test_missing_velocity(self, species_system):
        with pytest.raises(IntegrationError):
            species_system.f(0.0, np.zeros(6))

    def test_uniform_profile_only_sees_split(self, species_system):
        species_system.v_interp = {0.0: np.full(21, 3.0)}
        split = np.linspace(0.0, 1.0, 6)
        species_system.set_split_constants(split)
        ydot = species_system.f(0.0, np.full(6, 0.2))
        np.testing.assert_allclose(ydot, split)

    def test_upwinding_inside_subrange(self, species_system, fine_grid):
        """Positive velocity uses backward differences; the first point has no upwind neighbour"""
        species_system.v_interp = {0.0: np.ones(21)}
        y = fine_grid.x[5:11] ** 2
        ydot = species_system.f(0.0, y)

        h = fine_grid.hh[5:10]
        assert ydot[0] == 0.0
        np.testing.assert_allclose(ydot[1:], -np.diff(y) / h)

    def test_negative_velocity_uses_forward_difference(self, species_system, fine_grid):
        species_system.v_interp = {0.0: -np.ones(21)}
        y = fine_grid.x[5:11] ** 2
        ydot = species_system.f(0.0, y)

        h = fine_grid.hh[5:10]
        np.testing.assert_allclose(ydot[:-1], np.diff(y) / h)
        assert ydot[-1] == 0.0

    def test_quasi2d_velocity(self, species_system, fine_grid):
        x = fine_grid.x
        t = np.array([0.0, 1.0])
        vz = BilinearInterpolator(x, t, np.full((21, 2), 6.0))
        vr = BilinearInterpolator(x, t, np.full((21, 2), 2.0))
        species_system.setup_quasi2d(vz, vr)
        species_system.update_v(0.5)
        np.testing.assert_allclose(species_system.v, 3.0)

    def test_size_checks(self, species_system):
        species_system.v_interp = {0.0: np.ones(21)}
        with pytest.raises(DimensionMismatchError):
            species_system.f(0.0, np.zeros(5))
        with pytest.raises(DimensionMismatchError):
            species_system.set_split_constants(np.zeros(21))


class TestConvectionSplit:
    """Tests for the main convection system"""

    @pytest.fixture
    def split_system(self, uniform_grid, h2o2_gas):
        """Split convection for uniform nitrogen with a stagnation point at x = 0"""
        system = ConvectionSystemSplit()
        system.set_gas(h2o2_gas)
        system.set_grid(uniform_grid)
        system.resize(5, 5, h2o2_gas.n_spec)
        system.set_strain_function(constant_strain())
        system.set_boundary_conditions(
            BoundaryCondition.FixedValue, BoundaryCondition.FixedValue,
            ContinuityBoundaryCondition.Zero, 2, x_vzero=0.0)

        Y = np.zeros((h2o2_gas.n_spec, 5))
        Y[h2o2_gas.species_index('N2')] = 1.0
        system.set_state(np.full(5, STRAIN), np.full(5, 300.0), Y, 0.0)
        system.set_density_derivative(np.zeros(5))
        return system

    def test_initialization(self, split_system, h2o2_gas):
        """Test system initialization"""
        assert len(split_system.species_systems) == h2o2_gas.n_spec
        assert split_system.Y.shape == (h2o2_gas.n_spec, 5)
        np.testing.assert_allclose(split_system.Wmx, W_N2, rtol=1e-4)
        assert split_system.species_domains() == ([0] * h2o2_gas.n_spec,
                                                  [4] * h2o2_gas.n_spec)

    def test_evaluate_after_reset(self, split_system):
        split_system.reset_split_constants()
        split_system.evaluate()
        np.testing.assert_allclose(split_system.dUdt, 0.0, atol=1e-6)
        np.testing.assert_allclose(split_system.dTdt, 0.0, atol=1e-10)
        np.testing.assert_allclose(split_system.dYdt, 0.0, atol=1e-12)
        assert split_system.rV[2] == 0.0

    def test_integration_of_uniform_state(self, split_system, h2o2_gas):
        """Test time integration"""
        split_system.integrate_to_time(1e-4)
        assert split_system.t == 1e-4
        np.testing.assert_allclose(split_system.T, 300.0, rtol=1e-8)
        np.testing.assert_allclose(split_system.U, STRAIN, rtol=1e-6)
        np.testing.assert_allclose(split_system.Y.sum(axis=0), 1.0, rtol=1e-8)
        assert split_system.get_num_steps() > 0
        assert len(split_system.v_interp) > 1

    def test_integrate_to_current_time(self, split_system):
        split_system.integrate_to_time(0.0)
        assert split_system.get_num_steps() == 0
        with pytest.raises(ValueError):
            split_system.integrate_to_time(-1.0)

    def test_unroll_requires_solution(self, split_system):
        with pytest.raises(RuntimeError):
            split_system.unroll_y()

    def test_invalid_species_domain(self, split_system, h2o2_gas):
        n = h2o2_gas.n_spec
        with pytest.raises(ValueError):
            split_system.set_species_domains([0] * n, [5] * n)
        with pytest.raises(ValueError):
            split_system.set_species_domains([3] * n, [2] * n)
        with pytest.raises(DimensionMismatchError):
            split_system.set_species_domains([0], [4])

    def test_split_constant_size_checked(self, split_system, h2o2_gas):
        with pytest.raises(DimensionMismatchError):
            split_system.set_split_constants(SplitConstants.zeros(h2o2_gas.n_spec, 4))

    def test_reset_restores_unsplit_derivatives(self, split_system, h2o2_gas):
        split_system.evaluate()
        unsplit = (split_system.dUdt.copy(), split_system.dTdt.copy(),
                   split_system.dYdt.copy())

        n_spec = h2o2_gas.n_spec
        split_system.set_split_constants(SplitConstants(
            np.full(5, 2.0), np.full(5, 3.0), np.full((n_spec, 5), 0.1)))
        split_system.evaluate()
        np.testing.assert_allclose(split_system.dUdt, unsplit[0] + 2.0, atol=1e-6)
        np.testing.assert_allclose(split_system.dTdt, unsplit[1] + 3.0, atol=1e-8)
        np.testing.assert_allclose(split_system.dYdt, unsplit[2] + 0.1, atol=1e-12)

        split_system.reset_split_constants()
        split_system.evaluate()
        np.testing.assert_array_equal(split_system.dUdt, unsplit[0])
        np.testing.assert_array_equal(split_system.dTdt, unsplit[1])
        np.testing.assert_array_equal(split_system.dYdt, unsplit[2])

    def test_mass_fractions_sum_preserved(self, two_species_gas):
        """A non-uniform mixture keeps its mass fractions summing to one"""
        Y = np.zeros((2, 11))
        Y[1] = 0.1 + 0.3 * np.sin(np.linspace(0.0, np.pi, 11))**2
        Y[0] = 1.0 - Y[1]
        system = two_species_split(two_species_gas, Y)
        system.integrate_to_time(1e-3)

        assert np.max(np.abs(system.Y - Y)) > 1e-3
        np.testing.assert_allclose(system.Y.sum(axis=0), 1.0, atol=1e-5)

    def test_species_outside_domain_unchanged(self, two_species_gas):
        """Points outside a species' sub-range are never touched"""
        Y = np.zeros((2, 6))
        Y[1] = [0.3, 0.1, 0.1, 0.2, 0.1, 0.4]
        Y[0] = 1.0 - Y[1]
        system = two_species_split(two_species_gas, Y, n_threads=2)
        system.set_species_domains([0, 2], [5, 4])

        for tf in (1e-4, 2e-4, 3e-4):
            system.integrate_to_time(tf)
            np.testing.assert_array_equal(system.Y[1, [0, 1, 5]], Y[1, [0, 1, 5]])
        assert not np.allclose(system.Y[1, 2:5], Y[1, 2:5])
        assert system.species_domains() == ([0, 2], [5, 4])

    def test_derivative_inside_domain_ignores_outside(self, equal_weight_gas):
        """Changing Y outside a sub-range leaves the derivative inside it unchanged"""
        Y = np.zeros((2, 11))
        Y[1] = np.linspace(0.1, 0.5, 11)
        Y[0] = 1.0 - Y[1]
        system = two_species_split(equal_weight_gas, Y)
        system.set_species_domains([0, 3], [10, 7])
        system.evaluate()
        inside = system.dYdt[1, 3:8].copy()
        assert np.any(inside != 0)

        Y[1, :3] = 0.99
        Y[1, 8:] = 0.99
        Y[0] = 1.0 - Y[1]
        system.set_state(system.U, system.T, Y, 0.0)
        system.evaluate()
        np.testing.assert_allclose(system.dYdt[1, 3:8], inside, rtol=1e-12, atol=1e-10)
        np.testing.assert_array_equal(system.dYdt[1, :3], 0.0)
        np.testing.assert_array_equal(system.dYdt[1, 8:], 0.0)

    def test_quasi2d_skips_utw(self, split_system, uniform_grid, h2o2_gas):
        x = uniform_grid.x
        t = np.array([0.0, 1.0])
        vz = BilinearInterpolator(x, t, np.zeros((5, 2)))
        vr = BilinearInterpolator(x, t, np.ones((5, 2)))
        split_system.setup_quasi2d(vz, vr)

        U0 = split_system.U.copy()
        split_system.integrate_to_time(1e-4)
        np.testing.assert_array_equal(split_system.U, U0)
        assert split_system.n_steps_utw == 0
