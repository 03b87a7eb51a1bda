import unittest
import numpy as np
from kinpath.equilibrium import EquilibriumSolver
from kinpath.errors import EquilibriumError, KineticPathError, PartitionError
from kinpath.kinetics import ArrheniusKinetics, PowerLawKinetics
from kinpath.models import Reaction, Species
from kinpath.ode import OdeStatus
from kinpath.options import EquilibriumOptions, KineticOptions, OdeOptions
from kinpath.partition import Partition
from kinpath.path import KineticContext, KineticPath, PathStatus, coefficient_matrix
from kinpath.reactions import ReactionSystem
from kinpath.system import ChemicalState, ChemicalSystem
from kinpath.thermo import IdealSolutionThermo, SpeciesProperties

TIGHT = KineticOptions(ode=OdeOptions(rtol=1e-10, atol=1e-14))


def _decay(k, exponents=None):
    """A -> B with A kinetic and B in equilibrium."""
    system = ChemicalSystem([Species("A", {"X": 1}), Species("B", {"X": 1})])
    kinetics = PowerLawKinetics(
        ArrheniusKinetics(k, 0.0), exponents={"A": 1.0} if exponents is None else exponents
    )
    return ReactionSystem(system, [Reaction("decay", {"A": -1, "B": 1}, kinetics)])


class FailingEquilibrium(EquilibriumSolver):
    """Equilibrium solver that fails once ``failures`` is set."""

    failures = 0

    def solve(self, state, be=None):
        if self.failures > 0:
            self.failures -= 1
            raise EquilibriumError("forced failure")
        return super().solve(state, be)


class FlakyProjectionPath(KineticPath):
    """Kinetic path whose end-of-step projection can be made to fail once."""

    fail_projection = False
    projections = 0
    steps = 0

    def step(self, state, t, tfinal=None):
        self.steps += 1
        return super().step(state, t, tfinal)

    def _project(self, state, u):
        self.projections += 1
        super()._project(state, u)
        if self.fail_projection:
            self.fail_projection = False
            raise EquilibriumError("forced failure")


class TestCoefficientMatrix(unittest.TestCase):
    def test_blocks(self):
        system = ChemicalSystem(
            [
                Species("A", {"X": 1}),
                Species("B", {"X": 1}),
                Species("C", {"Y": 1}),
                Species("D", {"X": 1, "Y": 2}),
            ]
        )
        S = np.array([[-1.0, 1.0, 0.0, 0.0], [0.0, -1.0, -2.0, 1.0]])
        partition = Partition(system, kinetic_species=["A", "D"])

        A, Se, Sk = coefficient_matrix(partition, S)

        # equilibrium species B, C hold elements X, Y
        We = np.array([[1.0, 0.0], [0.0, 1.0]])
        self.assertEqual(A.shape, (2 + 2, 2))
        np.testing.assert_array_equal(Se, S[:, [1, 2]])
        np.testing.assert_array_equal(Sk, S[:, [0, 3]])
        np.testing.assert_array_equal(A[:2], We @ Se.T)
        np.testing.assert_array_equal(A[2:], Sk.T)

    def test_decay(self):
        reactions = _decay(1.0)
        partition = Partition.from_string(reactions.system, "kinetic = A")
        A, _, _ = coefficient_matrix(partition, reactions.stoichiometric_matrix)
        np.testing.assert_array_equal(A, [[1.0], [-1.0]])

    def test_shape_mismatch(self):
        reactions = _decay(1.0)
        with self.assertRaises(ValueError):
            coefficient_matrix(Partition(reactions.system), np.zeros((1, 3)))


class TestKineticPathFunctions(unittest.TestCase):
    def setUp(self):
        self.reactions = _decay(0.5)
        self.path = KineticPath(self.reactions)
        self.path.set_partition("kinetic = A")
        self.state = ChemicalState(self.reactions.system, amounts={"A": 0.8, "B": 0.2})
        self.context = KineticContext.from_state(self.state)

    def test_dimensions(self):
        self.assertEqual(self.path.num_equations, 2)
        self.assertEqual(self.path.status, PathStatus.UNINITIALIZED)

    def test_function(self):
        res, status = self.path.function(self.context, 0.0, np.array([0.2, 0.8]))
        self.assertEqual(status, OdeStatus.SUCCESS)
        np.testing.assert_allclose(res, [0.4, -0.4])
        self.assertAlmostEqual(self.state.species_amount("B"), 0.2)

    def test_function_equilibrates_state(self):
        self.path.function(self.context, 0.0, np.array([0.6, 0.3]))
        self.assertEqual(self.state.species_amount("A"), 0.3)
        self.assertAlmostEqual(self.state.species_amount("B"), 0.6, places=10)

    def test_depleted_quantities_are_not_driven_negative(self):
        path = KineticPath(_decay(1.0, exponents={}))
        path.set_partition("kinetic = A")
        context = KineticContext.from_state(ChemicalState(path.system))

        res, status = path.function(context, 0.0, np.array([1.0, 1e-60]))
        self.assertEqual(status, OdeStatus.SUCCESS)
        self.assertEqual(res[1], 0.0)
        self.assertEqual(res[0], 1.0)

        res, _ = path.function(context, 0.0, np.array([1.0, 1e-3]))
        self.assertEqual(res[1], -1.0)

    def test_non_finite_input(self):
        before = self.state.amounts.copy()
        for u in (np.array([np.nan, 0.5]), np.array([0.2, np.inf])):
            with self.subTest(u=u):
                _, status = self.path.function(self.context, 0.0, u)
                self.assertEqual(status, OdeStatus.RECOVERABLE_FAILURE)
                _, status = self.path.jacobian(self.context, 0.0, u)
                self.assertEqual(status, OdeStatus.RECOVERABLE_FAILURE)
                np.testing.assert_array_equal(self.state.amounts, before)

    def test_jacobian(self):
        J, status = self.path.jacobian(self.context, 0.0, np.array([0.2, 0.8]))
        self.assertEqual(status, OdeStatus.SUCCESS)
        np.testing.assert_allclose(J, [[0.0, 0.5], [0.0, -0.5]], atol=1e-12)

    def test_equilibrium_failure_raises_by_default(self):
        path = KineticPath(self.reactions, equilibrium=FailingEquilibrium(self.reactions.system))
        path.set_partition("kinetic = A")
        path.equilibrium.failures = 1
        with self.assertRaises(EquilibriumError):
            path.function(self.context, 0.0, np.array([0.2, 0.8]))

    def test_equilibrium_failure_retry(self):
        options = KineticOptions(retry_equilibrium_failures=True)
        path = KineticPath(
            self.reactions, equilibrium=FailingEquilibrium(self.reactions.system), options=options
        )
        path.set_partition("kinetic = A")
        path.equilibrium.failures = 1
        _, status = path.function(self.context, 0.0, np.array([0.2, 0.8]))
        self.assertEqual(status, OdeStatus.RECOVERABLE_FAILURE)
        _, status = path.function(self.context, 0.0, np.array([0.2, 0.8]))
        self.assertEqual(status, OdeStatus.SUCCESS)


class TestKineticPathJacobian(unittest.TestCase):
    def test_matches_finite_difference(self):
        # A -> B at a rate depending on the equilibrium isomer C
        system = ChemicalSystem(
            [Species("A", {"X": 1}), Species("B", {"X": 1}), Species("C", {"X": 1})],
            IdealSolutionThermo(
                [SpeciesProperties(), SpeciesProperties(), SpeciesProperties(gibbs_energy=1000.0)]
            ),
        )
        kinetics = PowerLawKinetics(ArrheniusKinetics(0.7, 0.0), exponents={"A": 1.0, "C": 1.0})
        reactions = ReactionSystem(system, [Reaction("r1", {"A": -1, "B": 1}, kinetics)])
        options = KineticOptions(equilibrium=EquilibriumOptions(tolerance=1e-13))
        path = KineticPath(reactions, options=options)
        path.set_partition("kinetic = A")
        context = KineticContext.from_state(ChemicalState(system, amounts={"A": 1.0, "B": 1.0}))

        u = np.array([1.5, 0.6])
        J, _ = path.jacobian(context, 0.0, u)

        h = 1e-5
        fd = np.zeros((2, 2))
        for j in range(2):
            du = np.zeros(2)
            du[j] = h
            up = path.function(context, 0.0, u + du)[0].copy()
            down = path.function(context, 0.0, u - du)[0].copy()
            fd[:, j] = (up - down) / (2 * h)
        np.testing.assert_allclose(J, fd, rtol=1e-5, atol=1e-7)
        self.assertNotEqual(J[0, 0], 0.0)


class TestKineticPathSolve(unittest.TestCase):
    def test_first_order_decay(self):
        k = 0.5
        reactions = _decay(k)
        path = KineticPath(reactions, options=TIGHT)
        path.set_partition("kinetic = A")
        state = ChemicalState(reactions.system, amounts={"A": 1.0, "B": 0.1})

        path.initialize(state, 0.0)
        self.assertEqual(path.status, PathStatus.INITIALIZED)
        t = 0.0
        while t < 5.0:
            t = path.step(state, t, 5.0)
            nA, nB = state.species_amount("A"), state.species_amount("B")
            self.assertAlmostEqual(nA / np.exp(-k * t), 1.0, delta=1e-6)
            self.assertAlmostEqual(nA + nB, 1.1, places=9)
            self.assertAlmostEqual(path.u[0], nB, places=9)
        self.assertEqual(t, 5.0)
        self.assertEqual(path.status, PathStatus.INTEGRATING)

    def test_solve(self):
        k = 0.5
        reactions = _decay(k)
        path = KineticPath(reactions, options=TIGHT)
        path.set_partition("kinetic = A")
        state = ChemicalState(reactions.system, amounts={"A": 2.0, "B": 1e-6})

        t = path.solve(state, 1.0, 3.0)
        self.assertEqual(t, 4.0)
        self.assertEqual(path.status, PathStatus.FINALIZED)
        np.testing.assert_allclose(state.species_amount("A"), 2.0 * np.exp(-k * 3.0), rtol=1e-6)
        self.assertAlmostEqual(state.element_amount("X"), 2.0 + 1e-6, places=9)

    def test_zero_rates_leave_state_unchanged(self):
        reactions = _decay(0.0)
        path = KineticPath(reactions)
        path.set_partition("kinetic = A")
        state = ChemicalState(reactions.system, amounts={"A": 1.0, "B": 0.5})

        path.solve(state, 0.0, 100.0)
        np.testing.assert_allclose(state.amounts, [1.0, 0.5], rtol=1e-9)

    def test_all_equilibrium(self):
        reactions = _decay(0.5)
        path = KineticPath(reactions)
        state = ChemicalState(reactions.system, amounts={"A": 1.0, "B": 0.5})
        path.solve(state, 0.0, 1.0)
        # both species are equilibrium isomers of equal energy
        np.testing.assert_allclose(state.amounts, [0.75, 0.75], rtol=1e-8)

    def test_state_changed_between_steps(self):
        reactions = _decay(0.5)
        path = KineticPath(reactions, options=TIGHT)
        path.set_partition("kinetic = A")
        state = ChemicalState(reactions.system, amounts={"A": 1.0, "B": 0.0})
        path.initialize(state)
        t = path.step(state, 0.0)

        state.set_species_amount("A", 4.0)
        t_next = path.step(state, t)
        nA = state.species_amount("A")
        self.assertLess(nA, 4.0)
        self.assertAlmostEqual(nA / (4.0 * np.exp(-0.5 * (t_next - t))), 1.0, delta=1e-6)

    def test_retry_after_failed_projection(self):
        k = 0.5
        reactions = _decay(k)
        path = FlakyProjectionPath(reactions, options=TIGHT)
        path.set_partition("kinetic = A")
        state = ChemicalState(reactions.system, amounts={"A": 1.0, "B": 0.1})
        path.initialize(state, 0.0)
        t = 0.0
        while t < 1.0:
            t = path.step(state, t, 5.0)

        before = state.amounts.copy()
        path.fail_projection = True
        with self.assertRaises(EquilibriumError):
            path.step(state, t, 5.0)
        np.testing.assert_array_equal(state.amounts, before)

        t = path.step(state, t, 5.0)
        nA = state.species_amount("A")
        self.assertAlmostEqual(nA / np.exp(-k * t), 1.0, delta=1e-6)
        self.assertAlmostEqual(nA + state.species_amount("B"), 1.1, places=9)

    def test_solve_projects_once_per_step(self):
        reactions = _decay(0.5)
        path = FlakyProjectionPath(reactions, options=TIGHT)
        path.set_partition("kinetic = A")
        state = ChemicalState(reactions.system, amounts={"A": 1.0, "B": 0.1})
        path.solve(state, 0.0, 2.0)
        self.assertGreater(path.steps, 0)
        self.assertEqual(path.projections, path.steps)

        # no step to project the state
        path = FlakyProjectionPath(reactions)
        path.set_partition("kinetic = A")
        path.solve(state, 2.0, 0.0)
        self.assertEqual((path.steps, path.projections), (0, 1))

    def test_half_order_decay_past_depletion(self):
        # dnA/dt = -sqrt(nA) empties A at t = 2
        reactions = _decay(1.0, exponents={"A": 0.5})
        path = KineticPath(reactions)
        path.set_partition("kinetic = A")
        state = ChemicalState(reactions.system, amounts={"A": 1.0, "B": 1e-6})

        t = path.solve(state, 0.0, 3.0)
        self.assertEqual(t, 3.0)
        self.assertAlmostEqual(state.species_amount("A"), 0.0, delta=1e-5)
        self.assertAlmostEqual(state.element_amount("X"), 1.0 + 1e-6, places=9)


class TestKineticPathStatus(unittest.TestCase):
    def setUp(self):
        self.reactions = _decay(0.5)
        self.path = KineticPath(self.reactions)
        self.path.set_partition("kinetic = A")
        self.state = ChemicalState(self.reactions.system, amounts={"A": 1.0, "B": 0.5})

    def test_step_before_initialize(self):
        with self.assertRaises(KineticPathError):
            self.path.step(self.state, 0.0)

    def test_step_after_solve(self):
        self.path.solve(self.state, 0.0, 1.0)
        with self.assertRaises(KineticPathError):
            self.path.step(self.state, 1.0)

    def test_step_with_another_state(self):
        self.path.initialize(self.state)
        with self.assertRaises(KineticPathError):
            self.path.step(self.state.copy(), 0.0)

    def test_set_partition_resets(self):
        self.path.initialize(self.state)
        self.path.set_partition("kinetic = B")
        self.assertEqual(self.path.status, PathStatus.UNINITIALIZED)
        with self.assertRaises(KineticPathError):
            self.path.step(self.state, 0.0)

    def test_invalid_partition(self):
        with self.assertRaises(PartitionError):
            self.path.set_partition("kinetic = Z")
        self.assertEqual(self.path.partition.kinetic_species_names(), ["A"])

    def test_initialize_leaves_state_unchanged(self):
        before = self.state.amounts.copy()
        self.path.initialize(self.state)
        np.testing.assert_array_equal(self.state.amounts, before)

    def test_non_finite_initial_state(self):
        self.state.set_species_amount("A", np.nan)
        with self.assertRaises(KineticPathError):
            self.path.initialize(self.state)

    def test_failed_solve_restores_state(self):
        path = KineticPath(self.reactions, equilibrium=FailingEquilibrium(self.reactions.system))
        path.set_partition("kinetic = A")
        path.initialize(self.state)
        path.equilibrium.failures = 1000
        before = self.state.amounts.copy()
        with self.assertRaises(EquilibriumError):
            path.step(self.state, 0.0)
        np.testing.assert_array_equal(self.state.amounts, before)

        with self.assertRaises(EquilibriumError):
            path.solve(self.state, 0.0, 1.0)
        np.testing.assert_array_equal(self.state.amounts, before)


if __name__ == '__main__':
    unittest.main()
