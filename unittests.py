import threading
import unittest
from dataclasses import FrozenInstanceError

import numpy as np

from cli import CircuitShell
from ketsim.amplitudes import AmplitudeVector, RegisterState, parse_state, parse_vector
from ketsim.applicator import GateApplicator, Kernel
from ketsim.circuit import CircuitProperties, CircuitRunner, SimulationMode, Timing, fidelity
from ketsim.decoherence import Decoherence
from ketsim.errors import (DimensionMismatchError, GateDefinitionError,
                           IrreversibleStepError, ParseError)
from ketsim.events import EventAction, EventDispatcher
from ketsim.gate import GateDescriptor, free_steps, parse_gate, target_offsets
from ketsim.hilbert import HilbertSpace
from ketsim.literals import parse_literal, to_parseable_string
from ketsim.matrix import (DenseMatrix, MatrixRegistry, noise_error, parse_matrix, ph, rx,
                           ry, rz)
from ketsim.measurement import (Measurement, partial_measurement, phase_distribution,
                                prob_distribution)
from ketsim.precision import DEFAULT_PRECISION, Precision, format_number
from ketsim.scalar import ONE, Scalar, parse_complex

LOOSE = Precision(internal_digits=9)
I2 = np.eye(2, dtype=complex)
H = np.array([[1, 1], [1, -1]], dtype=complex) / np.sqrt(2)


def random_unitary(dim, rng):
    z = (rng.standard_normal((dim, dim)) + 1j * rng.standard_normal((dim, dim))) / np.sqrt(2)
    q, r = np.linalg.qr(z)
    d = np.diagonal(r)
    return q * (d / np.abs(d))


def random_state(n, rng):
    vec = rng.standard_normal(1 << n) + 1j * rng.standard_normal(1 << n)
    return RegisterState.from_numpy(vec / np.linalg.norm(vec))


def embed(u, k, n):
    """Full 2**n operator of a single-qubit u on qubit k (qubit 0 most significant)."""
    op = np.array([[1]], dtype=complex)
    for i in range(n):
        op = np.kron(op, u if i == k else I2)
    return op


def bell_state():
    state = RegisterState.basis(0, 2)
    app = GateApplicator()
    app.apply(parse_gate("{H:-}"), state)
    app.apply(parse_gate("{1:NOT}"), state)
    return state


# -------------------------------------------------------------------
# Precision & error types
# -------------------------------------------------------------------
class TestPrecision(unittest.TestCase):
    def test_default_eps(self):
        self.assertAlmostEqual(DEFAULT_PRECISION.eps, 0.5e-14)
        self.assertAlmostEqual(Precision(internal_digits=3).eps, 0.5e-3)

    def test_immutable(self):
        with self.assertRaises(FrozenInstanceError):
            DEFAULT_PRECISION.digits = 5
        changed = DEFAULT_PRECISION.with_digits(5)
        self.assertEqual(changed.digits, 5)
        self.assertEqual(DEFAULT_PRECISION.digits, 3)

    def test_format_number(self):
        self.assertEqual(format_number(0.0, 3), "0")
        self.assertEqual(format_number(0.5, 3), "0.5")
        self.assertEqual(format_number(1.23456e-5, 3), "1.23E-5")

    def test_parse_error_caret(self):
        err = ParseError("bad token", "abc", 1)
        self.assertEqual(err.render(), "bad token\nabc\n ^")
        self.assertIsInstance(err, ValueError)


# -------------------------------------------------------------------
# Scalar
# -------------------------------------------------------------------
class TestScalar(unittest.TestCase):
    def test_parse_forms(self):
        self.assertEqual(parse_complex("1.5-2i"), Scalar(1.5, -2))
        self.assertEqual(parse_complex("i"), Scalar(0, 1))
        self.assertEqual(parse_complex("-i"), Scalar(0, -1))
        self.assertEqual(parse_complex("0.5i"), Scalar(0, 0.5))
        self.assertEqual(parse_complex("-3"), Scalar(-3, 0))
        self.assertEqual(parse_complex("1e-3+2i"), Scalar(1e-3, 2))

    def test_parse_error_position(self):
        with self.assertRaises(ParseError) as ctx:
            parse_complex("1+2x")
        self.assertEqual(ctx.exception.position, 3)

    def test_simple_display(self):
        self.assertEqual(Scalar(0, 1).to_string(), "i")
        self.assertEqual(Scalar(0, -1).to_string(), "-i")
        self.assertEqual(Scalar(0.5, 0).to_string(), "0.5")
        self.assertEqual(Scalar(1, 2).to_string(), "1+2i")
        self.assertEqual(Scalar(1e-16, 0).to_string(), "0")
        self.assertEqual(Scalar(1, 0).to_string(Precision(simple=False)), "1+0i")

    def test_arithmetic(self):
        q = Scalar(1, 2).divided(Scalar(3, 4))
        np.testing.assert_allclose(q.to_complex(), (1 + 2j) / (3 + 4j))
        self.assertAlmostEqual(Scalar(3, 4).magnitude(), 5.0)
        self.assertEqual(Scalar(1, 2) * 2, Scalar(2, 4))
        self.assertEqual(Scalar(1, 2).conjugate(), Scalar(1, -2))
        self.assertEqual(-Scalar(1, 2), Scalar(-1, -2))

    def test_tolerant_equality(self):
        self.assertEqual(Scalar(1.0 + 1e-16, 0), ONE)
        self.assertNotEqual(Scalar(1.0 + 1e-6, 0), ONE)
        self.assertTrue(Scalar(1.0 + 1e-6, 0).equals(ONE, Precision(internal_digits=4)))

    def test_literal_round_trip_exact(self):
        rng = np.random.default_rng(7)
        for re_v, im_v in rng.standard_normal((20, 2)):
            s = Scalar(re_v, im_v)
            back = parse_complex(s.to_parseable_string())
            self.assertEqual((back.re, back.im), (s.re, s.im))


# -------------------------------------------------------------------
# Vectors & register states
# -------------------------------------------------------------------
class TestRegisterState(unittest.TestCase):
    def test_basis_literal(self):
        state = parse_state("|01>")
        self.assertEqual(state.n, 2)
        self.assertFalse(state.bra)
        self.assertEqual(state.get(1), ONE)
        self.assertIsNone(state.data[0])
        self.assertEqual(state.to_parseable_string(), "|01>")

    def test_bra_and_spin_alias(self):
        bra = parse_state("<1|")
        self.assertTrue(bra.is_bra())
        self.assertEqual(bra.get(1), ONE)
        self.assertEqual(parse_state("|+>").get(0), ONE)
        self.assertEqual(parse_state("|->").get(1), ONE)

    def test_weighted_sum_round_trip(self):
        state = parse_state("(0.6)*|00> + (0.8i)*|11>")
        np.testing.assert_allclose(state.to_numpy(), [0.6, 0, 0, 0.8j])
        again = parse_state(state.to_parseable_string())
        self.assertTrue(again.equals(state))

    def test_leading_sign_and_bare_coefficient(self):
        state = parse_state("-|0> + 0.5*|1>")
        np.testing.assert_allclose(state.to_numpy(), [-1, 0.5])

    def test_mismatched_terms(self):
        with self.assertRaises(ParseError):
            parse_state("|0> + |01>")
        with self.assertRaises(ParseError):
            parse_state("|0> + <1|")
        with self.assertRaises(ParseError):
            parse_state("|02>")

    def test_from_vector(self):
        col = parse_vector("[1 0 0 0]'")
        self.assertTrue(col.transposed)
        ket = RegisterState.from_vector(col)
        self.assertEqual(ket.n, 2)
        self.assertFalse(ket.bra)
        with self.assertRaises(DimensionMismatchError):
            RegisterState.from_vector(parse_vector("[1 0 0]"))
        with self.assertRaises(ParseError):
            parse_vector("[1, 0]")

    def test_dagger_and_inner(self):
        state = parse_state("(0.6)*|0> + (0.8i)*|1>")
        bra = state.dagger()
        self.assertTrue(bra.bra)
        np.testing.assert_allclose(bra.to_numpy(), [0.6, -0.8j])
        self.assertFalse(state.bra)
        np.testing.assert_allclose(state.inner(state).to_complex(), 1.0)

    def test_to_string(self):
        self.assertEqual(RegisterState(2).to_string(), "0")
        text = parse_state("(0.5)*|00> + (-0.5)*|11>").to_string()
        self.assertIn("0.5*|00>", text)
        self.assertIn("-0.5*|11>", text)
        self.assertEqual(RegisterState.basis_string(5, 3, True), "<101|")

    def test_normalize(self):
        state = parse_state("(3)*|0> + (4i)*|1>")
        state.normalize()
        np.testing.assert_allclose(state.to_numpy(), [0.6, 0.8j])
        empty = RegisterState(1)
        empty.normalize()
        self.assertEqual(empty.data, [None, None])

    def test_clone_drops_exact_zeros(self):
        vec = AmplitudeVector(2)
        vec.set_raw(0, Scalar(0, 0))
        vec.set_raw(1, ONE)
        self.assertIsNone(vec.clone().data[0])
        with self.assertRaises(IndexError):
            vec.get(2)


# -------------------------------------------------------------------
# Dense matrices
# -------------------------------------------------------------------
class TestDenseMatrix(unittest.TestCase):
    def test_lazy_transpose(self):
        m = parse_matrix("[1 2, 3 4]")
        m.transpose()
        self.assertEqual(m.get_element(0, 1), Scalar(3))
        self.assertEqual(m.data[0][1], Scalar(2))
        m.transpose()
        self.assertTrue(m.equals(parse_matrix("[1 2, 3 4]")))

    def test_rectangular_transpose(self):
        m = parse_matrix("[1 2 3, 4 5 6]")
        m.transpose()
        self.assertEqual((m.n(), m.m()), (3, 2))
        self.assertEqual(m.get_element(2, 1), Scalar(6))

    def test_lazy_conjugate(self):
        m = parse_matrix("[i 0, 0 1]")
        m.conjugate()
        self.assertEqual(m.get_element(0, 0), Scalar(0, -1))
        m.set_element(1, 1, Scalar(0, 2))
        self.assertEqual(m.data[1][1], Scalar(0, -2))
        self.assertEqual(m.get_element(1, 1), Scalar(0, 2))

    def test_negative_is_physical(self):
        m = parse_matrix("[1 0, 0 1]")
        m.negative()
        self.assertEqual(m.data[0][0], Scalar(-1))

    def test_ragged_rows(self):
        with self.assertRaises(ParseError):
            parse_matrix("[1 2, 3]")

    def test_matmul_against_numpy(self):
        rng = np.random.default_rng(3)
        a = rng.standard_normal((2, 3)) + 1j * rng.standard_normal((2, 3))
        b = rng.standard_normal((3, 2)) + 1j * rng.standard_normal((3, 2))
        product = DenseMatrix.from_numpy(a) @ DenseMatrix.from_numpy(b)
        np.testing.assert_allclose(product.to_numpy(), a @ b)
        with self.assertRaises(DimensionMismatchError):
            DenseMatrix.from_numpy(a) @ DenseMatrix.from_numpy(a)

    def test_unitarity(self):
        registry = MatrixRegistry()
        for name in ("NOT", "sigma_x", "sigma_y", "sigma_z", "H"):
            self.assertTrue(registry.lookup(name).is_unitary(), name)
        self.assertFalse(parse_matrix("[1 1, 0 0]").is_unitary())
        for theta in (0.3, 1.2):
            for factory in (rx, ry, rz, ph):
                self.assertTrue(factory(theta).is_unitary())
        np.testing.assert_allclose(ph(np.pi / 2).to_numpy(), 1j * I2, atol=1e-12)
        small = noise_error(1e-9, np.random.default_rng(1))
        self.assertTrue(small.equals(DenseMatrix.identity(2), Precision(internal_digits=6)))

    def test_noise_error_zero_width_is_identity(self):
        err = noise_error(0.0, np.random.default_rng(0))
        self.assertTrue(err.equals(DenseMatrix.identity(2)))

    def test_registry(self):
        registry = MatrixRegistry()
        with self.assertRaises(KeyError):
            registry.lookup("FOO")
        registry.register("FOO", parse_matrix("[0 1, 1 0]"))
        self.assertIn("FOO", registry)
        self.assertEqual(registry.names(), ["FOO", "H", "NOT", "sigma_x", "sigma_y", "sigma_z"])
        registry.unregister("FOO")
        self.assertNotIn("FOO", registry)
        registry.unregister("FOO")
        self.assertTrue(registry.lookup("[1 0, 0 1]").equals(DenseMatrix.identity(2)))
        with self.assertRaises(ValueError):
            registry.register("1bad", DenseMatrix.identity(2))

    def test_literal_round_trip(self):
        m = DenseMatrix.from_numpy(H)
        self.assertTrue(parse_matrix(m.to_parseable_string()).equals(m))


# -------------------------------------------------------------------
# Gate descriptors
# -------------------------------------------------------------------
class TestGateDescriptor(unittest.TestCase):
    def test_embedding(self):
        gate = parse_gate("{-:1:NOT}")
        self.assertEqual(gate.n, 3)
        emb = gate.embedding()
        self.assertEqual(emb.control_offset, 2)
        self.assertEqual(emb.controls, 1)
        self.assertEqual(emb.targets, (0,))
        self.assertEqual(emb.jokers, (2,))
        self.assertEqual(gate.to_parseable_string(), "{-:1:NOT}")

    def test_free_steps_enumeration(self):
        self.assertEqual(list(free_steps((4, 1))), [0, 1, 4, 5])
        self.assertEqual(list(free_steps(())), [0])
        steps = list(free_steps((16, 4, 2)))
        self.assertEqual(len(steps), len(set(steps)))
        self.assertEqual(sorted(steps), [0, 2, 4, 6, 16, 18, 20, 22])
        self.assertEqual(target_offsets((2, 1)), [0, 1, 2, 3])

    def test_invalid_definitions(self):
        for literal in ("{NOT:H}", "{1:-}", "{!:!}", "{u:NOT}", "{NOT:NOT}",
                        "{FOO}", "{-:x}", "-:NOT", "{}", "{1:!}"):
            with self.assertRaises(ParseError, msg=literal):
                parse_gate(literal)
        with self.assertRaises(GateDefinitionError):
            GateDescriptor("1-")

    def test_inline_matrix(self):
        gate = parse_gate("{1:[0 1, 1 0]}")
        self.assertTrue(gate.get_matrix().equals(parse_matrix("[0 1, 1 0]")))

    def test_flags_are_views(self):
        registry = MatrixRegistry()
        registry.register("S", parse_matrix("[1 0, 0 i]"))
        gate = parse_gate("{S}", registry)
        gate.conjugate()
        self.assertEqual(gate.get_matrix().get_element(1, 1), Scalar(0, -1))
        self.assertEqual(registry.lookup("S").get_element(1, 1), Scalar(0, 1))
        gate.negative()
        self.assertEqual(gate.get_matrix().get_element(0, 0), Scalar(-1))
        self.assertEqual(registry.lookup("S").get_element(0, 0), Scalar(1))

    def test_set_matrix_name(self):
        gate = parse_gate("{NOT}")
        self.assertTrue(gate.set_matrix_name("H"))
        self.assertFalse(gate.set_matrix_name("[1 0 0 0, 0 1 0 0, 0 0 1 0, 0 0 0 1]"))
        self.assertEqual(gate.matrix_name, "H")

    def test_constructors(self):
        self.assertEqual(GateDescriptor.single(3, 1, "H").descr, "-m-")
        self.assertEqual(GateDescriptor.controlled(3, [0], [2], "NOT").descr, "1-m")
        self.assertTrue(GateDescriptor.identity(2).is_unitary_step())


# -------------------------------------------------------------------
# Gate application
# -------------------------------------------------------------------
class TestGateApplicator(unittest.TestCase):
    def setUp(self):
        self.rng = np.random.default_rng(42)
        self.app = GateApplicator(rng=self.rng)

    def test_not_on_zero(self):
        state = parse_state("|0>")
        self.app.apply(parse_gate("{NOT}"), state)
        self.assertEqual(state.get(1), ONE)
        self.assertIsNone(state.data[0])

    def test_cnot(self):
        state = parse_state("|10>")
        self.app.apply(parse_gate("{1:NOT}"), state)
        self.assertEqual(state.to_parseable_string(), "|11>")
        state = parse_state("|00>")
        self.app.apply(parse_gate("{1:NOT}"), state)
        self.assertEqual(state.to_parseable_string(), "|00>")

    def test_not_twice_is_exact(self):
        state = parse_state("|0>")
        gate = parse_gate("{[0 1, 1 0]}")
        self.app.apply(gate, state)
        self.assertEqual(state.to_parseable_string(), "|1>")
        self.app.apply(gate, state)
        self.assertEqual(state.to_parseable_string(), "|0>")
        self.assertIsNone(state.data[1])

    def test_control_set_reduces_to_plain_gate(self):
        registry = MatrixRegistry()
        registry.register("U", DenseMatrix.from_numpy(random_unitary(2, self.rng)))
        target = random_state(1, self.rng).to_numpy()
        controlled = RegisterState.from_numpy(np.kron([0, 1], target))
        plain = RegisterState.from_numpy(np.kron([0, 1], target))
        self.app.apply(parse_gate("{1:U}", registry), controlled)
        self.app.apply(parse_gate("{-:U}", registry), plain)
        self.assertTrue(controlled.equals(plain))

    def test_single_qubit_against_numpy(self):
        n = 3
        for k in range(n):
            u = random_unitary(2, self.rng)
            registry = MatrixRegistry()
            registry.register("U", DenseMatrix.from_numpy(u))
            state = random_state(n, self.rng)
            expected = embed(u, k, n) @ state.to_numpy()
            self.app.apply(GateDescriptor.single(n, k, "U", registry), state)
            np.testing.assert_allclose(state.to_numpy(), expected, atol=1e-12)

    def test_two_qubit_against_numpy(self):
        u = random_unitary(4, self.rng)
        registry = MatrixRegistry()
        registry.register("U", DenseMatrix.from_numpy(u))
        state = random_state(3, self.rng)
        expected = np.kron(I2, u) @ state.to_numpy()
        self.app.apply(parse_gate("{-:U:U}", registry), state)
        np.testing.assert_allclose(state.to_numpy(), expected, atol=1e-12)

    def test_norm_invariance(self):
        registry = MatrixRegistry()
        registry.register("U2", DenseMatrix.from_numpy(random_unitary(2, self.rng)))
        registry.register("U4", DenseMatrix.from_numpy(random_unitary(4, self.rng)))
        registry.register("U8", DenseMatrix.from_numpy(random_unitary(8, self.rng)))
        state = random_state(4, self.rng)
        for literal in ("{U2:-:-:-}", "{-:1:-:U2}", "{U4:-:U4:-}", "{1:U8:U8:U8}",
                        "{-:U4:1:U4}", "{-:-:-:H}"):
            self.app.apply(parse_gate(literal, registry), state)
            self.assertAlmostEqual(state.norm(), 1.0, places=12)

    def test_involution(self):
        registry = MatrixRegistry()
        registry.register("U2", DenseMatrix.from_numpy(random_unitary(2, self.rng)))
        registry.register("U4", DenseMatrix.from_numpy(random_unitary(4, self.rng)))
        for literal in ("{-:U2:-}", "{1:-:U2}", "{U4:-:U4}"):
            state = random_state(3, self.rng)
            original = state.clone()
            gate = parse_gate(literal, registry)
            self.app.apply(gate, state)
            self.app.apply_backward(gate, state)
            self.assertTrue(state.equals(original, LOOSE), literal)
            self.assertFalse(gate.transposed or gate.conjugated)

    def test_control_locality(self):
        registry = MatrixRegistry()
        registry.register("U", DenseMatrix.from_numpy(random_unitary(2, self.rng)))
        state = random_state(3, self.rng)
        before = state.to_numpy()
        self.app.apply(parse_gate("{1:-:U}", registry), state)
        after = state.to_numpy()
        # control qubit 0 has weight 4
        np.testing.assert_array_equal(after[:4], before[:4])
        self.assertFalse(np.allclose(after[4:], before[4:]))

    def test_kernel_routing(self):
        gate = lambda lit: parse_gate(lit)
        self.assertIs(self.app.select_kernel(gate("{sigma_z}")), Kernel.DIAGONAL)
        self.assertIs(self.app.select_kernel(gate("{NOT}")), Kernel.ANTIDIAGONAL)
        self.assertIs(self.app.select_kernel(gate("{H}")), Kernel.GENERAL_2X2)
        self.assertIs(self.app.select_kernel(gate("{NOT}"), DenseMatrix.identity(2)),
                      Kernel.GENERAL_2X2)
        self.assertIs(self.app.select_kernel(gate("{-:-}")), Kernel.IDENTITY)
        self.assertIs(self.app.select_kernel(gate("{!:-}")), Kernel.MEASUREMENT)
        self.assertIs(self.app.select_kernel(gate("{u:-}")), Kernel.PREPARATION)
        self.assertIs(self.app.select_kernel(gate("{1:[1 0 0 0, 0 1 0 0, 0 0 0 1, 0 0 1 0]"
                                                  ":[1 0 0 0, 0 1 0 0, 0 0 0 1, 0 0 1 0]}")),
                      Kernel.NXN_SNAPSHOT)

    def test_snapshot_and_buffered_agree(self):
        buffered = GateApplicator(rng=self.rng, nxn_strategy="buffered")
        registry = MatrixRegistry()
        registry.register("U8", DenseMatrix.from_numpy(random_unitary(8, self.rng)))
        gate = parse_gate("{U8:-:U8:1:U8}", registry)
        state = random_state(5, self.rng)
        other = state.clone()
        self.app.apply(gate, state)
        buffered.apply(gate, other)
        self.assertTrue(state.equals(other))
        with self.assertRaises(ValueError):
            GateApplicator(nxn_strategy="fast")

    def test_sparse_zeros_stay_absent(self):
        state = parse_state("|000>")
        self.app.apply(parse_gate("{H:-:-}"), state)
        present = [i for i, c in enumerate(state.data) if c is not None]
        self.assertEqual(present, [0, 4])

    def test_error_matrix(self):
        state = parse_state("|0>")
        self.app.apply(parse_gate("{H}"), state, error=noise_error(0.0, self.rng))
        np.testing.assert_allclose(state.to_numpy(), H @ [1, 0], atol=1e-12)

    def test_preparation(self):
        state = parse_state("|1>")
        self.app.apply(parse_gate("{u}"), state)
        self.assertEqual(state.to_parseable_string(), "|0>")
        state = parse_state("|00>")
        self.app.apply(parse_gate("{-:d}"), state)
        self.assertEqual(state.to_parseable_string(), "|01>")

    def test_dimension_and_type_checks(self):
        with self.assertRaises(DimensionMismatchError):
            self.app.apply(parse_gate("{NOT:-}"), RegisterState.basis(0, 3))
        with self.assertRaises(TypeError):
            self.app.apply(parse_matrix("[0 1, 1 0]"), RegisterState.basis(0, 1))

    def test_backward_refuses_measurement(self):
        with self.assertRaises(IrreversibleStepError):
            self.app.apply_backward(parse_gate("{!}"), RegisterState.basis(0, 1))

    def test_events(self):
        seen = []
        dispatcher = EventDispatcher()
        dispatcher.add_listener(lambda e: seen.append(e.action))
        app = GateApplicator(dispatcher=dispatcher)
        app.apply(parse_gate("{NOT}"), RegisterState.basis(0, 1))
        self.assertEqual(seen, [EventAction.STARTED, EventAction.DONE])

    def test_removed_listener_is_silent(self):
        seen = []
        listener = lambda e: seen.append(e.action)
        dispatcher = EventDispatcher()
        dispatcher.add_listener(listener)
        dispatcher.remove_listener(listener)
        dispatcher.remove_listener(listener)
        GateApplicator(dispatcher=dispatcher).apply(parse_gate("{NOT}"), RegisterState.basis(0, 1))
        self.assertEqual(seen, [])


# -------------------------------------------------------------------
# Measurement
# -------------------------------------------------------------------
class TestMeasurement(unittest.TestCase):
    def test_partial_measurement_renormalises(self):
        for seed in range(6):
            state = bell_state()
            outcome, p = partial_measurement(state, 0, np.random.default_rng(seed))
            self.assertAlmostEqual(p, 0.5)
            self.assertAlmostEqual(state.norm(), 1.0)
            expected = "|00>" if outcome == 0 else "|11>"
            self.assertTrue(state.equals(parse_state(expected), LOOSE))

    def test_measurement_gate(self):
        app = GateApplicator(rng=np.random.default_rng(5))
        state = bell_state()
        result = app.apply(parse_gate("{-:!}"), state)
        self.assertIn(result.outcome, (0, 1))
        self.assertAlmostEqual(result.probability, 0.5)
        np.testing.assert_allclose(prob_distribution(state, [0, 1]).sum(), 1.0)

    def test_probability_distribution(self):
        state = bell_state()
        np.testing.assert_allclose(prob_distribution(state, [0]), [0.5, 0.5])
        np.testing.assert_allclose(prob_distribution(state, [0, 1]), [0.5, 0, 0, 0.5])
        rng = np.random.default_rng(11)
        for _ in range(5):
            state = random_state(4, rng)
            for qubits in ([0], [3, 1], [2, 0, 1]):
                np.testing.assert_allclose(prob_distribution(state, qubits).sum(), 1.0)

    def test_distribution_pattern_order(self):
        state = parse_state("|01>")
        np.testing.assert_allclose(prob_distribution(state, [0, 1]), [0, 1, 0, 0])
        np.testing.assert_allclose(prob_distribution(state, [1, 0]), [0, 0, 1, 0])
        with self.assertRaises(ValueError):
            prob_distribution(state, [0, 0])

    def test_phase_distribution(self):
        state = parse_state("(0.6)*|0> + (0.8i)*|1>")
        np.testing.assert_allclose(phase_distribution(state, [0]), [0.6, 0.8j])

    def test_full_measurement(self):
        meas = Measurement(np.random.default_rng(3))
        state = parse_state("(0.6)*|0> + (0.8)*|1>")
        result = meas.apply(state)
        self.assertIn(result.to_parseable_string(), ("|0>", "|1>"))
        self.assertIn(round(meas.last_probability, 6), (0.36, 0.64))
        self.assertAlmostEqual(state.norm(), 1.0)
        with self.assertRaises(ValueError):
            meas.apply(RegisterState(1))

    def test_full_measurement_statistics(self):
        meas = Measurement(np.random.default_rng(2024))
        state = parse_state("(0.6)*|0> + (0.8)*|1>")
        ones = sum(meas.apply(state).get(1) == ONE for _ in range(2000))
        self.assertAlmostEqual(ones / 2000, 0.64, delta=0.05)


# -------------------------------------------------------------------
# Decoherence
# -------------------------------------------------------------------
class TestDecoherence(unittest.TestCase):
    def setUp(self):
        self.deco = Decoherence(np.random.default_rng(0))

    def test_certain_decay(self):
        state = parse_state("(0.7071067811865476)*|0> + (0.7071067811865476)*|1>")
        self.assertTrue(self.deco.decohere(state, 1.0, 0))
        self.assertTrue(state.equals(parse_state("|0>"), LOOSE))
        self.assertEqual(self.deco.last_qubit, 0)

    def test_ground_state_does_not_decay(self):
        state = parse_state("|0>")
        self.assertFalse(self.deco.decohere(state, 1.0, 0))
        self.assertEqual(state.to_parseable_string(), "|0>")
        self.assertFalse(self.deco.decay_occurred)

    def test_no_decay_probability(self):
        state = parse_state("|1>")
        self.assertFalse(self.deco.decohere(state, 0.0, 0))
        self.assertEqual(state.to_parseable_string(), "|1>")

    def test_two_qubit_decay(self):
        state = parse_state("(0.6)*|01> + (0.8)*|11>")
        self.assertTrue(self.deco.decohere(state, 1.0, 0))
        self.assertTrue(state.equals(parse_state("|01>"), LOOSE))
        self.assertAlmostEqual(state.norm(), 1.0)

    def test_ground_partner_without_excited_amplitude_is_kept(self):
        c = 0.7071067811865476
        state = parse_state(f"({c})*|00> + ({c})*|11>")
        self.assertTrue(self.deco.decohere(state, 1.0, 1))
        self.assertIsNotNone(state.data[0])
        self.assertIsNone(state.data[1])
        self.assertIsNone(state.data[3])
        # rescaled by 1/sqrt(c^2) of the moved amplitude only
        scale = 1.0 / c
        self.assertTrue(state.get(0).equals(Scalar(c * scale), LOOSE))
        self.assertTrue(state.get(2).equals(Scalar(c * scale), LOOSE))

    def test_tiny_excited_amplitude_still_moves(self):
        state = RegisterState(1)
        state.data[0] = Scalar(0.6)
        state.data[1] = Scalar(1e-20)
        self.assertTrue(self.deco.decohere(state, 1.0, 0))
        self.assertIsNone(state.data[1])
        self.assertTrue(self.deco.decay_occurred)
        self.assertTrue(state.get(0).equals(ONE, LOOSE))

    def test_rate(self):
        state = parse_state("|1>")
        result = self.deco.apply(state, 0.0, 1.0)
        self.assertFalse(result.triggered)
        result = self.deco.apply_properties(state, CircuitProperties(rate=1.0, decay=1.0))
        self.assertTrue(result.triggered and result.decayed)
        self.assertEqual(state.to_parseable_string(), "|0>")
        with self.assertRaises(IndexError):
            self.deco.decohere(state, 1.0, 3)


# -------------------------------------------------------------------
# Snapshot store
# -------------------------------------------------------------------
class TestHilbertSpace(unittest.TestCase):
    def test_publish_is_a_snapshot(self):
        hilbert = HilbertSpace()
        self.assertEqual(hilbert.view(), "Hilbert Space is empty.")
        state = parse_state("|0>")
        hilbert.publish("q", 0, state)
        GateApplicator().apply(parse_gate("{NOT}"), state)
        hilbert.publish("q", 1, state)
        self.assertEqual(hilbert.get("q", 0).to_state().to_parseable_string(), "|0>")
        self.assertEqual(hilbert.latest("q").to_state().to_parseable_string(), "|1>")
        self.assertEqual([s for s, _ in hilbert.history("q")], [0, 1])
        self.assertIn("Register q @ Step 1", hilbert.view())

    def test_prune_and_copy(self):
        hilbert = HilbertSpace()
        for step in range(4):
            hilbert.publish("q", step, RegisterState.basis(0, 1))
        copy = hilbert.copy()
        hilbert.prune(1)
        self.assertEqual(len(hilbert), 2)
        self.assertEqual(len(copy), 4)
        self.assertIsNone(hilbert.latest("other"))


# -------------------------------------------------------------------
# Circuit runner
# -------------------------------------------------------------------
class TestCircuitRunner(unittest.TestCase):
    def test_bell_circuit(self):
        runner = CircuitRunner([parse_gate("{H:-}"), parse_gate("{1:NOT}")],
                               RegisterState.basis(0, 2), rng=np.random.default_rng(0))
        self.assertEqual(runner.run(), 2)
        self.assertTrue(runner.state.equals(bell_state()))
        self.assertEqual(runner.fidelities, [1.0, 1.0, 1.0])
        latest = runner.hilbert.latest(CircuitRunner.REAL).to_state()
        self.assertTrue(latest.equals(runner.state))
        runner.run(0)
        self.assertTrue(runner.state.equals(parse_state("|00>"), LOOSE))
        self.assertEqual(len(runner.hilbert.history(CircuitRunner.REAL)), 1)

    def test_reverse_veto(self):
        runner = CircuitRunner([parse_gate("{!}"), parse_gate("{H}")],
                               RegisterState.basis(0, 1), rng=np.random.default_rng(0))
        runner.step_forward()
        runner.step_forward()
        self.assertEqual(runner.reverse_veto_step, 0)
        self.assertTrue(runner.step_backward())
        with self.assertRaises(IrreversibleStepError):
            runner.step_backward()

    def test_failed_measurement_sets_no_veto(self):
        runner = CircuitRunner([parse_gate("{H}"), parse_gate("{!:-}")],
                               RegisterState.basis(0, 1), rng=np.random.default_rng(0))
        runner.step_forward()
        with self.assertRaises(DimensionMismatchError):
            runner.step_forward()
        self.assertEqual(runner.reverse_veto_step, -1)
        self.assertEqual(runner.step, 1)
        self.assertTrue(runner.step_backward())
        self.assertTrue(runner.state.equals(parse_state("|0>"), LOOSE))

    def test_decoherence_mode_fidelity(self):
        props = CircuitProperties(SimulationMode.DECOHERENCE, rate=1.0, decay=1.0)
        runner = CircuitRunner([parse_gate("{NOT}")], RegisterState.basis(0, 1), props,
                               rng=np.random.default_rng(0))
        runner.run()
        self.assertEqual(runner.state.to_parseable_string(), "|0>")
        self.assertEqual(runner.decayed_qubits, [0])
        self.assertEqual(runner.decay_steps, [0])
        self.assertAlmostEqual(runner.fidelity, 0.0)
        runner.reset()
        self.assertEqual(runner.step, 0)
        self.assertEqual(runner.decayed_qubits, [])

    def test_operational_mode_without_noise_width(self):
        props = CircuitProperties(SimulationMode.OPERATIONAL, sigma=0.0)
        runner = CircuitRunner([parse_gate("{H:-}"), parse_gate("{1:NOT}")],
                               RegisterState.basis(0, 2), props, rng=np.random.default_rng(0))
        runner.run()
        self.assertAlmostEqual(runner.fidelity, 1.0)
        props.sigma = 0.3
        runner.reset()
        runner.run()
        self.assertEqual(len(runner.fidelities), 3)
        self.assertGreaterEqual(runner.fidelity, 0.0)

    def test_fidelity_helper(self):
        state = parse_state("|0>")
        self.assertEqual(fidelity(state), 1.0)
        self.assertAlmostEqual(fidelity(state, parse_state("|1>")), 0.0)

    def test_cancel_between_gates(self):
        runner = CircuitRunner([parse_gate("{H}")] * 500, RegisterState.basis(0, 1),
                               rng=np.random.default_rng(0))

        def stop_after_five(event):
            if event.action == EventAction.IN_PROGRESS and event.current_step == 5:
                runner.cancel()

        runner.dispatcher.add_listener(stop_after_five)
        runner.start()
        runner.join(timeout=30)
        self.assertFalse(runner.running)
        self.assertIsNone(runner.error)
        self.assertEqual(runner.step, 5)
        self.assertEqual(runner.timing.steps, 5)

    def test_snapshots_complete_while_running(self):
        registry = MatrixRegistry()
        registry.register("R", ry(0.1))
        runner = CircuitRunner([parse_gate("{R:-:-}", registry)] * 300,
                               RegisterState.basis(0, 3), rng=np.random.default_rng(0))
        norms = []

        def reader():
            while runner.running:
                snap = runner.hilbert.latest(CircuitRunner.REAL)
                norms.append(snap.to_state().norm())

        runner.start()
        thread = threading.Thread(target=reader)
        thread.start()
        runner.join(timeout=30)
        thread.join(timeout=30)
        np.testing.assert_allclose(norms or [1.0], 1.0, atol=1e-9)

    def test_timing(self):
        timing = Timing()
        timing.start()
        timing.stop(4)
        self.assertEqual(timing.steps, 4)
        self.assertGreaterEqual(timing.elapsed_seconds(), 0.0)
        self.assertAlmostEqual(timing.estimate(8), 2 * timing.elapsed_seconds())


# -------------------------------------------------------------------
# Literal dispatch & CLI
# -------------------------------------------------------------------
class TestLiterals(unittest.TestCase):
    def test_dispatch(self):
        self.assertIsInstance(parse_literal("{-:1:NOT}"), GateDescriptor)
        self.assertIsInstance(parse_literal("[0 1, 1 0]"), DenseMatrix)
        self.assertIsInstance(parse_literal("[0 1]'"), AmplitudeVector)
        self.assertIsInstance(parse_literal("|01>"), RegisterState)
        self.assertIsInstance(parse_literal("(0.5)*<0| + (0.5)*<1|"), RegisterState)
        self.assertIsInstance(parse_literal("1+2i"), Scalar)
        with self.assertRaises(ParseError):
            parse_literal("   ")

    def test_round_trips(self):
        for literal in ("{-:1:NOT}", "[0.0 1.0, 1.0 0.0]", "[1.0 i]'", "|01>", "<1|",
                        "1.5-2.0i", "(0.6)*|0> + (-0.8)*|1>"):
            obj = parse_literal(literal)
            again = parse_literal(to_parseable_string(obj))
            self.assertEqual(type(again), type(obj), literal)
            self.assertEqual(to_parseable_string(again), to_parseable_string(obj))
        with self.assertRaises(TypeError):
            to_parseable_string(42)


class TestCircuitShell(unittest.TestCase):
    def test_bell_session(self):
        shell = CircuitShell(2, seed=1)
        shell.execute("APPLY {H:-}")
        shell.execute("APPLY {1:NOT}")
        self.assertEqual(shell.execute("PROB 0 1"), "00: 0.5\n01: 0\n10: 0\n11: 0.5")
        self.assertIn("Step 2", shell.execute("HISTORY"))
        out = shell.execute("MEASURE")
        self.assertTrue(out.startswith("|00>") or out.startswith("|11>"))

    def test_matrix_and_undo(self):
        shell = CircuitShell(1)
        shell.execute("MATRIX S [1 0, 0 i]")
        shell.execute("APPLY {H}")
        shell.execute("APPLY {S}")
        shell.execute("UNDO {S}")
        shell.execute("UNDO {H}")
        self.assertTrue(shell.state.equals(parse_state("|0>"), LOOSE))

    def test_settings_and_echo(self):
        shell = CircuitShell(1)
        self.assertEqual(shell.execute("ECHO {-:1:NOT}"), "{-:1:NOT}")
        self.assertEqual(shell.execute("DIGITS 5"), "display digits: 5")
        self.assertEqual(shell.precision.digits, 5)
        shell.execute("QUBITS 3")
        self.assertEqual(shell.state.n, 3)
        self.assertIn("|000>", shell.execute("SHOW"))
        with self.assertRaises(ValueError):
            shell.execute("FROB")
        with self.assertRaises(ParseError):
            shell.execute("STATE |2>")


if __name__ == "__main__":
    unittest.main()
