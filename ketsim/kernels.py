# kernels.py

"""
In-place gate kernels. Each kernel takes a decoded Embedding, the acting
matrix and a RegisterState, and rewrites the amplitudes of the addressed
subspace in one pass over the free-bit enumeration. Absent amplitudes
(None) are exact zeros and stay absent wherever the result is provably 0.
"""

from ketsim.gate import Embedding, free_steps, target_offsets
from ketsim.scalar import plus_sparse, times_sparse


def _sparse(value):
    # exact zeros are stored as absent
    if value is None or (value.re == 0 and value.im == 0):
        return None
    return value


def _check_single_target(emb: Embedding):
    if emb.ms != 1:
        raise ValueError(f"2x2 kernel needs exactly one target qubit, got {emb.ms}")


def apply_2x2(emb: Embedding, matrix, state):
    """
    General 2x2 matrix on one target qubit.

        |m11 m12|   |c1|
        |m21 m22| * |c2|
    """
    _check_single_target(emb)
    m11 = matrix.get_element(0, 0)
    m12 = matrix.get_element(0, 1)
    m21 = matrix.get_element(1, 0)
    m22 = matrix.get_element(1, 1)
    data = state.data
    first = emb.control_offset
    offset = emb.target_weights[0]
    for step in free_steps(emb.joker_weights):
        lo = first + step
        hi = lo + offset
        c1 = data[lo]
        c2 = data[hi]
        if c1 is None:
            if c2 is None:
                continue
            data[lo] = _sparse(m12.times(c2))
            data[hi] = _sparse(m22.times(c2))
        elif c2 is None:
            data[lo] = _sparse(m11.times(c1))
            data[hi] = _sparse(m21.times(c1))
        else:
            data[lo] = _sparse(m11.times(c1).plus(m12.times(c2)))
            data[hi] = _sparse(m21.times(c1).plus(m22.times(c2)))


def apply_diagonal(emb: Embedding, matrix, state):
    """
    2x2 matrix with zero off-diagonal (phase-like): each amplitude is only
    scaled by its diagonal entry.
    """
    _check_single_target(emb)
    m11 = matrix.get_element(0, 0)
    m22 = matrix.get_element(1, 1)
    data = state.data
    first = emb.control_offset
    offset = emb.target_weights[0]
    for step in free_steps(emb.joker_weights):
        lo = first + step
        hi = lo + offset
        if data[lo] is not None:
            data[lo] = _sparse(m11.times(data[lo]))
        if data[hi] is not None:
            data[hi] = _sparse(m22.times(data[hi]))


def apply_antidiagonal(emb: Embedding, matrix, state):
    """
    2x2 matrix with zero diagonal (flip-like): the pair is swapped and
    scaled, an absent input leaves its output absent.
    """
    _check_single_target(emb)
    m12 = matrix.get_element(0, 1)
    m21 = matrix.get_element(1, 0)
    data = state.data
    first = emb.control_offset
    offset = emb.target_weights[0]
    for step in free_steps(emb.joker_weights):
        lo = first + step
        hi = lo + offset
        c1 = data[lo]
        c2 = data[hi]
        if c1 is None and c2 is None:
            continue
        data[lo] = None if c2 is None else _sparse(m12.times(c2))
        data[hi] = None if c1 is None else _sparse(m21.times(c1))


def _matrix_rows(matrix, size):
    return [[matrix.get_element(r, c) for c in range(size)] for r in range(size)]


def apply_nxn(emb: Embedding, matrix, state):
    """
    General 2**ms x 2**ms matrix. The amplitudes of one free-bit
    combination are copied into a buffer before the row products are
    written back.
    """
    offsets = target_offsets(emb.target_weights)
    size = len(offsets)
    rows = _matrix_rows(matrix, size)
    data = state.data
    first = emb.control_offset
    for step in free_steps(emb.joker_weights):
        base = first + step
        buffer = [data[base + o] for o in offsets]
        if all(c is None for c in buffer):
            continue
        for r, o in enumerate(offsets):
            acc = None
            for factor, amp in zip(rows[r], buffer):
                acc = plus_sparse(acc, times_sparse(factor, amp))
            data[base + o] = _sparse(acc)


def apply_nxn_snapshot(emb: Embedding, matrix, state):
    """
    Same result as apply_nxn, but every read goes to one immutable
    snapshot of the amplitudes taken before the pass, so no read can see
    an already updated position.
    """
    offsets = target_offsets(emb.target_weights)
    size = len(offsets)
    rows = _matrix_rows(matrix, size)
    snapshot = state.snapshot()
    data = state.data
    first = emb.control_offset
    for step in free_steps(emb.joker_weights):
        base = first + step
        inputs = [snapshot[base + o] for o in offsets]
        if all(c is None for c in inputs):
            continue
        for r, o in enumerate(offsets):
            acc = None
            for factor, amp in zip(rows[r], inputs):
                acc = plus_sparse(acc, times_sparse(factor, amp))
            data[base + o] = _sparse(acc)
