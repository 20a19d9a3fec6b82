"""Circular bit-queue semantics, host (numpy) and kernel (jax.numpy) flavours."""

import numpy as np
import jax.numpy as jnp
import pytest

from syn_engine.models import delay_queue as dq

LEN = dq.QUEUE_WIDTH


def _run(total_delay, start_idx=0, xp=np):
    """Schedule at the current head, then consume one full cycle; return arrival offsets."""
    queue, _ = dq.schedule_arrival(xp.uint32(0), start_idx, total_delay, LEN, xp=xp)
    idx = start_idx
    hits = []
    for offset in range(LEN):
        queue, idx, arrived = dq.consume_arrival(queue, idx, LEN, xp=xp)
        if bool(arrived):
            hits.append(offset)
    return hits, int(queue), int(idx)


@pytest.mark.parametrize("delay", [0, 1, 5, 16, LEN - 1])
def test_arrival_exactly_at_delay_offset(delay):
    hits, queue, idx = _run(delay)
    assert hits == [delay]
    assert queue == 0            # consumed bits are cleared
    assert idx == 0              # head wrapped after one full cycle


def test_schedule_wraps_around_queue_end():
    assert int(dq.schedule_slot(30, 5, LEN)) == 3
    hits, _, _ = _run(5, start_idx=30)
    assert hits == [5]


def test_jax_flavour_matches_numpy():
    for delay in (1, 7, 31):
        assert _run(delay, start_idx=12, xp=jnp)[0] == _run(delay, start_idx=12, xp=np)[0]


def test_collision_flag_when_slot_already_pending():
    queue, collided = dq.schedule_arrival(np.uint32(0), 3, 4, LEN, xp=np)
    assert not bool(collided)
    queue2, collided = dq.schedule_arrival(queue, 3, 4, LEN, xp=np)
    assert bool(collided)
    assert int(queue2) == int(queue)   # setting again is idempotent


def test_vectorised_consume_over_many_synapses():
    queue = jnp.array([0b1, 0b10, 0b1], dtype=jnp.uint32)
    idx = jnp.array([0, 0, 31], dtype=jnp.int32)
    length = jnp.full(3, LEN, dtype=jnp.int32)
    new_queue, new_idx, arrived = dq.consume_arrival(queue, idx, length)
    assert arrived.tolist() == [True, False, False]
    assert new_queue.tolist() == [0, 0b10, 0b1]
    assert new_idx.tolist() == [1, 1, 0]


def test_pending_offsets_relative_to_head():
    word = (1 << 10) | (1 << 2)
    assert dq.pending_offsets(word, 8, LEN) == [2, 26]
