# delay_queue.py
# Fixed-width circular bit-queue of pending spike arrivals, one machine word per synapse.
#
# Bit k of a synapse's word is set when a spike is due at queue slot k. The read head
# (delay_idx) moves forward one slot per tick; scheduling writes relative to the head.
#
# All functions are array-generic: pass xp=np for host-side work on the store and
# keep the default xp=jnp inside jit-compiled kernels. Scalars and (n_syn,) arrays both work.

from __future__ import annotations
from typing import List
import numpy as np
import jax.numpy as jnp

QUEUE_WIDTH = 32  # bits in one uint32 word


def _bit(slot, xp=jnp):
    return xp.left_shift(xp.uint32(1), xp.asarray(slot).astype(xp.uint32))


def schedule_slot(delay_idx, total_delay, length):
    """Queue slot a spike lands in when scheduled now."""
    return (delay_idx + total_delay) % length


def schedule_arrival(delay_queue, delay_idx, total_delay, length, xp=jnp):
    """
    Mark a spike as pending total_delay ticks from the current head.
    Returns (new_queue, collided); collided is True where the slot was already pending.
    """
    bit = _bit(schedule_slot(delay_idx, total_delay, length), xp)
    collided = xp.bitwise_and(delay_queue, bit) != 0
    return xp.bitwise_or(delay_queue, bit), collided


def consume_arrival(delay_queue, delay_idx, length, xp=jnp):
    """
    Read and clear the slot under the head, then advance the head by one.
    Returns (new_queue, new_idx, arrived).
    """
    bit = _bit(delay_idx, xp)
    arrived = xp.bitwise_and(delay_queue, bit) != 0
    new_queue = xp.bitwise_and(delay_queue, xp.bitwise_not(bit))
    new_idx = (delay_idx + 1) % length
    return new_queue, new_idx, arrived


def pending_offsets(delay_queue: int, delay_idx: int, length: int) -> List[int]:
    """Tick offsets (relative to the head) with a pending arrival, for one synapse."""
    word = int(delay_queue)
    return [off for off in range(length) if (word >> ((delay_idx + off) % length)) & 1]


def empty_queue(n: int) -> np.ndarray:
    return np.zeros(n, dtype=np.uint32)
