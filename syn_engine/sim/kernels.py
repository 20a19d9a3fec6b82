"""
Per-tick data-parallel synapse kernels (JAX).

Every kernel is a pure function of a SynapseArrays pytree: state in, new state out.
Behavior is selected per synapse through lax.switch on a handle looked up from
the synapse's kind, so one compiled kernel serves every kind.

Key features:
- vmapped across synapses, JIT-compiled once per dispatch table
- no allocation-dependent control flow, nothing that can fail mid-tick
- destination accumulation via segment_sum (order independent)

Usage:
    advance = create_advance_fn(table.branches["change_psr"], n_neurons)
    arrays, summation = advance(arrays, active, handles, tick, dt)
"""

from typing import Callable, Tuple
import jax
import jax.numpy as jnp
from jax import lax

from ..models.store import SynapseArrays
from ..models import delay_queue as dq


# ============================================================================
# ADVANCE
# ============================================================================

def advance_synapses(
    arrays: SynapseArrays,
    active: jnp.ndarray,
    handles: jnp.ndarray,
    tick,
    dt,
    branches: Tuple[Callable, ...],
    n_neurons: int,
) -> Tuple[SynapseArrays, jnp.ndarray]:
    """
    Advance every active synapse by exactly one tick.

    Args:
        arrays: Device synapse state
        active: Live synapse ids (n_active,); order carries no meaning
        handles: change_psr handle per kind (N_KINDS,)
        tick: Global simulation step as uint32 (the engine wraps it modulo 2**32)
        dt: Tick duration (s)
        branches: change_psr implementations, indexed by handle
        n_neurons: Length of the summation vector

    Returns:
        (new_arrays, summation) where summation[n] is the total PSR delivered to neuron n
    """
    W = arrays.W[active]
    decay = arrays.decay[active]
    psr = arrays.psr[active]

    # 1. Pop this tick's slot from every delay queue
    queue, idx, arrived = dq.consume_arrival(
        arrays.delay_queue[active], arrays.delay_idx[active], arrays.ldelay_queue[active]
    )

    # 2. Arrival response through the resolved behavior
    h = handles[arrays.kind[active]]

    def _change(h_i, psr_i, W_i, decay_i):
        return lax.switch(h_i, branches, psr_i, W_i, decay_i, tick, dt)

    changed = jax.vmap(_change)(h, psr, W, decay)
    psr = jnp.where(arrived, changed, psr)

    # 3. Decay every tick, after any same-tick arrival
    psr = psr * decay

    new_arrays = arrays._replace(
        psr=arrays.psr.at[active].set(psr),
        delay_queue=arrays.delay_queue.at[active].set(queue),
        delay_idx=arrays.delay_idx.at[active].set(idx),
    )
    summation = jax.ops.segment_sum(psr, arrays.sum_point[active], num_segments=n_neurons)
    return new_arrays, summation


# ============================================================================
# SPIKE NOTIFICATIONS
# ============================================================================

def pre_spike_hits(
    arrays: SynapseArrays,
    hit: jnp.ndarray,
    handles: jnp.ndarray,
    branches: Tuple[Callable, ...],
) -> Tuple[SynapseArrays, jnp.ndarray]:
    """
    Schedule an arrival on every synapse where hit (n_slots,) is True.
    Returns (new_arrays, collided) with collided True where the target slot was already pending.
    """
    queue = arrays.delay_queue
    _, collided = dq.schedule_arrival(queue, arrays.delay_idx, arrays.total_delay, arrays.ldelay_queue)
    h = handles[arrays.kind]

    def _hit(h_i, q_i, idx_i, delay_i, len_i):
        return lax.switch(h_i, branches, q_i, idx_i, delay_i, len_i)

    scheduled = jax.vmap(_hit)(h, queue, arrays.delay_idx, arrays.total_delay, arrays.ldelay_queue)
    new_queue = jnp.where(hit, scheduled, queue)
    return arrays._replace(delay_queue=new_queue), hit & collided


def post_spike_hits(
    arrays: SynapseArrays,
    hit: jnp.ndarray,
    handles: jnp.ndarray,
    tick,
    branches: Tuple[Callable, ...],
) -> SynapseArrays:
    """Back-propagation hook on every synapse where hit (n_slots,) is True."""
    h = handles[arrays.kind]

    def _hit(h_i, psr_i, W_i):
        return lax.switch(h_i, branches, psr_i, W_i, tick)

    psr, W = jax.vmap(_hit)(h, arrays.psr, arrays.W)
    return arrays._replace(
        psr=jnp.where(hit, psr, arrays.psr),
        W=jnp.where(hit, W, arrays.W),
    )


# ============================================================================
# FACTORIES
# ============================================================================

def create_advance_fn(branches: Tuple[Callable, ...], n_neurons: int, compile: bool = True):
    """
    Bind the resolved change_psr branches and the summation length.

    Returns:
        Function (arrays, active, handles, tick, dt) -> (new_arrays, summation)
    """
    def step(arrays, active, handles, tick, dt):
        return advance_synapses(arrays, active, handles, tick, dt, branches, n_neurons)

    if compile:
        return jax.jit(step)
    return step


def create_pre_spike_fn(branches: Tuple[Callable, ...], compile: bool = True):
    def step(arrays, hit, handles):
        return pre_spike_hits(arrays, hit, handles, branches)

    if compile:
        return jax.jit(step)
    return step


def create_post_spike_fn(branches: Tuple[Callable, ...], compile: bool = True):
    def step(arrays, hit, handles, tick):
        return post_spike_hits(arrays, hit, handles, tick, branches)

    if compile:
        return jax.jit(step)
    return step
