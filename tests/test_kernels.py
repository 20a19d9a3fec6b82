"""Advance / spike-notification kernels on raw SynapseArrays."""

import numpy as np
import jax.numpy as jnp
import pytest

from syn_engine.models.store import SynapseStore
from syn_engine.models.kinds import SynapseKind, N_KINDS
from syn_engine.models.dispatch import spiking_change_psr, spiking_pre_spike_hit
from syn_engine.sim.kernels import create_advance_fn, create_pre_spike_fn

DT = 1e-4
HANDLES = jnp.zeros(N_KINDS, dtype=jnp.int32)


def _tau_for(decay):
    return -DT / np.log(decay)


@pytest.fixture
def store():
    s = SynapseStore(n_neurons=3, max_synapses_per_neuron=2)
    s.create(0, 2, SynapseKind.EE, DT, weight=1.0, delay_ticks=5, tau=_tau_for(0.9))
    s.create(1, 2, SynapseKind.EI, DT, weight=0.5, delay_ticks=2, tau=_tau_for(0.8))
    return s


@pytest.mark.parametrize("compile", [True, False])
def test_decay_without_arrivals(store, compile):
    store.psr[0] = 2.0
    store.psr[2] = -1.0
    arrays = store.to_device()
    advance = create_advance_fn((spiking_change_psr,), store.n_neurons, compile=compile)
    active = jnp.asarray(store.live_ids())
    for tick in range(40):
        arrays, _ = advance(arrays, active, HANDLES, tick, DT)
    np.testing.assert_allclose(float(arrays.psr[0]), 2.0 * 0.9**40, rtol=1e-5)
    np.testing.assert_allclose(float(arrays.psr[2]), -1.0 * 0.8**40, rtol=1e-5)


def test_arrival_then_decay_trajectory(store):
    store.schedule_arrival(0)
    arrays = store.to_device()
    advance = create_advance_fn((spiking_change_psr,), store.n_neurons)
    active = jnp.asarray(store.live_ids())
    trace = []
    for tick in range(9):
        arrays, _ = advance(arrays, active, HANDLES, tick, DT)
        trace.append(float(arrays.psr[0]))
    np.testing.assert_allclose(trace[:5], 0.0)
    # arrival: (0 + W / decay) * decay
    np.testing.assert_allclose(trace[5:], [1.0, 0.9, 0.81, 0.729], rtol=1e-5)


def test_summation_reduces_converging_synapses(store):
    store.psr[0] = 1.0
    store.psr[2] = 2.0
    arrays = store.to_device()
    advance = create_advance_fn((spiking_change_psr,), store.n_neurons)
    arrays, summation = advance(arrays, jnp.asarray(store.live_ids()), HANDLES, 0, DT)
    np.testing.assert_allclose(np.asarray(summation), [0.0, 0.0, 0.9 + 1.6], rtol=1e-5)


def test_inactive_slots_untouched(store):
    store.psr[1] = 5.0   # free slot of neuron 0
    arrays = store.to_device()
    advance = create_advance_fn((spiking_change_psr,), store.n_neurons)
    arrays, _ = advance(arrays, jnp.asarray(store.live_ids()), HANDLES, 0, DT)
    assert float(arrays.psr[1]) == 5.0


def test_pre_spike_kernel_reports_collisions(store):
    arrays = store.to_device()
    hit_fn = create_pre_spike_fn((spiking_pre_spike_hit,))
    hit = jnp.asarray(np.array([True, False, False, False, False, False]))
    arrays, collided = hit_fn(arrays, hit, HANDLES)
    assert not bool(collided.any())
    assert int(arrays.delay_queue[0]) == 1 << 5
    assert int(arrays.delay_queue[2]) == 0
    arrays, collided = hit_fn(arrays, hit, HANDLES)
    assert np.asarray(collided).tolist() == [True, False, False, False, False, False]
