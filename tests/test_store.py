"""SynapseStore lifecycle: first-fit slots, capacity, validation, reset, serialisation."""

import numpy as np
import pytest

from syn_engine.models.store import SynapseStore
from syn_engine.models.kinds import SynapseKind, DEFAULT_WEIGHT, KIND_DEFAULTS, decay_factor, delay_ticks, syn_sign
from syn_engine.models.errors import CapacityExceededError, InvalidDelayError, DoubleScheduleError

DT = 1e-4


def _snapshot(store):
    return {k: (v.copy() if isinstance(v, np.ndarray) else v) for k, v in store.state_dict().items()}


def test_create_uses_source_block_first_fit():
    store = SynapseStore(n_neurons=4, max_synapses_per_neuron=3)
    a = store.create(2, 0, SynapseKind.EE, DT)
    b = store.create(2, 1, SynapseKind.EE, DT)
    assert (a, b) == (6, 7)
    assert store.synapse_id(2, 1) == b
    assert store.local_slot(b) == 1
    assert store.count(2) == 2
    assert store.sum_point[a] == 0 and store.dest_index[b] == 1


def test_create_sets_kind_defaults():
    store = SynapseStore(2, 2)
    i = store.create(0, 1, SynapseKind.EE, DT)
    d = KIND_DEFAULTS[SynapseKind.EE]
    assert store.total_delay[i] == delay_ticks(d.delay_s, DT)
    np.testing.assert_allclose(store.decay[i], np.exp(-DT / d.tau_s), rtol=1e-6)
    np.testing.assert_allclose(store.W[i], DEFAULT_WEIGHT, rtol=1e-6)
    assert store.delay_queue[i] == 0 and store.delay_idx[i] == 0
    assert store.ldelay_queue[i] == 32
    assert store.psr[i] == 0.0


@pytest.mark.parametrize("kind", [SynapseKind.II, SynapseKind.IE, SynapseKind.EI, SynapseKind.EE])
def test_default_weight_sign_follows_kind(kind):
    store = SynapseStore(2, 2)
    i = store.create(0, 1, kind, DT)
    assert np.sign(store.W[i]) == syn_sign(kind)


def test_wrong_sign_and_undefined_kind_rejected():
    store = SynapseStore(2, 2)
    with pytest.raises(ValueError):
        store.create(0, 1, SynapseKind.IE, DT, weight=1.0)
    with pytest.raises(ValueError):
        store.create(0, 1, SynapseKind.UNDEFINED, DT)
    assert store.total_synapses == 0


def test_capacity_exceeded_leaves_store_unchanged():
    store = SynapseStore(n_neurons=3, max_synapses_per_neuron=2)
    store.create(1, 0, SynapseKind.EE, DT)
    store.create(1, 2, SynapseKind.EE, DT)
    before = _snapshot(store)
    with pytest.raises(CapacityExceededError) as exc:
        store.create(1, 0, SynapseKind.EE, DT)
    assert exc.value.neuron == 1
    after = store.state_dict()
    for k, v in before.items():
        if isinstance(v, np.ndarray):
            np.testing.assert_array_equal(after[k], v)
    # other neurons are unaffected by neuron 1 being full
    store.create(0, 1, SynapseKind.EE, DT)


def test_delay_must_fit_queue():
    store = SynapseStore(2, 2)
    with pytest.raises(InvalidDelayError):
        store.create(0, 1, SynapseKind.EE, DT, delay_ticks=32)
    with pytest.raises(ValueError):      # InvalidDelayError is also a ValueError
        store.create(0, 1, SynapseKind.EE, DT, delay_ticks=-1)
    assert store.create(0, 1, SynapseKind.EE, DT, delay_ticks=31) == 0


def test_erase_then_create_reuses_slot():
    store = SynapseStore(n_neurons=2, max_synapses_per_neuron=4)
    ids = [store.create(0, 1, SynapseKind.EE, DT) for _ in range(3)]
    store.erase(ids[1])
    assert not store.in_use[ids[1]]
    assert store.sum_point[ids[1]] == -1
    assert store.count(0) == 2
    assert store.create(0, 1, SynapseKind.EI, DT) == ids[1]


def test_no_growth_under_churn():
    store = SynapseStore(n_neurons=2, max_synapses_per_neuron=3)
    seen = set()
    for _ in range(200):
        i = store.create(0, 1, SynapseKind.EE, DT)
        seen.add(i)
        store.erase(i)
    assert seen == {0}
    assert store.count(0) == 0
    assert store.live_ids().size == 0


def test_reset_state_recomputes_decay_keeps_identity():
    store = SynapseStore(2, 2)
    i = store.create(0, 1, SynapseKind.II, DT)
    store.psr[i] = 3.0
    store.reset_state(i, 2 * DT)
    assert store.psr[i] == 0.0
    np.testing.assert_allclose(store.decay[i], np.exp(-2 * DT / store.tau[i]), rtol=1e-6)
    assert store.kind[i] == SynapseKind.II
    assert store.source_index[i] == 0 and store.dest_index[i] == 1


def test_failed_reset_leaves_slot_untouched():
    store = SynapseStore(2, 2)
    i = store.create(0, 1, SynapseKind.EE, DT)
    store.psr[i] = 3.0
    decay = store.decay[i]
    for bad_dt in (0.0, -DT):
        with pytest.raises(ValueError):
            store.reset_state(i, bad_dt)
        with pytest.raises(ValueError):
            store.reset_states([i], bad_dt)
    store.tau[i] = 0.0
    with pytest.raises(ValueError):
        store.reset_state(i, DT)
    assert store.psr[i] == 3.0
    assert store.decay[i] == decay


@pytest.mark.parametrize("dt, tau", [(0.0, 3e-3), (-DT, 3e-3), (DT, 0.0), (DT, float("inf")), (DT, 1e-9)])
def test_decay_factor_stays_inside_unit_interval(dt, tau):
    with pytest.raises(ValueError):
        decay_factor(dt, tau)


def test_delay_ticks_rejects_non_positive_dt():
    assert delay_ticks(1.0e-3, 1.0e-3) == 2
    with pytest.raises(ValueError):
        delay_ticks(1.5e-3, 0.0)


def test_host_schedule_and_consume():
    store = SynapseStore(2, 2)
    i = store.create(0, 1, SynapseKind.EE, DT, delay_ticks=3)
    store.schedule_arrival(i)
    assert store.pending_offsets(i) == [3]
    with pytest.raises(DoubleScheduleError):
        store.schedule_arrival(i)
    assert [store.consume_arrival(i) for _ in range(5)] == [False, False, False, True, False]


def test_state_dict_round_trip():
    store = SynapseStore(3, 2)
    i = store.create(2, 0, SynapseKind.EI, DT, delay_ticks=4)
    store.schedule_arrival(i)
    store.consume_arrival(i)
    store.psr[i] = 0.25
    clone = SynapseStore.from_state_dict(store.state_dict())
    assert clone.pending_offsets(i) == store.pending_offsets(i)
    assert clone.delay_idx[i] == 1
    assert clone.psr[i] == np.float32(0.25)
    np.testing.assert_array_equal(clone.synapse_counts, store.synapse_counts)
