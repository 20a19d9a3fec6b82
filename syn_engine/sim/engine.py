# engine.py
# The synapse engine facade: topology mutation, dispatch resolution and per-tick advance.
#
# Usage pattern:
#   eng = SynapseEngine(n_neurons=100, max_synapses_per_neuron=8)
#   eng.add_synapse(SynapseKind.EE, src, dst, dt=1e-4)       # setup, between ticks
#   eng.resolve_dispatch()                                   # once, before the first tick
#   for tick in range(T):
#       eng.fire_neurons(fired_ids, tick)                    # from the neuron stage
#       summation = eng.advance_all_synapses(tick, dt)       # (n_neurons,) input per neuron
#
# Host vs device: the SynapseStore (numpy) is authoritative while the topology changes;
# the jnp copy is authoritative while ticking. Every mutation pulls the device copy back
# first, so create/erase never interleave with an in-flight kernel.

from __future__ import annotations
from typing import Any, Dict, Mapping, Optional
import numpy as np
import jax
import jax.numpy as jnp

from ..models.store import SynapseStore, SynapseArrays
from ..models.kinds import SYNAPSE_STRENGTH_ADJUSTMENT, syn_sign
from ..models.errors import DoubleScheduleError
from ..models.dispatch import (
    BehaviorRegistry,
    DispatchTable,
    as_kind,
    resolve_dispatch,
    check_dispatch,
)
from ..models import delay_queue as dq
from .index_map import SynapseIndexMap, build_index_map, outgoing_many, incoming_many
from .kernels import create_advance_fn, create_pre_spike_fn, create_post_spike_fn


TICK_WRAP = 1 << 32


def _device_tick(tick) -> np.uint32:
    # jit arguments are 32-bit without x64; behaviors see the tick modulo 2**32
    return np.uint32(int(tick) % TICK_WRAP)


class SynapseEngine:
    def __init__(self,
                 n_neurons: int,
                 max_synapses_per_neuron: int,
                 queue_length: int = dq.QUEUE_WIDTH,
                 registry: Optional[BehaviorRegistry] = None,
                 kind_behaviors: Optional[Mapping] = None,
                 strict_scheduling: bool = True,
                 compile: bool = True,
                 verbose: bool = False):
        self.store = SynapseStore(n_neurons, max_synapses_per_neuron, queue_length)
        self.registry = registry if registry is not None else BehaviorRegistry()
        self.kind_behaviors = dict(kind_behaviors or {})
        self.strict_scheduling = strict_scheduling
        self.compile = compile
        self.verbose = verbose

        self.device = None
        self.epoch = 0
        self.dispatch: Optional[DispatchTable] = None
        self._kernels: Dict[str, Any] = {}
        self._handles: Dict[str, jnp.ndarray] = {}
        self._arrays: Optional[SynapseArrays] = None
        self._index_map: Optional[SynapseIndexMap] = None
        self._active_dev: Optional[jnp.ndarray] = None
        self.summation_map = np.zeros(n_neurons, dtype=np.float32)

    @property
    def n_neurons(self) -> int:
        return self.store.n_neurons

    # ------------------------------------------------------------
    # Device lifecycle and dispatch
    # ------------------------------------------------------------
    def initialize_device(self, device=None) -> None:
        """(Re)select the compute device. Any previously resolved dispatch table goes stale."""
        self._pull()
        self.device = device if device is not None else jax.devices()[0]
        self.epoch += 1
        self._kernels = {}
        self._handles = {}
        self._active_dev = None
        if self.verbose:
            print(f"✓ Device initialised: {self.device} (epoch {self.epoch})")

    def resolve_dispatch(self) -> DispatchTable:
        """Resolve behaviors to kernel branches for the current device epoch."""
        if self.device is None:
            self.initialize_device()
        table = resolve_dispatch(self.registry, self.kind_behaviors, epoch=self.epoch)
        self.dispatch = table
        self._kernels = dict(
            advance=create_advance_fn(table.branches["change_psr"], self.n_neurons, compile=self.compile),
            pre=create_pre_spike_fn(table.branches["pre_spike_hit"], compile=self.compile),
            post=create_post_spike_fn(table.branches["post_spike_hit"], compile=self.compile),
        )
        self._handles = {op: jnp.asarray(h) for op, h in table.handles.items()}
        if self.verbose:
            print(f"✓ Dispatch resolved: behaviors={list(table.behaviors)}")
        return table

    def allow_back_propagation(self) -> bool:
        table = check_dispatch(self.dispatch, self.epoch)
        return bool(table.back_propagation.any())

    # ------------------------------------------------------------
    # Host/device sync
    # ------------------------------------------------------------
    def _push(self) -> SynapseArrays:
        if self._arrays is None:
            self._arrays = self.store.to_device(self.device)
        return self._arrays

    def _pull(self) -> None:
        if self._arrays is not None:
            self.store.load_device(self._arrays)
            self._arrays = None

    def _begin_mutation(self) -> None:
        self._pull()
        self._index_map = None
        self._active_dev = None

    @property
    def index_map(self) -> SynapseIndexMap:
        if self._index_map is None:
            self._index_map = build_index_map(self.store)
            self._active_dev = None
            if self.verbose:
                print(f"✓ Index map rebuilt: {self._index_map.active_index.size} active synapses")
        return self._index_map

    def rebuild_index_map(self) -> SynapseIndexMap:
        self._index_map = None
        return self.index_map

    # ------------------------------------------------------------
    # Topology (between ticks only)
    # ------------------------------------------------------------
    def add_synapse(self, kind, source: int, dest: int, dt: float,
                    weight_matrix: Optional[np.ndarray] = None,
                    weight: Optional[float] = None,
                    delay_ticks: Optional[int] = None,
                    tau: Optional[float] = None) -> int:
        """
        Create a synapse. With a weight matrix (n_neurons, n_neurons) the weight is
        W[source, dest] * sign(kind) * SYNAPSE_STRENGTH_ADJUSTMENT; matrix entries are magnitudes.
        An explicit weight is used as is; with neither, the kind's default weight applies.
        """
        kind = as_kind(kind)
        if weight_matrix is not None and weight is not None:
            raise ValueError("pass either weight_matrix or weight, not both")
        if weight_matrix is not None:
            weight = float(weight_matrix[source, dest]) * syn_sign(kind) * SYNAPSE_STRENGTH_ADJUSTMENT
        self._begin_mutation()
        return self.store.create(source, dest, kind, dt, weight=weight,
                                 delay_ticks=delay_ticks, tau=tau)

    def remove_synapse(self, source: int, local_slot: int) -> None:
        i_syn = self.store.synapse_id(source, local_slot)
        self._begin_mutation()
        self.store.erase(i_syn)

    def reset_synapse(self, i_syn: int, dt: float) -> None:
        self._pull()
        self.store.reset_state(i_syn, dt)

    def set_tick_duration(self, dt: float) -> None:
        """Reset PSR and recompute decay of every live synapse for a new dt."""
        self._pull()
        self.store.reset_states(self.store.live_ids(), dt)

    # ------------------------------------------------------------
    # Per tick
    # ------------------------------------------------------------
    def advance_all_synapses(self, tick: int, dt: float) -> np.ndarray:
        """Advance every active synapse one tick; returns the per-neuron summation vector."""
        check_dispatch(self.dispatch, self.epoch)
        imap = self.index_map
        arrays = self._push()
        if imap.active_index.size == 0:
            self.summation_map = np.zeros(self.n_neurons, dtype=np.float32)
            return self.summation_map
        if self._active_dev is None:
            self._active_dev = jax.device_put(jnp.asarray(imap.active_index), self.device)

        self._arrays, summation = self._kernels["advance"](
            arrays, self._active_dev, self._handles["change_psr"], _device_tick(tick), dt
        )
        self.summation_map = np.asarray(summation)
        return self.summation_map

    def _hit_mask(self, ids) -> np.ndarray:
        ids = np.asarray(ids, dtype=np.int64).reshape(-1)
        if ids.size and not np.all(self.store.in_use[ids]):
            dead = ids[~self.store.in_use[ids]]
            raise ValueError(f"spike notification for free synapse slot(s) {dead.tolist()}")
        mask = np.zeros(self.store.n_slots, dtype=bool)
        mask[ids] = True
        return mask

    def notify_pre_synaptic_spikes(self, ids) -> None:
        """Schedule an arrival on each synapse (their source neuron fired)."""
        check_dispatch(self.dispatch, self.epoch)
        mask = self._hit_mask(ids)
        if not mask.any():
            return
        if self.strict_scheduling:
            # the hit mask merges repeats, so a synapse named twice is caught here
            uniq, counts = np.unique(np.asarray(ids, dtype=np.int64).reshape(-1), return_counts=True)
            if np.any(counts > 1):
                raise DoubleScheduleError(uniq[counts > 1])
        arrays = self._push()
        new_arrays, collided = self._kernels["pre"](arrays, jnp.asarray(mask), self._handles["pre_spike_hit"])
        if self.strict_scheduling:
            collided = np.asarray(collided)
            if collided.any():
                raise DoubleScheduleError(np.flatnonzero(collided))
        self._arrays = new_arrays

    def notify_pre_synaptic_spike(self, i_syn: int) -> None:
        self.notify_pre_synaptic_spikes([i_syn])

    def notify_post_synaptic_spikes(self, ids, tick: int = 0) -> None:
        """Back-propagation hook; the base behavior leaves the synapse untouched."""
        check_dispatch(self.dispatch, self.epoch)
        mask = self._hit_mask(ids)
        if not mask.any():
            return
        arrays = self._push()
        self._arrays = self._kernels["post"](arrays, jnp.asarray(mask), self._handles["post_spike_hit"],
                                             _device_tick(tick))

    def notify_post_synaptic_spike(self, i_syn: int, tick: int = 0) -> None:
        self.notify_post_synaptic_spikes([i_syn], tick)

    def fire_neurons(self, neurons, tick: int = 0) -> None:
        """Deliver spikes of the given source neurons to all their outgoing synapses."""
        imap = self.index_map
        self.notify_pre_synaptic_spikes(outgoing_many(imap, neurons))
        if self.allow_back_propagation():
            self.notify_post_synaptic_spikes(incoming_many(imap, neurons), tick)

    # ------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------
    def psr(self, i_syn: int) -> float:
        if self._arrays is not None:
            return float(self._arrays.psr[i_syn])
        return float(self.store.psr[i_syn])

    def psr_array(self, ids=None) -> np.ndarray:
        """PSR of all slots, or of the given synapse ids."""
        if self._arrays is not None:
            psr = self._arrays.psr if ids is None else self._arrays.psr[jnp.asarray(ids, dtype=jnp.int32)]
            return np.asarray(psr)
        return self.store.psr.copy() if ids is None else self.store.psr[np.asarray(ids, dtype=np.int64)]

    def pending_offsets(self, i_syn: int):
        self._pull()
        return self.store.pending_offsets(i_syn)

    # ------------------------------------------------------------
    # Resumable state
    # ------------------------------------------------------------
    def state_dict(self) -> Dict[str, Any]:
        self._pull()
        return self.store.state_dict()

    def load_state_dict(self, state: Dict[str, Any]) -> None:
        store = SynapseStore.from_state_dict(state)
        if (store.n_neurons, store.max_synapses_per_neuron) != (
                self.store.n_neurons, self.store.max_synapses_per_neuron):
            raise ValueError("checkpoint layout does not match this engine")
        self._arrays = None
        self._index_map = None
        self._active_dev = None
        self.store = store
