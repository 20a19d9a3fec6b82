# store.py
# Structure-of-arrays storage for every synapse in the network.
#
# Slots are preallocated as n_neurons x max_synapses_per_neuron. Synapse i of source
# neuron n lives at flat id n * max_synapses_per_neuron + i, so a neuron's block is
# contiguous and create/erase on different neurons never touch the same slots.
#
# Usage pattern (between ticks, host side):
#   i_syn = store.create(src, dst, SynapseKind.EE, dt=1e-4)
#   store.erase(i_syn)
#   arrays = store.to_device()        # jnp view consumed by the kernels
#   store.load_device(arrays)         # pull the time-varying fields back

from __future__ import annotations
from typing import Any, Dict, NamedTuple, Optional
import numpy as np
import jax
import jax.numpy as jnp

from .errors import CapacityExceededError, InvalidDelayError, DoubleScheduleError
from .kinds import (
    SynapseKind,
    KIND_DEFAULTS,
    DEFAULT_WEIGHT,
    syn_sign,
    decay_factor,
    delay_ticks as default_delay_ticks,
)
from . import delay_queue as dq


class SynapseArrays(NamedTuple):
    """Device-resident copy of the fields the per-tick kernels read or write."""
    W: jnp.ndarray             # (n_slots,) float32
    psr: jnp.ndarray           # (n_slots,) float32
    decay: jnp.ndarray         # (n_slots,) float32
    total_delay: jnp.ndarray   # (n_slots,) int32
    delay_queue: jnp.ndarray   # (n_slots,) uint32
    delay_idx: jnp.ndarray     # (n_slots,) int32
    ldelay_queue: jnp.ndarray  # (n_slots,) int32
    kind: jnp.ndarray          # (n_slots,) int32
    sum_point: jnp.ndarray     # (n_slots,) int32, -1 when detached


# fields written back to the host after kernels ran
_DEVICE_MUTABLE = ("W", "psr", "delay_queue", "delay_idx")

_STATE_FIELDS = (
    "W", "psr", "decay", "tau", "total_delay", "delay_queue", "delay_idx", "ldelay_queue",
    "in_use", "kind", "source_index", "dest_index", "sum_point", "synapse_counts",
)


class SynapseStore:
    """Owns the backing arrays and the per-source-neuron slot lifecycle."""

    def __init__(self, n_neurons: int, max_synapses_per_neuron: int,
                 queue_length: int = dq.QUEUE_WIDTH):
        if n_neurons <= 0 or max_synapses_per_neuron <= 0:
            raise ValueError("n_neurons and max_synapses_per_neuron must be positive")
        if not 0 < queue_length <= dq.QUEUE_WIDTH:
            raise ValueError(f"queue_length must be in 1..{dq.QUEUE_WIDTH}, got {queue_length}")
        self.n_neurons = int(n_neurons)
        self.max_synapses_per_neuron = int(max_synapses_per_neuron)
        self.queue_length = int(queue_length)

        n = self.n_slots
        self.W = np.zeros(n, dtype=np.float32)
        self.psr = np.zeros(n, dtype=np.float32)
        self.decay = np.zeros(n, dtype=np.float32)
        self.tau = np.zeros(n, dtype=np.float32)
        self.total_delay = np.zeros(n, dtype=np.int32)
        self.delay_queue = dq.empty_queue(n)
        self.delay_idx = np.zeros(n, dtype=np.int32)
        self.ldelay_queue = np.full(n, self.queue_length, dtype=np.int32)
        self.in_use = np.zeros(n, dtype=bool)
        self.kind = np.full(n, int(SynapseKind.UNDEFINED), dtype=np.int32)
        self.source_index = np.full(n, -1, dtype=np.int32)
        self.dest_index = np.full(n, -1, dtype=np.int32)
        self.sum_point = np.full(n, -1, dtype=np.int32)
        # live synapses per source neuron
        self.synapse_counts = np.zeros(self.n_neurons, dtype=np.int32)

    # ------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------
    @property
    def n_slots(self) -> int:
        return self.n_neurons * self.max_synapses_per_neuron

    def synapse_id(self, neuron: int, local_slot: int) -> int:
        if not 0 <= local_slot < self.max_synapses_per_neuron:
            raise IndexError(f"local slot {local_slot} outside 0..{self.max_synapses_per_neuron - 1}")
        self._check_neuron(neuron)
        return neuron * self.max_synapses_per_neuron + local_slot

    def local_slot(self, i_syn: int) -> int:
        return int(i_syn) % self.max_synapses_per_neuron

    def count(self, neuron: int) -> int:
        return int(self.synapse_counts[neuron])

    @property
    def total_synapses(self) -> int:
        return int(self.synapse_counts.sum())

    def live_ids(self) -> np.ndarray:
        return np.flatnonzero(self.in_use).astype(np.int32)

    def _check_neuron(self, neuron: int) -> None:
        if not 0 <= neuron < self.n_neurons:
            raise IndexError(f"neuron {neuron} outside 0..{self.n_neurons - 1}")

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------
    def create(self, source: int, dest: int, kind, dt: float,
               weight: Optional[float] = None,
               delay_ticks: Optional[int] = None,
               tau: Optional[float] = None) -> int:
        """
        Claim the first free slot of the source neuron's block and initialise it.
        Validation happens before any write, so a failed create leaves the store unchanged.
        """
        kind = SynapseKind(int(kind))
        if kind == SynapseKind.UNDEFINED:
            raise ValueError("cannot create a synapse of undefined kind")
        self._check_neuron(source)
        self._check_neuron(dest)
        if self.synapse_counts[source] >= self.max_synapses_per_neuron:
            raise CapacityExceededError(source, self.max_synapses_per_neuron)

        defaults = KIND_DEFAULTS[kind]
        tau = defaults.tau_s if tau is None else float(tau)
        decay = decay_factor(dt, tau)
        total_delay = default_delay_ticks(defaults.delay_s, dt) if delay_ticks is None else int(delay_ticks)
        if not 0 <= total_delay < self.queue_length:
            raise InvalidDelayError(total_delay, self.queue_length)

        sign = syn_sign(kind)
        if weight is None:
            weight = sign * DEFAULT_WEIGHT
        elif weight != 0 and np.sign(weight) != sign:
            raise ValueError(f"weight {weight} has the wrong sign for kind {kind.name}")

        base = source * self.max_synapses_per_neuron
        free = np.flatnonzero(~self.in_use[base:base + self.max_synapses_per_neuron])
        i_syn = base + int(free[0])

        self.W[i_syn] = weight
        self.psr[i_syn] = 0.0
        self.tau[i_syn] = tau
        self.decay[i_syn] = decay
        self.total_delay[i_syn] = total_delay
        self.delay_queue[i_syn] = 0
        self.delay_idx[i_syn] = 0
        self.ldelay_queue[i_syn] = self.queue_length
        self.kind[i_syn] = int(kind)
        self.source_index[i_syn] = source
        self.dest_index[i_syn] = dest
        self.sum_point[i_syn] = dest
        self.in_use[i_syn] = True
        self.synapse_counts[source] += 1
        return i_syn

    def erase(self, i_syn: int) -> None:
        """Free a live slot. Erasing a free slot is a caller bug and is not re-checked."""
        self.synapse_counts[self.source_index[i_syn]] -= 1
        self.in_use[i_syn] = False
        self.sum_point[i_syn] = -1

    def update_decay(self, i_syn: int, dt: float) -> None:
        self.decay[i_syn] = decay_factor(dt, float(self.tau[i_syn]))

    def reset_state(self, i_syn: int, dt: float) -> None:
        """Zero the response and recompute decay for a new tick duration."""
        decay = decay_factor(dt, float(self.tau[i_syn]))
        self.psr[i_syn] = 0.0
        self.decay[i_syn] = decay

    def reset_states(self, ids: np.ndarray, dt: float) -> None:
        """Vectorised reset_state for many synapses (e.g. after a tick-duration change)."""
        ids = np.asarray(ids, dtype=np.int64)
        if dt <= 0:
            raise ValueError(f"dt must be positive, got {dt}")
        tau = self.tau[ids]
        if np.any(tau <= 0):
            raise ValueError("tau must be positive for every synapse being reset")
        decay = np.exp(-dt / tau).astype(np.float32)
        if np.any((decay <= 0) | (decay >= 1)):
            raise ValueError(f"dt={dt} gives a decay outside (0, 1) for some synapses")
        self.psr[ids] = 0.0
        self.decay[ids] = decay

    # ------------------------------------------------------------
    # Single-synapse delay queue access (host side)
    # ------------------------------------------------------------
    def schedule_arrival(self, i_syn: int) -> None:
        queue, collided = dq.schedule_arrival(
            self.delay_queue[i_syn], self.delay_idx[i_syn],
            self.total_delay[i_syn], self.ldelay_queue[i_syn], xp=np,
        )
        if collided:
            raise DoubleScheduleError([i_syn])
        self.delay_queue[i_syn] = queue

    def consume_arrival(self, i_syn: int) -> bool:
        queue, idx, arrived = dq.consume_arrival(
            self.delay_queue[i_syn], self.delay_idx[i_syn], self.ldelay_queue[i_syn], xp=np,
        )
        self.delay_queue[i_syn] = queue
        self.delay_idx[i_syn] = idx
        return bool(arrived)

    def pending_offsets(self, i_syn: int):
        return dq.pending_offsets(self.delay_queue[i_syn], int(self.delay_idx[i_syn]),
                                  int(self.ldelay_queue[i_syn]))

    # ------------------------------------------------------------
    # Host <-> device
    # ------------------------------------------------------------
    def to_device(self, device=None) -> SynapseArrays:
        arrays = SynapseArrays(
            W=jnp.asarray(self.W),
            psr=jnp.asarray(self.psr),
            decay=jnp.asarray(self.decay),
            total_delay=jnp.asarray(self.total_delay),
            delay_queue=jnp.asarray(self.delay_queue),
            delay_idx=jnp.asarray(self.delay_idx),
            ldelay_queue=jnp.asarray(self.ldelay_queue),
            kind=jnp.asarray(self.kind),
            sum_point=jnp.asarray(self.sum_point),
        )
        if device is not None:
            arrays = jax.device_put(arrays, device)
        return arrays

    def load_device(self, arrays: SynapseArrays) -> None:
        for name in _DEVICE_MUTABLE:
            getattr(self, name)[:] = np.asarray(getattr(arrays, name))

    # ------------------------------------------------------------
    # Serialisation
    # ------------------------------------------------------------
    def state_dict(self) -> Dict[str, Any]:
        state: Dict[str, Any] = {name: getattr(self, name).copy() for name in _STATE_FIELDS}
        state["layout"] = dict(
            n_neurons=self.n_neurons,
            max_synapses_per_neuron=self.max_synapses_per_neuron,
            queue_length=self.queue_length,
        )
        return state

    @classmethod
    def from_state_dict(cls, state: Dict[str, Any]) -> "SynapseStore":
        layout = state["layout"]
        store = cls(int(layout["n_neurons"]), int(layout["max_synapses_per_neuron"]),
                    int(layout["queue_length"]))
        for name in _STATE_FIELDS:
            arr = np.asarray(state[name])
            target = getattr(store, name)
            if arr.shape != target.shape:
                raise ValueError(f"{name}: expected shape {target.shape}, got {arr.shape}")
            target[:] = arr.astype(target.dtype)
        return store
