"""
Behavior dispatch for jit-compiled synapse kernels.

Traced JAX code cannot call through a Python object's methods per element, so
synapse "kinds" cannot pick their update rule by subclassing. Instead every
behavior is a bundle of plain functions with fixed signatures:

    change_psr(psr, W, decay, tick, dt)            -> psr
    pre_spike_hit(queue, idx, total_delay, length) -> queue
    post_spike_hit(psr, W, tick)                   -> (psr, W)

resolve_dispatch() runs once at setup. It lays the registered behaviors out as
tuples of lax.switch branches (one tuple per operation) and turns the
kind -> behavior mapping into small int32 handle vectors indexed by kind.
Kernels receive those handle vectors as ordinary array arguments, so a kind's
behavior is data, not type.

A table is bound to the device epoch it was resolved for. Re-initialising the
engine's device bumps the epoch and the old table must not be used again.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, Optional, Tuple
import numpy as np

from .errors import StaleDispatchHandleError
from .kinds import SynapseKind, N_KINDS
from . import delay_queue as dq

OPERATIONS = ("change_psr", "pre_spike_hit", "post_spike_hit")
BASE_BEHAVIOR = "spiking"


# ============================================================================
# BUILT-IN BEHAVIOR
# ============================================================================

def spiking_change_psr(psr, W, decay, tick, dt):
    # pre-compensate for the decay applied right after the arrival
    return psr + W / decay


def spiking_pre_spike_hit(queue, idx, total_delay, length):
    queue, _ = dq.schedule_arrival(queue, idx, total_delay, length)
    return queue


def spiking_post_spike_hit(psr, W, tick):
    return psr, W


@dataclass(frozen=True)
class Behavior:
    name: str
    change_psr: Callable
    pre_spike_hit: Callable = spiking_pre_spike_hit
    post_spike_hit: Callable = spiking_post_spike_hit
    # True when post_spike_hit actually does something (back-propagating models)
    allow_back_propagation: bool = False


SPIKING = Behavior(
    name=BASE_BEHAVIOR,
    change_psr=spiking_change_psr,
    pre_spike_hit=spiking_pre_spike_hit,
    post_spike_hit=spiking_post_spike_hit,
)


class BehaviorRegistry:
    """Named behaviors, in registration order (the order fixes the branch indices)."""

    def __init__(self):
        self._behaviors: Dict[str, Behavior] = {}
        self.register(SPIKING)

    def register(self, behavior: Behavior, replace: bool = False) -> None:
        if behavior.name in self._behaviors and not replace:
            raise ValueError(f"behavior '{behavior.name}' already registered")
        self._behaviors[behavior.name] = behavior

    def get(self, name: str) -> Behavior:
        try:
            return self._behaviors[name]
        except KeyError:
            raise KeyError(f"unknown behavior '{name}'. Registered: {list(self._behaviors)}") from None

    def names(self) -> Tuple[str, ...]:
        return tuple(self._behaviors)

    def __contains__(self, name: str) -> bool:
        return name in self._behaviors


# ============================================================================
# RESOLVED TABLE
# ============================================================================

@dataclass(frozen=True, eq=False)
class DispatchTable:
    epoch: int
    behaviors: Tuple[str, ...]
    branches: Dict[str, Tuple[Callable, ...]]
    handles: Dict[str, np.ndarray]          # op -> (N_KINDS,) int32
    back_propagation: np.ndarray = field(default_factory=lambda: np.zeros(N_KINDS, dtype=bool))

    def handle(self, op: str, kind) -> int:
        return int(self.handles[op][int(kind)])


def as_kind(key) -> SynapseKind:
    if isinstance(key, str):
        return SynapseKind[key.upper()]
    return SynapseKind(int(key))


def resolve_dispatch(registry: BehaviorRegistry,
                     kind_behaviors: Optional[Mapping] = None,
                     epoch: int = 0) -> DispatchTable:
    """
    Resolve every operation of every registered behavior into branch tuples and
    per-kind handle vectors. Kinds missing from kind_behaviors use the base behavior.
    """
    names = registry.names()
    branches = {
        op: tuple(getattr(registry.get(name), op) for name in names)
        for op in OPERATIONS
    }

    chosen = {kind: BASE_BEHAVIOR for kind in SynapseKind}
    for key, name in (kind_behaviors or {}).items():
        registry.get(name)  # fail early on unknown names
        chosen[as_kind(key)] = name

    # UNDEFINED keeps handle 0; the store refuses to create such synapses anyway
    handle_vec = np.zeros(N_KINDS, dtype=np.int32)
    back_prop = np.zeros(N_KINDS, dtype=bool)
    for kind, name in chosen.items():
        if kind == SynapseKind.UNDEFINED:
            continue
        handle_vec[int(kind)] = names.index(name)
        back_prop[int(kind)] = registry.get(name).allow_back_propagation

    # Each operation is resolved separately; today all three follow the kind's behavior.
    handles = {op: handle_vec.copy() for op in OPERATIONS}
    return DispatchTable(epoch=epoch, behaviors=names, branches=branches,
                         handles=handles, back_propagation=back_prop)


def check_dispatch(table: Optional[DispatchTable], epoch: int) -> DispatchTable:
    if table is None:
        raise StaleDispatchHandleError("dispatch table not resolved; call resolve_dispatch() before advancing")
    if table.epoch != epoch:
        raise StaleDispatchHandleError(
            f"dispatch table resolved for device epoch {table.epoch}, engine is at epoch {epoch}"
        )
    return table
