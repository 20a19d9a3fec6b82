# kinds.py
# Synapse kinds (by source/destination polarity), their weight sign and default kinetics.

from __future__ import annotations
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict
import numpy as np


class SynapseKind(IntEnum):
    II = 0          # inhibitory -> inhibitory
    IE = 1          # inhibitory -> excitatory
    EI = 2          # excitatory -> inhibitory
    EE = 3          # excitatory -> excitatory
    UNDEFINED = 4


N_KINDS = len(SynapseKind)

# Weight-matrix entries are dimensionless; scale them into the PSR units used by the neurons.
SYNAPSE_STRENGTH_ADJUSTMENT = 1.0e-8
DEFAULT_WEIGHT = 10.0e-9


@dataclass(frozen=True)
class KindDefaults:
    tau_s: float      # PSR time constant (s)
    delay_s: float    # transmission delay (s)


KIND_DEFAULTS: Dict[SynapseKind, KindDefaults] = {
    SynapseKind.II: KindDefaults(tau_s=6e-3, delay_s=0.8e-3),
    SynapseKind.IE: KindDefaults(tau_s=6e-3, delay_s=0.8e-3),
    SynapseKind.EI: KindDefaults(tau_s=3e-3, delay_s=0.8e-3),
    SynapseKind.EE: KindDefaults(tau_s=3e-3, delay_s=1.5e-3),
}


def syn_sign(kind) -> int:
    """+1 for excitatory-origin kinds, -1 for inhibitory-origin kinds, 0 otherwise."""
    kind = SynapseKind(int(kind))
    if kind in (SynapseKind.II, SynapseKind.IE):
        return -1
    if kind in (SynapseKind.EI, SynapseKind.EE):
        return 1
    return 0


def kind_from_polarity(src_excitatory: bool, dest_excitatory: bool) -> SynapseKind:
    if src_excitatory:
        return SynapseKind.EE if dest_excitatory else SynapseKind.EI
    return SynapseKind.IE if dest_excitatory else SynapseKind.II


def syn_type(neuron_excitatory: np.ndarray, src: int, dest: int) -> SynapseKind:
    """
    Kind of a synapse from the neuron type map.
    neuron_excitatory: int array (n_neurons,), 1 = excitatory, 0 = inhibitory, anything else = unknown.
    """
    s, d = int(neuron_excitatory[src]), int(neuron_excitatory[dest])
    if s not in (0, 1) or d not in (0, 1):
        return SynapseKind.UNDEFINED
    return kind_from_polarity(bool(s), bool(d))


def delay_ticks(delay_s: float, dt_s: float) -> int:
    """Discretise a transmission delay; a synapse always takes at least one tick."""
    if dt_s <= 0:
        raise ValueError(f"dt must be positive, got {dt_s}")
    return int(delay_s / dt_s) + 1


def decay_factor(dt_s: float, tau_s: float) -> float:
    """exp(-dt/tau), strictly inside (0, 1)."""
    if dt_s <= 0:
        raise ValueError(f"dt must be positive, got {dt_s}")
    if tau_s <= 0:
        raise ValueError(f"tau must be positive, got {tau_s}")
    decay = float(np.exp(-dt_s / tau_s))
    if not 0.0 < np.float32(decay) < 1.0:
        raise ValueError(f"decay exp(-{dt_s}/{tau_s}) = {decay} is outside (0, 1)")
    return decay
