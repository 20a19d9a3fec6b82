# build_network.py
# Build a synapse engine from a config dict: neuron polarity, weight matrix, synapses, dispatch.
#
# Connectivity generation is not this package's job. The builder accepts an explicit
# weight matrix, or falls back to a fixed nearest-neighbour ring so that demo runs and
# tests have something to tick.

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple
import numpy as np

from ..models.kinds import syn_type
from .engine import SynapseEngine


# ------------------------------------------------------------
# Utility: stand-in connectivity and weights
# ------------------------------------------------------------
def ring_connectivity(n_neurons: int, neighbours: int) -> np.ndarray:
    """Boolean (n, n) mask, neuron i -> i+1 .. i+neighbours (mod n)."""
    mask = np.zeros((n_neurons, n_neurons), dtype=bool)
    src = np.arange(n_neurons)
    for k in range(1, min(neighbours, n_neurons - 1) + 1):
        mask[src, (src + k) % n_neurons] = True
    return mask


def weight_matrix(mask: np.ndarray, w_mean: float, w_cv: float, rng: np.random.Generator) -> np.ndarray:
    """Lognormal magnitudes with mean w_mean and coefficient of variation w_cv on existing connections."""
    W = np.zeros(mask.shape, dtype=np.float32)
    if np.any(mask):
        sigma = np.sqrt(np.log(1 + (w_cv**2))) if w_cv > 0 else 0.0
        mu = np.log(max(w_mean, 1e-12)) - 0.5 * sigma**2
        W[mask] = np.exp(rng.normal(mu, sigma, size=mask.sum())).astype(np.float32)
    return W


def load_weights(source, n_neurons: int) -> np.ndarray:
    """Weights given inline (nested lists) or as a path to a .npy file."""
    if isinstance(source, (str, Path)):
        W = np.load(Path(source).expanduser())
    else:
        W = np.asarray(source, dtype=np.float32)
    if W.shape != (n_neurons, n_neurons):
        raise ValueError(f"weights must be ({n_neurons}, {n_neurons}), got {W.shape}")
    return W.astype(np.float32)


# ------------------------------------------------------------
# Lightweight default config
# ------------------------------------------------------------
def default_build_config() -> Dict:
    return dict(
        seed=42,
        dt_s=1e-4,
        # layout
        n_neurons=100,
        max_synapses_per_neuron=8,
        queue_length=32,
        # polarity: this many neurons (picked at random) are inhibitory
        n_inhibitory=20,
        # stand-in connectivity (ignored when weights is given)
        ring_neighbours=4,
        w_mean=1.0,
        w_cv=0.2,
        # explicit (n, n) weight-matrix magnitudes, nested lists or .npy path
        weights=None,
        # kind name -> behavior name, e.g. {"EE": "spiking"}
        kind_behaviors={},
        strict_scheduling=True,
        # run window (used by run_loop)
        n_ticks=2000,
        input_rate_hz=20.0,
        record_subset=10,
        checkpoint_every=0,
    )


# ------------------------------------------------------------
# Simple container for the network
# ------------------------------------------------------------
@dataclass
class Network:
    engine: SynapseEngine
    W: np.ndarray                    # (n, n) weight-matrix magnitudes
    neuron_excitatory: np.ndarray    # (n,) 1 = excitatory, 0 = inhibitory
    dt_s: float
    n_neurons: int


# ------------------------------------------------------------
# Builder function
# ------------------------------------------------------------
def build_engine(cfg: Optional[Dict] = None, registry=None, verbose: bool = False) -> Tuple[Network, Dict]:
    """
    Create the synapse engine and return (network, cfg_used).
    """
    base = default_build_config()
    if cfg:
        base.update(cfg)

    rng = np.random.default_rng(base["seed"])
    dt = float(base["dt_s"])
    n = int(base["n_neurons"])

    # ---------------- 1. Polarity ----------------
    neuron_excitatory = np.ones(n, dtype=np.int8)
    n_inh = min(int(base["n_inhibitory"]), n)
    neuron_excitatory[rng.permutation(n)[:n_inh]] = 0

    # ---------------- 2. Weights ----------------
    if base["weights"] is not None:
        W = load_weights(base["weights"], n)
    else:
        mask = ring_connectivity(n, int(base["ring_neighbours"]))
        W = weight_matrix(mask, base["w_mean"], base["w_cv"], rng)

    # ---------------- 3. Synapses ----------------
    engine = SynapseEngine(
        n_neurons=n,
        max_synapses_per_neuron=int(base["max_synapses_per_neuron"]),
        queue_length=int(base["queue_length"]),
        registry=registry,
        kind_behaviors=base["kind_behaviors"],
        strict_scheduling=bool(base["strict_scheduling"]),
        verbose=verbose,
    )
    src_idx, dst_idx = np.nonzero(W)
    for src, dst in zip(src_idx, dst_idx):
        kind = syn_type(neuron_excitatory, src, dst)
        engine.add_synapse(kind, int(src), int(dst), dt, weight_matrix=W)

    # ---------------- 4. Dispatch ----------------
    engine.resolve_dispatch()
    if verbose:
        print(f"✓ Engine built: {n} neurons, {engine.store.total_synapses} synapses")

    net = Network(
        engine=engine,
        W=W,
        neuron_excitatory=neuron_excitatory,
        dt_s=dt,
        n_neurons=n,
    )
    return net, base
