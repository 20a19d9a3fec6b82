# index_map.py
# Active-synapse index map: which live synapses feed (or leave) each neuron.
#
# Rebuilt from the store after topology changes, never during a tick. Both groupings
# are CSR-style: neuron n's synapses are index[begin[n] : begin[n] + count[n]].

from __future__ import annotations
from typing import NamedTuple
import numpy as np

from ..models.store import SynapseStore


class SynapseIndexMap(NamedTuple):
    active_index: np.ndarray    # (n_active,) all live synapse ids, grouped by destination
    incoming_begin: np.ndarray  # (n_neurons,)
    incoming_count: np.ndarray  # (n_neurons,)
    incoming_index: np.ndarray  # (n_active,)
    outgoing_begin: np.ndarray  # (n_neurons,)
    outgoing_count: np.ndarray  # (n_neurons,)
    outgoing_index: np.ndarray  # (n_active,)


def _group(ids: np.ndarray, owner: np.ndarray, n_neurons: int):
    order = np.argsort(owner, kind="stable")
    count = np.bincount(owner, minlength=n_neurons).astype(np.int32)
    begin = np.zeros(n_neurons, dtype=np.int32)
    begin[1:] = np.cumsum(count)[:-1]
    return begin, count, ids[order].astype(np.int32)


def build_index_map(store: SynapseStore) -> SynapseIndexMap:
    live = store.live_ids()
    in_begin, in_count, in_index = _group(live, store.dest_index[live], store.n_neurons)
    out_begin, out_count, out_index = _group(live, store.source_index[live], store.n_neurons)
    return SynapseIndexMap(
        active_index=in_index,
        incoming_begin=in_begin,
        incoming_count=in_count,
        incoming_index=in_index,
        outgoing_begin=out_begin,
        outgoing_count=out_count,
        outgoing_index=out_index,
    )


def incoming(imap: SynapseIndexMap, neuron: int) -> np.ndarray:
    b = imap.incoming_begin[neuron]
    return imap.incoming_index[b:b + imap.incoming_count[neuron]]


def outgoing(imap: SynapseIndexMap, neuron: int) -> np.ndarray:
    b = imap.outgoing_begin[neuron]
    return imap.outgoing_index[b:b + imap.outgoing_count[neuron]]


def outgoing_many(imap: SynapseIndexMap, neurons) -> np.ndarray:
    """Synapse ids leaving any of the given neurons."""
    neurons = np.asarray(neurons, dtype=np.int64).reshape(-1)
    if neurons.size == 0:
        return np.zeros(0, dtype=np.int32)
    return np.concatenate([outgoing(imap, n) for n in neurons]).astype(np.int32)


def incoming_many(imap: SynapseIndexMap, neurons) -> np.ndarray:
    neurons = np.asarray(neurons, dtype=np.int64).reshape(-1)
    if neurons.size == 0:
        return np.zeros(0, dtype=np.int32)
    return np.concatenate([incoming(imap, n) for n in neurons]).astype(np.int32)
