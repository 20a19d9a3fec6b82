# plots.py
# Reusable plotting utilities for synapse-engine runs:
# - raster of the external input spikes
# - PSR traces of a few recorded synapses
# - PSD of the summed synaptic drive
# Returns matplotlib Figure objects (caller decides where to save).

from __future__ import annotations
from typing import Optional, Sequence
import numpy as np
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
from scipy.signal import welch


def make_raster_figure(spikes: np.ndarray, dt_s: float, title: str = "Input spikes (raster)") -> plt.Figure:
    """Raster from a binary matrix (T, N)."""
    T, N = spikes.shape
    t_s = np.arange(T, dtype=np.float32) * dt_s
    fig, ax = plt.subplots(1, 1, figsize=(10, 4))
    for j in range(N):
        idx = np.nonzero(spikes[:, j])[0]
        if idx.size:
            ax.vlines(t_s[idx], j + 0.5, j + 1.5, linewidth=0.5, color="k")
    ax.set_title(title)
    ax.set_xlabel("Time (s)")
    ax.set_ylabel("Neuron index")
    ax.set_xlim(0.0, max(t_s[-1], dt_s) if T else dt_s)
    ax.set_ylim(0.5, N + 0.5)
    fig.tight_layout()
    return fig


def make_psr_figure(psr: np.ndarray, dt_s: float, synapse_ids: Optional[Sequence[int]] = None) -> plt.Figure:
    """PSR traces, psr shape (T, K)."""
    T, K = psr.shape
    t_s = np.arange(T, dtype=np.float32) * dt_s
    labels = list(synapse_ids) if synapse_ids is not None else list(range(K))
    fig, ax = plt.subplots(1, 1, figsize=(10, 4))
    for k in range(K):
        ax.plot(t_s, psr[:, k], linewidth=0.8, label=f"syn {labels[k]}")
    ax.set_xlabel("Time (s)")
    ax.set_ylabel("PSR")
    ax.set_title("Postsynaptic response")
    if K and K <= 10:
        ax.legend(fontsize=7, loc="upper right")
    fig.tight_layout()
    return fig


def make_drive_psd_figure(summation: np.ndarray, dt_s: float, fmax_hz: float = 500.0) -> plt.Figure:
    """PSD of the network-wide synaptic drive (sum over neurons of the summation map)."""
    fs_hz = 1.0 / dt_s
    drive = summation.sum(axis=1).astype(np.float64)
    nperseg = min(4096, len(drive)) if len(drive) > 0 else 256
    f, P = welch(drive - drive.mean(), fs=fs_hz, nperseg=nperseg)

    fig, ax = plt.subplots(1, 1, figsize=(8, 4))
    ax.semilogy(f, P + 1e-30)
    ax.set_xlim(0, min(fmax_hz, fs_hz / 2))
    ax.set_xlabel("Frequency (Hz)")
    ax.set_ylabel("Power")
    ax.set_title("Summed synaptic drive PSD")
    fig.tight_layout()
    return fig
