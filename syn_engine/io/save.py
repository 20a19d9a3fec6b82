# save.py
# Standardized saving for synapse-engine runs: manifest, arrays, figures, text.

from __future__ import annotations
import json
from pathlib import Path
from typing import Dict
import numpy as np


def ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


def write_manifest(out_dir: Path, manifest: Dict) -> Path:
    """Write manifest.json to the run directory."""
    out_dir = Path(out_dir)
    ensure_dir(out_dir)
    mpath = out_dir / "manifest.json"
    with open(mpath, "w") as f:
        json.dump(manifest, f, indent=2, default=_json_default)
    return mpath


def save_arrays(out_dir: Path, arrays: Dict[str, np.ndarray]) -> None:
    """Save multiple numpy arrays under arrays/ subfolder."""
    arrdir = Path(out_dir) / "arrays"
    ensure_dir(arrdir)
    for name, arr in arrays.items():
        np.save(arrdir / f"{name}.npy", np.asarray(arr))


def save_figures(out_dir: Path, figures: Dict[str, "matplotlib.figure.Figure"]) -> None:
    """
    Save matplotlib figures under figs/ subfolder.
    Figures are not closed here; the caller decides.
    """
    figdir = Path(out_dir) / "figs"
    ensure_dir(figdir)
    for name, fig in figures.items():
        fig.savefig(figdir / f"{name}.png", dpi=160)


def _json_default(obj):
    # numpy scalars/arrays sneak into configs (weights, seeds)
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")
