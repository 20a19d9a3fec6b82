# checkpoint.py
# Lightweight checkpointing of synapse state, enough to resume a run mid-simulation.
#
# Layout:
#   <out_dir>/checkpoints/<tick:010d>/<field>.npy    (arrays)
#   <out_dir>/checkpoints/<tick:010d>/<field>.json   (everything else)
#   <out_dir>/checkpoints/latest.json                (tick of the newest snapshot)

from __future__ import annotations
import json, time
from pathlib import Path
from typing import Dict, Any
import numpy as np

from .save import ensure_dir


def _tag(tick: int) -> str:
    return f"{int(tick):010d}"


def save_checkpoint(out_dir: Path, tick: int, state: Dict[str, Any]) -> Path:
    """
    Save a checkpoint snapshot.
    Parameters
    ----------
    out_dir : Path
        Run directory (contains 'checkpoints/' subfolder)
    tick : int
        Simulation step the state belongs to (the next tick to run is tick + 1)
    state : dict
        Arrays or JSON-serializable data (e.g. a SynapseStore.state_dict())
    """
    chk_dir = Path(out_dir) / "checkpoints"
    arr_dir = chk_dir / _tag(tick)
    ensure_dir(arr_dir)

    for k, v in state.items():
        if isinstance(v, np.ndarray):
            np.save(arr_dir / f"{k}.npy", v)
        else:
            with open(arr_dir / f"{k}.json", "w") as f:
                json.dump(v, f, indent=2)

    meta = dict(tick=int(tick), wall_time=time.time())
    with open(chk_dir / "latest.json", "w") as f:
        json.dump(meta, f, indent=2)
    return arr_dir


def load_latest_checkpoint(chk_root: Path) -> Dict[str, Any] | None:
    """
    Load latest checkpoint metadata and arrays from a 'checkpoints/' folder.
    Returns None if no checkpoint exists.
    """
    chk_root = Path(chk_root)
    meta_path = chk_root / "latest.json"
    if not meta_path.exists():
        return None
    with open(meta_path, "r") as f:
        meta = json.load(f)
    arr_dir = chk_root / _tag(meta["tick"])
    if not arr_dir.exists():
        return None

    state: Dict[str, Any] = {}
    for npy in arr_dir.glob("*.npy"):
        state[npy.stem] = np.load(npy)
    for js in arr_dir.glob("*.json"):
        with open(js, "r") as f:
            state[js.stem] = json.load(f)
    state["meta"] = meta
    return state


def save_engine_checkpoint(out_dir: Path, tick: int, engine) -> Path:
    """Snapshot a SynapseEngine (decay, tau, delays, queues, heads, PSR, topology)."""
    return save_checkpoint(out_dir, tick, engine.state_dict())


def restore_engine_checkpoint(out_dir: Path, engine) -> int | None:
    """
    Load the newest snapshot under out_dir into engine.
    Returns the tick the snapshot was taken at, or None when there is none.
    """
    state = load_latest_checkpoint(Path(out_dir) / "checkpoints")
    if state is None:
        return None
    meta = state.pop("meta")
    engine.load_state_dict(state)
    return int(meta["tick"])
