# manifest.py
# Build a standardized run manifest capturing config, hashes, env info, and versions.

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional
import json, hashlib, subprocess, sys, platform, socket, os, datetime

import numpy as np
import jax


def _json_dumps_canonical(obj: Any) -> str:
    """Stable JSON string (sorted keys, no whitespace) for hashing."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), default=str)


def hash_config(cfg: Dict[str, Any]) -> str:
    """SHA1 hash of the config dict (canonical JSON)."""
    s = _json_dumps_canonical(cfg)
    return hashlib.sha1(s.encode("utf-8")).hexdigest()


def git_commit_short() -> Optional[str]:
    """Return the current Git short hash if available; otherwise None."""
    try:
        out = subprocess.check_output(["git", "rev-parse", "--short", "HEAD"], stderr=subprocess.DEVNULL)
        return out.decode().strip()
    except (OSError, subprocess.CalledProcessError):
        return None


def python_env_info() -> Dict[str, Any]:
    """Minimal Python/env info for reproducibility."""
    return dict(
        python=dict(
            version=sys.version.split()[0],
            executable=sys.executable,
        ),
        numpy=np.__version__,
        jax=jax.__version__,
        jax_backend=jax.default_backend(),
        platform=dict(
            system=platform.system(),
            release=platform.release(),
            machine=platform.machine(),
        ),
        hostname=socket.gethostname(),
        pid=os.getpid(),
    )


@dataclass
class ManifestCore:
    module: str
    run_id: str
    start_time: str
    dt_s: float
    n_ticks: int
    n_neurons: int
    n_synapses: int
    seed: int
    cfg_hash: str
    git_commit: Optional[str]


def build_manifest(
    module: str,
    run_id: str,
    cfg_used: Dict[str, Any],
    dt_s: float,
    n_ticks: int,
    n_neurons: int,
    n_synapses: int,
    start_time: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Assemble a complete manifest dict with:
      - core run fields
      - the full config used
      - environment (python, numpy/jax, platform)
    """
    start_iso = start_time or datetime.datetime.now().isoformat()
    mcore = ManifestCore(
        module=module,
        run_id=run_id,
        start_time=start_iso,
        dt_s=float(dt_s),
        n_ticks=int(n_ticks),
        n_neurons=int(n_neurons),
        n_synapses=int(n_synapses),
        seed=int(cfg_used.get("seed", -1)),
        cfg_hash=hash_config(cfg_used),
        git_commit=git_commit_short(),
    )
    return dict(
        core=asdict(mcore),
        config=cfg_used,
        env=python_env_info(),
    )
