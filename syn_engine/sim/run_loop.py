# run_loop.py
# Demo driver: build a synapse engine, drive it with external Bernoulli spikes, save outputs.
#
#   python -m syn_engine.sim.run_loop --config configs/default.yaml --ticks 5000
#
# Neuron dynamics are not modelled here: each tick a random subset of neurons "fires",
# their outgoing synapses get a pre-spike hit, then every synapse advances one tick.

from __future__ import annotations
import time, argparse, datetime
from pathlib import Path
from typing import Dict, Optional
import numpy as np
import yaml

from .build_network import build_engine, default_build_config
from .manifest import build_manifest
from ..io.save import ensure_dir, write_manifest, save_arrays, save_figures
from ..io.checkpoint import save_engine_checkpoint


def load_yaml_or_default(path: str | Path | None, default: dict) -> dict:
    """Overlay a YAML file (if it exists) onto the defaults."""
    if path is None:
        return dict(default)
    p = Path(path).expanduser()
    if not p.exists():
        print(f"⚠️  Config {p} not found; using defaults.")
        return dict(default)
    with open(p, "r") as f:
        data = yaml.safe_load(f) or {}
    out = dict(default)
    for k, v in data.items():
        out[k] = v
    return out


def run_simulation(cfg: Optional[Dict] = None,
                   out_dir: Optional[Path] = None,
                   make_figures: bool = True,
                   verbose: bool = True) -> Dict[str, np.ndarray]:
    """
    Run the demo loop. Returns recorded arrays:
      spikes (T, N) uint8, summation (T, N) float32, psr (T, K) float32, psr_ids (K,)
    When out_dir is given, arrays, manifest (and figures) are written there.
    """
    net, used = build_engine(cfg, verbose=verbose)
    eng = net.engine
    dt = net.dt_s
    n = net.n_neurons
    T = int(used["n_ticks"])
    p_fire = min(float(used["input_rate_hz"]) * dt, 1.0)
    rng = np.random.default_rng(int(used["seed"]) + 1)
    checkpoint_every = int(used.get("checkpoint_every", 0) or 0)

    psr_ids = eng.index_map.active_index[: int(used["record_subset"])]
    spikes = np.zeros((T, n), dtype=np.uint8)
    summation = np.zeros((T, n), dtype=np.float32)
    psr = np.zeros((T, psr_ids.size), dtype=np.float32)

    run_id = datetime.datetime.now().strftime("run_%Y%m%d_%H%M%S")
    start_iso = datetime.datetime.now().isoformat()
    if out_dir is not None:
        out_dir = Path(out_dir).expanduser()
        ensure_dir(out_dir)

    # ------- simulation loop -------
    t0 = time.time()
    for tick in range(T):
        fired = np.flatnonzero(rng.random(n) < p_fire)
        if fired.size:
            spikes[tick, fired] = 1
            eng.fire_neurons(fired, tick)
        summation[tick] = eng.advance_all_synapses(tick, dt)
        if psr_ids.size:
            psr[tick] = eng.psr_array(psr_ids)
        if out_dir is not None and checkpoint_every and (tick + 1) % checkpoint_every == 0:
            save_engine_checkpoint(out_dir, tick, eng)
    elapsed = time.time() - t0

    arrays = dict(spikes=spikes, summation=summation, psr=psr, psr_ids=psr_ids)
    if out_dir is None:
        return arrays

    manifest = build_manifest(
        module="syn_engine",
        run_id=run_id,
        cfg_used=used,
        dt_s=dt,
        n_ticks=T,
        n_neurons=n,
        n_synapses=eng.store.total_synapses,
        start_time=start_iso,
    )
    manifest["elapsed_s"] = elapsed
    write_manifest(out_dir, manifest)
    save_arrays(out_dir, arrays)

    if make_figures:
        from ..analysis.plots import make_raster_figure, make_psr_figure, make_drive_psd_figure
        import matplotlib.pyplot as plt
        figs = dict(
            raster=make_raster_figure(spikes, dt),
            psr=make_psr_figure(psr, dt, psr_ids.tolist()),
            psd=make_drive_psd_figure(summation, dt),
        )
        save_figures(out_dir, figs)
        for fig in figs.values():
            plt.close(fig)

    if verbose:
        print(f"✅ Run complete: {run_id} ({T} ticks in {elapsed:.2f} s)")
        print(f"   Saved to: {out_dir}")
        print("   Arrays:  spikes.npy, summation.npy, psr.npy, psr_ids.npy")
    return arrays


def main():
    parser = argparse.ArgumentParser(description="Run the spiking synapse engine demo loop")
    parser.add_argument("--config", type=str, default=None,
                        help="YAML config overriding default_build_config() (optional)")
    parser.add_argument("--ticks", type=int, default=None, help="Override number of ticks")
    parser.add_argument("--out", type=str, default=None, help="Output directory (default: runs/<run_id>)")
    parser.add_argument("--no-figs", action="store_true", help="Skip figure generation")
    args = parser.parse_args()

    cfg = load_yaml_or_default(args.config, default_build_config())
    if args.ticks is not None:
        cfg["n_ticks"] = int(args.ticks)

    out = Path(args.out) if args.out else Path("runs") / datetime.datetime.now().strftime("run_%Y%m%d_%H%M%S")
    run_simulation(cfg, out_dir=out, make_figures=not args.no_figs)


if __name__ == "__main__":
    main()
