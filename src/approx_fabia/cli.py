import json, argparse, numpy as np, yaml
from pathlib import Path
from .config import FabiaConfig, make_metadata
from .experimental_logging import log
from .progress import DashboardReporter
from .sklearn_estimator import FabiaEstimator, extract_biclusters

def _load_cfg(path):
    if not path: return {}
    with open(path, "r", encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}

def _overrides(args):
    fields = {"n_factors": args.factors, "n_workers": args.workers, "seed": args.seed,
              "verbose": args.verbose, "cycles": args.cycles}
    return {key: val for key, val in fields.items() if val is not None}

def cmd_run(args):
    raw = _load_cfg(args.config)
    raw.update(_overrides(args))
    cfg = FabiaConfig(**raw)
    X = np.load(args.data)  # (n variables, l samples)
    reporter = None
    if args.tensorboard or args.csv:
        reporter = DashboardReporter(tensorboard_dir=args.tensorboard, csv_path=args.csv)
    log("run_start", data=args.data, n=X.shape[0], l=X.shape[1], k=cfg.n_factors, seed=cfg.seed)
    est = FabiaEstimator.from_config(cfg, reporter=reporter)
    try:
        est.fit(X.T)
    finally:
        if reporter is not None: reporter.close()
    output_dir = Path(args.out)
    output_dir.mkdir(parents=True, exist_ok=True)
    np.save(output_dir / "L.npy", est.loadings_)
    np.save(output_dir / "Z.npy", est.factors_)
    np.save(output_dir / "Psi.npy", est.noise_variance_)
    np.save(output_dir / "lapla.npy", est.lapla_)
    np.save(output_dir / "mean.npy", est.mean_)
    meta = make_metadata(cfg, est.loadings_.shape, est.factors_.shape,
                         {"outcome": est.outcome_.value, "n_iter": est.n_iter_, "n_reset": est.n_reset_})
    with open(output_dir / "METADATA.json", "w", encoding="utf-8") as fh:
        json.dump(meta, fh, indent=2)
    log("run_done", out=args.out, outcome=est.outcome_.value)
    return 0 if est.result_.ok else 1

def cmd_reconstruct(args):
    L = np.load(args.loadings).astype(float)
    Z = np.load(args.factors).astype(float)
    X_hat = L @ Z
    if args.mean:
        X_hat += np.load(args.mean).astype(float)[:, None]
    np.save(args.out, X_hat); log("reconstruct_done", out=args.out)
    return 0

def cmd_biclusters(args):
    L = np.load(args.loadings)
    Z = np.load(args.factors)
    bics = extract_biclusters(L, Z, thres_l=args.thres_l, thres_z=args.thres_z)
    with open(args.out, "w", encoding="utf-8") as fh:
        json.dump(bics, fh, indent=2)
    log("biclusters_done", out=args.out, n_biclusters=sum(1 for b in bics if b["variables"] and b["samples"]))
    return 0

def main(argv=None):
    ap = argparse.ArgumentParser("approx-fabia")
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_run = sub.add_parser("run", help="Fit a FABIA model to X.npy (n x l)")
    ap_run.add_argument("--data", required=True)
    ap_run.add_argument("--out", default="out")
    ap_run.add_argument("--config")
    ap_run.add_argument("--factors", type=int)
    ap_run.add_argument("--cycles", type=int)
    ap_run.add_argument("--workers", type=int)
    ap_run.add_argument("--seed", type=int)
    ap_run.add_argument("--verbose", type=int)
    ap_run.add_argument("--tensorboard")
    ap_run.add_argument("--csv")
    ap_run.set_defaults(func=cmd_run)

    ap_rc = sub.add_parser("reconstruct", help="Reconstruct X from loadings and factors")
    ap_rc.add_argument("--loadings", required=True)
    ap_rc.add_argument("--factors", required=True)
    ap_rc.add_argument("--mean")
    ap_rc.add_argument("--out", required=True)
    ap_rc.set_defaults(func=cmd_reconstruct)

    ap_bc = sub.add_parser("biclusters", help="Extract biclusters from loadings and factors")
    ap_bc.add_argument("--loadings", required=True)
    ap_bc.add_argument("--factors", required=True)
    ap_bc.add_argument("--thres-l", type=float, default=0.1)
    ap_bc.add_argument("--thres-z", type=float, default=0.5)
    ap_bc.add_argument("--out", required=True)
    ap_bc.set_defaults(func=cmd_biclusters)

    args = ap.parse_args(argv)
    return args.func(args)

if __name__ == "__main__":
    raise SystemExit(main())
