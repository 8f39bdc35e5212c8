"""Command-line interface for pymotum.

Run:
    pymotum fit tracks.csv --model crw --time-step 6 --mpm jmpm --out combined.csv
    python -m pymotum simulate --n-tracks 3 --out sim.csv
"""

import argparse
import logging
import sys
from typing import List, Optional

import matplotlib

from pymotum.config import MapConfig, MPMConfig, PipelineConfig, SSMConfig
from pymotum.exceptions import PymotumError
from pymotum.modelling.simulate import sim_tracks
from pymotum.utilities.extraction import export_csv

logger = logging.getLogger("pymotum")


def _bbox(value: str):
    parts = [p for p in value.replace(" ", "").split(",") if p]
    if len(parts) != 4:
        raise argparse.ArgumentTypeError("bbox must be min_lon,min_lat,max_lon,max_lat")
    try:
        return tuple(float(p) for p in parts)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid bbox {value!r}") from exc


def _fixed(value: str):
    name, sep, number = value.partition("=")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"expected name=value, got {value!r}")
    try:
        return name.strip(), float(number)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid value in {value!r}") from exc


def _cmd_fit(args: argparse.Namespace) -> int:
    # Headless rendering for --map
    matplotlib.use("Agg")
    from pymotum.pipeline import run_pipeline

    ssm = SSMConfig(
        model=args.model,
        time_step=args.time_step,
        vmax=args.vmax,
        min_dt=args.min_dt,
        ang=tuple(args.ang),
        distlim=tuple(args.distlim),
        spdf=args.spdf,
        fixed_parameters=dict(args.fix),
        verbose=args.verbose,
    )
    mpm = MPMConfig(model=args.mpm, verbose=args.verbose) if args.mpm else None
    map_cfg = None
    if args.map:
        map_kwargs = {"save_path": args.map, "bbox": args.bbox, "basemap": args.basemap}
        if args.projection:
            map_kwargs["projection"] = args.projection
        map_cfg = MapConfig(**map_kwargs)
    config = PipelineConfig(ssm=ssm, mpm=mpm, map=map_cfg, run_osar=args.osar)

    result = run_pipeline(args.csv, config)

    print(result.ssm.summary().to_string(index=False))
    if result.residuals is not None and args.osar_out:
        export_csv(result.residuals, args.osar_out)
        print(f"residuals -> {args.osar_out}")
    if args.out:
        export_csv(result.combined, args.out)
        print(f"{len(result.combined)} location(s) -> {args.out}")
    if args.map:
        print(f"map -> {args.map}")

    if result.ssm.failures:
        print(
            f"{len(result.ssm.failures)} track(s) failed: "
            + ", ".join(f"{f.id} ({f.message})" for f in result.ssm.failures),
            file=sys.stderr,
        )
        return 1
    return 0


def _cmd_simulate(args: argparse.Namespace) -> int:
    obs = sim_tracks(
        n_tracks=args.n_tracks,
        n_obs=args.n_obs,
        model=args.model,
        obs_interval=args.obs_interval,
        error=args.error,
        seed=args.seed,
    )
    export_csv(obs, args.out)
    print(f"{len(obs)} observation(s) from {args.n_tracks} track(s) -> {args.out}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pymotum", description="Fit movement models to animal telemetry.")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v progress, -vv optimizer trace")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_fit = sub.add_parser("fit", help="regularise tracks and optionally estimate move persistence")
    p_fit.add_argument("csv", help="telemetry file with id,date,lc,lon,lat columns")
    p_fit.add_argument("--model", choices=["rw", "crw", "mp"], default="crw")
    p_fit.add_argument("--time-step", type=float, default=6.0, help="prediction interval in hours")
    p_fit.add_argument("--vmax", type=float, default=5.0, help="speed filter threshold (m/s)")
    p_fit.add_argument("--min-dt", type=float, default=0.0, help="minimum seconds between fixes")
    p_fit.add_argument("--ang", type=float, nargs=2, default=[15.0, 25.0], metavar=("A1", "A2"), help="spike angles (degrees)")
    p_fit.add_argument("--distlim", type=float, nargs=2, default=[2500.0, 5000.0], metavar=("D1", "D2"), help="leg lengths (metres) paired with --ang")
    p_fit.add_argument("--no-spdf", dest="spdf", action="store_false", help="skip the speed/distance/angle filter")
    p_fit.add_argument(
        "--fix", type=_fixed, action="append", default=[], metavar="NAME=VALUE",
        help="hold a parameter fixed, e.g. --fix rho_o=0 (repeatable)",
    )
    p_fit.add_argument("--mpm", choices=["mpm", "jmpm"], default=None, help="also fit a move-persistence model")
    p_fit.add_argument("--osar", action="store_true", help="compute one-step-ahead residuals")
    p_fit.add_argument("--osar-out", default=None, help="write residuals to this CSV")
    p_fit.add_argument("--out", default=None, help="write the combined table to this CSV")
    p_fit.add_argument("--map", default=None, help="render a projected map to this image file")
    p_fit.add_argument("--projection", default=None, help="map projection (PROJ string or EPSG code)")
    p_fit.add_argument("--bbox", type=_bbox, default=None, help="min_lon,min_lat,max_lon,max_lat")
    p_fit.add_argument("--basemap", default=None, help="vector file with land polygons")
    p_fit.set_defaults(func=_cmd_fit)

    p_sim = sub.add_parser("simulate", help="write simulated telemetry in the loader's format")
    p_sim.add_argument("--out", required=True)
    p_sim.add_argument("--n-tracks", type=int, default=3)
    p_sim.add_argument("--n-obs", type=int, default=100)
    p_sim.add_argument("--model", choices=["rw", "crw", "mp"], default="crw")
    p_sim.add_argument("--obs-interval", type=float, default=2.0, help="mean hours between fixes")
    p_sim.add_argument("--error", choices=["ls", "kf", "gps", "none"], default="ls")
    p_sim.add_argument("--seed", type=int, default=None)
    p_sim.set_defaults(func=_cmd_simulate)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entrypoint."""
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return int(args.func(args))
    except (PymotumError, FileNotFoundError, ValueError) as exc:
        logger.error("%s", exc)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
