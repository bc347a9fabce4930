"""Unified CLI entry point for chaoskernel.

Usage:
    chaoskernel list
    chaoskernel trajectory --system henon --horizon 100 --out henon.csv
    chaoskernel trajectory --system lorenz63 --horizon 50 --transient 10 --sampling 0.01 --config rk.yaml
    chaoskernel trajectory --system logistic --horizon 20 --param r=3.5 --u0 0.2
    chaoskernel lyapunov --system lorenz63 --total 200 --sampling 1.0
    chaoskernel lyapunov --system henon --total 2000 --spectrum
"""

import argparse
import csv
import logging
import sys
from typing import Dict, List, Optional

from chaoskernel.config import load_integrator_config
from chaoskernel.errors import ChaosKernelError, StepError
from chaoskernel.lyapunov import lyapunov, lyapunov_spectrum
from chaoskernel.systems import DEFAULT_PARAMS, SYSTEM_REGISTRY, get_default_ic, get_system_type, make_system
from chaoskernel.trajectory import trajectory

logger = logging.getLogger(__name__)


def _parse_params(pairs: Optional[List[str]]) -> Dict[str, float]:
    """Parse repeated ``name=value`` options into a dict of floats."""
    params: Dict[str, float] = {}
    for pair in pairs or []:
        if "=" not in pair:
            raise ValueError(f"--param expects name=value, got {pair!r}")
        name, value = pair.split("=", 1)
        params[name.strip()] = float(value)
    return params


def _number(system_id: str, value: str):
    """Integers for maps, floats for flows."""
    if get_system_type(system_id) == "map":
        return int(value)
    return float(value)


def _build(args):
    config = None
    if get_system_type(args.system) == "ode":
        config = load_integrator_config(args.config) if args.config else None
    elif args.config:
        logger.warning("--config ignored for map system %s", args.system)
    return make_system(args.system, u0=args.u0, params=_parse_params(args.param), config=config)


def cmd_list(args):
    """List registered systems."""
    for system_id in sorted(SYSTEM_REGISTRY):
        params = ", ".join(f"{k}={v:g}" for k, v in DEFAULT_PARAMS[system_id].items())
        print(f"{system_id:<14} {get_system_type(system_id):<4} dim={len(get_default_ic(system_id))}  {params}")


def cmd_trajectory(args):
    """Record a trajectory and write it as CSV (stdout by default)."""
    system = _build(args)
    horizon = _number(args.system, args.horizon)
    transient = _number(args.system, args.transient)
    sampling = _number(args.system, args.sampling)

    try:
        X, t = trajectory(system, horizon, transient=transient, sampling=sampling)
    except StepError as err:
        if err.partial is None:
            raise
        logger.warning("%s; writing %d recorded samples", err, err.last_index + 1)
        X, t = err.partial

    header = ["t"] + [f"u{i}" for i in range(X.dimension)]
    out = open(args.out, "w", newline="", encoding="utf-8") if args.out else sys.stdout
    try:
        writer = csv.writer(out)
        writer.writerow(header)
        for ti, row in zip(t, X):
            writer.writerow([repr(float(ti))] + [repr(float(v)) for v in row])
    finally:
        if args.out:
            out.close()
    if args.out:
        logger.info("Wrote %d samples -> %s", len(X), args.out)


def cmd_lyapunov(args):
    """Estimate the maximal Lyapunov exponent or the full spectrum."""
    system = _build(args)
    total = _number(args.system, args.total)
    sampling = _number(args.system, args.sampling)
    transient = _number(args.system, args.transient)
    if args.spectrum:
        n = int(total // sampling)
        exponents = lyapunov_spectrum(system, n, sampling=sampling, transient=transient)
        print(" ".join(f"{x:.6f}" for x in exponents))
    else:
        print(f"{lyapunov(system, total, transient=transient, sampling=sampling):.6f}")


def _add_system_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--system", required=True, choices=sorted(SYSTEM_REGISTRY), help="Registered system id")
    p.add_argument("--param", action="append", metavar="NAME=VALUE", help="Parameter override (repeatable)")
    p.add_argument("--u0", type=float, nargs="+", help="Initial state")
    p.add_argument("--config", type=str, help="Integrator config YAML (flows only)")


def main(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        prog="chaoskernel",
        description="chaoskernel: step and sample discrete maps and continuous flows",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("list", help="List registered systems")

    traj_parser = subparsers.add_parser("trajectory", help="Record a trajectory as CSV")
    _add_system_args(traj_parser)
    traj_parser.add_argument("--horizon", required=True, help="Total steps (maps) or time (flows)")
    traj_parser.add_argument("--transient", default="0", help="Discarded warm-up")
    traj_parser.add_argument("--sampling", default="1", help="Sampling interval")
    traj_parser.add_argument("--out", type=str, help="Output CSV path (default: stdout)")

    lyap_parser = subparsers.add_parser("lyapunov", help="Estimate Lyapunov exponents")
    _add_system_args(lyap_parser)
    lyap_parser.add_argument("--total", required=True, help="Evolution after the transient")
    lyap_parser.add_argument("--transient", default="0", help="Discarded warm-up")
    lyap_parser.add_argument("--sampling", default="1", help="Renormalization interval")
    lyap_parser.add_argument("--spectrum", action="store_true", help="Full spectrum via QR")

    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(message)s")

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    commands = {
        "list": cmd_list,
        "trajectory": cmd_trajectory,
        "lyapunov": cmd_lyapunov,
    }
    try:
        commands[args.command](args)
    except (ChaosKernelError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
