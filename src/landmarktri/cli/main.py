from __future__ import annotations

import argparse
import dataclasses
import json
import logging
from pathlib import Path

from landmarktri.api.results import Valid
from landmarktri.api.scene_io import load_scene, result_to_dict
from landmarktri.api.triangulation import triangulate_safe
from landmarktri.eval.synthetic import eval_synthetic, print_synthetic_report
from landmarktri.params import TriangulationParameters, load_triangulation_parameters


def _apply_overrides(params: TriangulationParameters, args: argparse.Namespace) -> TriangulationParameters:
    changes: dict[str, object] = {}
    if args.epi:
        changes["enable_epi"] = True
    if args.rank_tol is not None:
        changes["rank_tolerance"] = float(args.rank_tol)
    if args.distance_threshold is not None:
        changes["landmark_distance_threshold"] = float(args.distance_threshold)
    if args.outlier_threshold is not None:
        changes["dynamic_outlier_rejection_threshold"] = float(args.outlier_threshold)
    return dataclasses.replace(params, **changes) if changes else params


def _add_param_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--epi", action="store_true", help="Refine the DLT estimate (Levenberg-Marquardt).")
    p.add_argument("--rank-tol", type=float, default=None, help="DLT rank tolerance (1.0 rejects under ~1.15 deg of parallax).")
    p.add_argument(
        "--distance-threshold",
        type=float,
        default=None,
        help="Flag as degenerate if the landmark is farther than this from a camera (<=0 disables).",
    )
    p.add_argument(
        "--outlier-threshold",
        type=float,
        default=None,
        help="Flag as degenerate if the mean reprojection error (px) exceeds this (<=0 disables).",
    )


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="landmarktri")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    tri = sub.add_parser("triangulate", help="Triangulate the landmark of a scene JSON file.")
    tri.add_argument("scene", type=Path)
    tri.add_argument("--params", type=Path, default=None, help="Parameters JSON (overrides scene params).")
    tri.add_argument("--out", type=Path, default=None, help="Also write the result JSON here.")
    _add_param_args(tri)

    ev = sub.add_parser("eval-synthetic", help="Triangulate random landmarks seen by a noisy camera ring.")
    ev.add_argument("--trials", type=int, default=200)
    ev.add_argument("--cameras", type=int, default=3)
    ev.add_argument("--noise-px", type=float, default=0.5)
    ev.add_argument("--seed", type=int, default=0)
    _add_param_args(ev)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.cmd == "triangulate":
        scene = load_scene(args.scene)
        if args.params is not None:
            params = load_triangulation_parameters(args.params)
        else:
            params = scene.params if scene.params is not None else TriangulationParameters()
        params = _apply_overrides(params, args)
        result = triangulate_safe(scene.cameras, scene.measurements, params)
        payload = json.dumps(result_to_dict(result), indent=2, sort_keys=True)
        print(payload)
        if args.out is not None:
            args.out.parent.mkdir(parents=True, exist_ok=True)
            args.out.write_text(payload, encoding="utf-8")
        return 0 if isinstance(result, Valid) else 1

    if args.cmd == "eval-synthetic":
        params = _apply_overrides(TriangulationParameters(), args)
        stats = eval_synthetic(
            n_trials=args.trials,
            n_cameras=args.cameras,
            noise_px=args.noise_px,
            seed=args.seed,
            params=params,
        )
        print_synthetic_report(stats)
        return 0

    raise AssertionError(f"unhandled command: {args.cmd}")


if __name__ == "__main__":
    raise SystemExit(main())
