#!/usr/bin/env python3
"""CLI helper that profiles this machine and checks whether a model fits."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("model_id", nargs="?", default="quantum-1.7b", help="Registry id to check")
    parser.add_argument("--precision", choices=("q4", "q8", "fp16", "fp32"), default=None)
    parser.add_argument("--log-level", default=None, help="Overrides EDGEINFER_LOG_LEVEL")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    sys.path.insert(0, str(PROJECT_ROOT / "src"))

    from edgeinfer.device import profile_device  # noqa: WPS433
    from edgeinfer.logging_config import configure_logging  # noqa: WPS433
    from edgeinfer.planner import can_run_model, recommend_model  # noqa: WPS433

    configure_logging(args.log_level)

    profile = profile_device()
    logging.getLogger("edgeinfer.scripts").info(profile.summary())

    feasibility = can_run_model(profile.memory_mb, args.model_id, args.precision)
    recommendation = recommend_model(profile.memory_mb)
    report = {
        "profile": profile.to_dict(),
        "model_id": args.model_id,
        "can_run": feasibility.can_run,
        "reason": feasibility.reason,
        "recommended_precision": feasibility.recommended_precision,
        "recommended_model": recommendation.model_id if recommendation else None,
    }
    print(json.dumps(report, indent=2, default=str))
    return 0 if feasibility.can_run else 1


if __name__ == "__main__":
    raise SystemExit(main())
