from __future__ import annotations

import argparse
from pathlib import Path

from infra_reconciler.config import apply, load, plan


def _progress(op: object, event: str) -> None:
    address = getattr(op, "address", "unknown")
    kind = getattr(op, "kind", "?")
    print(f"[apply:{event:8}] {kind:7} {address}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Plan/apply an infra-reconciler config via Python")
    parser.add_argument(
        "--config",
        default="examples/middleware-platform/infra-reconciler.yaml",
        help="Path to config file",
    )
    parser.add_argument("--apply", action="store_true", help="Apply the generated plan")
    parser.add_argument("--no-refresh", action="store_true", help="Skip refresh during plan")
    parser.add_argument("--target", action="append", help="Limit the apply to an address")
    parser.add_argument("--parallelism", type=int, default=None)
    args = parser.parse_args()

    config = load(Path(args.config))

    plan_obj = plan(config, refresh=not args.no_refresh)
    print("Plan summary:", plan_obj.summary())
    for change in plan_obj.changes:
        print(f"- {change.action.value:7} {change.address}")

    if args.apply:
        report = apply(
            plan_obj,
            config,
            targets=args.target,
            progress=_progress,
            parallelism=args.parallelism,
        )
        print("Apply summary:", report.summary())
        for address in report.failed:
            print(f"  failed: {address}: {report.results[address].error}")


if __name__ == "__main__":
    main()
