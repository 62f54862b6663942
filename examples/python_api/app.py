from __future__ import annotations

import argparse
from pathlib import Path

from aws_provisioner.config import apply, load, plan
from aws_provisioner.engine import ApplyError


def _progress(change: object, event: str) -> None:
    address = getattr(change, "address", "unknown")
    print(f"[apply:{event}] {address}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Plan/apply aws-provisioner config via Python API")
    parser.add_argument("--config", default="aws-provisioner.yaml", help="Path to config file")
    parser.add_argument("--apply", action="store_true", help="Apply the generated plan")
    parser.add_argument("--destroy", action="store_true", help="Plan the destruction of everything")
    parser.add_argument("--workspace", help="Override the workspace named in the config")
    parser.add_argument(
        "--no-refresh",
        action="store_true",
        help="Skip refresh during plan",
    )
    args = parser.parse_args()

    config = load(Path(args.config), workspace=args.workspace)

    plan_obj = plan(config, destroy=args.destroy, refresh=not args.no_refresh)
    print("Plan summary:", plan_obj.summary())
    for change in plan_obj.actionable():
        print(f"- {change.action.value:7} {change.address}")

    if args.apply:
        try:
            result = apply(plan_obj, config, progress=_progress)
        except ApplyError as exc:
            result = exc.result
        print("Apply summary:", result.summary())
        if not result.ok:
            for address, message in result.failed.items():
                print(f"! {address}: {message}")
            print("Skipped:", ", ".join(result.skipped) or "none")


if __name__ == "__main__":
    main()
