from __future__ import annotations

import argparse
import json
import sys

from app import build_runtime


def main() -> None:
    ap = argparse.ArgumentParser(description="Run every due scheduled cleanup once (for cron / task scheduler).")
    ap.add_argument("--root", default=".", help="ScribeDesk root directory (default: .)")
    args = ap.parse_args()

    rt = build_runtime(str(args.root or "."))
    try:
        results = rt.service.run_scheduled()
    finally:
        rt.bus.shutdown()
    print(json.dumps(results, indent=2, sort_keys=True))
    if any(r.get("status") == "failed" for r in results):
        raise SystemExit(1)


if __name__ == "__main__":
    sys.exit(main())
