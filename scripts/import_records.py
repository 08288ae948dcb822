from __future__ import annotations

import argparse
import json
import os
import sys

from pydantic import ValidationError

from app import build_runtime
from scribedesk.core.checksum import sha256_file
from scribedesk.core.dedup.models import Record


def _load(path: str):
    with open(path, "r", encoding="utf-8") as f:
        if path.endswith(".jsonl"):
            return [json.loads(line) for line in f if line.strip()]
        data = json.load(f)
    return data if isinstance(data, list) else [data]


def main() -> None:
    ap = argparse.ArgumentParser(description="Import transcript records (JSON list or JSONL) into the local store.")
    ap.add_argument("path", help="Records file (.json or .jsonl).")
    ap.add_argument("--root", default=".", help="ScribeDesk root directory (default: .)")
    ap.add_argument("--user", default=None, help="Override user_id on every record.")
    ap.add_argument("--media-dir", default=None, help="Compute missing checksums from <media-dir>/<media_file>.")
    args = ap.parse_args()

    rt = build_runtime(str(args.root or "."))
    ok = 0
    bad = 0
    try:
        for raw in _load(args.path):
            media = raw.pop("media_file", None)
            if args.user:
                raw["user_id"] = args.user
            if not raw.get("checksum") and media and args.media_dir:
                p = os.path.join(args.media_dir, media)
                if os.path.isfile(p):
                    raw["checksum"] = sha256_file(p)
            try:
                rt.store.add_record(Record.model_validate(raw))
                ok += 1
            except ValidationError as e:
                bad += 1
                print(f"Skipped {raw.get('id')!r}: {e.errors()[0].get('msg')}", file=sys.stderr)
    finally:
        rt.bus.shutdown()
    print(f"Imported {ok} record(s), skipped {bad}.")


if __name__ == "__main__":
    main()
