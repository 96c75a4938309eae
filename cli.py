from __future__ import annotations

import argparse
import json
import sys

import requests


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def main(argv: list[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="lbsync operator CLI")
    p.add_argument("--api", default="http://localhost:9101", help="lbsync HTTP base URL")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("status", help="Show controller status")

    s_ev = sub.add_parser("events", help="Show recent events")
    s_ev.add_argument("--limit", type=int, default=20)

    sub.add_parser("reconcile", help="Queue an out-of-cycle reconciliation")

    args = p.parse_args(argv)

    base = args.api.rstrip("/")

    if args.cmd == "status":
        _print(requests.get(f"{base}/status", timeout=10).json())
        return 0

    if args.cmd == "events":
        _print(requests.get(f"{base}/events", params={"limit": args.limit}, timeout=10).json())
        return 0

    if args.cmd == "reconcile":
        r = requests.post(f"{base}/reconcile", timeout=10)
        _print(r.json())
        return 0 if r.ok else 1

    return 2


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
