#!/usr/bin/env python3
"""
control_post.py: tiny client for ControlHttpBridge.

Examples:
  ./apps/control_post.py --sort-all
  ./apps/control_post.py --cancel
  ./apps/control_post.py --sort red
  ./apps/control_post.py --adjust green -1
  ./apps/control_post.py --get counts
"""
from __future__ import annotations

import argparse
import json
from urllib import error, request

DEFAULT_URL = "http://127.0.0.1:8766/"


def post_json(url: str, payload: dict) -> int:
    data = json.dumps(payload).encode("utf-8")
    req = request.Request(url, data=data, headers={"Content-Type": "application/json"})
    return _print_response(req)


def get_json(url: str) -> int:
    return _print_response(request.Request(url))


def _print_response(req: request.Request) -> int:
    try:
        with request.urlopen(req, timeout=5) as resp:
            body = (resp.read() or b"").decode("utf-8", "replace")
            print(f"[HTTP {resp.status}] {body or 'ok'}")
            return 0
    except error.HTTPError as e:
        body = (e.read() or b"").decode("utf-8", "replace")
        print(f"[HTTP {e.code}] {body}")
        return 1


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Send control actions to ControlHttpBridge")
    ap.add_argument("--url", default=DEFAULT_URL, help=f"Bridge URL (default: {DEFAULT_URL})")

    group = ap.add_mutually_exclusive_group(required=True)
    group.add_argument("--sort-all", action="store_true", help="Start the sort all sequence")
    group.add_argument("--cancel", action="store_true", help="Stop advancing the sequence")
    group.add_argument("--sort", metavar="COLOR", help="Send one color's sort script")
    group.add_argument("--adjust", nargs=2, metavar=("COLOR", "DELTA"), help="Correct a count")
    group.add_argument("--get", choices=("counts", "log", "status"), help="Read state")

    args = ap.parse_args(argv)
    base = args.url.rstrip("/")

    if args.get:
        return get_json(f"{base}/{args.get}")
    if args.sort_all:
        return post_json(args.url, {"action": "sort_all"})
    if args.cancel:
        return post_json(args.url, {"action": "cancel"})
    if args.sort:
        return post_json(args.url, {"action": "sort", "color": args.sort})

    color, delta = args.adjust
    try:
        n = int(delta)
    except ValueError:
        ap.error("DELTA must be an integer")
    return post_json(args.url, {"action": "adjust", "color": color, "delta": n})


if __name__ == "__main__":
    raise SystemExit(main())
