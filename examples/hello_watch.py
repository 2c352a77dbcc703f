#!/usr/bin/env python3
"""PromptWatch — Hello Watch example.

This script demonstrates the full round trip against a running daemon:

  1. Check daemon health
  2. List the installed triggers
  3. Register a watch on the bundled ``file-exists`` trigger
  4. Create the file it is waiting for
  5. Wait for the watch to fire

Prerequisites:
  - The daemon must be running: ``promptwatch daemon start``
  - ``examples/triggers/file-exists`` copied into ``~/.promptwatch/triggers/``

Usage:
  python examples/hello_watch.py
  python examples/hello_watch.py --base-url http://127.0.0.1:40100
"""

from __future__ import annotations

import argparse
import tempfile
import time
from pathlib import Path

import httpx


def main() -> None:
    parser = argparse.ArgumentParser(description="PromptWatch Hello Watch")
    parser.add_argument(
        "--base-url",
        default="http://127.0.0.1:40100",
        help="PromptWatch daemon URL (default: http://127.0.0.1:40100)",
    )
    parser.add_argument("--timeout", type=float, default=60.0, help="Seconds to wait for the fire.")
    args = parser.parse_args()

    with httpx.Client(base_url=args.base_url, timeout=10.0) as client:
        # -------------------------------------------------------------------
        # Step 1: Connect and check health
        # -------------------------------------------------------------------
        print(f"Connecting to PromptWatch at {args.base_url}...")
        health = client.get("/health").json()
        print(f"  Status:  {health['status']}")
        print(f"  Version: {health['version']}")
        print(f"  Active:  {health['active_watches']} watch(es)")
        print()

        # -------------------------------------------------------------------
        # Step 2: Discover triggers
        # -------------------------------------------------------------------
        triggers = client.get("/triggers").json()
        print("Installed triggers:")
        for t in triggers:
            print(f"  - {t['usage']}: {t['description']}")
        print()

        # -------------------------------------------------------------------
        # Step 3: Register a watch
        # -------------------------------------------------------------------
        target = Path(tempfile.gettempdir()) / f"promptwatch-hello-{int(time.time())}"
        resp = client.post(
            "/watches",
            json={
                "trigger": "file-exists",
                "params": [str(target)],
                "action": {"prompt": "The file {{path}} now exists ({{size}} bytes). Say hello."},
                "ttl": "10m",
                "interval": "1s",
            },
        )
        resp.raise_for_status()
        watch_id = resp.json()["watch_id"]
        print(f"Registered {watch_id}: waiting for {target}")

        # -------------------------------------------------------------------
        # Step 4: Satisfy the condition
        # -------------------------------------------------------------------
        target.write_text("hello\n")

        # -------------------------------------------------------------------
        # Step 5: Wait for the fire
        # -------------------------------------------------------------------
        deadline = time.time() + args.timeout
        while time.time() < deadline:
            watch = client.get(f"/watches/{watch_id}").json()
            if watch["status"] != "active":
                print(f"Watch {watch_id} is now {watch['status']} (fired at {watch['fired_at']})")
                print("Run `promptwatch results list` to see the Result.")
                return
            time.sleep(1.0)
        print(f"Watch {watch_id} did not fire within {args.timeout}s")


if __name__ == "__main__":
    main()
