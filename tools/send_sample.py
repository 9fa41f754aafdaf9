"""Post sample ES|QL results to a running esqlwatch, like a Logstash http output."""

from __future__ import annotations

import argparse
import json
import random
import sys
import time
from datetime import datetime, timezone
from pathlib import Path

import httpx

HOSTS = ("web-01", "web-02", "db-01")
USERS = ("alice", "bob", "svc-backup")


def sample_payload(rng: random.Random, *, rows: int) -> dict[str, object]:
    columns = [
        {"name": "@timestamp", "type": "date"},
        {"name": "host.name", "type": "keyword"},
        {"name": "agent.id", "type": "keyword"},
        {"name": "user.name", "type": "keyword"},
        {"name": "event.count", "type": "long"},
    ]
    values = []
    for _ in range(rows):
        host = rng.choice(HOSTS)
        values.append(
            [
                datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z"),
                host,
                f"agent-{host}",
                rng.choice(USERS),
                rng.randint(1, 500),
            ]
        )
    return {"took": rng.randint(1, 40), "columns": columns, "values": values}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Send sample payloads to an esqlwatch endpoint.")
    parser.add_argument(
        "--url",
        type=str,
        default="http://127.0.0.1:33433/data",
        help="Ingestion URL",
    )
    parser.add_argument("--interval", type=float, default=10.0, help="Seconds between posts")
    parser.add_argument("--rows", type=int, default=1, help="Rows per generated payload")
    parser.add_argument("--count", type=int, default=0, help="Number of posts (0 = forever)")
    parser.add_argument(
        "--file",
        type=Path,
        default=None,
        help="Post this JSON file instead of generated payloads",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    rng = random.Random()
    sent = 0
    with httpx.Client(timeout=5.0) as client:
        try:
            while args.count == 0 or sent < args.count:
                if args.file is not None:
                    body = args.file.read_bytes()
                else:
                    body = json.dumps(sample_payload(rng, rows=args.rows)).encode("utf-8")
                try:
                    response = client.post(
                        args.url,
                        content=body,
                        headers={"Content-Type": "application/json"},
                    )
                except httpx.HTTPError as exc:
                    print(f"POST {args.url} failed: {exc}", file=sys.stderr)
                else:
                    print(f"{response.status_code} {response.text}")
                sent += 1
                if args.count == 0 or sent < args.count:
                    time.sleep(args.interval)
        except KeyboardInterrupt:
            return 0
    return 0


if __name__ == "__main__":
    sys.exit(main())
