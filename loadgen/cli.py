from __future__ import annotations

import argparse
import os

from loadgen.types import parse_stages

MODES = ("issue", "ping", "list")


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse CLI arguments for the load generator."""
    parser = argparse.ArgumentParser(description="Ramp concurrent clients against a jwtlab server")
    parser.add_argument("--base-url", default=os.getenv("TARGET_URL", "http://127.0.0.1:8080"))
    parser.add_argument("--mode", choices=MODES, default="issue")
    parser.add_argument(
        "--stages",
        type=parse_stages,
        default=parse_stages(os.getenv("STAGES", "10:5,50:10,100:10")),
        help="comma-separated CONCURRENCY:SECONDS steps",
    )
    parser.add_argument("--expires-sec", type=int, default=None, dest="expires_sec")
    parser.add_argument(
        "--token-size",
        type=int,
        default=int(os.getenv("TOKEN_SIZE", "0")),
        dest="token_size",
        help="send an oversized Authorization header of this many bytes",
    )
    parser.add_argument("--timeout", type=float, default=float(os.getenv("REQ_TIMEOUT", "2.0")))
    parser.add_argument("--max-failure-rate", type=float, default=0.5, dest="max_failure_rate")
    return parser.parse_args(argv)
