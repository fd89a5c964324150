#!/usr/bin/env python3
"""Ramp closed-loop clients against a jwtlab server and report how it held up.

Steps:
- wait for /ping
- run each stage with its number of concurrent workers
- in issue mode, list tokens and check every issued id was persisted once
- emit a compact JSON summary and exit code
"""
from __future__ import annotations

import asyncio
import sys

from jwtlab.logging_conf import get_logger, setup_logging
from loadgen.cli import parse_args
from loadgen.client import list_tokens, run_stage, wait_for_ping
from loadgen.types import Sample, Stage
from loadgen.utils import check_persisted, summarize

logger = get_logger("loadgen")


def bearer_headers(token_size: int) -> dict[str, str] | None:
    """An oversized JWT-shaped Authorization header, or None when disabled."""
    if token_size <= 0:
        return None
    return {"Authorization": f"Bearer {'.' * token_size}"}


async def run_load(
    *,
    base_url: str,
    stages: list[Stage],
    mode: str = "issue",
    expires_sec: int | None = None,
    token_size: int = 0,
    timeout_s: float = 2.0,
    max_failure_rate: float = 0.5,
) -> int:
    await wait_for_ping(base_url)
    headers = bearer_headers(token_size)

    samples: list[Sample] = []
    for stage in stages:
        samples.extend(
            await run_stage(
                base_url,
                stage,
                mode,
                timeout_s=timeout_s,
                expires_sec=expires_sec,
                headers=headers,
            )
        )

    summary, exit_code = summarize(samples, max_failure_rate=max_failure_rate)
    logger.info("loadgen.summary", extra=summary)

    if mode == "issue":
        issued = [s.token_id for s in samples if s.token_id]
        report, check_code = check_persisted(issued, await list_tokens(base_url))
        logger.info("loadgen.persistence", extra=report)
        exit_code = exit_code or check_code
    return exit_code


def main(argv: list[str] | None = None) -> None:
    setup_logging()
    args = parse_args(argv if argv is not None else sys.argv[1:])
    code = asyncio.run(
        run_load(
            base_url=args.base_url,
            stages=args.stages,
            mode=args.mode,
            expires_sec=args.expires_sec,
            token_size=args.token_size,
            timeout_s=args.timeout,
            max_failure_rate=args.max_failure_rate,
        )
    )
    raise SystemExit(code)


if __name__ == "__main__":
    main()
