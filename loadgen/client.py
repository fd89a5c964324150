from __future__ import annotations

import asyncio
import time
from typing import Optional

import httpx

from jwtlab.logging_conf import get_logger
from loadgen.types import ListTokensError, LoadError, Sample, Stage

logger = get_logger("loadgen.client")


async def wait_for_ping(base_url: str, timeout_s: float = 20.0) -> None:
    """Poll /ping until it answers `pong` or raise after `timeout_s`."""
    deadline = time.monotonic() + timeout_s
    async with httpx.AsyncClient(base_url=base_url, timeout=5.0) as client:
        while time.monotonic() < deadline:
            try:
                r = await client.get("/ping")
                if r.status_code == 200 and r.text == "pong":
                    logger.info("ping.ok", extra={"event": "ping_ok"})
                    return
            except httpx.HTTPError:
                pass
            await asyncio.sleep(0.25)
    raise LoadError("Server did not answer /ping within timeout")


async def request_once(
    client: httpx.AsyncClient,
    mode: str,
    *,
    expires_sec: Optional[int] = None,
    headers: Optional[dict[str, str]] = None,
) -> Sample:
    """Send one request for `mode` and time it.

    Network errors and timeouts are recorded as status 0 rather than raised.
    """
    start = time.perf_counter()
    try:
        if mode == "issue":
            data = {"expires_sec": str(expires_sec)} if expires_sec is not None else None
            r = await client.post("/tokens", data=data, headers=headers)
        elif mode == "list":
            r = await client.get("/tokens", headers=headers)
        else:
            r = await client.get("/ping", headers=headers)
    except httpx.HTTPError:
        return Sample(status=0, elapsed_ms=(time.perf_counter() - start) * 1000.0)
    elapsed_ms = (time.perf_counter() - start) * 1000.0

    token_id = None
    if mode == "issue" and r.status_code == 200:
        token_id = r.json().get("id")
    return Sample(status=r.status_code, elapsed_ms=elapsed_ms, token_id=token_id)


async def _worker(
    client: httpx.AsyncClient,
    mode: str,
    deadline: float,
    samples: list[Sample],
    *,
    expires_sec: Optional[int],
    headers: Optional[dict[str, str]],
) -> None:
    # Closed loop: the next request goes out as soon as the previous returns.
    while time.monotonic() < deadline:
        samples.append(await request_once(client, mode, expires_sec=expires_sec, headers=headers))


async def run_stage(
    base_url: str,
    stage: Stage,
    mode: str,
    *,
    timeout_s: float = 2.0,
    expires_sec: Optional[int] = None,
    headers: Optional[dict[str, str]] = None,
) -> list[Sample]:
    """Run `stage.concurrency` workers for `stage.duration_s` and collect samples."""
    samples: list[Sample] = []
    deadline = time.monotonic() + stage.duration_s
    limits = httpx.Limits(max_connections=stage.concurrency, max_keepalive_connections=stage.concurrency)
    async with httpx.AsyncClient(base_url=base_url, timeout=timeout_s, limits=limits) as client:
        await asyncio.gather(
            *(
                _worker(client, mode, deadline, samples, expires_sec=expires_sec, headers=headers)
                for _ in range(stage.concurrency)
            )
        )
    logger.info(
        "stage.done",
        extra={
            "event": "stage_done",
            "concurrency": stage.concurrency,
            "duration_s": stage.duration_s,
            "requests": len(samples),
        },
    )
    return samples


async def list_tokens(base_url: str, *, retries: int = 3) -> list[dict]:
    """Fetch every token record, with retry."""
    last_err: Exception | None = None
    for attempt in range(retries):
        try:
            async with httpx.AsyncClient(base_url=base_url, timeout=30.0) as client:
                r = await client.get("/tokens")
                r.raise_for_status()
                return r.json()
        except httpx.HTTPError as e:
            last_err = e
            logger.warning(
                "list.retry",
                extra={"event": "list_retry", "attempt": attempt + 1, "error": str(e)},
            )
    raise ListTokensError(str(last_err) if last_err else "list failed")
