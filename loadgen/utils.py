from __future__ import annotations

from collections.abc import Iterable

from loadgen.types import Sample


def percentile(values: list[float], p: float) -> float:
    """Compute the p-th percentile using linear interpolation."""
    if not values:
        return 0.0
    s = sorted(values)
    k = (len(s) - 1) * p
    f = int(k)
    c = min(f + 1, len(s) - 1)
    if f == c:
        return s[f]
    d0 = s[f] * (c - k)
    d1 = s[c] * (k - f)
    return d0 + d1


def summarize(samples: list[Sample], *, max_failure_rate: float = 0.5) -> tuple[dict, int]:
    """Compute the run summary and an exit code.

    `not_200` counts answered requests with a non-200 status; `net_err`
    counts requests that never got an answer. Both must stay below
    `max_failure_rate` for exit code 0.
    """
    total = len(samples)
    answered = [s for s in samples if not s.net_error]
    net_errors = total - len(answered)
    not_200 = sum(1 for s in answered if s.status != 200)
    latencies = [s.elapsed_ms for s in answered]

    net_err_rate = (net_errors / total) if total else 0.0
    not_200_rate = (not_200 / len(answered)) if answered else 0.0
    status_counts: dict[str, int] = {}
    for s in samples:
        status_counts[str(s.status)] = status_counts.get(str(s.status), 0) + 1

    summary = {
        "component": "loadgen",
        "event": "summary",
        "requests": total,
        "net_err_rate": round(net_err_rate, 4),
        "not_200_rate": round(not_200_rate, 4),
        "status_counts": status_counts,
        "timings": {
            "avg_ms": round(sum(latencies) / len(latencies), 2) if latencies else 0.0,
            "med_ms": round(percentile(latencies, 0.5), 2),
            "p90_ms": round(percentile(latencies, 0.90), 2),
            "p95_ms": round(percentile(latencies, 0.95), 2),
            "p99_ms": round(percentile(latencies, 0.99), 2),
            "max_ms": round(max(latencies), 2) if latencies else 0.0,
        },
    }
    ok = total > 0 and net_err_rate < max_failure_rate and not_200_rate < max_failure_rate
    return summary, 0 if ok else 1


def check_persisted(issued_ids: Iterable[str], listed: list[dict]) -> tuple[dict, int]:
    """Compare ids returned by issuance with the ids the server lists."""
    issued = list(issued_ids)
    unique = set(issued)
    listed_ids = {t["id"] for t in listed}
    missing = unique - listed_ids
    report = {
        "event": "persistence_check",
        "issued": len(issued),
        "unique": len(unique),
        "duplicates": len(issued) - len(unique),
        "missing": len(missing),
        "listed_total": len(listed),
    }
    ok = len(unique) == len(issued) and not missing
    return report, 0 if ok else 1
