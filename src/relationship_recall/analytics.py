"""Append-only search analytics and the offline summary over them.

The serving path only ever writes here (``record_search``); the summary is
for tuning cache size, thresholds and over-fetch.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict

import numpy as np

from . import db
from .logger import get_logger
from .utils import to_iso, utc_now

log = get_logger(__name__)


def record_search(
    db_path: str,
    fingerprint: str,
    result_count: int,
    latency_ms: float,
    cache_hit: bool = False,
    degraded: bool = False,
) -> bool:
    """Append one record; a failure is logged and reported as False, never raised."""
    try:
        db.insert_search_analytics(db_path, fingerprint, result_count, latency_ms, cache_hit, degraded)
        return True
    except Exception as exc:
        log.warning("Failed to record search analytics: %s", exc)
        return False


def get_search_stats(db_path: str, hours: int = 24) -> Dict[str, Any]:
    """Aggregate search analytics over the last ``hours`` hours."""
    since = to_iso(utc_now() - timedelta(hours=hours))
    with db.connect(db_path) as conn:
        rows = conn.execute(
            "SELECT result_count, latency_ms, cache_hit, degraded FROM search_analytics WHERE created_at >= ?;",
            (since,),
        ).fetchall()
        top = conn.execute(
            """
            SELECT fingerprint, COUNT(*) AS searches
            FROM search_analytics
            WHERE created_at >= ?
            GROUP BY fingerprint
            ORDER BY searches DESC, fingerprint
            LIMIT 5;
            """,
            (since,),
        ).fetchall()

    total = len(rows)
    if total == 0:
        return {
            "period_hours": hours,
            "total_searches": 0,
            "cache_hit_rate": 0.0,
            "avg_latency_ms": 0.0,
            "p95_latency_ms": 0.0,
            "zero_result_rate": 0.0,
            "degraded_rate": 0.0,
            "avg_results": 0.0,
            "top_fingerprints": [],
        }

    latencies = np.array([float(r["latency_ms"]) for r in rows])
    counts = np.array([int(r["result_count"]) for r in rows])
    return {
        "period_hours": hours,
        "total_searches": total,
        "cache_hit_rate": sum(1 for r in rows if r["cache_hit"]) / total,
        "avg_latency_ms": round(float(latencies.mean()), 3),
        "p95_latency_ms": round(float(np.percentile(latencies, 95)), 3),
        "zero_result_rate": float((counts == 0).sum()) / total,
        "degraded_rate": sum(1 for r in rows if r["degraded"]) / total,
        "avg_results": round(float(counts.mean()), 3),
        "top_fingerprints": [{"fingerprint": r["fingerprint"], "searches": r["searches"]} for r in top],
    }
