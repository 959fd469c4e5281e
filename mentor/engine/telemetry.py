import asyncio
import time
from typing import Any, Dict, List, Optional

from ..utils.nanoid import nanoid

MAX_TRACES = 100

_storage_lock = asyncio.Lock()
_trace_store: List[Dict[str, Any]] = []


def _save_traces(traces: List[Dict[str, Any]]) -> None:
    trimmed = sorted(traces, key=lambda trace: trace["ts"], reverse=True)[:MAX_TRACES]
    _trace_store.clear()
    _trace_store.extend(trimmed)


class Telemetry:
    @staticmethod
    async def record(params: Dict[str, Any]) -> str:
        now_ms = int(time.time() * 1000)
        trace_id = nanoid("trace")
        trace = {
            "id": trace_id,
            "ts": now_ms,
            "cardType": params["cardType"],
            "tier": params["tier"],
            "cacheHit": params["cacheHit"],
            "source": params["source"],
            "fingerprint": params.get("fingerprint"),
            "error": params.get("error"),
            "latencyMs": now_ms - params.get("startedAt", now_ms),
            "acknowledged": False,
        }
        async with _storage_lock:
            _save_traces([trace, *_trace_store])
        return trace_id

    @staticmethod
    async def update(trace_id: str, patch: Dict[str, Any]) -> None:
        async with _storage_lock:
            _save_traces([{**trace, **patch} if trace.get("id") == trace_id else trace for trace in _trace_store])

    @staticmethod
    def recent(limit: Optional[int] = None) -> List[Dict[str, Any]]:
        traces = [dict(trace) for trace in _trace_store]
        return traces[:limit] if limit is not None else traces

    @staticmethod
    def clear() -> None:
        _trace_store.clear()
