"""Common utility helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from time import perf_counter


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_ms() -> float:
    return perf_counter() * 1000.0


def elapsed_ms(start_ms: float) -> int:
    return int(perf_counter() * 1000.0 - start_ms)


def preview(text: str, size: int = 200) -> str:
    if size <= 0:
        raise ValueError("size must be > 0")
    flat = " ".join(str(text or "").split())
    if len(flat) <= size:
        return flat
    return flat[:size].rstrip() + "..."


def join_base(base_url: str, path: str) -> str:
    return f"{base_url.rstrip('/')}/{path.lstrip('/')}"
