from __future__ import annotations

import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    render_service_url: str | None
    render_timeout_s: float
    tikzjax_base_url: str
    log_level: str
    safe_width: float | None
    max_nesting_depth: int
    ref_marker_prefix: str = "ref_"


def _env_float(name: str) -> float | None:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _env_int(name: str) -> int | None:
    raw = (os.environ.get(name) or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def load_settings() -> Settings:
    url = (os.environ.get("PAPERVIEW_RENDER_URL") or "").strip()
    # People often quote env values in cmd.exe (set PAPERVIEW_RENDER_URL="http://...").
    if (url.startswith('"') and url.endswith('"')) or (url.startswith("'") and url.endswith("'")):
        url = url[1:-1].strip()
    render_service_url = url.rstrip("/") or None

    tikzjax_base_url = (os.environ.get("PAPERVIEW_TIKZJAX_URL") or "https://tikzjax.com/v1").strip().rstrip("/")

    timeout_s = _env_float("PAPERVIEW_RENDER_TIMEOUT_S") or 30.0
    log_level = (os.environ.get("PAPERVIEW_LOG_LEVEL") or "WARNING").strip().upper()
    max_nesting_depth = _env_int("PAPERVIEW_MAX_NESTING") or 32
    ref_marker_prefix = (os.environ.get("PAPERVIEW_REF_PREFIX") or "ref_").strip()

    return Settings(
        render_service_url=render_service_url,
        render_timeout_s=timeout_s,
        tikzjax_base_url=tikzjax_base_url,
        log_level=log_level,
        safe_width=_env_float("PAPERVIEW_SAFE_WIDTH"),
        max_nesting_depth=max_nesting_depth,
        ref_marker_prefix=ref_marker_prefix,
    )
