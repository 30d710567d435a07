from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

import requests

from .errors import RendererError
from .text_utils import escape_attr

logger = logging.getLogger(__name__)

SIZED_MESSAGE = "paperview:diagram-sized"
MIN_FRAME_HEIGHT = 100
FRAME_PADDING = 25


class Renderer(Protocol):
    """Compiles diagram source somewhere isolated and reports its size later."""

    def submit(self, source: str) -> str: ...

    def on_sized(self, handle: str, width: float, height: float) -> None: ...

    def markup(self, handle: str) -> str: ...


@dataclass
class RenderJob:
    handle: str
    source: str
    status: str = "pending"  # pending | ready | unavailable
    width: Optional[float] = None
    height: Optional[float] = None


class _JobTracker:
    def __init__(self) -> None:
        self._jobs: dict[str, RenderJob] = {}
        self._listeners: list[Callable[[RenderJob], None]] = []

    def _new_handle(self) -> str:
        return f"diagram-{uuid.uuid4().hex[:12]}"

    def job(self, handle: str) -> RenderJob:
        try:
            return self._jobs[handle]
        except KeyError:
            raise RendererError(f"unknown diagram handle {handle!r}") from None

    def jobs(self) -> list[RenderJob]:
        return list(self._jobs.values())

    def pending(self) -> list[RenderJob]:
        return [j for j in self._jobs.values() if j.status == "pending"]

    def subscribe(self, callback: Callable[[RenderJob], None]) -> None:
        self._listeners.append(callback)

    def on_sized(self, handle: str, width: float, height: float) -> None:
        job = self.job(handle)
        job.width = float(width)
        job.height = max(float(height), 0.0)
        job.status = "ready"
        logger.debug("diagram %s sized %.0fx%.0f", handle, job.width, job.height)
        for cb in list(self._listeners):
            cb(job)


class SandboxRenderer(_JobTracker):
    """
    Compiles diagrams in the browser, inside an iframe per diagram.

    The iframe page runs TikZJax and posts `{type: "paperview:diagram-sized",
    handle, width, height}` to its parent once the SVG exists; the host feeds
    that back through `on_sized`. Until then the frame shows a loading line.
    """

    def __init__(self, tikzjax_base_url: str = "https://tikzjax.com/v1"):
        super().__init__()
        self.tikzjax_base_url = tikzjax_base_url.rstrip("/")

    def submit(self, source: str) -> str:
        handle = self._new_handle()
        self._jobs[handle] = RenderJob(handle=handle, source=source)
        return handle

    def page(self, handle: str) -> str:
        job = self.job(handle)
        base = self.tikzjax_base_url
        return f"""<!DOCTYPE html>
<html>
<head>
  <link rel="stylesheet" href="{base}/fonts.css">
  <script src="{base}/tikzjax.js"></script>
  <style>
    body {{ margin: 0; padding: 0; display: flex; flex-direction: column; align-items: center; overflow: hidden; width: 100%; }}
    svg {{ width: auto !important; height: auto !important; max-width: 100% !important; display: block; margin: 0 auto; }}
    .tikzjax-container {{ width: 100%; display: flex; justify-content: center; }}
    .tikz-loading {{ width: 100%; padding: 40px 20px; box-sizing: border-box; text-align: center; color: #666; font-family: sans-serif; font-size: 14px; }}
    .tikz-loading.hidden {{ display: none; }}
  </style>
</head>
<body>
  <div id="tikz-loading" class="tikz-loading">[ Generating diagram... ]</div>
  <div class="tikzjax-container">
    <script type="text/tikz">
{job.source}
    </script>
  </div>
  <script>
    const observer = new MutationObserver(() => {{
      const svg = document.querySelector('svg');
      if (!svg) return;
      const loading = document.getElementById('tikz-loading');
      if (loading) loading.classList.add('hidden');
      const rect = svg.getBoundingClientRect();
      const h = Math.max(rect.height + {FRAME_PADDING}, {MIN_FRAME_HEIGHT});
      if (window.frameElement) window.frameElement.style.height = h + 'px';
      window.parent.postMessage({{type: '{SIZED_MESSAGE}', handle: '{handle}', width: rect.width, height: h}}, '*');
    }});
    observer.observe(document.body, {{ childList: true, subtree: true }});
  </script>
</body>
</html>"""

    def markup(self, handle: str) -> str:
        srcdoc = self.page(handle).replace("&", "&amp;").replace('"', "&quot;")
        return (
            f'<div class="diagram-frame" data-diagram-handle="{escape_attr(handle)}" '
            'style="display: flex; justify-content: center; width: 100%; margin: 1em 0;">'
            f'<iframe srcdoc="{srcdoc}" style="border: none; width: 100%; min-height: {MIN_FRAME_HEIGHT}px; overflow: hidden;"></iframe>'
            "</div>"
        )


class RenderServiceRenderer(_JobTracker):
    """
    Sends diagram source to a headless render service over HTTP.

    The service answers `POST {base}/jobs` with `{"handle": ...}` and serves
    the result at `{base}/jobs/{handle}.svg`; it reports sizes back through
    whatever callback the host wires to `on_sized`. A failed submission keeps
    a local placeholder so the document still renders.
    """

    def __init__(self, base_url: str, timeout_s: float = 30.0, session: Optional[requests.Session] = None):
        super().__init__()
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.session = session or requests.Session()

    def submit(self, source: str) -> str:
        handle = ""
        try:
            resp = self.session.post(f"{self.base_url}/jobs", json={"source": source, "format": "svg"}, timeout=self.timeout_s)
            resp.raise_for_status()
            handle = str((resp.json() or {}).get("handle") or "")
        except (requests.RequestException, ValueError) as e:
            logger.warning("render service submit failed: %s", e)
        if not handle:
            handle = self._new_handle()
            self._jobs[handle] = RenderJob(handle=handle, source=source, status="unavailable")
            return handle
        self._jobs[handle] = RenderJob(handle=handle, source=source)
        return handle

    def markup(self, handle: str) -> str:
        job = self.job(handle)
        h = escape_attr(handle)
        if job.status == "unavailable":
            return f'<div class="diagram-slot diagram-unavailable" data-diagram-handle="{h}" style="min-height: {MIN_FRAME_HEIGHT}px;">[ Generating diagram... ]</div>'
        src = escape_attr(f"{self.base_url}/jobs/{handle}.svg")
        return (
            f'<div class="diagram-slot" data-diagram-handle="{h}" style="min-height: {MIN_FRAME_HEIGHT}px;">'
            f'<img src="{src}" alt="diagram" loading="lazy" style="max-width: 100%;"/></div>'
        )
