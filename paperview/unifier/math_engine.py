from __future__ import annotations

import logging
import re

from latex2mathml.converter import convert as latex2mathml_convert

from .text_utils import escape_html

logger = logging.getLogger(__name__)

_ALIGNED_ENVS = {"align", "align*", "eqnarray", "eqnarray*", "flalign", "flalign*", "alignat", "alignat*"}
_STACKED_ENVS = {"gather", "gather*", "multline", "multline*"}
_STRUCTURED_RE = re.compile(r"^\s*\\begin\{([a-z]+\*?)\}([\s\S]*)\\end\{\1\}\s*$")


def _strip_labels(tex: str) -> tuple[str, str | None]:
    tag = None
    m = re.search(r"\\tag\*?\{([^{}]*)\}", tex)
    if m:
        tag = m.group(1).strip()
    tex = re.sub(r"\\tag\*?\{[^{}]*\}", "", tex)
    tex = re.sub(r"\\label\{[^{}]*\}", "", tex)
    tex = re.sub(r"\\(nonumber|notag)\b", "", tex)
    return tex.strip(), tag


def _unwrap_structured(tex: str) -> tuple[str, bool]:
    """Map amsmath display environments onto what the converter understands."""
    m = _STRUCTURED_RE.match(tex)
    if not m:
        return tex, "\\\\" in tex
    env, body = m.group(1), m.group(2).strip()
    multi = "\\\\" in body
    if env in _ALIGNED_ENVS:
        return "\\begin{aligned}" + body + "\\end{aligned}", True
    if env in _STACKED_ENVS:
        if not multi:
            return body, False
        lines = [ln.strip() for ln in re.split(r"\\\\", body) if ln.strip()]
        return "\\begin{aligned}" + "\\\\".join("&" + ln for ln in lines) + "\\end{aligned}", True
    # equation / equation* / displaymath
    return body, multi


def _rough_width_em(tex: str) -> float:
    rough = re.sub(r"\\(mathrm|text|textbf|operatorname)\{([^}]+)\}", r"\2", tex)
    rough = re.sub(r"\\(left|right|big|Big|bigg|Bigg)[lrv]?", "", rough)
    rough = re.sub(r"\\[a-zA-Z]+", "C", rough)
    return len(rough) * 0.45


class MathEngine:
    """
    Pure `render(source) -> markup` around latex2mathml.

    Never raises: malformed input yields an inline error marker carrying the
    escaped source so the author can still read it.
    """

    def __init__(self, max_em: float = 50.0, scale_floor: float = 0.55):
        self.max_em = max_em
        self.scale_floor = scale_floor

    def render(self, source: str, display: bool = False) -> str:
        tex, tag = _strip_labels(source or "")
        tex, multi_line = _unwrap_structured(tex)
        if not tex:
            return ""
        try:
            mathml = latex2mathml_convert(tex, display="block" if display else "inline")
        except Exception as e:  # latex2mathml raises a zoo of parser errors
            logger.debug("math fallback for %r: %s", source[:60], e)
            return self.fallback(source, display)

        if not display:
            return f'<span class="math-inline">{mathml}</span>'

        body = mathml
        if not multi_line:
            width = _rough_width_em(tex)
            if width > self.max_em:
                scale = max(self.scale_floor, self.max_em / width)
                body = (
                    f'<div class="math-autoscale" style="transform: scale({scale:.2f}); '
                    f'transform-origin: left center; width: {100 / scale:.1f}%;">{mathml}</div>'
                )
        if tag:
            body += f'<span class="math-tag">({escape_html(tag)})</span>'
        return f'<div class="math-display">{body}</div>'

    def fallback(self, source: str, display: bool = False) -> str:
        cls = "math-error math-error-display" if display else "math-error"
        tag = "div" if display else "span"
        return f'<{tag} class="{cls}"><code>{escape_html(source)}</code></{tag}>'
