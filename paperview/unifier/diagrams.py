from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Optional

from .config import LayoutConfig
from .models import CoordinateSample, DiagramIntent, DiagramMetrics, DiagramNode, DiagramPayload, LayoutPlan
from .text_utils import escape_html, find_balanced_close, fmt_num, read_optional, split_top_level, strip_comments

if TYPE_CHECKING:
    from .sandbox import Renderer

logger = logging.getLogger(__name__)

TIKZ_LIBRARIES = "arrows,shapes,calc,positioning,decorations.pathreplacing"

_UNSUPPORTED_RE = re.compile(r"\\begin\{(?:axis|semilogxaxis|semilogyaxis|loglogaxis|polaraxis|groupplot)\}|\\addplot")
_COORD_RE = re.compile(r"\(\s*(-?\d*\.?\d+)\s*,\s*(-?\d*\.?\d+)\s*\)")
_NODE_RE = re.compile(r"(?<![A-Za-z])\\?node(?![A-Za-z])")
_DIST_RE = re.compile(r"node\s+distance\s*=\s*(-?\d*\.?\d+)\s*(cm|mm|pt|in|em)?")
_UNIT_TO_CM = {"cm": 1.0, "mm": 0.1, "pt": 1 / 28.45, "in": 2.54, "em": 0.35, None: 1.0}
_UNIT_RE = re.compile(r"\s*(\d*\.?\d+)\s*(cm|mm|pt|in|em)?\s*$")
_BRACE_RE = re.compile(
    r"\\draw\[\s*decorate\s*,\s*decoration\s*=\s*\{\s*brace([^}]*)\}\s*\]\s*\(([^)]+)\)\s*--\s*\(([^)]+)\)"
    r"\s*node\[([^\]]*)\]\s*\{([^}]*)\};"
)


def _clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))


def read_tikz_options(body: str) -> tuple[str, str]:
    """
    Split `[opts] rest` at the start of a tikzpicture body.

    Bracket and brace depth are tracked and double-quoted strings skipped, so
    `[label={a]b}, "x]y"]` is read whole. Returns ("", body) when there is none.
    """
    i = 0
    while i < len(body) and body[i] in " \t\r\n":
        i += 1
    if i >= len(body) or body[i] != "[":
        return "", body
    depth = 0
    brace = 0
    in_quote = False
    j = i
    while j < len(body):
        ch = body[j]
        if ch == "\\":
            j += 2
            continue
        if ch == '"':
            in_quote = not in_quote
        elif not in_quote:
            if ch == "{":
                brace += 1
            elif ch == "}":
                brace = max(0, brace - 1)
            elif brace == 0 and ch == "[":
                depth += 1
            elif brace == 0 and ch == "]":
                depth -= 1
                if depth == 0:
                    return body[i + 1 : j], body[j + 1 :]
        j += 1
    return "", body


def _polyfill_brace(m: re.Match) -> str:
    deco, start, end, node_opts, label = m.groups()
    mirror = "mirror" in (deco or "")

    def _pt(s: str) -> tuple[float, float]:
        parts = [p.strip() for p in s.split(",")]
        try:
            return float(parts[0]), float(parts[1]) if len(parts) > 1 else 0.0
        except ValueError:
            return 0.0, 0.0

    (x1, y1), (x2, y2) = _pt(start), _pt(end)
    mx, my = (x1 + x2) / 2, (y1 + y2) / 2
    mag, tip = 0.15, 0.35
    direction = -1 if mirror else 1
    f = fmt_num
    if abs(y2 - y1) > abs(x2 - x1):
        s = -direction
        c1, c2, t, c3 = (x1 + s * mag, y1), (mx + s * mag, my), (mx + s * tip, my), (x2 + s * mag, y2)
        label_at = (mx + s * (tip + 0.6), my)
    else:
        s = direction
        c1, c2, t, c3 = (x1, y1 + s * mag), (mx, my + s * mag), (mx, my + s * tip), (x2, y2 + s * mag)
        label_at = (mx, my + s * (tip + 0.6))
    return (
        f"\\draw[thick] ({f(x1)},{f(y1)}) .. controls ({f(c1[0])},{f(c1[1])}) and ({f(c2[0])},{f(c2[1])}) .. "
        f"({f(t[0])},{f(t[1])}) .. controls ({f(c2[0])},{f(c2[1])}) and ({f(c3[0])},{f(c3[1])}) .. ({f(x2)},{f(y2)}); "
        f"\\node[{node_opts}] at ({f(label_at[0])},{f(label_at[1])}) {{{label}}};"
    )


def _itemize_in_nodes(src: str) -> str:
    def _repl(m: re.Match) -> str:
        items = [it.strip() for it in re.split(r"\\item(?![A-Za-z])", m.group(1)) if it.strip()]
        return " ".join(f"\\par $\\bullet$ {it}" for it in items)

    return re.sub(r"\\begin\{itemize\}(?:\[[^\]]*\])?([\s\S]*?)\\end\{itemize\}", _repl, src)


def sanitize_source(src: str) -> str:
    """Rewrite a tikzpicture body into what the in-browser compiler accepts."""
    out = strip_comments(src)
    out = out.encode("ascii", "ignore").decode("ascii")
    out = out.replace("\\textbf{", "{\\bfseries ").replace("\\textit{", "{\\itshape ")
    out = re.sub(r"\\(?:sffamily|rmfamily|ttfamily)(?![A-Za-z])", "", out)
    out = _itemize_in_nodes(out)
    if "\\matrix" not in out:
        out = out.replace("\\\\&", "\\\\ \\&")
        out = re.sub(r"(?<!\\)&", r"\\&", out)
    out = _BRACE_RE.sub(_polyfill_brace, out)
    return out.strip()


def extract_samples(src: str) -> list[CoordinateSample]:
    """Every `(x, y)` pair in the source, not only `at (x, y)` placements."""
    samples = []
    for m in _COORD_RE.finditer(src):
        try:
            samples.append(CoordinateSample(x=float(m.group(1)), y=float(m.group(2))))
        except ValueError:
            continue
    return samples


def _label_length(label: str) -> int:
    plain = re.sub(r"\\[A-Za-z]+\*?", "", label)
    plain = re.sub(r"[{}$]", "", plain)
    return len(re.sub(r"\s+", " ", plain).strip())


def extract_nodes(src: str) -> list[DiagramNode]:
    nodes: list[DiagramNode] = []
    for m in _NODE_RE.finditer(src):
        p = m.end()
        position: Optional[CoordinateSample] = None
        label: Optional[str] = None
        for _ in range(8):
            while p < len(src) and src[p] in " \t\r\n":
                p += 1
            if p >= len(src):
                break
            ch = src[p]
            if ch == "[":
                _, p2 = read_optional(src, p)
                if p2 == p:
                    break
                p = p2
            elif ch == "(":
                close = src.find(")", p)
                if close < 0:
                    break
                p = close + 1
            elif src.startswith("at", p) and not src[p + 2 : p + 3].isalpha():
                q = p + 2
                while q < len(src) and src[q] in " \t\r\n":
                    q += 1
                c = _COORD_RE.match(src, q)
                if c is None:
                    break
                position = CoordinateSample(x=float(c.group(1)), y=float(c.group(2)))
                p = c.end()
            elif ch == "{":
                close = find_balanced_close(src, p)
                if close < 0:
                    break
                label = src[p + 1 : close]
                break
            else:
                break
        if label is None:
            continue
        nodes.append(DiagramNode(label=label, label_length=_label_length(label), position=position))
    return nodes


def explicit_distance(options: str, src: str) -> Optional[float]:
    """Magnitude of a `node distance=` directive in cm, options first."""
    for text in (options, src):
        m = _DIST_RE.search(text or "")
        if m:
            return float(m.group(1)) * _UNIT_TO_CM[m.group(2)]
    return None


def compute_metrics(samples: list[CoordinateSample], nodes: list[DiagramNode], distance: Optional[float]) -> DiagramMetrics:
    h = v = 0.0
    if samples:
        xs = [s.x for s in samples]
        ys = [s.y for s in samples]
        h = max(xs) - min(xs)
        v = max(ys) - min(ys)
    total_label = sum(n.label_length for n in nodes)
    return DiagramMetrics(
        horizontal_span=h,
        vertical_span=v,
        aspect_ratio=h / v if v > 0 else 0.0,
        sample_count=len(samples),
        node_count=len(nodes),
        avg_label_length=total_label / len(nodes) if nodes else 0.0,
        explicit_distance=distance,
    )


def _dense_plan(m: DiagramMetrics, cfg: LayoutConfig, crowded: bool) -> LayoutPlan:
    """
    Grow the coordinate grid, never the glyphs.

    x and y units are continuous functions of the spans. A tiny vertical
    extent means the only vertical offset is a caption-like node sitting just
    above or below the row, which gets a compact fixed unit instead.
    """
    plan = LayoutPlan(intent=DiagramIntent.DENSE, font="\\small" if crowded else None)
    if m.sample_count == 0:
        plan.node_distance = cfg.heavy_distance_floor
        return plan
    if m.horizontal_span > 0:
        t = _clamp((m.horizontal_span - cfg.dense_x_span_low) / (cfg.dense_x_span_high - cfg.dense_x_span_low), 0.0, 1.0)
        ceiling = cfg.dense_x_ceiling_low + t * (cfg.dense_x_ceiling_high - cfg.dense_x_ceiling_low)
        plan.x_unit = _clamp(cfg.safe_width * cfg.margin_factor / m.horizontal_span, cfg.dense_unit_min, ceiling)
    if m.vertical_span > cfg.caption_offset_limit:
        plan.y_unit = _clamp(cfg.dense_target_extent / m.vertical_span, cfg.dense_unit_min, cfg.dense_unit_max)
    elif m.vertical_span > 0:
        plan.y_unit = cfg.caption_unit_cm
    return plan


def classify(m: DiagramMetrics, cfg: Optional[LayoutConfig] = None) -> LayoutPlan:
    """
    Pick a layout intent and its parameters from diagram metrics.

    Pure: the same metrics always give the same plan. Priority is
    WIDE > FLAT > EXPLICIT > DENSE > DEFAULT. Only WIDE shrinks glyphs
    together with geometry; every other intent relieves density by moving
    nodes apart.
    """
    cfg = cfg or LayoutConfig()
    crowded = m.node_count >= cfg.crowded_node_count
    text_heavy = m.avg_label_length > cfg.text_heavy_label_length

    if m.horizontal_span > cfg.safe_width:
        scale = _clamp((cfg.safe_width / m.horizontal_span) * cfg.margin_factor, cfg.wide_scale_floor, 1.0)
        return LayoutPlan(intent=DiagramIntent.WIDE, scale=scale, transform_shape=True)

    if m.horizontal_span > 0 and m.vertical_span > 0 and m.aspect_ratio > cfg.flat_aspect_threshold:
        y = _clamp(m.aspect_ratio / cfg.flat_target_ratio, cfg.flat_y_min, cfg.flat_y_max)
        x = cfg.flat_x_multiplier * (cfg.crowded_x_boost if crowded else 1.0)
        return LayoutPlan(intent=DiagramIntent.FLAT, x_unit=x, y_unit=y, font="\\small" if crowded else None)

    if m.explicit_distance is not None:
        d = m.explicit_distance
        if text_heavy:
            dist = max(d, cfg.heavy_distance_floor)
        else:
            dist = cfg.light_distance_cm if d < cfg.light_distance_floor else d
        return LayoutPlan(intent=DiagramIntent.EXPLICIT, node_distance=dist)

    if text_heavy:
        return _dense_plan(m, cfg, crowded)

    if m.sample_count > 0:
        return LayoutPlan(intent=DiagramIntent.DEFAULT, scale=1.0, node_distance=cfg.default_node_distance_cm)
    # Nothing to measure: shrink a little in case it is bigger than it looks.
    scale = cfg.default_scale_crowded if m.node_count >= cfg.default_crowded_node_count else cfg.default_scale_unknown
    return LayoutPlan(
        intent=DiagramIntent.DEFAULT,
        scale=scale,
        transform_shape=True,
        node_distance=cfg.default_node_distance_cm,
    )


def _option_key(opt: str) -> str:
    return re.sub(r"\s+", " ", opt.split("=", 1)[0]).strip().lower()


def author_unit_cm(parts: list[str], key: str) -> float:
    """Author's `x=`/`y=` unit in cm; 1.0 when absent or not a plain length."""
    for p in parts:
        if _option_key(p) != key:
            continue
        m = _UNIT_RE.match(p.split("=", 1)[1] if "=" in p else "")
        if m:
            return float(m.group(1)) * _UNIT_TO_CM[m.group(2)]
    return 1.0


def rewrite_options(raw: str, plan: LayoutPlan) -> str:
    """
    Merge a plan into author options.

    Keys the plan sets are removed from the author's list first; TikZ keeps
    the first occurrence of a key, so appending would leave the stale value.
    Plan `x`/`y` units are multipliers of the author's own grid.
    """
    parts = [p.strip() for p in split_top_level(raw or "") if p.strip()]
    drop: set[str] = set()
    added: list[str] = []
    if plan.scale is not None:
        drop |= {"scale", "xscale", "yscale"}
        added.append(f"scale={fmt_num(plan.scale)}")
    if plan.transform_shape:
        drop.add("transform shape")
        added.append("transform shape")
    if plan.x_unit is not None:
        drop.add("x")
        added.append(f"x={fmt_num(author_unit_cm(parts, 'x') * plan.x_unit)}cm")
    if plan.y_unit is not None:
        drop.add("y")
        added.append(f"y={fmt_num(author_unit_cm(parts, 'y') * plan.y_unit)}cm")
    if plan.node_distance is not None:
        drop.add("node distance")
        added.append(f"node distance={fmt_num(plan.node_distance)}cm")
    if plan.font is not None:
        drop.add("font")
        added.append(f"font={plan.font}")
    kept = [p for p in parts if _option_key(p) not in drop]
    return "[" + ", ".join(kept + added) + "]"


def build_tikz_document(final_options: str, body: str) -> str:
    return (
        f"\\usetikzlibrary{{{TIKZ_LIBRARIES}}}\n"
        f"\\begin{{tikzpicture}}{final_options}\n{body}\n\\end{{tikzpicture}}"
    )


def unsupported_notice(dialect: str, source: str) -> str:
    return (
        '<div class="diagram-unsupported">'
        f"<p>Complex diagram ({escape_html(dialect)}) - not supported in browser preview</p>"
        f"<details><summary>Source</summary><pre>{escape_html(source.strip())}</pre></details>"
        "</div>"
    )


class DiagramEngine:
    def __init__(self, layout: LayoutConfig, renderer: Renderer):
        self.layout = layout
        self.renderer = renderer

    def build(self, body: str) -> DiagramPayload:
        """Classify, lay out and submit one tikzpicture body (text after `\\begin{tikzpicture}`)."""
        options, rest = read_tikz_options(body)
        if _UNSUPPORTED_RE.search(rest):
            logger.warning("pgfplots diagram skipped (%d chars)", len(rest))
            notice = "Complex diagram (pgfplots) - not supported in browser preview"
            return DiagramPayload(
                source=body,
                options=options,
                intent=DiagramIntent.UNSUPPORTED,
                markup=unsupported_notice("pgfplots", body),
                notice=notice,
            )

        src = sanitize_source(rest)
        samples = extract_samples(src)
        nodes = extract_nodes(src)
        metrics = compute_metrics(samples, nodes, explicit_distance(options, src))
        plan = classify(metrics, self.layout)
        final = rewrite_options(strip_comments(options), plan)
        logger.debug(
            "diagram intent=%s span=%.2fx%.2f nodes=%d options=%s",
            plan.intent.value,
            metrics.horizontal_span,
            metrics.vertical_span,
            metrics.node_count,
            final,
        )
        handle = self.renderer.submit(build_tikz_document(final, src))
        return DiagramPayload(
            source=body,
            options=options,
            samples=samples,
            nodes=nodes,
            metrics=metrics,
            intent=plan.intent,
            plan=plan,
            final_options=final,
            handle=handle,
            markup=self.renderer.markup(handle),
        )
