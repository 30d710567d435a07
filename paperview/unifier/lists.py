from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Optional

from .models import ParseFrame, PayloadKind
from .text_utils import escape_html, iter_environments, read_optional

if TYPE_CHECKING:
    from .structure import StructuralParser

logger = logging.getLogger(__name__)

LIST_ENVS = ("itemize", "enumerate", "description")

_LIST_MARKER_RE = re.compile(r"\\(?:(?P<kind>begin|end)\s*\{(?:itemize|enumerate|description)\}|(?P<item>item)(?![A-Za-z]))")


def split_items(body: str) -> list[tuple[Optional[str], str]]:
    """
    Split a list body into (label, content) pairs.

    Only `\\item` markers at list depth 0 and brace depth 0 start a new item,
    so the items of a nested child list stay inside their parent item.
    Text before the first `\\item` is discarded.
    """
    items: list[tuple[Optional[str], str]] = []
    frame = ParseFrame(kind="list")
    brace = 0
    cur_start: Optional[int] = None
    i = 0
    n = len(body)

    def _close(end: int) -> None:
        if cur_start is None:
            return
        label, p = read_optional(body, cur_start)
        items.append((label, body[p:end].strip()))

    while i < n:
        ch = body[i]
        if ch == "\\":
            m = _LIST_MARKER_RE.match(body, i)
            if m is None:
                i += 2
                continue
            if m.group("item"):
                if frame.depth == 0 and brace == 0:
                    _close(i)
                    cur_start = m.end()
            elif m.group("kind") == "begin":
                frame.depth += 1
            else:
                frame.depth = max(0, frame.depth - 1)
            i = m.end()
            continue
        if ch == "{":
            brace += 1
        elif ch == "}":
            brace = max(0, brace - 1)
        i += 1
    _close(n)
    return items


def render_list(name: str, body: str, parser: StructuralParser, depth: int) -> str:
    _, start = read_optional(body, 0)  # enumitem options, e.g. [label=(\alph*)]
    items = split_items(body[start:])
    if name == "description":
        parts = []
        for label, content in items:
            dt = parser.format_label(label) if label else ""
            parts.append(f"<dt>{dt}</dt><dd>{parser.render_fragment(content, depth + 1)}</dd>")
        return '<dl class="latex-description">' + "".join(parts) + "</dl>"

    tag = "ol" if name == "enumerate" else "ul"
    parts = []
    for label, content in items:
        inner = parser.render_fragment(content, depth + 1)
        if label is not None:
            lab = parser.format_label(label)
            plain = escape_html(parser.ctx.registry.source_text(label))
            parts.append(f'<li class="custom-label" data-label="{plain}"><span class="item-label">{lab}</span> {inner}</li>')
        else:
            parts.append(f"<li>{inner}</li>")
    return f'<{tag} class="latex-{name}">' + "".join(parts) + f"</{tag}>"


def render_lists(text: str, parser: StructuralParser, depth: int) -> str:
    """Replace every closed list environment in `text` with a LIST token."""
    out: list[str] = []
    pos = 0
    for env in iter_environments(text, LIST_ENVS):
        out.append(text[pos : env.start])
        html = render_list(env.name, text[env.body_start : env.body_end], parser, depth)
        out.append(parser.ctx.block(PayloadKind.LIST, html, source=text[env.start : env.end]))
        pos = env.end
    if not out:
        return text
    out.append(text[pos:])
    return "".join(out)
