from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Optional

from .models import PayloadKind
from .text_utils import css_color, css_width, iter_environments, read_group, read_optional

if TYPE_CHECKING:
    from .structure import StructuralParser

logger = logging.getLogger(__name__)

BOX_COMMANDS = ("parbox", "fbox", "framebox", "boxed", "colorbox", "fcolorbox", "makebox", "mbox")


def _scan_command(text: str, name: str, pos: int) -> Optional[re.Match]:
    return re.compile(r"\\" + name + r"(?![A-Za-z])").search(text, pos)


def _parse_box(text: str, m: re.Match) -> Optional[tuple[dict, int]]:
    """Read the arguments of a box command starting at match m. Returns (args, end)."""
    name = m.group(0)[1:]
    p = m.end()
    args: dict = {"name": name}
    if name == "parbox":
        # \parbox[pos][height][inner-pos]{width}{text}
        for _ in range(3):
            opt, p2 = read_optional(text, p)
            if opt is None:
                break
            p = p2
        width = read_group(text, p)
        if width is None:
            return None
        content = read_group(text, width[1])
        if content is None:
            return None
        args["width"] = width[0]
        args["content"] = content[0]
        return args, content[1]
    if name in ("framebox", "makebox"):
        width, p = read_optional(text, p)
        _, p = read_optional(text, p)
        args["width"] = width
    elif name == "colorbox":
        color = read_group(text, p)
        if color is None:
            return None
        args["background"] = color[0]
        p = color[1]
    elif name == "fcolorbox":
        frame = read_group(text, p)
        bg = read_group(text, frame[1]) if frame else None
        if frame is None or bg is None:
            return None
        args["border"] = frame[0]
        args["background"] = bg[0]
        p = bg[1]
    content = read_group(text, p)
    if content is None:
        return None
    args["content"] = content[0]
    return args, content[1]


def _box_html(args: dict, inner: str) -> str:
    name = args["name"]
    if name == "parbox":
        width = css_width(args["width"])
        return f'<div class="parbox" style="width: {width}; display: inline-block; vertical-align: top;">{inner}</div>'
    if name in ("fbox", "boxed", "framebox"):
        style = "border: 1px solid currentColor; padding: 0.1em 0.3em;"
        if args.get("width"):
            style += f" display: inline-block; width: {css_width(args['width'])};"
        return f'<span class="latex-{name}" style="{style}">{inner}</span>'
    if name == "colorbox":
        return f'<span class="latex-colorbox" style="background: {css_color(args["background"])};">{inner}</span>'
    if name == "fcolorbox":
        return (
            f'<span class="latex-fcolorbox" style="border: 1px solid {css_color(args["border"])}; '
            f'background: {css_color(args["background"])};">{inner}</span>'
        )
    if name == "makebox" and args.get("width"):
        return f'<span style="display: inline-block; width: {css_width(args["width"])};">{inner}</span>'
    return f'<span class="latex-mbox">{inner}</span>'


def render_box_commands(text: str, parser: StructuralParser, depth: int) -> str:
    for name in BOX_COMMANDS:
        pos = 0
        while True:
            m = _scan_command(text, name, pos)
            if m is None:
                break
            parsed = _parse_box(text, m)
            if parsed is None:
                pos = m.end()
                continue
            args, end = parsed
            inner = parser.render_fragment(args["content"], depth + 1)
            markup = _box_html(args, inner)
            # Boxes are inline-block in LaTeX, so they never break the paragraph.
            token = parser.ctx.register(PayloadKind.BOX, markup, source=text[m.start() : end], inline=True)
            text = text[: m.start()] + token + text[end:]
            pos = m.start() + len(token)
    return text


def render_minipages(text: str, parser: StructuralParser, depth: int) -> str:
    out: list[str] = []
    pos = 0
    for env in iter_environments(text, ("minipage",)):
        out.append(text[pos : env.start])
        body = text[env.body_start : env.body_end]
        _, p = read_optional(body, 0)
        # \begin{minipage}[pos][height][inner-pos]{width}
        for _ in range(2):
            opt, p2 = read_optional(body, p)
            if opt is None:
                break
            p = p2
        width = read_group(body, p)
        content = body[width[1] :] if width else body
        css = css_width(width[0]) if width else "100%"
        inner = parser.render_fragment(content, depth + 1, paragraphs=True)
        html = f'<div class="minipage" style="width: {css}; display: inline-block; vertical-align: top;">{inner}</div>'
        # Minipages sit side by side, so keep them inline with their siblings.
        out.append(parser.ctx.register(PayloadKind.BOX, html, source=text[env.start : env.end], inline=True))
        pos = env.end
    if not out:
        return text
    out.append(text[pos:])
    return "".join(out)


def render_boxes(text: str, parser: StructuralParser, depth: int) -> str:
    text = render_minipages(text, parser, depth)
    return render_box_commands(text, parser, depth)
