from __future__ import annotations

import logging
import re

from .models import PayloadKind
from .registry import RunContext
from .text_utils import ENV_MARKER_RE, escape_html, find_environment_close, read_optional

logger = logging.getLogger(__name__)

# Containment never runs past a paragraph break or a sectioning command.
_BOUNDARY_RE = re.compile(r"\n[ \t]*\n|\\(?:chapter|section|subsection|subsubsection|paragraph)\*?\s*\{")


def _boundary(text: str, start: int, ctx: RunContext) -> int:
    end = len(text)
    m = _BOUNDARY_RE.search(text, start)
    if m:
        end = m.start()
    tok = ctx.registry.pattern.search(text, start, end)
    if tok and not ctx.registry.get(tok.group(0)).inline:
        end = tok.start()
    return end


def contain_unparsed(text: str, ctx: RunContext) -> str:
    """
    Deal with whatever `\\begin`/`\\end` markers survived every parser.

    Uses the same marker grammar and matcher as the structural parsers:
    a closed but unknown environment is unwrapped and its body kept; an
    unclosed one is wrapped, up to the next boundary, in an inert
    container; a stray `\\end` is dropped.
    """
    pos = 0
    while True:
        m = ENV_MARKER_RE.search(text, pos)
        if m is None:
            break
        name = m.group(2)
        if m.group(1) == "end":
            logger.debug("dropping stray \\end{%s}", name)
            text = text[: m.start()] + text[m.end() :]
            pos = m.start()
            continue
        close = find_environment_close(text, m.end(), (name,))
        if close is not None:
            logger.debug("unwrapping unknown environment %s", name)
            _, body_start = read_optional(text, m.end())
            text = text[: m.start()] + text[body_start : close.start()] + text[close.end() :]
            pos = m.start()
            continue
        end = _boundary(text, m.end(), ctx)
        region = text[m.start() : end]
        ctx.contained += 1
        logger.info("contained unclosed \\begin{%s} (%d chars)", name, len(region))
        token = ctx.register(
            PayloadKind.CONTAINED,
            f'<div class="latex-unparsed" data-env="{escape_html(name)}"><pre>{escape_html(region.strip())}</pre></div>',
            source=region,
        )
        text = text[: m.start()] + f"\n\n{token}\n\n" + text[end:]
        pos = m.start() + len(token) + 4
    return text
