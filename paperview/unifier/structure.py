from __future__ import annotations

import logging
import re
from typing import Callable, Optional

from .blocks import render_blocks
from .boxes import render_boxes
from .formatting import format_inline
from .lists import render_lists
from .models import PayloadKind
from .registry import RunContext
from .tables import render_tables
from .text_utils import escape_html

logger = logging.getLogger(__name__)


class StructuralParser:
    """
    Recursive-descent parser for nested containers.

    Every container renders its children through `render_fragment(child, depth + 1)`,
    so the deepest construct is finished before its parent and each finished
    container is swapped for a token. Recursion stops at `max_nesting_depth`;
    anything deeper is shown as contained source.
    """

    def __init__(self, ctx: RunContext):
        self.ctx = ctx
        self.max_depth = ctx.config.max_nesting_depth
        # Set by the extractor so citations in cells and captions become tokens too.
        self.cite_hook: Optional[Callable[[str], str]] = None

    def parse(self, text: str, depth: int = 0) -> str:
        if not text:
            return ""
        if depth > self.max_depth:
            logger.warning("nesting deeper than %d levels, containing %d chars", self.max_depth, len(text))
            self.ctx.contained += 1
            return self.ctx.register(
                PayloadKind.CONTAINED,
                f'<pre class="latex-unparsed" data-reason="depth">{escape_html(text)}</pre>',
                source=text,
            )
        text = render_tables(text, self, depth)
        text = render_lists(text, self, depth)
        text = render_boxes(text, self, depth)
        text = render_blocks(text, self, depth)
        return text

    def render_fragment(self, text: str, depth: int, paragraphs: bool = False) -> str:
        """Parse containers inside `text`, then format what is left as inline HTML."""
        text = text.strip()
        if self.cite_hook is not None:
            text = self.cite_hook(text)
        parsed = self.parse(text, depth)
        chunks = [c.strip() for c in re.split(r"\n\s*\n", parsed) if c.strip()]
        out = []
        for chunk in chunks:
            if self.ctx.registry.is_block_token(chunk):
                out.append(chunk)
            elif paragraphs and len(chunks) > 1:
                out.append(f"<p>{format_inline(chunk)}</p>")
            else:
                out.append(format_inline(chunk))
        return "\n".join(out)

    def format_label(self, label: str) -> str:
        return format_inline(label)
