from __future__ import annotations

import logging
import re
import uuid
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from .config import UnifierConfig
from .errors import PlaceholderCycleError, PlaceholderResolutionError
from .models import (
    BibliographyEntry,
    CitationReference,
    DiagramPayload,
    Payload,
    PayloadKind,
    TokenStats,
)

logger = logging.getLogger(__name__)


class PlaceholderRegistry:
    """
    Maps opaque tokens to payloads for a single run.

    Tokens look like `PV1A2B3CMATH7X`: a per-run nonce keeps a document that
    happens to contain token-like text from colliding with real tokens, and
    the trailing `X` keeps `...MATH1X` from being a prefix of `...MATH12X`.
    """

    def __init__(self, nonce: Optional[str] = None):
        self.nonce = (nonce or uuid.uuid4().hex[:6]).upper()
        self._counter = 0
        self._payloads: dict[str, Payload] = {}
        self._resolved: Counter[str] = Counter()
        self.pattern = re.compile(rf"PV{re.escape(self.nonce)}[A-Z]+\d+X")

    def __len__(self) -> int:
        return len(self._payloads)

    def __contains__(self, token: str) -> bool:
        return token in self._payloads

    def register(self, kind: PayloadKind, markup: str, source: str = "", inline: bool = False) -> str:
        token = f"PV{self.nonce}{kind.value}{self._counter}X"
        self._counter += 1
        self._payloads[token] = Payload(token=token, kind=kind, markup=markup, source=source, inline=inline)
        return token

    def get(self, token: str) -> Payload:
        try:
            return self._payloads[token]
        except KeyError:
            raise PlaceholderResolutionError(f"unknown placeholder token {token!r}") from None

    def set_markup(self, token: str, markup: str) -> None:
        self.get(token).markup = markup

    def payloads(self, kind: Optional[PayloadKind] = None) -> list[Payload]:
        return [p for p in self._payloads.values() if kind is None or p.kind == kind]

    def tokens_in(self, text: str) -> list[str]:
        return self.pattern.findall(text or "")

    def is_block_token(self, text: str) -> bool:
        """True when `text` is exactly one token of a block-level payload."""
        t = (text or "").strip()
        if not self.pattern.fullmatch(t):
            return False
        return not self._payloads[t].inline if t in self._payloads else False

    def resolve(self, text: str, max_depth: int = 64, record: bool = True) -> str:
        """Expand every token in `text`. With `record=False` the expansion is not counted in `stats()`."""
        return self._expand(text, (), max_depth, record)

    def _expand(self, text: str, stack: tuple[str, ...], max_depth: int, record: bool) -> str:
        if len(stack) > max_depth:
            raise PlaceholderResolutionError(f"placeholder nesting exceeds {max_depth} levels")

        def _repl(m: re.Match) -> str:
            tok = m.group(0)
            if tok in stack:
                raise PlaceholderCycleError(f"placeholder {tok} refers to itself via {' -> '.join(stack)}")
            payload = self.get(tok)
            if record:
                self._resolved[tok] += 1
                if self._resolved[tok] > 1:
                    logger.warning("placeholder %s resolved %d times", tok, self._resolved[tok])
            return self._expand(payload.markup, stack + (tok,), max_depth, record)

        return self.pattern.sub(_repl, text or "")

    def source_text(self, text: str, max_depth: int = 64) -> str:
        """Put every token in `text` back to the LaTeX it was extracted from. Not counted in `stats()`."""
        for _ in range(max_depth):
            restored = self.pattern.sub(lambda m: self.get(m.group(0)).source, text or "")
            if restored == text:
                break
            text = restored
        return text

    def stats(self) -> TokenStats:
        emitted = len(self._payloads)
        resolved = sum(1 for t in self._payloads if self._resolved[t] > 0)
        return TokenStats(emitted=emitted, resolved=resolved, orphaned=emitted - resolved)


@dataclass
class RunContext:
    """All mutable state of one conversion run."""

    config: UnifierConfig
    registry: PlaceholderRegistry
    catalog: list[BibliographyEntry] = field(default_factory=list)
    citations: list[CitationReference] = field(default_factory=list)
    unresolved_keys: list[str] = field(default_factory=list)
    diagrams: list[DiagramPayload] = field(default_factory=list)
    bibliography_html: str = ""
    contained: int = 0
    metadata: dict[str, str] = field(default_factory=dict)

    def register(self, kind: PayloadKind, markup: str, source: str = "", inline: bool = False) -> str:
        return self.registry.register(kind, markup, source=source, inline=inline)

    def block(self, kind: PayloadKind, markup: str, source: str = "") -> str:
        """Register a block payload and return its token padded as its own paragraph."""
        return f"\n\n{self.register(kind, markup, source=source)}\n\n"
