from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

from .formatting import format_inline
from .models import BibliographyEntry, CitationReference
from .text_utils import escape_attr, escape_html, read_group, read_optional

logger = logging.getLogger(__name__)

REF_PREFIX = "ref_"

_KEY = r"(?:[A-Za-z0-9_:.\-]|\\_)+"
_REF_BLOCK_RE = re.compile(r"\(\s*(" + _KEY + r"(?:[,;\s]+" + _KEY + r")*)\s*\)")
_KEY_SPLIT_RE = re.compile(r"[,;\s]+")
_CITE_VARIANT_RE = re.compile(r"\\(?:cite|citep|citet|citealp|citeauthor|parencite|textcite|autocite)\*?(?:\[[^\]]*\]){0,2}\s*\{([^{}]*)\}")
_CITE_PAIR_RE = re.compile(r"\\cite\{([^{}]*)\}[ \t]*\n?[ \t]*\\cite\{([^{}]*)\}")
CITE_RE = re.compile(r"\\cite\{([^{}]*)\}")
_BIBITEM_RE = re.compile(r"\\bibitem(?![A-Za-z])")


def normalize_key(key: str) -> str:
    return key.strip().replace("\\_", "_")


def split_keys(raw: str) -> list[str]:
    keys: list[str] = []
    for k in _KEY_SPLIT_RE.split(raw or ""):
        k = normalize_key(k)
        if k and k not in keys:
            keys.append(k)
    return keys


def tokenize_reference_markers(text: str, known: Iterable[str], prefix: str = REF_PREFIX) -> str:
    """
    Turn `(ref_1, ref_2; ref_3)` markers into `\\cite{ref_1,ref_2,ref_3}`.

    A parenthesized block is a marker when its first key is known or carries
    `prefix`. Only keys present in `known` are accepted. Anything else in the
    block is kept as literal text, and a block with no known key is left as it was.
    """
    known_set = set(known)

    def _repl(m: re.Match) -> str:
        tokens = split_keys(m.group(1))
        if not tokens or not (tokens[0] in known_set or (prefix and tokens[0].startswith(prefix))):
            return m.group(0)
        valid = [t for t in tokens if t in known_set]
        if not valid:
            return m.group(0)
        rest = [t for t in tokens if t not in known_set]
        out = "\\cite{" + ",".join(valid) + "}"
        if rest:
            out += " (" + ", ".join(rest) + ")"
        return out

    return _REF_BLOCK_RE.sub(_repl, text)


def normalize_citations(text: str, max_passes: int = 10) -> str:
    """Collapse citation variants to `\\cite{..}` and merge adjacent ones into one group."""
    text = _CITE_VARIANT_RE.sub(lambda m: "\\cite{" + ",".join(split_keys(m.group(1))) + "}", text)
    for _ in range(max_passes):
        merged = _CITE_PAIR_RE.sub(lambda m: "\\cite{" + ",".join(split_keys(m.group(1) + "," + m.group(2))) + "}", text)
        if merged == text:
            break
        text = merged
    return text


def parse_bibitems(body: str) -> list[BibliographyEntry]:
    """Entries of a `thebibliography` body in source order."""
    entries: list[BibliographyEntry] = []
    starts = [m for m in _BIBITEM_RE.finditer(body)]
    for i, m in enumerate(starts):
        end = starts[i + 1].start() if i + 1 < len(starts) else len(body)
        label, p = read_optional(body, m.end())
        grp = read_group(body, p)
        if grp is None:
            logger.debug("bibitem without key skipped")
            continue
        entries.append(BibliographyEntry(key=normalize_key(grp[0]), label=label, text=body[grp[1] : end].strip()))
    return entries


def merge_catalog(external: list[BibliographyEntry], inline: list[BibliographyEntry]) -> list[BibliographyEntry]:
    """External catalog order wins; in-document entries it lacks are appended."""
    seen = {e.key for e in external}
    merged = list(external)
    for e in inline:
        if e.key not in seen:
            merged.append(e)
            seen.add(e.key)
    return merged


class CitationResolver:
    """Resolves keys to positions in the bibliography catalog (1-based)."""

    def __init__(self, catalog: list[BibliographyEntry]):
        self.catalog = catalog
        self._index: dict[str, int] = {}
        for i, entry in enumerate(catalog, start=1):
            self._index.setdefault(entry.key, i)

    def __contains__(self, key: str) -> bool:
        return key in self._index

    def index_of(self, key: str) -> Optional[int]:
        return self._index.get(key)

    def resolve(self, keys: Iterable[str]) -> list[CitationReference]:
        return [CitationReference(key=k, index=self.index_of(k)) for k in keys]

    def render(self, refs: list[CitationReference]) -> str:
        resolved = sorted({r.index for r in refs if r.index is not None})
        unresolved = [r.key for r in refs if r.index is None]
        by_index = {r.index: r.key for r in refs if r.index is not None}
        parts = [f'<a href="#cite-{escape_attr(by_index[i])}">{i}</a>' for i in resolved]
        parts.extend("?" for _ in unresolved)
        cls = "citation" if not unresolved else "citation citation-unresolved"
        title = f' title="Unresolved: {escape_attr(", ".join(unresolved))}"' if unresolved else ""
        return f'<span class="{cls}"{title}>[' + ", ".join(parts) + "]</span>"

    def render_bibliography(self, entries: Optional[list[BibliographyEntry]] = None) -> str:
        items = []
        for entry in entries if entries is not None else self.catalog:
            idx = self.index_of(entry.key)
            label = entry.label or str(idx)
            items.append(
                f'<li id="cite-{escape_attr(entry.key)}" value="{idx}">'
                f'<span class="bib-label">[{escape_html(label)}]</span> {format_inline(entry.text)}</li>'
            )
        if not items:
            return ""
        return '<div class="bibliography"><h2 class="bibliography-title">References</h2><ol class="bibliography-list">' + "".join(items) + "</ol></div>"
