from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional, Protocol

from .citations import CITE_RE, merge_catalog, normalize_citations, normalize_key, parse_bibitems, tokenize_reference_markers
from .diagrams import DiagramEngine, unsupported_notice
from .math_engine import MathEngine
from .models import DiagramPayload, PayloadKind
from .registry import RunContext
from .structure import StructuralParser
from .tables import TABLE_ENVS, render_table
from .text_utils import escape_attr, escape_html, is_escaped, iter_environments, read_group, read_optional, strip_comments

logger = logging.getLogger(__name__)

# Overlapping syntax decides this order: a `%` or `$` inside a diagram or a
# code listing must never be read as a comment or a math delimiter.
EXTRACTION_ORDER = (
    "diagrams",
    "code",
    "structured_math",
    "display_math",
    "inline_math",
    "tables",
    "figures",
    "bibliography",
    "citations",
)

CODE_ENVS = ("verbatim", "verbatim*", "lstlisting", "minted", "Verbatim", "alltt")
STRUCTURED_MATH_ENVS = (
    "equation", "equation*", "align", "align*", "gather", "gather*", "multline", "multline*",
    "eqnarray", "eqnarray*", "flalign", "flalign*", "alignat", "alignat*", "displaymath",
)
FIGURE_ENVS = ("figure", "figure*", "table", "table*", "wrapfigure", "wraptable", "subfigure")

_INCLUDEGRAPHICS_RE = re.compile(r"\\includegraphics\*?(?:\[[^\]]*\])?\s*\{([^{}]*)\}")
_VERB_RE = re.compile(r"\\verb\*?([^A-Za-z\s*])(.*?)\1")
_BIBITEM_KEY_RE = re.compile(r"\\bibitem\s*(?:\[[^\]]*\])?\s*\{([^{}]*)\}")
_URL_RE = re.compile(r"\\url\s*\{([^{}\n]*)\}")
_HREF_TARGET_RE = re.compile(r"\\href\s*\{([^{}\n]*)\}")


def _unescape_url(url: str) -> str:
    return re.sub(r"\\([%#&_~$])", r"\1", url.strip())


@dataclass
class Span:
    start: int
    end: int
    groups: dict = field(default_factory=dict)


class Grammar(Protocol):
    def scan(self, text: str) -> Iterator[Span]: ...


class EnvironmentGrammar:
    """Closed `\\begin{name}...\\end{name}` pairs; unclosed ones are never yielded."""

    def __init__(self, names: tuple[str, ...]):
        self.names = names

    def scan(self, text: str) -> Iterator[Span]:
        for env in iter_environments(text, self.names):
            yield Span(env.start, env.end, {"name": env.name, "body": text[env.body_start : env.body_end]})


class DelimiterGrammar:
    """
    `open ... close` delimited regions such as `\\[ ... \\]` or `$ ... $`.

    Escaped delimiters are ignored. An opener without a closer (or, when
    `single_paragraph` is set, one whose closer lies past a blank line) is
    skipped and left in the text.
    """

    def __init__(self, open_d: str, close_d: str, single_paragraph: bool = False):
        self.open_d = open_d
        self.close_d = close_d
        self.single_paragraph = single_paragraph

    def _find(self, text: str, needle: str, pos: int) -> int:
        while True:
            i = text.find(needle, pos)
            if i < 0:
                return -1
            if needle.startswith("\\") or not is_escaped(text, i):
                if needle == "$" and text[i + 1 : i + 2] == "$":
                    pos = i + 2
                    continue
                return i
            pos = i + 1

    def scan(self, text: str) -> Iterator[Span]:
        pos = 0
        while True:
            i = self._find(text, self.open_d, pos)
            if i < 0:
                return
            if self.open_d.startswith("\\") and is_escaped(text, i):
                pos = i + len(self.open_d)
                continue
            body_start = i + len(self.open_d)
            j = self._find(text, self.close_d, body_start)
            if j < 0:
                pos = body_start
                continue
            body = text[body_start:j]
            if not body.strip() or (self.single_paragraph and re.search(r"\n\s*\n", body)):
                pos = body_start
                continue
            yield Span(i, j + len(self.close_d), {"body": body})
            pos = j + len(self.close_d)


class RegexGrammar:
    def __init__(self, pattern: re.Pattern):
        self.pattern = pattern

    def scan(self, text: str) -> Iterator[Span]:
        for m in self.pattern.finditer(text):
            yield Span(m.start(), m.end(), {"match": m})


Handler = Callable[[Span], Optional[str]]


class Extractor:
    """Swaps complex constructs for tokens, kind by kind, in EXTRACTION_ORDER."""

    def __init__(self, ctx: RunContext, parser: StructuralParser, diagrams: DiagramEngine, math: MathEngine):
        self.ctx = ctx
        self.parser = parser
        self.diagrams = diagrams
        self.math = math
        self.last_tokens: list[str] = []
        self.known_keys: set[str] = {e.key for e in ctx.catalog}
        self._figure_no = 0
        self._table_no = 0

    def extract(self, text: str, kind: PayloadKind, grammar: Grammar, handler: Handler, inline: bool = False) -> str:
        """
        Replace every match of `grammar` with a token of `kind`.

        `handler` turns a match into payload markup, or returns None to leave
        the match in place. Tokens created by this call are kept in `last_tokens`.
        """
        out: list[str] = []
        pos = 0
        tokens: list[str] = []
        for span in grammar.scan(text):
            if span.start < pos:
                continue
            markup = handler(span)
            if markup is None:
                continue
            token = self.ctx.register(kind, markup, source=text[span.start : span.end], inline=inline)
            tokens.append(token)
            out.append(text[pos : span.start])
            out.append(token if inline else f"\n\n{token}\n\n")
            pos = span.end
        self.last_tokens = tokens
        if not tokens:
            return text
        out.append(text[pos:])
        return "".join(out)

    def run(self, text: str) -> str:
        # Keys must be known before tables and floats are rendered, which
        # happens ahead of the bibliography pass.
        self.known_keys.update(normalize_key(k) for k in _BIBITEM_KEY_RE.findall(text))
        for step in EXTRACTION_ORDER:
            text = getattr(self, f"extract_{step}")(text)
            logger.debug("after %s: %d tokens", step, len(self.ctx.registry))
        return text

    # -- diagrams ---------------------------------------------------------

    def extract_diagrams(self, text: str) -> str:
        built: list[DiagramPayload] = []

        def _tikz(span: Span) -> str:
            payload = self.diagrams.build(span.groups["body"])
            built.append(payload)
            return payload.markup

        text = self.extract(text, PayloadKind.DIAGRAM, EnvironmentGrammar(("tikzpicture",)), _tikz)
        for payload, token in zip(built, self.last_tokens):
            payload.token = token
        self.ctx.diagrams.extend(built)

        def _forest(span: Span) -> str:
            logger.warning("forest tree skipped")
            return unsupported_notice("forest", span.groups["body"])

        text = self.extract(text, PayloadKind.DIAGRAM, EnvironmentGrammar(("forest",)), _forest)

        def _image(span: Span) -> str:
            name = span.groups["match"].group(1).strip()
            return f'<div class="latex-image-placeholder">[Image: {escape_html(name)}]</div>'

        return self.extract(text, PayloadKind.FIGURE, RegexGrammar(_INCLUDEGRAPHICS_RE), _image)

    # -- code -------------------------------------------------------------

    def extract_code(self, text: str) -> str:
        def _env(span: Span) -> str:
            name, body = span.groups["name"], span.groups["body"]
            lang = ""
            if name == "lstlisting":
                opts, p = read_optional(body, 0)
                body = body[p:]
                m = re.search(r"language\s*=\s*\{?([A-Za-z0-9+#]+)", opts or "")
                lang = m.group(1).lower() if m else ""
            elif name == "minted":
                _, p = read_optional(body, 0)
                grp = read_group(body, p)
                if grp is not None:
                    lang, body = grp[0].strip().lower(), body[grp[1] :]
            elif name == "Verbatim":
                _, p = read_optional(body, 0)
                body = body[p:]
            body = body.strip("\n")
            cls = f' class="language-{escape_html(lang)}"' if lang else ""
            return f'<pre class="latex-verbatim"><code{cls}>{escape_html(body)}</code></pre>'

        text = self.extract(text, PayloadKind.CODE, EnvironmentGrammar(CODE_ENVS), _env)

        def _verb(span: Span) -> str:
            return f"<code>{escape_html(span.groups['match'].group(2))}</code>"

        text = self.extract(text, PayloadKind.CODE, RegexGrammar(_VERB_RE), _verb, inline=True)

        def _url(span: Span) -> str:
            url = _unescape_url(span.groups["match"].group(1))
            return f'<a href="{escape_attr(url)}"><code>{escape_html(url)}</code></a>'

        def _href(m: re.Match) -> str:
            # Only the target is taken verbatim; the link text is formatted later.
            url = _unescape_url(m.group(1))
            token = self.ctx.register(PayloadKind.LINK, escape_attr(url), source=url, inline=True)
            return "\\href{" + token + "}"

        text = self.extract(text, PayloadKind.LINK, RegexGrammar(_URL_RE), _url, inline=True)
        text = _HREF_TARGET_RE.sub(_href, text)
        # Code is out of the way now, so `%` left in the text really is a comment.
        return strip_comments(text)

    # -- math -------------------------------------------------------------

    def extract_structured_math(self, text: str) -> str:
        def _env(span: Span) -> str:
            name = span.groups["name"]
            body = re.sub(r"(?<!\\)\$", "", span.groups["body"])
            return self.math.render(f"\\begin{{{name}}}{body}\\end{{{name}}}", display=True)

        return self.extract(text, PayloadKind.MATH, EnvironmentGrammar(STRUCTURED_MATH_ENVS), _env)

    def extract_display_math(self, text: str) -> str:
        def _display(span: Span) -> str:
            return self.math.render(span.groups["body"], display=True)

        text = self.extract(text, PayloadKind.MATH, DelimiterGrammar("\\[", "\\]"), _display)
        return self.extract(text, PayloadKind.MATH, DelimiterGrammar("$$", "$$"), _display)

    def extract_inline_math(self, text: str) -> str:
        def _inline(span: Span) -> str:
            return self.math.render(span.groups["body"], display=False)

        text = self.extract(text, PayloadKind.MATH, DelimiterGrammar("\\(", "\\)"), _inline, inline=True)
        return self.extract(text, PayloadKind.MATH, DelimiterGrammar("$", "$", single_paragraph=True), _inline, inline=True)

    # -- tables and floats --------------------------------------------------

    def extract_tables(self, text: str) -> str:
        def _table(span: Span) -> str:
            return render_table(span.groups["name"], span.groups["body"], self.parser, 0)

        return self.extract(text, PayloadKind.TABLE, EnvironmentGrammar(TABLE_ENVS), _table)

    def _caption(self, body: str) -> tuple[str, Optional[str]]:
        m = re.search(r"\\caption(?![A-Za-z])\*?\s*(?:\[[^\]]*\])?", body)
        if not m:
            return body, None
        grp = read_group(body, m.end())
        if grp is None:
            return body, None
        return body[: m.start()] + body[grp[1] :], grp[0].strip()

    def extract_figures(self, text: str) -> str:
        def _float(span: Span) -> str:
            name, body = span.groups["name"], span.groups["body"]
            _, p = read_optional(body, 0)
            if name in ("wrapfigure", "wraptable", "subfigure"):
                # {placement}{width} for wrapfigure, {width} for subfigure
                for _ in range(2 if name != "subfigure" else 1):
                    grp = read_group(body, p)
                    if grp is None:
                        break
                    p = grp[1]
            body, caption = self._caption(body[p:])
            body = re.sub(r"\\label\s*\{[^{}]*\}|\\centering(?![A-Za-z])", "", body)
            inner = self.parser.render_fragment(body, 1)
            is_table = name.startswith("table") or name == "wraptable"
            cap_html = ""
            if is_table:
                self._table_no += 1
                if caption:
                    cap_html = f'<div class="table-caption"><strong>Table {self._table_no}:</strong> {self.parser.render_fragment(caption, 1)}</div>'
                return f'<div class="latex-table-float">{cap_html}{inner}</div>'
            if name != "subfigure":
                self._figure_no += 1
            if caption:
                label = f"Figure {self._figure_no}:" if name != "subfigure" else ""
                cap_html = f"<figcaption><strong>{label}</strong> {self.parser.render_fragment(caption, 1)}</figcaption>"
            return f'<figure class="latex-{name.rstrip("*")}">{inner}{cap_html}</figure>'

        return self.extract(text, PayloadKind.FIGURE, EnvironmentGrammar(FIGURE_ENVS), _float)

    # -- references -------------------------------------------------------

    def extract_bibliography(self, text: str) -> str:
        def _bib(span: Span) -> str:
            found = parse_bibitems(span.groups["body"])
            self.ctx.catalog = merge_catalog(self.ctx.catalog, found)
            logger.debug("thebibliography with %d entries", len(found))
            # Filled in by the citation resolver once the catalog is final.
            return ""

        return self.extract(text, PayloadKind.BIBLIOGRAPHY, EnvironmentGrammar(("thebibliography",)), _bib)

    def extract_citations(self, text: str) -> str:
        text = tokenize_reference_markers(text, self.known_keys, self.ctx.config.ref_marker_prefix)
        text = normalize_citations(text, self.ctx.config.max_cite_merge_passes)
        return self.extract(text, PayloadKind.CITATION, RegexGrammar(CITE_RE), lambda span: "", inline=True)
