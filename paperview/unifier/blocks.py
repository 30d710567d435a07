from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Optional

from .formatting import format_inline, replace_command, today_string
from .models import ContentFragment, PayloadKind
from .text_utils import iter_environments, read_group, read_optional

if TYPE_CHECKING:
    from .registry import RunContext
    from .structure import StructuralParser

logger = logging.getLogger(__name__)

THEOREM_ENVS = {
    "theorem": "Theorem",
    "lemma": "Lemma",
    "corollary": "Corollary",
    "proposition": "Proposition",
    "definition": "Definition",
    "remark": "Remark",
    "example": "Example",
    "proof": "Proof",
}
ALIGN_ENVS = {"center": "center", "flushleft": "left", "flushright": "right"}
QUOTE_ENVS = ("quote", "quotation", "verse")
ALGORITHM_ENVS = ("algorithmic", "algorithmic*")

_ALG_SPLIT_RE = re.compile(
    r"(?=\\(?:STATE|State|IF|If|ELSIF|ElsIf|ELSE|Else|ENDIF|EndIf|FOR|For|FORALL|ForAll|WHILE|While|"
    r"ENDFOR|EndFor|ENDWHILE|EndWhile|REPEAT|Repeat|UNTIL|Until|RETURN|Return|REQUIRE|Require|ENSURE|Ensure|COMMENT|Comment)(?![A-Za-z]))"
)
_ALG_OPENERS = {"IF", "FOR", "FORALL", "WHILE", "REPEAT"}
_ALG_CLOSERS = {"ENDIF", "ENDFOR", "ENDWHILE", "UNTIL"}
_ALG_KEYWORDS = {
    "IF": ("if", "then"),
    "ELSIF": ("else if", "then"),
    "FOR": ("for", "do"),
    "FORALL": ("for all", "do"),
    "WHILE": ("while", "do"),
    "UNTIL": ("until", ""),
    "REQUIRE": ("Require:", ""),
    "ENSURE": ("Ensure:", ""),
    "RETURN": ("return", ""),
}
_SECTION_RE = re.compile(r"\\(section|subsection|subsubsection|paragraph)\*?(?![A-Za-z])")
_HEADING_TAGS = {"section": "h2", "subsection": "h3", "subsubsection": "h4"}


def _kw(word: str) -> str:
    return f'<span class="latex-alg-keyword">{word}</span>'


def render_algorithm(body: str, parser: StructuralParser, depth: int) -> str:
    _, p = read_optional(body, 0)
    lines = [ln for ln in _ALG_SPLIT_RE.split(body[p:]) if ln.strip()]
    indent = 0
    out = []
    for lineno, raw in enumerate(lines, start=1):
        line = raw.strip()
        m = re.match(r"\\([A-Za-z]+)", line)
        cmd = m.group(1).upper() if m else ""
        rest = line[m.end():] if m else line
        current = indent
        if cmd in _ALG_CLOSERS:
            indent = max(0, indent - 1)
            current = indent
        elif cmd in ("ELSE", "ELSIF"):
            current = max(0, indent - 1)
        elif cmd in _ALG_OPENERS:
            indent += 1

        if cmd in _ALG_KEYWORDS:
            lead, tail = _ALG_KEYWORDS[cmd]
            grp = read_group(rest, 0)
            if grp is not None:
                cond = parser.render_fragment(grp[0], depth + 1)
                after = parser.render_fragment(rest[grp[1]:], depth + 1)
                content = f"{_kw(lead)} {cond}" + (f" {_kw(tail)}" if tail else "") + (f" {after}" if after else "")
            else:
                content = f"{_kw(lead)} {parser.render_fragment(rest, depth + 1)}"
        elif cmd in ("ELSE", "REPEAT") or cmd in _ALG_CLOSERS:
            word = {"ENDIF": "end if", "ENDFOR": "end for", "ENDWHILE": "end while"}.get(cmd, cmd.lower())
            content = _kw(word)
        elif cmd == "COMMENT":
            grp = read_group(rest, 0)
            content = f'<span class="latex-alg-comment">&#9655; {parser.render_fragment(grp[0] if grp else rest, depth + 1)}</span>'
        else:
            content = parser.render_fragment(rest if cmd == "STATE" else line, depth + 1)
        out.append(
            f'<div class="latex-alg-line" style="padding-left: {current * 1.5}em">'
            f'<span class="latex-alg-lineno">{lineno}.</span> <span class="latex-alg-content">{content}</span></div>'
        )
    return '<div class="latex-algorithm">' + "".join(out) + "</div>"


def _render_env(name: str, body: str, parser: StructuralParser, depth: int) -> str:
    if name in ALGORITHM_ENVS:
        return render_algorithm(body, parser, depth)
    if name in THEOREM_ENVS:
        title, p = read_optional(body, 0)
        head = THEOREM_ENVS[name]
        if title:
            head += f" ({format_inline(title)})"
        inner = parser.render_fragment(body[p:], depth + 1, paragraphs=True)
        if name == "proof":
            return f'<div class="proof"><em>{head}.</em> {inner} <span class="qed">\u220e</span></div>'
        return f'<div class="{name}"><strong>{head}.</strong> {inner}</div>'
    if name == "abstract":
        inner = parser.render_fragment(body, depth + 1, paragraphs=True)
        return f'<div class="abstract"><div class="abstract-title">Abstract</div>{inner}</div>'
    if name in ALIGN_ENVS:
        inner = parser.render_fragment(body, depth + 1, paragraphs=True)
        return f'<div style="text-align: {ALIGN_ENVS[name]};">{inner}</div>'
    inner = parser.render_fragment(body, depth + 1, paragraphs=True)
    return f'<blockquote class="latex-{name}">{inner}</blockquote>'


def render_blocks(text: str, parser: StructuralParser, depth: int) -> str:
    names = tuple(THEOREM_ENVS) + tuple(ALIGN_ENVS) + QUOTE_ENVS + ALGORITHM_ENVS + ("abstract",)
    out: list[str] = []
    pos = 0
    for env in iter_environments(text, names):
        out.append(text[pos : env.start])
        html = _render_env(env.name, text[env.body_start : env.body_end], parser, depth)
        out.append(parser.ctx.block(PayloadKind.BLOCK, html, source=text[env.start : env.end]))
        pos = env.end
    if out:
        out.append(text[pos:])
        text = "".join(out)
    # Algorithm floats only carry a caption around the algorithmic body.
    text = re.sub(r"\\(?:begin|end)\{algorithm\*?\}(?:\[[^\]]*\])?", "\n\n", text)
    text = replace_command(
        text,
        "keywords",
        lambda a: parser.ctx.block(
            PayloadKind.BLOCK, f'<div class="keywords"><strong>Keywords:</strong> {parser.render_fragment(a[0], depth + 1)}</div>'
        ),
    )
    return text


def extract_metadata(text: str) -> tuple[str, dict[str, str]]:
    """
    Pull \\title, \\author and \\date out of the source and drop the preamble.

    Example:
        \\title{A}\\begin{document}\\maketitle Body\\end{document} -> (" Body", {"title": "A"})
    """
    meta: dict[str, str] = {}
    for key in ("title", "author", "date"):
        m = re.search(r"\\" + key + r"(?![A-Za-z])\s*(?:\[[^\]]*\])?", text)
        if not m:
            continue
        grp = read_group(text, m.end())
        if grp is None:
            continue
        meta[key] = grp[0].strip()
        text = text[: m.start()] + text[grp[1] :]

    begin = text.find("\\begin{document}")
    if begin != -1:
        text = text[begin + len("\\begin{document}") :]
    end = text.rfind("\\end{document}")
    if end != -1:
        text = text[:end]
    text = re.sub(r"\\maketitle(?![A-Za-z])", "", text)
    if "date" in meta and "\\today" in meta["date"]:
        meta["date"] = meta["date"].replace("\\today", today_string())
    return text, meta


def render_metadata(meta: dict[str, str]) -> str:
    if not meta.get("title") and not meta.get("author"):
        return ""
    parts = ['<div class="latex-metadata">']
    if meta.get("title"):
        parts.append(f'<h1 class="title">{format_inline(meta["title"])}</h1>')
    if meta.get("author"):
        authors = re.split(r"\\and(?![A-Za-z])", meta["author"])
        parts.append('<div class="author">' + ", ".join(format_inline(a) for a in authors if a.strip()) + "</div>")
    if meta.get("date"):
        parts.append(f'<div class="date">{format_inline(meta["date"])}</div>')
    parts.append("</div>")
    return "".join(parts)


def _paragraphs(text: str, ctx: RunContext) -> list[ContentFragment]:
    frags: list[ContentFragment] = []
    for para in re.split(r"\n\s*\n", text):
        para = para.strip()
        if not para:
            continue
        if ctx.registry.is_block_token(para):
            frags.append(ContentFragment(kind="block", html=para))
            continue
        html = format_inline(para)
        if html:
            frags.append(ContentFragment(kind="paragraph", html=f"<p>{html}</p>"))
    return frags


def assemble(text: str, ctx: RunContext) -> list[ContentFragment]:
    """Split the remaining text into heading, paragraph and block fragments."""
    frags: list[ContentFragment] = []
    pos = 0
    run_in: Optional[str] = None
    while True:
        m = _SECTION_RE.search(text, pos)
        if m is None:
            break
        grp = read_group(text, m.end())
        if grp is None:
            pos = m.end()
            continue
        before = text[pos : m.start()]
        if run_in is not None:
            before = run_in + " " + before.lstrip()
            run_in = None
        frags.extend(_paragraphs(before, ctx))
        title = format_inline(grp[0])
        if m.group(1) == "paragraph":
            # Run-in heading: glued to the start of the next paragraph.
            run_in = f"\\textbf{{{grp[0].strip()}}}"
        else:
            tag = _HEADING_TAGS[m.group(1)]
            frags.append(ContentFragment(kind="heading", html=f"<{tag}>{title}</{tag}>"))
        pos = grp[1]
    tail = text[pos:]
    if run_in is not None:
        tail = run_in + " " + tail.lstrip()
    frags.extend(_paragraphs(tail, ctx))
    return frags
