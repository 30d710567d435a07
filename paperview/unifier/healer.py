from __future__ import annotations

import logging
import re

from .formatting import DROPPED_WITH_ARG, replace_command

logger = logging.getLogger(__name__)

_FENCE_OPEN_RE = re.compile(r"\A\s*```(?:latex|tex)?[ \t]*\r?\n?", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"\r?\n?```\s*\Z")

# A literal backslash-n that is not the start of a command (\newline, \nabla, \node ...).
_LITERAL_NEWLINE_RE = re.compile(r"(?<!\\)\\n(?![A-Za-z])")

_GHOST_REFS_RE = re.compile(
    r"^[ \t]*\\(?:sub)?section\*?\{\s*(?:References|Bibliography|Works\s+Cited)\s*\}[ \t]*\r?\n?",
    re.IGNORECASE | re.MULTILINE,
)
_DUP_HEADING_RE = re.compile(r"(\\(section|subsection|subsubsection)\*?\{([^{}\n]*)\})\s*\\\2\*?\{\3\}")

_MATH_OP_MERGE_RE = re.compile(r"(?<![\\$])\$([^$\n]+)\$[ \t]*([=+\-])[ \t]*\$([^$\n]+)\$(?!\$)")
_ORPHAN_SCRIPT_SIMPLE_RE = re.compile(r"(?<![\\$])\$([^$\n]+)\$([_^])([A-Za-z0-9]+)")
_ORPHAN_SCRIPT_GROUP_RE = re.compile(r"(?<![\\$])\$([^$\n]+)\$([_^])\s*\{([^{}\n]*)\}")

_CLUTTER_RE = re.compile(
    r"\\(?:tableofcontents|listoffigures|listoftables|newpage|clearpage|cleardoublepage|pagebreak|noindent|"
    r"FloatBarrier|centering)\b"
    r"|\\(?:vspace|hspace|input|include)\*?\{[^{}]*\}"
)


def _strip_wrapper_fences(text: str) -> str:
    m = _FENCE_OPEN_RE.match(text)
    if not m:
        return text
    text = text[m.end():]
    return _FENCE_CLOSE_RE.sub("", text)


def _fix_literal_newlines(text: str) -> str:
    return _LITERAL_NEWLINE_RE.sub("\n", text)


def _drop_duplicate_headings(text: str) -> str:
    text = _GHOST_REFS_RE.sub("", text)
    prev = None
    while prev != text:
        prev = text
        text = _DUP_HEADING_RE.sub(r"\1", text)
    return text


def _strip_redundant_dollars(text: str) -> str:
    def _clean(open_d: str, close_d: str):
        def _repl(m: re.Match) -> str:
            return open_d + re.sub(r"(?<!\\)\$", "", m.group(1)) + close_d
        return _repl

    text = re.sub(r"\\\[((?:(?!\n\s*\n)[\s\S])*?)\\\]", _clean("\\[", "\\]"), text)
    text = re.sub(r"\\\(((?:(?!\n\s*\n)[\s\S])*?)\\\)", _clean("\\(", "\\)"), text)
    return text


def _merge_math_fragments(text: str, max_passes: int) -> str:
    # `$a$ = $b$ + $c$` needs two rounds; loop to a fixpoint so healing stays idempotent.
    for _ in range(max_passes):
        merged = _MATH_OP_MERGE_RE.sub(lambda m: f"${m.group(1)} {m.group(2)} {m.group(3)}$", text)
        if merged == text:
            break
        text = merged
    return text


def _attach_orphan_scripts(text: str) -> str:
    text = _ORPHAN_SCRIPT_GROUP_RE.sub(lambda m: f"${m.group(1)}{m.group(2)}{{{m.group(3)}}}$", text)
    text = _ORPHAN_SCRIPT_SIMPLE_RE.sub(lambda m: f"${m.group(1)}{m.group(2)}{{{m.group(3)}}}$", text)
    return text


def _strip_clutter(text: str) -> str:
    return _CLUTTER_RE.sub("", text)


def _strip_dropped_commands(text: str) -> str:
    # Removed before extraction so no payload is ever created inside a discarded argument.
    for name in DROPPED_WITH_ARG:
        text = replace_command(text, name, lambda a: "")
    return text


def heal(text: str, max_passes: int = 10) -> str:
    """
    Normalize common generation mistakes before anything is extracted.

    Example:
        ```latex
        $\\theta$_t = ... $a$ = $b$
        ```
    becomes `$\\theta_{t}$ = ... $a = b$`. `heal(heal(x)) == heal(x)`.
    """
    if not text:
        return ""
    out = text.replace("\r\n", "\n")
    # Passes feed each other, e.g. clutter between twin headings; run to a fixpoint.
    for _ in range(max_passes):
        prev = out
        out = _strip_wrapper_fences(out)
        out = _fix_literal_newlines(out)
        out = _strip_clutter(out)
        out = _strip_dropped_commands(out)
        out = _drop_duplicate_headings(out)
        out = _strip_redundant_dollars(out)
        out = _attach_orphan_scripts(out)
        out = _merge_math_fragments(out, max_passes)
        if out == prev:
            break
    if out != text:
        logger.debug("healer changed %d -> %d chars", len(text), len(out))
    return out
