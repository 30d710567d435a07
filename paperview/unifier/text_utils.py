from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

ENV_MARKER_RE = re.compile(r"\\(begin|end)\s*\{([A-Za-z@]+\*?)\}")

# Units CSS understands directly; bp (big point) is close enough to pt.
_CSS_UNITS = {"cm": "cm", "mm": "mm", "in": "in", "pt": "pt", "bp": "pt", "em": "em", "ex": "ex", "px": "px", "pc": "pc"}
_CONTAINER_WIDTHS = ("textwidth", "linewidth", "columnwidth", "hsize", "paperwidth")


@dataclass
class EnvMatch:
    name: str
    start: int
    body_start: int
    body_end: int
    end: int


def escape_html(s: str) -> str:
    if not s:
        return ""
    return s.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;").replace('"', "&quot;")


def escape_attr(s: str) -> str:
    return escape_html(s).replace("'", "&#39;")


def is_escaped(text: str, idx: int) -> bool:
    """True when text[idx] is preceded by an odd number of backslashes."""
    n = 0
    j = idx - 1
    while j >= 0 and text[j] == "\\":
        n += 1
        j -= 1
    return n % 2 == 1


def find_balanced_close(text: str, open_idx: int, open_ch: str = "{", close_ch: str = "}") -> int:
    """
    Return the index of the delimiter closing text[open_idx], or -1.

    Escaped delimiters (\\{ or \\]) do not count. Braces nested inside a
    bracket group are tracked too, so `[label={a]b}]` closes at the last `]`.
    """
    if open_idx < 0 or open_idx >= len(text) or text[open_idx] != open_ch:
        return -1
    depth = 0
    brace = 0
    i = open_idx
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if open_ch != "{":
            if ch == "{":
                brace += 1
            elif ch == "}" and brace > 0:
                brace -= 1
        if brace == 0 or open_ch == "{":
            if ch == open_ch:
                depth += 1
            elif ch == close_ch:
                depth -= 1
                if depth == 0:
                    return i
        i += 1
    return -1


def skip_ws(text: str, pos: int) -> int:
    n = len(text)
    while pos < n and text[pos] in " \t\r\n":
        pos += 1
    return pos


def read_group(text: str, pos: int) -> Optional[tuple[str, int]]:
    """Read a `{...}` argument at pos (after whitespace). Returns (content, end_pos)."""
    p = skip_ws(text, pos)
    if p >= len(text) or text[p] != "{":
        return None
    close = find_balanced_close(text, p)
    if close < 0:
        return None
    return text[p + 1 : close], close + 1


def read_optional(text: str, pos: int) -> tuple[Optional[str], int]:
    """Read an optional `[...]` argument. Returns (content or None, end_pos)."""
    p = skip_ws(text, pos)
    if p >= len(text) or text[p] != "[":
        return None, pos
    close = find_balanced_close(text, p, "[", "]")
    if close < 0:
        return None, pos
    return text[p + 1 : close], close + 1


def find_environment_close(text: str, body_start: int, family: Iterable[str]) -> Optional[re.Match]:
    """
    Find the `\\end{..}` closing an environment whose body starts at body_start.

    Any opening marker of the same family increments depth before a closing
    marker is accepted, so a nested child never ends its parent early.
    """
    names = set(family)
    depth = 0
    for m in ENV_MARKER_RE.finditer(text, body_start):
        if m.group(2) not in names:
            continue
        if m.group(1) == "begin":
            depth += 1
            continue
        if depth == 0:
            return m
        depth -= 1
    return None


def iter_environments(text: str, names: Iterable[str], family: Optional[Iterable[str]] = None) -> Iterator[EnvMatch]:
    """Yield top-level, properly closed environments named in `names`.

    Unclosed environments are skipped and left in place.
    """
    wanted = set(names)
    fam = set(family) if family is not None else wanted
    pos = 0
    while True:
        m = ENV_MARKER_RE.search(text, pos)
        if m is None:
            return
        if m.group(1) != "begin" or m.group(2) not in wanted:
            pos = m.end()
            continue
        close = find_environment_close(text, m.end(), fam)
        if close is None:
            pos = m.end()
            continue
        yield EnvMatch(name=m.group(2), start=m.start(), body_start=m.end(), body_end=close.start(), end=close.end())
        pos = close.end()


def split_top_level(s: str, sep: str = ",") -> list[str]:
    """Split on `sep` outside braces, brackets and double-quoted strings."""
    parts: list[str] = []
    buf: list[str] = []
    depth = 0
    in_quote = False
    i = 0
    while i < len(s):
        ch = s[i]
        if ch == "\\" and i + 1 < len(s):
            buf.append(s[i : i + 2])
            i += 2
            continue
        if ch == '"':
            in_quote = not in_quote
        elif not in_quote:
            if ch in "{[(":
                depth += 1
            elif ch in "}])" and depth > 0:
                depth -= 1
            elif ch == sep and depth == 0:
                parts.append("".join(buf))
                buf = []
                i += 1
                continue
        buf.append(ch)
        i += 1
    parts.append("".join(buf))
    return parts


def css_width(spec: str) -> str:
    """
    Convert a LaTeX width argument into a CSS width.

    Example:
        0.5\\textwidth -> 50%
        \\linewidth    -> 100%
        4cm           -> 4cm
    """
    s = (spec or "").strip().replace(" ", "")
    m = re.fullmatch(r"(-?\d*\.?\d*)\\(" + "|".join(_CONTAINER_WIDTHS) + r")", s)
    if m:
        factor_raw = m.group(1)
        try:
            factor = float(factor_raw) if factor_raw not in ("", "-", ".") else 1.0
        except ValueError:
            factor = 1.0
        pct = max(0.0, min(100.0, factor * 100.0))
        return f"{pct:g}%"
    m = re.fullmatch(r"(\d*\.?\d+)([a-z]{2})", s)
    if m and m.group(2) in _CSS_UNITS:
        return f"{float(m.group(1)):g}{_CSS_UNITS[m.group(2)]}"
    return "100%"


def css_color(name: str) -> str:
    """Leading `#?[A-Za-z0-9]+` of a color argument; `red!20` gives `red`."""
    m = re.match(r"#?[A-Za-z0-9]+", (name or "").strip())
    return m.group(0) if m else "currentColor"


def fmt_num(v: float) -> str:
    """Compact decimal formatting for generated LaTeX options."""
    out = f"{v:.4f}".rstrip("0").rstrip(".")
    return out if out not in ("", "-0") else "0"


_PCT_SENTINEL = "\ue010"


def strip_comments(text: str) -> str:
    """
    Drop `%` comments, keeping escaped `\\%`.

    The escaped form is swapped for a sentinel first, stripped text is scanned,
    then the sentinel is swapped back. Lines that held only a comment vanish
    instead of turning into paragraph breaks.
    """
    if "%" not in (text or ""):
        return text or ""
    protected = text.replace("\\%", _PCT_SENTINEL)
    out: list[str] = []
    for line in protected.split("\n"):
        idx = line.find("%")
        if idx < 0:
            out.append(line)
            continue
        kept = line[:idx].rstrip()
        if not kept and line.strip().startswith("%"):
            continue
        out.append(kept)
    return "\n".join(out).replace(_PCT_SENTINEL, "\\%")
