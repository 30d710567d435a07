from __future__ import annotations

import datetime as _dt
import logging
import re
from typing import Callable

from .text_utils import css_color, escape_html, find_balanced_close, read_optional

logger = logging.getLogger(__name__)

# Private-use sentinels keep escaped LaTeX specials out of the way of the
# brace and command passes below.
_ESCAPES = {
    "\\%": "\ue000",
    "\\&": "\ue001",
    "\\#": "\ue002",
    "\\_": "\ue003",
    "\\$": "\ue004",
    "\\{": "\ue005",
    "\\}": "\ue006",
    "\\textbackslash{}": "\ue007",
    "\\textbackslash": "\ue007",
}
_RESTORE = {
    "\ue000": "%",
    "\ue001": "&amp;",
    "\ue002": "#",
    "\ue003": "_",
    "\ue004": "$",
    "\ue005": "{",
    "\ue006": "}",
    "\ue007": "\\",
}

_SYMBOLS = {
    "bullet": "\u2022",
    "times": "\u00d7",
    "checkmark": "\u2713",
    "approx": "\u2248",
    "ldots": "\u2026",
    "dots": "\u2026",
    "cdots": "\u22ef",
    "S": "\u00a7",
    "P": "\u00b6",
    "copyright": "\u00a9",
    "dag": "\u2020",
    "ddag": "\u2021",
    "pounds": "\u00a3",
    "euro": "\u20ac",
    "textregistered": "\u00ae",
    "texttrademark": "\u2122",
    "rightarrow": "\u2192",
    "leftarrow": "\u2190",
    "LaTeX": "LaTeX",
    "TeX": "TeX",
    "quad": "\u2003",
    "qquad": "\u2003\u2003",
}

_SIMPLE_WRAPPERS = {
    "textbf": ("<strong>", "</strong>"),
    "textit": ("<em>", "</em>"),
    "emph": ("<em>", "</em>"),
    "textsl": ("<em>", "</em>"),
    "underline": ("<u>", "</u>"),
    "uline": ("<u>", "</u>"),
    "texttt": ("<code>", "</code>"),
    "textsc": ('<span style="font-variant: small-caps;">', "</span>"),
    "textsuperscript": ("<sup>", "</sup>"),
    "textsubscript": ("<sub>", "</sub>"),
    "footnote": ('<span class="footnote">(', ")</span>"),
    "textrm": ("", ""),
    "textsf": ("", ""),
    "textnormal": ("", ""),
    "mbox": ("", ""),
    "text": ("", ""),
}

DROPPED_WITH_ARG = ("label", "index", "hypertarget", "pagestyle", "thispagestyle", "bibliographystyle", "bibliography")


def today_string() -> str:
    d = _dt.date.today()
    return f"{d.strftime('%B')} {d.day}, {d.year}"


def replace_command(text: str, name: str, render: Callable[[list[str]], str], nargs: int = 1) -> str:
    """
    Replace `\\name[opt]{a}{b}` with render([a, b]) using brace-depth parsing.

    Occurrences with missing arguments are left alone.
    """
    pattern = re.compile(r"\\" + re.escape(name) + r"(?![A-Za-z])\*?")
    pos = 0
    while True:
        m = pattern.search(text, pos)
        if m is None:
            return text
        _, p = read_optional(text, m.end())
        args: list[str] = []
        ok = True
        for _ in range(nargs):
            while p < len(text) and text[p] in " \t":
                p += 1
            if p >= len(text) or text[p] != "{":
                ok = False
                break
            close = find_balanced_close(text, p)
            if close < 0:
                ok = False
                break
            args.append(text[p + 1 : close])
            p = close + 1
        if not ok:
            pos = m.end()
            continue
        repl = render(args)
        text = text[: m.start()] + repl + text[p:]
        # Rescan from the same spot so a nested `\\name` inside the argument is found.
        pos = m.start()


def protect_escapes(text: str) -> str:
    for k, v in _ESCAPES.items():
        text = text.replace(k, v)
    return text


def restore_escapes(text: str) -> str:
    for k, v in _RESTORE.items():
        text = text.replace(k, v)
    return text


def _typography(text: str) -> str:
    text = text.replace("---", "\u2014").replace("--", "\u2013")
    text = text.replace("``", "\u201c").replace("''", "\u201d")
    text = re.sub(r"(?<![A-Za-z])`", "\u2018", text)
    return text


def _attr(s: str) -> str:
    # Input is already HTML-escaped except for double quotes.
    return s.strip().replace('"', "&quot;").replace("~", "&#126;")


def _links(text: str) -> str:
    def _url(args: list[str]) -> str:
        url = args[0].strip()
        return f'<a href="{_attr(url)}"><code>{url.replace("~", "&#126;")}</code></a>'

    def _href(args: list[str]) -> str:
        return f'<a href="{_attr(args[0])}">{args[1]}</a>'

    text = replace_command(text, "url", _url)
    text = replace_command(text, "href", _href, nargs=2)
    return text


def _commands(text: str) -> str:
    for name, (open_t, close_t) in _SIMPLE_WRAPPERS.items():
        text = replace_command(text, name, lambda a, o=open_t, c=close_t: f"{o}{a[0]}{c}")
    for name in DROPPED_WITH_ARG:
        text = replace_command(text, name, lambda a: "")
    text = replace_command(text, "ref", lambda a: f'<span class="ref" data-ref="{_attr(a[0])}">[?]</span>')
    text = replace_command(text, "eqref", lambda a: f'<span class="ref" data-ref="{_attr(a[0])}">(?)</span>')
    text = replace_command(text, "textcolor", lambda a: f'<span style="color: {css_color(a[0])};">{a[1]}</span>', nargs=2)
    text = re.sub(r"\\today(?![A-Za-z])", today_string(), text)
    text = re.sub(
        r"\\(" + "|".join(sorted(_SYMBOLS, key=len, reverse=True)) + r")(?![A-Za-z])\s?",
        lambda m: _SYMBOLS[m.group(1)],
        text,
    )
    return text


def _strip_unknown(text: str) -> str:
    def _drop(m: re.Match) -> str:
        logger.debug("dropping unknown command %s", m.group(0))
        return ""

    # Size/style switches and anything else unknown: keep the argument text, drop the macro.
    text = re.sub(r"\\[A-Za-z]+\*?(?:\[[^\]\n]*\])?", _drop, text)
    text = text.replace("{", "").replace("}", "")
    return text


def format_inline(text: str) -> str:
    """
    Turn a run of LaTeX text into HTML.

    Placeholder tokens are plain alphanumerics and pass through untouched.
    """
    if not text:
        return ""
    out = protect_escapes(text)
    out = escape_html(out).replace("&quot;", '"')
    out = _links(out)
    out = _typography(out)
    out = _commands(out)
    out = re.sub(r"\\\\(?:\[[^\]]*\])?", "<br/>", out)
    out = re.sub(r"\\(?:newline|linebreak)(?![A-Za-z])", "<br/>", out)
    out = re.sub(r"(?<!\\)~", "\u00a0", out)
    out = re.sub(r"\\[,;: ]", " ", out)
    out = re.sub(r"\\['`^\"=.]\{?([A-Za-z])\}?", r"\1", out)
    out = _strip_unknown(out)
    out = restore_escapes(out)
    return out.strip()
