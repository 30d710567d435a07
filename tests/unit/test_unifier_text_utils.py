from paperview.unifier.text_utils import (
    css_width,
    find_environment_close,
    fmt_num,
    iter_environments,
    read_group,
    read_optional,
    split_top_level,
    strip_comments,
)


def test_css_width_relative_and_absolute():
    assert css_width(r"0.5\textwidth") == "50%"
    assert css_width(r"\linewidth") == "100%"
    assert css_width(r"0.3\linewidth") == "30%"
    assert css_width("3cm") == "3cm"
    assert css_width("12bp") == "12pt"
    assert css_width(r"\foo") == "100%"


def test_same_family_nesting_does_not_close_parent_early():
    text = r"\begin{itemize}\item a \begin{enumerate}\item b\end{enumerate}\item c\end{itemize} tail"
    body_start = len(r"\begin{itemize}")
    close = find_environment_close(text, body_start, ("itemize", "enumerate", "description"))
    assert close is not None
    assert text[close.start() :].startswith(r"\end{itemize}")


def test_iter_environments_skips_unclosed():
    text = r"\begin{center}open \begin{quote}q\end{quote}"
    found = list(iter_environments(text, ("center", "quote")))
    assert [e.name for e in found] == ["quote"]


def test_read_group_and_optional():
    assert read_group("  {a{b}c} rest", 0) == ("a{b}c", 9)
    assert read_group("no group", 0) is None
    assert read_optional("[x]{y}", 0) == ("x", 3)
    assert read_optional("{y}", 0) == (None, 0)


def test_strip_comments_keeps_escaped_percent():
    src = "50\\% of it % a comment\n% whole line\nnext"
    assert strip_comments(src) == "50\\% of it\nnext"


def test_split_top_level_respects_groups():
    assert split_top_level("a, b={c, d}, e[f, g]") == ["a", " b={c, d}", " e[f, g]"]


def test_fmt_num_is_compact():
    assert fmt_num(1.0) == "1"
    assert fmt_num(0.7875) == "0.7875"
    assert fmt_num(-0.0) == "0"
