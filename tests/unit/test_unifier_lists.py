from paperview.unifier.config import UnifierConfig
from paperview.unifier.lists import split_items
from paperview.unifier.models import PayloadKind
from paperview.unifier.registry import PlaceholderRegistry, RunContext
from paperview.unifier.structure import StructuralParser


def _parser(**overrides):
    ctx = RunContext(config=UnifierConfig(**overrides), registry=PlaceholderRegistry(nonce="T"))
    return StructuralParser(ctx)


def _render(parser, src):
    return parser.ctx.registry.resolve(parser.render_fragment(src, 0))


def test_third_item_keeps_its_two_children():
    src = r"""
\begin{itemize}
\item A
\item B
\item C
  \begin{itemize}
  \item C1
  \item C2
  \end{itemize}
\end{itemize}
"""
    html = _render(_parser(), src)
    assert html == (
        '<ul class="latex-itemize"><li>A</li><li>B</li>'
        '<li>C\n<ul class="latex-itemize"><li>C1</li><li>C2</li></ul></li></ul>'
    )


def test_five_levels_of_nesting():
    src = "deepest"
    for level in range(5):
        env = "enumerate" if level % 2 else "itemize"
        src = f"\\begin{{{env}}}\n\\item level{level} {src}\n\\item sibling{level}\n\\end{{{env}}}"
    html = _render(_parser(), src)
    assert html.count("<ul") + html.count("<ol") == 5
    assert "deepest" in html
    for level in range(5):
        assert f"<li>sibling{level}</li>" in html


def test_items_of_nested_lists_stay_in_parent():
    body = r"\item one \begin{enumerate}\item x\item y\end{enumerate} \item two"
    items = split_items(body)
    assert [label for label, _ in items] == [None, None]
    assert items[0][1].startswith("one")
    assert items[1][1] == "two"


def test_custom_labels_and_description():
    parser = _parser()
    html = _render(parser, r"\begin{enumerate}\item[(a)] First\end{enumerate}")
    assert '<li class="custom-label" data-label="(a)"><span class="item-label">(a)</span> First</li>' in html
    html = _render(parser, r"\begin{description}\item[Term] Meaning\end{description}")
    assert html == '<dl class="latex-description"><dt>Term</dt><dd>Meaning</dd></dl>'


def test_nesting_past_limit_is_contained():
    parser = _parser(max_nesting_depth=2)
    src = "x"
    for _ in range(5):
        src = f"\\begin{{itemize}}\\item {src}\\end{{itemize}}"
    html = _render(parser, src)
    assert 'data-reason="depth"' in html
    assert parser.ctx.contained >= 1


def test_custom_label_attribute_carries_source_not_markup():
    parser = _parser()
    tok = parser.ctx.register(PayloadKind.MATH, '<span class="math-inline">"a"</span>', source="$\\alpha$", inline=True)
    html = _render(parser, f"\\begin{{enumerate}}\\item[{tok}] First\\end{{enumerate}}")
    assert 'data-label="$\\alpha$"' in html
    assert html.count('class="math-inline"') == 1
    assert parser.ctx.registry.stats().orphaned == 0
