from paperview.unifier.blocks import assemble, extract_metadata, render_metadata
from paperview.unifier.config import UnifierConfig
from paperview.unifier.formatting import today_string
from paperview.unifier.registry import PlaceholderRegistry, RunContext
from paperview.unifier.structure import StructuralParser


def _parser():
    ctx = RunContext(config=UnifierConfig(), registry=PlaceholderRegistry(nonce="T"))
    return StructuralParser(ctx)


def test_metadata_and_preamble():
    src = r"\documentclass{article}\title{T}\author{A \and B}\date{\today}\begin{document}\maketitle Body\end{document}"
    text, meta = extract_metadata(src)
    assert text.strip() == "Body"
    assert meta["title"] == "T"
    assert meta["date"] == today_string()
    html = render_metadata(meta)
    assert '<h1 class="title">T</h1>' in html
    assert '<div class="author">A, B</div>' in html


def test_sections_and_paragraphs():
    parser = _parser()
    frags = assemble("\\section{Intro}\nHello\n\n\\subsection*{Sub}\nWorld", parser.ctx)
    assert [(f.kind, f.html) for f in frags] == [
        ("heading", "<h2>Intro</h2>"),
        ("paragraph", "<p>Hello</p>"),
        ("heading", "<h3>Sub</h3>"),
        ("paragraph", "<p>World</p>"),
    ]


def test_run_in_paragraph_heading():
    frags = assemble(r"\paragraph{Note} text here", _parser().ctx)
    assert frags[0].html == "<p><strong>Note</strong> text here</p>"


def test_theorem_and_proof():
    parser = _parser()
    html = parser.ctx.registry.resolve(parser.render_fragment(r"\begin{theorem}[Main] X \end{theorem}", 0))
    assert html == '<div class="theorem"><strong>Theorem (Main).</strong> X</div>'
    html = parser.ctx.registry.resolve(parser.render_fragment(r"\begin{proof} Trivial. \end{proof}", 0))
    assert html.startswith('<div class="proof"><em>Proof.</em> Trivial.')


def test_algorithm_indentation():
    parser = _parser()
    src = r"\begin{algorithmic}\STATE x \IF{c} \STATE y \ENDIF\end{algorithmic}"
    html = parser.ctx.registry.resolve(parser.render_fragment(src, 0))
    assert '<span class="latex-alg-keyword">if</span> c <span class="latex-alg-keyword">then</span>' in html
    assert (
        'padding-left: 1.5em"><span class="latex-alg-lineno">3.</span> <span class="latex-alg-content">y</span>'
    ) in html
    assert '<span class="latex-alg-keyword">end if</span>' in html
