from paperview.unifier.config import UnifierConfig
from paperview.unifier.diagrams import DiagramEngine
from paperview.unifier.extractor import DelimiterGrammar, EnvironmentGrammar, Extractor
from paperview.unifier.math_engine import MathEngine
from paperview.unifier.models import BibliographyEntry, DiagramIntent, PayloadKind
from paperview.unifier.registry import PlaceholderRegistry, RunContext
from paperview.unifier.sandbox import SandboxRenderer
from paperview.unifier.structure import StructuralParser


def _extractor(catalog=None):
    cfg = UnifierConfig()
    ctx = RunContext(config=cfg, registry=PlaceholderRegistry(nonce="T"), catalog=list(catalog or []))
    parser = StructuralParser(ctx)
    ex = Extractor(ctx, parser, DiagramEngine(cfg.layout, SandboxRenderer()), MathEngine())
    parser.cite_hook = ex.extract_citations
    return ex


def test_dollar_grammar_skips_escaped_and_unmatched():
    grammar = DelimiterGrammar("$", "$", single_paragraph=True)
    spans = list(grammar.scan(r"cost \$5 and $x$"))
    assert [s.groups["body"] for s in spans] == ["x"]
    assert list(grammar.scan("a $x\n\nb$ c")) == []
    assert list(DelimiterGrammar("\\[", "\\]").scan(r"row \\[2pt] next")) == []


def test_environment_grammar_yields_closed_only():
    spans = list(EnvironmentGrammar(("verbatim",)).scan(r"\begin{verbatim}a\end{verbatim} \begin{verbatim}b"))
    assert [s.groups["body"] for s in spans] == ["a"]


def test_code_shields_math_and_comments():
    ex = _extractor()
    out = ex.run("\\begin{verbatim}$x$ % keep\\end{verbatim}\nand $y$ here % dropped\n")
    code = ex.ctx.registry.payloads(PayloadKind.CODE)
    assert len(code) == 1
    assert "$x$ % keep" in code[0].markup
    assert len(ex.ctx.registry.payloads(PayloadKind.MATH)) == 1
    assert "dropped" not in out


def test_code_variants():
    ex = _extractor()
    ex.run("\\begin{lstlisting}[language=Python]\nprint(1)\n\\end{lstlisting}\nInline \\verb|a<b| here")
    markups = [p.markup for p in ex.ctx.registry.payloads(PayloadKind.CODE)]
    assert markups[0] == '<pre class="latex-verbatim"><code class="language-python">print(1)</code></pre>'
    assert markups[1] == "<code>a&lt;b</code>"


def test_display_math_is_block_and_inline_math_is_not():
    ex = _extractor()
    out = ex.run(r"before \[ a+b \] after \(c\) end")
    display, inline = ex.ctx.registry.payloads(PayloadKind.MATH)
    assert f"\n\n{display.token}\n\n" in out
    assert f"after {inline.token} end" in out


def test_figures_are_numbered_with_captions():
    ex = _extractor()
    src = (
        "\\begin{figure}[h]\\centering\\includegraphics[width=3cm]{a.png}\\caption{First}\\label{f1}\\end{figure}\n"
        "\\begin{figure}\\includegraphics{b.png}\\caption{Second}\\end{figure}\n"
        "\\begin{table}\\caption{Results}\\begin{tabular}{l} x \\\\ \\end{tabular}\\end{table}"
    )
    html = ex.ctx.registry.resolve(ex.run(src))
    assert "[Image: a.png]" in html
    assert "<strong>Figure 1:</strong> First" in html
    assert "<strong>Figure 2:</strong> Second" in html
    assert '<div class="table-caption"><strong>Table 1:</strong> Results</div>' in html
    assert "f1" not in html


def test_citations_inside_table_cells_are_tokenized():
    ex = _extractor(catalog=[BibliographyEntry(key="ref_1")])
    ex.run(r"\begin{tabular}{l} shown (ref_1) \\ \end{tabular}")
    cites = ex.ctx.registry.payloads(PayloadKind.CITATION)
    assert [c.source for c in cites] == [r"\cite{ref_1}"]


def test_bibliography_feeds_catalog():
    ex = _extractor()
    out = ex.run("See (ref_k).\n\n\\begin{thebibliography}{9}\\bibitem{ref_k} K.\\end{thebibliography}")
    assert [e.key for e in ex.ctx.catalog] == ["ref_k"]
    assert len(ex.ctx.registry.payloads(PayloadKind.BIBLIOGRAPHY)) == 1
    assert len(ex.ctx.registry.payloads(PayloadKind.CITATION)) == 1
    assert "ref_k" not in out


def test_diagrams_go_first_and_keep_their_token():
    ex = _extractor()
    out = ex.run("\\begin{tikzpicture}\n\\draw (0,0) -- (20,0); % $not math$\n\\end{tikzpicture}")
    assert len(ex.ctx.diagrams) == 1
    diagram = ex.ctx.diagrams[0]
    assert diagram.intent == DiagramIntent.WIDE
    assert diagram.token and diagram.token in out
    assert ex.ctx.registry.payloads(PayloadKind.MATH) == []


def test_url_targets_survive_comment_stripping():
    ex = _extractor()
    out = ex.run("See \\url{https://example.com/a%20b} now. \\href{https://x.org/?q=1%2B2}{the docs} too. % gone\n")
    assert "now." in out and "too." in out
    assert "gone" not in out
    links = ex.ctx.registry.payloads(PayloadKind.LINK)
    assert len(links) == 2
    assert links[0].markup == '<a href="https://example.com/a%20b"><code>https://example.com/a%20b</code></a>'
    assert links[1].markup == "https://x.org/?q=1%2B2"
    assert "\\href{" + links[1].token + "}{the docs}" in out
