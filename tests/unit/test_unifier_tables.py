from paperview.unifier.config import UnifierConfig
from paperview.unifier.registry import PlaceholderRegistry, RunContext
from paperview.unifier.structure import StructuralParser
from paperview.unifier.tables import parse_column_spec, render_table, split_cells, split_rows


def _parser():
    ctx = RunContext(config=UnifierConfig(), registry=PlaceholderRegistry(nonce="T"))
    return StructuralParser(ctx)


def _table(body):
    parser = _parser()
    return parser.ctx.registry.resolve(render_table("tabular", body, parser, 0))


def test_column_spec():
    assert parse_column_spec("|l|*{2}{c}|p{3cm}@{}") == ["left", "center", "center", "left"]
    assert parse_column_spec("rX") == ["right", "left"]


def test_rows_split_only_on_real_breaks():
    assert split_rows(r"a & b \\ c & d") == ["a & b ", " c & d"]
    # double-escaped command, not a row break
    assert split_rows(r"\\textbf{x} & y \\ z") == [r"\textbf{x} & y ", " z"]
    assert split_rows(r"{a \\ b} & c") == [r"{a \\ b} & c"]


def test_escaped_ampersand_is_not_a_cell_break():
    assert split_cells(r"a \& b & c") == [r"a \& b ", " c"]
    html = _table(r"{ll} Q\&A & x \\")
    assert '<td style="text-align: left;">Q&amp;A</td>' in html


def test_multirow_skips_covered_cell():
    html = _table(r"{|c|c|} \hline \multirow{2}{*}{A} & B \\ & C \\ \hline")
    assert (
        '<tr><td rowspan="2" style="text-align: center;">A</td><td style="text-align: center;">B</td></tr>'
        '<tr><td style="text-align: center;">C</td></tr>'
    ) in html


def test_multicolumn_spans_and_aligns():
    html = _table(r"{lll} \multicolumn{2}{c}{Wide} & x \\ a & b & c \\")
    assert '<td colspan="2" style="text-align: center;">Wide</td><td style="text-align: left;">x</td>' in html
    assert html.count("<td") == 5


def test_list_inside_cell():
    html = _table(r"{l} \begin{itemize}\item one\item two\end{itemize} \\")
    assert '<ul class="latex-itemize"><li>one</li><li>two</li></ul>' in html


def test_nested_tabular_in_cell():
    html = _table(r"{ll} \begin{tabular}{c} x \\ y \end{tabular} & z \\")
    assert html.count("<table") == 2
    assert ">z</td>" in html


def test_empty_body_reports_failure():
    assert "[Table Body - Parse Failed]" in _table(r"{ll} \hline")
