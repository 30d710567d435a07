from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .models import PayloadKind
from .text_utils import iter_environments, read_group, read_optional

if TYPE_CHECKING:
    from .structure import StructuralParser

logger = logging.getLogger(__name__)

TABLE_ENVS = ("tabular", "tabular*", "tabularx", "tabulary", "longtable", "longtable*", "array")
_WIDTH_FIRST = {"tabular*", "tabularx", "tabulary"}

_RULES_RE = re.compile(
    r"\\(?:hline|toprule|midrule|bottomrule|endhead|endfirsthead|endfoot|endlastfoot)(?![A-Za-z])"
    r"|\\cline\s*\{[^{}]*\}"
    r"|\\cmidrule\s*(?:\([^)]*\))?\s*\{[^{}]*\}"
    r"|\\(?:addlinespace|morecmidrules)(?:\[[^\]]*\])?"
)
_ALIGN = {"l": "left", "c": "center", "r": "right"}


@dataclass
class Cell:
    content: str
    colspan: int = 1
    rowspan: int = 1
    align: Optional[str] = None


def parse_column_spec(spec: str) -> list[str]:
    """
    Return one alignment per column of a tabular column spec.

    Example:
        |l|*{2}{c}|p{3cm}@{}  -> ["left", "center", "center", "left"]
    """
    cols: list[str] = []
    i = 0
    n = len(spec)
    while i < n:
        ch = spec[i]
        if ch in "lcr":
            cols.append(_ALIGN[ch])
            i += 1
        elif ch in "XLCRJ":
            cols.append(_ALIGN.get(ch.lower(), "left"))
            i += 1
        elif ch in "pmbw":
            grp = read_group(spec, i + 1)
            if ch == "w" and grp is not None:
                # w{align}{width}
                align = grp[0].strip()
                grp2 = read_group(spec, grp[1])
                cols.append(_ALIGN.get(align, "left"))
                i = grp2[1] if grp2 else grp[1]
            else:
                cols.append("left")
                i = grp[1] if grp else i + 1
        elif ch in "@!><":
            grp = read_group(spec, i + 1)
            i = grp[1] if grp else i + 1
        elif ch == "*":
            count = read_group(spec, i + 1)
            inner = read_group(spec, count[1]) if count else None
            if count is None or inner is None:
                i += 1
                continue
            try:
                reps = max(0, min(int(count[0].strip()), 64))
            except ValueError:
                reps = 1
            cols.extend(parse_column_spec(inner[0]) * reps)
            i = inner[1]
        elif ch in "SDd":
            cols.append("center")
            grp = read_group(spec, i + 1)
            i = grp[1] if grp and spec[i + 1 : i + 2] == "{" else i + 1
        else:
            # `|`, whitespace, `\vline` pieces and anything unknown
            i += 1
    return cols


def split_rows(body: str) -> list[str]:
    """
    Split a tabular body on `\\\\` row separators.

    A separator counts only at brace depth 0 and only when followed by end of
    input, whitespace, `[` or another backslash. A `\\\\` glued to letters is a
    double-escaped command (`\\\\textbf`) and is normalized to a single backslash.
    """
    rows: list[str] = []
    buf: list[str] = []
    depth = 0
    i = 0
    n = len(body)
    while i < n:
        ch = body[i]
        if ch == "\\" and i + 1 < n:
            nxt = body[i + 1]
            if nxt == "\\":
                after = body[i + 2] if i + 2 < n else ""
                if depth == 0 and (after == "" or after.isspace() or after in "[\\"):
                    rows.append("".join(buf))
                    buf = []
                    i += 2
                    _, i = read_optional(body, i) if after == "[" else (None, i)
                    continue
                if after.isalpha():
                    buf.append("\\")
                    i += 2
                    continue
                buf.append("\\\\")
                i += 2
                continue
            buf.append(body[i : i + 2])
            i += 2
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth = max(0, depth - 1)
        buf.append(ch)
        i += 1
    rows.append("".join(buf))
    return rows


def split_cells(row: str) -> list[str]:
    """Split a row on `&` at brace depth 0; `\\&` stays literal."""
    cells: list[str] = []
    buf: list[str] = []
    depth = 0
    i = 0
    while i < len(row):
        ch = row[i]
        if ch == "\\" and i + 1 < len(row):
            buf.append(row[i : i + 2])
            i += 2
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth = max(0, depth - 1)
        elif ch == "&" and depth == 0:
            cells.append("".join(buf))
            buf = []
            i += 1
            continue
        buf.append(ch)
        i += 1
    cells.append("".join(buf))
    return cells


def _leading_command(text: str, name: str) -> Optional[tuple[list[str], str]]:
    """Match `\\name{a}{b}{c}` at the start of a cell. Returns (args, trailing)."""
    m = re.match(r"\s*\\" + name + r"(?![A-Za-z])", text)
    if not m:
        return None
    p = m.end()
    opt, p = read_optional(text, p)
    args: list[str] = []
    for _ in range(3):
        grp = read_group(text, p)
        if grp is None:
            return None
        args.append(grp[0])
        p = grp[1]
        if name == "multirow" and len(args) == 1:
            # \multirow[pos]{n}[bigstruts]{width}[fixup]{text}
            _, p = read_optional(text, p)
    return args, text[p:]


def parse_cell(raw: str, col_aligns: list[str], col: int) -> Cell:
    cell = Cell(content=raw.strip())
    mc = _leading_command(cell.content, "multicolumn")
    if mc is not None:
        (n_raw, spec, content), _ = mc
        try:
            cell.colspan = max(1, int(n_raw.strip()))
        except ValueError:
            cell.colspan = 1
        aligns = parse_column_spec(spec)
        cell.align = aligns[0] if aligns else None
        cell.content = content.strip()
    mr = _leading_command(cell.content, "multirow")
    if mr is not None:
        (n_raw, _width, content), _ = mr
        try:
            cell.rowspan = max(1, int(n_raw.strip()))
        except ValueError:
            cell.rowspan = 1
        cell.content = content.strip()
    if cell.align is None and col < len(col_aligns):
        cell.align = col_aligns[col]
    return cell


def _is_placeholder(raw: str) -> bool:
    mc = _leading_command(raw, "multicolumn")
    body = mc[0][2] if mc else raw
    return not body.strip()


def build_grid(rows: list[str], col_aligns: list[str]) -> list[list[tuple[int, Cell]]]:
    """
    Turn raw rows into (column, Cell) lists, honouring row spans.

    `active` maps a starting column to (rows still covered, colspan). When a
    row reaches a covered column, the empty placeholder cell the author left
    there is consumed and the column is skipped.
    """
    grid: list[list[tuple[int, Cell]]] = []
    active: dict[int, list[int]] = {}
    for raw_row in rows:
        cells = split_cells(raw_row)
        out: list[tuple[int, Cell]] = []
        col = 0
        i = 0
        opened: set[int] = set()
        while i < len(cells) or col in active:
            cover = active.get(col)
            if cover is not None and col not in opened:
                if i < len(cells) and _is_placeholder(cells[i]):
                    i += 1
                col += cover[1]
                continue
            if i >= len(cells):
                break
            cell = parse_cell(cells[i], col_aligns, col)
            i += 1
            out.append((col, cell))
            if cell.rowspan > 1:
                active[col] = [cell.rowspan - 1, cell.colspan]
                opened.add(col)
            col += cell.colspan
        for start in list(active):
            if start in opened:
                continue
            active[start][0] -= 1
            if active[start][0] <= 0:
                del active[start]
        grid.append(out)
    return grid


def _clean_body(body: str) -> tuple[str, Optional[str]]:
    caption = None
    m = re.search(r"\\caption(?![A-Za-z])\s*(?:\[[^\]]*\])?", body)
    if m:
        grp = read_group(body, m.end())
        if grp is not None:
            caption = grp[0].strip()
            body = body[: m.start()] + body[grp[1] :]
    body = _RULES_RE.sub("", body)
    body = re.sub(r"\\tabularnewline(?![A-Za-z])", lambda _m: "\\\\ ", body)
    return body, caption


def render_table(name: str, after_begin: str, parser: StructuralParser, depth: int) -> str:
    """Render the text following `\\begin{name}` up to its `\\end` as HTML."""
    _, p = read_optional(after_begin, 0)
    if name in _WIDTH_FIRST:
        grp = read_group(after_begin, p)
        p = grp[1] if grp else p
    spec_grp = read_group(after_begin, p)
    spec = spec_grp[0] if spec_grp else ""
    body = after_begin[spec_grp[1] :] if spec_grp else after_begin[p:]
    col_aligns = parse_column_spec(spec)

    # Inner tabulars carry their own `\\\\` and `&`, so finish them first.
    body = render_tables(body, parser, depth + 1)
    body, caption = _clean_body(body)
    rows = [r for r in split_rows(body) if r.strip()]
    grid = build_grid(rows, col_aligns)

    if not any(cell.content for row in grid for _, cell in row):
        logger.info("table body produced no cells")
        return '<div class="table-parse-failed">[Table Body - Parse Failed]</div>'

    html_rows = []
    for row in grid:
        tds = []
        for _, cell in row:
            attrs = ""
            if cell.colspan > 1:
                attrs += f' colspan="{cell.colspan}"'
            if cell.rowspan > 1:
                attrs += f' rowspan="{cell.rowspan}"'
            if cell.align:
                attrs += f' style="text-align: {cell.align};"'
            tds.append(f"<td{attrs}>{parser.render_fragment(cell.content, depth + 1)}</td>")
        html_rows.append("<tr>" + "".join(tds) + "</tr>")
    html = '<div class="latex-table-wrap"><table class="latex-table"><tbody>' + "".join(html_rows) + "</tbody></table></div>"
    if caption:
        html += f'<div class="table-caption"><strong>Table:</strong> {parser.render_fragment(caption, depth + 1)}</div>'
    return html


def render_tables(text: str, parser: StructuralParser, depth: int) -> str:
    out: list[str] = []
    pos = 0
    for env in iter_environments(text, TABLE_ENVS):
        out.append(text[pos : env.start])
        html = render_table(env.name, text[env.body_start : env.body_end], parser, depth)
        out.append(parser.ctx.block(PayloadKind.TABLE, html, source=text[env.start : env.end]))
        pos = env.end
    if not out:
        return text
    out.append(text[pos:])
    return "".join(out)
