from paperview.unifier.config import UnifierConfig
from paperview.unifier.registry import PlaceholderRegistry, RunContext
from paperview.unifier.structure import StructuralParser


def _render(src):
    ctx = RunContext(config=UnifierConfig(), registry=PlaceholderRegistry(nonce="T"))
    parser = StructuralParser(ctx)
    return ctx.registry.resolve(parser.render_fragment(src, 0))


def test_parbox_width_follows_argument():
    html = _render(r"\parbox{0.5\textwidth}{Hello}")
    assert html == '<div class="parbox" style="width: 50%; display: inline-block; vertical-align: top;">Hello</div>'


def test_parbox_with_position_and_absolute_width():
    html = _render(r"\parbox[t]{3cm}{Top}")
    assert 'style="width: 3cm;' in html
    assert ">Top</div>" in html


def test_minipages_sit_side_by_side():
    html = _render(r"\begin{minipage}{0.3\linewidth} A \end{minipage}\begin{minipage}{0.6\linewidth} B \end{minipage}")
    assert 'class="minipage" style="width: 30%;' in html
    assert 'class="minipage" style="width: 60%;' in html
    assert html.index("A") < html.index("B")


def test_frames_and_colors():
    assert 'class="latex-fbox"' in _render(r"\fbox{x}")
    assert "background: yellow;" in _render(r"\colorbox{yellow}{hi}")
    html = _render(r"\fcolorbox{red}{white}{hi}")
    assert "border: 1px solid red;" in html and "background: white;" in html


def test_box_inside_box():
    html = _render(r"\fbox{\parbox{2cm}{in}}")
    assert html.index('class="latex-fbox"') < html.index('class="parbox"')


def test_color_arguments_cannot_carry_extra_css():
    html = _render(r"\colorbox{red; position:fixed}{hi}")
    assert "background: red;" in html
    assert "position" not in html
    assert "background: #FF0000;" in _render(r"\colorbox{#FF0000}{hi}")
