from paperview.unifier.config import UnifierConfig
from paperview.unifier.models import PayloadKind
from paperview.unifier.registry import PlaceholderRegistry, RunContext
from paperview.unifier.safety_net import contain_unparsed


def _ctx():
    return RunContext(config=UnifierConfig(), registry=PlaceholderRegistry(nonce="T"))


def test_unclosed_environment_is_contained_to_its_paragraph():
    ctx = _ctx()
    out = contain_unparsed("Before.\n\n\\begin{weird} broken\nstill broken\n\nAfter paragraph.", ctx)
    assert ctx.contained == 1
    assert out.startswith("Before.\n\n")
    assert out.rstrip().endswith("After paragraph.")
    html = ctx.registry.resolve(out)
    assert 'data-env="weird"' in html
    assert "still broken" in html


def test_containment_stops_at_section():
    ctx = _ctx()
    out = contain_unparsed("\\begin{x} a \\section{Next} b", ctx)
    assert "\\section{Next} b" in out


def test_containment_stops_before_block_token():
    ctx = _ctx()
    block = ctx.block(PayloadKind.TABLE, "<table></table>").strip()
    out = contain_unparsed(f"\\begin{{x}} a {block} tail", ctx)
    assert out.count(block) == 1
    assert out.index(block) > 0
    assert ctx.registry.resolve(out).endswith("<table></table> tail")


def test_closed_unknown_environment_is_unwrapped():
    assert contain_unparsed("\\begin{foo}[opt]inner\\end{foo}", _ctx()) == "inner"


def test_stray_end_is_dropped():
    assert contain_unparsed("text \\end{bar} more", _ctx()) == "text  more"
