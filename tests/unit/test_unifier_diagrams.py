import pytest

from paperview.unifier.config import LayoutConfig
from paperview.unifier.diagrams import (
    DiagramEngine,
    classify,
    explicit_distance,
    extract_nodes,
    extract_samples,
    read_tikz_options,
    rewrite_options,
    sanitize_source,
)
from paperview.unifier.models import DiagramIntent, DiagramMetrics, LayoutPlan
from paperview.unifier.sandbox import SandboxRenderer


def _metrics(h=0.0, v=0.0, samples=4, nodes=0, label=0.0, distance=None):
    return DiagramMetrics(
        horizontal_span=h,
        vertical_span=v,
        aspect_ratio=h / v if v > 0 else 0.0,
        sample_count=samples,
        node_count=nodes,
        avg_label_length=label,
        explicit_distance=distance,
    )


def test_wide_diagram_scales_down():
    plan = classify(_metrics(h=16, v=2))
    assert plan.intent == DiagramIntent.WIDE
    assert plan.scale == pytest.approx(0.7875)
    assert plan.transform_shape is True


def test_wide_scale_has_floor():
    plan = classify(_metrics(h=100, v=2))
    assert plan.scale == pytest.approx(LayoutConfig().wide_scale_floor)


def test_classification_is_deterministic():
    m = _metrics(h=6, v=1, nodes=7, label=12)
    assert classify(m) == classify(m)


def test_flat_diagram_stretches_vertically():
    plan = classify(_metrics(h=9, v=1, nodes=3))
    assert plan.intent == DiagramIntent.FLAT
    assert plan.y_unit == pytest.approx(3.0)
    assert plan.x_unit == pytest.approx(1.5)
    assert plan.font is None

    crowded = classify(_metrics(h=9, v=1, nodes=5))
    assert crowded.x_unit == pytest.approx(1.8)
    assert crowded.font == "\\small"


def test_explicit_distance_is_honoured_or_widened():
    assert classify(_metrics(h=4, v=3, distance=3.0, label=5)).node_distance == pytest.approx(3.0)
    assert classify(_metrics(h=4, v=3, distance=0.3, label=5)).node_distance == pytest.approx(5.0)
    heavy = classify(_metrics(h=4, v=3, distance=2.0, label=40))
    assert heavy.intent == DiagramIntent.EXPLICIT
    assert heavy.node_distance == pytest.approx(8.4)


def test_dense_units_change_continuously():
    a = classify(_metrics(h=5.0, v=2, label=40))
    b = classify(_metrics(h=5.01, v=2, label=40))
    assert a.intent == b.intent == DiagramIntent.DENSE
    assert abs(a.x_unit - b.x_unit) < 0.01
    assert a.scale is None


def test_dense_caption_offset_gets_compact_unit():
    plan = classify(_metrics(h=1.5, v=0.6, label=40))
    assert plan.intent == DiagramIntent.DENSE
    assert plan.y_unit == pytest.approx(0.5)
    assert plan.x_unit == pytest.approx(1.3)


def test_default_without_samples():
    plan = classify(_metrics(samples=0, nodes=2))
    assert plan.intent == DiagramIntent.DEFAULT
    assert plan.scale == pytest.approx(0.9)
    assert plan.node_distance == pytest.approx(2.5)
    assert plan.transform_shape is True
    assert classify(_metrics(samples=0, nodes=6)).scale == pytest.approx(0.8)


def test_default_with_samples_keeps_size():
    plan = classify(_metrics(h=3, v=2))
    assert plan.intent == DiagramIntent.DEFAULT
    assert plan.scale == pytest.approx(1.0)


def test_rewrite_replaces_conflicting_options():
    plan = LayoutPlan(intent=DiagramIntent.DEFAULT, scale=1.0, node_distance=2.5)
    out = rewrite_options("scale=2, node distance=1cm, thick, x=3cm", plan)
    assert out == "[thick, x=3cm, scale=1, node distance=2.5cm]"
    wide = LayoutPlan(intent=DiagramIntent.WIDE, scale=0.7875, transform_shape=True)
    assert rewrite_options("", wide) == "[scale=0.7875, transform shape]"


def test_flat_grid_multiplies_author_units():
    engine = DiagramEngine(LayoutConfig(), SandboxRenderer())
    payload = engine.build("[x=3cm, y=3cm]\n\\draw (0,0) -- (9,0);\n\\draw (0,0) -- (0,1);")
    assert payload.intent == DiagramIntent.FLAT
    assert payload.final_options == "[x=4.5cm, y=9cm]"

    plan = LayoutPlan(intent=DiagramIntent.DENSE, x_unit=1.2, y_unit=1.5)
    assert rewrite_options("x=20mm, thick", plan) == "[thick, x=2.4cm, y=1.5cm]"
    assert rewrite_options("x={(1cm,0.5cm)}", plan) == "[x=1.2cm, y=1.5cm]"


def test_read_options_with_nested_brackets():
    opts, rest = read_tikz_options(r'[label={a]b}, thick] \draw (0,0);')
    assert opts == "label={a]b}, thick"
    assert rest == r" \draw (0,0);"
    assert read_tikz_options(r"\draw (0,0);") == ("", r"\draw (0,0);")


def test_samples_nodes_and_distance():
    src = r"\node[draw] (a) at (1,2) {Hello world}; \draw (0,0) -- (3.5,-1);"
    assert len(extract_samples(src)) == 3
    nodes = extract_nodes(src)
    assert len(nodes) == 1
    assert nodes[0].label == "Hello world"
    assert nodes[0].label_length == 11
    assert (nodes[0].position.x, nodes[0].position.y) == (1.0, 2.0)
    assert explicit_distance("node distance=20mm", "") == pytest.approx(2.0)


def test_sanitize_source():
    out = sanitize_source(r"\node {\textbf{A} & B}; % note")
    assert out == r"\node {{\bfseries A} \& B};"


def test_engine_builds_payload_and_submits():
    renderer = SandboxRenderer()
    engine = DiagramEngine(LayoutConfig(), renderer)
    payload = engine.build("[node distance=1cm]\n\\node (a) {A};\n\\node[right of=a] (b) {B};")
    assert payload.intent == DiagramIntent.EXPLICIT
    assert payload.final_options == "[node distance=1cm]"
    assert payload.handle in [j.handle for j in renderer.jobs()]
    assert "data-diagram-handle" in payload.markup


def test_pgfplots_degrades_to_notice():
    renderer = SandboxRenderer()
    payload = DiagramEngine(LayoutConfig(), renderer).build(r"\begin{axis}\addplot {x^2};\end{axis}")
    assert payload.intent == DiagramIntent.UNSUPPORTED
    assert "pgfplots" in payload.notice
    assert "diagram-unsupported" in payload.markup
    assert renderer.jobs() == []
