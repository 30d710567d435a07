from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Optional

from paperview.config import Settings, load_settings


@dataclass(frozen=True)
class LayoutConfig:
    """Tuning constants for the diagram layout engine.

    These were tuned empirically against generated diagrams; treat them as
    product knobs, not as derived quantities.
    """

    safe_width: float = 14.0
    margin_factor: float = 0.9
    wide_scale_floor: float = 0.5

    flat_aspect_threshold: float = 3.0
    flat_target_ratio: float = 2.0
    flat_y_min: float = 1.5
    flat_y_max: float = 3.0
    flat_x_multiplier: float = 1.5
    crowded_node_count: int = 5
    crowded_x_boost: float = 1.2

    text_heavy_label_length: float = 30.0
    light_distance_floor: float = 0.5
    light_distance_cm: float = 5.0
    heavy_distance_floor: float = 8.4

    dense_target_extent: float = 8.0
    dense_unit_min: float = 1.0
    dense_unit_max: float = 1.8
    # Horizontal ceiling grows linearly from x_low to x_high between these spans.
    dense_x_ceiling_low: float = 1.3
    dense_x_ceiling_high: float = 1.8
    dense_x_span_low: float = 5.0
    dense_x_span_high: float = 9.0
    caption_offset_limit: float = 1.0
    caption_unit_cm: float = 0.5

    default_node_distance_cm: float = 2.5
    default_scale_unknown: float = 0.9
    default_scale_crowded: float = 0.8
    default_crowded_node_count: int = 6


@dataclass(frozen=True)
class UnifierConfig:
    layout: LayoutConfig = field(default_factory=LayoutConfig)
    max_nesting_depth: int = 32
    max_resolve_depth: int = 64
    max_cite_merge_passes: int = 10
    # Parenthesized `(ref_1, ref_2)` blocks are citation markers; blocks led by a catalog key always are.
    ref_marker_prefix: str = "ref_"
    max_heal_passes: int = 10
    math_autoscale_max_em: float = 50.0
    math_autoscale_floor: float = 0.55
    tikzjax_base_url: str = "https://tikzjax.com/v1"
    render_service_url: Optional[str] = None
    render_timeout_s: float = 30.0


def config_from_settings(settings: Optional[Settings] = None) -> UnifierConfig:
    s = settings or load_settings()
    cfg = UnifierConfig(
        max_nesting_depth=max(1, s.max_nesting_depth),
        tikzjax_base_url=s.tikzjax_base_url,
        render_service_url=s.render_service_url,
        render_timeout_s=s.render_timeout_s,
        ref_marker_prefix=s.ref_marker_prefix,
    )
    if s.safe_width and s.safe_width > 0:
        cfg = replace(cfg, layout=replace(cfg.layout, safe_width=s.safe_width))
    return cfg
