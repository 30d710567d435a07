from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PayloadKind(str, Enum):
    DIAGRAM = "DIAGRAM"
    MATH = "MATH"
    CODE = "CODE"
    LINK = "LINK"
    TABLE = "TABLE"
    LIST = "LIST"
    BIBLIOGRAPHY = "BIBLIOGRAPHY"
    FIGURE = "FIGURE"
    BOX = "BOX"
    CITATION = "CITATION"
    BLOCK = "BLOCK"
    CONTAINED = "CONTAINED"


class DiagramIntent(str, Enum):
    WIDE = "WIDE"
    FLAT = "FLAT"
    EXPLICIT = "EXPLICIT"
    DENSE = "DENSE"
    DEFAULT = "DEFAULT"
    UNSUPPORTED = "UNSUPPORTED"


class Payload(BaseModel):
    token: str
    kind: PayloadKind
    markup: str = ""
    source: str = ""
    # Inline payloads stay inside a paragraph; block payloads stand alone.
    inline: bool = False


class CoordinateSample(BaseModel):
    x: float
    y: float


class DiagramNode(BaseModel):
    label: str = ""
    label_length: int = 0
    position: Optional[CoordinateSample] = None


class DiagramMetrics(BaseModel):
    horizontal_span: float = 0.0
    vertical_span: float = 0.0
    aspect_ratio: float = 0.0
    sample_count: int = 0
    node_count: int = 0
    avg_label_length: float = 0.0
    explicit_distance: Optional[float] = None


class LayoutPlan(BaseModel):
    intent: DiagramIntent
    scale: Optional[float] = None
    x_unit: Optional[float] = None
    y_unit: Optional[float] = None
    node_distance: Optional[float] = None
    font: Optional[str] = None
    transform_shape: bool = False


class DiagramPayload(BaseModel):
    token: str = ""
    source: str
    options: str = ""
    samples: list[CoordinateSample] = Field(default_factory=list)
    nodes: list[DiagramNode] = Field(default_factory=list)
    metrics: Optional[DiagramMetrics] = None
    intent: DiagramIntent = DiagramIntent.DEFAULT
    plan: Optional[LayoutPlan] = None
    final_options: str = "[]"
    handle: Optional[str] = None
    markup: str = ""
    notice: Optional[str] = None


class BibliographyEntry(BaseModel):
    key: str
    label: Optional[str] = None
    text: str = ""


class CitationReference(BaseModel):
    key: str
    index: Optional[int] = None

    @property
    def resolved(self) -> bool:
        return self.index is not None


class ParseFrame(BaseModel):
    kind: str
    depth: int = 0
    start: int = 0


class ContentFragment(BaseModel):
    kind: str
    html: str


class TokenStats(BaseModel):
    emitted: int = 0
    resolved: int = 0
    orphaned: int = 0


class UnifiedDocument(BaseModel):
    ok: bool = True
    html: str = ""
    fragments: list[ContentFragment] = Field(default_factory=list)
    diagrams: list[DiagramPayload] = Field(default_factory=list)
    bibliography: list[BibliographyEntry] = Field(default_factory=list)
    bibliography_html: str = ""
    citations: list[CitationReference] = Field(default_factory=list)
    unresolved_keys: list[str] = Field(default_factory=list)
    contained: int = 0
    stats: TokenStats = Field(default_factory=TokenStats)
    error: Optional[str] = None
