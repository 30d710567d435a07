from __future__ import annotations

import logging
from typing import Optional

from .blocks import assemble, extract_metadata, render_metadata
from .citations import CITE_RE, CitationResolver, split_keys
from .config import UnifierConfig, config_from_settings
from .diagrams import DiagramEngine
from .errors import UnifierError
from .extractor import Extractor
from .healer import heal
from .math_engine import MathEngine
from .models import BibliographyEntry, ContentFragment, PayloadKind, UnifiedDocument
from .registry import PlaceholderRegistry, RunContext
from .safety_net import contain_unparsed
from .sandbox import Renderer, RenderServiceRenderer, SandboxRenderer
from .structure import StructuralParser
from .text_utils import escape_html

logger = logging.getLogger(__name__)


def default_renderer(config: UnifierConfig) -> Renderer:
    if config.render_service_url:
        return RenderServiceRenderer(config.render_service_url, timeout_s=config.render_timeout_s)
    return SandboxRenderer(config.tikzjax_base_url)


def resolve_citations(ctx: RunContext) -> None:
    """Fill every citation and bibliography payload now that the catalog is final."""
    resolver = CitationResolver(ctx.catalog)
    for payload in ctx.registry.payloads(PayloadKind.CITATION):
        m = CITE_RE.search(payload.source)
        refs = resolver.resolve(split_keys(m.group(1)) if m else [])
        ctx.citations.extend(refs)
        for ref in refs:
            if not ref.resolved and ref.key not in ctx.unresolved_keys:
                ctx.unresolved_keys.append(ref.key)
        payload.markup = resolver.render(refs)
    if ctx.unresolved_keys:
        logger.warning("unresolved citation keys: %s", ", ".join(ctx.unresolved_keys))

    listing = resolver.render_bibliography()
    # Only the first thebibliography renders the listing; it covers the whole catalog.
    for i, payload in enumerate(ctx.registry.payloads(PayloadKind.BIBLIOGRAPHY)):
        payload.markup = listing if i == 0 else ""
    ctx.bibliography_html = ctx.registry.resolve(listing, ctx.config.max_resolve_depth, record=False)


class LatexUnifier:
    """
    Converts one LaTeX document (possibly malformed) to render-ready HTML.

    Every call to `convert` gets a fresh registry and run context, so one
    instance can be reused across documents.
    """

    def __init__(
        self,
        config: Optional[UnifierConfig] = None,
        renderer: Optional[Renderer] = None,
        math: Optional[MathEngine] = None,
    ):
        self.config = config or config_from_settings()
        self.renderer = renderer or default_renderer(self.config)
        self.math = math or MathEngine(self.config.math_autoscale_max_em, self.config.math_autoscale_floor)
        self.diagrams = DiagramEngine(self.config.layout, self.renderer)

    def convert(self, latex: str, catalog: Optional[list[BibliographyEntry]] = None) -> UnifiedDocument:
        try:
            return self._convert(latex or "", list(catalog or []))
        except UnifierError as e:
            logger.error("conversion failed: %s", e)
            return self._fatal(f"{type(e).__name__}: {e}")
        except Exception as e:
            logger.exception("unexpected failure during conversion")
            return self._fatal(f"Internal error: {e}")

    def _fatal(self, message: str) -> UnifiedDocument:
        html = f'<div class="latex-error"><strong>Rendering failed.</strong> {escape_html(message)}</div>'
        return UnifiedDocument(ok=False, html=html, error=message)

    def _convert(self, latex: str, catalog: list[BibliographyEntry]) -> UnifiedDocument:
        ctx = RunContext(config=self.config, registry=PlaceholderRegistry(), catalog=catalog)
        parser = StructuralParser(ctx)
        extractor = Extractor(ctx, parser, self.diagrams, self.math)
        parser.cite_hook = extractor.extract_citations

        text = heal(latex, self.config.max_heal_passes)
        text, ctx.metadata = extract_metadata(text)
        text = extractor.run(text)
        text = parser.parse(text, 0)
        resolve_citations(ctx)
        text = contain_unparsed(text, ctx)

        fragments = assemble(text, ctx)
        resolved: list[ContentFragment] = []
        for frag in fragments:
            html = ctx.registry.resolve(frag.html, self.config.max_resolve_depth)
            if html.strip():
                resolved.append(ContentFragment(kind=frag.kind, html=html))

        parts = [render_metadata(ctx.metadata)] + [f.html for f in resolved]
        has_listing = any(ctx.registry.payloads(PayloadKind.BIBLIOGRAPHY))
        if not has_listing and ctx.citations and ctx.bibliography_html:
            parts.append(ctx.bibliography_html)
        html = "\n".join(p for p in parts if p)

        stats = ctx.registry.stats()
        if stats.orphaned:
            logger.info("%d of %d placeholders never reached the output", stats.orphaned, stats.emitted)
        return UnifiedDocument(
            ok=True,
            html=html,
            fragments=resolved,
            diagrams=ctx.diagrams,
            bibliography=ctx.catalog,
            bibliography_html=ctx.bibliography_html,
            citations=ctx.citations,
            unresolved_keys=ctx.unresolved_keys,
            contained=ctx.contained,
            stats=stats,
        )


def process_latex(latex: str, catalog: Optional[list[BibliographyEntry]] = None, config: Optional[UnifierConfig] = None) -> UnifiedDocument:
    return LatexUnifier(config).convert(latex, catalog)
