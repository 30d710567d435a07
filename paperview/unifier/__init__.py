from .config import LayoutConfig, UnifierConfig
from .models import BibliographyEntry, DiagramIntent, UnifiedDocument
from .pipeline import LatexUnifier, process_latex
from .runner import main

__all__ = [
    "LatexUnifier",
    "process_latex",
    "UnifierConfig",
    "LayoutConfig",
    "BibliographyEntry",
    "DiagramIntent",
    "UnifiedDocument",
    "main",
]
