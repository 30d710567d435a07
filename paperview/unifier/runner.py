import argparse
import json
import logging
import sys
from pathlib import Path

from paperview.config import load_settings

from .config import config_from_settings
from .models import BibliographyEntry
from .pipeline import LatexUnifier


def load_catalog(path: str) -> list[BibliographyEntry]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        # {"key": "text", ...} is accepted as a shorthand
        data = [{"key": k, "text": v} for k, v in data.items()]
    return [BibliographyEntry(**item) for item in data]


def main(argv=None):
    parser = argparse.ArgumentParser(description="Convert (possibly malformed) LaTeX to render-ready HTML")

    parser.add_argument("tex_path", help="Path to input .tex file")
    parser.add_argument("--output", "-o", help="Write HTML here (default: stdout)")
    parser.add_argument("--catalog", help="JSON bibliography catalog: [{key, label?, text}]")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    args = parser.parse_args(argv)

    settings = load_settings()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, settings.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        latex = Path(args.tex_path).read_text(encoding="utf-8")
        catalog = load_catalog(args.catalog) if args.catalog else []
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    doc = LatexUnifier(config_from_settings(settings)).convert(latex, catalog)
    if args.output:
        Path(args.output).write_text(doc.html, encoding="utf-8")
        print(f"Saved to {args.output}")
    else:
        sys.stdout.write(doc.html + "\n")

    if doc.unresolved_keys:
        print(f"Unresolved citations: {', '.join(doc.unresolved_keys)}", file=sys.stderr)
    return 0 if doc.ok else 1


if __name__ == "__main__":
    sys.exit(main())
