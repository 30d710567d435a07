import json

from paperview.config import load_settings
from paperview.unifier.config import config_from_settings
from paperview.unifier.runner import load_catalog, main


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("PAPERVIEW_RENDER_URL", '"http://render.local/"')
    monkeypatch.setenv("PAPERVIEW_SAFE_WIDTH", "20")
    monkeypatch.setenv("PAPERVIEW_MAX_NESTING", "8")
    settings = load_settings()
    assert settings.render_service_url == "http://render.local"
    cfg = config_from_settings(settings)
    assert cfg.layout.safe_width == 20.0
    assert cfg.max_nesting_depth == 8
    assert cfg.render_service_url == "http://render.local"


def test_settings_defaults(monkeypatch):
    for name in ("PAPERVIEW_RENDER_URL", "PAPERVIEW_SAFE_WIDTH", "PAPERVIEW_MAX_NESTING", "PAPERVIEW_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    settings = load_settings()
    assert settings.render_service_url is None
    assert settings.safe_width is None
    assert config_from_settings(settings).layout.safe_width == 14.0


def test_malformed_numbers_fall_back_to_defaults(monkeypatch):
    monkeypatch.setenv("PAPERVIEW_RENDER_TIMEOUT_S", "soon")
    monkeypatch.setenv("PAPERVIEW_MAX_NESTING", "deep")
    monkeypatch.setenv("PAPERVIEW_REF_PREFIX", "src_")
    settings = load_settings()
    assert settings.render_timeout_s == 30.0
    assert settings.max_nesting_depth == 32
    cfg = config_from_settings(settings)
    assert cfg.render_timeout_s == 30.0
    assert cfg.ref_marker_prefix == "src_"


def test_catalog_formats(tmp_path):
    path = tmp_path / "refs.json"
    path.write_text(json.dumps([{"key": "k", "label": "K99", "text": "Knuth."}]), encoding="utf-8")
    assert [(e.key, e.label) for e in load_catalog(str(path))] == [("k", "K99")]
    path.write_text(json.dumps({"a": "A.", "b": "B."}), encoding="utf-8")
    assert [e.key for e in load_catalog(str(path))] == ["a", "b"]


def test_main_writes_html(tmp_path, monkeypatch):
    monkeypatch.delenv("PAPERVIEW_RENDER_URL", raising=False)
    tex = tmp_path / "in.tex"
    tex.write_text("\\section{Hi}\nSee \\cite{k}.", encoding="utf-8")
    refs = tmp_path / "refs.json"
    refs.write_text(json.dumps([{"key": "k", "text": "Knuth."}]), encoding="utf-8")
    out = tmp_path / "out.html"
    assert main([str(tex), "-o", str(out), "--catalog", str(refs)]) == 0
    html = out.read_text(encoding="utf-8")
    assert "<h2>Hi</h2>" in html
    assert '<a href="#cite-k">1</a>' in html


def test_main_missing_input(tmp_path):
    assert main([str(tmp_path / "missing.tex")]) == 2
