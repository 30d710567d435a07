from paperview.unifier.citations import (
    CitationResolver,
    merge_catalog,
    normalize_citations,
    parse_bibitems,
    split_keys,
    tokenize_reference_markers,
)
from paperview.unifier.models import BibliographyEntry


def test_split_keys():
    assert split_keys("ref_1, ref_2; ref_3  ref_1") == ["ref_1", "ref_2", "ref_3"]


def test_reference_markers_become_one_cite():
    out = tokenize_reference_markers("as shown (ref_1, ref_2).", {"ref_1", "ref_2"})
    assert out == "as shown \\cite{ref_1,ref_2}."


def test_unknown_reference_tokens_pass_through():
    assert tokenize_reference_markers("(ref_1, ref_9)", {"ref_1"}) == "\\cite{ref_1} (ref_9)"
    assert tokenize_reference_markers("(ref_9)", {"ref_1"}) == "(ref_9)"


def test_adjacent_cites_merge():
    assert normalize_citations(r"\citep{a} \cite{b}") == r"\cite{a,b}"
    assert normalize_citations(r"\cite{a}\cite{b}\cite{c}") == r"\cite{a,b,c}"
    assert normalize_citations(r"\cite{a}, and \cite{b}") == r"\cite{a}, and \cite{b}"


def test_index_is_catalog_position_not_first_seen():
    resolver = CitationResolver([BibliographyEntry(key="b"), BibliographyEntry(key="a")])
    refs = resolver.resolve(["a", "b"])
    assert [(r.key, r.index) for r in refs] == [("a", 2), ("b", 1)]
    assert resolver.render(refs) == '<span class="citation">[<a href="#cite-b">1</a>, <a href="#cite-a">2</a>]</span>'


def test_unresolved_key_is_explicit():
    resolver = CitationResolver([BibliographyEntry(key="a")])
    refs = resolver.resolve(["zzz"])
    assert not refs[0].resolved
    html = resolver.render(refs)
    assert "citation-unresolved" in html
    assert "[?]" in html
    assert 'title="Unresolved: zzz"' in html


def test_bibitems_and_catalog_merge():
    entries = parse_bibitems(r"\bibitem[Smith]{s1} Smith, 2020. \bibitem{j2} Jones.")
    assert [(e.key, e.label, e.text) for e in entries] == [("s1", "Smith", "Smith, 2020."), ("j2", None, "Jones.")]
    merged = merge_catalog([BibliographyEntry(key="j2", text="ext")], entries)
    assert [e.key for e in merged] == ["j2", "s1"]
    assert merged[0].text == "ext"


def test_bibliography_listing_has_anchors():
    html = CitationResolver([BibliographyEntry(key="k", text=r"\emph{Book}")]).render_bibliography()
    assert '<li id="cite-k" value="1">' in html
    assert "<em>Book</em>" in html
    assert CitationResolver([]).render_bibliography() == ""


def test_escaped_underscores_in_keys():
    assert split_keys(r"ref\_1, ref\_2") == ["ref_1", "ref_2"]
    out = tokenize_reference_markers(r"As shown (ref\_1, ref\_2).", {"ref_1", "ref_2"})
    assert out == r"As shown \cite{ref_1,ref_2}."
    assert normalize_citations(r"\citep{ref\_1}") == r"\cite{ref_1}"
    assert parse_bibitems(r"\bibitem{ref\_3} C.")[0].key == "ref_3"


def test_blocks_led_by_a_catalog_key_are_markers():
    out = tokenize_reference_markers("Text (key_1, key_2).", {"key_1", "key_2"})
    assert out == r"Text \cite{key_1,key_2}."
    assert tokenize_reference_markers("(see key_1)", {"key_1"}) == "(see key_1)"
    assert tokenize_reference_markers("(src_9, src_4)", {"src_4"}, prefix="src_") == r"\cite{src_4} (src_9)"
