"""Unit tests for document reassembly."""

import pytest
from lxml import etree

from bookbatch.core.exceptions import MissingTranslationError
from bookbatch.core.markup.assembler import assemble_markup, resolve_replacements
from bookbatch.core.markup.placeholder_codec import restore
from bookbatch.core.markup.segmenter import Segmenter
from conftest import make_document

XHTML = "{http://www.w3.org/1999/xhtml}"


class TestResolveReplacements:
    """Test translation fallback rules."""

    def test_uses_translations(self):
        assert resolve_replacements(["<p>a</p>"], ["<p>b</p>"], ["u_0"]) == ["<p>b</p>"]

    def test_missing_raises_with_keys(self):
        with pytest.raises(MissingTranslationError) as exc_info:
            resolve_replacements(["<p>a</p>", "<p>b</p>"], ["<p>x</p>", None], ["u_0", "u_1"])

        assert exc_info.value.unit_keys == ["u_1"]

    def test_missing_falls_back_to_source(self):
        result = resolve_replacements(["<p>a</p>", "<p>b</p>"], [None, "<p>y</p>"],
                                      ["u_0", "u_1"], allow_missing=True)
        assert result == ["<p>a</p>", "<p>y</p>"]


class TestAssembleMarkup:
    """Test slot substitution."""

    def test_source_replacements_reproduce_content(self, sample_xhtml):
        """Feeding back the source markup keeps every block's text."""
        group = Segmenter().segment_document("ch1.xhtml", sample_xhtml)
        output = assemble_markup(sample_xhtml, [unit.raw_markup for unit in group.units], "ch1.xhtml")

        root = etree.fromstring(output)
        assert root.find(f"{XHTML}body/{XHTML}h1").text == "Chapter One"
        assert root.find(f"{XHTML}head/{XHTML}title").text == "One"
        assert output.startswith(b"<?xml")

    def test_translated_blocks_and_text_are_substituted(self, sample_xhtml):
        group = Segmenter().segment_document("ch1.xhtml", sample_xhtml)
        translated = {
            "u_0": "[[h1_1]]Chapitre Un[[/h1_1]]",
            "u_1": "[[p_1]]Bonjour [[b_2]]Monde[[/b_2]].[[/p_1]]",
            "u_2": "[[span_1]]Texte libre[[/span_1]]",
            "u_3": "[[p_1]]Dedans[[/p_1]]",
        }
        replacements = [restore(translated[unit.unit_key], unit.placeholder_map) for unit in group.units]

        root = etree.fromstring(assemble_markup(sample_xhtml, replacements, "ch1.xhtml"))
        body = root.find(f"{XHTML}body")

        assert body.find(f"{XHTML}h1").text == "Chapitre Un"
        paragraph = body.find(f"{XHTML}p")
        assert paragraph.text == "Bonjour "
        assert paragraph.find(f"{XHTML}b").text == "Monde"
        div = body.find(f"{XHTML}div")
        assert div.text == "Texte libre"
        assert div.find(f"{XHTML}p").text == "Dedans"

    def test_inline_run_keeps_its_elements(self):
        doc = make_document("<div>Intro <em>x</em> outro</div>")
        unit = Segmenter().segment_document("run.xhtml", doc).units[0]
        translated = restore("[[span_1]]Début [[em_2]]y[[/em_2]] fin[[/span_1]]", unit.placeholder_map)

        div = etree.fromstring(assemble_markup(doc, [translated], "run.xhtml")).find(f"{XHTML}body/{XHTML}div")

        assert div.text == "Début "
        assert [child.tag for child in div] == [f"{XHTML}em"]
        assert (div[0].text, div[0].tail) == ("y", " fin")
        assert div.find(f"{XHTML}span") is None

    def test_inline_element_alone_in_container(self):
        doc = make_document("<section><span>Hello</span></section>")
        unit = Segmenter().segment_document("run.xhtml", doc).units[0]
        translated = restore("[[span_1]][[span_2]]Bonjour[[/span_2]][[/span_1]]", unit.placeholder_map)

        section = etree.fromstring(assemble_markup(doc, [translated], "run.xhtml")).find(
            f"{XHTML}body/{XHTML}section")

        assert section.text is None
        assert [(child.tag, child.text) for child in section] == [(f"{XHTML}span", "Bonjour")]

    def test_runs_around_blocks_stay_in_place(self):
        doc = make_document('<div>Before <a href="#n1">note</a><p>Para</p>after <b>bold</b>.</div>')
        group = Segmenter().segment_document("run.xhtml", doc)
        translated = [
            "[[span_1]]Avant [[a_2]]renvoi[[/a_2]][[/span_1]]",
            "[[p_1]]Paragraphe[[/p_1]]",
            "[[span_1]]après [[b_2]]gras[[/b_2]].[[/span_1]]",
        ]
        replacements = [restore(text, unit.placeholder_map) for text, unit in zip(translated, group.units)]

        div = etree.fromstring(assemble_markup(doc, replacements, "run.xhtml")).find(f"{XHTML}body/{XHTML}div")

        assert div.text == "Avant "
        assert [child.tag for child in div] == [f"{XHTML}a", f"{XHTML}p", f"{XHTML}b"]
        assert div[0].get("href") == "#n1"
        assert (div[0].text, div[1].text, div[1].tail, div[2].text, div[2].tail) == (
            "renvoi", "Paragraphe", "après ", "gras", ".")

    def test_tail_whitespace_is_kept(self, sample_xhtml):
        group = Segmenter().segment_document("ch1.xhtml", sample_xhtml)
        output = assemble_markup(sample_xhtml, [unit.raw_markup for unit in group.units], "ch1.xhtml")

        root = etree.fromstring(output)
        assert root.find(f"{XHTML}body/{XHTML}h1").tail == "\n  "

    def test_unparseable_fragment_keeps_source(self, sample_xhtml):
        group = Segmenter().segment_document("ch1.xhtml", sample_xhtml)
        replacements = [unit.raw_markup for unit in group.units]
        replacements[0] = ""

        root = etree.fromstring(assemble_markup(sample_xhtml, replacements, "ch1.xhtml"))
        assert root.find(f"{XHTML}body/{XHTML}h1").text == "Chapter One"

    def test_html_document(self):
        html = "<html><body><p>Hello</p><p>World</p></body></html>"
        output = assemble_markup(html, ["<p>Bonjour</p>", "<p>Monde</p>"], "page.html")

        assert b"<p>Bonjour</p><p>Monde</p>" in output
