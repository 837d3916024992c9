"""Unit tests for the chunker module."""

from __future__ import annotations

import math
import re

import pytest

from docsearch.ingestion.chunker import chunk_text, detect_section_headers, estimate_tokens
from docsearch.ingestion.normalizer import normalize_text

SENTENCE = re.compile(r"Sentence number \d+ is here\.")


def _long_paragraph(count: int = 40) -> str:
    return " ".join(f"Sentence number {i} is here." for i in range(count))


def _words(passages) -> set[str]:  # noqa: ANN001
    produced: set[str] = set()
    for p in passages:
        produced.update(p.text.split())
    return produced


# ── Basic contract ──────────────────────────────────────────────────────


class TestChunkText:
    def test_empty_input(self) -> None:
        """Empty or whitespace-only text should produce no passages."""
        assert chunk_text("") == []
        assert chunk_text("   \n\n  ") == []

    @pytest.mark.parametrize(
        ("max_size", "overlap"), [(0, 0), (-5, 0), (100, -1), (100, 100), (100, 150)]
    )
    def test_invalid_parameters_raise(self, max_size: int, overlap: int) -> None:
        """Non-positive sizes and overlaps outside [0, max_size) are rejected."""
        with pytest.raises(ValueError):
            chunk_text("Some text.", max_size, overlap)

    def test_single_small_paragraph_round_trips(self) -> None:
        """A paragraph shorter than max_size should come back unchanged."""
        text = normalize_text("A short paragraph\nabout quarterly results.")
        passages = chunk_text(text, 1000, 200)
        assert len(passages) == 1
        assert passages[0].text == text
        assert passages[0].position == 0

    def test_paragraphs_become_passages_in_order(self) -> None:
        """Each blank-line separated paragraph becomes its own passage."""
        passages = chunk_text("First paragraph.\n\nSecond paragraph.\n\nThird one.", 1000, 200)
        assert [p.text for p in passages] == ["First paragraph.", "Second paragraph.", "Third one."]
        assert [p.position for p in passages] == [0, 1, 2]

    def test_token_estimate_is_quarter_of_length_rounded_up(self) -> None:
        """Token estimates should be ceil(len / 4)."""
        passages = chunk_text("Exactly ten chars ok.\n\nabcde", 1000, 200)
        for p in passages:
            assert p.token_estimate == math.ceil(len(p.text) / 4)
        assert estimate_tokens("abcde") == 2

    def test_metadata_header_lines_stay_with_first_paragraph(self) -> None:
        """The enrichment header block should share a passage with the first paragraph."""
        text = "Title: Report\nPublishers: Acme\n---\nFirst paragraph.\n\nSecond paragraph."
        passages = chunk_text(text, 1000, 200)
        assert len(passages) == 2
        assert passages[0].text.startswith("Title: Report")
        assert passages[0].text.endswith("First paragraph.")


# ── Oversized sections ──────────────────────────────────────────────────


class TestOversizedSections:
    def test_passages_respect_max_size(self) -> None:
        """A long paragraph should be split into passages no longer than max_size."""
        passages = chunk_text(_long_paragraph(), 200, 60)
        assert len(passages) > 1
        assert all(len(p.text) <= 200 for p in passages)

    def test_long_sentence_without_periods_splits_on_words(self) -> None:
        """A run-on sentence should fall back to word boundaries."""
        passages = chunk_text(" ".join(["word"] * 100), 100, 10)
        assert len(passages) > 1
        assert all(len(p.text) <= 100 for p in passages)

    def test_positions_are_contiguous(self) -> None:
        """Positions should count up from zero without gaps."""
        passages = chunk_text(_long_paragraph(), 200, 60)
        assert [p.position for p in passages] == list(range(len(passages)))

    def test_no_content_is_lost(self) -> None:
        """Every word of the input should appear in some passage."""
        text = "Intro paragraph here.\n\n" + _long_paragraph() + "\n\nClosing remarks."
        assert set(text.split()) <= _words(chunk_text(text, 200, 60))

    def test_trailing_sentences_carry_into_next_passage(self) -> None:
        """The last sentence of a passage should reappear in the next one."""
        passages = chunk_text(_long_paragraph(), 200, 60)
        for current, following in zip(passages, passages[1:]):
            last_sentence = SENTENCE.findall(current.text)[-1]
            assert last_sentence in following.text

    def test_zero_overlap_carries_nothing(self) -> None:
        """With overlap=0 every sentence should appear exactly once."""
        passages = chunk_text(_long_paragraph(), 200, 0)
        seen: list[str] = []
        for p in passages:
            seen.extend(SENTENCE.findall(p.text))
        assert len(seen) == len(set(seen)) == 40

    def test_undelimited_paragraph_becomes_single_passage(self) -> None:
        """Text with nowhere to split should be emitted whole."""
        blob = "x" * 1500
        passages = chunk_text(blob, 1000, 200)
        assert len(passages) == 1
        assert passages[0].text == blob

    def test_undelimited_run_inside_long_text_terminates(self) -> None:
        """An unbreakable run inside a long paragraph should not stall the split."""
        text = "Start here. " + "y" * 700 + " and then. More text follows here."
        passages = chunk_text(text, 300, 50)
        assert any("y" * 700 in p.text for p in passages)
        assert passages[-1].text.endswith("More text follows here.")


# ── Section headers ─────────────────────────────────────────────────────


class TestSectionHeaders:
    def test_header_sections_label_following_passages(self) -> None:
        """A heading should label and lead the passage that follows it."""
        text = "INTRODUCTION\n\nFirst para.\n\n2. Methods\n\nSecond para."
        passages = chunk_text(text, 1000, 200)
        assert [(p.text, p.section) for p in passages] == [
            ("INTRODUCTION\nFirst para.", "INTRODUCTION"),
            ("2. Methods\nSecond para.", "2. Methods"),
        ]

    def test_markup_headers_are_cleaned(self) -> None:
        """Markdown, emphasis and colon markup should be stripped from labels."""
        text = "# Overview\n\nBody one.\n\n**Summary**\n\nBody two.\n\nKey Findings:\n\nBody three."
        sections = [p.section for p in chunk_text(text, 1000, 200)]
        assert sections == ["Overview", "Summary", "Key Findings"]

    def test_passages_before_any_header_have_no_section(self) -> None:
        """Passages ahead of the first heading carry no section label."""
        passages = chunk_text("Preamble text.\n\nRESULTS\n\nNumbers.", 1000, 200)
        assert passages[0].section is None
        assert passages[1].section == "RESULTS"

    def test_detect_section_headers_deduplicates(self) -> None:
        """Repeated headings should be reported once, in first-seen order."""
        text = "RESULTS\n\nbody text.\n\nRESULTS\n\n## Appendix"
        assert detect_section_headers(text) == ["RESULTS", "## Appendix"]

    def test_sentences_are_not_headers(self) -> None:
        """Ordinary sentences should not be detected as headings."""
        assert detect_section_headers("This is a normal sentence.\n\nAnother one here.") == []

    def test_numbered_instructions_are_body_text(self) -> None:
        """Numbered steps written as sentences should stay searchable passages."""
        text = "Steps to follow\n\n1. Preheat the oven to two hundred degrees\n\n2. Place the tray inside"
        passages = chunk_text(text, 1000, 200)
        assert [p.text for p in passages] == [
            "Steps to follow",
            "1. Preheat the oven to two hundred degrees",
            "2. Place the tray inside",
        ]
        assert all(p.section is None for p in passages)

    def test_long_all_caps_line_is_not_a_header(self) -> None:
        """Shouted sentences longer than eight words are body text."""
        line = "THIS LINE HAS FAR TOO MANY WORDS TO BE A REAL HEADING"
        assert detect_section_headers(line) == []

    def test_all_caps_warning_stays_searchable(self) -> None:
        """A short capitalised line used as a heading keeps its words in the output."""
        passages = chunk_text("DO NOT OPERATE WITHOUT SUPERVISION\n\nMore text.", 1000, 200)
        assert [p.text for p in passages] == ["DO NOT OPERATE WITHOUT SUPERVISION\nMore text."]
        assert passages[0].section == "DO NOT OPERATE WITHOUT SUPERVISION"

    def test_trailing_header_is_emitted(self) -> None:
        """A heading at the end of the text becomes its own passage."""
        passages = chunk_text("Body text.\n\nAPPENDIX", 1000, 200)
        assert [p.text for p in passages] == ["Body text.", "APPENDIX"]

    def test_header_only_text_is_kept(self) -> None:
        """Text made only of a heading still produces one passage."""
        passages = chunk_text("INTRODUCTION", 1000, 200)
        assert len(passages) == 1
        assert passages[0].text == "INTRODUCTION"

    @pytest.mark.parametrize(
        "text",
        [
            "SAFETY NOTICE\n\nKEEP CLEAR\n\nWear gloves at all times.",
            "1. Overview\n\n2. Scope\n\n3.1 Data Collection",
            "# Title\n\n**Bold**\n\nSummary Notes:",
        ],
    )
    def test_every_word_is_reproduced(self, text: str) -> None:
        """Heading-heavy documents should lose no words."""
        assert set(text.split()) <= _words(chunk_text(text, 1000, 200))
