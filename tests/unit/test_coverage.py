"""Tests for cross-section coverage tracking."""

import pytest

from content_pipeline.core.coverage import (
    CoverageConfig,
    build_cross_reference_context,
    build_required_elements_reminder,
    create_initial_section_write_state,
    extract_covered_topics,
    extract_defined_terms,
    get_uncovered_elements,
    is_element_covered,
    mentions_term,
    update_section_write_state,
)


class TestExtractCoveredTopics:
    def test_emphasized_terms_are_topics(self):
        text = "Use **Ultrahand** to lift objects and __Fuse__ to combine them."
        assert extract_covered_topics(text) == {"Ultrahand", "Fuse"}

    def test_quoted_title_case_phrases(self):
        text = 'Complete the "Great Sky Island" tutorial before "go outside and play".'
        topics = extract_covered_topics(text)
        assert "Great Sky Island" in topics
        assert "go outside and play" not in topics

    def test_recurring_capitalized_phrase_needs_three_occurrences(self):
        twice = "Temple Of Time is old. Later, Temple Of Time opens."
        assert extract_covered_topics(twice) == set()
        thrice = twice + " Return to Temple Of Time."
        assert extract_covered_topics(thrice) == {"Temple Of Time"}

    def test_occurrence_threshold_configurable(self):
        text = "Hyrule Castle looms. Hyrule Castle waits."
        assert extract_covered_topics(text, CoverageConfig(min_phrase_occurrences=2)) == {"Hyrule Castle"}

    def test_filler_phrases_rejected(self):
        text = "**The Game** rewards **this guide** readers and **the player** who explores."
        assert extract_covered_topics(text) == set()

    def test_length_bounds(self):
        text = "**X** and **" + "A" * 61 + "**"
        assert extract_covered_topics(text) == set()

    def test_case_insensitive_dedup_keeps_first_spelling(self):
        text = "**Zonai Devices** power builds. Later **zonai devices** appear again."
        assert extract_covered_topics(text) == {"Zonai Devices"}

    def test_empty_text(self):
        assert extract_covered_topics("") == set()

    def test_defined_terms_only_from_emphasis(self):
        text = 'Learn **Recall** and "Sky Islands" early.'
        assert extract_defined_terms(text) == {"Recall"}


class TestUpdateSectionWriteState:
    def test_initial_state_is_empty(self):
        state = create_initial_section_write_state()
        assert state.sections_written == 0
        assert len(state.covered_topics) == 0
        assert state.covered_elements == frozenset()

    def test_update_returns_new_state(self):
        state = create_initial_section_write_state()
        updated = update_section_write_state(state, "Try **Ultrahand** first.", "Getting Started")
        assert updated is not state
        assert state.sections_written == 0
        assert updated.sections_written == 1
        assert "ultrahand" in updated.covered_topics
        assert "ultrahand" in updated.defined_terms

    def test_first_section_keeps_attribution(self):
        state = create_initial_section_write_state()
        state = update_section_write_state(state, "Meet **Ultrahand**.", "Getting Started")
        state = update_section_write_state(state, "More **Ultrahand** tricks.", "Advanced Building")
        topic = state.covered_topics["ultrahand"]
        assert topic.section_headline == "Getting Started"
        assert topic.section_index == 1

    def test_explicit_elements_normalized(self):
        state = update_section_write_state(
            create_initial_section_write_state(),
            "Some text.",
            "Intro",
            explicit_elements=["  Ultrahand ", "FUSE", ""],
        )
        assert state.covered_elements == frozenset({"ultrahand", "fuse"})
        assert is_element_covered(state, "Fuse")

    def test_empty_text_leaves_state_unchanged(self):
        state = update_section_write_state(create_initial_section_write_state(), "Meet **Ultrahand**.", "A")
        assert update_section_write_state(state, "   ", "B", explicit_elements=["Fuse"]) is state

    def test_state_mapping_is_read_only(self):
        state = update_section_write_state(create_initial_section_write_state(), "Meet **Ultrahand**.", "A")
        with pytest.raises(TypeError):
            state.covered_topics["other"] = None  # type: ignore[index]


class TestCrossReferenceContext:
    def test_empty_before_any_section(self):
        assert build_cross_reference_context(create_initial_section_write_state()) == ""

    def test_lists_topics_per_section_and_defined_terms(self):
        state = create_initial_section_write_state()
        state = update_section_write_state(state, "Use **Ultrahand** on logs.", "Getting Started")
        state = update_section_write_state(state, "Attach **Fuse** to sticks.", "Combat Basics")
        context = build_cross_reference_context(state)
        assert context.startswith("=== ALREADY COVERED (DO NOT RE-EXPLAIN) ===")
        assert '- Section 1 "Getting Started": Ultrahand' in context
        assert '- Section 2 "Combat Basics": Fuse' in context
        assert "Previously defined terms (do not re-define or bold again): fuse, ultrahand" in context

    def test_topics_capped_per_section(self):
        text = " ".join(f"**Topic{i:02d}**" for i in range(12))
        state = update_section_write_state(create_initial_section_write_state(), text, "Lots")
        context = build_cross_reference_context(state, CoverageConfig(max_topics_per_section=3))
        line = next(line for line in context.splitlines() if line.startswith("- Section 1"))
        assert line.count(",") == 2


class TestRequiredElementsReminder:
    def test_empty_when_everything_covered(self):
        state = update_section_write_state(
            create_initial_section_write_state(), "text", "A", explicit_elements=["Ultrahand"]
        )
        assert build_required_elements_reminder(state, ["ultrahand"]) == ""

    def test_lists_uncovered_in_input_order(self):
        state = update_section_write_state(
            create_initial_section_write_state(), "text", "A", explicit_elements=["Fuse"]
        )
        reminder = build_required_elements_reminder(state, ["Ultrahand", "Fuse", "Recall"])
        assert reminder == "=== REQUIRED ELEMENTS NOT YET COVERED ===\n- Ultrahand\n- Recall"
        assert get_uncovered_elements(state, ["Ultrahand", "Fuse", "Recall"]) == ["Ultrahand", "Recall"]

    def test_priority_block_for_this_section(self):
        state = create_initial_section_write_state()
        reminder = build_required_elements_reminder(state, ["Ultrahand", "Recall"], ["recall", "Sky Islands"])
        blocks = reminder.split("\n\n")
        assert blocks[0] == "=== MUST COVER IN THIS SECTION ===\n- Recall\n- Sky Islands"
        assert blocks[1].startswith("=== REQUIRED ELEMENTS NOT YET COVERED ===")


class TestMentionsTerm:
    @pytest.mark.parametrize(
        "text,term",
        [
            ("Use **Fuse** on rocks.", "Fuse"),
            ("fuse everything", "FUSE"),
            ("Try the Master Sword, then Recall.", "master sword"),
            ("Best with C++ bindings.", "C++"),
        ],
    )
    def test_whole_word_mentions(self, text, term):
        assert mentions_term(text, term)

    @pytest.mark.parametrize(
        "text,term",
        [
            ("The player refused to help.", "Fuse"),
            ("Mapping the area takes time.", "Map"),
            ("Nothing here.", ""),
        ],
    )
    def test_substrings_do_not_count(self, text, term):
        assert not mentions_term(text, term)
