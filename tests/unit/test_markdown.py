"""Tests for markdown section helpers."""

import pytest

from content_pipeline.core.pipeline.markdown import (
    assemble_draft,
    extract_image_urls,
    find_section,
    insert_section,
    parse_draft,
    replace_section,
)

DRAFT = """# Beginner Guide

Welcome to the guide.

## Getting Started

Use Ultrahand.

```python
## not a heading
```

## Combat Basics

Fuse weapons.

## Sources

- https://example.com
"""


class TestParseDraft:
    def test_title_intro_sections(self):
        draft = parse_draft(DRAFT)
        assert draft.title == "Beginner Guide"
        assert draft.intro == "Welcome to the guide."
        assert [s.headline for s in draft.sections] == ["Getting Started", "Combat Basics", "Sources"]
        assert [s.headline for s in draft.content_sections] == ["Getting Started", "Combat Basics"]

    def test_references_heading_is_not_content(self):
        draft = parse_draft("# T\n\n## A\n\nx\n\n## References\n\n- y\n")
        assert [s.headline for s in draft.content_sections] == ["A"]

    def test_fenced_heading_ignored(self):
        section = find_section(DRAFT, "getting  started")
        assert section is not None
        assert "## not a heading" in section.content

    def test_no_title(self):
        draft = parse_draft("## Only\n\nBody")
        assert draft.title is None
        assert draft.sections[0].content == "Body"


class TestAssembleDraft:
    def test_assembles_in_order(self):
        markdown = assemble_draft("Guide", [("One", "First body."), ("Two", "Second body.")])
        assert markdown == "# Guide\n\n## One\n\nFirst body.\n\n## Two\n\nSecond body.\n"

    def test_body_with_own_heading_kept(self):
        markdown = assemble_draft("Guide", [("One", "## Better Heading\n\nBody.")])
        assert "## Better Heading" in markdown
        assert "## One" not in markdown


class TestEditing:
    def test_replace_section(self):
        updated = replace_section(DRAFT, "Combat Basics", "Fuse weapons and shields.")
        assert find_section(updated, "Combat Basics").content == "Fuse weapons and shields."
        assert find_section(updated, "Getting Started").content == find_section(DRAFT, "Getting Started").content

    def test_replace_missing_section(self):
        with pytest.raises(KeyError):
            replace_section(DRAFT, "Endgame", "text")

    def test_insert_before_sources_by_default(self):
        updated = insert_section(DRAFT, "Exploration", "Climb towers.")
        headlines = [s.headline for s in parse_draft(updated).sections]
        assert headlines == ["Getting Started", "Combat Basics", "Exploration", "Sources"]

    def test_insert_after(self):
        updated = insert_section(DRAFT, "Controls", "Press A.", after="Getting Started")
        headlines = [s.headline for s in parse_draft(updated).sections]
        assert headlines[1] == "Controls"


class TestExtractImageUrls:
    def test_dedup_in_order_and_skip_fences(self):
        markdown = (
            "![a](https://img.example.com/a.png)\n"
            '![b](https://img.example.com/b.jpg "Title")\n'
            "```\n![c](https://img.example.com/c.png)\n```\n"
            "![a again](https://img.example.com/a.png)\n"
        )
        assert extract_image_urls(markdown) == [
            "https://img.example.com/a.png",
            "https://img.example.com/b.jpg",
        ]
