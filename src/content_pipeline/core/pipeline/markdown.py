"""Markdown section helpers.

Generated drafts are controlled output: an optional ``# Title`` line, an
optional intro, then ``## `` sections. These helpers parse and edit that shape
without attempting general markdown parsing. Headings inside fenced code
blocks are ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

_FENCE_RE = re.compile(r"^\s*(```|~~~)")
_IMAGE_RE = re.compile(r"!\[[^\]]*\]\(\s*<?([^)\s>]+)>?(?:\s+\"[^\"]*\")?\s*\)")

SOURCES_HEADINGS = frozenset({"sources", "references"})


@dataclass(frozen=True)
class MarkdownSection:
    headline: str
    content: str


@dataclass(frozen=True)
class ParsedDraft:
    """A draft split into title, intro and H2 sections."""

    title: Optional[str]
    intro: str
    sections: Tuple[MarkdownSection, ...]

    @property
    def content_sections(self) -> Tuple[MarkdownSection, ...]:
        """Sections excluding a "Sources" or "References" list."""
        return tuple(s for s in self.sections if not is_sources_heading(s.headline))


def normalize_heading(heading: str) -> str:
    return " ".join(heading.split()).lower()


def is_sources_heading(heading: str) -> bool:
    return normalize_heading(heading) in SOURCES_HEADINGS


def _iter_lines_outside_fences(lines: Sequence[str]) -> Iterator[Tuple[str, bool]]:
    in_fence = False
    for line in lines:
        if _FENCE_RE.match(line):
            in_fence = not in_fence
            yield line, True
            continue
        yield line, in_fence


def parse_draft(markdown: str) -> ParsedDraft:
    """Split markdown into title, intro and ``## `` sections (order kept)."""
    title: Optional[str] = None
    intro: List[str] = []
    sections: List[MarkdownSection] = []
    heading: Optional[str] = None
    body: List[str] = []

    for line, fenced in _iter_lines_outside_fences(markdown.splitlines()):
        if not fenced and line.startswith("## "):
            if heading is not None:
                sections.append(MarkdownSection(heading, "\n".join(body).strip()))
            heading = line[3:].strip()
            body = []
        elif not fenced and title is None and heading is None and line.startswith("# "):
            title = line[2:].strip()
        elif heading is not None:
            body.append(line)
        else:
            intro.append(line)

    if heading is not None:
        sections.append(MarkdownSection(heading, "\n".join(body).strip()))
    return ParsedDraft(title=title, intro="\n".join(intro).strip(), sections=tuple(sections))


def render_draft(draft: ParsedDraft) -> str:
    parts: List[str] = []
    if draft.title:
        parts.append(f"# {draft.title}")
    if draft.intro:
        parts.append(draft.intro)
    for section in draft.sections:
        parts.append(f"## {section.headline}\n\n{section.content}".rstrip())
    return "\n\n".join(parts) + "\n"


def assemble_draft(title: str, sections: Iterable[Tuple[str, str]], intro: str = "") -> str:
    """Build a draft from a title and (headline, body) pairs.

    A body that already starts with its own ``## `` heading is used as is.
    """
    parsed: List[MarkdownSection] = []
    for headline, body in sections:
        text = body.strip()
        if text.startswith("## "):
            inner = parse_draft(text)
            if inner.sections:
                parsed.extend(inner.sections)
                continue
        parsed.append(MarkdownSection(headline, text))
    return render_draft(ParsedDraft(title=title, intro=intro.strip(), sections=tuple(parsed)))


def find_section(markdown: str, headline: str) -> Optional[MarkdownSection]:
    """Case- and whitespace-insensitive lookup of a section by headline."""
    wanted = normalize_heading(headline)
    for section in parse_draft(markdown).sections:
        if normalize_heading(section.headline) == wanted:
            return section
    return None


def replace_section(markdown: str, headline: str, new_content: str) -> str:
    """Replace the body of the named section.

    Raises:
        KeyError: If no section has that headline.
    """
    draft = parse_draft(markdown)
    wanted = normalize_heading(headline)
    replaced = False
    sections: List[MarkdownSection] = []
    for section in draft.sections:
        if not replaced and normalize_heading(section.headline) == wanted:
            sections.append(MarkdownSection(section.headline, new_content.strip()))
            replaced = True
        else:
            sections.append(section)
    if not replaced:
        raise KeyError(headline)
    return render_draft(ParsedDraft(draft.title, draft.intro, tuple(sections)))


def insert_section(markdown: str, headline: str, content: str, after: Optional[str] = None) -> str:
    """Insert a new section after ``after`` (or before "Sources"/at the end)."""
    draft = parse_draft(markdown)
    new = MarkdownSection(headline.strip(), content.strip())
    sections = list(draft.sections)

    index = len(sections)
    if after is not None:
        wanted = normalize_heading(after)
        for i, section in enumerate(sections):
            if normalize_heading(section.headline) == wanted:
                index = i + 1
                break
    elif sections and is_sources_heading(sections[-1].headline):
        index = len(sections) - 1

    sections.insert(index, new)
    return render_draft(ParsedDraft(draft.title, draft.intro, tuple(sections)))


def extract_image_urls(markdown: str) -> List[str]:
    """Image URLs referenced with ``![alt](url)``, de-duplicated in order."""
    seen: set[str] = set()
    urls: List[str] = []
    for line, fenced in _iter_lines_outside_fences(markdown.splitlines()):
        if fenced:
            continue
        for match in _IMAGE_RE.finditer(line):
            url = match.group(1)
            if url not in seen:
                seen.add(url)
                urls.append(url)
    return urls
