"""Cross-section coverage tracking.

Keeps a running memory of what earlier sections of a document already
covered, so each later section can be written without re-explaining the same
concepts, and surfaces the plan's required elements that are still missing.

All functions are pure: ``SectionWriteState`` is immutable and every update
returns a new value.

Example:
    state = create_initial_section_write_state()
    state = update_section_write_state(state, section_1_md, "Getting Started", ["Ultrahand"])

    context = build_cross_reference_context(state)
    reminder = build_required_elements_reminder(state, ["Ultrahand", "Fuse"])
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

# =============================================================================
# Configuration
# =============================================================================

DEFAULT_FILLER_PHRASES: frozenset[str] = frozenset(
    {
        "the game",
        "this guide",
        "the player",
        "the first",
        "the last",
        "the best",
        "the most",
        "the next",
        "the same",
        "in this",
        "for example",
        "for instance",
        "on the",
        "at the",
        "to the",
        "from the",
        "with the",
        "as the",
        "by the",
        "up the",
        "down the",
        "after the",
        "before the",
        "during the",
    }
)

# Leading words that make a short capitalized phrase boilerplate rather than a name
DEFAULT_FILLER_DETERMINERS: frozenset[str] = frozenset(
    {"the", "a", "an", "this", "that", "these", "those", "in", "for", "on", "at", "of", "to"}
)

# Generic nouns that, after a determiner, never name a specific concept
DEFAULT_GENERIC_NOUNS: frozenset[str] = frozenset(
    {
        "game",
        "player",
        "players",
        "guide",
        "article",
        "section",
        "example",
        "instance",
        "first",
        "last",
        "best",
        "most",
        "next",
        "same",
        "end",
        "start",
        "beginning",
        "way",
        "case",
        "time",
        "world",
        "story",
        "this",
        "that",
    }
)


@dataclass(frozen=True)
class CoverageConfig:
    """Tunable heuristics for topic extraction and context rendering.

    Attributes:
        min_topic_length: Shortest candidate kept (characters).
        max_topic_length: Longest candidate kept (characters).
        min_phrase_occurrences: Times a capitalized multi-word phrase must
            recur before it counts as a topic.
        filler_phrases: Lowercase phrases that are never topics.
        filler_determiners: Leading words of the "determiner + generic noun" filter.
        generic_nouns: Trailing words of the "determiner + generic noun" filter.
        max_topics_per_section: Topics listed per section in the context block.
        max_defined_terms: Defined terms listed in the context block.
    """

    min_topic_length: int = 2
    max_topic_length: int = 60
    min_phrase_occurrences: int = 3
    filler_phrases: frozenset[str] = DEFAULT_FILLER_PHRASES
    filler_determiners: frozenset[str] = DEFAULT_FILLER_DETERMINERS
    generic_nouns: frozenset[str] = DEFAULT_GENERIC_NOUNS
    max_topics_per_section: int = 10
    max_defined_terms: int = 15


DEFAULT_COVERAGE_CONFIG = CoverageConfig()

# =============================================================================
# State
# =============================================================================


@dataclass(frozen=True)
class CoveredTopic:
    """A concept already written about, attributed to the section that introduced it."""

    topic: str
    section_headline: str
    section_index: int


@dataclass(frozen=True)
class SectionWriteState:
    """Cumulative cross-section memory for one generation run.

    Attributes:
        covered_topics: Normalized topic key -> first section that covered it.
        covered_elements: Normalized required elements satisfied so far.
        defined_terms: Normalized emphasized terms introduced so far.
        sections_written: Number of sections folded into this state.
    """

    covered_topics: Mapping[str, CoveredTopic] = field(default_factory=lambda: MappingProxyType({}))
    covered_elements: frozenset[str] = frozenset()
    defined_terms: frozenset[str] = frozenset()
    sections_written: int = 0


def normalize_term(term: str) -> str:
    """Normalize a term for case-insensitive matching."""
    return term.strip().lower()


def create_initial_section_write_state() -> SectionWriteState:
    """Return an empty state for the start of a generation run."""
    return SectionWriteState()


# =============================================================================
# Extraction
# =============================================================================

# **text** or __text__
_EMPHASIS_RE = re.compile(r"\*\*([^*\n]+?)\*\*|__([^_\n]+?)__")

# "Title Case Phrase" in straight or curly quotes
_QUOTED_TITLE_RE = re.compile(r"[\"“]([A-Z][A-Za-z0-9'\-]*(?:\s+[A-Za-z0-9'\-]+){0,5})[\"”]")

# Two to four consecutive capitalized words
_CAPITALIZED_PHRASE_RE = re.compile(r"\b([A-Z][a-z]+(?:[ \t]+[A-Z][a-z]+){1,3})\b")


def _is_title_case(phrase: str) -> bool:
    words = phrase.split()
    significant = [w for w in words if len(w) > 3]
    return bool(words) and words[0][:1].isupper() and all(w[:1].isupper() for w in significant)


def _is_filler(candidate: str, config: CoverageConfig) -> bool:
    normalized = " ".join(normalize_term(candidate).split())
    if normalized in config.filler_phrases:
        return True
    words = normalized.split()
    return len(words) == 2 and words[0] in config.filler_determiners and words[1] in config.generic_nouns


def _keep(candidate: str, config: CoverageConfig) -> bool:
    length = len(candidate)
    if length < config.min_topic_length or length > config.max_topic_length:
        return False
    return not _is_filler(candidate, config)


def _iter_emphasized(text: str) -> Iterator[str]:
    for match in _EMPHASIS_RE.finditer(text):
        yield (match.group(1) or match.group(2) or "").strip()


def _iter_quoted_titles(text: str) -> Iterator[str]:
    for match in _QUOTED_TITLE_RE.finditer(text):
        phrase = match.group(1).strip()
        if _is_title_case(phrase):
            yield phrase


def _iter_recurring_phrases(text: str, min_occurrences: int) -> Iterator[str]:
    counts = Counter(m.group(1) for m in _CAPITALIZED_PHRASE_RE.finditer(text))
    for phrase, count in counts.items():
        if count >= min_occurrences:
            yield phrase


def iter_covered_topics(text: str, config: Optional[CoverageConfig] = None) -> Iterator[str]:
    """Lazily yield distinct topic candidates from rendered section text.

    Three independent rules run over the same text: emphasized spans,
    quoted Title-Case phrases, and capitalized multi-word phrases that recur
    at least ``config.min_phrase_occurrences`` times. Candidates are
    de-duplicated case-insensitively (first spelling wins) and filtered for
    length and filler patterns.
    """
    cfg = config or DEFAULT_COVERAGE_CONFIG
    if not text:
        return
    seen: set[str] = set()
    sources: Iterable[Iterator[str]] = (
        _iter_emphasized(text),
        _iter_quoted_titles(text),
        _iter_recurring_phrases(text, cfg.min_phrase_occurrences),
    )
    for source in sources:
        for candidate in source:
            key = normalize_term(candidate)
            if key in seen or not _keep(candidate, cfg):
                continue
            seen.add(key)
            yield candidate


def extract_covered_topics(text: str, config: Optional[CoverageConfig] = None) -> set[str]:
    """Extract the set of topics covered by a section (case preserved)."""
    return set(iter_covered_topics(text, config))


def extract_defined_terms(text: str, config: Optional[CoverageConfig] = None) -> set[str]:
    """Extract terms formally introduced with emphasis markup."""
    cfg = config or DEFAULT_COVERAGE_CONFIG
    if not text:
        return set()
    return {term for term in _iter_emphasized(text) if _keep(term, cfg)}


# =============================================================================
# State updates
# =============================================================================


def update_section_write_state(
    state: SectionWriteState,
    text: str,
    section_headline: str,
    explicit_elements: Optional[Iterable[str]] = None,
    config: Optional[CoverageConfig] = None,
) -> SectionWriteState:
    """Fold one written section into the coverage state.

    Topics already present keep their original attribution. Empty section
    text leaves the state unchanged.

    Args:
        state: Current state (not mutated).
        text: Markdown of the section just written.
        section_headline: Headline of that section.
        explicit_elements: Required elements the section is known to satisfy.
        config: Extraction heuristics.

    Returns:
        A new SectionWriteState.
    """
    if not text or not text.strip():
        logger.debug("Skipping coverage update for empty section %r", section_headline)
        return state

    section_index = state.sections_written + 1

    topics = dict(state.covered_topics)
    for topic in iter_covered_topics(text, config):
        key = normalize_term(topic)
        if key not in topics:
            topics[key] = CoveredTopic(
                topic=topic,
                section_headline=section_headline,
                section_index=section_index,
            )

    elements = set(state.covered_elements)
    for element in explicit_elements or ():
        normalized = normalize_term(element)
        if normalized:
            elements.add(normalized)

    terms = set(state.defined_terms)
    terms.update(normalize_term(t) for t in extract_defined_terms(text, config))

    return SectionWriteState(
        covered_topics=MappingProxyType(topics),
        covered_elements=frozenset(elements),
        defined_terms=frozenset(terms),
        sections_written=section_index,
    )


# =============================================================================
# Queries and prompt blocks
# =============================================================================


def is_element_covered(state: SectionWriteState, element: str) -> bool:
    return normalize_term(element) in state.covered_elements


def mentions_term(text: str, term: str) -> bool:
    """Whole-word, case-insensitive mention check (``Fuse`` does not match ``refused``)."""
    key = normalize_term(term)
    if not key:
        return False
    return re.search(rf"(?<!\w){re.escape(key)}(?!\w)", text.lower()) is not None


def get_uncovered_elements(state: SectionWriteState, required: Sequence[str]) -> list[str]:
    """Required elements not yet covered, in input order."""
    return [element for element in required if normalize_term(element) not in state.covered_elements]


def build_cross_reference_context(
    state: SectionWriteState,
    config: Optional[CoverageConfig] = None,
) -> str:
    """Render the "already covered" guidance block for the next section.

    Returns an empty string before any section has been written.
    """
    cfg = config or DEFAULT_COVERAGE_CONFIG
    if state.sections_written == 0 or (not state.covered_topics and not state.defined_terms):
        return ""

    by_section: dict[int, list[CoveredTopic]] = {}
    for topic in state.covered_topics.values():
        by_section.setdefault(topic.section_index, []).append(topic)

    lines = [
        "=== ALREADY COVERED (DO NOT RE-EXPLAIN) ===",
        "The following were explained in previous sections. Reference them briefly; do not re-explain:",
        "",
    ]
    for section_index in sorted(by_section):
        topics = by_section[section_index]
        names = ", ".join(t.topic for t in topics[: cfg.max_topics_per_section])
        lines.append(f'- Section {section_index} "{topics[0].section_headline}": {names}')

    if state.defined_terms:
        lines.append("")
        terms = ", ".join(sorted(state.defined_terms)[: cfg.max_defined_terms])
        lines.append(f"Previously defined terms (do not re-define or bold again): {terms}")

    return "\n".join(lines)


def build_required_elements_reminder(
    state: SectionWriteState,
    required: Sequence[str],
    priority_for_this_section: Optional[Sequence[str]] = None,
) -> str:
    """Render a reminder of required elements still missing from the document.

    Returns an empty string when every required element is covered.
    """
    uncovered = get_uncovered_elements(state, required)
    if not uncovered:
        return ""

    blocks: list[str] = []
    if priority_for_this_section:
        priority_keys = {normalize_term(p) for p in priority_for_this_section}
        must_cover = [e for e in uncovered if normalize_term(e) in priority_keys]
        # Priority items outside the required list still belong to this section
        required_keys = {normalize_term(r) for r in required}
        must_cover.extend(
            p
            for p in priority_for_this_section
            if normalize_term(p) not in required_keys and not is_element_covered(state, p)
        )
        if must_cover:
            blocks.append("=== MUST COVER IN THIS SECTION ===\n" + "\n".join(f"- {e}" for e in must_cover))

    blocks.append(
        "=== REQUIRED ELEMENTS NOT YET COVERED ===\n" + "\n".join(f"- {e}" for e in uncovered)
    )
    return "\n\n".join(blocks)
