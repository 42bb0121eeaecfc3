"""Deterministic text cleanup for recipe evidence.

Social captions, OCR output and transcripts arrive full of emoji, hashtags,
misspellings and inconsistent list markers. ``normalize_text`` applies a
fixed sequence of pattern-driven rewrites driven by ``HeuristicTables`` and
reports which of them actually changed the text.

Normalizing already-normalized text is a no-op.
"""

import logging
import math
import re
from dataclasses import dataclass, replace
from typing import Final

from .tables import DEFAULT_TABLES, HeuristicTables

logger = logging.getLogger(__name__)

_EMOJI: Final = re.compile(
    "["
    "\U0001f000-\U0001faff"  # symbols, pictographs, emoticons, transport
    "\U00002600-\U000027bf"  # misc symbols, dingbats
    "\U0000fe0f\U0000200d"  # variation selector, zero-width joiner
    "]+"
)
_HASHTAG: Final = re.compile(r"(?<![\w&])#[\w_]+")
_MENTION: Final = re.compile(r"(?<![\w.])@[\w_.]*\w")
_URL: Final = re.compile(r"https?://\S+|\bwww\.\S+", re.I)
_BULLET: Final = re.compile(r"^[ \t]*(?:[•*·▪◦●‣]|-(?!-))[ \t]+", re.M)
_NUMBERED: Final = re.compile(r"^[ \t]*(?:step[ \t]*)?(\d{1,2})[.):][ \t]+", re.I | re.M)
_INGREDIENTS_HEADING: Final = re.compile(r"^\s*ingredients?\s*:?\s*$", re.I | re.M)
_INSTRUCTIONS_HEADING: Final = re.compile(
    r"^\s*(?:instructions|directions|method|steps|preparation)\s*:?\s*$", re.I | re.M
)
_QTY: Final = r"(?:\d+(?:[./]\d+)?|[" + "".join(DEFAULT_TABLES.unicode_fractions) + "])"


@dataclass(frozen=True)
class NormalizationOptions:
    """Which rewrites to apply."""

    remove_emojis: bool = True
    remove_hashtags: bool = True
    remove_mentions: bool = True
    remove_urls: bool = True
    fix_common_errors: bool = True
    standardize_units: bool = True
    normalize_lists: bool = True
    insert_headings: bool = True


PRESETS: Final = {
    "social": NormalizationOptions(),
    "ocr": NormalizationOptions(remove_hashtags=False, remove_mentions=False),
    "transcribed": NormalizationOptions(
        remove_emojis=False, remove_hashtags=False, remove_mentions=False, remove_urls=False
    ),
    "web": NormalizationOptions(remove_hashtags=False, remove_mentions=False),
}


@dataclass(frozen=True)
class NormalizationResult:
    """Normalized text plus a record of the rewrites that fired."""

    text: str
    operations_applied: tuple[str, ...]
    confidence: float
    original_length: int

    @property
    def changed(self) -> bool:
        return bool(self.operations_applied)


def preset(name: str, **overrides: bool) -> NormalizationOptions:
    """Look up a preset by name, optionally overriding individual toggles.

    Raises:
        KeyError: If the preset does not exist
    """
    options = PRESETS[name]
    return replace(options, **overrides) if overrides else options


def normalize_text(
    text: str,
    options: NormalizationOptions | None = None,
    tables: HeuristicTables = DEFAULT_TABLES,
) -> NormalizationResult:
    """Apply the enabled rewrites in a fixed order.

    Args:
        text: Raw evidence text
        options: Toggles; defaults to the ``social`` preset
        tables: Correction and unit tables

    Returns:
        NormalizationResult. ``confidence`` starts at 0.5 and rises 0.1 for each
        rewrite that changed the text, plus 0.1 when both an ingredient list
        and an instruction list are recognizable afterwards.
    """
    options = options or NormalizationOptions()
    original_length = len(text)
    applied: list[str] = []

    def step(name: str, enabled: bool, func) -> None:
        nonlocal text
        if not enabled:
            return
        updated = func(text)
        if updated != text:
            applied.append(name)
            text = updated

    step("remove_emojis", options.remove_emojis, lambda t: _EMOJI.sub("", t))
    step("remove_hashtags", options.remove_hashtags, lambda t: _HASHTAG.sub("", t))
    step("remove_mentions", options.remove_mentions, lambda t: _MENTION.sub("", t))
    step("remove_urls", options.remove_urls, lambda t: _URL.sub("", t))
    step("fix_common_errors", options.fix_common_errors, lambda t: fix_common_errors(t, tables))
    step("standardize_units", options.standardize_units, lambda t: standardize_units(t, tables))
    step("normalize_bullets", options.normalize_lists, lambda t: _BULLET.sub("- ", t))
    step("normalize_numbered", options.normalize_lists, lambda t: _NUMBERED.sub(r"\1. ", t))
    step("normalize_whitespace", True, normalize_whitespace)
    step("insert_headings", options.insert_headings, lambda t: insert_headings(t, tables))

    confidence = 0.5 + 0.1 * len(applied)
    if has_ingredient_list(text, tables) and has_instruction_list(text, tables):
        confidence += 0.1

    if applied:
        logger.debug(f"Normalization applied: {', '.join(applied)}")

    return NormalizationResult(
        text=text,
        operations_applied=tuple(applied),
        confidence=min(1.0, confidence),
        original_length=original_length,
    )


def fix_common_errors(text: str, tables: HeuristicTables = DEFAULT_TABLES) -> str:
    """Replace known OCR and transcription misspellings (whole words only)."""
    if not tables.common_errors:
        return text
    keys = sorted(tables.common_errors, key=len, reverse=True)
    pattern = re.compile(r"\b(" + "|".join(map(re.escape, keys)) + r")\b", re.I)
    return pattern.sub(lambda m: tables.common_errors[m.group(1).lower()], text)


def standardize_units(text: str, tables: HeuristicTables = DEFAULT_TABLES) -> str:
    """Rewrite long-form unit names that follow a quantity.

    Example:
        >>> standardize_units("2 tablespoons olive oil")
        '2 tbsp olive oil'
    """
    keys = sorted(tables.unit_mappings, key=len, reverse=True)
    pattern = re.compile(
        rf"(?P<qty>{_QTY})\s*(?P<unit>" + "|".join(map(re.escape, keys)) + r")\b", re.I
    )
    return pattern.sub(
        lambda m: f"{m.group('qty')} {tables.unit_mappings[m.group('unit').lower()]}", text
    )


def normalize_whitespace(text: str) -> str:
    """Collapse runs of spaces, trim lines and squeeze blank lines."""
    lines = [re.sub(r"[ \t\u00a0]+", " ", line).strip() for line in text.splitlines()]
    joined = "\n".join(lines)
    return re.sub(r"\n{3,}", "\n\n", joined).strip()


def insert_headings(text: str, tables: HeuristicTables = DEFAULT_TABLES) -> str:
    """Label unlabeled ingredient and instruction blocks.

    A run of at least three ``- `` lines, most of which carry a measurement,
    gets an ``Ingredients:`` heading. A run of at least two ``N. `` lines,
    half of which contain a cooking verb, gets an ``Instructions:`` heading.
    Nothing is inserted when the text already has the heading.
    """
    lines = text.split("\n")

    if not _INGREDIENTS_HEADING.search(text):
        block = _find_block(lines, lambda line: line.startswith("- "), _is_ingredient_block(tables))
        if block is not None:
            lines.insert(block, "Ingredients:")

    if not _INSTRUCTIONS_HEADING.search(text):
        block = _find_block(
            lines, lambda line: re.match(r"^\d{1,2}\. ", line) is not None, _is_instruction_block(tables)
        )
        if block is not None:
            lines.insert(block, "Instructions:")

    return "\n".join(lines)


def has_ingredient_list(text: str, tables: HeuristicTables = DEFAULT_TABLES) -> bool:
    """Check for an ingredients heading or a measurement-heavy bullet block."""
    if _INGREDIENTS_HEADING.search(text):
        return True
    lines = text.split("\n")
    return _find_block(lines, lambda line: line.startswith("- "), _is_ingredient_block(tables)) is not None


def has_instruction_list(text: str, tables: HeuristicTables = DEFAULT_TABLES) -> bool:
    """Check for an instructions heading or a numbered block of cooking steps."""
    if _INSTRUCTIONS_HEADING.search(text):
        return True
    lines = text.split("\n")
    return (
        _find_block(
            lines, lambda line: re.match(r"^\d{1,2}\. ", line) is not None, _is_instruction_block(tables)
        )
        is not None
    )


def _measurement_pattern(tables: HeuristicTables) -> re.Pattern[str]:
    units = sorted(set(tables.unit_aliases) | set(tables.unit_mappings), key=len, reverse=True)
    return re.compile(rf"{_QTY}\s*(?:" + "|".join(map(re.escape, units)) + r")\b", re.I)


def _is_ingredient_block(tables: HeuristicTables):
    pattern = _measurement_pattern(tables)

    def check(block: list[str]) -> bool:
        if len(block) < 3:
            return False
        measured = sum(1 for line in block if pattern.search(line))
        return measured >= min(3, math.ceil(0.6 * len(block)))

    return check


def _is_instruction_block(tables: HeuristicTables):
    verbs = re.compile(r"\b(?:" + "|".join(map(re.escape, tables.cooking_verbs)) + r")\b", re.I)

    def check(block: list[str]) -> bool:
        if len(block) < 2:
            return False
        with_verbs = sum(1 for line in block if verbs.search(line))
        return with_verbs >= max(2, math.ceil(len(block) / 2))

    return check


def _find_block(lines: list[str], member, accept) -> int | None:
    """Index of the first run of ``member`` lines that ``accept`` approves."""
    i = 0
    while i < len(lines):
        if not member(lines[i]):
            i += 1
            continue
        start = i
        while i < len(lines) and member(lines[i]):
            i += 1
        if accept(lines[start:i]):
            return start
    return None
