"""Ingredient line tokenizer.

Splits lines such as ``"1 1/2 cups all-purpose flour, sifted"`` into
quantity, unit, name and notes. Quantities may be integers, decimals,
simple fractions, unicode fractions (``½``), mixed numbers (``1 1/2``,
``1½``) or ranges (``2-3``, lower bound kept). Units are recognized only
from the closed vocabulary in ``HeuristicTables``.
"""

import re
from dataclasses import dataclass
from typing import Final

from .models import MAX_INGREDIENT_NAME_LENGTH, ParsedIngredient
from .tables import DEFAULT_TABLES, HeuristicTables

_FRACTION_CHARS: Final = "".join(DEFAULT_TABLES.unicode_fractions)

_SINGLE_QTY: Final = (
    rf"\d+\s+\d+/\d+"  # mixed number: 1 1/2
    rf"|\d+\s*[{_FRACTION_CHARS}]"  # 1½ or 1 ½
    rf"|\d+/\d+"  # 1/2
    rf"|\d+(?:\.\d+)?"  # 2, 1.5
    rf"|[{_FRACTION_CHARS}]"  # ½
)
QUANTITY_PATTERN: Final = re.compile(
    rf"^(?P<qty>{_SINGLE_QTY})(?:\s*(?:-|–|to)\s*(?P<upper>{_SINGLE_QTY}))?(?=[\sA-Za-z(]|$)"
)

_BULLET_PREFIX: Final = re.compile(r"^\s*(?:[-•*·▪◦]|\d+[.)])\s+")
_OPTIONAL: Final = re.compile(r"\s*\(\s*optional\s*\)|,?\s*\boptional\b", re.I)
_TO_TASTE: Final = re.compile(r",?\s*\bto taste\b", re.I)
_PARENTHETICAL: Final = re.compile(r"\s*\(([^)]*)\)")
_LEADING_PARENTHETICAL: Final = re.compile(r"^\(([^)]*)\)\s*")
_CASE_SENSITIVE_UNITS: Final = {"T": "tbsp", "Tbsp": "tbsp", "TBSP": "tbsp", "C": "cup"}


@dataclass(frozen=True)
class TokenizedIngredient:
    """Raw tokenizer output before it becomes a ``ParsedIngredient``."""

    quantity: float | None
    unit: str | None
    name: str
    notes: str | None
    optional: bool


def parse_quantity(text: str, tables: HeuristicTables = DEFAULT_TABLES) -> float | None:
    """Convert a quantity token to a float.

    Example:
        >>> parse_quantity("1 1/2")
        1.5
        >>> parse_quantity("1½")
        1.5
        >>> parse_quantity("3/4")
        0.75
    """
    text = text.strip()
    if not text:
        return None

    total = 0.0
    for part in re.findall(rf"\d+/\d+|\d+(?:\.\d+)?|[{_FRACTION_CHARS}]", text):
        if part in tables.unicode_fractions:
            total += tables.unicode_fractions[part]
        elif "/" in part:
            numerator, denominator = part.split("/")
            if int(denominator) == 0:
                return None
            total += int(numerator) / int(denominator)
        else:
            total += float(part)
    return round(total, 4)


def normalize_unit(token: str, tables: HeuristicTables = DEFAULT_TABLES) -> str | None:
    """Map a unit spelling to its canonical vocabulary entry, if it is one."""
    stripped = token.strip().rstrip(".")
    if stripped in _CASE_SENSITIVE_UNITS:
        return _CASE_SENSITIVE_UNITS[stripped]
    lowered = stripped.lower()
    if lowered in ("t", "c"):
        return tables.unit_aliases[lowered] if stripped == lowered else None
    return tables.unit_aliases.get(lowered)


def tokenize_ingredient(line: str, tables: HeuristicTables = DEFAULT_TABLES) -> TokenizedIngredient:
    """Split an ingredient line into its parts.

    Example:
        >>> tokenize_ingredient("2 cups flour")
        TokenizedIngredient(quantity=2.0, unit='cup', name='flour', notes=None, optional=False)
    """
    text = _BULLET_PREFIX.sub("", line.strip()).strip()

    optional = bool(_OPTIONAL.search(text))
    text = _OPTIONAL.sub("", text).strip()

    notes: list[str] = []
    if _TO_TASTE.search(text):
        notes.append("to taste")
        text = _TO_TASTE.sub("", text).strip()

    quantity: float | None = None
    match = QUANTITY_PATTERN.match(text)
    if match:
        quantity = parse_quantity(match.group("qty"), tables)
        text = text[match.end() :].strip()

    unit: str | None = None
    if quantity is not None and text:
        # "1 (14 oz) can tomatoes": package size sits between quantity and unit
        leading = _LEADING_PARENTHETICAL.match(text)
        if leading:
            if leading.group(1).strip():
                notes.insert(0, leading.group(1).strip())
            text = text[leading.end() :].strip()
        unit, text = _take_unit(text, tables)
        if unit and text.lower().startswith("of "):
            text = text[3:].strip()

    for parenthetical in _PARENTHETICAL.findall(text):
        if parenthetical.strip():
            notes.insert(0, parenthetical.strip())
    text = _PARENTHETICAL.sub("", text).strip()

    name, _, trailing = text.partition(",")
    if trailing.strip():
        notes.insert(0, trailing.strip())

    name = re.sub(r"\s+", " ", name).strip(" -,;")
    if not name:
        # "2 cups" with nothing after it: keep the unit as the name
        name = unit or line.strip()

    return TokenizedIngredient(
        quantity=quantity,
        unit=unit,
        name=name[:MAX_INGREDIENT_NAME_LENGTH],
        notes=", ".join(notes) or None,
        optional=optional,
    )


def _take_unit(text: str, tables: HeuristicTables) -> tuple[str | None, str]:
    """Consume a one- or two-word unit from the front of ``text``."""
    attached = re.match(r"^([A-Za-z]+\.?)(?=\s|$)", text)
    tokens = text.split()
    if len(tokens) >= 2:
        unit = normalize_unit(f"{tokens[0]} {tokens[1]}", tables)
        if unit:
            return unit, " ".join(tokens[2:])
    if attached:
        unit = normalize_unit(attached.group(1), tables)
        if unit:
            return unit, text[attached.end() :].strip()
    return None, text


def parse_ingredient_line(
    line: str,
    tables: HeuristicTables = DEFAULT_TABLES,
    confidence: float = 1.0,
    inferred: bool = False,
) -> ParsedIngredient:
    """Parse a line into a ``ParsedIngredient``.

    Raises:
        ValueError: If the line is blank
    """
    if not line or not line.strip():
        raise ValueError("Cannot parse a blank ingredient line")
    token = tokenize_ingredient(line, tables)
    return ParsedIngredient(
        name=token.name,
        quantity=token.quantity,
        unit=token.unit,
        notes=token.notes,
        optional=token.optional,
        confidence=confidence,
        inferred=inferred,
    )
