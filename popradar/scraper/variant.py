"""
Pop Radar - Variant Parser

Splits a free-text subject name such as "Charizard (1st Edition)" into the
card description and a variant label. Rules are tried in order and the first
match wins, so the more specific patterns must stay ahead of the general ones
("(1st Edition)" before "1st Edition", "-Holo" before "Holo").
"""

from __future__ import annotations

import re
from typing import NamedTuple


class VariantSplit(NamedTuple):
    description: str
    variant: str


VARIANT_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"(.*)\s*\(1st Edition\)", re.IGNORECASE), "1st Edition"),
    (re.compile(r"(.*)\s*1st Edition", re.IGNORECASE), "1st Edition"),
    (re.compile(r"(.*)\s*\(1st ed\)", re.IGNORECASE), "1st Edition"),
    (re.compile(r"(.*)\s*-Holo", re.IGNORECASE), "Holo"),
    (re.compile(r"(.*)\s*Holo", re.IGNORECASE), "Holo"),
)


def extract_variant(text: str | None) -> VariantSplit:
    """
    Extract a variant label from a subject name.

    Args:
        text: Raw subject/description text.

    Returns:
        VariantSplit with the cleaned description and the variant label.
        No match returns the trimmed input and an empty variant.
    """
    if not text:
        return VariantSplit("", "")

    for pattern, label in VARIANT_RULES:
        match = pattern.search(text)
        if match and match.group(1).strip():
            return VariantSplit(match.group(1).strip(), label)

    return VariantSplit(text.strip(), "")
