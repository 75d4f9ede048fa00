"""Keyword scoring categorizer."""
from __future__ import annotations

from typing import Iterable, Mapping, Optional, Sequence, Tuple, Union

from .settings import CategoryRule

DEFAULT_CATEGORY = "Misc"

Rules = Union[Sequence[CategoryRule], Mapping[str, Iterable[str]]]


def _iter_rules(rules: Rules) -> Iterable[Tuple[str, Iterable[str]]]:
    if isinstance(rules, Mapping):
        return rules.items()
    return ((rule.name, rule.keywords) for rule in rules)


def categorize(text: str, rules: Rules, default: str = DEFAULT_CATEGORY) -> str:
    """Pick the category whose keywords occur most often in ``text``.

    The score of a category is the number of its distinct keywords found as
    substrings of the lower-cased text. Only a strictly greater score replaces
    the current best, so the first rule (in configured order) to reach the
    maximum wins. No hits at all gives ``default``.
    """
    haystack = (text or "").lower()
    best, best_score = default, 0
    for name, keywords in _iter_rules(rules):
        seen = {kw.lower() for kw in keywords if kw and kw.strip()}
        score = sum(1 for kw in seen if kw in haystack)
        if score > best_score:
            best, best_score = name, score
    return best


def assign_category(
    explicit: Optional[str], text: str, rules: Rules, default: str = DEFAULT_CATEGORY
) -> str:
    """An explicitly supplied category overrides keyword scoring."""
    if explicit and explicit.strip():
        return explicit.strip()
    return categorize(text, rules, default)
