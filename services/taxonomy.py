"""Canonical category taxonomy accumulated while classifying purchase-order lines."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

Pair = Tuple[str, str]


class TaxonomyState(str, Enum):
    EMPTY = "empty_taxonomy"
    ACCUMULATING = "accumulating"
    FINALIZED = "finalized"


class TaxonomyFinalizedError(RuntimeError):
    """Raised when a finalized taxonomy is modified."""


class CanonicalTaxonomy:
    """Ordered ``category -> subcategories`` hierarchy with alias redirects.

    Categories and subcategories only accumulate while a build is running;
    aliases redirect a duplicate pair onto its canonical pair without removing
    the duplicate from the hierarchy.
    """

    def __init__(self, entries: Optional[Iterable[Dict[str, Any]]] = None) -> None:
        self._categories: Dict[str, List[str]] = {}
        self._aliases: Dict[Pair, Pair] = {}
        self._finalized = False
        for entry in entries or ():
            category = str(entry.get("category") or "").strip()
            subcategories = entry.get("subcategories") or ()
            if isinstance(subcategories, str):
                subcategories = [subcategories]
            for subcategory in subcategories:
                self.ensure(category, str(subcategory or "").strip())

    @classmethod
    def from_pairs(cls, pairs: Iterable[Pair]) -> "CanonicalTaxonomy":
        taxonomy = cls()
        for category, subcategory in pairs:
            taxonomy.ensure(category, subcategory)
        return taxonomy

    @property
    def state(self) -> TaxonomyState:
        if self._finalized:
            return TaxonomyState.FINALIZED
        if not self._categories:
            return TaxonomyState.EMPTY
        return TaxonomyState.ACCUMULATING

    def __contains__(self, pair: Pair) -> bool:
        category, subcategory = pair
        return subcategory in self._categories.get(category, ())

    def __len__(self) -> int:
        return sum(len(subs) for subs in self._categories.values())

    def ensure(self, category: str, subcategory: str) -> bool:
        """Add ``(category, subcategory)`` when missing; return ``True`` if added."""

        if self._finalized:
            raise TaxonomyFinalizedError("taxonomy is finalized")
        if not category or not subcategory:
            return False
        subcategories = self._categories.setdefault(category, [])
        if subcategory in subcategories:
            return False
        subcategories.append(subcategory)
        return True

    def add_alias(self, source: Pair, target: Pair) -> bool:
        """Redirect ``source`` onto ``target``; the target is added if missing."""

        if not all(source) or not all(target):
            return False
        target = self.resolve(*target)
        if source == target:
            return False
        self.ensure(*target)
        self._aliases[source] = target
        for alias, current in list(self._aliases.items()):
            if current == source:
                self._aliases[alias] = target
        return True

    def resolve(self, category: str, subcategory: str) -> Pair:
        pair = (category, subcategory)
        seen = set()
        while pair in self._aliases and pair not in seen:
            seen.add(pair)
            pair = self._aliases[pair]
        return pair

    @property
    def aliases(self) -> Dict[Pair, Pair]:
        return dict(self._aliases)

    def finalize(self) -> "CanonicalTaxonomy":
        self._finalized = True
        return self

    def pairs(self) -> List[Pair]:
        return [(category, sub) for category, subs in self._categories.items() for sub in subs]

    def as_list(self) -> List[Dict[str, Any]]:
        return [
            {"category": category, "subcategories": list(subs)}
            for category, subs in self._categories.items()
        ]

    def by_category(self) -> Dict[str, List[str]]:
        return {category: list(subs) for category, subs in self._categories.items()}


__all__ = ["CanonicalTaxonomy", "Pair", "TaxonomyFinalizedError", "TaxonomyState"]
