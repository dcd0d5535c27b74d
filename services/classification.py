"""Incremental, batch-wise LLM classification of purchase-order lines.

Lines are classified strictly in sequence: every prompt carries the canonical
taxonomy produced by the previous batches so the model can reuse existing
categories instead of inventing near-duplicates.  Model replies go through a
dedicated parser that yields one of three tagged variants:

* :class:`ValidBatchResponse` - every section present and well formed;
* :class:`PartialBatchResponse` - assignments usable, other sections missing
  or some entries malformed; whatever is present is applied;
* :class:`UnparsableBatchResponse` - nothing usable; the batch falls back to
  the sentinel category.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from config.settings import settings
from models.catalog import LineClassification, PurchaseOrderLine, split_line_key
from services.taxonomy import CanonicalTaxonomy, Pair
from utils.llm_json import extract_json

logger = logging.getLogger(__name__)


CLASSIFICATION_SYSTEM_PROMPT = """You incrementally build a catalogue of procurement spend categories.
IMPORTANT RULES:
- Do NOT invent categories unrelated to the items provided; only create categories relevant to them.
- Reuse an existing category/subcategory whenever it fits; otherwise create a new one and justify it.
- Merge obvious duplicates through "aliases".
- Name categories in the language used by the items.
- Answer ONLY with JSON."""

CLASSIFICATION_RESPONSE_FORMAT = """STRICT JSON FORMAT expected:
{
  "assignments": [
    {"key": "<order|||line>", "category": "<cat>", "subcategory": "<sub>"}
  ],
  "aliases": [
    {"from": {"category": "X", "subcategory": "Y"}, "to": {"category": "X'", "subcategory": "Y'"}}
  ],
  "new_categories": [
    {"category": "<cat>", "subcategories": ["<sub1>", "<sub2>"], "justification": "<why>"}
  ]
}"""


# ----------------------------------------------------------------------
# Response entries
# ----------------------------------------------------------------------
def _clean_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


class CategoryPair(BaseModel):
    model_config = ConfigDict(extra="ignore")

    category: str = ""
    subcategory: str = ""

    @field_validator("category", "subcategory", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _clean_text(value)

    def as_pair(self) -> Pair:
        return self.category, self.subcategory


class AssignmentEntry(CategoryPair):
    key: str = ""

    @field_validator("key", mode="before")
    @classmethod
    def _coerce_key(cls, value: Any) -> str:
        return _clean_text(value)


class AliasEntry(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    source: CategoryPair = Field(alias="from")
    target: CategoryPair = Field(alias="to")


class NewCategoryEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    category: str = ""
    subcategories: List[str] = Field(default_factory=list)
    justification: str = ""

    @field_validator("category", "justification", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _clean_text(value)

    @field_validator("subcategories", mode="before")
    @classmethod
    def _coerce_subcategories(cls, value: Any) -> List[str]:
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple)):
            return []
        return [text for text in (_clean_text(item) for item in value) if text]


# ----------------------------------------------------------------------
# Tagged response variants
# ----------------------------------------------------------------------
@dataclass
class BatchResponse:
    kind = "base"

    assignments: List[AssignmentEntry] = field(default_factory=list)
    aliases: List[AliasEntry] = field(default_factory=list)
    new_categories: List[NewCategoryEntry] = field(default_factory=list)


@dataclass
class ValidBatchResponse(BatchResponse):
    kind = "valid"


@dataclass
class PartialBatchResponse(BatchResponse):
    kind = "partial"

    issues: List[str] = field(default_factory=list)


@dataclass
class UnparsableBatchResponse(BatchResponse):
    kind = "unparsable"

    reason: str = ""


def _parse_section(payload: Dict[str, Any], name: str, model: type, issues: List[str]) -> list:
    if name not in payload or payload[name] is None:
        issues.append(f"{name}: missing")
        return []
    raw = payload[name]
    if not isinstance(raw, list):
        issues.append(f"{name}: expected a list, got {type(raw).__name__}")
        return []
    entries = []
    skipped = 0
    for item in raw:
        if not isinstance(item, dict):
            skipped += 1
            continue
        try:
            entries.append(model.model_validate(item))
        except ValidationError:
            skipped += 1
    if skipped:
        issues.append(f"{name}: skipped {skipped} malformed entries")
    return entries


def parse_batch_response(payload: Any) -> BatchResponse:
    """Validate a decoded model reply into a tagged batch response."""

    if not isinstance(payload, dict):
        return UnparsableBatchResponse(reason=f"expected a JSON object, got {type(payload).__name__}")
    if not isinstance(payload.get("assignments"), list):
        return UnparsableBatchResponse(reason="reply has no 'assignments' list")

    issues: List[str] = []
    assignments = _parse_section(payload, "assignments", AssignmentEntry, issues)
    aliases = _parse_section(payload, "aliases", AliasEntry, issues)
    new_categories = _parse_section(payload, "new_categories", NewCategoryEntry, issues)
    if issues:
        return PartialBatchResponse(
            assignments=assignments,
            aliases=aliases,
            new_categories=new_categories,
            issues=issues,
        )
    return ValidBatchResponse(assignments=assignments, aliases=aliases, new_categories=new_categories)


def parse_batch_reply(text: str) -> BatchResponse:
    try:
        payload = extract_json(text)
    except ValueError as exc:
        return UnparsableBatchResponse(reason=f"invalid JSON: {exc}")
    return parse_batch_response(payload)


def build_classification_messages(
    taxonomy: CanonicalTaxonomy,
    lines: Sequence[PurchaseOrderLine],
    *,
    char_limit: Optional[int] = None,
) -> List[Dict[str, str]]:
    limit = char_limit or getattr(settings, "catalog_prompt_char_limit", 12000)
    items = json.dumps([line.prompt_item() for line in lines], ensure_ascii=False)
    if len(items) > limit:
        logger.warning(
            "Classification batch serialised to %d characters; truncating to %d", len(items), limit
        )
        items = items[:limit]
    user = (
        "Current canonical catalogue:\n"
        f"{json.dumps(taxonomy.as_list(), ensure_ascii=False)}\n\n"
        'Items to classify (return an "assignments" array):\n'
        f"{items}\n\n"
        f"{CLASSIFICATION_RESPONSE_FORMAT}"
    )
    return [
        {"role": "system", "content": CLASSIFICATION_SYSTEM_PROMPT},
        {"role": "user", "content": user},
    ]


# ----------------------------------------------------------------------
# Classification loop
# ----------------------------------------------------------------------
@dataclass
class ClassificationOutcome:
    taxonomy: CanonicalTaxonomy
    lines: int = 0
    batches: int = 0
    classified: int = 0
    fallback_batches: int = 0
    partial_batches: int = 0
    dropped_assignments: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "lines": self.lines,
            "batches": self.batches,
            "classified": self.classified,
            "unclassified": self.lines - self.classified,
            "fallback_batches": self.fallback_batches,
            "partial_batches": self.partial_batches,
            "dropped_assignments": self.dropped_assignments,
        }


class ClassificationLoop:
    """Classify purchase-order lines batch by batch against a growing taxonomy."""

    def __init__(
        self,
        llm: Any,
        repository: Any,
        *,
        batch_size: Optional[int] = None,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        fallback_pair: Optional[Pair] = None,
        message_builder: Callable[..., List[Dict[str, str]]] = build_classification_messages,
    ) -> None:
        self.llm = llm
        self.repository = repository
        self.batch_size = max(1, int(batch_size or getattr(settings, "catalog_batch_size", 120)))
        self.model = model or getattr(settings, "llm_model", None)
        self.temperature = temperature if temperature is not None else getattr(settings, "llm_temperature", 0.2)
        self.fallback_pair = fallback_pair or (
            getattr(settings, "catalog_fallback_category", "Other"),
            getattr(settings, "catalog_fallback_subcategory", "Other"),
        )
        self._message_builder = message_builder

    def run(self, lines: Iterable[PurchaseOrderLine]) -> ClassificationOutcome:
        unique = _dedupe(lines)
        taxonomy = CanonicalTaxonomy()
        outcome = ClassificationOutcome(taxonomy=taxonomy, lines=len(unique))
        assigned: set = set()

        for start in range(0, len(unique), self.batch_size):
            batch = unique[start:start + self.batch_size]
            outcome.batches += 1
            response = self._classify(taxonomy, batch)
            if isinstance(response, UnparsableBatchResponse):
                logger.warning(
                    "Batch %d unusable (%s); assigning %d lines to %s/%s",
                    outcome.batches,
                    response.reason,
                    len(batch),
                    *self.fallback_pair,
                )
                outcome.fallback_batches += 1
                response = self._fallback_response(batch)
            elif isinstance(response, PartialBatchResponse):
                logger.info("Batch %d partially valid: %s", outcome.batches, "; ".join(response.issues))
                outcome.partial_batches += 1

            records, dropped = self.apply(taxonomy, batch, response, assigned)
            outcome.dropped_assignments += dropped
            if records:
                self.repository.insert_line_classifications(records)
            outcome.classified += len(records)
            logger.info(
                "Batch %d: %d/%d lines classified, taxonomy holds %d pairs",
                outcome.batches,
                len(records),
                len(batch),
                len(taxonomy),
            )

        taxonomy.finalize()
        return outcome

    def _classify(self, taxonomy: CanonicalTaxonomy, batch: Sequence[PurchaseOrderLine]) -> BatchResponse:
        messages = self._message_builder(taxonomy, batch)
        try:
            reply = self.llm.complete(messages, model=self.model, temperature=self.temperature)
        except Exception as exc:
            logger.exception("Classification request failed")
            return UnparsableBatchResponse(reason=str(exc) or type(exc).__name__)
        return parse_batch_reply(reply)

    def _fallback_response(self, batch: Sequence[PurchaseOrderLine]) -> BatchResponse:
        category, subcategory = self.fallback_pair
        return ValidBatchResponse(
            assignments=[
                AssignmentEntry(key=line.key, category=category, subcategory=subcategory)
                for line in batch
            ]
        )

    def apply(
        self,
        taxonomy: CanonicalTaxonomy,
        batch: Sequence[PurchaseOrderLine],
        response: BatchResponse,
        assigned: Optional[set] = None,
    ) -> Tuple[List[LineClassification], int]:
        """Merge ``response`` into ``taxonomy`` and return the records to persist.

        Aliases and new categories are merged first, then every assigned pair
        is added to the taxonomy so no assignment is lost to taxonomy lag.
        """

        assigned = assigned if assigned is not None else set()
        by_key = {line.key: line for line in batch}

        for alias in response.aliases:
            source, target = alias.source.as_pair(), alias.target.as_pair()
            if not all(target):
                continue
            taxonomy.ensure(*target)
            if all(source) and taxonomy.add_alias(source, target):
                self.repository.rename_pair(source, taxonomy.resolve(*source))

        for proposal in response.new_categories:
            if not proposal.category or not proposal.subcategories:
                continue
            for subcategory in proposal.subcategories:
                taxonomy.ensure(proposal.category, subcategory)

        for entry in response.assignments:
            if entry.category and entry.subcategory:
                taxonomy.ensure(entry.category, entry.subcategory)

        records: List[LineClassification] = []
        dropped = 0
        for entry in response.assignments:
            line = by_key.get(entry.key)
            if line is None:
                order_no, line_no = split_line_key(entry.key)
                line = by_key.get(f"{order_no}|||{line_no}")
            if line is None or not entry.category or not entry.subcategory or line.key in assigned:
                dropped += 1
                continue
            category, subcategory = taxonomy.resolve(entry.category, entry.subcategory)
            taxonomy.ensure(category, subcategory)
            assigned.add(line.key)
            records.append(
                LineClassification(
                    order_no=line.order_no,
                    line_no=line.line_no,
                    category=category,
                    subcategory=subcategory,
                    supplier=line.supplier,
                )
            )
        return records, dropped


def _dedupe(lines: Iterable[PurchaseOrderLine]) -> List[PurchaseOrderLine]:
    unique: Dict[str, PurchaseOrderLine] = {}
    for line in lines:
        if not line.order_no or not line.line_no:
            continue
        unique.setdefault(line.key, line)
    return list(unique.values())


__all__ = [
    "AliasEntry",
    "AssignmentEntry",
    "BatchResponse",
    "ClassificationLoop",
    "ClassificationOutcome",
    "NewCategoryEntry",
    "PartialBatchResponse",
    "UnparsableBatchResponse",
    "ValidBatchResponse",
    "build_classification_messages",
    "parse_batch_reply",
    "parse_batch_response",
]
