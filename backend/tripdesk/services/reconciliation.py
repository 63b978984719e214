"""
Waybill Hierarchy Builder

Groups a delivery's invoices under the waybills that cover them:
1. Drop anything without a string type and number
2. Split waybills from invoices
3. Index each waybill's referenced access keys
4. Place each invoice: explicit covering number first, then referenced key, else unlinked
5. Flag referenced keys with no invoice present
6. Sort everything for stable output

Runs on every read. No caching, no mutation of the input documents.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Optional

from pydantic import ValidationError

from tripdesk.core.logging import logger
from tripdesk.models.fiscal import (
    Document,
    DocumentType,
    HierarchyCounts,
    WaybillGroup,
    WaybillHierarchy,
)

WAYBILL_PREFIX = re.compile(r"^(?:CT-?e|WB)[-\s]*", re.IGNORECASE)
INVOICE_PREFIX = re.compile(r"^(?:NF-?e?|INV)[-\s]*", re.IGNORECASE)


def normalize_number(doc_type: DocumentType, number: str) -> str:
    """Strip the type prefix from a document number. Display only."""
    text = str(number or "").strip()
    if not text:
        return text
    pattern = WAYBILL_PREFIX if doc_type == DocumentType.WAYBILL else INVOICE_PREFIX
    return pattern.sub("", text)


def _coerce_documents(documents: Optional[Iterable[Any]]) -> List[Document]:
    """Keep every entry with a string type and number; anything not a waybill counts as an invoice."""
    safe: List[Document] = []
    if documents is None:
        return safe
    for position, item in enumerate(documents):
        if isinstance(item, Document):
            safe.append(item)
            continue
        if not isinstance(item, dict):
            logger.debug("Skipping non-document entry in hierarchy input", entry_type=type(item).__name__)
            continue
        doc_type, number = item.get("type"), item.get("number")
        if not isinstance(doc_type, str) or not isinstance(number, str):
            logger.debug("Skipping document without type or number in hierarchy input", position=position)
            continue
        data = dict(item)
        data["type"] = (
            DocumentType.WAYBILL if doc_type.strip().lower() == DocumentType.WAYBILL.value else DocumentType.INVOICE
        )
        if not str(data.get("document_id") or "").strip():
            data["document_id"] = f"{number.strip() or 'document'}#{position}"
        try:
            safe.append(Document.model_validate(data))
        except ValidationError as exc:
            logger.debug("Skipping malformed document in hierarchy input", errors=exc.error_count())
    return safe


def _dedupe(keys: Iterable[str]) -> List[str]:
    seen = set()
    ordered: List[str] = []
    for key in keys:
        if key and key not in seen:
            seen.add(key)
            ordered.append(key)
    return ordered


def _invoice_sort_key(document: Document):
    return (str(document.number), document.document_id)


def build_waybill_hierarchy(documents: Optional[Iterable[Any]]) -> WaybillHierarchy:
    """Map a delivery's invoices onto its waybills and report coverage gaps."""
    safe_docs = _coerce_documents(documents)
    waybill_docs = [doc for doc in safe_docs if doc.type == DocumentType.WAYBILL]
    invoice_docs = [doc for doc in safe_docs if doc.type != DocumentType.WAYBILL]

    ordered_waybills = sorted(
        waybill_docs,
        key=lambda doc: (normalize_number(DocumentType.WAYBILL, doc.number), doc.number, doc.document_id),
    )

    groups: List[WaybillGroup] = []
    invoices_by_group: List[List[Document]] = []
    group_by_number: Dict[str, int] = {}
    group_by_key: Dict[str, int] = {}

    for index, waybill in enumerate(ordered_waybills):
        referenced = _dedupe(waybill.referenced_access_keys)
        groups.append(
            WaybillGroup(
                waybill_number=normalize_number(DocumentType.WAYBILL, waybill.number),
                waybill=waybill,
                referenced_keys=referenced,
            )
        )
        invoices_by_group.append([])
        group_by_number.setdefault(waybill.number.strip(), index)
        for key in referenced:
            group_by_key.setdefault(key, index)

    unlinked: List[Document] = []
    for invoice in invoice_docs:
        linked_number = (invoice.linked_waybill_number or "").strip()
        if linked_number and linked_number in group_by_number:
            invoices_by_group[group_by_number[linked_number]].append(invoice)
            continue

        key = (invoice.access_key or "").strip()
        if key and key in group_by_key:
            invoices_by_group[group_by_key[key]].append(invoice)
            continue

        unlinked.append(invoice)

    finished: List[WaybillGroup] = []
    for group, invoices in zip(groups, invoices_by_group):
        invoices = sorted(invoices, key=_invoice_sort_key)
        present_keys = {doc.access_key for doc in invoices if doc.access_key}
        finished.append(
            group.model_copy(
                update={
                    "invoices": invoices,
                    "missing_referenced_keys": [key for key in group.referenced_keys if key not in present_keys],
                }
            )
        )

    linked_total = sum(len(group.invoices) for group in finished)
    return WaybillHierarchy(
        groups=finished,
        unlinked_invoices=sorted(unlinked, key=_invoice_sort_key),
        counts=HierarchyCounts(
            waybills=len(finished),
            invoices_total=len(invoice_docs),
            invoices_linked=linked_total,
            invoices_unlinked=len(unlinked),
        ),
    )
