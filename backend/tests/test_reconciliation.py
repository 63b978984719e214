"""Unit tests for the waybill -> invoice hierarchy builder."""
from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from tripdesk.models.fiscal import Document, DocumentType  # noqa: E402
from tripdesk.services.reconciliation import build_waybill_hierarchy, normalize_number  # noqa: E402


def _waybill(document_id: str, number: str, keys, **overrides) -> Document:
    return Document(
        document_id=document_id,
        number=number,
        type=DocumentType.WAYBILL,
        referenced_access_keys=keys,
        **overrides,
    )


def _invoice(document_id: str, number: str, key=None, **overrides) -> Document:
    return Document(document_id=document_id, number=number, type=DocumentType.INVOICE, access_key=key, **overrides)


def test_one_waybill_two_keys_one_invoice_present():
    hierarchy = build_waybill_hierarchy(
        [
            _waybill("W1", "CTe-100", ["K1", "K2"]),
            _invoice("I1", "NF-1", "K1"),
        ]
    )

    assert len(hierarchy.groups) == 1
    group = hierarchy.groups[0]
    assert group.waybill_number == "100"
    assert [doc.document_id for doc in group.invoices] == ["I1"]
    assert group.missing_referenced_keys == ["K2"]
    assert hierarchy.unlinked_invoices == []
    assert hierarchy.counts.waybills == 1
    assert hierarchy.counts.invoices_total == 1
    assert hierarchy.counts.invoices_linked == 1
    assert hierarchy.counts.invoices_unlinked == 0


def test_explicit_covering_number_wins_over_referenced_key():
    hierarchy = build_waybill_hierarchy(
        [
            _waybill("W1", "CTe-100", ["K1"]),
            _waybill("W2", "CTe-200", []),
            _invoice("I1", "NF-1", "K1", linked_waybill_number=" CTe-200 "),
        ]
    )

    by_number = {group.waybill_number: group for group in hierarchy.groups}
    assert [doc.document_id for doc in by_number["200"].invoices] == ["I1"]
    assert by_number["100"].invoices == []
    assert by_number["100"].missing_referenced_keys == ["K1"]


def test_unknown_covering_number_falls_back_to_key():
    hierarchy = build_waybill_hierarchy(
        [
            _waybill("W1", "CTe-100", ["K1"]),
            _invoice("I1", "NF-1", "K1", linked_waybill_number="CTe-999"),
        ]
    )
    assert [doc.document_id for doc in hierarchy.groups[0].invoices] == ["I1"]


def test_first_waybill_referencing_a_key_takes_the_invoice():
    hierarchy = build_waybill_hierarchy(
        [
            _waybill("W2", "CTe-200", ["K1"]),
            _waybill("W1", "CTe-100", ["K1"]),
            _invoice("I1", "NF-1", "K1"),
        ]
    )
    assert [group.waybill_number for group in hierarchy.groups] == ["100", "200"]
    assert len(hierarchy.groups[0].invoices) == 1
    assert hierarchy.groups[1].invoices == []


def test_unlinked_invoices_are_reported_and_sorted():
    hierarchy = build_waybill_hierarchy(
        [
            _invoice("I2", "NF-9", "K9"),
            _invoice("I1", "NF-3"),
        ]
    )
    assert hierarchy.groups == []
    assert [doc.number for doc in hierarchy.unlinked_invoices] == ["NF-3", "NF-9"]
    assert hierarchy.counts.invoices_unlinked == 2


def test_referenced_keys_accept_json_string_and_drop_garbage():
    from_json = _waybill("W1", "CTe-1", '["K1", "K2"]')
    garbage = _waybill("W2", "CTe-2", "not a list")

    assert from_json.referenced_access_keys == ["K1", "K2"]
    assert garbage.referenced_access_keys == []


def test_malformed_entries_are_skipped():
    hierarchy = build_waybill_hierarchy(
        [
            None,
            "CTe-1",
            {"number": "missing type"},
            {"type": "invoice", "number": 55},
            {"document_id": "W1", "number": "CTe-5", "type": "waybill", "referenced_access_keys": ["K1"]},
            {"document_id": "I1", "number": "NF-1", "type": "invoice", "access_key": "K1"},
        ]
    )
    assert hierarchy.counts.waybills == 1
    assert hierarchy.counts.invoices_total == 1
    assert hierarchy.counts.invoices_linked == 1


def test_entries_without_an_id_are_still_placed():
    hierarchy = build_waybill_hierarchy(
        [
            {"type": "waybill", "number": "CTE-1", "referenced_access_keys": ["K1"]},
            {"type": "invoice", "number": "NF-1", "access_key": "K1"},
            {"type": "nfe", "number": "NF-2"},
        ]
    )

    assert hierarchy.counts.waybills == 1
    assert hierarchy.counts.invoices_total == 2
    assert [doc.number for doc in hierarchy.groups[0].invoices] == ["NF-1"]
    assert [doc.number for doc in hierarchy.unlinked_invoices] == ["NF-2"]
    assert hierarchy.unlinked_invoices[0].type == DocumentType.INVOICE
    assert hierarchy.groups[0].invoices[0].document_id == "NF-1#1"


def test_every_invoice_lands_in_exactly_one_place():
    documents = [
        _waybill("W1", "CTe-100", ["K1", "K2"]),
        _waybill("W2", "CTe-200", ["K3"]),
        _waybill("W3", "CTe-100", ["K4"]),
        _invoice("I1", "NF-1", "K1"),
        _invoice("I2", "NF-2", "K1", linked_waybill_number="CTe-200"),
        _invoice("I3", "NF-3", "K3", linked_waybill_number="CTe-999"),
        _invoice("I4", "NF-4"),
        _invoice("I5", "NF-5", "K4"),
        _invoice("I6", "NF-6", linked_waybill_number="CTe-100"),
        {"type": "invoice", "number": "NF-7", "access_key": "K2"},
        _invoice("I8", "NF-8", "K-unknown", linked_waybill_number="CTe-404"),
    ]
    hierarchy = build_waybill_hierarchy(documents)

    placed = [doc.document_id for group in hierarchy.groups for doc in group.invoices]
    placed += [doc.document_id for doc in hierarchy.unlinked_invoices]
    assert sorted(placed) == sorted(["I1", "I2", "I3", "I4", "I5", "I6", "NF-7#9", "I8"])
    assert len(placed) == len(set(placed))

    counts = hierarchy.counts
    assert counts.waybills == 3
    assert counts.invoices_total == 8
    assert counts.invoices_linked + counts.invoices_unlinked == counts.invoices_total
    assert [doc.document_id for doc in hierarchy.unlinked_invoices] == ["I4", "I8"]

    by_id = {group.waybill.document_id: group for group in hierarchy.groups}
    assert [doc.document_id for doc in by_id["W1"].invoices] == ["I1", "I6", "NF-7#9"]
    assert [doc.document_id for doc in by_id["W2"].invoices] == ["I2", "I3"]
    assert [doc.document_id for doc in by_id["W3"].invoices] == ["I5"]


def test_empty_input_gives_empty_hierarchy():
    for documents in (None, []):
        hierarchy = build_waybill_hierarchy(documents)
        assert hierarchy.groups == []
        assert hierarchy.unlinked_invoices == []
        assert hierarchy.counts.invoices_total == 0


def test_build_is_pure_and_repeatable():
    documents = [
        _waybill("W1", "CTe-100", ["K1", "K2"]),
        _invoice("I2", "NF-2", "K2"),
        _invoice("I1", "NF-1", "K1"),
    ]
    first = build_waybill_hierarchy(documents)
    second = build_waybill_hierarchy(documents)

    assert first == second
    assert [doc.document_id for doc in first.groups[0].invoices] == ["I1", "I2"]
    assert [doc.document_id for doc in documents] == ["W1", "I2", "I1"]


def test_normalize_number_strips_type_prefix_only():
    assert normalize_number(DocumentType.WAYBILL, "CT-e 000123") == "000123"
    assert normalize_number(DocumentType.WAYBILL, "WB-000001") == "000001"
    assert normalize_number(DocumentType.INVOICE, "NFe-55") == "55"
    assert normalize_number(DocumentType.INVOICE, "INV 77") == "77"
    assert normalize_number(DocumentType.INVOICE, "12345") == "12345"
