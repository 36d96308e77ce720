"""Identity derivation and ledger merge semantics."""
from __future__ import annotations

import pytest

from signoff_engine.errors import LedgerWriteConflict
from signoff_engine.identity import (
    UNKNOWN,
    digits_only,
    document_fingerprint,
    normalize_issuer_key,
    normalize_wo_number,
    record_key,
    registrable_domain,
    review_id_for,
    same_work_order,
)
from signoff_engine.merge import ingest_work_order, merge_fields, signed_fields, upsert_with_retry
from signoff_engine.store import JsonLedger


@pytest.fixture
def ledger(tmp_path) -> JsonLedger:
    return JsonLedger(tmp_path / "ledger.json")


class TestIdentity:
    """record_key is pure, total and insensitive to case/whitespace/subdomains."""

    def test_email_and_subdomain_collapse(self):
        a = record_key("Sender@Mail.Example.com", " WO-123 ")
        b = record_key("sender@example.com", "wo-123")
        assert a == b == "example_com:wo123"

    def test_deterministic(self):
        assert record_key("ServiceChannel", "WO 77") == record_key("ServiceChannel", "WO 77")
        assert record_key("ServiceChannel", "WO 77") == "servicechannel:wo77"

    def test_total_on_garbage(self):
        assert record_key(None, None) == f"{UNKNOWN}:{UNKNOWN}"
        assert record_key("", "!!!") == "unknown:unknown"
        assert record_key(b"ops@acme.com", 123) == "acme_com:123"

    def test_two_letter_country_suffix(self):
        assert registrable_domain("a.example.co.uk") == "example.co.uk"
        assert registrable_domain("mail.eu.example.com") == "example.com"
        assert normalize_issuer_key("ops@billing.acme.co.uk") == "acme_co_uk"

    def test_normalisation_is_idempotent(self):
        once = normalize_issuer_key("dispatch@portal.SuperClean.com")
        assert normalize_issuer_key(once) == once
        assert normalize_wo_number(normalize_wo_number(" WO-9 ")) == "wo9"

    def test_same_work_order(self):
        assert same_work_order("WO-1", "wo1")
        assert not same_work_order("", "")
        assert not same_work_order("WO-1", "WO-2")

    def test_digits_only(self):
        assert digits_only("WO# 123-45") == "12345"
        assert digits_only("Work Order 987") == "987"
        assert digits_only("٣٤٥") == ""

    def test_document_fingerprint_and_review_id(self):
        fp = document_fingerprint(b"%PDF-1.7 demo")
        assert len(fp) == 64
        assert document_fingerprint(b"%PDF-1.7 demo") == fp

        rid = review_id_for("ServiceChannel", fp)
        assert rid.startswith("review_") and len(rid) == len("review_") + 16
        assert review_id_for("servicechannel", fp) == rid


class TestMergeFields:
    """Per-field last-write-wins."""

    def test_none_never_erases(self):
        out = merge_fields({"site": "A", "priority": "high"}, {"site": "B", "priority": None})
        assert out == {"site": "B", "priority": "high"}

    def test_created_at_is_sticky(self):
        out = merge_fields({"created_at": "t0"}, {"created_at": "t1"})
        assert out["created_at"] == "t0"

    def test_signed_is_not_downgraded(self):
        out = merge_fields({"status": "SIGNED"}, {"status": "OPEN"})
        assert out["status"] == "SIGNED"
        assert merge_fields({"status": "OPEN"}, {"status": "SIGNED"})["status"] == "SIGNED"

    def test_unknown_status_replaces(self):
        assert merge_fields({"status": "OPEN"}, {"status": "CANCELLED"})["status"] == "CANCELLED"

    def test_signed_fields_shape(self):
        fields = signed_fields(
            issuer="ServiceChannel",
            wo_number=" WO-1 ",
            fm_key="ServiceChannel",
            confidence_label="medium",
            confidence_raw=0.7,
            low_confidence_merge=True,
            now="2026-01-01T00:00:00+00:00",
        )
        assert fields["record_key"] == "servicechannel:wo1"
        assert fields["status"] == "SIGNED"
        assert fields["signed_at"] == "2026-01-01T00:00:00+00:00"
        assert fields["low_confidence_merge"] is True
        assert fields["wo_number"] == "WO-1"


class TestUpsertRetry:
    def test_retries_on_conflict(self):
        calls: list[str] = []

        def flaky(key, fields):
            calls.append(key)
            if len(calls) == 1:
                raise LedgerWriteConflict("row appeared")

        assert upsert_with_retry(flaky, "k", {}, attempts=3) == 2
        assert calls == ["k", "k"]

    def test_gives_up_after_attempts(self):
        calls: list[str] = []

        def always(key, fields):
            calls.append(key)
            raise LedgerWriteConflict("busy")

        with pytest.raises(LedgerWriteConflict):
            upsert_with_retry(always, "k", {}, attempts=3)
        assert len(calls) == 3

    def test_other_errors_propagate(self):
        def broken(key, fields):
            raise OSError("disk full")

        with pytest.raises(OSError):
            upsert_with_retry(broken, "k", {})


class TestLedgerIdempotency:
    """Every write path lands on one row per physical work order."""

    def test_same_merge_twice_yields_one_row(self, ledger):
        ingest_work_order(ledger.upsert, "ServiceChannel", "WO-1001", {"site": "Store 12"})
        ingest_work_order(ledger.upsert, "ServiceChannel", "WO-1001", {"site": "Store 12"})
        assert len(ledger.rows()) == 1

    def test_raw_variants_share_a_row(self, ledger):
        ingest_work_order(ledger.upsert, "dispatch@mail.acme.com", "WO-5")
        ingest_work_order(ledger.upsert, "ACME.com", " wo5 ")
        rows = ledger.rows()
        assert len(rows) == 1
        assert rows[0]["record_key"] == "acme_com:wo5"

    def test_partial_fields_preserved(self, ledger):
        key = ingest_work_order(ledger.upsert, "acme", "WO-5", {"site": "A", "priority": "high"})
        ingest_work_order(ledger.upsert, "acme", "WO-5", {"site": "B"})
        row = ledger.get(key)
        assert row["site"] == "B"
        assert row["priority"] == "high"

    def test_reingest_after_signing_keeps_signature(self, ledger):
        key = ingest_work_order(ledger.upsert, "acme", "WO-5", now="2026-01-01T00:00:00+00:00")
        ledger.upsert(
            key,
            signed_fields(
                issuer="acme",
                wo_number="WO-5",
                fm_key="acme",
                confidence_label="high",
                confidence_raw=0.97,
                signed_pdf_url="https://files.example/wo5.pdf",
                now="2026-01-02T00:00:00+00:00",
            ),
        )
        ingest_work_order(ledger.upsert, "acme", "WO-5", {"site": "A"})

        row = ledger.get(key)
        assert row["status"] == "SIGNED"
        assert row["signed_pdf_url"] == "https://files.example/wo5.pdf"
        assert row["created_at"] == "2026-01-01T00:00:00+00:00"
        assert row["site"] == "A"

    def test_find_by_wo_number_normalises(self, ledger):
        ingest_work_order(ledger.upsert, "acme", "WO-5")
        assert ledger.find_by_wo_number(" wo5 ")["record_key"] == "acme:wo5"
        assert ledger.find_by_wo_number("WO-6") is None
        assert ledger.find_by_wo_number("") is None
