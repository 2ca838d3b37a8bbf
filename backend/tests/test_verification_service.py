# Overview: Pytest coverage for stock verification sessions.

"""
Stock Verification Tests

Verifies:
- Scans are MATCHED only for expected products at the session location
- Re-scanning a code is a no-op
- Completion adds MISSING lines for every expected, unscanned product
- Sessions are frozen once completed or cancelled
- Expected location follows completed transfers
"""

import pytest

from conftest import TENANT
from stockledger.errors import InvalidStateTransition, VerificationError
from stockledger.services import transfer_service, verification_service
from stockledger.services.transfer_service import TransferDraft
from stockledger.validation import Location


def _start(category_id=10, branch_id=1, counter_id=1):
    return verification_service.create_session(
        TENANT,
        session_name="Morning count",
        branch_id=branch_id,
        counter_id=counter_id,
        category_id=category_id,
        actor="auditor",
    )


class TestScanning:
    """submit_scans() classification."""

    def test_scan_classification(self, db_session, ring, necklace, make_product):
        elsewhere = make_product(branch_id=1, counter_id=2)
        session = _start()

        lines = verification_service.submit_scans(
            TENANT, session.id, [ring.item_code, necklace.item_code, elsewhere.item_code, "NOPE-1"]
        )

        assert [line.line_status for line in lines] == ["MATCHED", "UNMATCHED", "UNMATCHED", "UNMATCHED"]
        assert lines[3].product_id is None
        assert session.total_scanned == 4
        assert session.matched_count == 1
        assert session.matched_value_cents == 25000
        assert session.unmatched_count == 3
        assert session.unmatched_value_cents == 90000 + 25000

    def test_rescan_is_noop(self, db_session, ring):
        session = _start()
        first = verification_service.submit_scans(TENANT, session.id, [ring.item_code])
        again = verification_service.submit_scans(TENANT, session.id, [ring.item_code, ring.item_code])

        assert [line.id for line in again] == [first[0].id, first[0].id]
        assert session.total_scanned == 1
        assert session.matched_count == 1

    def test_empty_scan_rejected(self, db_session):
        session = _start()
        with pytest.raises(VerificationError):
            verification_service.submit_scans(TENANT, session.id, ["", "  "])

    def test_name_required(self, db_session):
        with pytest.raises(VerificationError):
            verification_service.create_session(
                TENANT, session_name=" ", branch_id=1, counter_id=1, category_id=10
            )

    def test_expected_location_follows_transfers(self, db_session, ring):
        transfer = transfer_service.create_transfer(
            TENANT, TransferDraft(product_id=ring.id, source=Location(1, 1), destination=Location(2, 2))
        )
        transfer_service.approve_transfer(TENANT, transfer.id)
        transfer_service.complete_transfer(TENANT, transfer.id)

        old_home = _start()
        new_home = _start(branch_id=2, counter_id=2)

        assert verification_service.expected_products(TENANT, old_home) == []
        assert [p.id for p in verification_service.expected_products(TENANT, new_home)] == [ring.id]


class TestCompletion:
    """complete_session() / cancel_session()."""

    def test_complete_adds_missing_lines(self, db_session, ring, make_product):
        unscanned = make_product(mrp_cents=40000)
        session = _start()
        verification_service.submit_scans(TENANT, session.id, [ring.item_code])

        verification_service.complete_session(TENANT, session.id, remarks="All trays checked")

        assert session.status == "COMPLETED"
        assert session.completed_at is not None
        assert session.missing_count == 1
        assert session.missing_value_cents == 40000
        detail = verification_service.session_detail(session)
        missing = [line for line in detail["lines"] if line["line_status"] == "MISSING"]
        assert [line["product_id"] for line in missing] == [unscanned.id]

    def test_completed_session_is_frozen(self, db_session, ring):
        session = _start()
        verification_service.complete_session(TENANT, session.id)

        with pytest.raises(InvalidStateTransition):
            verification_service.submit_scans(TENANT, session.id, [ring.item_code])
        with pytest.raises(InvalidStateTransition):
            verification_service.complete_session(TENANT, session.id)
        assert session.missing_count == 1

    def test_cancel(self, db_session):
        session = _start()
        verification_service.cancel_session(TENANT, session.id, remarks="Power cut")
        assert session.status == "CANCELLED"
        with pytest.raises(InvalidStateTransition):
            verification_service.cancel_session(TENANT, session.id)

    def test_unknown_session(self, db_session):
        with pytest.raises(VerificationError):
            verification_service.get_session(TENANT, 4242)
