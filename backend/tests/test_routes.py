# Overview: Pytest coverage for the JSON API surface.

"""
API Route Tests

Verifies:
- Tenant header is required on every business endpoint
- Typed errors map to their HTTP status and error code
- Movements, balances, transfers and verifications round-trip through JSON
- Health endpoint reports database status
"""

from conftest import OTHER_TENANT, tenant_headers


def _post_movement(client, product, **overrides):
    body = {
        "product_id": product.id,
        "kind": "ADDITION",
        "quantity": 20,
        "unit_value_cents": 15000,
        "occurred_at": "2024-01-16T10:00:00Z",
        "reference_number": "INV-100",
        "reference_kind": "Invoice",
    }
    body.update(overrides)
    return client.post("/api/movements", json=body, headers=tenant_headers())


def _create_transfer(client, product, destination=None):
    return client.post("/api/transfers", json={
        "product_id": product.id,
        "source": {"branch_id": 1, "counter_id": 1},
        "destination": destination or {"branch_id": 2, "counter_id": 2},
        "reason": "Showcase refresh",
    }, headers=tenant_headers())


class TestTenantContext:
    """require_tenant decorator."""

    def test_missing_tenant_header(self, client, db_session):
        response = client.get("/api/movements")
        assert response.status_code == 400
        assert response.get_json()["code"] == "TENANT_REQUIRED"

    def test_blank_tenant_header(self, client, db_session):
        response = client.get("/api/transfers", headers={"X-Tenant-Code": "   "})
        assert response.status_code == 400

    def test_tenant_isolation(self, client, db_session, ring):
        assert _post_movement(client, ring).status_code == 201
        response = client.get("/api/movements", headers=tenant_headers(OTHER_TENANT))
        assert response.get_json()["items"] == []


class TestMovementRoutes:
    """/api/movements"""

    def test_create_movement(self, client, db_session, ring):
        response = _post_movement(client, ring)

        assert response.status_code == 201
        data = response.get_json()
        assert data["kind"] == "ADDITION"
        assert data["business_date"] == "2024-01-16"
        assert data["total_value_cents"] == 300000
        assert data["actor"] == "tester"
        assert data["location"] == {"branch_id": 1, "counter_id": 1, "box_id": None}

    def test_alias_fields_accepted(self, client, db_session, ring):
        response = client.post("/api/movements", json={
            "product_id": ring.id,
            "kind": "Sale",
            "unit_price_cents": 1000,
            "movement_date": "2024-01-17T12:00:00",
            "reference_type": "Sale",
            "branch_id": 1,
            "counter_id": 1,
        }, headers=tenant_headers())

        assert response.status_code == 201
        data = response.get_json()
        assert data["kind"] == "SALE"
        assert data["reference_kind"] == "Sale"
        assert data["business_date"] == "2024-01-17"

    def test_invalid_kind_is_400(self, client, db_session, ring):
        response = _post_movement(client, ring, kind="LOST")
        assert response.status_code == 400
        assert response.get_json()["code"] == "INVALID_KIND"

    def test_zero_quantity_is_400(self, client, db_session, ring):
        response = _post_movement(client, ring, quantity=0)
        assert response.status_code == 400

    def test_unknown_product_is_404(self, client, db_session):
        response = client.post("/api/movements", json={"product_id": 777777, "kind": "ADDITION"},
                               headers=tenant_headers())
        assert response.status_code == 404
        assert response.get_json()["code"] == "UNKNOWN_PRODUCT"

    def test_bulk_append(self, client, db_session, ring, necklace):
        response = client.post("/api/movements/bulk", json={"movements": [
            {"product_id": ring.id, "kind": "SALE", "occurred_at": "2024-01-18T10:00:00"},
            {"product_id": ring.id, "kind": "ADDITION", "quantity": 2, "occurred_at": "2024-01-16T10:00:00"},
            {"product_id": necklace.id, "kind": "ADDITION", "occurred_at": "2024-01-17T10:00:00"},
        ]}, headers=tenant_headers())

        assert response.status_code == 201
        data = response.get_json()
        assert data["count"] == 3
        assert [item["business_date"] for item in data["items"]] == ["2024-01-16", "2024-01-17", "2024-01-18"]
        assert data["earliest_dates"] == {str(ring.id): "2024-01-16", str(necklace.id): "2024-01-17"}

    def test_bulk_rejects_whole_batch(self, client, db_session, ring):
        response = client.post("/api/movements/bulk", json=[
            {"product_id": ring.id, "kind": "ADDITION"},
            {"product_id": ring.id, "kind": "BOGUS"},
        ], headers=tenant_headers())

        assert response.status_code == 400
        listing = client.get("/api/movements", headers=tenant_headers()).get_json()
        assert listing["items"] == []

    def test_list_and_get(self, client, db_session, ring):
        created = _post_movement(client, ring).get_json()

        listing = client.get(f"/api/movements?product_id={ring.id}&from_date=2024-01-16&to_date=2024-01-16",
                             headers=tenant_headers())
        assert [item["id"] for item in listing.get_json()["items"]] == [created["id"]]

        single = client.get(f"/api/movements/{created['id']}", headers=tenant_headers())
        assert single.status_code == 200
        assert client.get("/api/movements/999999", headers=tenant_headers()).status_code == 404

    def test_recompute_on_append_when_configured(self, app, client, db_session, ring):
        app.config["BALANCE_RECOMPUTE_ON_APPEND"] = True
        try:
            _post_movement(client, ring)
        finally:
            app.config["BALANCE_RECOMPUTE_ON_APPEND"] = False

        response = client.get(f"/api/balances/{ring.id}/2024-01-16", headers=tenant_headers())
        data = response.get_json()
        assert data["synthesized"] is False
        assert data["closing_qty"] == 20

    def test_failed_refresh_still_reports_stored_movement(self, app, client, db_session, ring):
        _post_movement(client, ring, occurred_at="2024-01-01T10:00:00")
        old_limit = app.config["BALANCE_MAX_GAP_DAYS"]
        app.config["BALANCE_MAX_GAP_DAYS"] = 2
        app.config["BALANCE_RECOMPUTE_ON_APPEND"] = True
        try:
            response = _post_movement(client, ring, occurred_at="2024-03-01T10:00:00")
            bulk = client.post("/api/movements/bulk", json=[
                {"product_id": ring.id, "kind": "SALE", "occurred_at": "2024-03-02T10:00:00"},
            ], headers=tenant_headers())
        finally:
            app.config["BALANCE_MAX_GAP_DAYS"] = old_limit
            app.config["BALANCE_RECOMPUTE_ON_APPEND"] = False

        assert response.status_code == 201
        data = response.get_json()
        assert data["business_date"] == "2024-03-01"
        assert data["balance_refresh_error"]["code"] == "BALANCE_INTEGRITY_ERROR"

        assert bulk.status_code == 201
        assert bulk.get_json()["balance_refresh_error"]["code"] == "BALANCE_INTEGRITY_ERROR"

        listing = client.get(f"/api/movements?product_id={ring.id}", headers=tenant_headers()).get_json()
        assert len(listing["items"]) == 3


class TestBalanceRoutes:
    """/api/balances"""

    def test_recompute_and_read(self, client, db_session, ring):
        _post_movement(client, ring)

        response = client.post(f"/api/balances/recompute/{ring.id}/2024-01-16", headers=tenant_headers())
        assert response.status_code == 200
        assert response.get_json()["closing_value_cents"] == 300000

        current = client.get(f"/api/balances/current/{ring.id}", headers=tenant_headers()).get_json()
        assert current["as_of_date"] == "2024-01-16"
        assert current["closing_qty"] == 20

    def test_unknown_date_is_synthesized(self, client, db_session, ring):
        response = client.get(f"/api/balances/{ring.id}/2024-02-01", headers=tenant_headers())
        assert response.status_code == 200
        assert response.get_json()["synthesized"] is True

    def test_bad_date_is_400(self, client, db_session, ring):
        response = client.get(f"/api/balances/{ring.id}/not-a-date", headers=tenant_headers())
        assert response.status_code == 400

    def test_recompute_range(self, client, db_session, ring):
        _post_movement(client, ring)
        response = client.post("/api/balances/recompute-range", json={
            "product_id": ring.id, "from_date": "2024-01-16", "to_date": "2024-01-18",
        }, headers=tenant_headers())

        data = response.get_json()
        assert response.status_code == 200
        assert data["days_processed"] == 3
        assert data["completed_through"] == "2024-01-18"

        listing = client.get(f"/api/balances?product_id={ring.id}", headers=tenant_headers()).get_json()
        assert listing["count"] == 3

    def test_recompute_range_rejects_reversed_dates(self, client, db_session, ring):
        response = client.post("/api/balances/recompute-range", json={
            "product_id": ring.id, "from_date": "2024-01-18", "to_date": "2024-01-16",
        }, headers=tenant_headers())
        assert response.status_code == 400

    def test_recompute_all_and_rollup(self, client, db_session, ring, necklace):
        _post_movement(client, ring)
        _post_movement(client, necklace, quantity=1, unit_value_cents=90000)

        response = client.post("/api/balances/recompute-all/2024-01-16", headers=tenant_headers())
        assert response.status_code == 200
        assert sorted(response.get_json()["succeeded"]) == sorted([ring.id, necklace.id])

        rollup = client.get("/api/balances/rollup/2024-01-16?group_by=category", headers=tenant_headers())
        items = {item["category_id"]: item for item in rollup.get_json()["items"]}
        assert items[10]["closing_qty"] == 20
        assert items[20]["closing_value_cents"] == 90000

        bad = client.get("/api/balances/rollup/2024-01-16?group_by=planet", headers=tenant_headers())
        assert bad.status_code == 400

    def test_location_activity(self, client, db_session, ring):
        _post_movement(client, ring)
        response = client.get("/api/balances/location/2024-01-16?branch_id=1&counter_id=1",
                              headers=tenant_headers())
        data = response.get_json()
        assert data["added_qty"] == 20
        assert data["product_ids"] == [ring.id]


class TestTransferRoutes:
    """/api/transfers"""

    def test_full_lifecycle(self, client, db_session, ring):
        created = _create_transfer(client, ring)
        assert created.status_code == 201
        transfer = created.get_json()
        assert transfer["status"] == "PENDING"
        assert transfer["created_by"] == "tester"

        approved = client.post(f"/api/transfers/{transfer['id']}/approve", json={}, headers=tenant_headers())
        assert approved.get_json()["status"] == "IN_TRANSIT"

        completed = client.post(f"/api/transfers/{transfer['id']}/complete",
                                json={"occurred_at": "2024-01-16T12:00:00"}, headers=tenant_headers())
        assert completed.status_code == 200
        assert completed.get_json()["status"] == "COMPLETED"

        events = client.get(f"/api/movements?reference_number={transfer['transfer_number']}",
                            headers=tenant_headers()).get_json()["items"]
        assert [e["kind"] for e in events] == ["TRANSFER_OUT", "TRANSFER_IN"]

    def test_conflict_is_409(self, client, db_session, ring):
        _create_transfer(client, ring)
        response = _create_transfer(client, ring, destination={"branch_id": 3, "counter_id": 1})
        assert response.status_code == 409
        assert response.get_json()["code"] == "CONFLICTING_TRANSFER_EXISTS"

    def test_reject_requires_reason(self, client, db_session, ring):
        transfer = _create_transfer(client, ring).get_json()

        missing = client.post(f"/api/transfers/{transfer['id']}/reject", json={}, headers=tenant_headers())
        assert missing.status_code == 400
        assert missing.get_json()["code"] == "MISSING_REJECTION_REASON"

        rejected = client.post(f"/api/transfers/{transfer['id']}/reject", json={"reason": "Not needed"},
                               headers=tenant_headers())
        assert rejected.get_json()["status"] == "REJECTED"

    def test_complete_pending_is_409(self, client, db_session, ring):
        transfer = _create_transfer(client, ring).get_json()
        response = client.post(f"/api/transfers/{transfer['id']}/complete", json={}, headers=tenant_headers())
        assert response.status_code == 409
        assert response.get_json()["code"] == "INVALID_STATE_TRANSITION"

    def test_unknown_transfer_is_404(self, client, db_session):
        response = client.get("/api/transfers/424242", headers=tenant_headers())
        assert response.status_code == 404

    def test_bulk_partial_failure_is_207(self, client, db_session, ring, necklace):
        response = client.post("/api/transfers/bulk", json={
            "transfers": [
                {"product_id": ring.id, "source": {"branch_id": 1, "counter_id": 1},
                 "destination": {"branch_id": 2, "counter_id": 1}},
                {"product_id": necklace.id, "source": {"branch_id": 9, "counter_id": 9},
                 "destination": {"branch_id": 2, "counter_id": 1}},
            ],
            "reason": "Rebalance",
        }, headers=tenant_headers())

        assert response.status_code == 207
        data = response.get_json()
        assert len(data["created"]) == 1
        assert data["errors"][0]["code"] == "LOCATION_MISMATCH"

    def test_queries(self, client, db_session, ring):
        transfer = _create_transfer(client, ring).get_json()

        pending = client.get("/api/transfers/pending?branch_id=2", headers=tenant_headers()).get_json()
        assert [t["id"] for t in pending["incoming"]] == [transfer["id"]]

        history = client.get(f"/api/transfers/product/{ring.id}", headers=tenant_headers()).get_json()
        assert [t["id"] for t in history["items"]] == [transfer["id"]]

        summary = client.get("/api/transfers/summary", headers=tenant_headers()).get_json()
        assert summary["by_status"] == {"PENDING": 1}

        listing = client.get("/api/transfers?status=PENDING", headers=tenant_headers()).get_json()
        assert len(listing["items"]) == 1


class TestVerificationRoutes:
    """/api/verifications"""

    def test_session_flow(self, client, db_session, ring, necklace):
        created = client.post("/api/verifications", json={
            "session_name": "Counter 1 rings",
            "branch_id": 1,
            "counter_id": 1,
            "category_id": 10,
        }, headers=tenant_headers())
        assert created.status_code == 201
        session_id = created.get_json()["id"]

        scans = client.post(f"/api/verifications/{session_id}/scans",
                            json={"item_codes": [ring.item_code, necklace.item_code]}, headers=tenant_headers())
        assert [line["line_status"] for line in scans.get_json()["items"]] == ["MATCHED", "UNMATCHED"]

        completed = client.post(f"/api/verifications/{session_id}/complete", json={}, headers=tenant_headers())
        assert completed.status_code == 200

        detail = client.get(f"/api/verifications/{session_id}", headers=tenant_headers()).get_json()
        assert detail["status"] == "COMPLETED"
        assert len(detail["lines"]) == 2

    def test_scans_must_be_a_list(self, client, db_session):
        created = client.post("/api/verifications", json={
            "session_name": "Boxes", "branch_id": 1, "counter_id": 1, "category_id": 10,
        }, headers=tenant_headers()).get_json()
        response = client.post(f"/api/verifications/{created['id']}/scans", json={"item_codes": "JW-0001"},
                               headers=tenant_headers())
        assert response.status_code == 400


class TestHealth:
    """/api/health"""

    def test_health(self, client, db_session):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"]["details"]["open_transfers"] == 0
