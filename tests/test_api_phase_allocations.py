"""
Phase allocation API tests.

Tests cover:
  - Create / list / detail with role scoping
  - Approve / modify / reject decisions (Growth Team only)
  - Deletion request and decision
  - Expire, forfeit, reallocate and merge through the API
  - Error envelope: 400 / 403 / 404 / 409
"""

from datetime import timedelta

import pytest

from conftest import headers_for, this_monday
from resourcing.models.allocation import AllocationStatus, PlanningStatus


def _create(client, world, hours=40, user=None):
    return client.post(
        "/api/v1/phase-allocations",
        json={"consultant_id": world.consultant.id, "phase_id": world.phase.id, "total_hours": hours},
        headers=headers_for(user or world.pm),
    )


# ═════════════════════════════════════════════════════════════════════════
# CREATE / READ
# ═════════════════════════════════════════════════════════════════════════

class TestCreateAndRead:
    def test_create(self, client, world):
        res = _create(client, world)
        assert res.status_code == 201
        data = res.get_json()
        assert data["approval_status"] == "PENDING"
        assert data["total_hours"] == 40
        assert data["project_id"] == world.project.id

    def test_create_requires_ids(self, client, world):
        res = client.post("/api/v1/phase-allocations", json={"total_hours": 5},
                          headers=headers_for(world.pm))
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_REQUIRED"
        assert body["details"] == {"consultant_id": "required"}

    def test_create_forbidden_for_consultant(self, client, world):
        res = _create(client, world, user=world.consultant)
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_duplicate_is_conflict(self, client, world):
        assert _create(client, world).status_code == 201
        res = _create(client, world)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"

    def test_list_is_scoped(self, client, world, factory):
        factory.allocation(world.consultant, world.phase)
        factory.allocation(world.other, world.phase)

        res = client.get("/api/v1/phase-allocations", headers=headers_for(world.growth))
        assert res.get_json()["total"] == 2
        res = client.get("/api/v1/phase-allocations", headers=headers_for(world.consultant))
        items = res.get_json()["items"]
        assert [i["consultant_id"] for i in items] == [world.consultant.id]

    def test_list_filters_by_status(self, client, world, factory):
        factory.allocation(world.consultant, world.phase, status=AllocationStatus.PENDING)
        factory.allocation(world.other, world.phase)
        res = client.get("/api/v1/phase-allocations?status=pending", headers=headers_for(world.growth))
        assert [i["approval_status"] for i in res.get_json()["items"]] == ["PENDING"]
        res = client.get("/api/v1/phase-allocations?status=bogus", headers=headers_for(world.growth))
        assert res.status_code == 400

    def test_detail_includes_weeks_and_ledger(self, client, world, factory):
        alloc = factory.allocation(world.consultant, world.phase, hours=40)
        factory.week(alloc, this_monday(), proposed=10, approved=10, status=PlanningStatus.APPROVED)
        res = client.get(f"/api/v1/phase-allocations/{alloc.id}", headers=headers_for(world.consultant))
        assert res.status_code == 200
        data = res.get_json()
        assert len(data["weekly_allocations"]) == 1
        assert data["ledger"]["planned_hours"] == 10
        assert data["ledger"]["unplanned_hours"] == 30
        assert data["unplanned_record"] is None

    def test_detail_outside_scope(self, client, world, factory):
        alloc = factory.allocation(world.consultant, world.phase)
        res = client.get(f"/api/v1/phase-allocations/{alloc.id}", headers=headers_for(world.other))
        assert res.status_code == 403

    def test_detail_not_found(self, client, world):
        res = client.get("/api/v1/phase-allocations/9999", headers=headers_for(world.growth))
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ═════════════════════════════════════════════════════════════════════════
# DECISIONS
# ═════════════════════════════════════════════════════════════════════════

class TestDecision:
    @pytest.fixture()
    def pending(self, world, factory):
        return factory.allocation(world.consultant, world.phase, hours=40,
                                  status=AllocationStatus.PENDING)

    def _decide(self, client, world, alloc, body, user=None):
        return client.post(f"/api/v1/phase-allocations/{alloc.id}/decision", json=body,
                           headers=headers_for(user or world.growth))

    def test_approve(self, client, world, pending):
        res = self._decide(client, world, pending, {"action": "approve"})
        assert res.status_code == 200
        assert res.get_json()["approval_status"] == "APPROVED"

    def test_modify(self, client, world, pending):
        res = self._decide(client, world, pending, {"action": "modify", "modified_hours": 25})
        assert res.status_code == 200
        assert res.get_json()["total_hours"] == 25

    def test_modify_requires_hours(self, client, world, pending):
        res = self._decide(client, world, pending, {"action": "modify"})
        assert res.status_code == 400

    def test_reject(self, client, world, pending):
        res = self._decide(client, world, pending, {"action": "reject", "rejection_reason": "No"})
        assert res.status_code == 200
        assert res.get_json()["rejection_reason"] == "No"

    def test_reject_without_reason(self, client, world, pending):
        res = self._decide(client, world, pending, {"action": "reject"})
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_REQUIRED"
        assert body["details"] == {"rejection_reason": "required"}

    def test_reject_ignores_unknown_reason_field(self, client, world, pending):
        res = self._decide(client, world, pending, {"action": "reject", "reason": "No"})
        assert res.status_code == 400
        assert res.get_json()["details"] == {"rejection_reason": "required"}

    def test_unknown_action(self, client, world, pending):
        res = self._decide(client, world, pending, {"action": "later"})
        assert res.status_code == 400

    def test_pm_cannot_decide(self, client, world, pending):
        res = self._decide(client, world, pending, {"action": "approve"}, user=world.pm)
        assert res.status_code == 403

    def test_decided_twice_is_conflict(self, client, world, pending):
        self._decide(client, world, pending, {"action": "approve"})
        res = self._decide(client, world, pending, {"action": "approve"})
        assert res.status_code == 409
        assert res.get_json()["details"]["current_status"] == "APPROVED"


# ═════════════════════════════════════════════════════════════════════════
# DELETION
# ═════════════════════════════════════════════════════════════════════════

class TestDeletion:
    def test_full_deletion_flow(self, client, world, factory):
        alloc = factory.allocation(world.consultant, world.phase)
        alloc_id = alloc.id
        res = client.post(f"/api/v1/phase-allocations/{alloc_id}/deletion-request",
                          headers=headers_for(world.pm))
        assert res.status_code == 200
        assert res.get_json()["approval_status"] == "DELETION_PENDING"

        res = client.post(f"/api/v1/phase-allocations/{alloc_id}/deletion-decision",
                          json={"approve": True}, headers=headers_for(world.growth))
        assert res.get_json() == {"deleted": True, "id": alloc_id}
        res = client.get(f"/api/v1/phase-allocations/{alloc_id}", headers=headers_for(world.growth))
        assert res.status_code == 404

    def test_deletion_declined(self, client, world, factory):
        alloc = factory.allocation(world.consultant, world.phase, status=AllocationStatus.DELETION_PENDING)
        res = client.post(f"/api/v1/phase-allocations/{alloc.id}/deletion-decision",
                          json={"approve": False}, headers=headers_for(world.growth))
        data = res.get_json()
        assert data["deleted"] is False
        assert data["allocation"]["approval_status"] == "APPROVED"

    def test_deletion_decision_needs_boolean(self, client, world, factory):
        alloc = factory.allocation(world.consultant, world.phase, status=AllocationStatus.DELETION_PENDING)
        res = client.post(f"/api/v1/phase-allocations/{alloc.id}/deletion-decision",
                          json={"approve": "yes"}, headers=headers_for(world.growth))
        assert res.status_code == 400


# ═════════════════════════════════════════════════════════════════════════
# EXPIRY / UNPLANNED / MERGE
# ═════════════════════════════════════════════════════════════════════════

class TestExpiryFlow:
    @pytest.fixture()
    def expired_id(self, client, world, factory):
        ended = factory.ended_phase(world.project)
        alloc = factory.allocation(world.consultant, ended, hours=24)
        res = client.post(f"/api/v1/phase-allocations/{alloc.id}/expire", headers=headers_for(world.growth))
        assert res.status_code == 200
        data = res.get_json()
        assert data["allocation"]["approval_status"] == "EXPIRED"
        assert data["unplanned_record"]["unplanned_hours"] == 24
        return alloc.id

    def test_expire_running_phase_is_conflict(self, client, world, factory):
        alloc = factory.allocation(world.consultant, world.phase)
        res = client.post(f"/api/v1/phase-allocations/{alloc.id}/expire", headers=headers_for(world.growth))
        assert res.status_code == 409

    def test_forfeit(self, client, world, expired_id):
        res = client.patch(f"/api/v1/phase-allocations/{expired_id}/unplanned",
                           json={"action": "forfeit", "notes": "Dropped"}, headers=headers_for(world.pm))
        assert res.status_code == 200
        data = res.get_json()
        assert data["approval_status"] == "FORFEITED"
        assert data["unplanned_record"]["status"] == "FORFEITED"

    def test_forfeit_by_consultant_forbidden(self, client, world, expired_id):
        res = client.patch(f"/api/v1/phase-allocations/{expired_id}/unplanned",
                           json={"action": "forfeit"}, headers=headers_for(world.consultant))
        assert res.status_code == 403

    def test_reallocate_approve_and_merge(self, client, world, expired_id):
        res = client.patch(f"/api/v1/phase-allocations/{expired_id}/unplanned",
                           json={"action": "reallocate", "target_phase_id": world.phase.id},
                           headers=headers_for(world.pm))
        assert res.status_code == 201
        child = res.get_json()["allocation"]
        assert child["parent_allocation_id"] == expired_id
        assert child["approval_status"] == "PENDING"

        res = client.post(f"/api/v1/phase-allocations/{child['id']}/decision",
                          json={"action": "approve"}, headers=headers_for(world.growth))
        assert res.status_code == 200

        res = client.post(f"/api/v1/phase-allocations/{child['id']}/merge", headers=headers_for(world.growth))
        assert res.status_code == 200
        parent = res.get_json()
        assert parent["id"] == expired_id
        assert parent["total_hours"] == 48

        res = client.post(f"/api/v1/phase-allocations/{child['id']}/merge", headers=headers_for(world.growth))
        assert res.status_code == 404

    def test_reallocate_requires_target(self, client, world, expired_id):
        res = client.patch(f"/api/v1/phase-allocations/{expired_id}/unplanned",
                           json={"action": "reallocate"}, headers=headers_for(world.pm))
        assert res.status_code == 400

    def test_reallocate_to_ended_phase(self, client, world, factory, expired_id):
        ended = factory.phase(world.project, end=world.phase.start_date - timedelta(days=1))
        res = client.patch(f"/api/v1/phase-allocations/{expired_id}/unplanned",
                           json={"action": "reallocate", "target_phase_id": ended.id},
                           headers=headers_for(world.pm))
        assert res.status_code == 400
        assert res.get_json()["details"] == {"target_phase_id": "ended"}

    def test_unknown_unplanned_action(self, client, world, expired_id):
        res = client.patch(f"/api/v1/phase-allocations/{expired_id}/unplanned",
                           json={"action": "keep"}, headers=headers_for(world.pm))
        assert res.status_code == 400
