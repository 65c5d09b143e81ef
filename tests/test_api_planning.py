"""
Weekly planning and hour change API tests.

Tests cover:
  - POST /weekly-allocations (submit / resubmit), pending list, decision, batch decision
  - POST /hour-changes, pending list, overdue list, decision
"""

from datetime import datetime, timedelta, timezone

import pytest

from conftest import headers_for, this_monday
from resourcing.models import db


@pytest.fixture()
def alloc(world, factory):
    return factory.allocation(world.consultant, world.phase, hours=40)


# ═════════════════════════════════════════════════════════════════════════
# WEEKLY ALLOCATIONS
# ═════════════════════════════════════════════════════════════════════════

class TestWeeklyAllocationsAPI:
    def _submit(self, client, world, alloc, hours, monday=None, user=None):
        return client.post(
            "/api/v1/weekly-allocations",
            json={"phase_allocation_id": alloc.id,
                  "week_start_date": (monday or this_monday()).isoformat(),
                  "proposed_hours": hours},
            headers=headers_for(user or world.consultant),
        )

    def test_submit(self, client, world, alloc):
        res = self._submit(client, world, alloc, 12)
        assert res.status_code == 201
        data = res.get_json()
        assert data["planning_status"] == "PENDING"
        assert data["week_start_date"] == this_monday().isoformat()

    def test_submit_for_someone_else(self, client, world, alloc):
        res = self._submit(client, world, alloc, 12, user=world.other)
        assert res.status_code == 403

    def test_submit_overrun(self, client, world, alloc):
        res = self._submit(client, world, alloc, 41)
        assert res.status_code == 400
        assert res.get_json()["details"]["total_hours"] == 40

    def test_submit_bad_date(self, client, world, alloc):
        res = client.post("/api/v1/weekly-allocations",
                          json={"phase_allocation_id": alloc.id, "week_start_date": "next week",
                                "proposed_hours": 5},
                          headers=headers_for(world.consultant))
        assert res.status_code == 400

    def test_pending_list_and_decision(self, client, world, alloc):
        week_id = self._submit(client, world, alloc, 12).get_json()["id"]

        res = client.get("/api/v1/weekly-allocations/pending", headers=headers_for(world.growth))
        assert [w["id"] for w in res.get_json()["items"]] == [week_id]

        res = client.post(f"/api/v1/weekly-allocations/{week_id}/decision",
                          json={"action": "modify", "approved_hours": 10},
                          headers=headers_for(world.growth))
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == "MODIFIED"
        assert data["weekly_allocation"]["approved_hours"] == 10

        res = client.get("/api/v1/weekly-allocations/pending", headers=headers_for(world.growth))
        assert res.get_json()["total"] == 0

    def test_consultant_cannot_decide(self, client, world, factory, alloc):
        week = factory.week(alloc, this_monday(), proposed=10)
        res = client.post(f"/api/v1/weekly-allocations/{week.id}/decision",
                          json={"action": "approve"}, headers=headers_for(world.consultant))
        assert res.status_code == 403

    def test_batch_decision(self, client, world, factory, alloc):
        w1 = factory.week(alloc, this_monday(), proposed=10)
        w2 = factory.week(alloc, this_monday(1), proposed=10)
        res = client.post("/api/v1/weekly-allocations/batch-decision",
                          json={"items": [{"id": w1.id}, {"id": w2.id, "approved_hours": 0}],
                                "default_action": "approve"},
                          headers=headers_for(world.growth))
        assert res.status_code == 200
        data = res.get_json()
        assert data["approved"] == 1
        assert data["deleted"] == 1
        assert data["groups"] == 1

    def test_batch_decision_all_or_nothing(self, client, world, factory, alloc):
        w1 = factory.week(alloc, this_monday(), proposed=10)
        w1_id = w1.id
        res = client.post("/api/v1/weekly-allocations/batch-decision",
                          json={"items": [{"id": w1_id}, {"id": 9999}]},
                          headers=headers_for(world.growth))
        assert res.status_code == 404
        res = client.get("/api/v1/weekly-allocations/pending", headers=headers_for(world.growth))
        assert [w["id"] for w in res.get_json()["items"]] == [w1_id]


# ═════════════════════════════════════════════════════════════════════════
# HOUR CHANGES
# ═════════════════════════════════════════════════════════════════════════

class TestHourChangesAPI:
    def _request(self, client, world, alloc, **overrides):
        body = {"phase_allocation_id": alloc.id, "change_type": "ADJUSTMENT",
                "request_type": "INCREASE", "requested_hours": 8, "reason": "New scope"}
        body.update(overrides)
        return client.post("/api/v1/hour-changes", json=body, headers=headers_for(world.consultant))

    def test_create(self, client, world, alloc):
        res = self._request(client, world, alloc)
        assert res.status_code == 201
        data = res.get_json()
        assert data["status"] == "PENDING"
        assert data["original_hours"] == 40

    def test_create_validation(self, client, world, alloc):
        assert self._request(client, world, alloc, reason="").status_code == 400
        assert self._request(client, world, alloc, change_type="MOVE").status_code == 400
        assert self._request(client, world, alloc, requested_hours=0).status_code == 400

    def test_approve(self, client, world, alloc):
        req_id = self._request(client, world, alloc).get_json()["id"]
        res = client.post(f"/api/v1/hour-changes/{req_id}/decision", json={"action": "approve"},
                          headers=headers_for(world.growth))
        assert res.status_code == 200
        data = res.get_json()
        assert data["request"]["status"] == "APPROVED"
        assert data["effect"]["new_hours"] == 48

        res = client.post(f"/api/v1/hour-changes/{req_id}/decision", json={"action": "approve"},
                          headers=headers_for(world.growth))
        assert res.status_code == 409

    def test_reject_needs_reason(self, client, world, alloc):
        req_id = self._request(client, world, alloc).get_json()["id"]
        res = client.post(f"/api/v1/hour-changes/{req_id}/decision", json={"action": "reject"},
                          headers=headers_for(world.growth))
        assert res.status_code == 400

    def test_pending_scoped(self, client, world, alloc):
        self._request(client, world, alloc)
        res = client.get("/api/v1/hour-changes/pending", headers=headers_for(world.other))
        assert res.get_json()["total"] == 0
        res = client.get("/api/v1/hour-changes/pending", headers=headers_for(world.pm))
        assert res.get_json()["total"] == 1

    def test_overdue(self, client, world, alloc):
        from resourcing.models.hour_change import HourChangeRequest

        req_id = self._request(client, world, alloc).get_json()["id"]
        req = db.session.get(HourChangeRequest, req_id)
        req.created_at = datetime.now(timezone.utc) - timedelta(hours=30)
        db.session.commit()

        res = client.get("/api/v1/hour-changes/overdue", headers=headers_for(world.growth))
        assert res.get_json()["total"] == 0
        res = client.get("/api/v1/hour-changes/overdue?hours=24", headers=headers_for(world.growth))
        items = res.get_json()["items"]
        assert [i["id"] for i in items] == [req_id]
        assert items[0]["hours_pending"] >= 30

    def test_overdue_growth_team_only(self, client, world):
        res = client.get("/api/v1/hour-changes/overdue", headers=headers_for(world.pm))
        assert res.status_code == 403
