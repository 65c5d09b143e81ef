"""
Hour ledger and availability arithmetic (no database).

Covers:
  - planned / committed / unplanned / overrun hours
  - tolerance handling in has_unplanned
  - availability week buckets, week windows and summaries
"""

from datetime import date
from types import SimpleNamespace

import pytest

from resourcing.models.allocation import PlanningStatus
from resourcing.services import availability, hour_ledger


def _week(status, proposed=None, approved=None, year=2025, week_number=10):
    return SimpleNamespace(planning_status=status, proposed_hours=proposed, approved_hours=approved,
                           year=year, week_number=week_number)


class TestHourLedger:
    def test_planned_counts_only_decided_weeks(self):
        weeks = [
            _week(PlanningStatus.APPROVED, proposed=10, approved=10),
            _week(PlanningStatus.MODIFIED, proposed=10, approved=6),
            _week(PlanningStatus.PENDING, proposed=8),
            _week(PlanningStatus.REJECTED, proposed=12),
        ]
        assert hour_ledger.planned_hours(weeks) == 16
        assert hour_ledger.committed_hours(weeks) == 24
        assert hour_ledger.unplanned_hours(40, weeks) == 24

    def test_unplanned_never_negative(self):
        weeks = [_week(PlanningStatus.APPROVED, proposed=50, approved=50)]
        assert hour_ledger.unplanned_hours(40, weeks) == 0.0
        assert hour_ledger.overrun_hours(40, weeks) == 10

    def test_tolerance_absorbs_float_noise(self):
        weeks = [_week(PlanningStatus.APPROVED, approved=39.995)]
        assert not hour_ledger.has_unplanned(40, weeks)
        assert hour_ledger.has_unplanned(40, weeks, tolerance=0.001)

    def test_ledger_summary(self):
        summary = hour_ledger.ledger_summary(20, [_week(PlanningStatus.PENDING, proposed=5)])
        assert summary == {
            "total_hours": 20,
            "planned_hours": 0,
            "committed_hours": 5,
            "unplanned_hours": 20,
            "overrun_hours": 0.0,
        }


class TestAvailabilityBuckets:
    @pytest.mark.parametrize("hours,label", [
        (0, "available"),
        (15, "available"),
        (15.5, "partially-busy"),
        (30, "partially-busy"),
        (40, "busy"),
        (40.5, "overloaded"),
    ])
    def test_week_status(self, hours, label):
        assert availability.week_status(hours) == label

    def test_week_window_crosses_year(self):
        keys = availability.week_window(date(2025, 12, 24), 3)
        assert keys == [(2025, 52), (2026, 1), (2026, 2)]

    def test_summarize(self):
        weeks = [(2025, 10), (2025, 11)]
        rows = [
            _week(PlanningStatus.APPROVED, approved=20, week_number=10),
            _week(PlanningStatus.PENDING, proposed=25, week_number=10),
            _week(PlanningStatus.REJECTED, proposed=40, week_number=11),
            _week(PlanningStatus.APPROVED, approved=8, week_number=12),
        ]
        summary = availability.summarize(weeks, rows)
        assert summary["weeks"] == [
            {"year": 2025, "week_number": 10, "hours": 45.0, "status": "overloaded"},
            {"year": 2025, "week_number": 11, "hours": 0.0, "status": "available"},
        ]
        assert summary["average_hours"] == 22.5
        assert summary["overall_status"] == "partially-busy"
        assert summary["available_hours_per_week"] == 17.5

    def test_summarize_without_rows(self):
        summary = availability.summarize([(2025, 10)], [])
        assert summary["average_hours"] == 0.0
        assert summary["overall_status"] == "available"
        assert summary["available_hours_per_week"] == 40.0
