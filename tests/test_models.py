"""
Model-level tests: status enums, transition tables, phase locking.

Covers:
  - every status enum member has an entry in its transition table
  - terminal states have no way out
  - Phase.has_ended / is_locked / can_edit / recompute_dates
  - WeeklyAllocation.effective_hours and the per-week unique constraint
"""

from datetime import date, timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from resourcing.models import db
from resourcing.models.allocation import (
    ALLOCATION_TRANSITIONS,
    PLANNING_TRANSITIONS,
    UNPLANNED_TRANSITIONS,
    AllocationStatus,
    PlanningStatus,
    UnplannedStatus,
    WeeklyAllocation,
    validate_allocation_transition,
    validate_planning_transition,
    validate_unplanned_transition,
)
from resourcing.models.hour_change import (
    CHANGE_TRANSITIONS,
    REQUEST_TYPES_BY_CHANGE,
    ChangeStatus,
    ChangeType,
    RequestType,
    validate_change_transition,
)
from resourcing.models.project import Phase, Sprint
from resourcing.models.user import UserRole


class TestTransitionTables:
    @pytest.mark.parametrize("table,enum_cls", [
        (ALLOCATION_TRANSITIONS, AllocationStatus),
        (PLANNING_TRANSITIONS, PlanningStatus),
        (UNPLANNED_TRANSITIONS, UnplannedStatus),
        (CHANGE_TRANSITIONS, ChangeStatus),
    ])
    def test_every_status_is_covered(self, table, enum_cls):
        assert set(table) == set(enum_cls)
        for targets in table.values():
            assert set(targets) <= set(enum_cls)

    @pytest.mark.parametrize("status", [AllocationStatus.REJECTED, AllocationStatus.FORFEITED])
    def test_terminal_allocation_states(self, status):
        for target in AllocationStatus:
            assert not validate_allocation_transition(status, target)

    def test_allocation_lifecycle(self):
        assert validate_allocation_transition(AllocationStatus.PENDING, AllocationStatus.APPROVED)
        assert validate_allocation_transition(AllocationStatus.APPROVED, AllocationStatus.EXPIRED)
        assert validate_allocation_transition(AllocationStatus.EXPIRED, AllocationStatus.FORFEITED)
        assert validate_allocation_transition(AllocationStatus.DELETION_PENDING, AllocationStatus.APPROVED)
        assert not validate_allocation_transition(AllocationStatus.PENDING, AllocationStatus.EXPIRED)
        assert not validate_allocation_transition(AllocationStatus.EXPIRED, AllocationStatus.APPROVED)

    def test_decided_weeks_can_only_return_to_pending(self):
        for status in (PlanningStatus.APPROVED, PlanningStatus.MODIFIED, PlanningStatus.REJECTED):
            assert validate_planning_transition(status, PlanningStatus.PENDING)
            assert not validate_planning_transition(status, PlanningStatus.APPROVED)

    def test_unplanned_record_is_handled_once(self):
        assert validate_unplanned_transition(UnplannedStatus.UNPLANNED, UnplannedStatus.FORFEITED)
        assert validate_unplanned_transition(UnplannedStatus.UNPLANNED, UnplannedStatus.REALLOCATED)
        assert not validate_unplanned_transition(UnplannedStatus.REALLOCATED, UnplannedStatus.FORFEITED)

    def test_hour_change_decided_once(self):
        assert validate_change_transition(ChangeStatus.PENDING, ChangeStatus.APPROVED)
        assert not validate_change_transition(ChangeStatus.APPROVED, ChangeStatus.REJECTED)
        assert not validate_change_transition(ChangeStatus.REJECTED, ChangeStatus.APPROVED)

    def test_request_types_match_change_types(self):
        assert REQUEST_TYPES_BY_CHANGE[ChangeType.SHIFT] == {RequestType.TRANSFER}
        assert RequestType.TRANSFER not in REQUEST_TYPES_BY_CHANGE[ChangeType.ADJUSTMENT]


class TestPhaseLock:
    def test_open_phase(self, world):
        phase = world.phase
        assert not phase.has_ended()
        assert phase.can_edit(UserRole.CONSULTANT)

    def test_end_date_itself_is_still_editable(self, world, factory):
        phase = factory.phase(world.project, end=date.today())
        assert not phase.is_locked()
        assert phase.is_locked(date.today() + timedelta(days=1))

    def test_ended_phase_locked_except_for_growth_team(self, world, factory):
        phase = factory.ended_phase(world.project)
        assert phase.is_locked()
        assert not phase.can_edit(UserRole.CONSULTANT)
        assert phase.can_edit(UserRole.GROWTH_TEAM)

    def test_phase_without_end_date_never_ends(self, world):
        phase = Phase(project_id=world.project.id, name="Open ended")
        assert not phase.has_ended()

    def test_recompute_dates_from_sprints(self, world):
        phase = world.phase
        db.session.add_all([
            Sprint(project_id=world.project.id, phase_id=phase.id, sprint_number=1,
                   start_date=date(2025, 3, 3), end_date=date(2025, 3, 14)),
            Sprint(project_id=world.project.id, phase_id=phase.id, sprint_number=2,
                   start_date=date(2025, 3, 17), end_date=date(2025, 3, 28)),
        ])
        db.session.commit()
        phase.recompute_dates()
        assert phase.start_date == date(2025, 3, 3)
        assert phase.end_date == date(2025, 3, 28)


class TestWeeklyAllocation:
    def test_effective_hours_prefers_approved(self, world, factory):
        alloc = factory.allocation(world.consultant, world.phase)
        week = factory.week(alloc, date(2025, 3, 3), proposed=10, approved=6,
                            status=PlanningStatus.MODIFIED)
        assert week.effective_hours == 6
        assert week.week_label == "Week 10, 2025"

    def test_one_row_per_consultant_allocation_and_week(self, world, factory):
        alloc = factory.allocation(world.consultant, world.phase)
        factory.week(alloc, date(2025, 3, 3))
        db.session.add(WeeklyAllocation(
            phase_allocation_id=alloc.id, consultant_id=alloc.consultant_id,
            week_number=10, year=2025, week_start_date=date(2025, 3, 3), proposed_hours=4,
        ))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()
