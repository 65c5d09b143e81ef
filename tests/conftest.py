"""
Shared pytest fixtures for the resource allocation test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - factory: builders for users, projects, phases, allocations, weeks
    - world: a small project with a PM, two consultants and a Growth Team member

Builders commit: API error handlers roll the shared session back, which
would otherwise discard rows created only with ``flush()``.
"""

from datetime import date, timedelta

import pytest

from resourcing import create_app
from resourcing.core.actor import Actor
from resourcing.models import db as _db
from resourcing.models.allocation import (
    AllocationStatus,
    PhaseAllocation,
    PlanningStatus,
    WeeklyAllocation,
)
from resourcing.models.project import Phase, Project, ProjectConsultant, ProjectRole
from resourcing.models.user import User, UserRole


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Builders ─────────────────────────────────────────────────────────────


def headers_for(user):
    """Request headers acting as ``user``."""
    return {"X-User-Id": str(user.id)}


def actor_for(user):
    return Actor.from_user(user)


class Factory:
    """Row builders; each call commits."""

    def __init__(self):
        self._seq = 0

    def _next(self):
        self._seq += 1
        return self._seq

    def user(self, role=UserRole.CONSULTANT, name=None):
        n = self._next()
        user = User(name=name or f"User {n}", email=f"user{n}@example.com", role=role)
        _db.session.add(user)
        _db.session.commit()
        return user

    def growth_team(self, name=None):
        return self.user(UserRole.GROWTH_TEAM, name=name)

    def project(self, pm, title=None, budgeted_hours=500):
        project = Project(
            title=title or f"Project {self._next()}",
            budgeted_hours=budgeted_hours,
            product_manager_id=pm.id if pm else None,
        )
        _db.session.add(project)
        _db.session.commit()
        return project

    def member(self, project, user, role=ProjectRole.TEAM_MEMBER):
        link = ProjectConsultant(project_id=project.id, user_id=user.id, role=role)
        _db.session.add(link)
        _db.session.commit()
        return link

    def phase(self, project, name=None, start=None, end=None):
        today = date.today()
        phase = Phase(
            project_id=project.id,
            name=name or f"Phase {self._next()}",
            start_date=start or today - timedelta(days=14),
            end_date=end or today + timedelta(days=30),
        )
        _db.session.add(phase)
        _db.session.commit()
        return phase

    def ended_phase(self, project, name=None, days_ago=3):
        today = date.today()
        return self.phase(
            project, name=name,
            start=today - timedelta(days=60),
            end=today - timedelta(days=days_ago),
        )

    def allocation(self, consultant, phase, hours=40.0, status=AllocationStatus.APPROVED,
                   parent=None, created_by=None):
        alloc = PhaseAllocation(
            consultant_id=consultant.id,
            phase_id=phase.id,
            total_hours=hours,
            approval_status=status,
            parent_allocation_id=parent.id if parent else None,
            created_by_id=created_by.id if created_by else None,
        )
        _db.session.add(alloc)
        _db.session.commit()
        return alloc

    def week(self, alloc, monday, proposed=10.0, approved=None, status=PlanningStatus.PENDING):
        iso_year, iso_week, _ = monday.isocalendar()
        week = WeeklyAllocation(
            phase_allocation_id=alloc.id,
            consultant_id=alloc.consultant_id,
            week_number=iso_week,
            year=iso_year,
            week_start_date=monday,
            proposed_hours=proposed,
            approved_hours=approved,
            planning_status=status,
        )
        _db.session.add(week)
        _db.session.commit()
        return week


@pytest.fixture()
def factory():
    return Factory()


class World:
    """One project, its PM, two consultants, one Growth Team member, one running phase."""

    def __init__(self, factory):
        self.factory = factory
        self.growth = factory.growth_team("Grace Growth")
        self.pm = factory.user(name="Paula PM")
        self.consultant = factory.user(name="Cody Consultant")
        self.other = factory.user(name="Olga Other")
        self.project = factory.project(self.pm, title="Atlas")
        factory.member(self.project, self.pm, ProjectRole.PRODUCT_MANAGER)
        factory.member(self.project, self.consultant)
        factory.member(self.project, self.other)
        self.phase = factory.phase(self.project, name="Discovery")

    @property
    def growth_actor(self):
        return actor_for(self.growth)

    @property
    def pm_actor(self):
        return actor_for(self.pm)

    @property
    def consultant_actor(self):
        return actor_for(self.consultant)


@pytest.fixture()
def world(factory):
    return World(factory)


def this_monday(offset_weeks=0):
    today = date.today()
    return today - timedelta(days=today.weekday()) + timedelta(weeks=offset_weeks)
