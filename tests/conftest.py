"""
Shared pytest fixtures for the Change Governance Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - project: Pre-created Project (budget 200,000, 2026-01-01 → 2026-12-31)
    - members: Active organization members, one per role combination
    - actor: Factory resolving a member email to an ActorContext
    - facade: GovernanceFacade built from the testing config
    - make_change: Factory for routed ChangeRequest records (no store)
"""

import itertools
from datetime import date

import pytest

from change_governance import create_app
from change_governance.models import db as _db
from change_governance.models.change_request import (
    ActorSnapshot,
    ChangeCategory,
    ChangePriority,
    format_change_number,
)
from change_governance.models.membership import OrganizationMember
from change_governance.models.project import Project
from change_governance.services.change_state_machine import ChangeStateMachine
from change_governance.services.governance_facade import GovernanceFacade
from change_governance.services.identity import resolve_actor

ORG_ID = 1

# email → (org role, functional role)
MEMBERS = {
    "owner@example.com": ("owner", None),
    "exec@example.com": ("member_write", "executive"),
    "sponsor@example.com": ("member_write", "sponsor"),
    "pm@example.com": ("member_write", "project_manager"),
    "finance@example.com": ("member_write", "finance_manager"),
    "quality@example.com": ("member_write", "quality_manager"),
    "tech@example.com": ("member_write", "technical_lead"),
    "coordinator@example.com": ("member_write", "project_coordinator"),
    "dev@example.com": ("member_write", "team_member"),
    "observer@example.com": ("member_read", None),
    "auditor@example.com": ("member_read", "auditor"),
}


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


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def project():
    proj = Project(
        organization_id=ORG_ID,
        code="PRJ-1",
        name="ERP Rollout",
        budget=200_000,
        start_date=date(2026, 1, 1),
        end_date=date(2026, 12, 31),
    )
    _db.session.add(proj)
    _db.session.commit()
    return proj


@pytest.fixture()
def members():
    rows = []
    for i, (email, (role, functional_role)) in enumerate(MEMBERS.items(), start=1):
        rows.append(OrganizationMember(
            organization_id=ORG_ID,
            user_id=f"u{i}",
            user_email=email,
            user_name=email.split("@")[0].title(),
            role=role,
            functional_role=functional_role,
        ))
    _db.session.add_all(rows)
    _db.session.commit()
    return rows


@pytest.fixture()
def actor(members):
    """Resolve a member email to its ActorContext: ``actor("pm@example.com")``."""
    def _resolve(email):
        return resolve_actor(ORG_ID, email)
    return _resolve


@pytest.fixture()
def facade(app):
    return GovernanceFacade.from_config(app.config)


@pytest.fixture()
def make_change():
    """Build a routed ChangeRequest without touching the store.

    ``make_change(cost=30_000, schedule=5)`` → impactAnalysis / sponsor.
    """
    machine = ChangeStateMachine()
    counter = itertools.count(1)
    creator = ActorSnapshot(user_id="u0", name="Creator", email="creator@example.com",
                            org_role="member_write", functional_role="team_member")

    def _make(cost=0, schedule=0, category=ChangeCategory.SCOPE, **details):
        n = next(counter)
        return machine.create(
            change_id=f"chg-{n}",
            change_number=format_change_number(n),
            project_id=1,
            actor=creator,
            title=f"Change {n}",
            description="Adjust the rollout plan",
            category=category,
            priority=ChangePriority.MEDIUM,
            impact_cost=cost,
            impact_schedule=schedule,
            **details,
        )
    return _make
