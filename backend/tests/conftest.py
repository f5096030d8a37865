"""
Pytest fixtures for infradesk backend tests.

Provides the test app, a per-test table wipe, user / phase / pool /
template factories, callers and auth headers.
"""

import pytest

from infradesk import create_app
from infradesk.config import TestConfig
from infradesk.extensions import db
from infradesk.models import Phase, Project, ProjectMember, Resource, ResourceTemplate, Role, User
from infradesk.services import session_service
from infradesk.services.allocation_service import Caller
from infradesk.services.auth_service import hash_password
from infradesk.services.notification_service import get_notifier


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function', autouse=True)
def db_session(app):
    """Fresh tables and an empty notification outbox for each test."""
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    get_notifier().clear()

    yield db.session

    db.session.rollback()


@pytest.fixture
def notifier(app):
    """The in-memory notifier configured by TestConfig."""
    return get_notifier()


@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    def _make(role=Role.USER, *, username=None, department=None, is_active=True):
        counter["n"] += 1
        username = username or f"{Role(role).value.lower()}_{counter['n']}"
        user = User(
            username=username,
            email=f"{username}@example.com",
            name=username.replace("_", " ").title(),
            password_hash=hash_password(PASSWORD),
            role=Role(role),
            department=department,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def requester(make_user):
    return make_user(Role.USER, username="requester", department="Engineering")


@pytest.fixture
def dept_head(make_user):
    return make_user(Role.DEPARTMENT_HEAD, username="dept_head", department="Engineering")


@pytest.fixture
def it_head(make_user):
    return make_user(Role.IT_HEAD, username="it_head")


@pytest.fixture
def admin(make_user):
    return make_user(Role.ADMIN, username="admin")


@pytest.fixture
def it_member(make_user):
    return make_user(Role.IT_TEAM, username="it_member")


@pytest.fixture
def approvers(dept_head, it_head, admin):
    """One approver per level, keyed by level."""
    return {1: dept_head, 2: it_head, 3: admin}


@pytest.fixture
def phase(db_session, requester):
    """Development phase of a project the requester belongs to."""
    project = Project(name="E-commerce Platform", client="TechCorp Inc.")
    db_session.add(project)
    db_session.flush()
    db_session.add(ProjectMember(project_id=project.id, user_id=requester.id))
    phase = Phase(project_id=project.id, name="Development")
    db_session.add(phase)
    db_session.commit()
    return phase


@pytest.fixture
def join_project(db_session, phase):
    """Add a user to the test phase's project."""
    def _join(user):
        db_session.add(ProjectMember(project_id=phase.project_id, user_id=user.id))
        db_session.commit()
        return user

    return _join


@pytest.fixture
def make_pool(db_session, phase):
    def _make(resource_type="Virtual Machine", *, quantity=5, consumed=0, approval_levels=1, phase_id=None):
        resource = Resource(
            phase_id=phase_id or phase.id,
            resource_type=resource_type,
            quantity=quantity,
            consumed_quantity=consumed,
            approval_levels=approval_levels,
            configuration={"cpuCores": 8, "ramGB": 16},
        )
        db_session.add(resource)
        db_session.commit()
        return resource

    return _make


@pytest.fixture
def vm_pool(make_pool):
    return make_pool("Virtual Machine", quantity=5, approval_levels=1)


@pytest.fixture
def make_template(db_session, phase):
    """Catalog template, offered in the test phase unless link=False."""
    def _make(approval_levels, *, name=None, is_active=True, link=True):
        template = ResourceTemplate(
            name=name or f"Template L{approval_levels}",
            approval_levels=approval_levels,
            is_active=is_active,
        )
        db_session.add(template)
        db_session.flush()
        if link:
            db_session.add(Resource(
                phase_id=phase.id,
                resource_template_id=template.id,
                resource_type=template.name,
                quantity=1,
                approval_levels=approval_levels,
                configuration={},
            ))
        db_session.commit()
        return template

    return _make


def caller_for(user) -> Caller:
    return Caller.from_user(user)


def auth_headers(user) -> dict:
    """Helper to create Authorization headers for a user."""
    _, token = session_service.create_session(user.id)
    return {'Authorization': f'Bearer {token}'}
