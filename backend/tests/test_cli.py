"""
CLI command tests (flask system / users / ledger).
"""

from infradesk.extensions import db
from infradesk.models import Phase, ProjectMember, Resource, ResourceTemplate, Role, User

from conftest import PASSWORD


class TestSeedDemo:

    def test_seed_is_idempotent(self, app):
        runner = app.test_cli_runner()

        first = runner.invoke(args=["system", "seed-demo", "--password", PASSWORD])
        assert first.exit_code == 0, first.output
        assert "PASS Demo data ready" in first.output

        second = runner.invoke(args=["system", "seed-demo", "--password", PASSWORD])
        assert second.exit_code == 0
        assert "SKIP admin already exists" in second.output

        assert db.session.query(User).count() == 6
        assert db.session.query(Phase).count() == 3
        assert db.session.query(Resource).count() == 7
        assert {t.approval_levels for t in db.session.query(ResourceTemplate)} == {0, 1, 2, 3}
        # Every non-admin demo user belongs to the project, and every template is offered somewhere
        assert db.session.query(ProjectMember).count() == 5
        linked = {r.resource_template_id for r in db.session.query(Resource) if r.resource_template_id}
        assert linked == {t.id for t in db.session.query(ResourceTemplate)}

    def test_weak_password_fails(self, app):
        result = app.test_cli_runner().invoke(args=["system", "seed-demo", "--password", "weak"])
        assert "FAIL Password validation failed" in result.output
        assert db.session.query(User).count() == 0


class TestProjectsCommands:

    def test_add_list_remove_member(self, app, phase, make_user):
        newcomer = make_user(Role.USER, username="newcomer")
        runner = app.test_cli_runner()
        project_id = str(phase.project_id)

        added = runner.invoke(args=["projects", "add-member", "--project-id", project_id, "--username", "newcomer"])
        assert "PASS newcomer is a member" in added.output
        assert db.session.query(ProjectMember).filter_by(user_id=newcomer.id).count() == 1

        again = runner.invoke(args=["projects", "add-member", "--project-id", project_id, "--username", "newcomer"])
        assert again.exit_code == 0
        assert db.session.query(ProjectMember).filter_by(user_id=newcomer.id).count() == 1

        listed = runner.invoke(args=["projects", "members", "--project-id", project_id])
        assert "newcomer" in listed.output
        assert "requester" in listed.output

        removed = runner.invoke(args=["projects", "remove-member", "--project-id", project_id, "--username", "newcomer"])
        assert "PASS Removed newcomer" in removed.output
        assert db.session.query(ProjectMember).filter_by(user_id=newcomer.id).count() == 0

    def test_unknown_project_and_user(self, app, requester):
        runner = app.test_cli_runner()
        missing_project = runner.invoke(args=["projects", "add-member", "--project-id", "999", "--username", "requester"])
        assert "FAIL Project 999 not found" in missing_project.output

        missing_user = runner.invoke(args=["projects", "add-member", "--project-id", "1", "--username", "ghost"])
        assert "FAIL User 'ghost' not found" in missing_user.output


class TestUsersCommands:

    def test_create_and_list(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "users", "create",
            "--username", "erin",
            "--email", "erin@example.com",
            "--password", PASSWORD,
            "--role", "IT_TEAM",
        ])
        assert "PASS Created user: erin" in result.output
        assert db.session.query(User).filter_by(username="erin").one().role == Role.IT_TEAM

        listed = runner.invoke(args=["users", "list", "--role", "IT_TEAM"])
        assert "erin" in listed.output


class TestLedgerReconcile:

    def test_consistent_ledger(self, app, vm_pool):
        result = app.test_cli_runner().invoke(args=["ledger", "reconcile"])
        assert "PASS All resource counters match" in result.output

    def test_reports_then_fixes_drift(self, app, make_pool):
        pool = make_pool(quantity=5, consumed=2)
        runner = app.test_cli_runner()

        report = runner.invoke(args=["ledger", "reconcile"])
        assert "MISMATCH" in report.output
        assert "recorded 2, expected 0 of 5" in report.output
        db.session.refresh(pool)
        assert pool.consumed_quantity == 2

        fixed = runner.invoke(args=["ledger", "reconcile", "--fix"])
        assert "FIXED" in fixed.output
        db.session.refresh(pool)
        assert pool.consumed_quantity == 0
