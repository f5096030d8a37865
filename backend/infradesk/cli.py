# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/infradesk/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (development; use `flask db upgrade` for managed schemas).
# - python -m flask system seed-demo [--password "Password123!"]
#   Idempotent demo data: one user per role, a project with three phases and
#   every non-admin user as a member, resource templates at approval depths
#   0-3, and phase resource pools (some offering a template).
#
# Project membership:
# - python -m flask projects members --project-id 1
# - python -m flask projects add-member --project-id 1 --username developer
# - python -m flask projects remove-member --project-id 1 --username developer
#   Only admins and project members may request resources in a project.
#
# User inspection/bootstrap:
# - python -m flask users list [--role IT_TEAM]
# - python -m flask users create --username alice --email alice@example.com --role DEPARTMENT_HEAD
#   Create a user (prompts if options are omitted).
#
# Ledger maintenance:
# - python -m flask ledger reconcile [--fix]
#   Recompute consumed_quantity from granted resource-bound requests.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Phase, Project, Resource, ResourceTemplate, Role, User
from .errors import NotFoundError
from .services import ledger_service, project_access_service
from .services.auth_service import create_user, PasswordValidationError


DEFAULT_PASSWORD = "Password123!"

DEMO_USERS = [
    # username, name, role, department
    ("admin", "System Admin", Role.ADMIN, None),
    ("depthead", "Alice Johnson", Role.DEPARTMENT_HEAD, "Engineering"),
    ("ithead", "Bob Smith", Role.IT_HEAD, None),
    ("itteam", "Chris Wilson", Role.IT_TEAM, None),
    ("developer", "John Developer", Role.USER, "Engineering"),
    ("designer", "Jane Designer", Role.USER, "Engineering"),
]

DEMO_TEMPLATES = [
    # name, approval levels, description
    ("Basic Virtual Machine", 0, "Small VM for experiments; auto-approved"),
    ("Standard Virtual Machine", 1, "General purpose VM; department head approval"),
    ("Premium Virtual Machine", 2, "GPU-capable VM; department head and IT head approval"),
    ("Database Server", 2, "Managed database instance"),
    ("Enterprise Server", 3, "HA server with backup and monitoring; full approval chain"),
]

DEMO_PHASES = {
    # phase -> [(resource_type, quantity, approval_levels, configuration, cost_per_unit_cents, template)]
    "Development": [
        ("Virtual Machine", 5, 1, {"cpuCores": 8, "ramGB": 16, "diskGB": 500}, 10000, "Standard Virtual Machine"),
        ("Storage", 10, 1, {"type": "SSD", "diskGB": 1000, "redundancy": "RAID-1"}, 5000, None),
        ("Sandbox VM", 10, 0, {"cpuCores": 2, "ramGB": 4, "diskGB": 100}, 2500, "Basic Virtual Machine"),
    ],
    "Testing": [
        ("Virtual Machine", 3, 2, {"cpuCores": 4, "ramGB": 8, "diskGB": 250}, 7500, "Premium Virtual Machine"),
    ],
    "Production": [
        ("Virtual Machine", 2, 3, {"cpuCores": 16, "ramGB": 32, "diskGB": 1000}, 20000, "Enterprise Server"),
        ("Load Balancer", 2, 3, {"cpuCores": 4, "ramGB": 8, "diskGB": 100, "maxConnections": 10000}, 15000, None),
        ("Database", 2, 2, {"engine": "PostgreSQL", "storageGB": 1000}, 30000, "Database Server"),
    ],
}


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('seed-demo')
@click.option('--password', default=DEFAULT_PASSWORD, show_default=True, help='Password for every demo user')
@with_appcontext
def seed_demo(password):
    """
    Seed demo users, a project, templates and resource pools.

    Safe to re-run: existing rows (matched by username / name) are kept.

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Seeding demo data...")

    click.echo("\nUSERS Creating demo users...")
    for username, name, role, department in DEMO_USERS:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"SKIP {username} already exists")
            continue
        try:
            create_user(
                username=username,
                email=f"{username}@infradesk.local",
                password=password,
                role=role,
                name=name,
                department=department,
            )
        except PasswordValidationError as e:
            click.echo(f"FAIL Password validation failed: {str(e)}")
            return
        click.echo(f"PASS {username} ({role.value})")

    click.echo("\nLIST Creating resource templates...")
    for name, levels, description in DEMO_TEMPLATES:
        if db.session.query(ResourceTemplate).filter_by(name=name).first():
            continue
        db.session.add(ResourceTemplate(name=name, approval_levels=levels, description=description))
        click.echo(f"PASS {name} ({levels} levels)")
    db.session.commit()

    click.echo("\nBUILD Creating project, phases and resource pools...")
    project = db.session.query(Project).filter_by(name="E-commerce Platform").first()
    if project:
        click.echo(f"SKIP Project '{project.name}' already exists (ID: {project.id})")
    else:
        templates = {t.name: t for t in db.session.query(ResourceTemplate).all()}
        project = Project(name="E-commerce Platform", client="TechCorp Inc.")
        db.session.add(project)
        db.session.flush()
        members = db.session.query(User).filter(User.role != Role.ADMIN).order_by(User.id.asc()).all()
        for user in members:
            project_access_service.add_member(project_id=project.id, user_id=user.id)
        click.echo(f"PASS Project '{project.name}' with {len(members)} members")
        for phase_name, pools in DEMO_PHASES.items():
            phase = Phase(project_id=project.id, name=phase_name)
            db.session.add(phase)
            db.session.flush()
            for resource_type, quantity, levels, configuration, cost, template_name in pools:
                template = templates.get(template_name)
                db.session.add(Resource(
                    phase_id=phase.id,
                    resource_template_id=template.id if template else None,
                    resource_type=resource_type,
                    quantity=quantity,
                    approval_levels=levels,
                    configuration=configuration,
                    cost_per_unit_cents=cost,
                ))
            click.echo(f"PASS Phase {phase_name} (ID: {phase.id}) with {len(pools)} pools")
        db.session.commit()

    click.echo(f"\nPASS Demo data ready. Default password: {password}")


@click.group('projects')
def projects_group():
    """Project membership commands."""


def _resolve_user(username):
    user = db.session.query(User).filter_by(username=username).first()
    if not user:
        click.echo(f"FAIL User '{username}' not found")
    return user


@projects_group.command('members')
@click.option('--project-id', type=int, required=True, help='Project ID')
@with_appcontext
def list_project_members(project_id):
    """List the members of a project."""
    members = project_access_service.list_members(project_id)
    if not members:
        click.echo("No members found.")
        return

    for member in members:
        click.echo(f"{member.user_id:<5} {member.user.username:<20} {member.user.role.value}")


@projects_group.command('add-member')
@click.option('--project-id', type=int, required=True, help='Project ID')
@click.option('--username', required=True, help='Username to add')
@with_appcontext
def add_project_member(project_id, username):
    """Give a user access to a project's phases."""
    user = _resolve_user(username)
    if not user:
        return
    try:
        project_access_service.add_member(project_id=project_id, user_id=user.id)
    except NotFoundError as e:
        click.echo(f"FAIL {e.message}")
        return
    db.session.commit()
    click.echo(f"PASS {username} is a member of project {project_id}")


@projects_group.command('remove-member')
@click.option('--project-id', type=int, required=True, help='Project ID')
@click.option('--username', required=True, help='Username to remove')
@with_appcontext
def remove_project_member(project_id, username):
    """Revoke a user's access to a project."""
    user = _resolve_user(username)
    if not user:
        return
    if not project_access_service.remove_member(project_id=project_id, user_id=user.id):
        click.echo(f"SKIP {username} is not a member of project {project_id}")
        return
    db.session.commit()
    click.echo(f"PASS Removed {username} from project {project_id}")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice([r.value for r in Role]), prompt=True, help='Role')
@click.option('--name', default=None, help='Display name')
@click.option('--department', default=None, help='Department (required to receive IT tasks)')
@with_appcontext
def create_user_cli(username, email, password, role, name, department):
    """
    Create a new user.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(
            username=username,
            email=email,
            password=password,
            role=role,
            name=name,
            department=department,
        )
        click.echo(f"PASS Created user: {username} ({email}) with role '{user.role.value}'")
        click.echo("SECURITY Password securely hashed with bcrypt")

    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('list')
@click.option('--role', type=click.Choice([r.value for r in Role]), help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with their roles."""
    query = db.session.query(User)
    if role:
        query = query.filter(User.role == Role(role))

    users = query.order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Role':<16} {'Department':<14} {'Active'}")
    click.echo("="*100)

    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(
            f"{user.id:<5} {user.username:<20} {user.email:<30} {user.role.value:<16} "
            f"{user.department or '-':<14} {active_str}"
        )

    click.echo("="*100 + "\n")


@click.group('ledger')
def ledger_group():
    """Resource ledger maintenance commands."""


@ledger_group.command('reconcile')
@click.option('--fix', is_flag=True, help='Repair mismatched counters (over-allocated pools are only reported)')
@with_appcontext
def reconcile_ledger(fix):
    """Compare each pool's consumed_quantity with its granted requests."""
    mismatches = ledger_service.reconcile(fix=fix)
    if fix:
        db.session.commit()
    else:
        db.session.rollback()

    if not mismatches:
        click.echo("PASS All resource counters match their granted requests")
        return

    for row in mismatches:
        status = "FIXED" if row["fixed"] else ("OVER" if row["over_allocated"] else "MISMATCH")
        click.echo(
            f"{status:<9} resource {row['resource_id']} ({row['resource_type']}): "
            f"recorded {row['recorded']}, expected {row['expected']} of {row['quantity']}"
        )

    if any(row["over_allocated"] for row in mismatches):
        click.echo("WARN  Over-allocated pools need manual review")
    elif not fix:
        click.echo("Run again with --fix to repair.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(projects_group)
    app.cli.add_command(users_group)
    app.cli.add_command(ledger_group)
