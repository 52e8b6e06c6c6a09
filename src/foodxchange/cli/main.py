"""
FoodXchange CLI

Command-line interface for the FoodXchange lifecycle engine.
Provides commands for projects, proposals, awards, catalog quotes and
scheduled maintenance.

Usage:
    foodx init --db marketplace.db
    foodx project create --buyer buyer-1 --title "Organic wheat for Q3" ...
    foodx project publish --id <project_id> --buyer buyer-1
    foodx proposal create --project <project_id> --vendor vendor-1 ...
    foodx proposal submit --id <proposal_id> --vendor vendor-1
    foodx award --project <project_id> --proposal <proposal_id> --buyer buyer-1
    foodx tick
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, NoReturn, Optional

import typer
from typing_extensions import Annotated

from foodxchange.accounts.models import Actor, UserRole
from foodxchange.exchange import Exchange
from foodxchange.kernel.errors import ExchangeError, error_category
from foodxchange.kernel.logging import configure_logging
from foodxchange.kernel.policy import ExchangeSettings
from foodxchange.project.models import Project, ProjectStatus
from foodxchange.proposal.models import Proposal

settings = ExchangeSettings.from_env()

# Logs go to stderr; stdout stays clean for --json output
configure_logging(json_output=settings.json_logs, log_level=settings.log_level)

app = typer.Typer(
    name="foodx",
    help="FoodXchange - B2B food sourcing marketplace engine",
    add_completion=False,
)

# Sub-apps
project_app = typer.Typer(help="Project lifecycle commands")
proposal_app = typer.Typer(help="Proposal lifecycle commands")
notification_app = typer.Typer(help="Notification outbox commands")

app.add_typer(project_app, name="project")
app.add_typer(proposal_app, name="proposal")
app.add_typer(notification_app, name="notifications")

DEFAULT_DB = settings.db_path

DbOption = Annotated[Optional[Path], typer.Option("--db", help="Database path")]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON")]


def get_exchange(db_path: Optional[Path] = None) -> Exchange:
    """Get Exchange instance"""
    db = db_path or DEFAULT_DB
    if not db.exists():
        typer.echo(f"Error: Database not found: {db}", err=True)
        typer.echo(f"Run 'foodx init --db {db}' to initialize", err=True)
        raise typer.Exit(1)
    return Exchange(db)


def fail(error: ExchangeError) -> NoReturn:
    """Report a lifecycle error with its stable category and exit non-zero"""
    typer.echo(f"Error [{error_category(error)}]: {error}", err=True)
    raise typer.Exit(1)


def echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def echo_project(project: Project) -> None:
    typer.echo(f"  Title: {project.title}")
    typer.echo(f"  Status: {project.status.value}")
    typer.echo(f"  Visibility: {project.visibility.value}")
    typer.echo(f"  Deadline: {project.deadline.isoformat()}")
    typer.echo(f"  Proposals: {project.proposal_count}")


def echo_proposal(proposal: Proposal) -> None:
    typer.echo(f"  Project: {proposal.project_id}")
    typer.echo(f"  Vendor: {proposal.vendor_id}")
    typer.echo(f"  Status: {proposal.status.value}")
    typer.echo(
        f"  Total: {proposal.pricing.currency.value} {proposal.pricing.total_price}"
    )


# Initialization command


@app.command()
def init(
    db: Annotated[
        Path,
        typer.Option(help="Database path"),
    ] = DEFAULT_DB,
) -> None:
    """Initialize a new FoodXchange database"""
    if db.exists():
        typer.echo(f"Error: Database already exists: {db}", err=True)
        raise typer.Exit(1)

    Exchange(db)
    typer.echo(f"✓ Initialized FoodXchange database: {db}")


# Project commands


@project_app.command("create")
def project_create(
    buyer: Annotated[str, typer.Option("--buyer", help="Buyer user id")],
    title: Annotated[str, typer.Option("--title", help="Project title (10-200 chars)")],
    description: Annotated[
        str, typer.Option("--description", help="Description (50-2000 chars)")
    ],
    category: Annotated[str, typer.Option("--category", help="Product category")],
    quantity: Annotated[float, typer.Option("--quantity", help="Requested quantity")],
    unit: Annotated[str, typer.Option("--unit", help="Quantity unit, e.g. kg")],
    location: Annotated[str, typer.Option("--location", help="Delivery location")],
    deadline: Annotated[
        datetime, typer.Option("--deadline", help="Bidding deadline (ISO date)")
    ],
    budget_min: Annotated[Optional[float], typer.Option("--budget-min")] = None,
    budget_max: Annotated[Optional[float], typer.Option("--budget-max")] = None,
    currency: Annotated[str, typer.Option("--currency")] = "USD",
    visibility: Annotated[
        str, typer.Option("--visibility", help="public, invite-only or private")
    ] = "public",
    db: DbOption = None,
) -> None:
    """Create a draft project"""
    exchange = get_exchange(db)
    actor = Actor(user_id=buyer, role=UserRole.BUYER)
    try:
        project = exchange.create_project(
            actor,
            {
                "title": title,
                "description": description,
                "category": category,
                "specifications": {
                    "quantity": {"value": quantity, "unit": unit},
                    "delivery": {"location": location},
                },
                "budget": {"min": budget_min, "max": budget_max, "currency": currency},
                "visibility": visibility,
                "deadline": deadline,
            },
        )
    except ExchangeError as e:
        fail(e)

    typer.echo(f"✓ Created project: {project.id}")
    echo_project(project)


@project_app.command("publish")
def project_publish(
    project_id: Annotated[str, typer.Option("--id", help="Project ID")],
    buyer: Annotated[str, typer.Option("--buyer", help="Buyer user id")],
    db: DbOption = None,
) -> None:
    """Publish a draft project"""
    exchange = get_exchange(db)
    try:
        project = exchange.publish_project(Actor(user_id=buyer, role=UserRole.BUYER), project_id)
    except ExchangeError as e:
        fail(e)

    typer.echo(f"✓ Published project: {project.id}")
    typer.echo(f"  Published at: {project.published_at}")


@project_app.command("show")
def project_show(
    project_id: Annotated[str, typer.Option("--id", help="Project ID")],
    viewer: Annotated[
        Optional[str], typer.Option("--viewer", help="Viewing user id")
    ] = None,
    role: Annotated[str, typer.Option("--role", help="Viewer role")] = "vendor",
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show project details (access rules apply)"""
    exchange = get_exchange(db)
    actor = Actor(user_id=viewer, role=UserRole(role)) if viewer else None
    try:
        project = exchange.view_project(actor, project_id)
    except ExchangeError as e:
        fail(e)

    if json_output:
        echo_json(project.model_dump(mode="json"))
        return

    typer.echo(f"Project: {project.id}")
    echo_project(project)
    typer.echo(f"  Views: {project.analytics.view_count}")
    if project.awarded_to:
        typer.echo(
            f"  Awarded to: {project.awarded_to.vendor_id} "
            f"({project.awarded_to.proposal_id}, {project.awarded_to.contract_value})"
        )


@project_app.command("list")
def project_list(
    status: Annotated[Optional[str], typer.Option("--status", help="Filter by status")] = None,
    db: DbOption = None,
) -> None:
    """List projects, newest first"""
    exchange = get_exchange(db)
    projects = exchange.list_projects(status=ProjectStatus(status) if status else None)

    if not projects:
        typer.echo("No projects found")
        return

    typer.echo(f"Projects ({len(projects)}):")
    for project in projects:
        typer.echo(f"  {project.id}: {project.title} [{project.status.value}]")


@project_app.command("cancel")
def project_cancel(
    project_id: Annotated[str, typer.Option("--id", help="Project ID")],
    buyer: Annotated[str, typer.Option("--buyer", help="Buyer user id")],
    reason: Annotated[Optional[str], typer.Option("--reason")] = None,
    db: DbOption = None,
) -> None:
    """Cancel a project"""
    exchange = get_exchange(db)
    try:
        project = exchange.cancel_project(
            Actor(user_id=buyer, role=UserRole.BUYER), project_id, {"reason": reason}
        )
    except ExchangeError as e:
        fail(e)

    typer.echo(f"✓ Cancelled project: {project.id}")


@project_app.command("invite")
def project_invite(
    project_id: Annotated[str, typer.Option("--id", help="Project ID")],
    buyer: Annotated[str, typer.Option("--buyer", help="Buyer user id")],
    vendor: Annotated[str, typer.Option("--vendor", help="Vendor to invite")],
    db: DbOption = None,
) -> None:
    """Invite a vendor to bid"""
    exchange = get_exchange(db)
    try:
        exchange.invite_vendor(
            Actor(user_id=buyer, role=UserRole.BUYER), project_id, {"vendor_id": vendor}
        )
    except ExchangeError as e:
        fail(e)

    typer.echo(f"✓ Invited {vendor} to {project_id}")


@project_app.command("respond")
def project_respond(
    project_id: Annotated[str, typer.Option("--id", help="Project ID")],
    vendor: Annotated[str, typer.Option("--vendor", help="Invited vendor")],
    accept: Annotated[bool, typer.Option("--accept/--decline")] = True,
    db: DbOption = None,
) -> None:
    """Accept or decline an invitation"""
    exchange = get_exchange(db)
    try:
        exchange.respond_to_invitation(
            Actor(user_id=vendor, role=UserRole.VENDOR), project_id, {"accept": accept}
        )
    except ExchangeError as e:
        fail(e)

    typer.echo(f"✓ Invitation {'accepted' if accept else 'declined'}")


# Proposal commands


@proposal_app.command("create")
def proposal_create(
    project_id: Annotated[str, typer.Option("--project", help="Project ID")],
    vendor: Annotated[str, typer.Option("--vendor", help="Vendor user id")],
    unit_price: Annotated[float, typer.Option("--unit-price")],
    total_price: Annotated[float, typer.Option("--total-price")],
    lead_time_days: Annotated[int, typer.Option("--lead-time-days")],
    cover_letter: Annotated[
        str, typer.Option("--cover-letter", help="Cover letter (100-2000 chars)")
    ],
    price_validity: Annotated[
        Optional[datetime], typer.Option("--price-validity", help="Prices valid until")
    ] = None,
    currency: Annotated[str, typer.Option("--currency")] = "USD",
    db: DbOption = None,
) -> None:
    """Start a draft proposal"""
    exchange = get_exchange(db)
    try:
        proposal = exchange.create_proposal(
            Actor(user_id=vendor, role=UserRole.VENDOR),
            {
                "project_id": project_id,
                "pricing": {
                    "unit_price": unit_price,
                    "total_price": total_price,
                    "currency": currency,
                    "price_validity": price_validity,
                },
                "delivery": {"lead_time_days": lead_time_days},
                "cover_letter": cover_letter,
            },
        )
    except ExchangeError as e:
        fail(e)

    typer.echo(f"✓ Created proposal: {proposal.id}")
    echo_proposal(proposal)


@proposal_app.command("submit")
def proposal_submit(
    proposal_id: Annotated[str, typer.Option("--id", help="Proposal ID")],
    vendor: Annotated[str, typer.Option("--vendor", help="Vendor user id")],
    db: DbOption = None,
) -> None:
    """Submit a draft proposal"""
    exchange = get_exchange(db)
    try:
        proposal = exchange.submit_proposal(
            Actor(user_id=vendor, role=UserRole.VENDOR), proposal_id
        )
    except ExchangeError as e:
        fail(e)

    typer.echo(f"✓ Submitted proposal: {proposal.id}")
    typer.echo(f"  Expires at: {proposal.expires_at}")


@proposal_app.command("withdraw")
def proposal_withdraw(
    proposal_id: Annotated[str, typer.Option("--id", help="Proposal ID")],
    vendor: Annotated[str, typer.Option("--vendor", help="Vendor user id")],
    db: DbOption = None,
) -> None:
    """Withdraw a proposal"""
    exchange = get_exchange(db)
    try:
        exchange.withdraw_proposal(Actor(user_id=vendor, role=UserRole.VENDOR), proposal_id)
    except ExchangeError as e:
        fail(e)

    typer.echo(f"✓ Withdrew proposal: {proposal_id}")


@proposal_app.command("evaluate")
def proposal_evaluate(
    proposal_id: Annotated[str, typer.Option("--id", help="Proposal ID")],
    buyer: Annotated[str, typer.Option("--buyer", help="Buyer user id")],
    price: Annotated[float, typer.Option("--price", help="Price score 0-100")],
    quality: Annotated[float, typer.Option("--quality", help="Quality score 0-100")],
    delivery: Annotated[float, typer.Option("--delivery", help="Delivery score 0-100")],
    vendor_score: Annotated[float, typer.Option("--vendor", help="Vendor score 0-100")],
    notes: Annotated[Optional[str], typer.Option("--notes")] = None,
    db: DbOption = None,
) -> None:
    """Record the buyer's evaluation of a proposal"""
    exchange = get_exchange(db)
    try:
        proposal = exchange.evaluate_proposal(
            Actor(user_id=buyer, role=UserRole.BUYER),
            proposal_id,
            {
                "price": price,
                "quality": quality,
                "delivery": delivery,
                "vendor": vendor_score,
                "notes": notes,
            },
        )
    except ExchangeError as e:
        fail(e)

    typer.echo(f"✓ Evaluated proposal: {proposal.id}")
    typer.echo(f"  Overall score: {proposal.overall_score}")


@proposal_app.command("top")
def proposal_top(
    project_id: Annotated[str, typer.Option("--project", help="Project ID")],
    buyer: Annotated[str, typer.Option("--buyer", help="Buyer user id")],
    limit: Annotated[Optional[int], typer.Option("--limit")] = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show the best-ranked proposals for a project"""
    exchange = get_exchange(db)
    try:
        ranked = exchange.top_proposals(
            Actor(user_id=buyer, role=UserRole.BUYER), project_id, limit
        )
    except ExchangeError as e:
        fail(e)

    if json_output:
        echo_json(
            [
                {
                    "id": p.id,
                    "vendor_id": p.vendor_id,
                    "overall_score": p.overall_score,
                    "total_price": p.pricing.total_price,
                }
                for p in ranked
            ]
        )
        return

    if not ranked:
        typer.echo("No ranked proposals")
        return

    typer.echo(f"Top proposals for {project_id}:")
    for position, p in enumerate(ranked, start=1):
        typer.echo(
            f"  {position}. {p.id} ({p.vendor_id}) score={p.overall_score} "
            f"total={p.pricing.currency.value} {p.pricing.total_price}"
        )


@app.command()
def award(
    project_id: Annotated[str, typer.Option("--project", help="Project ID")],
    proposal_id: Annotated[str, typer.Option("--proposal", help="Winning proposal ID")],
    buyer: Annotated[str, typer.Option("--buyer", help="Buyer user id")],
    db: DbOption = None,
) -> None:
    """Award a project to a proposal"""
    exchange = get_exchange(db)
    try:
        project = exchange.award_project(
            Actor(user_id=buyer, role=UserRole.BUYER), project_id, proposal_id
        )
    except ExchangeError as e:
        fail(e)

    typer.echo(f"✓ Awarded project: {project.id}")
    if project.awarded_to:
        typer.echo(f"  Vendor: {project.awarded_to.vendor_id}")
        typer.echo(f"  Contract value: {project.awarded_to.contract_value}")


# Catalog commands


@app.command()
def quote(
    product_id: Annotated[str, typer.Option("--product", help="Product ID")],
    quantity: Annotated[float, typer.Option("--quantity", help="Requested quantity")],
    db: DbOption = None,
) -> None:
    """Quote a product price for a quantity"""
    exchange = get_exchange(db)
    try:
        result = exchange.quote(product_id, quantity)
    except ExchangeError as e:
        fail(e)

    typer.echo(f"Quote for {result.quantity} of {result.product_id}:")
    typer.echo(f"  Unit price: {result.currency.value} {result.unit_price}")
    typer.echo(f"  Total: {result.currency.value} {result.total_price}")


# Notification commands


@notification_app.command("list")
def notifications_list(
    user: Annotated[str, typer.Option("--user", help="Recipient user id")],
    db: DbOption = None,
) -> None:
    """List a user's notifications, newest first"""
    exchange = get_exchange(db)
    notifications = exchange.notifications_for(user)

    if not notifications:
        typer.echo("No notifications")
        return

    typer.echo(
        f"Notifications ({len(notifications)}, {exchange.unread_count(user)} unread):"
    )
    for n in notifications:
        typer.echo(f"  [{n.status.value}] {n.id} {n.type.value}: {n.title}")


@notification_app.command("read")
def notifications_read(
    user: Annotated[str, typer.Option("--user", help="Recipient user id")],
    notification_id: Annotated[
        Optional[str], typer.Option("--id", help="Notification ID (default: all)")
    ] = None,
    db: DbOption = None,
) -> None:
    """Mark one notification, or all of a user's notifications, as read"""
    exchange = get_exchange(db)
    try:
        changed = exchange.mark_notification_read(user, notification_id)
    except ExchangeError as e:
        fail(e)

    typer.echo(f"✓ Marked {changed} notification(s) read")
    typer.echo(f"  Unread: {exchange.unread_count(user)}")


# Maintenance commands


@app.command()
def tick(
    db: DbOption = None,
) -> None:
    """Run the deadline sweep and expiring-soon reminders"""
    exchange = get_exchange(db)

    result = exchange.tick()

    typer.echo(f"✓ Tick completed: {result.tick_id}")
    typer.echo(f"  Expired: {len(result.expired_ids)}")
    typer.echo(f"  Expiring soon: {len(result.expiring_ids)}")
    for project_id in result.expired_ids:
        typer.echo(f"    - expired {project_id}")


@app.command()
def reindex(
    db: DbOption = None,
) -> None:
    """Rebuild the search indices from the entity store"""
    exchange = get_exchange(db)

    totals = exchange.reindex()

    typer.echo("✓ Reindex completed")
    for index, count in totals.items():
        typer.echo(f"  {index}: {count} documents")


@app.command()
def health(
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show stored entity counts and policy"""
    exchange = get_exchange(db)
    counts = exchange.entity_counts()
    policy = exchange.get_policy()

    if json_output:
        echo_json({"entities": counts, "policy": policy.model_dump()})
        return

    typer.echo("Entities:")
    for collection, count in sorted(counts.items()):
        typer.echo(f"  {collection}: {count}")
    typer.echo(f"Policy version: {policy.policy_version}")


def main() -> None:
    """Main entry point"""
    app()


if __name__ == "__main__":
    main()
