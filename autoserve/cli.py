"""CLI tools for engagement administration."""

import json

import click
from sqlalchemy.exc import SQLAlchemyError

from autoserve.db.enums import AllowanceKind
from autoserve.db.session import SessionLocal


@click.group()
def cli():
    """AutoServe engagement CLI tools."""
    pass


@cli.command()
def init_db():
    """
    Create all tables directly from the models.

    For local development and tests; deployed databases use alembic.

    Example:
        autoserve init-db
    """
    from autoserve.db import models  # noqa: F401  (register tables)
    from autoserve.db.base import Base
    from autoserve.db.session import engine

    Base.metadata.create_all(bind=engine)
    click.echo("✓ Created tables")


@cli.command()
def expire_purchases():
    """
    Expire lapsed credit blocks and subscriptions.

    Example:
        autoserve expire-purchases
    """
    from autoserve.services import allowance_service, subscription_service

    db = SessionLocal()
    try:
        purchases = allowance_service.expire_purchases(db)
        subscriptions = subscription_service.expire_subscriptions(db)
        db.commit()
        click.echo(f"✓ Expired {purchases} purchase(s) and {subscriptions} subscription(s)")
    except SQLAlchemyError as e:
        db.rollback()
        raise click.ClickException(f"Expiry failed: {e}") from e
    finally:
        db.close()


@cli.command()
@click.option("--email", required=True, help="Account email")
@click.option(
    "--kind",
    required=True,
    type=click.Choice([k.value for k in AllowanceKind]),
    help="Credit kind to grant",
)
@click.option("--units", required=True, type=click.IntRange(min=1), help="Units to add")
def grant_complimentary(email: str, kind: str, units: int):
    """
    Top up an account's complimentary credits.

    Example:
        autoserve grant-complimentary --email "driver@example.com" --kind diagnosis --units 2
    """
    from autoserve.db.models import User
    from autoserve.services import allowance_service

    db = SessionLocal()
    try:
        user = db.query(User).filter(User.email == email.lower()).first()
        if not user:
            raise click.ClickException(f"User not found: {email}")

        balance = allowance_service.grant_complimentary(db, user.id, kind, units)
        db.commit()
        click.echo(f"✓ Granted {units} complimentary {kind} credit(s) to {email}")
        click.echo(f"  Complimentary remaining: {balance.complimentary_remaining}")
    except SQLAlchemyError as e:
        db.rollback()
        raise click.ClickException(f"Grant failed: {e}") from e
    finally:
        db.close()


@cli.command()
def reload_policy():
    """
    Load policy overrides and print the effective engagement policy.

    Example:
        autoserve reload-policy
    """
    from autoserve.services.policy_service import policy_store

    with SessionLocal() as db:
        policy = policy_store.reload(db)
    click.echo(json.dumps(policy.model_dump(), indent=2, sort_keys=True))


if __name__ == "__main__":
    cli()
