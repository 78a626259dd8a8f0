import logging

import click
from flask import Blueprint

from .models import PurchaseStatus
from .services import get_services

logger = logging.getLogger(__name__)

bp = Blueprint("commands", __name__, cli_group=None)


@bp.cli.command("reprocess")
@click.argument("purchase_id", required=False)
@click.option("--all", "process_all", is_flag=True, help="Reprocess every purchase.")
@click.option("--status", type=click.Choice([status.value for status in PurchaseStatus]),
              help="Reprocess purchases with this status.")
def reprocess(purchase_id, process_all, status):
    """Generate the missing documents of existing purchases."""
    selected = sum(1 for choice in (purchase_id, process_all, status) if choice)
    if selected != 1:
        raise click.UsageError("Pass a PURCHASE_ID, --all or --status <status>.")

    services = get_services()
    try:
        if purchase_id:
            entry = services.ledger.get(purchase_id)
            if entry is None:
                raise click.ClickException(f"Purchase not found: {purchase_id}")
            result = services.sweep.reprocess_purchase(entry)
            click.echo(
                f"Purchase {purchase_id}: {result.status.value}, "
                f"{result.documents_generated} generated, {result.documents_failed} failed"
            )
            return

        summary = services.sweep.reprocess_all(status=status)
        click.echo(f"Processed {summary.processed} purchases")
        if summary.errors:
            click.echo(f"Purchases with errors: {', '.join(summary.errors)}")
    except click.ClickException:
        raise
    except Exception as e:
        logger.exception("Error reprocessing purchases")
        raise click.ClickException(f"Error reprocessing purchases: {e}")
