"""
Flask CLI commands for store operations.

Commands:
- flask init-db: Create the database tables
- flask overdue-rentals: List rentals past their end date with late fees
"""
from decimal import Decimal

import click
from flask import current_app

from campstore.database import create_tables, get_session
from campstore.services.order_query_service import list_overdue_rentals


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create every table that does not exist yet."""
        create_tables()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('overdue-rentals')
    @click.option('--fee', default=None, help='Late fee per day (defaults to RENTAL_LATE_FEE_PER_DAY)')
    def overdue_rentals_command(fee):
        """Print overdue rental orders and the late fee accrued so far."""
        daily_fee = Decimal(str(fee or current_app.config.get('RENTAL_LATE_FEE_PER_DAY', '10')))
        overdue = list_overdue_rentals(get_session(), daily_late_fee=daily_fee)

        if not overdue:
            click.echo(click.style('No overdue rentals.', fg='green'))
            return

        click.echo(click.style(f'{len(overdue)} overdue rental(s):', fg='yellow', bold=True))
        for item in overdue:
            click.echo(
                f"  {item['order_number']}  {item['customer_name']} <{item['customer_email']}>  "
                f"due {item['rental_end_date']}  {item['days_overdue']} day(s) late  fee {item['late_fee']}"
            )
