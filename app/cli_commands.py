"""
Flask CLI commands for database maintenance.

Commands:
- flask init-db: Create all tables
- flask recompute-estimates: Re-derive stored totals of editable estimates
"""

import click
from app.database import create_all, get_session
from app.services.estimate_service import recompute_stored_totals


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create every table that does not exist yet."""
        create_all()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('recompute-estimates')
    def recompute_estimates_command():
        """Recompute totals for every DRAFT / REVISION_REQUESTED latest estimate."""
        try:
            changed = recompute_stored_totals(get_session())
        except Exception as e:
            click.echo(click.style(f'Recompute failed: {e}', fg='red'))
            raise SystemExit(1)
        click.echo(click.style(f'{changed} estimate(s) updated.', fg='green'))
