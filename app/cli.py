import click
from flask import current_app

from app import db
from app.models import User


def register_commands(app):
    """Register maintenance commands on ``flask``."""

    @app.cli.command('sweep-grants')
    @click.option('--retention-days', default=None, type=int,
                  help='Keep inactive grants this many days (default: GRANT_RETENTION_DAYS)')
    def sweep_grants(retention_days):
        """Delete expired grants and long-inactive ones."""
        result = current_app.extensions['grants'].sweep(retention_days=retention_days)
        if not result.ok:
            click.echo(f"Sweep failed: {result.message}", err=True)
            raise SystemExit(1)
        click.echo(f"Deleted {result.data['deleted_count']} grants")

    @app.cli.command('purge-audit-logs')
    @click.option('--days', default=None, type=int, help='Retention in days (default: AUDIT_RETENTION_DAYS)')
    def purge_audit_logs_command(days):
        """Remove daily audit log files older than the retention window."""
        from app.utils.audit_log import purge_audit_logs
        retention = days if days is not None else current_app.config.get('AUDIT_RETENTION_DAYS', 30)
        removed = purge_audit_logs(retention)
        click.echo(f"Removed {removed} audit log files")

    @app.cli.command('issue-api-token')
    @click.argument('username')
    def issue_api_token(username):
        """Create (or rotate) the API bearer token of USERNAME."""
        user = User.query.filter_by(username=username).first()
        if user is None:
            click.echo(f"User {username} not found", err=True)
            raise SystemExit(1)
        token = user.issue_api_token()
        db.session.commit()
        click.echo(token)
