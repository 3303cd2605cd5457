"""
Flask CLI commands for operations.

Commands:
- flask init-db: Create all tables
- flask cleanup-orphan-documents: Remove stored documents no order references
"""

import click
from packchain.database import get_session, create_all


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create all database tables."""
        create_all()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('cleanup-orphan-documents')
    @click.option('--prefix', default='', help='Only scan keys under this prefix')
    @click.option('--dry-run', is_flag=True, help='List orphaned documents without deleting them')
    def cleanup_orphan_documents(prefix, dry_run):
        """Remove stored documents that no order references."""
        from packchain.services.storage_service import get_storage_service
        from packchain.services.document_cleanup_service import cleanup_orphaned_documents

        result = cleanup_orphaned_documents(get_session(), get_storage_service(), prefix=prefix, dry_run=dry_run)

        click.echo(f"Scanned {result['listed']} object(s), {result['referenced']} referenced by orders.")
        for key in result['orphaned']:
            click.echo(f"   orphan: {key}")

        if dry_run:
            click.echo(click.style(f"Dry run: {len(result['orphaned'])} orphan(s) left in place.", fg='yellow'))
        elif result['failed']:
            click.echo(click.style(f"{len(result['failed'])} orphan(s) could not be removed.", fg='red'))
        else:
            click.echo(click.style(f"{len(result['orphaned'])} orphan(s) removed.", fg='green'))
