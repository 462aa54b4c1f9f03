"""Application entry point."""
import os
import click
from flask.cli import with_appcontext
from dotenv import load_dotenv

from flexidual import create_app, db

# Load environment variables
load_dotenv()

# Create Flask app
app = create_app(os.getenv('FLASK_ENV', 'development'))


@app.cli.command('drop-db')
@with_appcontext
def drop_db():
    """Drop all database tables."""
    if click.confirm('Are you sure you want to drop all tables?'):
        db.drop_all()
        click.echo('Database tables dropped.')


@app.cli.command('reset-db')
@click.option('--seed', is_flag=True, help='Load the demo class afterwards')
@with_appcontext
def reset_db(seed):
    """Recreate all tables, optionally with demo data."""
    if not click.confirm('This will delete all data and recreate tables. Continue?'):
        return
    db.drop_all()
    db.create_all()
    click.echo('Database reset complete.')

    if seed:
        from flexidual.services.seed_service import SeedService
        summary = SeedService.seed_all()
        click.echo(f"Seeded {summary['sessions']} sessions for class {summary['class_id']}.")


if __name__ == '__main__':
    # Development server
    port = int(os.environ.get('PORT', 5000))
    host = os.environ.get('HOST', '127.0.0.1')
    debug = os.environ.get('FLASK_ENV') == 'development'

    app.run(host=host, port=port, debug=debug)
