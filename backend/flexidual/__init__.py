"""FlexiDual class scheduling service - Application Factory."""
import logging
import os
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_jwt_extended import JWTManager
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()
jwt = JWTManager()
limiter = Limiter(key_func=get_remote_address)


def create_app(config_name: str = None, clock=None, video_backend=None) -> Flask:
    """Application factory pattern.

    ``clock`` and ``video_backend`` replace the wall clock and the LiveKit
    client, which is how tests pin time and fake the room service.
    """
    app = Flask(__name__)

    # Load configuration
    from config import get_config
    config_class = get_config(config_name)
    app.config.from_object(config_class)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    limiter.init_app(app)

    # Collaborators
    from flexidual.services.clock import init_clock
    from flexidual.services.video_backend import init_video_backend
    init_clock(app, clock)
    init_video_backend(app, video_backend)

    # Configure CORS
    CORS(app, origins=app.config.get('CORS_ORIGINS', ["*"]))

    # Setup logging
    setup_logging(app)

    # Register blueprints
    register_blueprints(app)

    # Register error handlers
    register_error_handlers(app)

    # Setup database
    setup_database(app)

    # Add CLI commands
    register_commands(app)

    # Add health check
    @app.route('/health')
    def health_check():
        return jsonify({
            'status': 'healthy',
            'service': 'FlexiDual Scheduling',
            'version': '1.0.0'
        })

    return app


def register_blueprints(app: Flask) -> None:
    """Register all application blueprints."""
    from flexidual.api.sessions import sessions_bp
    from flexidual.api.rooms import rooms_bp
    from flexidual.api.attendance import attendance_bp
    from flexidual.api.enrollment import enrollment_bp

    app.register_blueprint(sessions_bp, url_prefix='/api/sessions')
    app.register_blueprint(rooms_bp, url_prefix='/api/rooms')
    app.register_blueprint(attendance_bp, url_prefix='/api/attendance')
    app.register_blueprint(enrollment_bp, url_prefix='/api/enrollment')


def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""
    from flexidual.utils.helpers import handle_error
    from flexidual.utils.errors import FlexidualError
    from werkzeug.exceptions import HTTPException

    @app.errorhandler(FlexidualError)
    def domain_error(error):
        db.session.rollback()
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return handle_error(error, 500)

    @app.errorhandler(HTTPException)
    def handle_exception(e):
        return handle_error(e.description, e.code)

    # JWT error handlers
    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        return jsonify({
            'error': True,
            'message': 'Token has expired',
            'status_code': 401
        }), 401

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        return jsonify({
            'error': True,
            'message': 'Invalid token',
            'status_code': 401
        }), 401

    @jwt.unauthorized_loader
    def missing_token_callback(error):
        return jsonify({
            'error': True,
            'message': 'Authorization token required',
            'status_code': 401
        }), 401


def setup_logging(app: Flask) -> None:
    """Setup application logging."""
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    if not app.debug and not app.testing:
        log_file = app.config.get('LOG_FILE', 'logs/app.log')
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)

        app.logger.info('FlexiDual scheduling startup')


def setup_database(app: Flask) -> None:
    """Setup database connections."""
    with app.app_context():
        # Import all models
        from flexidual.models import (  # noqa: F401
            User, UserRole,
            Curriculum, CampusAssignment, TeacherAssignment,
            Lesson, ClassGroup,
            ClassSession, SessionLesson,
            AttendanceRecord, AttendanceOpenSlot
        )


def register_commands(app: Flask) -> None:
    """Register CLI commands."""
    import click

    @app.cli.command('init-db')
    @click.option('--drop', is_flag=True, help='Drop existing tables')
    def init_db(drop):
        """Initialize the database."""
        if drop:
            db.drop_all()
            click.echo('Dropped all tables.')

        db.create_all()
        click.echo('Created all tables.')

    @app.cli.command('seed-demo')
    def seed_demo():
        """Seed database with a demo campus, class and week of sessions."""
        from flexidual.services.seed_service import SeedService

        summary = SeedService.seed_all()
        click.echo(f"Seeded {summary['sessions']} sessions for class {summary['class_id']}.")

    @app.cli.command('sweep-attendance')
    def sweep_attendance():
        """Close attendance intervals with stale heartbeats."""
        from flexidual.services.attendance_service import AttendanceService

        closed = AttendanceService.sweep_stale()
        click.echo(f'Closed {closed} stale attendance intervals.')
