import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_wtf.csrf import CSRFProtect


# Initialize extensions
db = SQLAlchemy()
login_manager = LoginManager()
csrf = CSRFProtect()


def configure_logging(app):
    """Configure application logging"""

    # Create logs directory if it doesn't exist
    log_dir = app.config.get('LOG_DIR') or os.path.join(
        os.path.dirname(os.path.dirname(__file__)), 'data', 'logs'
    )
    os.makedirs(log_dir, exist_ok=True)

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    file_handler = RotatingFileHandler(
        os.path.join(log_dir, 'twikoo-backup.log'),
        maxBytes=10485760,  # 10MB
        backupCount=10
    )
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure root logger
    logging.basicConfig(level=log_level, handlers=[console_handler, file_handler])

    # Flask app logger propagates to the root handlers
    app.logger.setLevel(log_level)

    app.logger.info(f"Logging configured (level: {logging.getLevelName(log_level)})")


def _sqlite_directory(database_uri: str):
    """Return the directory holding a file-backed SQLite database, if any."""
    if not database_uri.startswith('sqlite:///'):
        return None
    path = database_uri.replace('sqlite:///', '', 1)
    if not path or path == ':memory:':
        return None
    return os.path.dirname(path) or None


def create_app(config_name=None):
    """Flask application factory"""

    template_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), 'templates'))
    app = Flask(__name__, template_folder=template_dir)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('FLASK_ENV', 'production')

    from twikoo_backup.config import config
    app.config.from_object(config[config_name])

    # Configure logging
    configure_logging(app)

    # Ensure the SQLite directory exists
    sqlite_dir = _sqlite_directory(app.config['SQLALCHEMY_DATABASE_URI'])
    if sqlite_dir:
        os.makedirs(sqlite_dir, exist_ok=True)

    # Hash the admin password once; an empty password leaves the panel open
    from twikoo_backup.auth import hash_password
    admin_password = app.config.get('ADMIN_PASSWORD')
    if admin_password:
        app.config['ADMIN_PASSWORD_HASH'] = hash_password(admin_password)
    else:
        app.config['LOGIN_DISABLED'] = True
        app.logger.warning("ADMIN_PASSWORD is not set - the backup panel is not protected")

    # Initialize extensions
    db.init_app(app)
    login_manager.init_app(app)
    csrf.init_app(app)

    # Configure login manager
    login_manager.login_view = 'auth.login'
    login_manager.login_message = 'Please log in to access this page.'

    # User loader callback
    @login_manager.user_loader
    def load_user(user_id):
        from twikoo_backup.auth import AdminUser
        if user_id == AdminUser.ID:
            return AdminUser()
        return None

    # Register blueprints FIRST (before CSRF exemption)
    from twikoo_backup.routes import auth_routes, backup_routes
    app.register_blueprint(auth_routes.bp)
    app.register_blueprint(backup_routes.bp)

    # THEN exempt the backup API from CSRF protection (the panel calls it with fetch)
    csrf.exempt(backup_routes.bp)

    # Health check endpoint
    @app.route('/health')
    def health():
        return {'status': 'healthy'}, 200

    # Initialize database schema
    from twikoo_backup import models
    from twikoo_backup.migrations import init_database_schema

    init_database_schema(app)

    # Initialize and start scheduler (only in designated worker or development child process)
    from twikoo_backup.scheduler import init_scheduler, start_scheduler, stop_scheduler, recover_interrupted_runs
    import atexit

    # Determine if this process should initialize the scheduler
    is_reloader_child = os.environ.get('WERKZEUG_RUN_MAIN') == 'true'
    is_development = app.config.get('DEBUG', False)
    is_scheduler_worker = os.environ.get('SCHEDULER_WORKER', 'true').lower() == 'true'

    # Scheduler initialization logic:
    # - Development mode: Only in Flask reloader child process (not parent)
    # - Production mode: Only in designated scheduler worker (SCHEDULER_WORKER=true)
    should_init_scheduler = False

    if not app.config.get('SCHEDULER_AUTOSTART', True):
        app.logger.info("Scheduler autostart disabled by configuration")
    elif is_development:
        should_init_scheduler = is_reloader_child
        app.logger.info(f"Development mode: is_reloader_child={is_reloader_child}")
    else:
        should_init_scheduler = is_scheduler_worker
        app.logger.info(f"Production mode: is_scheduler_worker={is_scheduler_worker}")

    if should_init_scheduler:
        app.logger.info("Initializing scheduler in this process...")
        init_scheduler(app)

        # Runs interrupted by a previous process go back to the queue before the dispatcher starts
        with app.app_context():
            recover_interrupted_runs()

        start_scheduler()

        # Register cleanup function to stop scheduler on app shutdown
        atexit.register(stop_scheduler)
        app.logger.info("Scheduler initialized and started successfully")
    else:
        app.logger.info("Scheduler initialization skipped in this process (not designated scheduler worker)")

    return app
