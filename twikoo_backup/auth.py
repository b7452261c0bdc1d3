"""
Authentication utilities for Flask-Login integration and the admin password.
"""

from flask import current_app
from werkzeug.security import generate_password_hash, check_password_hash
from flask_login import UserMixin


def hash_password(password: str) -> str:
    """
    Hash a password using werkzeug's pbkdf2:sha256.

    Args:
        password: Plain text password

    Returns:
        Hashed password string
    """
    return generate_password_hash(password, method='pbkdf2:sha256')


def verify_password(password_hash: str, password: str) -> bool:
    """
    Verify a password against its hash.

    Args:
        password_hash: Stored password hash
        password: Plain text password to verify

    Returns:
        True if password matches, False otherwise
    """
    return check_password_hash(password_hash, password)


def verify_admin_password(password: str) -> bool:
    """Check a login attempt against the configured admin password."""
    password_hash = current_app.config.get('ADMIN_PASSWORD_HASH')
    if not password_hash or not password:
        return False
    return verify_password(password_hash, password)


class AdminUser(UserMixin):
    """
    The single panel operator. There is no user table; the identity is fixed
    and the credential lives in configuration.
    """

    ID = 'admin'

    def get_id(self):
        """Return user ID as required by Flask-Login."""
        return self.ID

    @property
    def id(self):
        return self.ID

    @property
    def username(self):
        return self.ID
