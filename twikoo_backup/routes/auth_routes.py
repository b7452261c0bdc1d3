"""
Authentication routes: login and logout for the panel operator.
"""

from flask import Blueprint, render_template, request, redirect, url_for, flash, current_app
from flask_login import login_user, logout_user

from twikoo_backup.auth import AdminUser, verify_admin_password
from twikoo_backup.events import log_event


bp = Blueprint('auth', __name__)


def _safe_next(target):
    """Only follow relative redirect targets."""
    if target and target.startswith('/') and not target.startswith('//'):
        return target
    return None


@bp.route('/login', methods=['GET', 'POST'])
def login():
    """Login page and handler."""

    if current_app.config.get('LOGIN_DISABLED'):
        return redirect(url_for('backup.panel'))

    if request.method == 'POST':
        password = request.form.get('password', '')

        if not password:
            flash('Password is required.', 'error')
            return render_template('login.html'), 400

        if not verify_admin_password(password):
            log_event('login', {'success': False}, request)
            flash('Invalid password.', 'error')
            return render_template('login.html'), 401

        # Remember cookie lifetime comes from REMEMBER_COOKIE_DURATION
        login_user(AdminUser(), remember=True)
        log_event('login', {'success': True}, request)

        next_page = _safe_next(request.args.get('next'))
        return redirect(next_page or url_for('backup.panel'))

    return render_template('login.html')


@bp.route('/logout')
def logout():
    """Logout handler."""
    logout_user()
    flash('You have been logged out.', 'success')
    return redirect(url_for('auth.login'))
