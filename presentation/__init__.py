"""Presentation layer for the CalDAV tasks application."""

import asyncio
import logging
import time
from datetime import timedelta
from functools import wraps
from threading import Thread
from typing import Callable, Optional

from config import Config
from application import TaskService
from domain import CalDAVTransport
from infrastructure import CalDAVRepository
from monitoring import (
    CalDAVTasksError, ErrorCode, HealthChecker, error_handler
)
from .routes import register_task_routes
from .session import CredentialStore, Credentials

# Imported after .session so the Flask proxy, not the submodule, is bound as `session`.
from flask import Flask, g, jsonify, request, session  # noqa: E402


TransportFactory = Callable[[str, str, str], CalDAVTransport]

_ERROR_STATUS = {
    ErrorCode.TASK_NOT_FOUND: 404,
    ErrorCode.CALENDAR_NOT_FOUND: 400,
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.AUTH_FAILED: 401,
    ErrorCode.CALDAV_CONFLICT: 409,
}


class AsyncExecutor:
    """Helper to run async functions in Flask (sync) context."""

    def __init__(self, timeout: float = 30):
        self.timeout = timeout
        self.loop = None
        self._setup_event_loop()

    def _setup_event_loop(self):
        """Set up event loop in background thread."""
        def run_loop():
            self.loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self.loop)
            self.loop.run_forever()

        thread = Thread(target=run_loop, daemon=True)
        thread.start()

        # Wait for loop to be ready
        while self.loop is None:
            time.sleep(0.01)

    def is_running(self) -> bool:
        return self.loop is not None and self.loop.is_running()

    def run_async(self, coro):
        """Run async coroutine in background loop."""
        future = asyncio.run_coroutine_threadsafe(coro, self.loop)
        return future.result(timeout=self.timeout)


def create_app(config: Config, transport_factory: Optional[TransportFactory] = None) -> Flask:
    """Create Flask application with dependency injection."""
    app = Flask(__name__)
    app.config['CONFIG'] = config
    app.secret_key = config.session.secret_key
    app.config.update(
        SESSION_COOKIE_NAME=config.session.cookie_name,
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SECURE=config.session.secure,
        PERMANENT_SESSION_LIFETIME=timedelta(seconds=config.session.max_age_seconds)
    )

    logger = logging.getLogger(__name__)

    if transport_factory is None:
        def transport_factory(endpoint: str, username: str, password: str) -> CalDAVTransport:
            return CalDAVRepository(endpoint, username, password, timeout=config.caldav.timeout)

    # Request timeout plus slack for discovery round trips
    async_executor = AsyncExecutor(timeout=config.caldav.timeout * 3)
    credential_store = CredentialStore(max_age_seconds=config.session.max_age_seconds)

    health_checker = HealthChecker()
    health_checker.register('event_loop', async_executor.is_running)

    def current_service(credentials: Credentials) -> TaskService:
        transport = transport_factory(
            credentials.endpoint, credentials.username, credentials.password
        )
        return TaskService(transport, product_id=config.caldav.product_id)

    def requires_auth(f):
        """Authentication decorator."""
        @wraps(f)
        def decorated(*args, **kwargs):
            credentials = credential_store.get(session.get('token'))
            if credentials is None:
                return jsonify({'error': 'Unauthorized'}), 401
            g.credentials = credentials
            return f(*args, **kwargs)
        return decorated

    @app.route('/health', methods=['GET'])
    def health_check():
        """Health check endpoint."""
        status = health_checker.check_health().to_dict()
        status.update({
            'service': 'CalDAV Tasks',
            'version': '1.0.0',
            'active_sessions': len(credential_store),
        })
        return jsonify(status)

    @app.route('/api/login', methods=['POST'])
    def login():
        body = request.get_json(silent=True) or {}
        endpoint = body.get('endpoint')
        username = body.get('username')
        password = body.get('password')
        if not endpoint or not username or not password:
            return jsonify({'error': 'All fields are required'}), 400

        try:
            transport = transport_factory(endpoint, username, password)
            async_executor.run_async(transport.fetch_calendars())
        except CalDAVTasksError as e:
            error_handler.handle_error(e, "login", {'endpoint': endpoint})
            return jsonify({
                'error': 'Failed to connect to CalDAV server. Please check your URL and credentials.'
            }), 401

        credential_store.discard(session.get('token'))
        session.clear()
        session.permanent = True
        session['token'] = credential_store.save(Credentials(endpoint, username, password))
        logger.info(f"User {username} logged in to {endpoint}")
        return jsonify({'success': True})

    @app.route('/api/logout', methods=['POST'])
    def logout():
        credential_store.discard(session.get('token'))
        session.clear()
        return jsonify({'success': True})

    register_task_routes(app, async_executor, current_service, requires_auth)

    # Error handlers
    @app.errorhandler(CalDAVTasksError)
    def application_error(error):
        status = _ERROR_STATUS.get(error.error_code, 500)
        if status == 500:
            logger.error(f"Request to {request.path} failed: {error.message}")
        return jsonify({'error': error.message, 'code': error.error_code.value}), status

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'error': 'Method not allowed'}), 405

    @app.errorhandler(500)
    def internal_error(error):
        logger.error(f"Internal server error: {error}")
        return jsonify({'error': 'Internal server error'}), 500

    return app


__all__ = ['AsyncExecutor', 'create_app']
