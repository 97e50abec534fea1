"""Flask application factory for the interceptor status API.

The API is read-only: it reports whether every worker has a ready gateway
session and exposes per-worker counters and pending transactions.
"""
from __future__ import annotations
from typing import Optional

from flask import Flask

from interceptor.core.worker import InterceptorService


# ─────────────────────────────────────────────────────────────────────────────
# Application Factory
# ─────────────────────────────────────────────────────────────────────────────
def create_app(service: Optional[InterceptorService] = None) -> Flask:
    """Create and configure the status API for ``service``."""
    app = Flask(__name__)

    # Routes read the service from app config
    app.config["INTERCEPTOR_SERVICE"] = service

    from interceptor.api import health, errors

    app.register_blueprint(health.bp)
    errors.register_error_handlers(app)

    worker_count = len(service.workers) if service is not None else 0
    print(f"[flask_app] Status API registered for {worker_count} worker(s)")
    return app
