"""
Flask application receiving mobile money webhooks.

Example Usage:
    from rentledger.web import create_app

    app = create_app()
    app.run(port=5000)
"""

from .app import create_app, run_app

__all__ = ['create_app', 'run_app']
