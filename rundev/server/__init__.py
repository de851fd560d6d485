"""
rundev HTTP server.

Usage:
    # Start server
    uvicorn rundev.server:app

    # Or programmatically
    from rundev.server import app, create_app

    # Injected manager (tests, embedding)
    app = create_app(manager=my_manager)
"""

from rundev.server.app import app, create_app

__all__ = ["app", "create_app"]
