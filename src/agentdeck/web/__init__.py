"""Web bridge for agentdeck.

This module provides a FastAPI-based REST and WebSocket interface for
real-time streaming chat with the local coding agents.
"""

from .server import create_app, serve

__all__ = ["create_app", "serve"]
