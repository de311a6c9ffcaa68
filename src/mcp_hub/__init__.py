"""MCP Hub - tool-server connection and orchestration core for chat clients.

Connects to MCP servers over stdio, HTTP and WebSocket, keeps the live set
in step with the user's configuration, and bridges their tools into a
bounded, cancellable tool-calling loop.
"""

__version__ = "0.1.0"

from .config import Config

__all__ = ["Config"]
