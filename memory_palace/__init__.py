"""Memory Palace: a conversation whose history fades as it goes.

Run the server with ``memory-palace`` or ``python -m memory_palace``; build the
ASGI app yourself with :func:`memory_palace.application.websocket.ws_server.create_app`.
"""

__version__ = "0.1.0"
