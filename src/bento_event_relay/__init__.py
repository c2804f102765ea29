"""Bento Event Relay — Redis pub/sub to WebSocket bridge.

Forwards every message published on channels matching one glob pattern
to all connected, authorized WebSocket clients (e.g. a JavaScript
front-end that can't speak the Redis protocol).
"""

__version__ = "2.0.0"
