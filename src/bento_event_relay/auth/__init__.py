"""Connection authorization.

Learn: Every WebSocket handshake passes through exactly one gate, chosen
at startup. The gate answers allow/deny and fails closed: if the
authority can't be reached or gives a strange answer, the client is
refused.
"""
