"""Real-time relay — Redis pub/sub in, WebSocket frames out.

Learn: Events flow one way:
1. Redis PSUBSCRIBE (subscriber.py) receives (channel, payload)
2. normalizer.py turns it into a RelayEvent, once
3. dispatcher.py hands that event to every registered connection
4. Each connection's sender task pushes it down its WebSocket

The registry is the only shared state; connect/disconnect handlers in
websocket.py add and remove members after the auth gate says yes.
"""
