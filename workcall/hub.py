from fastapi import WebSocket


class ConnectionHub:
    """
    In-process registry of open websockets keyed by user id.
    Push is best effort; clients reconcile by polling /notifications.
    """

    def __init__(self):
        self._sockets: dict[str, set[WebSocket]] = {}

    def register(self, user_id: str, ws: WebSocket):
        self._sockets.setdefault(user_id, set()).add(ws)

    def unregister(self, user_id: str, ws: WebSocket):
        sockets = self._sockets.get(user_id)
        if not sockets:
            return
        sockets.discard(ws)
        if not sockets:
            del self._sockets[user_id]

    def connected(self, user_id: str) -> int:
        return len(self._sockets.get(user_id, ()))

    async def push(self, recipients: list[str], message: str) -> int:
        delivered = 0
        sent: set[int] = set()
        for user_id in recipients:
            for ws in list(self._sockets.get(user_id, ())):
                if id(ws) in sent:
                    continue
                sent.add(id(ws))
                try:
                    await ws.send_text(message)
                    delivered += 1
                except Exception as e:
                    print(f"[booking-service] websocket push to {user_id} failed, dropping socket: {e}")
                    self.unregister(user_id, ws)
        return delivered


hub = ConnectionHub()
