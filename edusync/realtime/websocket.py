"""
Realtime WebSocket Bridge — lets a browser join hub topics.

Client frames are JSON objects with an "op":
  join       {"op": "join", "topic", "token"?, "broadcast_self"?, "row_changes"?}
  leave      {"op": "leave", "topic"}
  broadcast  {"op": "broadcast", "topic", "event", "payload"}
  track      {"op": "track", "topic", "record"}
  untrack    {"op": "untrack", "topic"}

Server frames mirror hub events: "status", "broadcast", "presence",
"row_change", plus "error" for rejected client frames.

Behavioral Contract:
- The first frame must be a join carrying a bearer token. A missing or
  unknown token closes the socket with code 1008.
- The presence key on every topic is the authenticated user id, and tracked
  records always carry that user id
- Row changes are only forwarded for rows whose user_id is the caller's
- Disconnecting unsubscribes every joined topic
"""

import asyncio
import json
from typing import Callable, Dict, List, Optional

import structlog
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from edusync.auth.provider import AuthProvider, authenticate
from edusync.errors import UnauthorizedError
from edusync.models.identity import UserIdentity
from edusync.models.presence import PresenceEventKind, PresenceRecord
from edusync.models.realtime import RowChange
from edusync.realtime.channel import RowListener
from edusync.realtime.transport import ChannelSubscriber, RealtimeHub

logger = structlog.get_logger(__name__)

POLICY_VIOLATION = 1008

Outbox = Callable[[dict], None]


class SocketSubscriber(ChannelSubscriber):
    """One joined topic of one socket. Events are serialized into frames."""

    def __init__(
        self,
        topic: str,
        identity: UserIdentity,
        outbox: Outbox,
        broadcast_self: bool = False,
        row_listeners: Optional[List[RowListener]] = None,
    ):
        self.topic = topic
        self.presence_key = identity.id
        self.broadcast_self = broadcast_self
        self._outbox = outbox
        self._row_listeners = row_listeners or []

    def deliver_status(self, status: str) -> None:
        self._outbox({"type": "status", "topic": self.topic, "status": status})

    def deliver_broadcast(self, event: str, payload: dict) -> None:
        self._outbox({
            "type": "broadcast", "topic": self.topic, "event": event, "payload": payload,
        })

    def deliver_presence(self, kind: PresenceEventKind, payload) -> None:
        frame = {"type": "presence", "topic": self.topic, "kind": kind.value}
        if kind == PresenceEventKind.SYNC:
            frame["state"] = {k: r.model_dump(mode="json") for k, r in payload.items()}
        else:
            frame["key"] = payload.key
            frame["presences"] = [r.model_dump(mode="json") for r in payload.presences]
        self._outbox(frame)

    def wants_row_change(self, change: RowChange) -> bool:
        return any(listener.matches(change) for listener in self._row_listeners)

    def deliver_row_change(self, change: RowChange) -> None:
        self._outbox({
            "type": "row_change", "topic": self.topic, "change": change.model_dump(mode="json"),
        })


class RealtimeBridge:
    def __init__(self, hub: RealtimeHub, auth_provider: AuthProvider):
        self.hub = hub
        self.auth_provider = auth_provider

    async def serve(self, websocket: WebSocket) -> None:
        await websocket.accept()
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def outbox(frame: dict) -> None:
            # Hub callbacks can run on another thread
            loop.call_soon_threadsafe(queue.put_nowait, frame)

        joined: Dict[str, SocketSubscriber] = {}
        reader = asyncio.create_task(self._read(websocket, outbox, joined))
        pump = asyncio.create_task(self._pump(websocket, queue))
        try:
            await asyncio.wait({reader, pump}, return_when=asyncio.FIRST_COMPLETED)
            if pump.done() and not pump.cancelled() and pump.exception() is not None:
                # A socket that cannot be written to is dropped
                logger.warning("realtime_socket_send_failed", error=str(pump.exception()))
            elif reader.done():
                reader.result()
        finally:
            reader.cancel()
            pump.cancel()
            for topic, subscriber in list(joined.items()):
                self.hub.unsubscribe(topic, subscriber)

    async def _read(
        self,
        websocket: WebSocket,
        outbox: Outbox,
        joined: Dict[str, SocketSubscriber],
    ) -> None:
        identity: Optional[UserIdentity] = None
        try:
            while True:
                try:
                    frame = await self._receive_frame(websocket)
                except ValueError:
                    if identity is not None:
                        outbox({"type": "error", "message": "Frame must be JSON"})
                        continue
                    frame = None
                if identity is None:
                    identity = self._authenticate(frame)
                    if identity is None:
                        logger.warning("realtime_socket_rejected")
                        await websocket.close(code=POLICY_VIOLATION, reason="unauthorized")
                        return
                    logger.info("realtime_socket_authenticated", user_id=identity.id)
                self._handle(frame, identity, joined, outbox)
        except WebSocketDisconnect:
            logger.debug("realtime_socket_disconnected", user_id=identity.id if identity else None)

    @staticmethod
    async def _receive_frame(websocket: WebSocket):
        """Next client frame, decoded. Raises ValueError on anything but JSON."""
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000))
        text = message.get("text")
        if text is None:
            text = (message.get("bytes") or b"").decode("utf-8")
        return json.loads(text)

    @staticmethod
    async def _pump(websocket: WebSocket, queue: asyncio.Queue) -> None:
        while True:
            frame = await queue.get()
            await websocket.send_json(frame)

    def _authenticate(self, frame) -> Optional[UserIdentity]:
        if not isinstance(frame, dict) or frame.get("op") != "join":
            return None
        try:
            return authenticate(self.auth_provider, frame.get("token"))
        except UnauthorizedError:
            return None

    def _handle(
        self,
        frame,
        identity: UserIdentity,
        joined: Dict[str, SocketSubscriber],
        outbox: Outbox,
    ) -> None:
        if not isinstance(frame, dict):
            outbox({"type": "error", "message": "Frame must be an object"})
            return
        op = frame.get("op")
        topic = frame.get("topic")
        if not isinstance(topic, str) or not topic:
            outbox({"type": "error", "message": "topic is required"})
            return

        if op == "join":
            if topic in joined:
                return
            specs = frame.get("row_changes") or []
            if not isinstance(specs, list) or not all(isinstance(s, dict) for s in specs):
                outbox({"type": "error", "topic": topic, "message": "row_changes must be a list of objects"})
                return
            listeners = [
                RowListener(
                    spec.get("table", ""), None, spec.get("event", "*"),
                    {"user_id": identity.id},
                )
                for spec in specs
            ]
            subscriber = SocketSubscriber(
                topic, identity, outbox,
                broadcast_self=bool(frame.get("broadcast_self")),
                row_listeners=listeners,
            )
            joined[topic] = subscriber
            self.hub.subscribe(topic, subscriber)
            return

        subscriber = joined.get(topic)
        if subscriber is None:
            outbox({"type": "error", "topic": topic, "message": "Not joined"})
            return

        if op == "leave":
            del joined[topic]
            self.hub.unsubscribe(topic, subscriber)
        elif op == "broadcast":
            payload = frame.get("payload")
            if not frame.get("event") or not isinstance(payload, dict):
                outbox({"type": "error", "topic": topic, "message": "event and payload required"})
                return
            self.hub.broadcast(topic, frame["event"], payload, sender=subscriber)
        elif op == "track":
            record_data = frame.get("record") or {}
            if not isinstance(record_data, dict):
                outbox({"type": "error", "topic": topic, "message": "record must be an object"})
                return
            data = dict(record_data)
            data["user_id"] = identity.id
            try:
                record = PresenceRecord.model_validate(data)
            except ValidationError as e:
                outbox({"type": "error", "topic": topic, "message": f"Invalid record: {e.error_count()} errors"})
                return
            self.hub.track(topic, subscriber, record)
        elif op == "untrack":
            self.hub.untrack(topic, subscriber)
        else:
            outbox({"type": "error", "topic": topic, "message": f"Unknown op: {op}"})
