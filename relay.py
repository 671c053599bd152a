# relay.py
"""
Live chat push over WebSocket.

Frames: auth -> auth_ok, message -> ack (sender) + message (counterpart), error.
"""
from __future__ import annotations

import json
import logging
from typing import Optional, Protocol

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from starlette.websockets import WebSocketState

from auth import decode_token, load_user
from db import get_session
from errors import AppError
from messaging import send_message
from models import User
from schemas import MessageCreate, MessageOut

logger = logging.getLogger(__name__)


class RelayBackend(Protocol):
    """Where live sockets are registered and frames are routed to users."""

    def attach(self, user_id: str, socket: WebSocket) -> None: ...

    def detach(self, user_id: str, socket: WebSocket) -> None: ...

    async def publish(self, user_id: str, frame: dict) -> bool: ...

    def is_online(self, user_id: str) -> bool: ...


class LocalRelay:
    """
    Process-local registry: one socket per user id, last login wins.
    Only valid for a single-instance deployment.
    """

    def __init__(self) -> None:
        self._sockets: dict[str, WebSocket] = {}

    def attach(self, user_id: str, socket: WebSocket) -> None:
        previous = self._sockets.get(user_id)
        if previous is not None and previous is not socket:
            logger.info("relay: replacing live connection for %s", user_id)
        self._sockets[user_id] = socket

    def detach(self, user_id: str, socket: WebSocket) -> None:
        # a replaced socket closing must not evict its replacement
        if self._sockets.get(user_id) is socket:
            del self._sockets[user_id]

    def is_online(self, user_id: str) -> bool:
        return user_id in self._sockets

    async def publish(self, user_id: str, frame: dict) -> bool:
        socket = self._sockets.get(user_id)
        if socket is None or socket.client_state != WebSocketState.CONNECTED:
            return False
        try:
            await socket.send_json(frame)
        except (WebSocketDisconnect, RuntimeError):
            logger.warning("relay: push to %s failed, dropping connection", user_id)
            self.detach(user_id, socket)
            return False
        return True


def store_message(sender: User, data: MessageCreate) -> tuple[dict, Optional[str]]:
    """Persist and serialize; returns (payload, counterpart id)."""
    with get_session() as s:
        msg, other = send_message(s, sender, data)
        payload = MessageOut.model_validate(msg).model_dump(mode="json", by_alias=True)
    return payload, other


class ChatRelay:
    def __init__(self, backend: RelayBackend) -> None:
        self.backend = backend

    async def deliver(self, user_id: Optional[str], payload: dict) -> bool:
        if not user_id:
            return False
        delivered = await self.backend.publish(user_id, {"type": "message", "payload": payload})
        if not delivered:
            logger.debug("relay: %s offline, message %s stored only", user_id, payload.get("id"))
        return delivered

    async def serve(self, ws: WebSocket) -> None:
        await ws.accept()
        user: Optional[User] = None
        try:
            while True:
                message = await ws.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                raw = message.get("text")
                if raw is None:
                    logger.warning("relay: dropping binary frame")
                    await self._error(ws, "Malformed frame")
                    continue
                try:
                    user = await self.handle_frame(ws, raw, user)
                except WebSocketDisconnect:
                    raise
                except Exception:
                    logger.exception("relay: unexpected error handling frame")
                    await self._error(ws, "Internal error")
        except WebSocketDisconnect:
            pass
        finally:
            if user is not None:
                self.backend.detach(user.id, ws)
                logger.info("relay: %s disconnected", user.id)

    async def handle_frame(self, ws: WebSocket, raw: str, user: Optional[User]) -> Optional[User]:
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("relay: dropping non-JSON frame")
            await self._error(ws, "Malformed frame")
            return user
        if not isinstance(data, dict):
            logger.warning("relay: dropping non-object frame")
            await self._error(ws, "Malformed frame")
            return user

        kind = data.get("type")
        if kind == "auth":
            return await self._authenticate(ws, data, user)
        if kind == "message":
            if user is None:
                await self._error(ws, "Not authenticated")
                return user
            await self._relay_message(ws, data.get("payload"), user)
            return user

        logger.warning("relay: unknown frame type %r", kind)
        await self._error(ws, "Unknown frame type")
        return user

    async def _authenticate(self, ws: WebSocket, data: dict, user: Optional[User]) -> Optional[User]:
        token = data.get("token")
        if not token:
            await self._error(ws, "auth requires a token")
            return user

        uid = decode_token(token)
        found = await run_in_threadpool(load_user, uid) if uid else None
        if found is None:
            logger.warning("relay: rejected auth handshake")
            await self._error(ws, "Invalid or expired token")
            return user

        if user is not None and user.id != found.id:
            self.backend.detach(user.id, ws)
        self.backend.attach(found.id, ws)
        logger.info("relay: %s connected", found.id)
        await ws.send_json({"type": "auth_ok", "userId": found.id})
        return found

    async def _relay_message(self, ws: WebSocket, payload, user: User) -> None:
        try:
            body = MessageCreate.model_validate(payload)
        except ValidationError as e:
            logger.warning("relay: invalid message payload from %s", user.id)
            await self._error(ws, "Invalid message", errors=[
                {"path": ".".join(str(p) for p in err["loc"]), "message": err["msg"]} for err in e.errors()
            ])
            return

        try:
            stored, other = await run_in_threadpool(store_message, user, body)
        except AppError as e:
            logger.warning("relay: message from %s not stored: %s", user.id, e.message)
            await self._error(ws, e.message)
            return

        await ws.send_json({"type": "ack", "payload": {"id": stored["id"], "jobId": stored["jobId"]}})
        await self.deliver(other, stored)

    async def _error(self, ws: WebSocket, message: str, errors: Optional[list] = None) -> None:
        frame: dict = {"type": "error", "message": message}
        if errors:
            frame["errors"] = errors
        await ws.send_json(frame)
