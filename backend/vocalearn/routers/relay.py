"""
Relay Router

The tutoring WebSocket. One connection is one session: binary frames carry PCM
audio, text frames carry JSON control messages, and every event back to the
client is a JSON text frame.

Query parameters: learningLanguage, nativeLanguage, mode (echo | dialogue |
quiz), scenarioId (dialogue), questions and topic (quiz).
"""

from __future__ import annotations
import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..controller import ModeController
from ..errors import FatalSessionError, ProtocolError
from ..protocol import ErrorMessage, decode_inbound

logger = logging.getLogger(__name__)

router = APIRouter(tags=["relay"])


@router.websocket("/ws")
async def tutor_socket(websocket: WebSocket) -> None:
	await websocket.accept()
	controller: ModeController = websocket.app.state.controller
	idle_timeout = controller.settings.idle_timeout_seconds
	try:
		await controller.open(websocket, websocket, websocket.query_params)
		while True:
			try:
				frame = await asyncio.wait_for(websocket.receive(), timeout=idle_timeout)
			except asyncio.TimeoutError:
				logger.info("WebSocket connection timed out")
				await websocket.send_text(ErrorMessage(error="Connection timed out").to_wire())
				await websocket.close()
				break
			if frame["type"] == "websocket.disconnect":
				break
			data = frame.get("bytes")
			if data is None:
				data = frame.get("text")
			if data is None:
				continue

			try:
				session = controller.registry.require(websocket)
			except FatalSessionError as exc:
				await websocket.send_text(ErrorMessage(error=str(exc)).to_wire())
				continue
			try:
				message = decode_inbound(data)
			except ProtocolError as exc:
				logger.warning("Dropping control message: %s", exc)
				continue
			await controller.handle(session, message)
	except WebSocketDisconnect:
		pass
	finally:
		controller.close(websocket)
