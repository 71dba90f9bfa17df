"""
==============================================================================
Check-In WebSocket Module
==============================================================================

Live feed of the kiosk for the operator console.

Protocol:
---------
1. Client connects, optionally with the operator token as query parameter
2. Server sends the current scanner state, then every kiosk event:
   overlay, checkin, toast, scanner
3. Client may send browser-captured frames for a "stream" session:
       {"type": "frame", "frame": "<base64 or data URL>"}
4. Client sends {"type": "stop"} or disconnects to leave

==============================================================================
"""

import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends, Query

from checkin_kiosk.scanner import ScannerState
from checkin_kiosk.services.kiosk_service import KioskService, get_kiosk_service


# Module logger
logger = logging.getLogger(__name__)

router = APIRouter()


class CheckInWebSocketHandler:
    """
    Handler for operator console WebSocket connections.
    
    Kiosk events are forwarded to the client by a background task while
    the handler itself reads frames and control messages. The connection
    ends when the client disconnects or sends stop.
    """
    
    def __init__(self, websocket: WebSocket, kiosk: KioskService):
        self._websocket = websocket
        self._kiosk = kiosk
        self._queue = None
        self._frame_count = 0
    
    async def send_error(self, message: str, code: str = "ERROR") -> None:
        """Queue an error message for the client."""
        self._enqueue({
            "type": "error",
            "code": code,
            "message": message
        })
    
    def _enqueue(self, event: dict) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"Client queue full, dropping {event['type']} event")
    
    async def handle_frame(self, data: dict) -> None:
        """Handle frame message from client."""
        self._frame_count += 1
        if not self._kiosk.push_frame(data.get("frame", "")):
            if self._frame_count == 1:
                await self.send_error("No stream session is accepting frames", "NO_STREAM")
    
    async def _send_events(self) -> None:
        while True:
            event = await self._queue.get()
            await self._websocket.send_json(event)
    
    async def _receive_messages(self) -> None:
        try:
            while True:
                data = await self._websocket.receive_json()
                
                if data.get("type") == "frame":
                    await self.handle_frame(data)
                
                elif data.get("type") == "stop":
                    logger.info("🛑 Client requested stop")
                    await self._websocket.close()
                    return
        
        except WebSocketDisconnect:
            logger.info("📱 Client disconnected")
    
    async def run(self, token: str) -> None:
        """Main handler loop."""
        # subscribed before accept so no event is missed after the handshake
        self._queue = self._kiosk.subscribe()
        
        try:
            await self._websocket.accept()
            logger.info("📱 Check-in WebSocket connected")
            
            if token:
                self._kiosk.session_store.set_token(token)
            
            status = self._kiosk.status()
            self._enqueue({
                "type": "scanner",
                "state": status.scanner_state or ScannerState.UNINITIALIZED.value
            })
            
            sender = asyncio.create_task(self._send_events())
            try:
                await self._receive_messages()
            finally:
                sender.cancel()
                results = await asyncio.gather(sender, return_exceptions=True)

            error = results[0]
            if isinstance(error, Exception) and not isinstance(error, WebSocketDisconnect):
                logger.error(f"WebSocket send error: {error}")

        except Exception as e:
            logger.error(f"WebSocket error: {e}")
        
        finally:
            self._kiosk.unsubscribe(self._queue)
            logger.info("✅ Check-in WebSocket closed")


@router.websocket("/ws/checkin")
async def websocket_checkin(
    websocket: WebSocket,
    token: str = Query(None),
    kiosk: KioskService = Depends(get_kiosk_service)
):
    """Live kiosk events and browser frame upload via WebSocket."""
    handler = CheckInWebSocketHandler(websocket, kiosk)
    await handler.run(token)
