from typing import Dict
import asyncio
import uuid
import structlog

from .schema.events import BaseEvent, DoneEvent, ErrorEvent, InfoEvent, encode_frame

logger = structlog.get_logger(__name__)


class ClientConnection:
    """One client socket; frames written after the peer goes away are dropped"""

    def __init__(self, writer: asyncio.StreamWriter):
        self.connection_id = uuid.uuid4().hex[:8]
        self.writer = writer
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed or self.writer.is_closing()

    def mark_closed(self):
        self._closed = True

    async def send_event(self, event: BaseEvent) -> bool:
        """Send one frame; returns False if the client is gone"""
        if self.closed:
            return False

        try:
            self.writer.write(encode_frame(event))
            await self.writer.drain()
            return True

        except (ConnectionError, OSError) as e:
            logger.debug("Client went away while sending", connection_id=self.connection_id, error=str(e))
            self.mark_closed()
            return False

    async def send_info(self, message: str) -> bool:
        return await self.send_event(InfoEvent(message=message))

    async def send_error(self, message: str) -> bool:
        return await self.send_event(ErrorEvent(message=message))

    async def send_done(self) -> bool:
        return await self.send_event(DoneEvent())

    async def close(self):
        self.mark_closed()
        try:
            self.writer.close()
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug("Error closing client socket", connection_id=self.connection_id, error=str(e))


class ConnectionManager:
    """Tracks live client connections"""

    def __init__(self):
        self.active_connections: Dict[str, ClientConnection] = {}
        self._lock = asyncio.Lock()

    async def connect(self, writer: asyncio.StreamWriter) -> ClientConnection:
        """Register a newly accepted socket"""
        connection = ClientConnection(writer)

        async with self._lock:
            self.active_connections[connection.connection_id] = connection

        logger.debug("Client connected", connection_id=connection.connection_id)
        return connection

    async def disconnect(self, connection: ClientConnection):
        """Unregister and close a connection"""
        async with self._lock:
            self.active_connections.pop(connection.connection_id, None)

        await connection.close()
        logger.debug("Client disconnected", connection_id=connection.connection_id)

    async def close_all(self):
        """Close every connection (shutdown)"""
        async with self._lock:
            connections = list(self.active_connections.values())
            self.active_connections.clear()

        await asyncio.gather(*(c.close() for c in connections), return_exceptions=True)
