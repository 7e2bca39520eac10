import asyncio
from typing import Optional

from loguru import logger

from hl7_gateway.commons.types import Settings
from hl7_gateway.helpers.router import MessageRouter
from hl7_gateway.helpers.tcp_transport import TcpServer
from hl7_gateway.services.bridge import HttpNotificationSink, LoggingSink, NotificationSink


def build_sink(settings: Settings) -> NotificationSink:
    bridge = settings.bridge
    if not bridge.enabled:
        return LoggingSink()
    return HttpNotificationSink(bridge.result_url, bridge.order_url, timeout=bridge.timeout_sec)


class GatewayService:
    """Wires the MLLP listener, the message router and the outbound sink."""

    def __init__(self, settings: Settings, sink: Optional[NotificationSink] = None):
        self.settings = settings
        self.sink = sink if sink is not None else build_sink(settings)
        self.router = MessageRouter(self.sink, settings.ack)
        srv = settings.server
        self.server = TcpServer(
            srv.host,
            srv.port,
            self.router.handle_frame,
            max_frame_bytes=srv.max_frame_bytes,
            frame_timeout=srv.frame_timeout_sec,
            idle_timeout=srv.idle_timeout_sec,
        )

    @property
    def port(self) -> int:
        return self.server.port

    async def start(self) -> None:
        await self.server.start()

    async def stop(self) -> None:
        grace = self.settings.server.shutdown_grace_sec
        await self.server.stop(grace=grace)
        await self.router.drain(timeout=grace)
        aclose = getattr(self.sink, "aclose", None)
        if aclose is not None:
            await aclose()

    async def run_tcp_mode(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Serve until ``stop_event`` is set (or the task is cancelled), then shut down."""
        stop_event = stop_event or asyncio.Event()
        await self.start()
        try:
            await stop_event.wait()
        finally:
            logger.info("Shutting down HL7 server...")
            await self.stop()
