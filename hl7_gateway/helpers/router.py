import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Tuple

from loguru import logger

from hl7_gateway.commons.ack import ERROR, build_ack
from hl7_gateway.commons.types import AckCfg
from hl7_gateway.helpers.tcp_transport import ConnectionContext
from hl7_gateway.parsers.base import HL7Message, StructuralError, parse
from hl7_gateway.parsers.models import Notification
from hl7_gateway.parsers.orm import parse_orm
from hl7_gateway.parsers.oru import parse_oru

Handler = Callable[[HL7Message, ConnectionContext], Awaitable[None]]


class MessageRouter:
    """Routes parsed messages by (MessageType, TriggerEvent).

    Only ORM^O01 and ORU^R01 are handled. Nothing raised here reaches the
    connection: unsupported types and malformed messages are logged and
    dropped so one bad message never takes the connection down.
    """

    def __init__(self, sink, ack_cfg: Optional[AckCfg] = None):
        self.sink = sink
        self.ack_cfg = ack_cfg or AckCfg()
        self._deliveries: Set["asyncio.Task[Any]"] = set()
        self.table: Dict[Tuple[str, str], Handler] = {
            ("ORM", "O01"): self.handle_orm,
            ("ORU", "R01"): self.handle_oru,
        }

    async def handle_frame(self, hl7_text: str, ctx: ConnectionContext) -> None:
        logger.debug(f"Received HL7 message from {ctx.client_id}: {hl7_text[:200]!r}")
        try:
            message = parse(hl7_text)
        except StructuralError as ex:
            logger.error(f"Dropping message from {ctx.client_id}: {ex}")
            await self._nack(ctx, "", "", "", str(ex))
            return
        await self.dispatch(message, ctx)

    async def dispatch(self, message: HL7Message, ctx: ConnectionContext) -> None:
        envelope = message.envelope
        handler = self.table.get(tuple(envelope))
        if handler is None:
            logger.warning(
                f"Unsupported message type {envelope} from {ctx.client_id} "
                f"(control id {message.control_id!r}); dropped"
            )
            return

        logger.info(f"Processing {envelope} from {ctx.client_id} (control id {message.control_id!r})")
        try:
            await handler(message, ctx)
        except StructuralError as ex:
            logger.error(f"Dropping {envelope} from {ctx.client_id}: {ex}")
            await self._nack(ctx, envelope.message_type, envelope.trigger_event, message.control_id, str(ex))

    # -------- handlers --------

    async def handle_orm(self, message: HL7Message, ctx: ConnectionContext) -> None:
        order = parse_orm(message)
        logger.info(f"Order info: {order}")
        self._deliver(order)
        await self._ack(ctx, "ORM", "O01", order.placer_order_number)

    async def handle_oru(self, message: HL7Message, ctx: ConnectionContext) -> None:
        result = parse_oru(message)
        logger.info(
            f"Result for filler order {result.filler_order_number!r}: "
            f"{len(result.observations)} observation(s)"
        )
        self._deliver(result)
        await self._ack(ctx, "ORU", "R01", result.filler_order_number)

    # -------- outbound --------

    def _deliver(self, notification: Notification) -> None:
        # Fire-and-forget: the ACK never waits on the bridge
        task = asyncio.create_task(self._safe_deliver(notification))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _safe_deliver(self, notification: Notification) -> None:
        try:
            await self.sink.deliver(notification)
        except Exception as ex:
            logger.exception(f"Notification delivery failed: {ex}")

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding deliveries (shutdown, tests)."""
        if self._deliveries:
            await asyncio.wait(set(self._deliveries), timeout=timeout)

    async def _ack(self, ctx: ConnectionContext, message_type: str, trigger_event: str, correlation_id: str):
        await ctx.reply(build_ack(message_type, trigger_event, correlation_id, identity=self.ack_cfg))
        logger.info(f"Sent ACK for {message_type}^{trigger_event} ({correlation_id!r}) to {ctx.client_id}")

    async def _nack(self, ctx: ConnectionContext, message_type: str, trigger_event: str, control_id: str, text: str):
        if not self.ack_cfg.nack_on_error:
            return
        await ctx.reply(build_ack(message_type, trigger_event, control_id, code=ERROR, identity=self.ack_cfg, text=text))
        logger.info(f"Sent AE to {ctx.client_id} ({control_id!r})")
