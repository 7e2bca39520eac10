import asyncio
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

from loguru import logger

VT = b"\x0b"  # <VT> start block
FS = b"\x1c"  # <FS> end block
CR = b"\x0d"  # <CR>
END_BLOCK = FS + CR

READ_CHUNK = 4096


def wrap_mllp(message: Union[str, bytes], encoding: str = "utf-8") -> bytes:
    body = message.encode(encoding) if isinstance(message, str) else message
    return VT + body + END_BLOCK


def decode_payload(payload: bytes) -> str:
    # UTF-8 by default; older analyzers send Latin-1
    try:
        return payload.decode("utf-8")
    except UnicodeDecodeError:
        return payload.decode("latin-1")


class FrameReassembler:
    """Turns a fragmented TCP byte stream into complete MLLP payloads.

    One instance per connection. ``feed`` may return zero, one or several
    payloads; bytes outside an envelope are discarded. A frame whose end
    block has not arrived is held until more data comes in, up to
    ``max_frame_bytes``.
    """

    def __init__(self, max_frame_bytes: Optional[int] = None):
        self.max_frame_bytes = max_frame_bytes
        self.dropped_bytes = 0
        self._buf = bytearray()

    @property
    def pending(self) -> bool:
        return bool(self._buf)

    def feed(self, data: bytes) -> List[bytes]:
        self._buf.extend(data)
        frames: List[bytes] = []
        while True:
            start = self._buf.find(VT)
            if start < 0:
                # No start block: everything buffered is noise
                self._buf.clear()
                break
            if start > 0:
                del self._buf[:start]
            end = self._buf.find(END_BLOCK, 1)
            if end < 0:
                break
            frames.append(bytes(self._buf[1:end]))
            del self._buf[: end + len(END_BLOCK)]

        if self.max_frame_bytes is not None and len(self._buf) > self.max_frame_bytes:
            logger.warning(
                f"MLLP frame exceeded {self.max_frame_bytes} bytes without end block; "
                f"dropping {len(self._buf)} buffered bytes"
            )
            self.dropped_bytes += len(self._buf)
            self._buf.clear()
        return frames

    def reset(self) -> int:
        """Drop any partial frame, returning how many bytes were discarded."""
        n = len(self._buf)
        self._buf.clear()
        return n


async def read_mllp_messages(
    reader: asyncio.StreamReader,
    reassembler: Optional[FrameReassembler] = None,
    frame_timeout: Optional[float] = None,
    idle_timeout: Optional[float] = None,
) -> AsyncIterator[str]:
    """
    Reads an MLLP stream and yields HL7 messages (str) delimited by VT ... FS CR.
    Several messages may arrive on one connection, or in one read.
    Stops on EOF, or when a timeout expires (partial frame -> frame_timeout,
    otherwise idle_timeout).
    """
    reassembler = reassembler or FrameReassembler()
    while True:
        timeout = frame_timeout if reassembler.pending else idle_timeout
        try:
            chunk = await asyncio.wait_for(reader.read(READ_CHUNK), timeout=timeout)
        except asyncio.TimeoutError:
            if reassembler.pending:
                dropped = reassembler.reset()
                logger.warning(f"Incomplete MLLP frame timed out after {timeout}s; dropped {dropped} bytes")
            else:
                logger.info(f"Connection idle for {timeout}s")
            return
        if not chunk:
            break
        for payload in reassembler.feed(chunk):
            yield decode_payload(payload)


class TcpSender:
    """MLLP client: sends one framed message and waits for the reply frame."""

    def __init__(self, host: str, port: int, timeout: float = 5.0):
        self.host = host
        self.port = port
        self.timeout = timeout

    async def send(self, hl7_text: str, expect_ack: bool = True) -> Optional[str]:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(self.host, self.port), timeout=self.timeout
        )
        try:
            writer.write(wrap_mllp(hl7_text))
            await writer.drain()
            if not expect_ack:
                return None
            frames = read_mllp_messages(reader, frame_timeout=self.timeout, idle_timeout=self.timeout)
            try:
                return await frames.__anext__()
            except StopAsyncIteration:
                return None
            finally:
                await frames.aclose()
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass


@dataclass
class ConnectionContext:
    """One live connection: registry entry and reply channel for handlers."""

    client_id: str
    peer: Any
    writer: asyncio.StreamWriter
    reassembler: FrameReassembler = field(default_factory=FrameReassembler)
    task: Optional["asyncio.Task[Any]"] = None
    busy: bool = False
    messages: int = 0

    @property
    def in_flight(self) -> bool:
        """Handling a frame, or holding the first bytes of one."""
        return self.busy or self.reassembler.pending

    async def reply(self, data: bytes) -> None:
        self.writer.write(data)
        await self.writer.drain()


def client_id_for(peer: Any) -> str:
    if isinstance(peer, (tuple, list)) and len(peer) >= 2:
        return f"{peer[0]}:{peer[1]}"
    return str(peer)


OnMessage = Callable[[str, ConnectionContext], Awaitable[None]]


class TcpServer:
    def __init__(
        self,
        host: str,
        port: int,
        on_message_async: OnMessage,
        max_frame_bytes: Optional[int] = None,
        frame_timeout: Optional[float] = None,
        idle_timeout: Optional[float] = None,
    ):
        self.host = host
        self.port = port
        self.on_message_async = on_message_async
        self.max_frame_bytes = max_frame_bytes
        self.frame_timeout = frame_timeout
        self.idle_timeout = idle_timeout
        self.connections: Dict[str, ConnectionContext] = {}
        self._server: Optional[asyncio.AbstractServer] = None
        self._closing = False

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        peer = writer.get_extra_info("peername")
        ctx = ConnectionContext(
            client_id=client_id_for(peer),
            peer=peer,
            writer=writer,
            reassembler=FrameReassembler(self.max_frame_bytes),
            task=asyncio.current_task(),
        )
        self.connections[ctx.client_id] = ctx
        logger.info(f"HL7 client connected: {ctx.client_id}")
        try:
            async for hl7 in read_mllp_messages(
                reader, ctx.reassembler, frame_timeout=self.frame_timeout, idle_timeout=self.idle_timeout
            ):
                ctx.busy = True
                ctx.messages += 1
                try:
                    await self.on_message_async(hl7, ctx)
                except (ConnectionError, OSError):
                    raise
                except Exception as ex:
                    logger.exception(f"Unexpected error processing message from {ctx.client_id}: {ex}")
                finally:
                    ctx.busy = False
                if self._closing:
                    break
        except (ConnectionError, OSError) as ex:
            logger.warning(f"HL7 socket error for {ctx.client_id}: {ex}")
        finally:
            self.connections.pop(ctx.client_id, None)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass
            logger.info(f"HL7 client disconnected: {ctx.client_id} ({ctx.messages} message(s))")

    async def start(self):
        self._closing = False
        self._server = await asyncio.start_server(self._handle, self.host, self.port)
        sockets = self._server.sockets or ()
        if sockets:
            self.port = sockets[0].getsockname()[1]
        logger.info(f"HL7 server listening on {self.host}:{self.port}")

    async def stop(self, grace: float = 5.0):
        """Stop accepting, close idle connections, let in-flight frames finish.

        A connection holding a partial frame counts as in flight: it keeps
        reading until that frame completes and is answered, then closes.
        Anything still open after ``grace`` seconds is cancelled.
        """
        if self._server is None:
            return
        self._closing = True
        self._server.close()

        for ctx in list(self.connections.values()):
            if not ctx.in_flight:
                ctx.writer.close()

        tasks = [c.task for c in self.connections.values() if c.task is not None]
        if tasks:
            _, still_running = await asyncio.wait(tasks, timeout=grace)
            for task in still_running:
                task.cancel()
            if still_running:
                logger.warning(f"Force-closed {len(still_running)} connection(s) on shutdown")
                await asyncio.gather(*still_running, return_exceptions=True)

        await self._server.wait_closed()
        self._server = None
        logger.info("HL7 server stopped")
