"""
One-shot JSON-RPC over WebSocket for the Chrome DevTools Protocol.

round_trip() opens a channel, sends one request, waits for the response with
the same id and closes the channel. Two transports sit behind it:

- "aiohttp": aiohttp's WebSocket client
- "raw":     a minimal RFC 6455 client on asyncio streams (handshake + framing)
"""

import asyncio
import base64
import hashlib
import json
import logging
import os
import struct
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import urlsplit

import aiohttp

from huntr_cli.auth.errors import CDPError, CDPTimeout

logger = logging.getLogger(__name__)

WS_GUID = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"

OP_CONTINUATION = 0x0
OP_TEXT = 0x1
OP_BINARY = 0x2
OP_CLOSE = 0x8
OP_PING = 0x9
OP_PONG = 0xA

READ_CHUNK = 65536


# =============================================================================
# FRAME CODEC
# =============================================================================

@dataclass
class Frame:
    """A single decoded WebSocket frame."""
    fin: bool
    opcode: int
    payload: bytes


def _apply_mask(payload: bytes, mask_key: bytes) -> bytes:
    return bytes(b ^ mask_key[i % 4] for i, b in enumerate(payload))


def encode_frame(payload: bytes, opcode: int = OP_TEXT, mask_key: Optional[bytes] = None) -> bytes:
    """
    Encode one final, masked client-to-server frame.

    Payload length uses the 7-bit form below 126 bytes, a 16-bit extended
    length below 65536, and a 64-bit extended length above that.
    """
    if mask_key is None:
        mask_key = os.urandom(4)
    if len(mask_key) != 4:
        raise ValueError("mask key must be 4 bytes")

    length = len(payload)
    header = bytes([0x80 | opcode])
    if length < 126:
        header += bytes([0x80 | length])
    elif length < 65536:
        header += bytes([0x80 | 126]) + struct.pack("!H", length)
    else:
        header += bytes([0x80 | 127]) + struct.pack("!Q", length)

    return header + mask_key + _apply_mask(payload, mask_key)


def decode_frame(data: bytes) -> Optional[tuple[Frame, int]]:
    """
    Decode the first frame in ``data``.

    Returns (frame, bytes consumed), or None if ``data`` does not hold a
    complete frame yet. Server frames are unmasked; a masked frame is
    unmasked anyway.
    """
    if len(data) < 2:
        return None

    first, second = data[0], data[1]
    fin = bool(first & 0x80)
    opcode = first & 0x0F
    masked = bool(second & 0x80)
    length = second & 0x7F
    offset = 2

    if length == 126:
        if len(data) < offset + 2:
            return None
        (length,) = struct.unpack("!H", data[offset:offset + 2])
        offset += 2
    elif length == 127:
        if len(data) < offset + 8:
            return None
        (length,) = struct.unpack("!Q", data[offset:offset + 8])
        offset += 8

    mask_key = b""
    if masked:
        if len(data) < offset + 4:
            return None
        mask_key = data[offset:offset + 4]
        offset += 4

    end = offset + length
    if len(data) < end:
        return None

    payload = bytes(data[offset:end])
    if masked:
        payload = _apply_mask(payload, mask_key)
    return Frame(fin=fin, opcode=opcode, payload=payload), end


def accept_key(key: str) -> str:
    """Expected Sec-WebSocket-Accept for a Sec-WebSocket-Key."""
    digest = hashlib.sha1((key + WS_GUID).encode("ascii")).digest()
    return base64.b64encode(digest).decode("ascii")


# =============================================================================
# RAW CLIENT
# =============================================================================

class RawWebSocket:
    """Minimal WebSocket client over asyncio streams (ws:// only)."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer
        self._buffer = bytearray()
        self._closed = False

    @classmethod
    async def connect(cls, ws_url: str) -> "RawWebSocket":
        parts = urlsplit(ws_url)
        if parts.scheme != "ws" or not parts.hostname:
            raise CDPError(f"Cannot parse WS URL: {ws_url}")

        host = parts.hostname
        port = parts.port or 80
        path = parts.path or "/"
        if parts.query:
            path += f"?{parts.query}"

        reader, writer = await asyncio.open_connection(host, port)
        ws = cls(reader, writer)
        try:
            await ws._handshake(host, port, path)
        except BaseException:
            await ws.close()
            raise
        return ws

    async def _handshake(self, host: str, port: int, path: str) -> None:
        key = base64.b64encode(os.urandom(16)).decode("ascii")
        request = (
            f"GET {path} HTTP/1.1\r\n"
            f"Host: {host}:{port}\r\n"
            "Upgrade: websocket\r\n"
            "Connection: Upgrade\r\n"
            f"Sec-WebSocket-Key: {key}\r\n"
            "Sec-WebSocket-Version: 13\r\n"
            "\r\n"
        )
        self.writer.write(request.encode("ascii"))
        await self.writer.drain()

        raw = await self.reader.readuntil(b"\r\n\r\n")
        lines = raw.decode("latin-1").split("\r\n")
        status_line = lines[0].split(" ", 2)
        if len(status_line) < 2 or status_line[1] != "101":
            raise CDPError(f"WebSocket upgrade refused: {lines[0]}")

        headers = {}
        for line in lines[1:]:
            name, sep, value = line.partition(":")
            if sep:
                headers[name.strip().lower()] = value.strip()
        if headers.get("sec-websocket-accept") != accept_key(key):
            raise CDPError("WebSocket upgrade returned a bad Sec-WebSocket-Accept")

    async def send_text(self, text: str) -> None:
        self.writer.write(encode_frame(text.encode("utf-8"), OP_TEXT))
        await self.writer.drain()

    async def _read_frame(self) -> Frame:
        while True:
            decoded = decode_frame(self._buffer)
            if decoded is not None:
                frame, consumed = decoded
                del self._buffer[:consumed]
                return frame
            chunk = await self.reader.read(READ_CHUNK)
            if not chunk:
                raise ConnectionError("WebSocket connection closed by peer")
            self._buffer.extend(chunk)

    async def recv_text(self) -> str:
        """Next complete text/binary message, reassembling fragments."""
        fragments: list[bytes] = []
        while True:
            frame = await self._read_frame()
            if frame.opcode == OP_PING:
                self.writer.write(encode_frame(frame.payload, OP_PONG))
                await self.writer.drain()
                continue
            if frame.opcode == OP_PONG:
                continue
            if frame.opcode == OP_CLOSE:
                self._closed = True
                raise ConnectionError("WebSocket closed by peer")
            if frame.opcode in (OP_TEXT, OP_BINARY, OP_CONTINUATION):
                fragments.append(frame.payload)
                if frame.fin:
                    return b"".join(fragments).decode("utf-8")

    async def close(self) -> None:
        if not self._closed and not self.writer.is_closing():
            self._closed = True
            with suppress(ConnectionError):
                self.writer.write(encode_frame(b"", OP_CLOSE))
                await self.writer.drain()
        self.writer.close()
        with suppress(ConnectionError):
            await self.writer.wait_closed()

    async def __aenter__(self) -> "RawWebSocket":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()


# =============================================================================
# TRANSPORTS
# =============================================================================

def _matches(message: Any, msg_id: int) -> bool:
    return isinstance(message, dict) and message.get("id") == msg_id


async def _round_trip_aiohttp(ws_url: str, request: dict) -> dict:
    async with aiohttp.ClientSession() as http:
        async with http.ws_connect(ws_url, max_msg_size=0, autoping=True) as ws:
            await ws.send_str(json.dumps(request))
            async for msg in ws:
                if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                    data = msg.data if isinstance(msg.data, str) else msg.data.decode("utf-8")
                    response = json.loads(data)
                    if _matches(response, request["id"]):
                        return response
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    raise CDPError(f"WebSocket error: {ws.exception()}")
    raise CDPError("WebSocket closed before a response arrived")


async def _round_trip_raw(ws_url: str, request: dict) -> dict:
    ws = await RawWebSocket.connect(ws_url)
    async with ws:
        await ws.send_text(json.dumps(request))
        while True:
            response = json.loads(await ws.recv_text())
            if _matches(response, request["id"]):
                return response


_TRANSPORTS = {
    "aiohttp": _round_trip_aiohttp,
    "raw": _round_trip_raw,
}


async def round_trip(ws_url: str, request: dict, timeout: float, transport: str = "aiohttp") -> dict:
    """
    Send one JSON-RPC request and return the matching response message.

    The channel is closed when this returns or raises. A peer that never
    answers produces CDPTimeout after ``timeout`` seconds.
    """
    try:
        runner = _TRANSPORTS[transport]
    except KeyError:
        raise ValueError(f"Unknown CDP transport: {transport}")

    method = request.get("method", "?")
    try:
        return await asyncio.wait_for(runner(ws_url, request), timeout)
    except asyncio.TimeoutError as e:
        raise CDPTimeout(f"Timeout waiting for Chrome response to {method} after {timeout}s") from e
    except CDPError:
        raise
    except (aiohttp.ClientError, OSError, EOFError, ValueError) as e:
        raise CDPError(f"DevTools channel {ws_url} failed during {method}: {e}") from e
