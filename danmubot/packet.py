"""Binary framing of the live danmaku websocket protocol."""

from __future__ import annotations

import base64
import json
import logging
import struct
import zlib
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

import brotli

log = logging.getLogger(__name__)

HEADER_LENGTH = 16
_HEADER = struct.Struct(">IHHII")
_LENGTH = struct.Struct(">I")


class ProtocolVersion(IntEnum):
    """Body encoding announced in the packet header."""

    PLAIN = 0
    POPULARITY = 1
    ZLIB = 2
    BROTLI = 3


class Operation(IntEnum):
    """Operation codes carried in the packet header."""

    HANDSHAKE = 0
    HANDSHAKE_RESPONSE = 1
    HEARTBEAT = 2
    HEARTBEAT_RESPONSE = 3
    NOTIFICATION = 5
    ROOM_ENTER = 7
    ROOM_ENTER_RESPONSE = 8


@dataclass(frozen=True)
class Packet:
    """One protocol frame: header fields plus the raw body."""

    protocol_version: int
    operation: int
    body: bytes = b""

    def build(self) -> bytes:
        """Serialise the packet with its 16-byte header (sequence id 1)."""
        total = HEADER_LENGTH + len(self.body)
        header = _HEADER.pack(total, HEADER_LENGTH, self.protocol_version, self.operation, 1)
        return header + bytes(self.body)

    def parse(self) -> list[Packet]:
        """Expand a compressed packet into the packets it carries."""
        if self.protocol_version in (ProtocolVersion.PLAIN, ProtocolVersion.POPULARITY):
            return [self]
        if self.protocol_version == ProtocolVersion.ZLIB:
            try:
                data = zlib.decompress(self.body)
            except zlib.error as exc:
                log.error("zlib error %s", exc)
                return []
            return slice_packets(data)
        if self.protocol_version == ProtocolVersion.BROTLI:
            try:
                data = brotli.decompress(self.body)
            except brotli.error as exc:
                log.error("brotli error %s", exc)
                return []
            return slice_packets(data)
        log.error("unknown protocolVersion")
        return []

    def unmarshal(self) -> Any:
        """Decode the body as JSON."""
        return json.loads(self.body)


_ERROR_PACKET = Packet(1, Operation.HEARTBEAT_RESPONSE, b"")


def decode_packet(data: bytes) -> Packet:
    """Read one packet from its wire bytes; malformed input yields an empty heartbeat reply."""
    if len(data) < HEADER_LENGTH:
        log.error("error packet")
        return _ERROR_PACKET
    length, _, version, operation, _ = _HEADER.unpack_from(data)
    if length == 0 or length != len(data):
        log.error("error packet")
        return _ERROR_PACKET
    return Packet(version, operation, bytes(data[HEADER_LENGTH:length]))


def encode_packet(packet: Packet) -> bytes:
    """Serialise a packet."""
    return packet.build()


def slice_packets(data: bytes) -> list[Packet]:
    """Split a buffer of concatenated frames into packets."""
    packets: list[Packet] = []
    cursor = 0
    total = len(data)
    while cursor + _LENGTH.size <= total:
        (length,) = _LENGTH.unpack_from(data, cursor)
        if length == 0:
            log.error("error packet")
            break
        packets.append(decode_packet(data[cursor:cursor + length]))
        cursor += length
    return packets


def new_plain_packet(operation: int, body: bytes) -> Packet:
    """A packet with protocol version 1 and the given body."""
    return Packet(1, operation, bytes(body))


def new_enter_packet(uid: int, buvid: str, room_id: int, key: str) -> bytes:
    """Wire bytes of the room-enter authentication packet."""
    payload = {
        "uid": uid,
        "buvid": buvid,
        "roomid": room_id,
        "protover": 3,
        "platform": "danmuji",
        "type": 2,
        "key": key,
    }
    body = json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    return new_plain_packet(Operation.ROOM_ENTER, body).build()


def new_heartbeat_packet() -> bytes:
    """Wire bytes of a heartbeat packet."""
    return Packet(1, Operation.HEARTBEAT, b"").build()


def b64decode(text: str) -> bytes:
    """Strict standard base64 decoding."""
    return base64.b64decode(text, validate=True)