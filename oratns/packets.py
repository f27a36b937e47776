"""Transport-level packets: building them for the wire and parsing received ones."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Optional, Union

from .options import ConnectionOption, SessionContext


class PacketType(IntEnum):
    """Packet type carried in byte 4 of every packet header."""

    CONNECT = 1
    ACCEPT = 2
    ACK = 3
    REFUSE = 4
    REDIRECT = 5
    DATA = 6
    NULL = 7
    ABORT = 9
    RESEND = 11
    MARKER = 12
    ATTN = 13
    CTRL = 14
    HIGHEST = 19


def _packet_type(value: int) -> Union[PacketType, int]:
    try:
        return PacketType(value)
    except ValueError:
        return value


def _u16(data: bytes, offset: int) -> int:
    return struct.unpack_from(">H", data, offset)[0]


def _put_u16(buffer: bytearray, offset: int, value: int) -> None:
    struct.pack_into(">H", buffer, offset, value & 0xFFFF)


def _text(data: bytes) -> str:
    return bytes(data).decode("utf-8", errors="replace")


@dataclass
class Packet:
    """Common packet header."""

    data_offset: int = 0
    length: int = 0
    packet_type: Union[PacketType, int] = 0
    flag: int = 0

    def to_bytes(self) -> bytearray:
        """Return the header padded with zeros up to the data offset."""
        output = bytearray(max(8, self.data_offset))
        _put_u16(output, 0, self.length)
        output[4] = int(self.packet_type) & 0xFF
        output[5] = self.flag & 0xFF
        return output


@dataclass
class AcceptPacket:
    """Server acceptance of a connect request."""

    packet: Packet
    session_ctx: SessionContext = field(default_factory=SessionContext)
    buffer: bytes = b""

    def to_bytes(self) -> bytes:
        output = self.packet.to_bytes()
        ctx = self.session_ctx
        _put_u16(output, 8, ctx.version)
        _put_u16(output, 10, ctx.options)
        _put_u16(output, 12, ctx.session_data_unit)
        _put_u16(output, 14, ctx.transport_data_unit)
        _put_u16(output, 16, ctx.histone)
        _put_u16(output, 18, len(self.buffer))
        _put_u16(output, 20, self.packet.data_offset)
        output[22] = ctx.acfl0 & 0xFF
        output[23] = ctx.acfl1 & 0xFF
        return bytes(output + self.buffer)


@dataclass
class ConnectPacket:
    """Client connect request carrying the connect descriptor."""

    packet: Packet
    session_ctx: SessionContext = field(default_factory=SessionContext)
    buffer: bytes = b""

    def to_bytes(self) -> bytes:
        output = self.packet.to_bytes()
        ctx = self.session_ctx
        _put_u16(output, 8, ctx.version)
        _put_u16(output, 10, ctx.lo_version)
        _put_u16(output, 12, ctx.options)
        _put_u16(output, 14, ctx.session_data_unit)
        _put_u16(output, 16, ctx.transport_data_unit)
        output[18] = 79
        output[19] = 152
        _put_u16(output, 22, ctx.histone)
        _put_u16(output, 24, len(self.buffer))
        _put_u16(output, 26, self.packet.data_offset)
        output[32] = ctx.acfl0 & 0xFF
        output[33] = ctx.acfl1 & 0xFF
        if len(self.buffer) <= 230:
            output += self.buffer
        return bytes(output)


@dataclass
class DataPacket:
    """Packet carrying session-layer data."""

    packet: Packet
    data_flag: int = 0
    buffer: bytes = b""

    def to_bytes(self) -> bytes:
        output = self.packet.to_bytes()
        _put_u16(output, 8, self.data_flag)
        if self.buffer:
            output += self.buffer
        return bytes(output)


@dataclass
class MarkerPacket:
    """Break/reset marker packet."""

    packet: Packet
    marker_data: int = 0
    marker_type: int = 0

    def to_bytes(self) -> bytes:
        return bytes(
            [0, 0xB, 0, 0, 0xC, 0, 0, 0, self.marker_type & 0xFF, 0, self.marker_data & 0xFF]
        )


@dataclass
class RedirectPacket:
    """Instruction to reconnect to another address."""

    packet: Packet
    redirect_addr: str = ""
    reconnect_data: str = ""

    def to_bytes(self) -> bytes:
        output = self.packet.to_bytes()
        data = self.redirect_addr.encode("utf-8") + b"\x00" + self.reconnect_data.encode("utf-8")
        _put_u16(output, 8, len(data))
        return bytes(output + data)

    def find_value(self, key: str) -> str:
        """Return the value of ``(KEY=value)`` in the redirect address, or ''."""
        upper = self.redirect_addr.upper()
        start = upper.find(key)
        if start < 0:
            return ""
        end = upper.find(")", start)
        if end < 0:
            return ""
        words = self.redirect_addr[start:end].split("=")
        if len(words) == 2:
            return words[1].strip()
        return ""

    def protocol(self) -> str:
        return self.find_value("PROTOCOL").lower()

    def host(self) -> str:
        return self.find_value("HOST")

    def port(self) -> str:
        return self.find_value("PORT")


@dataclass
class RefusePacket:
    """Server refusal of a connect request."""

    packet: Packet
    system_reason: int = 0
    user_reason: int = 0
    message: str = ""

    def to_bytes(self) -> bytes:
        output = self.packet.to_bytes()
        output[8] = self.system_reason & 0xFF
        output[9] = self.user_reason & 0xFF
        data = self.message.encode("utf-8")
        _put_u16(output, 10, len(data))
        return bytes(output + data)


def parse_packet_header(data: bytes) -> Packet:
    """Parse the length, type and flag of a packet header."""
    if len(data) < 8:
        raise ValueError("packet header needs 8 bytes")
    return Packet(length=_u16(data, 0), packet_type=_packet_type(data[4]), flag=data[5])


def parse_accept_packet(data: bytes) -> Optional[AcceptPacket]:
    """Parse an accept packet; None when the data is not a valid one."""
    data = bytes(data)
    if len(data) < 32:
        return None
    recon_start = _u16(data, 28)
    recon_len = _u16(data, 30)
    recon_addr = ""
    if recon_start and recon_len and len(data) > recon_start + recon_len:
        recon_addr = _text(data[recon_start : recon_start + recon_len])
    packet = AcceptPacket(
        packet=Packet(
            data_offset=_u16(data, 20),
            length=_u16(data, 0),
            packet_type=_packet_type(data[4]),
            flag=data[5],
        ),
        session_ctx=SessionContext(
            connection_option=ConnectionOption(),
            version=_u16(data, 8),
            negotiated_options=_u16(data, 10),
            histone=_u16(data, 16),
            recon_addr=recon_addr,
            acfl0=data[22],
            acfl1=data[23],
            session_data_unit=_u16(data, 12),
            transport_data_unit=_u16(data, 14),
        ),
        buffer=data[32:],
    )
    if packet.packet.data_offset != 32:
        return None
    if _u16(data, 18) != len(packet.buffer):
        return None
    return packet


def new_connect_packet(context: SessionContext) -> ConnectPacket:
    """Build the connect packet for a session context."""
    connect_data = context.connection_option.connection_data().encode("utf-8")
    length = len(connect_data)
    if length > 230:
        length = 0
    length += 58
    return ConnectPacket(
        packet=Packet(data_offset=58, length=length, packet_type=PacketType.CONNECT, flag=0),
        session_ctx=replace(context, histone=1, acfl0=4, acfl1=4),
        buffer=connect_data,
    )


def new_data_packet(payload: Optional[bytes]) -> DataPacket:
    """Build a data packet around a payload."""
    payload = bytes(payload or b"")
    return DataPacket(
        packet=Packet(
            data_offset=0xA, length=len(payload) + 0xA, packet_type=PacketType.DATA, flag=0
        ),
        data_flag=0,
        buffer=payload,
    )


def parse_data_packet(data: bytes) -> Optional[DataPacket]:
    """Parse a data packet; None when the data is not one."""
    data = bytes(data)
    if len(data) <= 0xA or data[4] != PacketType.DATA:
        return None
    return DataPacket(
        packet=Packet(
            data_offset=0xA,
            length=_u16(data, 0),
            packet_type=PacketType.DATA,
            flag=data[5],
        ),
        data_flag=_u16(data, 8),
        buffer=data[10:],
    )


def new_marker_packet(marker_data: int) -> MarkerPacket:
    """Build a marker packet of type 1 with the given data byte."""
    return MarkerPacket(
        packet=Packet(data_offset=0, length=0xB, packet_type=PacketType.MARKER, flag=0),
        marker_type=1,
        marker_data=marker_data,
    )


def parse_marker_packet(data: bytes) -> Optional[MarkerPacket]:
    """Parse a marker packet; None when the data is not one."""
    data = bytes(data)
    if len(data) != 0xB:
        return None
    if data[4] != PacketType.MARKER:
        return None
    return MarkerPacket(
        packet=Packet(
            data_offset=0,
            length=_u16(data, 0),
            packet_type=PacketType.MARKER,
            flag=data[5],
        ),
        marker_type=data[8],
        marker_data=data[10],
    )


def parse_redirect_packet(data: bytes) -> Optional[RedirectPacket]:
    """Parse the header of a redirect packet; the address is filled in by the reader."""
    data = bytes(data)
    if len(data) < 10:
        return None
    return RedirectPacket(
        packet=Packet(
            data_offset=10,
            length=_u16(data, 0),
            packet_type=_packet_type(data[4]),
            flag=data[5],
        )
    )


def parse_refuse_packet(data: bytes) -> Optional[RefusePacket]:
    """Parse a refuse packet; None when it is too short."""
    data = bytes(data)
    if len(data) < 12:
        return None
    data_len = _u16(data, 10)
    message = ""
    if len(data) - 1 >= 12 + data_len:
        message = _text(data[12 : 12 + data_len])
    return RefusePacket(
        packet=Packet(
            data_offset=12,
            length=_u16(data, 0),
            packet_type=_packet_type(data[4]),
            flag=0,
        ),
        system_reason=data[9],
        user_reason=data[8],
        message=message,
    )