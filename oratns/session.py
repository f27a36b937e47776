"""Buffered network session: packet transport plus the marshalling primitives."""

from __future__ import annotations

import logging
import socket
import struct
from dataclasses import dataclass, field, replace
from typing import Optional, Protocol, Union

from .options import ConnectionOption, SessionContext, new_session_context
from .packets import (
    AcceptPacket,
    ConnectPacket,
    DataPacket,
    MarkerPacket,
    PacketType,
    RedirectPacket,
    RefusePacket,
    new_connect_packet,
    new_data_packet,
    new_marker_packet,
    parse_accept_packet,
    parse_data_packet,
    parse_marker_packet,
    parse_redirect_packet,
    parse_refuse_packet,
)
from .summary import SummaryObject, read_summary

_log = logging.getLogger(__name__)

_UINT64 = 1 << 64
_INT64_SIGN = 1 << 63

AnyPacket = Union[AcceptPacket, ConnectPacket, DataPacket, MarkerPacket, RedirectPacket, RefusePacket]


class SessionError(Exception):
    """Raised when the server or the wire data breaks the protocol."""


class StringConverter(Protocol):
    def decode(self, data: bytes) -> str: ...


@dataclass
class _SessionState:
    summary: Optional[SummaryObject]
    send_packets: list = field(default_factory=list)
    in_buffer: bytes = b""
    out_buffer: bytes = b""
    index: int = 0


def _as_int64(value: int) -> int:
    value %= _UINT64
    return value - _UINT64 if value >= _INT64_SIGN else value


def _fixed_width(num: int, size: int, big_endian: bool) -> bytes:
    """Encode num in a field of ``size`` bytes; only 2, 4 and 8 carry a value."""
    if size in (2, 4, 8):
        return (num % (1 << (8 * size))).to_bytes(size, "big" if big_endian else "little")
    return bytes(size)


class Session:
    """A connection to the server with an input and an output buffer."""

    def __init__(self, option: ConnectionOption):
        self.option = replace(option)
        self.context: SessionContext = new_session_context(self.option)
        self.sock: Optional[socket.socket] = None
        self.send_packets: list[AnyPacket] = []
        self.in_buffer = bytearray()
        self.out_buffer = bytearray()
        self.index = 0
        self.time_zone = b""
        self.ttc_version = 0
        self.has_eos_capability = False
        self.has_fsap_capability = False
        self.summary: Optional[SummaryObject] = None
        self.str_conv: Optional[StringConverter] = None
        self._states: list[_SessionState] = []

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc_info) -> None:
        self.disconnect()

    # connection handling

    def attach(self, sock: socket.socket) -> None:
        """Use an already connected socket as the transport."""
        self.disconnect()
        self.sock = sock

    def _address(self) -> tuple[str, int]:
        host = self.option.host
        if ":" not in host:
            return host, self.option.port
        name, _, port = host.rpartition(":")
        try:
            return name.strip("[]"), int(port)
        except ValueError as exc:
            raise SessionError(f"invalid host address: {host}") from exc

    def connect(self) -> None:
        """Open the transport and negotiate the session, following redirects."""
        self.disconnect()
        _log.debug("Connect")
        if self.option.protocol.lower() not in ("tcp", "tcp4", "tcp6"):
            raise SessionError(f"unsupported protocol: {self.option.protocol}")
        self.attach(socket.create_connection(self._address()))
        connect_packet = new_connect_packet(self.context)
        self._write_packet(connect_packet)
        if connect_packet.packet.length == 58:
            self.put_bytes(connect_packet.buffer)
            self.write()
        received = self._read_packet()
        if isinstance(received, AcceptPacket):
            self.context = received.session_ctx
            return
        if isinstance(received, RedirectPacket):
            _log.debug("Redirect")
            self.option.conn_data = received.reconnect_data
            if received.protocol():
                self.option.protocol = received.protocol()
            if received.host():
                self.option.host = received.host()
            if received.port():
                try:
                    self.option.port = int(received.port())
                except ValueError as exc:
                    raise SessionError("redirect packet with wrong port") from exc
            self.connect()
            return
        raise SessionError("connection refused by the server")

    def disconnect(self) -> None:
        """Clear the buffers and close the transport."""
        self.reset_buffer()
        if self.sock is not None:
            try:
                self.sock.close()
            finally:
                self.sock = None

    # buffer state

    def save_state(self) -> None:
        """Push the buffers and summary so that a nested call can reuse the session."""
        self._states.append(
            _SessionState(
                summary=self.summary,
                send_packets=list(self.send_packets),
                in_buffer=bytes(self.in_buffer),
                out_buffer=bytes(self.out_buffer),
                index=self.index,
            )
        )

    def load_state(self) -> None:
        """Restore the most recently saved state, if any."""
        if not self._states:
            return
        state = self._states.pop()
        self.summary = state.summary
        self.send_packets = list(state.send_packets)
        self.in_buffer = bytearray(state.in_buffer)
        self.out_buffer = bytearray(state.out_buffer)
        self.index = state.index

    def reset_buffer(self) -> None:
        """Forget the summary, sent packets and both buffers."""
        self.summary = None
        self.send_packets = []
        self.in_buffer = bytearray()
        self.out_buffer.clear()
        self.index = 0

    def pending_output(self) -> bytes:
        """Return the bytes queued for the next write."""
        return bytes(self.out_buffer)

    # transport

    def write(self) -> None:
        """Send the output buffer as data packets split at the session data unit."""
        payload = bytes(self.out_buffer)
        if not payload:
            self._write_packet(new_data_packet(None))
            return
        segment = self.context.session_data_unit - 20
        if segment <= 0:
            raise SessionError("session data unit is too small")
        try:
            for start in range(0, len(payload), segment):
                self._write_packet(new_data_packet(payload[start : start + segment]))
        except OSError:
            self.out_buffer.clear()
            raise

    def _socket(self) -> socket.socket:
        if self.sock is None:
            raise SessionError("session is not connected")
        return self.sock

    def _write_packet(self, packet: AnyPacket) -> None:
        self.send_packets.append(packet)
        data = packet.to_bytes()
        _log.debug("Write packet: %s", data.hex())
        self._socket().sendall(data)

    def _recv_exact(self, count: int) -> bytes:
        sock = self._socket()
        chunks = bytearray()
        while len(chunks) < count:
            chunk = sock.recv(count - len(chunks))
            if not chunk:
                raise SessionError("connection closed by the server")
            chunks += chunk
        return bytes(chunks)

    def _read_packet_data(self) -> bytes:
        for _ in range(4):
            head = self._recv_exact(8)
            length = struct.unpack_from(">H", head)[0]
            if length < 8:
                raise SessionError("abnormal response")
            body = self._recv_exact(length - 8)
            if head[4] == PacketType.RESEND:
                for packet in self.send_packets:
                    self._socket().sendall(packet.to_bytes())
                continue
            data = head + body
            _log.debug("Read packet: %s", data.hex())
            return data
        raise SessionError("abnormal response")

    @staticmethod
    def _is_reset(packet: MarkerPacket) -> bool:
        if packet.marker_type == 0:
            return False
        if packet.marker_type == 1:
            return packet.marker_data == 2
        raise SessionError("unknown marker type")

    def _read_packet(self) -> Optional[AnyPacket]:
        data = self._read_packet_data()
        packet_type = data[4]
        if packet_type == PacketType.ACCEPT:
            return parse_accept_packet(data)
        if packet_type == PacketType.REFUSE:
            return parse_refuse_packet(data)
        if packet_type == PacketType.REDIRECT:
            return self._read_redirect(data)
        if packet_type == PacketType.DATA:
            return parse_data_packet(data)
        if packet_type == PacketType.MARKER:
            self._handle_marker(data)
        return None

    def _read_redirect(self, data: bytes) -> RedirectPacket:
        packet = parse_redirect_packet(data)
        if packet is None:
            raise SessionError("abnormal redirect packet")
        data_len = struct.unpack_from(">H", data, 8)[0]
        if packet.packet.length <= packet.packet.data_offset:
            data_packet = parse_data_packet(self._read_packet_data())
            if data_packet is None:
                raise SessionError("the packet received is not data packet")
            raw = data_packet.buffer
        else:
            raw = data[10 : 10 + data_len]
        text = bytes(raw).decode("utf-8", errors="replace")
        split = text.find("\x00")
        if packet.packet.flag & 2 and split > 0:
            packet.redirect_addr = text[:split]
            packet.reconnect_data = text[split:]
        else:
            packet.redirect_addr = text
        return packet

    def _handle_marker(self, data: bytes) -> None:
        marker = parse_marker_packet(data)
        if marker is None:
            raise SessionError("connection break")
        reset = self._is_reset(marker)
        trials = 1
        while not reset:
            if trials > 3:
                raise SessionError("connection break")
            marker = parse_marker_packet(self._read_packet_data())
            if marker is None:
                raise SessionError("connection break")
            reset = self._is_reset(marker)
            trials += 1
        self.reset_buffer()
        self._write_packet(new_marker_packet(2))
        data_packet = parse_data_packet(self._read_packet_data())
        if data_packet is None:
            raise SessionError("connection break")
        self.in_buffer = bytearray(data_packet.buffer)
        self.index = 0
        if self.get_byte() == 4:
            self.summary = read_summary(self)
            if self.has_error():
                raise SessionError(self.get_error())

    def _read(self, count: int) -> bytes:
        while self.index + count > len(self.in_buffer):
            packet = self._read_packet()
            if not isinstance(packet, DataPacket):
                raise SessionError("the packet received is not data packet")
            self.in_buffer += packet.buffer
        chunk = bytes(self.in_buffer[self.index : self.index + count])
        self.index += count
        return chunk

    # errors

    def has_error(self) -> bool:
        return self.summary is not None and self.summary.ret_code != 0

    def get_error(self) -> str:
        """Return the server's error message from the last summary, or ''."""
        if not self.has_error():
            return ""
        message = self.summary.error_message or b""
        if self.str_conv is not None:
            return self.str_conv.decode(message)
        return message.decode("utf-8", errors="replace")

    # output marshalling

    def put_bytes(self, *args: Union[int, bytes, bytearray]) -> None:
        """Append bytes given as integers and/or byte strings."""
        for item in args:
            if isinstance(item, int):
                self.out_buffer.append(item)
            else:
                self.out_buffer += bytes(item)

    def put_uint(self, number: int, size: int, big_endian: bool, compress: bool) -> None:
        num = int(number) % _UINT64
        if size == 1:
            self.out_buffer.append(num & 0xFF)
            return
        if compress:
            significant = num.to_bytes(8, "big").lstrip(b"\x00")
            size = min(size, len(significant))
            if size == 0:
                self.out_buffer.append(0)
            else:
                self.out_buffer.append(size)
                self.out_buffer += significant
            return
        self.out_buffer += _fixed_width(num, size, big_endian)

    def put_int(self, number: int, size: int, big_endian: bool, compress: bool) -> None:
        num = _as_int64(int(number))
        if compress:
            significant = abs(num).to_bytes(8, "big").lstrip(b"\x00")
            size = min(size, len(significant))
            if size == 0:
                self.out_buffer.append(0)
            else:
                self.out_buffer.append(size | 0x80 if num < 0 else size)
                self.out_buffer += significant
            return
        if size == 1:
            self.out_buffer.append(num & 0xFF)
            return
        self.out_buffer += _fixed_width(num, size, big_endian)

    def put_clr(self, data: Optional[bytes]) -> None:
        """Append data as a chunked length-prefixed value."""
        data = bytes(data or b"")
        if not data:
            self.out_buffer.append(0)
            return
        long_form = len(data) > 0x40
        if long_form:
            self.out_buffer.append(0xFE)
        for start in range(0, len(data), 0x40):
            chunk = data[start : start + 0x40]
            self.out_buffer.append(len(chunk))
            self.out_buffer += chunk
        if long_form:
            self.out_buffer.append(0)

    def put_key_val_string(self, key: str, val: str, num: int) -> None:
        self.put_key_val(key.encode("utf-8"), val.encode("utf-8"), num)

    def put_key_val(self, key: Optional[bytes], val: Optional[bytes], num: int) -> None:
        for item in (key, val):
            if not item:
                self.out_buffer.append(0)
            else:
                self.put_uint(len(item), 4, True, True)
                self.put_clr(item)
        self.put_int(num, 4, True, True)

    # input unmarshalling

    def get_byte(self) -> int:
        return self._read(1)[0]

    def get_int64(self, size: int, compress: bool, big_endian: bool) -> int:
        negative = False
        if compress:
            size = self._read(1)[0]
            if size & 0x80:
                negative = True
                size &= 0x7F
            big_endian = True
        if size == 0:
            return 0
        if size > 8:
            raise SessionError(f"integer field of {size} bytes is too large")
        raw = self._read(size)
        value = _as_int64(int.from_bytes(raw, "big" if big_endian else "little"))
        return -value if negative else value

    def get_int(self, size: int, compress: bool, big_endian: bool) -> int:
        return self.get_int64(size, compress, big_endian)

    def get_null_term_string(self, max_size: int) -> str:
        """Read up to max_size bytes and return the text before the first NUL."""
        start = self.index
        raw = self._read(max_size)
        end = raw.find(b"\x00")
        if end > 0:
            self.index = start + end + 1
            raw = raw[:end]
        return raw.decode("utf-8", errors="replace")

    def get_clr(self) -> Optional[bytes]:
        """Read a chunked length-prefixed value; None for a null value."""
        size = self.get_byte()
        if size == 253:
            raise SessionError("TTC error")
        if size in (0, 0xFF):
            return None
        if size != 0xFE:
            return self._read(size)
        output = bytearray()
        while True:
            chunk_size = self.get_byte()
            if chunk_size == 0:
                break
            output += self._read(chunk_size)
        return bytes(output)

    def get_dlc(self) -> Optional[bytes]:
        """Read a length followed by a chunked value truncated to that length."""
        length = self.get_int(4, True, True)
        if length <= 0:
            return None
        output = self.get_clr()
        if output is not None and len(output) > length:
            output = output[:length]
        return output

    def get_bytes(self, length: int) -> bytes:
        return self._read(length)

    def get_key_val(self) -> tuple[Optional[bytes], Optional[bytes], int]:
        key = self.get_dlc()
        val = self.get_dlc()
        num = self.get_int(4, True, True)
        return key, val, num