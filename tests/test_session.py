import socket
import struct
import threading

import pytest

from oratns.options import ConnectionOption, SessionContext
from oratns.packets import (
    AcceptPacket,
    Packet,
    PacketType,
    RefusePacket,
    new_data_packet,
    new_marker_packet,
    parse_data_packet,
)
from oratns.session import Session, SessionError
from oratns.summary import SummaryObject


def _recv_exact(sock, count):
    data = bytearray()
    while len(data) < count:
        chunk = sock.recv(count - len(data))
        if not chunk:
            raise ConnectionError("closed")
        data += chunk
    return bytes(data)


def _recv_packet(sock):
    head = _recv_exact(sock, 8)
    length = struct.unpack(">H", head[:2])[0]
    return head + _recv_exact(sock, length - 8)


def _feed(peer, payload):
    peer.sendall(new_data_packet(payload).to_bytes())


@pytest.fixture
def pair():
    left, right = socket.socketpair()
    left.settimeout(5)
    right.settimeout(5)
    session = Session(ConnectionOption())
    session.attach(left)
    yield session, right
    session.disconnect()
    right.close()


def _loop_back(session, peer):
    _feed(peer, session.pending_output())
    session.out_buffer.clear()


def test_put_uint_compressed_wire_bytes():
    session = Session(ConnectionOption())
    session.put_uint(0x100, 4, True, True)
    assert session.pending_output() == b"\x02\x01\x00"


def test_put_uint_zero_compressed_is_single_zero():
    session = Session(ConnectionOption())
    session.put_uint(0, 4, True, True)
    assert session.pending_output() == b"\x00"


def test_put_bytes_mixes_ints_and_bytes():
    session = Session(ConnectionOption())
    session.put_bytes(3, 0x5E, b"\x00\x01")
    assert session.pending_output() == bytes([3, 0x5E, 0, 1])


def test_put_bytes_rejects_out_of_range():
    session = Session(ConnectionOption())
    with pytest.raises(ValueError):
        session.put_bytes(256)


@pytest.mark.parametrize("value", [0, 1, 0x7F, 0xFFFF, 0x7FFFFFFF, 123456789])
def test_uint_compressed_round_trip(pair, value):
    session, peer = pair
    session.put_uint(value, 4, True, True)
    _loop_back(session, peer)
    assert session.get_int(4, True, True) == value


@pytest.mark.parametrize("value", [-1, -5, -300, 42, 0])
def test_int_compressed_round_trip(pair, value):
    session, peer = pair
    session.put_int(value, 4, True, True)
    _loop_back(session, peer)
    assert session.get_int(4, True, True) == value


@pytest.mark.parametrize("size,big_endian", [(2, True), (2, False), (4, True), (4, False), (8, False)])
def test_uint_fixed_width_round_trip(pair, size, big_endian):
    session, peer = pair
    session.put_uint(0x1234, size, big_endian, False)
    assert len(session.pending_output()) == size
    _loop_back(session, peer)
    assert session.get_int64(size, False, big_endian) == 0x1234


@pytest.mark.parametrize("data", [b"x", b"abc" * 10, bytes(range(200))])
def test_clr_round_trip(pair, data):
    session, peer = pair
    session.put_clr(data)
    _loop_back(session, peer)
    assert session.get_clr() == data


def test_empty_clr_reads_as_null(pair):
    session, peer = pair
    session.put_clr(b"")
    _loop_back(session, peer)
    assert session.get_clr() is None


def test_clr_253_is_error(pair):
    session, peer = pair
    _feed(peer, bytes([253]))
    with pytest.raises(SessionError):
        session.get_clr()


def test_key_val_round_trip(pair):
    session, peer = pair
    session.put_key_val_string("AUTH_PID", "123", 0)
    session.put_key_val(None, None, 0)
    _loop_back(session, peer)
    assert session.get_key_val() == (b"AUTH_PID", b"123", 0)
    assert session.get_key_val() == (None, None, 0)


def test_dlc_truncates_to_length(pair):
    session, peer = pair
    session.put_uint(2, 4, True, True)
    session.put_clr(b"xyz")
    _loop_back(session, peer)
    assert session.get_dlc() == b"xy"


def test_null_term_string(pair):
    session, peer = pair
    _feed(peer, b"abc\x00def")
    assert session.get_null_term_string(7) == "abc"
    assert session.get_byte() == ord("d")


def test_get_bytes_spans_packets(pair):
    session, peer = pair
    _feed(peer, b"abc")
    _feed(peer, b"def")
    assert session.get_bytes(5) == b"abcde"
    assert session.get_byte() == ord("f")


def test_write_sends_one_data_packet(pair):
    session, peer = pair
    session.put_bytes(b"hello")
    session.write()
    packet = parse_data_packet(_recv_packet(peer))
    assert packet.buffer == b"hello"


def test_write_empty_sends_bare_data_packet(pair):
    session, peer = pair
    session.write()
    assert _recv_packet(peer) == new_data_packet(None).to_bytes()


def test_write_splits_at_session_data_unit(pair):
    session, peer = pair
    session.context.session_data_unit = 30
    payload = bytes(range(25))
    session.put_bytes(payload)
    session.write()
    pieces = [parse_data_packet(_recv_packet(peer)).buffer for _ in range(3)]
    assert all(len(piece) <= 10 for piece in pieces)
    assert b"".join(pieces) == payload


def test_non_data_packet_is_error(pair):
    session, peer = pair
    refuse = RefusePacket(packet=Packet(data_offset=12, length=12, packet_type=PacketType.REFUSE))
    peer.sendall(refuse.to_bytes())
    with pytest.raises(SessionError):
        session.get_byte()


def test_resend_request_repeats_sent_packets(pair):
    session, peer = pair
    session.put_bytes(1, 2, 3)
    session.write()
    first = _recv_packet(peer)
    peer.sendall(Packet(length=8, packet_type=PacketType.RESEND).to_bytes())
    _feed(peer, b"\x07")
    assert session.get_byte() == 7
    assert _recv_packet(peer) == first


def test_marker_reset_answers_with_marker(pair):
    session, peer = pair
    peer.sendall(new_marker_packet(2).to_bytes())
    _feed(peer, b"\x05")
    with pytest.raises(SessionError):
        session.get_byte()
    assert _recv_packet(peer) == new_marker_packet(2).to_bytes()


def test_save_and_load_state_restores_buffers():
    session = Session(ConnectionOption())
    session.put_bytes(b"state")
    session.summary = SummaryObject(ret_code=1)
    session.save_state()
    session.reset_buffer()
    assert session.pending_output() == b""
    session.load_state()
    assert session.pending_output() == b"state"
    assert session.summary.ret_code == 1


def test_load_state_without_saved_state_keeps_buffers():
    session = Session(ConnectionOption())
    session.put_bytes(b"keep")
    session.load_state()
    assert session.pending_output() == b"keep"


def test_error_from_summary():
    session = Session(ConnectionOption())
    assert session.has_error() is False
    assert session.get_error() == ""
    session.summary = SummaryObject(ret_code=942, error_message=b"ORA-00942: missing table")
    assert session.has_error() is True
    assert session.get_error() == "ORA-00942: missing table"


def test_error_uses_string_converter():
    class Upper:
        def decode(self, data):
            return data.decode("ascii").upper()

    session = Session(ConnectionOption())
    session.str_conv = Upper()
    session.summary = SummaryObject(ret_code=1, error_message=b"bad")
    assert session.get_error() == "BAD"


def _serve_once(reply):
    server = socket.socket()
    server.bind(("127.0.0.1", 0))
    server.listen(1)
    server.settimeout(5)
    received = {}

    def run():
        conn, _ = server.accept()
        with conn:
            conn.settimeout(5)
            received["packet"] = _recv_packet(conn)
            conn.sendall(reply)

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    return server, thread, received


def test_connect_accepted():
    accept = AcceptPacket(
        packet=Packet(data_offset=32, length=32, packet_type=PacketType.ACCEPT),
        session_ctx=SessionContext(version=315, session_data_unit=8192, transport_data_unit=8192),
    )
    server, thread, received = _serve_once(accept.to_bytes())
    option = ConnectionOption(host="127.0.0.1", port=server.getsockname()[1], sid="XE")
    try:
        with Session(option) as session:
            session.connect()
            assert session.context.version == 315
            assert session.context.session_data_unit == 8192
        thread.join(5)
    finally:
        server.close()
    assert received["packet"][4] == PacketType.CONNECT
    assert option.connection_data().encode() in received["packet"]


def test_connect_refused():
    refuse = RefusePacket(packet=Packet(data_offset=12, length=12, packet_type=PacketType.REFUSE))
    server, thread, _ = _serve_once(refuse.to_bytes())
    option = ConnectionOption(host="127.0.0.1", port=server.getsockname()[1], sid="XE")
    try:
        with Session(option) as session:
            with pytest.raises(SessionError):
                session.connect()
        thread.join(5)
    finally:
        server.close()


def test_connect_rejects_unknown_protocol():
    session = Session(ConnectionOption(protocol="ipc", host="127.0.0.1", port=1))
    with pytest.raises(SessionError):
        session.connect()