import socket
import struct

import pytest

from oratns.lob import Lob
from oratns.options import ConnectionOption
from oratns.packets import new_data_packet
from oratns.session import Session, SessionError


def _recv_exact(sock, count):
    data = b""
    while len(data) < count:
        chunk = sock.recv(count - len(data))
        assert chunk
        data += chunk
    return data


def _recv_payload(sock):
    head = _recv_exact(sock, 8)
    length = struct.unpack(">H", head[:2])[0]
    body = _recv_exact(sock, length - 8)
    return body[2:]


def _compressed(value: int) -> bytes:
    significant = value.to_bytes(8, "big").lstrip(b"\x00")
    return bytes([len(significant)]) + significant


def _summary(ret_code: int, message: bytes = b"") -> bytes:
    data = b"\x00" + _compressed(ret_code) + bytes(24)
    if ret_code:
        data += bytes([len(message)]) + message
    return data


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


def _send(peer, payload):
    peer.sendall(new_data_packet(payload).to_bytes())


def test_locator_flags():
    assert Lob(source_locator=bytes([0, 0, 0, 0, 0, 0, 0x80, 0x40])).variable_width_char()
    assert Lob(source_locator=bytes([0, 0, 0, 0, 0, 0, 0x80, 0x40])).little_endian_clob()
    assert not Lob(source_locator=bytes(8)).variable_width_char()
    assert not Lob(source_locator=bytes(8)).little_endian_clob()
    assert not Lob(source_locator=b"\xff" * 6).variable_width_char()


def test_get_size_request_and_reply(pair):
    session, peer = pair
    lob = Lob(source_locator=b"\x01\x02")
    _send(peer, b"\x08" + b"\x01\x02" + _compressed(5) + b"\x09")
    assert lob.get_size(session) == 5
    assert _recv_payload(peer) == bytes(
        [3, 0x60, 0, 1, 1, 2, 0, 0, 0, 0, 0, 1, 0, 1, 1, 0, 0, 1, 2, 0]
    )


def test_get_data_single_chunk(pair):
    session, peer = pair
    lob = Lob(source_locator=b"\x01\x02")
    _send(peer, b"\x0e\x03abc" + b"\x08\x01\x02" + _compressed(3) + b"\x09")
    assert lob.get_data(session) == b"abc"
    assert lob.size == 3
    assert lob.source_offset == 1


def test_get_data_chunked(pair):
    session, peer = pair
    lob = Lob(source_locator=b"\x07")
    _send(peer, b"\x0e\xfe\x02ab\x03cde\x00" + _summary(0))
    assert lob.get_data(session) == b"abcde"
    assert session.summary is not None
    assert session.summary.ret_code == 0


def test_no_data_found_clears_summary(pair):
    session, peer = pair
    lob = Lob(source_locator=b"\x07")
    _send(peer, _summary(1403, b"no data"))
    lob.read(session)
    assert session.summary is None


def test_server_error_raises(pair):
    session, peer = pair
    lob = Lob(source_locator=b"\x07")
    _send(peer, _summary(942, b"table missing"))
    with pytest.raises(SessionError, match="table missing"):
        lob.read(session)


def test_unknown_message_raises(pair):
    session, peer = pair
    _send(peer, b"\x63")
    with pytest.raises(SessionError, match="TTC error"):
        Lob().read(session)


def test_eos_capability_sets_status(pair):
    session, peer = pair
    session.has_eos_capability = True
    _send(peer, b"\x09" + _compressed(7))
    Lob().read(session)
    assert session.summary.end_of_call_status == 7


def test_write_ttc3_uses_wide_offsets(pair):
    session, peer = pair
    session.ttc_version = 3
    lob = Lob(source_locator=b"\x01", source_offset=1)
    lob.write(session, 2)
    payload = _recv_payload(peer)
    assert payload[:3] == bytes([3, 0x60, 0])
    assert payload.endswith(b"\x01\x01" + b"\x00")
    assert b"\x01\x01\x00\x01\x01\x00\x00\x00\x00\x00\x01\x02" in payload


def test_charset_is_read_back(pair):
    session, peer = pair
    lob = Lob(source_locator=b"\x01", charset_id=1)
    _send(peer, b"\x08\x01" + _compressed(2000) + _compressed(4) + b"\x09")
    lob.read(session)
    assert lob.charset_id == 2000
    assert lob.size == 4