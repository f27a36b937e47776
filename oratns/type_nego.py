"""Data type negotiation: the client's type representations and capabilities."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from .session import Session, SessionError

_INITIAL_COMPILE_TIME_CAPS = bytes(
    [
        6, 1, 0, 0, 10, 1, 1, 6,
        1, 1, 1, 1, 1, 1, 0, 0x29,
        0x90, 3, 7, 3, 0, 1, 0, 0x6B,
        1, 0, 5, 1, 0, 0, 0, 0,
        0, 0, 0, 0, 1, 2,
    ]
)
_INITIAL_RUNTIME_CAP = bytes([2, 1, 0, 0, 0, 0, 0])


def _same(*spans: tuple[int, int]) -> list[tuple[int, int, int]]:
    """Types represented as themselves with representation 1, given as inclusive spans."""
    return [(t, t, 1) for first, last in spans for t in range(first, last + 1)]


_BASE_TYPES: list[tuple[int, int, int]] = (
    [(1, 1, 1), (2, 2, 10), (8, 8, 1), (12, 12, 10)]
    + _same(
        (23, 33), (10, 11), (40, 41), (117, 117), (120, 120),
        (290, 294), (298, 313), (315, 323), (327, 329), (331, 331),
        (333, 346), (348, 349), (354, 355), (359, 359), (363, 363),
        (380, 391), (393, 401), (404, 407), (413, 427), (429, 433),
        (449, 450), (454, 463), (466, 486), (490, 496), (498, 502),
        (509, 510), (513, 514), (516, 543), (560, 560), (565, 565),
        (572, 576), (578, 578), (580, 585),
    )
    + [
        (3, 2, 10), (4, 2, 10), (5, 1, 1), (6, 2, 10), (7, 2, 10), (9, 1, 1),
        (13, 0, 0), (14, 0, 0), (15, 23, 1), (16, 0, 0), (17, 0, 0), (18, 0, 0),
        (19, 0, 0), (20, 0, 0), (21, 0, 0), (22, 0, 0), (39, 120, 1), (58, 0, 0),
        (68, 2, 10), (69, 0, 0), (70, 0, 0), (74, 0, 0), (76, 0, 0), (91, 2, 10),
        (94, 1, 1), (95, 23, 1), (96, 96, 1), (97, 96, 1), (100, 100, 1),
        (101, 101, 1), (102, 102, 1), (104, 11, 1), (105, 0, 0), (106, 106, 1),
        (108, 109, 1), (109, 109, 1), (110, 111, 1), (111, 111, 1), (112, 112, 1),
        (113, 113, 1), (114, 114, 1), (115, 115, 1), (116, 102, 1), (118, 0, 0),
        (119, 0, 0), (121, 0, 0), (122, 0, 0), (123, 0, 0), (136, 0, 0),
        (146, 146, 1), (147, 0, 0), (152, 2, 10), (153, 2, 10), (154, 2, 10),
        (155, 1, 1), (156, 12, 10), (172, 2, 10),
    ]
    + _same((178, 183))
    + [(184, 12, 10)]
    + _same((185, 190))
    + [
        (191, 0, 0), (192, 0, 0), (195, 112, 1), (196, 113, 1), (197, 114, 1),
        (208, 208, 1), (209, 0, 0), (231, 231, 1), (232, 231, 1), (233, 233, 1),
        (241, 109, 1), (515, 0, 0),
    ]
)
_POST_1100_TYPES = _same((590, 592))


def _trunc_div(value: int, divisor: int) -> int:
    quotient = abs(value) // divisor
    return -quotient if value < 0 else quotient


def _local_offset_seconds() -> int:
    offset = datetime.now().astimezone().utcoffset()
    return int(offset.total_seconds()) if offset is not None else 0


def tz_bytes() -> bytes:
    """Encode the local UTC offset as the 11-byte time zone value."""
    offset = _local_offset_seconds()
    hours = _trunc_div(offset, 3600)
    minutes = _trunc_div(offset, 60) - _trunc_div(_trunc_div(offset, 60), 60) * 60
    seconds = offset - _trunc_div(offset, 60) * 60
    return bytes(
        [
            128, 0, 0, 0,
            (hours + 60) & 0xFF,
            (minutes + 60) & 0xFF,
            (seconds + 60) & 0xFF,
            128, 0, 0, 0,
        ]
    )


@dataclass
class DataTypeNego:
    """Client side of the data type negotiation message."""

    server_compile_time_caps: Optional[bytes] = None
    server_flags: int = 0
    server_ncharset: int = 0
    message_code: int = 2
    type_and_rep: list[int] = field(default_factory=list)
    runtime_type_and_rep: list[int] = field(default_factory=list)
    data_type_rep_for_1100: int = 0
    compile_time_caps: bytearray = field(
        default_factory=lambda: bytearray(_INITIAL_COMPILE_TIME_CAPS)
    )
    runtime_cap: bytearray = field(default_factory=lambda: bytearray(_INITIAL_RUNTIME_CAP))
    db_time_zone: bytes = b""

    def add_type_rep(self, dty: int, ndty: int, rep: int) -> None:
        """Append a type; types with a native type also carry a representation."""
        self.type_and_rep += [dty, ndty]
        if ndty != 0:
            self.type_and_rep += [rep, 0]

    def _server_cap(self, index: int) -> Optional[int]:
        caps = self.server_compile_time_caps
        if caps is None or len(caps) <= index:
            return None
        return caps[index]

    def to_bytes(self) -> bytes:
        """Marshal the negotiation message."""
        if not self._server_cap(27):
            self.compile_time_caps[27] = 0
        output = bytearray(
            [self.message_code, 0, 0, 0, 0, self.server_flags & 0xFF, len(self.compile_time_caps)]
        )
        output += self.compile_time_caps
        output.append(len(self.runtime_cap))
        output += self.runtime_cap
        if self.runtime_cap[1] & 1 == 1:
            output += tz_bytes()
            if self.compile_time_caps[37] & 2 == 2:
                output += bytes(4)
        output += (self.server_ncharset & 0xFFFF).to_bytes(2, "little")
        if self.compile_time_caps[27] == 0:
            output += bytes(value & 0xFF for value in self.runtime_type_and_rep)
            output.append(0)
        else:
            for value in self.runtime_type_and_rep:
                output += (value & 0xFFFF).to_bytes(2, "big")
            output += bytes(2)
        return bytes(output)


def new_data_type_nego(
    server_compile_time_caps: Optional[Sequence[int]],
    server_flags: int,
    server_ncharset: int,
) -> DataTypeNego:
    """Build the negotiation message for the server's capabilities."""
    caps = None if server_compile_time_caps is None else bytes(server_compile_time_caps)
    nego = DataTypeNego(
        server_compile_time_caps=caps,
        server_flags=server_flags,
        server_ncharset=server_ncharset,
    )
    cap37 = nego._server_cap(37)
    if cap37 is None or cap37 & 2 != 2:
        nego.compile_time_caps[37] = 0
        nego.compile_time_caps[1] = 0
    for dty, ndty, rep in _BASE_TYPES:
        nego.add_type_rep(dty, ndty, rep)
    nego.data_type_rep_for_1100 = len(nego.type_and_rep)
    for dty, ndty, rep in _POST_1100_TYPES:
        nego.add_type_rep(dty, ndty, rep)
    if nego._server_cap(7) == 5:
        nego.runtime_type_and_rep = nego.type_and_rep[: nego.data_type_rep_for_1100]
    else:
        nego.runtime_type_and_rep = list(nego.type_and_rep)
    return nego


def build_type_nego(
    server_compile_time_caps: Optional[Sequence[int]],
    server_flags: int,
    server_ncharset: int,
    session: Session,
) -> DataTypeNego:
    """Send the negotiation message and read the server's answer."""
    nego = new_data_type_nego(server_compile_time_caps, server_flags, server_ncharset)
    session.reset_buffer()
    session.put_bytes(nego.to_bytes())
    session.write()
    message = session.get_byte()
    if message != 2:
        raise SessionError(
            f"message code error: received code {message} and expected code is 2"
        )
    if nego.runtime_cap[1] == 1:
        nego.db_time_zone = session.get_bytes(11)
        if nego.compile_time_caps[37] & 2 == 2:
            session.get_int(4, False, False)

    level = 0
    while True:
        if nego.compile_time_caps[27] == 0:
            num = session.get_int(1, False, False)
        else:
            num = session.get_int(2, False, True)
        if num == 0 and level == 0:
            break
        if num == 0 and level == 1:
            level = 0
            continue
        if level == 3:
            level = 0
            continue
        level += 1
    return nego