"""Server version query and decoding of the packed version number."""

from __future__ import annotations

from dataclasses import dataclass

from .session import Session, SessionError


@dataclass
class DBVersion:
    """Version of the database server."""

    info: str = ""
    text: str = ""
    number: int = 0
    major_version: int = 0
    minor_version: int = 0
    patchset_version: int = 0
    is_db10g_r2_or_higher: bool = False
    is_db11g_r1_or_higher: bool = False


def parse_version_number(info: bytes | str, number: int) -> DBVersion:
    """Build a DBVersion from the banner and the packed 32-bit version number."""
    if isinstance(info, (bytes, bytearray)):
        info = bytes(info).decode("utf-8", errors="replace")
    major = number >> 24 & 0xFF
    minor = number >> 20 & 0xF
    release = number >> 12 & 0xF
    patchset = number >> 8 & 0xF
    port_update = number & 0xFF
    compact = (major * 1000 + minor * 100 + release * 10 + patchset) & 0xFFFF
    return DBVersion(
        info=info,
        text=f"{major}.{minor}.{release}.{patchset}.{port_update}",
        number=compact,
        major_version=major,
        minor_version=minor,
        patchset_version=patchset,
        is_db10g_r2_or_higher=major > 10 or (major == 10 and minor >= 2),
        is_db11g_r1_or_higher=major > 11 or (major == 11 and minor >= 1),
    )


def get_db_version(session: Session) -> DBVersion:
    """Ask the server for its version and decode the answer."""
    session.reset_buffer()
    session.put_bytes(3, 0x3B, 0)
    session.put_uint(1, 1, False, False)
    session.put_uint(0x100, 2, True, True)
    session.put_uint(1, 1, False, False)
    session.put_uint(1, 1, False, False)
    session.write()
    message = session.get_int(1, False, False)
    if message != 8:
        raise SessionError(
            f"message code error: received code {message} and expected code is 8"
        )
    length = session.get_int(2, True, True)
    info = session.get_bytes(length)
    number = session.get_int(4, True, True)
    return parse_version_number(info, number)