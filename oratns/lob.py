"""Large object locators: querying their size and reading their content."""

from __future__ import annotations

from dataclasses import dataclass, field

from .session import Session, SessionError
from .summary import SummaryObject, read_summary


@dataclass
class Lob:
    """A large object addressed by its locator."""

    source_locator: bytes = b""
    dest_locator: bytes = b""
    scn: bytes = b""
    source_offset: int = 0
    dest_offset: int = 0
    charset_id: int = 0
    size: int = 0
    data: bytearray = field(default_factory=bytearray)

    def variable_width_char(self) -> bool:
        """True when the locator marks the content as variable-width characters."""
        return len(self.source_locator) > 6 and self.source_locator[6] & 128 == 128

    def little_endian_clob(self) -> bool:
        """True when the locator marks character content as little endian."""
        return len(self.source_locator) > 7 and self.source_locator[7] & 64 > 0

    def get_size(self, session: Session) -> int:
        """Ask the server for the length of the object."""
        self.write(session, 1)
        self.read(session)
        return self.size

    def get_data(self, session: Session) -> bytes:
        """Read the content of the object from its start."""
        self.source_offset = 1
        self.write(session, 2)
        self.read(session)
        return bytes(self.data)

    def write(self, session: Session, operation_id: int) -> None:
        """Send a LOB operation request."""
        session.reset_buffer()
        session.put_bytes(3, 0x60, 0)
        session.put_bytes(1 if self.source_locator else 0)
        session.put_uint(len(self.source_locator), 4, True, True)
        session.put_bytes(1 if self.dest_locator else 0)
        session.put_uint(len(self.dest_locator), 4, True, True)

        if session.ttc_version < 3:
            session.put_uint(self.source_offset, 4, True, True)
            session.put_uint(self.dest_offset, 4, True, True)
        else:
            session.put_bytes(0, 0)

        session.put_bytes(1 if self.charset_id != 0 else 0)
        session.put_bytes(1 if session.ttc_version < 3 else 0)
        session.put_bytes(0)
        session.put_int(operation_id, 4, True, True)
        session.put_bytes(1 if self.scn else 0)
        session.put_uint(len(self.scn), 4, True, True)

        if session.ttc_version >= 3:
            session.put_uint(self.source_offset, 8, True, True)
            session.put_int(self.dest_offset, 8, True, True)
            session.put_bytes(1)
        if session.ttc_version >= 4:
            session.put_bytes(0, 0, 0, 0, 0, 0)

        if self.source_locator:
            session.put_bytes(self.source_locator)
        if self.dest_locator:
            session.put_bytes(self.dest_locator)
        if self.charset_id != 0:
            session.put_uint(self.charset_id, 2, True, True)
        if session.ttc_version < 3:
            session.put_uint(self.size, 4, True, True)
        for value in self.scn:
            session.put_uint(value, 4, True, True)
        if session.ttc_version >= 3:
            session.put_uint(self.size, 8, True, True)
        session.write()

    def read(self, session: Session) -> None:
        """Read the server's answer to a LOB operation."""
        while True:
            message = session.get_byte()
            if message == 4:
                session.summary = read_summary(session)
                if session.has_error():
                    if session.summary.ret_code == 1403:
                        session.summary = None
                    else:
                        raise SessionError(session.get_error())
                return
            if message == 8:
                if self.source_locator:
                    session.get_bytes(len(self.source_locator))
                if self.dest_locator:
                    session.get_bytes(len(self.dest_locator))
                if self.charset_id != 0:
                    self.charset_id = session.get_int(2, True, True)
                width = 4 if session.ttc_version < 3 else 8
                self.size = session.get_int64(width, True, True)
            elif message == 9:
                if session.has_eos_capability:
                    if session.summary is None:
                        session.summary = SummaryObject()
                    session.summary.end_of_call_status = session.get_int(4, True, True)
                return
            elif message == 14:
                self.read_data(session)
            else:
                raise SessionError("TTC error")

    def read_data(self, session: Session) -> None:
        """Append one data message (single chunk or chunked) to the content."""
        chunk_size = session.get_byte()
        if chunk_size != 0xFE:
            self.data += session.get_bytes(chunk_size)
            return
        while True:
            chunk_size = session.get_byte()
            if chunk_size == 0:
                return
            self.data += session.get_bytes(chunk_size)