"""Call summary and warning records read from the wire after each server call."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol


class _Reader(Protocol):
    has_eos_capability: bool
    has_fsap_capability: bool

    def get_byte(self) -> int: ...

    def get_int(self, size: int, compress: bool, big_endian: bool) -> int: ...

    def get_clr(self) -> Optional[bytes]: ...

    def get_dlc(self) -> Optional[bytes]: ...


@dataclass
class BindError:
    """Error reported for one element of an array bind."""

    error_code: int = 0
    row_offset: int = 0
    error_message: Optional[bytes] = None


@dataclass
class SummaryObject:
    """Status block that closes a server call."""

    end_of_call_status: int = 0
    end_to_end_ecid_sequence: int = 0
    cur_row_number: int = 0
    ret_code: int = 0
    array_elm_w_error: int = 0
    array_elm_errno: int = 0
    cursor_id: int = 0
    error_pos: int = 0
    sql_type: int = 0
    oer_fatal: int = 0
    flags: int = 0
    user_cursor_opt: int = 0
    upi_param: int = 0
    warning_flag: int = 0
    rba: int = 0
    partition_id: int = 0
    table_id: int = 0
    block_number: int = 0
    slot_number: int = 0
    os_error: int = 0
    stmt_number: int = 0
    call_number: int = 0
    pad1: int = 0
    success_iter: int = 0
    error_message: Optional[bytes] = None
    bind_errors: list[BindError] = field(default_factory=list)


@dataclass
class WarningObject:
    """Warning returned by the server, e.g. during logon."""

    ret_code: int = 0
    flag: int = 0
    error_message: str = ""


def _bind_error(errors: list[BindError], index: int) -> BindError:
    if index >= len(errors):
        raise ValueError("bind error entry received without a matching error code")
    return errors[index]


def read_summary(session: _Reader) -> SummaryObject:
    """Read a summary record from the session's input."""
    result = SummaryObject()
    if session.has_eos_capability:
        result.end_of_call_status = session.get_int(4, True, True)
    if session.has_fsap_capability:
        result.end_to_end_ecid_sequence = session.get_int(2, True, True)
    result.cur_row_number = session.get_int(4, True, True)
    result.ret_code = session.get_int(2, True, True)
    result.array_elm_w_error = session.get_int(2, True, True)
    result.array_elm_errno = session.get_int(2, True, True)
    result.cursor_id = session.get_int(2, True, True)
    result.error_pos = session.get_int(2, True, True)
    result.sql_type = session.get_byte()
    result.oer_fatal = session.get_byte()
    result.flags = session.get_int(2, True, True)
    result.user_cursor_opt = session.get_int(2, True, True)
    result.upi_param = session.get_byte()
    result.warning_flag = session.get_byte()
    result.rba = session.get_int(4, True, True)
    result.partition_id = session.get_int(2, True, True)
    result.table_id = session.get_byte()
    result.block_number = session.get_int(4, True, True)
    result.slot_number = session.get_int(2, True, True)
    result.os_error = session.get_int(4, True, True)
    result.stmt_number = session.get_byte()
    result.call_number = session.get_byte()
    result.pad1 = session.get_int(2, True, True)
    result.success_iter = session.get_int(4, True, True)
    session.get_dlc()

    count = session.get_int(2, True, True)
    if count > 0:
        result.bind_errors = [BindError() for _ in range(count)]
        chunked = session.get_byte() == 0xFE
        for entry in result.bind_errors:
            if chunked:
                session.get_byte()
            entry.error_code = session.get_int(2, True, True)
        if chunked:
            session.get_byte()

    count = session.get_int(4, True, True)
    if count > 0:
        chunked = session.get_byte() == 0xFE
        for index in range(count):
            if chunked:
                session.get_byte()
            _bind_error(result.bind_errors, index).row_offset = session.get_int(4, True, True)
        if chunked:
            session.get_byte()

    count = session.get_int(2, True, True)
    if count > 0:
        session.get_byte()
        for index in range(count):
            session.get_int(2, True, True)
            _bind_error(result.bind_errors, index).error_message = session.get_clr()
            session.get_byte()
            session.get_byte()

    if result.ret_code != 0:
        result.error_message = session.get_clr()
    return result


def read_warning(session: _Reader) -> Optional[WarningObject]:
    """Read a warning record; None when it carries no warning."""
    ret_code = session.get_int(2, True, True)
    length = session.get_int(2, True, True)
    flag = session.get_int(2, True, True)
    if ret_code == 0 or length == 0:
        return None
    message = session.get_clr() or b""
    return WarningObject(
        ret_code=ret_code,
        flag=flag,
        error_message=message.decode("utf-8", errors="replace"),
    )