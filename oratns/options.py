"""Connection options, client identity and the network session context."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

DEFAULT_ADDRESS = (
    "(Description=(Address=(Protocol=tcp)(IP=loopback)(port=1521))(CONNECT_DATA=(SID="
)


@dataclass
class ClientData:
    """Identity of the client program announced to the server."""

    program_path: str = ""
    program_name: str = ""
    user_name: str = ""
    host_name: str = ""
    driver_name: str = ""
    pid: int = 0


@dataclass
class ConnectionOption:
    """Everything needed to reach a server and describe the client to it."""

    port: int = 0
    transport_connect_to: int = 0xFFFF
    ssl_version: str = ""
    wallet_dict: str = ""
    transport_data_unit_size: int = 0xFFFF
    session_data_unit_size: int = 0xFFFF
    protocol: str = "tcp"
    host: str = ""
    user_id: str = ""
    sid: str = ""
    service_name: str = ""
    instance_name: str = ""
    domain_name: str = ""
    db_name: str = ""
    client_data: ClientData = field(default_factory=ClientData)
    conn_data: str = ""
    prefetch_rows: int = 0

    def connection_data(self) -> str:
        """Return the connect descriptor sent in the connect packet."""
        if self.conn_data:
            return self.conn_data
        client = self.client_data
        full_cid = (
            f"(CID=(PROGRAM={client.program_path})"
            f"(HOST={client.host_name})(USER={client.user_name}))"
        )
        address = f"(ADDRESS=(PROTOCOL={self.protocol})(HOST={self.host})(PORT={self.port}))"
        connect = "(CONNECT_DATA="
        if self.sid:
            connect += f"(SID={self.sid})"
        else:
            connect += f"(SERVICE_NAME={self.service_name})"
        if self.instance_name:
            connect += f"(INSTANCE_NAME={self.instance_name})"
        connect += full_cid
        return f"(DESCRIPTION={address}{connect}))"


@dataclass
class SessionContext:
    """Negotiated parameters of a network session."""

    connection_option: ConnectionOption = field(default_factory=ConnectionOption)
    sid: Optional[bytes] = None
    version: int = 0
    lo_version: int = 0
    options: int = 0
    negotiated_options: int = 0
    our_one: int = 0
    histone: int = 0
    recon_addr: str = ""
    acfl0: int = 0
    acfl1: int = 0
    session_data_unit: int = 0
    transport_data_unit: int = 0
    using_async_receivers: bool = False
    is_nt_connected: bool = False
    on_break_reset: bool = False
    got_reset: bool = False


@dataclass
class AddressResolution:
    """A resolved instance name and TNS address."""

    instance_name: str = ""
    tns_address: str = ""


def new_session_context(option: ConnectionOption) -> SessionContext:
    """Create the initial session context proposed by the client."""
    return SessionContext(
        connection_option=option,
        session_data_unit=option.session_data_unit_size,
        transport_data_unit=option.transport_data_unit_size,
        version=312,
        lo_version=300,
        options=1 | 1024 | 2048,
        our_one=1,
    )