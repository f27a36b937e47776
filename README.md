# oratns

`oratns` is a pure-Python toolkit for the Oracle TNS/TTC wire protocol. It
provides the low-level pieces a client uses to open a transport session with
an Oracle server and to exchange TTC messages over it. It has no
dependencies outside the standard library.

## What is inside

- `oratns.options`: `ConnectionOption`, `ClientData`, `SessionContext` and
  `AddressResolution`. `ConnectionOption.connection_data()` builds the
  `(DESCRIPTION=...)` connect descriptor. `new_session_context()` creates
  the context that the client proposes when it connects.
- `oratns.packets`: the `PacketType` enum and the packet classes `Packet`,
  `ConnectPacket`, `AcceptPacket`, `DataPacket`, `MarkerPacket`,
  `RedirectPacket` and `RefusePacket`. Each class has a `to_bytes()` method.
  The module also has builders (`new_connect_packet`, `new_data_packet`,
  `new_marker_packet`) and parsers (`parse_packet_header`,
  `parse_accept_packet`, `parse_data_packet`, `parse_marker_packet`,
  `parse_redirect_packet`, `parse_refuse_packet`). Parsers return `None`
  when the data is not a valid packet of their kind.
- `oratns.session`: the `Session` class and the `SessionError` exception.
  - **Connecting.** `Session.connect()` opens a TCP connection and sends the
    connect packet. It follows redirects and raises `SessionError` when the
    server refuses. `attach()` uses a socket that is already connected.
  - **Sending.** `write()` sends the output buffer as data packets, split at
    the session data unit.
  - **Marshalling.** The output primitives are `put_bytes`, `put_uint`,
    `put_int`, `put_clr`, `put_key_val` and `put_key_val_string`. The input
    primitives are `get_byte`, `get_int`, `get_int64`, `get_bytes`,
    `get_clr`, `get_dlc`, `get_key_val` and `get_null_term_string`.
  - **Buffers.** `save_state()` and `load_state()` push and restore the
    buffers. `pending_output()` returns the bytes that are queued for the
    next write.
  - A `Session` can be used as a context manager. It disconnects on exit.
- `oratns.summary`: `read_summary()` returns a `SummaryObject` built from the
  end-of-call status message, including its `BindError` entries.
  `read_warning()` returns a `WarningObject`, or `None` when the message
  carries no warning.
- `oratns.type_nego`: data type negotiation. `new_data_type_nego()` builds
  the client's `DataTypeNego` message. `build_type_nego()` sends it and
  reads the reply. `tz_bytes()` encodes the local UTC offset.
- `oratns.db_version`: `get_db_version()` asks the server for its version.
  `parse_version_number()` decodes the packed version number into a
  `DBVersion`.
- `oratns.lob`: `Lob` reads the size (`get_size`) and the content
  (`get_data`) of a large object through its locator.

## Installation

```
pip install .
```

## Examples

Building a connect descriptor:

```python
from oratns.options import ClientData, ConnectionOption

option = ConnectionOption(
    host="localhost",
    port=1521,
    service_name="XEPDB1",
    client_data=ClientData(program_path="app", host_name="localhost", user_name="user"),
)
print(option.connection_data())
```

Marshalling into a session's output buffer without a connection:

```python
from oratns.options import ConnectionOption
from oratns.session import Session

session = Session(ConnectionOption())
session.put_uint(0x100, 2, True, True)   # compressed: length byte, then value
session.put_clr(b"abc")                  # length-prefixed chunk
session.pending_output()                 # b'\x02\x01\x00\x03abc'
```

Framing a data packet:

```python
from oratns.packets import new_data_packet, parse_data_packet

raw = new_data_packet(b"hi").to_bytes()
parse_data_packet(raw).buffer            # b'hi'
```

Decoding a version number:

```python
from oratns.db_version import parse_version_number

parse_version_number(b"Oracle Database", 0x13000000).text   # '19.0.0.0.0'
```

## What it does not do

`oratns` covers these parts of the protocol:

- transport and session handling
- TTC marshalling
- data type negotiation
- the version query
- LOB reads

It does not do the following:

- log on or authenticate: there is no session-key exchange or password encryption
- encode or decode Oracle `NUMBER` and `DATE` column values
- parse, execute or fetch SQL statements
- provide a DB-API connection or cursor

## Running the tests

```
pip install .[test]
pytest
```