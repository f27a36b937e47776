"""Oracle TNS/TTC wire protocol building blocks: packets, sessions, marshalling,
type negotiation, version query and LOB reads."""

__version__ = "0.1.0"