"""Wire format of the daemon protocol and blocking socket helpers.

A message is an 8-byte header followed by a data segment. The header holds
the data segment's byte length (uint32), a command code (uint16) and a tag
(uint16) the client may use to match replies to requests. All integers are
little-endian.
"""

from __future__ import annotations

import os
import socket
import struct
from dataclasses import dataclass, field
from enum import IntEnum

__all__ = [
    "HEADER_SIZE",
    "MSG_BUFSIZ",
    "MSG_DATA_MAX",
    "SOCKET_PATH_MAX",
    "SYS_FLEXALLOC_TYPE",
    "SYS_FLEXALLOC_V1",
    "Message",
    "MessageCommand",
    "MessageHeader",
    "ProtocolError",
    "SysIdentity",
    "recv_msg",
    "send_bytes",
    "send_msg",
    "socket_address",
]

_HEADER = struct.Struct("<IHH")
_IDENTITY = struct.Struct("<II")

HEADER_SIZE = _HEADER.size
#: Maximum number of bytes in a message's data segment.
MSG_DATA_MAX = 2048
#: Every message must fit within a buffer of this size.
MSG_BUFSIZ = HEADER_SIZE + MSG_DATA_MAX
#: Longest UNIX socket path accepted (the platform's sun_path less its terminator).
SOCKET_PATH_MAX = 107

SYS_FLEXALLOC_TYPE = 1000
SYS_FLEXALLOC_V1 = 1

_U16_MAX = 0xFFFF
_U32_MAX = 0xFFFFFFFF
_SEND_FLAGS = getattr(socket, "MSG_NOSIGNAL", 0)


class ProtocolError(Exception):
    """Raised when a message violates the protocol or the peer goes away."""


class MessageCommand(IntEnum):
    """Command codes carried in the message header."""

    IDENTIFY = 1
    SYNC = 2
    POOL_OPEN = 3
    POOL_CLOSE = 4
    POOL_CREATE = 5
    POOL_DESTROY = 6
    POOL_SET_ROOT_OBJECT = 7
    POOL_GET_ROOT_OBJECT = 8
    OBJECT_OPEN = 9
    OBJECT_CREATE = 10
    OBJECT_DESTROY = 11
    SYNC_NO_RSPS = 12
    INIT_INFO = 30
    NULL = _U16_MAX


def _as_command(cmd: int) -> int:
    try:
        return MessageCommand(cmd)
    except ValueError:
        return cmd


@dataclass(frozen=True)
class MessageHeader:
    """Fixed-size header preceding each message's data segment."""

    length: int
    cmd: int
    tag: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.length <= _U32_MAX:
            raise ValueError(f"header length {self.length} out of range")
        if not 0 <= self.cmd <= _U16_MAX:
            raise ValueError(f"header command {self.cmd} out of range")
        if not 0 <= self.tag <= _U16_MAX:
            raise ValueError(f"header tag {self.tag} out of range")

    def pack(self) -> bytes:
        """Return the header's wire bytes."""
        return _HEADER.pack(self.length, self.cmd, self.tag)

    @classmethod
    def unpack(cls, data: bytes | bytearray | memoryview) -> "MessageHeader":
        """Parse a header from the first bytes of ``data``."""
        if len(data) < HEADER_SIZE:
            raise ProtocolError(
                f"expected a message header of {HEADER_SIZE} bytes, got {len(data)} bytes"
            )
        length, cmd, tag = _HEADER.unpack_from(bytes(data[:HEADER_SIZE]))
        return cls(length=length, cmd=_as_command(cmd), tag=tag)


@dataclass(frozen=True)
class Message:
    """A command with its data segment and correlation tag."""

    cmd: int
    data: bytes = field(default=b"")
    tag: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", bytes(self.data))
        object.__setattr__(self, "cmd", _as_command(self.cmd))
        if len(self.data) > MSG_DATA_MAX:
            raise ProtocolError(
                f"message data of {len(self.data)} bytes exceeds limit of {MSG_DATA_MAX} bytes"
            )

    @property
    def header(self) -> MessageHeader:
        """The header describing this message."""
        return MessageHeader(length=len(self.data), cmd=self.cmd, tag=self.tag)

    def pack(self) -> bytes:
        """Return the message's wire bytes: header then data."""
        return self.header.pack() + self.data

    def reply(self, data: bytes = b"") -> "Message":
        """Build a reply carrying this message's command and tag."""
        return Message(cmd=self.cmd, data=data, tag=self.tag)


@dataclass(frozen=True)
class SysIdentity:
    """Identity a daemon reports about itself."""

    type: int = SYS_FLEXALLOC_TYPE
    version: int = SYS_FLEXALLOC_V1

    def pack(self) -> bytes:
        """Return the identity's wire bytes."""
        return _IDENTITY.pack(self.type, self.version)

    @classmethod
    def unpack(cls, data: bytes | bytearray | memoryview) -> "SysIdentity":
        """Parse an identity from the first bytes of ``data``."""
        if len(data) < _IDENTITY.size:
            raise ProtocolError(
                f"expected an identity of {_IDENTITY.size} bytes, got {len(data)} bytes"
            )
        ident_type, version = _IDENTITY.unpack_from(bytes(data[: _IDENTITY.size]))
        return cls(type=ident_type, version=version)


def socket_address(path: str | os.PathLike[str]) -> str:
    """Validate ``path`` as a UNIX socket address and return it as a string."""
    text = os.fspath(path)
    if len(os.fsencode(text)) > SOCKET_PATH_MAX:
        raise ValueError("socket path too long")
    return text


def send_bytes(sock: socket.socket, data: bytes | bytearray | memoryview) -> None:
    """Send all of ``data`` over ``sock``."""
    view = memoryview(bytes(data))
    while view:
        sent = sock.send(view, _SEND_FLAGS)
        if sent <= 0:
            raise ProtocolError("peer stopped accepting data")
        view = view[sent:]


def send_msg(sock: socket.socket, msg: Message) -> None:
    """Send ``msg`` over ``sock``."""
    send_bytes(sock, msg.pack())


def _recv_exact(sock: socket.socket, n: int, what: str) -> bytes:
    chunks = bytearray()
    while len(chunks) < n:
        chunk = sock.recv(n - len(chunks))
        if not chunk:
            raise ProtocolError(
                f"connection closed while receiving {what} "
                f"({len(chunks)} of {n} bytes received)"
            )
        chunks += chunk
    return bytes(chunks)


def recv_msg(sock: socket.socket) -> Message:
    """Receive one message from ``sock``."""
    header = MessageHeader.unpack(_recv_exact(sock, HEADER_SIZE, "message header"))
    if header.length > MSG_DATA_MAX:
        raise ProtocolError(
            f"invalid message, hdr{{cmd: {int(header.cmd)}, len: {header.length}}}, "
            f"max len is: {MSG_DATA_MAX}"
        )
    data = _recv_exact(sock, header.length, "message payload") if header.length else b""
    if header.cmd == MessageCommand.NULL:
        raise ProtocolError("received message without a command")
    return Message(cmd=header.cmd, data=data, tag=header.tag)