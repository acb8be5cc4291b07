"""Client side of the daemon protocol: connect, identify and exchange messages."""

from __future__ import annotations

import os
import socket

from flexpool.protocol import (
    Message,
    MessageCommand,
    ProtocolError,
    SysIdentity,
    recv_msg,
    send_msg,
    socket_address,
)

__all__ = ["ClientError", "DaemonClient"]


class ClientError(Exception):
    """Raised when talking to the daemon fails."""


class DaemonClient:
    """Connection to a daemon over its UNIX socket.

    Connecting also asks the daemon to identify itself; the answer is kept in
    ``server_identity``.
    """

    def __init__(self, socket_path: str | os.PathLike[str]) -> None:
        path = socket_address(socket_path)
        self.socket_path = path
        self._sock: socket.socket | None = None

        try:
            sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        except OSError as exc:
            raise ClientError(f"socket(): {exc}") from exc

        try:
            sock.connect(path)
        except OSError as exc:
            sock.close()
            raise ClientError(f"connect(): {exc}") from exc

        self._sock = sock
        try:
            self.server_identity: SysIdentity = self.identify()
        except ClientError:
            sock.close()
            self._sock = None
            raise

    @property
    def closed(self) -> bool:
        """Whether the connection has been closed."""
        return self._sock is None

    def send_recv(self, msg: Message) -> Message:
        """Send ``msg`` and return the daemon's reply."""
        if self._sock is None:
            raise ClientError("client is closed")
        try:
            send_msg(self._sock, msg)
        except (ProtocolError, OSError) as exc:
            raise ClientError(f"error sending message: {exc}") from exc
        try:
            return recv_msg(self._sock)
        except (ProtocolError, OSError) as exc:
            raise ClientError(f"error receiving message: {exc}") from exc

    def identify(self) -> SysIdentity:
        """Ask the daemon for its identity."""
        reply = self.send_recv(Message(cmd=MessageCommand.IDENTIFY))
        try:
            return SysIdentity.unpack(reply.data)
        except ProtocolError as exc:
            raise ClientError(f"invalid identify reply: {exc}") from exc

    def close(self) -> None:
        """Tell the daemon the client is leaving and close the connection; safe to repeat."""
        if self._sock is None:
            return
        sock, self._sock = self._sock, None
        try:
            send_msg(sock, Message(cmd=MessageCommand.SYNC_NO_RSPS))
        except (ProtocolError, OSError) as exc:
            raise ClientError(f"error sending close message: {exc}") from exc
        finally:
            sock.close()

    def __enter__(self) -> "DaemonClient":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"DaemonClient(socket_path={self.socket_path!r}, {state})"