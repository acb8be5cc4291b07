"""UNIX-socket daemon serving protocol messages to a bounded set of clients."""

from __future__ import annotations

import logging
import os
import selectors
import socket
import sys
from typing import Callable

from flexpool.protocol import (
    Message,
    ProtocolError,
    SysIdentity,
    recv_msg,
    send_msg,
    socket_address,
)

__all__ = ["Daemon", "DaemonError", "MessageHandler", "identity_response_data", "identify_response", "max_open_files"]

logger = logging.getLogger(__name__)

#: Called for every message received; raising disconnects the client.
MessageHandler = Callable[["Daemon", socket.socket, Message], None]


class DaemonError(Exception):
    """Raised when the daemon cannot be set up or its server loop fails."""


def max_open_files() -> int:
    """Return the maximum number of files this process may have open."""
    return os.sysconf("SC_OPEN_MAX")


def identity_response_data(daemon: "Daemon") -> bytes:
    """Return the data segment of a reply to an identify request."""
    return daemon.identity.pack()


def identify_response(daemon: "Daemon", conn: socket.socket, request: Message) -> None:
    """Reply to an identify request with the daemon's identity."""
    send_msg(conn, request.reply(identity_response_data(daemon)))


class Daemon:
    """Listening UNIX socket that dispatches each received message to a handler.

    ``max_clients`` counts the listening socket too, so at most
    ``max_clients - 1`` clients are connected at any one time.
    """

    #: Seconds the server loop waits for activity before checking ``keep_running``.
    poll_interval = 1.0

    def __init__(
        self,
        socket_path: str | os.PathLike[str],
        on_msg: MessageHandler,
        max_clients: int,
        conn_queue_length: int,
        identity: SysIdentity | None = None,
    ) -> None:
        if max_clients < 1:
            raise ValueError("max_clients must be at least 1")
        path = socket_address(socket_path)
        if os.path.lexists(path):
            raise DaemonError(f"file already exists at proposed UNIX socket path {path!r}")

        self.socket_path = path
        self.on_msg = on_msg
        self.max_clients = max_clients
        self.identity = identity if identity is not None else SysIdentity()
        self._bound = False

        try:
            self._listener: socket.socket | None = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        except OSError as exc:
            raise DaemonError(f"socket(): {exc}") from exc

        try:
            self._listener.bind(path)
        except OSError as exc:
            self._listener.close()
            self._listener = None
            raise DaemonError(f"bind(): {exc}") from exc
        self._bound = True

        try:
            self._listener.listen(conn_queue_length)
        except OSError as exc:
            self.close()
            raise DaemonError(f"listen(): {exc}") from exc
        self._listener.setblocking(False)

    def __enter__(self) -> "Daemon":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the listening socket and remove the socket file; safe to repeat."""
        if self._listener is not None:
            try:
                self._listener.close()
            except OSError as exc:
                raise DaemonError(f"close(): {exc}") from exc
            self._listener = None
        if self._bound:
            try:
                os.unlink(self.socket_path)
            except FileNotFoundError:
                pass
            except OSError as exc:
                raise DaemonError(f"failed to remove socket file: {exc}") from exc
            self._bound = False

    def serve(self, keep_running: Callable[[], bool]) -> None:
        """Run the server loop until ``keep_running()`` is false and all clients quit."""
        if self._listener is None:
            raise DaemonError("daemon is closed")
        if not keep_running():
            raise ValueError("keep_running is already unset")

        selector = selectors.DefaultSelector()
        selector.register(self._listener, selectors.EVENT_READ, None)
        clients: set[socket.socket] = set()
        try:
            while keep_running() or clients:
                events = selector.select(self.poll_interval)
                if not events:
                    if not keep_running():
                        print(f"waiting for {len(clients)} clients to quit", file=sys.stderr)
                        if not clients:
                            return
                    continue
                for key, _ in events:
                    if key.data is None:
                        self._accept(selector, clients)
                    else:
                        self._handle(selector, key.fileobj, clients)
        finally:
            for conn in clients:
                selector.unregister(conn)
                conn.close()
            selector.close()

    def _accept(self, selector: selectors.BaseSelector, clients: set[socket.socket]) -> None:
        assert self._listener is not None
        try:
            conn, _ = self._listener.accept()
        except BlockingIOError:
            return
        except OSError as exc:
            raise DaemonError(f"error accepting new client connection: {exc}") from exc

        if len(clients) >= self.max_clients - 1:
            logger.error("too many clients! All %d slots taken", self.max_clients)
            conn.close()
            return

        conn.setblocking(True)
        logger.debug("new client, socket %d", conn.fileno())
        clients.add(conn)
        selector.register(conn, selectors.EVENT_READ, True)

    def _disconnect(
        self, selector: selectors.BaseSelector, conn: socket.socket, clients: set[socket.socket]
    ) -> None:
        logger.debug("disconnect client %d", conn.fileno())
        clients.discard(conn)
        selector.unregister(conn)
        conn.close()

    def _handle(
        self, selector: selectors.BaseSelector, conn: socket.socket, clients: set[socket.socket]
    ) -> None:
        try:
            request = recv_msg(conn)
        except (ProtocolError, OSError) as exc:
            logger.debug("socket %d: %s", conn.fileno(), exc)
            self._disconnect(selector, conn, clients)
            return

        try:
            self.on_msg(self, conn, request)
        except Exception:
            logger.exception("on_msg handler failed, dropping client")
            self._disconnect(selector, conn, clients)

    def __repr__(self) -> str:
        return f"Daemon(socket_path={self.socket_path!r}, max_clients={self.max_clients})"