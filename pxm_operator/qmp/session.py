# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# pxm_operator/qmp/session.py
"""
Synchronous QMP session over a TCP socket.

QMP has no request ids: a reply belongs to the last command sent. The session
therefore allows exactly one command in flight; a second concurrent caller is
rejected instead of queued. Asynchronous events that QEMU interleaves with
replies are skipped so they never take a reply's place.

Usage:
    with QMPSession.open("192.168.1.100", 4444) as qmp:
        qmp.execute("query-status")
"""
from __future__ import annotations

import codecs
import json
import logging
import socket
import threading
from collections import deque
from typing import Any, Deque, Dict, Optional

from ..core.exceptions import QMPConnectionError, QMPProtocolError
from ..core.logger import Log
from ..core.logging_utils import safe_logger
from .models import QMPCommand, QMPGreeting, QMPReply

DEFAULT_CONNECT_TIMEOUT_S = 10.0
DEFAULT_READ_TIMEOUT_S = 60.0


class JSONStreamReader:
    """
    Decodes consecutive JSON objects from a socket.

    Works for newline-delimited and back-to-back objects alike: it buffers
    text until json's raw_decode can take one complete object off the front.
    """

    def __init__(self, sock: socket.socket, *, chunk_size: int = 65536, max_buffer: int = 16 * 1024 * 1024):
        self._sock = sock
        self._chunk_size = chunk_size
        self._max_buffer = max_buffer
        self._decoder = json.JSONDecoder()
        self._utf8 = codecs.getincrementaldecoder("utf-8")()
        self._buf = ""
        self._eof = False

    def read_message(self) -> Dict[str, Any]:
        while True:
            self._buf = self._buf.lstrip()
            if self._buf:
                try:
                    obj, end = self._decoder.raw_decode(self._buf)
                except json.JSONDecodeError as e:
                    if self._eof:
                        raise QMPConnectionError(f"malformed QMP message: {e}", cause=e) from e
                    if len(self._buf) > self._max_buffer:
                        raise QMPConnectionError(f"QMP message exceeds {self._max_buffer} bytes", cause=e) from e
                else:
                    self._buf = self._buf[end:]
                    if not isinstance(obj, dict):
                        raise QMPConnectionError(f"QMP message is not a JSON object: {obj!r}")
                    return obj
            elif self._eof:
                raise QMPConnectionError("QMP connection closed by peer")
            self._fill()

    def _fill(self) -> None:
        try:
            data = self._sock.recv(self._chunk_size)
        except socket.timeout as e:
            raise QMPConnectionError("timed out waiting for QMP message", cause=e) from e
        except OSError as e:
            raise QMPConnectionError(f"QMP read failed: {e}", cause=e) from e

        try:
            if not data:
                self._eof = True
                self._buf += self._utf8.decode(b"", final=True)
            else:
                self._buf += self._utf8.decode(data)
        except UnicodeDecodeError as e:
            raise QMPConnectionError(f"QMP stream is not valid UTF-8: {e}", cause=e) from e


class JSONStreamWriter:
    """Encodes one JSON object per line onto a socket."""

    def __init__(self, sock: socket.socket):
        self._sock = sock

    def write_message(self, obj: Dict[str, Any]) -> None:
        data = (json.dumps(obj, separators=(",", ":")) + "\n").encode("utf-8")
        try:
            self._sock.sendall(data)
        except socket.timeout as e:
            raise QMPConnectionError("timed out sending QMP command", cause=e) from e
        except OSError as e:
            raise QMPConnectionError(f"QMP write failed: {e}", cause=e) from e


class QMPSession:
    """
    One QMP connection: socket + reader/writer pair + negotiated greeting.

    Construct with `open()` (TCP) or `attach()` (an already connected socket);
    both run the handshake and close the socket if it fails.
    """

    def __init__(self, sock: socket.socket, *, logger: Optional[logging.Logger] = None, name: str = "qmp"):
        self.logger = safe_logger(logger)
        self.name = name
        self.greeting: Optional[QMPGreeting] = None
        self.events: Deque[Dict[str, Any]] = deque(maxlen=64)

        self._sock: Optional[socket.socket] = sock
        self._reader = JSONStreamReader(sock)
        self._writer = JSONStreamWriter(sock)
        self._in_flight = threading.Lock()

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    @classmethod
    def open(
        cls,
        host: str,
        port: int,
        *,
        connect_timeout: Optional[float] = DEFAULT_CONNECT_TIMEOUT_S,
        read_timeout: Optional[float] = DEFAULT_READ_TIMEOUT_S,
        logger: Optional[logging.Logger] = None,
    ) -> "QMPSession":
        lg = safe_logger(logger)
        Log.trace(lg, "Connecting to QMP %s:%s", host, port)
        try:
            sock = socket.create_connection((host, port), timeout=connect_timeout)
        except OSError as e:
            raise QMPConnectionError(f"failed to connect to QMP at {host}:{port}: {e}", cause=e) from e
        sock.settimeout(read_timeout)
        return cls.attach(sock, logger=lg, name=f"{host}:{port}")

    @classmethod
    def attach(
        cls,
        sock: socket.socket,
        *,
        logger: Optional[logging.Logger] = None,
        name: str = "qmp",
    ) -> "QMPSession":
        session = cls(sock, logger=logger, name=name)
        try:
            session._handshake()
        except QMPConnectionError:
            session.close()
            raise
        except Exception as e:
            session.close()
            raise QMPConnectionError(f"QMP handshake with {name} failed: {e}", cause=e) from e
        return session

    @property
    def closed(self) -> bool:
        return self._sock is None

    def close(self) -> None:
        sock, self._sock = self._sock, None
        if sock is None:
            return
        try:
            sock.close()
        except OSError as e:
            self.logger.debug("QMP %s: close failed: %s", self.name, e)
        Log.trace(self.logger, "QMP %s closed", self.name)

    def __enter__(self) -> "QMPSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # protocol
    # ------------------------------------------------------------------

    def _handshake(self) -> None:
        try:
            greeting_msg = self._reader.read_message()
        except QMPConnectionError as e:
            raise QMPConnectionError(f"failed to receive QMP greeting: {e.msg}", cause=e) from e
        self.greeting = QMPGreeting.from_message(greeting_msg)
        self.logger.debug(
            "QMP %s greeting: qemu %s %s caps=%s",
            self.name,
            self.greeting.version,
            self.greeting.package,
            self.greeting.capabilities,
        )

        try:
            reply = self._roundtrip(QMPCommand("qmp_capabilities"))
        except QMPConnectionError as e:
            raise QMPConnectionError(f"failed to negotiate QMP capabilities: {e.msg}", cause=e) from e
        if reply.error is not None:
            raise QMPConnectionError(
                f"QMP capabilities error: {reply.error.error_class} - {reply.error.desc}",
                cause=QMPProtocolError(reply.error.error_class, reply.error.desc, command="qmp_capabilities"),
            )

    def _read_reply(self) -> QMPReply:
        while True:
            msg = self._reader.read_message()
            if "event" in msg and "return" not in msg and "error" not in msg:
                self.events.append(msg)
                self.logger.debug("QMP %s event: %s", self.name, msg.get("event"))
                continue
            return QMPReply.from_message(msg)

    def _roundtrip(self, cmd: QMPCommand) -> QMPReply:
        if self._sock is None:
            raise QMPConnectionError(f"QMP session {self.name} is closed")
        Log.trace(self.logger, "QMP %s -> %s", self.name, cmd.execute)
        self._writer.write_message(cmd.to_message())
        reply = self._read_reply()
        Log.trace(self.logger, "QMP %s <- %s (%s)", self.name, cmd.execute, "ok" if reply.ok else "error")
        return reply

    def command(self, cmd: QMPCommand) -> QMPReply:
        """
        Send one command and return its tagged reply.

        A transport failure mid-command leaves the reply order unknown, so the
        session is closed before the error propagates.
        """
        if not self._in_flight.acquire(blocking=False):
            raise RuntimeError(f"QMP session {self.name} already has a command in flight")
        try:
            return self._roundtrip(cmd)
        except QMPConnectionError:
            self.close()
            raise
        finally:
            self._in_flight.release()

    def execute(self, command: str, arguments: Optional[Dict[str, Any]] = None) -> Any:
        """Run `command`; return its payload or raise QMPProtocolError."""
        return self.command(QMPCommand(command, arguments)).unwrap(command)
