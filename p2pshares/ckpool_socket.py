"""Receive mining messages published by ckpool over a ZMQ SUB socket."""

from __future__ import annotations

import json
import logging
import time
from decimal import Decimal
from typing import Any, NoReturn, Protocol

import zmq

logger = logging.getLogger(__name__)

INITIAL_BACKOFF = 0.1

# Errors that mean the socket is gone and the caller should reconnect.
_DISCONNECT_ERRNOS = frozenset({zmq.ETERM, zmq.ENOTSOCK, zmq.EINTR, zmq.EAGAIN})


class MinerSocket(Protocol):
    """Anything that yields text messages the way a ZMQ socket does."""

    def recv_string(self) -> str: ...


class SharePutter(Protocol):
    """Destination for received JSON values."""

    def put(self, item: Any) -> None: ...


class ShareReceiveError(Exception):
    """Receiving from ckpool stopped; ``disconnected`` marks a lost socket."""

    def __init__(self, message: str, *, disconnected: bool = False) -> None:
        super().__init__(message)
        self.disconnected = disconnected


def create_zmq_socket(host: str, port: int) -> zmq.Socket:
    """Connect a SUB socket to ckpool, subscribed to every message."""
    context = zmq.Context()
    socket = context.socket(zmq.SUB)
    socket.connect(f"tcp://{host}:{port}")
    socket.setsockopt(zmq.SUBSCRIBE, b"")
    logger.info("Connected to ckpool at %s:%s", host, port)
    return socket


def receive_shares(socket: MinerSocket, queue: SharePutter) -> NoReturn:
    """Read JSON messages from ``socket`` and put the parsed values on ``queue``.

    Runs until the socket fails or a message cannot be decoded or parsed,
    then raises ShareReceiveError.
    """
    while True:
        try:
            text = socket.recv_string()
        except UnicodeDecodeError as exc:
            logger.error("Failed to decode message: %s", exc)
            raise ShareReceiveError(f"Failed to decode message: {exc}") from exc
        except zmq.ZMQError as exc:
            disconnected = exc.errno in _DISCONNECT_ERRNOS
            if disconnected:
                logger.error("Disconnected from socket: %s. Attempting reconnect...", exc)
            else:
                logger.error("Failed to receive message: %s", exc)
            raise ShareReceiveError(
                f"Failed to receive message: {exc}", disconnected=disconnected
            ) from exc

        logger.debug("Received json from ckpool: %s", text)
        try:
            value = json.loads(text, parse_float=Decimal)
        except json.JSONDecodeError as exc:
            logger.error("Failed to parse JSON: %s. JSON content: %r", exc, text)
            raise ShareReceiveError(f"Failed to parse JSON: {exc}") from exc

        try:
            queue.put(value)
        except Exception:
            logger.exception("Failed to send share to queue")


def receive_from_ckpool(host: str, port: int, queue: SharePutter) -> NoReturn:
    """Receive from ckpool forever, reconnecting with exponential backoff."""
    backoff = INITIAL_BACKOFF
    while True:
        try:
            socket = create_zmq_socket(host, port)
        except zmq.ZMQError as exc:
            logger.error(
                "Failed to connect to ZMQ: %s. Retrying in %dms...", exc, round(backoff * 1000)
            )
            time.sleep(backoff)
            backoff *= 2
            continue
        try:
            receive_shares(socket, queue)
        except ShareReceiveError as exc:
            logger.error("Error in receiving shares: %s. Reconnecting...", exc)
            socket.close(linger=0)
            time.sleep(backoff)
            backoff *= 2