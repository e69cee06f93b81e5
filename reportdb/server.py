"""Network front end of the datastore: poll data in, queries in, results out."""

from __future__ import annotations

import json
import logging
import struct
import threading
from typing import Any, Callable

import msgpack
import zmq

from reportdb.config import Settings
from reportdb.database import ReportDB
from reportdb.model import PolledDataPoint
from reportdb.query import Query, Result

logger = logging.getLogger("reportdb.server")

_POLL_TIMEOUT_MS = 100
_QUERY_ID = struct.Struct("<Q")


def decode_poll_data(payload: bytes) -> list[PolledDataPoint]:
    """Decode a JSON array of polled data points."""
    try:
        raw = json.loads(payload)
    except ValueError as error:
        raise ValueError(f"poll data is not valid JSON: {error}") from error
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("poll data must be a JSON array")
    points = []
    for item in raw:
        if not isinstance(item, dict):
            raise ValueError(f"poll data point must be an object, got {item!r}")
        try:
            points.append(PolledDataPoint.from_dict(item))
        except (KeyError, TypeError) as error:
            raise ValueError(f"invalid poll data point {item!r}: {error}") from error
    return points


def decode_query(payload: bytes) -> Query:
    """Decode a msgpack-encoded query."""
    try:
        raw = msgpack.unpackb(payload, raw=False, strict_map_key=False)
    except (ValueError, msgpack.exceptions.UnpackException) as error:
        raise ValueError(f"query is not valid msgpack: {error}") from error
    return Query.from_dict(raw)


def encode_result(result: Result) -> bytes:
    """Encode a result as its little-endian query id followed by msgpack."""
    return _QUERY_ID.pack(result.query_id) + msgpack.packb(result.to_dict(), use_bin_type=True)


class DatastoreServer:
    """Listens for poll data and queries and sends back query results.

    Stopping the server also closes the database it serves, so that every
    queued query is answered and sent before the result sender exits.
    """

    def __init__(self, settings: Settings, db: ReportDB, host: str = "*") -> None:
        self._settings = settings
        self._db = db
        self._host = host
        self._context: zmq.Context | None = None
        self._stop = threading.Event()
        self._listeners: list[threading.Thread] = []
        self._sender: threading.Thread | None = None

    def _bind(self, kind: int, port: str) -> zmq.Socket:
        assert self._context is not None
        socket = self._context.socket(kind)
        socket.setsockopt(zmq.LINGER, 0)
        try:
            socket.bind(f"tcp://{self._host}:{port}")
        except zmq.ZMQError:
            socket.close()
            raise
        return socket

    def start(self) -> None:
        """Bind the sockets and start the listener and sender threads."""
        if self._context is not None:
            raise RuntimeError("server already started")
        self._context = zmq.Context()
        sockets: list[zmq.Socket] = []
        try:
            for kind, port in (
                (zmq.PULL, self._settings.poll_listener_bind_port),
                (zmq.PULL, self._settings.query_listener_bind_port),
                (zmq.PUSH, self._settings.query_result_bind_port),
            ):
                sockets.append(self._bind(kind, port))
        except zmq.ZMQError as error:
            logger.error("error binding server sockets: %s", error)
            for socket in sockets:
                socket.close()
            self._context.term()
            self._context = None
            raise
        poll_socket, query_socket, result_socket = sockets
        self._listeners = [
            threading.Thread(
                target=self._listen,
                args=(poll_socket, self._handle_poll_data),
                name="poll-listener",
                daemon=True,
            ),
            threading.Thread(
                target=self._listen,
                args=(query_socket, self._handle_query),
                name="query-listener",
                daemon=True,
            ),
        ]
        self._sender = threading.Thread(
            target=self._send_results, args=(result_socket,), name="result-sender", daemon=True
        )
        for thread in (*self._listeners, self._sender):
            thread.start()

    def _listen(self, socket: zmq.Socket, handle: Callable[[bytes], Any]) -> None:
        poller = zmq.Poller()
        poller.register(socket, zmq.POLLIN)
        try:
            while not self._stop.is_set():
                if not dict(poller.poll(_POLL_TIMEOUT_MS)):
                    continue
                try:
                    payload = socket.recv()
                except zmq.ZMQError as error:
                    logger.error("error receiving message: %s", error)
                    continue
                handle(payload)
        finally:
            socket.close(linger=0)
        logger.info("%s exiting", threading.current_thread().name)

    def _handle_poll_data(self, payload: bytes) -> None:
        try:
            points = decode_poll_data(payload)
        except ValueError as error:
            logger.error("error unmarshalling poll data: %s", error)
            return
        try:
            self._db.write(points)
        except RuntimeError as error:
            logger.error("error writing poll data: %s", error)

    def _handle_query(self, payload: bytes) -> None:
        try:
            query = decode_query(payload)
        except ValueError as error:
            logger.error("error unmarshalling query: %s", error)
            return
        try:
            self._db.submit_query(query)
        except RuntimeError as error:
            logger.error("error submitting query %d: %s", query.query_id, error)

    def _send_results(self, socket: zmq.Socket) -> None:
        try:
            while True:
                result = self._db.results.get()
                if result is None:
                    break
                try:
                    socket.send(encode_result(result))
                except (zmq.ZMQError, TypeError, ValueError) as error:
                    logger.error("error sending query result %d: %s", result.query_id, error)
        finally:
            socket.close(linger=0)
        logger.info("query result sender shutting down")

    def stop(self) -> None:
        """Stop listening, close the database and send its last results."""
        if self._context is None:
            return
        self._stop.set()
        for listener in self._listeners:
            listener.join()
        self._listeners = []
        self._db.close()
        if self._sender is not None:
            self._sender.join()
            self._sender = None
        self._context.term()
        self._context = None

    def __enter__(self) -> DatastoreServer:
        self.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.stop()