"""Client that sends queries and poll data to the datastore."""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Iterable, Mapping

import msgpack
import zmq

from reportdb.iputil import ip_to_numeric, numeric_to_ip
from reportdb.model import DataPoint

logger = logging.getLogger("reportdb.client")

QUERY_TIMEOUT = 40.0
_POLL_TIMEOUT_MS = 100


class QueryTimeoutError(TimeoutError):
    """Raised when no result arrives for a query in time."""

    def __init__(self, message: str = "query timed out") -> None:
        super().__init__(message)


class ClientShutdownError(RuntimeError):
    """Raised when the client is closed before or while a query waits."""

    def __init__(self, message: str = "server got shutdown") -> None:
        super().__init__(message)


def _point(raw: Any) -> DataPoint:
    if isinstance(raw, DataPoint):
        return raw
    if isinstance(raw, Mapping):
        return DataPoint(raw["timestamp"], raw.get("value"))
    raise ValueError(f"invalid data point {raw!r}")


def parse_response(
    data: Mapping[int, Iterable[Any]] | None,
) -> list[DataPoint] | dict[str, list[DataPoint]]:
    """Turn result data into the client's answer.

    Data under object id 0 (aggregated over all objects) is returned as a
    single list; otherwise the points are returned per dotted IP address.
    """
    data = data or {}
    if 0 in data:
        return [_point(raw) for raw in data[0]]
    return {
        numeric_to_ip(int(object_id)): [_point(raw) for raw in points]
        for object_id, points in data.items()
    }


class ReportDBClient:
    """Sends queries and poll data to a datastore and waits for query results."""

    def __init__(
        self,
        host: str,
        query_port: str | int,
        result_port: str | int,
        poll_port: str | int,
        timeout: float = QUERY_TIMEOUT,
        query_queue_size: int = 0,
        poll_queue_size: int = 0,
    ) -> None:
        self.timeout = timeout
        self._context = zmq.Context()
        self._query_ids = itertools.count(1)
        self._waiters: dict[int, Future] = {}
        self._lock = threading.Lock()
        self._closed = False
        self._stop = threading.Event()
        self._query_queue: queue.Queue[bytes | None] = queue.Queue(maxsize=query_queue_size)
        self._poll_queue: queue.Queue[bytes | None] = queue.Queue(maxsize=poll_queue_size)

        query_socket = self._connect(zmq.PUSH, host, query_port)
        poll_socket = self._connect(zmq.PUSH, host, poll_port)
        result_socket = self._connect(zmq.PULL, host, result_port)

        self._threads = [
            threading.Thread(
                target=self._send_loop,
                args=(query_socket, self._query_queue, "query"),
                name="query-sender",
                daemon=True,
            ),
            threading.Thread(
                target=self._send_loop,
                args=(poll_socket, self._poll_queue, "poll data"),
                name="poll-sender",
                daemon=True,
            ),
        ]
        self._receiver = threading.Thread(
            target=self._receive_loop, args=(result_socket,), name="result-receiver", daemon=True
        )
        for thread in (*self._threads, self._receiver):
            thread.start()

    def _connect(self, kind: int, host: str, port: str | int) -> zmq.Socket:
        socket = self._context.socket(kind)
        socket.setsockopt(zmq.LINGER, 0)
        socket.connect(f"tcp://{host}:{port}")
        return socket

    @staticmethod
    def _send_loop(socket: zmq.Socket, source: queue.Queue, what: str) -> None:
        try:
            while True:
                payload = source.get()
                if payload is None:
                    break
                try:
                    socket.send(payload)
                except zmq.ZMQError as error:
                    logger.error("error sending %s: %s", what, error)
        finally:
            socket.close(linger=0)
        logger.info("%s sender closed", what)

    def _receive_loop(self, socket: zmq.Socket) -> None:
        poller = zmq.Poller()
        poller.register(socket, zmq.POLLIN)
        try:
            while not self._stop.is_set():
                if not dict(poller.poll(_POLL_TIMEOUT_MS)):
                    continue
                try:
                    message = socket.recv()
                except zmq.ZMQError as error:
                    logger.error("error receiving query result: %s", error)
                    continue
                if len(message) < 8:
                    logger.error("query result too short: %d bytes", len(message))
                    continue
                query_id = int.from_bytes(message[:8], "little")
                with self._lock:
                    waiter = self._waiters.pop(query_id, None)
                if waiter is None:
                    logger.info("no one waiting for result of query %d", query_id)
                    continue
                waiter.set_result(message[8:])
        finally:
            socket.close(linger=0)
        logger.info("result receiver closed")

    def query(
        self,
        start: int,
        end: int,
        interval: int,
        object_ips: Iterable[str],
        counter_id: int,
        object_wise_aggregation: str,
        timestamp_aggregation: str,
    ) -> list[DataPoint] | dict[str, list[DataPoint]]:
        """Send a query and wait for its result."""
        payload_ids = [ip_to_numeric(ip) for ip in object_ips]
        waiter: Future = Future()
        with self._lock:
            if self._closed:
                raise ClientShutdownError()
            query_id = next(self._query_ids)
            self._waiters[query_id] = waiter
        payload = msgpack.packb(
            {
                "query_id": query_id,
                "from": start,
                "to": end,
                "object_ids": payload_ids,
                "counter_id": counter_id,
                "object_wise_aggregation": object_wise_aggregation,
                "timestamp_aggregation": timestamp_aggregation,
                "interval": interval,
            },
            use_bin_type=True,
        )
        self._query_queue.put(payload)

        try:
            result_bytes = waiter.result(timeout=self.timeout)
        except FutureTimeoutError:
            with self._lock:
                self._waiters.pop(query_id, None)
            logger.info("query %d timed out", query_id)
            raise QueryTimeoutError() from None
        if not result_bytes:
            raise ClientShutdownError()
        try:
            result = msgpack.unpackb(result_bytes, raw=False, strict_map_key=False)
        except (ValueError, msgpack.exceptions.UnpackException) as error:
            logger.info("error deserializing query result: %s", error)
            raise ValueError(f"invalid query result: {error}") from error
        if not isinstance(result, Mapping):
            raise ValueError("query result must be a map")
        return parse_response(result.get("data"))

    def send_poll_data(self, data: bytes) -> None:
        """Forward raw poll data; dropped with a log entry once closed."""
        with self._lock:
            if self._closed:
                logger.info("poll sender already closed, dropping data")
                return
        self._poll_queue.put(bytes(data))

    def close(self) -> None:
        """Stop the threads, fail waiting queries and close the sockets."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._query_queue.put(None)
        self._poll_queue.put(None)
        for thread in self._threads:
            thread.join()
        self._stop.set()
        self._receiver.join()
        with self._lock:
            waiters = list(self._waiters.values())
            self._waiters.clear()
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(ClientShutdownError())
        self._context.term()

    def __enter__(self) -> ReportDBClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()