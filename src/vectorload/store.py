import json
import logging
import threading
from concurrent.futures import Future, InvalidStateError
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import numpy as np
import pyarrow as pa
import pyarrow.flight as flight

from .columns import Column, columns_to_table
from .exceptions import StoreConnectionError
from .index import IndexConfig
from .models import CollectionSchema, SearchParams, WriteAck

logger = logging.getLogger(__name__)

# Interval between state polls while a load or index build is in progress.
STATE_POLL_INTERVAL = 0.5


@runtime_checkable
class VectorStore(Protocol):
    """Store handle consumed by the harness. One handle per virtual user."""

    def create_collection(self, schema: CollectionSchema) -> None: ...

    def drop_collection(self, collection: str) -> None: ...

    def has_collection(self, collection: str) -> bool: ...

    def release_collection(self, collection: str) -> None: ...

    def load_collection(self, collection: str) -> Future: ...

    def create_index(self, collection: str, field_name: str, index: IndexConfig) -> Future: ...

    def write(self, collection: str, columns: Sequence[Column]) -> WriteAck: ...

    def query(self, collection: str, vectors: Sequence[Sequence[float]], top_k: int,
              params: SearchParams) -> List[Any]: ...

    def close(self) -> None: ...


class FlightStore:
    """Arrow Flight implementation of the store protocol.

    Writes go through DoPut with a JSON acknowledgement in the put metadata,
    each query vector is one DoGet returning a ranked table, and lifecycle
    calls are DoAction requests with JSON bodies.
    """

    def __init__(self, uri: str = "grpc://localhost:19530", api_key: Optional[str] = None,
                 headers: Optional[Dict[str, str]] = None, timeout: Optional[float] = None):
        """
        Args:
            uri: gRPC URI of the store's Flight endpoint.
            api_key: Optional API key sent as a bearer token.
            headers: Extra headers sent with every call.
            timeout: Per-call timeout in seconds.
        """
        self.uri = uri
        self.api_key = api_key
        self.headers = headers or {}
        self.timeout = timeout

        self._client = None
        # Set by close(); stops background pollers and lazy reconnects.
        self._closed = threading.Event()

    def connect(self):
        """Establish the connection to the server."""
        try:
            options = [
                ("grpc.max_receive_message_length", 1024 * 1024 * 1024),
                ("grpc.max_send_message_length", 1024 * 1024 * 1024),
            ]
            self._client = flight.FlightClient(self.uri, generic_options=options)
        except Exception as e:
            raise StoreConnectionError(f"Failed to connect to {self.uri}: {e}") from e
        self._closed.clear()
        return self

    def close(self):
        self._closed.set()
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def client(self) -> flight.FlightClient:
        if self._closed.is_set():
            raise StoreConnectionError(f"Store connection to {self.uri} is closed")
        if self._client is None:
            self.connect()
        return self._client

    def _call_options(self) -> flight.FlightCallOptions:
        call_headers = []
        for k, v in self.headers.items():
            call_headers.append((k.encode("utf-8"), v.encode("utf-8")))
        if self.api_key:
            call_headers.append((b"authorization", f"Bearer {self.api_key}".encode("utf-8")))
        if self.timeout is not None:
            return flight.FlightCallOptions(headers=call_headers, timeout=self.timeout)
        return flight.FlightCallOptions(headers=call_headers)

    def _action(self, name: str, body: Dict[str, Any]) -> List[Dict[str, Any]]:
        action = flight.Action(name, json.dumps(body).encode("utf-8"))
        try:
            results = list(self.client.do_action(action, options=self._call_options()))
        except flight.FlightError as e:
            raise StoreConnectionError(f"{name} failed: {e}") from e
        out = []
        for r in results:
            raw = r.body.to_pybytes()
            if raw:
                out.append(json.loads(raw))
        return out

    def _poll_until(self, action: str, body: Dict[str, Any], done_state: str) -> Future:
        """Poll ``action`` on a daemon thread until it reports ``done_state``.

        The returned future stays pending while polling, so ``cancel()`` on it
        succeeds and stops the poller at its next check, as does ``close()``.
        """
        task: Future = Future()

        def settle(result=None, error=None):
            try:
                if error is not None:
                    task.set_exception(error)
                else:
                    task.set_result(result)
            except InvalidStateError:
                # Cancelled by the waiter while the last poll was in flight.
                logger.debug(f"{action} finished after its wait was abandoned")

        def poll():
            try:
                while not task.cancelled():
                    if self._closed.is_set():
                        settle(error=StoreConnectionError(f"{action} abandoned: store closed"))
                        return
                    replies = self._action(action, body)
                    state = replies[0].get("state") if replies else None
                    if state == done_state:
                        settle(result=state)
                        return
                    if state == "Failed":
                        settle(error=StoreConnectionError(
                            f"{action} reported failure: {replies[0].get('reason', '')}"))
                        return
                    self._closed.wait(STATE_POLL_INTERVAL)
            except Exception as e:
                settle(error=e)
            logger.debug(f"Stopped polling {action} for {body}")

        threading.Thread(target=poll, name=f"flight-store-poll-{action}", daemon=True).start()
        return task

    # =========================================================================
    # Collection lifecycle
    # =========================================================================

    def create_collection(self, schema: CollectionSchema) -> None:
        self._action("CreateCollection", json.loads(schema.to_json()))

    def drop_collection(self, collection: str) -> None:
        self._action("DropCollection", {"collection": collection})

    def has_collection(self, collection: str) -> bool:
        replies = self._action("HasCollection", {"collection": collection})
        return bool(replies and replies[0].get("exists"))

    def release_collection(self, collection: str) -> None:
        self._action("ReleaseCollection", {"collection": collection})

    def load_collection(self, collection: str) -> Future:
        self._action("LoadCollection", {"collection": collection})
        return self._poll_until("GetLoadState", {"collection": collection}, "Loaded")

    def create_index(self, collection: str, field_name: str, index: IndexConfig) -> Future:
        body = {"collection": collection, "field": field_name, "params": index.to_params()}
        self._action("CreateIndex", body)
        return self._poll_until("DescribeIndex", {"collection": collection, "field": field_name}, "Finished")

    # =========================================================================
    # Data plane
    # =========================================================================

    def write(self, collection: str, columns: Sequence[Column]) -> WriteAck:
        table = columns_to_table(columns)
        descriptor = flight.FlightDescriptor.for_path(collection)
        try:
            writer, reader = self.client.do_put(descriptor, table.schema, options=self._call_options())
            try:
                writer.write_table(table)
                writer.done_writing()
                buf = reader.read()
            finally:
                writer.close()
        except flight.FlightError as e:
            raise StoreConnectionError(f"Insert into {collection} failed: {e}") from e

        if buf is None:
            # No acknowledgement metadata: the server accepted the whole stream.
            return WriteAck(insert_count=table.num_rows)
        try:
            ack = json.loads(buf.to_pybytes())
        except ValueError as e:
            raise StoreConnectionError(f"Insert into {collection} returned a malformed acknowledgement: {e}") from e
        if not isinstance(ack, dict):
            raise StoreConnectionError(f"Insert into {collection} returned a malformed acknowledgement: {ack!r}")
        logger.debug(f"Uploaded batch of {table.num_rows} rows to {collection}, ack={ack.get('insert_count')}")
        return WriteAck(insert_count=ack.get("insert_count", 0), ids=ack.get("ids") or [])

    def query(self, collection: str, vectors: Sequence[Sequence[float]], top_k: int,
              params: SearchParams) -> List[pa.Table]:
        tables = []
        for vector in vectors:
            req = {
                "collection": collection,
                "vector": np.asarray(vector, dtype=np.float32).tolist(),
                "k": top_k,
                "vector_field": params.vector_field,
                "output_fields": params.output_fields,
            }
            if params.expr:
                req["filter"] = params.expr
            if params.search_params:
                req["search_params"] = params.search_params
            ticket = flight.Ticket(json.dumps({"search": req}).encode("utf-8"))
            try:
                reader = self.client.do_get(ticket, options=self._call_options())
                tables.append(reader.read_all())
            except flight.FlightError as e:
                raise StoreConnectionError(f"Search on {collection} failed: {e}") from e
        return tables
