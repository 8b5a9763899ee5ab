"""MongoDB helpers.

Centralizes creation of Mongo clients, translation of driver failures into
the package's error taxonomy, transaction scoping, index creation, and the
batched collection readers/writers used by the reconciliation job.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, List, cast

import certifi
import dask.dataframe as dd
import pandas as pd
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, TEXT, IndexModel, MongoClient, UpdateOne
from pymongo.client_session import ClientSession
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import (
    AutoReconnect,
    ConnectionFailure,
    DuplicateKeyError,
    ExecutionTimeout,
    NetworkTimeout,
    ServerSelectionTimeoutError,
    WTimeoutError,
)

from investment_core.errors import DuplicateError, StoreUnavailable, ValidationError

log = logging.getLogger(__name__)

PRODUCTS = "products"
PLEDGES = "pledges"

_TRANSIENT = (
    AutoReconnect,
    ConnectionFailure,
    ServerSelectionTimeoutError,
    NetworkTimeout,
    ExecutionTimeout,
    WTimeoutError,
)


def get_client(uri: str, tls: bool = False) -> MongoClient:
    """Return a configured PyMongo MongoClient for the provided URI.

    Timeouts are kept in the low seconds so an unreachable store surfaces as
    `StoreUnavailable` instead of hanging a request.

    Args:
        uri: MongoDB connection URI.
        tls: Connect with TLS using the certifi CA bundle.

    Returns:
        Configured MongoClient instance.
    """
    options: dict[str, Any] = {
        "maxPoolSize": 10,
        "serverSelectionTimeoutMS": 5000,
        "connectTimeoutMS": 10000,
        "socketTimeoutMS": 45000,
        "maxIdleTimeMS": 30000,
    }
    if tls:
        options.update(tls=True, tlsCAFile=certifi.where())
    return MongoClient(uri, **options)


def get_db(
    client: MongoClient[dict[str, Any]],
    db_name: str,
) -> Database[dict[str, Any]]:
    """Return the named Database instance from a MongoClient."""
    return client[db_name]


def parse_object_id(value: Any, field: str = "id") -> ObjectId:
    """Return `value` as an ObjectId or raise ValidationError.

    Args:
        value: ObjectId or its 24-character hex string form.
        field: Field name used in the error message.
    """
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError) as e:
        raise ValidationError("Invalid identifier", [f"{field}: not a valid id"]) from e


@contextmanager
def store_guard(operation: str) -> Iterator[None]:
    """Translate driver failures raised inside the block.

    Connection loss and timeouts become `StoreUnavailable` (retryable);
    unique-index conflicts become `DuplicateError`. Anything else propagates
    untouched.

    Args:
        operation: Short label for log lines, e.g. "list_products".
    """
    try:
        yield
    except DuplicateKeyError as e:
        log.info("%s: unique constraint violated: %s", operation, e)
        raise DuplicateError("A record with the same unique key already exists") from e
    except _TRANSIENT as e:
        log.warning("%s: store unavailable: %s", operation, e)
        raise StoreUnavailable(f"Store unavailable during {operation}") from e


@contextmanager
def transaction(
    client: MongoClient[dict[str, Any]],
    enabled: bool = True,
) -> Iterator[ClientSession | None]:
    """Scope a multi-document write.

    Yields a session with an open transaction that commits when the block
    exits normally and aborts on any exception. With `enabled=False` (single
    node deployments, tests) yields None and writes run without a session.
    """
    if not enabled:
        yield None
        return

    with client.start_session() as session:
        with session.start_transaction():
            yield session


# --------------------------------------------------
# Indexes
# --------------------------------------------------
def product_indexes() -> list[IndexModel]:
    """Index set backing product lookups, filters and weighted text search."""
    return [
        IndexModel([("slug", ASCENDING)], name="slug_1", unique=True, sparse=True),
        IndexModel([("category", ASCENDING), ("productStatus", ASCENDING)]),
        IndexModel([("isFeatured", ASCENDING), ("isActive", ASCENDING)]),
        IndexModel([("createdAt", DESCENDING), ("isActive", ASCENDING)]),
        IndexModel([("fundingStatus", ASCENDING), ("fundingDeadline", ASCENDING)]),
        IndexModel(
            [
                ("productTitle", TEXT),
                ("artistName", TEXT),
                ("tags", TEXT),
                ("description", TEXT),
            ],
            name="text_search_index",
            weights={"productTitle": 10, "artistName": 8, "tags": 5, "description": 1},
        ),
    ]


def pledge_indexes() -> list[IndexModel]:
    """Index set backing per-product funding aggregation and admin listings."""
    return [
        IndexModel([("productId", ASCENDING), ("paymentStatus", ASCENDING)]),
        IndexModel([("email", ASCENDING), ("productId", ASCENDING)]),
        IndexModel([("paymentStatus", ASCENDING), ("investmentDate", DESCENDING)]),
        IndexModel([("transactionId", ASCENDING)], sparse=True),
    ]


def ensure_indexes(db: Database[dict[str, Any]]) -> dict[str, list[str]]:
    """Create (idempotently) the indexes for both collections.

    Returns:
        Mapping of collection name to the index names that now exist.
    """
    created = {
        PRODUCTS: db[PRODUCTS].create_indexes(product_indexes()),
        PLEDGES: db[PLEDGES].create_indexes(pledge_indexes()),
    }
    for name, indexes in created.items():
        log.info("Indexes ensured on %s: %s", name, ", ".join(indexes))
    return created


# --------------------------------------------------
# Batched readers / writers
# --------------------------------------------------
def load_collection_to_ddf(
    collection: Collection[dict[str, Any]],
    query: dict[str, Any],
    projection: dict[str, Any],
    columns: list[str],
    batch_size: int = 50_000,
) -> Any:
    """Load matching documents into a Dask DataFrame using batched reads.

    ObjectId values are converted to hex strings so every column has a plain
    dtype.

    Args:
        collection: Source collection.
        query: Filter applied to the scan.
        projection: Projection applied to the scan.
        columns: Expected column names; used for the empty-result frame.
        batch_size: Cursor batch size and pandas chunk size.

    Returns:
        Dask DataFrame (one partition per ~200k rows).
    """
    cursor = collection.find(query, projection).batch_size(batch_size)

    pdf_batches: List[pd.DataFrame] = []
    buffer: List[dict[str, Any]] = []

    for doc in cursor:
        buffer.append({k: str(v) if isinstance(v, ObjectId) else v for k, v in doc.items()})
        if len(buffer) >= batch_size:
            pdf_batches.append(pd.DataFrame(buffer))
            buffer.clear()

    if buffer:
        pdf_batches.append(pd.DataFrame(buffer))

    dd_mod = cast(Any, dd)
    if not pdf_batches:
        return dd_mod.from_pandas(pd.DataFrame(columns=columns), npartitions=1)

    pdf = pd.concat(pdf_batches, ignore_index=True)
    nparts = max(1, len(pdf) // 200_000)

    log.info("Loaded %d documents from %s into %d partitions", len(pdf), collection.name, nparts)
    return dd_mod.from_pandas(pdf, npartitions=nparts)


def bulk_set(
    collection: Collection[dict[str, Any]],
    updates: Iterable[tuple[Any, dict[str, Any]]],
    batch_size: int = 1000,
) -> int:
    """Apply `$set` updates keyed by `_id` in batches.

    Unlike a best-effort upsert, failures propagate: a partially applied
    correction run must be visible to the caller.

    Args:
        collection: Target collection.
        updates: Iterable of `(_id, fields)` pairs.
        batch_size: Number of ops per bulk_write call.

    Returns:
        Number of documents modified.
    """
    ops: list[UpdateOne] = []
    modified = 0

    for _id, fields in updates:
        ops.append(UpdateOne({"_id": _id}, {"$set": fields}))
        if len(ops) >= batch_size:
            modified += collection.bulk_write(ops, ordered=False).modified_count
            ops.clear()

    if ops:
        modified += collection.bulk_write(ops, ordered=False).modified_count

    return modified


def to_public(doc: dict[str, Any] | None) -> dict[str, Any] | None:
    """Return a copy of `doc` with `_id` exposed as `id` and ObjectIds as strings."""
    if doc is None:
        return None
    out = {k: v for k, v in doc.items() if k != "_id"}
    if "_id" in doc:
        out = {"id": str(doc["_id"]), **out}
    for k, v in out.items():
        if isinstance(v, ObjectId):
            out[k] = str(v)
    return out
