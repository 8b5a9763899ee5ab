"""Process-wide collaborators, built once at startup and passed to operations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pymongo import MongoClient
from pymongo.database import Database

from investment_core.cache import ResultCache
from investment_core.config import Settings, get_settings
from investment_core.db import get_client, get_db
from investment_core.funding.aggregator import FundingAggregator


@dataclass
class AppContext:
    """Store handles, the shared result cache and settings.

    Attributes:
        client: MongoClient (needed to open transactions).
        db: Database holding `products` and `pledges`.
        cache: The single ResultCache for this process.
        settings: Loaded configuration.
        aggregator: FundingAggregator bound to `db`.
    """
    client: MongoClient[dict[str, Any]]
    db: Database[dict[str, Any]]
    cache: ResultCache
    settings: Settings
    aggregator: FundingAggregator = field(init=False)

    def __post_init__(self) -> None:
        self.aggregator = FundingAggregator(self.db)


def build_context(settings: Settings | None = None) -> AppContext:
    """Connect to the store and build the context for this process."""
    s = settings or get_settings()
    client = get_client(s.mongo_uri, tls=s.mongo_tls)
    return AppContext(
        client=client,
        db=get_db(client, s.mongo_db),
        cache=ResultCache(),
        settings=s,
    )
