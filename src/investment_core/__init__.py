"""investment_core package.

Funding aggregation and caching layer for an investment-listing platform.
Products (creative media projects open for investment) and pledges (investor
contributions against a product) live in MongoDB; this package validates and
persists them, derives funding statistics from completed pledges and serves
hot reads through a short-lived result cache.

Architecture:
- Products / Pledges stored in two MongoDB collections
- Read paths recompute funding from completed pledges (aggregation pipelines)
- A process-local TTL cache sits in front of reads; every write flushes it
- Dask is used for the offline audit of denormalized funding counters
- Pydantic models validate every write
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
