"""Funding statistics.

`metrics` holds the pure formulas (the one funding-percentage function every
read path uses), `aggregator` derives completed-pledge statistics from the
store, and `reconcile` audits the denormalized counters kept on products.
"""
