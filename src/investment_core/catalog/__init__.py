"""Write and read operations on products and pledges.

Each operation validates first, persists second and flushes the result cache
last; reads go through the cache and the funding aggregator.
"""
