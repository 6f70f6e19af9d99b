"""Durable message records.

Every relayed message is written to DuckDB before it is forwarded, so a
recipient who was offline can fetch it later through the history endpoint.
"""
