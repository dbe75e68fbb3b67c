"""
EnergyGrid telemetry client package.

Generates the device serial population, splits it into endpoint-sized
batches, fetches each batch from the signed, rate-limited EnergyGrid query
endpoint, and aggregates the results into a report.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""
