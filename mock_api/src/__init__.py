"""
Mock EnergyGrid query endpoint used for local runs and end-to-end tests.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""
