"""DAO Radar: on-chain governance aggregation and vote submission service."""

__version__ = "0.1.0"
