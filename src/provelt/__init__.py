"""PROVELT backend: challenge review, on-chain badge issuance and badge staking."""

__version__ = "0.1.0"
