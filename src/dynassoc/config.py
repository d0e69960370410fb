"""Configuration for dynassoc."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class DynassocConfig:
    """Configuration for a Database and the store it opens."""

    batch_size: int = 1000
    range_lower_bound: str = "0"
    table_prefix: str = ""
    dynamodb_region: str | None = None
    dynamodb_endpoint_url: str | None = None
    dynamodb_request_timeout_s: float = 10.0
    dynamodb_max_attempts: int = 5
    dynamodb_consistent_read: bool = True
    dynamodb_billing_mode: str = "PAY_PER_REQUEST"

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
