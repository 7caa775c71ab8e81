"""
Configuration classes for lock coordination and the DynamoDB backend.

This module provides:
- PollingConfig: How the coordinator paces conditional writes and retries
- DynamoDBConfig: Table and connection settings for DynamoDBLeaseStore
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

BillingMode = Literal["PROVISIONED", "PAY_PER_REQUEST"]

DEFAULT_MAX_INTERVAL = 8.0


@dataclass(frozen=True)
class PollingConfig:
    """
    Configuration for the acquire loop.

    Contention (another live lease) is retried with exponential backoff
    and jitter between ``interval`` and ``max_interval``. Transient store
    errors get their own, bounded, retry budget. Permanent errors are never
    retried.

    Attributes:
        interval: Delay in seconds after the first contended attempt
        backoff_multiplier: Growth factor per contended attempt (1.0 = fixed)
        max_interval: Upper bound in seconds for the contention delay
            (None = the larger of ``interval`` and 8 seconds)
        jitter: Fraction of the delay added or removed at random (0-1)
        max_attempts: Give up after this many contended attempts (None = never)
        timeout: Default acquisition deadline in seconds (None = wait forever)
        transient_retries: Retries allowed for a transient store error
        transient_initial_delay: First delay in seconds after a transient error
        transient_max_delay: Upper bound in seconds for transient retry delays

    Example:
        >>> # Poll once a second, no backoff
        >>> config = PollingConfig(backoff_multiplier=1.0, jitter=0.0)
    """

    interval: float = 1.0
    backoff_multiplier: float = 2.0
    max_interval: float | None = None
    jitter: float = 0.1
    max_attempts: int | None = None
    timeout: float | None = None

    transient_retries: int = 3
    transient_initial_delay: float = 0.2
    transient_max_delay: float = 5.0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.interval <= 0:
            raise ValueError(f"interval must be positive, got {self.interval}.")

        if self.max_interval is None:
            object.__setattr__(self, "max_interval", max(self.interval, DEFAULT_MAX_INTERVAL))
        elif self.max_interval < self.interval:
            raise ValueError(
                f"max_interval ({self.max_interval}) must be >= interval ({self.interval})."
            )

        if self.backoff_multiplier < 1.0:
            raise ValueError(
                f"backoff_multiplier must be >= 1.0, got {self.backoff_multiplier}."
            )

        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError(f"jitter must be between 0.0 and 1.0, got {self.jitter}.")

        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}.")

        if self.timeout is not None and self.timeout < 0:
            raise ValueError(f"timeout must be >= 0, got {self.timeout}.")

        if self.transient_retries < 0:
            raise ValueError(
                f"transient_retries must be >= 0, got {self.transient_retries}. "
                "Use 0 for no retries."
            )

        if self.transient_initial_delay <= 0:
            raise ValueError(
                f"transient_initial_delay must be positive, got {self.transient_initial_delay}."
            )

        if self.transient_max_delay < self.transient_initial_delay:
            raise ValueError(
                f"transient_max_delay ({self.transient_max_delay}) must be >= "
                f"transient_initial_delay ({self.transient_initial_delay})."
            )


@dataclass(frozen=True)
class DynamoDBConfig:
    """
    Connection and table settings for the DynamoDB lease store.

    Credentials left as None fall through to boto3's default chain
    (environment, shared config, instance role).

    Attributes:
        table_name: Lease table name
        region: AWS region (e.g. "eu-west-1")
        access_key_id: AWS access key id
        secret_access_key: AWS secret access key
        endpoint_url: Custom endpoint, e.g. DynamoDB Local
        billing_mode: Billing mode used when the table is created
        read_capacity: Read capacity units for PROVISIONED tables
        write_capacity: Write capacity units for PROVISIONED tables

    Example:
        >>> config = DynamoDBConfig.from_options(
        ...     {"region": "eu-west-1", "tableName": "locks"}
        ... )
    """

    table_name: str
    region: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    endpoint_url: str | None = None
    billing_mode: BillingMode = "PROVISIONED"
    read_capacity: int = 1
    write_capacity: int = 1

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if not self.table_name:
            raise ValueError("table_name must be a non-empty string.")

        if self.billing_mode not in ("PROVISIONED", "PAY_PER_REQUEST"):
            raise ValueError(
                f"billing_mode must be 'PROVISIONED' or 'PAY_PER_REQUEST', got {self.billing_mode!r}."
            )

        if (self.access_key_id is None) != (self.secret_access_key is None):
            raise ValueError("access_key_id and secret_access_key must be given together.")

        if self.read_capacity < 1 or self.write_capacity < 1:
            raise ValueError("read_capacity and write_capacity must be >= 1.")

    @classmethod
    def from_options(cls, options: Mapping[str, Any]) -> DynamoDBConfig:
        """
        Build a config from camelCase option names.

        Accepts ``{region, accessKeyId, secretAccessKey, tableName}``, either
        at the top level or nested under ``awsConfig``. ``endpointUrl`` and
        ``billingMode`` are also recognised.

        Raises:
            ValueError: If tableName is missing
        """
        opts = options.get("awsConfig", options)
        if "tableName" not in opts:
            raise ValueError("tableName is required")
        return cls(
            table_name=opts["tableName"],
            region=opts.get("region"),
            access_key_id=opts.get("accessKeyId"),
            secret_access_key=opts.get("secretAccessKey"),
            endpoint_url=opts.get("endpointUrl"),
            billing_mode=opts.get("billingMode", "PROVISIONED"),
        )


__all__ = [
    "BillingMode",
    "DynamoDBConfig",
    "PollingConfig",
]
