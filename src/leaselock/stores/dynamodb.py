"""
DynamoDB lease store implementation.

Leases are rows in a DynamoDB table keyed by ``resource`` (string hash
key). Acquisition is a single ``PutItem`` with the condition

    attribute_not_exists(resource) OR expiresAt < :now

so DynamoDB itself decides, atomically, whether a live lease exists. The
table has no range key: with ``expiresAt`` in the key every put would
address a brand new item and the condition would never see the live one.

boto3 is synchronous, so each call runs in the event loop's default
executor.

Example:
    >>> config = DynamoDBConfig(table_name="locks", region="eu-west-1")
    >>> store = DynamoDBLeaseStore(config)
    >>> await store.ensure_schema()
    >>> lease = await store.try_acquire("job-42", 3000, owner="worker-1")
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any

import boto3
from botocore.client import BaseClient
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, HTTPClientError
from botocore.exceptions import ConnectionError as BotoConnectionError

from leaselock.config import DynamoDBConfig
from leaselock.exceptions import (
    PermanentStoreError,
    SchemaProvisioningError,
    StoreError,
    TransientStoreError,
)
from leaselock.leases import Clock, Lease, now_ms, validate_lease_request
from leaselock.observability import (
    ATTR_DB_NAME,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_LOCK_RESOURCE,
    Tracer,
    create_tracer,
)
from leaselock.stores.interface import LeaseStore

logger = logging.getLogger(__name__)

RESOURCE_ATTR = "resource"
EXPIRES_AT_ATTR = "expiresAt"
OWNER_ATTR = "owner"

CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailedException"

TRANSIENT_ERROR_CODES = frozenset(
    {
        "ProvisionedThroughputExceededException",
        "RequestLimitExceeded",
        "ThrottlingException",
        "Throttling",
        "InternalServerError",
        "ServiceUnavailable",
        "TransactionConflictException",
        "LimitExceededException",
    }
)

ACQUIRE_CONDITION = "attribute_not_exists(#resource) OR #expires_at < :now"
ACQUIRE_OWN_CONDITION = ACQUIRE_CONDITION + " OR #owner = :owner"
RELEASE_CONDITION = "attribute_not_exists(#resource) OR #owner = :owner"
RENEW_CONDITION = "#owner = :owner AND #expires_at >= :now"


def build_client(config: DynamoDBConfig) -> BaseClient:
    """Create a DynamoDB client from a DynamoDBConfig."""
    session = boto3.session.Session(
        aws_access_key_id=config.access_key_id,
        aws_secret_access_key=config.secret_access_key,
        region_name=config.region,
    )
    return session.client(
        "dynamodb",
        endpoint_url=config.endpoint_url,
        config=Config(retries={"mode": "standard", "max_attempts": 2}),
    )


def classify_error(error: Exception, operation: str) -> StoreError:
    """
    Map a botocore failure onto the leaselock error taxonomy.

    Throttling, server-side 5xx, and connection problems are transient.
    Everything else, including missing credentials, access denied, a
    missing table, and validation errors, is permanent.
    """
    if isinstance(error, ClientError):
        code = error.response.get("Error", {}).get("Code", "Unknown")
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        message = f"DynamoDB {operation} failed with {code}: {error}"
        if code in TRANSIENT_ERROR_CODES or status >= 500:
            return TransientStoreError(message, operation=operation, code=code)
        return PermanentStoreError(message, operation=operation, code=code)

    if isinstance(error, (BotoConnectionError, HTTPClientError)):
        return TransientStoreError(
            f"DynamoDB {operation} could not reach the service: {error}",
            operation=operation,
            code=type(error).__name__,
        )

    return PermanentStoreError(
        f"DynamoDB {operation} failed: {error}",
        operation=operation,
        code=type(error).__name__,
    )


def lease_to_item(lease: Lease) -> dict[str, dict[str, str]]:
    item = {
        RESOURCE_ATTR: {"S": lease.resource},
        EXPIRES_AT_ATTR: {"N": str(lease.expires_at)},
    }
    if lease.owner is not None:
        item[OWNER_ATTR] = {"S": lease.owner}
    return item


def item_to_lease(item: dict[str, Any]) -> Lease:
    owner = item.get(OWNER_ATTR)
    return Lease(
        resource=item[RESOURCE_ATTR]["S"],
        expires_at=int(item[EXPIRES_AT_ATTR]["N"]),
        owner=owner["S"] if owner else None,
    )


class DynamoDBLeaseStore(LeaseStore):
    """
    Lease store backed by DynamoDB conditional writes.

    Args:
        config: Table and connection settings
        client: Pre-built DynamoDB client (built from config if omitted)
        clock: Epoch-millisecond clock used for expiry comparisons
        tracer: Optional custom Tracer instance
        enable_tracing: Whether to enable OpenTelemetry tracing.
                      Ignored if tracer is explicitly provided.

    Note:
        Expiry is compared against this process's clock. Hosts sharing a
        table need reasonably synchronised clocks; skew shortens or lengthens
        leases by the skew amount.

        The table must be keyed on ``resource`` alone. An existing table
        keyed on ``key`` (hash) plus ``expire`` (range) is rejected by
        ``ensure_schema``; migrate it by creating a new ``resource``-keyed
        table and pointing ``table_name`` at it.
    """

    def __init__(
        self,
        config: DynamoDBConfig,
        *,
        client: BaseClient | None = None,
        clock: Clock = now_ms,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._config = config
        self._table_name = config.table_name
        self._client = client or build_client(config)
        self._clock = clock
        self._tracer = tracer or create_tracer(__name__, enable_tracing)

    @property
    def table_name(self) -> str:
        return self._table_name

    def _key(self, resource: str) -> dict[str, dict[str, str]]:
        return {RESOURCE_ATTR: {"S": resource}}

    async def _call(
        self,
        operation: str,
        method: str,
        *,
        conditional: bool = False,
        **kwargs: Any,
    ) -> dict[str, Any] | None:
        """
        Run one client call in the executor and translate its failures.

        Returns None when ``conditional`` is set and DynamoDB rejected the
        condition expression.
        """
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(
                None,
                functools.partial(getattr(self._client, method), **kwargs),
            )
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if conditional and code == CONDITIONAL_CHECK_FAILED:
                return None
            raise classify_error(e, operation) from e
        except BotoCoreError as e:
            raise classify_error(e, operation) from e

    def _span(self, operation: str, db_operation: str, resource: str | None = None):
        attributes: dict[str, Any] = {
            ATTR_DB_SYSTEM: "dynamodb",
            ATTR_DB_NAME: self._table_name,
            ATTR_DB_OPERATION: db_operation,
        }
        if resource is not None:
            attributes[ATTR_LOCK_RESOURCE] = resource
        return self._tracer.span(f"leaselock.store.{operation}", attributes)

    async def ensure_schema(self) -> None:
        with self._span("ensure_schema", "DescribeTable"):
            try:
                description = await self._call(
                    "ensure_schema", "describe_table", TableName=self._table_name
                )
            except StoreError as e:
                if e.code != "ResourceNotFoundException":
                    raise SchemaProvisioningError(self._table_name, str(e)) from e
                await self._create_table()
                return

        assert description is not None
        key_schema = description["Table"].get("KeySchema", [])
        expected = [{"AttributeName": RESOURCE_ATTR, "KeyType": "HASH"}]
        if key_schema != expected:
            raise SchemaProvisioningError(
                self._table_name,
                f"key schema must be {expected}, found {key_schema}; "
                "migrate leases to a table keyed on resource alone",
            )
        logger.debug("Lease table %s already exists", self._table_name)

    async def _create_table(self) -> None:
        params: dict[str, Any] = {
            "TableName": self._table_name,
            "AttributeDefinitions": [
                {"AttributeName": RESOURCE_ATTR, "AttributeType": "S"},
            ],
            "KeySchema": [
                {"AttributeName": RESOURCE_ATTR, "KeyType": "HASH"},
            ],
            "BillingMode": self._config.billing_mode,
        }
        if self._config.billing_mode == "PROVISIONED":
            params["ProvisionedThroughput"] = {
                "ReadCapacityUnits": self._config.read_capacity,
                "WriteCapacityUnits": self._config.write_capacity,
            }

        logger.info("Creating lease table %s", self._table_name)
        with self._span("ensure_schema", "CreateTable"):
            try:
                await self._call("ensure_schema", "create_table", **params)
            except StoreError as e:
                # Another process created it between our describe and create
                if e.code != "ResourceInUseException":
                    raise SchemaProvisioningError(self._table_name, str(e)) from e

            loop = asyncio.get_running_loop()
            waiter = self._client.get_waiter("table_exists")
            try:
                await loop.run_in_executor(
                    None,
                    functools.partial(
                        waiter.wait,
                        TableName=self._table_name,
                        WaiterConfig={"Delay": 1, "MaxAttempts": 60},
                    ),
                )
            except BotoCoreError as e:
                raise SchemaProvisioningError(self._table_name, str(e)) from e

    async def try_acquire(
        self,
        resource: str,
        lease_duration_ms: int,
        owner: str | None = None,
    ) -> Lease | None:
        validate_lease_request(resource, lease_duration_ms)
        now = self._clock()
        lease = Lease(resource=resource, expires_at=now + lease_duration_ms, owner=owner)

        names = {"#resource": RESOURCE_ATTR, "#expires_at": EXPIRES_AT_ATTR}
        values = {":now": {"N": str(now)}}
        condition = ACQUIRE_CONDITION
        if owner is not None:
            # Re-running the same acquisition (e.g. after a timed-out put that
            # did land) must not see its own row as contention.
            condition = ACQUIRE_OWN_CONDITION
            names["#owner"] = OWNER_ATTR
            values[":owner"] = {"S": owner}

        with self._span("try_acquire", "PutItem", resource):
            response = await self._call(
                "try_acquire",
                "put_item",
                conditional=True,
                TableName=self._table_name,
                Item=lease_to_item(lease),
                ConditionExpression=condition,
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
        if response is None:
            return None
        return lease

    async def release(self, resource: str, owner: str | None = None) -> bool:
        params: dict[str, Any] = {
            "TableName": self._table_name,
            "Key": self._key(resource),
        }
        if owner is not None:
            params["ConditionExpression"] = RELEASE_CONDITION
            params["ExpressionAttributeNames"] = {
                "#resource": RESOURCE_ATTR,
                "#owner": OWNER_ATTR,
            }
            params["ExpressionAttributeValues"] = {":owner": {"S": owner}}

        with self._span("release", "DeleteItem", resource):
            response = await self._call("release", "delete_item", conditional=True, **params)
        return response is not None

    async def renew(
        self,
        resource: str,
        owner: str,
        lease_duration_ms: int,
    ) -> Lease | None:
        validate_lease_request(resource, lease_duration_ms)
        now = self._clock()

        with self._span("renew", "UpdateItem", resource):
            response = await self._call(
                "renew",
                "update_item",
                conditional=True,
                TableName=self._table_name,
                Key=self._key(resource),
                UpdateExpression="SET #expires_at = :expires_at",
                ConditionExpression=RENEW_CONDITION,
                ExpressionAttributeNames={
                    "#owner": OWNER_ATTR,
                    "#expires_at": EXPIRES_AT_ATTR,
                },
                ExpressionAttributeValues={
                    ":owner": {"S": owner},
                    ":expires_at": {"N": str(now + lease_duration_ms)},
                    ":now": {"N": str(now)},
                },
                ReturnValues="ALL_NEW",
            )
        if response is None:
            return None
        return item_to_lease(response["Attributes"])

    async def get(self, resource: str) -> Lease | None:
        with self._span("get", "GetItem", resource):
            response = await self._call(
                "get",
                "get_item",
                TableName=self._table_name,
                Key=self._key(resource),
                ConsistentRead=True,
            )
        assert response is not None
        item = response.get("Item")
        return item_to_lease(item) if item else None
