"""
Unit tests for DynamoDBLeaseStore.

A real botocore client is driven through ``botocore.stub.Stubber``, so
every test checks the exact request parameters sent to DynamoDB and feeds
back canned responses or service errors. No network access is needed.
"""

from collections.abc import Iterator
from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError, EndpointConnectionError, NoCredentialsError
from botocore.stub import Stubber

from leaselock.config import DynamoDBConfig
from leaselock.exceptions import (
    InvalidLeaseRequestError,
    PermanentStoreError,
    SchemaProvisioningError,
    TransientStoreError,
)
from leaselock.leases import Lease
from leaselock.observability import MockTracer
from leaselock.stores.dynamodb import (
    ACQUIRE_CONDITION,
    ACQUIRE_OWN_CONDITION,
    RELEASE_CONDITION,
    RENEW_CONDITION,
    DynamoDBLeaseStore,
    build_client,
    classify_error,
    item_to_lease,
    lease_to_item,
)

TABLE = "locks"


@pytest.fixture
def ddb_client():
    return boto3.client(
        "dynamodb",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def stubber(ddb_client) -> Iterator[Stubber]:
    with Stubber(ddb_client) as stub:
        yield stub
        stub.assert_no_pending_responses()


@pytest.fixture
def ddb_store(ddb_client, clock) -> DynamoDBLeaseStore:
    return DynamoDBLeaseStore(
        DynamoDBConfig(table_name=TABLE, region="us-east-1"),
        client=ddb_client,
        clock=clock,
        enable_tracing=False,
    )


def client_error(code: str, status: int = 400, operation: str = "PutItem") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} raised"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


def table_description(key_schema: list[dict[str, str]] | None = None) -> dict:
    return {
        "Table": {
            "TableName": TABLE,
            "TableStatus": "ACTIVE",
            "KeySchema": key_schema or [{"AttributeName": "resource", "KeyType": "HASH"}],
        }
    }


class TestItemMapping:
    """Tests for Lease <-> DynamoDB item conversion."""

    def test_lease_to_item(self):
        lease = Lease(resource="job-42", expires_at=1_700_000_003_000, owner="a")

        assert lease_to_item(lease) == {
            "resource": {"S": "job-42"},
            "expiresAt": {"N": "1700000003000"},
            "owner": {"S": "a"},
        }

    def test_lease_without_owner_omits_attribute(self):
        item = lease_to_item(Lease(resource="job-42", expires_at=5))

        assert "owner" not in item

    def test_item_to_lease(self):
        lease = item_to_lease(
            {"resource": {"S": "job-42"}, "expiresAt": {"N": "12"}, "owner": {"S": "a"}}
        )

        assert lease == Lease(resource="job-42", expires_at=12, owner="a")

    def test_item_without_owner(self):
        lease = item_to_lease({"resource": {"S": "job-42"}, "expiresAt": {"N": "12"}})

        assert lease.owner is None


class TestClassifyError:
    """Tests for mapping botocore failures onto store errors."""

    @pytest.mark.parametrize(
        "code",
        [
            "ProvisionedThroughputExceededException",
            "RequestLimitExceeded",
            "ThrottlingException",
            "TransactionConflictException",
        ],
    )
    def test_throttling_is_transient(self, code):
        error = classify_error(client_error(code), "try_acquire")

        assert isinstance(error, TransientStoreError)
        assert error.code == code
        assert error.operation == "try_acquire"

    def test_server_error_is_transient(self):
        error = classify_error(client_error("SomethingOdd", status=503), "release")

        assert isinstance(error, TransientStoreError)

    @pytest.mark.parametrize(
        "code",
        [
            "AccessDeniedException",
            "ResourceNotFoundException",
            "ValidationException",
            "UnrecognizedClientException",
        ],
    )
    def test_client_errors_are_permanent(self, code):
        error = classify_error(client_error(code), "try_acquire")

        assert isinstance(error, PermanentStoreError)
        assert error.code == code

    def test_connection_error_is_transient(self):
        error = classify_error(EndpointConnectionError(endpoint_url="http://ddb"), "get")

        assert isinstance(error, TransientStoreError)

    def test_missing_credentials_is_permanent(self):
        error = classify_error(NoCredentialsError(), "try_acquire")

        assert isinstance(error, PermanentStoreError)
        assert error.code == "NoCredentialsError"


class TestBuildClient:
    def test_region_and_endpoint(self):
        client = build_client(
            DynamoDBConfig(
                table_name=TABLE,
                region="eu-west-1",
                access_key_id="key",
                secret_access_key="secret",
                endpoint_url="http://localhost:8000",
            )
        )

        assert client.meta.region_name == "eu-west-1"
        assert client.meta.endpoint_url == "http://localhost:8000"


class TestTryAcquire:
    """Tests for the conditional PutItem."""

    @pytest.mark.asyncio
    async def test_acquire_sends_conditional_put(self, ddb_store, stubber, clock):
        stubber.add_response(
            "put_item",
            {},
            {
                "TableName": TABLE,
                "Item": {
                    "resource": {"S": "job-42"},
                    "expiresAt": {"N": str(clock.now + 3000)},
                    "owner": {"S": "a"},
                },
                "ConditionExpression": ACQUIRE_OWN_CONDITION,
                "ExpressionAttributeNames": {
                    "#resource": "resource",
                    "#expires_at": "expiresAt",
                    "#owner": "owner",
                },
                "ExpressionAttributeValues": {
                    ":now": {"N": str(clock.now)},
                    ":owner": {"S": "a"},
                },
            },
        )

        lease = await ddb_store.try_acquire("job-42", 3000, owner="a")

        assert lease == Lease(resource="job-42", expires_at=clock.now + 3000, owner="a")

    @pytest.mark.asyncio
    async def test_acquire_without_owner(self, ddb_store, stubber, clock):
        stubber.add_response(
            "put_item",
            {},
            {
                "TableName": TABLE,
                "Item": {
                    "resource": {"S": "job-42"},
                    "expiresAt": {"N": str(clock.now + 3000)},
                },
                "ConditionExpression": ACQUIRE_CONDITION,
                "ExpressionAttributeNames": {
                    "#resource": "resource",
                    "#expires_at": "expiresAt",
                },
                "ExpressionAttributeValues": {":now": {"N": str(clock.now)}},
            },
        )

        lease = await ddb_store.try_acquire("job-42", 3000)

        assert lease.owner is None

    @pytest.mark.asyncio
    async def test_condition_failure_is_contention(self, ddb_store, stubber):
        stubber.add_client_error(
            "put_item",
            service_error_code="ConditionalCheckFailedException",
            http_status_code=400,
        )

        assert await ddb_store.try_acquire("job-42", 3000, owner="b") is None

    @pytest.mark.asyncio
    async def test_throttling_raises_transient(self, ddb_store, stubber):
        stubber.add_client_error(
            "put_item",
            service_error_code="ProvisionedThroughputExceededException",
            http_status_code=400,
        )

        with pytest.raises(TransientStoreError) as exc_info:
            await ddb_store.try_acquire("job-42", 3000, owner="a")

        assert exc_info.value.code == "ProvisionedThroughputExceededException"
        assert isinstance(exc_info.value.__cause__, ClientError)

    @pytest.mark.asyncio
    async def test_access_denied_raises_permanent(self, ddb_store, stubber):
        stubber.add_client_error(
            "put_item",
            service_error_code="AccessDeniedException",
            http_status_code=400,
        )

        with pytest.raises(PermanentStoreError) as exc_info:
            await ddb_store.try_acquire("job-42", 3000, owner="a")

        assert exc_info.value.code == "AccessDeniedException"

    @pytest.mark.asyncio
    async def test_invalid_request_never_reaches_dynamodb(self, ddb_store, stubber):
        with pytest.raises(InvalidLeaseRequestError):
            await ddb_store.try_acquire("", 3000)

    @pytest.mark.asyncio
    async def test_connection_error_raises_transient(self, clock):
        client = MagicMock()
        client.put_item.side_effect = EndpointConnectionError(endpoint_url="http://ddb")
        store = DynamoDBLeaseStore(
            DynamoDBConfig(table_name=TABLE), client=client, clock=clock, enable_tracing=False
        )

        with pytest.raises(TransientStoreError):
            await store.try_acquire("job-42", 3000, owner="a")


class TestRelease:
    """Tests for the DeleteItem release."""

    @pytest.mark.asyncio
    async def test_owner_checked_release(self, ddb_store, stubber):
        stubber.add_response(
            "delete_item",
            {},
            {
                "TableName": TABLE,
                "Key": {"resource": {"S": "job-42"}},
                "ConditionExpression": RELEASE_CONDITION,
                "ExpressionAttributeNames": {"#resource": "resource", "#owner": "owner"},
                "ExpressionAttributeValues": {":owner": {"S": "a"}},
            },
        )

        assert await ddb_store.release("job-42", owner="a") is True

    @pytest.mark.asyncio
    async def test_release_of_other_owners_row(self, ddb_store, stubber):
        stubber.add_client_error(
            "delete_item",
            service_error_code="ConditionalCheckFailedException",
            http_status_code=400,
        )

        assert await ddb_store.release("job-42", owner="a") is False

    @pytest.mark.asyncio
    async def test_unconditional_release(self, ddb_store, stubber):
        stubber.add_response(
            "delete_item",
            {},
            {"TableName": TABLE, "Key": {"resource": {"S": "job-42"}}},
        )

        assert await ddb_store.release("job-42") is True


class TestRenew:
    """Tests for the UpdateItem renewal."""

    @pytest.mark.asyncio
    async def test_renew_sends_conditional_update(self, ddb_store, stubber, clock):
        new_expiry = str(clock.now + 5000)
        stubber.add_response(
            "update_item",
            {
                "Attributes": {
                    "resource": {"S": "job-42"},
                    "expiresAt": {"N": new_expiry},
                    "owner": {"S": "a"},
                }
            },
            {
                "TableName": TABLE,
                "Key": {"resource": {"S": "job-42"}},
                "UpdateExpression": "SET #expires_at = :expires_at",
                "ConditionExpression": RENEW_CONDITION,
                "ExpressionAttributeNames": {"#owner": "owner", "#expires_at": "expiresAt"},
                "ExpressionAttributeValues": {
                    ":owner": {"S": "a"},
                    ":expires_at": {"N": new_expiry},
                    ":now": {"N": str(clock.now)},
                },
                "ReturnValues": "ALL_NEW",
            },
        )

        lease = await ddb_store.renew("job-42", "a", 5000)

        assert lease == Lease(resource="job-42", expires_at=clock.now + 5000, owner="a")

    @pytest.mark.asyncio
    async def test_renew_lost(self, ddb_store, stubber):
        stubber.add_client_error(
            "update_item",
            service_error_code="ConditionalCheckFailedException",
            http_status_code=400,
        )

        assert await ddb_store.renew("job-42", "a", 5000) is None


class TestGet:
    @pytest.mark.asyncio
    async def test_get_existing(self, ddb_store, stubber):
        stubber.add_response(
            "get_item",
            {"Item": {"resource": {"S": "job-42"}, "expiresAt": {"N": "99"}}},
            {"TableName": TABLE, "Key": {"resource": {"S": "job-42"}}, "ConsistentRead": True},
        )

        assert await ddb_store.get("job-42") == Lease(resource="job-42", expires_at=99)

    @pytest.mark.asyncio
    async def test_get_missing(self, ddb_store, stubber):
        stubber.add_response("get_item", {})

        assert await ddb_store.get("job-42") is None


class TestEnsureSchema:
    """Tests for table provisioning."""

    @pytest.mark.asyncio
    async def test_existing_table(self, ddb_store, stubber):
        stubber.add_response("describe_table", table_description(), {"TableName": TABLE})

        await ddb_store.ensure_schema()

    @pytest.mark.asyncio
    async def test_creates_missing_table(self, ddb_store, stubber):
        stubber.add_client_error(
            "describe_table",
            service_error_code="ResourceNotFoundException",
            http_status_code=400,
        )
        stubber.add_response(
            "create_table",
            {"TableDescription": {"TableName": TABLE, "TableStatus": "CREATING"}},
            {
                "TableName": TABLE,
                "AttributeDefinitions": [{"AttributeName": "resource", "AttributeType": "S"}],
                "KeySchema": [{"AttributeName": "resource", "KeyType": "HASH"}],
                "BillingMode": "PROVISIONED",
                "ProvisionedThroughput": {"ReadCapacityUnits": 1, "WriteCapacityUnits": 1},
            },
        )
        # table_exists waiter
        stubber.add_response("describe_table", table_description(), {"TableName": TABLE})

        await ddb_store.ensure_schema()

    @pytest.mark.asyncio
    async def test_pay_per_request_table(self, ddb_client, stubber, clock):
        store = DynamoDBLeaseStore(
            DynamoDBConfig(table_name=TABLE, billing_mode="PAY_PER_REQUEST"),
            client=ddb_client,
            clock=clock,
            enable_tracing=False,
        )
        stubber.add_client_error(
            "describe_table",
            service_error_code="ResourceNotFoundException",
            http_status_code=400,
        )
        stubber.add_response(
            "create_table",
            {"TableDescription": {"TableName": TABLE}},
            {
                "TableName": TABLE,
                "AttributeDefinitions": [{"AttributeName": "resource", "AttributeType": "S"}],
                "KeySchema": [{"AttributeName": "resource", "KeyType": "HASH"}],
                "BillingMode": "PAY_PER_REQUEST",
            },
        )
        stubber.add_response("describe_table", table_description(), {"TableName": TABLE})

        await store.ensure_schema()

    @pytest.mark.asyncio
    async def test_concurrent_creation_tolerated(self, ddb_store, stubber):
        """Another process creating the table first is not an error."""
        stubber.add_client_error(
            "describe_table",
            service_error_code="ResourceNotFoundException",
            http_status_code=400,
        )
        stubber.add_client_error(
            "create_table",
            service_error_code="ResourceInUseException",
            http_status_code=400,
        )
        stubber.add_response("describe_table", table_description(), {"TableName": TABLE})

        await ddb_store.ensure_schema()

    @pytest.mark.asyncio
    async def test_composite_key_rejected(self, ddb_store, stubber):
        """A table keyed by resource and expiresAt cannot enforce mutual exclusion."""
        stubber.add_response(
            "describe_table",
            table_description(
                [
                    {"AttributeName": "resource", "KeyType": "HASH"},
                    {"AttributeName": "expiresAt", "KeyType": "RANGE"},
                ]
            ),
            {"TableName": TABLE},
        )

        with pytest.raises(SchemaProvisioningError) as exc_info:
            await ddb_store.ensure_schema()

        assert exc_info.value.table_name == TABLE
        assert "migrate" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_access_denied(self, ddb_store, stubber):
        stubber.add_client_error(
            "describe_table",
            service_error_code="AccessDeniedException",
            http_status_code=400,
        )

        with pytest.raises(SchemaProvisioningError):
            await ddb_store.ensure_schema()


class TestDynamoDBTracing:
    @pytest.mark.asyncio
    async def test_put_item_span(self, ddb_client, stubber, clock):
        tracer = MockTracer()
        store = DynamoDBLeaseStore(
            DynamoDBConfig(table_name=TABLE), client=ddb_client, clock=clock, tracer=tracer
        )
        stubber.add_response("put_item", {})

        await store.try_acquire("job-42", 3000, owner="a")

        assert tracer.span_names == ["leaselock.store.try_acquire"]
        _, attributes = tracer.spans[0]
        assert attributes == {
            "db.system": "dynamodb",
            "db.name": TABLE,
            "db.operation": "PutItem",
            "leaselock.lock.resource": "job-42",
        }
