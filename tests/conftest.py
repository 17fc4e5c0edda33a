import os
from datetime import datetime, timezone

import boto3
import pytest
from boto3.dynamodb.types import TypeSerializer
from moto import mock_aws

os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_SECURITY_TOKEN", "testing")
os.environ.setdefault("AWS_SESSION_TOKEN", "testing")
os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")

import cognito_utils  # noqa: E402
import dynamo_utils  # noqa: E402

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

_serializer = TypeSerializer()


def _create(ddb, name, keys, **extra):
    schema = [{"AttributeName": keys[0], "KeyType": "HASH"}]
    attrs = [{"AttributeName": keys[0], "AttributeType": "S"}]
    if len(keys) > 1:
        schema.append({"AttributeName": keys[1], "KeyType": "RANGE"})
        attrs.append({"AttributeName": keys[1], "AttributeType": "S"})
    for a in extra.pop("extra_attrs", []):
        attrs.append({"AttributeName": a, "AttributeType": "S"})
    ddb.create_table(
        TableName=name,
        KeySchema=schema,
        AttributeDefinitions=attrs,
        BillingMode="PAY_PER_REQUEST",
        **extra,
    )


@pytest.fixture
def aws():
    with mock_aws():
        dynamo_utils._dynamodb = None
        cognito_utils._client = None
        yield
    dynamo_utils._dynamodb = None
    cognito_utils._client = None


@pytest.fixture
def mock_dynamodb(aws):
    ddb = boto3.resource("dynamodb", region_name="us-east-1")
    _create(ddb, dynamo_utils.USERS_TABLE, ["user_id"])
    _create(ddb, dynamo_utils.EVENTS_TABLE, ["event_id"])
    _create(ddb, dynamo_utils.ANALYTICS_TABLE, ["parent_key", "entry_key"])
    _create(ddb, dynamo_utils.CALENDARS_TABLE, ["calendar_id"])
    _create(ddb, dynamo_utils.CALENDAR_EVENTS_TABLE, ["calendar_id", "event_id"])
    _create(
        ddb,
        dynamo_utils.REPORTS_TABLE,
        ["report_id"],
        extra_attrs=["event_id"],
        GlobalSecondaryIndexes=[{
            "IndexName": dynamo_utils.REPORTS_EVENT_INDEX,
            "KeySchema": [{"AttributeName": "event_id", "KeyType": "HASH"}],
            "Projection": {"ProjectionType": "ALL"},
        }],
    )
    _create(ddb, dynamo_utils.CITY_CHAT_TABLE, ["city_id", "message_id"])
    _create(ddb, dynamo_utils.CANAL_TABLE, ["calendar_id", "message_id"])
    _create(ddb, dynamo_utils.BLOCKED_CHATS_TABLE, ["user_id", "chat_id"])
    return ddb


@pytest.fixture
def user_pool(aws):
    client = boto3.client("cognito-idp", region_name="us-east-1")
    pool_id = client.create_user_pool(PoolName="community")["UserPool"]["Id"]
    cognito_utils.COGNITO_USER_POOL_ID = pool_id
    yield client, pool_id
    cognito_utils.COGNITO_USER_POOL_ID = None


def iso(dt):
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def stream_event(*images, event_name="INSERT"):
    """DynamoDB stream batch with one record per image."""
    return {
        "Records": [
            {
                "eventID": f"evt-{i}",
                "eventName": event_name,
                "dynamodb": {
                    "SequenceNumber": f"{100 + i}",
                    "NewImage": {k: _serializer.serialize(v) for k, v in image.items()},
                },
            }
            for i, image in enumerate(images)
        ]
    }


def api_event(body=None, method="POST", path="/", sub=None):
    event = {
        "httpMethod": method,
        "path": path,
        "headers": {"Content-Type": "application/json"},
        "body": body,
        "requestContext": {},
    }
    if sub:
        event["requestContext"]["authorizer"] = {"claims": {"sub": sub}}
    return event
