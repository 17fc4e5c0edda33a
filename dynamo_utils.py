# dynamo_utils.py

import os
import time
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, List, Dict, Any, Iterator, Tuple

import boto3
from boto3.dynamodb.conditions import Key
from boto3.dynamodb.types import TypeDeserializer
from botocore.exceptions import ClientError

from policy import BlockRecord, Role, build_role_snapshot, normalize_channel_id

logger = logging.getLogger(__name__)

DDB_ENDPOINT_URL = os.getenv("DDB_ENDPOINT_URL")  # allow local testing

USERS_TABLE           = os.getenv("USERS_TABLE", "Users")
EVENTS_TABLE          = os.getenv("EVENTS_TABLE", "Events")
ANALYTICS_TABLE       = os.getenv("ANALYTICS_TABLE", "EventAnalytics")
CALENDARS_TABLE       = os.getenv("CALENDARS_TABLE", "PrivateCalendars")
CALENDAR_EVENTS_TABLE = os.getenv("CALENDAR_EVENTS_TABLE", "CalendarEvents")
REPORTS_TABLE         = os.getenv("REPORTS_TABLE", "EventReports")
REPORTS_EVENT_INDEX   = os.getenv("REPORTS_EVENT_INDEX", "event_id-index")
CITY_CHAT_TABLE       = os.getenv("CITY_CHAT_TABLE", "CityChatMessages")
CANAL_TABLE           = os.getenv("CANAL_TABLE", "CanalMessages")
BLOCKED_CHATS_TABLE   = os.getenv("BLOCKED_CHATS_TABLE", "BlockedChats")

ANALYTICS_COLLECTIONS = ("views", "event_views", "event_participations", "event_shares")

# DynamoDB TransactWriteItems limit
MAX_TRANSACTION_ITEMS = 100

_dynamodb = None
_deserializer = TypeDeserializer()


def get_dynamodb():
    global _dynamodb
    if _dynamodb is None:
        _dynamodb = boto3.resource("dynamodb", endpoint_url=DDB_ENDPOINT_URL) if DDB_ENDPOINT_URL else boto3.resource("dynamodb")
    return _dynamodb


def table(name: str):
    return get_dynamodb().Table(name)


def now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def to_datetime(value: Any) -> Optional[datetime]:
    """ISO-8601 strings and epoch numbers (seconds or ms) -> aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        seconds = float(value)
        if seconds > 1e11:  # epoch ms
            seconds /= 1000.0
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning("Unparseable timestamp %r", value)
            return None
        return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    logger.warning("Unsupported timestamp type %s", type(value).__name__)
    return None


def _scan_all(tbl, **kwargs) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    while True:
        r = tbl.scan(**kwargs)
        items.extend(r.get("Items", []))
        last = r.get("LastEvaluatedKey")
        if not last:
            return items
        kwargs["ExclusiveStartKey"] = last


def _query_all(tbl, **kwargs) -> List[Dict[str, Any]]:
    items: List[Dict[str, Any]] = []
    while True:
        r = tbl.query(**kwargs)
        items.extend(r.get("Items", []))
        last = r.get("LastEvaluatedKey")
        if not last:
            return items
        kwargs["ExclusiveStartKey"] = last


# ---------- Streams ----------

def deserialize_image(image: Dict[str, Any]) -> Dict[str, Any]:
    return {k: _deserializer.deserialize(v) for k, v in (image or {}).items()}


def inserted_images(event: Dict[str, Any]) -> Iterator[Tuple[Dict[str, Any], Dict[str, Any]]]:
    """Yields (record, new_image) for each INSERT record of a DynamoDB stream batch."""
    for record in (event or {}).get("Records", []) or []:
        if record.get("eventName") != "INSERT":
            continue
        image = (record.get("dynamodb") or {}).get("NewImage")
        if not image:
            continue
        yield record, deserialize_image(image)


def sequence_number(record: Dict[str, Any]) -> str:
    """Stream position of a record, used to report it back as a batch item failure."""
    return (record.get("dynamodb") or {}).get("SequenceNumber") or record.get("eventID") or ""


# ---------- Users ----------

def get_user(user_id: str) -> Optional[Dict[str, Any]]:
    r = table(USERS_TABLE).get_item(Key={"user_id": user_id})
    return r.get("Item")


def get_user_role(user_id: str) -> Optional[Role]:
    """None when the user has no record."""
    user = get_user(user_id)
    if user is None:
        return None
    return Role.parse(user.get("role"))


def load_role_snapshot() -> Dict[str, Role]:
    users = _scan_all(table(USERS_TABLE), ProjectionExpression="user_id, #r",
                      ExpressionAttributeNames={"#r": "role"})
    return build_role_snapshot(users)


def delete_user_record(user_id: str) -> None:
    table(USERS_TABLE).delete_item(Key={"user_id": user_id})


# ---------- Events / Calendars ----------

def scan_events() -> List[Dict[str, Any]]:
    return _scan_all(table(EVENTS_TABLE))


def scan_calendars() -> List[Dict[str, Any]]:
    return _scan_all(table(CALENDARS_TABLE))


def get_calendar_events(calendar_id: str) -> List[Dict[str, Any]]:
    return _query_all(table(CALENDAR_EVENTS_TABLE),
                      KeyConditionExpression=Key("calendar_id").eq(calendar_id))


def analytics_parent_key(event_id: str, calendar_id: Optional[str] = None) -> str:
    if calendar_id:
        return f"calendars#{calendar_id}#events#{event_id}"
    return f"events#{event_id}"


def get_analytics_entries(parent_key: str, sub_collection: str) -> List[Dict[str, Any]]:
    return _query_all(
        table(ANALYTICS_TABLE),
        KeyConditionExpression=Key("parent_key").eq(parent_key) & Key("entry_key").begins_with(f"{sub_collection}#"),
        ProjectionExpression="parent_key, entry_key",
    )


def analytics_keys(parent_key: str) -> List[Dict[str, Any]]:
    """Keys of every analytics entry under a parent. A failing sub-collection counts as empty."""
    keys: List[Dict[str, Any]] = []
    for sub in ANALYTICS_COLLECTIONS:
        try:
            entries = get_analytics_entries(parent_key, sub)
        except ClientError as e:
            logger.warning(f"analytics fetch {parent_key}/{sub} failed: {e}")
            continue
        keys.extend({"parent_key": x["parent_key"], "entry_key": x["entry_key"]} for x in entries)
    return keys


# ---------- Deletion ----------

def batch_delete(table_name: str, keys: List[Dict[str, Any]]) -> int:
    if not keys:
        return 0
    with table(table_name).batch_writer() as batch:
        for key in keys:
            batch.delete_item(Key=key)
    return len(keys)


def _transact_delete(items: List[Tuple[str, Dict[str, Any]]]) -> None:
    get_dynamodb().meta.client.transact_write_items(
        TransactItems=[
            {"Delete": {"TableName": name, "Key": key}}
            for name, key in items
        ]
    )


def delete_with_dependents(
    table_name: str,
    key: Dict[str, Any],
    dependents: List[Tuple[str, Dict[str, Any]]],
) -> int:
    """Deletes a parent item and its dependent items together.

    Uses a single transaction when everything fits in one; otherwise dependents
    go first in batches and the parent last, so a failure leaves the parent for
    the next pass to retry.
    Returns the number of dependents removed.
    """
    if len(dependents) + 1 <= MAX_TRANSACTION_ITEMS:
        _transact_delete(list(dependents) + [(table_name, key)])
        return len(dependents)

    by_table: Dict[str, List[Dict[str, Any]]] = {}
    for name, dep_key in dependents:
        by_table.setdefault(name, []).append(dep_key)
    for name, keys in by_table.items():
        batch_delete(name, keys)
    table(table_name).delete_item(Key=key)
    return len(dependents)


def delete_event(event_id: str) -> int:
    parent = analytics_parent_key(event_id)
    deps = [(ANALYTICS_TABLE, k) for k in analytics_keys(parent)]
    return delete_with_dependents(EVENTS_TABLE, {"event_id": event_id}, deps)


def delete_calendar_event(calendar_id: str, event_id: str) -> int:
    parent = analytics_parent_key(event_id, calendar_id)
    deps = [(ANALYTICS_TABLE, k) for k in analytics_keys(parent)]
    return delete_with_dependents(CALENDAR_EVENTS_TABLE, {"calendar_id": calendar_id, "event_id": event_id}, deps)


# ---------- Reports ----------

def get_reports_for_event(event_id: str) -> List[Dict[str, Any]]:
    return _query_all(
        table(REPORTS_TABLE),
        IndexName=REPORTS_EVENT_INDEX,
        KeyConditionExpression=Key("event_id").eq(event_id),
    )


def delete_reports(reports: List[Dict[str, Any]]) -> int:
    return batch_delete(REPORTS_TABLE, [{"report_id": r["report_id"]} for r in reports])


# ---------- Chat messages ----------

def get_channel_messages(table_name: str, partition_key: str, channel_id: str) -> List[Dict[str, Any]]:
    return _query_all(table(table_name), KeyConditionExpression=Key(partition_key).eq(channel_id))


# ---------- Blocks ----------

def save_block(record: BlockRecord) -> None:
    table(BLOCKED_CHATS_TABLE).put_item(Item={
        "user_id": record.user_id,
        "chat_id": record.chat_id,
        "blocked_until": record.blocked_until.strftime("%Y-%m-%dT%H:%M:%SZ"),
        # TTL attribute, epoch seconds
        "expire_at": int(record.blocked_until.timestamp()),
        "updated_at": now_iso(),
    })


def get_block(user_id: str, chat_id: str) -> Optional[Dict[str, Any]]:
    r = table(BLOCKED_CHATS_TABLE).get_item(Key={"user_id": user_id, "chat_id": normalize_channel_id(chat_id)})
    return r.get("Item")


def is_blocked(user_id: str, chat_id: str, now: Optional[datetime] = None) -> bool:
    # TTL deletion is lazy, so expired items may still be returned
    item = get_block(user_id, chat_id)
    if not item:
        return False
    until = to_datetime(item.get("blocked_until"))
    return bool(until and until > (now or datetime.now(timezone.utc)))
