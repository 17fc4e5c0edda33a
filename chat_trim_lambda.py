import logging
from dataclasses import dataclass
from typing import Any, Dict, List

import dynamo_utils
from policy import CHAT_WINDOW_SIZE, trim_window

logger = logging.getLogger()
logger.setLevel(logging.INFO)


@dataclass(frozen=True)
class ChannelKind:
    name: str
    table_name: str
    partition_key: str
    order_field: str


CITY_CHAT = ChannelKind("city_chat", dynamo_utils.CITY_CHAT_TABLE, "city_id", "timestamp")
PRIVATE_CANAL = ChannelKind("canal", dynamo_utils.CANAL_TABLE, "calendar_id", "created_at")


def _order_value(message: Dict[str, Any], field: str) -> float:
    # messages without an ordering value sort as oldest
    dt = dynamo_utils.to_datetime(message.get(field))
    return dt.timestamp() if dt else float("-inf")


def trim_channel(kind: ChannelKind, channel_id: str, window_size: int = CHAT_WINDOW_SIZE) -> int:
    messages = dynamo_utils.get_channel_messages(kind.table_name, kind.partition_key, channel_id)
    messages.sort(key=lambda m: _order_value(m, kind.order_field), reverse=True)
    ids = trim_window(messages, window_size)
    if not ids:
        return 0
    keys = [{kind.partition_key: channel_id, "message_id": mid} for mid in ids]
    deleted = dynamo_utils.batch_delete(kind.table_name, keys)
    logger.info("Trimmed %d messages from %s %s", deleted, kind.name, channel_id)
    return deleted


def _handle(kind: ChannelKind, event) -> Dict[str, Any]:
    # channel -> first record that mentioned it
    channels: Dict[str, Dict[str, Any]] = {}
    for record, image in dynamo_utils.inserted_images(event):
        channel_id = image.get(kind.partition_key)
        if channel_id and channel_id not in channels:
            channels[channel_id] = record
    if not channels:
        logger.info("No inserted %s messages", kind.name)
        return {"batchItemFailures": []}

    failures: List[Dict[str, str]] = []
    for channel_id, record in channels.items():
        try:
            trim_channel(kind, channel_id)
        except Exception as e:
            logger.exception("Trim %s %s failed: %r", kind.name, channel_id, e)
            failures.append({"itemIdentifier": dynamo_utils.sequence_number(record)})
    return {"batchItemFailures": failures}


def city_chat_handler(event, context):
    return _handle(CITY_CHAT, event)


def canal_handler(event, context):
    return _handle(PRIVATE_CANAL, event)
