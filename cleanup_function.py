# cleanup_function.py

import logging, os
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from botocore.exceptions import ClientError

import cognito_utils
import dynamo_utils
from policy import calendar_owner, is_owner_privileged, should_delete

logger = logging.getLogger(); logger.setLevel(logging.INFO)

UNVERIFIED_MAX_AGE = timedelta(days=int(os.getenv("UNVERIFIED_MAX_AGE_DAYS", "7")))


# ---------- Unverified accounts ----------

def purge_unverified_users(now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    deleted = 0
    for user in cognito_utils.list_users():
        if cognito_utils.is_email_verified(user):
            continue
        created = dynamo_utils.to_datetime(user.get("UserCreateDate"))
        if created is None or now - created <= UNVERIFIED_MAX_AGE:
            continue
        try:
            cognito_utils.delete_user(user["Username"])
        except Exception as e:
            logger.exception("Delete unverified user %s failed: %r", user.get("Username"), e)
            continue
        try:
            dynamo_utils.delete_user_record(cognito_utils.user_id_of(user))
        except ClientError as e:
            logger.warning("Users record cleanup for %s failed: %s", user.get("Username"), e)
        deleted += 1
    logger.info("Deleted %d unverified users", deleted)
    return deleted


def delete_unverified_users_handler(event, context):
    deleted = purge_unverified_users()
    return {"statusCode": 200, "body": f"deleted {deleted}"}


# ---------- Events ----------

def purge_old_events(now: Optional[datetime] = None) -> Dict[str, int]:
    now = now or datetime.now(timezone.utc)
    roles = dynamo_utils.load_role_snapshot()
    stats = {"events": 0, "calendar_events": 0, "failed": 0}

    for ev in dynamo_utils.scan_events():
        event_id = ev.get("event_id")
        try:
            privileged = is_owner_privileged(roles, ev.get("creator_id"))
            if not should_delete(dynamo_utils.to_datetime(ev.get("created_at")), now, privileged):
                continue
            n = dynamo_utils.delete_event(event_id)
            stats["events"] += 1
            logger.info("Deleted global event %s (%d analytics entries)", event_id, n)
        except Exception as e:
            stats["failed"] += 1
            logger.exception("Global event %s failed: %r", event_id, e)

    for cal in dynamo_utils.scan_calendars():
        calendar_id = cal.get("calendar_id")
        privileged = is_owner_privileged(roles, calendar_owner(cal))
        try:
            sub_events = dynamo_utils.get_calendar_events(calendar_id)
        except Exception as e:
            stats["failed"] += 1
            logger.exception("Calendar %s events fetch failed: %r", calendar_id, e)
            continue
        for ev in sub_events:
            event_id = ev.get("event_id")
            try:
                if not should_delete(dynamo_utils.to_datetime(ev.get("created_at")), now, privileged):
                    continue
                n = dynamo_utils.delete_calendar_event(calendar_id, event_id)
                stats["calendar_events"] += 1
                logger.info("Deleted private event %s in %s (%d analytics entries)", event_id, calendar_id, n)
            except Exception as e:
                stats["failed"] += 1
                logger.exception("Private event %s in %s failed: %r", event_id, calendar_id, e)

    logger.info("Old events sweep: %s", stats)
    return stats


def delete_old_events_handler(event, context):
    stats = purge_old_events()
    return {"statusCode": 200, "body": stats}
