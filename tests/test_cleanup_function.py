"""
Tests for the scheduled sweeps (old events, unverified accounts).
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import cleanup_function
import cognito_utils
import dynamo_utils
from conftest import NOW, iso


def _put(ddb, table_name, **item):
    ddb.Table(table_name).put_item(Item=item)


def _ids(ddb, table_name, key="event_id"):
    return {x[key] for x in ddb.Table(table_name).scan()["Items"]}


class TestPurgeOldEvents:
    def _seed(self, ddb):
        _put(ddb, dynamo_utils.USERS_TABLE, user_id="boss1", role="boss")
        _put(ddb, dynamo_utils.USERS_TABLE, user_id="prem1", role="premium")
        _put(ddb, dynamo_utils.USERS_TABLE, user_id="std1", role="standard")

        ten_days = iso(NOW - timedelta(days=10))
        _put(ddb, dynamo_utils.EVENTS_TABLE, event_id="std-old", creator_id="std1", created_at=ten_days)
        _put(ddb, dynamo_utils.EVENTS_TABLE, event_id="std-new", creator_id="std1",
             created_at=iso(NOW - timedelta(days=2)))
        _put(ddb, dynamo_utils.EVENTS_TABLE, event_id="boss-10d", creator_id="boss1", created_at=ten_days)
        _put(ddb, dynamo_utils.EVENTS_TABLE, event_id="prem-40d", creator_id="prem1",
             created_at=iso(NOW - timedelta(days=40)))
        _put(ddb, dynamo_utils.EVENTS_TABLE, event_id="no-ts", creator_id="std1")
        _put(ddb, dynamo_utils.EVENTS_TABLE, event_id="orphan-old", created_at=ten_days)

        _put(ddb, dynamo_utils.CALENDARS_TABLE, calendar_id="cal-std", owner_id="std1")
        _put(ddb, dynamo_utils.CALENDARS_TABLE, calendar_id="cal-boss", user_id="boss1")
        _put(ddb, dynamo_utils.CALENDARS_TABLE, calendar_id="cal-none")
        for cal in ("cal-std", "cal-boss", "cal-none"):
            _put(ddb, dynamo_utils.CALENDAR_EVENTS_TABLE, calendar_id=cal, event_id=f"{cal}-old", created_at=ten_days)

        analytics = ddb.Table(dynamo_utils.ANALYTICS_TABLE)
        for i in range(3):
            analytics.put_item(Item={"parent_key": "events#std-old", "entry_key": f"views#{i}"})
            analytics.put_item(Item={"parent_key": "events#boss-10d", "entry_key": f"event_shares#{i}"})
            analytics.put_item(Item={"parent_key": "calendars#cal-std#events#cal-std-old",
                                     "entry_key": f"event_participations#{i}"})

    def test_sweep_applies_role_based_retention(self, mock_dynamodb):
        self._seed(mock_dynamodb)

        stats = cleanup_function.purge_old_events(now=NOW)

        assert _ids(mock_dynamodb, dynamo_utils.EVENTS_TABLE) == {"std-new", "boss-10d", "no-ts"}
        assert _ids(mock_dynamodb, dynamo_utils.CALENDAR_EVENTS_TABLE) == {"cal-boss-old"}
        assert stats == {"events": 3, "calendar_events": 2, "failed": 0}

        left = {x["parent_key"] for x in mock_dynamodb.Table(dynamo_utils.ANALYTICS_TABLE).scan()["Items"]}
        assert left == {"events#boss-10d"}

    def test_sweep_is_idempotent(self, mock_dynamodb):
        self._seed(mock_dynamodb)

        cleanup_function.purge_old_events(now=NOW)
        stats = cleanup_function.purge_old_events(now=NOW)

        assert stats == {"events": 0, "calendar_events": 0, "failed": 0}

    def test_role_change_is_seen_at_evaluation_time(self, mock_dynamodb):
        self._seed(mock_dynamodb)
        _put(mock_dynamodb, dynamo_utils.USERS_TABLE, user_id="boss1", role="standard")

        cleanup_function.purge_old_events(now=NOW)

        assert "boss-10d" not in _ids(mock_dynamodb, dynamo_utils.EVENTS_TABLE)

    def test_one_failing_event_does_not_stop_sweep(self, mock_dynamodb):
        self._seed(mock_dynamodb)
        real = dynamo_utils.delete_event

        def flaky(event_id):
            if event_id == "std-old":
                raise RuntimeError("store unavailable")
            return real(event_id)

        with patch.object(dynamo_utils, "delete_event", side_effect=flaky):
            stats = cleanup_function.purge_old_events(now=NOW)

        assert stats["failed"] == 1
        assert stats["events"] == 2
        assert "std-old" in _ids(mock_dynamodb, dynamo_utils.EVENTS_TABLE)
        assert "prem-40d" not in _ids(mock_dynamodb, dynamo_utils.EVENTS_TABLE)

    def test_handler_returns_stats(self, mock_dynamodb):
        result = cleanup_function.delete_old_events_handler({}, None)
        assert result["statusCode"] == 200
        assert result["body"] == {"events": 0, "calendar_events": 0, "failed": 0}


class TestPurgeUnverifiedUsers:
    def _create(self, client, pool_id, username, verified):
        client.admin_create_user(
            UserPoolId=pool_id,
            Username=username,
            UserAttributes=[
                {"Name": "email", "Value": f"{username}@example.com"},
                {"Name": "email_verified", "Value": "true" if verified else "false"},
            ],
        )

    def test_deletes_only_old_unverified(self, mock_dynamodb, user_pool):
        client, pool_id = user_pool
        self._create(client, pool_id, "verified", True)
        self._create(client, pool_id, "pending", False)
        for u in cognito_utils.list_users():
            _put(mock_dynamodb, dynamo_utils.USERS_TABLE, user_id=cognito_utils.user_id_of(u), role="standard")

        later = datetime.now(timezone.utc) + timedelta(days=8)
        deleted = cleanup_function.purge_unverified_users(now=later)

        assert deleted == 1
        remaining = [u["Username"] for u in cognito_utils.list_users()]
        assert remaining == ["verified"]
        assert len(mock_dynamodb.Table(dynamo_utils.USERS_TABLE).scan()["Items"]) == 1

    def test_recent_unverified_kept(self, mock_dynamodb, user_pool):
        client, pool_id = user_pool
        self._create(client, pool_id, "pending", False)

        later = datetime.now(timezone.utc) + timedelta(days=6)
        assert cleanup_function.purge_unverified_users(now=later) == 0
        assert [u["Username"] for u in cognito_utils.list_users()] == ["pending"]

    def test_missing_users_record_is_fine(self, mock_dynamodb, user_pool):
        client, pool_id = user_pool
        self._create(client, pool_id, "pending", False)

        later = datetime.now(timezone.utc) + timedelta(days=8)
        assert cleanup_function.purge_unverified_users(now=later) == 1
