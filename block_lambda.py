import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import dynamo_utils
from errors import AppError, AuthorizationError
from http_utils import caller_uid, error_response, parse_json_body, request_method, response
from policy import BlockRecord, Role, issue_block

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def block_user(uid: Optional[str], data: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Blocks `userId` in a chat channel for `minutes` (boss callers only)."""
    if not uid:
        raise AuthorizationError("Not authenticated.", status_code=401)
    now = now or datetime.now(timezone.utc)

    actor_role = dynamo_utils.get_user_role(uid)
    user_id = data.get("userId")
    channel_id = data.get("cityId") or data.get("channelId")
    # target lookup only once the caller is known to be a boss
    target_role = None
    if actor_role is Role.BOSS and user_id:
        target_role = dynamo_utils.get_user_role(str(user_id))

    result = issue_block(actor_role, target_role, user_id, channel_id, data.get("minutes"), now)
    if isinstance(result, BlockRecord):
        dynamo_utils.save_block(result)
        logger.info("User %s blocked in %s until %s by %s", result.user_id, result.chat_id, result.blocked_until, uid)
    else:
        logger.info("Block of %s refused: %s", user_id, result.reason)
    return result.to_response()


def lambda_handler(event, context):
    if request_method(event) == "OPTIONS":
        return response(204)
    try:
        data = parse_json_body(event)
        return response(200, block_user(caller_uid(event), data))
    except AppError as e:
        logger.warning("Block refused: %s", e.message)
        return error_response(e)
    except Exception as e:
        logger.exception("Block failed: %r", e)
        return response(500, {"error": "Internal error"})
