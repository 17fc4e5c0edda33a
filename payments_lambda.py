import logging
from typing import Any, Dict

import stripe_utils
from errors import AppError, ValidationError
from http_utils import error_response, parse_json_body, request_method, request_path, response

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def _require_uid(body: Dict[str, Any]) -> str:
    uid = body.get("uid")
    if not uid or not isinstance(uid, str):
        raise ValidationError("uid is required")
    return uid


def create_checkout_session(body: Dict[str, Any]) -> Dict[str, Any]:
    url = stripe_utils.create_checkout_session(_require_uid(body))
    return response(200, url)


def cancel_subscription(body: Dict[str, Any]) -> Dict[str, Any]:
    stripe_utils.cancel_subscription(_require_uid(body))
    return response(200, {"success": True})


ROUTES = {
    "/create-checkout-session": create_checkout_session,
    "/cancel-subscription": cancel_subscription,
}


def _route(path: str):
    for suffix, fn in ROUTES.items():
        if path == suffix or path.endswith(suffix):
            return fn
    return None


def lambda_handler(event, context):
    method = request_method(event)
    path = request_path(event)
    if method == "OPTIONS":
        return response(204)

    fn = _route(path)
    if fn is None or method != "POST":
        logger.info("No route for %s %s", method, path)
        return response(404, {"error": "Not found"})

    try:
        body = parse_json_body(event)
        logger.info("PAYMENTS IN: %s %s", path, body.get("uid"))
        return fn(body)
    except AppError as e:
        logger.warning("%s refused: %s", path, e.message)
        return error_response(e)
    except Exception as e:
        logger.exception("%s failed: %r", path, e)
        return response(500, {"error": str(e)})
