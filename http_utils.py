# http_utils.py

import base64
import json
from typing import Any, Dict, Optional

from errors import AppError, ValidationError

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type,Authorization",
    "Access-Control-Allow-Methods": "POST,OPTIONS",
}


def response(status_code: int, body: Any = None, headers: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """API Gateway proxy response. Strings are sent as-is, anything else as JSON."""
    h = dict(CORS_HEADERS)
    if isinstance(body, str):
        h["Content-Type"] = "text/plain; charset=utf-8"
        payload = body
    elif body is None:
        payload = ""
    else:
        h["Content-Type"] = "application/json"
        payload = json.dumps(body, ensure_ascii=False)
    if headers:
        h.update(headers)
    return {"statusCode": status_code, "headers": h, "body": payload}


def error_response(err: AppError) -> Dict[str, Any]:
    return response(err.status_code, err.to_body())


def parse_json_body(event: Dict[str, Any]) -> Dict[str, Any]:
    body = (event or {}).get("body")
    if body is None or body == "":
        return {}
    if isinstance(body, dict):
        return body
    if (event or {}).get("isBase64Encoded"):
        body = base64.b64decode(body).decode("utf-8")
    try:
        data = json.loads(body)
    except (TypeError, ValueError):
        raise ValidationError("Invalid JSON body")
    if not isinstance(data, dict):
        raise ValidationError("JSON body must be an object")
    return data


def request_method(event: Dict[str, Any]) -> str:
    ctx_http = ((event or {}).get("requestContext") or {}).get("http") or {}
    return ((event or {}).get("httpMethod") or ctx_http.get("method") or "").upper()


def request_path(event: Dict[str, Any]) -> str:
    path = (event or {}).get("path") or (event or {}).get("rawPath") or ""
    return "/" + path.strip("/")


def caller_uid(event: Dict[str, Any]) -> Optional[str]:
    """Cognito `sub` from a REST (claims) or HTTP API (jwt.claims) authorizer."""
    authorizer = ((event or {}).get("requestContext") or {}).get("authorizer") or {}
    claims = authorizer.get("claims") or (authorizer.get("jwt") or {}).get("claims") or {}
    return claims.get("sub") or None
