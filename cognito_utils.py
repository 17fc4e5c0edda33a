# cognito_utils.py

import os
import logging
from typing import Any, Dict, Iterator, Optional

import boto3

logger = logging.getLogger(__name__)

COGNITO_USER_POOL_ID = os.getenv("COGNITO_USER_POOL_ID")
LIST_PAGE_SIZE = 60  # Cognito maximum

_client = None


def get_client():
    global _client
    if _client is None:
        _client = boto3.client("cognito-idp")
    return _client


def _attr(user: Dict[str, Any], name: str) -> Optional[str]:
    for a in user.get("Attributes", []) or []:
        if a.get("Name") == name:
            return a.get("Value")
    return None


def user_id_of(user: Dict[str, Any]) -> str:
    """Application uid: the `sub` attribute, falling back to the Cognito username."""
    return _attr(user, "sub") or user["Username"]


def is_email_verified(user: Dict[str, Any]) -> bool:
    return (_attr(user, "email_verified") or "").lower() == "true"


def list_users(pool_id: Optional[str] = None) -> Iterator[Dict[str, Any]]:
    pool_id = pool_id or COGNITO_USER_POOL_ID
    paginator = get_client().get_paginator("list_users")
    for page in paginator.paginate(UserPoolId=pool_id, PaginationConfig={"PageSize": LIST_PAGE_SIZE}):
        yield from page.get("Users", [])


def delete_user(username: str, pool_id: Optional[str] = None) -> None:
    get_client().admin_delete_user(UserPoolId=pool_id or COGNITO_USER_POOL_ID, Username=username)
