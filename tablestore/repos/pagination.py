"""Continuation tokens for paginated index queries."""

import base64
import binascii
import json
from collections.abc import Collection
from typing import Any

from tablestore.core.errors import TokenDecodeError

# Tokens come back from untrusted clients; anything larger is not ours
MAX_TOKEN_LENGTH = 4096


def _is_key_value(value: Any) -> bool:
    return isinstance(value, (str, int, float)) and not isinstance(value, bool)


def encode_token(marker: dict[str, Any] | None) -> str | None:
    """Encode an engine resume marker as an opaque token.

    Args:
        marker: The engine's last-evaluated key, or None at the end of the index

    Returns:
        URL-safe base64 token, or None when there is nothing to resume
    """
    if marker is None:
        return None
    json_str = json.dumps(marker, sort_keys=True, separators=(",", ":"))
    return base64.urlsafe_b64encode(json_str.encode("utf-8")).decode("ascii")


def decode_token(
    token: str | None,
    key_attributes: Collection[str] | None = None,
    partition: tuple[str, str] | None = None,
) -> dict[str, Any] | None:
    """Decode a token produced by `encode_token`.

    Args:
        token: Token from a previous page, or None for the first page
        key_attributes: Attributes a marker of the queried index consists of;
            a token carrying any other set of attributes is rejected
        partition: (attribute, value) the queried partition; a token positioned
            in any other partition is rejected

    Returns:
        The resume marker, or None when no token was given

    Raises:
        TokenDecodeError: If the token is malformed or belongs to another index or partition
    """
    if token is None:
        return None
    if not isinstance(token, str) or not token or len(token) > MAX_TOKEN_LENGTH:
        raise TokenDecodeError("Invalid continuation token")
    try:
        json_str = base64.urlsafe_b64decode(token.encode("ascii")).decode("utf-8")
        marker = json.loads(json_str)
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise TokenDecodeError(f"Invalid continuation token: {e}") from e

    if not isinstance(marker, dict) or not marker:
        raise TokenDecodeError("Invalid continuation token: unexpected structure")
    if not all(_is_key_value(value) for value in marker.values()):
        raise TokenDecodeError("Invalid continuation token: unexpected structure")
    if key_attributes is not None and set(marker) != set(key_attributes):
        raise TokenDecodeError(
            "Continuation token does not belong to this query",
            details={"expected": sorted(key_attributes), "received": sorted(marker)},
        )
    if partition is not None:
        attribute, value = partition
        if marker.get(attribute) != value:
            raise TokenDecodeError(
                "Continuation token belongs to another partition",
                details={"attribute": attribute},
            )
    return marker
