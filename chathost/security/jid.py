"""
JID (chat identity) handling.

Every component compares and stores identities in normalized form:
lower-cased, whitespace removed, device suffix dropped, bare phone numbers
completed with the default user server.
"""

import re

from chathost.errors import InvalidIdentityError


USER_SERVER = "s.whatsapp.net"

_PHONE_NUMBER = re.compile(r"^\+?\d{5,15}$")
_USER_PART = re.compile(r"^[^\s@:]+$")
_SERVER_PART = re.compile(r"^[a-z0-9][a-z0-9.\-]*$")
_DEVICE_SUFFIX = re.compile(r":\d+$")


def normalize_jid(jid: object) -> str:
    """
    Normalize a JID.

    Examples:
        " 12345@S.WhatsApp.net " -> "12345@s.whatsapp.net"
        "12345:79@s.whatsapp.net" -> "12345@s.whatsapp.net"
        "+12345678" -> "12345678@s.whatsapp.net"

    Raises:
        InvalidIdentityError: If the value is not a usable JID.
    """
    if not isinstance(jid, str):
        raise InvalidIdentityError(f"JID must be a string, got {type(jid).__name__}")

    normalized = "".join(jid.split()).lower()
    if not normalized:
        raise InvalidIdentityError("JID is empty")

    if _PHONE_NUMBER.match(normalized):
        return f"{normalized.lstrip('+')}@{USER_SERVER}"

    if normalized.count("@") != 1:
        raise InvalidIdentityError(f"Malformed JID: {jid!r}")

    user, server = normalized.split("@")
    user = _DEVICE_SUFFIX.sub("", user)

    if not user or not _USER_PART.match(user):
        raise InvalidIdentityError(f"Malformed JID user part: {jid!r}")
    if not server or not _SERVER_PART.match(server):
        raise InvalidIdentityError(f"Malformed JID server part: {jid!r}")

    return f"{user}@{server}"


def try_normalize_jid(jid: object) -> str | None:
    """Normalize a JID, returning None instead of raising."""
    try:
        return normalize_jid(jid)
    except InvalidIdentityError:
        return None
