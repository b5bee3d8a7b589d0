"""Encoding of plugin data structures into flat string maps.

Every encoder emits its full key set, using empty strings for zero values,
so that an encoded zero value can be passed as the expected value of a
compare-and-swap write.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Mapping
from urllib.parse import quote, unquote

from access_plugins.cache import MessageLocator
from access_plugins.models import PluginDataMap


def split_string(value: str, sep: str) -> List[str]:
    """Split *value* on *sep*, returning an empty list for an empty string."""

    if not value:
        return []
    return value.split(sep)


def encode_int(value: int) -> str:
    if value == 0:
        return ""
    return str(value)


def decode_int(value: str) -> int:
    if not value:
        return 0
    try:
        return int(value)
    except ValueError:
        return 0


class ResolutionTag(str, Enum):
    UNRESOLVED = ""
    APPROVED = "APPROVED"
    DENIED = "DENIED"
    EXPIRED = "EXPIRED"


def _decode_tag(value: str) -> ResolutionTag:
    try:
        return ResolutionTag(value)
    except ValueError:
        return ResolutionTag.UNRESOLVED


@dataclass
class AccessRequestData:
    user: str = ""
    roles: List[str] = field(default_factory=list)
    request_reason: str = ""
    reviews_count: int = 0
    resolution_tag: ResolutionTag = ResolutionTag.UNRESOLVED
    resolution_reason: str = ""

    @property
    def resolved(self) -> bool:
        return self.resolution_tag is not ResolutionTag.UNRESOLVED


def encode_access_request_data(data: AccessRequestData) -> PluginDataMap:
    return {
        "user": data.user,
        "roles": ",".join(data.roles),
        "request_reason": data.request_reason,
        "reviews_count": encode_int(data.reviews_count),
        "resolution": data.resolution_tag.value,
        "resolve_reason": data.resolution_reason,
    }


def decode_access_request_data(data_map: Mapping[str, str] | None) -> AccessRequestData:
    data_map = data_map or {}
    return AccessRequestData(
        user=data_map.get("user", ""),
        roles=split_string(data_map.get("roles", ""), ","),
        request_reason=data_map.get("request_reason", ""),
        reviews_count=decode_int(data_map.get("reviews_count", "")),
        resolution_tag=_decode_tag(data_map.get("resolution", "")),
        resolution_reason=data_map.get("resolve_reason", ""),
    )


@dataclass
class GenericPluginData(AccessRequestData):
    """Request data plus every chat message posted about the request."""

    sent_messages: List[MessageLocator] = field(default_factory=list)


def _escape(value: str) -> str:
    return quote(value, safe="")


def encode_messages(messages: List[MessageLocator]) -> str:
    """Join locators as ``channel/message`` pairs, percent-escaping both parts."""

    return ",".join(f"{_escape(message.channel_id)}/{_escape(message.message_id)}" for message in messages)


def decode_messages(value: str) -> List[MessageLocator]:
    messages: List[MessageLocator] = []
    for part in split_string(value, ","):
        channel_id, sep, message_id = part.partition("/")
        if sep and channel_id and message_id and "/" not in message_id:
            messages.append(MessageLocator(channel_id=unquote(channel_id), message_id=unquote(message_id)))
    return messages


def encode_plugin_data(data: GenericPluginData) -> PluginDataMap:
    result = encode_access_request_data(data)
    result["messages"] = encode_messages(data.sent_messages)
    return result


def decode_plugin_data(data_map: Mapping[str, str] | None) -> GenericPluginData:
    data_map = data_map or {}
    base = decode_access_request_data(data_map)
    messages: List[MessageLocator] = []

    # Entries written before messages were stored as a list. Once a list is
    # stored it already carries the legacy message.
    channel_id, timestamp = data_map.get("channel_id", ""), data_map.get("timestamp", "")
    encoded = data_map.get("messages", "")
    if encoded:
        messages.extend(decode_messages(encoded))
    elif channel_id and timestamp:
        messages.append(MessageLocator(channel_id=channel_id, message_id=timestamp))

    return GenericPluginData(
        user=base.user,
        roles=base.roles,
        request_reason=base.request_reason,
        reviews_count=base.reviews_count,
        resolution_tag=base.resolution_tag,
        resolution_reason=base.resolution_reason,
        sent_messages=messages,
    )
