"""Plugin data client and the string-map codecs built on it."""

from .client import PluginDataClient
from .marshal import (
    AccessRequestData,
    GenericPluginData,
    ResolutionTag,
    decode_access_request_data,
    decode_int,
    decode_plugin_data,
    encode_access_request_data,
    encode_int,
    encode_plugin_data,
    split_string,
)

__all__ = [
    "PluginDataClient",
    "AccessRequestData",
    "GenericPluginData",
    "ResolutionTag",
    "decode_access_request_data",
    "decode_int",
    "decode_plugin_data",
    "encode_access_request_data",
    "encode_int",
    "encode_plugin_data",
    "split_string",
]
