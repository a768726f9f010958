"""Channel directory and name normalization."""

from beacon.channels.directory import (
    ChannelDirectory,
    ChannelRef,
    InvalidChannelNameError,
    normalize_channel_name,
)
from beacon.channels.slug import slugify

__all__ = [
    "ChannelDirectory",
    "ChannelRef",
    "InvalidChannelNameError",
    "normalize_channel_name",
    "slugify",
]
