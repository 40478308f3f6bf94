"""
Channel catalog: persisted channel metadata, playlist ingestion and random
selection.
"""

from .channel import Channel
from .channel_catalog import ChannelCatalog, load_catalog
from .selector import select_random_media_url

__all__ = ["Channel", "ChannelCatalog", "load_catalog", "select_random_media_url"]
