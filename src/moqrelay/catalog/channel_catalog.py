"""
ChannelCatalog - read-only view of the persisted channel catalog.

Usage:
    from moqrelay.catalog.channel_catalog import load_catalog
    catalog = load_catalog("/srv/iptv")       # reads /srv/iptv/channels/*/channel.json
    channel = catalog["NewsOne"]
"""

from __future__ import annotations

import json
from collections.abc import Iterator, Mapping
from pathlib import Path

from moqrelay.catalog.channel import Channel
from moqrelay.infra.exceptions import CatalogError
from moqrelay.infra.logging import get_logger

logger = get_logger(__name__)

CHANNELS_DIR = "channels"
CHANNEL_FILE = "channel.json"


def channel_dir(catalog_root: str | Path, name: str) -> Path:
    return Path(catalog_root) / CHANNELS_DIR / name


class ChannelCatalog(Mapping[str, Channel]):
    """Immutable mapping from channel name to Channel.

    Only channels with at least one media URL are ever present.
    """

    def __init__(self, channels: Mapping[str, Channel] | None = None) -> None:
        self._channels: dict[str, Channel] = {
            name: ch for name, ch in (channels or {}).items() if ch.has_media
        }

    def __getitem__(self, name: str) -> Channel:
        return self._channels[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._channels)

    def __len__(self) -> int:
        return len(self._channels)

    def __repr__(self) -> str:
        return f"ChannelCatalog({sorted(self._channels)!r})"

    def names(self) -> list[str]:
        """Channel names in a stable (sorted) order."""
        return sorted(self._channels)


def read_channel_file(path: Path) -> Channel:
    """
    Read one channel.json.

    Raises:
        CatalogError: If the file is missing or does not hold valid channel metadata.
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise CatalogError(f"channel metadata not found: {path}") from e
    except (OSError, json.JSONDecodeError) as e:
        raise CatalogError(f"cannot read {path}: {e}") from e

    try:
        return Channel.from_dict(data)
    except ValueError as e:
        raise CatalogError(f"invalid channel metadata in {path}: {e}") from e


def list_channel_names(catalog_root: str | Path) -> list[str]:
    """Names of the channel directories present under the catalog root."""
    channels_root = Path(catalog_root) / CHANNELS_DIR
    if not channels_root.is_dir():
        return []
    return sorted(p.name for p in channels_root.iterdir() if p.is_dir())


def load_catalog(catalog_root: str | Path) -> ChannelCatalog:
    """
    Build a ChannelCatalog from every channel directory under catalog_root.

    Channels whose metadata is missing or unparsable are logged and skipped;
    channels without resolved media URLs are left out. Never raises for a
    single bad channel.
    """
    channels: dict[str, Channel] = {}
    names = list_channel_names(catalog_root)
    if not names:
        logger.warning("catalog_empty", catalog_root=str(catalog_root))

    for name in names:
        path = channel_dir(catalog_root, name) / CHANNEL_FILE
        try:
            channel = read_channel_file(path)
        except CatalogError as e:
            logger.warning("channel_skipped", channel=name, error=str(e))
            continue

        if not channel.has_media:
            logger.info("channel_without_media", channel=name)
            continue

        # The directory name is authoritative: it is what the selector reports.
        channels[name] = channel

    catalog = ChannelCatalog(channels)
    logger.info("catalog_loaded", catalog_root=str(catalog_root), channels=len(catalog))
    return catalog
