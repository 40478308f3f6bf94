"""
Channel data structure.

A Channel is a named live-media source with one or more resolved media URLs.
The on-disk form (channel.json) keeps the key names used by the existing
catalog tooling so catalogs written by either side stay interchangeable.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any


def normalize_channel_name(name: str) -> str:
    """Channel names double as directory names; slashes become underscores."""
    return name.strip().replace("/", "_")


@dataclass(frozen=True)
class Channel:
    """
    A single channel entry of the catalog.

    media_urls is ordered: for a master playlist it follows the variant order
    of the playlist, for a media playlist it holds the playlist URL itself.
    """
    name: str
    playlist_url: str = ""
    base_url: str = ""
    media_urls: tuple[str, ...] = field(default_factory=tuple)
    tvg_id: str = ""
    tvg_logo: str = ""
    group_title: str = ""

    @property
    def has_media(self) -> bool:
        return len(self.media_urls) > 0

    def with_media_urls(self, media_urls: list[str] | tuple[str, ...]) -> Channel:
        return replace(self, media_urls=tuple(media_urls))

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the channel.json key layout."""
        return {
            "Name": self.name,
            "PlaylistURL": self.playlist_url,
            "BaseURL": self.base_url,
            "MediaURLs": list(self.media_urls) if self.media_urls else None,
            "TvgID": self.tvg_id,
            "TvgLogo": self.tvg_logo,
            "GroupTitle": self.group_title,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Channel:
        """
        Deserialize from a channel.json document.

        MediaURLs may be null (channels written before their playlist was
        resolved); that is read as an empty tuple.

        Raises:
            ValueError: If the document is not an object or has no Name.
        """
        if not isinstance(data, dict):
            raise ValueError(f"channel metadata must be an object, got {type(data).__name__}")
        name = data.get("Name")
        if not isinstance(name, str) or not name:
            raise ValueError("channel metadata has no Name")
        media_urls = data.get("MediaURLs") or []
        if not isinstance(media_urls, list) or not all(isinstance(u, str) for u in media_urls):
            raise ValueError("MediaURLs must be a list of strings")
        return cls(
            name=normalize_channel_name(name),
            playlist_url=data.get("PlaylistURL") or "",
            base_url=data.get("BaseURL") or "",
            media_urls=tuple(u for u in media_urls if u),
            tvg_id=data.get("TvgID") or "",
            tvg_logo=data.get("TvgLogo") or "",
            group_title=data.get("GroupTitle") or "",
        )
