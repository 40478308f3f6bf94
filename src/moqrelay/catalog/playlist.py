"""
Playlist ingestion: M3U channel list -> on-disk channel catalog.

The channel list is an extended M3U document where every channel is an
``#EXTINF`` line followed (after optional ``#EXTVLCOPT`` lines) by the URL of
the channel's HLS playlist. Ingestion mirrors each HLS playlist under
``<catalog_root>/channels/<name>/``, resolves its media variants and writes
``channel.json`` next to it. The result is what load_catalog() reads.
"""

from __future__ import annotations

import os
import posixpath
import re
import tempfile
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

import m3u8
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from moqrelay.catalog.channel import Channel, normalize_channel_name
from moqrelay.catalog.channel_catalog import CHANNEL_FILE, channel_dir, list_channel_names
from moqrelay.infra.exceptions import PlaylistError
from moqrelay.infra.logging import get_logger
from moqrelay.infra.settings import settings

logger = get_logger(__name__)

EXTINF_RE = re.compile(
    r'#EXTINF:-1 tvg-id="([^"]*)" tvg-logo="([^"]*)" group-title="([^"]*)",(.*)'
)


def _base_url(playlist_url: str) -> str:
    parts = urlsplit(playlist_url)
    return urlunsplit((parts.scheme, parts.netloc, posixpath.dirname(parts.path), "", ""))


def parse_playlist(path: str | Path) -> dict[str, Channel]:
    """
    Parse an extended M3U channel list.

    Entries whose #EXTINF line does not carry the tvg-id/tvg-logo/group-title
    attributes are ignored, as are entries without a URL line.

    Raises:
        PlaylistError: If the file cannot be read.
    """
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            lines = [line.rstrip("\r\n") for line in f]
    except OSError as e:
        raise PlaylistError(f"cannot read playlist {path}: {e}") from e

    channels: dict[str, Channel] = {}
    i = 0
    while i < len(lines):
        match = EXTINF_RE.match(lines[i])
        i += 1
        if not match:
            continue

        tvg_id, tvg_logo, group_title, raw_name = match.groups()
        name = normalize_channel_name(raw_name)

        while i < len(lines) and lines[i].startswith("#EXTVLCOPT:"):
            i += 1
        if i >= len(lines):
            break

        url = lines[i].strip()
        i += 1
        if not url or url.startswith("#") or not urlsplit(url).scheme:
            logger.debug("playlist_entry_without_url", channel=name)
            continue

        channels[name] = Channel(
            name=name,
            playlist_url=url,
            base_url=_base_url(url),
            tvg_id=tvg_id,
            tvg_logo=tvg_logo,
            group_title=group_title,
        )

    logger.info("playlist_parsed", path=str(path), channels=len(channels))
    return channels


def create_session() -> requests.Session:
    """Create a requests session with retry logic for playlist downloads."""
    session = requests.Session()

    retry_strategy = Retry(
        total=3,
        backoff_factor=1,
        status_forcelist=[429, 500, 502, 503, 504],
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def download_playlist_file(
    session: requests.Session, channel: Channel, catalog_root: str | Path
) -> Path:
    """
    Mirror the channel's HLS playlist into its channel directory.

    The body is written to a temporary file first and moved into place only
    after a complete, successful download.

    Raises:
        PlaylistError: On an unusable URL, HTTP failure or filesystem error.
    """
    filename = posixpath.basename(urlsplit(channel.playlist_url).path)
    if not filename:
        raise PlaylistError(f"no filename in playlist URL {channel.playlist_url}")

    target_dir = channel_dir(catalog_root, channel.name)
    try:
        response = session.get(channel.playlist_url, timeout=settings.http_timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise PlaylistError(f"download of {channel.playlist_url} failed: {e}") from e

    final_path = target_dir / filename
    tmp_name = None
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=filename, suffix=".part", dir=target_dir)
        with os.fdopen(fd, "wb") as tmp:
            tmp.write(response.content)
        os.replace(tmp_name, final_path)
    except OSError as e:
        raise PlaylistError(f"cannot store playlist for {channel.name}: {e}") from e
    finally:
        if tmp_name is not None and os.path.exists(tmp_name):
            os.unlink(tmp_name)

    logger.info("playlist_downloaded", channel=channel.name, path=str(final_path))
    return final_path


def resolve_media_urls(channel: Channel, playlist_text: str) -> list[str]:
    """
    Media URLs of a mirrored HLS playlist.

    A media playlist is itself the only media URL. A master playlist yields
    one URL per variant, resolved against the playlist URL.
    """
    try:
        playlist = m3u8.loads(playlist_text, uri=channel.playlist_url)
    except Exception as e:
        raise PlaylistError(f"cannot parse HLS playlist of {channel.name}: {e}") from e

    if not playlist.is_variant:
        return [channel.playlist_url]
    return [variant.absolute_uri for variant in playlist.playlists if variant.uri]


def find_mirrored_playlist(catalog_root: str | Path, name: str) -> Path | None:
    candidates = sorted(channel_dir(catalog_root, name).glob("*.m3u8"))
    return candidates[0] if candidates else None


def save_channel_info(channel: Channel, catalog_root: str | Path) -> Path:
    """Write channel.json for the channel."""
    path = channel_dir(catalog_root, channel.name) / CHANNEL_FILE
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(channel.to_json(), encoding="utf-8")
    except OSError as e:
        raise PlaylistError(f"cannot write {path}: {e}") from e
    logger.info("channel_info_saved", channel=channel.name, path=str(path))
    return path


def update_catalog(
    playlist_path: str | Path,
    session: requests.Session | None = None,
) -> dict[str, Channel]:
    """
    Refresh the catalog next to playlist_path from the channel list.

    Every channel is downloaded; channels whose directory exists afterwards
    (this run or an earlier one) get their media URLs resolved and their
    channel.json rewritten. Failures are per channel and never abort the run.

    Returns:
        The channels that were written, keyed by name.
    """
    playlist_path = Path(playlist_path)
    catalog_root = playlist_path.parent
    all_channels = parse_playlist(playlist_path)

    own_session = session is None
    if session is None:
        session = create_session()

    try:
        for channel in all_channels.values():
            try:
                download_playlist_file(session, channel, catalog_root)
            except PlaylistError as e:
                logger.warning("playlist_download_failed", channel=channel.name, error=str(e))
    finally:
        if own_session:
            session.close()

    written: dict[str, Channel] = {}
    for name in list_channel_names(catalog_root):
        channel = all_channels.get(name)
        if channel is None:
            continue

        media_urls: list[str] = []
        mirrored = find_mirrored_playlist(catalog_root, name)
        if mirrored is not None:
            try:
                media_urls = resolve_media_urls(
                    channel, mirrored.read_text(encoding="utf-8", errors="replace")
                )
            except (PlaylistError, OSError) as e:
                logger.warning("media_urls_unresolved", channel=name, error=str(e))

        channel = channel.with_media_urls(media_urls)
        try:
            save_channel_info(channel, catalog_root)
        except PlaylistError as e:
            logger.warning("channel_info_not_saved", channel=name, error=str(e))
            continue
        written[name] = channel

    logger.info("catalog_updated", catalog_root=str(catalog_root), channels=len(written))
    return written
