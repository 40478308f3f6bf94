"""
Global test configuration for moqrelay.

This module provides global pytest configuration and fixtures.
"""

import json
import socket
import sys
from pathlib import Path

import pytest

# Ensure the project src directory is importable without relying on external environment.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from moqrelay.infra.logging import configure_logging


@pytest.fixture(autouse=True, scope="session")
def _console_logging():
    """Human-readable logs in pytest's captured output."""
    configure_logging(level="DEBUG", fmt="console")


def free_udp_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def write_channel(root: Path, dir_name: str, document) -> Path:
    """Write channels/<dir_name>/channel.json; document may be a dict or raw text."""
    path = root / "channels" / dir_name / "channel.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(document, str):
        path.write_text(document, encoding="utf-8")
    else:
        path.write_text(json.dumps(document), encoding="utf-8")
    return path


def channel_doc(name: str, media_urls=None) -> dict:
    return {
        "Name": name,
        "PlaylistURL": f"http://example.com/{name}/master.m3u8",
        "BaseURL": f"http://example.com/{name}",
        "MediaURLs": media_urls,
        "TvgID": f"{name}.us",
        "TvgLogo": "",
        "GroupTitle": "News",
    }


@pytest.fixture
def catalog_root(tmp_path):
    """A catalog directory with one playable channel, one empty and one broken."""
    write_channel(tmp_path, "NewsOne", channel_doc("NewsOne", ["http://example.com/NewsOne/720p.m3u8"]))
    write_channel(tmp_path, "Empty", channel_doc("Empty", None))
    write_channel(tmp_path, "Broken", "{not json")
    return tmp_path
