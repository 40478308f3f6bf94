"""
Control channel payloads.

One exchange is one QUIC bidirectional stream: the requester sends the raw
UTF-8 bytes of a media URL, the assigner answers with the raw UTF-8 bytes of
a publisher name. There is no framing, length prefix or version field; the
end of a message is the end of the sender's side of the stream.
"""

from __future__ import annotations

from dataclasses import dataclass

from moqrelay.infra.exceptions import TransportError
from moqrelay.runtime.assigner import is_publisher_name


def _decode_text(data: bytes, what: str) -> str:
    try:
        text = data.decode("utf-8").strip()
    except UnicodeDecodeError as e:
        raise TransportError(f"{what} is not valid UTF-8") from e
    if not text:
        raise TransportError(f"empty {what}")
    return text


@dataclass(frozen=True)
class PublishRequest:
    """Ask the assigner to publish media_url."""
    media_url: str

    def encode(self) -> bytes:
        return self.media_url.encode("utf-8")

    @classmethod
    def decode(cls, data: bytes) -> PublishRequest:
        return cls(media_url=_decode_text(data, "publish request"))


@dataclass(frozen=True)
class PublishAssignment:
    """The publisher name assigned to exactly one PublishRequest."""
    name: str

    def encode(self) -> bytes:
        return self.name.encode("utf-8")

    @classmethod
    def decode(cls, data: bytes) -> PublishAssignment:
        name = _decode_text(data, "publish assignment")
        if not is_publisher_name(name):
            raise TransportError(f"malformed publisher name: {name[:64]!r}")
        return cls(name=name)
