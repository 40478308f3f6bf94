"""
Control channel payload encoding.
"""

import pytest

from moqrelay.infra.exceptions import TransportError
from moqrelay.transport.messages import PublishAssignment, PublishRequest


def test_request_is_raw_utf8_url():
    url = "http://cdn.example.com/chännel/720p.m3u8"
    assert PublishRequest(url).encode() == url.encode("utf-8")
    assert PublishRequest.decode(url.encode("utf-8")).media_url == url


def test_assignment_is_raw_name():
    assert PublishAssignment("pub4").encode() == b"pub4"
    assert PublishAssignment.decode(b"pub4").name == "pub4"


@pytest.mark.parametrize("payload", [b"", b"  \n", b"\xff\xfe"])
def test_unusable_request_rejected(payload):
    with pytest.raises(TransportError):
        PublishRequest.decode(payload)


@pytest.mark.parametrize("payload", [b"relay", b"pub", b"pubx", b"\xffpub1"])
def test_malformed_assignment_rejected(payload):
    with pytest.raises(TransportError):
        PublishAssignment.decode(payload)
