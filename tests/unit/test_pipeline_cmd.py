"""
Publish / subscribe / relay pipeline argv construction.
"""

from pathlib import Path

import pytest

from moqrelay.streaming.pipeline_cmd import (
    PUBLISH_MOVFLAGS,
    PipelineSpec,
    build_publish_cmd,
    build_relay_cmd,
    build_subscribe_cmd,
    moq_pub_from_moqrs,
)


def test_publish_pipeline_stages():
    spec = build_publish_cmd("http://cdn/live/720p.m3u8", "pub3", "https://localhost:4443")

    ffmpeg, moq_pub = spec.stages
    assert ffmpeg[0] == "ffmpeg"
    assert ffmpeg[ffmpeg.index("-i") + 1] == "http://cdn/live/720p.m3u8"
    assert ffmpeg[ffmpeg.index("-stream_loop") + 1] == "-1"
    assert "-re" in ffmpeg
    assert ffmpeg[ffmpeg.index("-movflags") + 1] == PUBLISH_MOVFLAGS
    assert ffmpeg[-1] == "-"
    assert moq_pub == ("moq-pub", "--name", "pub3", "https://localhost:4443")
    assert spec.label == "publish"


def test_media_url_with_shell_metacharacters_stays_one_argument():
    url = "http://cdn/live.m3u8?a=1&b=$(rm -rf ~);c=`id` | cat"
    spec = build_publish_cmd(url, "pub0", "https://localhost:4443")

    ffmpeg = spec.stages[0]
    assert ffmpeg.count(url) == 1
    assert ffmpeg[ffmpeg.index("-i") + 1] == url
    assert "'" in spec.describe()


def test_subscribe_pipeline_records_named_file(tmp_path):
    spec = build_subscribe_cmd("pub7", "https://localhost:4443", tmp_path, duration=10)

    moq_sub, ffmpeg = spec.stages
    assert moq_sub == ("moq-sub", "--name", "pub7", "https://localhost:4443")
    assert ffmpeg == ("ffmpeg", "-i", "-", "-t", "10", str(tmp_path / "pub7.mp4"))


def test_relay_and_moq_binaries_live_in_moqrs_checkout():
    assert build_relay_cmd("/opt/moq-rs").stages == (("/opt/moq-rs/dev/relay",),)
    assert moq_pub_from_moqrs("/opt/moq-rs") == str(Path("/opt/moq-rs/target/release/moq-pub"))


def test_pipeline_spec_rejects_empty_stages():
    with pytest.raises(ValueError):
        PipelineSpec(stages=())
    with pytest.raises(ValueError):
        PipelineSpec(stages=(("ffmpeg",), ()))
