"""
Media Pipeline Command Builder for MoQ publish/subscribe.

This module builds the external process pipelines that move media in and out
of the MoQ relay. A pipeline is a sequence of argv stages joined by OS pipes
(stdout of one stage feeds stdin of the next); nothing is run through a
shell, so media URLs and publisher names are always single arguments.
"""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass
from pathlib import Path

# fMP4 flags moq-pub expects: CMAF fragments, one per frame, no trailer.
PUBLISH_MOVFLAGS = "cmaf+separate_moof+delay_moov+skip_trailer+frag_every_frame"


@dataclass(frozen=True)
class PipelineSpec:
    """
    An external pipeline: stages[0] | stages[1] | ...

    Attributes:
        stages: argv of every stage, in pipe order
        label: short name for logs ("publish", "subscribe", "relay")
    """
    stages: tuple[tuple[str, ...], ...]
    label: str = "pipeline"

    def __post_init__(self) -> None:
        if not self.stages:
            raise ValueError("pipeline needs at least one stage")
        for stage in self.stages:
            if not stage:
                raise ValueError("pipeline stage has an empty argv")

    def describe(self) -> str:
        """Shell-like rendering for logs only; never executed."""
        return " | ".join(shlex.join(stage) for stage in self.stages)


def expand_binary(path: str) -> str:
    """Expand ~ and environment variables in a configured binary path."""
    return os.path.expandvars(os.path.expanduser(path))


def build_publish_cmd(
    media_url: str,
    name: str,
    relay_url: str,
    ffmpeg_bin: str = "ffmpeg",
    moq_pub_bin: str = "moq-pub",
) -> PipelineSpec:
    """
    Build the publish pipeline: loop the media URL as fragmented MP4 into moq-pub.

    Args:
        media_url: HLS media URL to pull
        name: Publisher name assigned to the request
        relay_url: MoQ relay endpoint (e.g. "https://localhost:4443")
        ffmpeg_bin: ffmpeg executable
        moq_pub_bin: moq-pub executable

    Example:
        >>> spec = build_publish_cmd("http://a/1.m3u8", "pub0", "https://localhost:4443")
        >>> spec.stages[1]
        ('moq-pub', '--name', 'pub0', 'https://localhost:4443')
    """
    ffmpeg = [expand_binary(ffmpeg_bin)]

    # Global flags
    ffmpeg.extend(["-hide_banner", "-v", "quiet"])

    # Endless, real-time paced input
    ffmpeg.extend(["-stream_loop", "-1", "-re", "-i", media_url])

    # Stream copy to fMP4 on stdout, video only
    ffmpeg.extend(["-f", "mp4", "-c", "copy", "-an", "-movflags", PUBLISH_MOVFLAGS, "-"])

    moq_pub = [expand_binary(moq_pub_bin), "--name", name, relay_url]

    return PipelineSpec(stages=(tuple(ffmpeg), tuple(moq_pub)), label="publish")


def build_subscribe_cmd(
    name: str,
    relay_url: str,
    output_dir: str | Path,
    duration: int = 10,
    ffmpeg_bin: str = "ffmpeg",
    moq_sub_bin: str = "moq-sub",
) -> PipelineSpec:
    """
    Build the subscribe pipeline: moq-sub into ffmpeg, recording <output_dir>/<name>.mp4.

    Args:
        name: Publisher name to subscribe to
        relay_url: MoQ relay endpoint
        output_dir: Directory receiving the recording
        duration: Seconds of media to record
        ffmpeg_bin: ffmpeg executable
        moq_sub_bin: moq-sub executable
    """
    moq_sub = [expand_binary(moq_sub_bin), "--name", name, relay_url]
    output_path = Path(output_dir) / f"{name}.mp4"
    ffmpeg = [expand_binary(ffmpeg_bin), "-i", "-", "-t", str(duration), str(output_path)]

    return PipelineSpec(stages=(tuple(moq_sub), tuple(ffmpeg)), label="subscribe")


def build_relay_cmd(moqrs_dir: str | Path) -> PipelineSpec:
    """The moq-rs development relay launcher: <moqrs_dir>/dev/relay."""
    relay_path = Path(expand_binary(str(moqrs_dir))) / "dev" / "relay"
    return PipelineSpec(stages=((str(relay_path),),), label="relay")


def moq_pub_from_moqrs(moqrs_dir: str | Path) -> str:
    """moq-pub inside a built moq-rs checkout."""
    return str(Path(expand_binary(str(moqrs_dir))) / "target" / "release" / "moq-pub")


def moq_sub_from_moqrs(moqrs_dir: str | Path) -> str:
    """moq-sub inside a built moq-rs checkout."""
    return str(Path(expand_binary(str(moqrs_dir))) / "target" / "release" / "moq-sub")
