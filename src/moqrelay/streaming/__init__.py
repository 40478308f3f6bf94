"""
Streaming module for moqrelay.

Builds the external ffmpeg / moq-pub / moq-sub pipelines.
"""

from .pipeline_cmd import PipelineSpec, build_publish_cmd, build_subscribe_cmd

__all__ = ["PipelineSpec", "build_publish_cmd", "build_subscribe_cmd"]
