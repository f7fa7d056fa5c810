"""Shared-memory video frame sinks, H.264 and OPUS RTP packetizers, and a sink dump command."""

__version__ = "5.23.0"