"""Chat streaming package."""

from .decoder import decode_line
from .encoder import DONE_FRAME, encode
from .lines import LineReassembler
from .types import CanonicalEvent, UpstreamEvent

__all__ = [
    "CanonicalEvent",
    "DONE_FRAME",
    "LineReassembler",
    "UpstreamEvent",
    "decode_line",
    "encode",
]
