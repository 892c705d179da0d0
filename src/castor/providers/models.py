"""Domain models shared by the provider triads."""

from __future__ import annotations

from enum import Enum


class StreamSignal(Enum):
    """Non-text outcomes of decoding one streaming chunk."""

    #: Clean completion; stop reading.
    END_OF_STREAM = "end_of_stream"
    #: Nothing to emit (e.g. a role-only delta); keep reading.
    SKIP = "skip"


END_OF_STREAM = StreamSignal.END_OF_STREAM
SKIP = StreamSignal.SKIP

#: What ``decode_chunk`` returns: a text delta or a signal.
ChunkResult = str | StreamSignal
