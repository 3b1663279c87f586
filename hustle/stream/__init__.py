"""Stream pipeline -- byte framing, event interpretation and aggregation."""

from hustle.stream.aggregator import ResponseAggregator, fold_event
from hustle.stream.decoder import FrameDecoder, decode_frames, decode_line
from hustle.stream.frames import FrameTag, RawFrame, StandardEventType, map_standard_event
from hustle.stream.interpreter import EventInterpreter, EventKind, StreamEvent, TextJoiner

__all__ = [
    "EventInterpreter",
    "EventKind",
    "FrameDecoder",
    "FrameTag",
    "RawFrame",
    "ResponseAggregator",
    "StandardEventType",
    "StreamEvent",
    "TextJoiner",
    "decode_frames",
    "decode_line",
    "fold_event",
    "map_standard_event",
]
