"""Chat turn processing: stream parsing, sentence segmentation and mode dispatch."""

from .response_mode import ResponseModeSelector, ResponseShapeError
from .segmentation import segment_sentences
from .stream_processor import StreamBuffer, StreamingResponseProcessor
from .types import BackendResponse, FullResponse, StreamResponse

__all__ = [
    "BackendResponse",
    "FullResponse",
    "ResponseModeSelector",
    "ResponseShapeError",
    "StreamBuffer",
    "StreamResponse",
    "StreamingResponseProcessor",
    "segment_sentences",
]
