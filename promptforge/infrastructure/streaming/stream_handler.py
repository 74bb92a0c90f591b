"""Builds normalized chunk streams from raw vendor text streams.

Every stream produced here yields zero or more content chunks followed by
exactly one completion chunk (empty content, is_complete=True) whose
metadata carries model, usage and finish reason. A failing producer raises
the translated AdapterError instead of ending the stream silently.
"""

import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from promptforge.domain.errors import AdapterError, ErrorCode
from promptforge.domain.models.ai import StreamChunk, TextResponse, TextStream

logger = logging.getLogger(__name__)

ErrorHandler = Callable[[BaseException], AdapterError]
MetadataFactory = Callable[[], Dict[str, Any]]


async def create_text_stream(
    text_stream: AsyncIterator[str],
    model: str,
    error_handler: ErrorHandler,
    metadata: Optional[MetadataFactory] = None,
    on_close: Optional[Callable[[], Awaitable[None]]] = None,
) -> TextStream:
    """Wraps an async iterator of text deltas into StreamChunks.

    Args:
        text_stream: Raw text pieces from the vendor SDK.
        model: Model id reported in the completion chunk.
        error_handler: Translates producer exceptions into AdapterError.
        metadata: Called once after the producer is exhausted; its result
            (usage, finish_reason, ...) is merged into the completion metadata.
        on_close: Releases the underlying vendor stream. Runs on completion,
            failure and early close by the consumer.
    """
    try:
        try:
            async for piece in text_stream:
                if piece:
                    yield StreamChunk(content=piece, is_complete=False)
            final_metadata: Dict[str, Any] = {"model": model}
            if metadata is not None:
                final_metadata.update({k: v for k, v in metadata().items() if v is not None})
        except AdapterError:
            raise
        except Exception as e:
            logger.debug(f"Stream for model {model} failed: {type(e).__name__}: {e}")
            raise error_handler(e) from e
        yield StreamChunk(content="", is_complete=True, metadata=final_metadata)
    finally:
        aclose = getattr(text_stream, "aclose", None)
        if aclose is not None:
            await aclose()
        if on_close is not None:
            await on_close()


async def collect_stream(stream: TextStream) -> TextResponse:
    """Consumes a chunk stream and returns the equivalent aggregate response.

    Raises:
        AdapterError: PARSE_ERROR if the stream ends without a completion chunk.
    """
    parts: List[str] = []
    final: Optional[StreamChunk] = None
    try:
        async for chunk in stream:
            if chunk.is_complete:
                final = chunk
                break
            parts.append(chunk.content)
    finally:
        aclose = getattr(stream, "aclose", None)
        if aclose is not None:
            await aclose()
    if final is None:
        raise AdapterError("Stream ended without a completion signal", ErrorCode.PARSE_ERROR)
    meta = final.metadata or {}
    return TextResponse(
        content="".join(parts),
        model=meta.get("model"),
        usage=meta.get("usage"),
        finish_reason=meta.get("finish_reason"),
    )
