"""Domain models related to AI interactions.

Includes the model catalog structures, generation options, normalized
responses and stream chunks shared by every provider adapter.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, Generic, List, Mapping, Optional, TypeVar, Union

from ..errors import AdapterError
from .common import TokenUsage

T = TypeVar("T")


class Capability(str, Enum):
    """Capabilities a model may advertise in its catalog entry."""
    TEXT_GENERATION = "text_generation"
    IMAGE_GENERATION = "image_generation"
    STREAMING = "streaming"


# --- Model Catalog ---

@dataclass(frozen=True)
class ModelCapabilities:
    text_generation: bool
    image_generation: bool
    streaming: bool
    context_length: Optional[int] = None

    def supports(self, capability: Capability) -> bool:
        return bool(getattr(self, Capability(capability).value))


@dataclass(frozen=True)
class ModelPricing:
    """Cost in USD per 1000 tokens."""
    input_cost_per_1k: Optional[float] = None
    output_cost_per_1k: Optional[float] = None


@dataclass(frozen=True)
class ModelInfo:
    """Entity describing a model offered by a provider."""
    id: str
    name: str
    capabilities: ModelCapabilities
    description: Optional[str] = None
    pricing: Optional[ModelPricing] = None


@dataclass(frozen=True)
class ProviderInfo:
    id: str
    name: str
    description: Optional[str] = None


@dataclass(frozen=True)
class ProviderModel:
    """A catalog entry tagged with the provider it belongs to."""
    provider_id: str
    provider_name: str
    model: ModelInfo


# --- Generation Options ---

@dataclass(frozen=True)
class TextGenerationOptions:
    """Options for one text generation call.

    Adapters never mutate options; merged copies are made with
    dataclasses.replace.
    """
    model: str
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    stream: bool = False
    system_prompt: Optional[str] = None
    context: Optional[str] = None
    extra: Mapping[str, Any] = field(default_factory=dict)  # vendor-specific parameters


@dataclass(frozen=True)
class ImageGenerationOptions:
    model: str
    size: Optional[str] = None
    quality: Optional[str] = None
    style: Optional[str] = None
    num_images: int = 1
    extra: Mapping[str, Any] = field(default_factory=dict)


# --- Responses ---

@dataclass
class TextResponse:
    """Aggregate (non-streaming) text generation result."""
    content: str
    model: Optional[str] = None
    usage: Optional[TokenUsage] = None
    finish_reason: Optional[str] = None


@dataclass
class ImageResponse:
    url: str
    model: Optional[str] = None
    revised_prompt: Optional[str] = None
    size: Optional[str] = None
    quality: Optional[str] = None
    style: Optional[str] = None


@dataclass(frozen=True)
class StreamChunk:
    """One element of a normalized text stream.

    Exactly one chunk per stream has is_complete=True; it is the last one,
    carries empty content and holds usage / finish_reason in metadata.
    """
    content: str
    is_complete: bool = False
    metadata: Optional[Dict[str, Any]] = None


TextStream = AsyncIterator[StreamChunk]
TextResult = Union[TextResponse, TextStream]


def is_stream(result: Any) -> bool:
    """True when a text generation result is a chunk stream rather than a TextResponse."""
    return hasattr(result, "__anext__")


@dataclass(frozen=True)
class ExecutionResult(Generic[T]):
    """Outcome of one orchestrated provider call (after retries)."""
    success: bool
    provider_id: str
    model_id: str
    duration_ms: float
    data: Optional[T] = None
    error: Optional[AdapterError] = None


@dataclass(frozen=True)
class HealthStatus:
    healthy: bool
    message: str
    latency_ms: float


@dataclass(frozen=True)
class ProviderStatus:
    """Registration state of a provider inside the orchestrating service."""
    id: str
    name: str
    enabled: bool
    has_instance: bool
    description: Optional[str] = None
    last_error: Optional[str] = None


ImageResult = List[ImageResponse]
