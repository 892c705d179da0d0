"""Castor: one request/response contract over several LLM chat APIs.

Public API:
    - generate(): Single prompt completion
    - generate_messages(): Conversation replay completion
    - generate_structured(): JSON output constrained by a schema
    - stream(): Incremental text deltas
    - get_provider(): Direct access to the request builder / response parser
    - Config: Configuration dataclass
    - GenerationOptions: Sampling and tool options
"""

from __future__ import annotations

import logging

from castor.client import generate, generate_messages, generate_structured, stream
from castor.config import Config
from castor.errors import (
    APIError,
    CastorError,
    ConfigurationError,
    EmptyChunkError,
    EmptyResponseError,
    EncodingError,
    MalformedChunkError,
    MalformedResponseError,
    NoChoicesError,
    NoContentError,
    RateLimitError,
    RequestError,
    ResponseError,
    SchemaError,
    StreamError,
)
from castor.options import GenerationOptions
from castor.providers import END_OF_STREAM, SKIP, get_provider
from castor.providers._utils import sanitize_schema
from castor.retry import RetryPolicy
from castor.types import (
    Annotation,
    FunctionTool,
    Message,
    ResponseDetails,
    Result,
    Source,
    TokenUsage,
    ToolCall,
    URLCitation,
    WebSearchAction,
    WebSearchCall,
    WebSearchTool,
)

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("castor-llm")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("castor").addHandler(logging.NullHandler())

__all__ = [
    "END_OF_STREAM",
    "SKIP",
    "APIError",
    "Annotation",
    "CastorError",
    "Config",
    "ConfigurationError",
    "EmptyChunkError",
    "EmptyResponseError",
    "EncodingError",
    "FunctionTool",
    "GenerationOptions",
    "MalformedChunkError",
    "MalformedResponseError",
    "Message",
    "NoChoicesError",
    "NoContentError",
    "RateLimitError",
    "RequestError",
    "ResponseDetails",
    "ResponseError",
    "Result",
    "RetryPolicy",
    "SchemaError",
    "Source",
    "StreamError",
    "TokenUsage",
    "ToolCall",
    "URLCitation",
    "WebSearchAction",
    "WebSearchCall",
    "WebSearchTool",
    "generate",
    "generate_messages",
    "generate_structured",
    "get_provider",
    "sanitize_schema",
    "stream",
]
