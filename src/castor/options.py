"""Generation options: known sampling/limit keys plus an opaque passthrough bucket."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from castor.errors import ConfigurationError

ToolChoice = Literal["auto", "required", "none"] | str

#: Keys consumed structurally by the builders, never copied as passthrough fields.
STRUCTURAL_KEYS: frozenset[str] = frozenset(
    {"tools", "tool_choice", "system_prompt", "strict_tools", "structured_messages"}
)


class GenerationOptions(BaseModel):
    """Options merged into a provider request.

    Recognized keys are typed and validated. Anything else is kept as an
    opaque extra field and forwarded unchanged, so newly released provider
    parameters work without a Castor release.

    Example:
        opts = GenerationOptions(temperature=0.2, max_tokens=256, logprobs=True)
        opts.to_wire()  # {"temperature": 0.2, "max_tokens": 256, "logprobs": True}
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    temperature: float | None = Field(default=None, ge=0)
    top_p: float | None = Field(default=None, ge=0, le=1)
    max_tokens: int | None = Field(default=None, gt=0)
    max_completion_tokens: int | None = Field(default=None, gt=0)
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    seed: int | None = None
    stop: str | list[str] | None = None
    reasoning_effort: str | None = None

    # Structural keys
    system_prompt: str | None = None
    #: ``"auto"``/``"required"``/``"none"`` or a provider-shaped directive dict.
    tool_choice: ToolChoice | dict[str, Any] | None = None
    strict_tools: bool = False

    @field_validator("reasoning_effort", "system_prompt", mode="before")
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        """Trim surrounding whitespace and map blank strings to None."""
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @property
    def extras(self) -> dict[str, Any]:
        """Unrecognized keys supplied by the caller."""
        return dict(self.model_extra or {})

    def to_wire(self) -> dict[str, Any]:
        """Return explicitly set options (extras included) as a plain dict."""
        return self.model_dump(exclude_unset=True, exclude_none=True)

    def merged_over(self, defaults: GenerationOptions | None) -> dict[str, Any]:
        """Overlay these options on *defaults*, key by key."""
        merged = defaults.to_wire() if defaults is not None else {}
        merged.update(self.to_wire())
        return merged


def coerce_options(
    options: GenerationOptions | Mapping[str, Any] | None,
) -> GenerationOptions:
    """Accept a GenerationOptions, a plain mapping, or None."""
    if options is None:
        return GenerationOptions()
    if isinstance(options, GenerationOptions):
        return options
    if not isinstance(options, Mapping):
        raise ConfigurationError(
            f"options must be a mapping, got {type(options).__name__}",
            hint="Pass GenerationOptions(...) or a dict like {'temperature': 0.2}.",
        )
    try:
        return GenerationOptions(**dict(options))
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid generation options: {e.error_count()} error(s)",
            hint=str(e),
        ) from e
