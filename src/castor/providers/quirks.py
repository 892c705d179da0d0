"""Model-family quirks resolved from the model identifier alone.

Model names arrive faster than code can special-case them, so each provider
keeps an ordered table of ``ModelRule(predicate, quirk)`` entries. Supporting
a new family means appending a rule, not editing branches.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Flag, auto
import logging
from typing import Any

log = logging.getLogger(__name__)


class Quirk(Flag):
    """Request-shape deviations of a model family."""

    NONE = 0
    #: Output limit must be sent as ``max_completion_tokens``.
    MAX_COMPLETION_TOKENS = auto()
    #: Family rejects any ``temperature`` field.
    NO_TEMPERATURE = auto()
    #: Family accepts ``reasoning_effort``; dropped otherwise.
    REASONING_EFFORT = auto()
    #: Family rejects a ``tool_choice`` directive.
    NO_TOOL_CHOICE = auto()
    #: Family rejects ``temperature`` and ``top_p`` sent together.
    EXCLUSIVE_SAMPLING = auto()
    #: Instructions use the ``developer`` role instead of ``system``.
    DEVELOPER_ROLE = auto()
    #: Search-enabled family; web search is a top-level ``web_search_options``.
    WEB_SEARCH_OPTIONS = auto()


@dataclass(frozen=True)
class ModelRule:
    """One table entry: models matching ``predicate`` get ``quirk``."""

    name: str
    predicate: Callable[[str], bool]
    quirk: Quirk


def prefix(*prefixes: str) -> Callable[[str], bool]:
    """Match model ids starting with any of *prefixes*."""
    return lambda model: model.startswith(prefixes)


def contains(*markers: str) -> Callable[[str], bool]:
    """Match model ids containing any of *markers*."""
    return lambda model: any(marker in model for marker in markers)


def resolve_quirks(rules: Sequence[ModelRule], model: str) -> Quirk:
    """Union the quirks of every rule matching *model* (case-insensitive)."""
    normalized = model.strip().lower()
    quirks = Quirk.NONE
    for rule in rules:
        if rule.predicate(normalized):
            quirks |= rule.quirk
    return quirks


def apply_option_quirks(
    quirks: Quirk, options: dict[str, Any], *, model: str = ""
) -> dict[str, Any]:
    """Return a copy of merged *options* with the family quirks applied.

    Never fails: unsupported keys are removed, never rejected.
    """
    out = dict(options)

    # Exactly one of max_tokens / max_completion_tokens survives.
    if Quirk.MAX_COMPLETION_TOKENS in quirks:
        if "max_tokens" in out:
            out["max_completion_tokens"] = out.pop("max_tokens")
            log.debug("Renamed max_tokens to max_completion_tokens for %s", model)
    elif "max_completion_tokens" in out:
        out["max_tokens"] = out.pop("max_completion_tokens")
        log.debug("Renamed max_completion_tokens to max_tokens for %s", model)

    if Quirk.REASONING_EFFORT not in quirks and "reasoning_effort" in out:
        del out["reasoning_effort"]
        log.debug("Dropped reasoning_effort unsupported by %s", model)

    if Quirk.NO_TEMPERATURE in quirks and "temperature" in out:
        del out["temperature"]
        log.debug("Dropped temperature rejected by %s", model)

    if Quirk.EXCLUSIVE_SAMPLING in quirks and "temperature" in out and "top_p" in out:
        del out["top_p"]
        log.debug("Dropped top_p; %s accepts only one sampling control", model)

    return out


# --- Provider tables ---

OPENAI_RULES: tuple[ModelRule, ...] = (
    ModelRule(
        "o-series output limit",
        prefix("o"),
        Quirk.MAX_COMPLETION_TOKENS | Quirk.REASONING_EFFORT,
    ),
    ModelRule(
        "4o / -o family output limit",
        contains("4o", "-o"),
        Quirk.MAX_COMPLETION_TOKENS,
    ),
    ModelRule(
        "o-series reasoning models",
        prefix("o1", "o3", "o4"),
        Quirk.NO_TEMPERATURE | Quirk.NO_TOOL_CHOICE | Quirk.DEVELOPER_ROLE,
    ),
    ModelRule(
        "gpt-5 generation",
        contains("-5"),
        Quirk.MAX_COMPLETION_TOKENS
        | Quirk.REASONING_EFFORT
        | Quirk.NO_TEMPERATURE
        | Quirk.NO_TOOL_CHOICE
        | Quirk.DEVELOPER_ROLE,
    ),
    ModelRule(
        "search-preview models",
        contains("search-preview", "search-api"),
        Quirk.WEB_SEARCH_OPTIONS,
    ),
)

ANTHROPIC_RULES: tuple[ModelRule, ...] = (
    ModelRule(
        "claude 4.1+ sampling",
        contains("opus-4-1", "sonnet-4-5", "haiku-4-5", "opus-4-5"),
        Quirk.EXCLUSIVE_SAMPLING,
    ),
)
