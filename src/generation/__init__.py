"""Prompt discovery: context assembly, upstream calls, parsing and insertion."""

from .context_window import bound_context, build_system_prompt, build_user_prompt
from .insertion import AnchorPromptInserter, find_anchor
from .invoker import (
    DEFAULT_STRATEGIES,
    FallbackStrategy,
    GenerationInvoker,
    UpstreamShapeMissing,
)
from .markers import build_prompt_tag, extract_image_prompts, has_image_prompts
from .response_parser import classify_response, parse_suggestions

__all__ = [
    "AnchorPromptInserter",
    "DEFAULT_STRATEGIES",
    "FallbackStrategy",
    "GenerationInvoker",
    "UpstreamShapeMissing",
    "bound_context",
    "build_prompt_tag",
    "build_system_prompt",
    "build_user_prompt",
    "classify_response",
    "extract_image_prompts",
    "find_anchor",
    "has_image_prompts",
    "parse_suggestions",
]
