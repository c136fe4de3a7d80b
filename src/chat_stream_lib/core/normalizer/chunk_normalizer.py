"""Best-effort normalization of vendor shaped streaming chunks.

Backends stream heterogeneous objects: plain strings, OpenAI style deltas, LangChain
message chunks, Gemini responses converted to dictionaries, and so on. The normalizer
folds one chunk into the running ``(content, thinking, usage)`` state by trying a
fixed chain of decoders in priority order. The fold is applied chunk by chunk, so
folding a sequence at once or in two halves gives the same result.
"""

import json
from typing import Any, Iterable, Mapping, Optional, Sequence, Tuple

from pydantic import BaseModel

from ..messages import TokenUsage, ChunkAccumulator
from ..logger import get_logger

logger = get_logger(__name__)

REASONING_KEYS: Tuple[str, ...] = ("reasoning_content", "reasoning", "thinking")

THINKING_PART_TYPES = ("thinking", "reasoning")

THINKING_MARKERS: Tuple[Tuple[str, str], ...] = (
    ("<think>", "</think>"),
    ("<thinking>", "</thinking>"),
    ("```thinking", "```"),
    ("Thinking:", "Answer:"),
    ("Reasoning:", "Answer:"),
    ("思考:", "回答:"),
    ("思考：", "回答："),
)

_TOTAL_KEYS = ("total_tokens", "totalTokens", "total_token_count")
_PROMPT_KEYS = ("prompt_tokens", "promptTokens", "input_tokens", "prompt_token_count")
_COMPLETION_KEYS = ("completion_tokens", "completionTokens", "output_tokens", "candidates_token_count")


class NormalizedChunk(BaseModel):
    """State of the fold after one or more chunks.

    Attributes:
        content: Accumulated answer text.
        thinking_content: Accumulated reasoning text.
        token_usage: Per-counter maximum of the usage seen so far, or None if no chunk reported usage.
    """

    content: str = ""
    thinking_content: str = ""
    token_usage: Optional[TokenUsage] = None

    def as_accumulator(self) -> ChunkAccumulator:
        return ChunkAccumulator(content=self.content, thinking_content=self.thinking_content)


def _field(obj: Any, key: str) -> Any:
    """Read a key from a mapping or an attribute from an object."""
    if obj is None or isinstance(obj, (str, bytes, int, float, bool)):
        return None
    if isinstance(obj, Mapping):
        return obj.get(key)
    return getattr(obj, key, None)


def _unwrap_delta(raw: Any) -> Any:
    """Return ``choices[0].delta`` for OpenAI wire chunks, the chunk itself otherwise."""
    choices = _field(raw, "choices")
    if isinstance(choices, Sequence) and not isinstance(choices, str) and choices:
        delta = _field(choices[0], "delta")
        if delta is not None:
            return delta
    return raw


def _reasoning_text(payload: Any) -> Optional[str]:
    """Find a reasoning annotation in ``additional_kwargs`` or on the payload itself."""
    for source in (_field(payload, "additional_kwargs"), payload):
        for key in REASONING_KEYS:
            value = _field(source, key)
            if isinstance(value, str):
                return value
    return None


def _decode_part(part: Any) -> Tuple[str, str, bool]:
    """Decode one structured content part into ``(content, thinking, matched)``."""
    if isinstance(part, str):
        return part, "", True
    if not isinstance(part, Mapping):
        return "", "", False

    part_type = part.get("type")
    is_thinking = part_type in THINKING_PART_TYPES or part.get("thought") is True

    if isinstance(part.get("content"), str) and part_type is not None:
        return ("", part["content"], True) if is_thinking else (part["content"], "", True)
    if isinstance(part.get("text"), str):
        return ("", part["text"], True) if is_thinking else (part["text"], "", True)
    if isinstance(part.get("reasoning"), str):
        return "", part["reasoning"], True
    if isinstance(part.get("thinking"), str):
        return "", part["thinking"], True
    return "", "", False


def _decode_nested(value: Any) -> Tuple[str, str, bool]:
    """Decode a nested content object or a list of content parts."""
    if isinstance(value, Mapping):
        return _decode_part(value)
    if isinstance(value, (list, tuple)):
        content, thinking, matched = "", "", False
        for part in value:
            c, t, m = _decode_part(part)
            content += c
            thinking += t
            matched = matched or m
        return content, thinking, matched
    return "", "", False


def _stringify(value: Any) -> str:
    if isinstance(value, (Mapping, list, tuple)):
        try:
            return json.dumps(value, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            logger.debug("Chunk content is not JSON serializable, falling back to str().")
    return str(value)


def _to_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def _read_counters(source: Any) -> Optional[TokenUsage]:
    """Read token counters from one usage-like object, whatever the spelling."""
    if source is None:
        return None

    def first(keys: Tuple[str, ...]) -> int:
        for key in keys:
            value = _to_int(_field(source, key))
            if value:
                return value
        return 0

    prompt = first(_PROMPT_KEYS)
    completion = first(_COMPLETION_KEYS)
    total = first(_TOTAL_KEYS) or prompt + completion
    if not (total or prompt or completion):
        return None
    return TokenUsage(total_tokens=total, prompt_tokens=prompt, completion_tokens=completion)


def extract_usage(raw: Any) -> Optional[TokenUsage]:
    """Collect the token usage reported by a single chunk.

    Args:
        raw: The vendor shaped chunk.

    Returns:
        The per-counter maximum over every usage location in the chunk, or None.
    """
    candidates = (
        _field(_field(raw, "response_metadata"), "tokenUsage"),
        _field(_field(raw, "response_metadata"), "token_usage"),
        _field(raw, "usage_metadata"),
        _field(raw, "usage"),
        raw,
    )
    usage: Optional[TokenUsage] = None
    for candidate in candidates:
        found = _read_counters(candidate)
        if found is not None:
            usage = found if usage is None else usage.merge_max(found)
    return usage


def extract_thinking(text: str) -> Optional[Tuple[str, str]]:
    """Split text into reasoning and answer at the first recognised marker pair.

    Args:
        text: Text that may embed reasoning between markers.

    Returns:
        ``(thinking, answer)`` both stripped, or None when no marker pair matches.
    """
    for start_marker, end_marker in THINKING_MARKERS:
        start = text.find(start_marker)
        if start == -1:
            continue
        end = text.find(end_marker, start + len(start_marker))
        if end == -1:
            continue
        thinking = text[start + len(start_marker) : end].strip()
        answer = (text[:start] + text[end + len(end_marker) :]).strip()
        return thinking, answer
    return None


def normalize_chunk(
    raw: Any,
    content: str = "",
    thinking: str = "",
    usage: Optional[TokenUsage] = None,
) -> NormalizedChunk:
    """Fold one raw chunk into the accumulated state.

    Extraction order:
        1. a direct string ``content`` field is appended to the content.
        2. a reasoning annotation (``reasoning_content``, ``reasoning``, ``thinking``) is appended
           to the thinking text. Steps 1 and 2 are independent of each other.
        3. only when neither matched, a nested content object or list of parts is decoded,
           routing parts typed as thinking to the thinking text.
        4. anything else non-empty is stringified into the content.

    When the content is non-empty and no thinking text exists, the content is scanned for
    marker pairs such as ``<think>...</think>`` and split into thinking and answer.

    Args:
        raw: The vendor shaped chunk.
        content: Content accumulated so far.
        thinking: Thinking text accumulated so far.
        usage: Token usage aggregated so far.

    Returns:
        The new accumulated state.
    """
    payload = raw if isinstance(raw, str) else _unwrap_delta(raw)

    if isinstance(payload, str):
        direct: Any = payload
    else:
        direct = _field(payload, "content")

    found_content = isinstance(direct, str)
    if found_content:
        content += direct

    reasoning = None if isinstance(payload, str) else _reasoning_text(payload)
    if reasoning is not None:
        thinking += reasoning

    if not found_content and reasoning is None and direct is not None:
        nested_content, nested_thinking, matched = _decode_nested(direct)
        if matched:
            content += nested_content
            thinking += nested_thinking
        elif direct != {} and direct != []:
            content += _stringify(direct)

    chunk_usage = None if isinstance(raw, str) else extract_usage(raw)
    if chunk_usage is not None:
        usage = chunk_usage if usage is None else usage.merge_max(chunk_usage)

    if content and not thinking:
        split = extract_thinking(content)
        if split is not None:
            thinking, content = split

    return NormalizedChunk(content=content, thinking_content=thinking, token_usage=usage)


def fold_chunks(
    chunks: Iterable[Any],
    accumulator: Optional[ChunkAccumulator] = None,
    usage: Optional[TokenUsage] = None,
) -> NormalizedChunk:
    """Fold a whole chunk sequence, optionally continuing from a previous state.

    Args:
        chunks: Raw chunks in arrival order.
        accumulator: State returned by a previous fold.
        usage: Usage returned by a previous fold.

    Returns:
        The final accumulated state.
    """
    acc = accumulator or ChunkAccumulator()
    state = NormalizedChunk(content=acc.content, thinking_content=acc.thinking_content, token_usage=usage)
    for chunk in chunks:
        state = normalize_chunk(chunk, state.content, state.thinking_content, state.token_usage)
    return state


def aggregate_usage(chunks: Iterable[Any]) -> Optional[TokenUsage]:
    """Aggregate token usage over a full chunk history.

    Args:
        chunks: Every raw chunk of one stream.

    Returns:
        The per-counter maximum, or None when no chunk carried usage.
    """
    usage: Optional[TokenUsage] = None
    for chunk in chunks:
        if isinstance(chunk, str):
            continue
        found = extract_usage(chunk)
        if found is not None:
            usage = found if usage is None else usage.merge_max(found)
    return usage
