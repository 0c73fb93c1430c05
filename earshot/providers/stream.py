"""Normalize each backend's native stream shape into plain text chunks."""

import logging
from typing import Any, AsyncIterator, Callable, Dict, Optional

from ..errors import EarshotError, ProviderError
from ..models.dispatch import ProviderKind

logger = logging.getLogger(__name__)


def _groq_text(chunk: Dict[str, Any]) -> Optional[str]:
    # OpenAI-compatible delta: {"choices": [{"delta": {"content": "..."}}]}
    choices = chunk.get("choices") or []
    if not choices:
        return None
    delta = choices[0].get("delta") or choices[0].get("message") or {}
    return delta.get("content")


def _gemini_text(chunk: Dict[str, Any]) -> Optional[str]:
    # {"candidates": [{"content": {"parts": [{"text": "..."}]}}]}
    candidates = chunk.get("candidates") or []
    if not candidates:
        return None
    parts = (candidates[0].get("content") or {}).get("parts") or []
    text = "".join(part.get("text", "") for part in parts)
    return text or None


EXTRACTORS: Dict[ProviderKind, Callable[[Dict[str, Any]], Optional[str]]] = {
    ProviderKind.GROQ: _groq_text,
    ProviderKind.GEMINI: _gemini_text,
}

_missing = set(ProviderKind) - set(EXTRACTORS)
if _missing:
    raise RuntimeError(f"No stream extractor for providers: {sorted(k.value for k in _missing)}")


async def normalize_stream(chunks: AsyncIterator[Any], kind: ProviderKind) -> AsyncIterator[str]:
    """Yield non-empty text pieces from a provider's native chunk stream.

    Plain strings pass through unchanged. Failures while iterating are raised
    as ProviderError.
    """
    extract = EXTRACTORS[kind]
    try:
        async for chunk in chunks:
            text = chunk if isinstance(chunk, str) else extract(chunk)
            if text:
                yield text
    except EarshotError:
        raise
    except Exception as e:
        logger.error(f"{kind.value} stream failed mid-response: {e}")
        raise ProviderError(f"Stream interrupted: {e}", provider=kind.value) from e
