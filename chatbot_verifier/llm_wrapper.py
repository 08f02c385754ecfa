# chatbot_verifier/llm_wrapper.py
"""
Chat completion backends used by LLMGenerator.

call_llm() returns {"text", "model", "response_id", "raw"} whatever the
provider, and raises LLMError on any provider failure.

Env vars:
- LLM_PROVIDER=anthropic|openai (default: whichever key is present, else openai)
- ANTHROPIC_API_KEY / OPENAI_API_KEY
- CHAT_LLM_MODEL (default depends on provider)
- MOCK_LLM (default: true): answer from the governance templates, no network
"""

import os
import time
from typing import Any, Dict, List, Optional, Tuple

from chatbot_verifier import governance

Messages = List[Dict[str, str]]

MOCK_LLM = os.getenv("MOCK_LLM", "true").lower() in ("1", "true", "yes")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "").strip()
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()

_PROVIDER_ALIASES = {"anthropic": "anthropic", "claude": "anthropic", "openai": "openai", "gpt": "openai"}
_DEFAULT_MODELS = {"anthropic": "claude-sonnet-4-20250514", "openai": "gpt-4o-mini"}


def _resolve_provider() -> str:
    explicit = _PROVIDER_ALIASES.get(os.getenv("LLM_PROVIDER", "").strip().lower())
    if explicit:
        return explicit
    if ANTHROPIC_API_KEY:
        return "anthropic"
    return "openai"


LLM_PROVIDER = _resolve_provider()
DEFAULT_MODEL = os.getenv("CHAT_LLM_MODEL", _DEFAULT_MODELS[LLM_PROVIDER])


class LLMError(RuntimeError):
    pass


def _split_system(messages: Messages) -> Tuple[str, Messages]:
    """Anthropic takes system text as a separate argument."""
    system = "\n".join(m["content"] for m in messages if m["role"] == "system").strip()
    rest = [{"role": m["role"], "content": m["content"]} for m in messages if m["role"] != "system"]
    return system, rest


def _anthropic_chat(messages: Messages, model: str, max_tokens: int,
                    temperature: float, timeout: int) -> Dict[str, Any]:
    from anthropic import Anthropic

    system, chat = _split_system(messages)
    params = {"model": model, "max_tokens": max_tokens, "temperature": temperature, "messages": chat}
    if system:
        params["system"] = system
    resp = Anthropic(api_key=ANTHROPIC_API_KEY, timeout=timeout).messages.create(**params)
    text = "".join(getattr(block, "text", "") for block in resp.content)
    return {"text": text, "model": model, "response_id": getattr(resp, "id", None), "raw": resp}


def _openai_chat(messages: Messages, model: str, max_tokens: int,
                 temperature: float, timeout: int) -> Dict[str, Any]:
    from openai import OpenAI

    resp = OpenAI(api_key=OPENAI_API_KEY, timeout=timeout).chat.completions.create(
        model=model, messages=messages, max_tokens=max_tokens, temperature=temperature,
    )
    choices = getattr(resp, "choices", None) or []
    text = choices[0].message.content if choices else ""
    return {"text": text or "", "model": model, "response_id": getattr(resp, "id", None), "raw": resp}


def _mock_chat(messages: Messages, model: str, **_) -> Dict[str, Any]:
    last_user = next((m["content"] for m in reversed(messages) if m["role"] == "user"), "")
    return {
        "text": governance.answer_for(last_user),
        "model": model,
        "response_id": f"mock-{model}-{int(time.time() * 1000)}",
        "raw": {"mock": True},
    }


_BACKENDS = {"anthropic": _anthropic_chat, "openai": _openai_chat}


def call_llm(messages: Messages, model: Optional[str] = None, max_tokens: int = 1000,
             temperature: float = 0.7, timeout: int = 60) -> Dict[str, Any]:
    model = model or DEFAULT_MODEL
    if MOCK_LLM:
        return _mock_chat(messages, model)
    try:
        return _BACKENDS[LLM_PROVIDER](messages, model, max_tokens, temperature, timeout)
    except Exception as e:
        raise LLMError(f"LLM call failed ({LLM_PROVIDER}): {e}") from e
