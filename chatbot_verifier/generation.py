# chatbot_verifier/generation.py
"""
Answer generation collaborators.

The coordinator only relies on `generate(prompt) -> Generation` returning text
or raising. Two implementations:

- TemplateGenerator: keyword-routed governance answers (default)
- LLMGenerator: Anthropic/OpenAI through llm_wrapper

Env vars:
- GENERATION_BACKEND=template|llm (default: template)
- GENERATION_MODEL (default: 0g-governance-assistant-v1), reported to clients for templates
"""

import os
from dataclasses import dataclass
from typing import Optional

# Import modules (not bare functions) so monkeypatching in tests works correctly
import chatbot_verifier.llm_wrapper as _llm
from chatbot_verifier import governance

GENERATION_BACKEND = os.getenv("GENERATION_BACKEND", "template").strip().lower()
GENERATION_MODEL = os.getenv("GENERATION_MODEL", "0g-governance-assistant-v1")

GOVERNANCE_SYSTEM_PROMPT = """
You are a DAO Governance Assistant. Answer questions about governance proposals,
tokenomics, voting procedures and treasury status clearly and concisely.

Current proposals:
{proposals}

Rules:
- Only state facts present above; say so when information is unavailable.
- Use short markdown sections and bullet lists.
- Never give financial advice.
"""


class GenerationError(RuntimeError):
    pass


@dataclass
class Generation:
    text: str
    model: str
    response_id: Optional[str] = None


class TemplateGenerator:
    def __init__(self, model: str = GENERATION_MODEL):
        self.model = model

    def generate(self, prompt: str) -> Generation:
        return Generation(text=governance.answer_for(prompt), model=self.model)


class LLMGenerator:
    def __init__(self, model: Optional[str] = None, max_tokens: int = 1000,
                 temperature: float = 0.7):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    def _system_prompt(self) -> str:
        lines = []
        for p in governance.list_proposals()["proposals"]:
            lines.append(f"- #{p['id']} {p['title']} ({p['status']}): {p['description']} "
                         f"[{p['votesFor']}% for / {p['votesAgainst']}% against]")
        return GOVERNANCE_SYSTEM_PROMPT.format(proposals="\n".join(lines))

    def generate(self, prompt: str) -> Generation:
        messages = [
            {"role": "system", "content": self._system_prompt()},
            {"role": "user", "content": prompt},
        ]
        try:
            resp = _llm.call_llm(messages, model=self.model, max_tokens=self.max_tokens,
                                 temperature=self.temperature)
        except _llm.LLMError as e:
            raise GenerationError(str(e)) from e
        text = resp.get("text")
        if not isinstance(text, str) or not text.strip():
            raise GenerationError("Model returned an empty answer")
        return Generation(text=text, model=resp.get("model") or self.model or _llm.DEFAULT_MODEL,
                          response_id=resp.get("response_id"))


def build_generator(backend: Optional[str] = None):
    backend = (backend or GENERATION_BACKEND).lower()
    if backend == "llm":
        return LLMGenerator()
    if backend == "template":
        return TemplateGenerator()
    raise ValueError(f"Unknown GENERATION_BACKEND: {backend}")
