"""Calling a locally hosted language backend (Ollama) for utterance generation."""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any
from urllib import error, request

DEFAULT_OLLAMA_BASE_URL = "http://127.0.0.1:11434"
_CHAT_ENDPOINT = "/api/chat"


class LocalLLMError(RuntimeError):
    """Raised when the local backend cannot produce a reply."""


def _perform_ollama_request(payload: dict[str, Any], base_url: str, timeout: float) -> str:
    """Blocking POST to the Ollama chat endpoint; returns the assistant text."""

    url = f"{base_url.rstrip('/')}{_CHAT_ENDPOINT}"
    req = request.Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json"},
        method="POST",
    )

    try:
        with request.urlopen(req, timeout=timeout) as resp:
            raw = resp.read().decode("utf-8")
    except error.HTTPError as exc:
        body = exc.read().decode("utf-8", errors="ignore") if exc.fp else ""
        raise LocalLLMError(f"Ollama returned status {exc.code}: {body or exc.reason}") from exc
    except error.URLError as exc:
        raise LocalLLMError(f"Could not reach Ollama at {url}: {exc.reason}") from exc

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise LocalLLMError("Ollama returned a non-JSON body.") from exc

    content = (parsed.get("message") or {}).get("content")
    if not content:
        raise LocalLLMError("Ollama reply had no assistant content.")
    return content


async def call_ollama_chat(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_model: str,
    base_url: str | None = None,
    timeout: float = 60.0,
) -> str:
    """Send one system+user exchange to Ollama without blocking the event loop."""

    resolved_base = base_url or os.getenv("OLLAMA_BASE_URL") or DEFAULT_OLLAMA_BASE_URL
    user_prompt = user_prompt.strip()
    if not user_prompt:
        raise LocalLLMError("Refusing to call Ollama with an empty user prompt.")

    messages: list[dict[str, str]] = []
    if system_prompt.strip():
        messages.append({"role": "system", "content": system_prompt.strip()})
    messages.append({"role": "user", "content": user_prompt})

    payload = {"model": llm_model, "messages": messages, "stream": False, "format": "json"}
    return await asyncio.to_thread(_perform_ollama_request, payload, resolved_base, timeout)


__all__ = ["LocalLLMError", "call_ollama_chat", "DEFAULT_OLLAMA_BASE_URL"]
