"""Structured language-backend calls with validation-aware retries.

Used by ``LLMLanguageGenerator``. Remote providers go through mirascope;
``provider="ollama"`` goes through ``entityverse.local_llm``. When the reply
does not validate against the response model, the validation issues are
appended to the prompt and the call is retried (tenacity).
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Sequence, TypeVar

from mirascope import llm
from pydantic import BaseModel, ValidationError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from entityverse.local_llm import LocalLLMError, call_ollama_chat
from entityverse.logging_utils import LOG_TAG_ERROR, log_error


ModelT = TypeVar("ModelT", bound=BaseModel)
LLM_TIMEOUT_SECONDS = 60.0


@dataclass(slots=True)
class ValidationFeedback:
    """Correction text for the model plus the raw issues for logging."""

    llm_text: str
    issues: Sequence[str]


def _preview(value: Any, *, limit: int = 80) -> str:
    text = "null" if value is None else repr(value)
    return text if len(text) <= limit else text[: limit - 3] + "..."


def inject_validation_feedback(error: ValidationError) -> ValidationFeedback:
    """Turn a ValidationError into instructions the model can act on."""

    issues: list[str] = []
    for err in error.errors(include_url=False):
        loc = ".".join(str(part) for part in err.get("loc", [])) or "root"
        details = f"{loc}: {err.get('msg', 'validation error')}"
        if err.get("type"):
            details += f" [type={err['type']}]"
        if "input" in err:
            details += f" | received={_preview(err.get('input'))}"
        issues.append(details)

    if not issues:
        issues.append("root: response did not match the expected schema")

    lines = [
        "Your previous JSON response failed to validate.",
        "Reply again with JSON that strictly matches the schema and nothing else.",
        "Issues detected:",
    ]
    lines.extend(f"- {issue}" for issue in issues)
    return ValidationFeedback(llm_text="\n".join(lines), issues=issues)


async def call_llm_with_retries(
    *,
    system_prompt: str,
    user_prompt: str,
    llm_provider: str,
    llm_model: str,
    response_model: type[ModelT],
    max_attempts: int = 3,
    feedback_builder: Callable[[ValidationError], ValidationFeedback] = inject_validation_feedback,
) -> ModelT:
    """Invoke a structured call, retrying only on schema validation failures.

    Timeouts and backend errors propagate immediately; retrying them rarely helps.

    Raises:
        ValidationError: If every attempt produced an invalid reply
        RuntimeError: If the local backend failed
        asyncio.TimeoutError: If a call exceeded ``LLM_TIMEOUT_SECONDS``
    """
    system_prompt = system_prompt.strip()
    base_user_prompt = user_prompt.strip()
    feedback: ValidationFeedback | None = None
    use_local = llm_provider.lower() == "ollama"

    remote_invoke: Callable[[str], Any] | None = None
    if not use_local:
        @llm.call(provider=llm_provider, model=llm_model, response_model=response_model)
        async def _invoke(prompt: str) -> str:
            return prompt

        remote_invoke = _invoke

    attempt_number = 0
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(ValidationError),
        stop=stop_after_attempt(max_attempts),
        reraise=True,
    ):
        with attempt:
            attempt_number += 1
            user_section = "\n\n".join(
                part for part in (base_user_prompt, feedback.llm_text if feedback else "") if part
            )
            try:
                if use_local:
                    raw = await asyncio.wait_for(
                        call_ollama_chat(
                            system_prompt=system_prompt,
                            user_prompt=user_section,
                            llm_model=llm_model,
                        ),
                        timeout=LLM_TIMEOUT_SECONDS,
                    )
                    return response_model.model_validate_json(raw)

                if remote_invoke is None:
                    raise RuntimeError("Remote language backend is not initialized.")
                prompt = "\n\n".join(part for part in (system_prompt, user_section) if part)
                return await asyncio.wait_for(remote_invoke(prompt), timeout=LLM_TIMEOUT_SECONDS)
            except ValidationError as exc:
                feedback = feedback_builder(exc)
                log_error(
                    f"  {LOG_TAG_ERROR} [Language] {response_model.__name__} failed validation "
                    f"(attempt {attempt_number}/{max_attempts})"
                )
                for issue in feedback.issues:
                    log_error(f"    - {issue}")
                raise
            except LocalLLMError as exc:
                raise RuntimeError(f"Local language backend error ({llm_provider}): {exc}") from exc

    raise RuntimeError("Retry loop exited without a result")
