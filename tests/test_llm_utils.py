"""Unit tests for the language backend retry helper."""

import pytest
from pydantic import ValidationError

from entityverse.generation import GeneratedUtterance
from entityverse.llm_utils import call_llm_with_retries, inject_validation_feedback


def make_validation_error() -> ValidationError:
    try:
        GeneratedUtterance.model_validate({})
    except ValidationError as exc:
        return exc
    raise AssertionError("expected a validation error")


def fake_decorator_for(caller):
    def fake_decorator(*, provider, model, response_model):
        assert response_model is GeneratedUtterance

        def wrapper(fn):
            async def inner(prompt: str):
                return await caller(prompt)

            return inner

        return wrapper

    return fake_decorator


@pytest.mark.asyncio
async def test_call_llm_with_retries_success(monkeypatch):
    recorded_prompts: list[str] = []

    async def fake_caller(prompt: str) -> GeneratedUtterance:
        recorded_prompts.append(prompt)
        return GeneratedUtterance(text="ok")

    monkeypatch.setattr("entityverse.llm_utils.llm.call", fake_decorator_for(fake_caller))

    result = await call_llm_with_retries(
        system_prompt="System context",
        user_prompt="Speaker: ada",
        llm_provider="openai",
        llm_model="gpt-5-nano",
        response_model=GeneratedUtterance,
    )

    assert result.text == "ok"
    assert recorded_prompts == ["System context\n\nSpeaker: ada"]


@pytest.mark.asyncio
async def test_call_llm_with_retries_injects_feedback(monkeypatch, capsys):
    attempts: list[str] = []
    validation_error = make_validation_error()

    async def fake_caller(prompt: str) -> GeneratedUtterance:
        attempts.append(prompt)
        if len(attempts) == 1:
            raise validation_error
        return GeneratedUtterance(text="fixed")

    monkeypatch.setattr("entityverse.llm_utils.llm.call", fake_decorator_for(fake_caller))

    result = await call_llm_with_retries(
        system_prompt="System",
        user_prompt="User",
        llm_provider="openai",
        llm_model="gpt-5-nano",
        response_model=GeneratedUtterance,
    )

    assert result.text == "fixed"
    assert len(attempts) == 2
    assert "Your previous JSON response failed to validate." in attempts[1]
    assert "- text: Field required" in attempts[1]
    assert "GeneratedUtterance failed validation (attempt 1/3)" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_call_llm_with_retries_gives_up_after_max_attempts(monkeypatch):
    attempts: list[str] = []
    validation_error = make_validation_error()

    async def always_invalid(prompt: str) -> GeneratedUtterance:
        attempts.append(prompt)
        raise validation_error

    monkeypatch.setattr("entityverse.llm_utils.llm.call", fake_decorator_for(always_invalid))

    with pytest.raises(ValidationError):
        await call_llm_with_retries(
            system_prompt="System",
            user_prompt="User",
            llm_provider="openai",
            llm_model="gpt-5-nano",
            response_model=GeneratedUtterance,
            max_attempts=2,
        )
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_call_llm_with_retries_local_provider(monkeypatch):
    captured_kwargs: dict[str, str] = {}

    async def fake_local_call(*, system_prompt, user_prompt, llm_model, base_url=None, timeout=60.0):
        captured_kwargs["system_prompt"] = system_prompt
        captured_kwargs["user_prompt"] = user_prompt
        captured_kwargs["llm_model"] = llm_model
        return '{"text":"the bread is warm"}'

    def fail_decorator(*args, **kwargs):
        raise AssertionError("remote provider path should not be used for ollama")

    monkeypatch.setattr("entityverse.llm_utils.call_ollama_chat", fake_local_call)
    monkeypatch.setattr("entityverse.llm_utils.llm.call", fail_decorator)

    result = await call_llm_with_retries(
        system_prompt="System context",
        user_prompt="Speaker: ada",
        llm_provider="ollama",
        llm_model="llama3.1",
        response_model=GeneratedUtterance,
    )

    assert result.text == "the bread is warm"
    assert captured_kwargs == {
        "system_prompt": "System context",
        "user_prompt": "Speaker: ada",
        "llm_model": "llama3.1",
    }


@pytest.mark.asyncio
async def test_local_backend_errors_are_not_retried(monkeypatch):
    from entityverse.local_llm import LocalLLMError

    calls: list[str] = []

    async def broken_local_call(**kwargs):
        calls.append(kwargs["user_prompt"])
        raise LocalLLMError("connection refused")

    monkeypatch.setattr("entityverse.llm_utils.call_ollama_chat", broken_local_call)

    with pytest.raises(RuntimeError, match="Local language backend error"):
        await call_llm_with_retries(
            system_prompt="System",
            user_prompt="User",
            llm_provider="ollama",
            llm_model="llama3.1",
            response_model=GeneratedUtterance,
        )
    assert len(calls) == 1


def test_feedback_lists_each_issue_with_received_value():
    try:
        GeneratedUtterance.model_validate({"text": ""})
    except ValidationError as exc:
        feedback = inject_validation_feedback(exc)

    assert feedback.llm_text.startswith("Your previous JSON response failed to validate.")
    assert len(feedback.issues) == 1
    assert feedback.issues[0].startswith("text: ")
    assert "[type=string_too_short]" in feedback.issues[0]
    assert "received=''" in feedback.issues[0]
