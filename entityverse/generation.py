"""
Language-generation collaborators.

The World never waits on a generator inside a phase. ``request_utterance``
queues a request; at the end of a tick the request is turned into a
GenerationContext and handed to the generator (as an asyncio task when an
event loop is running). Completed text is harvested at the start of a later
tick and spoken as an ordinary dialogue message.

Two implementations:
- LexiconPhraseGenerator: built-in, deterministic, reuses crystallized
  vocabulary that matches the speaker's mood
- LLMLanguageGenerator: asks a language backend via call_llm_with_retries
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from pydantic import BaseModel, Field

from entityverse.config import Config
from entityverse.llm_utils import call_llm_with_retries
from entityverse.logging_utils import LOG_TAG_LLM, log_llm
from entityverse.ontology.emotion import EmotionalState


class GenerationRequest(BaseModel):
    speaker_id: str
    listener_id: Optional[str] = None
    requested_tick: int = 0


class GenerationContext(BaseModel):
    """Everything a generator may read; it never sees the live world."""

    speaker_id: str
    listener_id: Optional[str] = None
    essence: Optional[str] = None
    emotion: EmotionalState = Field(default_factory=EmotionalState)
    mood: str = "neutral"
    vocabulary: List[str] = Field(default_factory=list, description="Lexicon terms closest to the mood")
    recent: List[str] = Field(default_factory=list, description="Recent transcript lines")
    turn: int = Field(0, ge=0, description="Utterances the speaker has made so far")


class GeneratedUtterance(BaseModel):
    text: str = Field(..., min_length=1, max_length=280, description="One short line of dialogue")


class LanguageGenerator(ABC):
    @abstractmethod
    async def generate(self, context: GenerationContext) -> str:
        """Return the text the speaker should say."""


class LexiconPhraseGenerator(LanguageGenerator):
    """Speaks the world's own vocabulary, cycling through mood-matched terms."""

    FALLBACK_LINES = {
        "positive": ["this is nice", "good to see you", "i like it here"],
        "negative": ["i don't like this", "leave me be", "something is wrong"],
        "neutral": ["hello", "hmm", "what is this place"],
    }

    def compose(self, context: GenerationContext) -> str:
        if context.vocabulary:
            return context.vocabulary[context.turn % len(context.vocabulary)]
        if context.emotion.valence > 0.2:
            lines = self.FALLBACK_LINES["positive"]
        elif context.emotion.valence < -0.2:
            lines = self.FALLBACK_LINES["negative"]
        else:
            lines = self.FALLBACK_LINES["neutral"]
        return lines[context.turn % len(lines)]

    async def generate(self, context: GenerationContext) -> str:
        return self.compose(context)


DEFAULT_SYSTEM_PROMPT = (
    "You voice a character in a small simulated world. Reply with JSON "
    '{"text": "..."} holding one short line the character says aloud. '
    "Prefer the provided vocabulary; it is how this population talks."
)


class LLMLanguageGenerator(LanguageGenerator):
    """Generator backed by a language model (remote via mirascope or local Ollama)."""

    def __init__(
        self,
        *,
        llm_provider: Optional[str] = None,
        llm_model: Optional[str] = None,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        max_attempts: int = 2,
    ) -> None:
        self.llm_provider = llm_provider or Config.LLM_PROVIDER
        self.llm_model = llm_model or Config.LLM_MODEL
        self.system_prompt = system_prompt
        self.max_attempts = max_attempts

    def build_prompt(self, context: GenerationContext) -> str:
        lines = [
            f"Speaker: {context.speaker_id}",
            f"Essence: {context.essence or 'unknown'}",
            f"Mood: {context.mood} (valence {context.emotion.valence:+.2f}, arousal {context.emotion.arousal:.2f})",
        ]
        if context.listener_id:
            lines.append(f"Talking to: {context.listener_id}")
        if context.vocabulary:
            lines.append("Vocabulary: " + "; ".join(context.vocabulary))
        if context.recent:
            lines.append("Recently said nearby:")
            lines.extend(f"- {line}" for line in context.recent)
        return "\n".join(lines)

    async def generate(self, context: GenerationContext) -> str:
        log_llm(f"  {LOG_TAG_LLM} [Language] Generating line for {context.speaker_id}...")
        result = await call_llm_with_retries(
            system_prompt=self.system_prompt,
            user_prompt=self.build_prompt(context),
            llm_provider=self.llm_provider,
            llm_model=self.llm_model,
            response_model=GeneratedUtterance,
            max_attempts=self.max_attempts,
        )
        return result.text.strip()
