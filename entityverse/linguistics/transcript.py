"""Append-only, size-bounded record of everything entities say."""

from __future__ import annotations

from collections import deque
from typing import Deque, Iterable, List, Optional

from pydantic import BaseModel, Field

from entityverse.ontology.emotion import EmotionalState


class Utterance(BaseModel):
    id: str
    seq: int = Field(..., ge=1, description="Monotonic position in the transcript")
    speaker: str
    text: str
    listener: Optional[str] = None
    timestamp: float = 0.0
    tick: int = 0
    emotion: EmotionalState = Field(default_factory=EmotionalState)


class Transcript:
    """FIFO of utterances; oldest entries fall off once ``max_size`` is reached."""

    def __init__(self, max_size: int = 1000, *, next_seq: int = 1) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.max_size = max_size
        self._entries: Deque[Utterance] = deque(maxlen=max_size)
        self._next_seq = next_seq

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)

    @property
    def next_seq(self) -> int:
        return self._next_seq

    def append(
        self,
        *,
        speaker: str,
        text: str,
        timestamp: float,
        tick: int,
        emotion: EmotionalState,
        listener: Optional[str] = None,
    ) -> Utterance:
        seq = self._next_seq
        utterance = Utterance(
            id=f"u{seq}",
            seq=seq,
            speaker=speaker,
            text=text,
            listener=listener,
            timestamp=timestamp,
            tick=tick,
            emotion=emotion.model_copy(),
        )
        self._entries.append(utterance)
        self._next_seq += 1
        return utterance

    def since(self, seq: int) -> List[Utterance]:
        """Utterances with sequence number greater than ``seq``."""
        return [u for u in self._entries if u.seq > seq]

    def since_time(self, timestamp: float) -> List[Utterance]:
        return [u for u in self._entries if u.timestamp >= timestamp]

    def recent(self, limit: int = 10) -> List[Utterance]:
        if limit <= 0:
            return []
        return list(self._entries)[-limit:]

    def by_speaker(self, speaker: str) -> List[Utterance]:
        return [u for u in self._entries if u.speaker == speaker]

    def conversation(self, a: str, b: str) -> List[Utterance]:
        """Utterances exchanged directly between ``a`` and ``b``."""
        return [
            u
            for u in self._entries
            if (u.speaker == a and u.listener == b) or (u.speaker == b and u.listener == a)
        ]

    def entries(self) -> List[Utterance]:
        return list(self._entries)

    def load(self, utterances: Iterable[Utterance], *, next_seq: int) -> None:
        """Replace contents (used when restoring a snapshot)."""
        self._entries = deque(utterances, maxlen=self.max_size)
        self._next_seq = next_seq
