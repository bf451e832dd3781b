"""
World scheduler.

Owns the entity collection, the field list and (by reference) the
transcript and lexicon, and advances them in discrete ticks. Every tick
runs the same fixed sequence:

0. Harvest language-generation results that completed since the last tick
1. Physical   - forces between similar entities, integration, field effects,
                field expiry
2. Mental     - memory decay, periodic consolidation/forgetting, learning
                updates, emotional drift toward baseline
3. Relational - for pairs in contact: emotional contagion, relationship
                growth and interaction memories; relationship decay; message
                delivery (dialogue lands in the transcript); trust-gated
                memory sync
4. Crystallization cadence (lexicon decay every tick, analysis every K)
5. Dispatch queued language-generation requests off the tick path

``step()`` is synchronous and never awaits, so a tick is always applied as
a whole. ``run()`` is the async driver: it steps, yields to the event loop
between ticks so generator tasks can progress, and persists snapshots.

Failures inside one entity's per-tick work are isolated: the entity is
rolled back to its state before that phase, the fault is logged and
recorded, and the tick continues for everyone else.
"""

from __future__ import annotations

import asyncio
import random
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Tuple
from uuid import UUID, uuid4

from .cadence import TickInterval
from .entity import Entity
from .generation import (
    GenerationContext,
    GenerationRequest,
    LanguageGenerator,
    LexiconPhraseGenerator,
)
from .linguistics import Crystallizer, Lexicon, Transcript
from .linguistics.crystallizer import CategoryTagger
from .logging_utils import (
    Color,
    LOG_TAG_DETERMINISTIC,
    LOG_TAG_ERROR,
    LOG_TAG_INFO,
    LOG_TAG_SUCCESS,
    colored,
    log_error,
    log_once,
)
from .ontology.emotion import EmotionalState, EmotionDelta
from .ontology.learning import LearningState
from .ontology.memory import MemoryStore, MemoryType
from .ontology.relationships import RelationshipTable, RelationshipTransition
from .persistence import (
    InMemoryPersistence,
    PersistenceStrategy,
    SnapshotError,
    WorldSnapshot,
    parse_snapshot,
)
from .physics import compute_forces, essence_similarity, integrate, pairs_within
from .schemas import (
    PRIORITY_ORDER,
    Capabilities,
    EntityDefinition,
    Message,
    MessageKind,
    MessagePriority,
    TickReport,
    WorldConfig,
    WorldEvent,
    WorldField,
)
from .scoring import (
    FallbackSalienceScorer,
    FallbackSimilarityScorer,
    RuleBasedSalienceScorer,
    SalienceScorer,
    SimilarityScorer,
    TextOverlapScorer,
)
from .sync import DataCategory, InvalidLogError, MemoryLog, MemorySync, PrivacySettings, TrustGate


TickListener = Callable[["World", TickReport], None]
EntityHook = Callable[["World", Entity], None]

EVENT_HISTORY_SIZE = 1000


# =============================
# Module-level Exceptions
# =============================

class UnknownEntityError(KeyError):
    """Raised when an operation names an entity that is not in the world."""

    def __init__(self, *, entity_id: str, operation: str) -> None:
        self.entity_id = entity_id
        self.operation = operation
        super().__init__(
            f"{operation}: no entity with id '{entity_id}'. "
            "It may never have been spawned or may have been removed."
        )


class UnknownDefinitionError(KeyError):
    """Raised when spawning from a definition name that was never registered."""

    def __init__(self, *, name: str, available: List[str]) -> None:
        self.name = name
        super().__init__(
            f"No entity definition named '{name}'. Registered: {sorted(available) or 'none'}"
        )


def _encode_rng_state(state: tuple) -> List[Any]:
    version, internal, gauss_next = state
    return [version, list(internal), gauss_next]


def _decode_rng_state(payload: List[Any]) -> tuple:
    version, internal, gauss_next = payload
    return (version, tuple(internal), gauss_next)


class World:
    """
    Population scheduler.

    All collaborators are optional and injected; nothing global is touched.
    """

    def __init__(
        self,
        config: Optional[WorldConfig] = None,
        *,
        definitions: Optional[Mapping[str, EntityDefinition]] = None,
        similarity_scorer: Optional[SimilarityScorer] = None,
        salience_scorer: Optional[SalienceScorer] = None,
        language_generator: Optional[LanguageGenerator] = None,
        category_tagger: Optional[CategoryTagger] = None,
        transcript: Optional[Transcript] = None,
        lexicon: Optional[Lexicon] = None,
        persistence: Optional[PersistenceStrategy] = None,
        tick_listeners: Optional[List[TickListener]] = None,
        entity_hooks: Optional[List[EntityHook]] = None,
    ):
        """Create an empty world.

        Args:
            config: World configuration (defaults to WorldConfig())
            definitions: Entity definitions available to spawn()/restore(), keyed by name
            similarity_scorer: Text similarity for memory matching and essence forces;
                defaults to token overlap
            salience_scorer: Importance of heard text; defaults to the rule-based policy
            language_generator: Off-tick text generator for request_utterance();
                defaults to the lexicon phrase composer
            category_tagger: Optional lexicon category tagger
            transcript: Shared transcript to write speech into (owned by the caller)
            lexicon: Shared lexicon to crystallize into (owned by the caller)
            persistence: Snapshot backend used by run() (defaults to in-memory)
            tick_listeners: Callables invoked as listener(world, report) after each tick
            entity_hooks: Callables invoked as hook(world, entity) per entity in the
                Mental phase; failures are isolated like any per-entity work
        """
        self.config = config or WorldConfig()
        self.rng = random.Random(self.config.seed)
        self.tick = 0
        self.time = 0.0
        self.run_id: UUID = uuid4()

        self.entities: Dict[str, Entity] = {}
        self.fields: List[WorldField] = []
        self.definitions: Dict[str, EntityDefinition] = dict(definitions or {})

        # Missing collaborators fall back to built-in heuristics; external ones
        # are wrapped so a failing scorer degrades instead of faulting entities.
        if similarity_scorer is None:
            log_once(
                "collaborator:similarity",
                f"  {LOG_TAG_INFO} [World] No similarity scorer supplied; using text overlap.",
            )
            self.similarity_scorer: SimilarityScorer = TextOverlapScorer()
        else:
            self.similarity_scorer = FallbackSimilarityScorer(similarity_scorer)
        if salience_scorer is None:
            log_once(
                "collaborator:salience",
                f"  {LOG_TAG_INFO} [World] No salience scorer supplied; using rule-based salience.",
            )
            self.salience_scorer: SalienceScorer = RuleBasedSalienceScorer()
        else:
            self.salience_scorer = FallbackSalienceScorer(salience_scorer)

        crystallizer_config = self.config.crystallizer
        self.transcript = transcript if transcript is not None else crystallizer_config.build_transcript()
        self.lexicon = lexicon if lexicon is not None else crystallizer_config.build_lexicon()
        self.crystallizer = Crystallizer(
            self.transcript, self.lexicon, crystallizer_config, tagger=category_tagger
        )

        self.trust_gate = TrustGate(self.config.trust)
        self.memory_sync = MemorySync(
            self.trust_gate,
            share_salience_factor=self.config.relational.share_salience_factor,
        )
        self.consolidation_interval = TickInterval(every=self.config.mental.consolidation_every)
        self._consolidation_last_tick: Optional[int] = None

        self.language_generator = language_generator
        self._phrase_composer = LexiconPhraseGenerator()
        self._generation_queue: List[GenerationRequest] = []
        self._generation_tasks: List[Tuple[GenerationRequest, GenerationContext, asyncio.Task]] = []
        self._generation_ready: List[Tuple[GenerationRequest, str]] = []

        self.persistence = persistence or InMemoryPersistence()
        self.tick_listeners = tick_listeners or []
        self.entity_hooks = entity_hooks or []

        self.event_history: Deque[WorldEvent] = deque(maxlen=EVENT_HISTORY_SIZE)
        self._events: List[WorldEvent] = []
        self._report: Optional[TickReport] = None
        self._message_seq = 0
        self._field_seq = 0
        self._spawn_seq = 0
        self._stop_requested = False

    # ------------------------------------------------------------------
    # Population management
    # ------------------------------------------------------------------

    def register_definition(self, definition: EntityDefinition) -> None:
        self.definitions[definition.name] = definition

    def entity(self, entity_id: str) -> Entity:
        try:
            return self.entities[entity_id]
        except KeyError:
            raise UnknownEntityError(entity_id=entity_id, operation="entity") from None

    def _require(self, entity_id: str, operation: str) -> Entity:
        entity = self.entities.get(entity_id)
        if entity is None:
            raise UnknownEntityError(entity_id=entity_id, operation=operation)
        return entity

    def spawn(
        self,
        definition: EntityDefinition | str | None = None,
        *,
        entity_id: Optional[str] = None,
        x: Optional[float] = None,
        y: Optional[float] = None,
        vx: float = 0.0,
        vy: float = 0.0,
        essence: Optional[str] = None,
        emotion: Optional[EmotionalState] = None,
        capabilities: Optional[Capabilities] = None,
    ) -> Entity:
        """Add a new entity, optionally from a declarative definition.

        Positions default to a uniform draw from the world RNG so spawns are
        reproducible for a given seed.

        Raises:
            UnknownDefinitionError: If ``definition`` names an unregistered definition
            ValueError: If ``entity_id`` is already taken
        """
        if isinstance(definition, str):
            if definition not in self.definitions:
                raise UnknownDefinitionError(name=definition, available=list(self.definitions))
            definition = self.definitions[definition]
        elif definition is not None:
            self.definitions.setdefault(definition.name, definition)

        base_name = definition.name if definition is not None else "entity"
        if entity_id is None:
            while True:
                self._spawn_seq += 1
                candidate = f"{base_name}-{self._spawn_seq}"
                if candidate not in self.entities:
                    entity_id = candidate
                    break
        elif entity_id in self.entities:
            raise ValueError(f"Entity id '{entity_id}' already exists")

        physics = self.config.physics
        if x is None:
            x = self.rng.uniform(0.0, physics.width)
        if y is None:
            y = self.rng.uniform(0.0, physics.height)

        caps = capabilities or (definition.capabilities if definition is not None else Capabilities())
        start_emotion = emotion or (definition.emotion if definition is not None else EmotionalState())
        baseline = (definition.baseline if definition is not None else None) or start_emotion
        capacity = (
            definition.memory_capacity
            if definition is not None and definition.memory_capacity
            else self.config.memory_capacity
        )

        entity = Entity(
            id=entity_id,
            definition=definition.name if definition is not None else None,
            essence=essence if essence is not None else (definition.essence if definition is not None else None),
            x=x,
            y=y,
            vx=vx,
            vy=vy,
            emotion=start_emotion.model_copy(),
            baseline=baseline.model_copy(),
            memory=MemoryStore(capacity=capacity) if caps.memory else None,
            relationships=RelationshipTable(bond_threshold=self.config.bond_threshold) if caps.relationships else None,
            learning=LearningState() if caps.learning else None,
            memory_log=MemoryLog(owner=entity_id) if caps.memory_log else None,
            privacy=definition.privacy.model_copy(deep=True) if definition is not None else PrivacySettings(),
        )
        self.entities[entity_id] = entity
        self._record_event("spawn", subject=entity_id, definition=entity.definition)
        self._fire_triggers(entity, "spawn")
        return entity

    def remove_entity(self, entity_id: str) -> Entity:
        entity = self._require(entity_id, "remove_entity")
        del self.entities[entity_id]
        self.memory_sync.ledger.forget_entity(entity_id)
        self._record_event("removed", subject=entity_id)
        return entity

    def spawn_field(
        self,
        *,
        x: float,
        y: float,
        duration: float,
        radius: float = 50.0,
        kind: str = "generic",
        emotion: Optional[EmotionDelta] = None,
    ) -> WorldField:
        """Place a stationary, time-limited field."""

        self._field_seq += 1
        field = WorldField(
            id=f"field-{self._field_seq}",
            kind=kind,
            x=x,
            y=y,
            radius=radius,
            duration=duration,
            emotion=emotion or EmotionDelta(),
        )
        self.fields.append(field)
        self._record_event("field_spawned", subject=field.id, kind=kind)
        return field

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def send(
        self,
        sender_id: str,
        content: str,
        *,
        recipient_id: Optional[str] = None,
        kind: MessageKind = MessageKind.DIALOGUE,
        priority: MessagePriority = MessagePriority.NORMAL,
        emotion: Optional[EmotionDelta] = None,
    ) -> Message:
        """Queue a message; it is delivered in the next Relational phase."""

        sender = self._require(sender_id, "send")
        self._message_seq += 1
        message = Message(
            id=f"msg-{self._message_seq}",
            seq=self._message_seq,
            sender=sender_id,
            recipient=recipient_id,
            kind=kind,
            priority=priority,
            content=content,
            emotion=emotion,
            created_tick=self.tick,
        )
        sender.outbox.append(message)
        return message

    def say(self, speaker_id: str, text: str, *, listener_id: Optional[str] = None) -> Message:
        return self.send(speaker_id, text, recipient_id=listener_id, kind=MessageKind.DIALOGUE)

    def record_outcome(self, entity_id: str, action: str, reward: float) -> bool:
        """Queue a learning outcome for the next Mental phase."""

        return self._require(entity_id, "record_outcome").record_outcome(
            action, reward, timestamp=self.time
        )

    def request_utterance(self, speaker_id: str, *, listener_id: Optional[str] = None) -> GenerationRequest:
        """Ask the language generator for a line; it is spoken on a later tick."""

        self._require(speaker_id, "request_utterance")
        request = GenerationRequest(
            speaker_id=speaker_id, listener_id=listener_id, requested_tick=self.tick
        )
        self._generation_queue.append(request)
        return request

    def stop(self) -> None:
        """Ask run() to stop after the current tick; state stays resumable."""

        self._stop_requested = True

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def step(self, dt: Optional[float] = None) -> TickReport:
        """Advance the world by one tick and return what happened."""

        dt = self.config.tick_seconds if dt is None else dt
        if dt <= 0:
            raise ValueError("dt must be positive")

        self.tick += 1
        self.time += dt
        report = TickReport(tick=self.tick, time=self.time)
        self._report = report
        verbose = self.config.verbose

        # 0. Text produced by the generator since the last tick becomes speech now.
        self._harvest_generation()

        # 1. Physical: motion and fields.
        if verbose:
            print(colored(f"  {LOG_TAG_DETERMINISTIC} [Physical] {len(self.entities)} entities, {len(self.fields)} fields", Color.BLUE))
        self._physical_phase(dt)

        # 2. Mental: memory upkeep and learning.
        if verbose:
            print(colored(f"  {LOG_TAG_DETERMINISTIC} [Mental] Updating memory and learning state", Color.BLUE))
        self._mental_phase(dt)

        # 3. Relational: contact effects, messages, speech, memory sync.
        if verbose:
            print(colored(f"  {LOG_TAG_DETERMINISTIC} [Relational] Resolving contacts and messages", Color.BLUE))
        self._relational_phase(dt)

        # 4. Crystallization runs on its own cadence over the transcript.
        crystallization = self.crystallizer.step(tick=self.tick, now=self.time)
        if crystallization is not None:
            report.crystallization = crystallization
            for term in crystallization.new_terms:
                self._record_event("lexicon_term", subject=term)
            for term in crystallization.removed:
                self._record_event("lexicon_removed", subject=term)

        # 5. Hand queued generation requests to the generator off the tick path.
        self._dispatch_generation()

        report.events = self._events
        self._events = []
        self._report = None

        if verbose:
            print(colored(
                f"  {LOG_TAG_SUCCESS} [Tick {self.tick}] {len(report.events)} events, "
                f"{report.utterances} utterances, {report.faults} faults",
                Color.GREEN,
            ))

        for listener in self.tick_listeners:
            try:
                listener(self, report)
            except Exception as exc:  # pragma: no cover - diagnostic hook
                print(f"  [Analysis] Listener failed: {exc}")

        return report

    async def run(self, num_ticks: int) -> Dict[str, Any]:
        """Run ``num_ticks`` ticks, persisting snapshots on the configured cadence.

        Returns:
            Dict with run_id, ticks_completed, stopped_early and the final tick
        """
        await self.persistence.initialize()
        self._stop_requested = False
        snapshot_interval = (
            TickInterval(every=self.config.snapshot_every) if self.config.snapshot_every else None
        )

        try:
            print(f"Starting world run {self.run_id}")
            print(f"Entities: {len(self.entities)}, Ticks: {num_ticks}\n")

            if snapshot_interval is not None:
                await self.persistence.save_snapshot(self.run_id, self.tick, self.snapshot())

            ticks_completed = 0
            stopped_early = False
            for _ in range(num_ticks):
                if self._stop_requested:
                    stopped_early = True
                    break

                try:
                    self.step()
                except Exception as e:
                    print(f"ERROR at tick {self.tick}: {e}")
                    raise
                ticks_completed += 1

                if snapshot_interval is not None and snapshot_interval.is_due(tick=self.tick, last_run_tick=None):
                    await self.persistence.save_snapshot(self.run_id, self.tick, self.snapshot())

                # Let generator tasks make progress between ticks.
                await asyncio.sleep(0)

            if self._stop_requested and ticks_completed < num_ticks:
                stopped_early = True

            if stopped_early:
                print(f"\nWorld stopped early at tick {self.tick}.")
            else:
                print(colored(f"\n{LOG_TAG_SUCCESS} World run complete at tick {self.tick}.", Color.GREEN))

            return {
                "run_id": self.run_id,
                "ticks_completed": ticks_completed,
                "stopped_early": stopped_early,
                "tick": self.tick,
            }
        finally:
            self._park_generation_tasks()
            await self.persistence.close()

    # ------------------------------------------------------------------
    # Phase 1: Physical
    # ------------------------------------------------------------------

    def _essence_similarity(self, a: Entity, b: Entity) -> float:
        return essence_similarity(a, b, self.similarity_scorer)

    def _physical_phase(self, dt: float) -> None:
        population = list(self.entities.values())
        forces = compute_forces(population, self.config.physics, self._essence_similarity)
        active_fields = [f for f in self.fields if not f.expired]

        for entity in population:
            entered: List[WorldField] = []
            ok = self._isolated(
                entity,
                "physical",
                lambda e=entity: entered.extend(self._physical_entity(e, forces[e.id], active_fields, dt)),
            )
            if ok:
                for field in entered:
                    field.visitors.append(entity.id)

        remaining: List[WorldField] = []
        for field in self.fields:
            field.elapsed += dt
            if field.expired:
                self._record_event("field_expired", subject=field.id, kind=field.kind)
            else:
                remaining.append(field)
        self.fields = remaining

    def _physical_entity(
        self,
        entity: Entity,
        force: Tuple[float, float],
        fields: List[WorldField],
        dt: float,
    ) -> List[WorldField]:
        integrate(entity, force, dt, self.config.physics)
        entity.age += dt

        entered: List[WorldField] = []
        for field in fields:
            if not field.contains(entity.x, entity.y):
                continue
            if not field.emotion.is_zero():
                entity.apply_emotion(field.emotion.scaled(dt))
            if entity.id in field.visitors:
                continue
            entered.append(field)
            entity.remember(
                MemoryType.FIELD,
                subject=field.id,
                content={"kind": field.kind},
                timestamp=self.time,
                salience=0.5,
            )
            self._fire_triggers(entity, "field")
        return entered

    # ------------------------------------------------------------------
    # Phase 2: Mental
    # ------------------------------------------------------------------

    def _mental_phase(self, dt: float) -> None:
        consolidate = self.consolidation_interval.is_due(
            tick=self.tick, last_run_tick=self._consolidation_last_tick
        )
        for entity in list(self.entities.values()):
            self._isolated(entity, "mental", lambda e=entity: self._mental_entity(e, dt, consolidate))
        if consolidate:
            self._consolidation_last_tick = self.tick

    def _mental_entity(self, entity: Entity, dt: float, consolidate: bool) -> None:
        mental = self.config.mental

        if entity.memory is not None:
            entity.memory.decay(dt, mental.memory_decay_rate)
            if consolidate:
                merged = entity.memory.consolidate(
                    min_combined_salience=mental.consolidation_floor,
                    boost=mental.consolidation_boost,
                )
                forgotten = entity.memory.forget(mental.forget_threshold)
                if merged.groups_merged or forgotten:
                    self._record_event(
                        "memory_consolidated",
                        subject=entity.id,
                        merged=merged.memories_removed,
                        forgotten=len(forgotten),
                    )

        if entity.learning is not None:
            entity.learning.update()

        if mental.emotion_drift_rate > 0:
            entity.emotion.drift_toward(entity.baseline, mental.emotion_drift_rate * dt)

        max_age = self.config.relational.log_max_age
        if entity.memory_log is not None and max_age is not None:
            entity.memory_log.prune(max_age=max_age, now=self.time)

        for hook in self.entity_hooks:
            hook(self, entity)

    # ------------------------------------------------------------------
    # Phase 3: Relational
    # ------------------------------------------------------------------

    def _relational_phase(self, dt: float) -> None:
        relational = self.config.relational
        population = list(self.entities.values())
        contacts = pairs_within(population, relational.contact_radius)

        # Contagion is computed from the pre-phase emotions of both sides and
        # applied afterwards, so pair order cannot change the outcome.
        deltas: Dict[str, EmotionDelta] = {}
        for a, b, _ in contacts:
            if not self._emotion_shared(a, b):
                continue
            for target, source in ((a, b), (b, a)):
                weight = relational.contagion_base + (1.0 - relational.contagion_base) * target.strength_with(source.id)
                fraction = min(1.0, relational.contagion_rate * dt * weight)
                step = target.emotion.delta_toward(source.emotion, fraction)
                total = deltas.setdefault(target.id, EmotionDelta())
                total.valence += step.valence
                total.arousal += step.arousal
                total.dominance += step.dominance
        for entity_id, delta in deltas.items():
            self.entities[entity_id].apply_emotion(delta)

        for a, b, d in contacts:
            closeness = max(0.0, 1.0 - d / relational.contact_radius)
            for owner, other in ((a, b), (b, a)):
                self._isolated(
                    owner,
                    "relational",
                    lambda o=owner, p=other: self._contact(o, p, closeness, dt),
                )

        for entity in population:
            if entity.relationships is None:
                continue
            _, transitions = entity.relationships.decay_relationships(
                now=self.time, dt=dt, config=self.config.decay
            )
            self._handle_transitions(entity, transitions)

        self._deliver_messages()

        if relational.sync_enabled:
            for a, b, _ in contacts:
                self._sync_pair(a, b)

    def _emotion_shared(self, a: Entity, b: Entity) -> bool:
        return self.trust_gate.permits(
            a.privacy, DataCategory.EMOTION, a.trust_in(b.id)
        ) and self.trust_gate.permits(b.privacy, DataCategory.EMOTION, b.trust_in(a.id))

    def _contact(self, owner: Entity, other: Entity, closeness: float, dt: float) -> None:
        relational = self.config.relational
        if owner.relationships is not None:
            transitions = owner.relationships.interact(
                other.id,
                now=self.time,
                strength_delta=relational.fondness_gain * dt,
                trust_delta=relational.trust_gain * dt,
                familiarity_delta=relational.familiarity_gain * dt,
            )
            self._handle_transitions(owner, transitions)
        owner.remember(
            MemoryType.INTERACTION,
            subject=other.id,
            content=f"near {other.id}",
            timestamp=self.time,
            salience=closeness,
            scorer=self.similarity_scorer,
            merge_threshold=relational.memory_merge_threshold,
            boost=relational.reinforce_boost,
        )

    def _handle_transitions(self, owner: Entity, transitions: List[RelationshipTransition]) -> None:
        for transition in transitions:
            if transition.kind in ("bonded", "unbonded"):
                self._record_event(
                    transition.kind,
                    subject=owner.id,
                    target=transition.target_id,
                    strength=round(transition.strength, 6),
                )
                self._fire_triggers(owner, transition.kind, other_id=transition.target_id)
            else:
                self._record_event(
                    f"relationship_{transition.kind}", subject=owner.id, target=transition.target_id
                )

    def _deliver_messages(self) -> None:
        queued: List[Message] = []
        for entity in self.entities.values():
            if entity.outbox:
                queued.extend(entity.outbox)
                entity.outbox = []
        queued.sort(key=lambda m: (PRIORITY_ORDER[m.priority], m.seq))

        for message in queued:
            sender = self.entities.get(message.sender)
            if sender is None:
                continue

            if message.kind is MessageKind.THOUGHT:
                self._isolated(
                    sender,
                    "relational",
                    lambda s=sender, m=message: s.remember(
                        MemoryType.CUSTOM,
                        subject=s.id,
                        content=m.content,
                        timestamp=self.time,
                        salience=self.salience_scorer.score(m.content, base=0.3),
                    ),
                )
                continue

            if message.recipient is not None:
                recipient = self.entities.get(message.recipient)
                if recipient is None:
                    log_once(
                        f"undeliverable:{message.recipient}",
                        f"  {LOG_TAG_INFO} [Relational] Dropping messages for unknown entity '{message.recipient}'",
                    )
                    continue
                recipients = [recipient]
            else:
                radius = self.config.relational.message_radius
                recipients = [
                    e
                    for e in self.entities.values()
                    if e.id != sender.id and (e.x - sender.x) ** 2 + (e.y - sender.y) ** 2 <= radius ** 2
                ]

            if message.kind is MessageKind.DIALOGUE:
                self.transcript.append(
                    speaker=sender.id,
                    text=message.content,
                    listener=message.recipient,
                    timestamp=self.time,
                    tick=self.tick,
                    emotion=sender.emotion,
                )
                self._report.utterances += 1

            for recipient in recipients:
                if self._isolated(
                    recipient,
                    "relational",
                    lambda r=recipient, s=sender, m=message: self._receive(r, s, m),
                ):
                    self._report.messages_delivered += 1

    def _receive(self, recipient: Entity, sender: Entity, message: Message) -> None:
        relational = self.config.relational
        recipient.receive(message, inbox_size=relational.inbox_size)
        if message.kind is MessageKind.EMOTION and message.emotion is not None:
            recipient.apply_emotion(message.emotion)

        memory_type = MemoryType.SPEECH if message.kind is MessageKind.DIALOGUE else MemoryType.MESSAGE
        recipient.remember(
            memory_type,
            subject=sender.id,
            content=message.content,
            timestamp=self.time,
            salience=self.salience_scorer.score(message.content),
        )
        if recipient.relationships is not None:
            transitions = recipient.relationships.interact(
                sender.id, now=self.time, familiarity_delta=relational.familiarity_gain
            )
            self._handle_transitions(recipient, transitions)
        self._fire_triggers(recipient, "message", other_id=sender.id)

    def _sync_pair(self, a: Entity, b: Entity) -> None:
        try:
            results = self.memory_sync.sync_pair(a, b)
        except InvalidLogError as exc:
            log_error(f"  {LOG_TAG_ERROR} [Sync] Rejected exchange {a.id}<->{b.id}: {exc.reason}")
            self._record_event("sync_rejected", subject=a.id, target=b.id, reason=exc.reason)
            return
        for result in results:
            if result.added:
                self._report.memories_synced += result.added
                self._record_event(
                    "memory_sync", subject=result.sender, target=result.receiver, added=result.added
                )

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def _fire_triggers(self, entity: Entity, event: str, *, other_id: Optional[str] = None) -> None:
        if entity.definition is None:
            return
        definition = self.definitions.get(entity.definition)
        if definition is None:
            return

        for trigger in definition.triggers_for(event):
            if trigger.chance < 1.0 and self.rng.random() >= trigger.chance:
                continue
            if trigger.emotion is not None:
                entity.apply_emotion(trigger.emotion)
            lines = list(trigger.say)
            if trigger.dialogue_key:
                lines.extend(definition.dialogue.get(trigger.dialogue_key, []))
            if lines:
                self.say(entity.id, lines[self.rng.randrange(len(lines))], listener_id=other_id)
            if trigger.learn:
                entity.record_outcome(trigger.learn, trigger.reward, timestamp=self.time)

    # ------------------------------------------------------------------
    # Language generation (off the tick path)
    # ------------------------------------------------------------------

    def _build_generation_context(self, request: GenerationRequest) -> GenerationContext:
        speaker = self.entities[request.speaker_id]
        return GenerationContext(
            speaker_id=speaker.id,
            listener_id=request.listener_id,
            essence=speaker.essence,
            emotion=speaker.emotion.model_copy(),
            mood=speaker.emotion.label(),
            vocabulary=[entry.term for entry in self.lexicon.closest(speaker.emotion, limit=5)],
            recent=[u.text for u in self.transcript.recent(5)],
            turn=len(self.transcript.by_speaker(speaker.id)),
        )

    def _dispatch_generation(self) -> None:
        if not self._generation_queue:
            return
        requests, self._generation_queue = self._generation_queue, []

        try:
            loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        for request in requests:
            if request.speaker_id not in self.entities:
                continue
            context = self._build_generation_context(request)
            if self.language_generator is None:
                log_once(
                    "collaborator:language",
                    f"  {LOG_TAG_INFO} [Language] No language generator supplied; speaking lexicon phrases.",
                )
                self._generation_ready.append((request, self._phrase_composer.compose(context)))
            elif loop is None:
                log_once(
                    "collaborator:language-loop",
                    f"  {LOG_TAG_INFO} [Language] step() called outside an event loop; "
                    "using lexicon phrases instead of the configured generator.",
                )
                self._generation_ready.append((request, self._phrase_composer.compose(context)))
            else:
                task = loop.create_task(self.language_generator.generate(context))
                self._generation_tasks.append((request, context, task))

    def _harvest_generation(self) -> None:
        pending: List[Tuple[GenerationRequest, GenerationContext, asyncio.Task]] = []
        for request, context, task in self._generation_tasks:
            if not task.done():
                pending.append((request, context, task))
                continue
            if task.cancelled():
                text = self._phrase_composer.compose(context)
            elif task.exception() is not None:
                log_once(
                    "collaborator:language-failed",
                    f"  {LOG_TAG_ERROR} [Language] Generator failed ({task.exception()}); "
                    "falling back to lexicon phrases.",
                    color=Color.RED,
                )
                text = self._phrase_composer.compose(context)
            else:
                text = str(task.result())
            self._generation_ready.append((request, text))
        self._generation_tasks = pending

        ready, self._generation_ready = self._generation_ready, []
        for request, text in ready:
            if request.speaker_id in self.entities and text.strip():
                self.say(request.speaker_id, text.strip(), listener_id=request.listener_id)

    def _park_generation_tasks(self) -> None:
        """Cancel unfinished generator tasks and requeue their requests."""

        kept: List[Tuple[GenerationRequest, GenerationContext, asyncio.Task]] = []
        for request, context, task in self._generation_tasks:
            if task.done():
                kept.append((request, context, task))
            else:
                task.cancel()
                self._generation_queue.append(request)
        self._generation_tasks = kept

    # ------------------------------------------------------------------
    # Isolation and events
    # ------------------------------------------------------------------

    def _isolated(self, entity: Entity, phase: str, work: Callable[[], Any]) -> bool:
        """Run ``work`` for ``entity``; on failure roll the entity back and log."""

        backup = entity.model_copy(deep=True)
        try:
            work()
            return True
        except Exception as exc:
            for name in Entity.model_fields:
                setattr(entity, name, getattr(backup, name))
            entity.faults += 1
            entity.last_error = f"{phase}: {exc}"
            if self._report is not None:
                self._report.faults += 1
            log_error(
                f"  {LOG_TAG_ERROR} [World] Entity '{entity.id}' failed during {phase} phase "
                f"at tick {self.tick}: {exc}"
            )
            self._record_event("entity_fault", subject=entity.id, phase=phase, error=str(exc))
            return False

    def _record_event(
        self,
        kind: str,
        /,
        *,
        subject: Optional[str] = None,
        target: Optional[str] = None,
        **detail: Any,
    ) -> WorldEvent:
        event = WorldEvent(tick=self.tick, kind=kind, subject=subject, target=target, detail=detail)
        self._events.append(event)
        self.event_history.append(event)
        return event

    # ------------------------------------------------------------------
    # Persistence boundary
    # ------------------------------------------------------------------

    def snapshot(self) -> WorldSnapshot:
        """Serializable copy of the complete world state."""

        pending = list(self._generation_queue) + [request for request, _, _ in self._generation_tasks]
        return WorldSnapshot(
            tick=self.tick,
            time=self.time,
            config=self.config.model_copy(deep=True),
            rng_state=_encode_rng_state(self.rng.getstate()),
            entities=[entity.model_copy(deep=True) for entity in self.entities.values()],
            fields=[field.model_copy(deep=True) for field in self.fields],
            transcript=[u.model_copy(deep=True) for u in self.transcript.entries()],
            transcript_next_seq=self.transcript.next_seq,
            lexicon=[entry.model_copy(deep=True) for entry in self.lexicon.entries.values()],
            crystallizer_last_seq=self.crystallizer.last_seq,
            crystallizer_last_run_tick=self.crystallizer.last_run_tick,
            consolidation_last_tick=self._consolidation_last_tick,
            sync_ledger=self.memory_sync.ledger.model_copy(deep=True),
            message_seq=self._message_seq,
            field_seq=self._field_seq,
            spawn_seq=self._spawn_seq,
            pending_generation=[request.model_copy() for request in pending],
        )

    @classmethod
    def restore(
        cls,
        snapshot: WorldSnapshot | Dict[str, Any] | str,
        *,
        definitions: Optional[Mapping[str, EntityDefinition]] = None,
        similarity_scorer: Optional[SimilarityScorer] = None,
        salience_scorer: Optional[SalienceScorer] = None,
        language_generator: Optional[LanguageGenerator] = None,
        category_tagger: Optional[CategoryTagger] = None,
        persistence: Optional[PersistenceStrategy] = None,
        tick_listeners: Optional[List[TickListener]] = None,
        entity_hooks: Optional[List[EntityHook]] = None,
    ) -> "World":
        """Rebuild a world from a snapshot, or refuse entirely.

        Raises:
            SnapshotError: On version mismatch, truncated or invalid data, or an
                entity referencing a definition not present in ``definitions``
        """
        snap = parse_snapshot(snapshot)
        registry = dict(definitions or {})

        seen: set[str] = set()
        for entity in snap.entities:
            if entity.id in seen:
                raise SnapshotError(reason="invalid", detail=f"duplicate entity id '{entity.id}'")
            seen.add(entity.id)
            if entity.definition is not None and entity.definition not in registry:
                raise SnapshotError(
                    reason="unknown_definition",
                    detail=f"entity '{entity.id}' references definition '{entity.definition}'",
                )
            if entity.memory_log is not None:
                log = entity.memory_log
                misplaced = [key for key, e in log.entries.items() if key != e.id]
                if misplaced:
                    raise SnapshotError(reason="invalid", detail=f"log of '{entity.id}' has misfiled entry '{misplaced[0]}'")
                try:
                    log.validate_batch(list(log.entries.values()))
                except InvalidLogError as exc:
                    raise SnapshotError(reason="invalid", detail=f"log of '{entity.id}': {exc.reason}") from exc

        try:
            rng_state = _decode_rng_state(snap.rng_state)
            rng = random.Random()
            rng.setstate(rng_state)
        except (TypeError, ValueError) as exc:
            raise SnapshotError(reason="invalid", detail=f"bad RNG state ({exc})") from exc

        world = cls(
            snap.config,
            definitions=registry,
            similarity_scorer=similarity_scorer,
            salience_scorer=salience_scorer,
            language_generator=language_generator,
            category_tagger=category_tagger,
            persistence=persistence,
            tick_listeners=tick_listeners,
            entity_hooks=entity_hooks,
        )
        world.rng = rng
        world.tick = snap.tick
        world.time = snap.time
        world.entities = {entity.id: entity for entity in snap.entities}
        world.fields = list(snap.fields)
        world.transcript.load(snap.transcript, next_seq=snap.transcript_next_seq)
        world.lexicon.load(snap.lexicon)
        world.crystallizer.last_seq = snap.crystallizer_last_seq
        world.crystallizer.last_run_tick = snap.crystallizer_last_run_tick
        world._consolidation_last_tick = snap.consolidation_last_tick
        world.memory_sync.ledger = snap.sync_ledger
        world._message_seq = snap.message_seq
        world._field_seq = snap.field_seq
        world._spawn_seq = snap.spawn_seq
        world._generation_queue = list(snap.pending_generation)
        return world
