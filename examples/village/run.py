"""Village population: bonding, shared memories and an emerging vocabulary.

By default the example runs with the built-in phrase composer (no LLM calls):

    uv run python examples/village/run.py --ticks 60

To let a language model voice the villagers (requires provider, model, API
key), pass `--llm`:

    uv run python examples/village/run.py --llm --ticks 60

Environment variables expected when `--llm` is used:
- `LLM_PROVIDER` (e.g., `openai`, or `ollama` for a local server)
- `LLM_MODEL` (e.g., `gpt-4.1`)
- Provider-specific API key (e.g., `OPENAI_API_KEY`)
"""

from __future__ import annotations

import argparse
import asyncio

from entityverse import (
    Config,
    JsonPersistence,
    KeywordCategoryTagger,
    LLMLanguageGenerator,
    PopulationLoader,
    TickReport,
    World,
)


def print_report(world: World, report: TickReport) -> None:
    for event in report.events:
        if event.kind in {"bonded", "unbonded", "lexicon_term", "memory_sync", "entity_fault"}:
            target = f" -> {event.target}" if event.target else ""
            print(f"  tick {report.tick:>3}: {event.kind} {event.subject}{target}")


def chatter(world: World, report: TickReport) -> None:
    # every few ticks, each bonded villager asks for a line aimed at a friend
    if report.tick % 5:
        return
    for entity in world.entities.values():
        if entity.relationships is None:
            continue
        friends = entity.relationships.bonded_with()
        if friends:
            world.request_utterance(entity.id, listener_id=friends[0])


async def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--ticks", type=int, default=Config.DEFAULT_TICK_COUNT)
    parser.add_argument("--llm", action="store_true", help="voice villagers with an LLM")
    parser.add_argument("--save", action="store_true", help="write snapshots to SNAPSHOT_DIR")
    args = parser.parse_args()

    generator = None
    if args.llm:
        Config.validate()
        generator = LLMLanguageGenerator()

    world = PopulationLoader().load(
        "village",
        language_generator=generator,
        category_tagger=KeywordCategoryTagger(),
        persistence=JsonPersistence(Config.SNAPSHOT_DIR) if args.save else None,
        tick_listeners=[print_report, chatter],
    )
    if args.save:
        world.config.snapshot_every = 10

    result = await world.run(args.ticks)

    print(f"\nCompleted {result['ticks_completed']} ticks")
    for entity in world.entities.values():
        bonds = entity.relationships.bonded_with() if entity.relationships is not None else []
        memories = len(entity.memory) if entity.memory is not None else 0
        print(f"  {entity.id:<5} mood={entity.emotion.label():<8} memories={memories:<3} bonds={bonds}")

    print("\nLexicon:")
    for entry in world.lexicon.popular(10):
        print(f"  {entry.term!r:<24} weight={entry.weight:.2f} used={entry.usage_count} ({entry.category})")


if __name__ == "__main__":
    asyncio.run(main())
