from hotel_router.config import ContextConfig
from hotel_router.context.tracker import ConversationContext, ConversationContextStore
from hotel_router.entities.aliases import EntityAliasIndex
from hotel_router.entities.dictionary import DictionarySnapshot
from hotel_router.types import ConversationTurn


def _aliases() -> EntityAliasIndex:
    snapshot = DictionarySnapshot.build(["Vier Jahreszeiten Hamburg", "Dolder Grand"])
    return EntityAliasIndex.from_snapshot(snapshot, ignored_tokens=["hamburg"])


def test_alias_mention_sets_current_entity() -> None:
    context = ConversationContext()

    entity = context.record_user_turn("Wie läuft das Dolder Grand?", _aliases())

    assert entity == "dolder grand"
    assert context.current_entity() == "dolder grand"
    assert context.last_turn_was_entity_related is True


def test_off_topic_turn_clears_entity() -> None:
    context = ConversationContext()
    aliases = _aliases()
    context.record_user_turn("Zeige Dolder Grand", aliases)

    context.record_user_turn("Wie wird das Wetter morgen?", aliases)

    assert context.current_entity() is None
    assert context.last_turn_was_entity_related is False
    assert context.turns()[-1].off_topic is True


def test_off_topic_words_next_to_an_entity_keep_the_entity() -> None:
    context = ConversationContext()

    context.record_user_turn("Wie ist das Wetter am Hotel Dolder Grand?", _aliases())

    assert context.current_entity() == "dolder grand"


def test_more_specific_mention_replaces_entity() -> None:
    context = ConversationContext()
    aliases = _aliases()
    context.record_user_turn("Zeige Dolder Grand", aliases)

    context.record_user_turn("und jetzt vier jahreszeiten hamburg", aliases)

    assert context.current_entity() == "vier jahreszeiten hamburg"


def test_resolved_hint_is_used_when_no_alias_matches() -> None:
    context = ConversationContext()

    entity = context.record_user_turn("zahlen vom doldr", _aliases(), resolved_hint="dolder grand")

    assert entity == "dolder grand"
    assert context.turns()[-1].resolved_entity == "dolder grand"


def test_topical_turn_keeps_relation_without_new_mention() -> None:
    context = ConversationContext()
    aliases = _aliases()
    context.record_user_turn("Zeige Dolder Grand", aliases)

    context.record_user_turn("fasse die Zahlen zusammen", aliases, topical=True)
    assert context.last_turn_was_entity_related is True

    context.record_user_turn("danke dir", aliases)
    assert context.last_turn_was_entity_related is False
    assert context.current_entity() == "dolder grand"


def test_lookback_finds_entity_in_history() -> None:
    context = ConversationContext(
        turns=[
            ConversationTurn(role="user", content="Zeige Dolder Grand", resolved_entity="dolder grand"),
            ConversationTurn(role="assistant", content="Hier sind die Zahlen."),
        ]
    )

    assert context.current_entity() == "dolder grand"


def test_lookback_stops_at_off_topic_turn() -> None:
    context = ConversationContext(
        turns=[
            ConversationTurn(role="user", content="Zeige Dolder Grand", resolved_entity="dolder grand"),
            ConversationTurn(role="user", content="Wie wird das Wetter?", off_topic=True),
            ConversationTurn(role="assistant", content="Sonnig."),
        ]
    )

    assert context.current_entity() is None


def test_history_evicts_oldest_turns_first() -> None:
    context = ConversationContext(ContextConfig(max_turns=3))

    for index in range(4):
        context.record_assistant_turn(f"reply {index}")

    assert [turn.content for turn in context.turns()] == ["reply 1", "reply 2", "reply 3"]
    assert context.snapshot().turn_count == 3


def test_clear_is_idempotent() -> None:
    context = ConversationContext()
    context.record_user_turn("Zeige Dolder Grand", _aliases())

    context.clear()
    once = (context.turns(), context.current_entity(), context.last_turn_was_entity_related)
    context.clear()
    twice = (context.turns(), context.current_entity(), context.last_turn_was_entity_related)

    assert once == twice == ([], None, False)


def test_context_store_isolates_threads() -> None:
    store = ConversationContextStore()
    aliases = _aliases()

    store.get("a").record_user_turn("Zeige Dolder Grand", aliases)
    store.get("b").record_user_turn("vier jahreszeiten hamburg bitte", aliases)

    assert store.get("a").current_entity() == "dolder grand"
    assert store.get("b").current_entity() == "vier jahreszeiten hamburg"
    assert store.find("missing") is None
    assert len(store) == 2
    assert store.discard("a") is True
    assert store.discard("a") is False
