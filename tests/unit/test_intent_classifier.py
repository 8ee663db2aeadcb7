import pytest

from hotel_router.config import ClassifierConfig
from hotel_router.entities.dictionary import EntityDictionaryCache
from hotel_router.intent.classifier import IntentClassifier
from hotel_router.types import IntentType


class _StaticSemantic:
    def __init__(self, verdict: object) -> None:
        self.verdict = verdict
        self.calls: list[str] = []

    def classify_semantic(self, message: str) -> object:
        self.calls.append(message)
        return self.verdict


class _FailingSemantic:
    def classify_semantic(self, message: str) -> object:
        raise TimeoutError("model did not answer")


def test_weather_question_extracts_city(classifier: IntentClassifier) -> None:
    result = classifier.classify("wie ist das wetter in Hamburg")

    assert result.type == IntentType.WEATHER
    assert result.extracted_location == "Hamburg"
    assert result.suggested_tools == ["http_call"]
    assert result.confidence == pytest.approx(0.95)


def test_weather_without_city_falls_back_to_default_location(classifier: IntentClassifier) -> None:
    result = classifier.classify("What's the weather forecast?")

    assert result.type == IntentType.WEATHER
    assert result.extracted_location == "Berlin"


def test_exact_entity_name_is_business_without_correction(classifier: IntentClassifier) -> None:
    result = classifier.classify("zeige mir Vier Jahreszeiten Hamburg")

    assert result.type == IntentType.BUSINESS
    assert result.extracted_entity == "vier jahreszeiten hamburg"
    assert result.spelling_corrected is False
    assert result.confidence == pytest.approx(0.95)
    assert result.suggested_tools == ["sql_query"]


def test_misspelled_entity_is_corrected(classifier: IntentClassifier) -> None:
    result = classifier.classify("zeige mir vier jahreszeiten hambrug")

    assert result.type == IntentType.BUSINESS
    assert result.extracted_entity == "vier jahreszeiten hamburg"
    assert result.spelling_corrected is True


def test_single_misspelled_keyword_resolves_its_owner(classifier: IntentClassifier) -> None:
    result = classifier.classify("Profit beim Dolderr?")

    assert result.type == IntentType.BUSINESS
    assert result.extracted_entity == "dolder grand"
    assert result.spelling_corrected is True


def test_misspelling_picks_the_hotel_named_by_the_whole_message(make_store) -> None:
    store = make_store(["Vier Jahreszeiten München", "Vier Jahreszeiten Hamburg"])
    classifier = IntentClassifier(EntityDictionaryCache(store))

    result = classifier.classify("zeige mir vier jahreszeiten hambrug")

    assert result.type == IntentType.BUSINESS
    assert result.extracted_entity == "vier jahreszeiten hamburg"
    assert result.spelling_corrected is True


def test_keyword_shared_by_several_hotels_stays_unscoped(make_store) -> None:
    store = make_store(["Adlon Kempinski", "Kempinski Frankfurt"])
    classifier = IntentClassifier(EntityDictionaryCache(store))

    result = classifier.classify("Umsatz aller Kempinski Häuser")

    assert result.type == IntentType.BUSINESS
    assert result.extracted_entity is None


def test_city_token_alone_does_not_select_a_hotel(classifier: IntentClassifier) -> None:
    result = classifier.classify("Wo gibt es den besten Hamburger?")

    assert result.type == IntentType.GENERAL
    assert result.extracted_entity is None


def test_exact_unique_keyword_is_not_a_correction(classifier: IntentClassifier) -> None:
    result = classifier.classify("zeige mir vier jahreszeiten")

    assert result.type == IntentType.BUSINESS
    assert result.extracted_entity == "vier jahreszeiten hamburg"
    assert result.spelling_corrected is False


def test_core_business_keyword_without_entity(classifier: IntentClassifier) -> None:
    result = classifier.classify("Zeige alle Kalkulationen")

    assert result.type == IntentType.BUSINESS
    assert result.extracted_entity is None
    assert result.confidence == pytest.approx(0.85)


def test_business_word_suppresses_city_weather_pattern(classifier: IntentClassifier) -> None:
    result = classifier.classify("wie ist die auslastung in hamburg")

    assert result.type == IntentType.BUSINESS


@pytest.mark.parametrize(
    "message",
    [
        "Wer ist der Bundeskanzler?",
        "Was macht die Regierung in Deutschland mit den Hotels?",
        "Who is the president?",
    ],
)
def test_exclusion_keywords_without_entity_are_general(
    classifier: IntentClassifier, message: str
) -> None:
    result = classifier.classify(message)

    assert result.type == IntentType.GENERAL
    assert result.suggested_tools == []


def test_exclusion_does_not_hide_a_named_entity(classifier: IntentClassifier) -> None:
    result = classifier.classify("Hat der Minister im Dolder Grand übernachtet? Zeige den Profit")

    assert result.type == IntentType.BUSINESS
    assert result.extracted_entity == "dolder grand"


def test_arithmetic_is_calculation(classifier: IntentClassifier) -> None:
    result = classifier.classify("rechne 12 + 5")

    assert result.type == IntentType.CALCULATION
    assert result.confidence == pytest.approx(0.9)
    assert result.suggested_tools == ["calc_eval"]


def test_calculation_verb_without_operator(classifier: IntentClassifier) -> None:
    result = classifier.classify("berechne bitte sieben mal drei")

    assert result.type == IntentType.CALCULATION
    assert result.confidence == pytest.approx(0.85)


def test_document_request(classifier: IntentClassifier) -> None:
    result = classifier.classify("Suche in dem Dokument nach Stornobedingungen")

    assert result.type == IntentType.DOCUMENT
    assert result.suggested_tools == ["docs_search"]


def test_unrelated_question_is_general(classifier: IntentClassifier) -> None:
    result = classifier.classify("Was ist die Hauptstadt von Frankreich?")

    assert result.type == IntentType.GENERAL
    assert result.confidence == pytest.approx(0.7)


def test_follow_up_continues_business_topic(classifier: IntentClassifier) -> None:
    message = "fasse die Zahlen zusammen"

    assert classifier.classify(message).type == IntentType.GENERAL

    result = classifier.classify(message, context_entity="dolder grand", topic_continues=True)

    assert result.type == IntentType.BUSINESS
    assert result.extracted_entity is None
    assert result.confidence == pytest.approx(0.8)


def test_empty_dictionary_still_classifies(make_store) -> None:
    store = make_store([])
    classifier = IntentClassifier(EntityDictionaryCache(store))

    assert classifier.classify("Wie hoch ist der Umsatz?").type == IntentType.BUSINESS
    assert classifier.classify("zeige mir dolder grand").type == IntentType.GENERAL


def test_unreachable_store_degrades_gracefully(make_store) -> None:
    store = make_store()
    store.fail_names = True
    classifier = IntentClassifier(EntityDictionaryCache(store))

    result = classifier.classify("Wie ist die Auslastung?")

    assert result.type == IntentType.BUSINESS
    assert result.extracted_entity is None


def test_semantic_verdict_overrides_rules_when_enabled(dictionary: EntityDictionaryCache) -> None:
    semantic = _StaticSemantic({"type": "general", "confidence": 0.66, "reasoning": "small talk"})
    classifier = IntentClassifier(
        dictionary,
        ClassifierConfig(semantic_enabled=True),
        semantic_classifier=semantic,
    )

    result = classifier.classify("rechne mir das wetter aus")

    assert semantic.calls == ["rechne mir das wetter aus"]
    assert result.type == IntentType.GENERAL
    assert result.source == "semantic"
    assert result.reasoning == "small talk"
    assert result.confidence == pytest.approx(0.66)


def test_semantic_alias_type_keeps_rule_entity(dictionary: EntityDictionaryCache) -> None:
    semantic = _StaticSemantic('{"type": "hotel_business", "confidence": 0.9}')
    classifier = IntentClassifier(
        dictionary,
        ClassifierConfig(semantic_enabled=True),
        semantic_classifier=semantic,
    )

    result = classifier.classify("zeige mir dolder grand")

    assert result.type == IntentType.BUSINESS
    assert result.extracted_entity == "dolder grand"
    assert result.source == "semantic"


def test_semantic_failure_falls_back_to_rules(dictionary: EntityDictionaryCache, caplog) -> None:
    classifier = IntentClassifier(
        dictionary,
        ClassifierConfig(semantic_enabled=True),
        semantic_classifier=_FailingSemantic(),
    )

    result = classifier.classify("wie ist das wetter in Hamburg")

    assert result.type == IntentType.WEATHER
    assert result.source == "rules"
    assert "semantic_classification_failed" in caplog.text


def test_semantic_classifier_is_ignored_when_disabled(dictionary: EntityDictionaryCache) -> None:
    semantic = _StaticSemantic({"type": "general", "confidence": 0.5})
    classifier = IntentClassifier(dictionary, semantic_classifier=semantic)

    result = classifier.classify("wie ist das wetter in Hamburg")

    assert result.type == IntentType.WEATHER
    assert semantic.calls == []
