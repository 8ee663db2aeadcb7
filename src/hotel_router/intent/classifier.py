"""Rule-based intent classification with optional semantic override."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from hotel_router.config import ClassifierConfig, FuzzyConfig
from hotel_router.entities.dictionary import DictionarySnapshot, EntityDictionaryCache
from hotel_router.entities.fuzzy import FuzzyMatcher
from hotel_router.intent.semantic import SemanticClassifier, coerce_verdict
from hotel_router.types import ClassificationResult, IntentType, ToolName

logger = logging.getLogger(__name__)

_TOKEN_PATTERN = re.compile(r"\w+", flags=re.UNICODE)
_DIGIT_PATTERN = re.compile(r"\d")
_OPERATOR_PATTERN = re.compile(r"[+\-*/=]")

_TOOLS_BY_TYPE: dict[IntentType, list[str]] = {
    IntentType.WEATHER: [ToolName.HTTP_CALL.value],
    IntentType.BUSINESS: [ToolName.SQL_QUERY.value],
    IntentType.CALCULATION: [ToolName.CALC_EVAL.value],
    IntentType.DOCUMENT: [ToolName.DOCS_SEARCH.value],
    IntentType.GENERAL: [],
}


@dataclass(frozen=True, slots=True)
class EntityResolution:
    entity: str | None
    spelling_corrected: bool = False


def _word_prefix_pattern(words: Iterable[str]) -> re.Pattern[str] | None:
    escaped = [re.escape(word.lower()) for word in words if word.strip()]
    if not escaped:
        return None
    return re.compile(r"\b(?:" + "|".join(escaped) + ")", flags=re.UNICODE)


def _whole_word_pattern(words: Iterable[str]) -> re.Pattern[str] | None:
    escaped = [re.escape(word.lower()) for word in words if word.strip()]
    if not escaped:
        return None
    return re.compile(r"\b(?:" + "|".join(escaped) + r")\b", flags=re.UNICODE)


def _matches(pattern: re.Pattern[str] | None, text: str) -> bool:
    return pattern is not None and pattern.search(text) is not None


def _longest_name_in(msg: str, names: Iterable[str]) -> str | None:
    for name in sorted(names, key=len, reverse=True):
        if name in msg:
            return name
    return None


class IntentClassifier:
    """Categorizes a message as weather, business, calculation, document or general.

    The deterministic rule table in `ClassifierConfig` is evaluated in order
    and is authoritative unless a semantic classifier is configured and
    enabled. A failing semantic classifier never surfaces: the rule result is
    returned instead.
    """

    def __init__(
        self,
        dictionary: EntityDictionaryCache,
        config: ClassifierConfig | None = None,
        *,
        fuzzy_matcher: FuzzyMatcher | None = None,
        fuzzy_config: FuzzyConfig | None = None,
        semantic_classifier: SemanticClassifier | None = None,
        generic_name_tokens: Iterable[str] = (),
    ) -> None:
        self.dictionary = dictionary
        self.config = config or ClassifierConfig()
        self.fuzzy_matcher = fuzzy_matcher or FuzzyMatcher(fuzzy_config)
        self.semantic_classifier = semantic_classifier

        cfg = self.config
        self._weather_patterns = [re.compile(p, flags=re.IGNORECASE) for p in cfg.weather_patterns]
        self._context_pattern = _word_prefix_pattern(cfg.context_keywords)
        self._generic_pattern = _word_prefix_pattern(cfg.generic_domain_keywords)
        self._exclusion_pattern = _word_prefix_pattern(cfg.exclusion_keywords)
        self._follow_up_pattern = _word_prefix_pattern(cfg.follow_up_keywords)
        self._calc_verb_pattern = _whole_word_pattern(cfg.calculation_verbs)
        self._ignored_tokens = {token.lower() for token in cfg.ignored_tokens}
        self._generic_name_tokens = {
            token.lower() for token in (*cfg.cities, *generic_name_tokens)
        }

    def classify(
        self,
        message: str,
        *,
        context_entity: str | None = None,
        topic_continues: bool = False,
    ) -> ClassificationResult:
        msg = " ".join(message.lower().split())
        self.dictionary.refresh()
        snapshot = self.dictionary.snapshot()

        result = self._classify_rules(msg, snapshot, context_entity, topic_continues)
        if self.config.semantic_enabled and self.semantic_classifier is not None:
            result = self._apply_semantic(message, msg, snapshot, result)
        return result

    def _classify_rules(
        self,
        msg: str,
        snapshot: DictionarySnapshot,
        context_entity: str | None,
        topic_continues: bool,
    ) -> ClassificationResult:
        weather = self._detect_weather(msg)
        if weather is not None:
            return weather

        business = self._detect_business(msg, snapshot, context_entity, topic_continues)
        if business is not None:
            return business

        calculation = self._detect_calculation(msg)
        if calculation is not None:
            return calculation

        if any(keyword in msg for keyword in self.config.document_keywords):
            return self._result(IntentType.DOCUMENT, self.config.document_confidence)

        return self._general()

    def _detect_weather(self, msg: str) -> ClassificationResult | None:
        cfg = self.config
        has_weather_word = any(word in msg for word in cfg.weather_keywords)
        city = self.extract_city(msg)
        has_business_word = any(word in msg for word in cfg.core_business_keywords)
        asks_about_place = (
            city is not None
            and not has_business_word
            and any(pattern.search(msg) for pattern in self._weather_patterns)
        )
        if not (has_weather_word or asks_about_place):
            return None

        logger.debug("intent_weather city=%s", city)
        return self._result(
            IntentType.WEATHER,
            cfg.weather_confidence,
            extracted_location=(city or cfg.fallback_city).title(),
        )

    def extract_city(self, msg: str) -> str | None:
        """Return the city mentioned earliest in the message, if any."""
        best: tuple[int, str] | None = None
        for city in self.config.cities:
            match = re.search(r"\b" + re.escape(city.lower()) + r"\b", msg)
            if match and (best is None or match.start() < best[0]):
                best = (match.start(), city.lower())
        return best[1] if best else None

    def _detect_business(
        self,
        msg: str,
        snapshot: DictionarySnapshot,
        context_entity: str | None,
        topic_continues: bool,
    ) -> ClassificationResult | None:
        cfg = self.config
        tokens = _TOKEN_PATTERN.findall(msg)
        token_set = set(tokens)
        keyword_hit = bool(token_set & snapshot.keywords)
        name_hit = any(name in msg for name in snapshot.names)

        if _matches(self._exclusion_pattern, msg) and not (keyword_hit or name_hit):
            logger.debug("intent_excluded message=%s", msg[:50])
            return self._general()

        resolution = self.resolve_entity(msg, snapshot, tokens=tokens)
        has_core = any(word in msg for word in cfg.core_business_keywords)
        has_context = _matches(self._context_pattern, msg)
        has_generic = _matches(self._generic_pattern, msg)

        is_business = (
            has_core
            or (has_context and (resolution.entity is not None or keyword_hit or has_generic))
            or resolution.entity is not None
            or (has_generic and keyword_hit)
        )
        if is_business:
            logger.debug(
                "intent_business entity=%s corrected=%s core=%s keyword_hit=%s",
                resolution.entity,
                resolution.spelling_corrected,
                has_core,
                keyword_hit,
            )
            return self._result(
                IntentType.BUSINESS,
                cfg.business_entity_confidence if resolution.entity else cfg.business_confidence,
                extracted_entity=resolution.entity,
                spelling_corrected=resolution.spelling_corrected,
            )

        if topic_continues and context_entity and _matches(self._follow_up_pattern, msg):
            logger.debug("intent_business_follow_up context_entity=%s", context_entity)
            return self._result(IntentType.BUSINESS, cfg.follow_up_confidence)
        return None

    def resolve_entity(
        self,
        msg: str,
        snapshot: DictionarySnapshot,
        *,
        tokens: list[str] | None = None,
    ) -> EntityResolution:
        """Find the entity a message refers to.

        Exact names win, longest first. Otherwise each message token is
        spelling-corrected against the name vocabulary, the corrections are
        written back into the message and the exact match is retried. Only
        then may a single keyword decide, and only one that belongs to exactly
        one entity and is not a city or generic name token.
        """
        exact = _longest_name_in(msg, snapshot.names)
        if exact is not None:
            return EntityResolution(entity=exact)

        vocabulary = snapshot.vocabulary
        if not vocabulary:
            return EntityResolution(entity=None)

        min_length = self.fuzzy_matcher.config.min_token_length
        corrections: dict[str, str] = {}
        corrected = False
        for token in tokens if tokens is not None else _TOKEN_PATTERN.findall(msg):
            if len(token) < min_length or token in self._ignored_tokens or token in corrections:
                continue
            match = self.fuzzy_matcher.correct(token, vocabulary)
            if match is None:
                continue
            corrections[token] = match.corrected
            if match.distance > 0:
                corrected = True
                logger.info(
                    "spelling_corrected token=%s keyword=%s distance=%d",
                    token,
                    match.corrected,
                    match.distance,
                )

        if corrected:
            rewritten = _TOKEN_PATTERN.sub(lambda m: corrections.get(m.group(0), m.group(0)), msg)
            name = _longest_name_in(rewritten, snapshot.names)
            if name is not None:
                return EntityResolution(entity=name, spelling_corrected=True)

        for token, keyword in corrections.items():
            if keyword in self._generic_name_tokens or not snapshot.is_unique_keyword(keyword):
                continue
            owner = snapshot.owner_of(keyword)
            if owner is not None:
                logger.debug("entity_from_keyword keyword=%s entity=%s", keyword, owner)
                return EntityResolution(entity=owner, spelling_corrected=token != keyword)
        return EntityResolution(entity=None)

    def _detect_calculation(self, msg: str) -> ClassificationResult | None:
        cfg = self.config
        if _DIGIT_PATTERN.search(msg) and _OPERATOR_PATTERN.search(msg):
            return self._result(IntentType.CALCULATION, cfg.calculation_operator_confidence)
        if _matches(self._calc_verb_pattern, msg):
            return self._result(IntentType.CALCULATION, cfg.calculation_verb_confidence)
        return None

    def _apply_semantic(
        self,
        message: str,
        msg: str,
        snapshot: DictionarySnapshot,
        rule_result: ClassificationResult,
    ) -> ClassificationResult:
        try:
            verdict = coerce_verdict(self.semantic_classifier.classify_semantic(message))
        except Exception as exc:
            logger.warning("semantic_classification_failed fallback=rules error=%s", exc)
            return rule_result

        intent = IntentType(verdict.type)
        if intent == rule_result.type:
            entity = rule_result.extracted_entity
            corrected = rule_result.spelling_corrected
            location = rule_result.extracted_location
        else:
            entity, corrected, location = None, False, None
            if intent == IntentType.BUSINESS:
                resolution = self.resolve_entity(msg, snapshot)
                entity, corrected = resolution.entity, resolution.spelling_corrected
            elif intent == IntentType.WEATHER:
                location = (self.extract_city(msg) or self.config.fallback_city).title()

        return self._result(
            intent,
            verdict.confidence,
            extracted_entity=entity,
            extracted_location=location,
            spelling_corrected=corrected,
            source="semantic",
            reasoning=verdict.reasoning or None,
        )

    def _general(self) -> ClassificationResult:
        return self._result(IntentType.GENERAL, self.config.general_confidence)

    @staticmethod
    def _result(
        intent: IntentType,
        confidence: float,
        *,
        extracted_entity: str | None = None,
        extracted_location: str | None = None,
        spelling_corrected: bool = False,
        source: str = "rules",
        reasoning: str | None = None,
    ) -> ClassificationResult:
        return ClassificationResult(
            type=intent,
            confidence=confidence,
            extracted_entity=extracted_entity,
            extracted_location=extracted_location,
            suggested_tools=list(_TOOLS_BY_TYPE[intent]),
            spelling_corrected=spelling_corrected,
            source=source,
            reasoning=reasoning,
        )
