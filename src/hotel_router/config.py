"""Configuration models for the query router.

Every keyword list, threshold and confidence used by the router lives here so
the rule table can be swapped without code changes (see `load_settings`).
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

_CITIES = [
    "berlin", "münchen", "hamburg", "köln", "frankfurt", "stuttgart",
    "düsseldorf", "dortmund", "essen", "leipzig", "bremen", "dresden",
    "hannover", "nürnberg", "bonn", "münster", "karlsruhe", "mannheim",
    "augsburg", "wiesbaden", "london", "paris", "madrid", "rome", "amsterdam",
    "vienna", "wien", "prague", "zürich", "zurich", "geneva", "basel", "bern",
    "salzburg", "innsbruck", "graz", "new york",
]


class DictionaryConfig(BaseModel):
    """Configures the entity dictionary cache."""

    ttl_seconds: float = Field(default=300.0, ge=0.0)
    failure_backoff_seconds: float = Field(default=30.0, ge=0.0)
    min_keyword_length: int = Field(default=3, ge=1)
    initial_load_wait_seconds: float = Field(default=10.0, gt=0.0)


class FuzzyConfig(BaseModel):
    """Configures edit-distance spelling correction."""

    tolerance_ratio: float = Field(default=0.3, ge=0.0, le=1.0)
    min_distance: int = Field(default=1, ge=0)
    min_token_length: int = Field(default=4, ge=1)


class ClassifierConfig(BaseModel):
    """Declarative rule table for intent classification."""

    weather_keywords: list[str] = Field(
        default_factory=lambda: [
            "wetter", "weather", "temperatur", "temperature",
            "wettervorhersage", "forecast",
        ]
    )
    cities: list[str] = Field(default_factory=lambda: list(_CITIES))
    weather_patterns: list[str] = Field(
        default_factory=lambda: [
            r"wie ist.*\bin\b",
            r"was ist.*wetter",
            r"wie wird.*wetter",
            r"how is.*\bin\b",
        ]
    )
    fallback_city: str = "Berlin"

    core_business_keywords: list[str] = Field(
        default_factory=lambda: [
            "kalkulation", "kalkaulation", "kalkaultion", "calculation",
            "profit", "gewinn", "umsatz", "revenue", "zimmer", "auslastung",
            "belegung", "marge", "margin",
        ]
    )
    context_keywords: list[str] = Field(
        default_factory=lambda: ["letzte", "alle", "business", "all", "last"]
    )
    generic_domain_keywords: list[str] = Field(default_factory=lambda: ["hotel"])
    exclusion_keywords: list[str] = Field(
        default_factory=lambda: [
            "bundeskanzler", "budneskanzler", "kanzler", "präsident", "minister",
            "politik", "regierung", "deutschland", "russland", "usa", "politiker",
            "president", "government", "politics",
        ]
    )
    follow_up_keywords: list[str] = Field(
        default_factory=lambda: [
            "zusammen", "zusammenfassung", "zahlen", "daten", "details",
            "summary", "summarize", "figures", "numbers", "e-mail", "email",
        ]
    )
    ignored_tokens: list[str] = Field(
        default_factory=lambda: ["hotel", "hotels", "zeige", "show", "über", "about"]
    )

    calculation_verbs: list[str] = Field(
        default_factory=lambda: [
            "rechne", "calculate", "berechne", "plus", "minus", "mal", "geteilt",
            "times", "divided",
        ]
    )
    document_keywords: list[str] = Field(
        default_factory=lambda: [
            "dokument", "document", "datei", "file", "pdf", "excel",
            "suche in", "search in", "finde in", "find in", "uploaded",
            "hochgeladen",
        ]
    )

    weather_confidence: float = Field(default=0.95, ge=0.0, le=1.0)
    business_entity_confidence: float = Field(default=0.95, ge=0.0, le=1.0)
    business_confidence: float = Field(default=0.85, ge=0.0, le=1.0)
    follow_up_confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    calculation_operator_confidence: float = Field(default=0.9, ge=0.0, le=1.0)
    calculation_verb_confidence: float = Field(default=0.85, ge=0.0, le=1.0)
    document_confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    general_confidence: float = Field(default=0.7, ge=0.0, le=1.0)

    semantic_enabled: bool = False


class ContextConfig(BaseModel):
    """Configures per-thread conversation tracking."""

    max_turns: int = Field(default=20, ge=1)
    off_topic_keywords: list[str] = Field(
        default_factory=lambda: [
            "wetter", "weather", "temperatur", "regen", "sonne", "schnee",
            "hauptstadt", "capital", "geschichte", "history",
            "rezept", "recipe", "kochen", "cooking",
            "sport", "fußball", "football", "basketball",
            "wissenschaft", "science", "mathematik", "math",
            "musik", "music", "kunst",
            "aktien", "stocks", "börse",
            "nachrichten", "news", "politik", "politics",
            "gesundheit", "health", "medizin", "medicine",
            "technologie", "technology", "programmieren", "coding",
        ]
    )
    entity_keywords: list[str] = Field(
        default_factory=lambda: [
            "hotel", "zimmer", "übernachtung", "kalkulation", "belegung",
        ]
    )
    extra_aliases: dict[str, str] = Field(default_factory=dict)
    ignored_alias_tokens: list[str] = Field(
        default_factory=lambda: ["hotel", "the", "und", "and", "der", "die", "das", *_CITIES]
    )


class RouterConfig(BaseModel):
    """Configures tool dispatch."""

    weather_endpoint_template: str = "https://wttr.in/{location}?format=j1"
    http_whitelist: list[str] = Field(default_factory=lambda: ["https://wttr.in/"])
    http_timeout_seconds: float = Field(default=10.0, gt=0.0)
    docs_top_k: int = Field(default=5, ge=1, le=20)


class SandboxConfig(BaseModel):
    """Configures read-only query validation, repair and execution."""

    allowed_prefixes: list[str] = Field(default_factory=lambda: ["SELECT", "WITH", "EXPLAIN"])
    forbidden_keywords: list[str] = Field(
        default_factory=lambda: [
            "INSERT", "UPDATE", "DELETE", "DROP", "ALTER", "CREATE", "TRUNCATE",
            "MERGE", "CALL", "EXEC", "EXECUTE", "SET", "GRANT", "REVOKE", "COPY",
            "VACUUM", "REINDEX", "LOCK",
        ]
    )
    # Applied in order; patterns are matched as whole words, case-insensitively.
    naming_repairs: list[tuple[str, str]] = Field(
        default_factory=lambda: [
            ("hotel_calculations", "pricing_calculations"),
            ("kalkulationen", "pricing_calculations"),
            ("calculations", "pricing_calculations"),
            ("customers", "users"),
            ("approvals", "approval_requests"),
            ("hotels.hotel_name", "hotels.name"),
            ("h.hotel_name", "h.name"),
            ("pc.price", "pc.voucher_price"),
            ("pc.cost", "pc.operational_costs"),
            ("rating", "stars"),
            ("price", "average_price"),
        ]
    )
    entity_table: str = "pricing_calculations"
    entity_column: str = "hotel_name"
    recency_column: str = "created_at"

    timeout_seconds: float = Field(default=30.0, gt=0.0)
    fallback_timeout_seconds: float = Field(default=5.0, gt=0.0)
    max_rows: int = Field(default=5000, ge=1)
    max_workers: int = Field(default=4, ge=1)

    summary_query: str = (
        "SELECT COUNT(*) AS total_calculations, "
        "COUNT(DISTINCT hotel_name) AS total_hotels, "
        "ROUND(AVG(profit_margin)::numeric, 2) AS avg_profit_margin, "
        "ROUND(AVG(total_price)::numeric, 2) AS avg_total_price "
        "FROM pricing_calculations"
    )
    hint_tables: list[str] = Field(default_factory=lambda: ["hotels", "pricing_calculations"])


class RouterSettings(BaseModel):
    """Aggregates every configuration section."""

    dictionary: DictionaryConfig = Field(default_factory=DictionaryConfig)
    fuzzy: FuzzyConfig = Field(default_factory=FuzzyConfig)
    classifier: ClassifierConfig = Field(default_factory=ClassifierConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    router: RouterConfig = Field(default_factory=RouterConfig)
    sandbox: SandboxConfig = Field(default_factory=SandboxConfig)


def load_settings(path: str | Path | None = None) -> RouterSettings:
    """Load settings from a JSON file, or defaults when no path is given."""
    if path is None:
        return RouterSettings()
    return RouterSettings.model_validate_json(Path(path).read_text(encoding="utf-8"))
