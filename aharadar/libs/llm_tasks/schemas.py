"""Versioned output schemas for LLM tasks.

Every task output is a pydantic model whose ``schema_version``/``prompt_id``
are pinned to the current version. Older layouts are upgraded to the current
shape by an explicit function per prior version, before validation, so code
downstream of normalisation only ever sees the current model.

Validation is forgiving where the model output usually is: list fields drop
non-string or blank entries and are capped, and list-of-object fields keep
only entries that validate on their own. Required fields, types and ranges
are strict.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Annotated, Any, Callable, Generic, Literal, Mapping, TypeVar

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    StrictBool,
    StringConstraints,
    ValidationError,
)

from aharadar.libs.llm_router.types import ModelRef

logger = logging.getLogger(__name__)

TRIAGE_VERSION = "triage_v1"
TRIAGE_LEGACY_VERSION = "triage_v0"
TRIAGE_BATCH_VERSION = "triage_batch_v1"
DEEP_SUMMARY_VERSION = "deep_summary_v2"
DEEP_SUMMARY_V1 = "deep_summary_v1"
MANUAL_SUMMARY_VERSION = "manual_summary_v3"
MANUAL_SUMMARY_V2 = "manual_summary_v2"
AGGREGATE_SUMMARY_VERSION = "aggregate_summary_v1"
CATCHUP_PACK_SELECT_VERSION = "catchup_pack_select_v1"
CATCHUP_PACK_VERSION = "catchup_pack_v1"

DEFAULT_SECTION_TITLES = ("Why It Matters", "Risks & Caveats", "Suggested Follow-ups")

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


def clean_str(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None


def clean_string_list(value: Any, max_len: int | None = None) -> list[str] | None:
    """Stripped non-empty strings from ``value``; None when it is not a list."""

    if not isinstance(value, list):
        return None
    out = [entry.strip() for entry in value if isinstance(entry, str) and entry.strip()]
    return out[:max_len] if max_len is not None else out


def _string_list(max_len: int | None, *, default_empty: bool = False) -> BeforeValidator:
    def clean(value: Any) -> Any:
        cleaned = clean_string_list(value, max_len)
        if cleaned is None:
            return [] if default_empty else value
        return cleaned

    return BeforeValidator(clean)


def _optional_string_list(max_len: int) -> BeforeValidator:
    return BeforeValidator(lambda value: clean_string_list(value, max_len))


def _valid_entries(model: type[BaseModel], max_len: int) -> BeforeValidator:
    """Keep the list entries that validate as ``model``, up to ``max_len``."""

    def clean(value: Any) -> Any:
        if not isinstance(value, list):
            return value
        kept: list[dict[str, Any]] = []
        for entry in value:
            try:
                kept.append(model.model_validate(entry).model_dump())
            except ValidationError:
                continue
            if len(kept) >= max_len:
                break
        return kept

    return BeforeValidator(clean)


def _finite_number(value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError("boolean is not a number")
    if isinstance(value, (int, float)) and not math.isfinite(value):
        raise ValueError("number must be finite")
    return value


def _strict_number(value: Any) -> Any:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("expected a JSON number")
    return _finite_number(value)


class _Output(BaseModel):
    model_config = ConfigDict(extra="ignore")

    provider: str
    model: str


# triage


class TriageFields(BaseModel):
    """Per-candidate verdict shared by single and batch triage."""

    model_config = ConfigDict(extra="ignore")

    aha_score: Annotated[float, BeforeValidator(_finite_number), Field(ge=0, le=100)]
    reason: NonEmptyStr
    is_relevant: StrictBool
    is_novel: StrictBool
    categories: Annotated[list[str], _string_list(None, default_empty=True)] = Field(default_factory=list)
    should_deep_summarize: StrictBool


class TriageOutput(TriageFields):
    schema_version: Literal["triage_v1"] = TRIAGE_VERSION
    prompt_id: Literal["triage_v1"] = TRIAGE_VERSION
    provider: str
    model: str


# summaries


class SummarySection(BaseModel):
    title: NonEmptyStr
    items: Annotated[list[str], _string_list(10), Field(min_length=1)]


class _SectionedSummary(_Output):
    one_liner: NonEmptyStr
    bullets: Annotated[list[str], _string_list(20)]
    sections: Annotated[list[SummarySection], _valid_entries(SummarySection, 6), Field(min_length=1)]


class DeepSummaryOutput(_SectionedSummary):
    schema_version: Literal["deep_summary_v2"] = DEEP_SUMMARY_VERSION
    prompt_id: Literal["deep_summary_v2"] = DEEP_SUMMARY_VERSION
    discussion_highlights: Annotated[list[str] | None, _optional_string_list(20)] = None


class ManualSummaryOutput(_SectionedSummary):
    schema_version: Literal["manual_summary_v3"] = MANUAL_SUMMARY_VERSION
    prompt_id: Literal["manual_summary_v3"] = MANUAL_SUMMARY_VERSION
    discussion_highlights: Annotated[list[str] | None, _optional_string_list(10)] = None


class Sentiment(BaseModel):
    label: Annotated[Literal["positive", "neutral", "negative"], BeforeValidator(lambda v: clean_str(v) or v)]
    confidence: Annotated[float, BeforeValidator(_strict_number), Field(ge=0, le=1)]
    rationale: NonEmptyStr


class Theme(BaseModel):
    title: NonEmptyStr
    summary: NonEmptyStr
    item_ids: Annotated[list[str], _string_list(100)]


class NotableItem(BaseModel):
    item_id: NonEmptyStr
    why: NonEmptyStr


class AggregateSummaryOutput(_Output):
    schema_version: Literal["aggregate_summary_v1"] = AGGREGATE_SUMMARY_VERSION
    prompt_id: Literal["aggregate_summary_v1"] = AGGREGATE_SUMMARY_VERSION
    one_liner: NonEmptyStr
    overview: NonEmptyStr
    sentiment: Sentiment
    themes: Annotated[list[Theme], _valid_entries(Theme, 10), Field(min_length=1)]
    notable_items: Annotated[list[NotableItem], _valid_entries(NotableItem, 10), Field(min_length=1)]
    open_questions: Annotated[list[str], _string_list(20, default_empty=True)] = Field(default_factory=list)
    suggested_followups: Annotated[list[str], _string_list(20, default_empty=True)] = Field(default_factory=list)


# catch-up packs


class CatchupSelection(BaseModel):
    item_id: NonEmptyStr
    why: NonEmptyStr
    theme: NonEmptyStr


Selections = Annotated[list[CatchupSelection], _valid_entries(CatchupSelection, 200), Field(min_length=1)]


class CatchupPackSelectOutput(_Output):
    schema_version: Literal["catchup_pack_select_v1"] = CATCHUP_PACK_SELECT_VERSION
    prompt_id: Literal["catchup_pack_select_v1"] = CATCHUP_PACK_SELECT_VERSION
    selections: Selections


class CatchupTiers(BaseModel):
    must_read: Selections
    worth_scanning: Selections
    headlines: Selections


def _string_ids(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, str)][:200]


class CatchupTheme(BaseModel):
    title: NonEmptyStr
    summary: NonEmptyStr
    item_ids: Annotated[list[str], BeforeValidator(_string_ids)] = Field(default_factory=list)


class CatchupPackOutput(_Output):
    schema_version: Literal["catchup_pack_v1"] = CATCHUP_PACK_VERSION
    prompt_id: Literal["catchup_pack_v1"] = CATCHUP_PACK_VERSION
    time_budget_minutes: float
    tiers: CatchupTiers
    themes: Annotated[list[CatchupTheme], _valid_entries(CatchupTheme, 12), Field(min_length=1)]
    notes: Annotated[str | None, BeforeValidator(clean_str)] = None


# version upgrades


def upgrade_triage_v0(raw: Mapping[str, Any]) -> dict[str, Any]:
    """``triage_v0`` named the score field ``score``."""

    data = dict(raw)
    if "aha_score" not in data and "score" in data:
        data["aha_score"] = data.pop("score")
    return data


def upgrade_flat_summary(raw: Mapping[str, Any]) -> dict[str, Any]:
    """Fold the flat analysis lists of older summaries into titled sections."""

    data = dict(raw)
    sections: list[dict[str, Any]] = []
    for title, key in zip(DEFAULT_SECTION_TITLES, ("why_it_matters", "risks_or_caveats", "suggested_followups")):
        items = clean_string_list(data.pop(key, None), 20)
        if items:
            sections.append({"title": title, "items": items})
    data["sections"] = sections
    return data


OutputT = TypeVar("OutputT", bound=BaseModel)


@dataclass(frozen=True)
class VersionedSchema(Generic[OutputT]):
    """Current output model plus the upgrades accepted for older versions."""

    current: str
    model: type[OutputT]
    upgrades: Mapping[str, Callable[[Mapping[str, Any]], dict[str, Any]]] = field(default_factory=dict)

    def upgrade(self, raw: Mapping[str, Any]) -> dict[str, Any] | None:
        """Return ``raw`` in the current layout, or None for unknown versions.

        A missing version or prompt id is taken to be current. The two must
        agree.
        """

        version = clean_str(raw.get("schema_version")) or self.current
        prompt_id = clean_str(raw.get("prompt_id")) or self.current
        if version != prompt_id:
            return None
        if version == self.current:
            return dict(raw)
        upgrade = self.upgrades.get(version)
        if upgrade is None:
            return None
        return upgrade(raw)

    def normalize(self, raw: Mapping[str, Any], ref: ModelRef, **overrides: Any) -> OutputT | None:
        data = self.upgrade(raw)
        if data is None:
            logger.info(
                "schema=%s unsupported_version=%s prompt_id=%s",
                self.current,
                raw.get("schema_version"),
                raw.get("prompt_id"),
            )
            return None
        data.update(
            schema_version=self.current,
            prompt_id=self.current,
            provider=ref.provider,
            model=ref.model,
            **overrides,
        )
        try:
            return self.model.model_validate(data)
        except ValidationError as exc:
            logger.info("schema=%s validation_errors=%s", self.current, exc.error_count())
            logger.debug("schema=%s validation_detail=%s", self.current, exc)
            return None


TRIAGE_SCHEMA = VersionedSchema(
    current=TRIAGE_VERSION,
    model=TriageOutput,
    upgrades={TRIAGE_LEGACY_VERSION: upgrade_triage_v0},
)
DEEP_SUMMARY_SCHEMA = VersionedSchema(
    current=DEEP_SUMMARY_VERSION,
    model=DeepSummaryOutput,
    upgrades={DEEP_SUMMARY_V1: upgrade_flat_summary},
)
MANUAL_SUMMARY_SCHEMA = VersionedSchema(
    current=MANUAL_SUMMARY_VERSION,
    model=ManualSummaryOutput,
    upgrades={MANUAL_SUMMARY_V2: upgrade_flat_summary},
)
AGGREGATE_SUMMARY_SCHEMA = VersionedSchema(current=AGGREGATE_SUMMARY_VERSION, model=AggregateSummaryOutput)
CATCHUP_PACK_SELECT_SCHEMA = VersionedSchema(current=CATCHUP_PACK_SELECT_VERSION, model=CatchupPackSelectOutput)
CATCHUP_PACK_SCHEMA = VersionedSchema(current=CATCHUP_PACK_VERSION, model=CatchupPackOutput)


__all__ = [
    "AGGREGATE_SUMMARY_SCHEMA",
    "AggregateSummaryOutput",
    "CATCHUP_PACK_SCHEMA",
    "CATCHUP_PACK_SELECT_SCHEMA",
    "CatchupPackOutput",
    "CatchupPackSelectOutput",
    "CatchupSelection",
    "CatchupTheme",
    "CatchupTiers",
    "DEEP_SUMMARY_SCHEMA",
    "DeepSummaryOutput",
    "MANUAL_SUMMARY_SCHEMA",
    "ManualSummaryOutput",
    "NotableItem",
    "Sentiment",
    "SummarySection",
    "TRIAGE_BATCH_VERSION",
    "TRIAGE_SCHEMA",
    "Theme",
    "TriageFields",
    "TriageOutput",
    "VersionedSchema",
    "clean_str",
    "clean_string_list",
    "upgrade_flat_summary",
    "upgrade_triage_v0",
]
