"""Validation and normalization of LLM chunk-understanding records.

LLM output is untrusted. Field-level problems inside a record are coerced to
safe defaults rather than raised. Signal ids outside the closed vocabulary are
dropped. Coarse fields (``exposure``, ``role``, ``data_sinks``,
``data_inputs``) are turned into derived signals so that rule selection can
rely on signals alone.

Only structural problems with a whole batch response raise
:class:`ChunkUnderstandingError`, which lets the circuit breaker split the
batch.
"""

from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Sequence, Set

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from repoaudit.security.signals import SignalId, parse_signal_id

LOGGER = logging.getLogger(__name__)

IdentifierKind = Literal[
    "org_id", "user_id", "account_id", "project_id", "tenant_id", "resource_id", "unknown"
]
IdentifierTrust = Literal["untrusted", "trusted", "unknown"]

_IDENTIFIER_KINDS = {"org_id", "user_id", "account_id", "project_id", "tenant_id", "resource_id"}
_IDENTIFIER_TRUST = {"untrusted", "trusted"}
MAX_SUGGESTED_RULE_IDS = 5


class ChunkUnderstandingError(ValueError):
    """An LLM response could not be mapped onto the requested chunks."""


@dataclass(frozen=True, slots=True)
class UnderstandingFallback:
    chunk_id: str
    file_path: str


def normalize_confidence(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value.strip())
        except ValueError:
            return 0.0
    else:
        return 0.0
    if not math.isfinite(numeric):
        return 0.0
    return min(1.0, max(0.0, numeric))


def _clean_str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


class Signal(BaseModel):
    id: SignalId
    evidence: str
    confidence: float = 0.0

    @field_validator("confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, value: Any) -> float:
        return normalize_confidence(value)


class Identifier(BaseModel):
    name: str
    kind: IdentifierKind = "unknown"
    source: str = "unknown"
    trust: IdentifierTrust = "unknown"

    @field_validator("kind", mode="before")
    @classmethod
    def coerce_kind(cls, value: Any) -> str:
        kind = _clean_str(value).lower()
        return kind if kind in _IDENTIFIER_KINDS else "unknown"

    @field_validator("trust", mode="before")
    @classmethod
    def coerce_trust(cls, value: Any) -> str:
        trust = _clean_str(value).lower()
        return trust if trust in _IDENTIFIER_TRUST else "unknown"

    @field_validator("source", mode="before")
    @classmethod
    def coerce_source(cls, value: Any) -> str:
        return _clean_str(value) or "unknown"


class ChunkUnderstanding(BaseModel):
    """Normalized semantic understanding of one chunk."""

    model_config = ConfigDict(extra="allow")

    chunk_id: str
    file_path: str
    confidence: float = 0.0
    exposure: Optional[str] = None
    role: Optional[str] = None
    data_sinks: Optional[List[Any]] = None
    signals: List[Signal] = Field(default_factory=list)
    identifiers: List[Identifier] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def apply_fallback(cls, data: Any, info: ValidationInfo) -> Dict[str, Any]:
        record = dict(data) if isinstance(data, dict) else {}
        fallback: Optional[UnderstandingFallback] = (info.context or {}).get("fallback")
        for key, attr in (("chunk_id", "chunk_id"), ("file_path", "file_path")):
            value = _clean_str(record.get(key))
            if value:
                record[key] = value
            elif fallback is not None:
                record[key] = getattr(fallback, attr)
        for key in ("exposure", "role"):
            if key in record and not isinstance(record[key], str):
                record[key] = None
        if "data_sinks" in record and not isinstance(record["data_sinks"], list):
            record["data_sinks"] = None
        return record

    @field_validator("confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, value: Any) -> float:
        return normalize_confidence(value)

    @field_validator("signals", mode="before")
    @classmethod
    def filter_signals(cls, value: Any) -> List[Dict[str, Any]]:
        if not isinstance(value, list):
            return []
        kept: List[Dict[str, Any]] = []
        seen: Set[SignalId] = set()
        for entry in value:
            if not isinstance(entry, dict):
                continue
            signal_id = parse_signal_id(entry.get("id"))
            if signal_id is None:
                LOGGER.debug("Dropping unknown signal id %r", entry.get("id"))
                continue
            if signal_id in seen:
                continue
            seen.add(signal_id)
            kept.append(
                {
                    "id": signal_id,
                    "evidence": _clean_str(entry.get("evidence")) or signal_id.value,
                    "confidence": entry.get("confidence"),
                }
            )
        return kept

    @field_validator("identifiers", mode="before")
    @classmethod
    def filter_identifiers(cls, value: Any) -> List[Dict[str, Any]]:
        if not isinstance(value, list):
            return []
        kept: List[Dict[str, Any]] = []
        for entry in value:
            if not isinstance(entry, dict):
                continue
            name = _clean_str(entry.get("name"))
            if name:
                kept.append({**entry, "name": name})
        return kept

    @model_validator(mode="after")
    def derive_signals(self) -> "ChunkUnderstanding":
        for signal_id, evidence, confidence in _derived_signals(self):
            self.add_signal(signal_id, evidence, confidence)
        return self

    def add_signal(self, signal_id: SignalId, evidence: str, confidence: float = 0.8) -> bool:
        """Append a signal unless one with the same id is already present."""
        if signal_id in self.signal_ids:
            return False
        self.signals.append(Signal(id=signal_id, evidence=evidence, confidence=confidence))
        return True

    @property
    def signal_ids(self) -> Set[SignalId]:
        return {signal.id for signal in self.signals}

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


def _sink_types(understanding: ChunkUnderstanding) -> List[str]:
    types = []
    for sink in understanding.data_sinks or []:
        if isinstance(sink, dict):
            sink_type = _clean_str(sink.get("type")).lower()
            if sink_type:
                types.append(sink_type)
    return types


def _derived_signals(understanding: ChunkUnderstanding) -> List[tuple[SignalId, str, float]]:
    derived: List[tuple[SignalId, str, float]] = []

    exposure = (understanding.exposure or "").strip().lower()
    if exposure == "public":
        derived.append((SignalId.PUBLIC_ENTRYPOINT, "exposure marked public", 0.85))
    elif exposure == "internal":
        derived.append((SignalId.INTERNAL_ENTRYPOINT, "exposure marked internal", 0.7))

    role = (understanding.role or "").strip().lower()
    if role == "api_handler":
        derived.append((SignalId.API_HANDLER, "role indicates API handler", 0.8))
    elif role == "job_worker":
        derived.append((SignalId.JOB_WORKER, "role indicates background worker", 0.75))

    sink_types = _sink_types(understanding)
    if "exec" in sink_types:
        derived.append((SignalId.EXEC_SINK, "data_sinks includes exec", 0.9))
    for sink_type in sink_types:
        if "template" in sink_type:
            derived.append((SignalId.TEMPLATE_RENDER, "data_sinks includes template render", 0.8))
        if "dom" in sink_type:
            derived.append((SignalId.FRONTEND_DOM_WRITE, "data_sinks includes DOM writes", 0.8))
        if "redirect" in sink_type:
            derived.append((SignalId.REDIRECT_SINK, "data_sinks includes redirect", 0.7))
        if any(token in sink_type for token in ("http", "fetch", "request")):
            derived.append((SignalId.HTTP_REQUEST_SINK, "data_sinks includes http requests", 0.75))
        if any(token in sink_type for token in ("file_write", "write_file", "filewrite")):
            derived.append((SignalId.FILE_WRITE_SINK, "data_sinks includes file writes", 0.8))
        if any(token in sink_type for token in ("file_read", "read_file", "fileread")):
            derived.append((SignalId.FILE_READ_SINK, "data_sinks includes file reads", 0.75))
        if "eval" in sink_type:
            derived.append((SignalId.EVAL_SINK, "data_sinks includes eval/Function", 0.8))
        if "raw_sql" in sink_type or ("sql" in sink_type and "raw" in sink_type):
            derived.append((SignalId.RAW_SQL_SINK, "data_sinks includes raw SQL", 0.85))
        if "orm" in sink_type:
            derived.append((SignalId.ORM_QUERY_SINK, "data_sinks includes ORM queries", 0.75))

    data_inputs = getattr(understanding, "data_inputs", None)
    if isinstance(data_inputs, list) and any(
        isinstance(item, dict) and _clean_str(item.get("trust")).lower() == "untrusted"
        for item in data_inputs
    ):
        derived.append(
            (SignalId.UNTRUSTED_INPUT_PRESENT, "data_inputs include untrusted sources", 0.85)
        )
    return derived


def parse_chunk_understanding_record(
    record: Any, fallback: UnderstandingFallback
) -> ChunkUnderstanding:
    """Normalize one untrusted record. Never raises for malformed fields."""
    return ChunkUnderstanding.model_validate(
        record if isinstance(record, dict) else {}, context={"fallback": fallback}
    )


_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def extract_json(raw: str) -> Any:
    """Parse JSON from an LLM completion that may wrap it in prose or fences."""
    text = (raw or "").strip()
    fenced = _FENCE_PATTERN.search(text)
    if fenced:
        text = fenced.group(1).strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    for opener, closer in (("[", "]"), ("{", "}")):
        start = text.find(opener)
        end = text.rfind(closer)
        if start != -1 and end > start:
            try:
                return json.loads(text[start : end + 1])
            except json.JSONDecodeError:
                continue
    return None


def parse_chunk_understanding_batch(
    raw: str, fallbacks: Sequence[UnderstandingFallback]
) -> List[ChunkUnderstanding]:
    """Parse a batched completion into one understanding per fallback, in order."""
    parsed = extract_json(raw)
    if not isinstance(parsed, (dict, list)):
        raise ChunkUnderstandingError("LLM returned invalid JSON for chunk understanding")
    if isinstance(parsed, dict) and isinstance(parsed.get("results"), list):
        parsed = parsed["results"]
    if len(fallbacks) > 1 and not isinstance(parsed, list):
        raise ChunkUnderstandingError("expected JSON array for batched chunk understanding")
    records = parsed if isinstance(parsed, list) else [parsed]
    if len(records) != len(fallbacks):
        raise ChunkUnderstandingError(f"expected {len(fallbacks)} results, got {len(records)}")

    results: List[ChunkUnderstanding] = []
    for index, (record, fallback) in enumerate(zip(records, fallbacks)):
        if not isinstance(record, dict):
            raise ChunkUnderstandingError(f"index {index}: invalid record")
        chunk_id = _clean_str(record.get("chunk_id"))
        if chunk_id and chunk_id != fallback.chunk_id:
            raise ChunkUnderstandingError(f"index {index}: chunk_id mismatch")
        results.append(parse_chunk_understanding_record(record, fallback))
    return results


class FamilyCandidate(BaseModel):
    family: str
    confidence: float = 0.0
    rationale: Optional[str] = None

    @field_validator("family", mode="before")
    @classmethod
    def normalize_family(cls, value: Any) -> str:
        return _clean_str(value).lower()

    @field_validator("confidence", mode="before")
    @classmethod
    def coerce_confidence(cls, value: Any) -> float:
        return normalize_confidence(value)


class FamilyMapping(BaseModel):
    """Optional LLM hint mapping a chunk to vulnerability families and rules."""

    chunk_id: str
    families: List[FamilyCandidate] = Field(default_factory=list)
    suggested_rule_ids: List[str] = Field(default_factory=list)
    needs_more_context: List[str] = Field(default_factory=list)

    @field_validator("families", mode="before")
    @classmethod
    def filter_families(cls, value: Any) -> List[Any]:
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict) and _clean_str(item.get("family"))]

    @field_validator("suggested_rule_ids", "needs_more_context", mode="before")
    @classmethod
    def string_list(cls, value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        return [item.strip() for item in value if isinstance(item, str) and item.strip()]

    @field_validator("suggested_rule_ids")
    @classmethod
    def cap_suggestions(cls, value: List[str]) -> List[str]:
        return value[:MAX_SUGGESTED_RULE_IDS]


def parse_family_mapping_record(record: Any, chunk_id: str) -> FamilyMapping:
    data = dict(record) if isinstance(record, dict) else {}
    for alias in ("suggestedRuleIds", "suggested_rules", "suggestedRules"):
        if "suggested_rule_ids" not in data and alias in data:
            data["suggested_rule_ids"] = data[alias]
    data["chunk_id"] = _clean_str(data.get("chunk_id")) or chunk_id
    return FamilyMapping.model_validate(data)
