"""Closed vocabulary of security signals attached to chunk understandings."""

from __future__ import annotations

from enum import Enum
from typing import Dict, FrozenSet, Optional

SIGNAL_VOCABULARY_VERSION = 1


class SignalId(str, Enum):
    PUBLIC_ENTRYPOINT = "public_entrypoint"
    INTERNAL_ENTRYPOINT = "internal_entrypoint"
    API_HANDLER = "api_handler"
    WEBHOOK_HANDLER = "webhook_handler"
    JOB_WORKER = "job_worker"
    FRONTEND_DOM_WRITE = "frontend_dom_write"
    TEMPLATE_RENDER = "template_render"
    REDIRECT_SINK = "redirect_sink"
    HTTP_REQUEST_SINK = "http_request_sink"
    SSRF_CANDIDATE = "ssrf_candidate"
    EXEC_SINK = "exec_sink"
    EVAL_SINK = "eval_sink"
    RAW_SQL_SINK = "raw_sql_sink"
    ORM_QUERY_SINK = "orm_query_sink"
    FILE_READ_SINK = "file_read_sink"
    FILE_WRITE_SINK = "file_write_sink"
    SECRETS_ACCESS = "secrets_access"
    LOGS_SENSITIVE = "logs_sensitive"
    DEBUG_ENDPOINT = "debug_endpoint"
    AUTHN_PRESENT = "authn_present"
    AUTHN_MISSING_OR_UNKNOWN = "authn_missing_or_unknown"
    AUTHZ_PRESENT = "authz_present"
    AUTHZ_MISSING_OR_UNKNOWN = "authz_missing_or_unknown"
    RLS_RELIANCE = "rls_reliance"
    CLIENT_SUPPLIED_IDENTIFIER = "client_supplied_identifier"
    CLIENT_SUPPLIED_ORG_ID = "client_supplied_org_id"
    CLIENT_SUPPLIED_USER_ID = "client_supplied_user_id"
    ID_IN_PATH_OR_QUERY = "id_in_path_or_query"
    MASS_ASSIGNMENT_RISK = "mass_assignment_risk"
    INSECURE_DESERIALIZATION = "insecure_deserialization"
    UNTRUSTED_INPUT_PRESENT = "untrusted_input_present"
    UNVALIDATED_INPUT = "unvalidated_input"
    WEAK_VALIDATION_OR_UNKNOWN = "weak_validation_or_unknown"
    RATE_LIMIT_MISSING_OR_UNKNOWN = "rate_limit_missing_or_unknown"
    CORS_PERMISSIVE_OR_UNKNOWN = "cors_permissive_or_unknown"

    @property
    def description(self) -> str:
        return SIGNAL_DESCRIPTIONS[self]


SIGNAL_DESCRIPTIONS: Dict[SignalId, str] = {
    SignalId.PUBLIC_ENTRYPOINT: "Publicly reachable entrypoint or handler.",
    SignalId.INTERNAL_ENTRYPOINT: "Internal-only entrypoint or handler.",
    SignalId.API_HANDLER: "API route handler or controller logic.",
    SignalId.WEBHOOK_HANDLER: "Webhook receiver or verification handler.",
    SignalId.JOB_WORKER: "Background job or task worker.",
    SignalId.FRONTEND_DOM_WRITE: "Writes or renders content into the frontend DOM.",
    SignalId.TEMPLATE_RENDER: "Renders a template with dynamic data.",
    SignalId.REDIRECT_SINK: "Performs HTTP redirects based on inputs.",
    SignalId.HTTP_REQUEST_SINK: "Makes outbound HTTP requests.",
    SignalId.SSRF_CANDIDATE: "Outbound requests accept client-controlled URLs.",
    SignalId.EXEC_SINK: "Executes system commands or subprocesses.",
    SignalId.EVAL_SINK: "Evaluates dynamic code (eval/Function).",
    SignalId.RAW_SQL_SINK: "Executes raw SQL strings.",
    SignalId.ORM_QUERY_SINK: "Runs ORM queries or query builder calls.",
    SignalId.FILE_READ_SINK: "Reads from the filesystem.",
    SignalId.FILE_WRITE_SINK: "Writes to the filesystem.",
    SignalId.SECRETS_ACCESS: "Accesses secrets or credentials.",
    SignalId.LOGS_SENSITIVE: "Logs potentially sensitive data.",
    SignalId.DEBUG_ENDPOINT: "Debug or diagnostics endpoint.",
    SignalId.AUTHN_PRESENT: "Authentication checks or guards are present.",
    SignalId.AUTHN_MISSING_OR_UNKNOWN: "Authentication checks are missing or unclear.",
    SignalId.AUTHZ_PRESENT: "Authorization or permission checks are present.",
    SignalId.AUTHZ_MISSING_OR_UNKNOWN: "Authorization checks are missing or unclear.",
    SignalId.RLS_RELIANCE: "Relies on row-level security (RLS) policies.",
    SignalId.CLIENT_SUPPLIED_IDENTIFIER: "Client supplies identifiers used in access decisions.",
    SignalId.CLIENT_SUPPLIED_ORG_ID: "Client supplies organization or tenant identifiers.",
    SignalId.CLIENT_SUPPLIED_USER_ID: "Client supplies user identifiers.",
    SignalId.ID_IN_PATH_OR_QUERY: "Identifiers appear in URL path or query parameters.",
    SignalId.MASS_ASSIGNMENT_RISK: "Potential mass assignment over model fields.",
    SignalId.INSECURE_DESERIALIZATION: "Deserializes untrusted or opaque payloads.",
    SignalId.UNTRUSTED_INPUT_PRESENT: "Handles inputs marked untrusted (request params/body/headers).",
    SignalId.UNVALIDATED_INPUT: "Uses inputs without validation or sanitization.",
    SignalId.WEAK_VALIDATION_OR_UNKNOWN: "Validation appears weak or unknown.",
    SignalId.RATE_LIMIT_MISSING_OR_UNKNOWN: "Rate limiting is missing or unclear.",
    SignalId.CORS_PERMISSIVE_OR_UNKNOWN: "CORS configuration is permissive or unclear.",
}

SIGNAL_IDS: FrozenSet[str] = frozenset(signal.value for signal in SignalId)

HIGH_RISK_SIGNAL_IDS: FrozenSet[SignalId] = frozenset(
    {
        SignalId.EXEC_SINK,
        SignalId.EVAL_SINK,
        SignalId.RAW_SQL_SINK,
        SignalId.WEBHOOK_HANDLER,
        SignalId.SSRF_CANDIDATE,
        SignalId.FILE_WRITE_SINK,
        SignalId.FRONTEND_DOM_WRITE,
        SignalId.TEMPLATE_RENDER,
    }
)

# Assertions that a control exists, paired with the signal that contradicts them.
CONTROL_PRESENT_SIGNALS: Dict[SignalId, SignalId] = {
    SignalId.AUTHN_PRESENT: SignalId.AUTHN_MISSING_OR_UNKNOWN,
    SignalId.AUTHZ_PRESENT: SignalId.AUTHZ_MISSING_OR_UNKNOWN,
}


def parse_signal_id(value: object) -> Optional[SignalId]:
    """Return the SignalId for an externally sourced value, or None if unknown."""
    if not isinstance(value, str):
        return None
    token = value.strip()
    if token not in SIGNAL_IDS:
        return None
    return SignalId(token)
