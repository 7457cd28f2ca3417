"""Static catalog of repository scan rules.

Each rule carries a signal predicate used for candidate selection and a fixed
cluster used only to keep rule batches thematically coherent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Dict, List, Optional, Tuple, Union

from repoaudit.security.signals import SignalId

MISC_CLUSTER = "misc"


@dataclass(frozen=True, slots=True)
class AnySignals:
    """Matches when at least one of ``signals`` is present."""

    signals: Tuple[SignalId, ...]

    def matches(self, present: AbstractSet[SignalId]) -> bool:
        return any(signal in present for signal in self.signals)

    def score(self, present: AbstractSet[SignalId]) -> float:
        return 2.0 if self.matches(present) else 0.0


@dataclass(frozen=True, slots=True)
class AllSignals:
    """Matches when every one of ``signals`` is present.

    ``any_of`` optionally adds a second condition: at least one of those
    signals must be present as well.
    """

    signals: Tuple[SignalId, ...]
    any_of: Tuple[SignalId, ...] = ()

    def matches(self, present: AbstractSet[SignalId]) -> bool:
        if not all(signal in present for signal in self.signals):
            return False
        return not self.any_of or any(signal in present for signal in self.any_of)

    def score(self, present: AbstractSet[SignalId]) -> float:
        matched = sum(1 for signal in self.signals if signal in present)
        bonus = 2.0 if any(signal in present for signal in self.any_of) else 0.0
        return 3.0 * matched + bonus


SignalPredicate = Union[AnySignals, AllSignals]


@dataclass(frozen=True, slots=True)
class Rule:
    id: str
    title: str
    category: str
    description: str
    cluster: str
    match: Optional[SignalPredicate] = None
    optional_signals: Tuple[SignalId, ...] = ()
    guidance: Tuple[str, ...] = ()

    def matches(self, present: AbstractSet[SignalId]) -> bool:
        """Rules without a predicate are only reachable through fallbacks."""
        return self.match is not None and self.match.matches(present)

    def score(self, present: AbstractSet[SignalId]) -> float:
        if self.match is None:
            return 0.0
        score = self.match.score(present)
        score += sum(1 for signal in self.optional_signals if signal in present)
        return score


_UNTRUSTED_INPUTS = (
    SignalId.UNTRUSTED_INPUT_PRESENT,
    SignalId.UNVALIDATED_INPUT,
    SignalId.WEAK_VALIDATION_OR_UNKNOWN,
)

REPOSITORY_SCAN_RULES: Tuple[Rule, ...] = (
    Rule(
        id="missing_authentication",
        title="Missing authentication on server-side handler",
        category="authentication",
        description="Server endpoints accept requests without verifying identity or session.",
        cluster="auth_enforcement",
        match=AnySignals(
            (
                SignalId.PUBLIC_ENTRYPOINT,
                SignalId.API_HANDLER,
                SignalId.WEBHOOK_HANDLER,
                SignalId.JOB_WORKER,
            )
        ),
        optional_signals=(SignalId.AUTHN_MISSING_OR_UNKNOWN,),
        guidance=(
            "Look for auth/session validation or middleware guards.",
            "Report only when the handler performs sensitive actions without auth.",
            "Do not report login, signup or token issuance endpoints; they are public by design.",
        ),
    ),
    Rule(
        id="missing_server_action_auth",
        title="Missing authentication/authorization in server actions",
        category="authentication",
        description="Server actions perform mutations without verifying the caller's session or permissions.",
        cluster="auth_enforcement",
        match=AnySignals((SignalId.API_HANDLER, SignalId.PUBLIC_ENTRYPOINT)),
        optional_signals=(SignalId.AUTHN_MISSING_OR_UNKNOWN, SignalId.AUTHZ_MISSING_OR_UNKNOWN),
        guidance=(
            "Treat server actions as public endpoints; enforce auth inside the action.",
            "Verify the session user may perform the mutation before writing data.",
        ),
    ),
    Rule(
        id="missing_role_check",
        title="Missing role checks on admin endpoint",
        category="access_control",
        description="Admin handlers lack server-side role or permission enforcement.",
        cluster="auth_enforcement",
        match=AnySignals(
            (
                SignalId.AUTHZ_MISSING_OR_UNKNOWN,
                SignalId.CLIENT_SUPPLIED_IDENTIFIER,
                SignalId.CLIENT_SUPPLIED_ORG_ID,
                SignalId.CLIENT_SUPPLIED_USER_ID,
                SignalId.ID_IN_PATH_OR_QUERY,
            )
        ),
        optional_signals=(SignalId.AUTHN_PRESENT,),
        guidance=(
            "Admin endpoints should validate roles/permissions on the server.",
            "Do not accept UI-only gating as sufficient.",
        ),
    ),
    Rule(
        id="idor",
        title="Insecure direct object reference (IDOR)",
        category="access_control",
        description="Resources are fetched or mutated by ID without ownership or tenant validation.",
        cluster="auth_enforcement",
        match=AnySignals(
            (
                SignalId.CLIENT_SUPPLIED_IDENTIFIER,
                SignalId.CLIENT_SUPPLIED_ORG_ID,
                SignalId.CLIENT_SUPPLIED_USER_ID,
                SignalId.ID_IN_PATH_OR_QUERY,
            )
        ),
        optional_signals=(SignalId.AUTHZ_MISSING_OR_UNKNOWN,),
        guidance=(
            "Verify queries scope records to the authenticated user or tenant.",
            "Flag missing ownership checks when IDs come from user input.",
        ),
    ),
    Rule(
        id="missing_rate_limiting",
        title="Missing rate limiting on sensitive actions",
        category="configuration",
        description="Sensitive actions lack rate limiting or throttling.",
        cluster="hardening_limits",
        match=AnySignals(
            (
                SignalId.RATE_LIMIT_MISSING_OR_UNKNOWN,
                SignalId.PUBLIC_ENTRYPOINT,
                SignalId.API_HANDLER,
                SignalId.WEBHOOK_HANDLER,
            )
        ),
        optional_signals=(SignalId.AUTHN_PRESENT,),
        guidance=(
            "Focus on login, token issuance, destructive actions, or high-volume listings.",
            "Accept middleware or shared guard implementations.",
            "Do not report on client-only helpers or UI components.",
        ),
    ),
    Rule(
        id="missing_lockout",
        title="Missing lockout protections on login endpoints",
        category="authentication",
        description="Login flows lack account lockout or brute-force defenses.",
        cluster="auth_enforcement",
        match=AnySignals((SignalId.AUTHN_PRESENT, SignalId.RATE_LIMIT_MISSING_OR_UNKNOWN)),
        optional_signals=(SignalId.PUBLIC_ENTRYPOINT,),
        guidance=(
            "Report password sign-in flows with no lockout, backoff or CAPTCHA after repeated failures.",
            "Accept progressive delay or challenge-based defenses when explicitly present.",
        ),
    ),
    Rule(
        id="missing_audit_logging",
        title="Missing audit logging on destructive actions",
        category="configuration",
        description="Destructive or privileged actions do not emit audit logs.",
        cluster="hardening_limits",
        match=AnySignals(
            (
                SignalId.API_HANDLER,
                SignalId.JOB_WORKER,
                SignalId.PUBLIC_ENTRYPOINT,
                SignalId.INTERNAL_ENTRYPOINT,
            )
        ),
        optional_signals=(SignalId.AUTHZ_PRESENT,),
        guidance=(
            "Audit logs should capture actor, target, and action.",
            "Only report when destructive/sensitive actions are present.",
        ),
    ),
    Rule(
        id="missing_timeout",
        title="Missing timeouts on external calls",
        category="configuration",
        description="External calls or subprocesses are invoked without timeouts.",
        cluster="hardening_limits",
        match=AnySignals((SignalId.HTTP_REQUEST_SINK, SignalId.EXEC_SINK)),
        guidance=(
            "Look for HTTP requests or exec calls without abort/timeout handling.",
            "Treat subprocess calls as external calls that should be bounded by a timeout.",
            "Ignore calls that already pass explicit timeout options or abort signals.",
        ),
    ),
    Rule(
        id="frontend_only_authorization",
        title="Frontend-only authorization enforcement",
        category="access_control",
        description="Authorization checks exist only in the UI without server enforcement.",
        cluster="auth_enforcement",
        match=AnySignals((SignalId.FRONTEND_DOM_WRITE,)),
        optional_signals=(SignalId.AUTHZ_MISSING_OR_UNKNOWN, SignalId.API_HANDLER),
        guidance=(
            "UI role checks must be backed by server-side checks.",
            "Report when backend handlers lack equivalent enforcement.",
        ),
    ),
    Rule(
        id="frontend_direct_db_write",
        title="Frontend performs direct database writes",
        category="access_control",
        description="Client-side code writes to the database directly instead of going through a server.",
        cluster="data_access",
        match=AnySignals((SignalId.ORM_QUERY_SINK, SignalId.RAW_SQL_SINK)),
        optional_signals=(SignalId.FRONTEND_DOM_WRITE,),
        guidance=(
            "Move write operations behind API/edge functions or server actions.",
            "Enforce strict RLS policies on tables touched by client writes.",
        ),
    ),
    Rule(
        id="dangerous_html_render",
        title="Dangerous HTML rendering (XSS risk)",
        category="injection",
        description="Untrusted HTML is rendered without sanitization.",
        cluster="injection_exec",
        match=AnySignals((SignalId.FRONTEND_DOM_WRITE, SignalId.TEMPLATE_RENDER)),
        optional_signals=(SignalId.UNVALIDATED_INPUT, SignalId.WEAK_VALIDATION_OR_UNKNOWN),
        guidance=(
            "Look for dangerouslySetInnerHTML or raw HTML rendering of user content.",
            "Ensure sanitization or safe rendering is present.",
        ),
    ),
    Rule(
        id="frontend_secret_exposure",
        title="Sensitive secrets exposed in frontend code",
        category="secrets",
        description="Client bundles include credentials or secrets.",
        cluster="secrets_logging",
        match=AnySignals((SignalId.SECRETS_ACCESS,)),
        optional_signals=(SignalId.FRONTEND_DOM_WRITE,),
        guidance=("Frontend code should not embed private keys, service secrets, or admin tokens.",),
    ),
    Rule(
        id="sensitive_client_storage",
        title="Sensitive data stored in client-side storage",
        category="secrets",
        description="Tokens, secrets, or PII are persisted in localStorage or sessionStorage.",
        cluster="secrets_logging",
        match=AnySignals((SignalId.FRONTEND_DOM_WRITE,)),
        optional_signals=(SignalId.SECRETS_ACCESS,),
        guidance=(
            "Do not store access tokens or session IDs in localStorage/sessionStorage.",
            "Keep PII and secrets on the server or in httpOnly cookies.",
        ),
    ),
    Rule(
        id="missing_webhook_signature",
        title="Missing webhook signature verification",
        category="authentication",
        description="Webhook handlers process requests without verifying a signature.",
        cluster="webhook_security",
        match=AllSignals((SignalId.WEBHOOK_HANDLER,)),
        optional_signals=(SignalId.AUTHN_MISSING_OR_UNKNOWN,),
        guidance=(
            "Require signature verification with a shared secret and timing-safe compare.",
            "Prefer replay protection when available.",
        ),
    ),
    Rule(
        id="missing_admin_mfa",
        title="Admin endpoints do not require MFA",
        category="authentication",
        description="Privileged actions can be performed without a second factor or step-up authentication.",
        cluster="auth_enforcement",
        match=AnySignals(
            (
                SignalId.AUTHN_PRESENT,
                SignalId.AUTHZ_PRESENT,
                SignalId.PUBLIC_ENTRYPOINT,
                SignalId.API_HANDLER,
            )
        ),
        optional_signals=(SignalId.AUTHZ_MISSING_OR_UNKNOWN,),
        guidance=(
            "Role checks are not MFA; they satisfy authorization only.",
            "Accept step-up controls such as OTP, WebAuthn or explicit amr/acr claim checks.",
            "Do not report on non-admin endpoints.",
        ),
    ),
    Rule(
        id="missing_webhook_config_integrity",
        title="Missing webhook config integrity checks",
        category="configuration",
        description="Webhook handlers fetch or apply configuration payloads without integrity verification.",
        cluster="webhook_security",
        match=AllSignals((SignalId.WEBHOOK_HANDLER,)),
        optional_signals=(SignalId.WEAK_VALIDATION_OR_UNKNOWN,),
        guidance=(
            "Verify external config URLs or payloads with signatures, hashes, or allowlisted sources.",
            "Treat config payloads from webhooks as untrusted input.",
        ),
    ),
    Rule(
        id="missing_replay_protection",
        title="Missing webhook replay protection",
        category="authentication",
        description="Webhook handlers accept requests without timestamp or nonce validation.",
        cluster="webhook_security",
        match=AllSignals((SignalId.WEBHOOK_HANDLER,)),
        optional_signals=(SignalId.AUTHN_PRESENT,),
        guidance=(
            "Look for timestamp or nonce checks that prevent replay.",
            "Do not report if replay protection is handled in shared middleware.",
        ),
    ),
    Rule(
        id="missing_secure_token_handling",
        title="Missing secure token handling",
        category="authentication",
        description="Tokens are issued or verified without secure handling or validation.",
        cluster="auth_enforcement",
        match=AnySignals((SignalId.AUTHN_PRESENT, SignalId.SECRETS_ACCESS)),
        optional_signals=(SignalId.AUTHZ_PRESENT,),
        guidance=(
            "Ensure token validation, rotation, and secure storage patterns.",
            "Flag weak or missing verification in auth flows.",
        ),
    ),
    Rule(
        id="missing_input_validation",
        title="Missing input validation",
        category="configuration",
        description="Untrusted input is used without validation or schema checks.",
        cluster="hardening_limits",
        match=AnySignals(_UNTRUSTED_INPUTS + (SignalId.CLIENT_SUPPLIED_IDENTIFIER,)),
        optional_signals=(SignalId.PUBLIC_ENTRYPOINT, SignalId.API_HANDLER),
        guidance=("Validate user input before it is used in queries, commands, or writes.",),
    ),
    Rule(
        id="missing_least_privilege",
        title="Missing least-privilege enforcement",
        category="configuration",
        description="Background jobs or services use overly broad permissions.",
        cluster="hardening_limits",
        match=AnySignals((SignalId.JOB_WORKER, SignalId.SECRETS_ACCESS)),
        optional_signals=(SignalId.INTERNAL_ENTRYPOINT,),
        guidance=("Prefer scoped credentials and minimal permissions for jobs and workers.",),
    ),
    Rule(
        id="plaintext_secrets",
        title="Secrets stored in plaintext",
        category="secrets",
        description="Secrets or credentials are stored without encryption.",
        cluster="secrets_logging",
        match=AnySignals((SignalId.SECRETS_ACCESS,)),
        guidance=("Secrets should be encrypted or stored in secret managers.",),
    ),
    Rule(
        id="weak_rls_policies",
        title="Weak or missing RLS policies",
        category="access_control",
        description="Row-level security policies do not enforce tenant isolation.",
        cluster="data_access",
        match=AnySignals((SignalId.RLS_RELIANCE, SignalId.CLIENT_SUPPLIED_ORG_ID)),
        optional_signals=(SignalId.AUTHZ_MISSING_OR_UNKNOWN,),
        guidance=("Policies should constrain access by tenant or owner context.",),
    ),
    Rule(
        id="missing_output_sanitization",
        title="Missing output sanitization",
        category="configuration",
        description="Outputs derived from untrusted input are returned without sanitization.",
        cluster="hardening_limits",
        match=AnySignals(
            (
                SignalId.LOGS_SENSITIVE,
                SignalId.FRONTEND_DOM_WRITE,
                SignalId.TEMPLATE_RENDER,
                SignalId.EXEC_SINK,
            )
        ),
        optional_signals=_UNTRUSTED_INPUTS,
        guidance=("Sanitize outputs from exec commands or user-controlled content.",),
    ),
    Rule(
        id="sql_injection",
        title="SQL injection",
        category="injection",
        description="Queries are built using raw SQL with user-controlled input.",
        cluster="injection_exec",
        match=AllSignals((SignalId.RAW_SQL_SINK, SignalId.UNTRUSTED_INPUT_PRESENT)),
        optional_signals=(
            SignalId.UNVALIDATED_INPUT,
            SignalId.WEAK_VALIDATION_OR_UNKNOWN,
            SignalId.CLIENT_SUPPLIED_IDENTIFIER,
            SignalId.ID_IN_PATH_OR_QUERY,
        ),
        guidance=(
            "Report raw SQL strings built with values that can come from request input.",
            "Also report helpers that execute an arbitrary SQL string without parameterization.",
        ),
    ),
    Rule(
        id="unsafe_query_builder",
        title="Unsafe query builder usage",
        category="injection",
        description="Query builder filters appear to be composed from untrusted input.",
        cluster="injection_exec",
        match=AnySignals((SignalId.ORM_QUERY_SINK,)),
        optional_signals=_UNTRUSTED_INPUTS
        + (SignalId.CLIENT_SUPPLIED_IDENTIFIER, SignalId.ID_IN_PATH_OR_QUERY),
        guidance=(
            "Report raw filter expressions taken from request input without allowlisting.",
            "Do not flag static, developer-authored filters.",
        ),
    ),
    Rule(
        id="command_injection",
        title="Command injection",
        category="injection",
        description="Shell or exec commands are constructed from untrusted input.",
        cluster="injection_exec",
        match=AnySignals((SignalId.EXEC_SINK,)),
        optional_signals=_UNTRUSTED_INPUTS,
    ),
    Rule(
        id="org_id_trust",
        title="Trusting client-supplied org or user IDs",
        category="access_control",
        description="Org/user identifiers are accepted from the client without verification.",
        cluster="auth_enforcement",
        match=AnySignals((SignalId.CLIENT_SUPPLIED_ORG_ID, SignalId.CLIENT_SUPPLIED_IDENTIFIER)),
        optional_signals=(SignalId.AUTHZ_MISSING_OR_UNKNOWN,),
    ),
    Rule(
        id="debug_auth_leak",
        title="Debug endpoint leaks auth context",
        category="authentication",
        description="Debug or logging endpoints expose auth headers or request context.",
        cluster="secrets_logging",
        match=AnySignals((SignalId.DEBUG_ENDPOINT, SignalId.LOGS_SENSITIVE)),
        optional_signals=(SignalId.AUTHN_PRESENT,),
    ),
    Rule(
        id="webhook_code_execution",
        title="Webhook handler allows code execution",
        category="authentication",
        description="Webhook inputs are used to trigger code execution paths.",
        cluster="webhook_security",
        match=AllSignals(
            (SignalId.WEBHOOK_HANDLER,), any_of=(SignalId.EXEC_SINK, SignalId.EVAL_SINK)
        ),
        optional_signals=(SignalId.UNVALIDATED_INPUT,),
    ),
    Rule(
        id="permissive_cors",
        title="Permissive CORS configuration",
        category="configuration",
        description="CORS allows overly broad origins or credentials.",
        cluster="hardening_limits",
        match=AnySignals((SignalId.CORS_PERMISSIVE_OR_UNKNOWN,)),
    ),
    Rule(
        id="jwt_validation_bypass",
        title="JWT validation bypass",
        category="authentication",
        description="JWT verification can be bypassed or uses weak validation.",
        cluster="auth_enforcement",
        match=AnySignals((SignalId.AUTHN_PRESENT,)),
        optional_signals=(SignalId.SECRETS_ACCESS,),
    ),
    Rule(
        id="weak_jwt_secret",
        title="Weak JWT secret",
        category="authentication",
        description="JWT secrets are hardcoded, weak, or easily guessable.",
        cluster="auth_enforcement",
        match=AnySignals((SignalId.AUTHN_PRESENT, SignalId.SECRETS_ACCESS)),
    ),
    Rule(
        id="weak_token_generation",
        title="Weak token generation",
        category="authentication",
        description="Tokens are generated using predictable or insecure methods.",
        cluster="auth_enforcement",
        match=AnySignals((SignalId.AUTHN_PRESENT,)),
    ),
    Rule(
        id="sensitive_logging",
        title="Sensitive data logged in plaintext",
        category="secrets",
        description="Sensitive data is logged without redaction.",
        cluster="secrets_logging",
        match=AnySignals((SignalId.LOGS_SENSITIVE,)),
        optional_signals=(SignalId.SECRETS_ACCESS,),
    ),
    Rule(
        id="command_output_logging",
        title="Command output logging of sensitive data",
        category="secrets",
        description="Command outputs containing sensitive data are logged.",
        cluster="secrets_logging",
        match=AllSignals((SignalId.EXEC_SINK,)),
        optional_signals=(SignalId.LOGS_SENSITIVE, SignalId.SECRETS_ACCESS),
    ),
    Rule(
        id="unbounded_query",
        title="Unbounded query without pagination",
        category="configuration",
        description="List queries fetch all rows without limit or pagination.",
        cluster="hardening_limits",
        match=AnySignals((SignalId.ORM_QUERY_SINK, SignalId.RAW_SQL_SINK)),
        optional_signals=(SignalId.PUBLIC_ENTRYPOINT, SignalId.API_HANDLER),
        guidance=(
            "Report list/export handlers that return all rows without limit or cursor pagination.",
            "If the handler takes filters but never applies a cap, treat it as unbounded.",
        ),
    ),
    Rule(
        id="anon_key_bearer",
        title="Anon key used as bearer credential",
        category="authentication",
        description="Public anon keys are used as bearer tokens for privileged actions.",
        cluster="auth_enforcement",
        match=AnySignals((SignalId.AUTHN_PRESENT, SignalId.HTTP_REQUEST_SINK)),
        optional_signals=(SignalId.PUBLIC_ENTRYPOINT,),
    ),
    Rule(
        id="missing_bearer_token",
        title="Missing bearer token on protected requests",
        category="authentication",
        description="Requests are sent without bearer tokens, or with empty ones, to protected endpoints.",
        cluster="auth_enforcement",
        match=AnySignals((SignalId.HTTP_REQUEST_SINK,)),
        optional_signals=(SignalId.AUTHN_PRESENT,),
        guidance=(
            "Report an Authorization header built from a token value that can be empty.",
        ),
    ),
    Rule(
        id="frontend_login_rate_limit",
        title="Missing client-side rate limiting on login",
        category="configuration",
        description="Login flows lack client-side backoff or throttling signals.",
        cluster="hardening_limits",
        match=AnySignals((SignalId.FRONTEND_DOM_WRITE, SignalId.RATE_LIMIT_MISSING_OR_UNKNOWN)),
        optional_signals=(SignalId.AUTHN_PRESENT,),
    ),
    Rule(
        id="session_fixation",
        title="Session fixation",
        category="authentication",
        description="Session identifiers are reused across authentication changes or logins.",
        cluster="auth_enforcement",
        match=AnySignals((SignalId.AUTHN_PRESENT,)),
        guidance=(
            "Regenerate session IDs on login, privilege changes, and logout.",
            "Invalidate pre-auth sessions instead of reusing them.",
        ),
    ),
    Rule(
        id="weak_password_hashing",
        title="Weak password hashing",
        category="authentication",
        description="Passwords are hashed with fast or deprecated algorithms.",
        cluster="auth_enforcement",
        match=AnySignals((SignalId.AUTHN_PRESENT,)),
        guidance=(
            "Use bcrypt, Argon2id, or scrypt with per-user salts and adequate cost.",
            "Avoid MD5, SHA-1, or SHA-256 for password storage.",
        ),
    ),
    Rule(
        id="weak_encryption",
        title="Weak or deprecated encryption",
        category="authentication",
        description="Data is encrypted or signed with deprecated algorithms or insecure modes.",
        cluster="secrets_logging",
        match=AnySignals((SignalId.AUTHN_PRESENT, SignalId.SECRETS_ACCESS)),
        guidance=(
            "Use AES-GCM or ChaCha20-Poly1305 with random nonces.",
            "Avoid ECB mode, DES, MD5, or SHA-1 for security use cases.",
        ),
    ),
    Rule(
        id="mass_assignment",
        title="Mass assignment of user-controlled fields",
        category="business_logic",
        description="Endpoints bind entire request bodies to models without field allowlists.",
        cluster="data_access",
        match=AnySignals((SignalId.MASS_ASSIGNMENT_RISK,)),
        optional_signals=(SignalId.CLIENT_SUPPLIED_IDENTIFIER, SignalId.UNVALIDATED_INPUT),
        guidance=(
            "Allowlist writable fields or map through DTOs.",
            "Never accept role, ownership, pricing, or status fields from clients.",
        ),
    ),
    Rule(
        id="excessive_data_exposure",
        title="Excessive data exposure in API responses",
        category="business_logic",
        description="API responses include internal or sensitive fields instead of a safe DTO.",
        cluster="data_access",
        match=AnySignals((SignalId.PUBLIC_ENTRYPOINT, SignalId.API_HANDLER)),
        optional_signals=(SignalId.AUTHZ_MISSING_OR_UNKNOWN,),
        guidance=(
            "Return allowlisted fields instead of full ORM objects.",
            "Only report when data is exposed to untrusted or public callers.",
        ),
    ),
    Rule(
        id="path_traversal",
        title="Path traversal",
        category="injection",
        description="User-controlled file paths access files outside allowed directories.",
        cluster="injection_exec",
        match=AnySignals((SignalId.FILE_READ_SINK, SignalId.FILE_WRITE_SINK)),
        optional_signals=_UNTRUSTED_INPUTS,
        guidance=(
            "Normalize paths and enforce base directory allowlists.",
            "Reject '..', absolute paths, or encoded traversal sequences.",
        ),
    ),
    Rule(
        id="missing_upload_size_limit",
        title="Missing upload size limits",
        category="configuration",
        description="Upload handlers accept large payloads without enforcing size limits.",
        cluster="hardening_limits",
        match=AnySignals((SignalId.PUBLIC_ENTRYPOINT, SignalId.API_HANDLER)),
        optional_signals=(SignalId.WEAK_VALIDATION_OR_UNKNOWN,),
        guidance=("Reject oversized payloads before buffering or storing them.",),
    ),
    Rule(
        id="unrestricted_file_upload",
        title="Unrestricted file upload",
        category="configuration",
        description="Uploads accept arbitrary files or filenames without validation.",
        cluster="hardening_limits",
        match=AnySignals((SignalId.FILE_WRITE_SINK,)),
        optional_signals=_UNTRUSTED_INPUTS,
        guidance=(
            "Validate extension, MIME type, and size before storing.",
            "Store with server-generated names outside executable paths.",
        ),
    ),
    Rule(
        id="nosql_injection",
        title="NoSQL injection",
        category="injection",
        description="NoSQL queries are built from untrusted input without allowlisting.",
        cluster="injection_exec",
        match=AnySignals((SignalId.ORM_QUERY_SINK,)),
        optional_signals=_UNTRUSTED_INPUTS,
        guidance=("Reject operator objects like $where or $gt from client input.",),
    ),
    Rule(
        id="ldap_injection",
        title="LDAP injection",
        category="injection",
        description="LDAP filters include unescaped user input.",
        cluster="injection_exec",
        match=AnySignals(_UNTRUSTED_INPUTS),
        optional_signals=(SignalId.AUTHN_PRESENT,),
        guidance=("Escape LDAP special characters in filters.",),
    ),
    Rule(
        id="xpath_injection",
        title="XPath injection",
        category="injection",
        description="XPath expressions include unescaped user input.",
        cluster="injection_exec",
        match=AnySignals(_UNTRUSTED_INPUTS),
        optional_signals=(SignalId.TEMPLATE_RENDER,),
        guidance=("Use parameterized XPath APIs or strict input allowlists.",),
    ),
    Rule(
        id="template_injection",
        title="Template injection (SSTI)",
        category="injection",
        description="Templates render untrusted input in server-side template engines.",
        cluster="injection_exec",
        match=AnySignals((SignalId.TEMPLATE_RENDER,)),
        optional_signals=_UNTRUSTED_INPUTS,
        guidance=(
            "Do not render user-supplied templates or expressions.",
            "Escape user input and disable dangerous template features.",
        ),
    ),
    Rule(
        id="log_injection",
        title="Log injection",
        category="configuration",
        description="Untrusted input is written to logs without sanitization.",
        cluster="hardening_limits",
        match=AnySignals((SignalId.LOGS_SENSITIVE,)),
        optional_signals=_UNTRUSTED_INPUTS,
        guidance=("Sanitize newlines and control characters in log fields.",),
    ),
    Rule(
        id="insecure_temp_files",
        title="Insecure temporary file usage",
        category="configuration",
        description="Temporary files are created with predictable names or lax permissions.",
        cluster="hardening_limits",
        match=AnySignals((SignalId.FILE_WRITE_SINK,)),
        optional_signals=(SignalId.WEAK_VALIDATION_OR_UNKNOWN,),
        guidance=("Use secure temp APIs with restrictive permissions.",),
    ),
    Rule(
        id="verbose_error_messages",
        title="Verbose error messages",
        category="configuration",
        description="Responses expose stack traces or internal error details.",
        cluster="hardening_limits",
        match=AnySignals((SignalId.PUBLIC_ENTRYPOINT, SignalId.API_HANDLER)),
        optional_signals=(SignalId.AUTHN_MISSING_OR_UNKNOWN,),
        guidance=(
            "Return generic errors to clients and log details internally.",
            "Avoid exposing stack traces, file paths, or SQL queries.",
        ),
    ),
    Rule(
        id="debug_mode_in_production",
        title="Debug mode enabled in production",
        category="configuration",
        description="Debug tooling or endpoints are enabled outside development.",
        cluster="hardening_limits",
        match=AnySignals((SignalId.DEBUG_ENDPOINT,)),
        optional_signals=(SignalId.PUBLIC_ENTRYPOINT,),
        guidance=("Gate debug tooling behind explicit environment checks.",),
    ),
    Rule(
        id="missing_security_headers",
        title="Missing security headers",
        category="configuration",
        description="Responses omit critical headers like CSP, HSTS, or X-Frame-Options.",
        cluster="hardening_limits",
        match=AnySignals((SignalId.PUBLIC_ENTRYPOINT, SignalId.API_HANDLER)),
        optional_signals=(SignalId.AUTHN_PRESENT,),
        guidance=(
            "Set CSP, HSTS, X-Frame-Options, and X-Content-Type-Options.",
            "Apply headers via default middleware for all responses.",
        ),
    ),
    Rule(
        id="public_storage_bucket",
        title="Publicly readable storage bucket",
        category="configuration",
        description="Storage buckets holding user data are configured for public access.",
        cluster="hardening_limits",
        guidance=("Keep buckets private and serve files through signed URLs.",),
    ),
)

RULES_BY_ID: Dict[str, Rule] = {rule.id: rule for rule in REPOSITORY_SCAN_RULES}

RULE_CLUSTER_BY_ID: Dict[str, str] = {rule.id: rule.cluster for rule in REPOSITORY_SCAN_RULES}


def resolve_rule_cluster(rule_id: str) -> str:
    return RULE_CLUSTER_BY_ID.get(rule_id, MISC_CLUSTER)


ROLE_FAMILY_FALLBACKS: Dict[str, List[str]] = {
    "api_handler": ["authentication", "access_control", "injection", "logic_issues"],
    "db_access": ["injection", "access_control", "logic_issues"],
    "auth": ["authentication", "access_control", "logic_issues"],
    "frontend_ui": ["access_control", "secrets", "injection", "misconfiguration"],
    "job_worker": ["logic_issues", "secrets", "injection"],
    "config": ["misconfiguration", "secrets"],
    "utility": ["injection", "misconfiguration"],
    "test": ["misconfiguration"],
    "infra": ["misconfiguration", "secrets"],
    "unknown": ["access_control", "injection"],
}

FAMILY_RULES: Dict[str, List[str]] = {
    "injection": [
        "sql_injection",
        "unsafe_query_builder",
        "command_injection",
        "dangerous_html_render",
        "missing_input_validation",
        "missing_output_sanitization",
        "path_traversal",
        "unrestricted_file_upload",
        "nosql_injection",
        "ldap_injection",
        "xpath_injection",
        "template_injection",
        "log_injection",
        "webhook_code_execution",
    ],
    "access_control": [
        "idor",
        "missing_role_check",
        "org_id_trust",
        "frontend_only_authorization",
        "frontend_direct_db_write",
        "mass_assignment",
        "missing_least_privilege",
        "weak_rls_policies",
    ],
    "authentication": [
        "missing_authentication",
        "missing_admin_mfa",
        "missing_server_action_auth",
        "missing_lockout",
        "missing_secure_token_handling",
        "missing_replay_protection",
        "missing_webhook_signature",
        "jwt_validation_bypass",
        "weak_jwt_secret",
        "weak_token_generation",
        "missing_bearer_token",
        "anon_key_bearer",
        "session_fixation",
        "weak_password_hashing",
    ],
    "secrets": [
        "frontend_secret_exposure",
        "sensitive_client_storage",
        "plaintext_secrets",
        "sensitive_logging",
        "command_output_logging",
        "weak_encryption",
    ],
    "data_exposure": [
        "excessive_data_exposure",
        "verbose_error_messages",
        "debug_auth_leak",
    ],
    "logic_issues": [
        "missing_rate_limiting",
        "missing_audit_logging",
        "unbounded_query",
        "missing_timeout",
        "missing_upload_size_limit",
        "frontend_login_rate_limit",
    ],
    "misconfiguration": [
        "permissive_cors",
        "public_storage_bucket",
        "missing_security_headers",
        "debug_mode_in_production",
        "missing_webhook_config_integrity",
        "insecure_temp_files",
    ],
}

# Generic checks used when a chunk carries neither signals nor role information.
BASELINE_RULE_IDS: Tuple[str, ...] = (
    "missing_authentication",
    "missing_admin_mfa",
    "idor",
    "sql_injection",
    "command_injection",
    "dangerous_html_render",
    "frontend_only_authorization",
    "missing_rate_limiting",
    "permissive_cors",
)


def format_rule_card(rule: Rule) -> str:
    """Compact prompt representation of a rule, also used for token estimates."""
    lines = [f"- id: {rule.id}", f"  title: {rule.title}", f"  description: {rule.description}"]
    if rule.guidance:
        lines.append("  guidance:")
        lines.extend(f"    - {item}" for item in rule.guidance)
    return "\n".join(lines)
