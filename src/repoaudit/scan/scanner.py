"""Repository scan orchestration.

Files are chunked, each chunk is summarized by a batched understanding call,
the resulting signals select the rules to verify, and rule-scoped prompts plus
an optional open scan produce findings. Every LLM call goes through the
``complete`` collaborator, bounded by a semaphore.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from repoaudit.analysis.entrypoints import discover_entry_points
from repoaudit.analysis.header import SecurityHeader, prepend_security_header
from repoaudit.analysis.reachability import CallGraph, ReachabilityIndex, build_reachability_index
from repoaudit.config import AppConfig
from repoaudit.ingestion.chunker import assign_overlap_groups, chunk_file
from repoaudit.models import Chunk, Finding, StaticFinding
from repoaudit.scan.batching import build_mapping_batches
from repoaudit.scan.breaker import run_with_circuit_breaker
from repoaudit.scan.catalog import RULES_BY_ID, format_rule_card
from repoaudit.scan.findings import (
    findings_for_location,
    merge_findings,
    parse_findings,
    static_to_finding,
)
from repoaudit.scan.gating import should_run_open_scan
from repoaudit.scan.selection import (
    chunk_rule_ids,
    pack_rule_ids_by_token_budget,
    resolve_candidate_rule_ids,
    rule_tokens_by_id,
)
from repoaudit.scan.understanding import (
    ChunkUnderstanding,
    ChunkUnderstandingError,
    UnderstandingFallback,
    parse_chunk_understanding_batch,
    parse_chunk_understanding_record,
)
from repoaudit.security.signals import SIGNAL_IDS, SIGNAL_VOCABULARY_VERSION
from repoaudit.utils.files import to_relative
from repoaudit.utils.text import estimate_tokens, infer_language

if TYPE_CHECKING:
    from repoaudit.index.storage import SQLiteChunkStore

LOGGER = logging.getLogger(__name__)

CompleteFn = Callable[[str, str], Awaitable[str]]

OPEN_SCAN_TYPE = "open_scan"

UNDERSTANDING_SYSTEM_PROMPT = (
    "You summarize source code chunks for a security review. For every chunk return one "
    "JSON object with chunk_id, file_path, confidence (0..1), exposure "
    "(public|internal|unknown), role, data_sinks [{type}], data_inputs [{source, trust}], "
    "identifiers [{name, kind, source, trust}] and signals [{id, evidence, confidence}]. "
    "Signal ids must come from this list: {signals}. Reply with a JSON array in chunk order."
)

RULE_SYSTEM_PROMPT = (
    "You verify specific security rules against one code chunk. Report only issues the "
    "shown code supports. Reply with JSON: {\"findings\": [{type, severity, summary, "
    "location: {filepath, startLine, endLine}, evidence: [], details: {}}]} where type is "
    "the rule id."
)

OPEN_SCAN_SYSTEM_PROMPT = (
    "You review one code chunk for any security vulnerability. Report only issues the "
    "shown code supports. Reply with JSON: {\"findings\": [...]} using the same finding shape."
)


class ScanCancelled(RuntimeError):
    """The scan was cancelled before any work was dispatched."""


@dataclass(slots=True)
class ScanResult:
    findings: List[Finding] = field(default_factory=list)
    scanned_files: int = 0
    scanned_chunks: int = 0
    failed_chunks: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    cancelled: bool = False


def build_understanding_prompt(batch: Sequence[Chunk]) -> str:
    sections = []
    for chunk in batch:
        sections.append(
            "\n".join(
                [
                    f"chunk_id:{chunk.id}",
                    f"file_path:{chunk.filepath}",
                    f"language:{infer_language(chunk.filepath)}",
                    f"chunk_text:{chunk.content}",
                ]
            )
        )
    return "\n\n---\n\n".join(sections)


def build_rule_prompt(rule_ids: Sequence[str], chunk: Chunk, context: str) -> str:
    cards = [format_rule_card(RULES_BY_ID[rule_id]) for rule_id in rule_ids if rule_id in RULES_BY_ID]
    return "\n".join(
        [
            "Rules:",
            *cards,
            "",
            f"file_path:{chunk.filepath}",
            f"lines:{chunk.start_line}-{chunk.end_line}",
            "",
            context,
        ]
    )


class RepositoryScanner:
    """Drive one repository scan through the ``complete`` collaborator."""

    def __init__(
        self,
        complete: CompleteFn,
        config: AppConfig | None = None,
        *,
        static_findings: Iterable[StaticFinding] = (),
        store: Optional["SQLiteChunkStore"] = None,
        call_graph: Optional[CallGraph] = None,
    ) -> None:
        self.complete = complete
        self.config = config or AppConfig()
        self.static_findings = list(static_findings)
        self.store = store
        self.call_graph = call_graph
        self._rule_tokens = rule_tokens_by_id()
        self._semaphore: Optional[asyncio.Semaphore] = None

    async def _call(self, system_prompt: str, user_prompt: str) -> str:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.config.concurrency)
        async with self._semaphore:
            return await self.complete(system_prompt, user_prompt)

    def chunk_files(self, repo_root: Path, files: Sequence[Path]) -> tuple[List[Chunk], int]:
        """Chunk every readable file; return the chunks and the number of files read."""
        chunks: List[Chunk] = []
        scanned = 0
        for path in files:
            rel_path = to_relative(repo_root, path)
            try:
                file_chunks = chunk_file(
                    path,
                    max_chars=self.config.chunk_chars,
                    overlap_chars=self.config.overlap,
                    id_path=rel_path,
                )
            except OSError as exc:
                LOGGER.warning("Skipping %s: %s", rel_path, exc)
                continue
            scanned += 1
            chunks.extend(file_chunks)
        if self.call_graph is not None:
            assign_overlap_groups(chunks, self.call_graph.function_spans())
        return chunks, scanned

    def _load_cached(self, chunk: Chunk) -> Optional[ChunkUnderstanding]:
        if self.store is None:
            return None
        record = self.store.load_understanding(chunk.id)
        if record is None or record.pop("signal_vocabulary_version", None) != SIGNAL_VOCABULARY_VERSION:
            return None
        return parse_chunk_understanding_record(
            record, UnderstandingFallback(chunk_id=chunk.id, file_path=chunk.filepath)
        )

    async def understand(
        self,
        chunks: Sequence[Chunk],
        cancel_event: asyncio.Event,
        result: ScanResult,
    ) -> Dict[str, ChunkUnderstanding]:
        understandings: Dict[str, ChunkUnderstanding] = {}
        pending: List[Chunk] = []
        for chunk in chunks:
            cached = self._load_cached(chunk)
            if cached is not None:
                understandings[chunk.id] = cached
            else:
                pending.append(chunk)
        if understandings:
            LOGGER.info("Reusing %d cached chunk understandings", len(understandings))

        batches = build_mapping_batches(
            pending,
            base_prompt_tokens=self.config.base_prompt_tokens,
            max_prompt_tokens=self.config.max_prompt_tokens,
            min_batch_size=self.config.min_batch_size,
            max_batch_chunks=self.config.max_batch_chunks,
        )
        system_prompt = UNDERSTANDING_SYSTEM_PROMPT.replace(
            "{signals}", ", ".join(sorted(SIGNAL_IDS))
        )

        async def work(batch: List[Chunk]) -> List[ChunkUnderstanding]:
            if cancel_event.is_set():
                result.cancelled = True
                return []
            raw = await self._call(system_prompt, build_understanding_prompt(batch))
            fallbacks = [UnderstandingFallback(chunk.id, chunk.filepath) for chunk in batch]
            return parse_chunk_understanding_batch(raw, fallbacks)

        def exhausted(batch: List[Chunk], error: BaseException) -> List[ChunkUnderstanding]:
            result.failed_chunks.extend(chunk.id for chunk in batch)
            return []

        async def run(batch: List[Chunk]) -> List[ChunkUnderstanding]:
            if cancel_event.is_set():
                result.cancelled = True
                LOGGER.info("Cancelled; not dispatching batch of %d chunk(s)", len(batch))
                return []
            return await run_with_circuit_breaker(
                batch,
                work,
                max_depth=self.config.circuit_breaker_depth,
                on_exhausted=exhausted,
            )

        for parsed in await asyncio.gather(*(run(batch) for batch in batches)):
            for understanding in parsed:
                understandings[understanding.chunk_id] = understanding
                if self.store is not None:
                    self.store.save_understanding(
                        understanding.chunk_id,
                        {**understanding.to_record(), "signal_vocabulary_version": SIGNAL_VOCABULARY_VERSION},
                    )
        return understandings

    async def _run_rule_batch(
        self,
        rule_ids: List[str],
        chunk: Chunk,
        context: str,
        cancel_event: asyncio.Event,
    ) -> List[Finding]:
        async def work(batch: List[str]) -> List[Finding]:
            if cancel_event.is_set():
                return []
            raw = await self._call(RULE_SYSTEM_PROMPT, build_rule_prompt(batch, chunk, context))
            findings = parse_findings(raw, chunk=chunk, default_type=batch[0])
            in_scope = [finding for finding in findings if finding.type in batch]
            if findings and not in_scope:
                raise ChunkUnderstandingError(
                    f"all {len(findings)} finding(s) fall outside rules {','.join(batch)}"
                )
            if len(in_scope) < len(findings):
                LOGGER.debug(
                    "Dropped %d out-of-scope finding(s) for chunk %s",
                    len(findings) - len(in_scope),
                    chunk.id,
                )
            for finding in in_scope:
                finding.details.setdefault("ruleId", finding.type)
            return in_scope

        def exhausted(batch: List[str], error: BaseException) -> List[Finding]:
            LOGGER.error("Rules %s failed for chunk %s: %s", ",".join(batch), chunk.id, error)
            return []

        return await run_with_circuit_breaker(
            rule_ids,
            work,
            max_depth=self.config.circuit_breaker_depth,
            on_exhausted=exhausted,
        )

    async def _run_open_scan(self, chunk: Chunk, context: str) -> List[Finding]:
        async def work(batch: List[Chunk]) -> List[Finding]:
            raw = await self._call(OPEN_SCAN_SYSTEM_PROMPT, context)
            return parse_findings(raw, chunk=batch[0], default_type=OPEN_SCAN_TYPE)

        def exhausted(batch: List[Chunk], error: BaseException) -> List[Finding]:
            LOGGER.error("Open scan failed for chunk %s: %s", chunk.id, error)
            return []

        return await run_with_circuit_breaker(
            [chunk],
            work,
            max_depth=self.config.circuit_breaker_depth,
            on_exhausted=exhausted,
        )

    def _pack_rule_batch(self, rule_ids: List[str], context: str) -> List[List[str]]:
        """Split one cluster batch further when its rule cards overflow the prompt budget."""
        base_tokens = self.config.base_prompt_tokens + estimate_tokens(context)
        remaining = [rule_id for rule_id in rule_ids if rule_id in self._rule_tokens]
        packed_batches: List[List[str]] = []
        while remaining:
            packing = pack_rule_ids_by_token_budget(
                remaining,
                base_tokens,
                self.config.max_prompt_tokens,
                self.config.rule_batch_size,
                self.config.rule_batch_size,
                self._rule_tokens,
            )
            packed = packing.packed_rule_ids or remaining[:1]
            packed_batches.append(packed)
            remaining = remaining[len(packed) :]
        return packed_batches

    async def scan_chunk(
        self,
        chunk: Chunk,
        understanding: Optional[ChunkUnderstanding],
        reachability: Optional[ReachabilityIndex],
        prior_findings: Sequence[Finding],
        cancel_event: asyncio.Event,
    ) -> List[Finding]:
        selection = resolve_candidate_rule_ids(
            understanding, min_rules_per_chunk=self.config.min_rules_per_chunk
        )
        if understanding is not None:
            info = (
                reachability.lookup(chunk.filepath, chunk.start_line, chunk.end_line)
                if reachability is not None
                else None
            )
            header = SecurityHeader.from_understanding(understanding, info)
        else:
            header = SecurityHeader()
        context = prepend_security_header(header, chunk.content)

        findings: List[Finding] = []
        for cluster_batch in chunk_rule_ids(selection.rule_ids, self.config.rule_batch_size):
            for rule_batch in self._pack_rule_batch(cluster_batch, context):
                if cancel_event.is_set():
                    return findings
                findings.extend(
                    await self._run_rule_batch(rule_batch, chunk, context, cancel_event)
                )

        so_far = findings_for_location(list(prior_findings) + findings, chunk.filepath)
        if cancel_event.is_set() or not should_run_open_scan(
            understanding,
            selection.rule_ids,
            so_far,
            selection.strategy,
            min_coverage=self.config.open_scan_min_coverage,
        ):
            return findings

        findings.extend(await self._run_open_scan(chunk, context))
        return findings

    async def scan(
        self,
        repo_root: Path,
        files: Sequence[Path],
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ScanResult:
        """Scan ``files`` under ``repo_root`` and return merged findings.

        Raises :class:`ScanCancelled` if ``cancel_event`` is already set. Once
        work has been dispatched, cancellation stops new LLM calls and the
        partial result is returned with ``cancelled`` set.
        """
        started = time.perf_counter()
        cancel_event = cancel_event or asyncio.Event()
        if cancel_event.is_set():
            raise ScanCancelled("Scan cancelled before any batch was dispatched")
        self._semaphore = asyncio.Semaphore(self.config.concurrency)

        result = ScanResult()
        entry_points = discover_entry_points(repo_root, files)
        reachability = build_reachability_index(
            self.call_graph,
            entry_points,
            max_depth=self.config.reachability_max_depth,
            max_entry_points_per_node=self.config.reachability_max_entry_points,
        )
        chunks, result.scanned_files = self.chunk_files(repo_root, files)
        result.scanned_chunks = len(chunks)
        LOGGER.info(
            "Scanning %d chunk(s) from %d file(s); %d entry point(s)",
            len(chunks),
            result.scanned_files,
            len(entry_points),
        )

        understandings = await self.understand(chunks, cancel_event, result)
        failed = set(result.failed_chunks)
        static_as_findings = [static_to_finding(item) for item in self.static_findings]

        per_chunk = await asyncio.gather(
            *(
                self.scan_chunk(
                    chunk,
                    understandings.get(chunk.id),
                    reachability,
                    static_as_findings,
                    cancel_event,
                )
                for chunk in chunks
                if chunk.id not in failed
            )
        )
        if cancel_event.is_set():
            result.cancelled = True

        llm_findings = [finding for findings in per_chunk for finding in findings]
        result.findings = merge_findings(self.static_findings, (), llm_findings)
        result.duration_seconds = time.perf_counter() - started
        LOGGER.info(
            "Scan finished with %d finding(s), %d failed chunk(s)",
            len(result.findings),
            len(result.failed_chunks),
        )
        return result
