"""Token-budgeted grouping of chunks for chunk-understanding prompts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Sequence

from repoaudit.models import Chunk
from repoaudit.utils.text import estimate_tokens, infer_language

MISC_GROUP = "misc"
_CHUNK_ID_PLACEHOLDER = "x" * 64


def estimate_mapping_chunk_tokens(chunk: Chunk) -> int:
    """Prompt cost of one chunk, including the per-chunk envelope."""
    header = "\n".join(
        [
            f"chunk_id:{_CHUNK_ID_PLACEHOLDER}",
            f"file_path:{chunk.filepath}",
            f"language:{infer_language(chunk.filepath)}",
            "chunk_text:",
        ]
    )
    return estimate_tokens(f"{header}{chunk.content}")


def mapping_group_key(chunk: Chunk) -> str:
    if chunk.overlap_group_id:
        return f"overlap:{chunk.overlap_group_id}"
    if chunk.filepath:
        return f"file:{chunk.filepath}"
    return MISC_GROUP


@dataclass(slots=True)
class _Packer:
    """Accumulator for one group: finished batches plus the open one."""

    base_tokens: int
    batches: List[List[Chunk]] = field(default_factory=list)
    current: List[Chunk] = field(default_factory=list)
    tokens: int = 0


def _pack(state: _Packer, chunk: Chunk, cost: int, max_tokens: int, max_chunks: int) -> _Packer:
    if state.current and (state.tokens + cost > max_tokens or len(state.current) >= max_chunks):
        state.batches.append(state.current)
        state.current = []
    if not state.current:
        state.tokens = state.base_tokens
    state.current.append(chunk)
    state.tokens += cost
    return state


def _close(state: _Packer) -> List[List[Chunk]]:
    if state.current:
        state.batches.append(state.current)
        state.current = []
    return state.batches


def build_mapping_batches(
    chunks: Sequence[Chunk],
    *,
    base_prompt_tokens: int,
    max_prompt_tokens: int,
    min_batch_size: int = 1,
    max_batch_chunks: int = 8,
) -> List[List[Chunk]]:
    """Group chunks into batches for one understanding call each.

    Chunks sharing an overlap group always land together, then chunks of the
    same file. Chunks with neither key are sent one per batch. A chunk that
    alone exceeds ``max_prompt_tokens`` still forms a batch of one.
    """
    if not chunks:
        return []

    groups: Dict[str, List[Chunk]] = {}
    for chunk in chunks:
        groups.setdefault(mapping_group_key(chunk), []).append(chunk)

    max_tokens = max(1, int(max_prompt_tokens))
    min_size = max(1, int(min_batch_size))
    max_chunks = max(min_size, int(max_batch_chunks))

    batches: List[List[Chunk]] = []
    for key, group in groups.items():
        if key == MISC_GROUP:
            batches.extend([chunk] for chunk in group)
            continue
        state = _Packer(base_tokens=base_prompt_tokens)
        for chunk in group:
            state = _pack(state, chunk, estimate_mapping_chunk_tokens(chunk), max_tokens, max_chunks)
        batches.extend(_close(state))
    return batches


def estimate_mapping_batch_tokens(batch: Sequence[Chunk], base_prompt_tokens: int) -> int:
    return base_prompt_tokens + sum(estimate_mapping_chunk_tokens(chunk) for chunk in batch)
