"""Redis key-naming scheme for memory records and their derived indexes."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass


def md5_hex(value: str) -> str:
    return hashlib.md5(value.encode("utf-8")).hexdigest()


@dataclass(slots=True, frozen=True)
class CacheKeys:
    """Namespace helpers for one instance's keys.

    Record, metadata, tag and chain keys are prefixed with the instance id so
    several instances can share a Redis database. Query-result and embedding
    memo keys live in the global ``um:`` namespace.
    """

    instance: str
    global_prefix: str = "um"

    def thought(self, memory_id: str) -> str:
        return f"{self.instance}:Thoughts:{memory_id}"

    def thought_pattern(self) -> str:
        return f"{self.instance}:Thoughts:*"

    def thought_id(self, key: str) -> str | None:
        prefix = f"{self.instance}:Thoughts:"
        if key.startswith(prefix):
            return key[len(prefix):]
        return None

    def metadata(self, memory_id: str) -> str:
        return f"{self.instance}:thought_meta:{memory_id}"

    def tag(self, tag: str) -> str:
        return f"{self.instance}:tags:{tag}"

    def chain(self, chain_id: str) -> str:
        return f"{self.instance}:chains:{chain_id}"

    def query_cache(self, query_hash: str) -> str:
        return f"{self.global_prefix}:cache:{query_hash}"

    def embedding(self, content: str) -> str:
        return f"{self.global_prefix}:embedding:{md5_hex(content)}"
