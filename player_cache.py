"""
SigKit Player Script Cache - Single-flight get-or-compute store for extracted functions
Solves: "many videos share one player script, fetch and parse it once"
"""
import asyncio
import inspect
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Awaitable, Callable, Dict, Optional, Union

from config import SigKitConfig
from function_extractor import FunctionExtractor
from models import CacheEntry, ExtractedFunctionSet

logger = logging.getLogger(__name__)

FetchText = Callable[[str], Union[Awaitable[str], str]]


class PlayerScriptCache:
    """
    Memoizes ExtractedFunctionSet per player script URL with:
    - At most one fetch+extraction per key in flight
    - Failures propagated to every waiter and never memoized
    - Thread pool for CPU-bound extraction
    - Optional TTL and size limit (off by default)
    """

    def __init__(
        self,
        extractor: Optional[FunctionExtractor] = None,
        ttl: Optional[float] = None,
        max_size: Optional[int] = None,
        max_workers: int = SigKitConfig.MAX_JS_WORKERS,
        clock: Callable[[], float] = time.monotonic
    ):
        self.extractor = extractor or FunctionExtractor()
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock

        self._entries: Dict[str, CacheEntry] = {}
        self._pending: Dict[str, asyncio.Task] = {}

        # Thread pool for CPU-bound regex extraction
        self._extract_executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="sigkit-extract"
        )

        # Sticky: once set it stays set for the cache's lifetime
        self.degraded = False

    async def get_or_compute(self, key: str, fetch_text: FetchText) -> ExtractedFunctionSet:
        """
        Get extracted functions for a player script, computing them if needed.
        Concurrent callers for the same key share a single computation.
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._compute(key, fetch_text))
            self._pending[key] = task
        else:
            logger.debug("[PlayerCache] Joining in-flight extraction for %s", key)

        # A cancelled waiter must not cancel the shared computation
        return await asyncio.shield(task)

    def get(self, key: str) -> Optional[ExtractedFunctionSet]:
        """Return the memoized set for key, dropping it if expired"""
        entry = self._entries.get(key)
        if entry is None:
            return None

        if self.ttl is not None and self._clock() - entry.monotonic_at > self.ttl:
            logger.info("[PlayerCache] Entry expired, will refresh: %s", key)
            del self._entries[key]
            return None

        return entry.functions

    async def _compute(self, key: str, fetch_text: FetchText) -> ExtractedFunctionSet:
        try:
            logger.info("[PlayerCache] Fetching player script: %s", key)
            body = fetch_text(key)
            if inspect.isawaitable(body):
                body = await body

            loop = asyncio.get_running_loop()
            functions = await loop.run_in_executor(
                self._extract_executor,
                self.extractor.extract_functions,
                body
            )

            if functions.diagnostics.degraded:
                self.degraded = True

            self._store(key, functions)
            logger.info(
                "[PlayerCache] Extracted %d function(s) from %s", len(functions), key
            )
            return functions

        except Exception as e:
            logger.error("[PlayerCache] Extraction failed for %s: %s", key, e)
            raise

        finally:
            self._pending.pop(key, None)

    def _store(self, key: str, functions: ExtractedFunctionSet):
        self._entries[key] = CacheEntry(functions=functions, monotonic_at=self._clock())

        if self.max_size is not None and len(self._entries) > self.max_size:
            oldest_key = min(
                self._entries.keys(),
                key=lambda k: self._entries[k].monotonic_at
            )
            del self._entries[oldest_key]
            logger.debug("[PlayerCache] Evicted oldest entry: %s", oldest_key)

    def invalidate(self, key: str) -> bool:
        """Forget one player script; returns True if it was cached"""
        return self._entries.pop(key, None) is not None

    def clear(self):
        self._entries.clear()

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)

    def close(self):
        """Cleanup resources"""
        self._extract_executor.shutdown(wait=True)
