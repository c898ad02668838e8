"""
SigKit Main - Orchestration layer wiring fetcher, cache, compiler and decipherer
"""
import asyncio
import logging
from typing import Dict, List, MutableMapping, Optional

from config import SigKitConfig
from decipher import FormatDecipherer
from models import DecipherResult
from player_cache import FetchText, PlayerScriptCache
from script_compiler import ScriptCompiler
from session_manager import PlayerScriptFetcher, SessionFactory

logger = logging.getLogger(__name__)


class SigKitOrchestrator:
    """
    High-level entry point that coordinates all subsystems.
    Opts in to the configured cache TTL and size limit.
    """

    def __init__(
        self,
        fetch_text: Optional[FetchText] = None,
        proxy: Optional[str] = None,
        cache_ttl: Optional[float] = SigKitConfig.PLAYER_CACHE_TTL,
        cache_size: Optional[int] = SigKitConfig.PLAYER_CACHE_SIZE
    ):
        self._fetcher: Optional[PlayerScriptFetcher] = None
        if fetch_text is None:
            self._fetcher = PlayerScriptFetcher(SessionFactory(proxy=proxy))
            fetch_text = self._fetcher
        self.fetch_text = fetch_text

        self.cache = PlayerScriptCache(ttl=cache_ttl, max_size=cache_size)
        self.compiler = ScriptCompiler()
        self.decipherer = FormatDecipherer(cache=self.cache, compiler=self.compiler)

    @property
    def degraded(self) -> bool:
        """True once any player script lacked a parseable n-transform"""
        return self.cache.degraded

    async def decipher_formats(
        self,
        formats: List[MutableMapping],
        player_url: str
    ) -> DecipherResult:
        result = await self.decipherer.run(formats, player_url, self.fetch_text)

        if result.degraded:
            logger.warning(
                "[SigKit] n-transform unavailable for %s, downloads may be throttled", player_url
            )
        return result

    async def decipher_many(
        self,
        batches: Dict[str, List[MutableMapping]],
        max_concurrent: int = 3
    ) -> Dict[str, DecipherResult]:
        """
        Decipher several format batches (player URL -> formats) concurrently.
        A failing batch is logged and left out of the result.
        """
        semaphore = asyncio.Semaphore(max_concurrent)

        async def decipher_with_semaphore(player_url, formats):
            async with semaphore:
                try:
                    return player_url, await self.decipher_formats(formats, player_url)
                except Exception as e:
                    logger.error("[SigKit] Failed to decipher formats for %s: %s", player_url, e)
                    return player_url, None

        results = await asyncio.gather(
            *(decipher_with_semaphore(url, formats) for url, formats in batches.items())
        )

        successful = {url: result for url, result in results if result is not None}
        logger.info("[SigKit] Batch complete: %d/%d successful", len(successful), len(batches))
        return successful

    async def close(self):
        """Cleanup all resources"""
        if self._fetcher is not None:
            await self._fetcher.close()
        self.decipherer.close()
