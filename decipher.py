"""
SigKit Decipher - Applies player script transforms to a batch of formats
"""
import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, MutableMapping, Optional

from config import SigKitConfig
from models import DecipherResult
from player_cache import FetchText, PlayerScriptCache
from script_compiler import CompiledTransform, ScriptCompiler
from url_transformer import resolve

logger = logging.getLogger(__name__)


class FormatDecipherer:
    """
    Drives cache, compiler and URL transformer for one player script per call.
    """

    def __init__(
        self,
        cache: Optional[PlayerScriptCache] = None,
        compiler: Optional[ScriptCompiler] = None,
        max_workers: int = SigKitConfig.MAX_JS_WORKERS
    ):
        self.cache = cache or PlayerScriptCache()
        self.compiler = compiler or ScriptCompiler()

        # Transforms block until their worker answers; keep them off the event loop
        self._resolve_executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="sigkit-resolve"
        )

    async def run(
        self,
        formats: Iterable[MutableMapping],
        player_url: str,
        fetch_text: FetchText
    ) -> DecipherResult:
        """
        Resolve every format in place and map resolved URL -> format.
        Formats resolving to the same URL: the later one wins.
        """
        functions = await self.cache.get_or_compute(player_url, fetch_text)

        decipher_transform = self.compiler.compile(
            functions.decipher, SigKitConfig.DECIPHER_ARGUMENT
        )
        n_transform_transform = self.compiler.compile_optional(
            functions.n_transform, SigKitConfig.N_ARGUMENT
        )

        loop = asyncio.get_running_loop()
        deciphered = await loop.run_in_executor(
            self._resolve_executor,
            resolve_all,
            list(formats),
            decipher_transform,
            n_transform_transform
        )

        logger.debug("[Decipher] Resolved %d format URL(s) with %s", len(deciphered), player_url)
        return DecipherResult(formats=deciphered, diagnostics=functions.diagnostics)

    def close(self):
        self.cache.close()
        self.compiler.close()
        self._resolve_executor.shutdown(wait=False, cancel_futures=True)


def resolve_all(
    formats: Iterable[MutableMapping],
    decipher_transform: CompiledTransform,
    n_transform_transform: Optional[CompiledTransform]
) -> Dict[str, MutableMapping]:
    deciphered = {}
    for fmt in formats:
        resolve(fmt, decipher_transform, n_transform_transform)
        deciphered[fmt["url"]] = fmt
    return deciphered


_default_decipherer: Optional[FormatDecipherer] = None


def get_default_decipherer() -> FormatDecipherer:
    """Process-wide decipherer sharing one cache across callers"""
    global _default_decipherer
    if _default_decipherer is None:
        _default_decipherer = FormatDecipherer()
    return _default_decipherer


async def decipher_formats(
    formats: Iterable[MutableMapping],
    player_url: str,
    fetch_text: FetchText
) -> DecipherResult:
    """Apply decipher and n parameter transforms to all format URLs"""
    return await get_default_decipherer().run(formats, player_url, fetch_text)
