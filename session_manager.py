"""
SigKit Session Manager - Default player script fetching over curl_cffi
Any async `fetch_text(url) -> str` can replace PlayerScriptFetcher
"""
import logging
from typing import Dict, Optional

from curl_cffi.requests import AsyncSession

from circuit_breaker import CircuitBreaker, RetryPolicy
from config import SigKitConfig
from errors import PlayerFetchError

logger = logging.getLogger(__name__)


class SessionFactory:
    """
    Lazily creates a browser-impersonating session and recreates it
    after failures while preserving cookies.
    """

    def __init__(
        self,
        impersonate: str = SigKitConfig.DEFAULT_IMPERSONATION,
        proxy: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None
    ):
        self.impersonate = impersonate
        self.proxy = proxy
        self.headers = headers or self._default_headers()
        self.cookie_jar: Dict[str, str] = {}
        self._current_session: Optional[AsyncSession] = None

    @staticmethod
    def _default_headers() -> Dict[str, str]:
        return {
            "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
            "Accept": "*/*",
            "Accept-Language": "en-US,en;q=0.9",
        }

    async def create_session(self) -> AsyncSession:
        session = AsyncSession(
            impersonate=self.impersonate,
            headers=self.headers,
            proxies={"http": self.proxy, "https": self.proxy} if self.proxy else None,
            timeout=SigKitConfig.TOTAL_TIMEOUT
        )

        for name, value in self.cookie_jar.items():
            session.cookies.set(name, value)

        self._current_session = session
        return session

    async def get_session(self) -> AsyncSession:
        if self._current_session is None:
            return await self.create_session()
        return self._current_session

    async def recreate_session(self) -> AsyncSession:
        """Recreate session after failure, keeping cookies"""
        if self._current_session:
            self.cookie_jar = dict(self._current_session.cookies)
            await self._current_session.close()

        logger.info("[Session] Recreating session")
        return await self.create_session()

    async def close(self):
        if self._current_session:
            await self._current_session.close()
            self._current_session = None


class PlayerScriptFetcher:
    """
    Async `fetch_text` capability for PlayerScriptCache.
    Retries transient failures behind a circuit breaker.
    """

    def __init__(
        self,
        session_factory: Optional[SessionFactory] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        max_retries: int = SigKitConfig.MAX_RETRIES
    ):
        self.session_factory = session_factory or SessionFactory()
        self.circuit_breaker = circuit_breaker or CircuitBreaker("player_script")
        self.max_retries = max_retries

    async def __call__(self, url: str) -> str:
        async def _fetch() -> str:
            session = await self.session_factory.get_session()
            resp = await session.get(url)

            if resp.status_code != 200:
                raise PlayerFetchError(
                    f"Player script request returned {resp.status_code}: {url}",
                    status_code=resp.status_code
                )
            return resp.text

        return await RetryPolicy.with_retry(
            _fetch,
            circuit_breaker=self.circuit_breaker,
            max_retries=self.max_retries,
            operation_name=f"fetch_player_script {url}"
        )

    async def close(self):
        await self.session_factory.close()
