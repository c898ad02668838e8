"""
SigKit Data Models - Type-safe schemas for extracted functions and results
"""
from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import datetime, timezone


class ExtractionDiagnostics(BaseModel):
    """
    Per-extraction diagnostics.
    Reports degraded mode explicitly instead of through ambient state.
    """
    n_transform_missing: bool = False
    n_transform_error: Optional[str] = None

    @property
    def degraded(self) -> bool:
        """Only the signature can be deciphered; delivery may be throttled"""
        return self.n_transform_missing


class ExtractedFunctionSet(BaseModel):
    """
    Snippets extracted from one player script: [decipher, n_transform?].
    Element 0 is always the decipher snippet.
    """
    functions: List[str] = Field(min_length=1, max_length=2)
    diagnostics: ExtractionDiagnostics = Field(default_factory=ExtractionDiagnostics)

    @property
    def decipher(self) -> str:
        return self.functions[0]

    @property
    def n_transform(self) -> Optional[str]:
        return self.functions[1] if len(self.functions) > 1 else None

    def __len__(self) -> int:
        return len(self.functions)

    def __getitem__(self, index: int) -> str:
        return self.functions[index]


class CacheEntry(BaseModel):
    """Memoized extraction result for one player script URL"""
    functions: ExtractedFunctionSet
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    monotonic_at: float  # expiry clock, immune to wall-clock jumps


class DecipherResult(BaseModel):
    """
    Result of deciphering a batch of formats for one player script.
    Format records are the caller's own objects, mutated in place.
    """
    formats: Dict[str, Any] = {}
    diagnostics: ExtractionDiagnostics = Field(default_factory=ExtractionDiagnostics)

    @property
    def degraded(self) -> bool:
        return self.diagnostics.degraded
