"""Lightweight dataclasses shared across try-on helpers."""

from dataclasses import dataclass, field
import time
from typing import Optional

from src.core.image_normalizer import NormalizedImage


@dataclass
class CombineContext:
    request_id: str
    identity: str
    started_at: float = field(default_factory=time.perf_counter)

    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self.started_at) * 1000, 2)


@dataclass
class NormalizedPair:
    person: NormalizedImage
    garment: NormalizedImage


@dataclass
class CombineResult:
    image_base64: str
    remaining_calls: Optional[int] = None
