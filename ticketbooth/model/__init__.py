from dataclasses import dataclass
from typing import AsyncContextManager, Callable

from sqlalchemy.ext.asyncio import AsyncSession

Gated = Callable[[], AsyncContextManager[None]]


@dataclass
class GatedAsyncSession:
    session: AsyncSession
    gated: Gated


__all__ = ["Gated", "GatedAsyncSession"]
