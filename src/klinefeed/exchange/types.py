"""Exchange-layer result types."""

from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")


@dataclass
class FetchResult(Generic[T]):
    """Outcome of a soft-failing fetch: a (possibly partial) value plus warnings.

    Transport and decode problems never raise; they empty or shorten
    ``items`` and are described in ``warnings``.
    """

    items: T
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.warnings
