"""
Best-effort results: the value the pipeline proceeded with, plus the
warnings explaining any default it had to fall back to.
"""
from dataclasses import dataclass, field
from typing import Generic, List, TypeVar

T = TypeVar('T')


@dataclass
class Result(Generic[T]):
    value: T
    warnings: List[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        """True when no fallback was needed"""
        return not self.warnings

    def warn(self, message: str) -> 'Result[T]':
        self.warnings.append(message)
        return self
