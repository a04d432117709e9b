"""
Progress reporting for a single colorization pass.
"""

from typing import Callable, Optional

from ..models.architecture import ArchitectureSpec, count_convolutions

ProgressCallback = Callable[[float], None]


class ProgressReporter:
    """
    Accumulates progress in percent, one fixed step per convolution.

    The callback receives the running value clamped to [0, 100] after every
    step. It runs synchronously; an exception it raises aborts the pass.
    """

    def __init__(self, step: float, callback: Optional[ProgressCallback] = None):
        self.step = step
        self.callback = callback
        self.value = 0.0

    @classmethod
    def for_architecture(cls, spec: ArchitectureSpec,
                         callback: Optional[ProgressCallback] = None) -> "ProgressReporter":
        return cls(100.0 / count_convolutions(spec), callback)

    def advance(self) -> float:
        self.value += self.step
        clamped = min(max(self.value, 0.0), 100.0)
        if self.callback is not None:
            self.callback(clamped)
        return clamped

    def reset(self) -> None:
        self.value = 0.0
