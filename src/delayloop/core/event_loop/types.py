from collections.abc import Callable
from typing import Any, TypeAlias

Time: TypeAlias = float
DeltaTime: TypeAlias = float

TickCallback: TypeAlias = Callable[[], object]
TimerCallback: TypeAlias = Callable[[Any], object]


__all__ = [
    "Time",
    "DeltaTime",
    "TickCallback",
    "TimerCallback",
]
