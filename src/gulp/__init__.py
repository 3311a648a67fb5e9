from .errors import AcquisitionError, EmptyContentError, UpstreamError, ValidationError
from .pivot import PivotSplit, pivot_index, split_at_pivot
from .playback import PlaybackState, PlaybackStateMachine, Session
from .scheduler import TimingScheduler, compute_delay
from .storage import DebouncedSaver, PersistedState, SessionStore
from .tokens import tokenize

__all__ = [
    "tokenize",
    "PivotSplit",
    "pivot_index",
    "split_at_pivot",
    "TimingScheduler",
    "compute_delay",
    "PersistedState",
    "SessionStore",
    "DebouncedSaver",
    "PlaybackState",
    "PlaybackStateMachine",
    "Session",
    "AcquisitionError",
    "ValidationError",
    "UpstreamError",
    "EmptyContentError",
]
