# Core module
from .models import (
    Track,
    Difficulty,
    GameMode,
    GameConfig,
    AnswerOption,
    RoundState,
    RoundOutcome,
    RoundResult,
    GameSummary,
    SourceTier,
    StreamDescriptor,
    dedupe_tracks,
)
from .cache import AudioCache, AudioCacheEntry
from .evaluator import AnswerEvaluator, Feedback, Verdict, similarity
from .events import (
    GameEventSink,
    GuessEvent,
    SelectionEvent,
    SkipVoteEvent,
    HintRequest,
    StopRequested,
)
from .session import GameSession, SessionRegistry
from .orchestrator import RoundOrchestrator, Phase

__all__ = [
    "Track", "Difficulty", "GameMode", "GameConfig", "AnswerOption", "RoundState",
    "RoundOutcome", "RoundResult", "GameSummary", "SourceTier", "StreamDescriptor", "dedupe_tracks",
    "AudioCache", "AudioCacheEntry",
    "AnswerEvaluator", "Feedback", "Verdict", "similarity",
    "GameEventSink", "GuessEvent", "SelectionEvent", "SkipVoteEvent", "HintRequest", "StopRequested",
    "GameSession", "SessionRegistry",
    "RoundOrchestrator", "Phase",
]
