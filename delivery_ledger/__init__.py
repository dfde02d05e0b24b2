"""Session artifact ledger for chained delivery workflows."""

from .artifact_store import Artifact, ArtifactStore
from .checklist import ChecklistState, ChecklistSynchronizer
from .context import CommandContext, CommandState, Draft, Ledger
from .resolver import SlugResolver
from .session_index import SessionIndex, SessionIndexEntry
from .sessions import create_session

__version__ = "0.1.0"

__all__ = [
    "Artifact",
    "ArtifactStore",
    "ChecklistState",
    "ChecklistSynchronizer",
    "CommandContext",
    "CommandState",
    "Draft",
    "Ledger",
    "SessionIndex",
    "SessionIndexEntry",
    "SlugResolver",
    "create_session",
]
