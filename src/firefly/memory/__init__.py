"""Memory module: fact storage, retrieval, prompting and decay."""

from .basics import friend_basics_ops
from .classify import MemoryMode, TurnClass, TurnClassifier
from .errors import CapabilityError, FireflyMemoryError, StoreError, ValidationError
from .extractor import OperationExtractor
from .jobs import DecayJob, DecayReport
from .manager import MemoryManager, TurnContext
from .models import MemoryFact, OperationType, Owner, RevealPolicy
from .protocol import ApplyReport, MemoryProtocol, OperationStatus
from .retrieval import RetrievalMode, RetrievalOptions, Retriever
from .schema import MemoryOperation
from .store import MemoryStore

__all__ = [
    "ApplyReport",
    "CapabilityError",
    "DecayJob",
    "DecayReport",
    "FireflyMemoryError",
    "friend_basics_ops",
    "MemoryFact",
    "MemoryManager",
    "MemoryMode",
    "MemoryOperation",
    "MemoryProtocol",
    "MemoryStore",
    "OperationExtractor",
    "OperationStatus",
    "OperationType",
    "Owner",
    "RetrievalMode",
    "RetrievalOptions",
    "Retriever",
    "RevealPolicy",
    "StoreError",
    "TurnClass",
    "TurnClassifier",
    "TurnContext",
    "ValidationError",
]
