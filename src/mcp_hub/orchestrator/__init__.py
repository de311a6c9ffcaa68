from .model import ModelError, ModelStreamer
from .turn import ConversationTurn, TurnOrchestrator

__all__ = ["ConversationTurn", "ModelError", "ModelStreamer", "TurnOrchestrator"]
