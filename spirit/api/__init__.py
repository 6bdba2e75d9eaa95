"""Model API client."""
from spirit.api.claude import CognitiveEngine, CognitiveEngineInitError

__all__ = ["CognitiveEngine", "CognitiveEngineInitError"]
