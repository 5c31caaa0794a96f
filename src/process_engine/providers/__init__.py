"""
Cognitive backends available to processes.
"""

from .base import CognitiveBackend
from .ollama_client import OllamaClient, OllamaConfig

__all__ = ["CognitiveBackend", "OllamaClient", "OllamaConfig"]
