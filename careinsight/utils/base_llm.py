"""Text-generation service interface."""

from abc import ABC, abstractmethod
from typing import Optional


class TextGenerator(ABC):
    """Prompt in, free text out. No structured-output guarantee."""

    model_id: str = 'unknown'

    @abstractmethod
    def generate(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """Return generated text for a single prompt."""
