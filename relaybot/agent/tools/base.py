"""Base class for provider-callable tools."""

from abc import ABC, abstractmethod
from typing import Any


class Tool(ABC):
    """
    A function the model may ask us to run.

    Subclasses declare a JSON-schema `parameters` object; `to_schema` wraps it
    in the OpenAI-style function declaration sent with each request.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        pass

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        pass

    @abstractmethod
    async def execute(self, **kwargs: Any) -> str:
        pass

    def to_schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }
