"""Abstract tool interface for model tool use."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from talon.errors import ToolValidationError

if TYPE_CHECKING:
    from talon.core.models import Session

_JSON_TYPES: dict[str, tuple[type, ...]] = {
    "string": (str,),
    "integer": (int,),
    "number": (int, float),
    "boolean": (bool,),
    "object": (dict,),
    "array": (list, tuple),
}


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """Provider-neutral tool definition."""

    name: str
    description: str
    input_schema: dict[str, Any]


@dataclass(frozen=True, slots=True)
class ToolContext:
    """What a tool may see of the turn invoking it."""

    session: Session


class Tool(ABC):
    """Base class for all model-callable tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name sent to the provider."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description for the model."""
        ...

    @property
    @abstractmethod
    def input_schema(self) -> dict[str, Any]:
        """JSON Schema dict describing accepted parameters."""
        ...

    @property
    def timeout(self) -> Optional[float]:
        """Per-tool timeout in seconds; None uses the invoker default."""
        return None

    @abstractmethod
    async def execute(self, context: ToolContext, **kwargs: Any) -> Any:
        """Run the tool and return a JSON-serializable result."""
        ...

    def validate(self, arguments: dict[str, Any]) -> None:
        """Check *arguments* against the schema's required keys and primitive types."""
        schema = self.input_schema
        properties = schema.get("properties", {})
        missing = [k for k in schema.get("required", []) if k not in arguments]
        if missing:
            raise ToolValidationError(self.name, f"missing required argument(s): {', '.join(missing)}")

        if schema.get("additionalProperties") is False:
            unknown = [k for k in arguments if k not in properties]
            if unknown:
                raise ToolValidationError(self.name, f"unexpected argument(s): {', '.join(unknown)}")

        for key, value in arguments.items():
            prop = properties.get(key, {})
            expected = _JSON_TYPES.get(prop.get("type", ""))
            if expected is None:
                continue
            # bool is an int subclass; only accept it where booleans are expected
            if isinstance(value, bool) and bool not in expected:
                raise ToolValidationError(self.name, f"argument '{key}' must be {prop['type']}")
            if not isinstance(value, expected):
                raise ToolValidationError(self.name, f"argument '{key}' must be {prop['type']}")
            allowed = prop.get("enum")
            if allowed is not None and value not in allowed:
                raise ToolValidationError(
                    self.name, f"argument '{key}' must be one of: {', '.join(map(str, allowed))}"
                )

    def to_spec(self) -> ToolSpec:
        return ToolSpec(name=self.name, description=self.description, input_schema=self.input_schema)
