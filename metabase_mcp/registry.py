"""Tool catalog: descriptors plus the handler each name routes to."""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type

from mcp.types import Tool, ToolAnnotations
from pydantic import BaseModel

Handler = Callable[[Any, Any], Awaitable[Any]]


def input_schema(model: Type[BaseModel]) -> Dict[str, Any]:
    """JSON Schema for a tool's arguments, as published in ``tools/list``."""
    schema = model.model_json_schema()
    schema.pop("title", None)
    schema.pop("description", None)
    schema.setdefault("properties", {})
    return schema


@dataclass(frozen=True)
class RegisteredTool:
    descriptor: Tool
    input_model: Type[BaseModel]
    handler: Handler

    @property
    def name(self) -> str:
        return self.descriptor.name

    @property
    def required(self) -> Tuple[str, ...]:
        return tuple(self.descriptor.inputSchema.get("required", ()))


class ToolRegistry:
    """Ordered name -> tool mapping, filled once at import time.

    Tools are listed in the order they were registered.
    """

    def __init__(self):
        self._tools: Dict[str, RegisteredTool] = {}

    def tool(
        self,
        name: str,
        description: str,
        input_model: Type[BaseModel],
        *,
        title: str,
        read_only: bool = False,
        destructive: bool = False,
        idempotent: bool = False,
    ) -> Callable[[Handler], Handler]:
        """Register the decorated coroutine as the handler for ``name``.

        The handler is called with the client and a validated ``input_model``.
        """
        descriptor = Tool(
            name=name,
            description=description,
            inputSchema=input_schema(input_model),
            annotations=ToolAnnotations(
                title=title,
                readOnlyHint=read_only,
                destructiveHint=destructive,
                idempotentHint=idempotent,
                openWorldHint=True,
            ),
        )

        def decorator(func: Handler) -> Handler:
            if name in self._tools:
                raise ValueError(f"Tool '{name}' is already registered")
            self._tools[name] = RegisteredTool(descriptor=descriptor, input_model=input_model, handler=func)
            return func

        return decorator

    def list(self) -> List[Tool]:
        return [t.descriptor for t in self._tools.values()]

    def get(self, name: str) -> Optional[RegisteredTool]:
        return self._tools.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)
