"""Data models shared by the document graph and the handle generators.

Server objects are read out of the raw document through these models so
that request synthesis works with validated, typed values.
"""

from typing import Any, Callable, Literal

from pydantic import BaseModel, ConfigDict

ParameterLocation = Literal["query", "header", "path", "cookie"]

HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")


class ServerVariable(BaseModel):
    """A substitution variable of a server URL template."""

    model_config = ConfigDict(extra="allow")

    default: str
    enum: list[str] | None = None
    description: str | None = None


class Server(BaseModel):
    """A target host for API requests."""

    model_config = ConfigDict(extra="allow")

    url: str
    description: str | None = None
    variables: dict[str, ServerVariable] | None = None

    @property
    def variable_defaults(self) -> dict[str, str]:
        if not self.variables:
            return {}
        return {name: variable.default for name, variable in self.variables.items()}


class HandleOptions(BaseModel):
    """Options for generating a Tool Handle from an operation."""

    # Overrides every server declared in the document
    server: Server | None = None
    # Applied to each rewritten JSON Schema object during tree shaking
    transform: Callable[[Any], Any] | None = None
