"""Command line tools for the air quality aggregation service."""

from importlib import import_module
from types import ModuleType


def __getattr__(name: str) -> ModuleType:
    if name == "app":
        return import_module("cli.app")
    raise AttributeError(name)

# ``cli.app`` resolves to the module, not the Typer object inside it; use
# ``cli.app.app`` for the application.

__all__ = []
