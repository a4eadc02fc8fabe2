"""Developer operations CLI for this repo.

The command surface is implemented with Typer and Rich. Every command is a
thin adapter around an external tool, driven by the project configuration in
``jolt_cli.config``.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
