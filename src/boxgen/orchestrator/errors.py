from __future__ import annotations


class ConfigError(Exception):
    """Raised when the build configuration cannot be resolved."""

    pass


class GenerationError(Exception):
    """
    A generation stage failed part-way through.

    `stage` names the emitter (functions, containers, gateway, terraform) so
    callers can report where output stopped; already written files are left
    in place.
    """

    def __init__(self, stage: str, message: str):
        super().__init__(message)
        self.stage = stage
