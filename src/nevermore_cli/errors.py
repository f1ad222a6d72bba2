"""Exception types shared by the Nevermore command-line tools."""


class NevermoreError(Exception):
    """Base class for every error the CLIs report to the user."""

    title = "Error"


class ConfigError(NevermoreError):
    """Raised when the local `nevermore.json` is missing or not valid JSON."""

    title = "Config Error"


class ScaffoldError(NevermoreError):
    """Raised when a project template cannot be copied or rendered."""

    title = "Scaffold Error"


class ArtifactReadError(NevermoreError):
    """Raised when a bundled worker/plugin cannot be read from disk."""

    title = "Artifact Error"
