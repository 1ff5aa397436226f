"""
Error classes for whylson.

These error types classify failures at the orchestration boundary:
- RegistryError: contracts.json could not be read or written
- EntrypointDeclined: the user cancelled the entrypoint prompt
- CompilationError: ligo rejected a contract (first or background compile)
- ArtifactNotFound: a registered contract has no compiled .tz yet
- LigoNotFound: the ligo binary is not installed

Error handling contract:
- Components raise these errors
- WhylsonContext catches them at command/event boundaries and reports them
- Nothing is retried automatically; retries are user-initiated
"""


class WhylsonError(Exception):
    """Base exception for whylson."""
    pass


class RegistryError(WhylsonError):
    """Base for contracts.json failures."""

    def __init__(self, message: str, path=None):
        super().__init__(message)
        self.path = path


class RegistryCorrupt(RegistryError):
    """
    contracts.json exists but cannot be parsed into contract entries.

    Non-fatal: the in-memory registry is treated as empty and the file
    is left untouched so the user can repair it.
    """
    pass


class RegistryWriteFailed(RegistryError):
    """
    contracts.json could not be written.

    The in-memory mirror is not updated when this is raised, so memory
    and disk never diverge.
    """
    pass


class EntrypointDeclined(WhylsonError):
    """The user dismissed the entrypoint prompt or entered nothing valid."""
    pass


class CompilationError(WhylsonError):
    """Base for ligo compilation failures."""

    def __init__(self, message: str, diagnostic: str = ""):
        super().__init__(message)
        self.diagnostic = diagnostic


class FirstCompilationFailed(CompilationError):
    """
    The first compilation after registering a contract failed.

    The freshly created entry is rolled back before this is reported.
    """
    pass


class BackgroundCompilationFailed(CompilationError):
    """
    A steady-state (on save / autosave) compilation failed.

    The entry is retained; a registered contract may be temporarily broken.
    """
    pass


class ArtifactNotFound(WhylsonError):
    """The compiled Michelson artifact for a registered contract is missing."""
    pass


class LigoNotFound(WhylsonError):
    """The ligo executable could not be found."""
    pass
