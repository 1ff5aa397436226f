"""
Host editor interface.

whylson never talks to a concrete editor. Everything it needs from one
(documents, visible editors, virtual documents, prompts, notifications,
file watches) goes through EditorHost. The CLI ships a headless
implementation (whylson.headless); editor integrations provide their own.

Documents are identified by URI strings:
- plain absolute POSIX paths for files on disk
- "<scheme>:<path>" for virtual documents (e.g. "michelson:/p/a.tz")
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

FILE_SCHEME = "file"


def split_uri(uri: str) -> tuple[str, str]:
    """Split a URI into (scheme, path); plain paths are file URIs."""
    if uri.startswith("/") or ":" not in uri:
        return FILE_SCHEME, uri
    scheme, _, path = uri.partition(":")
    return scheme, path


class Disposable:
    """Handle that undoes a registration when disposed."""

    def __init__(self, on_dispose: Callable[[], Any]):
        self._on_dispose: Optional[Callable[[], Any]] = on_dispose

    def dispose(self) -> None:
        if self._on_dispose is not None:
            self._on_dispose()
            self._on_dispose = None


class EventEmitter(Generic[T]):
    """Minimal listener list, used for provider change notifications."""

    def __init__(self):
        self._listeners: list[Callable[[T], Any]] = []

    def event(self, listener: Callable[[T], Any]) -> Disposable:
        self._listeners.append(listener)
        return Disposable(lambda: self._listeners.remove(listener))

    def fire(self, value: T) -> None:
        for listener in list(self._listeners):
            listener(value)


@dataclass
class TextDocument:
    """
    A document open in the host.

    Attributes:
        uri: Path (file documents) or scheme-qualified URI (virtual documents)
        text: Current, possibly unsaved, contents
        version: Incremented by the host on every edit
        is_closed: Set by the host once the document is closed
    """
    uri: str
    text: str = ""
    version: int = 0
    is_closed: bool = False

    @property
    def scheme(self) -> str:
        return split_uri(self.uri)[0]

    @property
    def path(self) -> Path:
        return Path(split_uri(self.uri)[1])


class TextDocumentContentProvider(ABC):
    """Supplies the text of virtual documents under one scheme."""

    @abstractmethod
    def provide_text_document_content(self, uri: str) -> str:
        pass

    @property
    @abstractmethod
    def on_did_change(self) -> Callable[[Callable[[str], Any]], Disposable]:
        """Subscribe to "content of <uri> changed" notifications."""
        pass


class EditorHost(ABC):
    """
    Abstract host editor.

    Event subscription methods return a Disposable; listeners for document
    events may be plain functions or coroutine functions.
    """

    # -- workspace -------------------------------------------------------- #

    @abstractmethod
    def workspace_root(self) -> Optional[Path]:
        """First workspace folder, or None when no folder is open."""
        pass

    @abstractmethod
    def is_trusted(self) -> bool:
        """Whether the workspace is trusted to run tools."""
        pass

    # -- documents -------------------------------------------------------- #

    @abstractmethod
    def active_document(self) -> Optional[TextDocument]:
        """Document of the focused editor, if any."""
        pass

    @abstractmethod
    def visible_uris(self) -> set[str]:
        """URIs of the documents currently shown in editors."""
        pass

    @abstractmethod
    async def save_document(self, document: TextDocument) -> bool:
        """Persist a document's text to disk. Returns False on failure."""
        pass

    @abstractmethod
    async def open_text_document(self, uri: str) -> TextDocument:
        """
        Open (or return the already open) document for a URI.

        Virtual URIs are resolved through the registered content provider.
        """
        pass

    @abstractmethod
    async def show_text_document(
        self,
        document: TextDocument,
        *,
        beside: bool = True,
        preserve_focus: bool = True,
        preview: bool = True,
    ) -> None:
        """Show a document in an editor."""
        pass

    @abstractmethod
    def register_text_document_content_provider(
        self, scheme: str, provider: TextDocumentContentProvider
    ) -> Disposable:
        pass

    # -- events ----------------------------------------------------------- #

    @abstractmethod
    def on_did_save_text_document(self, listener: Callable[[TextDocument], Any]) -> Disposable:
        pass

    @abstractmethod
    def on_did_change_text_document(self, listener: Callable[[TextDocument], Any]) -> Disposable:
        pass

    @abstractmethod
    def on_did_close_text_document(self, listener: Callable[[TextDocument], Any]) -> Disposable:
        pass

    @abstractmethod
    def watch_file(self, path: Path, listener: Callable[[Path], Any]) -> Disposable:
        """Call listener whenever the file at path is created, changed or deleted."""
        pass

    # -- user interaction ------------------------------------------------- #

    @abstractmethod
    async def input_box(
        self,
        prompt: str,
        placeholder: str = "",
        validate: Optional[Callable[[str], Optional[str]]] = None,
    ) -> Optional[str]:
        """
        Ask the user for a string.

        validate returns an error message for unacceptable input, or None.

        Returns:
            The accepted input, or None if the user dismissed the prompt
        """
        pass

    @abstractmethod
    def show_information_message(self, message: str) -> None:
        pass

    @abstractmethod
    def show_warning_message(self, message: str) -> None:
        pass

    @abstractmethod
    def show_error_message(self, message: str) -> None:
        pass
