"""
HeadlessHost - EditorHost for the command line.

Documents are read from and saved to disk, previews are rendered to a rich
console instead of editor panes, prompts go through click, and file watches
poll modification times on the event loop.
"""

import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from whylson.host import (
    FILE_SCHEME,
    Disposable,
    EditorHost,
    TextDocument,
    TextDocumentContentProvider,
    split_uri,
)
from whylson.utils import console as default_console

logger = logging.getLogger(__name__)


async def _dispatch(listeners: Iterable[Callable[[Any], Any]], value: Any) -> None:
    for listener in list(listeners):
        result = listener(value)
        if inspect.isawaitable(result):
            await result


def _mtime(path: Path) -> Optional[int]:
    try:
        return path.stat().st_mtime_ns
    except FileNotFoundError:
        return None


class HeadlessHost(EditorHost):
    """
    Terminal-backed host.

    Args:
        root: Workspace folder
        console: Console previews and notifications are printed to
        entrypoint: Answer for entrypoint prompts; when omitted the user is
            asked interactively (or the prompt is declined if not interactive)
        interactive: Whether click prompts may be used
        trusted: Workspace trust flag
        poll_interval: Seconds between mtime checks of watched files
    """

    def __init__(
        self,
        root: Optional[Path],
        console: Optional[Console] = None,
        entrypoint: Optional[str] = None,
        interactive: bool = True,
        trusted: bool = True,
        poll_interval: float = 0.5,
    ):
        self._root = Path(root).resolve() if root is not None else None
        self.console = console or default_console
        self._entrypoint = entrypoint
        self._interactive = interactive
        self._trusted = trusted
        self.poll_interval = poll_interval

        self._documents: dict[str, TextDocument] = {}
        self._visible: set[str] = set()
        self._active: Optional[TextDocument] = None
        self._providers: dict[str, TextDocumentContentProvider] = {}
        self._save_listeners: list[Callable] = []
        self._change_listeners: list[Callable] = []
        self._close_listeners: list[Callable] = []
        self.errors: list[str] = []

    # -- workspace -------------------------------------------------------- #

    def workspace_root(self) -> Optional[Path]:
        return self._root

    def is_trusted(self) -> bool:
        return self._trusted

    # -- documents -------------------------------------------------------- #

    def active_document(self) -> Optional[TextDocument]:
        return self._active

    def visible_uris(self) -> set[str]:
        return set(self._visible)

    async def open_source(self, path: Path) -> TextDocument:
        """Open a file from disk and make it the active document."""
        document = await self.open_text_document(Path(path).resolve().as_posix())
        self._active = document
        return document

    async def open_text_document(self, uri: str) -> TextDocument:
        document = self._documents.get(uri)
        if document is not None and not document.is_closed:
            return document

        scheme, path = split_uri(uri)
        if scheme == FILE_SCHEME:
            text = await asyncio.to_thread(Path(path).read_text, encoding="utf-8")
        else:
            provider = self._providers.get(scheme)
            if provider is None:
                raise ValueError(f"No content provider registered for scheme '{scheme}'")
            text = provider.provide_text_document_content(uri)

        document = TextDocument(uri=uri, text=text)
        self._documents[uri] = document
        return document

    async def reload_document(self, path: Path) -> TextDocument:
        """Re-read an open file document after it changed on disk."""
        uri = Path(path).resolve().as_posix()
        document = self._documents.get(uri)
        if document is None or document.is_closed:
            return await self.open_text_document(uri)
        document.text = await asyncio.to_thread(Path(uri).read_text, encoding="utf-8")
        document.version += 1
        return document

    async def show_text_document(
        self,
        document: TextDocument,
        *,
        beside: bool = True,
        preserve_focus: bool = True,
        preview: bool = True,
    ) -> None:
        self._visible.add(document.uri)
        if not preserve_focus:
            self._active = document
        self._render(document)

    async def save_document(self, document: TextDocument) -> bool:
        if document.scheme != FILE_SCHEME:
            return False
        try:
            await asyncio.to_thread(document.path.write_text, document.text, encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to save {document.path}: {e}")
            return False
        await self.fire_did_save(document)
        return True

    async def close_document(self, document: TextDocument) -> None:
        document.is_closed = True
        self._visible.discard(document.uri)
        self._documents.pop(document.uri, None)
        if self._active is document:
            self._active = None
        await _dispatch(self._close_listeners, document)

    def register_text_document_content_provider(
        self, scheme: str, provider: TextDocumentContentProvider
    ) -> Disposable:
        self._providers[scheme] = provider
        subscription = provider.on_did_change(self._on_virtual_change)

        def unregister():
            subscription.dispose()
            self._providers.pop(scheme, None)

        return Disposable(unregister)

    def _on_virtual_change(self, uri: str) -> None:
        document = self._documents.get(uri)
        provider = self._providers.get(split_uri(uri)[0])
        if document is None or document.is_closed or provider is None:
            return
        document.text = provider.provide_text_document_content(uri)
        document.version += 1
        if uri in self._visible:
            self._render(document)

    def _render(self, document: TextDocument) -> None:
        self.console.print(Panel(Text(document.text), title=Text(document.uri), title_align="left"))

    # -- events ----------------------------------------------------------- #

    @staticmethod
    def _subscribe(listeners: list, listener: Callable) -> Disposable:
        listeners.append(listener)
        return Disposable(lambda: listeners.remove(listener))

    def on_did_save_text_document(self, listener: Callable[[TextDocument], Any]) -> Disposable:
        return self._subscribe(self._save_listeners, listener)

    def on_did_change_text_document(self, listener: Callable[[TextDocument], Any]) -> Disposable:
        return self._subscribe(self._change_listeners, listener)

    def on_did_close_text_document(self, listener: Callable[[TextDocument], Any]) -> Disposable:
        return self._subscribe(self._close_listeners, listener)

    async def fire_did_save(self, document: TextDocument) -> None:
        await _dispatch(self._save_listeners, document)

    async def fire_did_change(self, document: TextDocument) -> None:
        await _dispatch(self._change_listeners, document)

    def watch_file(self, path: Path, listener: Callable[[Path], Any]) -> Disposable:
        task = asyncio.get_running_loop().create_task(self._poll_file(Path(path), listener))
        return Disposable(task.cancel)

    async def _poll_file(self, path: Path, listener: Callable[[Path], Any]) -> None:
        last = await asyncio.to_thread(_mtime, path)
        while True:
            await asyncio.sleep(self.poll_interval)
            current = await asyncio.to_thread(_mtime, path)
            if current != last:
                last = current
                await _dispatch([listener], path)

    async def watch_sources(self, sources: list[Path], stop: Optional[asyncio.Event] = None) -> None:
        """
        Treat on-disk modifications of sources as editor saves until stop is set.

        Args:
            sources: ligo files to poll
            stop: Event ending the loop (runs until cancelled when omitted)
        """
        stop = stop or asyncio.Event()
        paths = [Path(p).resolve() for p in sources]
        mtimes = {p: await asyncio.to_thread(_mtime, p) for p in paths}

        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

            for path in paths:
                current = await asyncio.to_thread(_mtime, path)
                if current is None or current == mtimes[path]:
                    continue
                mtimes[path] = current
                logger.debug(f"{path} changed on disk")
                document = await self.reload_document(path)
                await self.fire_did_save(document)

    # -- user interaction ------------------------------------------------- #

    async def input_box(
        self,
        prompt: str,
        placeholder: str = "",
        validate: Optional[Callable[[str], Optional[str]]] = None,
    ) -> Optional[str]:
        if self._entrypoint is not None:
            problem = validate(self._entrypoint) if validate else None
            if problem:
                self.show_error_message(problem)
                return None
            return self._entrypoint

        if not self._interactive:
            return None

        while True:
            try:
                value = await asyncio.to_thread(click.prompt, prompt, default=placeholder or None)
            except click.Abort:
                return None
            problem = validate(value) if validate else None
            if not problem:
                return value
            self.console.print(Text(problem, style="yellow"))

    def show_information_message(self, message: str) -> None:
        self.console.print(Text.assemble(("✓ ", "green"), message))

    def show_warning_message(self, message: str) -> None:
        self.console.print(Text.assemble(("! ", "yellow"), message))

    def show_error_message(self, message: str) -> None:
        self.errors.append(message)
        self.console.print(Text.assemble(("✗ ", "red"), message))
