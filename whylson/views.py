"""
ViewManager - Read-only Michelson previews as virtual documents.

Each compiled contract gets at most one MichelsonView, keyed by its
"michelson:" URI. The view keeps the last rendered text in memory; the host
asks for it through provide_text_document_content, so previews never write
transient state to disk.

Open preview handles are treated as weak: a handle that was closed, or whose
editor is no longer visible, is replaced by reopening the document rather
than reused.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from whylson.host import EditorHost, EventEmitter, TextDocument, TextDocumentContentProvider

logger = logging.getLogger(__name__)


MICHELSON_SCHEME = "michelson"


def view_uri(artifact_path: Path | str) -> str:
    """Virtual URI of the preview for a Michelson artifact."""
    return f"{MICHELSON_SCHEME}:{Path(artifact_path).as_posix()}"


@dataclass
class MichelsonView:
    """
    Representation of an open Michelson preview.

    Attributes:
        ligo_path: The ligo document this preview belongs to
        contents: Last rendered Michelson (or commented diagnostic) text
        doc: Handle of the preview document, None until opened
    """
    ligo_path: Path
    contents: str
    doc: Optional[TextDocument] = None

    @property
    def is_open(self) -> bool:
        return self.doc is not None and not self.doc.is_closed


class ViewManager(TextDocumentContentProvider):
    """Manager of Michelson preview instances."""

    scheme = MICHELSON_SCHEME

    def __init__(self, host: EditorHost):
        self._host = host
        self._on_did_change: EventEmitter[str] = EventEmitter()
        self._views: dict[str, MichelsonView] = {}

    @property
    def on_did_change(self):
        return self._on_did_change.event

    def provide_text_document_content(self, uri: str) -> str:
        """
        Text of a preview, called by the host's virtual-document machinery.

        Args:
            uri: "michelson:" URI of the preview

        Returns:
            The stored contents, or a placeholder comment if none
        """
        view = self._views.get(uri)
        return view.contents if view else f"# Contents of {uri} are empty"

    def get_view(self, artifact_path: Path | str) -> Optional[MichelsonView]:
        return self._views.get(view_uri(artifact_path))

    def is_displayed(self, artifact_path: Path | str) -> bool:
        """Whether the preview for an artifact is visible in an editor."""
        return view_uri(artifact_path) in self._host.visible_uris()

    async def display(self, ligo_path: Path, artifact_path: Path, contents: str) -> MichelsonView:
        """
        Show Michelson text for a ligo document beside it.

        A visible, open preview is refreshed in place: its contents are
        replaced and a change notification is fired, without reopening or
        refocusing. Otherwise the preview is (re)opened and shown beside the
        source, keeping focus on the source editor.

        Args:
            ligo_path: The ligo document
            artifact_path: Its Michelson artifact (identifies the preview)
            contents: Michelson text to render

        Returns:
            The MichelsonView now holding contents
        """
        uri = view_uri(artifact_path)
        view = self._views.get(uri)

        if view is not None and view.is_open and self.is_displayed(artifact_path):
            view.contents = contents
            # fire triggers provide_text_document_content on the host side
            self._on_did_change.fire(uri)
            logger.debug(f"Refreshed preview {uri}")
            return view

        return await self._create_view(ligo_path, uri, contents, previous=view)

    async def _create_view(
        self,
        ligo_path: Path,
        uri: str,
        contents: str,
        previous: Optional[MichelsonView],
    ) -> MichelsonView:
        # The view must be registered before opening: opening asks the provider for text
        view = MichelsonView(ligo_path=ligo_path, contents=contents)
        self._views[uri] = view

        doc = await self._host.open_text_document(uri)
        if previous is not None and previous.doc is doc:
            # Host handed back the still-loaded document; make it re-read
            self._on_did_change.fire(uri)
        view.doc = doc

        await self._host.show_text_document(doc, beside=True, preserve_focus=True, preview=True)
        logger.debug(f"Opened preview {uri}")
        return view

    def forget(self, uri: str) -> None:
        """Drop the view for a closed preview document."""
        if self._views.pop(uri, None) is not None:
            logger.debug(f"Forgot preview {uri}")

    def clear(self) -> None:
        self._views.clear()
