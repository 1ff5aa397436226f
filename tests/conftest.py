import inspect
import stat
import sys
from pathlib import Path

import pytest

from whylson.config import WhylsonConfig
from whylson.context import WhylsonContext
from whylson.host import Disposable, EditorHost, TextDocument, split_uri
from whylson.schemas import CompileFailure, CompileSuccess, ToolMissing

COUNTER_SOURCE = """type storage = int

let main (_, s : unit * storage) : operation list * storage = ([], s + 1)
"""

FAKE_LIGO = """#!{python}
import sys

args = sys.argv[1:]
source = args[2]
if "broken" in source:
    sys.stderr.write("File {{}}, line 3: syntax error\\nnear let\\n".format(source))
    sys.exit(1)
code = "{{ parameter unit ; storage int ; code {{ CDR ; NIL operation ; PAIR }} }}\\n# " + " ".join(args) + "\\n"
if "--output-file" in args:
    with open(args[args.index("--output-file") + 1], "w") as f:
        f.write(code)
else:
    sys.stdout.write(code)
"""


async def _dispatch(listeners, value):
    for listener in list(listeners):
        result = listener(value)
        if inspect.isawaitable(result):
            await result


class FakeHost(EditorHost):
    """In-memory editor host that records every interaction."""

    def __init__(self, root, trusted=True, answers=None):
        self.root = root
        self.trusted = trusted
        # Entrypoint prompt answers, consumed in order; None declines
        self.answers = list(answers or [])
        self.prompts = []
        self.documents = {}
        self.visible = set()
        self.active = None
        self.providers = {}
        self.save_listeners = []
        self.change_listeners = []
        self.close_listeners = []
        self.watchers = {}
        self.saves = []
        self.opened = []
        self.shown = []
        self.infos = []
        self.warnings = []
        self.errors = []

    def workspace_root(self):
        return self.root

    def is_trusted(self):
        return self.trusted

    def active_document(self):
        return self.active

    def visible_uris(self):
        return set(self.visible)

    async def save_document(self, document):
        document.path.write_text(document.text)
        self.saves.append((document.uri, document.text))
        await _dispatch(self.save_listeners, document)
        return True

    async def open_text_document(self, uri):
        document = self.documents.get(uri)
        if document is not None and not document.is_closed:
            return document
        scheme, path = split_uri(uri)
        if scheme == "file":
            text = Path(path).read_text()
        else:
            text = self.providers[scheme].provide_text_document_content(uri)
            self.opened.append(uri)
        document = TextDocument(uri=uri, text=text)
        self.documents[uri] = document
        return document

    async def show_text_document(self, document, *, beside=True, preserve_focus=True, preview=True):
        self.visible.add(document.uri)
        self.shown.append((document.uri, beside, preserve_focus, preview))

    def register_text_document_content_provider(self, scheme, provider):
        self.providers[scheme] = provider
        subscription = provider.on_did_change(self._refresh_virtual)

        def unregister():
            subscription.dispose()
            self.providers.pop(scheme, None)

        return Disposable(unregister)

    def _refresh_virtual(self, uri):
        document = self.documents.get(uri)
        if document is not None:
            document.text = self.providers[split_uri(uri)[0]].provide_text_document_content(uri)

    @staticmethod
    def _subscribe(listeners, listener):
        listeners.append(listener)
        return Disposable(lambda: listeners.remove(listener))

    def on_did_save_text_document(self, listener):
        return self._subscribe(self.save_listeners, listener)

    def on_did_change_text_document(self, listener):
        return self._subscribe(self.change_listeners, listener)

    def on_did_close_text_document(self, listener):
        return self._subscribe(self.close_listeners, listener)

    def watch_file(self, path, listener):
        self.watchers.setdefault(Path(path), []).append(listener)
        return Disposable(lambda: self.watchers[Path(path)].remove(listener))

    async def input_box(self, prompt, placeholder="", validate=None):
        self.prompts.append(prompt)
        return self.answers.pop(0) if self.answers else None

    def show_information_message(self, message):
        self.infos.append(message)

    def show_warning_message(self, message):
        self.warnings.append(message)

    def show_error_message(self, message):
        self.errors.append(message)

    # -- test drivers --

    async def open_source(self, path):
        document = await self.open_text_document(Path(path).as_posix())
        self.active = document
        self.visible.add(document.uri)
        return document

    async def edit(self, document, text):
        document.text = text
        document.version += 1
        await _dispatch(self.change_listeners, document)

    async def save(self, document):
        await self.save_document(document)

    async def close(self, document):
        document.is_closed = True
        self.visible.discard(document.uri)
        self.documents.pop(document.uri, None)
        await _dispatch(self.close_listeners, document)

    def hide(self, uri):
        self.visible.discard(uri)

    async def trigger_watch(self, path):
        for listener in list(self.watchers.get(Path(path), [])):
            listener(Path(path))


class FakeCompiler:
    """
    Scripted stand-in for LigoCompiler.

    Successful compilations produce "compiled:" + the source text read from
    disk, and write it to on_path when one is given.
    """

    def __init__(self, binary="ligo"):
        self.binary = binary
        self.available = True
        self.fail = False
        self.missing = False
        self.calls = []

    def verify_binary(self):
        return self.available

    @property
    def preview_calls(self):
        return [c for c in self.calls if c[1].on_path is None]

    @property
    def persist_calls(self):
        return [c for c in self.calls if c[1].on_path is not None]

    async def compile(self, source, options):
        self.calls.append((source, options))
        command = ("ligo", "compile", "contract", str(source))
        if self.missing:
            return ToolMissing(binary=self.binary, command=command)
        if self.fail:
            return CompileFailure(diagnostic="# syntax error", command=command, returncode=1)
        text = "compiled:" + Path(source).read_text()
        if options.on_path is not None:
            Path(options.on_path).parent.mkdir(parents=True, exist_ok=True)
            Path(options.on_path).write_text(text)
        return CompileSuccess(text=text, command=command)


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def counter_source(workspace):
    path = workspace / "src" / "counter.mligo"
    path.parent.mkdir()
    path.write_text(COUNTER_SOURCE)
    return path


@pytest.fixture
def host(workspace):
    return FakeHost(workspace)


@pytest.fixture
def compiler():
    return FakeCompiler()


@pytest.fixture
def config():
    return WhylsonConfig(auto_save_threshold=0.05)


@pytest.fixture
def context(host, config, compiler):
    return WhylsonContext(host, config, compiler=compiler)


@pytest.fixture
def make_host():
    return FakeHost


@pytest.fixture
def fake_ligo(tmp_path):
    """Executable script standing in for ligo.

    Sources whose name contains "broken" fail with a message on stderr,
    --output-file writes the Michelson to that file, otherwise it is
    printed on stdout.
    """
    path = tmp_path / "bin" / "ligo"
    path.parent.mkdir()
    path.write_text(FAKE_LIGO.format(python=sys.executable))
    path.chmod(path.stat().st_mode | stat.S_IEXEC | stat.S_IXGRP | stat.S_IXOTH)
    return path
