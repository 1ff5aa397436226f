"""
WhylsonContext - Orchestrates registry, compiler and views for a workspace.

The context reacts to host document events and user commands:
1. Registration: an unregistered ligo document gets a ContractEntry once the
   user supplies an entrypoint; its first compilation must write the .tz
   artifact, otherwise the entry is rolled back
2. On save: when background compilation is on, compile in preview mode,
   render the text if the preview is visible, then compile again to keep
   the on-disk artifact current
3. On edit: while the preview is visible and auto_save is on, a debounced
   save -> compile -> display cycle runs once per quiet period
4. Commands: save contract, open Michelson view, erase contract data,
   remake the .whylson folder, start session (reserved)

Errors raised by the components stop here: they are logged and turned into
host notifications, never propagated to the host.
"""

import asyncio
import functools
import logging
from pathlib import Path
from typing import Optional

from whylson.compiler import LigoCompiler, options_for
from whylson.config import WhylsonConfig
from whylson.debounce import Debouncer
from whylson.errors import (
    ArtifactNotFound,
    BackgroundCompilationFailed,
    EntrypointDeclined,
    FirstCompilationFailed,
    RegistryCorrupt,
    RegistryWriteFailed,
    WhylsonError,
)
from whylson.host import Disposable, EditorHost, TextDocument
from whylson.paths import WhylsonPaths, is_ligo_file
from whylson.registry import ContractRegistry
from whylson.schemas import (
    CompilationResult,
    CompileSuccess,
    ContractEntry,
    ToolMissing,
    is_valid_entrypoint,
)
from whylson.tools.ligo import LigoAdapter
from whylson.utils import delete_file, path_exists, read_text, remake_dir
from whylson.views import MICHELSON_SCHEME, ViewManager

logger = logging.getLogger(__name__)


def _validate_entrypoint(value: str) -> Optional[str]:
    if is_valid_entrypoint(value.strip()):
        return None
    return "Entrypoint must start with a letter or '_' and contain only letters, digits, '_' or \"'\""


class WhylsonContext:
    """
    Encapsulation of the state behind a working ligo/Michelson pair view.

    Usage:
        context = WhylsonContext(host, load_config())
        await context.activate()
        ...
        context.deactivate()
    """

    def __init__(
        self,
        host: EditorHost,
        config: Optional[WhylsonConfig] = None,
        compiler: Optional[LigoCompiler] = None,
        views: Optional[ViewManager] = None,
    ):
        """
        Creates a WhylsonContext.

        Only establishes base values; nothing touches the disk until activate().

        Args:
            host: The editor host
            config: Settings (defaults when omitted)
            compiler: Compiler adapter (a ligo-backed one when omitted)
            views: View manager (one bound to host when omitted)
        """
        self._host = host
        self._config = config or WhylsonConfig()
        self._owns_compiler = compiler is None
        self._compiler = compiler or self._build_compiler(self._config)
        self._views = views or ViewManager(host)
        self._debouncer = Debouncer(self._config.auto_save_threshold)
        self._disposables: list[Disposable] = []
        self._compile_locks: dict[str, asyncio.Lock] = {}
        self._autosaving: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self._active = False

        self._paths: Optional[WhylsonPaths] = None
        self._registry: Optional[ContractRegistry] = None
        if self.is_workspace_available():
            self._paths = WhylsonPaths(host.workspace_root())
            self._registry = ContractRegistry(self._paths.contracts_json)
        else:
            host.show_warning_message("Whylson-Connector requires an available workspace to operate.")

    @staticmethod
    def _build_compiler(config: WhylsonConfig) -> LigoCompiler:
        return LigoCompiler(LigoAdapter(config.ligo_binary))

    @property
    def active(self) -> bool:
        return self._active

    @property
    def config(self) -> WhylsonConfig:
        return self._config

    @property
    def paths(self) -> Optional[WhylsonPaths]:
        return self._paths

    @property
    def registry(self) -> Optional[ContractRegistry]:
        return self._registry

    @property
    def views(self) -> ViewManager:
        return self._views

    @property
    def debouncer(self) -> Debouncer:
        return self._debouncer

    def is_workspace_available(self) -> bool:
        """Whether a trusted workspace folder is open."""
        return self._host.workspace_root() is not None and self._host.is_trusted()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def activate(self) -> bool:
        """
        Initialize the .whylson folder, load the registry and register
        providers, events and the registry file watch.

        Returns:
            True if the context is active afterwards
        """
        if self._paths is None:
            return False
        if self._active:
            return True

        await self.init_whylson_folder()
        await self._load_registry()

        self._disposables.append(
            self._host.register_text_document_content_provider(MICHELSON_SCHEME, self._views)
        )
        self._disposables.append(self._host.on_did_save_text_document(self.on_did_save))
        self._disposables.append(self._host.on_did_change_text_document(self.on_did_change))
        self._disposables.append(self._host.on_did_close_text_document(self.on_did_close))
        self._disposables.append(
            self._host.watch_file(self._paths.contracts_json, self._on_registry_file_changed)
        )
        self._active = True

        return self.checkups()

    def checkups(self) -> bool:
        """
        Verify that whylson can run; deactivates the context if not.

        Returns:
            True if all verifications passed
        """
        if not self._compiler.verify_binary():
            self._host.show_error_message(
                f"Whylson-Connector cannot run, ligo executable '{self._compiler.binary}' not found, aborting"
            )
            self.deactivate()
            return False
        return True

    def deactivate(self) -> None:
        """Cancel pending autosaves and release every registration."""
        self._debouncer.cancel_all()
        for disposable in self._disposables:
            disposable.dispose()
        self._disposables.clear()
        self._active = False

    async def init_whylson_folder(self) -> None:
        """Create .whylson/contracts.json and .whylson/bin-contracts if missing."""
        if not await path_exists(self._paths.contracts_json):
            await self.create_contracts_json()
        if not await path_exists(self._paths.bin_contracts):
            await self.create_contracts_dir(reset=False)

    async def create_contracts_json(self) -> bool:
        """Write an empty contracts.json, overwriting existing contents."""
        try:
            await self._registry.reset()
        except RegistryWriteFailed as e:
            logger.error(str(e))
            self._host.show_error_message('Unable to create ".whylson/contracts.json"')
            return False
        logger.info(f"Created contracts configuration file at {self._paths.contracts_json}")
        return True

    async def create_contracts_dir(self, reset: bool) -> bool:
        """
        Create .whylson/bin-contracts.

        Args:
            reset: Recursively delete existing contents first
        """
        try:
            await remake_dir(self._paths.bin_contracts, reset=reset)
        except OSError as e:
            logger.error(f"Failed to (re)create {self._paths.bin_contracts}: {e}")
            self._host.show_error_message('Unable to create ".whylson/bin-contracts" folder')
            return False
        logger.info(f"Created directory at {self._paths.bin_contracts}")
        return True

    async def _load_registry(self) -> None:
        try:
            await self._registry.load()
        except RegistryCorrupt as e:
            logger.error(str(e))
            self._host.show_error_message(
                'Failed to read ".whylson/contracts.json", continuing with an empty registry'
            )

    def _on_registry_file_changed(self, path: Path) -> None:
        self._spawn(self._reload_registry())

    async def _reload_registry(self) -> None:
        try:
            await self._registry.reload_external()
        except RegistryCorrupt as e:
            logger.error(str(e))
            self._host.show_error_message(
                'Failed to read ".whylson/contracts.json", continuing with an empty registry'
            )

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self) -> None:
        """Wait until pending autosaves and watcher reloads have finished."""
        while self._tasks or self._debouncer.is_busy():
            await self._debouncer.drain()
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def on_did_change_configuration(self, config: WhylsonConfig) -> None:
        """Swap in refreshed settings."""
        if self._owns_compiler and config.ligo_binary != self._config.ligo_binary:
            self._compiler = self._build_compiler(config)
        self._config = config
        self._debouncer.delay = config.auto_save_threshold
        logger.debug("Configurations changed!")

    # ------------------------------------------------------------------ #
    # Registration & compilation
    # ------------------------------------------------------------------ #

    async def prompt_entrypoint(self) -> str:
        """
        Ask the user for the contract entrypoint.

        Raises:
            EntrypointDeclined: If the prompt was dismissed or left invalid
        """
        value = await self._host.input_box(
            prompt="Entrypoint of the contract",
            placeholder="main",
            validate=_validate_entrypoint,
        )
        if value is None or not is_valid_entrypoint(value.strip()):
            raise EntrypointDeclined("No valid entrypoint given, aborting entry creation")
        return value.strip()

    async def create_contract_entry(self, source: Path) -> ContractEntry:
        """
        Register a ligo document in contracts.json.

        Raises:
            EntrypointDeclined: If the user gave no entrypoint
            RegistryWriteFailed: If contracts.json could not be written
        """
        entrypoint = await self.prompt_entrypoint()
        entry = ContractEntry.create(
            source,
            self._paths.michelson_of_ligo(source),
            entrypoint,
            self._config.default_flags,
        )
        await self._registry.upsert(entry)
        return entry

    async def compile_contract(self, entry: ContractEntry, persist: bool) -> CompilationResult:
        """
        Compile a registered contract once.

        Compilations of the same document never overlap.

        Args:
            entry: The registered contract
            persist: Write entry.on_path (True) or preview only (False)
        """
        lock = self._compile_locks.setdefault(entry.source, asyncio.Lock())
        async with lock:
            return await self._compiler.compile(entry.source_path, options_for(entry, persist))

    async def first_compilation(self, entry: ContractEntry) -> None:
        """
        Compile a freshly registered contract to its artifact.

        On failure the entry is rolled back, leaving contracts.json as it was
        before registration.

        Raises:
            FirstCompilationFailed: If ligo failed
        """
        existed = await path_exists(entry.artifact_path)
        result = await self.compile_contract(entry, persist=True)
        if isinstance(result, CompileSuccess):
            logger.info(
                f"Compiled {entry.title} to {entry.on_path}",
                extra={"event": "first_compilation", "metadata": {"source": entry.source}},
            )
            return

        try:
            await self._registry.remove(entry.source)
        except RegistryWriteFailed as e:
            logger.error(f"Rollback of {entry.source} failed: {e}")
        if not existed:
            try:
                await delete_file(entry.artifact_path)
            except OSError as e:
                logger.warning(f"Could not remove partial artifact {entry.on_path}: {e}")

        raise FirstCompilationFailed(
            f"Failed to compile {entry.title}, contract entry was not created",
            diagnostic=result.diagnostic,
        )

    async def _existing_artifact(self, entry: ContractEntry) -> Path:
        if not await path_exists(entry.artifact_path):
            raise ArtifactNotFound(f"{entry.on_path} not found")
        return entry.artifact_path

    async def find_contract_bin(self, document: TextDocument) -> Path:
        """
        Make sure a ligo document has its Michelson artifact.

        Unregistered documents are registered and compiled; registered ones
        whose artifact went missing are compiled again (the entry is kept).

        Returns:
            Path to the .tz artifact

        Raises:
            EntrypointDeclined, RegistryWriteFailed, FirstCompilationFailed,
            BackgroundCompilationFailed
        """
        source = document.path
        entry = self._registry.find(source)

        if entry is None:
            entry = await self.create_contract_entry(source)
            await self.first_compilation(entry)
            return entry.artifact_path

        try:
            return await self._existing_artifact(entry)
        except ArtifactNotFound as e:
            logger.info(f"{e}, recompiling {entry.title}")

        result = await self.compile_contract(entry, persist=True)
        if not isinstance(result, CompileSuccess):
            raise BackgroundCompilationFailed(
                f"Failed to compile {entry.title}", diagnostic=result.diagnostic
            )
        return entry.artifact_path

    async def refresh_contract(self, document: TextDocument, entry: ContractEntry, force: bool = False) -> bool:
        """
        Recompile a registered contract after its document was saved.

        Two separate compilations run: a preview-mode one whose text goes to
        the view, and, if it succeeded, one writing the artifact to disk.

        Args:
            document: The saved ligo document
            entry: Its registry entry
            force: Compile even if on-save background compilation is off

        Returns:
            True if the contract compiled
        """
        artifact = entry.artifact_path
        if not (force or self._config.on_save_background_compilation):
            return False
        open_view = self._config.on_save_actions.open_view

        result = await self.compile_contract(entry, persist=False)

        if isinstance(result, CompileSuccess):
            # The preview may have been closed while ligo ran
            if open_view or self._views.is_displayed(artifact):
                await self._views.display(document.path, artifact, result.text)
            persisted = await self.compile_contract(entry, persist=True)
            if not isinstance(persisted, CompileSuccess):
                logger.warning(f"Preview of {entry.title} compiled but writing {entry.on_path} failed")
            return True

        error = BackgroundCompilationFailed(f"Failed to compile {entry.title}", diagnostic=result.diagnostic)
        logger.warning(
            str(error),
            extra={"event": "background_compilation_failed", "metadata": {"source": entry.source}},
        )
        if self._views.is_displayed(artifact):
            await self._views.display(document.path, artifact, result.diagnostic)
        if isinstance(result, ToolMissing):
            self._host.show_error_message(f"ligo executable '{result.binary}' not found")
        return False

    # ------------------------------------------------------------------ #
    # Events
    # ------------------------------------------------------------------ #

    async def on_did_save(self, document: TextDocument) -> None:
        """Handle a saved document."""
        if not self._active or document.scheme == MICHELSON_SCHEME or not is_ligo_file(document.path):
            return

        # The autosave cycle compiles by itself
        if document.path.as_posix() in self._autosaving:
            return

        entry = self._registry.find(document.path)
        if entry is not None:
            await self.refresh_contract(document, entry)
            return

        if not self._config.on_save_actions.create_entry:
            return

        try:
            artifact = await self.find_contract_bin(document)
            if self._config.on_save_actions.open_view:
                await self._views.display(document.path, artifact, await read_text(artifact))
        except WhylsonError as e:
            self._report(e)
        except (OSError, UnicodeDecodeError) as e:
            self._host.show_error_message(f"Unable to read Michelson contract: {e}")

    def on_did_change(self, document: TextDocument) -> None:
        """Schedule an autosave cycle for an edited document with a visible preview."""
        if not self._active or not self._config.auto_save:
            return
        if document.scheme == MICHELSON_SCHEME or not is_ligo_file(document.path):
            return

        entry = self._registry.find(document.path)
        if entry is None or not self._views.is_displayed(entry.artifact_path):
            return

        self._debouncer.schedule(
            document.path.as_posix(),
            functools.partial(self._autosave_cycle, document),
            delay=self._config.auto_save_threshold,
        )

    async def _autosave_cycle(self, document: TextDocument) -> None:
        if document.is_closed:
            return

        source = document.path.as_posix()
        self._autosaving.add(source)
        try:
            saved = await self._host.save_document(document)
        finally:
            self._autosaving.discard(source)

        if not saved:
            logger.warning(f"Autosave of {source} failed")
            return

        entry = self._registry.find(document.path)
        if entry is None:
            return
        await self.refresh_contract(document, entry, force=True)

    def on_did_close(self, document: TextDocument) -> None:
        """Forget closed previews and cancel autosaves of closed sources."""
        if document.scheme == MICHELSON_SCHEME:
            self._views.forget(document.uri)
        elif is_ligo_file(document.path):
            self._debouncer.cancel(document.path.as_posix())

    # ------------------------------------------------------------------ #
    # Commands
    # ------------------------------------------------------------------ #

    def _ligo_document(self, document: Optional[TextDocument]) -> Optional[TextDocument]:
        if self._paths is None:
            self._host.show_warning_message("Whylson-Connector requires an available workspace to operate.")
            return None
        document = document or self._host.active_document()
        if document is None or document.scheme == MICHELSON_SCHEME or not is_ligo_file(document.path):
            self._host.show_warning_message("Whylson commands require an active ligo document.")
            return None
        return document

    async def open_michelson_view(self, document: Optional[TextDocument] = None) -> bool:
        """
        Open the Michelson view for a ligo document (the active one by default).

        Returns:
            True if the view shows the contract
        """
        document = self._ligo_document(document)
        if document is None:
            return False

        try:
            artifact = await self.find_contract_bin(document)
        except WhylsonError as e:
            self._report(e)
            return False

        try:
            contract_text = await read_text(artifact)
        except (OSError, UnicodeDecodeError) as e:
            logger.error(f"Failed to read {artifact}: {e}")
            self._host.show_error_message(f"Unable to read Michelson contract {artifact.name}")
            return False

        await self._views.display(document.path, artifact, contract_text)
        return True

    async def save_contract(self, document: Optional[TextDocument] = None) -> bool:
        """
        Compile a ligo document's artifact to disk, registering it first if needed.

        Returns:
            True if the artifact is up to date
        """
        document = self._ligo_document(document)
        if document is None:
            return False

        entry = self._registry.find(document.path)
        try:
            if entry is None:
                artifact = await self.find_contract_bin(document)
            else:
                result = await self.compile_contract(entry, persist=True)
                if not isinstance(result, CompileSuccess):
                    raise BackgroundCompilationFailed(
                        f"Failed to compile {entry.title}", diagnostic=result.diagnostic
                    )
                artifact = entry.artifact_path
        except WhylsonError as e:
            self._report(e)
            return False

        self._host.show_information_message(f"Saved Michelson contract to {artifact}")
        return True

    async def erase_contract_data(self, document: Optional[TextDocument] = None) -> bool:
        """
        Remove a ligo document's registry entry and delete its artifact.

        Both steps are attempted even if the other fails.

        Returns:
            True if both succeeded
        """
        document = self._ligo_document(document)
        if document is None:
            return False

        source = document.path
        self._debouncer.cancel(source.as_posix())
        entry = self._registry.find(source)
        artifact = entry.artifact_path if entry else self._paths.michelson_of_ligo(source)
        ok = True

        try:
            removed = await self._registry.remove(source)
            if not removed:
                logger.info(f"No contract entry for {source}")
        except RegistryWriteFailed as e:
            logger.error(str(e))
            self._host.show_error_message(f"Unable to remove contract entry for {source.name}")
            ok = False

        try:
            await delete_file(artifact)
        except OSError as e:
            logger.error(f"Failed to delete {artifact}: {e}")
            self._host.show_error_message(f"Unable to delete {artifact.name}")
            ok = False

        if ok:
            self._host.show_information_message(f"Erased contract data for {source.name}")
        return ok

    async def remake_dot_whylson(self) -> bool:
        """Wipe out the .whylson data and recreate it empty."""
        if self._paths is None:
            self._host.show_warning_message("Whylson-Connector requires an available workspace to operate.")
            return False
        self._debouncer.cancel_all()
        created_json = await self.create_contracts_json()
        created_dir = await self.create_contracts_dir(reset=True)
        return created_json and created_dir

    async def start_session(self) -> bool:
        """Future Whylson verification session."""
        self._host.show_error_message("Not implemented yet.")
        return False

    # ------------------------------------------------------------------ #
    # Reporting
    # ------------------------------------------------------------------ #

    def _report(self, error: WhylsonError) -> None:
        if isinstance(error, EntrypointDeclined):
            logger.info(str(error))
            return

        if isinstance(error, (FirstCompilationFailed, BackgroundCompilationFailed)):
            logger.error(
                f"{error}\n{error.diagnostic}",
                extra={"event": "compilation_failed", "metadata": {"diagnostic": error.diagnostic}},
            )
        else:
            logger.error(str(error))
        self._host.show_error_message(str(error))
