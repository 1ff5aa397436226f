"""Tests for whylson.context module.

Covers activation, registration with rollback, on-save refreshes, the
debounced autosave cycle, commands and registry watcher reloads.
"""

import asyncio
import json

import pytest

from whylson.config import OnSaveActions, WhylsonConfig
from whylson.context import WhylsonContext
from whylson.schemas import ContractEntry
from whylson.views import view_uri

from conftest import COUNTER_SOURCE


def _registry_json(workspace):
    return json.loads((workspace / ".whylson" / "contracts.json").read_text())


def _artifact(workspace, stem="counter"):
    return workspace / ".whylson" / "bin-contracts" / f"{stem}.tz"


async def _open_registered(host, context, source, entrypoint="main"):
    """Activate, register source and display its preview."""
    await context.activate()
    host.answers.append(entrypoint)
    doc = await host.open_source(source)
    assert await context.open_michelson_view(doc)
    return doc


class TestActivate:
    """Tests for WhylsonContext.activate()."""

    @pytest.mark.asyncio
    async def test_creates_dot_whylson(self, context, workspace):
        assert await context.activate() is True

        assert context.active
        assert (workspace / ".whylson" / "contracts.json").read_text() == "[]"
        assert (workspace / ".whylson" / "bin-contracts").is_dir()

    @pytest.mark.asyncio
    async def test_registers_provider_listeners_and_watch(self, context, host, workspace):
        await context.activate()

        assert "michelson" in host.providers
        assert len(host.save_listeners) == 1
        assert len(host.change_listeners) == 1
        assert len(host.close_listeners) == 1
        assert workspace / ".whylson" / "contracts.json" in host.watchers

    @pytest.mark.asyncio
    async def test_keeps_existing_registry(self, context, workspace, counter_source):
        entry = ContractEntry.create(counter_source, _artifact(workspace), "main")
        dot = workspace / ".whylson"
        dot.mkdir()
        (dot / "contracts.json").write_text(json.dumps([entry.to_dict()]))

        await context.activate()

        assert context.registry.find(counter_source) == entry
        assert _registry_json(workspace) == [entry.to_dict()]

    @pytest.mark.asyncio
    async def test_corrupt_registry_is_reported_not_overwritten(self, context, host, workspace):
        dot = workspace / ".whylson"
        dot.mkdir()
        (dot / "contracts.json").write_text("{not json")

        assert await context.activate() is True

        assert len(context.registry) == 0
        assert host.errors
        assert (dot / "contracts.json").read_text() == "{not json"

    @pytest.mark.asyncio
    async def test_wrongly_typed_registry_field_is_reported(self, context, host, workspace):
        dot = workspace / ".whylson"
        dot.mkdir()
        raw = json.dumps([{"source": "/p/a.mligo", "onPath": "/p/a.tz", "entrypoint": 5}])
        (dot / "contracts.json").write_text(raw)

        assert await context.activate() is True

        assert len(context.registry) == 0
        assert host.errors
        assert (dot / "contracts.json").read_text() == raw

    @pytest.mark.asyncio
    async def test_missing_ligo_deactivates(self, context, host, compiler):
        compiler.available = False

        assert await context.activate() is False

        assert not context.active
        assert any("ligo" in e for e in host.errors)
        assert host.save_listeners == []

    @pytest.mark.asyncio
    async def test_untrusted_workspace(self, make_host, workspace, config, compiler):
        host = make_host(workspace, trusted=False)
        context = WhylsonContext(host, config, compiler=compiler)

        assert await context.activate() is False
        assert host.warnings
        assert not (workspace / ".whylson").exists()

    @pytest.mark.asyncio
    async def test_no_workspace(self, make_host, config, compiler):
        host = make_host(None)
        context = WhylsonContext(host, config, compiler=compiler)

        assert await context.activate() is False
        assert await context.open_michelson_view() is False
        assert await context.remake_dot_whylson() is False
        assert len(host.warnings) == 3

    @pytest.mark.asyncio
    async def test_deactivate_disposes_everything(self, context, host):
        await context.activate()
        context.deactivate()

        assert not context.active
        assert host.providers == {}
        assert host.save_listeners == []
        assert host.change_listeners == []


class TestRegistration:
    """Tests for first registration through open_michelson_view."""

    @pytest.mark.asyncio
    async def test_open_view_registers_and_displays(self, context, host, workspace, counter_source):
        await context.activate()
        host.answers.append("main")
        doc = await host.open_source(counter_source)

        assert await context.open_michelson_view(doc) is True

        artifact = _artifact(workspace)
        records = _registry_json(workspace)
        assert records == [{
            "title": "counter",
            "source": counter_source.as_posix(),
            "onPath": artifact.as_posix(),
            "entrypoint": "main",
            "flags": ["--michelson-comments", "location"],
        }]
        assert artifact.read_text() == "compiled:" + COUNTER_SOURCE
        assert context.views.get_view(artifact).contents == "compiled:" + COUNTER_SOURCE
        assert host.shown == [(view_uri(artifact), True, True, True)]

    @pytest.mark.asyncio
    async def test_first_compilation_writes_artifact(self, context, host, compiler, counter_source, workspace):
        await _open_registered(host, context, counter_source)

        assert len(compiler.calls) == 1
        _, options = compiler.calls[0]
        assert options.on_path == _artifact(workspace)
        assert options.entrypoint == "main"

    @pytest.mark.asyncio
    async def test_uses_active_document_by_default(self, context, host, counter_source):
        await context.activate()
        host.answers.append("main")
        await host.open_source(counter_source)

        assert await context.open_michelson_view() is True
        assert context.registry.find(counter_source) is not None

    @pytest.mark.asyncio
    async def test_failed_first_compilation_rolls_back(self, context, host, compiler, workspace, counter_source):
        await context.activate()
        before = (workspace / ".whylson" / "contracts.json").read_text()
        compiler.fail = True
        host.answers.append("main")
        doc = await host.open_source(counter_source)

        assert await context.open_michelson_view(doc) is False

        assert (workspace / ".whylson" / "contracts.json").read_text() == before
        assert context.registry.find(counter_source) is None
        assert not _artifact(workspace).exists()
        assert host.errors
        assert host.shown == []

    @pytest.mark.asyncio
    async def test_rollback_keeps_other_entries(self, context, host, compiler, workspace, counter_source):
        other = workspace / "src" / "token.jsligo"
        other.write_text("export const main = ...")
        await _open_registered(host, context, other)
        before = (workspace / ".whylson" / "contracts.json").read_text()

        compiler.fail = True
        host.answers.append("main")
        assert await context.open_michelson_view(await host.open_source(counter_source)) is False

        assert (workspace / ".whylson" / "contracts.json").read_text() == before
        assert [e.title for e in context.registry.entries] == ["token"]

    @pytest.mark.asyncio
    async def test_declined_entrypoint_aborts_silently(self, context, host, compiler, workspace, counter_source):
        await context.activate()
        doc = await host.open_source(counter_source)

        assert await context.open_michelson_view(doc) is False

        assert host.prompts
        assert _registry_json(workspace) == []
        assert compiler.calls == []
        assert host.errors == []

    @pytest.mark.asyncio
    async def test_invalid_entrypoint_is_declined(self, context, host, workspace, counter_source):
        await context.activate()
        host.answers.append("1main")

        assert await context.open_michelson_view(await host.open_source(counter_source)) is False
        assert _registry_json(workspace) == []

    @pytest.mark.asyncio
    async def test_non_ligo_document_rejected(self, context, host, workspace):
        await context.activate()
        readme = workspace / "README.md"
        readme.write_text("# hi")

        assert await context.open_michelson_view(await host.open_source(readme)) is False
        assert host.warnings
        assert host.prompts == []

    @pytest.mark.asyncio
    async def test_missing_artifact_is_recompiled_without_prompt(self, context, host, workspace, counter_source):
        doc = await _open_registered(host, context, counter_source)
        _artifact(workspace).unlink()

        assert await context.open_michelson_view(doc) is True

        assert len(host.prompts) == 1
        assert _artifact(workspace).exists()

    @pytest.mark.asyncio
    async def test_missing_artifact_failure_keeps_entry(self, context, host, compiler, workspace, counter_source):
        doc = await _open_registered(host, context, counter_source)
        _artifact(workspace).unlink()
        compiler.fail = True

        assert await context.open_michelson_view(doc) is False

        assert context.registry.find(counter_source) is not None
        assert host.errors


class TestOnSave:
    """Tests for steady-state compilation on save."""

    @pytest.mark.asyncio
    async def test_save_refreshes_preview_in_place(self, context, host, compiler, workspace, counter_source):
        doc = await _open_registered(host, context, counter_source)
        compiler.calls.clear()

        doc.text = COUNTER_SOURCE + "\n(* v2 *)\n"
        await host.save(doc)

        artifact = _artifact(workspace)
        assert len(compiler.preview_calls) == 1
        assert len(compiler.persist_calls) == 1
        assert context.views.get_view(artifact).contents == "compiled:" + doc.text
        assert artifact.read_text() == "compiled:" + doc.text
        # The open preview is updated without opening a second document
        assert host.opened == [view_uri(artifact)]
        assert host.documents[view_uri(artifact)].text == "compiled:" + doc.text

    @pytest.mark.asyncio
    async def test_hidden_preview_compiles_without_display(self, context, host, compiler, workspace, counter_source):
        doc = await _open_registered(host, context, counter_source)
        artifact = _artifact(workspace)
        host.hide(view_uri(artifact))
        compiler.calls.clear()

        doc.text = "(* v2 *)"
        await host.save(doc)

        assert len(compiler.preview_calls) == 1
        assert len(compiler.persist_calls) == 1
        assert context.views.get_view(artifact).contents == "compiled:" + COUNTER_SOURCE
        assert artifact.read_text() == "compiled:(* v2 *)"

    @pytest.mark.asyncio
    async def test_background_compilation_disabled(self, context, host, compiler, workspace, counter_source):
        context.config.on_save_background_compilation = False
        doc = await _open_registered(host, context, counter_source)
        host.hide(view_uri(_artifact(workspace)))
        compiler.calls.clear()

        await host.save(doc)

        assert compiler.calls == []

    @pytest.mark.asyncio
    async def test_background_compilation_disabled_with_visible_preview(
        self, context, host, compiler, workspace, counter_source
    ):
        context.config.on_save_background_compilation = False
        doc = await _open_registered(host, context, counter_source)
        artifact = _artifact(workspace)
        compiler.calls.clear()

        doc.text = "(* v2 *)"
        await host.save(doc)

        assert compiler.calls == []
        assert context.views.get_view(artifact).contents == "compiled:" + COUNTER_SOURCE
        assert artifact.read_text() == "compiled:" + COUNTER_SOURCE

    @pytest.mark.asyncio
    async def test_failure_shows_diagnostic_and_keeps_entry(self, context, host, compiler, workspace, counter_source):
        doc = await _open_registered(host, context, counter_source)
        compiler.fail = True
        compiler.calls.clear()

        await host.save(doc)

        assert context.views.get_view(_artifact(workspace)).contents == "# syntax error"
        assert context.registry.find(counter_source) is not None
        assert compiler.persist_calls == []
        assert host.errors == []

    @pytest.mark.asyncio
    async def test_unregistered_save_does_nothing_by_default(self, context, host, compiler, counter_source):
        await context.activate()
        doc = await host.open_source(counter_source)

        await host.save(doc)

        assert host.prompts == []
        assert compiler.calls == []

    @pytest.mark.asyncio
    async def test_on_save_actions_create_and_open(self, context, host, workspace, counter_source):
        context.config.on_save_actions = OnSaveActions(create_entry=True, open_view=True)
        await context.activate()
        host.answers.append("main")
        doc = await host.open_source(counter_source)

        await host.save(doc)

        assert context.registry.find(counter_source).entrypoint == "main"
        assert view_uri(_artifact(workspace)) in host.visible

    @pytest.mark.asyncio
    async def test_open_view_action_reveals_preview(self, context, host, workspace, counter_source):
        context.config.on_save_actions = OnSaveActions(open_view=True)
        doc = await _open_registered(host, context, counter_source)
        uri = view_uri(_artifact(workspace))
        host.hide(uri)

        await host.save(doc)

        assert uri in host.visible

    @pytest.mark.asyncio
    async def test_preview_documents_are_ignored(self, context, host, compiler, workspace, counter_source):
        await _open_registered(host, context, counter_source)
        compiler.calls.clear()

        preview = host.documents[view_uri(_artifact(workspace))]
        await context.on_did_save(preview)

        assert compiler.calls == []


class TestAutosave:
    """Tests for the debounced edit -> save -> compile -> display cycle."""

    @pytest.mark.asyncio
    async def test_burst_of_edits_runs_one_cycle(self, context, host, compiler, workspace, counter_source):
        doc = await _open_registered(host, context, counter_source)
        compiler.calls.clear()

        await host.edit(doc, "(* v1 *)")
        await host.edit(doc, "(* v2 *)")
        await host.edit(doc, "(* v3 *)")
        assert context.debouncer.is_pending(counter_source.as_posix())

        await context.wait_idle()

        assert host.saves == [(doc.uri, "(* v3 *)")]
        assert len(compiler.preview_calls) == 1
        assert len(compiler.persist_calls) == 1
        assert context.views.get_view(_artifact(workspace)).contents == "compiled:(* v3 *)"

    @pytest.mark.asyncio
    async def test_cycle_compiles_with_background_compilation_disabled(
        self, context, host, compiler, workspace, counter_source
    ):
        context.config.on_save_background_compilation = False
        doc = await _open_registered(host, context, counter_source)
        compiler.calls.clear()

        await host.edit(doc, "(* v1 *)")
        await context.wait_idle()

        assert len(compiler.preview_calls) == 1
        assert len(compiler.persist_calls) == 1
        assert context.views.get_view(_artifact(workspace)).contents == "compiled:(* v1 *)"

    @pytest.mark.asyncio
    async def test_spaced_edits_run_one_cycle_each(self, context, host, compiler, counter_source):
        doc = await _open_registered(host, context, counter_source)
        compiler.calls.clear()

        for version in range(3):
            await host.edit(doc, f"(* v{version} *)")
            await context.wait_idle()

        assert len(host.saves) == 3
        assert len(compiler.preview_calls) == 3

    @pytest.mark.asyncio
    async def test_disabled_autosave(self, context, host, counter_source):
        context.config.auto_save = False
        doc = await _open_registered(host, context, counter_source)

        await host.edit(doc, "(* v1 *)")

        assert not context.debouncer.is_pending(counter_source.as_posix())

    @pytest.mark.asyncio
    async def test_hidden_preview_does_not_schedule(self, context, host, workspace, counter_source):
        doc = await _open_registered(host, context, counter_source)
        host.hide(view_uri(_artifact(workspace)))

        await host.edit(doc, "(* v1 *)")

        assert not context.debouncer.is_pending(counter_source.as_posix())

    @pytest.mark.asyncio
    async def test_closing_source_cancels_pending_cycle(self, context, host, counter_source):
        doc = await _open_registered(host, context, counter_source)

        await host.edit(doc, "(* v1 *)")
        await host.close(doc)
        await context.wait_idle()

        assert not context.debouncer.is_pending(counter_source.as_posix())
        assert host.saves == []

    @pytest.mark.asyncio
    async def test_configuration_change_updates_threshold(self, context):
        context.on_did_change_configuration(WhylsonConfig(auto_save_threshold=2.5))

        assert context.debouncer.delay == 2.5
        assert context.config.auto_save_threshold == 2.5


class TestCommands:
    """Tests for the user commands."""

    @pytest.mark.asyncio
    async def test_erase_then_reopen_registers_again(self, context, host, workspace, counter_source):
        doc = await _open_registered(host, context, counter_source)

        assert await context.erase_contract_data(doc) is True

        assert _registry_json(workspace) == []
        assert not _artifact(workspace).exists()

        host.answers.append("start")
        assert await context.open_michelson_view(doc) is True
        assert len(host.prompts) == 2
        assert context.registry.find(counter_source).entrypoint == "start"

    @pytest.mark.asyncio
    async def test_erase_cancels_pending_autosave(self, context, host, counter_source):
        doc = await _open_registered(host, context, counter_source)

        await host.edit(doc, "(* v1 *)")
        await context.erase_contract_data(doc)

        assert not context.debouncer.is_pending(counter_source.as_posix())

    @pytest.mark.asyncio
    async def test_erase_unregistered_document(self, context, host, counter_source):
        await context.activate()

        assert await context.erase_contract_data(await host.open_source(counter_source)) is True

    @pytest.mark.asyncio
    async def test_save_contract_registers_unregistered(self, context, host, workspace, counter_source):
        await context.activate()
        host.answers.append("main")

        assert await context.save_contract(await host.open_source(counter_source)) is True

        assert _artifact(workspace).exists()
        assert host.infos

    @pytest.mark.asyncio
    async def test_save_contract_recompiles_registered(self, context, host, compiler, workspace, counter_source):
        doc = await _open_registered(host, context, counter_source)
        counter_source.write_text("(* updated *)")
        compiler.calls.clear()

        assert await context.save_contract(doc) is True

        assert len(compiler.persist_calls) == 1
        assert _artifact(workspace).read_text() == "compiled:(* updated *)"

    @pytest.mark.asyncio
    async def test_save_contract_failure_keeps_entry(self, context, host, compiler, counter_source):
        doc = await _open_registered(host, context, counter_source)
        compiler.fail = True

        assert await context.save_contract(doc) is False

        assert context.registry.find(counter_source) is not None
        assert host.errors

    @pytest.mark.asyncio
    async def test_open_view_with_undecodable_artifact(self, context, host, workspace, counter_source):
        doc = await _open_registered(host, context, counter_source)
        _artifact(workspace).write_bytes(b"\xff\xfe bad")

        assert await context.open_michelson_view(doc) is False

        assert any("Unable to read Michelson contract" in e for e in host.errors)
        assert context.registry.find(counter_source) is not None

    @pytest.mark.asyncio
    async def test_remake_dot_whylson(self, context, host, workspace, counter_source):
        await _open_registered(host, context, counter_source)

        assert await context.remake_dot_whylson() is True

        assert _registry_json(workspace) == []
        assert len(context.registry) == 0
        assert list((workspace / ".whylson" / "bin-contracts").iterdir()) == []

    @pytest.mark.asyncio
    async def test_start_session_not_implemented(self, context, host):
        await context.activate()

        assert await context.start_session() is False
        assert host.errors == ["Not implemented yet."]

    @pytest.mark.asyncio
    async def test_tool_missing_reported_on_save(self, context, host, compiler, counter_source):
        doc = await _open_registered(host, context, counter_source)
        compiler.missing = True

        await host.save(doc)

        assert any("not found" in e for e in host.errors)


class TestViewsLifecycle:
    """Tests for preview document handling."""

    @pytest.mark.asyncio
    async def test_closing_preview_forgets_view(self, context, host, workspace, counter_source):
        await _open_registered(host, context, counter_source)
        uri = view_uri(_artifact(workspace))

        await host.close(host.documents[uri])

        assert context.views.get_view(_artifact(workspace)) is None

    @pytest.mark.asyncio
    async def test_reopening_closed_preview(self, context, host, workspace, counter_source):
        doc = await _open_registered(host, context, counter_source)
        uri = view_uri(_artifact(workspace))
        await host.close(host.documents[uri])

        assert await context.open_michelson_view(doc) is True

        assert host.opened == [uri, uri]
        assert uri in host.visible


class TestRegistryWatcher:
    """Tests for reloads triggered by contracts.json changes."""

    @pytest.mark.asyncio
    async def test_external_change_is_loaded(self, context, host, workspace, counter_source):
        await context.activate()
        entry = ContractEntry.create(counter_source, _artifact(workspace), "main")
        path = workspace / ".whylson" / "contracts.json"
        path.write_text(json.dumps([entry.to_dict()]))

        await host.trigger_watch(path)
        await context.wait_idle()

        assert context.registry.find(counter_source) == entry

    @pytest.mark.asyncio
    async def test_corrupt_external_change_is_reported(self, context, host, workspace):
        await context.activate()
        path = workspace / ".whylson" / "contracts.json"
        path.write_text("[{")

        await host.trigger_watch(path)
        await context.wait_idle()

        assert len(context.registry) == 0
        assert host.errors

    @pytest.mark.asyncio
    async def test_own_write_keeps_mirror(self, context, host, workspace, counter_source):
        await _open_registered(host, context, counter_source)
        entries = context.registry.entries

        await host.trigger_watch(workspace / ".whylson" / "contracts.json")
        await context.wait_idle()

        assert context.registry.entries == entries


class TestConcurrency:
    """Compilations of one document never overlap."""

    @pytest.mark.asyncio
    async def test_same_source_compiles_serialised(self, context, host, compiler, counter_source):
        doc = await _open_registered(host, context, counter_source)
        entry = context.registry.find(counter_source)
        running = 0
        peak = 0
        original = compiler.compile

        async def slow_compile(source, options):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1
            return await original(source, options)

        compiler.compile = slow_compile

        await asyncio.gather(
            context.compile_contract(entry, persist=False),
            context.compile_contract(entry, persist=True),
            context.refresh_contract(doc, entry),
        )

        assert peak == 1
