"""Tests for ModuleRuntime."""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from unittest.mock import MagicMock

import pytest

from orchid_modules import ModuleRuntime, Node, NodeTree, RuntimeState
from orchid_modules.errors import (
    CleanupError,
    HandlerError,
    InvalidStateError,
    LoadError,
    StartupError,
)
from orchid_modules.observability.metrics import NoopMetricsRecorder


def _server() -> tuple[Node, Node]:
    """Return ``(game, server)`` with ``Game.Server.FooService`` below it."""
    server = Node.folder("Server", Node.module("FooService", value={"name": "foo"}))
    game = Node.folder("Game", server)
    return game, server


@pytest.fixture()
def runtime() -> ModuleRuntime:
    return ModuleRuntime(NodeTree())


class TestLifecycle:
    def test_initial_state_is_idle(self, runtime: ModuleRuntime) -> None:
        assert runtime.state is RuntimeState.IDLE
        assert not runtime.is_running

    def test_start_transitions_to_running(self, runtime: ModuleRuntime) -> None:
        runtime.start()

        assert runtime.state is RuntimeState.RUNNING
        assert runtime.is_running
        assert runtime.on_start.resolved

    def test_start_freezes_handler_registration(self, runtime: ModuleRuntime) -> None:
        runtime.start()

        with pytest.raises(InvalidStateError):
            runtime.handle(".*", lambda node, value: None)

    def test_handler_removal_after_start_raises(self, runtime: ModuleRuntime) -> None:
        remove = runtime.handle(".*")
        runtime.start()

        with pytest.raises(InvalidStateError):
            remove()
        assert len(runtime.handlers) == 1

    def test_start_twice_raises(self, runtime: ModuleRuntime) -> None:
        runtime.start()

        with pytest.raises(InvalidStateError, match="already running"):
            runtime.start()

    def test_stop_makes_runtime_immutable(self, runtime: ModuleRuntime) -> None:
        runtime.stop()

        assert runtime.state is RuntimeState.STOPPED
        assert not runtime.is_running
        with pytest.raises(InvalidStateError):
            runtime.handle(".*")
        with pytest.raises(InvalidStateError):
            runtime.add(Node.module("M", 1))
        with pytest.raises(InvalidStateError):
            runtime.add_descendants(Node.folder("Root"))
        with pytest.raises(InvalidStateError):
            runtime.start()
        with pytest.raises(InvalidStateError):
            runtime.stop_on_exit(MagicMock())

    def test_stop_twice_does_not_rerun_cleanups(self, runtime: ModuleRuntime) -> None:
        cleanup = MagicMock()
        runtime.handle("FooService$", lambda node, value: cleanup)
        game, _ = _server()
        runtime.add_descendants(game)
        runtime.start()

        runtime.stop()
        assert runtime.stop() == []

        cleanup.assert_called_once()

    def test_destroy_is_stop(self, runtime: ModuleRuntime) -> None:
        runtime.destroy()

        assert runtime.state is RuntimeState.STOPPED

    def test_context_manager_stops_on_exit(self) -> None:
        cleanup = MagicMock()
        with ModuleRuntime(NodeTree()) as runtime:
            runtime.handle(".*", lambda node, value: cleanup)
            runtime.add(Node.module("M", 1))

        cleanup.assert_called_once()
        assert runtime.state is RuntimeState.STOPPED

    def test_status_snapshot(self, runtime: ModuleRuntime) -> None:
        runtime.handle(".*", lambda node, value: lambda: None)
        runtime.add(Node.module("M", 1))
        runtime.start()

        status = runtime.status()

        assert status.to_dict() == {
            "name": "runtime",
            "state": "running",
            "handlers": 1,
            "bindings_total": 1,
            "pending_cleanups": 1,
            "started": True,
        }

    def test_tree_without_loader_requires_explicit_loader(self) -> None:
        class BareTree:
            def is_module(self, resource: Any) -> bool:
                return True

            def full_path(self, resource: Any) -> str:
                return str(resource)

            def on_removed(self, resource: Any, callback: Any) -> Any:
                return lambda: None

            def observe_descendants(self, root: Any, on_added: Any) -> Any:
                return lambda: None

        with pytest.raises(TypeError):
            ModuleRuntime(BareTree())

        runtime = ModuleRuntime(BareTree(), loader=lambda resource: resource.upper())
        callback = MagicMock(return_value=None)
        runtime.handle("^x$", callback)
        runtime.add("x")
        callback.assert_called_once_with("x", "X")


class TestOnStart:
    def test_after_callbacks_run_on_start(self, runtime: ModuleRuntime) -> None:
        service = MagicMock()
        runtime.handle(
            "Service$",
            lambda node, value: runtime.on_start.after(value.start),
        )
        node = Node.module("FooService", service)
        runtime.add(node)

        service.start.assert_not_called()
        runtime.start()

        service.start.assert_called_once()

    def test_failing_start_callback_raises_startup_error(self, runtime: ModuleRuntime) -> None:
        runtime.on_start.after(MagicMock(side_effect=RuntimeError("boom")))

        with pytest.raises(StartupError):
            runtime.start()
        assert runtime.is_running

    async def test_await_resumes_only_after_start(self, runtime: ModuleRuntime) -> None:
        waiter = asyncio.ensure_future(_await_start(runtime))
        await asyncio.sleep(0)
        assert not waiter.done()

        runtime.start()

        await asyncio.wait_for(waiter, timeout=1.0)

    async def test_await_after_stop_without_start_fails_immediately(
        self, runtime: ModuleRuntime
    ) -> None:
        runtime.stop()

        with pytest.raises(InvalidStateError):
            await asyncio.wait_for(_await_start(runtime), timeout=1.0)

    async def test_await_after_start_then_stop_still_succeeds(
        self, runtime: ModuleRuntime
    ) -> None:
        runtime.start()
        runtime.stop()

        await asyncio.wait_for(_await_start(runtime), timeout=1.0)


class TestBinding:
    def test_priority_handler_binds_and_general_veto_never_runs(
        self, runtime: ModuleRuntime
    ) -> None:
        cleanup = MagicMock()
        general = MagicMock(return_value=False)
        runtime.handle("Service$", lambda node, value: cleanup, priority=10)
        runtime.handle(".*", general, priority=0)

        game, _ = _server()
        runtime.add(game.find_first_child("Server").find_first_child("FooService"))
        general.assert_not_called()

        runtime.stop()
        cleanup.assert_called_once()

    def test_only_vetoing_handler_binds_nothing(self, runtime: ModuleRuntime) -> None:
        runtime.handle(".*", lambda node, value: False)

        assert runtime.add(Node.module("X", 1)) is None
        assert runtime.status().pending_cleanups == 0

    def test_handler_decorator_registers_callback(self, runtime: ModuleRuntime) -> None:
        calls: list[str] = []

        @runtime.handler("Controller$", priority=1)
        def bind_controller(node: Node, value: Any) -> None:
            calls.append(node.name)

        runtime.add(Node.module("InputController", 1))

        assert calls == ["InputController"]
        assert bind_controller.__name__ == "bind_controller"

    def test_handler_may_add_modules_reentrantly(self, runtime: ModuleRuntime) -> None:
        extra = Node.module("ExtraService", 2)
        extra_cleanup = MagicMock()
        runtime.handle("ExtraService$", lambda node, value: extra_cleanup)
        runtime.handle("Loader$", lambda node, value: runtime.add(extra) and None)

        runtime.add(Node.module("Loader", 1))
        runtime.stop()

        extra_cleanup.assert_called_once()


class TestAdd:
    def test_returned_remover_runs_cleanup_once(self, runtime: ModuleRuntime) -> None:
        cleanup = MagicMock()
        runtime.handle(".*", lambda node, value: cleanup)

        remove = runtime.add(Node.module("M", 1))
        assert remove is not None
        remove()
        remove()
        runtime.stop()

        cleanup.assert_called_once()

    def test_non_modules_are_ignored(self, runtime: ModuleRuntime) -> None:
        callback = MagicMock()
        runtime.handle(".*", callback)

        assert runtime.add(Node.folder("Folder")) is None
        callback.assert_not_called()

    def test_removed_resource_runs_cleanup_early_and_once(self, runtime: ModuleRuntime) -> None:
        cleanup = MagicMock()
        runtime.handle(".*", lambda node, value: cleanup)
        module = Node.module("M", 1)
        Node.folder("Root", module)

        runtime.add(module)
        module.remove()
        cleanup.assert_called_once()

        runtime.stop()
        cleanup.assert_called_once()
        assert runtime.status().pending_cleanups == 0

    def test_cleanups_run_in_registration_order_on_stop(self, runtime: ModuleRuntime) -> None:
        calls: list[str] = []
        runtime.handle(".*", lambda node, value: lambda: calls.append(node.name))
        for name in ("A", "B", "C"):
            runtime.add(Node.module(name, 1))

        runtime.stop()

        assert calls == ["A", "B", "C"]

    def test_failing_cleanup_is_reported_and_rest_still_run(
        self, runtime: ModuleRuntime, caplog: pytest.LogCaptureFixture
    ) -> None:
        after = MagicMock()

        def bind(node: Node, value: Any) -> Any:
            if node.name == "Bad":
                return MagicMock(side_effect=RuntimeError("close failed"))
            return after

        runtime.handle(".*", bind)
        runtime.add(Node.module("Bad", 1))
        runtime.add(Node.module("Good", 1))

        with caplog.at_level(logging.ERROR):
            errors = runtime.stop()

        after.assert_called_once()
        assert len(errors) == 1
        assert isinstance(errors[0], CleanupError)
        assert "close failed" in str(errors[0])

    def test_failing_cleanup_on_removal_is_logged(
        self, runtime: ModuleRuntime, caplog: pytest.LogCaptureFixture
    ) -> None:
        runtime.handle(".*", lambda node, value: MagicMock(side_effect=RuntimeError("nope")))
        module = Node.module("M", 1)
        Node.folder("Root", module)
        runtime.add(module)

        with caplog.at_level(logging.ERROR, logger="orchid_modules.runtime.runtime"):
            module.remove()

        assert "Cleanup failed for removed module Root.M" in caplog.text
        assert runtime.stop() == []

    def test_load_error_propagates_and_leaves_runtime_usable(
        self, runtime: ModuleRuntime
    ) -> None:
        runtime.handle(".*", lambda node, value: None)

        with pytest.raises(LoadError):
            runtime.add(Node.module("Empty"))

        assert runtime.add(Node.module("Full", 1)) is None
        runtime.start()

    def test_handler_error_propagates(self, runtime: ModuleRuntime) -> None:
        runtime.handle(".*", MagicMock(side_effect=ValueError("bad")))
        module = Node.module("M", 1)

        with pytest.raises(HandlerError):
            runtime.add(module)

        assert len(module.removed) == 0

    def test_removal_during_binding_runs_cleanup_immediately(
        self, runtime: ModuleRuntime
    ) -> None:
        cleanup = MagicMock()

        def bind(node: Node, value: Any) -> Any:
            node.remove()
            return cleanup

        runtime.handle(".*", bind)
        module = Node.module("M", 1)
        Node.folder("Root", module)

        runtime.add(module)
        cleanup.assert_called_once()
        assert runtime.status().pending_cleanups == 0

        runtime.stop()
        cleanup.assert_called_once()

    def test_unbound_resource_keeps_no_removal_listener(self, runtime: ModuleRuntime) -> None:
        runtime.handle("Other$", lambda node, value: MagicMock())
        module = Node.module("M", 1)
        Node.folder("Root", module)

        assert runtime.add(module) is None
        assert len(module.removed) == 0

    def test_pending_cleanups_count_only_cleanup_actions(self, runtime: ModuleRuntime) -> None:
        runtime.handle("Service$", lambda node, value: MagicMock())
        root = Node.folder("Root")

        runtime.add_descendants(root)
        assert runtime.status().pending_cleanups == 0

        service = root.add_child(Node.module("FooService", 1))
        root.add_child(Node.module("Config", 1))
        assert runtime.status().pending_cleanups == 1

        service.remove()
        status = runtime.status()
        assert status.pending_cleanups == 0
        assert status.bindings_total == 1


class TestAddDescendants:
    def test_existing_and_future_descendants_are_bound(self, runtime: ModuleRuntime) -> None:
        bound: list[str] = []
        runtime.handle("Service$", lambda node, value: bound.append(node.full_name) and None)
        game, server = _server()

        runtime.add_descendants(game)
        server.add_child(Node.module("BarService", 1))

        assert bound == ["Game.Server.FooService", "Game.Server.BarService"]

    def test_discovery_continues_after_start(self, runtime: ModuleRuntime) -> None:
        cleanup = MagicMock()
        runtime.handle("Service$", lambda node, value: cleanup)
        game, server = _server()
        runtime.add_descendants(game)
        runtime.start()

        server.add_child(Node.module("LateService", 1))
        runtime.stop()

        assert cleanup.call_count == 2

    def test_removed_descendant_runs_cleanup_once(self, runtime: ModuleRuntime) -> None:
        cleanups: dict[str, MagicMock] = {}

        def bind(node: Node, value: Any) -> MagicMock:
            cleanups[node.name] = MagicMock()
            return cleanups[node.name]

        runtime.handle("Service$", bind)
        game, server = _server()
        runtime.add_descendants(game)

        server.remove()
        cleanups["FooService"].assert_called_once()

        runtime.stop()
        cleanups["FooService"].assert_called_once()

    def test_remover_stops_watching_without_running_cleanups(
        self, runtime: ModuleRuntime
    ) -> None:
        cleanup = MagicMock()
        callback = MagicMock(return_value=cleanup)
        runtime.handle("Service$", callback)
        game, server = _server()

        stop_watching = runtime.add_descendants(game)
        stop_watching()
        server.add_child(Node.module("IgnoredService", 1))

        cleanup.assert_not_called()
        assert callback.call_count == 1

        runtime.stop()
        cleanup.assert_called_once()

    def test_failing_sibling_does_not_abort_others(self, runtime: ModuleRuntime) -> None:
        bound: list[str] = []

        def bind(node: Node, value: Any) -> None:
            if node.name == "Broken":
                raise RuntimeError("boom")
            bound.append(node.name)

        runtime.handle(".*", bind)
        on_error = MagicMock()
        root = Node.folder("Root", Node.module("A", 1), Node.module("Broken", 1), Node.module("B", 1))

        runtime.add_descendants(root, on_error=on_error)

        assert bound == ["A", "B"]
        ((resource, error),) = [call.args for call in on_error.call_args_list]
        assert resource.name == "Broken"
        assert isinstance(error, HandlerError)

    def test_stream_errors_are_logged_without_callback(
        self, runtime: ModuleRuntime, caplog: pytest.LogCaptureFixture
    ) -> None:
        runtime.handle(".*", lambda node, value: None)
        root = Node.folder("Root")
        runtime.add_descendants(root)

        with caplog.at_level(logging.ERROR, logger="orchid_modules.runtime.runtime"):
            root.add_child(Node.module("NoValue"))

        assert "Discovery failed for module Root.NoValue" in caplog.text

    def test_stop_tears_down_subscription(self, runtime: ModuleRuntime) -> None:
        callback = MagicMock(return_value=None)
        runtime.handle(".*", callback)
        root = Node.folder("Root")
        runtime.add_descendants(root)

        runtime.stop()
        root.add_child(Node.module("After", 1))

        callback.assert_not_called()
        assert len(root.descendant_added) == 0


class TestShutdownHook:
    def test_stop_on_exit_registers_stop_once(self, runtime: ModuleRuntime) -> None:
        hook = MagicMock()

        runtime.stop_on_exit(hook)
        runtime.stop_on_exit(hook)

        hook.assert_called_once_with(runtime.stop)

    def test_hooked_stop_after_manual_stop_is_noop(self, runtime: ModuleRuntime) -> None:
        registered: list[Any] = []
        cleanup = MagicMock()
        runtime.handle(".*", lambda node, value: cleanup)
        runtime.add(Node.module("M", 1))
        runtime.stop_on_exit(registered.append)

        runtime.stop()
        registered[0]()

        cleanup.assert_called_once()


class TestMetrics:
    def test_operations_are_recorded(self) -> None:
        recorder = MagicMock(spec=NoopMetricsRecorder)
        runtime = ModuleRuntime(NodeTree(), name="game", metrics=recorder)
        runtime.handle(".*", MagicMock(side_effect=RuntimeError("boom")))

        with pytest.raises(HandlerError):
            runtime.add(Node.module("M", 1))
        runtime.start()
        runtime.stop()

        operations = [
            (call.kwargs["operation"], call.kwargs["success"])
            for call in recorder.observe_operation.call_args_list
        ]
        assert operations == [("add", False), ("start", True), ("stop", True)]
        recorder.observe_error.assert_called_once_with(
            resource="game", operation="add", error_type="HandlerError"
        )
        recorder.observe_pending_cleanups.assert_called_with(runtime="game", count=0)


async def _await_start(runtime: ModuleRuntime) -> None:
    await runtime.on_start
