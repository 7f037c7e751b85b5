"""Demo server that binds service modules of an in-memory tree to a runtime."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any

from orchid_modules import (
    ModuleRuntime,
    Node,
    NodeTree,
    bootstrap_logging,
)

logger = logging.getLogger("game_server")


@dataclass
class Service:
    name: str
    events: list[str] = field(default_factory=list)

    def start(self) -> None:
        self.events.append("start")
        logger.info("Service started", extra={"service_name": self.name})

    def stop(self) -> None:
        self.events.append("stop")
        logger.info("Service stopped", extra={"service_name": self.name})


def build_tree() -> Node:
    return Node.folder(
        "Game",
        Node.folder(
            "Server",
            Node.module("FooService", factory=lambda: Service("foo")),
            Node.module("BarService", factory=lambda: Service("bar")),
            Node.module("Config", {"tick_rate": 30}),
        ),
    )


def build_runtime() -> ModuleRuntime:
    runtime = ModuleRuntime(NodeTree(), name="game_server")

    @runtime.handler(r"\.FooService$", priority=10)
    def bind_foo(node: Node, service: Service) -> Any:
        runtime.on_start.after(service.start)
        return service.stop

    @runtime.handler(r"Service$")
    def bind_service(node: Node, service: Service) -> Any:
        runtime.on_start.after(service.start)
        return service.stop

    @runtime.handler(r"\.Config$")
    def bind_config(node: Node, config: dict[str, Any]) -> None:
        logger.info("Config loaded", extra={"config": config})

    return runtime


def main() -> None:
    bootstrap_logging(
        service="game-server",
        level=os.getenv("LOG_LEVEL", "INFO"),
        log_format=os.getenv("LOG_FORMAT", "text"),
    )
    game = build_tree()
    server = game.find_first_child("Server")
    assert server is not None

    with build_runtime() as runtime:
        runtime.add_descendants(server)
        runtime.start()

        hot_loaded = server.add_child(Node.module("BazService", factory=lambda: Service("baz")))
        hot_loaded.remove()


if __name__ == "__main__":
    main()
