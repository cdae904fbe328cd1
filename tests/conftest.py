"""Shared test fixtures."""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from opsrv.server import Server

LOCAL_ADDR = "127.0.0.1:0"


@pytest.fixture
def server() -> Server:
    """A production-configured server."""
    return Server(app_env="prod")


@pytest.fixture
def dev_server() -> Server:
    return Server(app_env="dev")


@pytest.fixture
def client(server: Server) -> TestClient:
    return TestClient(server)


@pytest.fixture
def dev_client(dev_server: Server) -> TestClient:
    return TestClient(dev_server)


async def start_server(
    server: Server,
    stop: asyncio.Event | None = None,
    address: str = LOCAL_ADDR,
) -> asyncio.Task:
    """Run *server* in the background and wait until it accepts requests."""
    task = asyncio.create_task(server.run(address, stop=stop or asyncio.Event()))
    for _ in range(250):
        if server.lifecycle.started:
            return task
        if task.done():
            task.result()
        await asyncio.sleep(0.02)
    raise AssertionError("server did not start")


def base_url(server: Server) -> str:
    host, port = server.address
    return f"http://{host}:{port}"
