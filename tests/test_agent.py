"""Tests for the agent supervisor."""

import asyncio
import socket

import pytest
import pytest_asyncio

from muxtunnel.agent import Agent, run_agent
from muxtunnel.config import AgentConfig, TunnelSpec
from muxtunnel.exceptions import ConfigError, ListenerBindError
from tests.support import EchoRelay


@pytest_asyncio.fixture
async def relay():
    server = await EchoRelay().start()
    yield server
    await server.close()


def agent_config(relay_port: int, tunnels: list[TunnelSpec]) -> AgentConfig:
    return AgentConfig(RELAY_HOST="127.0.0.1", RELAY_PORT=relay_port, TUNNELS=tunnels)


class TestAgent:
    def test_invalid_config(self):
        with pytest.raises(ConfigError):
            Agent(AgentConfig())

    def test_one_listener_per_tunnel(self):
        agent = Agent(agent_config(4000, []))
        assert [str(listener.tunnel) for listener in agent.listeners] == [
            "/var/run/usbmuxd=usbmuxd",
            "127.0.0.1:7777=forward",
        ]

    @pytest.mark.asyncio
    async def test_bind_failure_stops_agent(self, relay, tmp_path):
        path = tmp_path / "a.sock"
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as taken:
            taken.bind(("127.0.0.1", 0))
            taken.listen()
            port = taken.getsockname()[1]

            agent = Agent(
                agent_config(
                    relay.port,
                    [
                        TunnelSpec(str(path), "usbmuxd"),
                        TunnelSpec(f"127.0.0.1:{port}", "forward"),
                    ],
                )
            )
            with pytest.raises(ListenerBindError):
                await asyncio.wait_for(agent.run(), 5)

        assert not path.exists()
        assert not any(listener.is_serving for listener in agent.listeners)

    @pytest.mark.asyncio
    async def test_direct_tunnel_finishes(self, relay):
        async def handle(reader, writer):
            writer.write(b"hi")
            await writer.drain()
            await reader.readexactly(2)
            writer.close()

        target = await asyncio.start_server(handle, "127.0.0.1", 0)
        target_port = target.sockets[0].getsockname()[1]
        agent = Agent(
            agent_config(
                relay.port, [TunnelSpec(f"dial://127.0.0.1:{target_port}", "forward")]
            )
        )

        await asyncio.wait_for(agent.run(), 5)
        assert relay.handshakes == [b"forward\n"]
        target.close()


class TestRunAgent:
    @pytest.mark.asyncio
    async def test_cancel_removes_sockets(self, relay, tmp_path):
        path = tmp_path / "run.sock"
        config = agent_config(relay.port, [TunnelSpec(str(path), "usbmuxd")])
        task = asyncio.create_task(run_agent(config))

        for _ in range(50):
            if path.exists():
                break
            await asyncio.sleep(0.05)
        assert path.exists()

        reader, writer = await asyncio.open_unix_connection(str(path))
        writer.write(b"ping")
        await writer.drain()
        assert await asyncio.wait_for(reader.readexactly(4), 5) == b"ping"
        writer.close()
        await asyncio.wait_for(relay.disconnected.wait(), 5)

        task.cancel()
        await asyncio.wait_for(task, 5)
        assert not path.exists()
