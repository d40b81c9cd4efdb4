"""Shared helpers for ami_client tests.

FakeAmiServer is an in-process asyncio TCP server that speaks just enough AMI for the
Manager: a greeting line, Login, Ping, Command (follows output), an error-producing
action, and actions it never answers.
"""

import asyncio
import pytest


GREETING = "Asterisk Call Manager/5.0.1\r\n"


class FakeAmiServer:
    def __init__(self, username="admin", secret="s3cret"):
        self.username = username
        self.secret = secret
        self.received = []
        self.writers = []
        self.connections = 0
        # Action names (lowercased) the server swallows without answering
        self.silent = {"hang"}
        self.server = None
        self.port = None

    async def start(self):
        self.server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self.server.sockets[0].getsockname()[1]
        return self

    async def stop(self):
        self.drop_clients()
        self.server.close()
        await self.server.wait_closed()

    def drop_clients(self):
        for writer in self.writers:
            writer.close()
        self.writers = []

    def push(self, text: str):
        for writer in self.writers:
            writer.write(text.encode("utf-8"))

    def action_names(self):
        return [action.get("Action") for action in self.received]

    async def _handle(self, reader, writer):
        self.connections += 1
        self.writers.append(writer)
        writer.write(GREETING.encode("utf-8"))

        buffer = b""
        try:
            while True:
                chunk = await reader.read(4096)
                if not chunk:
                    break
                buffer += chunk
                while b"\r\n\r\n" in buffer:
                    block, buffer = buffer.split(b"\r\n\r\n", 1)
                    action = {}
                    for line in block.decode("utf-8").split("\r\n"):
                        name, _, value = line.partition(": ")
                        action[name] = value
                    self.received.append(action)
                    self._respond(writer, action)
        except ConnectionError:
            pass
        finally:
            writer.close()

    def _respond(self, writer, action):
        name = action.get("Action", "").lower()
        action_id = action.get("ActionID", "")

        if name in self.silent:
            return

        if name == "login":
            if action.get("Username") == self.username and action.get("Secret") == self.secret:
                text = f"Response: Success\r\nActionID: {action_id}\r\nMessage: Authentication accepted\r\n\r\n"
            else:
                text = f"Response: Error\r\nActionID: {action_id}\r\nMessage: Authentication failed\r\n\r\n"
        elif name == "command":
            text = (
                "Response: Follows\r\n"
                "Privilege: Command\r\n"
                f"ActionID: {action_id}\r\n"
                "Asterisk 20.5.0 built by root\r\n"
                "\r\n"
                "on a x86_64 running Linux\r\n"
                "--END COMMAND--\r\n"
                "\r\n"
            )
        elif name == "broken":
            text = f"Response: Error\r\nActionID: {action_id}\r\nMessage: Invalid/unknown command\r\n\r\n"
        else:
            text = f"Response: Success\r\nActionID: {action_id}\r\nPing: Pong\r\n\r\n"

        writer.write(text.encode("utf-8"))


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


async def next_turns(count=3):
    for _ in range(count):
        await asyncio.sleep(0)


@pytest.fixture
def run():
    """Run a coroutine to completion with a safety timeout."""
    def runner(coro, timeout=5.0):
        return asyncio.run(asyncio.wait_for(coro, timeout))
    return runner
