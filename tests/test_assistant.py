import asyncio

import pytest

from conftest import ALICE_ADDRESS, OTHER_ADDRESS, make_token
from duopow.core.assistant import Assistant
from duopow.core.models import Address
from duopow.core.sessions import START, AwaitingAddress, AwaitingCredential, AwaitingHandle


@pytest.fixture
def assistant(profiles, registry, messages):
    return Assistant(profiles=profiles, registry=registry, messages=messages)


@pytest.mark.asyncio
async def test_link_flow_over_messages(assistant, profiles, messages):
    chat = "100"
    assert await assistant.handle_message(chat, "/link") == messages.get("link_prompt")
    await assistant.handle_message(chat, "alice")
    assert assistant.sessions.state(chat) == AwaitingAddress("alice")
    await assistant.handle_message(chat, OTHER_ADDRESS)
    reply = await assistant.handle_message(chat, make_token(42))
    assert reply == messages.get("linked", handle="alice", address=OTHER_ADDRESS)
    assert assistant.sessions.state(chat) == START
    assert chat not in assistant.sessions
    assert len(profiles.calls_to("write_bio")) == 1
    assert len(assistant.sessions._locks) == 0
    assert assistant.sessions._generations == {}


@pytest.mark.asyncio
async def test_blank_message_is_ignored(assistant):
    assert await assistant.handle_message("1", "   ") is None


@pytest.mark.asyncio
async def test_help_lists_commands(assistant):
    reply = await assistant.handle_message("1", "/help")
    for name in ("/link", "/cancel", "/check", "/register", "/update", "/unregister"):
        assert name in reply


@pytest.mark.asyncio
async def test_cancel_resets_and_fresh_link_has_no_residue(assistant, messages):
    chat = "7"
    await assistant.handle_message(chat, "/link")
    await assistant.handle_message(chat, "alice")
    await assistant.handle_message(chat, OTHER_ADDRESS)
    assert isinstance(assistant.sessions.state(chat), AwaitingCredential)
    assert await assistant.handle_message(chat, "/cancel") == messages.get("cancelled")
    assert assistant.sessions.state(chat) == START
    await assistant.handle_message(chat, "/link")
    assert assistant.sessions.state(chat) == AwaitingHandle()


@pytest.mark.asyncio
async def test_cancel_when_idle(assistant, messages):
    assert await assistant.handle_message("7", "/cancel") == messages.get("nothing_to_cancel")


@pytest.mark.asyncio
async def test_command_mid_flow_is_implicit_cancel(assistant, registry, messages):
    chat = "9"
    registry.set(42, ALICE_ADDRESS, 300)
    await assistant.handle_message(chat, "/link")
    await assistant.handle_message(chat, "alice")
    reply = await assistant.handle_message(chat, "/check alice")
    assert reply.startswith(messages.get("implicit_cancel"))
    assert "mintable: 200" in reply
    assert assistant.sessions.state(chat) == START


@pytest.mark.asyncio
async def test_link_mid_flow_restarts(assistant, messages):
    chat = "9"
    await assistant.handle_message(chat, "/link")
    await assistant.handle_message(chat, "alice")
    reply = await assistant.handle_message(chat, "/link")
    assert reply == "\n".join([messages.get("implicit_cancel"), messages.get("link_prompt")])
    assert assistant.sessions.state(chat) == AwaitingHandle()


@pytest.mark.asyncio
async def test_unknown_command_mid_flow_keeps_state(assistant, messages):
    chat = "9"
    await assistant.handle_message(chat, "/link")
    reply = await assistant.handle_message(chat, "/frobnicate")
    assert messages.get("usage_handle") in reply
    assert assistant.sessions.state(chat) == AwaitingHandle()


@pytest.mark.asyncio
async def test_transport_failure_keeps_session(assistant, profiles, messages):
    chat = "3"
    await assistant.handle_message(chat, "/link")
    profiles.failing.add("fetch_by_handle")
    assert await assistant.handle_message(chat, "alice") == messages.get("failure")
    assert assistant.sessions.state(chat) == AwaitingHandle()
    profiles.failing.clear()
    await assistant.handle_message(chat, "alice")
    assert assistant.sessions.state(chat) == AwaitingAddress("alice")


@pytest.mark.asyncio
async def test_cancel_during_in_flight_step_drops_result(profiles, registry, messages):
    gate = asyncio.Event()
    entered = asyncio.Event()

    class SlowProfiles:
        def __getattr__(self, name):
            return getattr(profiles, name)

        async def fetch_by_handle(self, handle):
            entered.set()
            await gate.wait()
            return await profiles.fetch_by_handle(handle)

    assistant = Assistant(profiles=SlowProfiles(), registry=registry, messages=messages)
    chat = "55"
    await assistant.handle_message(chat, "/link")
    step = asyncio.create_task(assistant.handle_message(chat, "alice"))
    await entered.wait()
    assert await assistant.handle_message(chat, "/cancel") == messages.get("cancelled")
    gate.set()
    assert await step is None
    assert assistant.sessions.state(chat) == START
    assert assistant.sessions.get(chat) == (START, 0)


@pytest.mark.asyncio
async def test_reconcile_commands(assistant, registry, messages):
    reply = await assistant.handle_message("1", "/register alice")
    tx = registry.writes[-1]
    assert tx[0] == "register"
    assert reply.startswith("Registered alice")

    reply = await assistant.handle_message("1", "/register alice")
    assert reply == messages.get("already_registered", handle="alice", address=ALICE_ADDRESS)

    reply = await assistant.handle_message("1", "/update alice")
    assert "Nothing to mint" in reply

    registry.set(42, ALICE_ADDRESS, 300)
    reply = await assistant.handle_message("1", "/update alice")
    assert "minting 200" in reply

    reply = await assistant.handle_message("1", "/unregister alice")
    assert reply.startswith("Unregistration of alice submitted")


@pytest.mark.asyncio
async def test_register_reports_address_change(assistant, registry):
    registry.set(42, OTHER_ADDRESS, 10)
    reply = await assistant.handle_message("1", "/register alice")
    assert OTHER_ADDRESS in reply
    assert registry.records[42].address == Address.from_hex(ALICE_ADDRESS)


@pytest.mark.asyncio
async def test_reconcile_command_errors(assistant, registry, messages):
    assert await assistant.handle_message("1", "/check") == messages.get("missing_handle", name="check")
    assert await assistant.handle_message("1", "/check nobody") == messages.get(
        "user_not_found", handle="nobody"
    )
    assert await assistant.handle_message("1", "/register bob") == messages.get(
        "no_address_linked", handle="bob"
    )
    reply = await assistant.handle_message("1", "/update bob")
    assert "minting 80" in reply
    assert ("report_xp", 7, 80) in registry.writes
    registry.failing.add("unregister")
    assert await assistant.handle_message("1", "/unregister alice") == messages.get("failure")


@pytest.mark.asyncio
async def test_close_releases_profile_client(assistant, profiles):
    await assistant.close()
    assert profiles.calls[-1] == ("close",)
