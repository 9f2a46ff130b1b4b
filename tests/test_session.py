"""Tests for the transport session lifecycle and invoke choke point."""

import asyncio

import pytest

from bcmeta.core import errors
from bcmeta.core.models import SessionArtifacts
from bcmeta.protocol import interactions
from bcmeta.protocol.decoder import compress_payload
from bcmeta.transport.session import channel_url, find_session_values

from .builders import callback, form, form_to_show, session_init_response


class TestLifecycle:

    async def test_open_session_reads_identity(self, make_session, channel):
        session = make_session()
        await session.authenticate()
        await session.connect()
        context = await session.open_session()

        assert context.session.server_session_id == "sess-1"
        assert context.session.company_name == "CRONUS"
        assert context.role_center_form_id == "rc1"
        assert session.open_form_ids == ["rc1"]
        assert channel.url.startswith("ws://bc.test/BC/csh?ackseqnb=-1&csrftoken=CfDJ8token")
        assert channel.headers["Cookie"] == ".AspNetCore.Cookies=auth"
        assert channel.sent[0]["method"] == "OpenSession"

    async def test_missing_acknowledgement_is_protocol_error(self, make_session, channel):
        channel.responses.clear()
        channel.script([form_to_show(form("rc1", "Role Center"))])
        session = make_session()
        await session.authenticate()
        await session.connect()

        with pytest.raises(errors.ProtocolError):
            await session.open_session()
        assert session.info is None

    async def test_connect_before_authenticate(self, make_session):
        with pytest.raises(errors.ValidationError):
            await make_session().connect()

    async def test_invoke_requires_open_session(self, make_session):
        with pytest.raises(errors.ConnectionError):
            await make_session().invoke(interactions.load_form("f1"))

    async def test_disconnect_is_idempotent(self, session, channel):
        await session.disconnect()
        await session.disconnect()
        assert channel.close_count == 1
        assert session.open_form_ids == []
        assert not session.is_open


class TestInvoke:

    async def test_callback_ids_strictly_increase(self, session, channel):
        """After N invokes the callback ids are strictly increasing with no repeats."""
        for _ in range(6):
            channel.script([callback()])
        for _ in range(6):
            await session.invoke(interactions.load_form("f1"))

        ids = [int(i["callbackId"]) for i in channel.invocations()]
        assert ids == sorted(set(ids))
        assert len(ids) == 6
        assert session.last_callback_id == ids[-1]

        sequence_numbers = [m["params"][0]["sequenceNo"] for m in channel.sent[1:]]
        assert len(set(sequence_numbers)) == 6

    async def test_concurrent_invokes_are_serialized(self, session, channel):
        """A second Invoke is only sent after the first response is consumed."""
        for _ in range(3):
            channel.script([callback()])
        channel.events.clear()

        await asyncio.gather(*(session.invoke(interactions.load_form(f"f{i}")) for i in range(3)))

        assert channel.events == ["send Invoke", "receive"] * 3
        ids = [int(i["callbackId"]) for i in channel.invocations()]
        assert ids == [1, 2, 3]

    async def test_shown_forms_are_tracked_once(self, session, channel):
        channel.script(
            [form_to_show(form("f5", "Card")), callback("f5")],
            [form_to_show(form("f5", "Card")), callback("f5")],
        )
        await session.invoke(interactions.load_form("f5"))
        await session.invoke(interactions.load_form("f5"))

        assert session.open_form_ids == ["rc1", "f5"]
        second = channel.sent[-1]["params"][0]["openFormIds"]
        assert second == ["rc1", "f5"]

    async def test_completed_form_loads_are_tracked(self, session, channel):
        channel.script([callback("f7")], [callback("Adatum")])

        await session.invoke(interactions.load_form("f7"))
        await session.invoke(interactions.save_value("f7", "server:c[0]", "Adatum"))

        assert session.open_form_ids == ["rc1", "f7"]

    async def test_ack_sequence_is_echoed(self, session, channel):
        channel.script([callback()], [callback()])
        await session.invoke(interactions.load_form("f1"))
        await session.invoke(interactions.load_form("f1"))
        assert channel.sent[-1]["params"][0]["lastClientAckSequenceNumber"] == 0

    async def test_rpc_error_is_protocol_error(self, session, channel):
        channel.script({"jsonrpc": "2.0", "error": {"code": -32000, "message": "boom"}})
        with pytest.raises(errors.ProtocolError) as exc_info:
            await session.invoke(interactions.load_form("f1"))
        assert "boom" in exc_info.value.message

    async def test_late_reply_is_discarded(self, session, channel):
        """A reply to an abandoned request or earlier callback is skipped."""
        stale_rpc = {"jsonrpc": "2.0", "id": "old-request", "result": []}
        stale_callback = {
            "method": "Message",
            "params": [{"compressedData": compress_payload([callback("f0", invocation_id="0")])}],
        }
        fresh = {
            "method": "Message",
            "params": [{"compressedData": compress_payload([callback("f1", invocation_id="1")])}],
        }
        channel.queue.extend([stale_rpc, stale_callback, fresh])

        response = await session.invoke(interactions.load_form("f1"))
        assert response.callback().form_id == "f1"

    async def test_timeout_is_connection_error(self, session, channel):
        with pytest.raises(errors.ConnectionError):
            await session.invoke(interactions.load_form("f1"))


class TestHelpers:

    def test_channel_url_schemes(self):
        https = SessionArtifacts(base_url="https://bc.example.com/BC250", csrf_token="CfDJ8+/=")
        assert channel_url(https) == "wss://bc.example.com/BC250/csh?ackseqnb=-1&csrftoken=CfDJ8%2B%2F%3D"

        http = SessionArtifacts(base_url="http://localhost:8080/", csrf_token="t")
        assert channel_url(http) == "ws://localhost:8080/csh?ackseqnb=-1&csrftoken=t"

    def test_find_session_values_searches_nested(self):
        payload = [{"parameters": [{"deep": [{"ServerSessionId": "s", "SessionKey": "k"}]}]}]
        assert find_session_values(payload) == {"ServerSessionId": "s", "SessionKey": "k"}

    def test_find_session_values_in_init_handler(self):
        found = find_session_values(session_init_response())
        assert found["CompanyName"] == "CRONUS"
