"""Tests for the session pool."""

from collections import deque

import pytest

from bcmeta.core import errors
from bcmeta.services.pool import SessionPool

from .builders import callback, field, form, group, open_response
from .fakes import client_factory


def _card_response(server_id: str, page_id: str):
    return open_response(form(
        server_id,
        f"Page {page_id}",
        children=[group(field("sc", "Name"))],
        CacheKey=f"{page_id}:embedded(False)",
    ))


@pytest.fixture
def scripts():
    return deque()


@pytest.fixture
def channels():
    return []


@pytest.fixture
def make_pool(credentials, scripts, channels):
    def _make(max_size: int) -> SessionPool:
        return SessionPool(max_size=max_size, client_factory=client_factory(credentials, scripts, channels))
    return _make


class TestSessionPool:
    """One tracked page per session."""

    async def test_pages_get_separate_sessions(self, make_pool, scripts, channels):
        # both servers hand out the same form id; separate sessions keep them apart
        scripts.extend([[_card_response("b3", "21")], [_card_response("b3", "22")]])
        pool = make_pool(2)

        first = await pool.load_page("21")
        second = await pool.load_page(22)

        assert first.unwrap().form_id == "b3"
        assert second.unwrap().form_id == "b3"
        assert len(channels) == 2
        assert [len(c.invocations()) for c in channels] == [1, 1]
        assert pool.pages == ["21", "22"]
        await pool.close()

    async def test_exhausted(self, make_pool, scripts, channels):
        scripts.append([_card_response("b3", "21")])
        pool = make_pool(1)
        await pool.load_page("21")

        result = await pool.load_page("22")

        error = result.unwrap_err()
        assert isinstance(error, errors.ValidationError)
        assert error.context["open_pages"] == ["21"]
        assert len(channels) == 1
        await pool.close()

    async def test_release_frees_session(self, make_pool, scripts, channels):
        scripts.append([_card_response("b3", "21")])
        pool = make_pool(1)
        await pool.load_page("21")
        channels[0].script([callback()], _card_response("b4", "22"))

        released = await pool.release_page("21")
        loaded = await pool.load_page("22")

        assert released.is_ok
        assert loaded.unwrap().page_id == "22"
        assert len(channels) == 1
        assert pool.pages == ["22"]
        await pool.close()

    async def test_failed_load_frees_slot(self, make_pool, scripts, channels):
        scripts.append([[callback()]])
        pool = make_pool(1)

        failed = await pool.load_page("21")
        channels[0].script(_card_response("b4", "22"))
        loaded = await pool.load_page("22")

        assert isinstance(failed.unwrap_err(), errors.ParseError)
        assert loaded.is_ok
        assert pool.pages == ["22"]
        await pool.close()

    async def test_mutations_default_to_shell_form(self, make_pool, scripts, channels):
        scripts.append([_card_response("b3", "21")])
        pool = make_pool(1)
        await pool.load_page("21")
        channels[0].script([callback()], [callback()])

        written = await pool.set_field("21", "server:c[0]/c[0]", "Adatum", control_name="Name")
        invoked = await pool.invoke_action("21", "server:a[0]", 10)

        assert written.unwrap().form_id == "b3"
        assert invoked.unwrap().interaction == "InvokeAction"
        assert [i["formId"] for i in channels[0].invocations()[1:]] == ["b3", "b3"]
        await pool.close()

    async def test_unknown_page(self, make_pool):
        pool = make_pool(1)

        assert isinstance((await pool.release_page("21")).unwrap_err(), errors.ValidationError)
        assert isinstance((await pool.set_field("21", "server:c[0]", 1)).unwrap_err(), errors.ValidationError)
        assert pool.tracked_form("21") is None

    async def test_close(self, make_pool, scripts, channels):
        scripts.append([_card_response("b3", "21")])
        pool = make_pool(1)
        await pool.load_page("21")
        assert pool.tracked_form("21").form_id == "b3"

        await pool.close()

        assert pool.pages == []
        assert channels[0].close_count == 1

    async def test_closed_session_is_replaced(self, make_pool, scripts, channels):
        scripts.extend([[_card_response("b3", "21")], [_card_response("b4", "22")]])
        pool = make_pool(1)
        await pool.load_page("21")
        # socket dropped by the server
        channels[0].is_open = False

        result = await pool.load_page("22")

        assert result.unwrap().form_id == "b4"
        assert len(channels) == 2
        assert channels[0].close_count == 1
        assert pool.pages == ["22"]
        assert pool.tracked_form("21") is None
        await pool.close()

    async def test_reopen_page_of_closed_session(self, make_pool, scripts, channels):
        scripts.extend([[_card_response("b3", "21")], [_card_response("b3", "21")]])
        pool = make_pool(1)
        await pool.load_page("21")
        channels[0].is_open = False

        result = await pool.load_page("21")

        assert result.is_ok
        assert len(channels) == 2
        assert len(channels[1].invocations()) == 1
        await pool.close()
