"""Shared pytest fixtures: mocked catalog transport, config and Telegram objects."""

from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from apkpure_client import APKPureClient
from bot_config import BotConfig


@pytest.fixture
def config(tmp_path):
    return BotConfig(bot_token="123:abc", downloads_dir=str(tmp_path / "cache"), debug=False)


class CatalogRoutes:
    """Serves canned responses for the mocked catalog and records every request."""

    def __init__(self):
        self.routes = {}
        self.requests = []

    def add(self, host: str, path: str, response):
        self.routes[(host, path)] = response

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.url.host, request.url.path))
        if route is None:
            return httpx.Response(404, text="not found")
        if callable(route):
            return route(request)
        return route


@pytest.fixture
def catalog():
    return CatalogRoutes()


@pytest.fixture
def make_client(catalog):
    """Factory for an APKPureClient wired to the mocked catalog."""

    def _make(**kwargs) -> APKPureClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(catalog.handler), follow_redirects=True)
        return APKPureClient(http_client=http, debug=False, **kwargs)

    return _make


@pytest.fixture
def telegram_message():
    """A chat message whose replies hand back a mocked status message."""
    status = Mock()
    status.edit_text = AsyncMock()
    status.delete = AsyncMock()

    message = Mock()
    message.chat_id = 42
    message.text = ""
    message.reply_text = AsyncMock(return_value=status)
    message.reply_document = AsyncMock()
    message.status = status
    return message


@pytest.fixture
def make_update(telegram_message):
    def _make(text: str = "", args=None):
        telegram_message.text = text
        update = Mock()
        update.effective_message = telegram_message
        context = Mock()
        context.args = args
        context.bot = Mock()
        context.bot.send_chat_action = AsyncMock()
        return update, context

    return _make
