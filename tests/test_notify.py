"""EmailJS notifier tests using an in-process httpx transport."""

import asyncio
import json

import httpx
import pytest

from capture_shop.errors import NotificationFailure
from capture_shop.notify import EmailJSNotifier

PARAMS = {"to_name": "Asha", "order_id": "ORD-1"}


def notifier_with(handler, access_token=None) -> EmailJSNotifier:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return EmailJSNotifier("service_x", "template_y", "user_z", access_token=access_token, client=client)


class TestEmailJSNotifier:
    def test_posts_account_triple_and_params(self) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, text="OK")

        asyncio.run(notifier_with(handler, access_token="secret").send(PARAMS))
        assert seen == [{
            "service_id": "service_x",
            "template_id": "template_y",
            "user_id": "user_z",
            "template_params": PARAMS,
            "accessToken": "secret",
        }]

    def test_access_token_is_optional(self) -> None:
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200)

        asyncio.run(notifier_with(handler).send(PARAMS))
        assert "accessToken" not in seen[0]

    def test_rejection(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, text="The service ID is invalid")

        with pytest.raises(NotificationFailure, match="400"):
            asyncio.run(notifier_with(handler).send(PARAMS))

    def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(NotificationFailure, match="unreachable"):
            asyncio.run(notifier_with(handler).send(PARAMS))
