"""
Tests for SessionAuthProvider
"""

import pytest
from unittest.mock import AsyncMock, Mock

from storefront.services import AuthProvider, SessionAuthProvider


def test_satisfies_protocol(auth):
    assert isinstance(auth, AuthProvider)


def test_require_login_records_and_prompts():
    prompt = Mock()
    auth = SessionAuthProvider(login_prompt=prompt)

    auth.require_login("add items to cart")

    assert auth.login_prompts == ["add items to cart"]
    prompt.assert_called_once_with("add items to cart")


@pytest.mark.asyncio
async def test_login_logout_notify_listeners(auth, user_a):
    seen = []
    auth.subscribe(seen.append)

    await auth.login(user_a)
    await auth.logout()

    assert seen == [user_a, None]
    assert not auth.is_logged_in()


@pytest.mark.asyncio
async def test_async_listener_is_awaited(auth, user_a):
    listener = AsyncMock()
    auth.subscribe(listener)

    await auth.login(user_a)

    listener.assert_awaited_once_with(user_a)


@pytest.mark.asyncio
async def test_repeated_login_same_user_is_silent(signed_in_auth, user_a):
    listener = Mock()
    signed_in_auth.subscribe(listener)

    await signed_in_auth.login(user_a)

    listener.assert_not_called()


@pytest.mark.asyncio
async def test_logout_when_signed_out_is_silent(auth):
    listener = Mock()
    auth.subscribe(listener)

    await auth.logout()

    listener.assert_not_called()


@pytest.mark.asyncio
async def test_unsubscribe(auth, user_a):
    listener = Mock()
    unsubscribe = auth.subscribe(listener)

    unsubscribe()
    unsubscribe()
    await auth.login(user_a)

    listener.assert_not_called()


@pytest.mark.asyncio
async def test_broken_listener_does_not_block_others(auth, user_a):
    broken = Mock(side_effect=RuntimeError("boom"))
    healthy = Mock()
    auth.subscribe(broken)
    auth.subscribe(healthy)

    await auth.login(user_a)

    healthy.assert_called_once_with(user_a)
