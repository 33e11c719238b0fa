"""Tests for principal scoping."""

import asyncio

import pytest

from chorus.security import (
    AccessDeniedError,
    Principal,
    current_principal,
    principal_scope,
    require_principal,
)


def test_no_principal_by_default():
    assert current_principal() is None
    with pytest.raises(AccessDeniedError):
        require_principal()


def test_scope_sets_and_resets():
    user = Principal(user_id="u1")
    with principal_scope(user):
        assert require_principal() == user
    assert current_principal() is None


def test_nested_scopes_restore_outer():
    outer, inner = Principal(user_id="outer"), Principal(user_id="inner")
    with principal_scope(outer):
        with principal_scope(inner):
            assert current_principal() == inner
        assert current_principal() == outer


async def test_tasks_started_elsewhere_do_not_inherit_scope():
    async def peek():
        return current_principal()

    task = asyncio.create_task(peek())
    with principal_scope(Principal(user_id="u1")):
        await asyncio.sleep(0)
    assert await task is None
