"""Tests for implementation resolution."""

import asyncio
from typing import Any

import pytest

from signalrpc.error import ErrorCode, RpcError
from signalrpc.resolver import (
    ImplementationProvider,
    TargetKind,
    build_resolver,
    invoke,
)


class Calculator(ImplementationProvider):
    """Provider with sync and async methods."""

    def add(self, a: int, b: int) -> int:
        return a + b

    async def slow_add(self, a: int, b: int) -> int:
        await asyncio.sleep(0)
        return a + b

    def _secret(self) -> str:
        return "hidden"

    label = "not callable"


class CustomProvider:
    """Duck-typed provider that is not an ImplementationProvider."""

    def __init__(self) -> None:
        self.seen: list[tuple[str, list[Any]]] = []

    def get_implementation(self, name: str, args: list[Any]) -> Any:
        self.seen.append((name, args))
        if name == "echo":
            return lambda value: value
        return None


class TestBuildResolver:
    """Tests for build_resolver."""

    def test_mapping(self) -> None:
        add = lambda a, b: a + b  # noqa: E731
        target = build_resolver({"add": add})

        assert target.kind is TargetKind.MAPPING
        assert target("add", [1, 2]) is add
        assert target("missing", []) is None

    def test_function(self) -> None:
        def lookup(name: str, args: list[Any]) -> Any:
            return len if name == "length" else None

        target = build_resolver(lookup)

        assert target.kind is TargetKind.FUNCTION
        assert target("length", ["abc"]) is len
        assert target("other", []) is None

    def test_provider(self) -> None:
        provider = CustomProvider()
        target = build_resolver(provider)

        assert target.kind is TargetKind.PROVIDER
        assert target("echo", ["hi"])("hi") == "hi"
        assert provider.seen == [("echo", ["hi"])]

    def test_provider_base_class(self) -> None:
        target = build_resolver(Calculator())

        assert target.kind is TargetKind.PROVIDER
        assert target("add", [1, 2])(1, 2) == 3
        assert target("_secret", []) is None
        assert target("label", []) is None
        assert target("get_implementation", []) is None
        assert target("missing", []) is None

    def test_provider_class_is_rejected(self) -> None:
        """A provider class must be instantiated before it is exposed."""
        with pytest.raises(RpcError) as exc_info:
            build_resolver(Calculator)
        assert exc_info.value.code == ErrorCode.INVALID_EXPOSE_TARGET
        assert "Calculator" in exc_info.value.message

    def test_plain_class_is_a_function_target(self) -> None:
        """Other classes are callables like any other."""
        target = build_resolver(dict)
        assert target.kind is TargetKind.FUNCTION

    @pytest.mark.parametrize("target", [42, "add", None, [lambda: 1]])
    def test_invalid_targets(self, target: Any) -> None:
        with pytest.raises(RpcError) as exc_info:
            build_resolver(target)
        assert exc_info.value.code == ErrorCode.INVALID_EXPOSE_TARGET


class TestInvoke:
    """Sync and async implementations look the same to callers."""

    @pytest.mark.asyncio
    async def test_sync_value(self) -> None:
        assert await invoke(lambda a, b: a * b, [6, 7]) == 42

    @pytest.mark.asyncio
    async def test_async_value(self) -> None:
        assert await invoke(Calculator().slow_add, [2, 3]) == 5

    @pytest.mark.asyncio
    async def test_future_value(self) -> None:
        future = asyncio.get_running_loop().create_future()
        future.set_result("ready")
        assert await invoke(lambda: future, []) == "ready"

    @pytest.mark.asyncio
    async def test_sync_raise(self) -> None:
        def boom() -> None:
            msg = "sync boom"
            raise ValueError(msg)

        with pytest.raises(ValueError, match="sync boom"):
            await invoke(boom, [])

    @pytest.mark.asyncio
    async def test_async_raise(self) -> None:
        async def boom() -> None:
            msg = "async boom"
            raise ValueError(msg)

        with pytest.raises(ValueError, match="async boom"):
            await invoke(boom, [])
