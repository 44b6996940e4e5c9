"""
Unit tests for correlation module.
"""

import asyncio

import pytest

from light_controller.correlation import (
    correlation_context,
    generate_correlation_id,
    get_correlation_id,
    set_correlation_id,
)


@pytest.fixture(autouse=True)
def clear_correlation_id():
    set_correlation_id(None)
    yield
    set_correlation_id(None)


class TestGenerateCorrelationId:
    """Tests for generate_correlation_id"""

    def test_format(self):
        corr_id = generate_correlation_id()

        assert len(corr_id) == 32
        int(corr_id, 16)

    def test_unique(self):
        assert len({generate_correlation_id() for _ in range(100)}) == 100


class TestCorrelationContext:
    """Tests for correlation_context"""

    def test_sets_and_restores(self):
        set_correlation_id("outer")

        with correlation_context("inner") as corr_id:
            assert corr_id == "inner"
            assert get_correlation_id() == "inner"

        assert get_correlation_id() == "outer"

    def test_generates_when_omitted(self):
        with correlation_context() as corr_id:
            assert get_correlation_id() == corr_id
            assert len(corr_id) == 32

        assert get_correlation_id() is None

    def test_restores_after_exception(self):
        with pytest.raises(RuntimeError), correlation_context("failing"):
            raise RuntimeError

        assert get_correlation_id() is None

    @pytest.mark.asyncio
    async def test_isolated_between_tasks(self):
        seen: dict[str, str | None] = {}

        async def handle(name: str) -> None:
            with correlation_context(name):
                await asyncio.sleep(0.01)
                seen[name] = get_correlation_id()

        _ = await asyncio.gather(handle("first"), handle("second"))

        assert seen == {"first": "first", "second": "second"}
