from feetrail.adapters.memory_store import MemoryStore
from feetrail.application.identity_cache import ProjectIdentityCache
from feetrail.application.routing import RoutingReconciler
from feetrail.application.sweep import run_startup_sweep
from feetrail.domain import abi
from feetrail.domain.errors import StoreUnavailableError
from feetrail.domain.models import ProjectRow

from conftest import DEV, OTHER_DEV, POOL_A, POOL_B, VAULT, reverted

ASSIGN = abi.selector(abi.VAULT_ASSIGN_DEV)


class DownRegistry:
    async def list_pool_projects(self):
        raise StoreUnavailableError("db down")

    async def list_projects_with_pool_and_owner(self):
        raise StoreUnavailableError("db down")


class BrokenRegistry(DownRegistry):
    async def list_projects_with_pool_and_owner(self):
        raise RuntimeError("bad query")


async def test_sweep_reconciles_each_owned_project(rpc, sender):
    registry = MemoryStore([
        ProjectRow("a", pool_id=POOL_A, owner_wallet=DEV),
        ProjectRow("b", pool_id=POOL_B, owner_wallet=OTHER_DEV),
        ProjectRow("c", pool_id=POOL_B),
    ])
    sender.fail(VAULT, ASSIGN, reverted("NoUnclaimedFees"))
    reconciler = RoutingReconciler(rpc=rpc, sender=sender, vault_addresses=[VAULT])

    summary = await run_startup_sweep(registry, reconciler, delay_s=0)

    assert (summary.updated, summary.skipped, summary.failed) == (1, 1, 0)
    assert len(sender.calls_to(VAULT, ASSIGN)) == 1


async def test_one_failing_project_does_not_stop_the_sweep(rpc, sender):
    registry = MemoryStore([
        ProjectRow("a", pool_id=POOL_A, owner_wallet=DEV),
        ProjectRow("b", pool_id=POOL_B, owner_wallet=OTHER_DEV),
    ])
    sender.fail(VAULT, ASSIGN, reverted("Paused"))
    reconciler = RoutingReconciler(rpc=rpc, sender=sender, vault_addresses=[VAULT])

    summary = await run_startup_sweep(registry, reconciler, delay_s=0)

    assert (summary.updated, summary.failed) == (1, 1)
    assert summary.errors[0].startswith("a:")


async def test_invalid_owner_wallet_counts_as_failure(rpc, sender):
    registry = MemoryStore([ProjectRow("a", pool_id=POOL_A, owner_wallet="0x" + "0" * 40)])
    reconciler = RoutingReconciler(rpc=rpc, sender=sender, vault_addresses=[VAULT])
    summary = await run_startup_sweep(registry, reconciler, delay_s=0)
    assert summary.failed == 1
    assert sender.sent == []


async def test_store_outage_ends_sweep_silently(rpc, sender):
    reconciler = RoutingReconciler(rpc=rpc, sender=sender, vault_addresses=[VAULT])
    assert (await run_startup_sweep(DownRegistry(), reconciler, delay_s=0)).failed == 0
    assert (await run_startup_sweep(BrokenRegistry(), reconciler, delay_s=0)).failed == 0
    assert sender.sent == []


async def test_identity_cache_keeps_snapshot_when_store_is_down():
    cache = ProjectIdentityCache(MemoryStore([ProjectRow("a", pool_id=POOL_A.upper().replace("0X", "0x"))]))
    await cache.refresh()
    assert cache.resolve(POOL_A) == "a"
    snapshot = cache.mapping

    cache.registry = DownRegistry()
    await cache.refresh()
    assert cache.mapping is snapshot
    assert cache.resolve(None) is None
    assert len(cache) == 1
