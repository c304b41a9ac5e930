from __future__ import annotations
import asyncio, logging

from ..domain.errors import StoreUnavailableError
from ..domain.models import RoutingRequest, SweepSummary
from ..domain.value_types import short_id
from ..ports.storage import ProjectRegistry
from .routing import RoutingReconciler

log = logging.getLogger(__name__)

SWEEP_DELAY_S = 2.0


async def run_startup_sweep(
    registry: ProjectRegistry,
    reconciler: RoutingReconciler,
    *,
    delay_s: float = SWEEP_DELAY_S,
) -> SweepSummary:
    """
    Reconcile routing for every verified project once, at boot.

    Runs off the polling hot path. Failures are per project; an unreachable
    store ends the sweep silently.
    """
    summary = SweepSummary()
    try:
        projects = await registry.list_projects_with_pool_and_owner()
    except StoreUnavailableError:
        return summary
    except Exception as e:
        log.warning("Dev assignment sweep failed to list projects: %s", e)
        return summary

    for project in projects:
        if not project.pool_id or not project.owner_wallet:
            summary.skipped += 1
            continue
        await asyncio.sleep(delay_s)  # RPC rate limits
        try:
            outcome = await reconciler.reconcile(RoutingRequest(
                pool_id=project.pool_id,
                dev_address=project.owner_wallet,
                project_id=project.project_id,
                pool_token_address=project.pool_token_address,
            ))
        except Exception as e:
            summary.failed += 1
            summary.errors.append(f"{project.project_id}: {str(e)[:300]}")
            log.warning("Sweep: routing failed for %s: %s", project.name or project.project_id, str(e)[:300])
            continue

        if outcome.escrow_action != "noop":
            summary.updated += 1
        else:
            summary.skipped += 1
        log.info("Sweep completed for %s pool=%s dev=%s: %s", project.name or project.project_id,
                 short_id(project.pool_id), project.owner_wallet, outcome.to_dict())

    if summary.updated or summary.failed:
        log.info("Dev assignment sweep complete: updated=%d skipped=%d failed=%d",
                 summary.updated, summary.skipped, summary.failed)
    return summary
