"""
Dev fee routing reconciliation.

Once a developer is verified for a pool, every contract that independently
tracks "who owns pool X" has to agree, and fees escrowed while the owner was
unknown have to be released. There is no cross-contract atomicity, so this
is a best-effort saga of independent steps, run in a fixed order:

1. hook routing sync      (optional; assign-once on the hook side)
2. locker routing sync    (optional; one update per LP position)
3. escrow assign/recover  (terminal; may fall back across vault generations)

Every step is idempotent and the whole call can be repeated until it
converges. Expected-but-unsuccessful results are returned as data in
RoutingOutcome; only genuinely unexpected escrow failures are raised.
"""
from __future__ import annotations
import logging
from typing import Sequence

from eth_utils import is_address, to_checksum_address

from ..domain import abi
from ..domain.errors import (
    EscrowReconciliationError, InvalidRoutingInputError, RevertKind, classify_failure,
)
from ..domain.models import RoutingOutcome, RoutingRequest
from ..domain.value_types import Address, EscrowAction, is_dev_address, is_pool_id, short_id
from ..ports.chain import TransactionSender
from ..ports.rpc import RPCClient
from .capabilities import BytecodeCapabilityProbe

log = logging.getLogger(__name__)


class RoutingReconciler:
    def __init__(
        self,
        *,
        rpc: RPCClient,
        sender: TransactionSender | None,
        vault_addresses: Sequence[Address],
        hook_address: Address | None = None,
        factory_address: Address | None = None,
        locker_address: Address | None = None,
        probe: BytecodeCapabilityProbe | None = None,
    ) -> None:
        self.rpc = rpc
        self.sender = sender
        self.vault_addresses = list(vault_addresses)
        self.hook_address = hook_address
        self.factory_address = factory_address
        self.locker_address = locker_address
        self.probe = probe or BytecodeCapabilityProbe(rpc)

    async def reconcile(self, request: RoutingRequest) -> RoutingOutcome:
        if not is_pool_id(request.pool_id):
            raise InvalidRoutingInputError(f"Invalid poolId for fee routing: {request.pool_id}")
        if not is_dev_address(request.dev_address):
            raise InvalidRoutingInputError(f"Invalid dev address for fee routing: {request.dev_address}")

        sender = self.sender
        if sender is None:
            log.warning("Fee routing skipped for %s: no admin signing key configured", request.project_id)
            return RoutingOutcome()

        pool_id = request.pool_id.lower()
        dev = Address(to_checksum_address(request.dev_address))

        hook_updated, hook_blocked = await self._sync_hook(sender, pool_id, dev, request.project_id)
        locker_updated = await self._sync_locker(sender, pool_id, dev, request.pool_token_address, request.project_id)
        escrow_action = await self._assign_escrow(sender, pool_id, dev, request.project_id)

        outcome = RoutingOutcome(
            hook_routing_updated=hook_updated,
            hook_routing_blocked_by_pool_assigned=hook_blocked,
            locker_routing_updated=locker_updated,
            escrow_action=escrow_action,
        )
        log.info("Fee routing for %s pool=%s: %s", request.project_id, short_id(pool_id), outcome.to_dict())
        return outcome

    # ── 1. hook ──

    async def _sync_hook(self, sender: TransactionSender, pool_id: str, dev: Address, project_id: str) -> tuple[bool, bool]:
        if not self.hook_address:
            return False, False
        try:
            registered = abi.decode_bool(
                await self.rpc.call(self.hook_address, abi.encode_call(abi.REGISTERED_POOLS, abi.pool_id_bytes(pool_id))))
        except Exception as e:
            log.warning("Hook registration check failed for pool=%s: %s", short_id(pool_id), e)
            return False, False
        if not registered:
            log.debug("Pool %s not registered on hook, skipping", short_id(pool_id))
            return False, False

        try:
            tx_hash = await sender.send(
                self.hook_address, abi.encode_call(abi.HOOK_SET_DEV, abi.pool_id_bytes(pool_id), dev))
        except Exception as e:
            if classify_failure(e) is RevertKind.POOL_ALREADY_ASSIGNED:
                # the hook assigns once; later verifications land here
                log.info("Hook routing already assigned for pool=%s", short_id(pool_id))
                return False, True
            log.warning("Hook routing update failed for %s pool=%s: %s", project_id, short_id(pool_id), e)
            return False, False
        log.info("Updated hook dev routing for %s pool=%s tx=%s", project_id, short_id(pool_id), tx_hash)
        return True, False

    # ── 2. locker ──

    async def _sync_locker(
        self, sender: TransactionSender, pool_id: str, dev: Address, token: str | None, project_id: str,
    ) -> bool:
        if not token or not is_address(token):
            return False
        if not self.factory_address or not self.locker_address:
            return False
        try:
            info = abi.decode_launch_info(
                await self.rpc.call(self.factory_address, abi.encode_call(abi.GET_LAUNCH_INFO, to_checksum_address(token))))
        except Exception as e:
            log.warning("Launch info lookup failed for token=%s: %s", token, e)
            return False

        if info.pool_id.lower() != pool_id:
            log.warning("Launch info poolId %s does not match %s for token=%s, skipping locker sync",
                        short_id(info.pool_id), short_id(pool_id), token)
            return False
        if not info.lp_token_ids:
            return False

        any_updated = False
        for lp_token_id in info.lp_token_ids:
            try:
                tx_hash = await sender.send(
                    self.locker_address, abi.encode_call(abi.LOCKER_UPDATE_DEV, lp_token_id, dev))
            except Exception as e:
                log.warning("Failed to update locker dev routing for %s position=%d: %s", project_id, lp_token_id, e)
                continue
            log.info("Updated locker dev routing for %s position=%d tx=%s", project_id, lp_token_id, tx_hash)
            any_updated = True
        return any_updated

    # ── 3. escrow ──

    async def _assign_escrow(self, sender: TransactionSender, pool_id: str, dev: Address, project_id: str) -> EscrowAction:
        pool = abi.pool_id_bytes(pool_id)
        last_unexpected: EscrowReconciliationError | None = None

        for vault in self.vault_addresses:
            try:
                tx_hash = await sender.send(vault, abi.encode_call(abi.VAULT_ASSIGN_DEV, pool, dev))
                log.info("Escrow assigned to dev for %s pool=%s vault=%s tx=%s",
                         project_id, short_id(pool_id), vault, tx_hash)
                return "assigned"
            except Exception as e:
                kind = classify_failure(e)
                if kind is RevertKind.NO_UNCLAIMED_FEES:
                    return "noop"
                if kind is not RevertKind.POOL_ALREADY_ASSIGNED:
                    log.warning("assignDev failed unexpectedly on vault=%s pool=%s: %s", vault, short_id(pool_id), e)
                    last_unexpected = EscrowReconciliationError(pool_id, vault, e)
                    continue

            try:
                can_reassign = await self.probe.supports_reassign(vault)
            except Exception as e:
                log.warning("Capability probe failed for vault=%s: %s", vault, e)
                last_unexpected = EscrowReconciliationError(pool_id, vault, e)
                continue
            if not can_reassign:
                log.warning("Vault %s cannot recover escrow for pool=%s (no reassignDev)", vault, short_id(pool_id))
                continue

            try:
                tx_hash = await sender.send(vault, abi.encode_call(abi.VAULT_REASSIGN_DEV, pool, dev))
            except Exception as e:
                if classify_failure(e) is RevertKind.NO_UNCLAIMED_FEES:
                    return "noop"
                raise EscrowReconciliationError(pool_id, vault, e) from e
            log.info("Escrow reassigned to dev for %s pool=%s vault=%s tx=%s",
                     project_id, short_id(pool_id), vault, tx_hash)
            return "reassigned"

        if last_unexpected is not None:
            raise last_unexpected from last_unexpected.cause
        return "noop"
