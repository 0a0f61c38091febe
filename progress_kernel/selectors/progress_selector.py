"""
Module: progress_kernel.selectors.progress_selector
Responsibility: Completion percentages for contract services, contracts,
    clients and catalog services, computed on demand from stage instances.
Architecture position: Kernel > Selectors.  Fetches rows, then delegates
    all arithmetic to progress_kernel.domain.progress.

Invariants enforced:
    - No stored percentages: every figure is derived from instance rows.
    - Not-applicable instances and instances whose definition is retired
      are excluded from both sides of the fraction.
    - Aggregates issue a fixed number of queries regardless of how many
      contracts or contract services are involved (batched IN fetch plus
      an in-memory fold).
    - Client progress only counts ACTIVE contracts.

Failure modes:
    - ContractServiceNotFoundError / ContractNotFoundError /
      ClientNotFoundError / ServiceNotFoundError from the direct
      ``compute_for_*`` calls.
    - Ranking calls never raise for missing data; they return [].
"""

from collections import defaultdict
from collections.abc import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select

from progress_kernel.domain.dtos import (
    ClientProgress,
    ContractProgress,
    ContractServiceProgress,
    ServiceProgress,
)
from progress_kernel.domain.progress import (
    ProgressSnapshot,
    StageFact,
    aggregate,
    contract_service_progress,
)
from progress_kernel.domain.statuses import ContractStatus, status_value
from progress_kernel.exceptions import (
    ClientNotFoundError,
    ContractNotFoundError,
    ContractServiceNotFoundError,
    ServiceNotFoundError,
)
from progress_kernel.logging_config import get_logger
from progress_kernel.models.catalog import Service, ServiceStageDefinition
from progress_kernel.models.contract import Client, Contract, ContractService
from progress_kernel.models.stage_instance import ContractServiceStageInstance
from progress_kernel.selectors.base import BaseSelector

logger = get_logger("selectors.progress")


class ProgressSelector(BaseSelector):
    """
    Read side of the progress engine.

    Usage:
        selector = ProgressSelector(session)
        snap = selector.compute_for_contract_service(contract_service_id)
        ranking = selector.list_client_progress()
    """

    # ------------------------------------------------------------------
    # Direct lookups
    # ------------------------------------------------------------------

    def compute_for_contract_service(self, contract_service_id: UUID) -> ProgressSnapshot:
        """
        Progress of one contract service.

        Raises:
            ContractServiceNotFoundError: If the contract service does not exist.
        """
        return self._read(
            "compute_for_contract_service",
            lambda: self._compute_for_contract_service(contract_service_id),
        )

    def compute_for_contract(self, contract_id: UUID) -> ContractProgress:
        """Progress of one contract summed over all its contract services."""
        return self._read(
            "compute_for_contract",
            lambda: self._compute_for_contract(contract_id),
        )

    def compute_for_client(self, client_id: UUID) -> ClientProgress:
        """Progress of one client summed over its active contracts."""
        return self._read(
            "compute_for_client",
            lambda: self._compute_for_client(client_id),
        )

    def compute_for_service(self, service_id: UUID) -> ServiceProgress:
        """Catalog-level progress of a service across every contract service."""
        return self._read(
            "compute_for_service",
            lambda: self._compute_for_service(service_id),
        )

    # ------------------------------------------------------------------
    # Rankings
    # ------------------------------------------------------------------

    def list_contract_progress(self) -> list[ContractProgress]:
        """Active contracts ranked by percentage, highest first."""
        return self._read("list_contract_progress", self._list_contract_progress)

    def list_client_progress(self) -> list[ClientProgress]:
        """
        Clients with at least one active contract, ranked by percentage.

        Clients without active contracts are omitted rather than reported
        at 0%.
        """
        return self._read("list_client_progress", self._list_client_progress)

    # ------------------------------------------------------------------
    # Implementation
    # ------------------------------------------------------------------

    def _compute_for_contract_service(self, contract_service_id: UUID) -> ProgressSnapshot:
        status = self.session.execute(
            select(ContractService.status).where(
                ContractService.id == contract_service_id
            )
        ).scalar_one_or_none()
        if status is None:
            raise ContractServiceNotFoundError(str(contract_service_id))

        facts = self._facts_by_contract_service([contract_service_id])
        return contract_service_progress(
            facts.get(contract_service_id, ()),
            status_value(status),
        )

    def _compute_for_contract(self, contract_id: UUID) -> ContractProgress:
        contract = self.session.get(Contract, contract_id)
        if contract is None:
            raise ContractNotFoundError(str(contract_id))
        return self._contract_progress([contract])[0]

    def _compute_for_client(self, client_id: UUID) -> ClientProgress:
        client = self.session.get(Client, client_id)
        if client is None:
            raise ClientNotFoundError(str(client_id))

        contracts = self.session.execute(
            select(Contract).where(Contract.client_id == client_id)
        ).scalars().all()
        return self._client_progress(client, contracts)

    def _compute_for_service(self, service_id: UUID) -> ServiceProgress:
        service = self.session.get(Service, service_id)
        if service is None:
            raise ServiceNotFoundError(str(service_id))

        rows = self.session.execute(
            select(ContractService.id, ContractService.status).where(
                ContractService.service_id == service_id
            )
        ).all()
        facts = self._facts_by_contract_service([row.id for row in rows])
        snapshots = [
            contract_service_progress(facts.get(row.id, ()), status_value(row.status))
            for row in rows
        ]
        return ServiceProgress(
            service_id=service.id,
            name=service.name,
            progress=aggregate(snapshots),
            contract_services=len(rows),
        )

    def _list_contract_progress(self) -> list[ContractProgress]:
        contracts = self.session.execute(
            select(Contract).where(Contract.status == ContractStatus.ACTIVE.value)
        ).scalars().all()
        ranked = self._contract_progress(contracts)
        ranked.sort(key=lambda cp: (-cp.percentage, cp.contract_number))
        return ranked

    def _list_client_progress(self) -> list[ClientProgress]:
        clients = self.session.execute(select(Client)).scalars().all()
        if not clients:
            return []

        contracts_by_client: dict[UUID, list[Contract]] = defaultdict(list)
        for contract in self.session.execute(select(Contract)).scalars():
            contracts_by_client[contract.client_id].append(contract)

        active_ids = [
            c.id
            for contracts in contracts_by_client.values()
            for c in contracts
            if c.is_active
        ]
        snapshots = self._snapshots_by_contract(active_ids)

        ranked: list[ClientProgress] = []
        for client in clients:
            contracts = contracts_by_client.get(client.id, [])
            active = [c for c in contracts if c.is_active]
            if not active:
                continue
            ranked.append(
                ClientProgress(
                    client_id=client.id,
                    name=client.name,
                    progress=aggregate(snapshots[c.id] for c in active),
                    active_contracts=len(active),
                    total_contracts=len(contracts),
                )
            )
        ranked.sort(key=lambda cp: (-cp.percentage, cp.name))
        logger.debug("client_progress_ranked", extra={"clients": len(ranked)})
        return ranked

    def _client_progress(
        self,
        client: Client,
        contracts: Sequence[Contract],
    ) -> ClientProgress:
        active = [c for c in contracts if c.is_active]
        snapshots = self._snapshots_by_contract([c.id for c in active])
        return ClientProgress(
            client_id=client.id,
            name=client.name,
            progress=aggregate(snapshots[c.id] for c in active),
            active_contracts=len(active),
            total_contracts=len(contracts),
        )

    def _snapshots_by_contract(
        self,
        contract_ids: Sequence[UUID],
    ) -> dict[UUID, ProgressSnapshot]:
        """Aggregate snapshot per contract; contracts without services map to empty."""
        lines = self._service_lines(contract_ids)
        return {
            contract_id: aggregate(line.progress for line in lines.get(contract_id, ()))
            for contract_id in contract_ids
        }

    def _contract_progress(self, contracts: Sequence[Contract]) -> list[ContractProgress]:
        lines = self._service_lines([c.id for c in contracts])
        result = []
        for contract in contracts:
            contract_lines = lines.get(contract.id, ())
            result.append(
                ContractProgress(
                    contract_id=contract.id,
                    client_id=contract.client_id,
                    contract_number=contract.contract_number,
                    status=status_value(contract.status),
                    progress=aggregate(line.progress for line in contract_lines),
                    services=tuple(contract_lines),
                )
            )
        return result

    def _service_lines(
        self,
        contract_ids: Sequence[UUID],
    ) -> dict[UUID, list[ContractServiceProgress]]:
        """Per-contract progress lines; two queries for any number of contracts."""
        if not contract_ids:
            return {}

        rows = self.session.execute(
            select(
                ContractService.id,
                ContractService.contract_id,
                ContractService.service_id,
                ContractService.status,
                Service.name,
            )
            .join(Service, Service.id == ContractService.service_id)
            .where(ContractService.contract_id.in_(contract_ids))
            .order_by(Service.name, ContractService.id)
        ).all()

        facts = self._facts_by_contract_service([row.id for row in rows])

        lines: dict[UUID, list[ContractServiceProgress]] = defaultdict(list)
        for row in rows:
            status = status_value(row.status)
            lines[row.contract_id].append(
                ContractServiceProgress(
                    contract_service_id=row.id,
                    service_id=row.service_id,
                    service_name=row.name,
                    status=status,
                    progress=contract_service_progress(facts.get(row.id, ()), status),
                )
            )
        return lines

    def _facts_by_contract_service(
        self,
        contract_service_ids: Iterable[UUID],
    ) -> dict[UUID, list[StageFact]]:
        ids = list(contract_service_ids)
        if not ids:
            return {}

        rows = self.session.execute(
            select(
                ContractServiceStageInstance.contract_service_id,
                ContractServiceStageInstance.status,
                ContractServiceStageInstance.is_not_applicable,
                ServiceStageDefinition.is_active,
            )
            .join(
                ServiceStageDefinition,
                ServiceStageDefinition.id
                == ContractServiceStageInstance.stage_definition_id,
            )
            .where(ContractServiceStageInstance.contract_service_id.in_(ids))
        ).all()

        facts: dict[UUID, list[StageFact]] = defaultdict(list)
        for row in rows:
            facts[row.contract_service_id].append(
                StageFact(
                    status=status_value(row.status),
                    is_not_applicable=row.is_not_applicable,
                    is_retired=not row.is_active,
                )
            )
        return facts
