"""
End-to-end scenarios through the ProgressEngine facade.

Each engine call is its own unit of work (session, commit, close).  The
session_factory fixture joins those sessions to the per-test transaction,
so commits are real from the engine's point of view and still discarded
at teardown.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from progress_kernel.domain.statuses import ContractStatus
from progress_kernel.exceptions import (
    ContractServiceNotFoundError,
    InvalidStageStatusError,
    ProgressUpdateError,
    StageDeletionNotAllowedError,
    TransientStoreError,
)
from progress_kernel.models import ServiceRoutine
from progress_kernel.selectors.progress_selector import ProgressSelector
from progress_kernel.services.stage_instance_service import StageInstanceService


@pytest.fixture
def engine(progress_engine):
    return progress_engine


@pytest.fixture
def tax(create_service):
    return create_service("Tax")


def _by_name(engine, contract_service_id):
    return {i.name: i for i in engine.list_stage_instances(contract_service_id)}


class TestStageLifecycleScenario:
    def test_one_third_then_complete(self, engine, tax, create_contract, test_actor_id):
        for position, name in enumerate(["Collect", "Prepare", "File"], start=1):
            engine.create_stage(tax.id, name, position, test_actor_id)
        contract = create_contract()
        cs, report = engine.instantiate_contract_service(contract.id, tax.id, test_actor_id)
        assert report.created == 3
        stages = _by_name(engine, cs.id)

        first = engine.set_stage_status(stages["Collect"].id, "completed", test_actor_id)
        assert first.progress.percentage == 33
        assert first.auto_started
        assert first.outcome.new_status == "in_progress"

        rest = engine.set_stage_statuses(
            [
                {"id": stages["Prepare"].id, "status": "completed"},
                {"id": stages["File"].id, "status": "completed"},
            ],
            test_actor_id,
        )
        assert rest.auto_completed_services == (cs.id,)

        assert engine.contract_service_progress(cs.id).percentage == 100
        contract_view = engine.contract_progress(contract.id)
        assert contract_view.percentage == 100
        assert contract_view.services[0].status == "completed"

    def test_not_applicable_scenario(self, engine, tax, create_contract, test_actor_id):
        for position, name in enumerate(["A", "B", "C", "D"], start=1):
            engine.create_stage(tax.id, name, position, test_actor_id)
        cs, _ = engine.instantiate_contract_service(create_contract().id, tax.id, test_actor_id)
        stages = _by_name(engine, cs.id)
        engine.set_stage_statuses(
            [
                {"id": stages["A"].id, "status": "completed"},
                {"id": stages["B"].id, "status": "completed"},
            ],
            test_actor_id,
        )

        result = engine.set_stage_not_applicable(stages["D"].id, True, test_actor_id)

        assert result.progress.percentage == 67
        assert result.as_dict()["progress"] == {"total": 3, "completed": 2, "percentage": 67}

    def test_aggregation_across_services(
        self, engine, tax, create_service, create_contract, test_actor_id
    ):
        payroll = create_service("Payroll")
        for position, name in enumerate(["Collect", "Prepare", "File"], start=1):
            engine.create_stage(tax.id, name, position, test_actor_id)
        for position, name in enumerate(["Hours", "Run", "Pay", "Report"], start=1):
            engine.create_stage(payroll.id, name, position, test_actor_id)
        contract = create_contract()
        tax_cs, _ = engine.instantiate_contract_service(contract.id, tax.id, test_actor_id)
        payroll_cs, _ = engine.instantiate_contract_service(contract.id, payroll.id, test_actor_id)
        tax_stages = _by_name(engine, tax_cs.id)
        payroll_stages = _by_name(engine, payroll_cs.id)

        engine.set_stage_statuses(
            [{"id": i.id, "status": "completed"} for i in tax_stages.values()]
            + [
                {"id": payroll_stages["Hours"].id, "status": "completed"},
                {"id": payroll_stages["Run"].id, "status": "completed"},
            ],
            test_actor_id,
        )

        assert engine.contract_progress(contract.id).percentage == 71
        assert engine.client_progress(contract.client_id).percentage == 71
        assert engine.service_progress(payroll.id).percentage == 50

    def test_stage_added_after_completion_keeps_service_completed(
        self, engine, tax, create_contract, session, test_actor_id
    ):
        for position, name in enumerate(["A", "B", "C"], start=1):
            engine.create_stage(tax.id, name, position, test_actor_id)
        contract = create_contract()
        cs, _ = engine.instantiate_contract_service(contract.id, tax.id, test_actor_id)
        done = engine.set_stage_statuses(
            [{"id": i.id, "status": "completed"} for i in _by_name(engine, cs.id).values()],
            test_actor_id,
        )
        assert done.auto_completed_services == (cs.id,)

        _, report = engine.create_stage(tax.id, "D", 4, test_actor_id)

        assert report.as_dict() == {"created": 1, "removed": 0}
        assert engine.contract_service_progress(cs.id).percentage == 75
        assert _by_name(engine, cs.id)["D"].status == "pending"
        (service_view,) = engine.contract_progress(contract.id).services
        assert service_view.status == "completed"
        routines = session.execute(
            select(ServiceRoutine.status)
            .where(ServiceRoutine.contract_service_id == cs.id)
            .execution_options(populate_existing=True)
        ).scalars().all()
        assert routines == ["completed"]

    def test_retiring_last_open_stage_completes_service(
        self, engine, tax, create_contract, test_actor_id
    ):
        engine.create_stage(tax.id, "A", 1, test_actor_id)
        second, _ = engine.create_stage(tax.id, "B", 2, test_actor_id)
        contract = create_contract()
        cs, _ = engine.instantiate_contract_service(contract.id, tax.id, test_actor_id)
        started = engine.set_stage_status(_by_name(engine, cs.id)["A"].id, "completed", test_actor_id)
        assert started.auto_started

        report = engine.soft_delete_stage(second.id, test_actor_id)

        assert report.auto_completed_services == (cs.id,)
        assert engine.contract_service_progress(cs.id).percentage == 100
        (service_view,) = engine.contract_progress(contract.id).services
        assert service_view.status == "completed"


class TestCatalogThroughEngine:
    def test_hard_delete_reports_removed_instances(
        self, engine, tax, create_contract, test_actor_id
    ):
        kickoff, _ = engine.create_stage(tax.id, "Kickoff", 1, test_actor_id)
        engine.create_stage(tax.id, "Close", 2, test_actor_id)
        contract_services = [
            engine.instantiate_contract_service(create_contract().id, tax.id, test_actor_id)[0]
            for _ in range(3)
        ]

        with pytest.raises(StageDeletionNotAllowedError):
            engine.hard_delete_stage(kickoff.id, test_actor_id)

        report = engine.hard_delete_stage(kickoff.id, test_actor_id, is_admin=True)

        assert report.as_dict() == {"created": 0, "removed": 3}
        for cs in contract_services:
            assert list(_by_name(engine, cs.id)) == ["Close"]

    def test_soft_delete_and_list(self, engine, tax, test_actor_id):
        kickoff, _ = engine.create_stage(tax.id, "Kickoff", 1, test_actor_id)
        engine.create_stage(tax.id, "Close", 2, test_actor_id)

        engine.soft_delete_stage(kickoff.id, test_actor_id)

        assert [d.name for d in engine.list_stages(tax.id)] == ["Close"]
        assert [d.name for d in engine.list_stages(tax.id, include_inactive=True)] == [
            "Kickoff",
            "Close",
        ]

    def test_update_and_reorder(self, engine, tax, test_actor_id):
        kickoff, _ = engine.create_stage(tax.id, "Kickoff", 1, test_actor_id)
        close, _ = engine.create_stage(tax.id, "Close", 2, test_actor_id)

        engine.update_stage(kickoff.id, {"description": "Meet the client"}, test_actor_id)
        ordered, _ = engine.reorder_stages(
            tax.id,
            [{"id": kickoff.id, "sort_order": 2}, {"id": close.id, "sort_order": 1}],
            test_actor_id,
        )

        assert [d.name for d in ordered] == ["Close", "Kickoff"]
        assert ordered[1].description == "Meet the client"

    def test_default_stages(self, engine, tax, test_actor_id):
        stages, _ = engine.create_default_stages(tax.id, test_actor_id)
        assert [s.name for s in stages] == ["Planning", "Execution", "Review", "Delivery"]

    def test_sync_is_idempotent(self, engine, tax, create_contract, test_actor_id):
        engine.create_stage(tax.id, "Kickoff", 1, test_actor_id)
        engine.instantiate_contract_service(create_contract().id, tax.id, test_actor_id)

        assert engine.sync_service(tax.id, test_actor_id).is_noop
        assert engine.sync_all(test_actor_id).is_noop


class TestContractServiceThroughEngine:
    def test_stage_less_service_follows_manual_status(
        self, engine, tax, create_contract, test_actor_id
    ):
        cs, _ = engine.instantiate_contract_service(create_contract().id, tax.id, test_actor_id)
        assert engine.contract_service_progress(cs.id).percentage == 0

        engine.set_contract_service_status(cs.id, "completed", test_actor_id)

        snap = engine.contract_service_progress(cs.id)
        assert snap.is_synthetic
        assert snap.percentage == 100

    def test_delete(self, engine, tax, create_contract, test_actor_id):
        cs, _ = engine.instantiate_contract_service(create_contract().id, tax.id, test_actor_id)

        engine.delete_contract_service(cs.id, test_actor_id)

        with pytest.raises(ContractServiceNotFoundError):
            engine.contract_service_progress(cs.id)


class TestRankingsThroughEngine:
    def test_rank_contracts_and_clients(
        self, engine, tax, create_client, create_contract, test_actor_id
    ):
        engine.create_stage(tax.id, "Collect", 1, test_actor_id)
        engine.create_stage(tax.id, "File", 2, test_actor_id)
        leader = create_contract(client=create_client("Initech"), contract_number="CT-1")
        trailer = create_contract(client=create_client("Hooli"), contract_number="CT-2")
        create_contract(
            client=create_client("Gone"),
            contract_number="CT-3",
            status=ContractStatus.CANCELLED,
        )
        cs, _ = engine.instantiate_contract_service(leader.id, tax.id, test_actor_id)
        engine.instantiate_contract_service(trailer.id, tax.id, test_actor_id)
        engine.set_stage_status(_by_name(engine, cs.id)["Collect"].id, "completed", test_actor_id)

        assert [c.contract_number for c in engine.rank_contracts()] == ["CT-1", "CT-2"]
        assert [(c.name, c.percentage) for c in engine.rank_clients()] == [
            ("Initech", 50),
            ("Hooli", 0),
        ]


class TestUnitOfWork:
    def test_failed_batch_writes_nothing(self, engine, tax, create_contract, test_actor_id):
        engine.create_stage(tax.id, "Collect", 1, test_actor_id)
        engine.create_stage(tax.id, "File", 2, test_actor_id)
        cs, _ = engine.instantiate_contract_service(create_contract().id, tax.id, test_actor_id)
        stages = _by_name(engine, cs.id)

        with pytest.raises(InvalidStageStatusError):
            engine.set_stage_statuses(
                [
                    {"id": stages["Collect"].id, "status": "completed"},
                    {"id": stages["File"].id, "status": "archived"},
                ],
                test_actor_id,
            )

        assert engine.contract_service_progress(cs.id).percentage == 0
        assert all(i.status == "pending" for i in engine.list_stage_instances(cs.id))

    def test_store_failure_on_write_is_translated(
        self, engine, tax, create_contract, monkeypatch, test_actor_id, captured_logs
    ):
        engine.create_stage(tax.id, "Collect", 1, test_actor_id)
        cs, _ = engine.instantiate_contract_service(create_contract().id, tax.id, test_actor_id)
        instance_id = engine.list_stage_instances(cs.id)[0].id

        def broken(self, *args, **kwargs):
            raise OperationalError("UPDATE ...", {}, Exception("server closed the connection"))

        monkeypatch.setattr(StageInstanceService, "set_status", broken)

        with pytest.raises(ProgressUpdateError) as exc_info:
            engine.set_stage_status(instance_id, "completed", test_actor_id)

        assert exc_info.value.transient
        assert exc_info.value.operation == "set_stage_status"
        failures = [r for r in captured_logs() if r["message"] == "unit_of_work_failed"]
        assert failures[0]["code"] == "PROGRESS_UPDATE_FAILED"
        assert failures[0]["actor_id"] == str(test_actor_id)

    def test_transient_read_failure_is_retried_then_reported(
        self, engine, tax, create_contract, monkeypatch, test_actor_id, captured_logs
    ):
        cs, _ = engine.instantiate_contract_service(create_contract().id, tax.id, test_actor_id)
        calls = []

        def flaky(self, contract_service_id):
            calls.append(contract_service_id)
            raise OperationalError("SELECT ...", {}, Exception("could not connect"))

        monkeypatch.setattr(ProgressSelector, "_compute_for_contract_service", flaky)

        with pytest.raises(TransientStoreError) as exc_info:
            engine.contract_service_progress(cs.id)

        assert len(calls) == 2
        assert exc_info.value.operation == "compute_for_contract_service"
        messages = [r["message"] for r in captured_logs()]
        assert "store_read_retry" in messages
        assert "store_read_failed" in messages

    def test_read_recovers_after_one_transient_failure(
        self, engine, tax, create_contract, monkeypatch, test_actor_id
    ):
        cs, _ = engine.instantiate_contract_service(create_contract().id, tax.id, test_actor_id)
        original = ProgressSelector._compute_for_contract_service
        failures = iter([OperationalError("SELECT ...", {}, Exception("timeout"))])

        def flaky_once(self, contract_service_id):
            error = next(failures, None)
            if error is not None:
                raise error
            return original(self, contract_service_id)

        monkeypatch.setattr(ProgressSelector, "_compute_for_contract_service", flaky_once)

        assert engine.contract_service_progress(cs.id).percentage == 0

    def test_unknown_ids_raise_kernel_errors(self, engine, test_actor_id):
        with pytest.raises(ContractServiceNotFoundError):
            engine.set_contract_service_status(uuid4(), "completed", test_actor_id)
        with pytest.raises(ContractServiceNotFoundError):
            engine.list_stage_instances(uuid4())
