"""
Tests for StageDefinitionService.

Tests cover:
1. Field validation on create / update
2. Propagation of new stages to existing contract services
3. Soft delete (retire) and reactivation
4. Admin-only hard delete with orphan cleanup
5. Bulk reorder and default checklist seeding
6. Contract service status re-derived after a stage is retired or deleted
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from progress_kernel.exceptions import (
    DefaultStagesExistError,
    EmptyBatchError,
    InvalidStageDefinitionError,
    ServiceNotFoundError,
    StageDefinitionNotFoundError,
    StageDeletionNotAllowedError,
)
from progress_kernel.models import ServiceRoutine


@pytest.fixture
def definitions(orchestrator):
    return orchestrator.stage_definitions


@pytest.fixture
def service(create_service):
    return create_service("Payroll")


# ============================================================================
# Create
# ============================================================================


class TestCreate:
    def test_create_returns_definition_and_report(self, definitions, service, test_actor_id):
        info, report = definitions.create(
            service.id,
            "  Kickoff  ",
            1,
            test_actor_id,
            description="First meeting",
            category="planning",
        )

        assert info.name == "Kickoff"
        assert info.sort_order == 1
        assert info.is_active
        assert info.is_required
        assert info.category == "planning"
        assert report.as_dict() == {"created": 0, "removed": 0}

    def test_create_syncs_to_existing_contract_services(
        self, definitions, service, instantiate, instances_of, test_actor_id
    ):
        first = instantiate(service.id)
        second = instantiate(service.id)

        info, report = definitions.create(service.id, "Kickoff", 1, test_actor_id)

        assert report.as_dict() == {"created": 2, "removed": 0}
        assert report.contract_services == 2
        for cs in (first, second):
            instance = instances_of(cs.id)["Kickoff"]
            assert instance.stage_definition_id == info.id
            assert instance.status == "pending"
            assert not instance.is_not_applicable

    @pytest.mark.parametrize("name", ["", "   ", None, 42, "x" * 256])
    def test_invalid_name_rejected(self, definitions, service, test_actor_id, name):
        with pytest.raises(InvalidStageDefinitionError) as exc_info:
            definitions.create(service.id, name, 1, test_actor_id)
        assert exc_info.value.field == "name"

    def test_name_at_max_length_accepted(self, definitions, service, test_actor_id):
        info, _ = definitions.create(service.id, "x" * 255, 1, test_actor_id)
        assert len(info.name) == 255

    @pytest.mark.parametrize("sort_order", [0, -1, True, "1", 1.5, None])
    def test_invalid_sort_order_rejected(self, definitions, service, test_actor_id, sort_order):
        with pytest.raises(InvalidStageDefinitionError) as exc_info:
            definitions.create(service.id, "Kickoff", sort_order, test_actor_id)
        assert exc_info.value.field == "sort_order"

    def test_unknown_service(self, definitions, test_actor_id):
        with pytest.raises(ServiceNotFoundError):
            definitions.create(uuid4(), "Kickoff", 1, test_actor_id)

    def test_create_logs(self, definitions, service, test_actor_id, captured_logs):
        info, _ = definitions.create(service.id, "Kickoff", 1, test_actor_id)

        created = [r for r in captured_logs() if r["message"] == "stage_definition_created"]
        assert len(created) == 1
        assert created[0]["stage_definition_id"] == str(info.id)
        assert created[0]["service_id"] == str(service.id)


# ============================================================================
# Update / soft delete
# ============================================================================


class TestUpdate:
    def test_partial_update(self, definitions, service, add_stages, test_actor_id):
        (stage,) = add_stages(service.id, "Kickoff")

        info, _ = definitions.update(
            stage.id, {"name": "Kick-off", "is_required": False}, test_actor_id
        )

        assert info.name == "Kick-off"
        assert not info.is_required
        assert info.sort_order == stage.sort_order

    def test_unknown_field_rejected(self, definitions, service, add_stages, test_actor_id):
        (stage,) = add_stages(service.id, "Kickoff")
        with pytest.raises(InvalidStageDefinitionError) as exc_info:
            definitions.update(stage.id, {"color": "red"}, test_actor_id)
        assert exc_info.value.field == "color"

    def test_invalid_value_leaves_definition_untouched(
        self, definitions, service, add_stages, test_actor_id
    ):
        (stage,) = add_stages(service.id, "Kickoff")
        with pytest.raises(InvalidStageDefinitionError):
            definitions.update(stage.id, {"name": "Renamed", "sort_order": 0}, test_actor_id)
        assert definitions.get(stage.id).name == "Kickoff"

    def test_unknown_definition(self, definitions, test_actor_id):
        with pytest.raises(StageDefinitionNotFoundError):
            definitions.update(uuid4(), {"name": "x"}, test_actor_id)


class TestSoftDelete:
    def test_retired_instances_kept_but_hidden(
        self, definitions, service, add_stages, instantiate, instances_of, test_actor_id
    ):
        kickoff, _ = add_stages(service.id, "Kickoff", "Delivery")
        cs = instantiate(service.id)

        report = definitions.soft_delete(kickoff.id, test_actor_id)

        assert report.as_dict() == {"created": 0, "removed": 0}
        assert set(instances_of(cs.id)) == {"Delivery"}
        retired = instances_of(cs.id, include_retired=True)["Kickoff"]
        assert retired.is_retired
        assert not definitions.get(kickoff.id).is_active

    def test_retired_stage_not_created_for_new_contract_services(
        self, definitions, service, add_stages, instantiate, instances_of, test_actor_id
    ):
        kickoff, _ = add_stages(service.id, "Kickoff", "Delivery")
        definitions.soft_delete(kickoff.id, test_actor_id)

        cs = instantiate(service.id)

        assert set(instances_of(cs.id, include_retired=True)) == {"Delivery"}

    def test_reactivation_revives_existing_instance(
        self, definitions, service, add_stages, instantiate, instances_of, test_actor_id
    ):
        (kickoff,) = add_stages(service.id, "Kickoff")
        cs = instantiate(service.id)
        original = instances_of(cs.id)["Kickoff"]
        definitions.soft_delete(kickoff.id, test_actor_id)

        info, report = definitions.update(kickoff.id, {"is_active": True}, test_actor_id)

        assert info.is_active
        assert report.created == 0
        revived = instances_of(cs.id)["Kickoff"]
        assert revived.id == original.id
        assert not revived.is_retired

    def test_reactivation_creates_instances_for_newer_contract_services(
        self, definitions, service, add_stages, instantiate, instances_of, test_actor_id
    ):
        kickoff, _ = add_stages(service.id, "Kickoff", "Delivery")
        definitions.soft_delete(kickoff.id, test_actor_id)
        cs = instantiate(service.id)

        _, report = definitions.update(kickoff.id, {"is_active": True}, test_actor_id)

        assert report.created == 1
        assert set(instances_of(cs.id)) == {"Kickoff", "Delivery"}

    def test_list_by_service_hides_inactive(self, definitions, service, add_stages, test_actor_id):
        kickoff, delivery = add_stages(service.id, "Kickoff", "Delivery")
        definitions.soft_delete(kickoff.id, test_actor_id)

        assert [d.id for d in definitions.list_by_service(service.id)] == [delivery.id]
        assert [
            d.id for d in definitions.list_by_service(service.id, include_inactive=True)
        ] == [kickoff.id, delivery.id]


# ============================================================================
# Hard delete
# ============================================================================


class TestHardDelete:
    def test_requires_admin(self, definitions, service, add_stages, instantiate, instances_of, test_actor_id):
        (kickoff,) = add_stages(service.id, "Kickoff")
        cs = instantiate(service.id)

        with pytest.raises(StageDeletionNotAllowedError):
            definitions.hard_delete(kickoff.id, test_actor_id)

        assert "Kickoff" in instances_of(cs.id)

    def test_removes_definition_and_every_instance(
        self, definitions, service, add_stages, instantiate, instances_of, test_actor_id
    ):
        kickoff, _ = add_stages(service.id, "Kickoff", "Delivery")
        contract_services = [instantiate(service.id) for _ in range(3)]

        report = definitions.hard_delete(kickoff.id, test_actor_id, is_admin=True)

        assert report.as_dict() == {"created": 0, "removed": 3}
        for cs in contract_services:
            assert set(instances_of(cs.id, include_retired=True)) == {"Delivery"}
        with pytest.raises(StageDefinitionNotFoundError):
            definitions.get(kickoff.id)

    def test_hard_delete_of_retired_definition(
        self, definitions, service, add_stages, instantiate, test_actor_id
    ):
        (kickoff,) = add_stages(service.id, "Kickoff")
        instantiate(service.id)
        definitions.soft_delete(kickoff.id, test_actor_id)

        report = definitions.hard_delete(kickoff.id, test_actor_id, is_admin=True)

        assert report.removed == 1

    def test_unknown_definition(self, definitions, test_actor_id):
        with pytest.raises(StageDefinitionNotFoundError):
            definitions.hard_delete(uuid4(), test_actor_id, is_admin=True)


# ============================================================================
# Reorder / defaults
# ============================================================================


class TestReorder:
    def test_reorder_changes_listing_order(self, definitions, service, add_stages, test_actor_id):
        kickoff, review, delivery = add_stages(service.id, "Kickoff", "Review", "Delivery")

        ordered, report = definitions.reorder(
            service.id,
            [
                {"id": delivery.id, "sort_order": 1},
                {"id": str(kickoff.id), "sort_order": 2},
                {"id": review.id, "sort_order": 3},
            ],
            test_actor_id,
        )

        assert [d.name for d in ordered] == ["Delivery", "Kickoff", "Review"]
        assert report.is_noop

    def test_reorder_is_reflected_in_instance_order(
        self, definitions, service, add_stages, instantiate, instances_of, test_actor_id
    ):
        kickoff, delivery = add_stages(service.id, "Kickoff", "Delivery")
        cs = instantiate(service.id)

        definitions.reorder(
            service.id,
            [{"id": kickoff.id, "sort_order": 5}, {"id": delivery.id, "sort_order": 1}],
            test_actor_id,
        )

        assert list(instances_of(cs.id)) == ["Delivery", "Kickoff"]

    def test_definition_of_another_service_rejected(
        self, definitions, service, create_service, add_stages, test_actor_id
    ):
        (kickoff,) = add_stages(service.id, "Kickoff")
        other = create_service("Audit")
        (foreign,) = add_stages(other.id, "Fieldwork")

        with pytest.raises(StageDefinitionNotFoundError):
            definitions.reorder(
                service.id,
                [{"id": kickoff.id, "sort_order": 2}, {"id": foreign.id, "sort_order": 1}],
                test_actor_id,
            )
        assert definitions.get(kickoff.id).sort_order == 1

    def test_malformed_id_is_not_found(self, definitions, service, test_actor_id):
        with pytest.raises(StageDefinitionNotFoundError):
            definitions.reorder(service.id, [{"id": "nope", "sort_order": 1}], test_actor_id)

    def test_empty_reorder_rejected(self, definitions, service, test_actor_id):
        with pytest.raises(EmptyBatchError):
            definitions.reorder(service.id, [], test_actor_id)


class TestDefaultStages:
    def test_seeds_configured_checklist(
        self, definitions, service, instantiate, instances_of, test_actor_id
    ):
        cs = instantiate(service.id)

        stages, report = definitions.create_default_stages(service.id, test_actor_id)

        assert [(s.name, s.sort_order) for s in stages] == [
            ("Planning", 1),
            ("Execution", 2),
            ("Review", 3),
            ("Delivery", 4),
        ]
        assert stages[0].category == "planning"
        assert report.created == 4
        assert list(instances_of(cs.id)) == ["Planning", "Execution", "Review", "Delivery"]

    def test_refuses_service_with_active_stages(
        self, definitions, service, add_stages, test_actor_id
    ):
        add_stages(service.id, "Kickoff", "Delivery")

        with pytest.raises(DefaultStagesExistError) as exc_info:
            definitions.create_default_stages(service.id, test_actor_id)
        assert exc_info.value.existing_count == 2

    def test_unknown_service(self, definitions, test_actor_id):
        with pytest.raises(ServiceNotFoundError):
            definitions.create_default_stages(uuid4(), test_actor_id)


# ============================================================================
# Status propagation after definition changes
# ============================================================================


def _routine_statuses(session, contract_service_id):
    return [
        r.status
        for r in session.execute(
            select(ServiceRoutine)
            .where(ServiceRoutine.contract_service_id == contract_service_id)
            .execution_options(populate_existing=True)
        ).scalars()
    ]


class TestStatusFollowsDefinitionChanges:
    @pytest.fixture
    def half_done(self, service, add_stages, instantiate, instances_of, orchestrator, test_actor_id):
        """Stages A and B; A completed, so the contract service is in progress."""
        first, second = add_stages(service.id, "A", "B")
        cs = instantiate(service.id)
        orchestrator.stage_instances.set_status(
            instances_of(cs.id)["A"].id, "completed", test_actor_id
        )
        assert orchestrator.contract_services.get(cs.id).status == "in_progress"
        return cs, second

    def test_retiring_last_open_stage_completes_service(
        self, definitions, half_done, orchestrator, session, test_actor_id
    ):
        cs, second = half_done

        report = definitions.soft_delete(second.id, test_actor_id)

        assert report.auto_completed_services == (cs.id,)
        assert report.transitions[0].progress.percentage == 100
        assert orchestrator.contract_services.get(cs.id).status == "completed"
        assert _routine_statuses(session, cs.id) == ["completed"]

    def test_deactivating_through_update_completes_service(
        self, definitions, half_done, orchestrator, test_actor_id
    ):
        cs, second = half_done

        _, report = definitions.update(second.id, {"is_active": False}, test_actor_id)

        assert report.auto_completed_services == (cs.id,)
        assert orchestrator.contract_services.get(cs.id).status == "completed"

    def test_hard_deleting_last_open_stage_completes_service(
        self, definitions, half_done, orchestrator, session, test_actor_id
    ):
        cs, second = half_done

        report = definitions.hard_delete(second.id, test_actor_id, is_admin=True)

        assert report.removed == 1
        assert report.auto_completed_services == (cs.id,)
        assert orchestrator.contract_services.get(cs.id).status == "completed"
        assert _routine_statuses(session, cs.id) == ["completed"]

    def test_no_transition_when_progress_stays_partial(
        self, definitions, service, add_stages, instantiate, orchestrator, test_actor_id
    ):
        first, _, _ = add_stages(service.id, "A", "B", "C")
        cs = instantiate(service.id)

        report = definitions.soft_delete(first.id, test_actor_id)

        assert report.transitions == ()
        assert orchestrator.contract_services.get(cs.id).status == "not_started"

    def test_hold_state_is_not_overridden(
        self, definitions, service, add_stages, instantiate, instances_of, orchestrator, test_actor_id
    ):
        _, second = add_stages(service.id, "A", "B")
        cs = instantiate(service.id, status="suspended")
        orchestrator.stage_instances.set_status(
            instances_of(cs.id)["A"].id, "completed", test_actor_id
        )

        report = definitions.soft_delete(second.id, test_actor_id)

        assert report.transitions == ()
        assert orchestrator.contract_services.get(cs.id).status == "suspended"
