"""Tests for the milestone tracker."""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_api.errors import InvalidTransitionError, NotFoundError, UnauthorizedError, ValidationError
from escrow_api.schemas.contract import MilestoneCreate
from escrow_api.services import contract as contract_service
from escrow_api.services import milestone as milestone_service
from tests.conftest import Parties, create_contract


@pytest.mark.asyncio
async def test_auditor_marks_complete(db_session: AsyncSession, parties: Parties) -> None:
    contract = await create_contract(db_session, parties)
    first = contract.milestones[0]
    milestone = await milestone_service.set_milestone_completion(
        db_session, first.milestone_id, parties.auditor.profile_id, True
    )
    assert milestone.is_completed is True
    assert milestone.completed_at is not None


@pytest.mark.asyncio
async def test_client_cannot_mark_complete(db_session: AsyncSession, parties: Parties) -> None:
    contract = await create_contract(db_session, parties)
    with pytest.raises(UnauthorizedError):
        await milestone_service.set_milestone_completion(
            db_session, contract.milestones[0].milestone_id, parties.client.profile_id, True
        )


@pytest.mark.asyncio
async def test_client_clears_completion(db_session: AsyncSession, parties: Parties) -> None:
    contract = await create_contract(db_session, parties)
    milestone_id = contract.milestones[0].milestone_id
    await milestone_service.set_milestone_completion(db_session, milestone_id, parties.auditor.profile_id, True)
    milestone = await milestone_service.set_milestone_completion(
        db_session, milestone_id, parties.client.profile_id, False
    )
    assert milestone.is_completed is False
    assert milestone.completed_at is None


@pytest.mark.asyncio
async def test_milestones_frozen_on_terminal_contract(db_session: AsyncSession, parties: Parties) -> None:
    contract = await create_contract(db_session, parties)
    await contract_service.cancel_contract(db_session, contract.contract_id, parties.client.profile_id)
    with pytest.raises(InvalidTransitionError):
        await milestone_service.set_milestone_completion(
            db_session, contract.milestones[0].milestone_id, parties.auditor.profile_id, True
        )


@pytest.mark.asyncio
async def test_unknown_milestone(db_session: AsyncSession, parties: Parties) -> None:
    with pytest.raises(NotFoundError):
        await milestone_service.set_milestone_completion(
            db_session, uuid.uuid4(), parties.auditor.profile_id, True
        )


@pytest.mark.asyncio
async def test_list_milestones_keeps_request_order(db_session: AsyncSession, parties: Parties) -> None:
    contract = await create_contract(
        db_session, parties, total_amount="600", milestone_amounts=("100", "200", "300")
    )
    milestones = await milestone_service.list_milestones(db_session, contract.contract_id)
    assert [m.title for m in milestones] == ["Milestone 1", "Milestone 2", "Milestone 3"]


@pytest.mark.asyncio
async def test_list_milestones_unknown_contract(db_session: AsyncSession) -> None:
    with pytest.raises(NotFoundError):
        await milestone_service.list_milestones(db_session, uuid.uuid4())


@pytest.mark.asyncio
async def test_add_milestone_within_total(db_session: AsyncSession, parties: Parties) -> None:
    contract = await create_contract(db_session, parties, milestone_amounts=("400",))
    milestone = await milestone_service.add_milestone(
        db_session, contract.contract_id, parties.client.profile_id,
        MilestoneCreate(title="Fix review", amount=Decimal("600")),
    )
    assert milestone.title == "Fix review"
    milestones = await milestone_service.list_milestones(db_session, contract.contract_id)
    assert [m.title for m in milestones] == ["Milestone 1", "Fix review"]


@pytest.mark.asyncio
async def test_add_milestone_exceeding_total(db_session: AsyncSession, parties: Parties) -> None:
    contract = await create_contract(db_session, parties)
    with pytest.raises(ValidationError):
        await milestone_service.add_milestone(
            db_session, contract.contract_id, parties.client.profile_id,
            MilestoneCreate(title="Extra", amount=Decimal("1")),
        )


@pytest.mark.asyncio
async def test_add_milestone_client_only(db_session: AsyncSession, parties: Parties) -> None:
    contract = await create_contract(db_session, parties, milestone_amounts=("400",))
    with pytest.raises(UnauthorizedError):
        await milestone_service.add_milestone(
            db_session, contract.contract_id, parties.auditor.profile_id,
            MilestoneCreate(title="Extra", amount=Decimal("1")),
        )
