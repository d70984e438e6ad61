"""Dispute endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.api.deps import ActorId, Gateway, get_db
from rentflow.models.dispute import Dispute, DisputeTimelineEntry
from rentflow.schemas.dispute import (
    DisputeComment,
    DisputeCreate,
    DisputeDismiss,
    DisputeNote,
    DisputeResolutionResponse,
    DisputeResolve,
    DisputeResponse,
    DisputeReviewRequest,
    TimelineEntryResponse,
)
from rentflow.services.dispute_service import dispute_service

router = APIRouter()

DB = Annotated[AsyncSession, Depends(get_db)]


@router.post("/", response_model=DisputeResponse, status_code=status.HTTP_201_CREATED)
async def open_dispute(data: DisputeCreate, actor_id: ActorId, db: DB) -> Dispute:
    """Open a dispute against a booking."""
    return await dispute_service.open_dispute(
        db,
        data.booking_id,
        initiator_id=actor_id,
        dispute_type=data.dispute_type,
        title=data.title,
        description=data.description,
        amount_claimed=data.amount_claimed,
        priority=data.priority,
        evidence_urls=data.evidence_urls,
        condition_report_id=data.condition_report_id,
    )


@router.get("/{dispute_id}", response_model=DisputeResponse)
async def get_dispute(dispute_id: UUID, db: DB) -> Dispute:
    return await dispute_service.get_dispute(db, dispute_id)


@router.get("/{dispute_id}/timeline", response_model=list[TimelineEntryResponse])
async def get_timeline(dispute_id: UUID, db: DB) -> list[DisputeTimelineEntry]:
    return await dispute_service.timeline(db, dispute_id)


@router.get("/{dispute_id}/resolution", response_model=DisputeResolutionResponse | None)
async def get_resolution(dispute_id: UUID, db: DB):
    return await dispute_service.get_resolution(db, dispute_id)


@router.post("/{dispute_id}/review", response_model=DisputeResponse)
async def start_review(dispute_id: UUID, data: DisputeReviewRequest, actor_id: ActorId, db: DB) -> Dispute:
    return await dispute_service.start_review(db, dispute_id, actor_id, data.assigned_to, data.note)


@router.post("/{dispute_id}/investigate", response_model=DisputeResponse)
async def investigate(dispute_id: UUID, data: DisputeNote, actor_id: ActorId, db: DB) -> Dispute:
    return await dispute_service.investigate(db, dispute_id, actor_id, data.note)


@router.post("/{dispute_id}/request-response", response_model=DisputeResponse)
async def request_response(dispute_id: UUID, data: DisputeNote, actor_id: ActorId, db: DB) -> Dispute:
    return await dispute_service.request_response(db, dispute_id, actor_id, data.note)


@router.post("/{dispute_id}/mediation", response_model=DisputeResponse)
async def start_mediation(dispute_id: UUID, data: DisputeNote, actor_id: ActorId, db: DB) -> Dispute:
    return await dispute_service.start_mediation(db, dispute_id, actor_id, data.note)


@router.post(
    "/{dispute_id}/comments",
    response_model=TimelineEntryResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(dispute_id: UUID, data: DisputeComment, actor_id: ActorId, db: DB) -> DisputeTimelineEntry:
    return await dispute_service.add_comment(db, dispute_id, actor_id, data.note)


@router.post("/{dispute_id}/resolve", response_model=DisputeResponse)
async def resolve_dispute(
    dispute_id: UUID,
    data: DisputeResolve,
    actor_id: ActorId,
    gateway: Gateway,
    db: DB,
) -> Dispute:
    """Resolve a dispute and apply its refund, adjustment and deposit deduction."""
    return await dispute_service.resolve(
        db,
        gateway,
        dispute_id,
        outcome=data.outcome,
        resolved_by=actor_id,
        refund_amount=data.refund_amount,
        payout_adjustment=data.payout_adjustment,
        deposit_deduction=data.deposit_deduction,
        notes=data.notes,
    )


@router.post("/{dispute_id}/close", response_model=DisputeResponse)
async def close_dispute(dispute_id: UUID, data: DisputeNote, actor_id: ActorId, db: DB) -> Dispute:
    return await dispute_service.close(db, dispute_id, actor_id, data.note)


@router.post("/{dispute_id}/dismiss", response_model=DisputeResponse)
async def dismiss_dispute(dispute_id: UUID, data: DisputeDismiss, actor_id: ActorId, db: DB) -> Dispute:
    """Close without action; the booking returns to its pre-dispute state."""
    return await dispute_service.dismiss(db, dispute_id, actor_id, data.reason)
