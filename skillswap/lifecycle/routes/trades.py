from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, status

from ..dependencies import get_actor_id, get_lifecycle
from ..schemas.trade import (
    CancelRequestIn,
    ChangesRequestIn,
    CompletionRequestIn,
    ProposalCreate,
    ProposalOut,
    TradeCreate,
    TradeOut,
    TransitionOut,
)
from ..services.lifecycle import TradeLifecycle

router = APIRouter(prefix="/api/trades", tags=["trades"])


@router.post("", response_model=TradeOut, status_code=status.HTTP_201_CREATED)
async def create_trade(
    payload: TradeCreate,
    actor_id: str = Depends(get_actor_id),
    lifecycle: TradeLifecycle = Depends(get_lifecycle),
) -> TradeOut:
    trade = await lifecycle.trades.create_trade(actor_id, payload)
    return TradeOut.model_validate(trade)


@router.get("/{trade_id}", response_model=TradeOut)
async def get_trade(
    trade_id: uuid.UUID,
    lifecycle: TradeLifecycle = Depends(get_lifecycle),
) -> TradeOut:
    trade = await lifecycle.trades.get_trade(trade_id)
    return TradeOut.model_validate(trade)


@router.get("/{trade_id}/history", response_model=list[TransitionOut])
async def trade_history(
    trade_id: uuid.UUID,
    lifecycle: TradeLifecycle = Depends(get_lifecycle),
) -> list[TransitionOut]:
    transitions = await lifecycle.trades.history(trade_id)
    return [TransitionOut.model_validate(item) for item in transitions]


@router.post("/{trade_id}/cancel", response_model=TradeOut)
async def cancel_trade(
    trade_id: uuid.UUID,
    payload: CancelRequestIn,
    actor_id: str = Depends(get_actor_id),
    lifecycle: TradeLifecycle = Depends(get_lifecycle),
) -> TradeOut:
    trade = await lifecycle.trades.cancel(trade_id, actor_id, payload.reason)
    return TradeOut.model_validate(trade)


@router.get("/{trade_id}/proposals", response_model=list[ProposalOut])
async def list_proposals(
    trade_id: uuid.UUID,
    lifecycle: TradeLifecycle = Depends(get_lifecycle),
) -> list[ProposalOut]:
    proposals = await lifecycle.trades.list_proposals(trade_id)
    return [ProposalOut.model_validate(item) for item in proposals]


@router.post("/{trade_id}/proposals", response_model=ProposalOut, status_code=status.HTTP_201_CREATED)
async def submit_proposal(
    trade_id: uuid.UUID,
    payload: ProposalCreate,
    actor_id: str = Depends(get_actor_id),
    lifecycle: TradeLifecycle = Depends(get_lifecycle),
) -> ProposalOut:
    proposal = await lifecycle.proposals.submit(trade_id, actor_id, payload)
    return ProposalOut.model_validate(proposal)


@router.post("/{trade_id}/proposals/{proposal_id}/accept", response_model=TradeOut)
async def accept_proposal(
    trade_id: uuid.UUID,
    proposal_id: uuid.UUID,
    actor_id: str = Depends(get_actor_id),
    lifecycle: TradeLifecycle = Depends(get_lifecycle),
) -> TradeOut:
    trade = await lifecycle.proposals.accept(trade_id, proposal_id, actor_id)
    return TradeOut.model_validate(trade)


@router.post("/{trade_id}/proposals/{proposal_id}/reject", response_model=ProposalOut)
async def reject_proposal(
    trade_id: uuid.UUID,
    proposal_id: uuid.UUID,
    actor_id: str = Depends(get_actor_id),
    lifecycle: TradeLifecycle = Depends(get_lifecycle),
) -> ProposalOut:
    proposal = await lifecycle.proposals.reject(trade_id, proposal_id, actor_id)
    return ProposalOut.model_validate(proposal)


@router.post("/{trade_id}/completion", response_model=TradeOut)
async def request_completion(
    trade_id: uuid.UUID,
    payload: CompletionRequestIn,
    actor_id: str = Depends(get_actor_id),
    lifecycle: TradeLifecycle = Depends(get_lifecycle),
) -> TradeOut:
    trade = await lifecycle.completion.request_completion(trade_id, actor_id, payload.notes, payload.evidence)
    return TradeOut.model_validate(trade)


@router.post("/{trade_id}/confirm", response_model=TradeOut)
async def confirm_completion(
    trade_id: uuid.UUID,
    actor_id: str = Depends(get_actor_id),
    lifecycle: TradeLifecycle = Depends(get_lifecycle),
) -> TradeOut:
    trade = await lifecycle.confirmation.confirm(trade_id, actor_id)
    return TradeOut.model_validate(trade)


@router.post("/{trade_id}/changes", response_model=TradeOut)
async def request_changes(
    trade_id: uuid.UUID,
    payload: ChangesRequestIn,
    actor_id: str = Depends(get_actor_id),
    lifecycle: TradeLifecycle = Depends(get_lifecycle),
) -> TradeOut:
    trade = await lifecycle.confirmation.request_changes(trade_id, actor_id, payload.feedback)
    return TradeOut.model_validate(trade)
