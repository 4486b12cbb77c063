"""Savings plan endpoints"""

from typing import List

from fastapi import APIRouter, Depends

from paylink.api.dependencies import get_current_user_id
from paylink.core.dependencies import get_savings_service
from paylink.schemas.savings import (
    PlanDeletionResult,
    SavingsPlanCreate,
    SavingsPlanState,
    WithdrawalRequest,
    WithdrawalResult,
)
from paylink.services.savings.service import SavingsService

router = APIRouter()


@router.post("/plans", response_model=SavingsPlanState, status_code=201)
async def create_plan(
    request: SavingsPlanCreate,
    user_id: str = Depends(get_current_user_id),
    savings: SavingsService = Depends(get_savings_service),
):
    return await savings.create_plan(user_id, request)


@router.get("/plans", response_model=List[SavingsPlanState])
async def list_plans(
    user_id: str = Depends(get_current_user_id),
    savings: SavingsService = Depends(get_savings_service),
):
    return await savings.list_plans(user_id)


@router.get("/plans/{plan_id}", response_model=SavingsPlanState)
async def get_plan(
    plan_id: str,
    user_id: str = Depends(get_current_user_id),
    savings: SavingsService = Depends(get_savings_service),
):
    return await savings.get_plan(user_id, plan_id)


@router.post("/plans/{plan_id}/withdraw", response_model=WithdrawalResult)
async def withdraw(
    plan_id: str,
    request: WithdrawalRequest,
    user_id: str = Depends(get_current_user_id),
    savings: SavingsService = Depends(get_savings_service),
):
    return await savings.withdraw(user_id, plan_id, request.amount)


@router.delete("/plans/{plan_id}", response_model=PlanDeletionResult)
async def delete_plan(
    plan_id: str,
    user_id: str = Depends(get_current_user_id),
    savings: SavingsService = Depends(get_savings_service),
):
    """Close the plan and refund principal plus accrued interest"""
    return await savings.delete_plan(user_id, plan_id)
