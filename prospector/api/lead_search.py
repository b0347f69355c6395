"""
Lead search API routes.
"""
from typing import List
from fastapi import APIRouter, Depends, Query
from sqlmodel.ext.asyncio.session import AsyncSession

from prospector.database import get_session
from prospector.repositories.lead_repo import LeadRepository
from prospector.services.apollo_service import ApolloService
from prospector.services.lead_search_service import LeadSearchService
from prospector.schemas.lead_search import LeadSearchRequest, LeadSearchResponse, BatchRunSummary
from prospector.schemas.common import ErrorResponse
from prospector.api.deps import get_apollo_service

router = APIRouter(prefix="/api/lead-search", tags=["lead-search"])


@router.post(
    "",
    response_model=LeadSearchResponse,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}
)
async def run_lead_search(
    request: LeadSearchRequest,
    session: AsyncSession = Depends(get_session),
    apollo: ApolloService = Depends(get_apollo_service)
):
    """Run one batch: resume company pages, collect people, persist leads."""
    service = LeadSearchService(session, apollo)
    return await service.search(request)


@router.get("/runs", response_model=List[BatchRunSummary])
async def list_batch_runs(
    limit: int = Query(50, ge=1, le=500),
    session: AsyncSession = Depends(get_session)
):
    """Recent batch runs with their lead counts."""
    return await LeadRepository(session).list_batch_runs(limit)
