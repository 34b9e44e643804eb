"""Opportunity ingestion and engine inspection endpoints."""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, HTTPException, Query, Request, status

from mev_bundler.errors import MissingFieldError, OpportunityValidationError
from mev_bundler.risk.models import MarketConditions

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/opportunities", status_code=status.HTTP_201_CREATED)
def submit_opportunity(request: Request, payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """Validate a detector opportunity and add it to the pending pool."""
    engine = request.app.state.engine
    try:
        opportunity = engine.submit_opportunity(payload)
    except OpportunityValidationError as e:
        logger.info(f"Rejected inbound opportunity: {e}")
        detail: Dict[str, Any] = {"message": str(e)}
        if isinstance(e, MissingFieldError):
            detail["missing_fields"] = e.fields
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)

    return {
        "opportunity_id": opportunity.opportunity_id,
        "pending": len(engine.pool)
    }


@router.put("/engine/market-conditions")
def update_market_conditions(request: Request, conditions: MarketConditions) -> Dict[str, Any]:
    """Replace the market snapshot used for risk assessment."""
    request.app.state.engine.update_market_conditions(conditions)
    return conditions.model_dump(mode="json")


@router.get("/engine/stats")
def engine_stats(request: Request) -> Dict[str, Any]:
    """Construction, pool, optimizer and risk statistics."""
    return request.app.state.engine.get_stats()


@router.get("/bundles")
def recent_bundles(
    request: Request,
    limit: int = Query(10, ge=1, le=1000, description="Maximum number of bundles to return")
) -> Dict[str, Any]:
    """Most recently constructed bundles, newest first."""
    bundles = request.app.state.engine.get_recent_bundles(limit)
    return {"bundles": [bundle.to_dict() for bundle in bundles]}
