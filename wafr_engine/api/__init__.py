"""API router for v1 endpoints."""

from fastapi import APIRouter

from wafr_engine.api import analyzer

router = APIRouter()

# Review, IaC generation and progress routes
router.include_router(analyzer.router, prefix="/analyzer", tags=["analyzer"])
