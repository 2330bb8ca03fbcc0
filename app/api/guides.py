from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse
from models.generation import GenerateGuideRequest, PaywallResponse
from models.guide import PaywallSignal
from models.vehicle import GuideRequest, Vehicle
from exceptions import GuideServiceError
from services.guide_pipeline import GuidePipeline, get_guide_pipeline
import logging

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/generate-guide")
async def generate_guide(
    request: GenerateGuideRequest,
    x_subject_id: str = Header(..., min_length=1, description="User id or anonymous session id"),
    pipeline: GuidePipeline = Depends(get_guide_pipeline),
):
    """
    Produce a repair guide for a vehicle and task.
    200 guide | 400 impossible request | 402 quota used | 409 in progress | 503 try again
    """
    guide_request = GuideRequest(
        vehicle=Vehicle(year=request.year, make=request.make, model=request.model),
        task=request.task,
    )
    logger.info(
        f"Guide request: {guide_request.vehicle.label} / {guide_request.task} for {x_subject_id}"
    )

    try:
        result = await pipeline.produce_guide(
            guide_request.vehicle, guide_request.task, x_subject_id
        )
    except GuideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_dict())

    if isinstance(result, PaywallSignal):
        return JSONResponse(
            status_code=402,
            content=PaywallResponse(
                message=result.message, used=result.used, limit=result.limit
            ).model_dump(),
        )

    return result.model_dump(mode="json", by_alias=True)


@router.get("/guides/{guide_id}")
async def get_guide(guide_id: str, pipeline: GuidePipeline = Depends(get_guide_pipeline)):
    """Previously generated guide. Never generates and never counts against quota."""
    try:
        guide = await pipeline.get_cached(guide_id)
    except GuideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_dict())

    if guide is None:
        raise HTTPException(status_code=404, detail=f"Guide {guide_id} not found")
    return guide.model_dump(mode="json", by_alias=True)


@router.get("/usage")
async def get_usage(
    x_subject_id: str = Header(..., min_length=1),
    pipeline: GuidePipeline = Depends(get_guide_pipeline),
):
    try:
        status = await pipeline.usage_status(x_subject_id)
    except GuideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_dict())
    return status.model_dump()


@router.get("/history")
async def get_history(
    x_subject_id: str = Header(..., min_length=1),
    pipeline: GuidePipeline = Depends(get_guide_pipeline),
):
    try:
        items = await pipeline.history(x_subject_id)
    except GuideServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.to_dict())
    return [item.model_dump(mode="json") for item in items]
