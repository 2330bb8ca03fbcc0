from fastapi import APIRouter, HTTPException
from services.vehicle_catalog import vehicle_catalog

router = APIRouter()


@router.get("/makes")
async def list_makes():
    return {"makes": vehicle_catalog.makes()}


@router.get("/makes/{make}/models")
async def list_models(make: str):
    """
    Models and production years for a make.
    Accepts URL slugs ("land-cruiser") as well as display names.
    """
    models = vehicle_catalog.lookup(make)
    if models is None:
        raise HTTPException(status_code=404, detail=f"Unknown make: {make}")

    return {
        "make": vehicle_catalog.display_name(make, "make"),
        "models": [
            {"model": name, "start": years.start, "end": years.end}
            for name, years in sorted(models.items())
        ],
    }


@router.get("/tasks")
async def list_tasks():
    return {"tasks": vehicle_catalog.all_tasks()}
