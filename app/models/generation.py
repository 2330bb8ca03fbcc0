from pydantic import BaseModel, Field


class GenerateGuideRequest(BaseModel):
    year: str
    make: str
    model: str
    task: str = Field(..., description="Repair job, symptom or diagnostic code")

    class Config:
        json_schema_extra = {
            "example": {
                "year": "2015",
                "make": "Honda",
                "model": "Civic",
                "task": "replace front brakes",
            }
        }


class PaywallResponse(BaseModel):
    paywall: bool = True
    message: str
    used: int
    limit: int
