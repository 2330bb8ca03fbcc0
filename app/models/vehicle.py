from pydantic import BaseModel, Field


class Vehicle(BaseModel):
    year: str = Field(..., description="4-digit model year")
    make: str
    model: str

    class Config:
        frozen = True

    @property
    def label(self) -> str:
        return f"{self.year} {self.make} {self.model}".strip()

    @property
    def year_number(self) -> int | None:
        year = str(self.year).strip()
        if len(year) != 4 or not year.isdigit():
            return None
        return int(year)


class GuideRequest(BaseModel):
    vehicle: Vehicle
    task: str = Field(..., description="Repair job, symptom or diagnostic code")

    class Config:
        frozen = True
