"""
Vehicle Configuration Validator
Rejects impossible vehicle/year/task combinations before any generation call
"""

import logging
from typing import Optional

from exceptions import ErrorCode, InvalidRequest
from models.vehicle import Vehicle
from services.vehicle_catalog import VehicleCatalog, vehicle_catalog

logger = logging.getLogger(__name__)


class VehicleValidator:
    """Validates vehicle configurations against the production-year catalog"""

    def __init__(self, catalog: Optional[VehicleCatalog] = None):
        self.catalog = catalog or vehicle_catalog

    def validate(self, vehicle: Vehicle, task: str) -> None:
        """
        Raise InvalidRequest when the request can never produce a guide.
        Pure and synchronous, runs before any external call.
        """
        if not task or not task.strip():
            raise InvalidRequest(
                "Please describe the repair task or symptom.", ErrorCode.EMPTY_TASK
            )

        details = {"year": vehicle.year, "make": vehicle.make, "model": vehicle.model}

        year = vehicle.year_number
        if year is None:
            raise InvalidRequest(
                f"'{vehicle.year}' is not a valid model year.",
                ErrorCode.INVALID_VEHICLE,
                details,
            )

        models = self.catalog.lookup(vehicle.make)
        if models is None:
            raise InvalidRequest(
                f"We don't have {vehicle.make} in our vehicle database.",
                ErrorCode.INVALID_VEHICLE,
                details,
            )

        production = self.catalog.year_range(vehicle.make, vehicle.model)
        if production is None:
            raise InvalidRequest(
                f"{vehicle.make} never made a model called {vehicle.model}.",
                ErrorCode.INVALID_VEHICLE,
                details,
            )

        if not production.contains(year):
            logger.warning(
                f"[VALIDATION] Rejected {year} {vehicle.make} {vehicle.model}: "
                f"valid range is {production.start}-{production.end}"
            )
            raise InvalidRequest(
                f"The {vehicle.make} {vehicle.model} was not produced in {year} "
                f"(production years {production.start}-{production.end}).",
                ErrorCode.INVALID_VEHICLE,
                {**details, "start": production.start, "end": production.end},
            )


vehicle_validator = VehicleValidator()
