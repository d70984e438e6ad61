"""Typed per-category booking extensions.

Bookings may carry category-specific details. They are parsed into one of
these models at the boundary and stored as plain JSON; the financial code
never reads them.
"""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from rentflow.core.exceptions import ValidationError


class CategoryData(BaseModel):
    model_config = ConfigDict(extra="forbid")


class SpaceBookingData(CategoryData):
    purpose: Literal["stay", "event", "work", "storage", "parking"] = "stay"
    pets: bool = False
    arrival_notes: str | None = Field(None, max_length=500)


class VehicleBookingData(CategoryData):
    driver_license_number: str = Field(..., min_length=4, max_length=40)
    driver_age: int = Field(..., ge=18, le=100)
    pickup_location: str | None = Field(None, max_length=200)
    estimated_distance_km: int | None = Field(None, ge=0)


class InstrumentBookingData(CategoryData):
    delivery_required: bool = False
    delivery_address: str | None = Field(None, max_length=300)
    intended_use: Literal["practice", "performance", "recording", "teaching"] | None = None


class EquipmentBookingData(CategoryData):
    delivery_required: bool = False
    delivery_address: str | None = Field(None, max_length=300)
    operator_certified: bool = False


class OtherBookingData(CategoryData):
    model_config = ConfigDict(extra="allow")

    notes: str | None = Field(None, max_length=1000)


CATEGORY_DATA_MODELS: dict[str, type[CategoryData]] = {
    "spaces": SpaceBookingData,
    "vehicles": VehicleBookingData,
    "instruments": InstrumentBookingData,
    "equipment": EquipmentBookingData,
    "other": OtherBookingData,
}


def parse_category_data(category: str, data: dict | None) -> CategoryData | None:
    """Validate ``data`` against the model registered for ``category``.

    Raises:
        ValidationError: If the payload does not match the category model
    """
    if data is None:
        return None

    model = CATEGORY_DATA_MODELS.get(category, OtherBookingData)
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Invalid booking details for category '{category}'",
            errors=exc.errors(include_url=False, include_context=False),
        ) from exc
