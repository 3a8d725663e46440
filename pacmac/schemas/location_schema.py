from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic_extra_types.coordinate import Latitude, Longitude


class Coordinates(BaseModel):
    latitude: Latitude
    longitude: Longitude


class LocationSample(Coordinates):
    """A device geolocation fix supplied by the caller."""

    model_config = ConfigDict(extra="forbid")
    accuracy: float = Field(ge=0, description="Reported accuracy radius in meters")
    timestamp: datetime


class LocationSnapshot(Coordinates):
    accuracy: float | None = None
    timestamp: datetime
