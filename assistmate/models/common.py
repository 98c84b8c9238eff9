import math
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class GeoPoint(CamelModel):
    """GeoJSON point; ``coordinates`` is ``[longitude, latitude]``."""

    type: Literal["Point"] = "Point"
    coordinates: List[float]

    @field_validator('coordinates')
    def validate_coordinates(cls, v):
        if len(v) != 2:
            raise ValueError('coordinates must be [longitude, latitude]')
        longitude, latitude = v
        if not (math.isfinite(longitude) and math.isfinite(latitude)):
            raise ValueError('coordinates must be finite numbers')
        if not -180 <= longitude <= 180:
            raise ValueError('longitude must be between -180 and 180')
        if not -90 <= latitude <= 90:
            raise ValueError('latitude must be between -90 and 90')
        return v

    @property
    def longitude(self) -> float:
        return self.coordinates[0]

    @property
    def latitude(self) -> float:
        return self.coordinates[1]

    @classmethod
    def from_lon_lat(cls, longitude: Optional[float], latitude: Optional[float]) -> Optional["GeoPoint"]:
        if longitude is None or latitude is None:
            return None
        return cls(coordinates=[longitude, latitude])


class MessageResponse(BaseModel):
    message: str
