import enum
from datetime import datetime
from typing import List, Optional

from pydantic import ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from assistmate.database.models import RequestStatus
from assistmate.models.common import CamelModel, GeoPoint
from assistmate.models.user import UserSummary


class RequestAction(str, enum.Enum):
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"
    CANCEL = "CANCEL"
    COMPLETE = "COMPLETE"

    @classmethod
    def parse(cls, value: str) -> Optional["RequestAction"]:
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


def _not_blank(v):
    if v is not None and not v.strip():
        raise ValueError('must not be empty')
    return v.strip() if v is not None else v


def _unique_ids(v):
    if v is None:
        return v
    seen = []
    for user_id in v:
        if user_id not in seen:
            seen.append(user_id)
    return seen


class RequestCreate(CamelModel):
    title: str
    category: str
    other_category: Optional[str] = None
    description: str
    due_date_time: Optional[datetime] = None
    coordinate: GeoPoint
    temp_resolvers: List[int] = Field(min_length=1)

    @field_validator('title', 'category', 'description')
    def validate_text(cls, v):
        return _not_blank(v)

    @field_validator('temp_resolvers')
    def validate_temp_resolvers(cls, v):
        return _unique_ids(v)


class RequestUpdate(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='forbid')

    title: Optional[str] = None
    category: Optional[str] = None
    other_category: Optional[str] = None
    description: Optional[str] = None
    due_date_time: Optional[datetime] = None
    coordinate: Optional[GeoPoint] = None
    temp_resolvers: Optional[List[int]] = Field(default=None, min_length=1)

    @field_validator('title', 'category', 'description')
    def validate_text(cls, v):
        return _not_blank(v)

    @field_validator('temp_resolvers')
    def validate_temp_resolvers(cls, v):
        return _unique_ids(v)


class RequestActionPayload(CamelModel):
    reason: Optional[str] = None
    paid: Optional[bool] = None
    currency: Optional[str] = Field(default=None, max_length=10)
    payment_amount: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)


class RequestOffer(CamelModel):
    reason: Optional[str] = None
    paid: Optional[bool] = None
    currency: Optional[str] = None
    payment_amount: Optional[float] = None


class RequestResponse(CamelModel):
    id: int
    title: str
    category: str
    other_category: Optional[str] = None
    description: str
    due_date_time: Optional[datetime] = None
    status: RequestStatus
    coordinate: GeoPoint
    user: UserSummary
    created_by: int
    resolver: Optional[int] = None
    temp_resolvers: List[int] = []
    request_offer: Optional[RequestOffer] = None
    chats: List[int] = []
    created_at: datetime
    updated_at: datetime


class NearbyRequestResponse(RequestResponse):
    distance: float


class RequestActionResponse(CamelModel):
    status: str = "success"
    message: str
    data: RequestResponse


def serialize_request(db_request, distance: Optional[float] = None) -> RequestResponse:
    offer = None
    if db_request.has_offer:
        offer = RequestOffer(
            reason=db_request.offer_reason,
            paid=db_request.offer_paid,
            currency=db_request.offer_currency,
            payment_amount=db_request.offer_payment_amount,
        )
    data = dict(
        id=db_request.id,
        title=db_request.title,
        category=db_request.category,
        other_category=db_request.other_category,
        description=db_request.description,
        due_date_time=db_request.due_date_time,
        status=db_request.status,
        coordinate=GeoPoint(coordinates=[db_request.longitude, db_request.latitude]),
        user=UserSummary.model_validate(db_request.user),
        created_by=db_request.created_by_id,
        resolver=db_request.resolver_id,
        temp_resolvers=db_request.temp_resolver_ids,
        request_offer=offer,
        chats=[chat.id for chat in db_request.chats],
        created_at=db_request.created_at,
        updated_at=db_request.updated_at,
    )
    if distance is not None:
        return NearbyRequestResponse(**data, distance=distance)
    return RequestResponse(**data)
