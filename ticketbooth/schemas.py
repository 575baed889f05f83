from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class CustomerInfo(BaseModel):
    name: str = Field(min_length=1)
    email: str = Field(min_length=3)
    phone: str = Field(min_length=1)


class CheckoutLine(BaseModel):
    ticket_type_id: str
    quantity: int = Field(ge=1)


class CheckoutRequest(BaseModel):
    customer: CustomerInfo
    items: List[CheckoutLine] = Field(min_length=1)
    # client-generated; the server makes one up when absent
    reference: Optional[str] = Field(
        default=None, min_length=6, max_length=100,
        pattern=r"^[A-Za-z0-9_.-]+$",
    )


class VerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reference: str
    transaction: Optional[str] = None
    verification_secret: str = Field(default="", alias="verificationSecret")


class CancelRequest(BaseModel):
    reference: str


class TicketTypeIn(BaseModel):
    name: str = Field(min_length=1)
    price: int = Field(gt=0)
    description: str = ""
    total: int = Field(gt=0)
    event_date: Optional[str] = None
    event_time: Optional[str] = None
    location: Optional[str] = None


class EventIn(BaseModel):
    event_name: str = Field(min_length=1)
    event_date: str = Field(min_length=1)
    venue: str = Field(min_length=1)


class GatewayIn(BaseModel):
    public_key: str = Field(min_length=1)
    secret_key: str = Field(min_length=1)


class ScanRequest(BaseModel):
    code: str


class QrRequest(BaseModel):
    data: Union[str, dict, List[Any]]
    format: Literal["png", "svg"] = "png"
