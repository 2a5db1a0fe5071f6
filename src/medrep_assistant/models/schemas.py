from typing import Optional, List, Union, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictFloat, StrictStr
from pydantic.alias_generators import to_camel

from .conversation import TurnState


class AssistantRequest(BaseModel):
    """Inbound utterance from the field rep's client"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "message": "Создай бронь в аптеку Нурафшон на Парацетамол — 5 упаковок",
                "sessionId": None,
            }
        },
    )

    message: str = Field("", description="Recognized speech or typed text")
    session_id: Optional[str] = Field(None, description="Session to continue; a new one is created when empty")


class AssistantResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    response: str
    session_id: Optional[str] = None
    function_name: Optional[str] = None
    context_cleared: bool = False
    error_code: Optional[str] = None
    turn_state: TurnState = TurnState.IDLE


# Typed argument records for the functions exposed to the LLM. Field aliases
# follow the camelCase parameter names of the function descriptors.

Number = Union[StrictInt, StrictFloat]


class FunctionArguments(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    def to_parameters(self) -> dict:
        """Wire-form (camelCase) mapping of the values that are actually set"""
        return self.model_dump(by_alias=True, exclude_none=True)


class DrugOrderItem(FunctionArguments):
    drug_name: StrictStr
    quantity: StrictInt = Field(..., gt=0)


class CreatePharmacyReservationArgs(FunctionArguments):
    pharmacy_name: StrictStr
    drugs: List[DrugOrderItem]
    prepayment_percent: Optional[Number] = None
    payment_type: Optional[Literal["наличные", "перечисление"]] = None
    comment: Optional[StrictStr] = None


class CreateClinicVisitArgs(FunctionArguments):
    clinic_name: StrictStr
    doctor_name: Optional[StrictStr] = None
    discussed_drugs: List[StrictStr]
    latitude: Optional[Number] = None
    longitude: Optional[Number] = None
    comment: Optional[StrictStr] = None


class GetVisitHistoryArgs(FunctionArguments):
    visit_type: Optional[Literal["аптека", "лпу", "все"]] = None
    organization_name: Optional[StrictStr] = None
    page: StrictInt = Field(1, ge=1)
    date: Optional[StrictStr] = None


class SearchOrganizationsArgs(FunctionArguments):
    organization_name: StrictStr


class GetPlannedVisitsArgs(FunctionArguments):
    date: Optional[StrictStr] = None
    view_type: Optional[Literal["день", "месяц", "неделя"]] = None


class GetDrugStockArgs(FunctionArguments):
    drug_name: Optional[StrictStr] = None
