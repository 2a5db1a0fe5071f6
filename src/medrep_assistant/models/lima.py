"""
Wire models of the Lima CRM REST API (snake_case JSON, same names as the API)
"""

from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, ConfigDict, Field, AliasChoices


class LimaModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class PageInfo(LimaModel):
    page_number: int = 1
    total_pages: int = 1
    page_size: int = 0
    count: int = 0
    total_items: Optional[int] = None
    has_previous_page: bool = False
    has_next_page: bool = False


class Organization(LimaModel):
    id: int
    name: Optional[str] = None
    address: Optional[str] = None
    delivery_address: Optional[str] = None
    type_id: Optional[int] = None
    type_name: Optional[str] = None
    region_id: Optional[int] = None
    region_name: Optional[str] = None
    area_name: Optional[str] = None
    inn: Optional[str] = None
    phone: Optional[str] = None
    med_rep_id: Optional[int] = None

    @property
    def is_pharmacy(self) -> bool:
        return "аптека" in (self.type_name or "").lower()


class OrganizationSearchResponse(LimaModel):
    page: Optional[PageInfo] = None
    result: List[Organization] = Field(default_factory=list)


class Doctor(LimaModel):
    # the history endpoints and the doctors dictionary use different key names
    id: int = Field(validation_alias=AliasChoices("doctor_id", "id"))
    full_name: Optional[str] = Field(default=None, validation_alias=AliasChoices("doctor_name", "full_name", "name"))
    position: Optional[str] = Field(default=None, validation_alias=AliasChoices("doctor_position", "position"))
    phone: Optional[str] = Field(default=None, validation_alias=AliasChoices("doctor_phone", "phone"))


class Company(LimaModel):
    id: int
    name: str = ""


class MedRep(LimaModel):
    id: Optional[int] = None
    name: str = ""
    region_name: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[Company] = None


class Drug(LimaModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    drug_id: int
    drug_name: Optional[str] = None
    quantity: Optional[int] = None


class PriceListItem(LimaModel):
    """One price-list row: a drug batch with its remaining balance"""
    model_config = ConfigDict(frozen=True, extra="ignore")

    income_detailing_id: int
    drug: Drug
    actual_balance: int = 0
    price: float = 0.0

    @property
    def name(self) -> Optional[str]:
        return self.drug.drug_name


class CompanyDrug(LimaModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    id: int
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = True


class Margin(LimaModel):
    id: int
    prepayment_percent: float = 0
    wholesaler: bool = False
    retail: bool = False
    name: Optional[str] = None
    description: Optional[str] = None


class OrderDrug(LimaModel):
    income_detailing_id: Optional[int] = None
    drug_id: int
    package: int
    drug_name: Optional[str] = None


class TalkedAboutDrug(LimaModel):
    drug_id: int
    status_id: int = 1
    drug_name: Optional[str] = None
    status_name: Optional[str] = None
    is_confirmed: bool = True


class CreateVisitRequest(LimaModel):
    organization_id: int
    visit_type: int
    margin_id: Optional[int] = None
    is_wholesaler: Optional[bool] = None
    complete: bool = True
    payment_variant_id: Optional[int] = None
    comment: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    doctor_id: Optional[int] = None
    drugs: Optional[List[OrderDrug]] = None
    talked_about_drugs: Optional[List[TalkedAboutDrug]] = None


class VisitHistoryItem(LimaModel):
    visit_id: int
    visit_type: int
    visit_status: Optional[int] = None
    visit_status_name: str = ""
    order_status: Optional[int] = None
    order_status_name: str = ""
    date_create: datetime
    total_sum: float = 0.0
    margin_percent: float = 0.0
    doctor: Optional[Doctor] = None
    talked_about_drugs: List[TalkedAboutDrug] = Field(default_factory=list)
    drugs: List[OrderDrug] = Field(default_factory=list)
    organization: Optional[Organization] = None
    medrep: Optional[MedRep] = None


class VisitHistoryResponse(LimaModel):
    page: PageInfo = Field(default_factory=PageInfo)
    result: List[VisitHistoryItem] = Field(default_factory=list)


class PlannedVisit(LimaModel):
    visit_id: int
    visit_status: Optional[int] = None
    visit_status_name: str = ""
    start_date: datetime
    organization: Optional[Organization] = None
    doctor: Optional[Doctor] = None
    medrep: Optional[MedRep] = None


class PlannedVisitsResponse(LimaModel):
    page: PageInfo = Field(default_factory=PageInfo)
    result: List[PlannedVisit] = Field(default_factory=list)


class VisitCountByDate(LimaModel):
    date: str
    visit_count: int = 0
