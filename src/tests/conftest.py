from datetime import date, datetime
from typing import Any, Dict, List, Optional

import pytest

from medrep_assistant.core.session_store import SessionStore
from medrep_assistant.llm.open_client import ChatCompletion
from medrep_assistant.models.lima import (
    CompanyDrug,
    CreateVisitRequest,
    Doctor,
    Margin,
    Organization,
    OrganizationSearchResponse,
    PlannedVisitsResponse,
    PriceListItem,
    VisitCountByDate,
    VisitHistoryResponse,
)
from medrep_assistant.services.catalog_cache import CatalogCache
from medrep_assistant.services.drug_search import DrugSearchService
from medrep_assistant.agents.lima_functions import LimaFunctions


TODAY = date(2025, 8, 6)  # a Wednesday


def price_item(detailing_id: int, drug_id: int, name: Optional[str], balance: int = 20,
               price: float = 12500.0, quantity: int = 10) -> PriceListItem:
    return PriceListItem.model_validate({
        "income_detailing_id": detailing_id,
        "drug": {"drug_id": drug_id, "drug_name": name, "quantity": quantity},
        "actual_balance": balance,
        "price": price,
    })


class FakeLimaClient:
    """In-memory stand-in for LimaAPIClient that records what was sent"""

    def __init__(self):
        self.organizations: List[Organization] = [
            Organization(id=1, name="ООО Нурафшон Фарм", type_name="Аптека", address="ул. Навои, 12",
                         region_name="Ташкент", phone="+998 90 000 00 00"),
            Organization(id=2, name="Клиника Нурафшон", type_name="ЛПУ", type_id=2, region_name="Ташкент"),
            Organization(id=3, name="МедиГранд", type_name="Клиника", type_id=2, address="пр. Амира Темура, 5"),
        ]
        self.price_list: List[PriceListItem] = [
            price_item(101, 11, "Paracetamol 500 mg", balance=25),
            price_item(102, 12, "Ибупрофен 200 мг", balance=4),
            price_item(103, 13, "Амоксициллин", balance=0),
            price_item(104, 14, None),
        ]
        self.company_drugs: List[CompanyDrug] = [
            CompanyDrug(id=1, name="Парацетамол", is_active=True),
            CompanyDrug(id=2, name="Ибупрофен", is_active=False),
            CompanyDrug(id=3, name="Амоксициллин", is_active=True),
        ]
        self.margins: List[Margin] = [
            Margin(id=5, prepayment_percent=50, retail=True, name="50%"),
            Margin(id=6, prepayment_percent=100, retail=True, name="100%"),
            Margin(id=7, prepayment_percent=100, wholesaler=True, retail=False, name="опт"),
        ]
        self.doctors: Dict[int, List[Doctor]] = {
            3: [
                Doctor.model_validate({"doctor_id": 70, "doctor_name": "Петров Пётр Петрович", "doctor_position": "Хирург"}),
                Doctor.model_validate({"doctor_id": 71, "doctor_name": "Иванов Иван Иванович", "doctor_position": "Терапевт"}),
            ],
        }
        self.history = VisitHistoryResponse()
        self.month_plan: List[VisitCountByDate] = []
        self.day_plans: Dict[str, PlannedVisitsResponse] = {}

        self.created_visits: List[CreateVisitRequest] = []
        self.calls: List[tuple] = []
        self.fail_with: Optional[Exception] = None

    def _record(self, name: str, *args):
        self.calls.append((name,) + args)
        if self.fail_with is not None:
            raise self.fail_with

    async def search_organizations(self, query: str) -> OrganizationSearchResponse:
        self._record("search_organizations", query)
        return OrganizationSearchResponse(result=list(self.organizations))

    async def get_margins(self) -> List[Margin]:
        self._record("get_margins")
        return list(self.margins)

    async def get_price_list(self) -> List[PriceListItem]:
        self._record("get_price_list")
        return list(self.price_list)

    async def get_company_drugs(self) -> List[CompanyDrug]:
        self._record("get_company_drugs")
        return list(self.company_drugs)

    async def create_visit(self, request: CreateVisitRequest) -> bool:
        self._record("create_visit", request)
        self.created_visits.append(request)
        return True

    async def get_organization_doctors(self, organization_id: int) -> List[Doctor]:
        self._record("get_organization_doctors", organization_id)
        return list(self.doctors.get(organization_id, []))

    async def get_visit_history(self, page: int = 1, type_id: Optional[int] = None, query: Optional[str] = None,
                                start_date: Optional[str] = None, end_date: Optional[str] = None) -> VisitHistoryResponse:
        self._record("get_visit_history", page, type_id, query, start_date)
        return self.history

    async def get_month_plans(self) -> List[VisitCountByDate]:
        self._record("get_month_plans")
        return list(self.month_plan)

    async def get_planned_visits(self, date: str) -> PlannedVisitsResponse:
        self._record("get_planned_visits", date)
        return self.day_plans.get(date, PlannedVisitsResponse())


class FakeLLM:
    """Returns scripted chat completions and remembers every request"""

    def __init__(self, replies: Optional[List[Any]] = None):
        self.replies = list(replies or [])
        self.requests: List[Dict[str, Any]] = []

    def queue_text(self, content: str) -> None:
        self.replies.append({"choices": [{"message": {"role": "assistant", "content": content}}]})

    def queue_function(self, name: str, arguments: str) -> None:
        self.replies.append({"choices": [{"message": {
            "role": "assistant",
            "content": None,
            "function_call": {"name": name, "arguments": arguments},
        }}]})

    def queue_empty(self) -> None:
        self.replies.append({"choices": []})

    def queue_error(self, error: Exception) -> None:
        self.replies.append(error)

    async def chat_completion(self, messages, functions=None) -> ChatCompletion:
        self.requests.append({"messages": messages, "functions": functions})
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return ChatCompletion.model_validate(reply)


@pytest.fixture
def lima_client() -> FakeLimaClient:
    return FakeLimaClient()


@pytest.fixture
def session_store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def lima_functions(lima_client, session_store) -> LimaFunctions:
    drug_search = DrugSearchService(CatalogCache(lima_client))
    return LimaFunctions(lima_client, drug_search, session_store, today=lambda: TODAY)


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def planned_visit_payload() -> Dict[str, Any]:
    return {
        "page": {"page_number": 1, "total_pages": 1, "count": 1},
        "result": [{
            "visit_id": 900,
            "visit_status": 1,
            "visit_status_name": "Запланирован",
            "start_date": datetime(2025, 8, 8, 10, 30).isoformat(),
            "organization": {"id": 3, "name": "МедиГранд", "type_id": 2, "address": "пр. Амира Темура, 5"},
            "doctor": {"doctor_id": 71, "doctor_name": "Иванов Иван Иванович", "doctor_position": "Терапевт"},
        }],
    }
