import httpx
from typing import List, Optional, Dict, Any
import logging

from ..core.error_handling import ServiceError
from ..models.lima import (
    CompanyDrug,
    CreateVisitRequest,
    Doctor,
    Margin,
    OrganizationSearchResponse,
    PlannedVisitsResponse,
    PriceListItem,
    VisitCountByDate,
    VisitHistoryResponse,
)

logger = logging.getLogger(__name__)


class LimaAPIClient:
    """Client for the Lima medical CRM REST API"""

    def __init__(self, base_url: str = "https://api.lima.uz", access_token: Optional[str] = None,
                 timeout: float = 30.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip('/')
        self.access_token = access_token
        self.client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

        if not self.access_token:
            logger.warning("LIMA_API_TOKEN not configured. CRM requests will be rejected.")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    def is_configured(self) -> bool:
        return bool(self.access_token)

    def _get_headers(self) -> Dict[str, str]:
        """Get request headers with authentication"""
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json"
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """Send a request and return decoded JSON; every failure becomes a ServiceError"""
        try:
            response = await self.client.request(method, path, headers=self._get_headers(), **kwargs)
            response.raise_for_status()
            if not response.content:
                return None
            return response.json()
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if status_code == 401:
                logger.error("Lima API token invalid or expired. Please check LIMA_API_TOKEN")
            raise ServiceError(
                f"{method} {path} failed with HTTP {status_code}",
                "lima",
                {"status_code": status_code, "path": path},
            ) from e
        except httpx.TimeoutException as e:
            raise ServiceError(f"{method} {path} timed out", "lima", {"path": path}) from e
        except httpx.HTTPError as e:
            raise ServiceError(f"{method} {path} failed: {e}", "lima", {"path": path}) from e
        except ValueError as e:
            raise ServiceError(f"{method} {path} returned invalid JSON", "lima", {"path": path}) from e

    def _parse(self, model, data: Any, path: str):
        try:
            return model.model_validate(data)
        except ValueError as e:
            raise ServiceError(f"Unexpected payload from {path}: {e}", "lima", {"path": path}) from e

    def _parse_list(self, model, data: Any, path: str) -> list:
        if data is None:
            return []
        if not isinstance(data, list):
            raise ServiceError(f"Expected a list from {path}", "lima", {"path": path})
        return [self._parse(model, item, path) for item in data]

    async def search_organizations(self, query: str) -> OrganizationSearchResponse:
        """Find organizations (pharmacies, clinics) by free-text name"""
        logger.info(f"Searching organizations: {query}")
        data = await self._request("GET", "/dict/organizations/find", params={"q": query})
        result = self._parse(OrganizationSearchResponse, data or {}, "/dict/organizations/find")
        logger.info(f"Found organizations: {len(result.result)}")
        return result

    async def get_margins(self) -> List[Margin]:
        logger.info("Fetching margins")
        data = await self._request("GET", "/company/markups/short")
        return self._parse_list(Margin, data, "/company/markups/short")

    async def get_price_list(self) -> List[PriceListItem]:
        logger.info("Fetching price list")
        data = await self._request("GET", "/stock/price-list")
        items = self._parse_list(PriceListItem, data, "/stock/price-list")
        logger.info(f"Price list items: {len(items)}")
        return items

    async def get_company_drugs(self) -> List[CompanyDrug]:
        logger.info("Fetching company drugs")
        data = await self._request("GET", "/company/drugs")
        items = self._parse_list(CompanyDrug, data, "/company/drugs")
        logger.info(f"Company drugs: {len(items)}")
        return items

    async def create_visit(self, request: CreateVisitRequest) -> bool:
        """Create a pharmacy reservation (visit_type=1) or a clinic visit (visit_type=2)"""
        logger.info(f"Creating visit of type {request.visit_type} for organization {request.organization_id}")
        payload = request.model_dump(exclude_none=True)
        await self._request("POST", "/visits/add", json=payload)
        logger.info(f"Visit created for organization {request.organization_id}")
        return True

    async def get_organization_doctors(self, organization_id: int) -> List[Doctor]:
        logger.info(f"Fetching doctors of organization {organization_id}")
        path = f"/dict/organizations/{organization_id}/doctors"
        data = await self._request("GET", path)
        return self._parse_list(Doctor, data, path)

    async def get_visit_history(self, page: int = 1, type_id: Optional[int] = None,
                                query: Optional[str] = None, start_date: Optional[str] = None,
                                end_date: Optional[str] = None) -> VisitHistoryResponse:
        """Paginated visit history; dates are YYYY-MM-DD, a single date means a one-day range"""
        logger.info(f"Fetching visit history: page {page}, type {type_id}, query {query}, period {start_date} - {end_date}")
        params: List[tuple] = [("page", page)]
        if type_id is not None:
            params.append(("type_id", type_id))
        if query:
            params.append(("q", query))
        if start_date:
            params.append(("dates", start_date))
            params.append(("dates", end_date or start_date))

        data = await self._request("GET", "/visits/history", params=params)
        result = self._parse(VisitHistoryResponse, data or {}, "/visits/history")
        logger.info(f"Visits received: {len(result.result)}")
        return result

    async def get_month_plans(self) -> List[VisitCountByDate]:
        logger.info("Fetching month plan")
        data = await self._request("GET", "/plans/month")
        return self._parse_list(VisitCountByDate, data, "/plans/month")

    async def get_planned_visits(self, date: str) -> PlannedVisitsResponse:
        logger.info(f"Fetching planned visits for {date}")
        data = await self._request("GET", "/plans/current", params={"date": date})
        return self._parse(PlannedVisitsResponse, data or {}, "/plans/current")
