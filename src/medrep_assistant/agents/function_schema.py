"""
Functions the LLM may call, as chat-completion function descriptors, and the
typed argument record each one is validated into before dispatch.
"""

from typing import Any, Dict, List, Type

from ..models.schemas import (
    CreateClinicVisitArgs,
    CreatePharmacyReservationArgs,
    FunctionArguments,
    GetDrugStockArgs,
    GetPlannedVisitsArgs,
    GetVisitHistoryArgs,
    SearchOrganizationsArgs,
)

CREATE_PHARMACY_RESERVATION = "createPharmacyReservation"
CREATE_CLINIC_VISIT = "createClinicVisit"
GET_VISIT_HISTORY = "getVisitHistory"
SEARCH_ORGANIZATIONS = "searchOrganizations"
GET_PLANNED_VISITS = "getPlannedVisits"
GET_DRUG_STOCK = "getDrugStock"


FUNCTION_DESCRIPTORS: List[Dict[str, Any]] = [
    {
        "name": CREATE_PHARMACY_RESERVATION,
        "description": (
            "Создание брони препаратов в аптеку. Используется когда пользователь хочет "
            "создать заказ, бронь или купить препараты в аптеке."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "pharmacyName": {"type": "string", "description": "Название аптеки"},
                "drugs": {
                    "type": "array",
                    "description": "Список препаратов с количеством",
                    "items": {
                        "type": "object",
                        "properties": {
                            "drugName": {"type": "string", "description": "Название препарата"},
                            "quantity": {"type": "integer", "description": "Количество упаковок"},
                        },
                        "required": ["drugName", "quantity"],
                    },
                },
                "prepaymentPercent": {"type": "number", "description": "Процент предоплаты (по умолчанию 100)"},
                "paymentType": {
                    "type": "string",
                    "description": "Тип оплаты",
                    "enum": ["наличные", "перечисление"],
                },
                "comment": {"type": "string", "description": "Комментарий к заказу"},
            },
            "required": ["pharmacyName", "drugs"],
        },
    },
    {
        "name": CREATE_CLINIC_VISIT,
        "description": (
            "Фиксация визита в ЛПУ (клинику, больницу). Используется когда пользователь "
            "сообщает о визите к врачу, презентации препаратов."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "clinicName": {"type": "string", "description": "Название клиники, ЛПУ, больницы"},
                "doctorName": {"type": "string", "description": "ФИО врача"},
                "discussedDrugs": {
                    "type": "array",
                    "description": "Список препаратов, которые презентовали или обсуждали",
                    "items": {"type": "string"},
                },
                "latitude": {"type": "number", "description": "Широта местоположения"},
                "longitude": {"type": "number", "description": "Долгота местоположения"},
                "comment": {"type": "string", "description": "Комментарий к визиту"},
            },
            "required": ["clinicName", "discussedDrugs"],
        },
    },
    {
        "name": GET_VISIT_HISTORY,
        "description": (
            "Получение истории визитов и заказов пользователя. Используется для просмотра "
            "прошлых визитов, заказов, активности."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "visitType": {
                    "type": "string",
                    "description": "Тип визита для фильтрации",
                    "enum": ["аптека", "лпу", "все"],
                },
                "organizationName": {"type": "string", "description": "Название организации для фильтрации"},
                "page": {"type": "integer", "description": "Номер страницы (по умолчанию 1)"},
                "date": {
                    "type": "string",
                    "description": "Дата визитов (например: 'вчера', 'понедельник', '2025-08-08')",
                },
            },
        },
    },
    {
        "name": SEARCH_ORGANIZATIONS,
        "description": (
            "Поиск аптек, клиник, ЛПУ по названию. Используется когда нужно найти контакты, "
            "адрес организации."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "organizationName": {"type": "string", "description": "Название организации для поиска"},
            },
            "required": ["organizationName"],
        },
    },
    {
        "name": GET_PLANNED_VISITS,
        "description": "Получение плана запланированных визитов на определенную дату или месяц.",
        "parameters": {
            "type": "object",
            "properties": {
                "date": {
                    "type": "string",
                    "description": "Дата или день недели (например: 'сегодня', 'завтра', 'пятница', '2025-08-08')",
                },
                "viewType": {
                    "type": "string",
                    "description": "Тип просмотра",
                    "enum": ["день", "месяц", "неделя"],
                },
            },
        },
    },
    {
        "name": GET_DRUG_STOCK,
        "description": (
            "Проверка остатков препарата на складе. Используется когда спрашивают о наличии, "
            "остатках, количестве препарата. Если drugName не указан, показывает все остатки."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "drugName": {
                    "type": "string",
                    "description": (
                        "Название препарата для проверки остатков. "
                        "Если не указано, показывает остатки всех препаратов."
                    ),
                },
            },
        },
    },
]


ARGUMENT_MODELS: Dict[str, Type[FunctionArguments]] = {
    CREATE_PHARMACY_RESERVATION: CreatePharmacyReservationArgs,
    CREATE_CLINIC_VISIT: CreateClinicVisitArgs,
    GET_VISIT_HISTORY: GetVisitHistoryArgs,
    SEARCH_ORGANIZATIONS: SearchOrganizationsArgs,
    GET_PLANNED_VISITS: GetPlannedVisitsArgs,
    GET_DRUG_STOCK: GetDrugStockArgs,
}


def function_names() -> List[str]:
    return [descriptor["name"] for descriptor in FUNCTION_DESCRIPTORS]
