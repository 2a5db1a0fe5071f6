#!/usr/bin/env python3
"""
Business operations behind the functions the LLM can call.

Each operation turns typed arguments into Lima CRM calls and answers with a
short text for the field rep. Operations never raise: errors are logged and
turned into a failure line. When required information is missing an
operation parks a pending operation in the session and answers with a
question instead.
"""

import functools
import logging
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..core.error_handling import WorkflowError, ServiceError
from ..core.session_store import SessionStore
from ..models.lima import (
    CreateVisitRequest,
    Doctor,
    Margin,
    Organization,
    OrderDrug,
    TalkedAboutDrug,
    VisitCountByDate,
)
from ..models.schemas import (
    CreateClinicVisitArgs,
    CreatePharmacyReservationArgs,
    FunctionArguments,
    GetDrugStockArgs,
    GetPlannedVisitsArgs,
    GetVisitHistoryArgs,
    SearchOrganizationsArgs,
)
from ..services.date_parser import WEEKDAY_NAMES_RU, format_iso, parse_date_phrase
from ..services.drug_search import DrugSearchService
from ..services.entity_resolver import EntityResolver, DOCTOR_THRESHOLD, SUGGESTION_THRESHOLD
from ..services.lima_api import LimaAPIClient
from .function_schema import (
    CREATE_CLINIC_VISIT,
    CREATE_PHARMACY_RESERVATION,
    GET_DRUG_STOCK,
    GET_PLANNED_VISITS,
    GET_VISIT_HISTORY,
    SEARCH_ORGANIZATIONS,
)

logger = logging.getLogger(__name__)

VISIT_TYPE_PHARMACY = 1
VISIT_TYPE_CLINIC = 2
PAYMENT_CASH = 2
PAYMENT_TRANSFER = 1
DEFAULT_PREPAYMENT_PERCENT = 100
LOW_STOCK_LIMIT = 10
MAX_ORGANIZATIONS_SHOWN = 10
MAX_BALANCES_SHOWN = 20
MAX_STOCK_SUGGESTIONS = 5

DEFAULT_RESERVATION_COMMENT = "Голосовая бронь через ассистента"
DEFAULT_VISIT_COMMENT = "Визит зафиксирован через голосового ассистента"


class SlotQuestion(str):
    """Reply that asks the user for missing values of a pending operation"""


class FailureReply(str):
    """Reply describing an operation that could not be carried out"""


def operation(action: str):
    """Turn any failure of a business operation into a reply text"""
    def decorator(func: Callable[..., Awaitable[str]]):
        @functools.wraps(func)
        async def wrapper(self, session_id: str, args: FunctionArguments) -> str:
            try:
                return await func(self, session_id, args)
            except ServiceError as e:
                logger.error(f"Lima API failed while {func.__name__}: {e.message}")
                return FailureReply(f"❌ CRM Lima не ответила при {action}. Попробуйте позже.")
            except WorkflowError as e:
                logger.error(f"{func.__name__} failed: [{e.error_code}] {e.message}")
                return FailureReply(f"❌ Произошла ошибка при {action}. Попробуйте позже.")
            except Exception as e:
                logger.exception(f"Unexpected error in {func.__name__}: {e}")
                return FailureReply(f"❌ Произошла ошибка при {action}. Попробуйте позже.")
        return wrapper
    return decorator


def stock_icon(balance: int) -> str:
    if balance > LOW_STOCK_LIMIT:
        return "✅"
    if balance > 0:
        return "⚠️"
    return "❌"


def format_percent(value: float) -> str:
    return f"{value:g}%"


def format_money(value: float) -> str:
    return f"{value:.2f} сум"


class LimaFunctions:
    """The six operations the assistant can run against Lima"""

    def __init__(self, lima_client: LimaAPIClient, drug_search: DrugSearchService,
                 session_store: SessionStore, resolver: Optional[EntityResolver] = None,
                 today: Callable[[], date] = date.today):
        self.lima_client = lima_client
        self.drug_search = drug_search
        self.session_store = session_store
        self.resolver = resolver or EntityResolver()
        self.today = today

        self._operations: Dict[str, Callable[[str, Any], Awaitable[str]]] = {
            CREATE_PHARMACY_RESERVATION: self.create_pharmacy_reservation,
            CREATE_CLINIC_VISIT: self.create_clinic_visit,
            GET_VISIT_HISTORY: self.get_visit_history,
            SEARCH_ORGANIZATIONS: self.search_organizations,
            GET_PLANNED_VISITS: self.get_planned_visits,
            GET_DRUG_STOCK: self.get_drug_stock,
        }

    async def execute(self, session_id: str, function_name: str, args: FunctionArguments) -> str:
        """Run one operation.

        A pending operation of the same kind is closed once the operation has
        run; it stays when the operation asked again (`SlotQuestion`) or
        failed (`FailureReply`). The marker type of the result is preserved.
        """
        handler = self._operations.get(function_name)
        if handler is None:
            logger.warning(f"Unknown function requested: {function_name}")
            return FailureReply(f"❌ Неизвестная функция: {function_name}")

        logger.info(f"Executing {function_name} for session {session_id}")
        result = await handler(session_id, args)

        if isinstance(result, FailureReply):
            logger.warning(f"{function_name} failed in session {session_id}, pending operation kept")
        elif not isinstance(result, SlotQuestion):
            pending = self.session_store.get_pending_operation(session_id)
            if pending is not None and pending.operation_type == function_name:
                self.session_store.complete_pending_operation(session_id)
        return result

    def _ask(self, session_id: str, function_name: str, args: FunctionArguments,
             missing: List[str], question: str) -> SlotQuestion:
        self.session_store.set_pending_operation(
            session_id,
            function_name,
            parameters=args.to_parameters(),
            missing_parameters=missing,
            next_question=question,
        )
        logger.info(f"{function_name} waits for {missing} in session {session_id}")
        return SlotQuestion(f"❓ {question}")

    async def _find_organization(self, name: str, pharmacy: bool) -> Optional[Organization]:
        search = await self.lima_client.search_organizations(name)
        candidates = [org for org in search.result if org.is_pharmacy == pharmacy]
        return self.resolver.best_or_first(name, candidates, lambda org: org.name)

    @staticmethod
    def _pick_margin(margins: List[Margin], prepayment_percent: float) -> Optional[Margin]:
        retail = [margin for margin in margins if margin.retail]
        for margin in retail:
            if margin.prepayment_percent == prepayment_percent:
                return margin
        if retail:
            logger.warning(
                f"No retail margin with {prepayment_percent}% prepayment, "
                f"using {retail[0].prepayment_percent}%"
            )
            return retail[0]
        return None

    # -- 1. pharmacy reservation -------------------------------------------

    @operation("создании брони")
    async def create_pharmacy_reservation(self, session_id: str, args: CreatePharmacyReservationArgs) -> str:
        missing = []
        if not args.pharmacy_name.strip():
            missing.append("pharmacyName")
        if not args.drugs:
            missing.append("drugs")
        if missing:
            question = (
                "В какую аптеку оформить бронь?" if missing == ["pharmacyName"]
                else "Какие препараты и сколько упаковок забронировать?" if missing == ["drugs"]
                else "Назовите аптеку, препараты и количество упаковок для брони."
            )
            return self._ask(session_id, CREATE_PHARMACY_RESERVATION, args, missing, question)

        logger.info(f"Creating reservation in '{args.pharmacy_name}' for {len(args.drugs)} drugs")

        pharmacy = await self._find_organization(args.pharmacy_name, pharmacy=True)
        if pharmacy is None:
            return f"❌ Аптека '{args.pharmacy_name}' не найдена. Проверьте название и попробуйте снова."

        order_drugs: List[OrderDrug] = []
        found_lines: List[str] = []
        not_found: List[str] = []
        for item in args.drugs:
            resolution = await self.drug_search.resolve_in_price_list(item.drug_name)
            if resolution.found:
                price_item = resolution.item
                order_drugs.append(OrderDrug(
                    income_detailing_id=price_item.income_detailing_id,
                    drug_id=price_item.drug.drug_id,
                    package=item.quantity,
                ))
                found_lines.append(f"   • {price_item.drug.drug_name} — {item.quantity} уп.")
                logger.info(f"Drug found: '{price_item.drug.drug_name}' ({item.quantity} packs)")
            else:
                hint = f" (возможно: {', '.join(resolution.suggestion_names)})" if resolution.suggestions else ""
                not_found.append(f"{item.drug_name}{hint}")

        if not order_drugs:
            return (
                "❌ Ни один из указанных препаратов не найден в системе. "
                f"Проверьте названия: {', '.join(not_found)}"
            )

        prepayment = args.prepayment_percent if args.prepayment_percent is not None else DEFAULT_PREPAYMENT_PERCENT
        margin = self._pick_margin(await self.lima_client.get_margins(), float(prepayment))
        if margin is None:
            return "❌ Не найдены доступные варианты предоплаты для данной аптеки."

        payment_type = (args.payment_type or "наличные").lower()
        payment_variant_id = PAYMENT_CASH if "наличн" in payment_type else PAYMENT_TRANSFER

        await self.lima_client.create_visit(CreateVisitRequest(
            organization_id=pharmacy.id,
            visit_type=VISIT_TYPE_PHARMACY,
            margin_id=margin.id,
            is_wholesaler=False,
            complete=True,
            payment_variant_id=payment_variant_id,
            comment=args.comment or DEFAULT_RESERVATION_COMMENT,
            drugs=order_drugs,
        ))

        lines = [
            "✅ Бронь успешно создана!",
            f"🏪 Аптека: {pharmacy.name}",
            f"💰 Предоплата: {format_percent(margin.prepayment_percent)}",
            f"💳 Оплата: {'наличными' if payment_variant_id == PAYMENT_CASH else 'перечислением'}",
            f"📦 Препараты ({len(order_drugs)}):",
            *found_lines,
        ]
        if not_found:
            lines.append(f"⚠️ Не найдены: {', '.join(not_found)}")
        return "\n".join(lines)

    # -- 2. clinic visit ---------------------------------------------------

    async def _find_doctor(self, clinic: Organization, doctor_name: str) -> Optional[Doctor]:
        doctors = await self.lima_client.get_organization_doctors(clinic.id)
        match = self.resolver.find_best(doctor_name, doctors, lambda doctor: doctor.full_name, DOCTOR_THRESHOLD)
        if match is None:
            logger.warning(f"Doctor '{doctor_name}' not found in '{clinic.name}'")
            return None
        logger.info(f"Doctor '{match.name}' matched '{doctor_name}' with score {match.score:.0f}")
        return match.item

    @operation("создании визита")
    async def create_clinic_visit(self, session_id: str, args: CreateClinicVisitArgs) -> str:
        if not args.clinic_name.strip():
            return self._ask(session_id, CREATE_CLINIC_VISIT, args, ["clinicName"],
                             "В каком ЛПУ был визит?")

        logger.info(f"Creating clinic visit to '{args.clinic_name}'")

        clinic = await self._find_organization(args.clinic_name, pharmacy=False)
        if clinic is None:
            return f"❌ ЛПУ '{args.clinic_name}' не найдено. Проверьте название и попробуйте снова."

        if not args.doctor_name or not args.doctor_name.strip():
            return self._ask(
                session_id, CREATE_CLINIC_VISIT, args, ["doctorName"],
                "Для создания визита необходимо указать врача. Пожалуйста, назовите имя врача.",
            )

        doctor = await self._find_doctor(clinic, args.doctor_name)

        talked_about: List[TalkedAboutDrug] = []
        drug_lines: List[str] = []
        not_found: List[str] = []
        for drug_name in args.discussed_drugs:
            resolution = await self.drug_search.resolve_company_drug(drug_name)
            if resolution.found:
                company_drug = resolution.item
                talked_about.append(TalkedAboutDrug(drug_id=company_drug.id))
                drug_lines.append(f"   ✅ {company_drug.name}")
            else:
                not_found.append(drug_name)
                drug_lines.append(f"   ❓ {drug_name}")

        await self.lima_client.create_visit(CreateVisitRequest(
            organization_id=clinic.id,
            visit_type=VISIT_TYPE_CLINIC,
            complete=True,
            latitude=args.latitude,
            longitude=args.longitude,
            doctor_id=doctor.id if doctor else None,
            comment=args.comment or DEFAULT_VISIT_COMMENT,
            talked_about_drugs=talked_about,
        ))

        lines = ["✅ Визит успешно зафиксирован!", f"🏥 ЛПУ: {clinic.name}"]
        if doctor is not None:
            lines.append(f"👨‍⚕️ Врач: {doctor.full_name}")
            if doctor.position:
                lines.append(f"📝 Должность: {doctor.position}")
        else:
            lines.append(f"👨‍⚕️ Врач: {args.doctor_name} (не найден в базе)")
        lines.append(f"💊 Презентованные препараты ({len(talked_about)}):")
        lines.extend(drug_lines)
        if not_found:
            lines.append(f"⚠️ Препараты не из ассортимента компании: {', '.join(not_found)}")
        return "\n".join(lines)

    # -- 3. visit history --------------------------------------------------

    @staticmethod
    def _visit_type_id(visit_type: Optional[str]) -> Optional[int]:
        if not visit_type:
            return None
        value = visit_type.lower()
        if "аптек" in value:
            return VISIT_TYPE_PHARMACY
        if "лпу" in value or "клиник" in value or "больниц" in value:
            return VISIT_TYPE_CLINIC
        return None

    @operation("получении истории визитов")
    async def get_visit_history(self, session_id: str, args: GetVisitHistoryArgs) -> str:
        page = args.page
        start_date = format_iso(parse_date_phrase(args.date, self.today())) if args.date else None

        history = await self.lima_client.get_visit_history(
            page=page,
            type_id=self._visit_type_id(args.visit_type),
            query=args.organization_name,
            start_date=start_date,
        )

        if not history.result:
            return "📋 История визитов пуста." if page == 1 else f"📋 На странице {page} визитов не найдено."

        lines = [
            f"📋 История визитов (страница {history.page.page_number} из {history.page.total_pages}):",
            f"Всего найдено: {history.page.total_items or history.page.count} записей",
            "",
        ]
        for visit in history.result:
            icon = "🏪" if visit.visit_type == VISIT_TYPE_PHARMACY else "🏥"
            organization = visit.organization.name if visit.organization else "—"
            lines.append(f"{icon} {organization}")
            lines.append(f"📅 {visit.date_create:%d.%m.%Y %H:%M} | {visit.visit_status_name}")
            if visit.doctor is not None:
                lines.append(f"👨‍⚕️ {visit.doctor.full_name}")

            if visit.visit_type == VISIT_TYPE_CLINIC:
                drugs = [drug.drug_name or f"#{drug.drug_id}" for drug in visit.talked_about_drugs]
            else:
                drugs = [
                    f"{drug.drug_name} — {drug.package} уп." if drug.drug_name else f"{drug.package} уп."
                    for drug in visit.drugs
                ]
            if drugs:
                lines.append(f"💊 {', '.join(drugs[:3])}")
                if len(drugs) > 3:
                    lines.append(f"   ... и ещё {len(drugs) - 3}")

            if visit.total_sum > 0:
                lines.append(f"💰 Сумма: {format_money(visit.total_sum)}")
            lines.append("")

        if history.page.has_next_page:
            lines.append(f"▶️ Для просмотра следующей страницы скажите: \"Покажи страницу {page + 1}\"")
        return "\n".join(lines).rstrip()

    # -- 4. organization search --------------------------------------------

    @operation("поиске организаций")
    async def search_organizations(self, session_id: str, args: SearchOrganizationsArgs) -> str:
        query = args.organization_name.strip()
        if not query:
            return self._ask(session_id, SEARCH_ORGANIZATIONS, args, ["organizationName"],
                             "Какую организацию найти?")

        search = await self.lima_client.search_organizations(query)
        organizations = search.result
        if not organizations:
            return f"🔍 По запросу '{query}' организации не найдены."

        lines = [f"🔍 Найдено организаций: {len(organizations)}", ""]
        for org in organizations[:MAX_ORGANIZATIONS_SHOWN]:
            lines.append(f"{'🏪' if org.is_pharmacy else '🏥'} {org.name}")
            if org.address:
                lines.append(f"📍 {org.address}")
            lines.append(f"🏷️ {org.type_name or '—'} | {org.region_name or '—'}")
            if org.phone:
                lines.append(f"📞 {org.phone}")
            lines.append("")

        if len(organizations) > MAX_ORGANIZATIONS_SHOWN:
            lines.append(f"... и ещё {len(organizations) - MAX_ORGANIZATIONS_SHOWN} организаций")
        return "\n".join(lines).rstrip()

    # -- 5. planned visits -------------------------------------------------

    @staticmethod
    def _plan_date(item: VisitCountByDate) -> Optional[date]:
        try:
            return datetime.strptime(item.date[:10], "%Y-%m-%d").date()
        except ValueError:
            logger.warning(f"Unparsable plan date: {item.date}")
            return None

    def _dated_counts(self, counts: List[VisitCountByDate]) -> List[Tuple[date, VisitCountByDate]]:
        """Counts paired with their parsed date, oldest first; unparsable dates are dropped"""
        parsed = [(self._plan_date(item), item) for item in counts]
        return sorted(((day, item) for day, item in parsed if day is not None), key=lambda pair: pair[0])

    @staticmethod
    def _format_counts(title: str, dated: List[Tuple[date, VisitCountByDate]]) -> str:
        total = sum(item.visit_count for _, item in dated)
        lines = [title, "", f"📊 Всего запланировано визитов: {total}", ""]
        for day, item in dated:
            lines.append(f"📅 {day:%d.%m} ({WEEKDAY_NAMES_RU[day.weekday()]}) — {item.visit_count} визитов")
        return "\n".join(lines)

    @operation("получении плана визитов")
    async def get_planned_visits(self, session_id: str, args: GetPlannedVisitsArgs) -> str:
        view_type = (args.view_type or "день").lower()
        today = self.today()

        if "месяц" in view_type:
            month_plan = await self.lima_client.get_month_plans()
            if not month_plan:
                return "📅 На этот месяц визиты не запланированы."
            return self._format_counts("📅 План визитов на месяц:", self._dated_counts(month_plan))

        target = parse_date_phrase(args.date, today)

        if "недел" in view_type:
            # the month plan carries per-day counts; keep the 7 days from the target date
            month_plan = await self.lima_client.get_month_plans()
            week = [
                (day, item) for day, item in self._dated_counts(month_plan)
                if 0 <= (day - target).days < 7
            ]
            if not week:
                return f"📅 На неделю с {target:%d.%m.%Y} визиты не запланированы."
            return self._format_counts(f"📅 План визитов на неделю с {target:%d.%m.%Y}:", week)

        day_plan = await self.lima_client.get_planned_visits(format_iso(target))
        if not day_plan.result:
            return f"📅 На {target:%d.%m.%Y} визиты не запланированы."

        lines = [f"📅 План визитов на {target:%d.%m.%Y}:", ""]
        for visit in day_plan.result:
            org = visit.organization
            icon = "🏪" if org is not None and org.type_id == VISIT_TYPE_PHARMACY else "🏥"
            lines.append(f"{icon} {org.name if org else '—'}")
            if org is not None and org.address:
                lines.append(f"📍 {org.address}")
            lines.append(f"🕐 {visit.start_date:%H:%M} | {visit.visit_status_name}")
            if visit.doctor is not None:
                position = f" ({visit.doctor.position})" if visit.doctor.position else ""
                lines.append(f"👨‍⚕️ {visit.doctor.full_name}{position}")
            lines.append("")
        return "\n".join(lines).rstrip()

    # -- 6. drug stock -----------------------------------------------------

    async def _all_balances(self) -> str:
        balances = await self.drug_search.get_all_balances()
        if not balances:
            return "❌ Прайс-лист пуст или недоступен."

        lines = [f"📋 Остатки всех препаратов ({len(balances)}):", ""]
        for item in balances[:MAX_BALANCES_SHOWN]:
            lines.append(
                f"{stock_icon(item.actual_balance)} {item.drug.drug_name} — "
                f"{item.actual_balance} уп. | {format_money(item.price)}"
            )
        if len(balances) > MAX_BALANCES_SHOWN:
            lines.append(f"... и ещё {len(balances) - MAX_BALANCES_SHOWN} препаратов")

        in_stock = sum(1 for item in balances if item.actual_balance > LOW_STOCK_LIMIT)
        low_stock = sum(1 for item in balances if 0 < item.actual_balance <= LOW_STOCK_LIMIT)
        out_of_stock = sum(1 for item in balances if item.actual_balance <= 0)
        lines.extend([
            "",
            "📊 Статистика:",
            f"✅ В наличии: {in_stock}",
            f"⚠️ Мало: {low_stock} (≤{LOW_STOCK_LIMIT} уп.)",
            f"❌ Нет в наличии: {out_of_stock}",
        ])
        return "\n".join(lines)

    @operation("получении остатков")
    async def get_drug_stock(self, session_id: str, args: GetDrugStockArgs) -> str:
        if not args.drug_name or not args.drug_name.strip():
            return await self._all_balances()

        drug_name = args.drug_name.strip()
        resolution = await self.drug_search.resolve_in_price_list(drug_name)
        if not resolution.found:
            similar = await self.drug_search.search_similar(drug_name, SUGGESTION_THRESHOLD, MAX_STOCK_SUGGESTIONS)
            if not similar:
                return f"❌ Препарат '{drug_name}' не найден в прайс-листе."
            lines = [f"❓ Препарат '{drug_name}' не найден. Возможно, вы имели в виду:"]
            for candidate in similar:
                item = candidate.item
                lines.append(f"   {stock_icon(item.actual_balance)} {item.drug.drug_name} — {item.actual_balance} уп.")
            return "\n".join(lines)

        item = resolution.item
        lines = [
            f"{stock_icon(item.actual_balance)} {item.drug.drug_name}",
            f"📦 Остаток: {item.actual_balance} упаковок",
        ]
        if item.drug.quantity:
            lines.append(f"🔢 В упаковке: {item.drug.quantity} шт.")
        if item.price > 0:
            lines.append(f"💰 Цена: {format_money(item.price)}")
        return "\n".join(lines)
