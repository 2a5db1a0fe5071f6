"""
Fixed user-facing texts of the Lima assistant (Russian UI)
"""

SYSTEM_PROMPT = (
    "Ты голосовой помощник для медицинской CRM-системы Lima. "
    "Помогаешь медпредставителям создавать брони в аптеки, визиты в ЛПУ, "
    "получать информацию об остатках препаратов и планах визитов. "
    "Отвечай кратко и по существу. "
    "Используй доступные функции для выполнения запросов пользователя. "
    "Если для выполнения запроса не хватает данных, уточни их у пользователя."
)

CONTEXT_CLEARED_MESSAGE = "✅ Контекст очищен. Чем могу помочь?"
NO_REPLY_MESSAGE = "❌ Не получен ответ от системы. Попробуйте переформулировать запрос."
GENERIC_FAILURE_MESSAGE = "❌ Не удалось обработать запрос. Попробуйте переформулировать."
INTERNAL_ERROR_MESSAGE = "❌ Произошла внутренняя ошибка. Попробуйте позже."
LLM_UNAVAILABLE_MESSAGE = "❌ Сервис распознавания запросов временно недоступен. Попробуйте позже."
SERVICE_UNAVAILABLE_MESSAGE = "❌ CRM Lima временно недоступна. Попробуйте позже."
MALFORMED_ARGUMENTS_MESSAGE = GENERIC_FAILURE_MESSAGE
EMPTY_MESSAGE_REPLY = "❌ Пожалуйста, скажите что-нибудь."
EMPTY_MESSAGE_ERROR = "Сообщение не может быть пустым"
SERVICE_NOT_READY_MESSAGE = "❌ Ассистент ещё не готов к работе. Попробуйте через минуту."

HELP_TEXT = """🤖 Голосовой помощник Lima готов помочь!

📝 Примеры команд:

🏪 Создание брони в аптеку:
   "Создай бронь в аптеку Нурафшон на Парацетамол — 5 упаковок"

🏥 Фиксация визита в ЛПУ:
   "Зашёл в клинику МедиГранд, говорил с врачом Ивановым о Парацетамоле"

📋 История визитов:
   "Покажи мои визиты", "История визитов в аптеки"

🔍 Поиск организаций:
   "Найди аптеку Нурафшон", "Где находится клиника МедиГранд"

📅 План визитов:
   "Какие визиты на пятницу?", "План на месяц"

💊 Остатки препаратов:
   "Сколько Парацетамола?", "Есть ли Ибупрофен?"

❌ Отмена: "Отмена", "Очисти контекст"

Просто скажите что вам нужно, и я помогу! ✨"""
