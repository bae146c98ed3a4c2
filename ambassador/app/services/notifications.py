"""
Telegram notifications for ambassadors.

The transport is an injected ``Notifier``: ``TelegramNotifier`` talks to the
Bot API over httpx, ``NullNotifier`` drops messages. main.py puts one on
``app.state.notifier``; tests replace it through the ``get_notifier``
dependency.

Everything here is best-effort: failures are logged and swallowed so that a
Telegram outage never rolls back or fails the request that triggered it.
"""
from datetime import datetime
from typing import Optional, Dict, Any, Iterable

import httpx

from ambassador.app.core.logging import get_logger
from ambassador.app.core.metrics import notifications_total

logger = get_logger(__name__)


class Notifier:
    """Transport interface. ``send_message`` returns True when delivered."""

    async def send_message(
        self,
        chat_id: int,
        text: str,
        button_text: Optional[str] = None,
        button_url: Optional[str] = None,
    ) -> bool:
        raise NotImplementedError

    async def aclose(self) -> None:
        pass


class NullNotifier(Notifier):
    """Used when BOT_TOKEN is not configured."""

    async def send_message(self, chat_id, text, button_text=None, button_url=None) -> bool:
        logger.debug("Notifier disabled, message dropped", chat_id=chat_id)
        return False


class TelegramNotifier(Notifier):
    def __init__(
        self,
        bot_token: str,
        api_url: str = "https://api.telegram.org",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._url = f"{api_url.rstrip('/')}/bot{bot_token}/sendMessage"
        self._client = client or httpx.AsyncClient(timeout=10.0)

    async def send_message(self, chat_id, text, button_text=None, button_url=None) -> bool:
        if not chat_id:
            logger.debug("No chat_id, skip Telegram notification")
            return False
        payload: Dict[str, Any] = {"chat_id": chat_id, "text": text}
        if button_text and button_url:
            payload["reply_markup"] = {
                "inline_keyboard": [[{"text": button_text, "web_app": {"url": button_url}}]]
            }
        try:
            r = await self._client.post(self._url, json=payload)
        except httpx.HTTPError as e:
            logger.warning("Telegram sendMessage request failed", chat_id=chat_id, error=str(e))
            return False
        if r.is_success:
            return True
        logger.warning(
            "Telegram sendMessage failed",
            chat_id=chat_id,
            status=r.status_code,
            body=r.text[:500],
        )
        return False

    async def aclose(self) -> None:
        await self._client.aclose()


async def safe_send(
    notifier: Notifier,
    chat_id: Optional[int],
    text: str,
    button_text: Optional[str] = None,
    button_url: Optional[str] = None,
) -> bool:
    """Send one message; any exception is logged and reported as not delivered."""
    if not chat_id:
        return False
    try:
        sent = await notifier.send_message(chat_id, text, button_text=button_text, button_url=button_url)
    except Exception as e:
        logger.error("Notification failed", chat_id=chat_id, error=str(e))
        sent = False
    notifications_total.labels(outcome="sent" if sent else "failed").inc()
    return sent


# --- Message builders ---

def _mini_app_link(mini_app_url: str, path: str) -> Optional[str]:
    if not mini_app_url:
        return None
    return f"{mini_app_url.rstrip('/')}{path}"


def task_message(title: str, description: Optional[str], deadline: Optional[datetime]) -> str:
    text = f"🎯 Новое задание: {title}"
    if description:
        text += f"\n\n{description}"
    if deadline:
        text += f"\n\n⏰ Дедлайн: {deadline.strftime('%d.%m.%Y')}"
    return text


async def notify_report_approved(
    notifier: Notifier, chat_id: Optional[int], task_title: str, reward: Optional[int]
) -> bool:
    text = f'✅ Ваш отчет по заданию "{task_title}" одобрен!'
    if reward:
        text += f"\n💰 Начислено {reward} флариков"
    return await safe_send(notifier, chat_id, text)


async def notify_report_rejected(
    notifier: Notifier, chat_id: Optional[int], task_title: str, reason: str
) -> bool:
    text = f'❌ Ваш отчет по заданию "{task_title}" отклонен.\n\nПричина: {reason}'
    return await safe_send(notifier, chat_id, text)


async def notify_account_activated(notifier: Notifier, chat_id: Optional[int]) -> bool:
    return await safe_send(
        notifier,
        chat_id,
        "✅ Ваш аккаунт одобрен! Теперь вы можете использовать все функции приложения.",
    )


async def notify_new_task(
    notifier: Notifier,
    chat_ids: Iterable[Optional[int]],
    task_id: int,
    title: str,
    description: Optional[str],
    deadline: Optional[datetime],
    mini_app_url: str = "",
) -> int:
    """Send the new-task message to each chat sequentially. Returns delivered count."""
    text = task_message(title, description, deadline)
    url = _mini_app_link(mini_app_url, f"/tasks/{task_id}")
    sent = 0
    for chat_id in chat_ids:
        if await safe_send(notifier, chat_id, text, button_text="Открыть задание", button_url=url):
            sent += 1
    logger.info("Task notification fan-out finished", task_id=task_id, sent=sent)
    return sent


async def notify_report_reminder(
    notifier: Notifier, chat_id: Optional[int], task_id: int, task_title: str, mini_app_url: str = ""
) -> bool:
    text = (
        f'📋 Напоминание: необходимо предоставить отчет по заданию "{task_title}"\n\n'
        "Пожалуйста, отправьте ссылку на ролик или скриншот охвата сторис."
    )
    url = _mini_app_link(mini_app_url, f"/tasks/{task_id}/report")
    return await safe_send(notifier, chat_id, text, button_text="Отправить отчет", button_url=url)
