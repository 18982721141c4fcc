"""Chat-bot commands residents send to the LINE channel."""

import logging
from typing import Optional

from .errors import DeskError, NotFound
from .service import PackageDesk
from .utils import normalize_household_id, validate_household_id

logger = logging.getLogger(__name__)

BIND_PREFIXES = ("綁定", "reg")
CODE_COMMANDS = ("取件", "pickup", "code")

USAGE_TEXT = "指令格式錯誤。請輸入：「綁定 您的戶號」，例如：「綁定 11A1」"
RULES_TEXT = (
    "戶號格式錯誤！\n\n規則：\n1. 樓層 3-19\n2. 棟別 A, B, C\n"
    "3. A/C棟門牌 1-3；B棟門牌 1-4\n\n範例：11A1, 3B4"
)
HELP_TEXT = (
    "您好！我是社區包裹小幫手。\n"
    "請輸入「綁定 戶號」來接收到貨通知，例如：綁定 11A1\n"
    "有包裹待領時，輸入「取件」取得領取驗證碼。"
)
NOT_BOUND_TEXT = "您尚未綁定戶號。請輸入「綁定 戶號」，例如：綁定 11A1"
NOTHING_WAITING_TEXT = "目前沒有待領取的包裹。"


def _is_bind(text: str) -> bool:
    lowered = text.lower()
    return any(lowered.startswith(prefix) for prefix in BIND_PREFIXES)


def reply_for(desk: PackageDesk, user_id: str, text: str) -> str:
    text = text.strip()

    if _is_bind(text):
        parts = text.split()
        if len(parts) < 2:
            return USAGE_TEXT
        household_id = normalize_household_id(parts[1])
        if not validate_household_id(household_id):
            return RULES_TEXT
        name = desk.messenger.get_display_name(user_id) or ""
        _, created = desk.register_resident(user_id, household_id, name)
        if not created:
            return f"您已綁定戶號 {household_id}，無需重複綁定。"
        return f"綁定成功！\n戶號：{household_id}\n\n當有包裹送達時，您將會收到 Line 通知。"

    if text.lower() in CODE_COMMANDS:
        try:
            issued = desk.request_pickup_code(user_id)
        except NotFound:
            return NOT_BOUND_TEXT
        if not issued:
            return NOTHING_WAITING_TEXT
        lines = [
            f"戶號 {i.household_id}（{len(i.packages)} 件）驗證碼：{i.code}" for i in issued
        ]
        lines.append(f"有效時間 {desk.pickup.otp_expiry_minutes} 分鐘，請於領取時告知管理員。")
        return "\n".join(lines)

    return HELP_TEXT


def handle_event(desk: PackageDesk, event: dict) -> Optional[str]:
    """Answer one webhook event. Non-text events are ignored and return None."""
    if event.get("type") != "message":
        return None
    message = event.get("message") or {}
    if message.get("type") != "text":
        return None

    user_id = (event.get("source") or {}).get("userId", "")
    try:
        text = reply_for(desk, user_id, message.get("text", "")) if user_id else HELP_TEXT
    except DeskError as e:
        logger.warning(f"bot command from {user_id} failed: {e.message}")
        text = "系統忙碌中，請稍後再試。"

    reply_token = event.get("replyToken")
    if reply_token:
        desk.messenger.reply_text(reply_token, text)
    return text
