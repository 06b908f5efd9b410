"""
Internationalization (i18n) module for the counter client.

Provides translations for every human-readable status message in Thai (th)
and English (en). Thai is the default, matching the app's original audience.
"""

from typing import Optional


# Supported languages
SUPPORTED_LANGUAGES = frozenset({"th", "en"})
DEFAULT_LANGUAGE = "th"


# Translation dictionary with all messages
# Structure: {message_key: {language_code: translated_message}}
TRANSLATIONS: dict[str, dict[str, str]] = {
    # Connection status messages
    "connection.connecting": {
        "th": "กำลังเชื่อมต่อ...",
        "en": "Connecting...",
    },
    "connection.connected": {
        "th": "เชื่อมต่อ MQTT สำเร็จ!",
        "en": "MQTT connected!",
    },
    "connection.reconnecting": {
        "th": "กำลังพยายามเชื่อมต่อใหม่... ({attempt})",
        "en": "Trying to reconnect... ({attempt})",
    },
    "connection.failed": {
        "th": "เชื่อมต่อ MQTT ไม่สำเร็จ: {reason}",
        "en": "MQTT connection failed: {reason}",
    },
    "connection.closed": {
        "th": "การเชื่อมต่อ MQTT ขาดหาย: การเชื่อมต่อถูกปิด",
        "en": "MQTT connection lost: connection closed",
    },
    "connection.offline": {
        "th": "การเชื่อมต่อ MQTT ขาดหาย: อุปกรณ์ออฟไลน์",
        "en": "MQTT connection lost: device offline",
    },
    "connection.lost": {
        "th": "การเชื่อมต่อ MQTT ขาดหาย: ถูกตัดการเชื่อมต่อ",
        "en": "MQTT connection lost: disconnected",
    },

    # Connection failure reasons
    "reason.not_found": {
        "th": "ไม่พบเซิร์ฟเวอร์",
        "en": "server not found",
    },
    "reason.refused": {
        "th": "เซิร์ฟเวอร์ปฏิเสธการเชื่อมต่อ",
        "en": "server refused the connection",
    },
    "reason.timeout": {
        "th": "การเชื่อมต่อหมดเวลา",
        "en": "connection timed out",
    },
    "reason.reset": {
        "th": "การเชื่อมต่อถูกรีเซ็ต",
        "en": "connection was reset",
    },
    "reason.unknown": {
        "th": "เกิดข้อผิดพลาดในการเชื่อมต่อ",
        "en": "a connection error occurred",
    },

    # Identity messages
    "identity.changed": {
        "th": "Client ID เปลี่ยนเป็น: {client_id}",
        "en": "Client ID changed to: {client_id}",
    },
    "identity.unavailable": {
        "th": "ไม่สามารถโหลด Client ID ได้",
        "en": "Client ID could not be loaded",
    },
    "identity.reset": {
        "th": "ล้างข้อมูลทั้งหมดแล้ว Client ID ใหม่: {client_id}",
        "en": "All stored data cleared, new Client ID: {client_id}",
    },

    # State labels
    "state.connected": {
        "th": "เชื่อมต่ออยู่",
        "en": "Connected",
    },
    "state.connecting": {
        "th": "กำลังเชื่อมต่อ...",
        "en": "Connecting...",
    },
    "state.disconnected": {
        "th": "ตัดการเชื่อมต่อ",
        "en": "Disconnected",
    },

    # Console display labels
    "display.client_id": {
        "th": "Client ID",
        "en": "Client ID",
    },
    "display.count": {
        "th": "ค่า Count ปัจจุบัน",
        "en": "Current count",
    },
    "display.last_updated": {
        "th": "อัปเดตล่าสุด",
        "en": "Last updated",
    },
    "display.attempts": {
        "th": "ความพยายามเชื่อมต่อล่าสุด: {attempts} ครั้ง",
        "en": "Reconnect attempts: {attempts}",
    },
    "display.last_disconnect": {
        "th": "ตัดการเชื่อมต่อล่าสุด",
        "en": "Last disconnect",
    },
    "display.heartbeat_active": {
        "th": "💓 Heartbeat ทำงานอยู่",
        "en": "💓 Heartbeat active",
    },
}


def get_message(
    key: str,
    language: Optional[str] = None,
    **kwargs,
) -> str:
    """
    Get a translated message by key.

    Args:
        key: The message key (e.g., 'connection.connected')
        language: Language code ('th' or 'en'). Defaults to DEFAULT_LANGUAGE.
        **kwargs: Format arguments for the message template

    Returns:
        The translated and formatted message string.
        If the key is not found, returns the key itself.
        If the language is not found, falls back to DEFAULT_LANGUAGE.

    Examples:
        >>> get_message('connection.connected', 'en')
        'MQTT connected!'
        >>> get_message('connection.reconnecting', 'en', attempt=2)
        'Trying to reconnect... (2)'
    """
    if language is None or language not in SUPPORTED_LANGUAGES:
        language = DEFAULT_LANGUAGE

    translations = TRANSLATIONS.get(key)
    if translations is None:
        return key

    message = translations.get(language)
    if message is None:
        message = translations.get(DEFAULT_LANGUAGE)

    if message is None:
        return key

    if kwargs:
        try:
            message = message.format(**kwargs)
        except KeyError:
            # Missing placeholder arguments leave the template unformatted
            pass

    return message


def describe_failure(reason: Optional[str], error: Optional[str], language: Optional[str] = None) -> str:
    """
    Build the human-readable connection failure reason.

    Known reason codes map to a translated phrase; otherwise the raw error
    text is used, falling back to a generic phrase.
    """
    if reason and f"reason.{reason}" in TRANSLATIONS:
        return get_message(f"reason.{reason}", language)
    if error:
        return error
    return get_message("reason.unknown", language)


def get_all_message_keys() -> set[str]:
    """Get all available message keys."""
    return set(TRANSLATIONS.keys())


def has_translation(key: str, language: str) -> bool:
    """
    Check if a translation exists for a key and language.

    Args:
        key: The message key
        language: The language code

    Returns:
        True if translation exists, False otherwise.
    """
    translations = TRANSLATIONS.get(key)
    if translations is None:
        return False
    return language in translations


def get_missing_translations(language: str) -> set[str]:
    """Get all message keys that are missing translations for a language."""
    missing = set()
    for key, translations in TRANSLATIONS.items():
        if language not in translations:
            missing.add(key)
    return missing


def validate_translations() -> dict[str, set[str]]:
    """
    Validate that all languages have all translations.

    Returns:
        Dictionary mapping language codes to sets of missing message keys.
        Empty sets indicate complete translations.
    """
    result = {}
    for language in SUPPORTED_LANGUAGES:
        result[language] = get_missing_translations(language)
    return result
