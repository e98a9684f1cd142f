from __future__ import annotations

from dataclasses import dataclass

from django.conf import settings


@dataclass(frozen=True)
class ChatDefaults:
    """Settings applied to a conversation when it is created."""

    message_max_length: int = 1000
    max_file_size: int = 5 * 1024 * 1024
    allow_file_uploads: bool = True
    auto_close_after_days: int = 30

    @classmethod
    def from_settings(cls) -> "ChatDefaults":
        return cls(
            message_max_length=getattr(settings, "CHAT_MESSAGE_MAX_LENGTH", cls.message_max_length),
            max_file_size=getattr(settings, "CHAT_MAX_FILE_SIZE_BYTES", cls.max_file_size),
            allow_file_uploads=getattr(
                settings, "CHAT_ALLOW_FILE_UPLOADS", cls.allow_file_uploads
            ),
            auto_close_after_days=getattr(
                settings, "CHAT_AUTO_CLOSE_AFTER_DAYS", cls.auto_close_after_days
            ),
        )
