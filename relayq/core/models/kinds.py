# relayq/core/models/kinds.py
from __future__ import annotations

from enum import Enum


class TaskKind(str, Enum):
    """Routing key of a task. The value is the wire name stored with the task."""

    MAILING = 'task:mailing'
    MAIL_UPDATE_RECORD = 'task:mailing:update_record'
    USER_ACTIVATION = 'task:user_activation'
    SIAKAD_PROFILE_PICTURE_SCRAPING = 'task:siakad_profile_picture_scraping'
    SETTING_MESSAGE_NODE = 'task:setting_message_node_to_secret_messaging_session'
    SEND_TELEGRAM_MESSAGE = 'task:send_telegram_message_to_user'
    CREATE_SECRET_MESSAGE_NODE = 'task:creating_secret_message_node'
    MEME_SUBSCRIPTION = 'task:meme_subscription'
