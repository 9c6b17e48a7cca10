# relayq/secret_messaging/texts.py
"""User-facing bot texts. Wording is part of the bot's public behavior."""

import html

REGISTER_FIRST = 'To use this feature, you must register first. Just use "/register" command.'
INVALID_USER_ID = 'invalid user ID. please make sure the ID is correct'
SELF_TARGET = "you can't use this feature to yourself"
TARGET_NOT_REGISTERED = (
    'User with ID: {user_id} is not found. Please ask them to register this feature first.'
)
PROBLEM_PREFIX = 'Sorry there is a problem: '
INITIATE_FAILED = 'Sorry, bot experiencing problem. Please try again later'
SESSION_ACTIVE = (
    'Success! Secret messaging session from you to {name} is now active. To send your '
    'message secretly, you must reply to this message and after that, bot will forward '
    'it secretly to {name}. Enjoy!'
)
UNKNOWN_COMMAND = 'Sorry, the command / text is not known'

SESSION_NOT_FOUND = (
    'Sorry, your secret messaging session is not found. Please initiate the session first'
)
SESSION_BLOCKED = (
    "Sorry, your secret messaging session is blocked. You can't send message to this user anymore"
)
SESSION_EXPIRED = (
    'Sorry, your secret messaging session is expired. Please re-initiate the session again'
)
TARGET_MISSING = (
    "bot couldn't find the user target of your secret message. "
    'Maybe you should invite them first?'
)
UNEXPECTED_ERROR = 'Sorry, bot experiencing unexpected error. Please try again later'

REPORT_SENT = (
    'Report has been sent. Sorry for the inconvinience and Bot Admin will investigate it '
    'as soon as possible'
)
REPORT_FAILED = (
    'Sorry, bot experiencing unexpected error and unable to report the message. '
    'Please try again later'
)
BLOCK_DONE = "User has been blocked and can't send you secret message anymore"
BLOCK_NOT_FOUND = 'Failed to block user because the data is not found'

REGISTER_SUCCESS = (
    'Success! Bot will send your text and you can share it to people to secretly '
    'have a chat with you through this bot.'
)
REGISTER_BOT_FORBIDDEN = "sorry, user with status 'bot' is not allowed to register"
REGISTER_FAILED = "sorry, you're unable to register. reason: "
ALREADY_REGISTERED = 'user already registered'

REPORT_BUTTON = 'Report'
BLOCK_BUTTON = 'Block'


def wrap_secret_message(text: str) -> str:
    # Messages go out with parse_mode=HTML
    return f'<strong>Someone secretly said</strong>: {html.escape(text)}'


def wrap_reply(text: str, replier_name: str) -> str:
    return f'<strong>{html.escape(replier_name)} replies</strong>: {html.escape(text)}'
