"""
TwiML Responses
XML documents returned to Twilio voice webhooks
"""
from xml.sax.saxutils import escape, quoteattr

XML_HEADER = '<?xml version="1.0" encoding="UTF-8"?>'
HOLD_MUSIC_URL = "https://api.twilio.com/cowbell.mp3"


def _document(*verbs: str) -> str:
    return f"{XML_HEADER}<Response>{''.join(verbs)}</Response>"


def _say(text: str) -> str:
    return f"<Say>{escape(text)}</Say>"


def empty_response() -> str:
    """Acknowledgement with no instructions"""
    return _document()


def connect_to_agent(agent_id: str, timeout_s: int = 30) -> str:
    return _document(
        _say("Please wait while we connect you to an available agent."),
        f"<Dial timeout={quoteattr(str(timeout_s))}><Client>{escape(f'agent-{agent_id}')}</Client></Dial>",
    )


def hold_for_agent() -> str:
    return _document(
        _say("Please hold for the next available agent. Your call is important to us."),
        f"<Play loop=\"10\">{escape(HOLD_MUSIC_URL)}</Play>",
        _say("We're sorry, all our agents are currently busy. Please try your call again later."),
        "<Hangup/>",
    )


def leave_voicemail() -> str:
    return _document(
        '<Pause length="2"/>',
        _say("Hello, this is an important message. Please call us back at your earliest convenience. Thank you!"),
        "<Hangup/>",
    )


def automated_message() -> str:
    return _document(
        _say("Hello, this is an automated call. Please call us back at your earliest convenience. Thank you!"),
        "<Hangup/>",
    )


def error_message() -> str:
    return _document(
        _say("We're sorry, an error occurred. Please try your call again later."),
        "<Hangup/>",
    )
