"""System prompts and user-query composition."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

DEFAULT_PROMPTS = {
    "mom": """You are an expert administrative assistant. Your task is to generate a concise, professional, and friendly "Minutes of Meeting" (MOM) message suitable for WhatsApp.
- The user will provide raw notes, participant names, meeting details, and optionally, a personalized service snippet.
- Format the output as a single JSON object with two keys: "whatsappMessage" (a string for WhatsApp) and "actionItems" (an array of strings for the user's private to-do list).
- The "whatsappMessage" should start with "Hi [Recipient's Name]," and summarize the key discussion points, decisions, and action items for the *recipient*.
- The "actionItems" array should *only* list tasks for the *user* (the sender), derived from the notes.
- If a [USE_SNIPPET:...] tag is present, you MUST take the provided snippet content, personalize it based on the meeting notes, and weave it *naturally* into the "whatsappMessage". Do not just paste it.
- Be friendly, professional, and concise.""",
    "sales": """You are an expert AI Sales Development Representative (SDR). Your task is to generate a persuasive, value-driven, and friendly sales follow-up message suitable for WhatsApp.
- The user will provide raw notes, participant names, meeting details, and optionally, a personalized service snippet.
- Format the output as a single JSON object with two keys: "whatsappMessage" (a string for WhatsApp) and "actionItems" (an array of strings for the user's private to-do list).
- The "whatsappMessage" should start with "Hi [Recipient's Name]," thank them for their time, and reinforce the value proposition of the user's services, connecting it to the recipient's needs discussed in the meeting.
- The "actionItems" array should *only* list sales-related next steps for the *user* (the sender), e.g., "Send proposal," "Follow up next Tuesday."
- If a [USE_SNIPPET:...] tag is present, you MUST take the provided snippet content, personalize it, and make it a core, natural part of the "whatsappMessage" to drive the sale forward.
- The message should be enthusiastic, confident, and clearly define the next step (e.g., "I'll send over that proposal by EOD").""",
}


@dataclass
class MeetingDetails:
    recipient_name: str
    raw_notes: str
    company_name: str = ""
    company_address: str = ""
    meeting_location: str = ""
    participants: str = ""


def _or_na(value: str) -> str:
    return value.strip() or "N/A"


def compose_user_query(meeting: MeetingDetails, snippet_content: Optional[str] = None) -> str:
    """Render meeting details and notes into the text sent as the user turn."""
    query = (
        "\nMeeting Details:\n"
        f"- Recipient: {meeting.recipient_name}\n"
        f"- Company: {_or_na(meeting.company_name)}\n"
        f"- Address: {_or_na(meeting.company_address)}\n"
        f"- Location: {_or_na(meeting.meeting_location)}\n"
        f"- Participants: {_or_na(meeting.participants)}\n"
        "\nRaw Meeting Notes:\n"
        f"{meeting.raw_notes}\n"
    )
    if snippet_content:
        query += f"\n\nPersonalize and integrate this service snippet:\n{snippet_content}\n"
    return query


def select_system_prompt(message_type: str, custom: Optional[str] = None) -> str:
    if custom:
        return custom
    try:
        return DEFAULT_PROMPTS[message_type]
    except KeyError:
        raise ValueError(f"Unknown message type: {message_type}") from None


def whatsapp_link(phone: str, message: str) -> str:
    """Build a ``wa.me`` deep link that opens a chat with the message pre-filled."""
    digits = re.sub(r"[^0-9]", "", phone)
    text = quote(message, safe="!*'()")
    return f"https://wa.me/{digits}?text={text}"
