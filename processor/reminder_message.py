"""Reminder subject, message and dispatch payload builders."""
import html
from typing import Any, Dict

from processor.models import Event, ReminderRule, User

APP_NAME = 'Wits Study Buddy'
DEFAULT_USER_NAME = 'Wits Student'


def build_subject(event: Event, rule: ReminderRule) -> str:
    """Build the email subject line for a reminder."""
    return f"🔔 {APP_NAME}: {event.title} - {rule.label}"


def build_message(event: Event, rule: ReminderRule) -> str:
    """
    Build the HTML body of a reminder email.

    Args:
        event: Event the reminder is about
        rule: Rule that triggered the reminder

    Returns:
        HTML fragment with every event field escaped
    """
    escape = html.escape

    details = [
        f"<h3 style=\"margin-top: 0; color: #2c5aa0;\">{escape(event.title)}</h3>",
        f"<p><strong>📅 Date:</strong> {event.start_at.strftime('%Y-%m-%d')}</p>",
        f"<p><strong>⏰ Time:</strong> {event.start_at.strftime('%H:%M')}</p>",
    ]

    if event.location:
        details.append(f"<p><strong>📍 Location:</strong> {escape(event.location)}</p>")

    if event.duration_hours:
        duration = f"{event.duration_hours:g}"
        details.append(f"<p><strong>⏱️ Duration:</strong> {duration} hour(s)</p>")

    if event.is_study_group:
        details.append("<p><strong>👥 Type:</strong> Study Group Session</p>")
    elif event.activity_type:
        details.append(f"<p><strong>📝 Type:</strong> {escape(event.activity_type)}</p>")

    if event.subject:
        details.append(f"<p><strong>📚 Subject:</strong> {escape(event.subject)}</p>")

    if event.description:
        details.append(f"<p><strong>📋 Description:</strong> {escape(event.description)}</p>")

    body = '\n'.join(details)

    return (
        "<div style=\"font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;\">\n"
        f"<h2 style=\"color: #2c5aa0;\">🔔 {APP_NAME} Reminder</h2>\n"
        "<div style=\"background: #f8f9fa; padding: 20px; border-radius: 8px; margin: 20px 0;\">\n"
        f"{body}\n"
        "</div>\n"
        "<p style=\"color: #666; font-size: 14px;\">\n"
        f"This is a {rule.label.lower()} reminder for your scheduled event.\n"
        "</p>\n"
        "<hr style=\"border: none; border-top: 1px solid #eee; margin: 20px 0;\">\n"
        "<p style=\"color: #999; font-size: 12px;\">\n"
        f"Sent from {APP_NAME}<br>\n"
        "You can manage your reminders in your calendar settings.\n"
        "</p>\n"
        "</div>"
    )


def build_payload(event: Event, rule: ReminderRule, user: User) -> Dict[str, Any]:
    """
    Build the body for POST /reminders/send.

    Args:
        event: Event the reminder is about
        rule: Rule that triggered the reminder
        user: Recipient

    Returns:
        Dispatch payload dict
    """
    return {
        'to': user.email,
        'subject': build_subject(event, rule),
        'message': build_message(event, rule),
        'event_type': event.kind.value,
        'event_id': event.id,
        'reminder_time': rule.label,
        'user_name': user.name or DEFAULT_USER_NAME
    }
