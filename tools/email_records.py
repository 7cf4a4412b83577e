# tools/email_records.py
#
# ============================================================================
# WHAT THIS FILE DOES:
# Converts email data from the mail collaborator into EmailContent, the
# one record shape the analytics engine accepts.
#
# Two input shapes are supported:
#   1. A raw Gmail API message (format='full'): nested headers and
#      base64-encoded body parts        → parse_gmail_message()
#   2. A flattened dict, as a Gmail fetcher or a JSON request body
#      would provide                    → email_from_dict()
#
# Timestamps are validated HERE, at ingestion. A record whose date can't
# be parsed is rejected with InvalidEmailRecord rather than letting a bad
# time leak into recency and decay calculations.
#
# IMPORTANT: This file does no network I/O and no authentication. Fetching
# messages from Gmail is the collaborator's job.
# ============================================================================

import base64
from datetime import datetime, timezone
from email.utils import getaddresses, parseaddr, parsedate_to_datetime

from pydantic import ValidationError

from config.settings import EMAIL_BODY_MAX_CHARS
from memory.models import EmailContent


class InvalidEmailRecord(ValueError):
    """Raised when an email record can't be normalized."""


# ── FIELD HELPERS ──────────────────────────────────────────────────────

def parse_address(value: str) -> str:
    """Reduce 'Jane Doe <Jane@Co.com>' to 'Jane@Co.com'. Bare input passes through."""
    _, address = parseaddr(value or '')
    return (address or value or '').strip()


def parse_address_list(value) -> list[str]:
    """
    Split a To/Cc header (or a list of them) into bare addresses,
    keeping their order.
    """
    if not value:
        return []
    if isinstance(value, str):
        value = [value]
    return [address.strip() for _, address in getaddresses(value) if address.strip()]


def parse_timestamp(value) -> datetime:
    """
    Accept a datetime, epoch milliseconds (Gmail's internalDate),
    an RFC 2822 date header or an ISO 8601 string. Naive values are UTC.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)

    if isinstance(value, (int, float)) or (isinstance(value, str) and value.strip().isdigit()):
        return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)

    if not isinstance(value, str) or not value.strip():
        raise InvalidEmailRecord(f"Missing or unsupported date: {value!r}")

    text = value.strip()
    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        try:
            parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
        except ValueError:
            raise InvalidEmailRecord(f"Unparseable date: {value!r}")

    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _build(**fields) -> EmailContent:
    try:
        return EmailContent(**fields)
    except ValidationError as e:
        raise InvalidEmailRecord(str(e)) from e


# ── FLATTENED DICTS ────────────────────────────────────────────────────

def email_from_dict(record: dict) -> EmailContent:
    """
    Normalize a flattened email dict.

    Recognized keys: id, thread_id/threadId, subject, from (or
    from_email), to (string or list), cc, date/timestamp, body (or
    snippet), labels.
    """
    if not record.get('id'):
        raise InvalidEmailRecord("Email record has no id")

    sender = record.get('from_email') or parse_address(record.get('from', ''))
    if not sender:
        raise InvalidEmailRecord(f"Email {record['id']} has no sender")

    recipients = parse_address_list(record.get('to')) + parse_address_list(record.get('cc'))

    raw_date = record.get('timestamp', record.get('date'))

    return _build(
        id=str(record['id']),
        subject=record.get('subject') or '',
        body=(record.get('body') or record.get('snippet') or '')[:EMAIL_BODY_MAX_CHARS],
        sender=sender,
        to=recipients,
        timestamp=parse_timestamp(raw_date),
        thread_id=record.get('thread_id') or record.get('threadId'),
        labels=record.get('labels'),
    )


# ── RAW GMAIL MESSAGES ─────────────────────────────────────────────────

def parse_gmail_message(msg: dict) -> EmailContent:
    """
    Convert a raw Gmail API message into EmailContent.

    The Date header is preferred; Gmail's internalDate (epoch ms) is used
    when the header is missing.
    """
    headers = msg.get('payload', {}).get('headers', [])

    header_dict = {}
    for h in headers:
        name = h['name'].lower()
        if name in ('subject', 'from', 'to', 'cc', 'date'):
            header_dict[name] = h['value']

    body = extract_body(msg.get('payload', {})) or msg.get('snippet', '')

    return email_from_dict({
        'id': msg.get('id'),
        'thread_id': msg.get('threadId'),
        'subject': header_dict.get('subject', ''),
        'from': header_dict.get('from', ''),
        'to': header_dict.get('to', ''),
        'cc': header_dict.get('cc', ''),
        'date': header_dict.get('date') or msg.get('internalDate'),
        'body': body,
        'labels': msg.get('labelIds'),
    })


def _decode(data: str) -> str:
    return base64.urlsafe_b64decode(data).decode('utf-8', errors='replace')


def extract_body(payload: dict) -> str:
    """
    Find the body text in Gmail's nested payload.

    Emails can be simple (body right in the payload), multipart (text,
    HTML, attachments as parts) or nested multipart. Plain text wins over
    HTML.
    """
    if payload.get('body', {}).get('data'):
        return _decode(payload['body']['data'])

    text_body = ''
    html_body = ''

    for part in payload.get('parts', []):
        mime_type = part.get('mimeType', '')
        data = part.get('body', {}).get('data')

        if mime_type == 'text/plain' and data:
            text_body = _decode(data)
        elif mime_type == 'text/html' and data:
            html_body = _decode(data)
        elif mime_type.startswith('multipart/'):
            nested = extract_body(part)
            if nested:
                text_body = text_body or nested

    return text_body or html_body or ''
