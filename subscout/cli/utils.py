"""
Common utilities for CLI commands.

Shared helper functions used across multiple command modules.
"""

import json
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from subscout.types import InboxMessage, _parse_datetime


def load_json_records(path: str) -> List[Dict[str, Any]]:
    """
    Load a JSON file holding a list of records.

    Accepts either a top-level list or an object with a ``records`` list.
    """
    with open(Path(path), encoding='utf-8') as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get('records', [])
    if not isinstance(data, list):
        raise ValueError(f"{path} does not contain a list of records")
    return data


def inbox_from_export(path: Optional[str]) -> Callable[[int, datetime], Iterable[InboxMessage]]:
    """
    Build an inbox fetcher over a JSON export of messages.

    Each record needs ``user_id``, ``message_ref`` and ``sender``; ``subject``,
    ``body`` and ``received_at`` are optional. Without a path the inbox is empty.
    """
    messages: Dict[int, List[InboxMessage]] = defaultdict(list)
    if path:
        for record in load_json_records(path):
            messages[int(record['user_id'])].append(InboxMessage(
                message_ref=str(record['message_ref']),
                sender=record['sender'],
                subject=record.get('subject', ''),
                body=record.get('body', ''),
                received_at=_parse_datetime(record.get('received_at'))
            ))

    def fetch(user_id: int, since: datetime) -> List[InboxMessage]:
        return [m for m in messages.get(user_id, []) if m.received_at is None or m.received_at >= since]

    return fetch


def format_money(amount, currency: Optional[str] = 'USD') -> str:
    if amount is None:
        return '-'
    return f"{amount:.2f} {currency or ''}".strip()
