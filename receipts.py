"""
Receipt numbers and printable receipt documents
"""
import threading
import time
from datetime import datetime

from flask import current_app, render_template


class ReceiptNumberGenerator:
    """Generate receipt numbers of the form <PREFIX><YYYYMMDD><6-digit suffix>.

    The suffix is the tail of the millisecond clock. Numbers issued by one
    generator are strictly increasing so several payments recorded within the
    same millisecond still get distinct receipt numbers.
    """

    def __init__(self, prefix='SHSS', clock=time.time):
        self.prefix = prefix
        self.clock = clock
        self._last_millis = 0
        self._lock = threading.Lock()

    def next(self):
        with self._lock:
            millis = int(self.clock() * 1000)
            if millis <= self._last_millis:
                millis = self._last_millis + 1
            self._last_millis = millis
        date_part = datetime.fromtimestamp(millis / 1000).strftime('%Y%m%d')
        return f"{self.prefix}{date_part}{str(millis)[-6:]}"


def display_date(timestamp):
    """DD/MM/YYYY for an ISO timestamp, today when missing"""
    if not timestamp:
        return datetime.now().strftime('%d/%m/%Y')
    return datetime.fromisoformat(timestamp).strftime('%d/%m/%Y')


def render_receipt(payments, school_name=None):
    """Render one receipt covering ``payments`` (all for the same student).

    The receipt carries the first payment's receipt number and date.
    """
    if not payments:
        raise ValueError('a receipt needs at least one payment')
    first = payments[0]
    lines = [
        {
            'type': payment['paymentType'].capitalize(),
            'description': payment['description'],
            'amount': payment['amount'],
        }
        for payment in payments
    ]
    return render_template(
        'receipt.html',
        school_name=school_name or current_app.config['SCHOOL_NAME'],
        receipt_number=first['receiptNumber'],
        date=display_date(first.get('createdAt')),
        student=first.get('student'),
        lines=lines,
        total=sum(line['amount'] for line in lines),
    )
