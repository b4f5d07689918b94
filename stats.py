"""
Summary statistics over already role-scoped students and payments.
All amounts are integer currency units.
"""
from stores import PAYMENT_BUS, PAYMENT_DEVELOPMENT, PAYMENT_SPECIAL, PAYMENT_TYPES

RECENT_PAYMENTS_LIMIT = 10


def totals_by_type(payments):
    totals = {payment_type: 0 for payment_type in PAYMENT_TYPES}
    for payment in payments:
        totals[payment['paymentType']] = totals.get(payment['paymentType'], 0) + payment['amount']
    return totals


def class_wise_breakup(students):
    """Student counts per (class, division), in order of first occurrence"""
    counts = {}
    for student in students:
        key = (student['class'], student['division'])
        counts[key] = counts.get(key, 0) + 1
    return [
        {'class': class_number, 'division': division, 'count': count}
        for (class_number, division), count in counts.items()
    ]


def recent_payments(payments, limit=RECENT_PAYMENTS_LIMIT):
    return sorted(payments, key=lambda p: p['createdAt'], reverse=True)[:limit]


def dashboard_stats(students, payments):
    students = list(students)
    payments = list(payments)
    totals = totals_by_type(payments)
    return {
        'totalStudents': len(students),
        'totalCollections': sum(p['amount'] for p in payments),
        'developmentFeeCollections': totals[PAYMENT_DEVELOPMENT],
        'busFeeCollections': totals[PAYMENT_BUS],
        'specialPaymentCollections': totals[PAYMENT_SPECIAL],
        'classWiseBreakup': class_wise_breakup(students),
        'recentPayments': recent_payments(payments),
    }


def _count_by(students, label):
    counts = {}
    for student in students:
        key = label(student)
        counts[key] = counts.get(key, 0) + 1
    return counts


def student_breakdown(students):
    """Counts used by the student report: per class, bus stop, bus and trip"""
    students = list(students)
    return {
        'byClass': _count_by(students, lambda s: f"{s['class']}{s['division']}"),
        'byBusStop': _count_by(students, lambda s: s['busStop']),
        'byBusNumber': _count_by(students, lambda s: f"Bus {s['busNumber']}"),
        'byTrip': _count_by(students, lambda s: f"Trip {s['tripNumber']}"),
        'total': len(students),
    }
