"""
CSV import and export for students and payments
"""
import csv
import io
import logging
from collections import namedtuple

from forms import StudentForm
from receipts import display_date

logger = logging.getLogger(__name__)

STUDENT_IMPORT_HEADERS = ['Admission Number', 'Name', 'Mobile', 'Class', 'Division',
                          'Bus Stop', 'Bus Number', 'Trip Number']
STUDENT_IMPORT_SAMPLE = ['1001', 'John Doe', '9876543210', '10', 'A', 'City Center', '1', '1']
STUDENT_IMPORT_COLUMNS = ('admissionNumber', 'name', 'mobile', 'class', 'division',
                          'busStop', 'busNumber', 'tripNumber')

PAYMENT_EXPORT_HEADERS = ['Receipt Number', 'Student Name', 'Admission Number', 'Class', 'Division',
                          'Mobile', 'Payment Type', 'Description', 'Amount', 'Date', 'Created By']
STUDENT_EXPORT_HEADERS = ['Admission Number', 'Student Name', 'Class', 'Division', 'Mobile',
                          'Bus Stop', 'Bus Number', 'Trip Number']

ImportResult = namedtuple('ImportResult', ['created', 'skipped'])


def _write(headers, rows):
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow(headers)
    writer.writerows(rows)
    return buffer.getvalue()


def student_template():
    return _write(STUDENT_IMPORT_HEADERS, [STUDENT_IMPORT_SAMPLE])


def parse_student_csv(content):
    """Yield ``(line_number, payload)`` for every data row with 8 or more fields.

    The first row is the header. Shorter rows are dropped without comment.
    """
    rows = list(csv.reader(io.StringIO(content.strip())))
    for line_number, row in enumerate(rows[1:], start=2):
        values = [value.strip() for value in row]
        if len(values) < len(STUDENT_IMPORT_COLUMNS):
            continue
        yield line_number, dict(zip(STUDENT_IMPORT_COLUMNS, values))


def import_students(students, content):
    """Add every valid row as a new student; invalid rows are reported, not fatal"""
    created, skipped = [], []
    for line_number, payload in parse_student_csv(content):
        form = StudentForm.from_payload(payload)
        if not form.validate():
            skipped.append((line_number, form.first_error()))
            continue
        record = form.record()
        if students.get_by_admission_number(record['admissionNumber']):
            skipped.append((line_number, f"Admission number {record['admissionNumber']} already exists"))
            continue
        student = students.add(record)
        if student is None:
            skipped.append((line_number, 'Could not be saved'))
            continue
        created.append(student)
    logger.info(f'CSV import: {len(created)} students added, {len(skipped)} rows skipped')
    return ImportResult(created, skipped)


def payments_csv(payments):
    rows = []
    for payment in payments:
        student = payment.get('student') or {}
        rows.append([
            payment['receiptNumber'],
            student.get('name', ''),
            student.get('admissionNumber', ''),
            student.get('class', ''),
            student.get('division', ''),
            student.get('mobile', ''),
            payment['paymentType'],
            payment['description'],
            payment['amount'],
            display_date(payment['createdAt']),
            payment['createdBy'],
        ])
    return _write(PAYMENT_EXPORT_HEADERS, rows)


def students_csv(students):
    rows = [
        [s['admissionNumber'], s['name'], s['class'], s['division'], s['mobile'],
         s['busStop'], s['busNumber'], s['tripNumber']]
        for s in students
    ]
    return _write(STUDENT_EXPORT_HEADERS, rows)
