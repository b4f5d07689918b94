import logging
import os
from datetime import datetime

from flask import Blueprint, Flask, Response, current_app, jsonify, request, url_for
from flask_wtf.csrf import CSRFError, generate_csrf

from auth import change_password, login, logout
from build import seed_defaults
from config import Config, ProductionConfig
from forms import (BusStopForm, ChangePasswordForm, FeeConfigurationForm, LoginForm, PaymentFilterForm,
                   PaymentForm, StudentForm)
from health import health_bp
from receipts import render_receipt
from reports import import_students, payments_csv, student_template, students_csv
from security import (admin_required, clear_user_session, current_user_session, init_security,
                      login_required, store_user_session)
from stats import dashboard_stats, student_breakdown, totals_by_type
from storage import select_backend
from stores import ROLE_ADMIN, Ledger, filter_payments, filter_students, payment_owner, scope_records

logger = logging.getLogger(__name__)

bp = Blueprint('ledger', __name__)


def create_app(config_object=None, **overrides):
    if config_object is None:
        config_object = ProductionConfig if os.environ.get('FLASK_ENV') == 'production' else Config

    app = Flask(
        __name__,
        template_folder=os.path.join(os.path.dirname(os.path.abspath(__file__)), 'templates'),
    )
    app.config.from_object(config_object)
    app.config.update(overrides)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    init_security(app)

    ledger = Ledger(select_backend(app), app.config['RECEIPT_PREFIX'])
    app.extensions['ledger'] = ledger

    app.register_blueprint(health_bp)
    app.register_blueprint(bp)

    @app.errorhandler(CSRFError)
    def handle_csrf_error(e):
        return jsonify({'error': e.description}), 400

    with app.app_context():
        seed_defaults(ledger, app.config)

    return app


# Helper functions
def get_ledger():
    return current_app.extensions['ledger']


def request_payload():
    return request.get_json(silent=True) or request.form.to_dict()


def error(message, status=400):
    return jsonify({'error': message}), status


def public_user(user):
    """User record without the stored hash, for responses"""
    return {k: v for k, v in user.items() if k != 'password'}


def in_scope(user_session, record, key=None):
    owner = key(record) if key else record
    return bool(scope_records([owner], *user_session.scope()))


def csv_response(content, name):
    filename = f"{name}_{datetime.now().strftime('%Y-%m-%d')}.csv"
    return Response(
        content,
        mimetype='text/csv',
        headers={'Content-Disposition': f'attachment; filename={filename}'},
    )


def scoped_students():
    return get_ledger().students.list(*current_user_session().scope())


def scoped_payments():
    return get_ledger().payments.list(*current_user_session().scope())


def student_filter_args():
    return {
        'class_': request.args.get('class', type=int),
        'division': request.args.get('division') or None,
        'bus_stop': request.args.get('busStop') or None,
        'bus_number': request.args.get('busNumber', type=int),
        'trip_number': request.args.get('tripNumber', type=int),
    }


def payment_filter_args(dates):
    args = student_filter_args()
    args.update({
        'payment_type': request.args.get('paymentType') or None,
        'date_from': dates.dateFrom.data,
        'date_to': dates.dateTo.data,
    })
    return args


# Authentication routes
@bp.route('/csrf-token')
def csrf_token():
    return jsonify({'csrfToken': generate_csrf()})


@bp.route('/login', methods=['POST'])
def login_route():
    form = LoginForm.from_payload(request_payload())
    if not form.validate():
        return error(form.first_error())

    user_session = login(get_ledger().users, form.username.data, form.password.data)
    if user_session is None:
        return error('Invalid username or password!', 401)

    store_user_session(user_session)
    return jsonify({'user': public_user(user_session.user)})


@bp.route('/logout', methods=['POST'])
def logout_route():
    logout(current_user_session())
    clear_user_session()
    return jsonify({'message': 'You have been logged out successfully!'})


@bp.route('/me')
@login_required
def me():
    user_session = current_user_session()
    return jsonify({'user': public_user(user_session.user), 'backend': get_ledger().backend_kind})


@bp.route('/change_password', methods=['POST'])
@login_required
def change_password_route():
    form = ChangePasswordForm.from_payload(request_payload())
    if not form.validate():
        return error(form.first_error())

    user_session = current_user_session()
    changed = change_password(
        get_ledger().users,
        user_session.user_id,
        form.oldPassword.data,
        form.newPassword.data,
        session=user_session,
        rounds=current_app.config['BCRYPT_LOG_ROUNDS'],
    )
    if not changed:
        return error('Current password is incorrect')

    store_user_session(user_session)
    return jsonify({'message': 'Password changed successfully'})


@bp.route('/dashboard')
@login_required
def dashboard():
    return jsonify(dashboard_stats(scoped_students(), scoped_payments()))


# Students
@bp.route('/students')
@login_required
def students():
    filtered = filter_students(
        scoped_students(),
        class_=request.args.get('class', type=int),
        division=request.args.get('division') or None,
        search=request.args.get('search') or None,
    )
    return jsonify({'students': filtered})


def _student_payload(user_session):
    payload = request_payload()
    if user_session.is_teacher:
        # Teachers only manage their own class and division
        payload = dict(payload, **{'class': user_session.class_, 'division': user_session.division})
    return payload


@bp.route('/students', methods=['POST'])
@login_required
def add_student():
    user_session = current_user_session()
    form = StudentForm.from_payload(_student_payload(user_session))
    if not form.validate():
        return error(form.first_error())

    record = form.record()
    ledger = get_ledger()
    if ledger.students.get_by_admission_number(record['admissionNumber']):
        return error('Admission number already exists', 409)

    student = ledger.students.add(record)
    if student is None:
        return error('Student could not be saved', 500)
    logger.info(f"{user_session.username} added student {student['admissionNumber']}")
    return jsonify({'student': student}), 201


@bp.route('/students/<student_id>', methods=['PUT'])
@login_required
def edit_student(student_id):
    user_session = current_user_session()
    ledger = get_ledger()
    existing = ledger.students.get(student_id)
    if existing is None or not in_scope(user_session, existing):
        return error('Student not found!', 404)

    form = StudentForm.from_payload(_student_payload(user_session))
    if not form.validate():
        return error(form.first_error())

    record = form.record()
    duplicate = ledger.students.get_by_admission_number(record['admissionNumber'])
    if duplicate and duplicate['id'] != student_id:
        return error('Admission number already exists', 409)

    student = ledger.students.update(student_id, record)
    if student is None:
        return error('Student could not be saved', 500)
    return jsonify({'student': student})


@bp.route('/students/<student_id>', methods=['DELETE'])
@login_required
def delete_student(student_id):
    user_session = current_user_session()
    ledger = get_ledger()
    existing = ledger.students.get(student_id)
    if existing is None or not in_scope(user_session, existing):
        return error('Student not found!', 404)
    if not ledger.students.delete(student_id):
        return error('Student could not be deleted', 500)
    logger.info(f"{user_session.username} deleted student {existing['admissionNumber']}")
    return jsonify({'deleted': student_id})


@bp.route('/students/template.csv')
@admin_required
def students_template():
    return Response(
        student_template(),
        mimetype='text/csv',
        headers={'Content-Disposition': 'attachment; filename=student_template.csv'},
    )


@bp.route('/students/import', methods=['POST'])
@admin_required
def import_students_route():
    upload = request.files.get('file')
    if upload is not None:
        content = upload.read().decode('utf-8-sig')
    else:
        content = (request.get_json(silent=True) or {}).get('csv') or request.get_data(as_text=True)
    if not content or not content.strip():
        return error('No CSV content supplied')

    result = import_students(get_ledger().students, content)
    return jsonify({
        'created': len(result.created),
        'students': result.created,
        'skipped': [{'line': line, 'error': message} for line, message in result.skipped],
    })


# Payments
@bp.route('/payments')
@login_required
def payments():
    dates = PaymentFilterForm(request.args)
    if not dates.validate():
        return error(dates.first_error())
    return jsonify({'payments': filter_payments(scoped_payments(), **payment_filter_args(dates))})


@bp.route('/payments', methods=['POST'])
@login_required
def add_payment():
    user_session = current_user_session()
    form = PaymentForm.from_payload(request_payload())
    if not form.validate():
        return error(form.first_error())

    ledger = get_ledger()
    student = ledger.students.get(form.studentId.data)
    if student is None or not in_scope(user_session, student):
        return error('Student not found!', 404)

    special = form.specialPayment.data
    if special and user_session.role != ROLE_ADMIN:
        return error('Special payments can only be recorded by an administrator', 403)
    special_amount = form.specialAmount.data or 0

    expected = int(bool(form.developmentFee.data)) + int(bool(form.busFee.data)) + int(special and special_amount > 0)
    if expected == 0:
        return error('Special payment amount must be greater than zero')

    created = ledger.checkout(
        student,
        user_session.username,
        development=form.developmentFee.data,
        bus=form.busFee.data,
        special_type=form.specialPaymentType.data if special else None,
        special_amount=special_amount,
    )
    if not created:
        return error('Payment could not be recorded', 500)

    ids = ','.join(p['id'] for p in created)
    return jsonify({
        'payments': created,
        'total': sum(p['amount'] for p in created),
        'complete': len(created) == expected,
        'receiptUrl': url_for('ledger.batch_receipt', ids=ids),
    }), 201


@bp.route('/payments/<payment_id>/receipt')
@login_required
def payment_receipt(payment_id):
    payment = get_ledger().payments.get(payment_id)
    if payment is None or not in_scope(current_user_session(), payment, key=payment_owner):
        return error('Payment not found!', 404)
    return render_receipt([payment])


@bp.route('/payments/receipt')
@login_required
def batch_receipt():
    ids = [i for i in request.args.get('ids', '').split(',') if i]
    if not ids:
        return error('No payments selected')

    user_session = current_user_session()
    ledger = get_ledger()
    batch = []
    for payment_id in ids:
        payment = ledger.payments.get(payment_id)
        if payment is None or not in_scope(user_session, payment, key=payment_owner):
            return error('Payment not found!', 404)
        batch.append(payment)
    if len({p['studentId'] for p in batch}) > 1:
        return error('A receipt can only cover payments for one student')
    return render_receipt(batch)


# Reports
@bp.route('/reports/payments.csv')
@login_required
def payments_report():
    dates = PaymentFilterForm(request.args)
    if not dates.validate():
        return error(dates.first_error())
    filtered = filter_payments(scoped_payments(), **payment_filter_args(dates))
    return csv_response(payments_csv(filtered), 'payments_report')


@bp.route('/reports/students.csv')
@login_required
def students_report():
    filtered = filter_students(scoped_students(), **student_filter_args())
    return csv_response(students_csv(filtered), 'students_report')


@bp.route('/reports/summary')
@login_required
def report_summary():
    dates = PaymentFilterForm(request.args)
    if not dates.validate():
        return error(dates.first_error())
    filtered_payments = filter_payments(scoped_payments(), **payment_filter_args(dates))
    filtered_students = filter_students(scoped_students(), **student_filter_args())
    return jsonify({
        'paymentCount': len(filtered_payments),
        'totalAmount': sum(p['amount'] for p in filtered_payments),
        'totalsByType': totals_by_type(filtered_payments),
        'students': student_breakdown(filtered_students),
    })


# Settings
@bp.route('/settings/fees')
@login_required
def fee_configurations():
    return jsonify({'feeConfigurations': get_ledger().fees.list()})


@bp.route('/settings/fees/<int:class_number>', methods=['PUT'])
@admin_required
def update_fee_configuration(class_number):
    form = FeeConfigurationForm.from_payload(request_payload())
    if not form.validate():
        return error(form.first_error())
    config = get_ledger().fees.update(class_number, form.developmentFee.data)
    if config is None:
        return error(f'No fee configuration for class {class_number}', 404)
    return jsonify({'feeConfiguration': config})


@bp.route('/settings/bus-stops')
@login_required
def bus_stops():
    return jsonify({'busStops': get_ledger().bus_stops.list()})


@bp.route('/settings/bus-stops', methods=['POST'])
@admin_required
def add_bus_stop():
    form = BusStopForm.from_payload(request_payload())
    if not form.validate():
        return error(form.first_error())
    ledger = get_ledger()
    if ledger.bus_stops.get_by_name(form.name.data):
        return error('Bus stop already exists', 409)
    stop = ledger.bus_stops.add(form.name.data, form.amount.data)
    if stop is None:
        return error('Bus stop could not be saved', 500)
    return jsonify({'busStop': stop}), 201


@bp.route('/settings/bus-stops/<stop_id>', methods=['PUT'])
@admin_required
def edit_bus_stop(stop_id):
    form = BusStopForm.from_payload(request_payload())
    if not form.validate():
        return error(form.first_error())
    ledger = get_ledger()
    if ledger.bus_stops.get(stop_id) is None:
        return error('Bus stop not found!', 404)
    duplicate = ledger.bus_stops.get_by_name(form.name.data)
    if duplicate and duplicate['id'] != stop_id:
        return error('Bus stop already exists', 409)
    stop = ledger.bus_stops.update(stop_id, form.name.data, form.amount.data)
    if stop is None:
        return error('Bus stop could not be saved', 500)
    return jsonify({'busStop': stop})


@bp.route('/settings/bus-stops/<stop_id>', methods=['DELETE'])
@admin_required
def delete_bus_stop(stop_id):
    if not get_ledger().bus_stops.delete(stop_id):
        return error('Bus stop not found!', 404)
    return jsonify({'deleted': stop_id})


if __name__ == '__main__':
    create_app().run(debug=os.environ.get('FLASK_ENV') == 'development')
