"""
Input validation for the JSON endpoints and the CSV importer.

Payloads are plain dicts; ``PayloadForm.from_payload`` feeds them to WTForms
as form data so the usual coercion and validators apply.
"""
from werkzeug.datastructures import MultiDict
from wtforms import BooleanField, DateField, Form, IntegerField, PasswordField, StringField
from wtforms.validators import DataRequired, EqualTo, InputRequired, Length, NumberRange, Optional, Regexp


def _strip(value):
    return value.strip() if isinstance(value, str) else value


def _upper(value):
    return value.upper() if isinstance(value, str) else value


class PayloadForm(Form):
    # payload key -> form field name, for keys that are not valid identifiers
    aliases = {}

    @classmethod
    def from_payload(cls, payload):
        formdata = MultiDict()
        for key, value in (payload or {}).items():
            if value is None:
                continue
            name = cls.aliases.get(key, key)
            if isinstance(value, bool) or (cls._is_checkbox(name) and not isinstance(value, str)):
                # JSON 0/1 and true/false both mean unchecked/checked
                value = 'true' if value else 'false'
            formdata.add(name, str(value))
        return cls(formdata=formdata)

    @classmethod
    def _is_checkbox(cls, name):
        field_class = getattr(getattr(cls, name, None), 'field_class', None)
        return isinstance(field_class, type) and issubclass(field_class, BooleanField)

    def record(self):
        reverse = {name: key for key, name in self.aliases.items()}
        return {reverse.get(name, name): field.data for name, field in self._fields.items()}

    def first_error(self):
        for field in self._fields.values():
            if field.errors:
                return f'{field.label.text}: {field.errors[0]}'
        if self.form_errors:
            return self.form_errors[0]
        return None


class LoginForm(PayloadForm):
    username = StringField('Username', validators=[DataRequired()], filters=[_strip])
    password = PasswordField('Password', validators=[DataRequired()])


class ChangePasswordForm(PayloadForm):
    oldPassword = PasswordField('Current password', validators=[DataRequired()])
    newPassword = PasswordField('New password', validators=[
        DataRequired(),
        EqualTo('confirmPassword', message='New passwords do not match'),
        Length(min=4, message='Password must be at least 4 characters long'),
    ])
    confirmPassword = PasswordField('Confirm password')


class StudentForm(PayloadForm):
    aliases = {'class': 'class_number'}

    admissionNumber = StringField('Admission number', validators=[DataRequired()], filters=[_strip])
    name = StringField('Name', validators=[DataRequired()], filters=[_strip])
    mobile = StringField('Mobile', default='', filters=[_strip])
    class_number = IntegerField('Class', validators=[DataRequired(), NumberRange(min=1, max=12)])
    division = StringField('Division', validators=[
        DataRequired(), Regexp(r'^[A-Z]$', message='Division must be a single letter'),
    ], filters=[_strip, _upper])
    busStop = StringField('Bus stop', default='', filters=[_strip])
    busNumber = IntegerField('Bus number', default=1, validators=[Optional(), NumberRange(min=0)])
    tripNumber = IntegerField('Trip number', default=1, validators=[Optional(), NumberRange(min=0)])

    def record(self):
        record = super().record()
        for field in ('busNumber', 'tripNumber'):
            if record[field] is None:
                record[field] = 1
        return record


class PaymentForm(PayloadForm):
    studentId = StringField('Student', validators=[DataRequired()])
    developmentFee = BooleanField('Development fee')
    busFee = BooleanField('Bus fee')
    specialPayment = BooleanField('Special payment')
    specialPaymentType = StringField('Special payment type', filters=[_strip])
    specialAmount = IntegerField('Special amount', default=0, validators=[Optional(), NumberRange(min=0)])

    def validate(self, extra_validators=None):
        valid = super().validate(extra_validators)
        if not (self.developmentFee.data or self.busFee.data or self.specialPayment.data):
            self.form_errors.append('Please select at least one payment type')
            return False
        if self.specialPayment.data and not self.specialPaymentType.data:
            self.specialPaymentType.errors.append('Required for a special payment')
            return False
        return valid


class FeeConfigurationForm(PayloadForm):
    developmentFee = IntegerField('Development fee', validators=[InputRequired(), NumberRange(min=0)])


class BusStopForm(PayloadForm):
    name = StringField('Name', validators=[DataRequired()], filters=[_strip])
    amount = IntegerField('Amount', validators=[InputRequired(), NumberRange(min=0)])


class PaymentFilterForm(PayloadForm):
    """Date range of the payment list and reports, ``YYYY-MM-DD``"""
    dateFrom = DateField('From date', validators=[Optional()])
    dateTo = DateField('To date', validators=[Optional()])
