"""
Request validation. Flask-WTF reads these forms from either form data or a
JSON body, so API clients can post plain JSON.
"""
from flask_wtf import FlaskForm
from wtforms import BooleanField, DateField, FloatField, IntegerField, PasswordField, SelectField, StringField
from wtforms.validators import AnyOf, DataRequired, InputRequired, Length, NumberRange, Optional

PAYMENT_MODE_CHOICES = [('CASH', 'Cash'), ('BANK', 'Bank'), ('UPI', 'UPI')]
ROLE_CHOICES = [('CLIENT_ADMIN', 'Client Admin'), ('TREASURER', 'Treasurer'), ('MEMBER', 'Member')]
EXPENSE_CATEGORY_CHOICES = [
    ('STATIONERY', 'Stationery'),
    ('PRINTING', 'Printing'),
    ('LOAN_FORMS', 'Loan Forms'),
    ('REFRESHMENTS', 'Refreshments'),
    ('OTHER', 'Other'),
]


class ApiForm(FlaskForm):
    # CSRFProtect already checks every state-changing request
    class Meta:
        csrf = False


class LoginForm(ApiForm):
    email = StringField('Email', validators=[DataRequired(), Length(max=120)])
    password = PasswordField('Password', validators=[DataRequired()])


class MemberForm(ApiForm):
    name = StringField('Name', validators=[DataRequired(), Length(max=200)])
    phone = StringField('Phone', validators=[DataRequired(), Length(min=6, max=30)])
    father_name = StringField('Father Name', validators=[Optional(), Length(max=200)])
    email = StringField('Email', validators=[Optional(), Length(max=120)])
    address = StringField('Address', validators=[Optional(), Length(max=500)])
    join_date = DateField('Join Date', validators=[Optional()])
    monthly_deposit_amount = FloatField('Monthly Deposit', validators=[Optional(), NumberRange(min=0)])


class MemberUpdateForm(ApiForm):
    name = StringField('Name', validators=[Optional(), Length(max=200)])
    phone = StringField('Phone', validators=[Optional(), Length(min=6, max=30)])
    father_name = StringField('Father Name', validators=[Optional(), Length(max=200)])
    email = StringField('Email', validators=[Optional(), Length(max=120)])
    address = StringField('Address', validators=[Optional(), Length(max=500)])
    status = StringField('Status', validators=[Optional(), AnyOf(['active', 'inactive'])])
    join_date = DateField('Join Date', validators=[Optional()])
    monthly_deposit_amount = FloatField('Monthly Deposit', validators=[Optional(), NumberRange(min=0)])


class PassbookEntryForm(ApiForm):
    member_id = IntegerField('Member', validators=[InputRequired()])
    deposit_amount = FloatField('Deposit', validators=[Optional(), NumberRange(min=0)])
    installment_amount = FloatField('Installment', validators=[Optional(), NumberRange(min=0)])
    interest_amount = FloatField('Interest', validators=[Optional(), NumberRange(min=0)])
    fine_amount = FloatField('Fine', validators=[Optional(), NumberRange(min=0)])
    withdrawal_amount = FloatField('Withdrawal', validators=[Optional(), NumberRange(min=0)])
    payment_mode = SelectField('Payment Mode', choices=PAYMENT_MODE_CHOICES, default='CASH')
    date = DateField('Date', validators=[Optional()])
    description = StringField('Description', validators=[Optional(), Length(max=400)])


class LoanRequestForm(ApiForm):
    member_id = IntegerField('Member', validators=[InputRequired()])
    amount = FloatField('Amount', validators=[InputRequired(), NumberRange(min=0.01)])
    purpose = StringField('Purpose', validators=[Optional(), Length(max=400)])
    override = BooleanField('Override limits')


class LoanApprovalForm(ApiForm):
    approved_amount = FloatField('Approved Amount', validators=[Optional(), NumberRange(min=0.01)])
    override = BooleanField('Override limits')
    payment_mode = SelectField('Payment Mode', choices=PAYMENT_MODE_CHOICES, default='CASH')
    date = DateField('Start Date', validators=[Optional()])


class LoanRejectForm(ApiForm):
    reason = StringField('Reason', validators=[Optional(), Length(max=400)])


class LoanUpdateForm(ApiForm):
    interest_rate = FloatField('Interest Rate', validators=[Optional(), NumberRange(min=0, max=100)])
    tenure = IntegerField('Tenure', validators=[Optional(), NumberRange(min=1)])
    emi_amount = FloatField('EMI', validators=[Optional(), NumberRange(min=0.01)])
    remaining_balance = FloatField('Remaining Balance', validators=[Optional(), NumberRange(min=0)])
    status = StringField('Status', validators=[Optional(), AnyOf(['active', 'completed', 'defaulted'])])
    next_due_date = DateField('Next Due Date', validators=[Optional()])
    purpose = StringField('Purpose', validators=[Optional(), Length(max=400)])
    payment_mode = StringField('Payment Mode', validators=[Optional(), AnyOf(['CASH', 'BANK', 'UPI'])])


class AdminFundForm(ApiForm):
    amount = FloatField('Amount', validators=[InputRequired(), NumberRange(min=0.01)])
    type = SelectField('Type', choices=[('INJECT', 'Inject'), ('WITHDRAW', 'Withdraw')])
    description = StringField('Description', validators=[DataRequired(), Length(max=400)])
    payment_mode = SelectField('Payment Mode', choices=PAYMENT_MODE_CHOICES, default='CASH')
    date = DateField('Date', validators=[Optional()])
    force = BooleanField('Force withdrawal')


class MaintenanceFeeForm(ApiForm):
    member_id = IntegerField('Member', validators=[InputRequired()])
    amount = FloatField('Amount', validators=[Optional(), NumberRange(min=0.01)])
    payment_mode = SelectField('Payment Mode', choices=PAYMENT_MODE_CHOICES, default='CASH')
    date = DateField('Date', validators=[Optional()])


class ExpenseForm(ApiForm):
    amount = FloatField('Amount', validators=[InputRequired(), NumberRange(min=0.01)])
    category = SelectField('Category', choices=EXPENSE_CATEGORY_CHOICES, default='OTHER')
    description = StringField('Description', validators=[DataRequired(), Length(max=400)])
    payment_mode = SelectField('Payment Mode', choices=PAYMENT_MODE_CHOICES, default='CASH')
    date = DateField('Date', validators=[Optional()])


class MaturityOverrideForm(ApiForm):
    manual_interest = FloatField('Manual Interest', validators=[InputRequired(), NumberRange(min=0)])


class UserForm(ApiForm):
    name = StringField('Name', validators=[DataRequired(), Length(max=200)])
    email = StringField('Email', validators=[DataRequired(), Length(max=120)])
    password = PasswordField('Password', validators=[DataRequired(), Length(min=6)])
    role = SelectField('Role', choices=ROLE_CHOICES)
    phone = StringField('Phone', validators=[Optional(), Length(max=30)])
    linked_member_id = IntegerField('Linked Member', validators=[Optional()])


class UserUpdateForm(ApiForm):
    name = StringField('Name', validators=[Optional(), Length(max=200)])
    email = StringField('Email', validators=[Optional(), Length(max=120)])
    password = PasswordField('Password', validators=[Optional(), Length(min=6)])
    role = StringField('Role', validators=[Optional(), AnyOf([code for code, _ in ROLE_CHOICES])])
    phone = StringField('Phone', validators=[Optional(), Length(max=30)])


class UserStatusForm(ApiForm):
    status = StringField('Status', validators=[DataRequired(), AnyOf(['ACTIVE', 'BLOCKED'])])


class LinkMemberForm(ApiForm):
    member_id = IntegerField('Member', validators=[InputRequired()])


class PermissionToggleForm(ApiForm):
    role = StringField('Role', validators=[DataRequired()])
    permission = StringField('Permission', validators=[DataRequired()])


class PaymentOrderForm(ApiForm):
    plan_code = StringField('Plan', validators=[DataRequired()])
    payment_reference = StringField('Payment Reference', validators=[Optional(), Length(max=100)])


class PaymentDecisionForm(ApiForm):
    reason = StringField('Reason', validators=[Optional(), Length(max=400)])


class SocietyForm(ApiForm):
    name = StringField('Society Name', validators=[DataRequired(), Length(max=200)])
    email = StringField('Society Email', validators=[DataRequired(), Length(max=120)])
    admin_email = StringField('Admin Email', validators=[DataRequired(), Length(max=120)])
    admin_password = PasswordField('Admin Password', validators=[DataRequired(), Length(min=6)])
    admin_name = StringField('Admin Name', validators=[Optional(), Length(max=200)])
    phone = StringField('Phone', validators=[Optional(), Length(max=30)])
    address = StringField('Address', validators=[Optional(), Length(max=500)])


class ClientStatusForm(ApiForm):
    action = StringField('Action', validators=[DataRequired(), AnyOf(['LOCK', 'EXPIRE', 'UNLOCK'])])


class ActivatePlanForm(ApiForm):
    plan_code = StringField('Plan', validators=[DataRequired()])
    amount_paid = FloatField('Amount Paid', validators=[Optional(), NumberRange(min=0)])
    payment_reference = StringField('Payment Reference', validators=[Optional(), Length(max=100)])
    notes = StringField('Notes', validators=[Optional(), Length(max=1000)])
