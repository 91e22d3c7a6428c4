from __future__ import annotations

import re
from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator


BillingCycle = Literal['Monthly', 'Quarterly', 'Yearly']
PaymentStatus = Literal['paid', 'unpaid', 'overdue', 'pending']
RentalFeeStatus = Literal['pending', 'partial', 'paid', 'waived']
Role = Literal['super_admin', 'admin', 'teacher', 'student', 'parent', 'librarian']
CustomFieldType = Literal['text', 'long-text', 'number', 'date', 'checkbox', 'select', 'multi-select', 'file']
CampusScope = Literal['this_campus', 'selected_campuses', 'all_campuses']
EntityType = Literal['student', 'teacher', 'parent']
IdCardUserType = Literal['student', 'teacher', 'staff']

BILLING_CYCLES: tuple[str, ...] = ('Monthly', 'Quarterly', 'Yearly')
PAYMENT_STATUSES: tuple[str, ...] = ('paid', 'unpaid', 'overdue', 'pending')
PAYABLE_STATUSES: frozenset[str] = frozenset({'unpaid', 'pending', 'overdue'})
RENTAL_FEE_STATUSES: tuple[str, ...] = ('pending', 'partial', 'paid', 'waived')
CUSTOM_FIELD_TYPES: tuple[str, ...] = ('text', 'long-text', 'number', 'date', 'checkbox', 'select', 'multi-select', 'file')
ID_CARD_USER_TYPES: tuple[str, ...] = ('student', 'teacher', 'staff')

_SLUG_RE = re.compile(r'^[a-z0-9]+(?:-[a-z0-9]+)*$')
_EMAIL_RE = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


class BackendModel(BaseModel):
    model_config = ConfigDict(extra='ignore')


class FormModel(BaseModel):
    model_config = ConfigDict(extra='ignore', str_strip_whitespace=True)


# profiles / tenancy


class Profile(BackendModel):
    id: str
    email: str = ''
    role: str
    school_id: str | None = None
    first_name: str = ''
    last_name: str = ''
    is_active: bool = True

    @property
    def display_name(self) -> str:
        name = f'{self.first_name} {self.last_name}'.strip()
        return name or self.email


class Campus(BackendModel):
    id: str
    name: str


class School(BackendModel):
    id: str
    name: str
    slug: str | None = None
    status: str | None = None
    contact_email: str | None = None
    logo_url: str | None = None


# billing


class BillingPlan(BackendModel):
    id: str
    name: str
    description: str = ''
    monthly_price: float = 0
    quarterly_price: float = 0
    yearly_price: float = 0
    max_students: int | None = None
    features: list[str] = Field(default_factory=list)
    is_active: bool = True
    created_at: datetime | None = None


class BillingPlanForm(FormModel):
    name: str = Field(min_length=1)
    description: str = ''
    monthly_price: float = Field(ge=0)
    quarterly_price: float = Field(ge=0)
    yearly_price: float = Field(ge=0)
    max_students: int | None = Field(default=None, ge=1)
    features: list[str] = Field(default_factory=list)
    is_active: bool = True

    @field_validator('features', mode='before')
    @classmethod
    def _split_features(cls, value):
        if isinstance(value, str):
            return [line.strip() for line in value.splitlines() if line.strip()]
        return value

    @field_validator('max_students', mode='before')
    @classmethod
    def _blank_is_unlimited(cls, value):
        if value in ('', None):
            return None
        return value


class BillingRecord(BackendModel):
    id: str
    school_id: str
    school_name: str | None = None
    billing_plan_id: str | None = None
    subscription_plan: str | None = None
    billing_cycle: BillingCycle
    amount: float
    due_date: date
    payment_status: PaymentStatus
    payment_date: date | None = None
    invoice_number: str
    start_date: date | None = None
    created_at: datetime | None = None


class BillingRecordForm(FormModel):
    school_id: str = Field(min_length=1)
    billing_plan_id: str = Field(min_length=1)
    billing_cycle: BillingCycle = 'Monthly'
    amount: float = Field(ge=0)
    start_date: date
    due_date: date
    payment_status: PaymentStatus = 'unpaid'

    @model_validator(mode='after')
    def _start_before_due(self):
        if self.start_date > self.due_date:
            raise ValueError('Start date must be before due date')
        return self


# schools


class SchoolDetails(FormModel):
    name: str = Field(min_length=2)
    slug: str = Field(min_length=2)
    contact_email: str
    address: str = Field(min_length=5)
    website: str | None = None
    logo_url: str | None = None

    @field_validator('website', 'logo_url', mode='before')
    @classmethod
    def _blank_is_none(cls, value):
        return value or None

    @field_validator('slug')
    @classmethod
    def _slug_shape(cls, value: str) -> str:
        if not _SLUG_RE.match(value):
            raise ValueError('Slug may only contain lowercase letters, digits and hyphens')
        return value

    @field_validator('contact_email')
    @classmethod
    def _email_shape(cls, value: str) -> str:
        if not _EMAIL_RE.match(value):
            raise ValueError('Enter a valid email address')
        return value


class SchoolAdmin(FormModel):
    email: str
    password: str = Field(min_length=8)
    first_name: str = Field(min_length=2)
    last_name: str = Field(min_length=2)

    @field_validator('email')
    @classmethod
    def _email_shape(cls, value: str) -> str:
        if not _EMAIL_RE.match(value):
            raise ValueError('Enter a valid email address')
        return value


class OnboardingBilling(FormModel):
    billing_plan_id: str = Field(min_length=1)
    billing_cycle: BillingCycle = 'Monthly'
    amount: float = Field(ge=0)
    start_date: date
    due_date: date
    payment_status: Literal['paid', 'unpaid', 'pending'] = 'unpaid'


class SchoolOnboardForm(FormModel):
    school: SchoolDetails
    admin: SchoolAdmin
    billing: OnboardingBilling | None = None


# academics


class GradeLevel(BackendModel):
    id: str
    name: str
    order_index: int = 0
    base_fee: float = 0
    is_active: bool = True
    sections_count: int | None = None
    students_count: int | None = None


class Section(BackendModel):
    id: str
    name: str
    grade_level_id: str
    grade_name: str | None = None
    capacity: int = 0
    current_strength: int = 0
    is_active: bool = True

    @property
    def available_seats(self) -> int:
        return max(self.capacity - self.current_strength, 0)

    @property
    def utilization(self) -> float:
        if self.capacity <= 0:
            return 0.0
        return round(self.current_strength / self.capacity * 100, 1)


class Subject(BackendModel):
    id: str
    name: str
    code: str | None = None
    grade_level_id: str | None = None


class SectionForm(FormModel):
    name: str = Field(min_length=1)
    grade_level_id: str = Field(min_length=1)
    capacity: int = Field(ge=1)


# attendance


class AttendanceSummaryRow(BackendModel):
    student_id: str
    student_name: str
    student_number: str | None = None
    section_name: str | None = None
    grade_name: str | None = None
    total_days: int = 0
    days_present: int = 0
    days_absent: int = 0
    days_half: int = 0
    attendance_percentage: float = 0
    state_code_breakdown: dict[str, int] = Field(default_factory=dict)


# hostel


class HostelVisit(BackendModel):
    id: str
    student_id: str
    student_name: str | None = None
    room_id: str | None = None
    visitor_name: str
    relation: str | None = None
    purpose: str | None = None
    check_in: datetime
    check_out: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.check_out is None


class HostelVisitForm(FormModel):
    student_id: str = Field(min_length=1)
    visitor_name: str = Field(min_length=1)
    relation: str = ''
    purpose: str = ''
    visitor_phone: str = ''


class HostelRentalFee(BackendModel):
    id: str
    student_id: str
    student_name: str | None = None
    room_id: str | None = None
    period_start: date
    period_end: date
    base_amount: float = 0
    final_amount: float = 0
    amount_paid: float = 0
    status: RentalFeeStatus = 'pending'

    @property
    def outstanding(self) -> float:
        return round(max(self.final_amount - self.amount_paid, 0.0), 2)


class RentalFeeGenerateForm(FormModel):
    period_start: date
    period_end: date
    factor: float = Field(default=1.0, ge=0)
    building_id: str | None = None

    @field_validator('building_id', mode='before')
    @classmethod
    def _blank_building(cls, value):
        return value or None

    @model_validator(mode='after')
    def _period_order(self):
        if self.period_start > self.period_end:
            raise ValueError('Period start must be before period end')
        return self


class RentalFeePaymentForm(FormModel):
    fee_id: str = Field(min_length=1)
    amount: float = Field(gt=0)
    notes: str = ''


# class diary


class DiaryComment(BackendModel):
    id: str
    diary_entry_id: str
    author_id: str | None = None
    author_name: str | None = None
    content: str
    created_at: datetime | None = None

    @model_validator(mode='before')
    @classmethod
    def _flatten_author(cls, data):
        if isinstance(data, dict) and not data.get('author_name') and isinstance(data.get('author'), dict):
            author = data['author']
            data = dict(data)
            data['author_name'] = f"{author.get('first_name', '')} {author.get('last_name', '')}".strip() or None
        return data


class DiaryEntry(BackendModel):
    id: str
    section_id: str
    section_name: str | None = None
    subject_id: str | None = None
    subject_name: str | None = None
    teacher_id: str | None = None
    diary_date: date
    day_of_week: int | None = None
    content: str
    enable_comments: bool = False
    is_published: bool = True
    comments: list[DiaryComment] = Field(default_factory=list)

    @model_validator(mode='before')
    @classmethod
    def _flatten_relations(cls, data):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not data.get('section_name') and isinstance(data.get('section'), dict):
            data['section_name'] = data['section'].get('name')
        if not data.get('subject_name') and isinstance(data.get('subject'), dict):
            data['subject_name'] = data['subject'].get('name')
        return data


class DiaryEntryForm(FormModel):
    section_id: str = Field(min_length=1)
    subject_id: str | None = None
    diary_date: date
    content: str = Field(min_length=1)
    enable_comments: bool = False
    # the timetable teacher when the entry is written for a colleague
    teacher_id: str | None = None

    @field_validator('subject_id', 'teacher_id', mode='before')
    @classmethod
    def _blank_to_none(cls, value):
        return value or None

    @property
    def day_of_week(self) -> int:
        # 0 = Sunday, matching the backend's convention
        return (self.diary_date.weekday() + 1) % 7


class DiaryCommentForm(FormModel):
    content: str = Field(min_length=1)


# custom fields


class CustomFieldDefinition(BackendModel):
    id: str
    entity_type: EntityType = 'parent'
    category_id: str
    category_name: str = ''
    category_order: int | None = None
    field_key: str | None = None
    label: str
    type: CustomFieldType = 'text'
    options: list[str] = Field(default_factory=list)
    required: bool = False
    sort_order: int = 0
    campus_scope: CampusScope = 'this_campus'
    applicable_school_ids: list[str] = Field(default_factory=list)
    is_active: bool = True


class CustomFieldForm(FormModel):
    label: str = Field(min_length=1)
    type: CustomFieldType = 'text'
    options: list[str] = Field(default_factory=list)
    required: bool = False
    campus_scope: CampusScope = 'this_campus'
    applicable_school_ids: list[str] = Field(default_factory=list)

    @field_validator('options', mode='before')
    @classmethod
    def _split_options(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(',') if item.strip()]
        return value

    @model_validator(mode='after')
    def _select_needs_options(self):
        if self.type in ('select', 'multi-select') and not self.options:
            raise ValueError('Select fields need at least one option')
        return self


class CategoryForm(FormModel):
    name: str = Field(min_length=1)


# scheduling


class AcademicYear(BackendModel):
    id: str
    name: str
    start_date: date | None = None
    end_date: date | None = None
    is_current: bool = False


class Course(BackendModel):
    id: str
    title: str
    short_name: str | None = None
    subject_id: str | None = None


class PeriodTeacher(BackendModel):
    first_name: str = ''
    last_name: str = ''


class CoursePeriod(BackendModel):
    id: str
    course_id: str = ''
    teacher_id: str | None = None
    teacher: PeriodTeacher | None = None
    days: str | None = None
    short_name: str | None = None
    room: str | None = None
    total_seats: int | None = None
    filled_seats: int = 0
    is_active: bool = True

    @property
    def teacher_name(self) -> str:
        if self.teacher is None:
            return ''
        return f'{self.teacher.first_name} {self.teacher.last_name}'.strip()

    @property
    def available_seats(self) -> int | None:
        if self.total_seats is None:
            return None
        return self.total_seats - self.filled_seats

    @property
    def is_full(self) -> bool:
        seats = self.available_seats
        return seats is not None and seats <= 0

    @property
    def label(self) -> str:
        parts = [self.days, self.short_name, self.teacher_name]
        return ' - '.join(part for part in parts if part) or f'Period {self.id[:6]}'


class StudentSummary(BackendModel):
    id: str
    first_name: str = ''
    last_name: str = ''
    student_number: str | None = None

    @property
    def display_name(self) -> str:
        name = f'{self.first_name} {self.last_name}'.strip()
        return name or self.student_number or self.id


class StudentSchedule(BackendModel):
    id: str
    student_id: str
    course_id: str
    course_period_id: str
    academic_year_id: str | None = None
    start_date: date | None = None
    end_date: date | None = None
    scheduler_lock: bool = False
    course: Course | None = None
    course_period: CoursePeriod | None = None

    def active_on(self, day: date) -> bool:
        if self.start_date and day < self.start_date:
            return False
        if self.end_date and day > self.end_date:
            return False
        return True

    @property
    def course_title(self) -> str:
        return self.course.title if self.course else self.course_id


class ScheduleConflict(BackendModel):
    conflicting_schedule_id: str = ''
    conflicting_course_period_id: str = ''
    conflicting_course_title: str = ''
    conflicting_period_title: str = ''
    conflicting_day_of_week: int | None = None


class AddDropRecord(BackendModel):
    model_config = ConfigDict(extra='ignore', populate_by_name=True)

    student_id: str
    student_name: str | None = None
    course_title: str = ''
    course_period_title: str | None = None
    action: Literal['add', 'drop']
    occurred_on: date = Field(alias='date')
    enrolled_by: str | None = None

    def matches(self, query: str) -> bool:
        needle = query.strip().lower()
        if not needle:
            return True
        haystack = (self.student_name or '', self.student_id, self.course_title, self.course_period_title or '')
        return any(needle in value.lower() for value in haystack)


class EnrollmentForm(FormModel):
    course_id: str = Field(min_length=1)
    course_period_id: str = Field(min_length=1)
    academic_year_id: str = Field(min_length=1)
    start_date: date


class DropForm(FormModel):
    course_period_id: str = Field(min_length=1)
    end_date: date


# id cards


class IdCardTemplate(BackendModel):
    id: str
    name: str
    description: str | None = None
    user_type: IdCardUserType = 'student'
    template_config: dict = Field(default_factory=dict)
    is_active: bool = False

    @property
    def orientation(self) -> str:
        return (self.template_config.get('layout') or {}).get('orientation') or 'portrait'

    @property
    def field_count(self) -> int:
        return len(self.template_config.get('fields') or [])

    @property
    def has_qr_code(self) -> bool:
        return bool((self.template_config.get('qrCode') or {}).get('enabled'))


class IdCardTemplateForm(FormModel):
    name: str = Field(min_length=1)
    description: str = ''
    user_type: IdCardUserType = 'student'
    orientation: Literal['portrait', 'landscape'] = 'portrait'


BillingPlanList = TypeAdapter(list[BillingPlan])
BillingRecordList = TypeAdapter(list[BillingRecord])
SchoolList = TypeAdapter(list[School])
CampusList = TypeAdapter(list[Campus])
GradeLevelList = TypeAdapter(list[GradeLevel])
SectionList = TypeAdapter(list[Section])
SubjectList = TypeAdapter(list[Subject])
AttendanceSummaryList = TypeAdapter(list[AttendanceSummaryRow])
HostelVisitList = TypeAdapter(list[HostelVisit])
HostelRentalFeeList = TypeAdapter(list[HostelRentalFee])
DiaryEntryList = TypeAdapter(list[DiaryEntry])
CustomFieldDefinitionList = TypeAdapter(list[CustomFieldDefinition])
AcademicYearList = TypeAdapter(list[AcademicYear])
CourseList = TypeAdapter(list[Course])
CoursePeriodList = TypeAdapter(list[CoursePeriod])
StudentScheduleList = TypeAdapter(list[StudentSchedule])
AddDropRecordList = TypeAdapter(list[AddDropRecord])
IdCardTemplateList = TypeAdapter(list[IdCardTemplate])
