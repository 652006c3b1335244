"""
Canonical entity schemas for spreadsheet imports.

Each import source maps canonical field names to the header aliases we
recognise for it. Alias order matters: on exact matches the earlier alias
wins, and on partial matches the declared order breaks length ties.
"""
from enum import Enum
from typing import Dict, List, Tuple


class ImportSource(str, Enum):
    DRIVERS = "drivers"
    PATIENTS = "patients"
    EMPLOYEES = "employees"
    TRIPS = "trips"

    @property
    def record_type(self) -> str:
        """Singular entity name stored on staging rows ("drivers" -> "driver")."""
        return RECORD_TYPES[self]


RECORD_TYPES: Dict[ImportSource, str] = {
    ImportSource.DRIVERS: "driver",
    ImportSource.PATIENTS: "patient",
    ImportSource.EMPLOYEES: "employee",
    ImportSource.TRIPS: "trip",
}

CanonicalSchema = Dict[str, List[str]]

IDENTITY_FIELD = "full_name"

# Identity-bearing fields written to dedicated staging columns; everything
# else that resolves lands in the metadata bag.
CORE_FIELDS: Tuple[str, ...] = ("full_name", "email", "phone")

BIRTH_DATE_FIELDS = frozenset({"date_of_birth", "dob"})

_EMAIL_ALIASES = ['email', 'email_address', 'e-mail']
_PHONE_ALIASES = ['phone', 'mobile', 'cell', 'contact', 'phone_number', 'phone number']
_NOTES_ALIASES = ['notes', 'note', 'comments', 'comment']

CANONICAL_SCHEMAS: Dict[ImportSource, CanonicalSchema] = {
    ImportSource.DRIVERS: {
        'full_name': ['name', 'full_name', 'fullname', 'driver', 'driver_name', 'driver name'],
        'email': list(_EMAIL_ALIASES),
        'phone': list(_PHONE_ALIASES),
        'license_number': ['license', 'license_number', 'dl', 'license_no', 'license no', 'drivers_license'],
        'license_plate': ['license_plate', 'plate', 'plate_number', 'tag'],
        'id_number': ['id_number', 'employee_id', 'driver_id', 'badge'],
        'address': ['address', 'street', 'home_address'],
        'county': ['county'],
        'vehicle_info': ['vehicle', 'car', 'vehicle_info', 'make_model'],
        'vehicle_type': ['vehicle_type', 'vehicle type'],
        'vehicle_make': ['vehicle_make', 'make'],
        'vehicle_model': ['vehicle_model', 'model'],
        'vehicle_color': ['vehicle_color', 'color', 'colour'],
        'dot_medical_number': ['dot_medical_number', 'dot_medical', 'medical_card'],
        'dot_medical_expiration': ['dot_medical_expiration', 'medical_card_expiration'],
        'insurance_company': ['insurance_company', 'insurance', 'insurer', 'carrier'],
        'insurance_policy_number': ['insurance_policy_number', 'policy_number', 'policy'],
        'insurance_start_date': ['insurance_start_date', 'policy_start'],
        'insurance_expiration_date': ['insurance_expiration_date', 'insurance_expiration', 'policy_expiration'],
        'inspection_date': ['inspection_date', 'inspection', 'last_inspection'],
        'driver_record_issue_date': ['driver_record_issue_date', 'mvr_issue_date', 'mvr_date'],
        'driver_record_expiration': ['driver_record_expiration', 'mvr_expiration'],
        'notes': list(_NOTES_ALIASES),
    },
    ImportSource.PATIENTS: {
        'full_name': ['name', 'full_name', 'fullname', 'patient', 'patient_name', 'patient name', 'member', 'member_name'],
        'email': list(_EMAIL_ALIASES),
        'phone': list(_PHONE_ALIASES),
        'date_of_birth': ['dob', 'date_of_birth', 'birth_date', 'birthdate', 'birthday'],
        'primary_address': ['address', 'primary_address', 'street', 'street_address', 'home_address'],
        'county': ['county'],
        'medicaid_id': ['medicaid_id', 'medicaid', 'medicaid_number', 'member_id'],
        'waiver_type': ['waiver_type', 'waiver', 'program'],
        'referral_by': ['referral_by', 'referred_by', 'referral_source'],
        'referral_date': ['referral_date', 'date_referred'],
        'referral_expiration_date': ['referral_expiration_date', 'referral_expiration', 'authorization_end'],
        'service_type': ['service_type', 'service', 'level_of_service'],
        'case_manager': ['case_manager', 'case_worker', 'caseworker', 'care_coordinator'],
        'case_manager_phone': ['case_manager_phone', 'case_worker_phone', 'cm_phone'],
        'monthly_credit': ['monthly_credit', 'credit', 'monthly_budget', 'allowance'],
        'credit_used_for': ['credit_used_for', 'credit_use'],
        'vehicle_type_need': ['vehicle_type_need', 'vehicle_need', 'mobility', 'wheelchair'],
        'notes': list(_NOTES_ALIASES),
    },
    ImportSource.EMPLOYEES: {
        'full_name': ['name', 'full_name', 'fullname', 'employee', 'employee_name'],
        'email': list(_EMAIL_ALIASES),
        'phone': ['phone', 'mobile', 'cell', 'contact', 'phone_number'],
        'role': ['role', 'title', 'position', 'job_title'],
        'department': ['department', 'dept', 'team'],
        'hire_date': ['hire_date', 'start_date', 'date_hired', 'joined'],
    },
    ImportSource.TRIPS: {
        'full_name': ['patient', 'patient_name', 'patient name', 'name'],
        'phone': ['phone', 'patient_phone', 'mobile', 'cell'],
        'pickup_address': ['pickup', 'pickup_address', 'pick_up', 'pickup_location', 'origin'],
        'destination': ['destination', 'to', 'address', 'drop_off', 'dropoff'],
        'scheduled_time': ['time', 'date', 'scheduled', 'appointment'],
        'trip_type': ['trip_type', 'round_trip', 'one_way'],
        'notes': ['notes', 'note', 'comment', 'description'],
    },
}

# Fragments that mark a spreadsheet row as a likely header row. Shared across
# every schema; matched against lowercase, letters-only cell text.
HEADER_KEYWORDS: Tuple[str, ...] = (
    'name', 'fullname', 'email', 'phone', 'mobile', 'address',
    'license', 'dob', 'date', 'vehicle', 'role', 'department', 'note',
    'patient', 'driver', 'employee', 'birth', 'pickup', 'dropoff',
    'destination', 'appointment', 'medicaid', 'county', 'title',
    'position', 'hire', 'insurance', 'plate', 'referral', 'waiver',
)


def get_canonical_schema(source: ImportSource) -> CanonicalSchema:
    """Return the schema for ``source`` (accepts the enum or its string value)."""
    return CANONICAL_SCHEMAS[ImportSource(source)]


def is_date_field(field_name: str) -> bool:
    """True when values for ``field_name`` should be normalised to ISO dates."""
    return "date" in field_name or field_name in BIRTH_DATE_FIELDS
