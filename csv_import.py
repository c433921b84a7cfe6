"""
Bulk import of course completions from CSV.

Columns: name,email,course,completion_date[,city]. Each valid row finds or
creates the user by e-mail, matches the course by title (case-insensitive)
and issues one certificate. Bad rows are reported and skipped.
"""
import csv
import io
import logging

from certificate import issue_certificate, DEFAULT_MAX_ATTEMPTS
from errors import ConstraintViolation, ValidationError, PartialBatchFailure
from utils import safe_parse_date

REQUIRED_COLUMNS = ('name', 'email', 'course', 'completion_date')


def _decode(data) -> str:
    if isinstance(data, bytes):
        return data.decode('utf-8-sig')
    return data


def _describe(error) -> str:
    fields = getattr(error, 'fields', None)
    if not fields:
        return error.message
    details = '; '.join(f'{name}: {message}' for name, message in fields.items())
    return f'{error.message} ({details})'


def import_certificates_csv(storage, data, max_attempts=DEFAULT_MAX_ATTEMPTS) -> dict:
    """Import rows from CSV text or bytes; returns {users, certificates, errors}."""
    reader = csv.DictReader(io.StringIO(_decode(data)))
    if reader.fieldnames:
        reader.fieldnames = [(f or '').strip().lower() for f in reader.fieldnames]

    users_created = 0
    certificates_issued = 0
    problems = PartialBatchFailure()

    for raw in reader:
        # line_num is the physical line the row ended on, blank lines included
        row_number = reader.line_num
        row = {k: (v or '').strip() for k, v in raw.items() if k}
        if not any(row.values()):
            continue
        missing = [c for c in REQUIRED_COLUMNS if not row.get(c)]
        if missing:
            problems.add(f"Row {row_number}: missing required fields: {', '.join(missing)}")
            continue
        completion = safe_parse_date(row['completion_date'])
        if completion is None:
            problems.add(f"Row {row_number}: invalid completion date '{row['completion_date']}'")
            continue
        course = storage.find_course_by_title(row['course'])
        if not course:
            problems.add(f"Row {row_number}: Course not found: {row['course']}")
            continue
        try:
            user = storage.get_user_by_email(row['email'])
            if not user:
                user = storage.create_user({'name': row['name'], 'email': row['email'], 'role': 'graduate'})
                users_created += 1
            issue_certificate(storage, user, course, completion, city=row.get('city') or None,
                              max_attempts=max_attempts)
            certificates_issued += 1
        except (ValidationError, ConstraintViolation) as e:
            problems.add(f"Row {row_number}: {_describe(e)}")

    logging.info(f'[CSV IMPORT] users={users_created} certificates={certificates_issued} errors={len(problems.errors)}')
    return {
        'users': users_created,
        'certificates': certificates_issued,
        'errors': problems.errors,
    }
