"""CSV and Excel exports of a student's class history."""

from io import BytesIO
from typing import List

import pandas as pd

from eligibility_engine.history import enrollments_frame
from eligibility_engine.models import ClassEnrollment

EXPORT_COLUMNS = {
    'class_id': 'Class ID',
    'training_name': 'Training',
    'status': 'Status',
    'start_date': 'Start Date',
    'end_date': 'End Date',
    'duration_hours': 'Hours',
    'total_lessons': 'Lessons',
    'attended_lessons': 'Attended',
    'absences': 'Absences',
    'practical_grade': 'Practical Grade',
    'theoretical_grade': 'Theoretical Grade',
}


def history_table(enrollments: List[ClassEnrollment]) -> pd.DataFrame:
    """Enrollments as a table with display headers."""
    return enrollments_frame(enrollments).rename(columns=EXPORT_COLUMNS)


def history_to_csv(enrollments: List[ClassEnrollment]) -> str:
    return history_table(enrollments).to_csv(index=False, float_format='%.2f')


def history_to_xlsx(enrollments: List[ClassEnrollment]) -> bytes:
    output = BytesIO()
    with pd.ExcelWriter(output, engine='openpyxl') as writer:
        history_table(enrollments).to_excel(writer, index=False, sheet_name='History')
    return output.getvalue()
