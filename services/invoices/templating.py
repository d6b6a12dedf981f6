"""Date placeholders for email subjects and bodies.

Supported tokens:
- ``${date}``: MM/DD/YYYY
- ``${englishMonth}``: full English month name
- ``${spanishMonth}``: full Spanish month name, capitalized
- ``${year}``: four-digit year
"""

import re
from datetime import date, datetime

ENGLISH_MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)
SPANISH_MONTHS = (
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
)

_LOCAL_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_template_date(value: str) -> date | None:
    """Parse ``YYYY-MM-DD`` or any ISO-8601 date/datetime string."""
    value = value.strip()
    try:
        if _LOCAL_DATE.match(value):
            return date.fromisoformat(value)
        return datetime.fromisoformat(value).date()
    except ValueError:
        return None


def replace_date_variables(template: str | None, date_str: str | None) -> str:
    """Substitute the date tokens in ``template`` using ``date_str``.

    Returns an empty string for a missing template and the template unchanged
    when the date is missing or cannot be parsed.
    """
    if not template:
        return ""
    if not date_str:
        return template

    parsed = parse_template_date(date_str)
    if parsed is None:
        return template

    spanish_month = SPANISH_MONTHS[parsed.month - 1]
    replacements = {
        "${date}": f"{parsed.month:02d}/{parsed.day:02d}/{parsed.year}",
        "${englishMonth}": ENGLISH_MONTHS[parsed.month - 1],
        "${spanishMonth}": spanish_month[0].upper() + spanish_month[1:],
        "${year}": str(parsed.year),
    }
    for token, value in replacements.items():
        template = template.replace(token, value)
    return template
