import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from rtr.core.models.results import ApexDiagnostic, ApexTestResultRecord

_LINE_COLUMN = re.compile(r"line (\d+), column (\d+)")


def calculate_percentage(dividend: int, divisor: int) -> str:
    """Whole-number percentage string, e.g. '67%'; '0%' when nothing counted."""
    if dividend <= 0 or divisor <= 0:
        return "0%"
    pct = (Decimal(dividend) / Decimal(divisor) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return f"{pct}%"


def get_async_diagnostic(record: ApexTestResultRecord) -> Optional[ApexDiagnostic]:
    """Build a diagnostic for a failed test from its message and stack trace."""
    if not record.Message and not record.StackTrace:
        return None
    diagnostic = ApexDiagnostic(
        exception_message=record.Message or "",
        exception_stack_trace=record.StackTrace,
        class_name=record.ApexClass.full_name,
    )
    if record.StackTrace:
        match = _LINE_COLUMN.search(record.StackTrace)
        if match:
            diagnostic.line_number = int(match.group(1))
            diagnostic.column_number = int(match.group(2))
    return diagnostic
