import csv
from typing import Iterable, TextIO

from report.models import COLUMNS, ReportRow


def write_csv(rows: Iterable[ReportRow], stream: TextIO) -> int:
    """Write report rows with the fixed column schema. Returns the row count."""
    writer = csv.writer(stream)
    writer.writerow(COLUMNS)
    count = 0
    for row in rows:
        writer.writerow(row.as_list())
        count += 1
    return count
