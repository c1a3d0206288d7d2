from report.models import COLUMNS, ChangeGroup, PageState, ReportRow
from report.aggregator import ReportAggregator, ERRORS_GROUP, NO_GROUP, default_priority
from report.writer import write_csv
