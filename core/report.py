"""Installation / key-package summaries for an inbox."""

from datetime import datetime, timezone
from typing import List, Sequence

from .models import InboxReport, InboxState, InstallationStatus, StatusMap

DATE_FORMAT = "%Y-%m-%d %H:%M:%S UTC"
INVALID_DATE = "invalid date"


def abbreviate_id(installation_id: str) -> str:
    if len(installation_id) > 8:
        return f"{installation_id[:4]}...{installation_id[-4:]}"
    return installation_id


def format_timestamp(epoch_seconds: int) -> str:
    millis = int(epoch_seconds) * 1000
    try:
        moment = datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    except (OverflowError, ValueError, OSError):
        return INVALID_DATE
    return moment.strftime(DATE_FORMAT)


def primary_address(states: Sequence[InboxState]) -> str:
    """First identifier of the first state entry, or an empty string."""

    if not states or not states[0].identifiers:
        return ""
    return states[0].identifiers[0].identifier


def installation_ids(states: Sequence[InboxState]) -> List[str]:
    if not states:
        return []
    return [installation.id for installation in states[0].installations]


def build_report(inbox_id: str, address: str, statuses: StatusMap) -> InboxReport:
    # A missing status is not flagged, so it lands in the valid count.
    entries: List[InstallationStatus] = []
    invalid = 0
    for installation_id, status in statuses.items():
        if status is None:
            status = InstallationStatus(installation_id=installation_id)
        if status.validation_error:
            invalid += 1
        entries.append(status)
    total = len(entries)
    return InboxReport(
        inbox_id=inbox_id,
        address=address,
        total_installations=total,
        valid_count=total - invalid,
        invalid_count=invalid,
        entries=entries,
    )


def format_report(report: InboxReport) -> str:
    lines = [
        f'InboxID: \n"{report.inbox_id}" \nAddress: \n"{report.address}" \n'
        f" You have {report.total_installations} installations, "
        f"{report.valid_count} of them are valid and "
        f"{report.invalid_count} of them are invalid.\n\n"
    ]
    for entry in report.entries:
        short_id = abbreviate_id(entry.installation_id)
        if entry.lifetime:
            lines.append(
                f"✅ '{short_id}':\n"
                f"- created: {format_timestamp(entry.lifetime.not_before)}\n"
                f"- valid until: {format_timestamp(entry.lifetime.not_after)}\n\n"
            )
        elif entry.validation_error:
            lines.append(
                f"❌ '{short_id}':\n"
                f"- validationError: '{entry.validation_error}'\n\n"
            )
    return "".join(lines)
