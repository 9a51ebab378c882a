"""Plain-text audit trail of treasurer actions that touch money or payment state."""
from datetime import datetime
from pathlib import Path

LOGS_DIR = Path(__file__).parent.parent.parent / "logs"


def write_audit_log(actor, action: str, details: str = "") -> None:
    """Append one line to logs/audit_YYYY_MM.log.

    `actor` is the acting User (or None for the scheduler).
    """
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    now = datetime.now()
    log_file = LOGS_DIR / f"audit_{now.strftime('%Y_%m')}.log"

    if actor is None:
        who, role = "system", "scheduler"
    else:
        who = f"{actor.name} ({actor.usn})"
        role = actor.role.value if actor.role else "unknown"

    with open(log_file, "a", encoding="utf-8") as f:
        f.write(f"{now.strftime('%Y-%m-%d %H:%M:%S')} | {role} | {who} | {action} | {details}\n")
