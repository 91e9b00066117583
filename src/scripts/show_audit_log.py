import sys
import os
from typing import List, Optional

# Add project root to Python path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../..")))

from src.identity_gateway.models.audit_log import AuditEvent  # noqa: E402
from src.identity_gateway.models.database import create_session_factory  # noqa: E402
from src.identity_gateway.services.audit_service import AuditRecorder  # noqa: E402


def show_audit_log(actor: Optional[str] = None, limit: int = 50) -> List[AuditEvent]:
    """Print the newest audit events, optionally for one actor, and return them."""
    recorder = AuditRecorder(create_session_factory())
    events = recorder.recent_events(actor=actor, limit=limit)
    for event in events:
        print(
            f"{event.timestamp:%Y-%m-%d %H:%M:%S} {event.event_type:<25} "
            f"{event.actor or '-':<30} {event.ip_address or '-':<15} {event.description}"
        )
    return events


if __name__ == "__main__":
    actor = None
    limit = 50
    if "--limit" in sys.argv:
        idx = sys.argv.index("--limit")
        if idx + 1 < len(sys.argv):
            limit = int(sys.argv[idx + 1])
    if "--actor" in sys.argv:
        idx = sys.argv.index("--actor")
        if idx + 1 < len(sys.argv):
            actor = sys.argv[idx + 1]
    show_audit_log(actor=actor, limit=limit)
