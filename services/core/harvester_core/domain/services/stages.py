"""Run stages and stage labels.

A run moves through an ordered list of stages. Log entries carry a stage
label, which may be the canonical name or one of the aliases used by the
collaborators that produce them ("Lead Finder", "Outreach Creator", ...).

The run's current stage is the stage of its most recent log entry whose
label resolves to a known stage. RunService.append_log keeps it on
Run.current_stage as each entry is written, so it never needs a scan of
the log. Incidental entries (stage "System") never move it.
"""

from typing import Optional


DISCOVERY = "Discovery"
PROFILING = "Profiling"
CONTACT_FINDING = "Contact-Finding"
MESSAGE_DRAFTING = "Message-Drafting"
PERSISTENCE = "Persistence"

SYSTEM = "System"

STAGES = (DISCOVERY, PROFILING, CONTACT_FINDING, MESSAGE_DRAFTING, PERSISTENCE)

STAGE_ALIASES = {
    "company finder": DISCOVERY,
    "discovery": DISCOVERY,
    "company profiler": PROFILING,
    "profiling": PROFILING,
    "lead finder": CONTACT_FINDING,
    "apollo lead finder": CONTACT_FINDING,
    "contact finder": CONTACT_FINDING,
    "contact-finding": CONTACT_FINDING,
    "outreach creator": MESSAGE_DRAFTING,
    "message-drafting": MESSAGE_DRAFTING,
    "crm sync": PERSISTENCE,
    "persistence": PERSISTENCE,
}


def canonical_stage(label: Optional[str]) -> Optional[str]:
    """Resolve a stage label or alias to its canonical name."""
    if not label:
        return None
    return STAGE_ALIASES.get(label.strip().lower())

