"""Unit tests for run stages and the stored current stage."""

import pytest

from harvester_core.domain.services.runs import RunService
from harvester_core.domain.services.stages import (
    CONTACT_FINDING,
    DISCOVERY,
    MESSAGE_DRAFTING,
    PERSISTENCE,
    PROFILING,
    STAGES,
    canonical_stage,
)
from tests.factories import create_run


class TestCanonicalStage:
    """Tests for label resolution."""

    @pytest.mark.parametrize(
        "label,expected",
        [
            ("Company Finder", DISCOVERY),
            ("company profiler", PROFILING),
            ("Apollo Lead Finder", CONTACT_FINDING),
            ("Lead Finder", CONTACT_FINDING),
            ("Outreach Creator", MESSAGE_DRAFTING),
            ("CRM Sync", PERSISTENCE),
            ("Contact-Finding", CONTACT_FINDING),
            ("  persistence ", PERSISTENCE),
        ],
    )
    def test_aliases(self, label, expected):
        assert canonical_stage(label) == expected

    @pytest.mark.parametrize("label", [None, "", "System", "Something Else"])
    def test_unknown_labels(self, label):
        assert canonical_stage(label) is None

    def test_stage_order(self):
        assert STAGES == (DISCOVERY, PROFILING, CONTACT_FINDING, MESSAGE_DRAFTING, PERSISTENCE)


class TestCurrentStage:
    """The stored stage follows the latest entry with a known stage."""

    def test_latest_known_stage_wins(self, db_session):
        run = create_run(db_session)
        service = RunService(db_session)
        service.append_log(run.id, "Discovery", "a")
        service.append_log(run.id, "Outreach Creator", "b")
        service.append_log(run.id, "System", "c")

        assert service.get_run(run.id).current_stage == MESSAGE_DRAFTING

    def test_system_entries_leave_it_unset(self, db_session):
        run = create_run(db_session)
        service = RunService(db_session)
        service.append_log(run.id, "System", "Run started")
        service.append_log(run.id, "Something Else", "noise")

        assert service.get_run(run.id).current_stage is None
