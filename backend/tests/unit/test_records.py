"""Unit tests for entity schemas and field mapping."""

import logging
import math

import pytest

from backend.app.core.exceptions import InvalidPayloadError
from backend.app.schemas.records import (
    Board,
    EntityKind,
    Topic,
    TopicStatus,
    dump,
    first_link,
    from_external,
    to_external,
    vote_limit_of,
)


class TestToExternal:
    """Test domain -> Airtable field translation."""

    def test_scalar_link_becomes_list(self):
        """Test single link ids are wrapped in lists."""
        fields = to_external(EntityKind.VOTE, {"sessionId": "recS", "topicId": "recT", "userId": "recU", "weight": 1})

        assert fields == {"Session": ["recS"], "Topic": ["recT"], "User": ["recU"], "Weight": 1}

    def test_list_link_kept(self):
        """Test link lists are kept."""
        fields = to_external(EntityKind.USER, {"name": "Ada", "sessionIds": ["recA", "recB"]})

        assert fields == {"Name": "Ada", "Sessions": ["recA", "recB"]}

    def test_none_link_dropped_but_none_value_kept(self):
        """Test None links are dropped while None values are written."""
        fields = to_external(EntityKind.TOPIC, {"sessionId": "recS", "boardId": None, "notes": None})

        assert fields == {"Session": ["recS"], "Notes": None}

    def test_absent_and_unknown_keys_omitted(self):
        """Test absent and unknown keys are not written."""
        fields = to_external(EntityKind.BOARD, {"name": "Board", "colour": "red"})

        assert fields == {"Name": "Board"}

    def test_snake_case_keys_accepted(self):
        """Test snake_case keys are accepted."""
        fields = to_external(EntityKind.BOARD, {"vote_limit": 3, "theme_mode": "dark"})

        assert fields == {"VoteLimit": 3, "ThemeMode": "dark"}

    @pytest.mark.parametrize(
        "given, stored",
        [("todo", "todo"), ("doing", "doing"), ("discussing", "doing"), ("completed", "done"), ("DONE", "done")],
    )
    def test_topic_status_normalised(self, given, stored):
        """Test statuses are stored in their canonical form."""
        assert to_external(EntityKind.TOPIC, {"status": given}) == {"Status": stored}

    def test_unknown_topic_status_rejected(self):
        """Test unknown statuses are rejected on write."""
        with pytest.raises(InvalidPayloadError, match="Unknown topic status"):
            to_external(EntityKind.TOPIC, {"status": "blocked"})


class TestFromExternal:
    """Test Airtable record -> domain model translation."""

    def test_single_link_unwrapped(self):
        """Test single-element links are unwrapped."""
        topic = from_external(EntityKind.TOPIC, {
            "id": "recT",
            "fields": {"Title": "Deploys", "Session": ["recS"], "Status": "doing"},
        })

        assert isinstance(topic, Topic)
        assert topic.id == "recT"
        assert topic.session_id == "recS"
        assert topic.status is TopicStatus.DOING
        assert topic.raw == {"Title": "Deploys", "Session": ["recS"], "Status": "doing"}

    def test_multi_link_stays_list(self):
        """Test multi-element links stay lists."""
        user = from_external(EntityKind.USER, {"id": "recU", "fields": {"Sessions": ["recA", "recB"]}})

        assert user.session_ids == ["recA", "recB"]

    def test_dump_uses_camel_case_and_only_present_fields(self):
        """Test dumps are camelCase and contain only present fields."""
        board = from_external(EntityKind.BOARD, {"id": "recB", "fields": {"VoteLimit": 5, "AccentColor": "#fff"}})

        assert dump(board) == {
            "id": "recB",
            "raw": {"VoteLimit": 5, "AccentColor": "#fff"},
            "voteLimit": 5,
            "accentColor": "#fff",
        }

    def test_unknown_stored_status_read_as_none(self, caplog):
        """Test an unrecognised stored status is read as None and kept in raw."""
        with caplog.at_level(logging.WARNING):
            topic = from_external(EntityKind.TOPIC, {"id": "recT", "fields": {"Status": "parked"}})

        assert topic.status is None
        assert topic.raw == {"Status": "parked"}
        assert "parked" in caplog.text

    def test_missing_fields_map(self):
        """Test a record without fields still loads."""
        session = from_external(EntityKind.SESSION, {"id": "recS"})

        assert session.id == "recS"
        assert session.raw == {}


class TestTopicStatus:
    def test_client_names_are_aliases(self):
        """Test the board column names resolve to statuses."""
        assert TopicStatus("discussing") is TopicStatus.DOING
        assert TopicStatus("completed") is TopicStatus.DONE
        assert TopicStatus.DOING.client_name == "discussing"


class TestVoteLimit:
    @pytest.mark.parametrize("limit", [None, "5", True, float("nan")])
    def test_non_numeric_limit_is_unbounded(self, limit):
        """Test non-numeric limits mean no limit."""
        assert vote_limit_of(Board(vote_limit=limit)) == math.inf

    def test_missing_board_is_unbounded(self):
        """Test a missing board means no limit."""
        assert vote_limit_of(None) == math.inf

    def test_numeric_limit(self):
        """Test numeric limits are used as is."""
        assert vote_limit_of(Board(vote_limit=3)) == 3

    def test_first_link(self):
        """Test the first id is taken from any link shape."""
        assert first_link(["recA", "recB"]) == "recA"
        assert first_link("recA") == "recA"
        assert first_link([]) is None
        assert first_link(None) is None
