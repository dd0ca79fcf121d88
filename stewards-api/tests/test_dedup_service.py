from unittest.mock import Mock

import redis

from stewards.models import ProcessedMessage
from stewards.services.dedup_service import is_duplicate_message, release_message_claim


class TestIsDuplicateMessage:
    def test_missing_id_is_never_duplicate(self, db_session):
        assert is_duplicate_message(db_session, None) is False
        db_session.add.assert_not_called()

    def test_db_claim(self, db):
        assert is_duplicate_message(db, "wamid-1") is False
        assert is_duplicate_message(db, "wamid-1") is True
        assert db.query(ProcessedMessage).count() == 1

    def test_redis_hit_short_circuits(self, db_session):
        redis_client = Mock()
        redis_client.set.return_value = None

        assert is_duplicate_message(db_session, "wamid-1", redis_client=redis_client) is True
        db_session.add.assert_not_called()

    def test_redis_claim_then_db_claim(self, db):
        redis_client = Mock()
        redis_client.set.return_value = True

        assert is_duplicate_message(db, "wamid-2", redis_client=redis_client) is False
        redis_client.set.assert_called_once_with("stewards:dedup:wamid-2", "1", ex=86400, nx=True)
        assert db.query(ProcessedMessage).count() == 1

    def test_redis_failure_falls_back_to_db(self, db):
        redis_client = Mock()
        redis_client.set.side_effect = redis.ConnectionError("down")

        assert is_duplicate_message(db, "wamid-3", redis_client=redis_client) is False
        assert is_duplicate_message(db, "wamid-3", redis_client=redis_client) is True


class TestReleaseMessageClaim:
    def test_release_allows_retry(self, db):
        assert is_duplicate_message(db, "wamid-1") is False
        release_message_claim(db, "wamid-1")
        assert is_duplicate_message(db, "wamid-1") is False

    def test_release_clears_redis_key(self, db):
        redis_client = Mock()
        release_message_claim(db, "wamid-1", redis_client=redis_client)
        redis_client.delete.assert_called_once_with("stewards:dedup:wamid-1")
