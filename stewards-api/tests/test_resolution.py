from unittest.mock import Mock

from stewards.services.resolution import first_success


class TestFirstSuccess:
    def test_first_truthy_value_wins(self):
        later = Mock(return_value="late")
        value, tier = first_success([("a", lambda: None), ("b", lambda: "hit"), ("c", later)])
        assert (value, tier) == ("hit", "b")
        later.assert_not_called()

    def test_raising_tier_is_a_miss(self):
        on_error = Mock()

        def broken():
            raise ConnectionError("directory unreachable")

        value, tier = first_success([("broken", broken), ("ok", lambda: "x")], on_error=on_error)

        assert (value, tier) == ("x", "ok")
        assert on_error.call_args[0][0] == "broken"
        assert isinstance(on_error.call_args[0][1], ConnectionError)

    def test_all_miss(self):
        assert first_success([("a", lambda: None), ("b", lambda: "")]) == (None, None)

    def test_empty(self):
        assert first_success([]) == (None, None)
