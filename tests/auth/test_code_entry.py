"""Tests for CodeEntry - digit buffer with guarded auto-submit."""

import threading

import pytest

from auth.code_entry import CodeEntry, sanitize_code


class TestSanitizeCode:

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("123456", "123456"),
            ("12 34-56", "123456"),
            ("abc123", "123"),
            ("1234567890", "123456"),
            ("", ""),
        ],
    )
    def test_keeps_digits_truncated(self, raw, expected):
        assert sanitize_code(raw) == expected

    def test_custom_length(self):
        assert sanitize_code("12345678", length=8) == "12345678"


class TestAutoSubmit:

    def test_partial_input_does_not_submit(self):
        submitted = []
        entry = CodeEntry(submitted.append)

        entry.input("123")

        assert submitted == []
        assert entry.complete is False

    def test_full_input_submits_once(self):
        submitted = []
        entry = CodeEntry(submitted.append)

        entry.input("123456")
        entry.input("123456")
        entry.input("12a3456")

        assert submitted == ["123456"]

    def test_returns_submit_result(self):
        entry = CodeEntry(lambda code: f"verified:{code}")
        assert entry.input("654321") == "verified:654321"

    def test_distinct_value_submits_again(self):
        submitted = []
        entry = CodeEntry(submitted.append)

        entry.input("111111")
        entry.input("222222")

        assert submitted == ["111111", "222222"]

    def test_same_value_after_editing_submits_again(self):
        """Deleting a digit and retyping it is a fresh attempt."""
        submitted = []
        entry = CodeEntry(submitted.append)

        entry.input("123456")
        entry.input("12345")
        entry.input("123456")

        assert submitted == ["123456", "123456"]

    def test_clear_resets_buffer(self):
        submitted = []
        entry = CodeEntry(submitted.append)

        entry.input("123456")
        entry.clear()
        assert entry.value == ""
        entry.input("123456")

        assert submitted == ["123456", "123456"]


class TestExplicitSubmit:

    def test_incomplete_is_ignored(self):
        submitted = []
        entry = CodeEntry(submitted.append)
        entry.input("12")
        assert entry.submit() is None
        assert submitted == []

    def test_explicit_submit_repeats_same_value(self):
        """The user pressing verify again is allowed once nothing is in flight."""
        submitted = []
        entry = CodeEntry(submitted.append)
        entry.input("123456")
        entry.submit()
        assert submitted == ["123456", "123456"]

    def test_failed_submit_releases_pending(self):
        def fail(code):
            raise RuntimeError("network")

        entry = CodeEntry(fail)
        with pytest.raises(RuntimeError):
            entry.input("123456")
        assert entry.pending is False


class TestInFlightGuard:

    def test_submit_while_pending_is_ignored(self):
        """An explicit submit racing auto-submit never verifies twice."""
        started = threading.Event()
        release = threading.Event()
        calls = []

        def slow_submit(code):
            calls.append(code)
            started.set()
            release.wait(timeout=5)
            return "ok"

        entry = CodeEntry(slow_submit)
        worker = threading.Thread(target=entry.input, args=("123456",))
        worker.start()
        started.wait(timeout=5)

        assert entry.pending is True
        assert entry.submit() is None

        release.set()
        worker.join(timeout=5)

        assert calls == ["123456"]
        assert entry.pending is False


class TestCodeEnteredWhileInFlight:

    def test_distinct_code_submitted_after_pending_call(self):
        """A new code typed during verification is verified next, exactly once."""
        calls = []

        def submit(code):
            calls.append(code)
            if code == "111111":
                assert entry.input("222222") is None
            return f"verified:{code}"

        entry = CodeEntry(submit)

        assert entry.input("111111") == "verified:222222"
        entry.input("222222")

        assert calls == ["111111", "222222"]
        assert entry.pending is False

    def test_held_code_supersedes_failed_call(self):
        calls = []

        def submit(code):
            calls.append(code)
            if code == "111111":
                entry.input("222222")
                raise RuntimeError("invalid code")
            return "ok"

        entry = CodeEntry(submit)

        assert entry.input("111111") == "ok"
        assert calls == ["111111", "222222"]

    def test_held_code_dropped_when_buffer_edited(self):
        calls = []

        def submit(code):
            calls.append(code)
            if code == "111111":
                entry.input("222222")
                entry.input("22222")

        entry = CodeEntry(submit)
        entry.input("111111")

        assert calls == ["111111"]
        assert entry.pending is False

    def test_same_code_typed_while_in_flight_not_repeated(self):
        calls = []

        def submit(code):
            calls.append(code)
            entry.input("111111")

        entry = CodeEntry(submit)
        entry.input("111111")

        assert calls == ["111111"]

    def test_code_typed_from_another_thread(self):
        started = threading.Event()
        release = threading.Event()
        calls = []

        def slow_submit(code):
            calls.append(code)
            if code == "111111":
                started.set()
                release.wait(timeout=5)
            return code

        entry = CodeEntry(slow_submit)
        worker = threading.Thread(target=entry.input, args=("111111",))
        worker.start()
        started.wait(timeout=5)

        assert entry.input("222222") is None

        release.set()
        worker.join(timeout=5)

        assert calls == ["111111", "222222"]
        assert entry.pending is False
