"""Unit tests for DispatchLedger."""
from processor.models import DedupKey, DispatchState
from reminders.dispatch_ledger import DispatchLedger

KEY = DedupKey('42', '1 hour before', 1772442000000)


class TestDispatchLedger:
    """Test cases for DispatchLedger class."""

    def test_unknown_key_is_armed(self):
        ledger = DispatchLedger()

        assert ledger.state_of(KEY) is DispatchState.ARMED
        assert KEY not in ledger

    def test_begin_claims_once(self):
        ledger = DispatchLedger()

        assert ledger.begin(KEY) is True
        assert ledger.begin(KEY) is False
        assert ledger.state_of(KEY) is DispatchState.DISPATCHING
        assert KEY in ledger

    def test_sent_blocks_redispatch(self):
        ledger = DispatchLedger()
        ledger.begin(KEY)
        ledger.mark_sent(KEY)

        assert ledger.begin(KEY) is False
        assert ledger.state_of(KEY) is DispatchState.SENT

    def test_failed_allows_retry(self):
        ledger = DispatchLedger()
        ledger.begin(KEY)
        ledger.mark_failed(KEY)

        assert KEY not in ledger
        assert ledger.state_of(KEY) is DispatchState.FAILED
        assert ledger.begin(KEY) is True

    def test_clear(self):
        ledger = DispatchLedger()
        ledger.begin(KEY)
        ledger.begin(DedupKey('43', '1 hour before', 1))

        assert len(ledger) == 2
        ledger.clear()
        assert len(ledger) == 0
