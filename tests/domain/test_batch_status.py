"""Domain tests for batch status derivation."""

from itertools import product

import pytest
from marketplace.batch.batch import FINAL_STATUSES, Batch, BatchStatus, derive_batch_status

ORDER_STATUSES = ["pending", "paid", "fulfilled", "completed", "cancelled", "refunded"]


class TestDeriveBatchStatus:
    def test_empty_batch_stays_open(self):
        assert derive_batch_status("pending", []) == "pending"

    def test_open_member_keeps_batch_open(self):
        assert derive_batch_status("pending", ["completed", "paid"]) == "pending"

    def test_all_settled_members_complete_batch(self):
        assert derive_batch_status("ready", ["completed", "refunded", "cancelled"]) == "completed"

    def test_all_refunded_or_cancelled_forces_completion(self):
        assert derive_batch_status("pending", ["refunded", "cancelled"]) == "completed"

    def test_picked_up_members_count_as_settled(self):
        assert derive_batch_status("pending", ["picked_up"]) == "completed"

    @pytest.mark.parametrize("final", sorted(FINAL_STATUSES))
    def test_final_status_never_changes(self, final):
        assert derive_batch_status(final, ["pending"]) == final
        assert derive_batch_status(final, []) == final


class TestMonotonicity:
    def test_no_sequence_of_member_updates_leaves_a_final_status(self):
        # Apply every two-step sequence of three-member snapshots
        snapshots = list(product(ORDER_STATUSES, repeat=3))
        for start in (s.value for s in BatchStatus):
            for first, second in zip(snapshots, reversed(snapshots), strict=True):
                status = derive_batch_status(start, first)
                status = derive_batch_status(status, second)
                if start in FINAL_STATUSES:
                    assert status == start
                elif derive_batch_status(start, first) in FINAL_STATUSES:
                    assert status in FINAL_STATUSES


class TestBatchOpen:
    def test_open_batch_is_pending_with_codes(self):
        batch = Batch.open(buyer_id="buyer-1", seller_entity_id="seller-1", show_id="show-1")
        assert batch.status == BatchStatus.PENDING.value
        assert batch.batch_number.startswith("B-")
        assert len(batch.completion_code) == 8
        assert not batch.is_final
