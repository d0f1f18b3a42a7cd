from order_pipeline.models import ErrorKind
from order_pipeline.transitions import TransitionRequest


async def test_transition_applies_and_logs_history(store, manager):
    order = store.add_order(status="pending")

    result = await manager.transition(order.id, "payment_pending", changed_by="webhook", reason="checkout started")

    assert result.success
    assert not result.idempotent
    assert result.previous_status == "pending"
    assert result.new_status == "payment_pending"
    assert result.message == f"Order {order.id} transitioned from pending to payment_pending"
    assert store.orders[order.id].status == "payment_pending"

    (entry,) = store.history_for(order.id)
    assert entry.previous_status == "pending"
    assert entry.new_status == "payment_pending"
    assert entry.changed_by == "webhook"
    assert entry.reason == "checkout started"


async def test_default_actor_is_system(store, manager):
    order = store.add_order(status="pending")
    await manager.transition(order.id, "cancelled")
    assert store.history_for(order.id)[0].changed_by == "system"


async def test_repeated_transition_is_idempotent(store, manager):
    order = store.add_order(status="payment_pending")

    first = await manager.transition(order.id, "payment_completed")
    assert first.success and not first.idempotent

    for _ in range(3):
        again = await manager.transition(order.id, "payment_completed")
        assert again.success
        assert again.idempotent
        assert "already in status payment_completed" in again.message
        assert again.previous_status == again.new_status == "payment_completed"

    assert len(store.history_for(order.id)) == 1
    assert store.status_writes == 1


async def test_invalid_transition_leaves_order_unchanged(store, manager):
    order = store.add_order(status="pending")

    result = await manager.transition(order.id, "shipped")

    assert not result.success
    assert result.error_kind == ErrorKind.INVALID_TRANSITION
    assert result.message == "Cannot transition from pending to shipped. Allowed: payment_pending, cancelled"
    assert result.previous_status == "pending"
    assert result.new_status is None
    assert store.orders[order.id].status == "pending"
    assert store.history_for(order.id) == []


async def test_missing_order_is_not_found(manager):
    result = await manager.transition(999, "cancelled")
    assert not result.success
    assert result.error_kind == ErrorKind.NOT_FOUND
    assert result.message == "Order 999 not found"
    assert result.previous_status is None and result.new_status is None


async def test_unknown_target_is_rejected_even_when_forced(store, manager):
    order = store.add_order(status="pending")

    result = await manager.transition(order.id, "lost_in_transit", force=True)

    assert not result.success
    assert result.error_kind == ErrorKind.VALIDATION_FAILURE
    assert store.orders[order.id].status == "pending"
    assert store.status_writes == 0


async def test_force_bypasses_graph(store, manager, caplog):
    order = store.add_order(status="cancelled")

    with caplog.at_level("WARNING"):
        result = await manager.transition(order.id, "processing", changed_by="admin", reason="refund reversed", force=True)

    assert result.success
    assert store.orders[order.id].status == "processing"
    assert store.history_for(order.id)[0].changed_by == "admin"
    assert any("Forced transition" in r.getMessage() for r in caplog.records)


async def test_history_failure_does_not_undo_transition(store, manager, caplog):
    order = store.add_order(status="pending")
    store.fail_history_insert = True

    result = await manager.transition(order.id, "payment_pending")

    assert result.success
    assert store.orders[order.id].status == "payment_pending"
    assert store.history_for(order.id) == []
    assert any("Failed to log status change" in r.getMessage() for r in caplog.records)


async def test_store_error_on_read_is_reported(store, manager):
    order = store.add_order(status="pending")
    store.fail_reads = True

    result = await manager.transition(order.id, "payment_pending")

    assert not result.success
    assert result.error_kind == ErrorKind.INFRASTRUCTURE
    assert result.message.startswith("Error: ")
    assert result.previous_status is None and result.new_status is None


async def test_store_error_on_write_is_reported(store, manager):
    order = store.add_order(status="pending")
    store.fail_updates = True

    result = await manager.transition(order.id, "payment_pending")

    assert not result.success
    assert result.error_kind == ErrorKind.INFRASTRUCTURE
    assert store.history_for(order.id) == []


async def test_concurrent_change_is_a_conflict(store, manager):
    order = store.add_order(status="processing")
    # another request ships the order between our read and our write
    store.concurrent_status = "shipped"

    result = await manager.transition(order.id, "cancelled")

    assert not result.success
    assert result.error_kind == ErrorKind.CONFLICT
    assert store.orders[order.id].status == "shipped"
    assert store.history_for(order.id) == []


async def test_batch_transition_is_independent(store, manager):
    a = store.add_order(status="pending")
    b = store.add_order(status="delivered")
    c = store.add_order(status="processing")

    results = await manager.batch_transition([
        TransitionRequest(a.id, "payment_pending"),
        TransitionRequest(b.id, "shipped"),
        TransitionRequest(999, "cancelled"),
        TransitionRequest(c.id, "shipped", changed_by="warehouse"),
    ])

    assert [r.order_id for r in results] == [a.id, b.id, 999, c.id]
    assert [r.success for r in results] == [True, False, False, True]
    assert results[1].error_kind == ErrorKind.INVALID_TRANSITION
    assert results[2].error_kind == ErrorKind.NOT_FOUND
    assert store.orders[a.id].status == "payment_pending"
    assert store.orders[c.id].status == "shipped"


async def test_can_transition_to_does_not_mutate(store, manager):
    order = store.add_order(status="pending")

    ok = await manager.can_transition_to(order.id, "payment_pending")
    assert ok.can_transition
    assert ok.reason == "Transition is valid"
    assert ok.current_status == "pending"
    assert not ok.idempotent

    same = await manager.can_transition_to(order.id, "pending")
    assert same.can_transition and same.idempotent
    assert same.reason == "Already in status pending"

    bad = await manager.can_transition_to(order.id, "delivered")
    assert not bad.can_transition
    assert bad.reason.startswith("Cannot transition from pending to delivered")
    assert bad.error_kind == ErrorKind.INVALID_TRANSITION

    missing = await manager.can_transition_to(12345, "pending")
    assert not missing.can_transition
    assert missing.error_kind == ErrorKind.NOT_FOUND

    assert store.status_writes == 0
    assert store.history == []


async def test_can_transition_to_rejects_unknown_target_like_transition(store, manager):
    order = store.add_order(status="pending")

    for order_id in (order.id, 999):
        preview = await manager.can_transition_to(order_id, "bogus")
        applied = await manager.transition(order_id, "bogus")

        assert not preview.can_transition
        assert preview.error_kind == applied.error_kind == ErrorKind.VALIDATION_FAILURE
        assert preview.reason == applied.message == "Invalid target status: bogus"
        assert preview.current_status is None

    assert store.status_writes == 0


async def test_can_transition_to_reports_store_errors(store, manager):
    order = store.add_order()
    store.fail_reads = True
    result = await manager.can_transition_to(order.id, "cancelled")
    assert not result.can_transition
    assert result.error_kind == ErrorKind.INFRASTRUCTURE


async def test_history_is_newest_first(store, manager):
    order = store.add_order(status="pending")
    await manager.transition(order.id, "payment_pending")
    await manager.transition(order.id, "payment_completed")
    await manager.transition(order.id, "refunded")

    history = await manager.get_history(order.id)

    assert [h.new_status for h in history] == ["refunded", "payment_completed", "payment_pending"]
    assert history[-1].previous_status == "pending"


async def test_get_current_order_status(store, manager):
    order = store.add_order(status="shipped")
    assert await manager.get_current_order_status(order.id) == "shipped"
    assert await manager.get_current_order_status(404) is None
