from invoicedesk.signals import ActionThrottle, Signal


def test_emit_calls_slots_in_order():
    calls = []
    sig = Signal("unread_changed")
    sig.connect(lambda n: calls.append(("a", n)))
    sig.connect(lambda n: calls.append(("b", n)))

    sig.emit(3)

    assert calls == [("a", 3), ("b", 3)]


def test_connect_is_idempotent_and_disconnect_removes():
    sig = Signal()
    slot = lambda: None  # noqa: E731
    sig.connect(slot)
    sig.connect(slot)
    assert len(sig) == 1
    sig.disconnect(slot)
    sig.disconnect(slot)
    assert len(sig) == 0


def test_failing_slot_does_not_stop_others():
    calls = []

    def broken():
        raise RuntimeError("slot failed")

    sig = Signal()
    sig.connect(broken)
    sig.connect(lambda: calls.append("ok"))

    sig.emit()

    assert calls == ["ok"]


def test_throttle_is_per_key():
    now = [10.0]
    throttle = ActionThrottle(0.9, clock=lambda: now[0])

    assert throttle.allow(("send", "inv-1"))
    assert not throttle.allow(("send", "inv-1"))
    assert throttle.allow(("send", "inv-2"))

    now[0] += 0.9
    assert throttle.allow(("send", "inv-1"))


def test_throttle_reset():
    throttle = ActionThrottle(5, clock=lambda: 1.0)
    assert throttle.allow()
    throttle.reset()
    assert throttle.allow()
