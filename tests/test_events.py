from savevault.events import EventBus


def test_publish_reaches_subscribers_in_order():
    bus = EventBus()
    seen = []
    bus.subscribe("save.completed", lambda p: seen.append(("first", p["slot"])))
    bus.subscribe("save.completed", lambda p: seen.append(("second", p["slot"])))
    bus.publish("save.completed", {"slot": "alice"})
    assert seen == [("first", "alice"), ("second", "alice")]


def test_failing_subscriber_does_not_stop_others():
    bus = EventBus()
    seen = []

    def broken(_payload):
        raise RuntimeError("listener bug")

    bus.subscribe("load.chunk", broken)
    bus.subscribe("load.chunk", seen.append)
    bus.publish("load.chunk", {"loaded": 1})
    assert seen == [{"loaded": 1}]


def test_unsubscribe_and_unknown_events():
    bus = EventBus()
    seen = []
    bus.subscribe("x", seen.append)
    bus.unsubscribe("x", seen.append)
    bus.unsubscribe("never-subscribed", seen.append)
    bus.publish("x")
    bus.publish("nobody-listens", {"a": 1})
    assert seen == []
