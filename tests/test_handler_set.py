import functools

from sessionbus import HandlerSet


class Panel:
    def __init__(self):
        self.values = []

    def update(self, payload):
        self.values.append(payload)


def test_same_handler_registered_twice_invoked_once(handler_set, recorder):
    a = recorder()
    first = handler_set.register(a)
    second = handler_set.register(a)

    handler_set.publish("y")

    assert a.calls == ["y"]
    assert len(handler_set) == 1
    assert first.active and second.active


def test_bound_methods_deduplicate(handler_set):
    panel = Panel()
    handler_set.register(panel.update)
    handler_set.register(panel.update)

    handler_set.publish(1)

    assert panel.values == [1]


def test_distinct_closures_are_distinct_entries(handler_set):
    seen = []
    for i in range(3):
        handler_set.register(lambda payload, i=i: seen.append((i, payload)))

    handler_set.publish("z")

    assert sorted(seen) == [(0, "z"), (1, "z"), (2, "z")]


def test_cancel_removes_handler_value(handler_set, recorder):
    a = recorder()
    first = handler_set.register(a)
    second = handler_set.register(a)

    assert first.cancel() is True
    assert second.cancel() is False
    handler_set.publish("y")

    assert a.calls == []
    assert a not in handler_set


def test_duplicate_registration_keeps_original_once_flag(handler_set, recorder):
    a = recorder()
    handler_set.register(a)
    handler_set.register(a, once=True)

    handler_set.publish(1)
    handler_set.publish(2)

    assert a.calls == [1, 2]


def test_subscribe_decorator_forms(handler_set):
    seen = []

    @handler_set.subscribe
    def always(payload):
        seen.append(("always", payload))

    @handler_set.subscribe(once=True)
    def first_only(payload):
        seen.append(("once", payload))

    handler_set.publish(1)
    handler_set.publish(2)

    assert sorted(seen) == [("always", 1), ("always", 2), ("once", 1)]
    assert handler_set.unregister(always) is True
    assert handler_set.handlers() == []


def test_partial_handler(handler_set):
    seen = []
    handler_set.register(functools.partial(seen.insert, 0))

    handler_set.publish("p")

    assert seen == ["p"]


def test_dispose_drops_everything(recorder):
    handlers = HandlerSet()
    a, b = recorder("a"), recorder("b")
    handle = handlers.register(a)
    handlers.register(b)

    assert handlers.dispose() == 2
    assert len(handlers) == 0
    assert handle.cancel() is False

    handlers.register(a)
    handlers.publish("again")
    assert a.calls == ["again"]


class Widget:
    """Callable with value equality and therefore no __hash__."""

    def __init__(self, label):
        self.label = label
        self.values = []

    def __eq__(self, other):
        return isinstance(other, Widget) and other.label == self.label

    def __call__(self, payload):
        self.values.append(payload)


def test_unhashable_handler_tracked_by_identity(handler_set):
    first, twin = Widget("w"), Widget("w")
    handle = handler_set.register(first)
    handler_set.register(first)
    handler_set.register(twin)

    handler_set.publish(1)

    assert first.values == [1]
    assert twin.values == [1]
    assert len(handler_set) == 2
    assert first in handler_set

    assert handle.cancel() is True
    assert handler_set.unregister(twin) is True
    assert len(handler_set) == 0
