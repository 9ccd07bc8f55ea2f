import threading

from recipe_importer.importing import JobEvent, JobEventBus, JobEventType


def _types(events):
    return [event.type for event in events]


def test_subscribers_see_ordered_sequence_regardless_of_attach_time():
    bus = JobEventBus()
    early = bus.subscribe("job-1")
    bus.publish("job-1", JobEvent(JobEventType.STARTED, {"filename": "plan.pdf"}))
    middle = bus.subscribe("job-1")
    bus.publish("job-1", JobEvent(JobEventType.EXTRACTING_TEXT))
    bus.publish("job-1", JobEvent(JobEventType.FINISHED, {"recipeIds": ["r1"]}))
    bus.complete("job-1")
    late = bus.subscribe("job-1")

    expected = [JobEventType.STARTED, JobEventType.EXTRACTING_TEXT, JobEventType.FINISHED]
    assert _types(early) == expected
    assert _types(middle) == expected
    assert _types(late) == [JobEventType.FINISHED]

    # The stream ends exactly once; iterating again yields nothing.
    assert early.finished
    assert list(early) == []


def test_subscribe_to_unknown_job_creates_empty_channel():
    bus = JobEventBus()
    subscription = bus.subscribe("job-new")
    assert bus.is_open("job-new")
    assert subscription.next_event(timeout=0.01) is None
    assert not subscription.finished
    subscription.close()
    assert not bus.has_channel("job-new")


def test_publish_before_any_subscriber_is_replayed():
    bus = JobEventBus()
    bus.publish("job-1", JobEvent(JobEventType.STARTED))
    bus.publish("job-1", JobEvent(JobEventType.PROCESSING_AI))
    subscription = bus.subscribe("job-1")
    assert subscription.next_event(timeout=1).type == JobEventType.PROCESSING_AI
    bus.complete("job-1")
    assert list(subscription) == []
    assert subscription.finished


def test_complete_is_idempotent_and_ignores_unknown_jobs():
    bus = JobEventBus()
    bus.complete("never-opened")
    assert not bus.has_channel("never-opened")

    subscription = bus.subscribe("job-1")
    bus.publish("job-1", JobEvent(JobEventType.FAILED, {"error": "boom"}))
    bus.complete("job-1")
    bus.complete("job-1")
    assert _types(subscription) == [JobEventType.FAILED]
    assert _types(bus.subscribe("job-1")) == [JobEventType.FAILED]


def test_detaching_observer_does_not_close_channel():
    bus = JobEventBus()
    channel = bus.open("job-1")
    first = channel.subscribe()
    assert bus.observer_count("job-1") == 1
    first.close()
    first.close()
    assert bus.observer_count("job-1") == 0
    assert bus.is_open("job-1")

    channel.publish(JobEvent(JobEventType.SAVING_RECIPES, {"count": 2}))
    channel.publish(JobEvent(JobEventType.FINISHED, {"recipeIds": ["a", "b"]}))
    with channel.subscribe() as reconnected:
        channel.complete()
        events = list(reconnected)
    assert _types(events) == [JobEventType.FINISHED]
    assert events[0].payload == {"recipeIds": ["a", "b"]}


def test_open_is_idempotent():
    bus = JobEventBus()
    bus.open("job-1").publish(JobEvent(JobEventType.STARTED))
    bus.open("job-1")
    subscription = bus.subscribe("job-1")
    assert subscription.next_event(timeout=1).type == JobEventType.STARTED


def test_events_after_complete_are_dropped():
    bus = JobEventBus()
    bus.publish("job-1", JobEvent(JobEventType.FINISHED))
    bus.complete("job-1")
    bus.publish("job-1", JobEvent(JobEventType.FAILED))
    assert _types(bus.subscribe("job-1")) == [JobEventType.FINISHED]


def test_replay_depth_is_configurable():
    bus = JobEventBus(replay_depth=2)
    for event_type in (JobEventType.STARTED, JobEventType.EXTRACTING_TEXT, JobEventType.PROCESSING_AI):
        bus.publish("job-1", JobEvent(event_type))
    bus.complete("job-1")
    assert _types(bus.subscribe("job-1")) == [JobEventType.EXTRACTING_TEXT, JobEventType.PROCESSING_AI]

    no_replay = JobEventBus(replay_depth=0)
    no_replay.publish("job-2", JobEvent(JobEventType.STARTED))
    no_replay.complete("job-2")
    assert list(no_replay.subscribe("job-2")) == []


def test_completed_channels_are_purged_after_ttl():
    bus = JobEventBus(closed_channel_ttl=0)
    bus.open("job-1")
    bus.open("job-2")
    bus.complete("job-1")
    assert bus.purge_expired() == 1
    assert not bus.has_channel("job-1")
    assert bus.has_channel("job-2")


def test_concurrent_publisher_preserves_order_per_subscriber():
    bus = JobEventBus()
    subscribers = [bus.subscribe("job-1") for _ in range(3)]
    received = [[] for _ in subscribers]

    def consume(index):
        received[index] = [event.payload["n"] for event in subscribers[index]]

    consumers = [threading.Thread(target=consume, args=(i,)) for i in range(len(subscribers))]
    for thread in consumers:
        thread.start()
    for n in range(200):
        bus.publish("job-1", JobEvent(JobEventType.PROCESSING_AI, {"n": n}))
    bus.complete("job-1")
    for thread in consumers:
        thread.join(timeout=5)

    for values in received:
        assert values == list(range(200))


def test_unclaimed_channels_are_dropped_when_last_observer_leaves():
    bus = JobEventBus(closed_channel_ttl=0)
    for n in range(50):
        bus.subscribe(f"unknown-{n}").close()
    bus.purge_expired()
    assert not any(bus.has_channel(f"unknown-{n}") for n in range(50))


def test_unclaimed_channel_survives_while_observers_remain():
    bus = JobEventBus()
    first = bus.subscribe("job-1")
    second = bus.subscribe("job-1")
    first.close()
    assert bus.has_channel("job-1")
    assert bus.observer_count("job-1") == 1
    second.close()
    assert not bus.has_channel("job-1")


def test_channel_claimed_after_subscribe_outlives_its_observers():
    bus = JobEventBus()
    opened = bus.subscribe("job-opened")
    bus.open("job-opened")
    opened.close()
    assert bus.is_open("job-opened")

    published = bus.subscribe("job-published")
    bus.publish("job-published", JobEvent(JobEventType.STARTED))
    published.close()
    assert bus.is_open("job-published")
    assert _types([bus.subscribe("job-published").next_event(timeout=1)]) == [JobEventType.STARTED]
