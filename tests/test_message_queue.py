"""Tests for the timed delivery queue."""

from paced_turns.interfaces.events import MessageKind
from paced_turns.message_queue import MessageQueue, QueuedItem


def make_items(contents, delays=None, group_id="g1", created_at=0.0):
    delays = delays or [0] + [1000] * (len(contents) - 1)
    total = len(contents)
    return [
        QueuedItem(
            content=content,
            delay_ms=delay,
            turn_index=index,
            total_turns=total,
            group_id=group_id,
            message_index=index,
            total_in_group=total,
            group_created_at=created_at,
        )
        for index, (content, delay) in enumerate(zip(contents, delays))
    ]


class TestQueuedItem:
    """Tests for QueuedItem."""

    def test_item_id_and_last(self):
        items = make_items(["a", "b"])
        assert items[0].item_id == "g1_0"
        assert not items[0].is_last
        assert items[1].is_last

    def test_to_delivery_metadata(self):
        item = make_items(["a", "b"], created_at=5.0)[1]
        item.has_next = True
        delivery = item.to_delivery(delivered_at=7.5)
        assert delivery.content == "b"
        assert delivery.has_next is True
        assert delivery.kind is MessageKind.TEXT
        assert delivery.metadata.group_id == "g1"
        assert delivery.metadata.message_index == 1
        assert delivery.metadata.total_in_group == 2
        assert delivery.metadata.group_created_at == 5.0
        assert delivery.metadata.delivered_at == 7.5
        assert delivery.metadata.is_last


class TestMessageQueueDelivery:
    """Tests for timed delivery."""

    def test_delivers_in_order_after_delays(self, scheduler, delivered):
        queue = MessageQueue(delivered.append, scheduler=scheduler, clock=scheduler.time)
        queue.enqueue(make_items(["a", "b", "c"], delays=[0, 1000, 2000]))

        scheduler.advance(0)
        assert [d.content for d in delivered] == ["a"]

        scheduler.advance(0.5)
        assert len(delivered) == 1

        scheduler.advance(0.5)
        assert [d.content for d in delivered] == ["a", "b"]

        scheduler.advance(2.0)
        assert [d.content for d in delivered] == ["a", "b", "c"]
        assert [d.metadata.delivered_at for d in delivered] == [0.0, 1.0, 3.0]
        assert not queue.is_active()

    def test_lifecycle_events(self, scheduler, delivered, events):
        queue = MessageQueue(delivered.append, scheduler=scheduler, emit=events)
        queue.enqueue(make_items(["a", "b"]))
        scheduler.run_all()

        assert events.names() == [
            "message_start",
            "message_complete",
            "message_start",
            "message_complete",
            "queue_complete",
        ]
        assert events.of("queue_complete") == [{"processed_count": 2}]
        start = events.of("message_start")[1]
        assert start["group_id"] == "g1"
        assert start["message_index"] == 1
        assert start["total_in_group"] == 2

    def test_status(self, scheduler, delivered):
        queue = MessageQueue(delivered.append, scheduler=scheduler)
        queue.enqueue(make_items(["a", "b", "c"]))

        status = queue.status()
        assert status.length == 3
        assert status.is_processing is True
        assert status.processed_count == 0

        scheduler.advance(0)
        status = queue.status()
        assert status.length == 2
        assert status.processed_count == 1
        assert queue.current_group_id == "g1"

    def test_enqueue_while_active_appends(self, scheduler, delivered):
        queue = MessageQueue(delivered.append, scheduler=scheduler)
        queue.enqueue(make_items(["a", "b"]))
        scheduler.advance(0)
        queue.enqueue(make_items(["x", "y"], group_id="g2"))
        scheduler.run_all()
        assert [d.content for d in delivered] == ["a", "b", "x", "y"]

    def test_enqueue_empty_is_noop(self, scheduler, delivered):
        queue = MessageQueue(delivered.append, scheduler=scheduler)
        queue.enqueue([])
        assert not queue.is_active()
        assert scheduler.pending == 0

    def test_sink_failure_does_not_stop_queue(self, scheduler, events):
        seen = []

        def sink(delivery):
            seen.append(delivery.content)
            if delivery.content == "a":
                raise RuntimeError("render failed")

        queue = MessageQueue(sink, scheduler=scheduler, emit=events)
        queue.enqueue(make_items(["a", "b"]))
        scheduler.run_all()

        assert seen == ["a", "b"]
        errors = events.of("message_error")
        assert len(errors) == 1
        assert errors[0]["error"] == "render failed"
        assert queue.processed_count == 2

    def test_emitter_failure_is_ignored(self, scheduler, delivered):
        def emit(name, payload):
            raise ValueError("bad listener")

        queue = MessageQueue(delivered.append, scheduler=scheduler, emit=emit)
        queue.enqueue(make_items(["a", "b"]))
        scheduler.run_all()
        assert len(delivered) == 2


class TestMessageQueueCancellation:
    """Tests for cancel_remaining() and canceled items."""

    def test_cancel_remaining(self, scheduler, delivered, events):
        queue = MessageQueue(delivered.append, scheduler=scheduler, emit=events)
        queue.enqueue(make_items(["a", "b", "c"]))
        scheduler.advance(0)

        assert queue.cancel_remaining() == 2
        assert events.of("messages_canceled") == [{"count": 2}]
        assert queue.status().length == 0
        assert not queue.is_active()

        scheduler.advance(10)
        assert [d.content for d in delivered] == ["a"]

    def test_cancel_before_first_delivery(self, scheduler, delivered):
        queue = MessageQueue(delivered.append, scheduler=scheduler)
        queue.enqueue(make_items(["a", "b"]))
        assert queue.cancel_remaining() == 2
        scheduler.run_all()
        assert delivered == []

    def test_cancel_empty_queue(self, scheduler, delivered, events):
        queue = MessageQueue(delivered.append, scheduler=scheduler, emit=events)
        assert queue.cancel_remaining() == 0
        assert events.of("messages_canceled") == []

    def test_cancel_from_sink(self, scheduler, events):
        """Test canceling during a delivery drops the rest of the group."""
        seen = []
        queue = None

        def sink(delivery):
            seen.append(delivery.content)
            queue.cancel_remaining()

        queue = MessageQueue(sink, scheduler=scheduler, emit=events)
        queue.enqueue(make_items(["a", "b", "c"]))
        scheduler.run_all()

        assert seen == ["a"]
        assert events.of("messages_canceled") == [{"count": 2}]
        assert "queue_complete" not in events.names()

    def test_marked_item_is_skipped(self, scheduler, delivered):
        queue = MessageQueue(delivered.append, scheduler=scheduler)
        queue.enqueue(make_items(["a", "b", "c"]))
        queue.mark_canceled(["g1_1"])
        scheduler.run_all()

        assert [d.content for d in delivered] == ["a", "c"]
        assert queue.processed_count == 3
        assert not queue.is_canceled("g1_1")

    def test_marks_survive_cancel_remaining(self, scheduler, delivered):
        queue = MessageQueue(delivered.append, scheduler=scheduler)
        queue.enqueue(make_items(["a", "b"]))
        queue.mark_canceled(queue.pending_item_ids())
        queue.cancel_remaining()

        assert queue.is_canceled("g1_0")
        assert queue.consume_canceled("g1_0") is True
        assert queue.consume_canceled("g1_0") is False
        assert queue.is_canceled("g1_1")

    def test_pending_ids(self, scheduler, delivered):
        queue = MessageQueue(delivered.append, scheduler=scheduler)
        queue.enqueue(make_items(["a", "b"]))
        queue.enqueue(make_items(["c"], group_id="g2"))
        assert queue.pending_item_ids() == ["g1_0", "g1_1", "g2_0"]
        assert queue.pending_group_ids() == {"g1", "g2"}

    def test_clear_resets_counters(self, scheduler, delivered):
        queue = MessageQueue(delivered.append, scheduler=scheduler)
        queue.enqueue(make_items(["a", "b"]))
        scheduler.advance(0)
        queue.clear()

        assert queue.processed_count == 0
        assert queue.current_group_id is None
        assert not queue.is_active()

    def test_restart_after_cancel(self, scheduler, delivered):
        queue = MessageQueue(delivered.append, scheduler=scheduler)
        queue.enqueue(make_items(["a", "b"]))
        queue.cancel_remaining()
        queue.enqueue(make_items(["x"], group_id="g2"))
        scheduler.run_all()
        assert [d.content for d in delivered] == ["x"]
