import threading

from phoneindex.events.channel import EventChannel


class TestEventChannel:
    def test_delivers_in_order_until_complete(self) -> None:
        channel: EventChannel[int] = EventChannel()
        for value in (1, 2, 3):
            assert channel.publish(value)
        channel.complete()

        assert list(channel) == [1, 2, 3]

    def test_publish_after_close_is_rejected(self) -> None:
        channel: EventChannel[int] = EventChannel()
        channel.close()
        assert channel.closed
        assert not channel.publish(1)

    def test_publish_after_complete_is_rejected(self) -> None:
        channel: EventChannel[int] = EventChannel()
        channel.complete()
        assert not channel.publish(1)

    def test_publish_never_blocks_without_consumer(self) -> None:
        channel: EventChannel[int] = EventChannel()
        finished = threading.Event()

        def produce() -> None:
            for value in range(1000):
                channel.publish(value)
            channel.complete()
            finished.set()

        producer = threading.Thread(target=produce, daemon=True)
        producer.start()
        producer.join(timeout=5)

        assert finished.is_set()

    def test_producer_stops_after_consumer_closes_without_draining(self) -> None:
        channel: EventChannel[int] = EventChannel()
        channel.publish(1)
        channel.close()

        assert not channel.publish(2)
        channel.complete()
        assert list(channel) == []

    def test_complete_is_idempotent(self) -> None:
        channel: EventChannel[int] = EventChannel()
        channel.publish(1)
        channel.complete()
        channel.complete()
        assert list(channel) == [1]

    def test_close_signals_producer(self) -> None:
        channel: EventChannel[int] = EventChannel()
        stopped = threading.Event()

        def produce() -> None:
            value = 0
            while channel.publish(value):
                value += 1
                if channel.cancelled.wait(timeout=0.01):
                    break
            stopped.set()
            channel.complete()

        producer = threading.Thread(target=produce)
        producer.start()
        with channel:
            for value in channel:
                if value >= 2:
                    break
        producer.join(timeout=5)

        assert stopped.is_set()

    def test_cross_thread_delivery(self) -> None:
        channel: EventChannel[str] = EventChannel()

        def produce() -> None:
            for value in ("a", "b"):
                channel.publish(value)
            channel.complete()

        threading.Thread(target=produce).start()
        assert list(channel) == ["a", "b"]
