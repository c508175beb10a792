import unittest

from page_cache.models import Item
from page_cache.warmup.queue import WarmUpQueue, decode_queue, encode_queue


def _items(count: int):
    return [Item(f"https://www.example.com/{i}") for i in range(count)]


class WarmUpQueueTests(unittest.TestCase):
    def test_push_pull_fetch(self) -> None:
        items = _items(4)
        extra = Item("https://www.example.com/extra")
        first, second, third, fourth = items
        size = len(items)

        queue = WarmUpQueue(items)

        self.assertEqual(queue.processed_count, 0)
        self.assertEqual(queue.remaining_count, size)
        self.assertEqual(queue.total_count, size)

        # Fetch follows the initial order.
        self.assertEqual(queue.fetch(), first)
        self.assertEqual(queue.processed_count, 1)
        self.assertEqual(queue.remaining_count, size - 1)
        self.assertEqual(queue.total_count, size)

        # Pull item that has not been processed yet.
        self.assertTrue(queue.pull(fourth))
        self.assertEqual(queue.processed_count, 2)
        self.assertEqual(queue.remaining_count, size - 2)

        # Pull item that has been processed already.
        self.assertFalse(queue.pull(first))
        self.assertEqual(queue.processed_count, 2)
        self.assertEqual(queue.remaining_count, size - 2)

        # Push item that is waiting already.
        queue.push(third)
        self.assertEqual(queue.processed_count, 2)
        self.assertEqual(queue.remaining_count, size - 2)
        self.assertEqual(queue.total_count, size)

        # Push item that has been processed already.
        self.assertTrue(queue.push(first))
        self.assertEqual(queue.processed_count, 1)
        self.assertEqual(queue.remaining_count, size - 1)
        self.assertEqual(queue.total_count, size)

        unprocessed = [first, second, third]
        fetched = [queue.fetch(), queue.fetch(), queue.fetch()]
        self.assertCountEqual(fetched, unprocessed)

        self.assertIsNone(queue.fetch())
        self.assertTrue(queue.is_empty())

        # Pull item that is not in queue yet: total grows, nothing waits.
        queue.pull(extra)
        self.assertEqual(queue.processed_count, queue.total_count)
        self.assertEqual(queue.remaining_count, 0)
        self.assertEqual(queue.total_count, size + 1)

    def test_pushed_item_is_fetched_next(self) -> None:
        first, second, third = _items(3)
        queue = WarmUpQueue([first, second, third])
        self.assertEqual(queue.fetch(), first)

        queue.push(first)
        self.assertEqual(queue.fetch(), first)
        self.assertEqual(queue.fetch(), second)

    def test_push_and_pull_are_idempotent(self) -> None:
        first, second = _items(2)
        queue = WarmUpQueue([first, second])

        self.assertFalse(queue.push(first))
        self.assertTrue(queue.pull(second))
        self.assertFalse(queue.pull(second))
        self.assertEqual(queue.stats(), {"processed": 1, "waiting": 1, "total": 2})

    def test_variants_are_distinct_items(self) -> None:
        queue = WarmUpQueue([Item("https://www.example.com/", ""), Item("https://www.example.com/", "mobile")])
        self.assertEqual(queue.total_count, 2)
        self.assertEqual(queue.fetch(), Item("https://www.example.com/", ""))


class QueuePersistenceTests(unittest.TestCase):
    def test_encoded_queue_is_restored(self) -> None:
        items = _items(3) + [Item("https://www.example.com/", "mobile")]
        queue = WarmUpQueue(items)
        queue.fetch()

        restored = decode_queue(encode_queue(queue))

        self.assertIsNotNone(restored)
        self.assertEqual(restored.processed, queue.processed)
        self.assertEqual(restored.waiting, queue.waiting)
        self.assertEqual(restored.fetch(), items[1])

    def test_unknown_format_version_is_discarded(self) -> None:
        document = encode_queue(WarmUpQueue(_items(1)))
        document["format_version"] = 99
        self.assertIsNone(decode_queue(document))

    def test_malformed_documents_are_discarded(self) -> None:
        for document in (None, "queue", {}, {"format_version": 1}, {"format_version": 1, "payload": {"waiting": ["x"]}}):
            with self.subTest(document=document):
                self.assertIsNone(decode_queue(document))

    def test_item_serialization_rejects_garbage(self) -> None:
        with self.assertRaises(ValueError):
            Item.deserialize("no separator here")
        self.assertEqual(Item.deserialize("https://www.example.com/\tmobile"), Item("https://www.example.com/", "mobile"))


if __name__ == "__main__":
    unittest.main()
