from __future__ import annotations

import threading
import unittest

from object_distribution.config import Config
from object_distribution.errors import InvalidConfiguration, InvalidInput, UnparsableDescriptor
from object_distribution.extractors import DistributionType, ObjectHashExtractor, PartitionIdExtractor
from object_distribution.logger import StructuredLogger
from object_distribution.resolver import DistributionResolver

TEMPLATE = "{{topic}}-{{partition}}-{{start_offset}}"


def _descriptor(partition_id: int) -> str:
    return f"orders-{partition_id}-0"


class DistributionResolverTestCase(unittest.TestCase):
    def setUp(self) -> None:
        StructuredLogger.configure(sinks=[{"type": "memory", "name": "resolver"}], level="DEBUG")
        self.sink = StructuredLogger.get_memory_sink("resolver")
        self.resolver = DistributionResolver(3, TEMPLATE)

    def tearDown(self) -> None:
        StructuredLogger.reset_context()
        StructuredLogger.configure(sinks=[{"type": "console", "stream": "stderr"}], level="WARNING")

    def _owners(self, descriptor: str):
        return [t for t in range(self.resolver.max_tasks) if self.resolver.is_part_of_task(t, descriptor)]

    def test_identity_scenario(self) -> None:
        self.assertTrue(self.resolver.is_part_of_task(2, _descriptor(2)))
        self.assertEqual(self._owners(_descriptor(2)), [2])

    def test_modulo_scenario(self) -> None:
        self.assertEqual(self._owners(_descriptor(5)), [2])

    def test_single_task_fleet(self) -> None:
        self.resolver.reconfigure(1, TEMPLATE)
        self.assertTrue(self.resolver.is_part_of_task(0, _descriptor(100)))

    def test_four_task_round_robin(self) -> None:
        self.resolver.reconfigure(4, TEMPLATE)
        owners = [self.resolver.owner_of_descriptor(_descriptor(p)) for p in range(8)]
        self.assertEqual(owners, [0, 1, 2, 3, 0, 1, 2, 3])

    def test_invalid_reconfigure_keeps_previous_state(self) -> None:
        before = self.resolver.is_part_of_task(2, _descriptor(5))
        snapshot = self.resolver.snapshot
        for bad in (0, -1):
            with self.assertRaises(InvalidConfiguration):
                self.resolver.reconfigure(bad, "x")
        self.assertIs(self.resolver.snapshot, snapshot)
        self.assertEqual(self.resolver.max_tasks, 3)
        self.assertEqual(self.resolver.expected_format, TEMPLATE)
        self.assertEqual(self.resolver.is_part_of_task(2, _descriptor(5)), before)
        events = [entry["event"] for entry in self.sink.events()]
        self.assertEqual(events.count("distribution_reconfigure_rejected"), 2)

    def test_invalid_format_keeps_previous_state(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            self.resolver.reconfigure(8, "{{topic}}-{{start_offset}}")
        self.assertEqual(self.resolver.max_tasks, 3)
        self.assertEqual(self.resolver.generation, 0)

    def test_reconfigure_is_idempotent(self) -> None:
        self.resolver.reconfigure(5, TEMPLATE)
        first = [self.resolver.owner_of_descriptor(_descriptor(p)) for p in range(30)]
        self.resolver.reconfigure(5, TEMPLATE)
        second = [self.resolver.owner_of_descriptor(_descriptor(p)) for p in range(30)]
        self.assertEqual(first, second)
        self.assertEqual(self.resolver.generation, 2)

    def test_reconfigure_changes_format_and_type(self) -> None:
        self.resolver.reconfigure(2, "table_{{partition}}")
        self.assertTrue(self.resolver.is_part_of_task(1, "table_3"))
        with self.assertRaises(UnparsableDescriptor):
            self.resolver.is_part_of_task(0, _descriptor(3))
        self.resolver.reconfigure(2, "", distribution_type="hash")
        self.assertIsInstance(self.resolver.snapshot.extractor, ObjectHashExtractor)
        self.assertEqual(self.resolver.snapshot.distribution_type, DistributionType.OBJECT_HASH)
        owners = self._owners("any/object/key")
        self.assertEqual(len(owners), 1)
        # distribution type is kept when not given again
        self.resolver.reconfigure(3, "")
        self.assertEqual(self.resolver.snapshot.distribution_type, DistributionType.OBJECT_HASH)

    def test_legacy_alias(self) -> None:
        self.resolver.reconfigure_distribution_strategy(6, TEMPLATE)
        self.assertEqual(self.resolver.max_tasks, 6)

    def test_unparsable_descriptor_propagates(self) -> None:
        with self.assertRaises(UnparsableDescriptor):
            self.resolver.is_part_of_task(0, "not a match")

    def test_negative_task_id(self) -> None:
        with self.assertRaises(InvalidInput):
            self.resolver.is_part_of_task(-1, _descriptor(1))
        with self.assertRaises(InvalidInput):
            self.resolver.owned_by(0, -3)

    def test_constructor_validates(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            DistributionResolver(0, TEMPLATE)
        with self.assertRaises(InvalidConfiguration):
            DistributionResolver(2, TEMPLATE, distribution_type="bogus")

    def test_reconfigure_is_logged(self) -> None:
        self.resolver.reconfigure(7, TEMPLATE)
        entries = [entry for entry in self.sink.events() if entry["event"] == "distribution_reconfigured"]
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0]["max_tasks"], 7)
        self.assertEqual(entries[0]["generation"], 1)
        self.assertEqual(entries[0]["extras"]["previous_max_tasks"], 3)

    def test_decision_logged_at_debug(self) -> None:
        self.resolver.is_part_of_task(1, _descriptor(4))
        decisions = [entry for entry in self.sink.events() if entry["event"] == "ownership_decided"]
        self.assertEqual(decisions[-1]["partition_id"], 4)
        self.assertTrue(decisions[-1]["extras"]["owned"])

    def test_descriptor_owner_agrees_with_custom_matcher(self) -> None:
        resolver = DistributionResolver(3, TEMPLATE, matcher=lambda task_id, partition_id: task_id == (partition_id + 1) % 3)
        for partition_id in range(9):
            descriptor = _descriptor(partition_id)
            owners = [t for t in range(3) if resolver.is_part_of_task(t, descriptor)]
            self.assertEqual(owners, [resolver.owner_of_descriptor(descriptor)])
        self.assertEqual(resolver.owner_of_partition(0), 1)

    def test_matcher_without_unique_owner_is_rejected(self) -> None:
        nobody = DistributionResolver(3, TEMPLATE, matcher=lambda task_id, partition_id: False)
        with self.assertRaises(InvalidConfiguration):
            nobody.owner_of_descriptor(_descriptor(1))
        everybody = DistributionResolver(3, TEMPLATE, matcher=lambda task_id, partition_id: task_id != partition_id)
        with self.assertRaises(InvalidConfiguration):
            everybody.owner_of_partition(4)

    def test_custom_extractor_factory(self) -> None:
        class TableIndexExtractor(PartitionIdExtractor):
            def extract_partition_id(self, descriptor: str) -> int:
                return int(descriptor.rsplit("_", 1)[-1])

        resolver = DistributionResolver(2, "ignored", extractor_factory=lambda kind, fmt: TableIndexExtractor(fmt))
        self.assertTrue(resolver.is_part_of_task(1, "table_7"))

    def test_from_config(self) -> None:
        cfg = Config({"distribution": {"max_tasks": 4, "expected_format": "t_{{partition}}", "type": "partition"}})
        resolver = DistributionResolver.from_config(cfg)
        self.assertEqual(resolver.max_tasks, 4)
        self.assertTrue(resolver.is_part_of_task(1, "t_5"))

    def test_from_config_missing_keys(self) -> None:
        with self.assertRaises(InvalidConfiguration):
            DistributionResolver.from_config(Config({"distribution": {"expected_format": TEMPLATE}}))
        with self.assertRaises(InvalidConfiguration):
            DistributionResolver.from_config(Config({"distribution": {"max_tasks": 0, "expected_format": TEMPLATE}}))


class ConcurrentReconfigureTestCase(unittest.TestCase):
    """Readers never combine a fleet size from one generation with a format from another."""

    def test_snapshot_is_never_torn(self) -> None:
        formats = {2: "a_{{partition}}", 5: "b_{{partition}}"}
        resolver = DistributionResolver(2, formats[2])
        stop = threading.Event()
        torn = []

        def writer() -> None:
            size = 2
            while not stop.is_set():
                size = 5 if size == 2 else 2
                resolver.reconfigure(size, formats[size])

        def reader() -> None:
            for _ in range(5000):
                snapshot = resolver.snapshot
                if formats[snapshot.max_tasks] != snapshot.expected_format:
                    torn.append(snapshot)
                prefix = "a" if snapshot.max_tasks == 2 else "b"
                partition_id = snapshot.extractor.extract_partition_id(f"{prefix}_9")
                self.assertEqual(partition_id, 9)

        threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(4)]
        for thread in threads[1:]:
            thread.start()
        threads[0].start()
        for thread in threads[1:]:
            thread.join()
        stop.set()
        threads[0].join()
        self.assertEqual(torn, [])

    def test_concurrent_writers_produce_unique_generations(self) -> None:
        resolver = DistributionResolver(1, "{{partition}}")
        generations = []
        lock = threading.Lock()

        def writer(size: int) -> None:
            for _ in range(200):
                snapshot = resolver.reconfigure(size, "{{partition}}")
                with lock:
                    generations.append(snapshot.generation)

        threads = [threading.Thread(target=writer, args=(size,)) for size in (1, 2, 3, 4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(sorted(generations), list(range(1, 801)))
        self.assertEqual(resolver.generation, 800)


if __name__ == "__main__":
    unittest.main()
