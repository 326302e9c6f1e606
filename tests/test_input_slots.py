import unittest

import numpy as np

from config import Config
from frames import SampleFrame
from input_slots import CaptureState, SlotCollection

SR = 44100


def rich_tone(freq, n=8192, harmonics=8):
    t = np.arange(n) / SR
    return SampleFrame(0.3 * sum(np.sin(2 * np.pi * k * freq * t) / k for k in range(1, harmonics + 1)), SR)


class TestSlotCollection(unittest.TestCase):
    def test_initial_slots_and_indices(self):
        slots = SlotCollection(Config(), initial_slots=2)
        self.assertEqual([slot.index for slot in slots], [0, 1])
        self.assertTrue(all(slot.capture_state == CaptureState.EMPTY for slot in slots))

    def test_indices_are_never_reused(self):
        slots = SlotCollection(Config(), initial_slots=2)
        slots.remove_slot(1)
        added = slots.add_slot()
        self.assertEqual(added.index, 2)
        self.assertEqual(len(slots), 2)
        with self.assertRaises(KeyError):
            slots[1]

    def test_capture_lifecycle(self):
        slots = SlotCollection(Config(), initial_slots=1)
        slots.begin_capture(0)
        self.assertEqual(slots[0].capture_state, CaptureState.CAPTURING)
        self.assertEqual(slots.ready_slots(), [])
        slots.load(0, rich_tone(220.0))
        self.assertEqual(slots[0].capture_state, CaptureState.READY)
        self.assertEqual(slots.ready_slots(), [slots[0]])

    def test_analyze_two_sources_a_fifth_apart(self):
        slots = SlotCollection(Config(), initial_slots=2)
        slots.load(0, rich_tone(220.0))
        slots.load(1, rich_tone(330.0))
        session = slots.analyze_all()

        self.assertEqual(len(session.slots), 2)
        for slot, expected in zip(session.slots, (220.0, 330.0)):
            self.assertTrue(slot.has_pitch)
            self.assertAlmostEqual(slot.pitch.frequency, expected, delta=expected * 0.03)
            self.assertIsNotNone(slot.report)
        self.assertEqual(len(session.relations.relations), 1)
        relation = session.relations.relations[0]
        self.assertEqual(relation.interval.name, 'fifth')
        self.assertTrue(relation.interval.matched)
        self.assertGreater(session.relations.overlap_ratio, 0.0)

    def test_silent_slot_is_left_out_of_relations(self):
        slots = SlotCollection(Config(), initial_slots=3)
        slots.load(0, rich_tone(220.0))
        slots.load(1, SampleFrame(np.zeros(4096), SR))
        slots.load(2, rich_tone(440.0))
        session = slots.analyze_all()

        self.assertFalse(slots[1].has_pitch)
        self.assertIsNone(slots[1].report)
        relations = session.relations.relations
        self.assertEqual(len(relations), 1)
        self.assertEqual((relations[0].source_a, relations[0].source_b), (0, 2))
        self.assertEqual(relations[0].interval.name, 'octave')

    def test_reload_discards_stale_results(self):
        slots = SlotCollection(Config(), initial_slots=1)
        slots.load(0, rich_tone(220.0))
        slots.analyze_all()
        self.assertTrue(slots[0].has_pitch)
        slots.load(0, rich_tone(330.0))
        self.assertIsNone(slots[0].pitch)
        self.assertIsNone(slots[0].report)

    def test_nothing_ready(self):
        session = SlotCollection(Config()).analyze_all()
        self.assertEqual(session.slots, ())
        self.assertEqual(session.relations.relations, [])


if __name__ == "__main__":
    unittest.main()
