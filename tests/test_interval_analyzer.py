import unittest

from config import IntervalConfig
from harmonic_analyzer import Harmonic, HarmonicSet
from interval_analyzer import (
    Consonance,
    IntervalAnalyzer,
    classify_interval,
    describe_consonance,
    frequency_ratio,
    harmonic_overlap,
    overlap_bin,
    relate_sources,
)


def harmonic_set(f0, count=5):
    return HarmonicSet([Harmonic(k, k * f0, 1.0, 0.0) for k in range(1, count + 1)])


class TestClassification(unittest.TestCase):
    def test_fifth(self):
        match = classify_interval(frequency_ratio(440.0, 660.0))
        self.assertEqual(match.name, 'fifth')
        self.assertTrue(match.matched)
        self.assertAlmostEqual(match.deviation, 0.0)

    def test_octave_and_inverted_ratio(self):
        match = classify_interval(0.5)
        self.assertEqual(match.name, 'octave')
        self.assertAlmostEqual(match.ratio, 2.0)

    def test_unison(self):
        self.assertEqual(classify_interval(1.0).name, 'unison')

    def test_out_of_table_is_unmatched(self):
        match = classify_interval(3.0)
        self.assertEqual(match.name, 'octave')
        self.assertFalse(match.matched)

    def test_tolerance_boundary(self):
        self.assertFalse(classify_interval(2.15, tolerance=0.1).matched)
        self.assertTrue(classify_interval(2.05, tolerance=0.1).matched)

    def test_invalid_ratio(self):
        with self.assertRaises(ValueError):
            classify_interval(0.0)
        with self.assertRaises(ValueError):
            frequency_ratio(0.0, 440.0)

    def test_consonance_bands(self):
        self.assertEqual(describe_consonance(1.05), Consonance.BEATING)
        self.assertEqual(describe_consonance(1.2), Consonance.TENSE)
        self.assertEqual(describe_consonance(1.33), Consonance.MILDLY_TENSE)
        self.assertEqual(describe_consonance(1.5), Consonance.CONSONANT)
        self.assertEqual(describe_consonance(2.0), Consonance.VERY_CONSONANT)
        self.assertEqual(describe_consonance(1.68), Consonance.NEUTRAL)


class TestRelations(unittest.TestCase):
    def test_every_pair_once(self):
        relations = relate_sources([220.0, 330.0, 440.0])
        pairs = [(r.source_a, r.source_b) for r in relations]
        self.assertEqual(pairs, [(0, 1), (0, 2), (1, 2)])
        self.assertEqual(relations[0].interval.name, 'fifth')
        self.assertEqual(relations[1].interval.name, 'octave')
        self.assertEqual(relations[2].interval.name, 'fourth')

    def test_custom_indices(self):
        relations = relate_sources([220.0, 440.0], indices=[2, 5])
        self.assertEqual((relations[0].source_a, relations[0].source_b), (2, 5))

    def test_single_source_has_no_relations(self):
        self.assertEqual(relate_sources([440.0]), [])

    def test_indices_length_mismatch(self):
        with self.assertRaises(ValueError):
            relate_sources([220.0, 440.0], indices=[0])


class TestOverlap(unittest.TestCase):
    def test_bin_clamping(self):
        self.assertEqual(overlap_bin(20.0), 0)
        self.assertEqual(overlap_bin(10.0), 0)
        self.assertEqual(overlap_bin(20000.0), 119)
        self.assertEqual(overlap_bin(40000.0), 119)

    def test_identical_sources_overlap_fully(self):
        self.assertAlmostEqual(harmonic_overlap([harmonic_set(220.0), harmonic_set(220.0)]), 1.0)

    def test_octave_apart_shares_some_bins(self):
        overlap = harmonic_overlap([harmonic_set(220.0), harmonic_set(440.0)])
        self.assertGreater(overlap, 0.0)
        self.assertLess(overlap, 1.0)

    def test_distant_sources_do_not_overlap(self):
        self.assertEqual(harmonic_overlap([[50.0, 60.0], [5000.0, 6000.0]]), 0.0)

    def test_single_source(self):
        self.assertEqual(harmonic_overlap([harmonic_set(220.0)]), 0.0)

    def test_one_source_many_harmonics_in_a_bin_is_not_shared(self):
        self.assertEqual(harmonic_overlap([[1000.0, 1001.0], [5000.0]]), 0.0)


class TestIntervalAnalyzer(unittest.TestCase):
    def test_analyze(self):
        analyzer = IntervalAnalyzer(IntervalConfig())
        result = analyzer.analyze([220.0, 330.0], [harmonic_set(220.0), harmonic_set(330.0)], indices=[0, 1])
        self.assertEqual(len(result.relations), 1)
        self.assertEqual(result.relations[0].consonance, Consonance.CONSONANT)
        self.assertGreater(result.overlap_ratio, 0.0)

    def test_empty(self):
        result = IntervalAnalyzer().analyze([], [])
        self.assertEqual(result.relations, [])
        self.assertEqual(result.overlap_ratio, 0.0)


if __name__ == "__main__":
    unittest.main()
