import json
import os
import tempfile
import unittest

from monitor.version_config import (
    DEFAULT_FALLBACK_SCORE,
    VersionScoreTable,
    load_version_table,
)


class TestVersionScoreTable(unittest.TestCase):

    def test_defaults(self):
        table = VersionScoreTable()

        self.assertEqual(table.score("0.8.0"), 15)
        self.assertEqual(table.score("0.7.3"), 13)
        self.assertEqual(table.score("0.6.x"), 5)
        self.assertEqual(table.score("unknown"), DEFAULT_FALLBACK_SCORE)
        self.assertEqual(table.latest_version, "0.8.0")
        self.assertTrue(table.is_latest("0.8.0"))
        self.assertFalse(table.is_latest("0.7.3"))

    def test_lookup_is_exact(self):
        self.assertEqual(VersionScoreTable().score("0.8.0-rc1"), DEFAULT_FALLBACK_SCORE)

    def test_rejects_out_of_range_scores(self):
        with self.assertRaises(ValueError):
            VersionScoreTable(scores={"1.0.0": 16})
        with self.assertRaises(ValueError):
            VersionScoreTable(fallback_score=-1)

    def test_explicit_latest_version_wins(self):
        table = VersionScoreTable.from_dict(
            {"scores": {"1.0.0": 15, "0.9.0": 12}, "latest_version": "0.9.0"}
        )
        self.assertEqual(table.latest_version, "0.9.0")


class TestLoadVersionTable(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmpdir.cleanup()

    def write(self, content):
        path = os.path.join(self.tmpdir.name, "versions.json")
        with open(path, "w", encoding="utf-8") as handle:
            handle.write(content)
        return path

    def test_loads_file(self):
        path = self.write(json.dumps({"scores": {"1.0.0": 15, "0.9.0": 10}, "fallback_score": 1}))
        table = load_version_table(path)

        self.assertEqual(table.score("0.9.0"), 10)
        self.assertEqual(table.score("0.8.0"), 1)
        self.assertEqual(table.latest_version, "1.0.0")

    def test_invalid_file_falls_back_to_defaults(self):
        table = load_version_table(self.write("{not json"))
        self.assertEqual(table.scores, VersionScoreTable().scores)

    def test_invalid_scores_fall_back_to_defaults(self):
        table = load_version_table(self.write(json.dumps({"scores": {"1.0.0": 99}})))
        self.assertEqual(table.latest_version, "0.8.0")

    def test_missing_file_falls_back_to_defaults(self):
        table = load_version_table(os.path.join(self.tmpdir.name, "missing.json"))
        self.assertEqual(table.score("0.8.0"), 15)


if __name__ == "__main__":
    unittest.main()
