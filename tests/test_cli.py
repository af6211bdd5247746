#!/usr/bin/env python3
"""
Test Suite for the file-merge command - Settings and End-to-End Runs
====================================================================

Validates how command-line options and YAML config files become
MergeSettings, and runs main() end to end in its three modes:

    --glob + --cache-file   build the range cache
    --cache-file            merge the cached files overlapping the key range
    --glob                  merge every globbed file

RUNNING THE TESTS
=================
    # Run all tests with pytest (recommended)
    pytest tests/test_cli.py -v

    # Run specific test class
    pytest tests/test_cli.py::TestMain -v

TEST COVERAGE SUMMARY
=====================
1. TestParseDelimiter - Single characters and aliases
2. TestSettings - Option validation, modes, defaults
3. TestConfigFile - YAML settings and command-line overrides
4. TestMain - End-to-end runs, exit codes and error reporting
"""

import gzip
import os
import tempfile
import unittest
from io import StringIO
from pathlib import Path
from unittest.mock import patch

from sorted_file_merge.cli import main
from sorted_file_merge.errors import ConfigError
from sorted_file_merge.keys import KeyType
from sorted_file_merge.settings import (
    MODE_BUILD_CACHE,
    MODE_MERGE_FROM_CACHE,
    MODE_MERGE_FROM_GLOB,
    load_settings,
    parse_delimiter,
)
from sorted_file_merge.utils import DEBUG, QUIET, WARNING


class TempDirTestCase(unittest.TestCase):
    """Base class creating a temporary directory for test files"""

    def setUp(self):
        self.test_dir = tempfile.TemporaryDirectory()
        self.test_path = Path(self.test_dir.name)

    def tearDown(self):
        self.test_dir.cleanup()

    def create_test_file(self, filename, lines):
        """Helper to create a test file with given lines"""
        content = "\n".join(lines) + "\n" if lines else ""
        file_path = self.test_path / filename
        file_path.write_text(content, encoding="utf-8")
        return str(file_path)


class TestParseDelimiter(unittest.TestCase):
    """Test cases for parse_delimiter"""

    def test_single_characters(self):
        self.assertEqual(parse_delimiter(","), ",")
        self.assertEqual(parse_delimiter("\t"), "\t")
        self.assertEqual(parse_delimiter(";"), ";")

    def test_aliases(self):
        self.assertEqual(parse_delimiter("tsv"), "\t")
        self.assertEqual(parse_delimiter("TSV"), "\t")
        self.assertEqual(parse_delimiter("\\t"), "\t")
        self.assertEqual(parse_delimiter("csv"), ",")
        self.assertEqual(parse_delimiter("psv"), "|")

    def test_invalid(self):
        for value in ["", "ab", "::"]:
            with self.subTest(value=value):
                with self.assertRaises(ConfigError):
                    parse_delimiter(value)


class TestSettings(TempDirTestCase):
    """Test cases for load_settings"""

    def setUp(self):
        super().setUp()
        self.glob = str(self.test_path / "*.csv")
        self.cache = str(self.test_path / "ranges.cache")

    def test_merge_from_glob(self):
        settings = load_settings(
            ["--glob", self.glob, "--delimiter", "csv", "--key-index", "1", "--key-type", "u32"]
        )
        self.assertEqual(settings.mode, MODE_MERGE_FROM_GLOB)
        self.assertEqual(settings.delimiter, ",")
        self.assertEqual(settings.key_index, 1)
        self.assertIs(settings.key_type, KeyType.UNSIGNED_32_INTEGER)
        self.assertEqual(settings.output, "-")
        self.assertEqual(settings.verbosity, WARNING)

    def test_build_cache_mode(self):
        settings = load_settings(
            ["--glob", self.glob, "--cache-file", self.cache, "--delimiter", ",", "--key-index", "0"]
        )
        self.assertEqual(settings.mode, MODE_BUILD_CACHE)

    def test_merge_from_cache_mode(self):
        Path(self.cache).write_text("", encoding="utf-8")
        settings = load_settings(["--cache-file", self.cache, "--delimiter", ",", "--key-index", "0"])
        self.assertEqual(settings.mode, MODE_MERGE_FROM_CACHE)

    def test_key_type_defaults_to_string(self):
        settings = load_settings(["--glob", self.glob, "--delimiter", ",", "--key-index", "0"])
        self.assertIs(settings.key_type, KeyType.STRING)

    def test_multiple_globs_and_excludes(self):
        settings = load_settings(
            [
                "--glob", "a/*.csv",
                "--glob", "b/*.csv",
                "--exclude", "*-tmp.csv",
                "--delimiter", ",",
                "--key-index", "0",
            ]
        )
        self.assertEqual(settings.globs, ("a/*.csv", "b/*.csv"))
        self.assertEqual(settings.exclude_patterns, ("*-tmp.csv",))

    def test_key_bounds(self):
        settings = load_settings(
            [
                "--glob", self.glob,
                "--delimiter", ",",
                "--key-index", "0",
                "--key-type", "Signed32Integer",
                "--key-start", "-10",
                "--key-end", "10",
            ]
        )
        self.assertEqual(settings.key_start.value, -10)
        self.assertEqual(settings.key_end.value, 10)

    def test_verbosity(self):
        base = ["--glob", self.glob, "--delimiter", ",", "--key-index", "0", "--key-type", "str"]
        self.assertEqual(load_settings(base + ["-vv"]).verbosity, DEBUG)
        self.assertEqual(load_settings(base + ["-vv", "-q"]).verbosity, QUIET)

    def test_invalid_settings(self):
        """Test that every invalid combination raises ConfigError"""
        cases = {
            "missing delimiter": ["--glob", self.glob, "--key-index", "0"],
            "missing key index": ["--glob", self.glob, "--delimiter", ","],
            "negative key index": ["--glob", self.glob, "--delimiter", ",", "--key-index", "-1"],
            "bad delimiter": ["--glob", self.glob, "--delimiter", "ab", "--key-index", "0"],
            "unknown key type": [
                "--glob", self.glob, "--delimiter", ",", "--key-index", "0",
                "--key-type", "Float64",
            ],
            "bad key bound": [
                "--glob", self.glob, "--delimiter", ",", "--key-index", "0",
                "--key-type", "u32", "--key-start", "abc",
            ],
            "empty key range": [
                "--glob", self.glob, "--delimiter", ",", "--key-index", "0",
                "--key-type", "u32", "--key-start", "10", "--key-end", "10",
            ],
            "no glob nor cache": ["--delimiter", ",", "--key-index", "0"],
            "missing cache file": ["--cache-file", self.cache, "--delimiter", ",", "--key-index", "0"],
            "bad buffer size": [
                "--glob", self.glob, "--delimiter", ",", "--key-index", "0",
                "--buffer-size", "0",
            ],
        }
        for name, argv in cases.items():
            with self.subTest(case=name):
                with self.assertRaises(ConfigError):
                    load_settings(argv)


class TestConfigFile(TempDirTestCase):
    """Test cases for --config-file"""

    def write_config(self, text):
        path = self.test_path / "merge.yaml"
        path.write_text(text, encoding="utf-8")
        return str(path)

    def test_settings_from_yaml(self):
        config = self.write_config(
            "delimiter: tsv\n"
            "key_index: 2\n"
            "key_type: Unsigned32Integer\n"
            "key_start: 100\n"
            "glob: /data/*.tsv\n"
            "exclude:\n"
            "  - '*-tmp.tsv'\n"
            "skip_invalid_lines: true\n"
            "verbose: 1\n"
        )
        settings = load_settings(["--config-file", config])
        self.assertEqual(settings.delimiter, "\t")
        self.assertEqual(settings.key_index, 2)
        self.assertIs(settings.key_type, KeyType.UNSIGNED_32_INTEGER)
        self.assertEqual(settings.key_start.value, 100)
        self.assertEqual(settings.globs, ("/data/*.tsv",))
        self.assertEqual(settings.exclude_patterns, ("*-tmp.tsv",))
        self.assertTrue(settings.skip_invalid)
        self.assertEqual(settings.verbosity, 1)

    def test_command_line_overrides_config(self):
        config = self.write_config("delimiter: tsv\nkey_index: 2\nglob: /data/*.tsv\n")
        settings = load_settings(
            ["--config-file", config, "--key-index", "0", "--glob", "/other/*.tsv"]
        )
        self.assertEqual(settings.key_index, 0)
        self.assertEqual(settings.delimiter, "\t")
        self.assertEqual(settings.globs, ("/other/*.tsv",))

    def test_dashed_keys_accepted(self):
        config = self.write_config("delimiter: csv\nkey-index: 1\ncache-file: x.cache\nglob: a\n")
        settings = load_settings(["--config-file", config])
        self.assertEqual(settings.key_index, 1)
        self.assertEqual(settings.cache_path, "x.cache")

    def test_invalid_config_files(self):
        cases = {
            "unknown key": "delimiter: csv\nkey_index: 0\nglob: a\ncolour: blue\n",
            "not a mapping": "- delimiter\n- csv\n",
            "invalid yaml": "delimiter: [csv\n",
            "glob not a list of strings": "delimiter: csv\nkey_index: 0\nglob: {a: 1}\n",
            "key index not an integer": "delimiter: csv\nkey_index: first\nglob: a\n",
            "verbose not a number": "delimiter: csv\nkey_index: 0\nglob: a\nverbose: lots\n",
            "negative verbose": "delimiter: csv\nkey_index: 0\nglob: a\nverbose: -1\n",
            "quoted boolean": "delimiter: csv\nkey_index: 0\nglob: a\nskip_invalid_lines: \"false\"\n",
            "verify cache not a boolean": "delimiter: csv\nkey_index: 0\nglob: a\nverify_cache: 1\n",
        }
        for name, text in cases.items():
            with self.subTest(case=name):
                config = self.write_config(text)
                with self.assertRaises(ConfigError):
                    load_settings(["--config-file", config])

    def test_missing_config_file(self):
        with self.assertRaises(ConfigError):
            load_settings(["--config-file", str(self.test_path / "nope.yaml")])


class TestMain(TempDirTestCase):
    """End-to-end tests of the file-merge command"""

    def setUp(self):
        super().setUp()
        self.data_dir = self.test_path / "data"
        self.data_dir.mkdir()
        self.create_test_file("data/part-1.tsv", ["1\ta", "5\tb", "10\tc"])
        self.create_test_file("data/part-2.tsv", ["20\td", "25\te", "30\tf"])
        self.create_test_file("data/part-3.tsv", ["2\tg", "22\th"])
        self.glob = str(self.data_dir / "part-*.tsv")
        self.cache = str(self.test_path / "parts.cache")
        self.output = self.test_path / "out.tsv"
        self.key_args = ["--delimiter", "tsv", "--key-index", "0", "--key-type", "u32"]

    def run_main(self, argv):
        with patch("sys.stderr", new_callable=StringIO) as stderr:
            exit_code = main(argv)
        return exit_code, stderr.getvalue()

    def output_lines(self):
        return self.output.read_text(encoding="utf-8").splitlines()

    def test_merge_from_glob(self):
        exit_code, _ = self.run_main(["--glob", self.glob, "-o", str(self.output)] + self.key_args)
        self.assertEqual(exit_code, 0)
        self.assertEqual(
            [line.split("\t")[1] for line in self.output_lines()],
            ["a", "g", "b", "c", "d", "h", "e", "f"],
        )

    def test_merge_from_glob_to_stdout_with_range(self):
        with patch("sys.stdout", new_callable=StringIO) as stdout:
            exit_code, _ = self.run_main(
                ["--glob", self.glob, "--key-start", "5", "--key-end", "22"] + self.key_args
            )
        self.assertEqual(exit_code, 0)
        self.assertEqual(stdout.getvalue(), "5\tb\n10\tc\n20\td\n")

    def test_build_cache_then_merge_from_cache(self):
        """Test the two-step workflow: build the cache, then merge a key range"""
        exit_code, _ = self.run_main(["--glob", self.glob, "--cache-file", self.cache] + self.key_args)
        self.assertEqual(exit_code, 0)
        self.assertTrue(os.path.isfile(self.cache))
        # Building the cache does not merge
        self.assertFalse(self.output.exists())

        exit_code, stderr = self.run_main(
            [
                "--cache-file", self.cache,
                "--key-start", "11",
                "--key-end", "21",
                "-o", str(self.output),
                "-v",
            ]
            + self.key_args
        )
        self.assertEqual(exit_code, 0)
        self.assertEqual(self.output_lines(), ["20\td"])
        # part-1 ([1, 10]) is pruned; part-2 and part-3 overlap [11, 21)
        self.assertIn("[CACHE] Selected 2 of 3 files", stderr)

    def test_merge_from_cache_without_range(self):
        self.run_main(["--glob", self.glob, "--cache-file", self.cache] + self.key_args)
        exit_code, _ = self.run_main(["--cache-file", self.cache, "-o", str(self.output)] + self.key_args)
        self.assertEqual(exit_code, 0)
        self.assertEqual(len(self.output_lines()), 8)

    def test_exclude(self):
        exit_code, _ = self.run_main(
            ["--glob", self.glob, "--exclude", "part-3*", "-o", str(self.output)] + self.key_args
        )
        self.assertEqual(exit_code, 0)
        self.assertEqual(len(self.output_lines()), 6)

    def test_invalid_line_exit_code(self):
        self.create_test_file("data/part-4.tsv", ["3\tx", "not-a-number\ty"])
        exit_code, stderr = self.run_main(
            ["--glob", self.glob, "-o", str(self.output)] + self.key_args
        )
        self.assertEqual(exit_code, 1)
        self.assertIn("[ERROR]", stderr)
        self.assertIn("part-4.tsv:2", stderr)

    def test_skip_invalid_lines(self):
        self.create_test_file("data/part-4.tsv", ["3\tx", "not-a-number\ty"])
        exit_code, stderr = self.run_main(
            ["--glob", self.glob, "--skip-invalid-lines", "-o", str(self.output)] + self.key_args
        )
        self.assertEqual(exit_code, 0)
        self.assertEqual(len(self.output_lines()), 9)
        self.assertIn("[WARNING]", stderr)

    def test_config_error_exit_code(self):
        exit_code, stderr = self.run_main(["--glob", self.glob, "--key-index", "0"])
        self.assertEqual(exit_code, 1)
        self.assertIn("--delimiter", stderr)

    def test_no_matching_files(self):
        exit_code, stderr = self.run_main(
            ["--glob", str(self.test_path / "*.nothing")] + self.key_args
        )
        self.assertEqual(exit_code, 1)
        self.assertIn("No files to merge", stderr)

    def test_truncated_gzip_exit_code(self):
        """Test that a truncated compressed shard is reported, not a traceback"""
        shard = self.data_dir / "part-9.tsv.gz"
        with gzip.open(shard, "wt", encoding="utf-8") as fh:
            for i in range(2000):
                fh.write(f"{i}\tvalue-{i * 7919 % 10007}\n")
        data = shard.read_bytes()
        shard.write_bytes(data[: len(data) // 2])
        shards = str(self.data_dir / "part-*.tsv*")

        exit_code, stderr = self.run_main(
            ["--glob", shards, "--cache-file", self.cache] + self.key_args
        )
        self.assertEqual(exit_code, 1)
        self.assertIn("[ERROR]", stderr)
        self.assertFalse(os.path.exists(self.cache))

        exit_code, stderr = self.run_main(
            ["--glob", shards, "--key-type", "str", "-o", str(self.output), "--delimiter", "tsv",
             "--key-index", "0"]
        )
        self.assertEqual(exit_code, 1)
        self.assertIn("[ERROR]", stderr)

    def test_invalid_verbose_in_config_exit_code(self):
        config = self.test_path / "merge.yaml"
        config.write_text(f"glob: {self.glob}\nverbose: lots\n", encoding="utf-8")
        exit_code, stderr = self.run_main(["--config-file", str(config)] + self.key_args)
        self.assertEqual(exit_code, 1)
        self.assertIn("verbose", stderr)

    def test_corrupt_cache_exit_code(self):
        Path(self.cache).write_text("garbage\n", encoding="utf-8")
        exit_code, stderr = self.run_main(["--cache-file", self.cache] + self.key_args)
        self.assertEqual(exit_code, 1)
        self.assertIn("[ERROR]", stderr)

    def test_quiet_suppresses_warnings(self):
        self.create_test_file("data/part-4.tsv", ["bad\tx"])
        exit_code, stderr = self.run_main(
            ["--glob", self.glob, "--skip-invalid-lines", "-q", "-o", str(self.output)]
            + self.key_args
        )
        self.assertEqual(exit_code, 0)
        self.assertEqual(stderr, "")


if __name__ == "__main__":
    unittest.main()
