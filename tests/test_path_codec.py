import unittest

from page_cache.cache.errors import InvalidPath, InvalidUrl
from page_cache.cache.path_codec import PathCodec, normalize


class NormalizeTests(unittest.TestCase):
    def test_empty_path_is_rejected(self) -> None:
        with self.assertRaises(InvalidPath):
            normalize("")

    def test_relative_path_is_rejected(self) -> None:
        with self.assertRaises(InvalidPath):
            normalize("a/relative/path")

    def test_normalization(self) -> None:
        cases = {
            "separators-only": ("/\\/", "/"),
            "empty-segments": ("//path/with/empty//segments", "/path/with/empty/segments"),
            "segments-with-spaces": ("/path with/segments with spaces", "/path with/segments with spaces"),
            "mixed-separators": ("/this-path\\has/mixed/\\path-separators", "/this-path/has/mixed/path-separators"),
            "backslash-separators": ("\\this\\is\\windows", "/this/is/windows"),
            "dot-segments": ("/path/./with/././dot-segments", "/path/with/dot-segments"),
            "dots-segments": (
                "/ignore-me/../path/with/ignore-me-too/../dots-segments",
                "/path/with/dots-segments",
            ),
            "trailing-separator": ("/trailing/separator/", "/trailing/separator"),
            "all-in": ("//empty/ignore-me/../mixed\\.//with spaces/", "/empty/mixed/with spaces"),
            "dots-beyond-root": ("/../../etc", "/etc"),
            "windows-drive": ("C:\\cache\\dir\\", "C:/cache/dir"),
        }
        for name, (raw, expected) in cases.items():
            with self.subTest(name):
                self.assertEqual(normalize(raw), expected)

    def test_normalization_is_idempotent(self) -> None:
        for raw in ("//a/./b/../c/", "/", "\\x\\y"):
            with self.subTest(raw):
                once = normalize(raw)
                self.assertEqual(normalize(once), once)


class PathCodecTests(unittest.TestCase):
    def setUp(self) -> None:
        self.codec = PathCodec("/bc-cache")

    def test_encode_and_decode_canonical_shapes(self) -> None:
        # URL, cache path, URL decoded back (directory form)
        cases = {
            "hostname-no-slash": (
                "https://www.example.com",
                "/bc-cache/https/www.example.com",
                "https://www.example.com/",
            ),
            "hostname-with-slash": (
                "https://www.example.com/",
                "/bc-cache/https/www.example.com",
                "https://www.example.com/",
            ),
            "dirname-no-slash": (
                "https://www.example.com/test",
                "/bc-cache/https/www.example.com/test",
                "https://www.example.com/test/",
            ),
            "dirname-with-slash": (
                "https://www.example.com/test/",
                "/bc-cache/https/www.example.com/test",
                "https://www.example.com/test/",
            ),
            "filename-no-slash": (
                "https://www.example.com/sitemap.xml",
                "/bc-cache/https/www.example.com/sitemap.xml",
                "https://www.example.com/sitemap.xml/",
            ),
            "filename-with-slash": (
                "https://www.example.com/sitemap.xml/",
                "/bc-cache/https/www.example.com/sitemap.xml",
                "https://www.example.com/sitemap.xml/",
            ),
        }
        for name, (url, path, decoded) in cases.items():
            with self.subTest(name):
                self.assertEqual(self.codec.encode(url), path)
                self.assertEqual(self.codec.decode(path), decoded)

    def test_query_string_is_ignored(self) -> None:
        self.assertEqual(
            self.codec.encode("https://www.example.com/test/?page=2#top"),
            "/bc-cache/https/www.example.com/test",
        )

    def test_port_stays_in_host_segment(self) -> None:
        path = self.codec.encode("http://localhost:8080/a")
        self.assertEqual(path, "/bc-cache/http/localhost:8080/a")
        self.assertEqual(self.codec.decode(path), "http://localhost:8080/a/")

    def test_dot_segments_within_host_directory_are_resolved(self) -> None:
        self.assertEqual(
            self.codec.encode("https://www.example.com/a/../b/./c"),
            "/bc-cache/https/www.example.com/b/c",
        )

    def test_dot_segments_escaping_host_directory_are_rejected(self) -> None:
        with self.assertRaises(InvalidUrl):
            self.codec.encode("https://www.example.com/../../etc/passwd")

    def test_invalid_urls_are_rejected(self) -> None:
        for url in ("", "www.example.com/test", "/relative/path", "https://", "http://example.com:99999/"):
            with self.subTest(url):
                with self.assertRaises(InvalidUrl):
                    self.codec.encode(url)

    def test_paths_outside_cache_are_rejected(self) -> None:
        for path in ("/etc/passwd", "/bc-cache", "/bc-cache/https", "/bc-cache-other/https/example.com"):
            with self.subTest(path):
                with self.assertRaises(InvalidPath):
                    self.codec.decode(path)

    def test_try_variants_return_results(self) -> None:
        ok = self.codec.try_encode("https://www.example.com/")
        self.assertTrue(ok.ok)
        self.assertEqual(ok.value, "/bc-cache/https/www.example.com")

        failed = self.codec.try_decode("/etc")
        self.assertFalse(failed.ok)
        self.assertIsInstance(failed.error, InvalidPath)


if __name__ == "__main__":
    unittest.main()
