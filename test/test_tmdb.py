import unittest

import httpx

from urnext.models import MediaKind
from urnext.services.tmdb import TMDBClient, to_candidate

RESULTS = {
    "page": 1,
    "results": [
        {
            "media_type": "movie",
            "title": "Arrival",
            "poster_path": "/arrival.jpg",
            "overview": "Linguist meets heptapods."
        },
        {
            "media_type": "tv",
            "name": "Severance",
            "poster_path": None,
            "overview": "Work-life balance."
        },
        {"media_type": "person", "name": "Amy Adams"},
        {"media_type": "movie", "title": ""}
    ]
}


class TestToCandidate(unittest.TestCase):
    def test_movie(self) -> None:
        candidate = to_candidate(RESULTS["results"][0])
        self.assertEqual(candidate.title, "Arrival")
        self.assertEqual(candidate.kind, MediaKind.MOVIE)
        self.assertEqual(candidate.poster_reference, "/arrival.jpg")

    def test_tv_is_a_show(self) -> None:
        candidate = to_candidate(RESULTS["results"][1])
        self.assertEqual(candidate.title, "Severance")
        self.assertEqual(candidate.kind, MediaKind.SHOW)
        self.assertEqual(candidate.poster_reference, "")

    def test_people_and_blank_titles_are_dropped(self) -> None:
        self.assertIsNone(to_candidate(RESULTS["results"][2]))
        self.assertIsNone(to_candidate(RESULTS["results"][3]))


class TestTMDBClient(unittest.IsolatedAsyncioTestCase):
    async def test_search_maps_results(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=RESULTS)

        client = TMDBClient("key", "https://tmdb.test/3", transport=httpx.MockTransport(handler))
        candidates = await client.search("arrival")

        self.assertEqual([c.title for c in candidates], ["Arrival", "Severance"])
        self.assertEqual(seen[0].url.path, "/3/search/multi")
        self.assertEqual(seen[0].url.params["query"], "arrival")
        self.assertEqual(seen[0].url.params["api_key"], "key")
        self.assertEqual(seen[0].url.params["include_adult"], "false")

    async def test_search_error_propagates(self) -> None:
        client = TMDBClient(
            "key",
            "https://tmdb.test/3",
            transport=httpx.MockTransport(lambda request: httpx.Response(401))
        )
        with self.assertRaises(httpx.HTTPStatusError):
            await client.search("arrival")


if __name__ == "__main__":
    unittest.main()
