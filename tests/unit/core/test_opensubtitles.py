"""Tests for the OpenSubtitles fallback client."""

import json
from collections.abc import Generator
from unittest.mock import Mock

import httpx
import pytest
import respx

from subsync.core.language import LanguagePriority
from subsync.core.opensubtitles import OpenSubtitlesApiError, OpenSubtitlesClient
from subsync.core.remote import (
    AllCandidatesFailedError,
    InvalidCredentialError,
    NoResultsError,
    RateLimitedError,
)
from subsync.core.subtitle import SubtitleFormat, SubtitleTrack
from subsync.utils.config import Settings

BASE = "https://os.test/api/v1"
SEARCH_URL = f"{BASE}/subtitles"
DOWNLOAD_URL = f"{BASE}/download"
FILES = "https://dl.os.test/file"

SRT_BODY = (
    b"1\n00:00:01,000 --> 00:00:02,000\nHello\n\n"
    b"2\n00:00:03,000 --> 00:00:04,000\nWorld\n"
)


def _result(
    subtitle_id: str, language: str, downloads: int, file_id: int
) -> dict[str, object]:
    return {
        "id": subtitle_id,
        "attributes": {
            "language": language,
            "download_count": downloads,
            "release": f"Release {subtitle_id}",
            "files": [{"file_id": file_id, "file_name": f"{subtitle_id}.srt"}],
        },
    }


SEARCH_PAYLOAD = {
    "data": [
        _result("tw", "zh-tw", 500, 10),
        _result("cn-few", "zh-cn", 10, 20),
        _result("en", "en", 1000, 30),
        _result("cn-many", "zh-cn", 100, 40),
    ]
}


def _link_for(request: httpx.Request) -> httpx.Response:
    file_id = json.loads(request.content)["file_id"]
    return httpx.Response(
        200,
        json={"link": f"{FILES}/{file_id}", "file_name": f"{file_id}.srt"},
    )


@pytest.fixture
def client() -> Generator[OpenSubtitlesClient, None, None]:
    with OpenSubtitlesClient("key", base_url=BASE, sleep=Mock()) as source:
        yield source


@pytest.fixture
def api() -> Generator[respx.MockRouter, None, None]:
    with respx.mock(assert_all_called=False) as respx_mock:
        yield respx_mock


@pytest.mark.unit
class TestClientConstruction:
    def test_empty_key_rejected(self) -> None:
        with pytest.raises(ValueError, match="API key"):
            OpenSubtitlesClient("")

    def test_from_settings_without_key(
        self, monkeypatch: pytest.MonkeyPatch, no_env_file: None
    ) -> None:
        monkeypatch.delenv("OPENSUBTITLES_API_KEY", raising=False)
        assert OpenSubtitlesClient.from_settings(Settings()) is None

    def test_from_settings_uses_key(self) -> None:
        settings = Settings(
            opensubtitles_api_key="abc", opensubtitles_base_url="https://x.test/"
        )
        source = OpenSubtitlesClient.from_settings(settings)

        assert source is not None
        with source:
            assert source._base_url == "https://x.test"

    def test_handles_own_references_only(self, client: OpenSubtitlesClient) -> None:
        assert client.handles("opensubtitles://5")
        assert not client.handles("assrt://5")


@pytest.mark.unit
class TestSearch:
    def test_ranks_by_language_then_downloads(
        self, client: OpenSubtitlesClient, api: respx.MockRouter
    ) -> None:
        route = api.get(SEARCH_URL).mock(
            return_value=httpx.Response(200, json=SEARCH_PAYLOAD)
        )

        candidates = client.search("Some Movie", year=2020)

        assert [c.file_id for c in candidates] == [40, 20, 10, 30]
        assert candidates[0].priority == LanguagePriority.SIMPLIFIED_CHINESE
        assert candidates[0].reference == "opensubtitles://40"
        request = route.calls.last.request
        assert request.headers["Api-Key"] == "key"
        assert request.url.params["query"] == "Some Movie"
        assert request.url.params["year"] == "2020"
        assert request.url.params["languages"] == "zh-cn,zh-tw"

    def test_tmdb_id_replaces_query(
        self, client: OpenSubtitlesClient, api: respx.MockRouter
    ) -> None:
        route = api.get(SEARCH_URL).mock(
            return_value=httpx.Response(200, json=SEARCH_PAYLOAD)
        )

        client.search("", tmdb_id="603")

        params = route.calls.last.request.url.params
        assert params["tmdb_id"] == "603"
        assert "query" not in params

    def test_short_query_rejected_without_request(
        self, client: OpenSubtitlesClient, api: respx.MockRouter
    ) -> None:
        route = api.get(SEARCH_URL)

        with pytest.raises(ValueError, match="at least"):
            client.search(" x ")
        assert not route.called

    def test_no_results(
        self, client: OpenSubtitlesClient, api: respx.MockRouter
    ) -> None:
        api.get(SEARCH_URL).mock(return_value=httpx.Response(200, json={"data": []}))

        with pytest.raises(NoResultsError):
            client.search("Nothing Here")

    def test_malformed_payload(
        self, client: OpenSubtitlesClient, api: respx.MockRouter
    ) -> None:
        api.get(SEARCH_URL).mock(
            return_value=httpx.Response(200, json={"data": [{"attributes": {}}]})
        )

        with pytest.raises(OpenSubtitlesApiError):
            client.search("Some Movie")


@pytest.mark.unit
class TestDownload:
    def test_quota_exhausted_is_rate_limited(
        self, client: OpenSubtitlesClient, api: respx.MockRouter
    ) -> None:
        api.post(DOWNLOAD_URL).mock(return_value=httpx.Response(406))

        with pytest.raises(RateLimitedError):
            client.download_link(40)

    def test_fetch_track_resolves_fresh_link(
        self, client: OpenSubtitlesClient, api: respx.MockRouter
    ) -> None:
        link_route = api.post(DOWNLOAD_URL).mock(side_effect=_link_for)
        api.get(f"{FILES}/40").mock(return_value=httpx.Response(200, content=SRT_BODY))
        track = SubtitleTrack(
            "Chosen", "opensubtitles://40", "zh-CN", SubtitleFormat.SRT
        )

        downloaded = client.fetch_track(track)

        assert json.loads(link_route.calls.last.request.content) == {"file_id": 40}
        assert downloaded.track.url == "opensubtitles://40"
        assert downloaded.track.format == SubtitleFormat.SRT
        assert len(downloaded.items) == 2

    @pytest.mark.parametrize("url", ["assrt://40", "opensubtitles://abc"])
    def test_fetch_track_bad_reference(
        self, client: OpenSubtitlesClient, url: str
    ) -> None:
        with pytest.raises(ValueError):
            client.fetch_track(SubtitleTrack("x", url, "zh-CN", SubtitleFormat.SRT))


@pytest.mark.unit
class TestFindBest:
    def test_falls_through_failed_candidates(
        self, client: OpenSubtitlesClient, api: respx.MockRouter
    ) -> None:
        api.get(SEARCH_URL).mock(return_value=httpx.Response(200, json=SEARCH_PAYLOAD))
        api.post(DOWNLOAD_URL).mock(side_effect=_link_for)
        api.get(f"{FILES}/40").mock(return_value=httpx.Response(410))
        api.get(f"{FILES}/20").mock(return_value=httpx.Response(200, content=SRT_BODY))

        downloaded = client.find_best("Some Movie")

        assert downloaded.track.url == "opensubtitles://20"
        assert downloaded.track.language == "zh-CN"

    def test_only_top_candidates_tried(self, api: respx.MockRouter) -> None:
        api.get(SEARCH_URL).mock(return_value=httpx.Response(200, json=SEARCH_PAYLOAD))
        link_route = api.post(DOWNLOAD_URL).mock(side_effect=_link_for)
        api.get(url__startswith=FILES).mock(return_value=httpx.Response(200))

        with OpenSubtitlesClient("key", base_url=BASE, max_candidates=2) as source:
            with pytest.raises(AllCandidatesFailedError) as exc_info:
                source.find_best("Some Movie")

        assert [file_id for file_id, _ in exc_info.value.failures] == [40, 20]
        assert link_route.call_count == 2

    def test_quota_aborts_walk(
        self, client: OpenSubtitlesClient, api: respx.MockRouter
    ) -> None:
        api.get(SEARCH_URL).mock(return_value=httpx.Response(200, json=SEARCH_PAYLOAD))
        link_route = api.post(DOWNLOAD_URL).mock(return_value=httpx.Response(406))

        with pytest.raises(RateLimitedError):
            client.find_best("Some Movie")
        assert link_route.call_count == 1

    def test_rejected_key_aborts_walk(
        self, client: OpenSubtitlesClient, api: respx.MockRouter
    ) -> None:
        api.get(SEARCH_URL).mock(return_value=httpx.Response(200, json=SEARCH_PAYLOAD))
        link_route = api.post(DOWNLOAD_URL).mock(return_value=httpx.Response(401))

        with pytest.raises(InvalidCredentialError):
            client.find_best("Some Movie")
        assert link_route.call_count == 1
