import asyncio
import json

import pytest
from fakes import THREAD_URL, FailingExtractionProvider, FakeExtractionProvider

from f95catalog.errors import ErrorCategory, PipelineError
from f95catalog.schemas import GameData
from f95catalog.services.data_extractor import (
    StructuredDataExtractor,
    find_version,
    parse_extraction_response,
    strip_code_fences,
)
from f95catalog.services.page_extractor import ImageRef, LinkRef, RawPageArtifact


def _artifact(**overrides):
    values = dict(
        title="Sample Game - v1.0 [Dev]",
        url=THREAD_URL,
        content="Sample Game is a story driven game. Size: 1.5 GB. " * 10,
        images=(
            ImageRef("https://attachments.f95zone.to/2024/01/banner.png", "banner"),
            ImageRef("https://attachments.f95zone.to/2024/01/cover.jpg", "cover art"),
        ),
        links=(
            LinkRef("https://mega.nz/file/abc", "MEGA", "Win: MEGA - PIXELDRAIN"),
            LinkRef("https://pixeldrain.com/u/xyz", "PIXELDRAIN", "Win: MEGA - PIXELDRAIN"),
            LinkRef("https://example.com/patreon", "Download extras", "Download extras"),
            LinkRef("https://gofile.io/d/mac123", "GOFILE", "Mac: GOFILE v1.0.1", True),
        ),
    )
    values.update(overrides)
    return RawPageArtifact(**values)


def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


def test_parse_rejects_non_objects():
    with pytest.raises(ValueError):
        parse_extraction_response("[1, 2]")
    with pytest.raises(ValueError):
        parse_extraction_response("not json")


def test_find_version():
    assert find_version("Sample Game - v1.0 [Dev]") == "1.0"
    assert find_version("no version", "Game [v0.12.3]") == "0.12.3"
    assert find_version("Episode 4") is None


def test_primary_path_is_validated():
    reply = "```json\n" + json.dumps(
        {
            "game_name": "  Sample Game  ",
            "version": "1.0",
            "developer": "Dev",
            "cover_image": "/relative/cover.jpg",
            "description": "x" * 900,
            "tags": ["3DCG", "", 7, " Romance "],
            "download_links": [
                {"provider": "MEGA", "url": "https://mega.nz/file/abc", "platform": "Windows"},
                {"url": "https://gofile.io/d/q"},
                {"provider": "Broken", "url": "magnet:?xt=urn"},
                "junk",
            ],
            "file_size": "2 GB",
        }
    ) + "\n```"
    provider = FakeExtractionProvider(reply=reply)
    extractor = StructuredDataExtractor(provider, timeout_seconds=5)

    record = asyncio.run(extractor.extract(_artifact(), THREAD_URL))

    assert record.game_name == "Sample Game"
    assert record.original_url == THREAD_URL
    assert record.cover_image is None
    assert len(record.description) == 500
    assert record.tags == ["3DCG", "Romance"]
    assert [link.provider for link in record.download_links] == ["MEGA", "GoFile"]
    assert record.download_links[1].platform == "PC"
    assert record.download_links[1].version == "1.0"
    assert record.file_size == "2 GB"
    assert "Sample Game - v1.0 [Dev]" in provider.prompts[0]


def test_prompt_samples_are_bounded():
    provider = FakeExtractionProvider(reply="{}")
    extractor = StructuredDataExtractor(provider, max_content_chars=20, max_links=1, max_images=1)

    prompt = extractor.build_prompt(_artifact(), THREAD_URL)

    assert "Content: " + _artifact().content[:20] + "\n" in prompt
    assert "https://pixeldrain.com" not in prompt
    assert "cover.jpg" not in prompt


def test_forced_service_failure_uses_fallback():
    extractor = StructuredDataExtractor(FailingExtractionProvider())

    record = asyncio.run(extractor.extract(_artifact(), THREAD_URL))

    assert isinstance(record, GameData)
    assert "Sample Game" in record.game_name
    assert record.version == "1.0"
    assert record.developer == "Dev"
    assert record.cover_image == "https://attachments.f95zone.to/2024/01/cover.jpg"
    providers = [link.provider for link in record.download_links]
    assert providers == ["MEGA", "PixelDrain", "GoFile"]
    gofile = record.download_links[2]
    assert gofile.platform == "Mac"
    assert gofile.version == "1.0.1"
    assert record.description.endswith("...")
    assert len(record.description) == 203
    assert record.file_size == "1.5 GB"
    assert record.tags == []


def test_malformed_reply_uses_fallback():
    extractor = StructuredDataExtractor(FakeExtractionProvider(reply="Sure! Here is the data: {oops"))
    record = asyncio.run(extractor.extract(_artifact(), THREAD_URL))
    assert record.game_name == "Sample Game"


def test_slow_service_uses_fallback():
    class SlowProvider(FakeExtractionProvider):
        async def generate(self, prompt, temperature=None, max_tokens=None):
            await asyncio.sleep(1)
            return "{}"

    extractor = StructuredDataExtractor(SlowProvider(), timeout_seconds=0.01)
    record = asyncio.run(extractor.extract(_artifact(), THREAD_URL))
    assert record.version == "1.0"


def test_unconfigured_provider_is_skipped():
    provider = FakeExtractionProvider(reply="{}", configured=False)
    extractor = StructuredDataExtractor(provider)

    record = asyncio.run(extractor.extract(_artifact(), THREAD_URL))

    assert provider.prompts == []
    assert record.game_name == "Sample Game"


def test_fallback_on_bare_page_still_returns_valid_record():
    artifact = _artifact(title="", content="Just some text", images=(), links=())
    record = asyncio.run(StructuredDataExtractor(None).extract(artifact, THREAD_URL))

    assert record.game_name == "Unknown Game"
    assert record.version == "Unknown"
    assert record.download_links == []
    assert record.tags == []
    assert record.description == "Just some text"


def test_both_paths_failing_raises_extraction_error():
    extractor = StructuredDataExtractor(None)
    with pytest.raises(PipelineError) as info:
        asyncio.run(extractor.extract(None, THREAD_URL))
    assert info.value.category is ErrorCategory.EXTRACTION_SERVICE_FAILURE


def test_validate_never_raises():
    extractor = StructuredDataExtractor(None)

    minimal = extractor.validate("not a dict")
    assert minimal.game_name == "Unknown Game"
    assert minimal.download_links == []

    odd = extractor.validate({"game_name": 42, "tags": "action", "download_links": {"url": "x"}, "original_url": 5})
    assert odd.game_name == "Unknown Game"
    assert odd.tags == []
    assert odd.download_links == []
    assert odd.original_url == ""


def test_unexpected_provider_error_uses_fallback():
    provider = FakeExtractionProvider(error=RuntimeError("connection reset"))
    extractor = StructuredDataExtractor(provider)

    record = asyncio.run(extractor.extract(_artifact(), THREAD_URL))

    assert len(provider.prompts) == 1
    assert "Sample Game" in record.game_name
    assert record.version == "1.0"


def test_malformed_link_does_not_discard_record():
    extractor = StructuredDataExtractor(None)

    record = extractor.validate(
        {
            "game_name": "Sample Game",
            "version": "1.0",
            "download_links": [{"url": "https://mega.nz/file/abc"}, {"url": "http://[broken"}],
        }
    )

    assert record.game_name == "Sample Game"
    assert record.version == "1.0"
    assert [link.provider for link in record.download_links] == ["MEGA"]


def test_prompt_marks_spoiler_links():
    extractor = StructuredDataExtractor(FakeExtractionProvider(reply="{}"))

    prompt = extractor.build_prompt(_artifact(), THREAD_URL)

    assert '"from_spoiler": true' in prompt
    assert '"from_spoiler": false' in prompt
