"""Tests for SourceImporter (JSON documents, text files, samples, messages)."""

import json

import pytest

from digitalme.exceptions import ProfileSchemaError, ValidationError
from digitalme.models import SourceType
from digitalme.style.source_importer import SourceImporter


@pytest.fixture
def importer():
    return SourceImporter()


def _write_json(tmp_path, name, data):
    path = tmp_path / name
    path.write_text(json.dumps(data), encoding="utf-8")
    return str(path)


# =========================================================================
# JSON documents
# =========================================================================


class TestImportFromJson:

    @pytest.mark.asyncio
    async def test_key_aliases(self, importer, tmp_path):
        path = _write_json(
            tmp_path,
            "sources.json",
            [
                {"sourceType": "gmail", "rawText": "one two three", "sourceId": "m1"},
                {"source_type": "Blog", "text": "alpha beta", "wordCount": 900},
                {"sourceType": "github", "content": "readme words here now"},
                {"sourceType": "text", "body": "pasted", "metadata": {"origin": "paste"}},
            ],
        )

        docs = await importer.import_from_json(path)

        assert [d.source_type for d in docs] == [
            SourceType.GMAIL,
            SourceType.BLOG,
            SourceType.GITHUB,
            SourceType.TEXT,
        ]
        assert docs[0].source_id == "m1"
        assert docs[0].word_count == 3
        assert docs[1].word_count == 900
        assert docs[2].raw_text == "readme words here now"
        assert docs[3].metadata == {"origin": "paste"}
        assert len({d.source_id for d in docs}) == 4

    @pytest.mark.asyncio
    async def test_empty_text_skipped(self, importer, tmp_path):
        path = _write_json(
            tmp_path,
            "sources.json",
            [{"sourceType": "gmail", "rawText": "   "}, {"sourceType": "blog", "text": "kept"}],
        )
        docs = await importer.import_from_json(path)
        assert [d.raw_text for d in docs] == ["kept"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "data, match",
        [
            ({"sourceType": "gmail"}, "Expected JSON array"),
            (["not an object"], "expected object"),
            ([{"sourceType": "myspace", "text": "x"}], "unknown sourceType"),
            ([{"text": "x"}], "unknown sourceType"),
            ([{"sourceType": "blog", "text": "x", "wordCount": "many"}], "non-integer"),
            ([{"sourceType": "blog", "text": "x", "wordCount": -1}], "word_count must be >= 0"),
            ([{"sourceType": "blog", "text": "x", "metadata": []}], "metadata must be an object"),
            ([{"sourceType": "gmail", "emails": "inbox"}], "emails must be an array"),
            ([{"sourceType": "gmail", "emails": ["hi"]}], "emails must be an array"),
            (
                [
                    {"sourceType": "blog", "text": "x", "sourceId": "dup"},
                    {"sourceType": "gmail", "text": "y", "sourceId": "dup"},
                ],
                "Duplicate sourceId",
            ),
        ],
    )
    async def test_structural_problems_raise(self, importer, tmp_path, data, match):
        path = _write_json(tmp_path, "bad.json", data)
        with pytest.raises(ValidationError, match=match):
            await importer.import_from_json(path)

    @pytest.mark.asyncio
    async def test_gmail_text_cleaned_and_recounted(self, importer, tmp_path):
        """Quoted replies leave Gmail text and the adapter word count is replaced."""
        path = _write_json(
            tmp_path,
            "sources.json",
            [
                {
                    "sourceType": "gmail",
                    "rawText": "Ship it today, the numbers look right.\n\n"
                               "On Tue, Sam wrote:\n> can we ship?",
                    "wordCount": 500,
                },
                {"sourceType": "blog", "text": "Quoting:\n> a reader wrote this", "wordCount": 6},
            ],
        )

        docs = await importer.import_from_json(path)

        assert docs[0].raw_text == "Ship it today, the numbers look right."
        assert docs[0].word_count == 7
        assert docs[1].raw_text == "Quoting:\n> a reader wrote this"
        assert docs[1].word_count == 6

    @pytest.mark.asyncio
    async def test_gmail_emails_array(self, importer, tmp_path, clean_text):
        path = _write_json(
            tmp_path,
            "sources.json",
            [
                {
                    "sourceType": "gmail",
                    "sourceId": "inbox",
                    "metadata": {"account": "work"},
                    "emails": [
                        {"subject": "Roadmap", "body": clean_text(30) + "\n-- \nJane"},
                        {"subject": "Out of office", "body": clean_text(40, prefix="auto")},
                        {"subject": "Ok", "body": "Works for me."},
                        {"subject": "Hiring", "body": clean_text(25, prefix="hire")},
                    ],
                }
            ],
        )

        docs = await importer.import_from_json(path)

        assert len(docs) == 1
        assert docs[0].raw_text == clean_text(30) + "\n\n" + clean_text(25, prefix="hire")
        assert docs[0].word_count == 55
        assert docs[0].metadata == {
            "account": "work",
            "emailCleaning": {
                "total": 4,
                "filteredBySubject": 1,
                "filteredByContent": 1,
                "valid": 2,
            },
        }

    @pytest.mark.asyncio
    async def test_gmail_with_nothing_left_is_skipped(self, importer, tmp_path):
        path = _write_json(
            tmp_path,
            "sources.json",
            [
                {"sourceType": "gmail", "emails": [{"subject": "Re: hi", "body": "yes"}]},
                {"sourceType": "blog", "text": "kept"},
            ],
        )
        docs = await importer.import_from_json(path)
        assert [d.raw_text for d in docs] == ["kept"]

    @pytest.mark.asyncio
    async def test_missing_file(self, importer, tmp_path):
        with pytest.raises(FileNotFoundError):
            await importer.import_from_json(str(tmp_path / "missing.json"))


# =========================================================================
# Text files
# =========================================================================


class TestImportFromText:

    @pytest.mark.asyncio
    async def test_one_document_with_metadata(self, importer, tmp_path):
        path = tmp_path / "essay.txt"
        path.write_text(
            "First sentence is here. Second one follows!\n\nNew paragraph, with comma.",
            encoding="utf-8",
        )

        docs = await importer.import_from_text(str(path), SourceType.BLOG)

        assert len(docs) == 1
        assert docs[0].source_type is SourceType.BLOG
        assert docs[0].word_count == 11
        assert docs[0].metadata == {"file": "essay.txt", "sentences": 3, "paragraphs": 2}

    @pytest.mark.asyncio
    async def test_blank_file_yields_nothing(self, importer, tmp_path):
        path = tmp_path / "blank.txt"
        path.write_text("\n\n", encoding="utf-8")
        assert await importer.import_from_text(str(path)) == []

    @pytest.mark.asyncio
    async def test_missing_file(self, importer, tmp_path):
        with pytest.raises(FileNotFoundError):
            await importer.import_from_text(str(tmp_path / "nope.txt"))


# =========================================================================
# Samples
# =========================================================================


@pytest.mark.asyncio
async def test_load_samples(importer, tmp_path, make_sample):
    """Samples written with to_dict() load back unchanged."""
    samples = [make_sample(SourceType.GMAIL, 700), make_sample(SourceType.BLOG, 300)]
    path = _write_json(tmp_path, "samples.json", [s.to_dict() for s in samples])

    assert await importer.load_samples(path) == samples


@pytest.mark.asyncio
async def test_load_samples_reports_path(importer, tmp_path, make_sample):
    """A malformed sample names its position in the file."""
    good = make_sample().to_dict()
    bad = dict(good)
    del bad["basic"]
    path = _write_json(tmp_path, "samples.json", [good, bad])

    with pytest.raises(ProfileSchemaError) as exc_info:
        await importer.load_samples(path)

    assert exc_info.value.path.startswith("samples[1]")


@pytest.mark.asyncio
async def test_load_samples_needs_array(importer, tmp_path):
    path = _write_json(tmp_path, "samples.json", {"samples": []})
    with pytest.raises(ValidationError):
        await importer.load_samples(path)


# =========================================================================
# Messages
# =========================================================================


@pytest.mark.asyncio
async def test_load_messages_json_items_untouched(importer, tmp_path):
    """JSON items come back as-is so batch validation can flag bad ones."""
    path = _write_json(tmp_path, "batch.json", ["hello there", 42, ""])
    assert await importer.load_messages(path) == ["hello there", 42, ""]


@pytest.mark.asyncio
async def test_load_messages_json_must_be_array(importer, tmp_path):
    path = _write_json(tmp_path, "batch.json", {"messages": ["x"]})
    with pytest.raises(ValidationError, match="array of messages"):
        await importer.load_messages(path)


@pytest.mark.asyncio
async def test_load_messages_text_blocks(importer, tmp_path):
    path = tmp_path / "batch.txt"
    path.write_text(
        "First message\nstill first.\n\n  \nSecond message.\n\n\nThird.\n", encoding="utf-8"
    )
    assert await importer.load_messages(str(path)) == [
        "First message\nstill first.",
        "Second message.",
        "Third.",
    ]


@pytest.mark.asyncio
async def test_load_messages_missing_file(importer, tmp_path):
    with pytest.raises(FileNotFoundError):
        await importer.load_messages(str(tmp_path / "batch.txt"))
