"""
Source Importer for the DigitalMe style engine.

Loads source-adapter output and refinement batches from local files.

Supported inputs:
    - **JSON documents** -- an array of adapter documents::

        {
            "sourceType": "gmail",      # required
            "rawText": "...",           # or "text" / "content" / "body"
            "wordCount": 1240,          # defaults to the counted words
            "metadata": {...},          # optional
            "sourceId": "...",          # optional, generated when absent
            "emails": [{"subject": "...", "body": "..."}]   # gmail only
        }

      Gmail text is reduced to the author's own writing: quoted replies,
      signatures and disclaimers are cut, and when an ``emails`` array is
      given, automated mail and bodies under 20 words are dropped. Cleaned
      documents get a recounted ``wordCount``.

    - **Plain text** -- one file becomes one document of a given type.
    - **Messages** -- a JSON array of strings, or plain text with messages
      separated by blank lines.
    - **Samples** -- a JSON array of already-extracted ``StyleSample``
      objects, for building without calling the extractor.

Error philosophy: empty documents are filtered out with warnings, but
structural problems in a file raise immediately.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List

from digitalme.exceptions import ValidationError
from digitalme.models import SourceDocument, SourceType, StyleSample
from digitalme.style.text_preprocessor import (
    clean_email_batch,
    clean_email_text,
    count_words,
    extract_metadata,
)
from digitalme.utils import generate_id

logger = logging.getLogger("SourceImporter")

_TEXT_KEYS = ("rawText", "text", "content", "body")


def _read_json(file_path: str) -> Any:
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


class SourceImporter:
    """Reads source documents, samples and message batches from disk."""

    # ------------------------------------------------------------------
    # DOCUMENTS
    # ------------------------------------------------------------------

    async def import_from_json(self, file_path: str) -> List[SourceDocument]:
        """Import adapter documents from a JSON array.

        Raises:
            FileNotFoundError: If the file does not exist.
            ValidationError: If the file is not an array, or an item has
                no valid ``sourceType``.
            json.JSONDecodeError: If the file is not valid JSON.
        """
        logger.info("Importing sources from JSON file: %s", file_path)
        data = _read_json(file_path)
        if not isinstance(data, list):
            raise ValidationError(
                f"Expected JSON array of source documents, got {type(data).__name__}. "
                f"File: {file_path}"
            )

        documents: List[SourceDocument] = []
        for index, item in enumerate(data):
            if not isinstance(item, dict):
                raise ValidationError(
                    f"Source #{index} in {file_path} is {type(item).__name__}, expected object"
                )
            documents.append(self._normalize_document(item, index))

        validated = self._validate_documents(documents)
        logger.info(
            "Imported %d sources from JSON (%d after validation)",
            len(documents),
            len(validated),
        )
        return validated

    async def import_from_text(
        self, file_path: str, source_type: SourceType = SourceType.TEXT
    ) -> List[SourceDocument]:
        """Import a whole text file as one document."""
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Text file not found: {file_path}")
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()

        stats = extract_metadata(text)
        document = SourceDocument(
            source_type=source_type,
            raw_text=text,
            word_count=stats.word_count,
            metadata={
                "file": path.name,
                "sentences": stats.sentence_count,
                "paragraphs": stats.paragraph_count,
            },
        )
        return self._validate_documents([document])

    def _normalize_document(self, item: Dict[str, Any], index: int) -> SourceDocument:
        """Map alternative key names onto a ``SourceDocument``."""
        raw_type = item.get("sourceType", item.get("source_type"))
        try:
            source_type = SourceType(str(raw_type).lower())
        except ValueError:
            raise ValidationError(
                f"Source #{index} has unknown sourceType {raw_type!r}; expected one of "
                f"{[t.value for t in SourceType]}"
            ) from None

        text = next((item[k] for k in _TEXT_KEYS if isinstance(item.get(k), str)), "")
        word_count = item.get("wordCount", item.get("word_count"))
        if word_count is not None and (
            isinstance(word_count, bool) or not isinstance(word_count, int)
        ):
            raise ValidationError(f"Source #{index} has non-integer wordCount {word_count!r}")

        metadata = item.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ValidationError(f"Source #{index} metadata must be an object")
        metadata = dict(metadata)

        if source_type is SourceType.GMAIL:
            cleaned = self._clean_gmail(item, text, index, metadata)
            if cleaned != text.strip():
                # Adapter counts describe the uncleaned text.
                text, word_count = cleaned, None
        if word_count is None:
            word_count = count_words(text)

        return SourceDocument(
            source_type=source_type,
            raw_text=text,
            word_count=word_count,
            metadata=metadata,
            source_id=str(item.get("sourceId") or item.get("id") or generate_id()),
        )

    def _clean_gmail(
        self, item: Dict[str, Any], text: str, index: int, metadata: Dict[str, Any]
    ) -> str:
        """Reduce a Gmail source to the author's own writing.

        An ``emails`` array of ``{subject, body}`` objects gets the full
        pass (automated mail and thin bodies dropped). Otherwise the text
        is treated as a single message body.
        """
        emails = item.get("emails")
        if emails is None:
            return clean_email_text(text)
        if not isinstance(emails, list) or not all(isinstance(e, dict) for e in emails):
            raise ValidationError(f"Source #{index} emails must be an array of objects")

        bodies, stats = clean_email_batch(emails)
        metadata["emailCleaning"] = stats.to_dict()
        logger.info(
            "Gmail source #%d: kept %d of %d emails (%d automated, %d too thin)",
            index,
            stats.valid,
            stats.total,
            stats.filtered_by_subject,
            stats.filtered_by_content,
        )
        return "\n\n".join(bodies)

    def _validate_documents(self, documents: List[SourceDocument]) -> List[SourceDocument]:
        valid: List[SourceDocument] = []
        seen: set = set()
        for doc in documents:
            if not doc.raw_text.strip():
                logger.warning(
                    "Skipping %s source %s: empty text", doc.source_type.value, doc.source_id
                )
                continue
            if doc.source_id in seen:
                raise ValidationError(f"Duplicate sourceId '{doc.source_id}'")
            seen.add(doc.source_id)
            valid.append(doc)
        return valid

    # ------------------------------------------------------------------
    # SAMPLES
    # ------------------------------------------------------------------

    async def load_samples(self, file_path: str) -> List[StyleSample]:
        """Load pre-extracted samples.

        Raises:
            ProfileSchemaError: If any sample has the wrong shape.
        """
        data = _read_json(file_path)
        if not isinstance(data, list):
            raise ValidationError(
                f"Expected JSON array of samples, got {type(data).__name__}. File: {file_path}"
            )
        samples = [StyleSample.from_dict(item, f"samples[{i}]") for i, item in enumerate(data)]
        logger.info("Loaded %d samples from %s", len(samples), file_path)
        return samples

    # ------------------------------------------------------------------
    # MESSAGES
    # ------------------------------------------------------------------

    async def load_messages(self, file_path: str) -> List[Any]:
        """Load a refinement batch.

        ``.json`` files must hold an array; the items are returned as-is so
        that batch validation can report every bad entry. Anything else is
        read as text, one message per blank-line-separated block.
        """
        path = Path(file_path)
        if path.suffix.lower() == ".json":
            data = _read_json(file_path)
            if not isinstance(data, list):
                raise ValidationError(
                    f"Expected JSON array of messages, got {type(data).__name__}. "
                    f"File: {file_path}"
                )
            return data

        if not path.exists():
            raise FileNotFoundError(f"Messages file not found: {file_path}")
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
        messages = [block.strip() for block in re.split(r"\n\s*\n", text) if block.strip()]
        logger.info("Loaded %d messages from %s", len(messages), file_path)
        return messages


__all__ = [
    "SourceImporter",
]
