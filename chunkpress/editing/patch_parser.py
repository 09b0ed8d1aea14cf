"""
Patch parser — decodes the model's response into a :class:`PatchResult`.

Two wire formats are accepted, selected by configuration:

``xml``  (tag form)::

    <file path="src/a.py" parts="3"><part id="2"><![CDATA[...]]></part></file>
    <new_file path="src/b.py"><![CDATA[...]]></new_file>
    <response><![CDATA[free text]]></response>

``json`` (structured form)::

    {"updated_files": [{"file_path": ..., "parts": [{"part_id": 2, "content": ...}]}],
     "new_files": [{"file_path": ..., "content": ...}],
     "response": "free text"}

Both decoders are independent and produce the same result shape, so the
applier never needs to know which format produced a patch.
"""

from __future__ import annotations

import enum
import json
import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Iterator, Union

from ..errors import PatchFormatError
from .models import NewFile, Part, PatchResult, UpdatedFile

logger = logging.getLogger(__name__)

_ROOT_TAG = "press_response"
_FENCE = re.compile(r"^\s*```[\w-]*\s*\n(.*?)\n\s*```\s*$", re.DOTALL)
# Tags understood by the patch and part-selection decoders
KNOWN_TAGS = ("file", "new_file", "part", "response", "parts_to_edit",
              "preprocessor_prompt")
_MARKUP = re.compile(
    r"<!\[CDATA\[.*?\]\]>|</?(?:%s)\b[^<>]*>" % "|".join(KNOWN_TAGS),
    re.DOTALL,
)
_BARE_AMP = re.compile(r"&(?!(?:amp|lt|gt|quot|apos|#\d+|#x[0-9A-Fa-f]+);)")
# Part id used when an id attribute is missing or not a number; never applied.
INVALID_PART_ID = 0


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def strip_code_fence(text: str) -> str:
    """Remove a single markdown code fence wrapping the whole response."""
    m = _FENCE.match(text)
    return m.group(1) if m else text


def parse_part_id(value) -> int:
    """Parse a part id, falling back to the invalid sentinel ``0``."""
    try:
        part_id = int(str(value).strip())
    except (TypeError, ValueError):
        logger.warning("[Patch] Unparseable part id %r, using sentinel 0", value)
        return INVALID_PART_ID
    return part_id if part_id > 0 else INVALID_PART_ID


def _trim_body(text: str) -> str:
    """Drop the single newline that usually follows ``<![CDATA[`` and
    precedes ``]]>``; indentation is preserved."""
    if text.startswith("\r\n"):
        text = text[2:]
    elif text.startswith("\n"):
        text = text[1:]
    if text.endswith("\r\n"):
        text = text[:-2]
    elif text.endswith("\n"):
        text = text[:-1]
    return text


def _merge_updated(updated: list[UpdatedFile], entry: UpdatedFile) -> None:
    """Fold *entry* into *updated*; a later part with the same id wins."""
    for existing in updated:
        if existing.file_path == entry.file_path:
            by_id = {p.part_id: p for p in existing.parts}
            for part in entry.parts:
                by_id[part.part_id] = part
            existing.parts = list(by_id.values())
            return
    updated.append(entry)


# ---------------------------------------------------------------------------
# Tag tokenizer: the response as a flat event stream
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TagOpen:
    name: str
    attrs: dict


@dataclass(frozen=True)
class TagText:
    text: str


@dataclass(frozen=True)
class TagClose:
    name: str


TagEvent = Union[TagOpen, TagText, TagClose]


class TagStreamError(Exception):
    """Raised by :func:`iter_tag_events` when the markup stops being
    well-formed.  Events before the failure have already been yielded."""


def escape_stray_markup(text: str) -> str:
    """Escape every ``&``, ``<`` and ``>`` outside the recognized tags and
    CDATA sections.

    Prose, unknown tags and unwrapped code then reach the parser as plain
    text instead of breaking the whole document.
    """
    out: list[str] = []
    pos = 0
    for m in _MARKUP.finditer(text):
        out.append(_escape_text(text[pos:m.start()]))
        token = m.group(0)
        out.append(token if token.startswith("<![CDATA[")
                   else _BARE_AMP.sub("&amp;", token))
        pos = m.end()
    out.append(_escape_text(text[pos:]))
    return "".join(out)


def _escape_text(text: str) -> str:
    return (_BARE_AMP.sub("&amp;", text)
            .replace("<", "&lt;").replace(">", "&gt;"))


def _drain(parser: ET.XMLPullParser) -> Iterator[TagEvent]:
    for event, elem in parser.read_events():
        if elem.tag == _ROOT_TAG:
            continue
        if event == "start":
            yield TagOpen(elem.tag, dict(elem.attrib))
            continue
        if len(elem) == 0 and elem.text:
            yield TagText(elem.text)
        yield TagClose(elem.tag)


def iter_tag_events(text: str) -> Iterator[TagEvent]:
    """Yield open/text/close events for the tags in *text*.

    The response is wrapped in a synthetic root so several top-level
    elements and stray prose between them are accepted.  Text is reported
    for leaf elements only, just before their close event.
    """
    parser = ET.XMLPullParser(events=("start", "end"))
    body = escape_stray_markup(strip_code_fence(text))
    parser.feed(f"<{_ROOT_TAG}>{body}</{_ROOT_TAG}>")
    error: ET.ParseError | None = None
    try:
        yield from _drain(parser)
        # expat may hold back the last tokens until the stream is closed
        try:
            parser.close()
        except ET.ParseError as exc:
            error = exc
        yield from _drain(parser)
    except ET.ParseError as exc:
        error = exc
    if error is not None:
        raise TagStreamError(str(error)) from error


# ---------------------------------------------------------------------------
# Tag-form decoder (state machine)
# ---------------------------------------------------------------------------

class _State(enum.Enum):
    IDLE = "idle"
    IN_FILE_BODY = "in_file_body"
    IN_PART_BODY = "in_part_body"
    IN_FREE_TEXT = "in_free_text"


@dataclass
class _FileBuffer:
    path: str | None
    is_new: bool
    parts: list[Part] = field(default_factory=list)
    body: list[str] = field(default_factory=list)


class XmlPatchDecoder:
    """Single forward pass over the tag stream.

    ``<file>`` carries replacement parts for an existing file,
    ``<new_file>`` carries literal content (directly or inside parts),
    ``<response>`` carries free text.  Unknown tags reach the
    decoder as plain text.
    """

    FILE_TAG = "file"
    NEW_FILE_TAG = "new_file"
    PART_TAG = "part"
    FREE_TEXT_TAG = "response"

    def __init__(self) -> None:
        self._reset()

    def _reset(self) -> None:
        self._state = _State.IDLE
        self._file: _FileBuffer | None = None
        self._part: Part | None = None
        self._part_depth = 0
        self._part_malformed = False
        self._free_text: list[str] = []
        self._text_parts: list[str] = []
        self._result = PatchResult()
        self._constructs = 0

    def decode(self, text: str) -> PatchResult:
        self._reset()
        try:
            for event in iter_tag_events(text):
                self._dispatch(event)
        except TagStreamError as exc:
            if self._constructs == 0:
                raise PatchFormatError(
                    f"Response is not well-formed tag markup: {exc}") from exc
            logger.warning(
                "[Patch] Response truncated or malformed after %d complete "
                "blocks, keeping those: %s", self._constructs, exc,
            )

        self._result.free_text = "\n".join(t for t in self._free_text if t)
        return self._result

    # ── event dispatch ──

    def _dispatch(self, event: TagEvent) -> None:
        if self._state is _State.IDLE:
            self._on_idle(event)
        elif self._state is _State.IN_FILE_BODY:
            self._on_file_body(event)
        elif self._state is _State.IN_PART_BODY:
            self._on_part_body(event)
        else:
            self._on_free_text(event)

    def _on_idle(self, event: TagEvent) -> None:
        if not isinstance(event, TagOpen):
            return
        if event.name in (self.FILE_TAG, self.NEW_FILE_TAG):
            path = (event.attrs.get("path") or "").strip() or None
            self._file = _FileBuffer(path=path,
                                     is_new=event.name == self.NEW_FILE_TAG)
            self._state = _State.IN_FILE_BODY
        elif event.name == self.FREE_TEXT_TAG:
            self._text_parts = []
            self._state = _State.IN_FREE_TEXT

    def _on_file_body(self, event: TagEvent) -> None:
        if self._file is None:
            return
        if isinstance(event, TagOpen) and event.name == self.PART_TAG:
            self._part = Part(part_id=parse_part_id(event.attrs.get("id")),
                              content="")
            self._part_depth = 0
            self._part_malformed = False
            self._state = _State.IN_PART_BODY
        elif isinstance(event, TagText):
            self._file.body.append(event.text)
        elif isinstance(event, TagClose) and event.name in (
                self.FILE_TAG, self.NEW_FILE_TAG):
            self._finish_file()

    def _on_part_body(self, event: TagEvent) -> None:
        if self._part is None or self._file is None:
            return
        if isinstance(event, TagOpen):
            # A recognized tag inside a part body means the part is broken
            self._part_depth += 1
            self._part_malformed = True
        elif isinstance(event, TagText):
            self._part.content += event.text
        elif isinstance(event, TagClose):
            if self._part_depth:
                self._part_depth -= 1
                return
            if event.name != self.PART_TAG:
                return
            if self._part_malformed:
                logger.warning("[Patch] Dropping part %d of %s: nested tags "
                               "in part body", self._part.part_id,
                               self._file.path)
            else:
                self._part.content = _trim_body(self._part.content)
                self._file.parts.append(self._part)
            self._part = None
            self._state = _State.IN_FILE_BODY

    def _on_free_text(self, event: TagEvent) -> None:
        if isinstance(event, TagText):
            self._text_parts.append(_trim_body(event.text))
        elif isinstance(event, TagClose) and event.name == self.FREE_TEXT_TAG:
            self._free_text.append("\n".join(self._text_parts))
            self._text_parts = []
            self._constructs += 1
            self._state = _State.IDLE

    def _finish_file(self) -> None:
        buf = self._file
        self._file = None
        self._state = _State.IDLE
        if buf is None or not buf.path:
            logger.warning("[Patch] Skipping file block without a path")
            return

        self._constructs += 1
        if buf.is_new:
            if buf.parts:
                content = "\n".join(p.content for p in buf.parts)
            else:
                content = _trim_body("".join(buf.body))
            self._result.created.append(NewFile(file_path=buf.path,
                                                content=content))
        else:
            _merge_updated(self._result.updated,
                           UpdatedFile(file_path=buf.path, parts=buf.parts))


# ---------------------------------------------------------------------------
# Structured-form decoder
# ---------------------------------------------------------------------------

def load_json_object(text: str) -> dict:
    """Decode a JSON object from a model response.

    Tolerates a code fence and prose around the object.  Raises
    :class:`PatchFormatError` when no object can be decoded.
    """
    body = strip_code_fence(text).strip()
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        start, end = body.find("{"), body.rfind("}")
        if start == -1 or end <= start:
            raise PatchFormatError("Response contains no JSON object")
        try:
            data = json.loads(body[start:end + 1])
        except json.JSONDecodeError as exc:
            raise PatchFormatError(f"Response is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise PatchFormatError(
            f"Expected a JSON object, got {type(data).__name__}")
    return data


class JsonPatchDecoder:
    """Decoder for the structured (object/array) response form."""

    def decode(self, text: str) -> PatchResult:
        data = load_json_object(text)
        result = PatchResult()

        for entry in data.get("updated_files") or []:
            if not isinstance(entry, dict) or not entry.get("file_path"):
                logger.warning("[Patch] Skipping malformed updated_files entry")
                continue
            parts = []
            for raw in entry.get("parts") or []:
                if not isinstance(raw, dict):
                    continue
                parts.append(Part(part_id=parse_part_id(raw.get("part_id")),
                                  content=str(raw.get("content", ""))))
            _merge_updated(result.updated,
                           UpdatedFile(file_path=str(entry["file_path"]),
                                       parts=parts))

        for entry in data.get("new_files") or []:
            if not isinstance(entry, dict) or not entry.get("file_path"):
                logger.warning("[Patch] Skipping malformed new_files entry")
                continue
            result.created.append(NewFile(file_path=str(entry["file_path"]),
                                          content=str(entry.get("content", ""))))

        response = data.get("response")
        if isinstance(response, str):
            result.free_text = response
        return result


DECODERS = {
    "xml": XmlPatchDecoder,
    "json": JsonPatchDecoder,
}


def parse_patch(response: str, fmt: str = "xml") -> PatchResult:
    """Decode *response* with the decoder registered for *fmt*."""
    try:
        decoder = DECODERS[fmt]()
    except KeyError:
        raise ValueError(f"Unknown response format: {fmt!r}") from None
    result = decoder.decode(response)
    logger.info(
        "[Patch] Parsed %d updated, %d new files (free text: %s)",
        len(result.updated), len(result.created),
        "yes" if result.free_text else "no",
    )
    if result.is_empty:
        logger.warning("[Patch] Response contained no recognizable edits")
    return result
