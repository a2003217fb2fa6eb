"""
Answer codec.

The single place where question options, answer keys and student responses
are converted between their stored representation and the canonical Python
values the grading engine works with.

Stored representation:
    options    -> JSON column (lists / objects)
    answer key -> text column (``correct_answer``), plus the JSON list column
                  ``correct_answers`` for multiple-choice questions with more
                  than one correct letter
    response   -> text column (``answer_text``), or the ``selected_option`` /
                  ``selected_options`` columns for multiple choice

Canonical values per question type:
    multiple_choice  options: [str]            key/response: "B" | frozenset({"A", "C"})
    fill_blank       key/response: [str] (pipe-delimited when stored)
    matching         options/key: [MatchPair]  response: {left_index: right}
    ranking          options/key/response: [str]
    drag_drop        options: DragDropLayout   key: [DropZone]  response: {zone: [item]}
    short_answer / essay / stem
                     key: reference text or None   response: str

Decoding raises ``MalformedAnswerError`` for structural problems. Decoders
are lenient about the legacy shapes older rows were written in; encoders
always produce the current shape, so ``decode(encode(x)) == x``. The one
exception is an empty fill-blank response, which comes back as a single
empty blank.
"""
import json
import string
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Union

from exams.exceptions import MalformedAnswerError
from .types import QuestionType

BLANK_DELIMITER = '|'
LETTERS = string.ascii_uppercase

Selection = Union[str, FrozenSet[str]]


@dataclass(frozen=True)
class MatchPair:
    left: str
    right: str


@dataclass
class DragDropLayout:
    zones: List[str] = field(default_factory=list)
    items: List[str] = field(default_factory=list)


@dataclass
class DropZone:
    zone: str
    items: List[str] = field(default_factory=list)


def letter_to_index(letter: str) -> int:
    return ord(letter.upper()) - ord('A')


def index_to_letter(index: int) -> str:
    if not 0 <= index < len(LETTERS):
        raise MalformedAnswerError(f"Option index {index} is out of range.")
    return LETTERS[index]


def _load_json(raw, what):
    """Parse ``raw`` if it is a JSON string; pass already-parsed values through."""
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise MalformedAnswerError(f"{what} is not valid JSON: {exc}")


def _is_blank(raw) -> bool:
    return raw is None or (isinstance(raw, str) and not raw.strip())


def _string_list(value, what) -> List[str]:
    if not isinstance(value, (list, tuple)):
        raise MalformedAnswerError(f"{what} must be a list.")
    result = []
    for item in value:
        if isinstance(item, (dict, list)):
            raise MalformedAnswerError(f"{what} must contain only text values.")
        result.append('' if item is None else str(item))
    return result


class AnswerFormat(ABC):
    """Per-question-type conversion strategy."""
    question_type = None

    def decode_options(self, raw):
        return None

    def encode_options(self, options):
        return None

    @abstractmethod
    def decode_key(self, raw):
        pass

    @abstractmethod
    def encode_key(self, key) -> str:
        pass

    @abstractmethod
    def decode_response(self, raw):
        pass

    @abstractmethod
    def encode_response(self, response) -> str:
        pass

    def is_empty(self, response) -> bool:
        return not response

    @abstractmethod
    def render_response(self, response, options=None) -> str:
        pass


# =============================================================================
# MULTIPLE CHOICE
# =============================================================================

class MultipleChoiceFormat(AnswerFormat):
    question_type = QuestionType.MULTIPLE_CHOICE

    def decode_options(self, raw) -> List[str]:
        if raw is None:
            return []
        return _string_list(_load_json(raw, "Options"), "Options")

    def encode_options(self, options) -> List[str]:
        return list(options)

    def _letter(self, value) -> str:
        if isinstance(value, bool):
            raise MalformedAnswerError(f"'{value}' is not an option letter.")
        if isinstance(value, int):
            return index_to_letter(value)
        if isinstance(value, str):
            value = value.strip()
            if value.isdigit():
                return index_to_letter(int(value))
            if len(value) == 1 and value.upper() in LETTERS:
                return value.upper()
        raise MalformedAnswerError(f"'{value}' is not an option letter.")

    def _selection(self, raw) -> Optional[Selection]:
        if _is_blank(raw):
            return None
        if isinstance(raw, str) and raw.strip().startswith('['):
            raw = _load_json(raw, "Selection")
        if isinstance(raw, (list, tuple, set, frozenset)):
            return frozenset(self._letter(v) for v in raw)
        return self._letter(raw)

    def _encode_selection(self, value: Optional[Selection]) -> str:
        if value is None:
            return ''
        if isinstance(value, frozenset):
            return json.dumps(sorted(value))
        return value

    decode_key = _selection
    decode_response = _selection
    encode_key = _encode_selection
    encode_response = _encode_selection

    def key_from_columns(self, correct_answer, correct_answers) -> Optional[Selection]:
        if correct_answers:
            return self.decode_key(list(correct_answers))
        return self.decode_key(correct_answer)

    def key_to_columns(self, key: Optional[Selection]) -> Dict[str, Any]:
        if isinstance(key, frozenset):
            return {'correct_answer': '', 'correct_answers': sorted(key)}
        return {'correct_answer': key or '', 'correct_answers': None}

    def response_from_columns(self, selected_option, selected_options, answer_text='') -> Optional[Selection]:
        if selected_options:
            return self.decode_response(list(selected_options))
        if not _is_blank(selected_option):
            return self.decode_response(selected_option)
        return self.decode_response(answer_text)

    def response_to_columns(self, response: Optional[Selection]) -> Dict[str, Any]:
        if isinstance(response, frozenset):
            return {'selected_option': '', 'selected_options': sorted(response), 'answer_text': ''}
        return {'selected_option': response or '', 'selected_options': None, 'answer_text': ''}

    def render_response(self, response, options=None) -> str:
        if self.is_empty(response):
            return "(no answer)"
        options = options or []
        letters = sorted(response) if isinstance(response, frozenset) else [response]
        rendered = []
        for letter in letters:
            index = letter_to_index(letter)
            if 0 <= index < len(options):
                rendered.append(f"{letter}. {options[index]}")
            else:
                rendered.append(letter)
        return '; '.join(rendered)


# =============================================================================
# FILL IN THE BLANK
# =============================================================================

class FillBlankFormat(AnswerFormat):
    question_type = QuestionType.FILL_BLANK

    def _blanks(self, raw, what) -> List[str]:
        if raw is None:
            return []
        if isinstance(raw, str):
            return raw.split(BLANK_DELIMITER)
        if isinstance(raw, dict):
            # {"0": "Paris", "2": "1889"} as sent by per-blank inputs
            try:
                positions = {int(k): v for k, v in raw.items()}
            except (TypeError, ValueError):
                raise MalformedAnswerError(f"{what} blank positions must be integers.")
            if not positions:
                return []
            size = max(positions) + 1
            return ['' if positions.get(i) is None else str(positions[i]) for i in range(size)]
        return _string_list(raw, what)

    def decode_key(self, raw) -> List[str]:
        # an empty column means no key, not a key with one empty blank
        if raw == '':
            return []
        return self._blanks(raw, "Answer key")

    def decode_response(self, raw) -> List[str]:
        """An empty string is one empty blank; ``[]`` and ``['']`` both store as ''."""
        return self._blanks(raw, "Response")

    def encode_key(self, key) -> str:
        return BLANK_DELIMITER.join(key)

    encode_response = encode_key

    def is_empty(self, response) -> bool:
        return not any(blank.strip() for blank in response or [])

    def render_response(self, response, options=None) -> str:
        if self.is_empty(response):
            return "(no answer)"
        return ', '.join(f"Blank {i}: {blank or '(empty)'}" for i, blank in enumerate(response, start=1))


# =============================================================================
# MATCHING
# =============================================================================

class MatchingFormat(AnswerFormat):
    question_type = QuestionType.MATCHING

    def _pairs(self, raw, what) -> List[MatchPair]:
        if _is_blank(raw):
            return []
        value = _load_json(raw, what)
        if isinstance(value, dict):
            return [MatchPair(str(left), str(right)) for left, right in value.items()]
        if not isinstance(value, list):
            raise MalformedAnswerError(f"{what} must be a list of pairs.")
        pairs = []
        for item in value:
            if isinstance(item, dict) and 'left' in item and 'right' in item:
                pairs.append(MatchPair(str(item['left']), str(item['right'])))
            elif isinstance(item, str) and '|' in item:
                left, right = item.split('|', 1)
                pairs.append(MatchPair(left, right))
            else:
                raise MalformedAnswerError(f"{what} contains an invalid pair: {item!r}")
        return pairs

    def decode_options(self, raw) -> List[MatchPair]:
        return self._pairs(raw, "Options")

    def encode_options(self, options) -> List[Dict[str, str]]:
        return [{'left': p.left, 'right': p.right} for p in options]

    def decode_key(self, raw) -> List[MatchPair]:
        return self._pairs(raw, "Answer key")

    def encode_key(self, key) -> str:
        return json.dumps(self.encode_options(key))

    def decode_response(self, raw) -> Dict[int, str]:
        if _is_blank(raw):
            return {}
        value = _load_json(raw, "Response")
        if isinstance(value, list):
            value = {i: v for i, v in enumerate(value)}
        if not isinstance(value, dict):
            raise MalformedAnswerError("Matching response must map left items to choices.")
        try:
            return {int(k): str(v) for k, v in value.items() if v is not None}
        except (TypeError, ValueError):
            raise MalformedAnswerError("Matching response keys must be left-item positions.")

    def encode_response(self, response) -> str:
        return json.dumps({str(k): response[k] for k in sorted(response)})

    def render_response(self, response, options=None) -> str:
        if self.is_empty(response):
            return "(no answer)"
        pairs = options or []
        lines = []
        size = max(len(pairs), max(response) + 1)
        for index in range(size):
            left = pairs[index].left if index < len(pairs) else f"Item {index + 1}"
            lines.append(f"{left} -> {response.get(index, '(no match)')}")
        return '\n'.join(lines)


# =============================================================================
# RANKING
# =============================================================================

class RankingFormat(AnswerFormat):
    question_type = QuestionType.RANKING

    def _items(self, raw, what) -> List[str]:
        if _is_blank(raw):
            return []
        return _string_list(_load_json(raw, what), what)

    def decode_options(self, raw) -> List[str]:
        return self._items(raw, "Options")

    def encode_options(self, options) -> List[str]:
        return list(options)

    def decode_key(self, raw) -> List[str]:
        return self._items(raw, "Answer key")

    def decode_response(self, raw) -> List[str]:
        return self._items(raw, "Response")

    def encode_key(self, key) -> str:
        return json.dumps(list(key))

    encode_response = encode_key

    def render_response(self, response, options=None) -> str:
        if self.is_empty(response):
            return "(no answer)"
        return '\n'.join(f"{i}. {item}" for i, item in enumerate(response, start=1))


# =============================================================================
# DRAG AND DROP
# =============================================================================

class DragDropFormat(AnswerFormat):
    question_type = QuestionType.DRAG_DROP

    def _zone_name(self, zone) -> str:
        if isinstance(zone, dict):
            zone = zone.get('zone')
        if not isinstance(zone, str):
            raise MalformedAnswerError(f"Invalid drop zone: {zone!r}")
        return zone

    def decode_options(self, raw) -> DragDropLayout:
        if _is_blank(raw):
            return DragDropLayout()
        value = _load_json(raw, "Options")
        if not isinstance(value, dict):
            raise MalformedAnswerError("Drag and drop options must define zones and items.")
        zones = [self._zone_name(z) for z in value.get('zones') or []]
        return DragDropLayout(zones=zones, items=_string_list(value.get('items') or [], "Items"))

    def encode_options(self, options) -> Dict[str, List[str]]:
        return {'zones': list(options.zones), 'items': list(options.items)}

    def _zones(self, value, what) -> List[DropZone]:
        if not isinstance(value, list):
            raise MalformedAnswerError(f"{what} zones must be a list.")
        zones = []
        for entry in value:
            if not isinstance(entry, dict):
                raise MalformedAnswerError(f"{what} contains an invalid zone: {entry!r}")
            zones.append(DropZone(self._zone_name(entry), _string_list(entry.get('items') or [], "Zone items")))
        return zones

    def decode_key(self, raw) -> List[DropZone]:
        if _is_blank(raw):
            return []
        value = _load_json(raw, "Answer key")
        if isinstance(value, dict):
            value = value.get('zones', [])
        return self._zones(value, "Answer key")

    def encode_key(self, key) -> str:
        return json.dumps({'zones': [{'zone': z.zone, 'items': list(z.items)} for z in key]})

    def decode_response(self, raw) -> Dict[str, List[str]]:
        if _is_blank(raw):
            return {}
        value = _load_json(raw, "Response")
        if not isinstance(value, dict):
            raise MalformedAnswerError("Drag and drop response must map zones to items.")
        wrapped = value.get('zones')
        if isinstance(wrapped, list) and wrapped and all(isinstance(z, dict) for z in wrapped):
            return {z.zone: z.items for z in self._zones(wrapped, "Response")}
        if value and all(isinstance(v, str) for v in value.values()):
            # legacy {item: zone} placements
            placed = {}
            for item, zone in value.items():
                placed.setdefault(zone, []).append(str(item))
            return placed
        placed = {}
        for zone, items in value.items():
            placed[str(zone)] = _string_list(items or [], "Zone items")
        return placed

    def encode_response(self, response) -> str:
        return json.dumps({zone: list(items) for zone, items in response.items()})

    def is_empty(self, response) -> bool:
        return not any(response.values()) if response else True

    def render_response(self, response, options=None) -> str:
        if self.is_empty(response):
            return "(no answer)"
        zones = list(options.zones) if options else []
        zones += [z for z in response if z not in zones]
        return '\n'.join(f"{zone}: {', '.join(response.get(zone, [])) or '(empty)'}" for zone in zones)


# =============================================================================
# FREE TEXT (short answer, essay, stem)
# =============================================================================

class FreeTextFormat(AnswerFormat):

    def __init__(self, question_type):
        self.question_type = question_type

    def _text(self, raw, what) -> str:
        if raw is None:
            return ''
        if isinstance(raw, bool) or isinstance(raw, (dict, list)):
            raise MalformedAnswerError(f"{what} must be text.")
        return str(raw)

    def decode_key(self, raw) -> Optional[str]:
        return None if _is_blank(raw) else self._text(raw, "Reference answer")

    def encode_key(self, key) -> str:
        return key or ''

    def decode_response(self, raw) -> str:
        return self._text(raw, "Response")

    def encode_response(self, response) -> str:
        return response

    def is_empty(self, response) -> bool:
        return not (response or '').strip()

    def render_response(self, response, options=None) -> str:
        return response if not self.is_empty(response) else "(no answer)"


FORMATS = {
    QuestionType.MULTIPLE_CHOICE: MultipleChoiceFormat(),
    QuestionType.FILL_BLANK: FillBlankFormat(),
    QuestionType.MATCHING: MatchingFormat(),
    QuestionType.RANKING: RankingFormat(),
    QuestionType.DRAG_DROP: DragDropFormat(),
    QuestionType.SHORT_ANSWER: FreeTextFormat(QuestionType.SHORT_ANSWER),
    QuestionType.ESSAY: FreeTextFormat(QuestionType.ESSAY),
    QuestionType.STEM: FreeTextFormat(QuestionType.STEM),
}

_unhandled = set(QuestionType) - set(FORMATS)
if _unhandled:
    raise RuntimeError(f"No answer format registered for: {sorted(_unhandled)}")


def get_format(question_type) -> AnswerFormat:
    try:
        return FORMATS[QuestionType(question_type)]
    except ValueError:
        raise MalformedAnswerError(f"Unknown question type '{question_type}'.", question_type=question_type)


def decode_options(question_type, raw):
    return get_format(question_type).decode_options(raw)


def encode_options(question_type, options):
    return get_format(question_type).encode_options(options)


def decode_key(question_type, raw):
    return get_format(question_type).decode_key(raw)


def encode_key(question_type, key) -> str:
    return get_format(question_type).encode_key(key)


def decode_response(question_type, raw):
    return get_format(question_type).decode_response(raw)


def encode_response(question_type, response) -> str:
    return get_format(question_type).encode_response(response)


def render_response(question_type, response, options=None) -> str:
    return get_format(question_type).render_response(response, options)
