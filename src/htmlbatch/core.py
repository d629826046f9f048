"""Core transformation engine for htmlbatch."""

from __future__ import annotations

import html
import json
import logging
import re
import zipfile
from collections import deque
from dataclasses import asdict, dataclass, field, fields, replace
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Set, Tuple

from .markup import (
    HEADER_TAGS,
    find_elements,
    fragment_text,
    has_child_elements,
    inner_markup,
    is_header,
    new_element,
    parse_markup,
    prepend_text,
    remove_element,
    replace_element,
    serialize_markup,
    set_inner_markup,
    text_content,
)

LOG = logging.getLogger("htmlbatch")

EXIT_INVALID_ARGS = 6
EXIT_OUTPUT_DIR = 7
EXIT_STEP_REJECTED = 9

ACTIVITY_LOG_LIMIT = 50
MAX_NAME_LENGTH = 80
DEFAULT_ARCHIVE_PREFIX = "Otzaria_Output"

SPLIT_TAGS = ("h1", "h2", "h3", "h4")
SKIPPABLE_TAGS = ("h1", "h2", "h3")
HEADER_SCOPE_ALL = "all"

_ILLEGAL_NAME_CHARS_RE = re.compile(r'[\\/:*?"<>|]')
_HEADER_OPEN_TAG_RE = re.compile(r"<h[1-6][^>]*>", re.IGNORECASE)
_DOLLAR_TOKEN_RE = re.compile(r"\$(\$|&|`|'|\d{1,2}|<[^>]*>)")
_EXTENSION_RE = re.compile(r"\.[^/.]+$")


@dataclass
class Document:
    name: str
    raw_markup: str


def _require_tag(value: str, allowed: Iterable[str], label: str) -> None:
    allowed = tuple(allowed)
    if value not in allowed:
        raise ValueError(f"Invalid {label}: {value!r} (expected one of {', '.join(allowed)})")


@dataclass
class MergeParams:
    source_tag: str = "h4"
    target_tag: str = "h5"
    exclude: str = ""

    def validate(self) -> None:
        _require_tag(self.source_tag, HEADER_TAGS, "source_tag")
        _require_tag(self.target_tag, HEADER_TAGS, "target_tag")

    def is_noop(self) -> bool:
        return False


@dataclass
class GlobalReplaceParams:
    find: str = ""
    replace: str = ""

    def validate(self) -> None:
        return None

    def is_noop(self) -> bool:
        return not self.find


@dataclass
class HeaderReplaceParams:
    scope: str = HEADER_SCOPE_ALL
    find: str = ""
    replace: str = ""

    def validate(self) -> None:
        _require_tag(self.scope, (HEADER_SCOPE_ALL,) + HEADER_TAGS, "scope")

    def is_noop(self) -> bool:
        return not self.find


@dataclass
class SplitParams:
    split_tag: str = "h2"
    book_name: str = ""
    author: str = ""
    exclude: str = ""

    def validate(self) -> None:
        _require_tag(self.split_tag, SPLIT_TAGS, "split_tag")

    def is_noop(self) -> bool:
        return False


@dataclass
class NormalizeParams:
    skip: List[str] = field(default_factory=list)

    def validate(self) -> None:
        for tag in self.skip:
            _require_tag(tag, SKIPPABLE_TAGS, "skip level")

    def is_noop(self) -> bool:
        return False


def setup_logging(verbose: bool, debug: bool) -> None:
    LOG.setLevel(logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING))
    LOG.propagate = False
    if not LOG.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        LOG.addHandler(handler)


@dataclass
class ActivityEntry:
    timestamp: str
    message: str
    type: str = "info"


class ActivityLog:
    """Most-recent-first status messages, capped at ``limit`` entries."""

    def __init__(self, limit: int = ACTIVITY_LOG_LIMIT) -> None:
        self._entries: Deque[ActivityEntry] = deque(maxlen=limit)

    def add(self, message: str, kind: str = "info") -> ActivityEntry:
        entry = ActivityEntry(timestamp=datetime.now().strftime("%H:%M:%S"), message=message, type=kind)
        self._entries.appendleft(entry)
        if kind == "error":
            LOG.error(message)
        else:
            LOG.info(message)
        return entry

    @property
    def entries(self) -> List[ActivityEntry]:
        return list(self._entries)

    def format_lines(self) -> List[str]:
        return [f"[{entry.timestamp}] {entry.message}" for entry in self._entries]


def matches_exclusion(haystack: str, exclusion_spec: str) -> bool:
    if not exclusion_spec or not exclusion_spec.strip():
        return False
    words = [word.strip().lower() for word in exclusion_spec.split(",")]
    text = (haystack or "").lower()
    return any(word in text for word in words if word)


def sanitize_name(title: str, fallback_index: int) -> str:
    cleaned = _ILLEGAL_NAME_CHARS_RE.sub("", title or "")[:MAX_NAME_LENGTH]
    return cleaned or f"file_{fallback_index}"


def compile_user_pattern(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise ValueError(f"Invalid regular expression {pattern!r}: {exc}") from exc


def _dollar_replacement(template: str) -> Callable[[re.Match[str]], str]:
    """Build a ``re.sub`` callback expanding ``$1``, ``$&``, ``$$``, ``$<name>`` tokens."""

    def _expand(match: re.Match[str]) -> str:
        group_count = match.re.groups
        named = match.re.groupindex

        def _token(token: re.Match[str]) -> str:
            key = token.group(1)
            if key == "$":
                return "$"
            if key == "&":
                return match.group(0)
            if key == "`":
                return match.string[: match.start()]
            if key == "'":
                return match.string[match.end() :]
            if key.startswith("<"):
                if not named:
                    return token.group(0)
                name = key[1:-1]
                return (match.group(name) or "") if name in named else ""
            number = int(key)
            if 0 < number <= group_count:
                return match.group(number) or ""
            if len(key) == 2 and 0 < int(key[0]) <= group_count:
                return (match.group(int(key[0])) or "") + key[1]
            return token.group(0)

        return _DOLLAR_TOKEN_RE.sub(_token, template)

    return _expand


def _transform_each(documents: List[Document], transform: Callable[[str], str]) -> List[Document]:
    updated: List[Document] = []
    for document in documents:
        updated.append(replace(document, raw_markup=transform(document.raw_markup)))
        LOG.debug("Transformed document: %s", document.name)
    return updated


def merge_headers_markup(markup: str, params: MergeParams) -> str:
    tree = parse_markup(markup)
    carried = ""
    consumed: List[Any] = []

    for element in find_elements(tree):
        if element.name == params.source_tag:
            carried = text_content(element).strip()
            consumed.append(element)
        elif element.name == params.target_tag:
            if carried and not matches_exclusion(text_content(element), params.exclude):
                prepend_text(element, f"{carried} ")

    if not consumed:
        return markup
    for element in consumed:
        remove_element(element)
    return serialize_markup(tree)


def merge_headers(documents: List[Document], params: MergeParams) -> List[Document]:
    params.validate()
    return _transform_each(documents, lambda markup: merge_headers_markup(markup, params))


def _is_text_leaf(element: Any) -> bool:
    return not has_child_elements(element) and bool(text_content(element).strip())


def global_replace_markup(markup: str, params: GlobalReplaceParams) -> str:
    if not params.find:
        return markup
    tree = parse_markup(markup)
    changed = False
    for element in find_elements(tree, _is_text_leaf):
        current = inner_markup(element)
        updated = current.replace(params.find, params.replace)
        if updated != current:
            set_inner_markup(element, updated)
            changed = True
    return serialize_markup(tree) if changed else markup


def global_replace(documents: List[Document], params: GlobalReplaceParams) -> List[Document]:
    params.validate()
    if params.is_noop():
        LOG.info("Global replace skipped: empty search text")
        return list(documents)
    return _transform_each(documents, lambda markup: global_replace_markup(markup, params))


def _header_scope_filter(scope: str) -> Callable[[Any], bool]:
    if scope == HEADER_SCOPE_ALL:
        return is_header
    return lambda element: element.name == scope


def replace_in_headers_markup(markup: str, params: HeaderReplaceParams, pattern: re.Pattern[str]) -> str:
    tree = parse_markup(markup)
    expand = _dollar_replacement(params.replace)
    changed = False
    for element in find_elements(tree, _header_scope_filter(params.scope)):
        current = inner_markup(element)
        updated = pattern.sub(expand, current)
        if updated != current:
            set_inner_markup(element, updated)
            changed = True
    return serialize_markup(tree) if changed else markup


def replace_in_headers(documents: List[Document], params: HeaderReplaceParams) -> List[Document]:
    params.validate()
    if params.is_noop():
        LOG.info("Header replace skipped: empty search pattern")
        return list(documents)
    pattern = compile_user_pattern(params.find)
    return _transform_each(documents, lambda markup: replace_in_headers_markup(markup, params, pattern))


def _split_boundary_pattern(tag: str) -> re.Pattern[str]:
    # Textual and non-nesting: the first closing tag ends the boundary.
    return re.compile(rf"(<{tag}[^>]*>.*?</{tag}>)", re.IGNORECASE)


def split_document(document: Document, params: SplitParams) -> List[Document]:
    parts = _split_boundary_pattern(params.split_tag).split(document.raw_markup)
    outputs: List[Document] = []
    current_content = ""
    current_title = document.name
    index = 0

    opening = f"<{params.split_tag}"
    for part in parts:
        # A header the pattern could not capture still opens a unit when it starts the part.
        is_boundary = part.lower().startswith(opening)
        if not is_boundary or matches_exclusion(part, params.exclude):
            current_content += part
            continue

        if current_content.strip():
            outputs.append(Document(name=sanitize_name(current_title, index), raw_markup=current_content.strip()))

        title_text = fragment_text(part).strip()
        if params.book_name:
            open_match = _HEADER_OPEN_TAG_RE.search(part)
            open_tag = open_match.group(0) if open_match else f"<{params.split_tag}>"
            close_tag = f"</{params.split_tag}>"
            current_content = f"{open_tag}{params.book_name} {html.escape(title_text, quote=False)}{close_tag}"
        else:
            current_content = part

        current_title = (f"{params.book_name} " if params.book_name else "") + (title_text or document.name)
        if params.author:
            current_content += f"\n<p>{params.author}</p>"
        index += 1

    if current_content.strip():
        outputs.append(Document(name=sanitize_name(current_title, index), raw_markup=current_content.strip()))
    return outputs


def split_documents(documents: List[Document], params: SplitParams) -> List[Document]:
    params.validate()
    outputs: List[Document] = []
    for document in documents:
        pieces = split_document(document, params)
        LOG.debug("Split %s into %d document(s)", document.name, len(pieces))
        outputs.extend(pieces)
    return outputs


def build_rank_map(header_tags: Iterable[str], skip: Iterable[str]) -> Dict[str, str]:
    skipped: Set[str] = set(skip)
    # Lexicographic order equals level order while levels stay single-digit.
    ranked = sorted({tag for tag in header_tags if tag not in skipped})
    return {tag: f"h{rank}" for rank, tag in enumerate(ranked, start=1)}


def normalize_hierarchy_markup(markup: str, params: NormalizeParams) -> str:
    tree = parse_markup(markup)
    headers = find_elements(tree, is_header)
    rank_map = build_rank_map((header.name for header in headers), params.skip)
    if not rank_map:
        return markup
    for header in headers:
        mapped = rank_map.get(header.name)
        if mapped:
            replace_element(header, new_element(tree, mapped))
    return serialize_markup(tree)


def normalize_hierarchy(documents: List[Document], params: NormalizeParams) -> List[Document]:
    params.validate()
    return _transform_each(documents, lambda markup: normalize_hierarchy_markup(markup, params))


@dataclass
class OperationSpec:
    label: str
    params_type: type
    apply: Callable[[List[Document], Any], List[Document]]


OPERATIONS: Dict[str, OperationSpec] = {
    "merge": OperationSpec("Header merge", MergeParams, merge_headers),
    "replace_headers": OperationSpec("Header replace", HeaderReplaceParams, replace_in_headers),
    "global_replace": OperationSpec("Global replace", GlobalReplaceParams, global_replace),
    "split": OperationSpec("Split", SplitParams, split_documents),
    "normalize": OperationSpec("Hierarchy normalization", NormalizeParams, normalize_hierarchy),
}


@dataclass
class RecipeStep:
    op: str
    params: Any


def parse_recipe_step(raw: Any, position: int, source: str = "recipe") -> RecipeStep:
    if not isinstance(raw, dict):
        raise ValueError(f"{source}: step {position} must be an object")
    op = raw.get("op")
    spec = OPERATIONS.get(op) if isinstance(op, str) else None
    if spec is None:
        raise ValueError(f"{source}: step {position} has unknown op {op!r} (expected one of {', '.join(OPERATIONS)})")

    defaults = spec.params_type()
    known = {f.name for f in fields(spec.params_type)}
    kwargs: Dict[str, Any] = {}
    for key, value in raw.items():
        if key == "op":
            continue
        if key not in known:
            raise ValueError(f"{source}: step {position} ({op}) has unknown key: {key}")
        expected = type(getattr(defaults, key))
        if not isinstance(value, expected):
            raise ValueError(f"{source}: step {position} ({op}) key {key} must be a {expected.__name__}")
        if expected is list and not all(isinstance(item, str) for item in value):
            raise ValueError(f"{source}: step {position} ({op}) key {key} must list strings")
        kwargs[key] = value

    params = spec.params_type(**kwargs)
    try:
        params.validate()
    except ValueError as exc:
        raise ValueError(f"{source}: step {position} ({op}): {exc}") from exc
    return RecipeStep(op=op, params=params)


def load_recipe(path: Path) -> List[RecipeStep]:
    try:
        data_raw = json.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:
        raise ValueError(f"Unable to read recipe file {path}: {exc}") from exc

    steps_raw = data_raw.get("steps") if isinstance(data_raw, dict) else None
    if not isinstance(steps_raw, list):
        raise ValueError(f"Recipe file {path} missing list key: steps")
    return [parse_recipe_step(raw, idx, source=str(path)) for idx, raw in enumerate(steps_raw, start=1)]


def default_recipe() -> Dict[str, Any]:
    return {"steps": [{"op": op, **asdict(spec.params_type())} for op, spec in OPERATIONS.items()]}


def write_default_recipe(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(default_recipe(), ensure_ascii=False, indent=2) + "\n", encoding="utf-8")


def apply_step(documents: List[Document], step: RecipeStep, activity: ActivityLog) -> Tuple[List[Document], bool]:
    """Run one step over the whole batch.

    Returns the new batch and whether the step was accepted. A rejected step
    leaves the batch exactly as it was.
    """
    spec = OPERATIONS[step.op]
    if not documents:
        activity.add(f"No documents loaded; {spec.label.lower()} skipped.", "info")
        return list(documents), True
    if step.params.is_noop():
        activity.add(f"{spec.label} skipped: nothing to search for.", "info")
        return list(documents), True

    try:
        updated = spec.apply(documents, step.params)
    except ValueError as exc:
        activity.add(f"{spec.label} rejected: {exc}", "error")
        return list(documents), False

    message = f"{spec.label} completed."
    if step.op == "split":
        message = f"{message} Created {len(updated)} documents."
    activity.add(message, "success")
    return updated, True


def run_recipe(
    documents: List[Document], steps: Iterable[RecipeStep], activity: ActivityLog
) -> Tuple[List[Document], int]:
    rejected = 0
    current = list(documents)
    for step in steps:
        current, accepted = apply_step(current, step, activity)
        if not accepted:
            rejected += 1
    return current, rejected


def document_name_from_path(path: Path) -> str:
    return _EXTENSION_RE.sub("", path.name)


def load_documents(paths: Iterable[Path]) -> List[Document]:
    documents: List[Document] = []
    for path in paths:
        if path.is_dir():
            files = sorted(p for p in path.rglob("*") if p.is_file())
        elif path.is_file():
            files = [path]
        else:
            raise FileNotFoundError(f"Input not found: {path}")
        for file_path in files:
            raw = file_path.read_text(encoding="utf-8", errors="replace")
            documents.append(Document(name=document_name_from_path(file_path), raw_markup=raw))
            LOG.debug("Loaded document: %s", file_path)
    return documents


def archive_name(prefix: str = DEFAULT_ARCHIVE_PREFIX, today: Optional[date] = None) -> str:
    day = today or date.today()
    return f"{prefix}_{day.isoformat()}.zip"


def _unique_entry_name(stem: str, used: Set[str]) -> str:
    candidate = f"{stem}.txt"
    i = 1
    while candidate in used:
        candidate = f"{stem}__{i}.txt"
        i += 1
    used.add(candidate)
    return candidate


def export_archive(
    documents: List[Document],
    out_dir: Path,
    *,
    prefix: str = DEFAULT_ARCHIVE_PREFIX,
    today: Optional[date] = None,
) -> Path:
    out_dir.mkdir(parents=True, exist_ok=True)
    target = out_dir / archive_name(prefix, today)
    used: Set[str] = set()
    with zipfile.ZipFile(target, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for document in documents:
            archive.writestr(_unique_entry_name(document.name, used), document.raw_markup)
    LOG.info("Exported %d document(s) to %s", len(documents), target)
    return target


def render_preview(document: Document, markdown: bool = False) -> str:
    if not markdown:
        return document.raw_markup

    try:
        from markdownify import markdownify as md_convert  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"markdownify not available: {exc}") from exc

    md_text = md_convert(document.raw_markup, heading_style="ATX")
    return re.sub(r"\n{3,}", "\n\n", md_text).strip()
