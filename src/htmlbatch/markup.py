"""Markup tree model for htmlbatch, backed by BeautifulSoup."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

HEADER_TAGS = ("h1", "h2", "h3", "h4", "h5", "h6")

_BODY_OPEN_TAG_RE = re.compile(r"<body[\s>/]", re.IGNORECASE)


def _bs4() -> Any:
    try:
        import bs4  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"beautifulsoup4 not available: {exc}") from exc
    return bs4


def _html5_soup(markup: str) -> Any:
    bs4 = _bs4()
    text = markup or ""
    # Without an explicit body, html5lib drops leading whitespace of the fragment.
    if not _BODY_OPEN_TAG_RE.search(text):
        text = f"<body>{text}"
    try:
        return bs4.BeautifulSoup(text, "html5lib")
    except bs4.FeatureNotFound as exc:
        raise RuntimeError(f"html5lib not available: {exc}") from exc


@dataclass
class MarkupTree:
    soup: Any
    root: Any


def parse_markup(markup: str) -> MarkupTree:
    """Parse a markup fragment with the HTML5 recovery rules browsers apply.

    When the fragment carries a ``<body>`` the tree is rooted there, so only
    the body's inner markup is serialized back.
    """
    soup = _html5_soup(markup)
    root = soup.body if soup.body is not None else soup
    return MarkupTree(soup=soup, root=root)


def serialize_markup(tree: MarkupTree) -> str:
    return tree.root.decode_contents()


def find_elements(tree: MarkupTree, predicate: Optional[Callable[[Any], bool]] = None) -> List[Any]:
    # Snapshot in document order; callers mutate the tree while iterating.
    if predicate is None:
        return list(tree.root.find_all(True))
    return list(tree.root.find_all(predicate))


def is_header(element: Any) -> bool:
    return getattr(element, "name", None) in HEADER_TAGS


def has_child_elements(element: Any) -> bool:
    return element.find(True, recursive=False) is not None


def text_content(node: Any) -> str:
    return node.get_text()


def fragment_text(markup: str) -> str:
    return text_content(parse_markup(markup).root)


def new_element(tree: MarkupTree, tag: str) -> Any:
    return tree.soup.new_tag(tag)


def replace_element(element: Any, replacement: Any) -> Any:
    for child in list(element.contents):
        replacement.append(child.extract())
    element.replace_with(replacement)
    return replacement


def remove_element(element: Any) -> None:
    """Detach ``element`` and a directly following whitespace-only text node."""
    bs4 = _bs4()
    following = element.next_sibling
    if (
        isinstance(following, bs4.NavigableString)
        and not isinstance(following, bs4.element.PreformattedString)
        and not following.strip()
    ):
        following.extract()
    element.extract()


def inner_markup(element: Any) -> str:
    return element.decode_contents()


def set_inner_markup(element: Any, markup: str) -> None:
    fragment = _html5_soup(markup)
    source = fragment.body if fragment.body is not None else fragment
    element.clear()
    for child in list(source.contents):
        element.append(child.extract())


def prepend_text(element: Any, text: str) -> None:
    bs4 = _bs4()
    element.insert(0, bs4.NavigableString(text))
