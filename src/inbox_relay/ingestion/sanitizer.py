"""Allow-list HTML sanitizer for rendering received messages."""

from __future__ import annotations

import re

from bs4 import BeautifulSoup, Comment, Tag

# Removed together with everything inside them.
DROPPED_TAGS = frozenset(
    {
        "script",
        "style",
        "iframe",
        "frame",
        "frameset",
        "object",
        "embed",
        "applet",
        "form",
        "input",
        "button",
        "select",
        "textarea",
        "link",
        "meta",
        "base",
        "title",
        "head",
        "svg",
        "math",
        "noscript",
        "template",
    }
)

ALLOWED_TAGS = frozenset(
    {
        "a", "abbr", "address", "b", "blockquote", "br", "caption", "center",
        "cite", "code", "col", "colgroup", "dd", "del", "div", "dl", "dt", "em",
        "font", "h1", "h2", "h3", "h4", "h5", "h6", "hr", "i", "img", "ins",
        "kbd", "li", "ol", "p", "pre", "q", "s", "small", "span", "strike",
        "strong", "sub", "sup", "table", "tbody", "td", "tfoot", "th", "thead",
        "tr", "u", "ul",
    }
)  # fmt: skip

GLOBAL_ATTRIBUTES = frozenset({"align", "dir", "lang", "style", "title", "class"})
TAG_ATTRIBUTES: dict[str, frozenset[str]] = {
    "a": frozenset({"href", "name", "target"}),
    "img": frozenset({"src", "alt", "width", "height", "border"}),
    "font": frozenset({"color", "face", "size"}),
    "table": frozenset(
        {"width", "border", "cellpadding", "cellspacing", "bgcolor", "role"}
    ),
    "td": frozenset({"width", "height", "colspan", "rowspan", "valign", "bgcolor"}),
    "th": frozenset({"width", "height", "colspan", "rowspan", "valign", "bgcolor"}),
    "tr": frozenset({"valign", "bgcolor"}),
    "col": frozenset({"span", "width"}),
    "colgroup": frozenset({"span", "width"}),
    "ol": frozenset({"start", "type"}),
    "blockquote": frozenset({"cite"}),
}

ALLOWED_CSS_PROPERTIES = frozenset(
    {
        "background-color", "border", "border-bottom", "border-collapse",
        "border-color", "border-left", "border-radius", "border-right",
        "border-spacing", "border-style", "border-top", "border-width", "color",
        "display", "font", "font-family", "font-size", "font-style",
        "font-weight", "height", "letter-spacing", "line-height", "list-style",
        "margin", "margin-bottom", "margin-left", "margin-right", "margin-top",
        "max-width", "min-width", "padding", "padding-bottom", "padding-left",
        "padding-right", "padding-top", "text-align", "text-decoration",
        "text-transform", "vertical-align", "white-space", "width",
    }
)  # fmt: skip

LINK_SCHEMES = frozenset({"http", "https", "mailto", "tel"})
IMAGE_SCHEMES = frozenset({"http", "https", "cid", "data"})

_SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.-]*):")
_UNSAFE_CSS_RE = re.compile(r"expression\s*\(|url\s*\(|javascript:|@import", re.I)
_CONTROL_RE = re.compile(r"[\x00-\x20]+")


class EmailHtmlSanitizer:
    """Strip everything outside an email-friendly allow list."""

    def sanitize(self, raw_html: str) -> str:
        """Return a sanitised copy of ``raw_html``."""
        if not raw_html:
            return ""
        soup = BeautifulSoup(raw_html, "html.parser")

        for comment in soup.find_all(string=lambda value: isinstance(value, Comment)):
            comment.extract()

        for tag in soup.find_all(True):
            if tag.decomposed:
                continue
            name = tag.name.lower()
            if name in DROPPED_TAGS:
                tag.decompose()
            elif name not in ALLOWED_TAGS:
                tag.unwrap()
            else:
                self._clean_attributes(tag, name)

        return str(soup)

    def _clean_attributes(self, tag: Tag, name: str) -> None:
        allowed = GLOBAL_ATTRIBUTES | TAG_ATTRIBUTES.get(name, frozenset())
        for attribute in list(tag.attrs):
            lowered = attribute.lower()
            if lowered not in allowed:
                del tag.attrs[attribute]
                continue
            value = tag.attrs[attribute]
            if isinstance(value, list):
                value = " ".join(value)
            if lowered == "style":
                cleaned_style = _clean_style(value)
                if cleaned_style:
                    tag.attrs[attribute] = cleaned_style
                else:
                    del tag.attrs[attribute]
            elif lowered in {"href", "src", "cite"}:
                schemes = IMAGE_SCHEMES if name == "img" else LINK_SCHEMES
                if not _is_safe_url(value, schemes):
                    del tag.attrs[attribute]

        if name == "a":
            tag.attrs["rel"] = "noopener noreferrer"
            if tag.attrs.get("href"):
                tag.attrs["target"] = "_blank"


def _clean_style(style: str) -> str:
    declarations: list[str] = []
    for declaration in style.split(";"):
        if ":" not in declaration:
            continue
        prop, value = declaration.split(":", 1)
        prop = prop.strip().lower()
        value = value.strip()
        if prop not in ALLOWED_CSS_PROPERTIES or not value:
            continue
        if _UNSAFE_CSS_RE.search(value):
            continue
        declarations.append(f"{prop}:{value}")
    return ";".join(declarations)


def _is_safe_url(value: str, schemes: frozenset[str]) -> bool:
    compact = _CONTROL_RE.sub("", value)
    match = _SCHEME_RE.match(compact)
    if match is None:
        # Relative references and fragments carry no scheme.
        return True
    scheme = match.group(1).lower()
    if scheme not in schemes:
        return False
    if scheme == "data":
        return compact.lower().startswith("data:image/")
    return True


__all__ = ["EmailHtmlSanitizer"]
