"""
Multi-strategy element resolution.

Descriptors are built from a static DOM snapshot taken earlier in the same
request. To test an element we need its live handle again, so each descriptor
is re-located on the Playwright page by trying the strongest identifying
signal first (id) and falling back to weaker ones (class, label, position).
The chain stops at the first hit; exhausting it is a normal "not found".
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional

from playwright.async_api import ElementHandle, Page

from bugfinder.config import get_settings


class ElementKind(str, Enum):
    BUTTON = "button"
    INPUT = "input"
    SELECT = "select"
    CHECKBOX = "checkbox"


_NOT_TOGGLE = ':not([type="checkbox"]):not([type="radio"])'
_NOT_BUTTON_TYPE = ':not([type="button"]):not([type="submit"]):not([type="reset"])'

# Per-kind selector templates. "{attr}" is replaced by an attribute filter
# like [name="q"] or .primary; alternatives are joined into one selector list.
KIND_SELECTORS: dict[ElementKind, tuple[str, ...]] = {
    ElementKind.BUTTON: (
        "button{attr}",
        'input[type="button"]{attr}',
        'input[type="submit"]{attr}',
        'input[type="reset"]{attr}',
    ),
    ElementKind.INPUT: ("input{attr}" + _NOT_TOGGLE,),
    ElementKind.SELECT: ("select{attr}",),
    ElementKind.CHECKBOX: ('input[type="checkbox"]{attr}',),
}

# Name lookups and the positional sweep also drop button-type inputs, so a
# submit button sharing a field's name is never taken for a text input.
STRICT_KIND_SELECTORS: dict[ElementKind, tuple[str, ...]] = {
    **KIND_SELECTORS,
    ElementKind.INPUT: ("input{attr}" + _NOT_TOGGLE + _NOT_BUTTON_TYPE,),
}

MAX_TEXT_LENGTH = 200
SELECTOR_PREVIEW = 50


def escape_css_selector(value: str) -> str:
    """Backslash-escape '#' and '.' so an id or class can be interpolated."""
    return re.sub(r"[#.]", lambda m: "\\" + m.group(0), value)


def _escape_quotes(value) -> str:
    return str(value).replace('"', '\\"')


def build_kind_selector(kind: ElementKind, attr: str = "", strict: bool = False) -> str:
    table = STRICT_KIND_SELECTORS if strict else KIND_SELECTORS
    return ", ".join(t.replace("{attr}", attr) for t in table[kind])


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------

@dataclass
class ElementDescriptor:
    """Snapshot-time record of one DOM element of a known kind."""
    kind: ElementKind
    id: Optional[str] = None
    name: Optional[str] = None
    text: Optional[str] = None            # buttons only
    placeholder: Optional[str] = None     # inputs only
    css_class: Optional[str] = None
    data_attributes: Optional[dict] = None
    label_text: Optional[str] = None      # inputs / checkboxes only
    options: Optional[list] = None        # selects only
    raw: dict = field(default_factory=dict)

    @classmethod
    def from_snapshot(cls, kind, raw: dict) -> "ElementDescriptor":
        kind = ElementKind(kind)
        return cls(
            kind=kind,
            id=raw.get("id") or None,
            name=raw.get("name") or None,
            text=(raw.get("text") or None) if kind is ElementKind.BUTTON else None,
            placeholder=(raw.get("placeholder") or None) if kind is ElementKind.INPUT else None,
            css_class=raw.get("class") or None,
            data_attributes=raw.get("dataAttributes") or None,
            label_text=(raw.get("labelText") or None)
            if kind in (ElementKind.INPUT, ElementKind.CHECKBOX) else None,
            options=(raw.get("options") or []) if kind is ElementKind.SELECT else None,
            raw=dict(raw),
        )

    def to_dict(self) -> dict:
        return dict(self.raw)


@dataclass
class ResolutionResult:
    found_handle: Optional[ElementHandle] = None
    strategy_used: Optional[str] = None
    selector: Optional[str] = None

    def __post_init__(self):
        if (self.found_handle is None) != (self.strategy_used is None):
            raise ValueError("found_handle and strategy_used must be set together")

    @property
    def found(self) -> bool:
        return self.found_handle is not None


Hit = Optional[tuple[ElementHandle, str]]
Strategy = Callable[[Page, ElementDescriptor], Awaitable[Hit]]


# ---------------------------------------------------------------------------
# Strategies, strongest signal first
# ---------------------------------------------------------------------------

async def by_id(page: Page, desc: ElementDescriptor) -> Hit:
    if not desc.id:
        return None
    el = await page.query_selector(f"#{escape_css_selector(desc.id)}")
    return (el, f"#{desc.id}") if el else None


async def by_name(page: Page, desc: ElementDescriptor) -> Hit:
    if not desc.name:
        return None
    attr = f'[name="{desc.name}"]'
    el = await page.query_selector(build_kind_selector(desc.kind, attr, strict=True))
    return (el, attr) if el else None


async def _first_handle(locator) -> Optional[ElementHandle]:
    timeout = get_settings().probe_timeout_ms
    return await locator.first.element_handle(timeout=timeout)


async def by_text(page: Page, desc: ElementDescriptor) -> Hit:
    if desc.kind is not ElementKind.BUTTON or not desc.text:
        return None
    text = desc.text.strip()
    if not text or len(text) >= MAX_TEXT_LENGTH:
        return None
    preview = text[:SELECTOR_PREVIEW]
    try:
        el = await _first_handle(page.get_by_text(text, exact=False))
        if el:
            return el, f'text: "{preview}"'
        return None
    except Exception:
        # Text lookup missed or timed out; accessible name is the next best thing
        el = await _first_handle(page.get_by_role("button", name=text, exact=False))
        return (el, f'role=button, name="{preview}"') if el else None


async def by_placeholder(page: Page, desc: ElementDescriptor) -> Hit:
    if desc.kind is not ElementKind.INPUT or not desc.placeholder:
        return None
    selector = f'input[placeholder="{_escape_quotes(desc.placeholder)}"]{_NOT_TOGGLE}'
    el = await page.query_selector(selector)
    return (el, f'[placeholder="{desc.placeholder[:SELECTOR_PREVIEW]}"]') if el else None


async def by_data_attribute(page: Page, desc: ElementDescriptor) -> Hit:
    for key, value in (desc.data_attributes or {}).items():
        try:
            attr = f'[{key}="{_escape_quotes(value)}"]'
            el = await page.query_selector(build_kind_selector(desc.kind, attr))
        except Exception:
            continue
        if el:
            return el, f'[{key}="{str(value)[:SELECTOR_PREVIEW]}"]'
    return None


async def by_class(page: Page, desc: ElementDescriptor) -> Hit:
    classes = (desc.css_class or "").split()
    if not classes:
        return None
    attr = f".{escape_css_selector(classes[0])}"
    el = await page.query_selector(build_kind_selector(desc.kind, attr))
    return (el, f".{classes[0]}") if el else None


async def by_label(page: Page, desc: ElementDescriptor) -> Hit:
    if desc.kind not in (ElementKind.INPUT, ElementKind.CHECKBOX) or not desc.label_text:
        return None
    label_text = desc.label_text.strip()
    if not label_text or len(label_text) >= MAX_TEXT_LENGTH:
        return None

    label = await _first_handle(page.get_by_text(label_text, exact=False))
    if not label:
        return None
    tag = await label.evaluate("el => el.tagName.toLowerCase()")
    if tag != "label":
        return None

    for_attr = await label.get_attribute("for")
    if for_attr:
        el = await page.query_selector(f"#{escape_css_selector(for_attr)}")
        return (el, f'label[for="{for_attr}"]') if el else None

    el = await label.query_selector("input")
    return (el, f'label:has-text("{label_text[:SELECTOR_PREVIEW]}") > input') if el else None


async def by_position(page: Page, desc: ElementDescriptor) -> Hit:
    """Last resort: sweep every live element of the kind for an exact text/placeholder match."""
    if desc.kind is ElementKind.BUTTON and desc.text:
        wanted, how = desc.text.strip(), "text"
    elif desc.kind is ElementKind.INPUT and desc.placeholder:
        wanted, how = desc.placeholder, "placeholder"
    else:
        return None

    candidates = await page.query_selector_all(build_kind_selector(desc.kind, strict=True))
    for i, el in enumerate(candidates):
        try:
            if how == "text":
                actual = ((await el.text_content()) or "").strip()
            else:
                actual = await el.get_attribute("placeholder")
        except Exception:
            continue
        if actual == wanted:
            return el, f"{desc.kind.value}[{i}] (matched by {how})"
    return None


STRATEGIES: list[tuple[str, Strategy]] = [
    ("id", by_id),
    ("name", by_name),
    ("text", by_text),
    ("placeholder", by_placeholder),
    ("data-attribute", by_data_attribute),
    ("class", by_class),
    ("label", by_label),
    ("position", by_position),
]


async def find_element(page: Page, desc: ElementDescriptor,
                       strategies: list[tuple[str, Strategy]] = STRATEGIES) -> ResolutionResult:
    """Run the strategies in order and return the first hit."""
    for name, strategy in strategies:
        try:
            hit = await strategy(page, desc)
        except Exception:
            continue
        if hit:
            handle, selector = hit
            return ResolutionResult(found_handle=handle, strategy_used=name, selector=selector)
    return ResolutionResult()
