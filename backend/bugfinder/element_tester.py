"""
Interactive element testing: classify each resolved element, then try one
safe, reversible interaction to decide whether it is really usable.

Every failure is confined to the element it happened on. The batch always
completes and a broken element just carries an error string in its testResults.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional

from playwright.async_api import ElementHandle, Page

from bugfinder.config import get_settings
from bugfinder.element_finder import ElementDescriptor, ElementKind, ResolutionResult, find_element


NOT_FOUND_ERROR = "Element not found using any selector strategy"
FILL_PROBE_VALUE = "test"

# Output bucket → element kind
BUCKETS: dict[str, ElementKind] = {
    "buttons": ElementKind.BUTTON,
    "inputs": ElementKind.INPUT,
    "dropdowns": ElementKind.SELECT,
    "checkboxes": ElementKind.CHECKBOX,
}

CAPABILITIES: dict[ElementKind, tuple[str, ...]] = {
    ElementKind.BUTTON: ("clickable",),
    ElementKind.INPUT: ("fillable",),
    ElementKind.SELECT: ("clickable", "selectable"),
    ElementKind.CHECKBOX: ("clickable", "toggleable"),
}


async def _probe(awaitable, default):
    """Await a single property read; any failure means the default."""
    try:
        return await awaitable
    except Exception:
        return default


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------

@dataclass
class ElementState:
    visible: bool = False
    enabled: bool = False
    has_dimensions: bool = False

    @property
    def actionable(self) -> bool:
        return self.visible and self.enabled and self.has_dimensions


async def classify_element(handle: Optional[ElementHandle]) -> ElementState:
    if handle is None:
        return ElementState()
    visible, enabled, box = await asyncio.gather(
        _probe(handle.is_visible(), False),
        _probe(handle.is_enabled(), False),
        _probe(handle.bounding_box(), None),
    )
    return ElementState(visible=bool(visible), enabled=bool(enabled), has_dimensions=box is not None)


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------

@dataclass
class TestOutcome:
    kind: ElementKind
    state: ElementState = field(default_factory=ElementState)
    capabilities: dict = field(default_factory=dict)
    extra: dict = field(default_factory=dict)
    selector: Optional[str] = None
    strategy: Optional[str] = None
    error: Optional[str] = None

    __test__ = False  # not a pytest class

    @classmethod
    def failed(cls, kind: ElementKind, error: str) -> "TestOutcome":
        extra = {"readonly": False, "disabled": False} if kind is ElementKind.INPUT else {}
        return cls(kind=kind, extra=extra, error=error)

    def to_dict(self) -> dict:
        result = {name: bool(self.capabilities.get(name, False)) for name in CAPABILITIES[self.kind]}
        result.update({
            "visible": self.state.visible,
            "enabled": self.state.enabled,
            **self.extra,
            "hasDimensions": self.state.has_dimensions,
            "selector": self.selector,
            "strategy": self.strategy,
            "error": self.error,
        })
        return result


# ---------------------------------------------------------------------------
# Probers: one reversible interaction per kind
# ---------------------------------------------------------------------------

async def probe_button(handle: ElementHandle, desc: ElementDescriptor, state: ElementState) -> tuple[dict, dict]:
    # Never actually clicked: a real click could submit a form or navigate away
    return {"clickable": state.actionable}, {}


async def probe_input(handle: ElementHandle, desc: ElementDescriptor, state: ElementState) -> tuple[dict, dict]:
    readonly, disabled = await asyncio.gather(
        _probe(handle.get_attribute("readonly"), None),
        _probe(handle.get_attribute("disabled"), None),
    )
    readonly, disabled = readonly is not None, disabled is not None
    extra = {"readonly": readonly, "disabled": disabled}

    if not state.actionable or readonly or disabled:
        return {"fillable": False}, extra

    timeout = get_settings().probe_timeout_ms
    original = await _probe(handle.input_value(timeout=timeout), "")
    try:
        await handle.fill(FILL_PROBE_VALUE, timeout=timeout)
    except Exception:
        return {"fillable": False}, extra
    try:
        await handle.fill(original, timeout=timeout)
    except Exception as e:
        print(f"  [element-tester] Could not restore input value: {e}")
    return {"fillable": True}, extra


async def probe_select(handle: ElementHandle, desc: ElementDescriptor, state: ElementState) -> tuple[dict, dict]:
    caps = {"clickable": state.actionable, "selectable": False}
    if not state.actionable or not desc.options:
        return caps, {}
    first = desc.options[0]
    value = first.get("value") or first.get("text")
    try:
        # Left on the first option afterwards; selecting is not undone
        await handle.select_option(value, timeout=get_settings().probe_timeout_ms)
        caps["selectable"] = True
    except Exception as e:
        print(f"  [element-tester] Could not select first option: {e}")
    return caps, {}


async def probe_checkbox(handle: ElementHandle, desc: ElementDescriptor, state: ElementState) -> tuple[dict, dict]:
    caps = {"clickable": state.actionable, "toggleable": False}
    if not state.actionable:
        return caps, {}
    timeout = get_settings().probe_timeout_ms
    try:
        was_checked = await _probe(handle.is_checked(), False)
        await handle.click(timeout=timeout)
        now_checked = await _probe(handle.is_checked(), False)
    except Exception:
        return caps, {}
    caps["toggleable"] = was_checked != now_checked
    if caps["toggleable"]:
        try:
            await handle.click(timeout=timeout)
        except Exception as e:
            print(f"  [element-tester] Could not restore checkbox state: {e}")
    return caps, {}


PROBERS = {
    ElementKind.BUTTON: probe_button,
    ElementKind.INPUT: probe_input,
    ElementKind.SELECT: probe_select,
    ElementKind.CHECKBOX: probe_checkbox,
}


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

async def run_element_test(page: Page, desc: ElementDescriptor) -> TestOutcome:
    resolution: ResolutionResult = await find_element(page, desc)
    if not resolution.found:
        return TestOutcome.failed(desc.kind, NOT_FOUND_ERROR)

    state = await classify_element(resolution.found_handle)
    caps, extra = await PROBERS[desc.kind](resolution.found_handle, desc, state)
    return TestOutcome(
        kind=desc.kind,
        state=state,
        capabilities=caps,
        extra=extra,
        selector=resolution.selector,
        strategy=resolution.strategy_used,
    )


async def test_element(page: Page, desc: ElementDescriptor) -> dict:
    """Resolve, classify and probe one descriptor; returns the descriptor with testResults attached."""
    try:
        outcome = await run_element_test(page, desc)
    except Exception as e:
        outcome = TestOutcome.failed(desc.kind, str(e) or type(e).__name__)
    return {**desc.to_dict(), "testResults": outcome.to_dict()}


async def test_bucket(page: Page, kind: ElementKind, raw_elements: list) -> list:
    descriptors = [ElementDescriptor.from_snapshot(kind, raw) for raw in raw_elements or []]
    # gather() keeps input order regardless of which element finishes first
    return list(await asyncio.gather(*(test_element(page, d) for d in descriptors)))


async def test_interactive_elements(page: Page, body_analysis: dict) -> dict:
    """
    Test every snapshot element on the live page.
    The four buckets run concurrently; so do the elements inside each bucket.
    """
    names = list(BUCKETS)
    results = await asyncio.gather(*(
        test_bucket(page, BUCKETS[name], body_analysis.get(name, [])) for name in names
    ))
    counts = ", ".join(f"{len(r)} {name}" for name, r in zip(names, results))
    print(f"  [element-tester] Tested {counts}")
    return dict(zip(names, results))
