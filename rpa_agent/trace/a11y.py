"""Accessibility snapshot indexing, hint search and node adoption.

A snapshot is indexed depth-first into synthetic ids (`n0`, `n0.0`, `n0.1`,
...). Ids are stable for one snapshot generation only. Adoption turns an id
back into a live Playwright locator and checks its live match count, which
is the authoritative guard against a stale snapshot.
"""
import asyncio
import json
import re
from typing import Any, Dict, List, Mapping, Optional, Set

from playwright.async_api import Locator, Page

from rpa_agent.constants import ErrorCode
from rpa_agent.exceptions import ToolError
from rpa_agent.trace.types import A11yCandidate, A11yNodeInfo, TraceCache, TraceTags, now_ms
from rpa_agent.utils.logging import get_logger

logger = get_logger("rpa_agent.trace.a11y")

MAX_AMBIGUOUS_ITEMS = 10
MAX_ITEM_TEXT = 80
MAX_PREVIEW = 60

_WHITESPACE_RE = re.compile(r"\s+")

_SUMMARIZE_JS = f"""
(nodes) => nodes.slice(0, {MAX_AMBIGUOUS_ITEMS}).map((el) => ({{
    tag: el.tagName.toLowerCase(),
    text: (el.innerText || el.textContent || '').trim().slice(0, {MAX_ITEM_TEXT}),
}}))
"""


# --- Snapshot indexing -----------------------------------------------------

def _build_tree(node: Mapping[str, Any], node_id: str, node_map: Dict[str, A11yNodeInfo]) -> Dict[str, Any]:
    info = A11yNodeInfo(
        id=node_id,
        role=node.get("role"),
        name=node.get("name"),
        description=node.get("description"),
        value=_as_text(node.get("value")),
    )
    node_map[node_id] = info
    out: Dict[str, Any] = {"id": node_id}
    for key in ("role", "name", "description", "value"):
        value = getattr(info, key)
        if value not in (None, ""):
            out[key] = value
    if node.get("focused"):
        out["focused"] = True
    children = [
        _build_tree(child, f"{node_id}.{index}", node_map)
        for index, child in enumerate(node.get("children") or [])
    ]
    if children:
        out["children"] = children
    return out


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def cache_a11y_snapshot(cache: TraceCache, raw: str) -> Optional[Dict[str, Any]]:
    """Parse a raw snapshot and replace the cache's tree and node map.

    Returns the indexed tree, or None when `raw` is not valid JSON (the
    cache is left untouched in that case).
    """
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(parsed, dict):
        return None
    node_map: Dict[str, A11yNodeInfo] = {}
    tree = _build_tree(parsed, "n0", node_map)
    cache.a11y_snapshot_raw = raw
    cache.a11y_tree = tree
    cache.node_map = node_map
    cache.snapshot_at = now_ms()
    return tree


def invalidate_a11y_cache(cache: TraceCache, reason: str, tags: Optional[TraceTags] = None) -> None:
    """Drop the cached snapshot after a page mutation and bump the generation."""
    cache.clear()
    logger.debug(
        "a11y cache invalidated",
        emoji_key="cache",
        reason=reason,
        gen=cache.generation,
        **(tags.to_dict() if tags else {}),
    )


def build_a11y_tree_from_cdp(nodes: List[Mapping[str, Any]]) -> Dict[str, Any]:
    """Rebuild a nested tree from the flat `Accessibility.getFullAXTree` node list."""
    if not nodes:
        return {"role": "document"}
    by_id = {node["nodeId"]: node for node in nodes if "nodeId" in node}
    root = (
        next((n for n in nodes if not n.get("parentId") and not n.get("ignored")), None)
        or next((n for n in nodes if not n.get("parentId")), None)
        or nodes[0]
    )
    visited: Set[str] = set()

    def prop(node: Mapping[str, Any], key: str) -> Optional[str]:
        value = (node.get(key) or {}).get("value")
        return _as_text(value)

    def walk(node_id: str) -> Optional[Dict[str, Any]]:
        if node_id in visited or node_id not in by_id:
            return None
        visited.add(node_id)
        node = by_id[node_id]
        out: Dict[str, Any] = {}
        for key in ("role", "name", "description", "value"):
            value = prop(node, key)
            if value is not None:
                out[key] = value
        children = [child for child in (walk(cid) for cid in node.get("childIds") or []) if child]
        if children:
            out["children"] = children
        return out

    return walk(root["nodeId"]) or {"role": "document"}


async def _capture_raw_snapshot(page: Page) -> str:
    accessibility = getattr(page, "accessibility", None)
    if accessibility is not None:
        snapshot = await accessibility.snapshot(interesting_only=False)
        if snapshot:
            return json.dumps(snapshot)

    cdp = await page.context.new_cdp_session(page)
    try:
        await cdp.send("Accessibility.enable")
        result = await cdp.send("Accessibility.getFullAXTree")
    finally:
        await cdp.detach()
    return json.dumps(build_a11y_tree_from_cdp(result.get("nodes") or []))


async def capture_raw_snapshot(page: Page, timeout_ms: Optional[int] = None) -> str:
    """Take a full accessibility snapshot of `page` as a JSON string.

    Uses the page's accessibility API when it exists and falls back to the
    Chromium DevTools protocol otherwise.
    """
    if timeout_ms:
        return await asyncio.wait_for(_capture_raw_snapshot(page), timeout=timeout_ms / 1000)
    return await _capture_raw_snapshot(page)


async def ensure_a11y_tree(
    page: Page, cache: TraceCache, timeout_ms: Optional[int] = None
) -> Optional[Dict[str, Any]]:
    """Return the cached tree, taking a fresh snapshot when the cache is empty."""
    if cache.a11y_tree is not None:
        return cache.a11y_tree
    raw = await capture_raw_snapshot(page, timeout_ms)
    return cache_a11y_snapshot(cache, raw)


def find_focused_subtree(tree: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Depth-first search for the node marked `focused`."""
    if tree.get("focused"):
        return tree
    for child in tree.get("children") or []:
        found = find_focused_subtree(child)
        if found is not None:
            return found
    return None


# --- Hint search -----------------------------------------------------------

def normalize_text(value: Optional[str]) -> str:
    """Fold quotes and case and collapse whitespace."""
    text = (value or "").replace("“", '"').replace("”", '"')
    text = text.replace("‘", "'").replace("’", "'")
    return _WHITESPACE_RE.sub(" ", text.strip().lower())


def _build_preview(node: Mapping[str, Any]) -> str:
    raw = node.get("name") or node.get("description") or node.get("value") or node.get("role") or ""
    trimmed = _WHITESPACE_RE.sub(" ", str(raw).strip())
    return f"{trimmed[:MAX_PREVIEW - 3]}..." if len(trimmed) > MAX_PREVIEW else trimmed


def _matches(node: Mapping[str, Any], role: str, name: str, text: str) -> bool:
    if role and normalize_text(node.get("role")) != role:
        return False
    if name and name not in normalize_text(node.get("name")):
        return False
    if text:
        haystack = " ".join(str(node[key]) for key in ("name", "description", "value") if node.get(key))
        if text not in normalize_text(haystack):
            return False
    return bool(node.get("id"))


def find_a11y_candidates(tree: Mapping[str, Any], hint: Mapping[str, Optional[str]]) -> List[A11yCandidate]:
    """Return every node of `tree` matching `hint`, in depth-first order.

    Role must match exactly after normalization; name and text are
    case-insensitive substring matches (text searches name, description
    and value together).
    """
    role = normalize_text(hint.get("role"))
    name = normalize_text(hint.get("name"))
    text = normalize_text(hint.get("text"))
    results: List[A11yCandidate] = []
    stack = [tree]
    while stack:
        node = stack.pop()
        if _matches(node, role, name, text):
            results.append(A11yCandidate(
                node_id=node["id"],
                role=node.get("role"),
                name=node.get("name"),
                preview=_build_preview(node),
            ))
        stack.extend(reversed(node.get("children") or []))
    return results


# --- Adoption --------------------------------------------------------------

def build_locator(page: Page, info: A11yNodeInfo) -> Optional[Locator]:
    """Pick a locator strategy for a node: role+name, else exact name text, else exact description text."""
    if info.role and info.name:
        return page.get_by_role(info.role, name=info.name)  # type: ignore[arg-type]
    if info.name:
        return page.get_by_text(info.name, exact=True)
    if info.description:
        return page.get_by_text(info.description, exact=True)
    return None


async def summarize_candidates(locator: Locator) -> Dict[str, Any]:
    """Describe up to the first ten live matches as `{tag, text}` items."""
    try:
        count = await locator.count()
        items = (await locator.evaluate_all(_SUMMARIZE_JS))[:MAX_AMBIGUOUS_ITEMS]
    except Exception as e:
        logger.debug(f"Could not summarize ambiguous matches: {e}")
        return {"count": None, "items": []}
    return {"count": count, "items": items}


async def adopt_a11y_node(page: Page, node_id: str, cache: TraceCache) -> Locator:
    """Bind a cached node id to exactly one live element.

    Raises:
        ToolError: ERR_NOT_FOUND when the cache is empty, the id is unknown,
            the node has no usable locator strategy or nothing matches;
            ERR_AMBIGUOUS when more than one element matches; ERR_UNKNOWN
            when counting matches fails.
    """
    if cache.is_empty:
        raise ToolError("a11y cache empty", code=ErrorCode.ERR_NOT_FOUND)
    info = cache.node_map.get(node_id)
    if info is None:
        raise ToolError("node not found", code=ErrorCode.ERR_NOT_FOUND, details={"a11y_node_id": node_id})

    locator = build_locator(page, info)
    if locator is None:
        raise ToolError("node not bindable", code=ErrorCode.ERR_NOT_FOUND, details={"a11y_node_id": node_id})

    try:
        count = await locator.count()
    except Exception as e:
        raise ToolError("locator error", code=ErrorCode.ERR_UNKNOWN, details={"reason": str(e)}) from e

    if count == 0:
        raise ToolError("no match", code=ErrorCode.ERR_NOT_FOUND, details={"a11y_node_id": node_id})
    if count > 1:
        raise ToolError("multiple matches", code=ErrorCode.ERR_AMBIGUOUS, details=await summarize_candidates(locator))
    return locator.first
