"""Constants used throughout the RPA agent."""
from enum import Enum
from typing import FrozenSet


class ErrorCode(str, Enum):
    """Flat error taxonomy shared by every result envelope."""
    ERR_NOT_FOUND = "ERR_NOT_FOUND"
    ERR_AMBIGUOUS = "ERR_AMBIGUOUS"
    ERR_TIMEOUT = "ERR_TIMEOUT"
    ERR_NOT_INTERACTABLE = "ERR_NOT_INTERACTABLE"
    ERR_INTERNAL = "ERR_INTERNAL"
    ERR_BAD_ARGS = "ERR_BAD_ARGS"
    ERR_NOT_IMPLEMENTED = "ERR_NOT_IMPLEMENTED"
    ERR_UNSUPPORTED = "ERR_UNSUPPORTED"
    ERR_ASSERTION_FAILED = "ERR_ASSERTION_FAILED"
    ERR_UNKNOWN = "ERR_UNKNOWN"


# Codes the step layer passes through verbatim; everything else narrows to ERR_INTERNAL.
PASSTHROUGH_ERROR_CODES: FrozenSet[str] = frozenset({
    ErrorCode.ERR_NOT_FOUND.value,
    ErrorCode.ERR_AMBIGUOUS.value,
    ErrorCode.ERR_TIMEOUT.value,
})


class TraceOp(str, Enum):
    """Names of the atomic operations exposed by the trace layer."""
    CONTEXT_NEW_PAGE = "trace.context.newPage"
    PAGE_GOTO = "trace.page.goto"
    PAGE_GO_BACK = "trace.page.goBack"
    PAGE_RELOAD = "trace.page.reload"
    PAGE_GET_INFO = "trace.page.getInfo"
    PAGE_SNAPSHOT_A11Y = "trace.page.snapshotA11y"
    PAGE_SCREENSHOT = "trace.page.screenshot"
    PAGE_SCROLL_TO = "trace.page.scrollTo"
    PAGE_SCROLL_BY = "trace.page.scrollBy"
    A11Y_FIND_BY_HINT = "trace.a11y.findByA11yHint"
    A11Y_RESOLVE_BY_NODE_ID = "trace.a11y.resolveByNodeId"
    LOCATOR_WAIT_FOR_VISIBLE = "trace.locator.waitForVisible"
    LOCATOR_SCROLL_INTO_VIEW = "trace.locator.scrollIntoView"
    LOCATOR_CLICK = "trace.locator.click"
    LOCATOR_FOCUS = "trace.locator.focus"
    LOCATOR_FILL = "trace.locator.fill"
    LOCATOR_TYPE = "trace.locator.type"
    LOCATOR_SELECT_OPTION = "trace.locator.selectOption"
    LOCATOR_HOVER = "trace.locator.hover"
    LOCATOR_DRAG_DROP = "trace.locator.dragDrop"
    KEYBOARD_PRESS = "trace.keyboard.press"
    MOUSE_ACTION = "trace.mouse.action"
    TABS_CREATE = "trace.tabs.create"
    TABS_SWITCH = "trace.tabs.switch"
    TABS_CLOSE = "trace.tabs.close"


class StepName(str, Enum):
    """The closed set of step kinds understood by the engine."""
    GOTO = "browser.goto"
    GO_BACK = "browser.go_back"
    RELOAD = "browser.reload"
    CREATE_TAB = "browser.create_tab"
    SWITCH_TAB = "browser.switch_tab"
    CLOSE_TAB = "browser.close_tab"
    GET_PAGE_INFO = "browser.get_page_info"
    SNAPSHOT = "browser.snapshot"
    TAKE_SCREENSHOT = "browser.take_screenshot"
    CLICK = "browser.click"
    FILL = "browser.fill"
    TYPE = "browser.type"
    SELECT_OPTION = "browser.select_option"
    HOVER = "browser.hover"
    SCROLL = "browser.scroll"
    PRESS_KEY = "browser.press_key"
    DRAG_AND_DROP = "browser.drag_and_drop"
    MOUSE = "browser.mouse"


class StepSource(str, Enum):
    """Where a step originated."""
    MCP = "mcp"
    PLAY = "play"
    SCRIPT = "script"


class LogLevel(str, Enum):
    """Log levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


# Session-storage key that carries a page's tab token.
TAB_TOKEN_KEY = "__rpa_tab_token"

DEFAULT_CONFIG_FILES = (
    ".rpa/runner_config.json",
    ".rpa/runner_config.yaml",
    ".rpa/runner_config.yml",
)

# Emoji mapping by log type and action
EMOJI_MAP = {
    "start": "🚀",
    "success": "✅",
    "error": "❌",
    "warning": "⚠️",
    "info": "ℹ️",
    "debug": "🔍",
    "critical": "🔥",

    # Component-specific emojis
    "server": "🖥️",
    "config": "🔧",
    "browser": "🌐",
    "workspace": "🗂️",
    "tab": "📑",
    "trace": "🧵",
    "cache": "💾",
    "step": "👣",
    "scheduler": "🚦",
    "record": "⏺️",
    "replay": "⏯️",
    "script": "📜",
    "tool": "🛠️",
    "request": "📤",
    "response": "📥",
    "time": "⏱️",
    "shutdown": "🛑",
    "test": "🧪",
}
