# コアモジュール
# 待機エンジン、操作ラッパー、アーティファクト取得、テストコンテキスト、レポート、リスナーを提供

from .artifacts import Artifact, ArtifactCapture, sanitize_label
from .context import TestContext, TestContextRegistry
from .driver import (
    DetachedElementError,
    DriverError,
    ElementHandle,
    ElementNotFoundError,
    InteractionTarget,
    Locator,
    StaleElementError,
    TransientDriverError,
    UiDriver,
    resolve_target,
)
from .errors import (
    CaptureFailure,
    ConfigurationError,
    FlowguardError,
    InteractionFailure,
    ReportSinkClosedError,
    WaitTimeoutError,
)
from .interactions import InteractionWrapper, find_missing_options
from .listener import ExecutionListener, HasDriverHandle, resolve_driver
from .reporting import (
    EventKind,
    ReportEvent,
    ReportingPipeline,
    ReportNode,
    ReportSink,
    SinkState,
    render_html,
)
from .waits import (
    NOT_READY,
    Failed,
    FluentWait,
    Ready,
    WaitEngine,
    WaitPolicy,
    await_condition,
    get_default_policy,
    set_default_policy,
)

__all__ = [
    "Artifact",
    "ArtifactCapture",
    "CaptureFailure",
    "ConfigurationError",
    "DetachedElementError",
    "DriverError",
    "ElementHandle",
    "ElementNotFoundError",
    "EventKind",
    "ExecutionListener",
    "Failed",
    "FlowguardError",
    "FluentWait",
    "HasDriverHandle",
    "InteractionFailure",
    "InteractionTarget",
    "InteractionWrapper",
    "Locator",
    "NOT_READY",
    "Ready",
    "ReportEvent",
    "ReportNode",
    "ReportSink",
    "ReportSinkClosedError",
    "ReportingPipeline",
    "SinkState",
    "StaleElementError",
    "TestContext",
    "TestContextRegistry",
    "TransientDriverError",
    "UiDriver",
    "WaitEngine",
    "WaitPolicy",
    "WaitTimeoutError",
    "await_condition",
    "find_missing_options",
    "get_default_policy",
    "render_html",
    "resolve_driver",
    "resolve_target",
    "sanitize_label",
    "set_default_policy",
]
