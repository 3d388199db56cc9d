"""
エラー定義 — flowguard 全体で共有する例外階層

テストの正しさに影響するエラー（待機タイムアウト・操作失敗）と、
診断情報の取得にのみ影響するエラー（キャプチャ失敗）を区別する。

  - WaitTimeoutError: 待機条件がポリシーのタイムアウト内に成立しなかった（常に伝播）
  - InteractionFailure: ネイティブ操作とスクリプトフォールバックの両方が失敗した（常に伝播）
  - CaptureFailure: スクリーンショット・レポート書き込みの失敗（ログに格下げ、伝播しない）
  - ConfigurationError: 必須設定の欠落・不正値（起動時に致命的）
"""

from __future__ import annotations

from typing import Any, Optional


class FlowguardError(Exception):
    """flowguard が送出する例外の基底クラス。"""


# ---------------------------------------------------------------------------
# 正しさに影響するエラー
# ---------------------------------------------------------------------------

class WaitTimeoutError(FlowguardError, TimeoutError):
    """待機条件がタイムアウト時間内に成立しなかった場合のエラー。

    Attributes:
        description: 待機していた条件の説明
        timeout: 適用されたタイムアウト（秒）
        last_error: ポーリング中に最後に握りつぶした一時的エラー
    """

    def __init__(
        self,
        description: str,
        timeout: float,
        last_error: Optional[BaseException] = None,
    ) -> None:
        message = f"{description} が {timeout:.3g} 秒以内に成立しませんでした"
        if last_error is not None:
            message += f"（最後のエラー: {type(last_error).__name__}: {last_error}）"
        super().__init__(message)
        self.description = description
        self.timeout = timeout
        self.last_error = last_error


class InteractionFailure(FlowguardError):
    """ネイティブ操作とフォールバック操作の両方が失敗した場合のエラー。

    Attributes:
        target: 操作対象（Locator または要素ハンドル）
        cause: フォールバック失敗の原因となった例外
        action: 実行しようとした操作名（click / type / read）
        native_cause: フォールバックの前にネイティブ操作の経路で発生した例外
    """

    def __init__(
        self,
        target: Any,
        cause: BaseException,
        action: str = "click",
        native_cause: Optional[BaseException] = None,
    ) -> None:
        self.target = target
        self.cause = cause
        self.action = action
        self.native_cause = native_cause
        fallback = f"{type(cause).__name__}: {cause}"
        if native_cause is None:
            detail = fallback
        else:
            detail = f"native={type(native_cause).__name__}: {native_cause}; fallback={fallback}"
        super().__init__(f"{action} に失敗しました: {describe_target(target)} ({detail})")


# ---------------------------------------------------------------------------
# 診断情報のみに影響するエラー
# ---------------------------------------------------------------------------

class CaptureFailure(FlowguardError):
    """スクリーンショット取得やレポート書き込みに失敗した場合のエラー。

    呼び出し元で必ずログに格下げされ、テスト結果を覆い隠さない。
    """


class ReportSinkClosedError(FlowguardError):
    """フラッシュ済みのレポートシンクへ書き込もうとした場合のエラー。"""


# ---------------------------------------------------------------------------
# 設定エラー
# ---------------------------------------------------------------------------

class ConfigurationError(FlowguardError):
    """必須設定の欠落、または設定値の形式が不正な場合のエラー。"""


def describe_target(target: Any) -> str:
    """操作対象を人間が読める文字列に変換する。

    Locator は ``strategy=selector`` 形式、それ以外は repr を返す。
    """
    describe = getattr(target, "describe", None)
    if callable(describe):
        return str(describe())
    return repr(target)
