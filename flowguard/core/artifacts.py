"""
ArtifactCapture — 失敗診断用アーティファクトの取得・保存

テスト失敗時のスクリーンショットやスタックトレースを永続ストレージに保存する。
アーティファクトの取得はあくまでベストエフォートの診断情報であり、
テストの正しさには関与しないため、公開メソッドは決して例外を送出しない。

主な機能:
  - capture_screenshot(): ドライバからスクリーンショットを取得して保存
  - save_text(): スタックトレース等のテキスト添付を保存
  - ファイル名は {label}_{timestamp}.{ext} 形式（label はサニタイズ済み）
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Literal, Optional

from .driver import UiDriver
from .errors import CaptureFailure

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# ファイル名サニタイズ用パターン
# ---------------------------------------------------------------------------

_UNSAFE_CHARS = re.compile(r"[^\w\-]")
"""ファイル名に使用できない文字を検出する正規表現。"""

_MAX_LABEL_LENGTH = 100


# ---------------------------------------------------------------------------
# Artifact
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Artifact:
    """保存済みの診断ファイル。

    ReportEvent から参照される（所有はされない）。

    Attributes:
        kind: 種別（image: スクリーンショット, text: テキスト添付）
        path: 保存先パス
        event_id: 関連付けられたイベント ID
    """

    kind: Literal["image", "text"]
    path: Path
    event_id: Optional[str] = None


# ---------------------------------------------------------------------------
# ArtifactCapture 本体
# ---------------------------------------------------------------------------

class ArtifactCapture:
    """スクリーンショットとテキスト添付の保存を担当する。

    Attributes:
        output_dir: 保存先ディレクトリ（存在しなければ初回保存時に作成）
    """

    def __init__(
        self,
        output_dir: Path = Path("reports/screenshots"),
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.output_dir = Path(output_dir)
        self._now = now

    # ----- スクリーンショット -----

    def capture_screenshot(self, driver: Optional[UiDriver], label: str) -> Optional[Path]:
        """ドライバからスクリーンショットを取得し、PNG として保存する。

        ドライバが None の場合は取得を試みずに None を返す。
        取得・書き込みに失敗した場合も例外は送出せず、診断ログを出して None を返す。

        Args:
            driver: スクリーンショット取得元のドライバ
            label: ファイル名の接頭辞（テスト名等）

        Returns:
            保存先のパス。取得できなかった場合は None。
        """
        if driver is None:
            logger.warning("ドライバがないためスクリーンショットを取得できません: %s", label)
            return None

        try:
            try:
                data = driver.screenshot_as_png()
            except Exception as exc:
                raise CaptureFailure(f"スクリーンショットの取得に失敗しました: {exc}") from exc
            path = self._write(label, "png", data)
        except Exception as exc:
            logger.warning("%s", exc)
            return None

        logger.info("スクリーンショットを保存しました: %s", path)
        return path

    # ----- テキスト添付 -----

    def save_text(self, label: str, text: str) -> Optional[Path]:
        """テキスト添付（スタックトレース等）を保存する。

        失敗時は診断ログを出して None を返す。
        """
        try:
            path = self._write(label, "txt", text.encode("utf-8"))
        except Exception as exc:
            logger.warning("%s", exc)
            return None

        logger.info("テキスト添付を保存しました: %s", path)
        return path

    # ----- 内部ヘルパー -----

    def _write(self, label: str, ext: str, data: bytes) -> Path:
        """{label}_{timestamp}.{ext} にデータを書き込む。

        同一ラベル・同一時刻のファイルが既に存在する場合は連番を付与する。

        Raises:
            CaptureFailure: ディレクトリ作成・書き込みに失敗した場合
        """
        stem = f"{sanitize_label(label)}_{self._now().strftime('%Y%m%d%H%M%S%f')}"
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            path = self.output_dir / f"{stem}.{ext}"
            counter = 1
            while path.exists():
                path = self.output_dir / f"{stem}-{counter}.{ext}"
                counter += 1
            path.write_bytes(data)
        except (OSError, TypeError) as exc:
            raise CaptureFailure(f"アーティファクトの書き込みに失敗しました: {exc}") from exc
        return path


# ---------------------------------------------------------------------------
# ヘルパー関数
# ---------------------------------------------------------------------------

def sanitize_label(label: str) -> str:
    """ラベルをファイル名に安全な文字列に変換する。

    英数字、ハイフン、アンダースコア以外の文字をハイフンに置換し、
    連続するハイフンを1つにまとめる。空になった場合は "artifact" を返す。

    Args:
        label: サニタイズ対象のラベル

    Returns:
        サニタイズ済みのラベル
    """
    sanitized = _UNSAFE_CHARS.sub("-", label)
    # 連続するハイフンを1つにまとめる
    sanitized = re.sub(r"-+", "-", sanitized)
    # 先頭・末尾のハイフンを除去
    sanitized = sanitized.strip("-")[:_MAX_LABEL_LENGTH]
    return sanitized or "artifact"
