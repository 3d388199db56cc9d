"""
CLI エントリポイント — Typer ベースのコマンドラインインターフェース

flowguard コマンドとして以下のサブコマンドを提供する:
  - init: プロジェクト雛形（ディレクトリと flowguard.yaml）生成
  - config: 有効な設定の表示と検証
  - report: JSON レポートから HTML レポートを再生成

テストスイートの起動は pytest（``-p flowguard.pytest_plugin``）で行う。
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Typer アプリ定義
# ---------------------------------------------------------------------------

app = typer.Typer(
    help=(
        "flowguard — 不安定な UI に対する待機・操作・失敗レポートの基盤\n\n"
        "基本の流れ:\n"
        "  1. flowguard init      設定ファイルとディレクトリを生成\n"
        "  2. pytest -p flowguard.pytest_plugin --flowguard-report reports/report.html\n"
        "  3. flowguard report reports/report.json  HTML レポートを再生成\n\n"
        "詳しくは各コマンドに --help を付けてください。"
    ),
    no_args_is_help=True,
)


@app.callback()
def main(
    log_level: str = typer.Option(
        "WARNING", "--log-level", help="ログレベル（DEBUG / INFO / WARNING / ERROR）",
    ),
) -> None:
    """共通オプションの処理。"""
    from .logging_config import configure_logging

    try:
        configure_logging(log_level)
    except ValueError as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# init コマンド
# ---------------------------------------------------------------------------

@app.command()
def init(
    project_dir: Path = typer.Argument(
        Path("."), help="プロジェクトディレクトリ（デフォルト: カレント）",
    ),
    base_url: str = typer.Option(
        "http://localhost:3000", "--base-url", help="テスト対象のベース URL",
    ),
) -> None:
    """プロジェクト雛形（ディレクトリ構造と設定テンプレート）を生成する。"""
    from .config import DEFAULT_CONFIG_FILE, render_template

    try:
        # ディレクトリ構造を作成
        for d in ("tests", "reports/screenshots"):
            (project_dir / d).mkdir(parents=True, exist_ok=True)

        # 設定ファイルテンプレートを生成（既存ファイルは上書きしない）
        config_path = project_dir / DEFAULT_CONFIG_FILE
        if config_path.exists():
            typer.echo(f"設定ファイルは既に存在します: {config_path}")
        else:
            config_path.write_text(render_template(base_url), encoding="utf-8")

        typer.echo(f"プロジェクトを初期化しました: {project_dir.resolve()}")
    except OSError as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# config コマンド
# ---------------------------------------------------------------------------

@app.command("config")
def show_config(
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="設定ファイル（省略時はカレントの flowguard.yaml）",
    ),
    require: Optional[list[str]] = typer.Option(
        None, "--require", "-r", help="必須とする設定キー（複数指定可）",
    ),
) -> None:
    """有効な設定（ファイル + 環境変数 + デフォルト値）を表示する。"""
    from .config import load_settings
    from .core.errors import ConfigurationError

    try:
        settings = load_settings(config_file, required=require or ())
    except ConfigurationError as exc:
        typer.echo(f"設定エラー: {exc}", err=True)
        raise typer.Exit(code=1)

    source = settings.source.as_posix() if settings.source else "(なし)"
    typer.echo(f"設定ファイル: {source}")
    for key, value in settings.as_dict().items():
        typer.echo(f"  {key}: {value}")


# ---------------------------------------------------------------------------
# report コマンド
# ---------------------------------------------------------------------------

@app.command()
def report(
    report_json: Path = typer.Argument(..., help="JSON レポート（report.json）"),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="HTML の出力先（省略時は JSON と同じ場所の .html）",
    ),
) -> None:
    """既存の JSON レポートから HTML レポートを再生成する。"""
    from .core.reporting import render_html

    try:
        if not report_json.exists():
            typer.echo(f"エラー: {report_json} が見つかりません", err=True)
            raise typer.Exit(code=1)

        # JSON レポートを読み込み
        with open(report_json, "r", encoding="utf-8") as f:
            report_data = json.load(f)

        html_path = render_html(report_data, output or report_json.with_suffix(".html"))
        typer.echo(f"HTML レポートを生成しました: {html_path}")
    except typer.Exit:
        raise
    except Exception as exc:
        typer.echo(f"エラー: {exc}", err=True)
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
