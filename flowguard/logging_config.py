"""
ログ設定 — flowguard ロガーへのハンドラ設定

各モジュールは ``logging.getLogger(__name__)`` でロガーを取得するだけとし、
ハンドラとフォーマットはここで flowguard ロガーに一度だけ設定する。
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

_ROOT_LOGGER = "flowguard"

# configure_logging() が追加したハンドラの目印
_HANDLER_ATTR = "_flowguard_handler"


def configure_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """flowguard ロガーにコンソール（と任意でファイル）ハンドラを設定する。

    何度呼んでもハンドラは重複しない。2 回目以降はレベルとハンドラを置き換える。

    Args:
        level: ログレベル（"DEBUG" 等の名前も可）
        log_file: ログファイルのパス（None の場合はコンソールのみ）

    Returns:
        設定済みの flowguard ロガー
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            raise ValueError(f"不明なログレベルです: {level}")

    logger = logging.getLogger(_ROOT_LOGGER)
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_ATTR, False):
            logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    setattr(console, _HANDLER_ATTR, True)
    logger.addHandler(console)

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        setattr(file_handler, _HANDLER_ATTR, True)
        logger.addHandler(file_handler)

    logger.setLevel(level)
    return logger
