# flowguard — 不安定な UI に対する待機・操作・失敗レポートの基盤

__version__ = "0.1.0"
