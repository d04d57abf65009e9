from pathlib import Path
from typing import Optional

from core.logging import get_logger
from core.schemas.strategy import StrategyRevisionRecord
from core.storage.base import TradingStore
from core.trading.models import TradingPolicy, UniversePolicy
from .policy import parse_trading_policy, parse_universe_policy

DEFAULT_STRATEGY = "# Short-Term Trading Strategy\n\n- Keep risk low and react fast.\n"


class StrategyService:
    """Owns the strategy markdown document on disk and its revision history."""

    def __init__(self, file_path: str, store: TradingStore, base_dir: Optional[Path] = None):
        path = Path(file_path)
        if not path.is_absolute():
            path = (base_dir or Path.cwd()) / path
        self.path = path
        self.store = store
        self.logger = get_logger("strategy_service", component="strategy")
        self._ensure_strategy_file()

    def _ensure_strategy_file(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.path.write_text(DEFAULT_STRATEGY, encoding="utf-8")
            self.logger.info("Created default strategy document", path=str(self.path))

    def get_current_strategy(self) -> str:
        self._ensure_strategy_file()
        return self.path.read_text(encoding="utf-8")

    async def update_strategy(self, content: str, source: str) -> StrategyRevisionRecord:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(content, encoding="utf-8")
        revision = StrategyRevisionRecord(source=source, content=content)
        await self.store.append_strategy_revision(revision)
        self.logger.info("Strategy updated", source=source, length=len(content))
        return revision

    def get_trading_policy(self) -> TradingPolicy:
        return parse_trading_policy(self.get_current_strategy())

    def get_universe_policy(self) -> UniversePolicy:
        return parse_universe_policy(self.get_current_strategy())
