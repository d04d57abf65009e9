# Application DI container
from dependency_injector import containers, providers

from app.scheduler import AgentScheduler
from core.config.settings import Settings
from core.database.connection import DatabaseManager
from core.storage.database import DatabaseTradingStore
from core.storage.memory import InMemoryTradingStore
from services.events.event_bus import RealtimeEventBus
from services.kiwoom.service import KiwoomService
from services.llm.service import LLMService
from services.news.service import NewsService
from services.strategy.service import StrategyService
from services.trading.decision_engine import DecisionEngine
from services.trading.execution_engine import ExecutionEngine
from services.universe.resolver import UniverseResolver
from services.universe.service import UniverseService


class AppContainer(containers.DeclarativeContainer):
    """Application dependency injection container"""

    settings = providers.Singleton(Settings)

    db_manager = providers.Singleton(
        DatabaseManager,
        db_url=settings.provided.database.url,
        echo=settings.provided.database.echo,
    )

    # DATABASE__BACKEND picks the persistence collaborator
    store = providers.Selector(
        settings.provided.database.backend,
        database=providers.Singleton(DatabaseTradingStore, db_manager=db_manager),
        memory=providers.Singleton(InMemoryTradingStore),
    )

    event_bus = providers.Singleton(RealtimeEventBus)

    kiwoom_service = providers.Singleton(
        KiwoomService,
        settings=settings.provided.kiwoom,
        store=store,
        events=event_bus,
    )

    strategy_service = providers.Singleton(
        StrategyService,
        file_path=settings.provided.strategy.file_path,
        store=store,
    )

    llm_service = providers.Singleton(
        LLMService,
        settings=settings.provided.llm,
        store=store,
    )

    news_service = providers.Singleton(
        NewsService,
        settings=settings.provided.news,
        store=store,
        llm=llm_service,
        strategy=strategy_service,
    )

    universe_service = providers.Singleton(
        UniverseService,
        settings=settings.provided.universe,
        store=store,
        kiwoom=kiwoom_service,
    )

    universe_resolver = providers.Singleton(
        UniverseResolver,
        universe=universe_service,
        strategy=strategy_service,
        store=store,
        kiwoom=kiwoom_service,
        news=news_service,
        watch_symbols=settings.provided.universe.watch_symbols,
        news_lookback=settings.provided.trading.news_lookback,
    )

    decision_engine = providers.Singleton(
        DecisionEngine,
        llm=llm_service,
        strategy=strategy_service,
        news=news_service,
        universe=universe_service,
        realtime=kiwoom_service,
        news_lookback=settings.provided.trading.news_lookback,
    )

    execution_engine = providers.Singleton(
        ExecutionEngine,
        store=store,
        strategy=strategy_service,
        realtime=kiwoom_service,
        orders=kiwoom_service,
        settings=settings.provided.trading,
    )

    agent_scheduler = providers.Singleton(
        AgentScheduler,
        store=store,
        kiwoom=kiwoom_service,
        resolver=universe_resolver,
        decision_engine=decision_engine,
        execution_engine=execution_engine,
        news=news_service,
        events=event_bus,
    )
