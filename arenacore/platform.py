"""
Competitive platform composition root.

Wires the rating store, tournament engine, admin controller, matchmaking
queue and broadcaster around one Redis client, exposes the inbound
operations, and runs the matchmaking tick loop in the background.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator, List, Optional, Tuple

import redis.asyncio as redis

from arenacore.config import Settings, get_settings
from arenacore.events import EventBroadcaster, Subscription
from arenacore.integration import GameIntegrationClient
from arenacore.logging_config import bound_context, configure_logging, get_logger
from arenacore.matchmaking import GameMode, MatchmakingQueue, QueueEntry, QueueMatch
from arenacore.rating import EloRatingEngine, RatingBook
from arenacore.tournament import (
    MatchResult,
    MatchResultVerifier,
    Participant,
    TournamentAdminController,
    TournamentConfig,
    TournamentEngine,
    TournamentState,
)
from arenacore.utils.distributed_lock import DistributedLockError, DistributedLockManager
from arenacore.utils.errors import CoreError
from arenacore.utils.redis_client import close_redis, init_redis

logger = get_logger(__name__)

# Ticks between retention sweeps
PURGE_EVERY_TICKS = 60


class CompetitivePlatform:
    """
    Competitive core.

    Usage:
        platform = CompetitivePlatform(redis_client)
        await platform.start()
        ...
        await platform.stop()
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        settings: Optional[Settings] = None,
        verifier: Optional[MatchResultVerifier] = None,
        modes: Optional[List[GameMode]] = None,
    ):
        self.redis = redis_client
        self.settings = settings or get_settings()
        s = self.settings

        self.lock_manager = DistributedLockManager(
            redis_client,
            default_lock_timeout_ms=s.lock_timeout_ms,
            default_acquire_timeout_ms=s.lock_acquire_timeout_ms,
            retry_interval_ms=s.lock_retry_interval_ms,
        )
        self.broadcaster = EventBroadcaster(
            replay_size=s.broadcast_replay_size,
            subscriber_buffer=s.broadcast_subscriber_buffer,
            redis_client=redis_client if s.broadcast_mirror_enabled else None,
            stream_max_len=s.broadcast_stream_max_len,
        )
        self.rating_engine = EloRatingEngine(
            k_factor=s.elo_k_factor,
            scale_factor=s.elo_scale_factor,
            initial_rating=s.initial_rating,
        )
        self.rating_book = RatingBook(redis_client, self.rating_engine, self.lock_manager)

        self._game_client: Optional[GameIntegrationClient] = None
        if verifier is None and s.game_integration_url:
            self._game_client = GameIntegrationClient.from_settings(s)
            verifier = self._game_client
        self.verifier = verifier

        self.tournaments = TournamentEngine(
            self.lock_manager,
            self.broadcaster,
            self.rating_book,
            verifier=verifier,
            retention_seconds=s.tournament_retention_seconds,
        )
        self.admin = TournamentAdminController(self.tournaments)
        self.queue = MatchmakingQueue(
            self.lock_manager,
            self.broadcaster,
            self.rating_book,
            base_radius=s.matchmaking_base_radius,
            growth_rate=s.matchmaking_growth_rate,
            max_radius=s.matchmaking_max_radius,
            retention_seconds=s.matchmaking_match_retention_seconds,
            verifier=verifier,
        )
        for mode in modes or [GameMode("ranked")]:
            self.queue.register_mode(mode)

        self._tick_task: Optional[asyncio.Task] = None
        self._running = False

    async def start(self) -> None:
        """Start the event mirror and the matchmaking loop."""
        if self._running:
            return
        if self._game_client is not None:
            await self._game_client.open()
        await self.broadcaster.initialize()
        self._running = True
        self._tick_task = asyncio.create_task(self._tick_loop())
        logger.info("platform_started", modes=self.queue.modes)

    async def stop(self) -> None:
        """Graceful shutdown."""
        self._running = False
        if self._tick_task:
            self._tick_task.cancel()
            try:
                await self._tick_task
            except asyncio.CancelledError:
                pass
            self._tick_task = None
        await self.broadcaster.shutdown()
        await self.lock_manager.cleanup_all()
        if self._game_client is not None:
            await self._game_client.close()
        logger.info("platform_stopped")

    async def _tick_loop(self) -> None:
        """Matchmaking passes plus a periodic maintenance sweep."""
        ticks = 0
        while self._running:
            try:
                await self.queue.tick()
                ticks += 1
                if ticks % PURGE_EVERY_TICKS == 0:
                    await self.sweep()
            except asyncio.CancelledError:
                break
            except (CoreError, DistributedLockError, redis.RedisError) as e:
                logger.warning("tick_failed", error=str(e))
            except Exception:
                logger.exception("tick_crashed")
            await asyncio.sleep(self.settings.matchmaking_tick_interval)

    async def sweep(self) -> None:
        """Concede deferred forfeits and drop expired tournaments and queue matches."""
        await self.tournaments.resolve_pending_forfeits()
        await self.tournaments.purge_expired()
        await self.queue.purge_expired()

    # =========================================================================
    # Inbound operations
    # =========================================================================

    async def create_tournament(self, config: TournamentConfig) -> TournamentState:
        return await self.tournaments.create_tournament(config)

    async def open_registration(self, tournament_id: str) -> TournamentState:
        return await self.tournaments.open_registration(tournament_id)

    async def start_tournament(self, tournament_id: str) -> TournamentState:
        with bound_context(tournament_id=tournament_id):
            return await self.tournaments.start_tournament(tournament_id)

    async def register_participant(
        self,
        tournament_id: str,
        user_id: str,
        display_name: Optional[str] = None,
    ) -> Tuple[TournamentState, Participant]:
        with bound_context(tournament_id=tournament_id, participant_id=user_id):
            return await self.tournaments.register_participant(
                tournament_id, user_id, display_name
            )

    async def withdraw_participant(self, tournament_id: str, user_id: str) -> TournamentState:
        with bound_context(tournament_id=tournament_id, participant_id=user_id):
            return await self.tournaments.withdraw_participant(tournament_id, user_id)

    async def submit_match_result(self, match_id: str, result: MatchResult) -> TournamentState:
        with bound_context(match_id=match_id):
            return await self.tournaments.submit_match_result(match_id, result)

    async def enqueue(self, user_id: str, mode: str) -> QueueEntry:
        with bound_context(participant_id=user_id, mode=mode):
            return await self.queue.enqueue(user_id, mode)

    async def dequeue(self, user_id: str, mode: Optional[str] = None) -> List[QueueEntry]:
        with bound_context(participant_id=user_id, mode=mode):
            return await self.queue.dequeue(user_id, mode)

    async def submit_queue_result(self, match_id: str, result: MatchResult) -> QueueMatch:
        with bound_context(match_id=match_id):
            return await self.queue.submit_result(match_id, result)

    def subscribe(self, topic: str, after_sequence: Optional[int] = None) -> Subscription:
        return self.broadcaster.subscribe(topic, after_sequence)


@asynccontextmanager
async def run_platform(
    settings: Optional[Settings] = None,
    verifier: Optional[MatchResultVerifier] = None,
    modes: Optional[List[GameMode]] = None,
) -> AsyncGenerator[CompetitivePlatform, None]:
    """
    Process lifespan: logging, Redis pool, platform start and shutdown.

    Usage:
        async with run_platform() as platform:
            await platform.enqueue("p1", "ranked")
    """
    settings = settings or get_settings()
    configure_logging(
        log_level=settings.log_level,
        json_logs=settings.json_logs,
        app_env=settings.app_env,
    )

    logger.info("Starting competitive core...")
    redis_client = await init_redis(settings)
    logger.info("Redis connection established")

    platform = CompetitivePlatform(redis_client, settings, verifier=verifier, modes=modes)
    await platform.start()
    try:
        yield platform
    finally:
        await platform.stop()
        await close_redis()
        logger.info("Redis connection closed")
