import asyncio
import logging
import time
import uuid
import weakref
from typing import Optional, Dict, List, Tuple

from fastapi import WebSocket
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError

from morris.config import Settings, settings
from morris.engine import initial_game_state, PIECES_PER_PLAYER
from morris.models import GameSession, GameState, PlayerRole, ServerEvent, SessionMetadata

logger = logging.getLogger(__name__)


class InMemoryStore:
    """In-memory fallback for local development without Redis"""
    def __init__(self):
        self.store: Dict[str, str] = {}
        logger.info("Using in-memory store (Redis not available)")

    async def get(self, key: str) -> Optional[str]:
        return self.store.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None):
        self.store[key] = value

    async def delete(self, key: str):
        self.store.pop(key, None)

    async def close(self):
        pass


def _session_key(session_id: str) -> str:
    return f"session:{session_id}"


def is_fresh_game(state: GameState) -> bool:
    """まだ誰も駒を置いていないか"""
    return state.player1_pieces == PIECES_PER_PLAYER and state.player2_pieces == PIECES_PER_PLAYER


def role_for(session: GameSession, player_id: Optional[str]) -> PlayerRole:
    """player_idに割り当て済みの役割"""
    if player_id:
        if player_id == session.metadata.player1_id:
            return PlayerRole.PLAYER_1
        if player_id == session.metadata.player2_id:
            return PlayerRole.PLAYER_2
    return PlayerRole.OBSERVER


class SessionManager:
    def __init__(self, config: Settings = settings):
        self.config = config
        self.active_connections: Dict[str, List[WebSocket]] = {}  # session_id -> [ws]
        # 使用中のロックだけ保持（参照がなくなれば消える）
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

        # Redisが利用可能な場合は使う、そうでなければインメモリ
        if config.redis_url:
            try:
                self.redis = Redis.from_url(config.redis_url, decode_responses=True)
                logger.info(f"Connected to Redis at {config.redis_url}")
            except Exception as e:
                logger.warning(f"Failed to connect to Redis: {e}. Using in-memory store.")
                self.redis = InMemoryStore()
        else:
            logger.info("REDIS_URL not set. Using in-memory store for local development.")
            self.redis = InMemoryStore()

    # -------------------------------------------------------------------------
    # Storage
    # -------------------------------------------------------------------------

    async def get_session(self, session_id: str) -> Optional[GameSession]:
        try:
            data = await self.redis.get(_session_key(session_id))
            if data:
                return GameSession.model_validate_json(data)
        except RedisConnectionError as e:
            logger.error(f"Redis connection error: {e}")
        return None

    async def save_session(self, session: GameSession) -> bool:
        session = session.model_copy(update={"last_activity": time.time()})
        try:
            await self.redis.set(_session_key(session.id), session.to_json(), ex=self.config.session_ttl_sec)
            return True
        except RedisConnectionError as e:
            logger.error(f"Redis save error: {e}")
            return False

    async def create_session(self) -> Tuple[GameSession, str]:
        """新規セッション作成（作成者がPlayer 1）"""
        player1_id = str(uuid.uuid4())
        session = GameSession(
            id=str(uuid.uuid4()),
            game_state=initial_game_state(),
            metadata=SessionMetadata(player1_id=player1_id),
        )
        await self.save_session(session)
        logger.info(f"Created session {session.id}")
        return session, player1_id

    async def update_state(self, session_id: str, state: GameState) -> Optional[GameSession]:
        session = await self.get_session(session_id)
        if not session:
            return None
        session = session.model_copy(update={"game_state": state})
        await self.save_session(session)
        return session

    async def join_session(
        self, session_id: str, player_id: Optional[str] = None
    ) -> Optional[Tuple[GameSession, PlayerRole, Optional[str]]]:
        """セッション参加（役割の割り当て）"""
        # 存在しないセッションにはロックを作らない
        if not await self.get_session(session_id):
            return None

        async with self.lock_for(session_id):
            session = await self.get_session(session_id)
            if not session:
                return None

            # 既に役割を持っている場合はそのまま
            role = role_for(session, player_id)
            if role != PlayerRole.OBSERVER:
                return session, role, player_id

            # 未開始かつPlayer 2が空いていればPlayer 2として参加
            if is_fresh_game(session.game_state) and not session.metadata.player2_id:
                player2_id = str(uuid.uuid4())
                metadata = session.metadata.model_copy(update={"player2_id": player2_id})
                session = session.model_copy(update={"metadata": metadata})
                await self.save_session(session)
                logger.info(f"Player 2 joined session {session_id}")
                return session, PlayerRole.PLAYER_2, player2_id

            logger.info(f"Observer joined session {session_id}")
            return session, PlayerRole.OBSERVER, None

    def lock_for(self, session_id: str) -> asyncio.Lock:
        """セッション単位で操作を直列化する"""
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    # -------------------------------------------------------------------------
    # Realtime
    # -------------------------------------------------------------------------

    async def connect(self, websocket: WebSocket, session_id: str):
        await websocket.accept()
        if session_id not in self.active_connections:
            self.active_connections[session_id] = []
        self.active_connections[session_id].append(websocket)

    def disconnect(self, websocket: WebSocket, session_id: str):
        connections = self.active_connections.get(session_id)
        if connections and websocket in connections:
            connections.remove(websocket)
            if not connections:
                del self.active_connections[session_id]

    async def broadcast(self, session_id: str, event: ServerEvent):
        if session_id not in self.active_connections:
            logger.warning(f"No active connections for session: {session_id}")
            return

        json_data = event.model_dump_json()
        logger.info(f"Broadcasting {event.type} to {len(self.active_connections[session_id])} clients in session {session_id}")

        for connection in list(self.active_connections[session_id]):
            try:
                await connection.send_text(json_data)
            except Exception as e:
                logger.error(f"Failed to send to client: {e}")

    async def close(self):
        """Cleanup resources"""
        try:
            await self.redis.close()
        except Exception as e:
            logger.error(f"Error closing Redis: {e}")


manager = SessionManager()
