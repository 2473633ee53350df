"""
Nine Men's Morris Models - Pydantic v2
盤面トポロジー・ゲーム状態・セッション・WebSocketメッセージ
"""

from enum import Enum
from typing import List, Dict, Optional, Any, Tuple
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
import time
import json


BOARD_SIZE = 24


# =============================================================================
# Enums
# =============================================================================

class PlayerId(str, Enum):
    PLAYER_1 = "Player 1"
    PLAYER_2 = "Player 2"


class PlayerRole(str, Enum):
    PLAYER_1 = "Player 1"
    PLAYER_2 = "Player 2"
    OBSERVER = "Observer"      # 観戦者（操作不可）


# =============================================================================
# Board Models
# =============================================================================

class BoardPosition(BaseModel):
    """盤面の交点（描画用座標のみ、ルールでは使わない）"""
    model_config = ConfigDict(frozen=True)

    id: int
    x: int
    y: int


class Board(BaseModel):
    """盤面全体（固定トポロジー）"""
    model_config = ConfigDict(frozen=True)

    meta: Dict[str, Any] = {}
    positions: Tuple[BoardPosition, ...]
    connections: Tuple[Tuple[int, int], ...]  # 隣接ペア（無向）
    mills: Tuple[Tuple[int, int, int], ...]   # ミル（3点の並び）

    @model_validator(mode="after")
    def _check_references(self) -> "Board":
        ids = {p.id for p in self.positions}
        if ids != set(range(len(self.positions))):
            raise ValueError("position ids must be 0..n-1")
        for pair in self.connections:
            if not set(pair) <= ids or pair[0] == pair[1]:
                raise ValueError(f"invalid connection: {pair}")
        for mill in self.mills:
            if not set(mill) <= ids or len(set(mill)) != 3:
                raise ValueError(f"invalid mill: {mill}")
        return self

    @classmethod
    def from_json_file(cls, filepath: str) -> "Board":
        """JSONファイルから盤面を読み込む"""
        with open(filepath, 'r', encoding='utf-8') as f:
            data = json.load(f)
        return cls(
            meta=data.get('meta', {}),
            positions=[BoardPosition(**p) for p in data['positions']],
            connections=data['connections'],
            mills=data['mills'],
        )

    @property
    def size(self) -> int:
        return len(self.positions)

    def get_neighbors(self, position_id: int) -> List[int]:
        neighbors = []
        for a, b in self.connections:
            if a == position_id:
                neighbors.append(b)
            elif b == position_id:
                neighbors.append(a)
        return neighbors

    def is_connected(self, a: int, b: int) -> bool:
        return (a, b) in self.connections or (b, a) in self.connections

    def mills_containing(self, position_id: int) -> List[Tuple[int, int, int]]:
        return [m for m in self.mills if position_id in m]


# =============================================================================
# Game State
# =============================================================================

class GameState(BaseModel):
    """ゲーム状態（不変・遷移ごとに新しい値を作る）"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    current_player: PlayerId = Field(PlayerId.PLAYER_1, alias="currentPlayer")
    board: Tuple[Optional[PlayerId], ...] = Field(default=(None,) * BOARD_SIZE)
    player1_pieces: int = Field(9, ge=0, alias="player1Pieces")
    player2_pieces: int = Field(9, ge=0, alias="player2Pieces")
    # 表示専用: 配置残数と同じ値で減っていく
    player1_mills_left_to_place: int = Field(9, ge=0, alias="player1MillsLeftToPlace")
    player2_mills_left_to_place: int = Field(9, ge=0, alias="player2MillsLeftToPlace")
    placement_phase_over: bool = Field(False, alias="placementPhaseOver")
    can_remove_opponent_piece: bool = Field(False, alias="canRemoveOpponentPiece")
    game_over: bool = Field(False, alias="gameOver")
    winner: Optional[PlayerId] = None

    @field_validator("board")
    @classmethod
    def _check_board_size(cls, value: Tuple[Optional[PlayerId], ...]) -> Tuple[Optional[PlayerId], ...]:
        if len(value) != BOARD_SIZE:
            raise ValueError(f"board must have exactly {BOARD_SIZE} cells, got {len(value)}")
        return value

    def pieces_left(self, player: PlayerId) -> int:
        """未配置の駒数"""
        return self.player1_pieces if player == PlayerId.PLAYER_1 else self.player2_pieces

    def to_dict(self) -> Dict[str, Any]:
        """永続化・送信用のフラットな形式（camelCase）"""
        return self.model_dump(by_alias=True, mode="json")


class ActionOutcome(BaseModel):
    """遷移関数の戻り値"""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    new_state: GameState = Field(alias="newState")
    mill_just_formed: bool = Field(False, alias="millJustFormed")
    action_took_place: bool = Field(False, alias="actionTookPlace")


class ActionResult(BaseModel):
    """apply_actionの結果（ユーザー向けメッセージ付き）"""
    outcome: ActionOutcome
    message: Optional[str] = None

    @property
    def state(self) -> GameState:
        return self.outcome.new_state


# =============================================================================
# Session Models
# =============================================================================

class SessionMetadata(BaseModel):
    """セッションの付随情報（ルールエンジンは参照しない）"""
    player1_id: Optional[str] = None
    player2_id: Optional[str] = None


class GameSession(BaseModel):
    """保存されるセッションレコード"""
    id: str
    game_state: GameState = Field(default_factory=GameState)
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)
    created_at: float = Field(default_factory=time.time)
    last_activity: float = Field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class JoinRequest(BaseModel):
    player_id: Optional[str] = None


# =============================================================================
# Messages (WebSocket)
# =============================================================================

class ClientAction(BaseModel):
    """クライアント→サーバのアクション"""
    type: str  # "place", "move", "remove", "select"
    payload: Dict[str, Any] = {}


class ServerEvent(BaseModel):
    """サーバ→クライアントのイベント"""
    type: str  # "state_update", "legal_destinations", "game_over", "error"
    payload: Dict[str, Any] = {}

    @classmethod
    def state_update(cls, session: GameSession, message: Optional[str] = None) -> "ServerEvent":
        return cls(type="state_update", payload={
            "session_id": session.id,
            "game_state": session.game_state.to_dict(),
            "message": message,
        })

    @classmethod
    def legal_destinations(cls, from_index: int, destinations: List[int]) -> "ServerEvent":
        return cls(type="legal_destinations", payload={"from": from_index, "positions": destinations})

    @classmethod
    def game_over(cls, winner: Optional[PlayerId]) -> "ServerEvent":
        return cls(type="game_over", payload={"winner": winner.value if winner else None})

    @classmethod
    def error(cls, message: str, details: Optional[Dict[str, Any]] = None) -> "ServerEvent":
        return cls(type="error", payload={"message": message, "details": details or {}})
