"""
Nine Men's Morris Game Engine - Pure Functions
全ての遷移関数は新しいGameStateを返す（入力は変更しない）
"""

import logging
from typing import List, Optional, Set

from morris.board import BOARD, MILLS, MILLS_BY_POSITION, are_adjacent, is_valid_position
from morris.models import (
    GameState, PlayerId, ActionOutcome, ActionResult, ClientAction
)

logger = logging.getLogger(__name__)

PIECES_PER_PLAYER = 9
FLYING_PIECE_COUNT = 3   # この数ちょうどで「飛び」が可能
MIN_PIECES = 3           # 配置終了後、これ未満で負け

MSG_GAME_OVER = "The game is over."
MSG_MUST_REMOVE = "You must remove an opponent piece!"
MSG_PROTECTED = "You can't remove a piece that's in a mill unless there are no other options."


# =============================================================================
# Initialization
# =============================================================================

def initial_game_state() -> GameState:
    """ゲーム初期化（全駒未配置）"""
    return GameState(
        current_player=PlayerId.PLAYER_1,
        board=(None,) * BOARD.size,
        player1_pieces=PIECES_PER_PLAYER,
        player2_pieces=PIECES_PER_PLAYER,
        player1_mills_left_to_place=PIECES_PER_PLAYER,
        player2_mills_left_to_place=PIECES_PER_PLAYER,
    )


def opponent(player: PlayerId) -> PlayerId:
    return PlayerId.PLAYER_2 if player == PlayerId.PLAYER_1 else PlayerId.PLAYER_1


def count_pieces(state: GameState, player: PlayerId) -> int:
    """盤上の駒数"""
    return sum(1 for cell in state.board if cell == player)


def _no_action(state: GameState) -> ActionOutcome:
    return ActionOutcome(new_state=state, mill_just_formed=False, action_took_place=False)


def _next_player(current: PlayerId, mill_formed: bool) -> PlayerId:
    # ミル成立時は手番を保持（続けて相手の駒を取る）
    return current if mill_formed else opponent(current)


# =============================================================================
# Mill Detection
# =============================================================================

def check_mill_formed(state: GameState, index: int) -> bool:
    """indexを含むミルが手番プレイヤーの駒で揃っているか"""
    board = state.board
    player = state.current_player
    return any(
        all(board[pos] == player for pos in mill)
        for mill in MILLS_BY_POSITION.get(index, [])
    )


def is_in_completed_mill(state: GameState, index: int, player: PlayerId) -> bool:
    """indexがplayerの完成済みミルに含まれるか"""
    return any(
        all(state.board[pos] == player for pos in mill)
        for mill in MILLS_BY_POSITION.get(index, [])
    )


def pieces_in_mills(state: GameState, player: PlayerId) -> Set[int]:
    """playerの完成済みミルに属する駒の位置（重複なし）"""
    positions: Set[int] = set()
    for mill in MILLS:
        if all(state.board[pos] == player for pos in mill):
            positions.update(mill)
    return positions


# =============================================================================
# Placement
# =============================================================================

def place_piece(state: GameState, index: int) -> ActionOutcome:
    """駒を配置（配置フェーズ）"""
    player = state.current_player

    # 盤外・既に駒がある場所には置けない
    if not is_valid_position(index) or state.board[index] is not None:
        logger.debug("place_piece rejected: %s is not an empty position", index)
        return _no_action(state)

    # 残り駒がない
    if state.pieces_left(player) == 0:
        logger.debug("place_piece rejected: %s has no pieces left", player.value)
        return _no_action(state)

    new_board = list(state.board)
    new_board[index] = player
    placed = state.model_copy(update={"board": tuple(new_board)})

    mill_just_formed = check_mill_formed(placed, index)

    if player == PlayerId.PLAYER_1:
        counters = {
            "player1_pieces": state.player1_pieces - 1,
            "player1_mills_left_to_place": max(state.player1_mills_left_to_place - 1, 0),
        }
    else:
        counters = {
            "player2_pieces": state.player2_pieces - 1,
            "player2_mills_left_to_place": max(state.player2_mills_left_to_place - 1, 0),
        }
    p1_left = counters.get("player1_pieces", state.player1_pieces)
    p2_left = counters.get("player2_pieces", state.player2_pieces)

    new_state = placed.model_copy(update={
        **counters,
        "current_player": _next_player(player, mill_just_formed),
        # 一度Trueになったら戻らない
        "placement_phase_over": state.placement_phase_over or (p1_left == 0 and p2_left == 0),
        "can_remove_opponent_piece": mill_just_formed,
    })
    return ActionOutcome(new_state=new_state, mill_just_formed=mill_just_formed, action_took_place=True)


# =============================================================================
# Movement
# =============================================================================

def can_fly(state: GameState, player: PlayerId) -> bool:
    """残り3駒なら任意の空きマスへ移動可能"""
    return state.placement_phase_over and count_pieces(state, player) == FLYING_PIECE_COUNT


def _is_legal_move(state: GameState, from_index: int, to_index: int) -> bool:
    if not state.placement_phase_over:
        return False
    if not is_valid_position(from_index) or not is_valid_position(to_index):
        return False
    if from_index == to_index:
        return False
    if state.board[from_index] != state.current_player or state.board[to_index] is not None:
        return False
    if count_pieces(state, state.current_player) == FLYING_PIECE_COUNT:
        return True
    return are_adjacent(from_index, to_index)


def move_piece(state: GameState, from_index: int, to_index: int) -> ActionOutcome:
    """駒を移動（移動フェーズ・飛び）"""
    if not _is_legal_move(state, from_index, to_index):
        logger.debug("move_piece rejected: %s -> %s", from_index, to_index)
        return _no_action(state)

    player = state.current_player
    new_board = list(state.board)
    new_board[from_index] = None
    new_board[to_index] = player
    moved = state.model_copy(update={"board": tuple(new_board)})

    mill_just_formed = check_mill_formed(moved, to_index)

    new_state = moved.model_copy(update={
        "current_player": _next_player(player, mill_just_formed),
        "can_remove_opponent_piece": mill_just_formed,
    })
    return ActionOutcome(new_state=new_state, mill_just_formed=mill_just_formed, action_took_place=True)


def get_legal_destinations(state: GameState, from_index: int) -> List[int]:
    """from_indexの駒が移動できるマス一覧"""
    return [to for to in range(BOARD.size) if _is_legal_move(state, from_index, to)]


# =============================================================================
# Capture
# =============================================================================

def _is_removable(state: GameState, index: int) -> bool:
    target = opponent(state.current_player)
    if not is_valid_position(index) or state.board[index] != target:
        return False

    if is_in_completed_mill(state, index, target):
        # ミル外の駒が残っているならミルの駒は取れない
        target_count = count_pieces(state, target)
        if target_count > MIN_PIECES and len(pieces_in_mills(state, target)) < target_count:
            return False
    return True


def remove_opponent_piece(state: GameState, index: int) -> ActionOutcome:
    """相手の駒を取る

    成功時は手番が相手に移る。can_remove_opponent_pieceはここではリセットしない
    （呼び出し側の責任）。
    """
    if not _is_removable(state, index):
        logger.debug("remove_opponent_piece rejected: %s", index)
        return _no_action(state)

    remover = state.current_player
    target = opponent(remover)

    new_board = list(state.board)
    new_board[index] = None
    new_state = state.model_copy(update={"board": tuple(new_board)})

    # 終了判定は配置フェーズ終了後のみ
    game_over = False
    winner: Optional[PlayerId] = None
    if state.placement_phase_over and count_pieces(new_state, target) < MIN_PIECES:
        game_over = True
        winner = remover

    new_state = new_state.model_copy(update={
        "current_player": target,
        "game_over": game_over,
        "winner": winner,
    })
    return ActionOutcome(new_state=new_state, mill_just_formed=False, action_took_place=True)


def get_removable_positions(state: GameState) -> List[int]:
    """取ることができる相手の駒の位置"""
    return [i for i in range(BOARD.size) if _is_removable(state, i)]


# =============================================================================
# Action Dispatch
# =============================================================================

def _position_arg(payload: dict, key: str) -> Optional[int]:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


def _result(outcome: ActionOutcome, message: Optional[str] = None) -> ActionResult:
    return ActionResult(outcome=outcome, message=message)


def _placed_or_moved_message(outcome: ActionOutcome) -> Optional[str]:
    if outcome.mill_just_formed:
        return f"{outcome.new_state.current_player.value} formed a mill! Remove an opponent's piece."
    return None


def apply_action(state: GameState, action: ClientAction) -> ActionResult:
    """クライアントのアクションを1回分の遷移として適用"""
    if state.game_over:
        return _result(_no_action(state), MSG_GAME_OVER)

    # ミル成立後は相手の駒を取るまで他の操作は不可
    if state.can_remove_opponent_piece:
        if action.type != "remove":
            return _result(_no_action(state), MSG_MUST_REMOVE)
        index = _position_arg(action.payload, "position")
        if index is None or not is_valid_position(index) or state.board[index] != opponent(state.current_player):
            return _result(_no_action(state), MSG_MUST_REMOVE)

        outcome = remove_opponent_piece(state, index)
        if not outcome.action_took_place:
            return _result(outcome, MSG_PROTECTED)

        cleared = outcome.new_state.model_copy(update={"can_remove_opponent_piece": False})
        outcome = outcome.model_copy(update={"new_state": cleared})
        message = f"{cleared.winner.value} wins!" if cleared.game_over and cleared.winner else None
        return _result(outcome, message)

    if action.type == "remove":
        return _result(_no_action(state), "There is no mill to remove a piece with.")

    if not state.placement_phase_over:
        if action.type != "place":
            return _result(_no_action(state), "Pieces can only be placed until all are on the board.")
        index = _position_arg(action.payload, "position")
        if index is None:
            return _result(_no_action(state), "A position is required.")
        outcome = place_piece(state, index)
        if not outcome.action_took_place:
            return _result(outcome, "You can't place a piece there.")
        return _result(outcome, _placed_or_moved_message(outcome))

    if action.type != "move":
        return _result(_no_action(state), "All pieces are placed; move a piece instead.")
    from_index = _position_arg(action.payload, "from")
    to_index = _position_arg(action.payload, "to")
    if from_index is None or to_index is None:
        return _result(_no_action(state), "Both 'from' and 'to' positions are required.")
    outcome = move_piece(state, from_index, to_index)
    if not outcome.action_took_place:
        return _result(outcome, "You can't move that piece there.")
    return _result(outcome, _placed_or_moved_message(outcome))


# =============================================================================
# Utility
# =============================================================================

def get_phase_label(state: GameState) -> str:
    """表示用フェーズ名"""
    if not state.placement_phase_over:
        return "Placement"
    if any(count_pieces(state, p) == FLYING_PIECE_COUNT for p in PlayerId):
        return "Flying"
    return "Movement"


def get_game_summary(state: GameState) -> dict:
    """ゲーム状態サマリ"""
    return {
        "phase": get_phase_label(state),
        "current_player": state.current_player.value,
        "can_remove_opponent_piece": state.can_remove_opponent_piece,
        "players": {
            p.value: {
                "pieces_left": state.pieces_left(p),
                "pieces_on_board": count_pieces(state, p),
                "can_fly": can_fly(state, p),
            }
            for p in PlayerId
        },
        "game_over": state.game_over,
        "winner": state.winner.value if state.winner else None,
    }
