"""
盤面データ（起動時に一度だけロード）
"""

import os

from morris.models import Board


BOARD_FILE = os.path.join(os.path.dirname(__file__), "data", "board_nine_mens_morris.json")

BOARD = Board.from_json_file(BOARD_FILE)

# 呼び出し側向けの短縮名
POSITIONS = BOARD.positions
CONNECTIONS = BOARD.connections
MILLS = BOARD.mills

# 位置 -> その位置を含むミル
MILLS_BY_POSITION = {p.id: BOARD.mills_containing(p.id) for p in BOARD.positions}


def are_adjacent(a: int, b: int) -> bool:
    return BOARD.is_connected(a, b)


def is_valid_position(index) -> bool:
    return isinstance(index, int) and not isinstance(index, bool) and 0 <= index < BOARD.size


def get_board_layout() -> dict:
    """描画層に渡す盤面情報"""
    return {
        "meta": BOARD.meta,
        "positions": [p.model_dump() for p in BOARD.positions],
        "connections": [list(c) for c in BOARD.connections],
        # 選択時のハイライト用
        "neighbors": {p.id: sorted(BOARD.get_neighbors(p.id)) for p in BOARD.positions},
        "mills": [list(m) for m in BOARD.mills],
    }
