import json
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from morris.board import get_board_layout
from morris.config import settings
from morris.engine import apply_action, get_game_summary, get_legal_destinations
from morris.models import ClientAction, JoinRequest, PlayerRole, ServerEvent
from morris.session import manager, role_for

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await manager.close()


app = FastAPI(title="Nine Men's Morris", lifespan=lifespan)


@app.get("/")
async def root():
    return {"name": "nine-mens-morris", "status": "ok"}


@app.get("/api/board")
async def board():
    return get_board_layout()


@app.post("/api/sessions")
async def create_session():
    session, player_id = await manager.create_session()
    return {
        "session_id": session.id,
        "player_id": player_id,
        "role": PlayerRole.PLAYER_1.value,
        "session": session.to_dict(),
    }


@app.post("/api/sessions/{session_id}/join")
async def join_session(session_id: str, request: JoinRequest = JoinRequest()):
    joined = await manager.join_session(session_id, request.player_id)
    if joined is None:
        raise HTTPException(status_code=404, detail="Session not found")
    session, role, player_id = joined
    return {"role": role.value, "player_id": player_id, "session": session.to_dict()}


@app.get("/api/sessions/{session_id}")
async def get_session(session_id: str):
    # リアルタイム購読に失敗したクライアントのポーリング先
    session = await manager.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return {"session": session.to_dict(), "summary": get_game_summary(session.game_state)}


@app.websocket("/ws/{session_id}/{player_id}")
async def websocket_endpoint(websocket: WebSocket, session_id: str, player_id: str):
    logger.info(f"[WebSocket] New connection: session={session_id}, player={player_id}")

    session = await manager.get_session(session_id)
    if session is None:
        await websocket.accept()
        await websocket.send_text(ServerEvent.error("Session not found").model_dump_json())
        await websocket.close()
        return

    await manager.connect(websocket, session_id)
    await websocket.send_text(ServerEvent.state_update(session).model_dump_json())

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            data = message.get("text")
            if data is None:
                # バイナリフレームは受け付けない
                await websocket.send_text(ServerEvent.error("Only text frames are supported").model_dump_json())
                continue

            try:
                action = ClientAction(**json.loads(data))
            except (json.JSONDecodeError, TypeError, ValidationError) as e:
                await websocket.send_text(ServerEvent.error("Invalid action", {"reason": str(e)}).model_dump_json())
                continue
            logger.info(f"[Action] Received: {action.type} from {player_id}")

            async with manager.lock_for(session_id):
                session = await manager.get_session(session_id)
                if session is None:
                    await websocket.send_text(ServerEvent.error("Session not found").model_dump_json())
                    continue

                state = session.game_state

                # 盤面の問い合わせは誰でも可能
                if action.type == "select":
                    position = action.payload.get("position")
                    destinations = get_legal_destinations(state, position) if isinstance(position, int) else []
                    await websocket.send_text(
                        ServerEvent.legal_destinations(position, destinations).model_dump_json()
                    )
                    continue

                role = role_for(session, player_id)
                if role == PlayerRole.OBSERVER:
                    await websocket.send_text(ServerEvent.error("Observers cannot make moves").model_dump_json())
                    continue

                # 手番プレイヤーチェック
                if role.value != state.current_player.value:
                    logger.info(f"[Action] Not player's turn: current={state.current_player.value}, requesting={role.value}")
                    await websocket.send_text(ServerEvent.error("Not your turn").model_dump_json())
                    continue

                result = apply_action(state, action)
                if not result.outcome.action_took_place:
                    await websocket.send_text(ServerEvent.error(result.message or "Action rejected").model_dump_json())
                    continue

                session = await manager.update_state(session_id, result.state)
                if session is None:
                    await websocket.send_text(ServerEvent.error("Session not found").model_dump_json())
                    continue

            await manager.broadcast(session_id, ServerEvent.state_update(session, result.message))
            if result.state.game_over:
                await manager.broadcast(session_id, ServerEvent.game_over(result.state.winner))

    except WebSocketDisconnect:
        logger.info(f"[WebSocket] Disconnected: session={session_id}, player={player_id}")
    finally:
        manager.disconnect(websocket, session_id)


def run():
    import uvicorn

    uvicorn.run("morris.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
