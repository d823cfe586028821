import logging
import os
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

import grid_engine

logger = logging.getLogger(__name__)

RATE_LIMIT = os.environ.get("GRID_API_RATE_LIMIT", "100/minute")
LOG_LEVEL = os.environ.get("GRID_API_LOG_LEVEL", "INFO").upper()
MAX_BOARD_SIZE = 16

# Initialize the rate limiter
limiter = Limiter(key_func=get_remote_address)
app = FastAPI(
    title="Tile Merge Grid API",
    description="A stateless API over the tile merge grid engine. "\
                "Keep the game state (board, score, win_tile) on the client side.",
    version="1.0.0"
)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# --- Pydantic Models for API requests and responses ---

class NewGameSettings(BaseModel):
    """Settings for creating a new game."""
    size: Optional[int] = Field(
        default=grid_engine.GRID_SIZE,
        gt=1, # Board size must be at least 2x2
        le=MAX_BOARD_SIZE,
        description="Size of the N x N game board (e.g., 4 for a 4x4 board)."
    )
    win_tile: Optional[int] = Field(
        default=grid_engine.WIN_TILE,
        gt=0,
        description="The tile value that counts as reaching the target (e.g., 2048)."
    )


class CellData(BaseModel):
    """One board position with its presentation hints."""
    value: int = Field(..., ge=0)
    identity: str = Field(..., description="Opaque token for tracking a tile across a move.")
    merged: bool = Field(default=False, description="True if two tiles combined into this one during the move.")
    spawned: bool = Field(default=False, description="True if this tile was spawned by the move.")


class GameStateData(BaseModel):
    """Represents the complete state of a game instance."""
    board: List[List[int]] = Field(..., description="The N x N game board, represented as a list of lists.")
    cells: List[List[CellData]] = Field(..., description="The board with per-cell identity and move flags.")
    score: int = Field(..., ge=0, description="Current score of the game.")
    progress: grid_engine.GameProgressState = Field(
        ...,
        description="Current progress state of the game (IN_PROGRESS, GAME_WON, GAME_OVER)."
    )
    reached_target: bool = Field(..., description="True if any tile is at least win_tile.")
    terminal: bool = Field(..., description="True if no legal move remains.")
    win_tile: int = Field(..., gt=0, description="The tile value required to win this game instance.")
    board_size: int = Field(..., gt=0, description="The dimension N of the N x N board.")


class MoveRequestData(BaseModel):
    """Data required to make a move."""
    board: List[List[int]] = Field(..., description="Current N x N game board state before the move.")
    score: int = Field(..., ge=0, description="Current score before the move.")
    direction: grid_engine.Direction = Field(
        ...,
        description="Direction of the move (up, down, left, right)."
    )
    win_tile: int = Field(
        default=grid_engine.WIN_TILE,
        gt=0,
        description="The win condition tile for this game instance."
    )


class MoveResponseData(GameStateData):
    """Response after a move, including the new game state and move effectiveness."""
    score_delta: int = Field(..., ge=0, description="Points gained by this move.")
    move_was_effective: bool = Field(
        ...,
        description="True if the move resulted in a change to the board state, False otherwise."
    )
    legal_directions: List[grid_engine.Direction] = Field(
        ...,
        description="Directions that would change the resulting board."
    )
    message: Optional[str] = Field(
        default=None,
        description="An optional message, e.g., if a move was not effective or the game ended."
    )


def _cells_payload(grid: grid_engine.Grid) -> List[List[CellData]]:
    return [
        [CellData(value=c.value, identity=c.identity, merged=c.merged, spawned=c.spawned) for c in row]
        for row in grid.rows
    ]

# --- API Endpoints ---

@app.post("/game/new", response_model=GameStateData, summary="Start a New Game")
@limiter.limit(RATE_LIMIT)
async def start_new_game(request: Request, settings: NewGameSettings):
    """
    Initializes a new game based on the provided settings (size and win_tile).

    - **size**: Dimension of the N x N board (e.g., 4 for 4x4). Default is 4.
    - **win_tile**: Tile value to reach (e.g., 2048). Default is 2048.

    Returns the opening board with two random tiles and a score of 0.
    """
    size = settings.size if settings.size is not None else grid_engine.GRID_SIZE
    win_tile = settings.win_tile if settings.win_tile is not None else grid_engine.WIN_TILE

    try:
        grid = grid_engine.new_game(size)
    except grid_engine.MalformedGrid as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Unexpected error in /game/new")
        raise HTTPException(status_code=500, detail=f"An unexpected error occurred during game creation: {str(e)}")

    logger.info("New %dx%d game, win_tile=%d", size, size, win_tile)
    return GameStateData(
        board=grid.to_rows(),
        cells=_cells_payload(grid),
        score=0,
        progress=grid_engine.determine_game_status(grid, win_tile),
        reached_target=grid_engine.has_reached_target(grid, win_tile),
        terminal=grid_engine.is_terminal(grid),
        win_tile=win_tile,
        board_size=grid.size
    )


@app.post("/game/move", response_model=MoveResponseData, summary="Make a Move in the Game")
@limiter.limit(RATE_LIMIT)
async def make_move(request: Request, request_data: MoveRequestData):
    """
    Processes a player's move.

    Requires the current `board`, `score`, the `direction` of the move,
    and the `win_tile` for this game instance.

    The API will:
    1. Slide and merge the tiles.
    2. If the move changed the board, add a new random tile (2 or 4).
    3. Report the score delta, whether the target was reached and whether
       any move remains.
    """
    if len(request_data.board) > MAX_BOARD_SIZE:
        raise HTTPException(status_code=400, detail=f"Invalid board structure in request: board size is limited to {MAX_BOARD_SIZE}.")

    try:
        grid = grid_engine.Grid.from_rows(request_data.board)
    except grid_engine.MalformedGrid as e:
        raise HTTPException(status_code=400, detail=f"Invalid board structure in request: {str(e)}")

    try:
        result = grid_engine.move(grid, request_data.direction, target=request_data.win_tile)
        progress = grid_engine.determine_game_status(result.grid, request_data.win_tile)
        legal = grid_engine.legal_directions(result.grid)
    except grid_engine.GridEngineError as e:
        raise HTTPException(status_code=400, detail=f"Error processing move: {str(e)}")
    except Exception as e:
        logger.exception("Unexpected error in /game/move")
        raise HTTPException(status_code=500, detail=f"An unexpected server error occurred while processing the move: {str(e)}")

    message: Optional[str] = None
    if not result.changed:
        message = "Move was not effective; board state unchanged by slide."
    if result.terminal:
        message = "Game Over. No more valid moves."
    elif result.reached_target:
        message = "Target tile reached!"

    logger.info(
        "Move %s: effective=%s score_delta=%d terminal=%s",
        request_data.direction.value, result.changed, result.score_delta, result.terminal
    )
    return MoveResponseData(
        board=result.grid.to_rows(),
        cells=_cells_payload(result.grid),
        score=request_data.score + result.score_delta,
        progress=progress,
        reached_target=result.reached_target,
        terminal=result.terminal,
        win_tile=request_data.win_tile,
        board_size=result.grid.size,
        score_delta=result.score_delta,
        move_was_effective=result.changed,
        legal_directions=legal,
        message=message
    )


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(
        app,
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", 8000)),
        log_level=LOG_LEVEL.lower()
    )
