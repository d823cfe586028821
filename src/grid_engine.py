# grid_engine.py
# This file is the stateless rule engine for the sliding-tile merge game.

import logging
import random
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

GRID_SIZE = 4
WIN_TILE = 2048
SPAWN_FOUR_PROBABILITY = 0.1
MIN_GRID_SIZE = 2


# --- Errors ---

class GridEngineError(ValueError):
    """Base class for caller-construction errors raised by the engine."""


class InvalidDirection(GridEngineError):
    """Raised when a direction is not one of up, down, left or right."""


class MalformedGrid(GridEngineError):
    """Raised when a board has bad dimensions or an illegal cell value."""


# --- Enums ---

class GameProgressState(Enum):
    """Represents the current progress state of the game."""
    IN_PROGRESS = 1
    GAME_OVER = 2  # Lost
    GAME_WON = 3


class Direction(Enum):
    """Represents the possible move directions."""
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"

    @classmethod
    def parse(cls, value) -> "Direction":
        """
        Resolves a Direction from a member, its name or its value (case-insensitive).
        Raises:
            InvalidDirection: If the value does not name one of the four directions.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            for member in cls:
                if member.value == key:
                    return member
        raise InvalidDirection(f"Invalid direction: {value!r}. Must be 'up', 'down', 'left' or 'right'.")


# --- Data Model ---

def _new_rng(rng: Optional[random.Random]) -> random.Random:
    return rng if rng is not None else random.Random()


def _new_identity(rng: random.Random) -> str:
    return format(rng.getrandbits(64), "016x")


def _is_legal_value(value) -> bool:
    if isinstance(value, bool) or not isinstance(value, int):
        return False
    if value == 0:
        return True
    return value >= 2 and value & (value - 1) == 0


@dataclass(frozen=True)
class Cell:
    """
    One grid position.

    `merged` and `spawned` are presentation hints for the move that produced
    the cell. They are reset at the start of every move and are ignored by
    grid equality.
    """
    value: int
    identity: str
    merged: bool = False
    spawned: bool = False

    @property
    def is_empty(self) -> bool:
        return self.value == 0

    def settled(self) -> "Cell":
        """Returns a copy with both transient flags cleared."""
        if not self.merged and not self.spawned:
            return self
        return replace(self, merged=False, spawned=False)


class Grid:
    """
    An immutable square board of Cells, stored row-major.

    Two grids are equal when they hold the same values at the same positions;
    identities and transient flags do not take part in the comparison.
    """

    __slots__ = ("_cells",)

    def __init__(self, cells: Iterable[Iterable[Cell]]):
        self._cells: Tuple[Tuple[Cell, ...], ...] = tuple(tuple(row) for row in cells)
        n = len(self._cells)
        if n < MIN_GRID_SIZE or any(len(row) != n for row in self._cells):
            raise MalformedGrid(f"Board must be a square matrix of size {MIN_GRID_SIZE} or more.")
        for row in self._cells:
            for cell in row:
                if not _is_legal_value(cell.value):
                    raise MalformedGrid(f"Illegal cell value: {cell.value!r}.")

    @classmethod
    def empty(cls, size: int = GRID_SIZE, rng: Optional[random.Random] = None) -> "Grid":
        """
        Creates an all-empty board.
        Args:
            size (int): The dimension of the N x N board.
            rng (random.Random): Source for identity tokens.
        Raises:
            MalformedGrid: If size is not an integer of at least 2.
        """
        if isinstance(size, bool) or not isinstance(size, int) or size < MIN_GRID_SIZE:
            raise MalformedGrid(f"Board size must be an integer of at least {MIN_GRID_SIZE}.")
        return cls.from_rows([[0] * size for _ in range(size)], rng)

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[int]], rng: Optional[random.Random] = None) -> "Grid":
        """
        Builds a board from a numeric snapshot (rows of integers).
        Every cell gets a fresh identity and cleared flags.
        Args:
            rows (Sequence[Sequence[int]]): The N x N snapshot.
            rng (random.Random): Source for identity tokens.
        Returns:
            Grid: The board.
        Raises:
            MalformedGrid: If the snapshot is not square or holds an illegal value.
        """
        rng = _new_rng(rng)
        try:
            cells = [[Cell(value, _new_identity(rng)) for value in row] for row in rows]
        except TypeError:
            raise MalformedGrid("Board must be a sequence of rows of integers.") from None
        return cls(cells)

    @property
    def size(self) -> int:
        return len(self._cells)

    @property
    def rows(self) -> Tuple[Tuple[Cell, ...], ...]:
        return self._cells

    @property
    def columns(self) -> Tuple[Tuple[Cell, ...], ...]:
        return tuple(zip(*self._cells))

    def cell(self, row: int, col: int) -> Cell:
        return self._cells[row][col]

    def to_rows(self) -> List[List[int]]:
        """Returns the serializable snapshot of the board."""
        return [[cell.value for cell in row] for row in self._cells]

    def empty_cells(self) -> List[Tuple[int, int]]:
        """
        Get coordinates of empty (0-value) cells.
        Returns:
            List[Tuple[int, int]]: List of (row, col) tuples for empty cells.
        """
        return [
            (r, c)
            for r, row in enumerate(self._cells)
            for c, cell in enumerate(row)
            if cell.is_empty
        ]

    def max_value(self) -> int:
        return max(cell.value for row in self._cells for cell in row)

    def settled(self) -> "Grid":
        """Returns a copy with every transient flag cleared."""
        return Grid([cell.settled() for cell in row] for row in self._cells)

    def _values(self) -> Tuple[Tuple[int, ...], ...]:
        return tuple(tuple(cell.value for cell in row) for row in self._cells)

    def __eq__(self, other):
        if not isinstance(other, Grid):
            return NotImplemented
        return self._values() == other._values()

    def __hash__(self):
        return hash(self._values())

    def __repr__(self):
        return f"Grid({self.to_rows()!r})"


@dataclass(frozen=True)
class MoveResult:
    """Immutable outcome of a move attempt."""
    grid: Grid
    score_delta: int
    changed: bool
    reached_target: bool
    terminal: bool


# --- Line Manipulation (Core Move Logic) ---

def merge_line(cells: Sequence[Cell], rng: Optional[random.Random] = None) -> Tuple[List[Cell], int]:
    """
    Compacts and merges a single line towards index 0.

    Occupied cells keep their relative order. A cell merges with its next
    neighbour when both hold the same value and neither merged earlier in this
    pass; the survivor keeps its identity and is flagged as merged. The line is
    padded with fresh empty cells on the trailing side.
    Args:
        cells (Sequence[Cell]): The line to process, travel end first.
        rng (random.Random): Source for the identities of padding cells.
    Returns:
        Tuple[List[Cell], int]: The new line and the score gained from merges.
    """
    rng = _new_rng(rng)
    occupied = [cell for cell in cells if not cell.is_empty]
    merged_line: List[Cell] = []
    score_increase = 0
    read_idx = 0

    while read_idx < len(occupied):
        current = occupied[read_idx]
        following = occupied[read_idx + 1] if read_idx + 1 < len(occupied) else None
        if (following is not None and following.value == current.value
                and not current.merged and not following.merged):
            survivor = replace(current, value=current.value * 2, merged=True)
            merged_line.append(survivor)
            score_increase += survivor.value
            read_idx += 2  # the neighbour is consumed
        else:
            merged_line.append(current)
            read_idx += 1

    while len(merged_line) < len(cells):
        merged_line.append(Cell(0, _new_identity(rng)))
    return merged_line, score_increase


# --- Board Transformations ---

def _lines_for(grid: Grid, direction: Direction) -> List[List[Cell]]:
    """Cuts the board into lines whose first cell sits at the travel end."""
    if direction in (Direction.LEFT, Direction.RIGHT):
        lines = [list(row) for row in grid.rows]
    else:
        lines = [list(col) for col in grid.columns]
    if direction in (Direction.RIGHT, Direction.DOWN):
        lines = [line[::-1] for line in lines]
    return lines


def _grid_from_lines(lines: List[List[Cell]], direction: Direction) -> Grid:
    """Inverse of _lines_for."""
    if direction in (Direction.RIGHT, Direction.DOWN):
        lines = [line[::-1] for line in lines]
    if direction in (Direction.LEFT, Direction.RIGHT):
        return Grid(lines)
    return Grid(zip(*lines))


def mirror(grid: Grid) -> Grid:
    """Reverses each row of the board."""
    return Grid(row[::-1] for row in grid.rows)


def transpose(grid: Grid) -> Grid:
    """Swaps rows and columns of the board."""
    return Grid(grid.columns)


# --- Spawning ---

def spawn_tile(grid: Grid, rng: Optional[random.Random] = None) -> Grid:
    """
    Adds a new tile (90% chance of 2, 10% chance of 4) to a random empty cell.
    Args:
        grid (Grid): The current board.
        rng (random.Random): Source for position, value and identity.
    Returns:
        Grid: A new board with the spawned tile, or the same board if it is full.
    """
    empty_cells = grid.empty_cells()
    if not empty_cells:
        return grid

    rng = _new_rng(rng)
    row, col = rng.choice(empty_cells)
    value = 4 if rng.random() < SPAWN_FOUR_PROBABILITY else 2
    spawned = Cell(value, _new_identity(rng), spawned=True)
    cells = [list(r) for r in grid.rows]
    cells[row][col] = spawned
    return Grid(cells)


def new_game(size: int = GRID_SIZE, rng: Optional[random.Random] = None) -> Grid:
    """
    Creates the opening board: an empty grid with two spawned tiles.
    Args:
        size (int): The dimension of the N x N board. Default is 4.
        rng (random.Random): Source of randomness; a fresh one is used if omitted.
    Returns:
        Grid: The opening board.
    Raises:
        MalformedGrid: If size is below 2.
    """
    rng = _new_rng(rng)
    grid = Grid.empty(size, rng)
    grid = spawn_tile(grid, rng)
    return spawn_tile(grid, rng)


# --- Game State Checks ---

def is_terminal(grid: Grid) -> bool:
    """
    A board is terminal when it is full and no two adjacent cells
    (horizontally or vertically) share a value.
    """
    if grid.empty_cells():
        return False
    for line in grid.rows + grid.columns:
        for first, second in zip(line, line[1:]):
            if first.value == second.value:
                return False
    return True


def has_reached_target(grid: Grid, target: int = WIN_TILE) -> bool:
    return grid.max_value() >= target


def can_move(grid: Grid, direction) -> bool:
    """
    Check if any tile can slide or merge in the given direction.
    Args:
        grid (Grid): The board.
        direction (Direction): The direction to check.
    Returns:
        bool: True if a move in that direction would change the board.
    """
    direction = Direction.parse(direction)
    for line in _lines_for(grid, direction):
        for ahead, behind in zip(line, line[1:]):
            if behind.is_empty:
                continue
            if ahead.is_empty or ahead.value == behind.value:
                return True
    return False


def legal_directions(grid: Grid) -> List[Direction]:
    return [direction for direction in Direction if can_move(grid, direction)]


def determine_game_status(grid: Grid, target: int = WIN_TILE) -> GameProgressState:
    """
    Summarizes the board as a progress state. GAME_WON takes precedence over
    GAME_OVER; whether play continues after a win is up to the caller.
    """
    if has_reached_target(grid, target):
        return GameProgressState.GAME_WON
    if is_terminal(grid):
        return GameProgressState.GAME_OVER
    return GameProgressState.IN_PROGRESS


# --- Core Game Move Processing ---

def move(grid: Grid, direction, rng: Optional[random.Random] = None,
         target: int = WIN_TILE, spawn: bool = True) -> MoveResult:
    """
    Slides and merges every line of the board in the given direction.
    Args:
        grid (Grid): The current board.
        direction (Direction): The direction to move.
        rng (random.Random): Source of randomness for the spawn.
        target (int): Tile value that counts as reaching the goal.
        spawn (bool): Whether a changed move spawns a tile. Disable only for analysis.
    Returns:
        MoveResult: The new board, score delta and status flags. A move that
        changes nothing returns the input board with a zero delta; any
        merged/spawned flags on it were set by the move that produced it.
    Raises:
        InvalidDirection: If direction is not one of the four values.
    """
    direction = Direction.parse(direction)
    rng = _new_rng(rng)
    settled = grid.settled()

    score_delta = 0
    lines = []
    for line in _lines_for(settled, direction):
        new_line, line_score = merge_line(line, rng)
        lines.append(new_line)
        score_delta += line_score
    moved = _grid_from_lines(lines, direction)

    changed = moved != settled
    if changed:
        result_grid = spawn_tile(moved, rng) if spawn else moved
    else:
        result_grid = grid
        score_delta = 0

    logger.debug("move %s: changed=%s score_delta=%d", direction.value, changed, score_delta)
    return MoveResult(
        grid=result_grid,
        score_delta=score_delta,
        changed=changed,
        reached_target=has_reached_target(result_grid, target),
        terminal=is_terminal(result_grid),
    )
