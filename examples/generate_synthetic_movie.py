#!/usr/bin/env python3
"""Generate small synthetic skeleton movies for the examples and tests."""

from __future__ import annotations

from pathlib import Path

import numpy as np
from skimage.draw import line


def draw_segment(mask: np.ndarray, start: tuple[int, int], end: tuple[int, int]) -> None:
    """Draw a one-pixel wide 2D segment into mask, in place."""
    rr, cc = line(start[0], start[1], end[0], end[1])
    mask[rr, cc] = 1


def to_movie(frames: list[np.ndarray]) -> np.ndarray:
    """Stack 2D skeleton frames into a (T, 1, Y, X) movie."""
    return np.stack(frames)[:, np.newaxis].astype(np.uint8)


def t_shape(height: int = 30, width: int = 50, branch_length: int = 5) -> np.ndarray:
    """
    Horizontal dendrite on row 20 (cols 5..44) with a vertical branch going up from col 25.

    The branch tip sits on row 20 - branch_length.
    """
    mask = np.zeros((height, width), dtype=np.uint8)
    draw_segment(mask, (20, 5), (20, 44))
    draw_segment(mask, (20 - branch_length, 25), (19, 25))
    return mask


def growing_branch_movie(lengths=(5, 6, 7, 8, 9, 10)) -> np.ndarray:
    """T-shaped dendrite whose vertical branch grows by one pixel per frame."""
    return to_movie([t_shape(branch_length=n) for n in lengths])


def two_junction_frame(left: bool = True, right: bool = True, bridge: bool = True) -> np.ndarray:
    """
    20x30 frame with a horizontal dendrite on row 10 and vertical branches on cols 8 and 20.

    Each vertical branch (rows 3..17) crosses the dendrite in a plus-shaped
    junction. Without the bridge, the dendrite only spans cols 14..28, so
    the right junction is cut off from the left part.
    """
    mask = np.zeros((20, 30), dtype=np.uint8)
    if left:
        draw_segment(mask, (3, 8), (17, 8))
    if right:
        draw_segment(mask, (3, 20), (17, 20))
    if bridge:
        draw_segment(mask, (10, 1), (10, 28))
    else:
        draw_segment(mask, (10, 14), (10, 28))
    return mask


def patching_movie(connected: bool = True) -> np.ndarray:
    """
    Ten frames in which the tip on row 3 jumps from the left to the right branch.

    Frames 0-7 only hold the left branch. Frames 8-9 hold the right branch;
    it is still connected to the left junction when connected is True, and
    alone otherwise.
    """
    frames = [two_junction_frame(left=True, right=False) for _ in range(8)]
    for _ in range(2):
        if connected:
            frames.append(two_junction_frame(left=True, right=True))
        else:
            frames.append(two_junction_frame(left=False, right=True, bridge=False))
    return to_movie(frames)


def main() -> None:
    out_dir = Path(__file__).parent
    for name, movie in [
        ("growing_branch", growing_branch_movie()),
        ("patching_connected", patching_movie(connected=True)),
        ("patching_disconnected", patching_movie(connected=False)),
    ]:
        path = out_dir / f"{name}.npy"
        np.save(path, movie)
        print(f"Wrote {path} with shape {movie.shape}")


if __name__ == "__main__":
    main()
