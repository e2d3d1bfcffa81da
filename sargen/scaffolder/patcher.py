"""Anchor-based edits of existing generated files.

Used to register new routes and modules in a shared index file without
re-emitting the whole file.  Patches are applied one at a time; a batch that
fails half-way keeps the patches that already succeeded.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Iterable, Optional

from pydantic import BaseModel, Field, model_validator

from sargen.utils import print_success


class PatchPosition(str, Enum):
    """Where an insertion goes relative to its anchor."""
    BEFORE_ANCHOR = "before-anchor"
    AFTER_ANCHOR = "after-anchor"
    END_OF_FILE = "end-of-file"


class PatchError(Exception):
    """Raised when a patch target is missing or its anchor cannot be found."""

    def __init__(self, message: str, target_file: str = "") -> None:
        self.target_file = target_file
        super().__init__(message)


class AnchorPatch(BaseModel):
    """A single insertion into an existing file."""

    target_file: Path
    insertion: str
    position: PatchPosition = Field(default=PatchPosition.END_OF_FILE)
    anchor_text: Optional[str] = Field(
        default=None, description="Required unless position is end-of-file"
    )

    @model_validator(mode="after")
    def _anchor_required(self) -> "AnchorPatch":
        if self.position is not PatchPosition.END_OF_FILE and not self.anchor_text:
            raise ValueError(
                f"anchor_text is required for position '{self.position.value}'"
            )
        return self


# ---------------------------------------------------------------------------
# Pure content transformation
# ---------------------------------------------------------------------------


def find_anchor(content: str, position: PatchPosition, anchor_text: str) -> int:
    """Locate the anchor for *position* in *content*.

    Returns the character index of the last occurrence for
    ``before-anchor`` and the line index of the first line whose stripped
    text starts with the anchor for ``after-anchor``; ``-1`` when absent.
    """
    if position is PatchPosition.BEFORE_ANCHOR:
        return content.rfind(anchor_text)
    if position is PatchPosition.AFTER_ANCHOR:
        for index, line in enumerate(content.split("\n")):
            if line.strip().startswith(anchor_text):
                return index
        return -1
    return len(content)


def insert_content(
    content: str,
    insertion: str,
    position: PatchPosition | str,
    anchor_text: str | None = None,
) -> str:
    """Return *content* with *insertion* placed according to *position*.

    Raises:
        PatchError: If the anchor is required but missing or not found.
    """
    position = PatchPosition(position)

    if position is PatchPosition.END_OF_FILE:
        return content + insertion

    if not anchor_text:
        raise PatchError(f"anchor_text is required for position '{position.value}'")

    index = find_anchor(content, position, anchor_text)
    if index == -1:
        if position is PatchPosition.BEFORE_ANCHOR:
            raise PatchError(f'Anchor "{anchor_text}" not found')
        raise PatchError(f'No line starting with "{anchor_text}" found')

    if position is PatchPosition.BEFORE_ANCHOR:
        return f"{content[:index]}\n{insertion}\n{content[index:]}"

    lines = content.split("\n")
    lines.insert(index + 1, insertion)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# File operations
# ---------------------------------------------------------------------------


def patch_file(
    target_file: str | Path,
    insertion: str,
    position: PatchPosition | str = PatchPosition.END_OF_FILE,
    anchor_text: str | None = None,
) -> None:
    """Insert *insertion* into an existing file.

    ``before-anchor`` splits the file at the last occurrence of
    *anchor_text* and inserts the text on its own line there.
    ``after-anchor`` inserts a new line after the first line starting with
    *anchor_text*.  ``end-of-file`` appends the text as given.

    Raises:
        PatchError: If the file does not exist or the anchor is not found.
    """
    path = Path(target_file)
    position = PatchPosition(position)
    if not path.is_file():
        raise PatchError(f"File not found at {path}", str(path))

    if position is PatchPosition.END_OF_FILE:
        with open(path, "a", encoding="utf-8", newline="") as fh:
            fh.write(insertion)
        print_success(f"Content appended to {path}")
        return

    with open(path, encoding="utf-8", newline="") as fh:
        content = fh.read()
    try:
        updated = insert_content(content, insertion, position, anchor_text)
    except PatchError as exc:
        raise PatchError(f"{exc} in {path}", str(path)) from exc
    with open(path, "w", encoding="utf-8", newline="") as fh:
        fh.write(updated)
    print_success(f'Content inserted into {path} ({position.value} "{anchor_text}")')


def apply_patch(patch: AnchorPatch) -> None:
    """Apply a single :class:`AnchorPatch`."""
    patch_file(patch.target_file, patch.insertion, patch.position, patch.anchor_text)


def apply_patches(patches: Iterable[AnchorPatch], validate_first: bool = False) -> None:
    """Apply *patches* in order.

    Not transactional: a failing patch leaves earlier ones applied.  With
    ``validate_first`` every target and anchor is checked before any file
    is written.
    """
    patches = list(patches)
    if validate_first:
        for patch in patches:
            validate_patch(patch)
    for patch in patches:
        apply_patch(patch)


def validate_patch(patch: AnchorPatch) -> None:
    """Raise :class:`PatchError` if *patch* could not be applied right now."""
    path = Path(patch.target_file)
    if not path.is_file():
        raise PatchError(f"File not found at {path}", str(path))
    if patch.position is PatchPosition.END_OF_FILE:
        return
    with open(path, encoding="utf-8", newline="") as fh:
        content = fh.read()
    if find_anchor(content, patch.position, patch.anchor_text) == -1:
        raise PatchError(f'Anchor "{patch.anchor_text}" not found in {path}', str(path))
