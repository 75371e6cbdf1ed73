"""Core data structures for docbridge."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, Iterator, List, Optional, Sequence

from .errors import ReinsertionError


TextSetter = Callable[[str], None]


@dataclass
class TextHandle:
    """A mutable text slot inside a document tree plus its extracted value."""

    index: int
    text: Optional[str]
    setter: TextSetter
    location: str
    translated: bool = False
    original: Optional[str] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.original = self.text

    def assign(self, value: str) -> None:
        """Write the translated value into the slot. Allowed exactly once."""

        if self.translated:
            raise ReinsertionError(
                f"Fragment {self.index} at {self.location} was already translated."
            )
        try:
            self.setter(value)
        except Exception as exc:
            raise ReinsertionError(
                f"Could not reinsert translated text at {self.location}: {exc}"
            ) from exc
        self.text = value
        self.translated = True

    def revert(self) -> None:
        """Put the extracted text back into the slot."""

        if not self.translated:
            return
        self.setter(self.original)  # type: ignore[arg-type]
        self.text = self.original
        self.translated = False


class FragmentSequence(Sequence[TextHandle]):
    """Ordered, fixed-length arena of text handles for one document region.

    Positions are the only link between source text and returned
    translations, so the sequence cannot grow or shrink once built.
    """

    def __init__(self, region: str, handles: Iterable[TextHandle]) -> None:
        self.region = region
        self._handles: tuple[TextHandle, ...] = tuple(handles)
        for position, handle in enumerate(self._handles):
            if handle.index != position:
                raise ValueError(
                    f"Handle at position {position} carries index {handle.index}."
                )

    @classmethod
    def build(
        cls,
        region: str,
        slots: Iterable[tuple[Optional[str], TextSetter, str]],
    ) -> "FragmentSequence":
        """Create a sequence from ``(text, setter, location)`` triples."""

        handles = [
            TextHandle(index=idx, text=text, setter=setter, location=location)
            for idx, (text, setter, location) in enumerate(slots)
        ]
        return cls(region, handles)

    def __len__(self) -> int:
        return len(self._handles)

    def __getitem__(self, index):  # type: ignore[override]
        return self._handles[index]

    def __iter__(self) -> Iterator[TextHandle]:
        return iter(self._handles)

    def values(self) -> List[Optional[str]]:
        return [handle.text for handle in self._handles]

    def assign(self, index: int, value: str) -> None:
        self._handles[index].assign(value)

    def assign_range(self, start: int, values: Sequence[str]) -> None:
        """Write ``values`` into consecutive slots from ``start``, all or nothing.

        If any slot rejects its value, the slots already written by this
        call get their extracted text back before the error propagates.
        """

        applied: List[TextHandle] = []
        try:
            for position, value in enumerate(values):
                handle = self._handles[start + position]
                handle.assign(value)
                applied.append(handle)
        except ReinsertionError:
            for handle in reversed(applied):
                handle.revert()
            raise

    def __repr__(self) -> str:
        return f"FragmentSequence(region={self.region!r}, fragments={len(self)})"


@dataclass
class Batch:
    """A contiguous slice ``[start, start + len)`` of a fragment sequence."""

    batch_index: int
    start: int
    items: List[Optional[str]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.items)

    @property
    def stop(self) -> int:
        return self.start + len(self.items)

    @property
    def size(self) -> int:
        return batch_size(self.items)


def batch_size(items: Iterable[Optional[str]]) -> int:
    """Serialized size of a batch: the length of its concatenated items."""

    return sum(len(item) for item in items if item)
