"""Last-in, first-out stacks: a bounded array stack and an unbounded list stack."""

from __future__ import annotations

import argparse
import sys
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from nachtools.intlist import IntList

DEFAULT_START = 17
DEFAULT_COUNT = 10


class StackFullError(Exception):
    """Raised when pushing onto a stack that has no more room."""


class StackEmptyError(Exception):
    """Raised when popping from a stack that holds nothing."""


def _successor(value: Any) -> Any:
    """Return the value after ``value``: the next character or the next number."""
    if isinstance(value, str) and len(value) == 1:
        return chr(ord(value) + 1)
    return value + 1


class Stack(ABC):
    """The operations every stack offers, and a shared self-test."""

    @abstractmethod
    def push(self, value: Any) -> None:
        """Put ``value`` on the top of the stack."""

    @abstractmethod
    def pop(self) -> Any:
        """Remove the top value and return it."""

    @abstractmethod
    def is_full(self) -> bool:
        """Return True if the stack has no more room."""

    @abstractmethod
    def is_empty(self) -> bool:
        """Return True if the stack holds nothing."""

    def self_test(self, num_to_push: int | None = None, start: Any = DEFAULT_START) -> list[str]:
        """Push a run of values starting at ``start``, then pop them all.

        With ``num_to_push`` left out, values are pushed until the stack is
        full. Returns the lines describing each push and pop, in order.
        """
        if num_to_push is None and not self.is_full() and isinstance(self, ListStack):
            raise ValueError("an unbounded stack needs a count of values to push")
        lines = []
        count = start
        pushed = 0
        while (num_to_push is None and not self.is_full()) or (
            num_to_push is not None and pushed < num_to_push
        ):
            if self.is_full():
                raise StackFullError("stack is full")
            lines.append(f"pushing {count}")
            self.push(count)
            count = _successor(count)
            pushed += 1
        while not self.is_empty():
            lines.append(f"popping {self.pop()}")
        return lines


class ArrayStack(Stack):
    """A stack holding at most ``size`` values."""

    def __init__(self, size: int) -> None:
        if size < 1:
            raise ValueError("stack size must be at least 1")
        self.size = size
        self._items: list[Any] = []

    def push(self, value: Any) -> None:
        if self.is_full():
            raise StackFullError("push onto a full stack")
        self._items.append(value)

    def pop(self) -> Any:
        if self.is_empty():
            raise StackEmptyError("pop from an empty stack")
        return self._items.pop()

    def is_full(self) -> bool:
        return len(self._items) == self.size

    def is_empty(self) -> bool:
        return not self._items

    def __len__(self) -> int:
        return len(self._items)


class ListStack(Stack):
    """An integer stack kept on a linked list; it never fills up."""

    def __init__(self) -> None:
        self._list = IntList()

    def push(self, value: int) -> None:
        self._list.prepend(value)

    def pop(self) -> int:
        if self.is_empty():
            raise StackEmptyError("pop from an empty stack")
        return self._list.remove()

    def is_full(self) -> bool:
        return False

    def is_empty(self) -> bool:
        return self._list.is_empty()

    def __len__(self) -> int:
        return len(self._list)


def main(argv: Sequence[str] | None = None) -> int:
    """Run the self-test on each kind of stack and print what happens."""
    parser = argparse.ArgumentParser(prog="stacks", description=main.__doc__)
    parser.add_argument(
        "-n", "--count", type=int, default=DEFAULT_COUNT,
        help="number of values to push (default: %(default)s)",
    )
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)
    if args.count < 1:
        parser.error("count must be at least 1")

    runs = [
        ("Testing ArrayStack", ArrayStack(args.count), DEFAULT_START),
        ("Testing ListStack", ListStack(), DEFAULT_START),
        ("Testing character ArrayStack", ArrayStack(args.count), "a"),
    ]
    for title, stack, start in runs:
        print(title)
        for line in stack.self_test(args.count, start):
            print(line)
    return 0