"""A bump allocator over a single aligned block of bytes."""

from __future__ import annotations


class OutOfMemoryError(MemoryError):
    """The pool cannot satisfy an allocation."""


class AlignedMemoryPool:
    """Hands out consecutive, aligned regions of one byte buffer.

    Individual regions are never freed; :meth:`free` releases them all at once.
    """

    def __init__(self, capacity: int, aligned_bits: int = 6):
        self.aligned_bits = aligned_bits
        self._sys_alloc(capacity)

    def _sys_alloc(self, capacity: int) -> None:
        self.capacity = self.round_up_align(capacity)
        try:
            self._mem = bytearray(self.capacity)
        except MemoryError as exc:
            raise OutOfMemoryError(
                f"Memory allocation failed n={self.capacity} "
                f"align={1 << self.aligned_bits}"
            ) from exc
        self.used = 0

    @property
    def memory(self) -> memoryview:
        """The whole underlying buffer."""
        return memoryview(self._mem)

    def round_up_align(self, n: int) -> int:
        """``n`` rounded up to the pool's alignment."""
        if self.aligned_bits < 2:
            return n
        mask = (1 << self.aligned_bits) - 1
        return (n + mask) & ~mask

    def allocate(self, n: int) -> memoryview:
        """A writable view of ``n`` fresh bytes."""
        rounded = self.round_up_align(n)
        if rounded + self.used > self.capacity:
            raise OutOfMemoryError(
                f"pool exhausted: {n} bytes requested, "
                f"{self.capacity - self.used} of {self.capacity} free"
            )
        start = self.used
        self.used += rounded
        return memoryview(self._mem)[start:start + n]

    def free(self) -> None:
        """Release every allocation at once."""
        self.used = 0

    def free_and_grow_capacity(self, new_capacity: int = 0) -> None:
        """Replace the buffer with a larger, zeroed one (1.5x by default)."""
        if new_capacity:
            self._sys_alloc(new_capacity)
        else:
            self._sys_alloc(int(self.capacity * 1.5))

    def zero_allocated_memory(self) -> None:
        """Zero the bytes handed out since the last :meth:`free`."""
        if self.used == 0:
            return
        self._mem[: self.used] = bytes(self.used)