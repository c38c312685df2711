"""
Push keys: 20-character keys that sort in creation order.

The first 8 characters encode the creation time in milliseconds, the last 12 are
random. Keys minted within the same millisecond increment the random part, so
they still sort after each other.
"""
import secrets
import time

PUSH_CHARS = "-0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ_abcdefghijklmnopqrstuvwxyz"


class PushKeyGenerator:
    def __init__(self):
        self._last_time = 0
        self._last_random = [0] * 12

    def __call__(self) -> str:
        now = int(time.time() * 1000)
        duplicate = now <= self._last_time
        if duplicate:
            now = self._last_time
        self._last_time = now

        timestamp = []
        for _ in range(8):
            timestamp.append(PUSH_CHARS[now % 64])
            now //= 64
        timestamp.reverse()

        if not duplicate:
            self._last_random = [secrets.randbelow(64) for _ in range(12)]
        else:
            index = 11
            while index >= 0 and self._last_random[index] == 63:
                self._last_random[index] = 0
                index -= 1
            if index >= 0:
                self._last_random[index] += 1

        return "".join(timestamp) + "".join(PUSH_CHARS[value] for value in self._last_random)
