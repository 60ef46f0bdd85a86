# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Cancellation signals made of several events.
"""
import threading
import time
from typing import Optional

# granularity at which secondary events are noticed while waiting
POLL_SLICE = 0.05


class CancelSignal:
    """
    Behaves like a ``threading.Event`` that is set as soon as any of its
    events is set. Only ``is_set`` and ``wait`` are supported.
    """

    def __init__(self, *events: Optional[threading.Event]):
        self.events = tuple(event for event in events if event is not None)

    def is_set(self) -> bool:
        return any(event.is_set() for event in self.events)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Block until one of the events is set or ``timeout`` elapses.

        :return: True if an event is set, False on timeout.
        """
        if not self.events:
            # nothing can ever set this signal
            threading.Event().wait(timeout)
            return False
        if len(self.events) == 1:
            return self.events[0].wait(timeout)

        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.is_set():
            if deadline is None:
                slice_ = POLL_SLICE
            else:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                slice_ = min(POLL_SLICE, remaining)
            self.events[0].wait(slice_)
        return True
