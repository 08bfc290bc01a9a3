from __future__ import annotations

import logging
import os
import queue
import threading
from typing import Any, Callable, Dict, List, Optional

LogEventDict = Dict[str, Any]
BatchSender = Callable[[List[LogEventDict]], None]

_logger = logging.getLogger("poslog_client.queue")


class LogQueue:
  """
  In-process queue for outgoing log events.

  A single background worker thread drains a bounded queue and hands batches
  to the sender, so application threads never wait on the network.

  The worker is restarted lazily after a fork: the queue remembers the PID
  that started it and starts a fresh thread in a child process.
  """

  def __init__(
    self,
    sender: BatchSender,
    maxsize: int = 1000,
    batch_size: int = 50,
  ) -> None:
    self._queue: "queue.Queue[LogEventDict]" = queue.Queue(maxsize=maxsize)
    self._sender: BatchSender = sender
    self._batch_size = batch_size
    self._thread: Optional[threading.Thread] = None
    self._stopped = threading.Event()
    self._pid = os.getpid()
    self._lock = threading.Lock()
    self.dropped = 0

  def start(self) -> None:
    current_pid = os.getpid()
    with self._lock:
      if self._pid != current_pid:
        self._pid = current_pid
        self._stopped = threading.Event()
        self._thread = None

      if self._thread is not None and self._thread.is_alive():
        return

      self._thread = threading.Thread(
        target=self._run, name="poslog-client-queue", daemon=True
      )
      self._thread.start()

  def stop(self) -> None:
    self._stopped.set()
    if self._thread and self._thread.is_alive():
      self._thread.join(timeout=1.0)

  def enqueue(self, event: LogEventDict) -> None:
    self.start()

    try:
      self._queue.put_nowait(event)
    except queue.Full:
      # Drop rather than block the application.
      self.dropped += 1

  def _run(self) -> None:
    while not self._stopped.is_set():
      batch: List[LogEventDict] = []
      try:
        item = self._queue.get(timeout=0.5)
      except queue.Empty:
        continue

      batch.append(item)
      while len(batch) < self._batch_size:
        try:
          item = self._queue.get_nowait()
        except queue.Empty:
          break
        batch.append(item)

      try:
        self._sender(batch)
      except Exception:
        _logger.warning("Dropping %s log event(s) after sender failure", len(batch), exc_info=True)
