import queue
import threading
import time

from poslog_client.queue import LogQueue  # type: ignore[import]


def test_log_queue_delivers_batches():
  received: "queue.Queue[list]" = queue.Queue()

  log_queue = LogQueue(sender=received.put, maxsize=10, batch_size=3)
  log_queue.enqueue({"i": 1})
  log_queue.enqueue({"i": 2})
  log_queue.enqueue({"i": 3})

  seen = []
  deadline = time.time() + 2.0
  while len(seen) < 3 and time.time() < deadline:
    try:
      seen.extend(received.get(timeout=0.5))
    except queue.Empty:
      pass
  log_queue.stop()

  assert {r["i"] for r in seen} == {1, 2, 3}


def test_log_queue_drops_when_full():
  gate = threading.Event()

  def blocked_sender(batch):
    gate.wait(timeout=2.0)

  log_queue = LogQueue(sender=blocked_sender, maxsize=1, batch_size=1)
  for i in range(20):
    log_queue.enqueue({"i": i})

  assert log_queue.dropped > 0
  gate.set()
  log_queue.stop()


def test_sender_failure_does_not_kill_worker():
  calls = []
  done = threading.Event()

  def flaky_sender(batch):
    calls.append(batch)
    if len(calls) == 1:
      raise RuntimeError("network down")
    done.set()

  log_queue = LogQueue(sender=flaky_sender, maxsize=10, batch_size=1)
  log_queue.enqueue({"i": 1})
  time.sleep(0.1)
  log_queue.enqueue({"i": 2})

  assert done.wait(timeout=2.0)
  log_queue.stop()
