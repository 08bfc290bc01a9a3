import logging
import os
import time
import uuid

from poslog_client import send_log, setup_logging  # type: ignore[import]


def main() -> None:
  # Minimal configuration via environment variables
  os.environ.setdefault("POSLOG_LABEL", "example-app")

  logger = logging.getLogger("example_app")
  logging.basicConfig(level=logging.INFO)

  run_id = f"example-{uuid.uuid4().hex[:8]}"
  setup_logging(logger, scenario_id=run_id)

  logger.info("Example INFO log from minimal app")
  try:
    1 / 0
  except ZeroDivisionError:
    logger.exception("Example ERROR log with exception")

  # One-off synchronous send; raises DeliveryError if the server rejects it.
  send_log("INFO", "example-app", "Checkout finished", context={"total": 12.5}, scenario_id=run_id)

  # Give the background log queue a brief moment to flush before exit
  time.sleep(0.5)


if __name__ == "__main__":
  main()
