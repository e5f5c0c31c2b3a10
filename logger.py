import logging

import config

# --- Logging Configuration ---
handlers = [logging.StreamHandler()]
if config.LOG_FILE_PATH:
    # Run history survives restarts
    handlers.append(logging.FileHandler(config.LOG_FILE_PATH, mode='a', encoding='utf-8'))

logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(levelname)s - %(name)s - %(message)s',
    handlers=handlers
)

# Third-party loggers only above INFO
for noisy in ("urllib3", "asyncio"):
    logging.getLogger(noisy).setLevel(logging.WARNING)

# Shared by every module of the runner
playground_logger = logging.getLogger("PLAYGROUND_RUNNER")
