import logging
import os
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo


def setup_logging(
    level: str = "INFO",
    component: str = "mirror",
    subdir: str = "default",
    base_dir: str | Path = "logs",
) -> Path:
    """
    Configure logging:
      - Console (stdout)
      - Daily log file in logs/<component>/<symbol>/YYYY-MM-DD.log (LOG_TZ date, UTC by default)

    Returns:
      Path to the "current" daily log file.
    """

    log_dir = Path(base_dir) / component / subdir
    log_dir.mkdir(parents=True, exist_ok=True)
    tz = ZoneInfo(os.getenv("LOG_TZ", "UTC"))
    date_str = datetime.now(tz).strftime("%Y-%m-%d")
    log_path = log_dir / f"{date_str}.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")
    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setFormatter(fmt)
    sh = logging.StreamHandler()
    sh.setFormatter(fmt)
    root.addHandler(fh)
    root.addHandler(sh)

    # Frame-level chatter from the client libraries drowns the sync log at DEBUG.
    for name in ("websockets", "urllib3"):
        logging.getLogger(name).setLevel(max(root.level, logging.INFO))
    return log_path
