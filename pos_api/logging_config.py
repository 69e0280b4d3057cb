import logging
import os
from pathlib import Path
from datetime import datetime
from zoneinfo import ZoneInfo

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
LOG_TZ = os.getenv("LOG_TZ", "UTC")


def _reset_root(level: str) -> logging.Logger:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for h in list(root.handlers):
        root.removeHandler(h)
    return root


def setup_logging(
    level: str = "INFO",
    component: str = "relay",
    subdir: str = "default",
    base_dir: str | Path = "logs",
    console: bool = True,
) -> Path:
    """
    Configure logging:
      - Console (stderr), unless disabled
      - Daily log file in logs/<component>/<subdir>/YYYY-MM-DD.log (LOG_TZ date)

    Returns:
      Path to the "current" daily log file.
    """

    log_dir = Path(base_dir) / component / subdir
    log_dir.mkdir(parents=True, exist_ok=True)
    date_str = datetime.now(ZoneInfo(LOG_TZ)).strftime("%Y-%m-%d")
    log_path = log_dir / f"{date_str}.log"

    root = _reset_root(level)
    fmt = logging.Formatter(LOG_FORMAT)
    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setFormatter(fmt)
    root.addHandler(fh)
    if console:
        sh = logging.StreamHandler()
        sh.setFormatter(fmt)
        root.addHandler(sh)
    return log_path


def setup_surface_logging(
    *,
    order_id: str,
    surface: str,
    level: str = "INFO",
    base_dir: str | Path = "logs",
) -> Path:
    """Log one editing surface of one order to its own file.

    Layout:
      logs/surface/<surface>/<order_id>/YYYY-MM-DD.log

    The console handler is left off so log lines do not interleave with the
    interactive prompt.
    """
    return setup_logging(
        level=level,
        component="surface",
        subdir=str(Path(surface) / order_id),
        base_dir=base_dir,
        console=False,
    )
