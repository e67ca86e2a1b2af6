import logging


def setup_logger(name: str = "binsignal", level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)
    # 同名 logger 只挂一个控制台 handler
    if any(getattr(h, "_binsignal_console", False) for h in logger.handlers):
        return logger
    ch = logging.StreamHandler()
    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
    )
    ch.setFormatter(fmt)
    ch._binsignal_console = True  # type: ignore[attr-defined]
    logger.addHandler(ch)
    return logger
